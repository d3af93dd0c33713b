from enum import Enum
from typing import Any, Mapping, Optional, TypedDict

from fixagent.errors import StateError
from fixagent.models import (
    CodeFix, CodeSnippet, IssueAnalysis, RepoFingerprint, ReviewResult, TestResult, WorkflowStatus,
)


class FixState(TypedDict, total=False):
    """
    Represents the state of one fix workflow run.
    Threaded through every step; only the graph runner writes to it.
    """
    # Request Info
    issue_url: str
    dry_run: bool
    max_attempts: int

    # Repository
    repo_path: Optional[str]
    fingerprint: Optional[RepoFingerprint]
    project_map: Optional[str]

    # Issue
    issue_analysis: Optional[IssueAnalysis]
    context_snippets: list[CodeSnippet]

    # Fix loop
    current_fix: Optional[CodeFix]
    attempts: int
    review_feedback: Optional[str]
    last_review: Optional[ReviewResult]
    test_results: list[TestResult]  # append-only
    status: WorkflowStatus

    # Final Output
    pr_url: Optional[str]
    error: Optional[str]


class UpdatePolicy(str, Enum):
    REPLACE = "replace"      # last write wins; None clears
    APPEND = "append"        # update value is a list of new entries
    SET_ONCE = "set_once"    # may go from unset to a value, never to another value
    IMMUTABLE = "immutable"  # fixed when the run starts


FIELD_POLICIES: dict[str, UpdatePolicy] = {
    "issue_url": UpdatePolicy.IMMUTABLE,
    "dry_run": UpdatePolicy.IMMUTABLE,
    "max_attempts": UpdatePolicy.IMMUTABLE,
    "repo_path": UpdatePolicy.SET_ONCE,
    "fingerprint": UpdatePolicy.SET_ONCE,
    "project_map": UpdatePolicy.SET_ONCE,
    "issue_analysis": UpdatePolicy.SET_ONCE,
    "test_results": UpdatePolicy.APPEND,
}


def create_initial_state(
    issue_url: str,
    max_attempts: int,
    dry_run: bool = False,
    repo_path: Optional[str] = None,
    fingerprint: Optional[RepoFingerprint] = None,
) -> FixState:
    """Build the state a run starts from."""
    if max_attempts < 1:
        raise StateError(f"max_attempts must be at least 1, got {max_attempts}")
    return FixState(
        issue_url=issue_url,
        dry_run=dry_run,
        max_attempts=max_attempts,
        repo_path=repo_path,
        fingerprint=fingerprint,
        project_map=None,
        issue_analysis=None,
        context_snippets=[],
        current_fix=None,
        attempts=0,
        review_feedback=None,
        last_review=None,
        test_results=[],
        status=WorkflowStatus.RUNNING,
        pr_url=None,
        error=None,
    )


def merge_update(state: FixState, update: Optional[Mapping[str, Any]]) -> FixState:
    """
    Apply a step's partial update to the state in place, field by field,
    according to FIELD_POLICIES. Returns the same state object.
    """
    if not update:
        return state

    for key, value in update.items():
        if key not in FixState.__annotations__:
            raise StateError(f"Unknown state field: {key}")

        policy = FIELD_POLICIES.get(key, UpdatePolicy.REPLACE)
        current = state.get(key)

        if policy is UpdatePolicy.IMMUTABLE:
            if key in state and value != current:
                raise StateError(f"Field '{key}' is immutable for the duration of a run")
            state[key] = value
        elif policy is UpdatePolicy.SET_ONCE:
            if current is not None and value != current:
                raise StateError(f"Field '{key}' is already set and cannot be replaced")
            state[key] = value
        elif policy is UpdatePolicy.APPEND:
            if not isinstance(value, list):
                raise StateError(f"Field '{key}' is append-only; expected a list of new entries")
            state[key] = list(state.get(key) or []) + value
        else:
            state[key] = value

    return state
