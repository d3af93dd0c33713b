"""
Pydantic data models for the fix agent.
"""

from pydantic import BaseModel, Field
from typing import Optional
from enum import Enum
from datetime import datetime, timezone


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


# ── Enums ──────────────────────────────────────────────────

class RunPhase(str, Enum):
    IDLE = "idle"
    CLONING = "cloning"
    DETECTING_STACK = "detecting_stack"
    PROVISIONING = "provisioning"
    ANALYZING_ISSUE = "analyzing_issue"
    SEARCHING_CODE = "searching_code"
    GENERATING_FIX = "generating_fix"
    REVIEWING_FIX = "reviewing_fix"
    VERIFYING_FIX = "verifying_fix"
    SUBMITTING_FIX = "submitting_fix"
    COMPLETED = "completed"
    FAILED = "failed"


class WorkflowStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class IssueCategory(str, Enum):
    BUG = "bug"
    FEATURE = "feature"
    DOCS = "docs"


class ReviewCategory(str, Enum):
    LOGIC = "logic"
    SYNTAX = "syntax"
    STYLE = "style"
    SECURITY = "security"
    OK = "ok"


# ── Issue tracker ──────────────────────────────────────────

class ParsedIssueUrl(BaseModel):
    owner: str
    repo: str
    issue_number: int


class GitHubIssue(BaseModel):
    """Raw issue as fetched from the tracker."""
    number: int
    title: str
    body: str = ""
    labels: list[str] = []
    author: str = "unknown"


class PullRequest(BaseModel):
    url: str
    number: int


# ── Analysis / detection ───────────────────────────────────

class IssueAnalysis(BaseModel):
    """Structured reading of an issue."""
    problem: str = Field(..., description="A concise summary of what is broken")
    expected: str = Field("", description="Expected behavior description")
    actual: str = Field("", description="Actual behavior description")
    keywords: list[str] = Field(default_factory=list, description="Relevant search keywords")
    mentioned_files: list[str] = Field(
        default_factory=list, description="Files explicitly mentioned in the issue"
    )
    severity: Severity = Severity.MEDIUM
    category: IssueCategory = IssueCategory.BUG
    is_frontend: bool = False


class RepoFingerprint(BaseModel):
    """Language, runtime, and build/test commands of a repository."""
    language: str
    runtime: str = "base"
    package_manager: str = "none"
    install_command: str = ""
    test_command: str


# ── Search ─────────────────────────────────────────────────

class SearchQuery(BaseModel):
    pattern: str = Field(..., description="Regex pattern to search for")
    file_type: Optional[str] = Field(None, description="File extension filter (e.g., ts, py)")
    context_lines: int = Field(20, description="Number of lines of context")
    reason: str = Field("", description="Why this query is relevant")


class CodeSnippet(BaseModel):
    """A located, bounded excerpt of source text."""
    file: str
    start_line: int
    end_line: int
    content: str
    relevance_score: float = 1.0


# ── Fix / review / verification ────────────────────────────

class CodeFix(BaseModel):
    """Full replacement content for one file."""
    file: str
    content: str
    explanation: str = ""


class FixFailure(BaseModel):
    """What a previous attempt's verification reported."""
    attempt: int
    error: str = ""
    output: str = ""


class ReviewResult(BaseModel):
    approved: bool
    feedback: str = ""
    category: ReviewCategory = ReviewCategory.OK


class TestResult(BaseModel):
    """Outcome of one test run inside the sandbox."""
    __test__ = False  # not a pytest test class

    passed: bool
    output: str = ""
    error: str = ""
    exit_code: int
    duration: float = 0.0  # seconds


# ── Usage accounting ───────────────────────────────────────

class UsageSnapshot(BaseModel):
    requests: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost: float = 0.0


# ── Workflow surface ───────────────────────────────────────

class WorkflowOptions(BaseModel):
    dry_run: bool = False
    max_attempts: int = Field(5, ge=1)
    use_local: bool = False
    local_path: Optional[str] = Field(
        None, description="Checkout to use with use_local (defaults to the working directory)"
    )


class WorkflowResult(BaseModel):
    status: WorkflowStatus
    pr_url: Optional[str] = None
    error: Optional[str] = None
    attempts: int = 0
    duration: int = 0  # seconds
    cost: float = 0.0
    usage: UsageSnapshot = Field(default_factory=UsageSnapshot)


# ── Request / Response Models ──────────────────────────────

class RunRequest(BaseModel):
    """Input from a client to start a fix run."""
    issue_url: str = Field(..., description="GitHub issue URL to fix")
    dry_run: bool = False
    max_attempts: Optional[int] = Field(None, ge=1, description="Defaults to the configured ceiling")
    use_local: bool = False


# ── Event Model ────────────────────────────────────────────

class AgentEvent(BaseModel):
    """Progress event emitted while a run executes."""
    event_type: str  # log, phase_change, test_result, review, run_complete, error
    phase: Optional[RunPhase] = None
    message: str = ""
    data: Optional[dict] = None
    timestamp: str = Field(default_factory=_utcnow)
