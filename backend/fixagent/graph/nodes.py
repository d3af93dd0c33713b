import asyncio
import logging
import os
import re
import time
from typing import Any, Dict, List

from fixagent.errors import PreconditionError
from fixagent.graph.context import WorkflowContext, emit_event
from fixagent.graph.state import FixState
from fixagent.models import (
    CodeSnippet, FixFailure, RunPhase, SearchQuery, WorkflowStatus,
)
from fixagent.services.git_ops import GitOps
from fixagent.services.github_client import parse_issue_url

logger = logging.getLogger(__name__)

DRY_RUN_PR_URL = "DRY-RUN-NO-PR"
FALLBACK_CONTEXT_LINES = 10


async def analyze_issue_node(state: FixState, context: WorkflowContext) -> Dict[str, Any]:
    """Fetches the issue from the tracker and turns it into a structured analysis."""
    logger.info("Step: Analyze Issue")
    parsed = parse_issue_url(state["issue_url"])

    await emit_event(context, RunPhase.ANALYZING_ISSUE,
                     f"Fetching issue #{parsed.issue_number} from {parsed.owner}/{parsed.repo}...")
    issue = await context.tracker.fetch_issue(parsed.owner, parsed.repo, parsed.issue_number)

    analysis = await context.analyzer.analyze(issue)
    await emit_event(context, RunPhase.ANALYZING_ISSUE,
                     f"Problem: {analysis.problem} (severity={analysis.severity.value}, "
                     f"category={analysis.category.value})",
                     data=analysis.model_dump(mode="json"))

    return {"issue_analysis": analysis}


async def detect_stack_node(state: FixState, context: WorkflowContext) -> Dict[str, Any]:
    """Detects the repository stack unless the entry point already did."""
    logger.info("Step: Detect Stack")
    repo_path = state.get("repo_path")
    if not repo_path:
        raise PreconditionError("Repository path missing; the repository must be checked out first")

    if state.get("fingerprint"):
        logger.info(f"Using detected stack: {state['fingerprint'].language}")
        return {}

    await emit_event(context, RunPhase.DETECTING_STACK, "Detecting technology stack...")
    fingerprint = await context.detector.detect(repo_path)
    logger.info(f"Detected: {fingerprint.language}")
    await emit_event(context, RunPhase.DETECTING_STACK, f"Detected: {fingerprint.language}",
                     data=fingerprint.model_dump())

    return {"fingerprint": fingerprint}


async def _run_queries(
    queries: List[SearchQuery], repo_path: str, context: WorkflowContext
) -> List[CodeSnippet]:
    results: List[CodeSnippet] = []
    for query in queries:
        try:
            found = await context.search.search(
                query.pattern,
                repo_path,
                file_type=query.file_type,
                context_lines=query.context_lines,
            )
        except Exception as e:
            logger.warning(f"Search failed for {query.pattern}: {e}")
            continue
        results.extend(found)
    return results


async def search_code_node(state: FixState, context: WorkflowContext) -> Dict[str, Any]:
    """Finds code relevant to the issue, widening the search when nothing matches."""
    logger.info("Step: Search Code")
    analysis = state.get("issue_analysis")
    fingerprint = state.get("fingerprint")
    repo_path = state.get("repo_path")
    if not analysis or not fingerprint or not repo_path:
        raise PreconditionError("Missing issue analysis, fingerprint, or repository path for search")

    project_map = state.get("project_map")
    if project_map is None:
        project_map = await context.mapper.get_map(repo_path)

    queries = await context.query_generator.generate_queries(
        analysis, fingerprint.language, project_map
    )
    await emit_event(context, RunPhase.SEARCHING_CODE,
                     f"Running {len(queries)} search queries...",
                     data={"queries": [q.model_dump() for q in queries]})

    snippets = await _run_queries(queries, repo_path, context)

    if not snippets and analysis.keywords:
        logger.warning("No snippets found. Falling back to keyword search...")
        await emit_event(context, RunPhase.SEARCHING_CODE,
                         "No matches; searching issue keywords across all files...")
        broad_queries = [
            SearchQuery(
                pattern=re.escape(keyword),
                file_type=None,
                context_lines=FALLBACK_CONTEXT_LINES,
                reason="Broad keyword search",
            )
            for keyword in analysis.keywords
        ]
        snippets = await _run_queries(broad_queries, repo_path, context)

    logger.info(f"Found {len(snippets)} snippets")
    await emit_event(context, RunPhase.SEARCHING_CODE, f"Found {len(snippets)} snippet(s)",
                     data={"files": sorted({s.file for s in snippets})})

    return {"context_snippets": snippets, "project_map": project_map}


async def generate_fix_node(state: FixState, context: WorkflowContext) -> Dict[str, Any]:
    """Generates a fix, learning from every earlier verification and the last review."""
    attempt = state.get("attempts", 0) + 1
    max_attempts = state["max_attempts"]
    logger.info(f"Step: Generate Fix (Attempt {attempt})")
    analysis = state.get("issue_analysis")
    if not analysis:
        raise PreconditionError("Missing issue analysis for fix generation")

    previous_failures = [
        FixFailure(attempt=i + 1, error=result.error, output=result.output[-2000:])
        for i, result in enumerate(state.get("test_results", []))
    ]
    feedback = state.get("review_feedback")
    if feedback:
        logger.info(f"Incorporating review feedback: {feedback[:50]}...")

    await emit_event(context, RunPhase.GENERATING_FIX, f"--- Attempt {attempt}/{max_attempts} ---")
    fingerprint = state.get("fingerprint")
    fix = await context.fix_generator.generate_fix(
        analysis,
        state.get("context_snippets", []),
        fingerprint.language if fingerprint else "unknown",
        previous_failures,
        review_feedback=feedback,
    )
    await emit_event(context, RunPhase.GENERATING_FIX, f"Proposed change to {fix.file}",
                     data={"file": fix.file, "explanation": fix.explanation})

    return {"current_fix": fix, "attempts": attempt, "review_feedback": None}


async def review_fix_node(state: FixState, context: WorkflowContext) -> Dict[str, Any]:
    """Peer-reviews the current fix before spending a test run on it."""
    logger.info("Step: Review Fix")
    fix = state.get("current_fix")
    analysis = state.get("issue_analysis")
    if not fix or not analysis:
        raise PreconditionError("Missing fix or issue analysis for review")

    fingerprint = state.get("fingerprint")
    verdict = await context.reviewer.review(
        analysis,
        fix,
        state.get("context_snippets", []),
        fingerprint.language if fingerprint else "unknown",
    )

    if verdict.approved:
        logger.info("Review approved")
        await emit_event(context, RunPhase.REVIEWING_FIX, "Review approved", event_type="review")
        return {"review_feedback": None, "last_review": verdict}

    logger.warning(f"Review rejected: {verdict.category.value}")
    await emit_event(context, RunPhase.REVIEWING_FIX,
                     f"Review rejected ({verdict.category.value}): {verdict.feedback[:200]}",
                     event_type="review")
    return {"review_feedback": verdict.feedback, "last_review": verdict}


async def verify_fix_node(state: FixState, context: WorkflowContext) -> Dict[str, Any]:
    """Applies the fix inside the sandbox and runs the test suite once."""
    logger.info("Step: Verify Fix")
    fix = state.get("current_fix")
    fingerprint = state.get("fingerprint")
    if not context.sandbox or not fix or not fingerprint:
        raise PreconditionError("Sandbox, fix, or fingerprint missing for verification")

    await context.sandbox.write_file(fix.file, fix.content)

    await emit_event(context, RunPhase.VERIFYING_FIX, f"Running: {fingerprint.test_command}")
    result = await context.sandbox.run_tests(fingerprint.test_command)

    await emit_event(context, RunPhase.VERIFYING_FIX,
                     f"Test result: {'PASSED' if result.passed else 'FAILED'} (exit {result.exit_code})",
                     data={"output": result.output[:2000], "error": result.error[:2000]},
                     event_type="test_result")

    if result.exit_code == 0:
        logger.info("Tests passed")
        return {"status": WorkflowStatus.SUCCESS, "test_results": [result]}

    logger.warning("Tests failed")
    return {"status": WorkflowStatus.RUNNING, "test_results": [result]}


def _write_local_file(repo_path: str, relative_path: str, content: str) -> str:
    local_path = os.path.join(repo_path, relative_path)
    os.makedirs(os.path.dirname(local_path) or ".", exist_ok=True)
    with open(local_path, "w") as f:
        f.write(content)
    return local_path


async def submit_fix_node(state: FixState, context: WorkflowContext) -> Dict[str, Any]:
    """Pushes the verified fix to a new branch and opens a pull request."""
    if state.get("status") != WorkflowStatus.SUCCESS:
        raise PreconditionError("Only a verified fix can be submitted")

    if state.get("dry_run"):
        logger.info("Step: Submit Fix (Skipped due to dry-run)")
        await emit_event(context, RunPhase.SUBMITTING_FIX, "Dry run: skipping branch, push, and PR.")
        return {"pr_url": DRY_RUN_PR_URL}

    logger.info("Step: Submit Fix (Creating PR)")
    fix = state.get("current_fix")
    repo_path = state.get("repo_path")
    if not fix or not repo_path or not context.sandbox:
        raise PreconditionError("Fix, repository path, or sandbox missing for submission")

    try:
        parsed = parse_issue_url(state["issue_url"])
        settings = context.settings

        modified = await context.sandbox.read_file(fix.file)
        await asyncio.to_thread(_write_local_file, repo_path, fix.file, modified)

        git_ops = GitOps(repo_path, settings.github_token)
        branch_name = f"fix/issue-{parsed.issue_number}-{int(time.time() * 1000)}"
        await asyncio.to_thread(git_ops.create_branch, branch_name)
        await asyncio.to_thread(
            git_ops.commit_changes,
            f"Fix issue #{parsed.issue_number}",
            settings.git_author_name,
            settings.git_author_email,
            files=[fix.file],
        )

        await emit_event(context, RunPhase.SUBMITTING_FIX, f"Pushing branch {branch_name}...")
        await asyncio.to_thread(git_ops.push, branch_name, parsed.owner, parsed.repo)

        analysis = state.get("issue_analysis")
        pr = await context.tracker.open_pull_request(
            parsed.owner,
            parsed.repo,
            f"Fix for Issue #{parsed.issue_number}",
            "This PR was automatically generated by the fix agent.\n\n"
            f"Fixes #{parsed.issue_number}\n\n"
            f"### Issue Analysis\n{analysis.problem if analysis else ''}",
            branch_name,
            settings.base_branch,
        )
        await emit_event(context, RunPhase.SUBMITTING_FIX, f"PR created: {pr.url}", data={"pr_url": pr.url})
        return {"pr_url": pr.url}

    except Exception as e:
        logger.error(f"Submission failed: {e}")
        await emit_event(context, RunPhase.SUBMITTING_FIX, f"Submission failed: {e}", event_type="error")
        return {"error": f"PR creation failed: {e}"}
