"""
Agent Orchestrator — prepares a run (checkout, stack, sandbox), drives the
fix graph, and turns the final state into a WorkflowResult.
"""

import asyncio
import logging
import os
import shutil
import time
from typing import Callable, Optional

from fixagent.config import Settings, settings as default_settings
from fixagent.graph.context import EventCallback, WorkflowContext
from fixagent.graph.state import FixState, create_initial_state
from fixagent.graph.workflow import build_fix_graph
from fixagent.interfaces import (
    FixGenerator, IssueAnalyzer, ProjectMapper, QueryGenerator, Reviewer,
    Sandbox, SearchEngine, StackDetector, Tracker,
)
from fixagent.models import (
    AgentEvent, RunPhase, UsageSnapshot, WorkflowOptions, WorkflowResult, WorkflowStatus,
)
from fixagent.services.code_search import RipgrepSearch
from fixagent.services.fix_generator import FixGenerator as LLMFixGenerator
from fixagent.services.github_client import GitHubClient, parse_issue_url
from fixagent.services.issue_analyzer import IssueAnalyzer as LLMIssueAnalyzer
from fixagent.services.llm import LLMClient
from fixagent.services.project_mapper import ProjectMapper as TreeProjectMapper
from fixagent.services.query_generator import QueryGenerator as LLMQueryGenerator
from fixagent.services.reviewer import Reviewer as LLMReviewer
from fixagent.services.sandbox import LocalSandbox
from fixagent.services.stack_detector import StackDetector as LLMStackDetector
from fixagent.usage import UsageTracker, usage_scope

logger = logging.getLogger(__name__)

SandboxFactory = Callable[[], Sandbox]


class FixAgent:
    """
    The autonomous issue fixer.
    Orchestrates: checkout → detect stack → provision sandbox → fix graph.
    Collaborators default to the bundled implementations; pass your own to
    swap any of them.
    """

    def __init__(
        self,
        tracker: Optional[Tracker] = None,
        analyzer: Optional[IssueAnalyzer] = None,
        detector: Optional[StackDetector] = None,
        mapper: Optional[ProjectMapper] = None,
        query_generator: Optional[QueryGenerator] = None,
        search: Optional[SearchEngine] = None,
        fix_generator: Optional[FixGenerator] = None,
        reviewer: Optional[Reviewer] = None,
        sandbox_factory: Optional[SandboxFactory] = None,
        config: Optional[Settings] = None,
    ):
        self.config = config or default_settings
        llm = LLMClient(self.config)
        self.tracker = tracker or GitHubClient(self.config.github_token)
        self.analyzer = analyzer or LLMIssueAnalyzer(llm)
        self.detector = detector or LLMStackDetector(llm)
        self.mapper = mapper or TreeProjectMapper()
        self.query_generator = query_generator or LLMQueryGenerator(llm)
        self.search = search or RipgrepSearch()
        self.fix_generator = fix_generator or LLMFixGenerator(llm)
        self.reviewer = reviewer or LLMReviewer(llm)
        self.sandbox_factory = sandbox_factory or (lambda: LocalSandbox(self.config))

    async def run(
        self,
        issue_url: str,
        options: Optional[WorkflowOptions] = None,
        emit: Optional[EventCallback] = None,
    ) -> WorkflowResult:
        """
        Execute the full fix workflow for one issue.
        Never raises for workflow failures; they are reported in the result.
        """
        options = options or WorkflowOptions(max_attempts=self.config.max_attempts)
        start_time = time.time()
        sandbox: Optional[Sandbox] = None
        clone_path: Optional[str] = None
        state: Optional[FixState] = None

        with usage_scope() as usage:
            try:
                parsed = parse_issue_url(issue_url)

                # ── Checkout ──────────────────────────────────
                if options.use_local:
                    repo_path = os.path.abspath(options.local_path or os.getcwd())
                    logger.info(f"Operating on local repository: {repo_path}")
                else:
                    os.makedirs(self.config.clone_base_dir, exist_ok=True)
                    repo_path = os.path.join(
                        self.config.clone_base_dir, f"{parsed.repo}-{int(time.time() * 1000)}"
                    )
                    clone_path = repo_path
                    await self._emit(emit, RunPhase.CLONING, f"Cloning {parsed.owner}/{parsed.repo}...")
                    await self.tracker.clone_repository(parsed.owner, parsed.repo, repo_path)

                # ── Stack (authoritative detection) ───────────
                await self._emit(emit, RunPhase.DETECTING_STACK, "Analyzing project structure...")
                fingerprint = await self.detector.detect(repo_path)
                logger.info(f"Stack detected: {fingerprint.language} ({fingerprint.runtime})")

                # ── Sandbox ───────────────────────────────────
                await self._emit(emit, RunPhase.PROVISIONING, "Provisioning sandbox...")
                sandbox = self.sandbox_factory()
                await sandbox.provision(
                    f"https://github.com/{parsed.owner}/{parsed.repo}.git",
                    fingerprint,
                    repo_path if options.use_local else None,
                )

                # ── Fix graph ─────────────────────────────────
                state = create_initial_state(
                    issue_url,
                    max_attempts=options.max_attempts,
                    dry_run=options.dry_run,
                    repo_path=repo_path,
                    fingerprint=fingerprint,
                )
                context = WorkflowContext(
                    tracker=self.tracker,
                    analyzer=self.analyzer,
                    detector=self.detector,
                    mapper=self.mapper,
                    query_generator=self.query_generator,
                    search=self.search,
                    fix_generator=self.fix_generator,
                    reviewer=self.reviewer,
                    sandbox=sandbox,
                    settings=self.config,
                    emit=emit,
                )

                logger.info("Starting autonomous fix loop...")
                outcome = await build_fix_graph().run(state, context)
                logger.info(f"Fix loop finished after steps: {' -> '.join(outcome.trace)}")
                result = self._to_result(outcome.state, start_time, usage)

            except Exception as e:
                logger.error(f"Critical workflow failure: {e}")
                result = WorkflowResult(
                    status=WorkflowStatus.FAILED,
                    error=str(e) or e.__class__.__name__,
                    attempts=state.get("attempts", 0) if state else 0,
                    duration=int(time.time() - start_time),
                    cost=usage.snapshot().cost,
                    usage=usage.snapshot(),
                )

            finally:
                if sandbox is not None:
                    try:
                        await sandbox.cleanup()
                    except Exception as cleanup_error:
                        logger.warning(f"Sandbox cleanup failed: {cleanup_error}")
                if clone_path is not None:
                    await self._remove_clone(clone_path)

        phase = RunPhase.COMPLETED if result.status == WorkflowStatus.SUCCESS else RunPhase.FAILED
        await self._emit(emit, phase, f"Run finished: {result.status.value}",
                         data=result.model_dump(mode="json"), event_type="run_complete")
        return result

    async def _remove_clone(self, clone_path: str) -> None:
        if not os.path.exists(clone_path):
            return
        try:
            await asyncio.to_thread(shutil.rmtree, clone_path)
            logger.info(f"Removed checkout: {clone_path}")
        except OSError as e:
            logger.warning(f"Could not remove checkout {clone_path}: {e}")

    def _to_result(self, state: FixState, start_time: float, usage: UsageTracker) -> WorkflowResult:
        snapshot: UsageSnapshot = usage.snapshot()
        duration = int(time.time() - start_time)

        if state.get("status") == WorkflowStatus.SUCCESS:
            return WorkflowResult(
                status=WorkflowStatus.SUCCESS,
                pr_url=state.get("pr_url"),
                error=state.get("error"),
                attempts=state.get("attempts", 0),
                duration=duration,
                cost=snapshot.cost,
                usage=snapshot,
            )

        return WorkflowResult(
            status=WorkflowStatus.FAILED,
            error=state.get("error") or "Workflow completed without reaching success state.",
            attempts=state.get("attempts", 0),
            duration=duration,
            cost=snapshot.cost,
            usage=snapshot,
        )

    async def _emit(
        self,
        emit: Optional[EventCallback],
        phase: RunPhase,
        message: str,
        data: Optional[dict] = None,
        event_type: str = "log",
    ):
        if emit:
            await emit(AgentEvent(event_type=event_type, phase=phase, message=message, data=data))


async def run_fix_workflow(
    issue_url: str,
    options: Optional[WorkflowOptions] = None,
    *,
    agent: Optional[FixAgent] = None,
    emit: Optional[EventCallback] = None,
) -> WorkflowResult:
    """Run the fix workflow for one GitHub issue URL."""
    agent = agent or FixAgent()
    return await agent.run(issue_url, options, emit=emit)
