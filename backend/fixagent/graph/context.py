from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from fixagent.config import Settings, settings as default_settings
from fixagent.interfaces import (
    FixGenerator, IssueAnalyzer, ProjectMapper, QueryGenerator, Reviewer,
    Sandbox, SearchEngine, StackDetector, Tracker,
)
from fixagent.models import AgentEvent, RunPhase

EventCallback = Callable[[AgentEvent], Awaitable[None]]


@dataclass
class WorkflowContext:
    """
    Collaborator handles for one run. Passed by reference into every step;
    never stored in or serialized with the state.
    """
    tracker: Tracker
    analyzer: IssueAnalyzer
    detector: StackDetector
    mapper: ProjectMapper
    query_generator: QueryGenerator
    search: SearchEngine
    fix_generator: FixGenerator
    reviewer: Reviewer
    sandbox: Optional[Sandbox] = None
    settings: Settings = field(default_factory=lambda: default_settings)
    emit: Optional[EventCallback] = None


async def emit_event(
    context: Optional[WorkflowContext],
    phase: RunPhase,
    message: str,
    data: Dict[str, Any] = None,
    event_type: str = "log",
):
    """Helper to emit events via the context callback."""
    if not context or not context.emit:
        return

    event = AgentEvent(
        event_type=event_type,
        phase=phase,
        message=message,
        data=data,
    )
    await context.emit(event)
