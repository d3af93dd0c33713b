"""
Graph Runner — a plain loop over an edge table.

Nodes are async step functions `(state, context) -> partial update`. After
each node the runner merges the update with the state's field policies and
picks the next node from either a fixed edge or a routing predicate. Entering
a node emits a `phase_change` event carrying the node's RunPhase.
"""

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Mapping, Optional

from fixagent.errors import GraphError
from fixagent.graph.context import WorkflowContext, emit_event
from fixagent.graph.state import FixState, merge_update
from fixagent.models import RunPhase, WorkflowStatus

logger = logging.getLogger(__name__)

END = "__end__"
FAIL = "__fail__"  # terminal: marks the run failed

NodeFn = Callable[[FixState, WorkflowContext], Awaitable[Optional[dict]]]
Router = Callable[[FixState], str]
Guard = Callable[[FixState], bool]
FailureMessage = Callable[[FixState], str]


def _default_failure_message(state: FixState) -> str:
    return "Workflow completed without reaching success state."


@dataclass
class RunOutcome:
    state: FixState
    trace: list[str] = field(default_factory=list)


class FixGraph:
    """A small cyclic state machine of named async steps."""

    def __init__(
        self,
        failure_message: FailureMessage = _default_failure_message,
        max_steps: int = 500,
    ):
        self.nodes: dict[str, NodeFn] = {}
        self.phases: dict[str, Optional[RunPhase]] = {}
        self.edges: dict[str, str] = {}
        self.branches: dict[str, tuple[Router, dict[str, str]]] = {}
        self.guards: dict[str, Guard] = {}
        self.entry_point: Optional[str] = None
        self.failure_message = failure_message
        self.max_steps = max_steps

    # ── Construction ─────────────────────────────────────

    def add_node(self, name: str, fn: NodeFn, phase: Optional[RunPhase] = None) -> None:
        if name in (END, FAIL):
            raise GraphError(f"'{name}' is a reserved node name")
        if name in self.nodes:
            raise GraphError(f"Node '{name}' already exists")
        self.nodes[name] = fn
        self.phases[name] = phase

    def add_edge(self, source: str, target: str) -> None:
        if source in self.edges or source in self.branches:
            raise GraphError(f"Node '{source}' already has an outgoing edge")
        self.edges[source] = target

    def add_conditional_edges(self, source: str, router: Router, path_map: Mapping[str, str]) -> None:
        if source in self.edges or source in self.branches:
            raise GraphError(f"Node '{source}' already has an outgoing edge")
        self.branches[source] = (router, dict(path_map))

    def add_guard(self, node: str, guard: Guard) -> None:
        """Before entering `node`, fail the run if `guard(state)` is true."""
        self.guards[node] = guard

    def set_entry_point(self, name: str) -> None:
        self.entry_point = name

    def validate(self) -> None:
        """Check that every edge points at a known node or a terminal."""
        known = set(self.nodes) | {END, FAIL}
        if self.entry_point not in self.nodes:
            raise GraphError(f"Entry point '{self.entry_point}' is not a node")
        for source, target in self.edges.items():
            if source not in self.nodes or target not in known:
                raise GraphError(f"Edge {source} -> {target} references an unknown node")
        for source, (_, path_map) in self.branches.items():
            if source not in self.nodes:
                raise GraphError(f"Conditional edge from unknown node '{source}'")
            for target in path_map.values():
                if target not in known:
                    raise GraphError(f"Conditional edge {source} -> {target} references an unknown node")
        for name in self.guards:
            if name not in self.nodes:
                raise GraphError(f"Guard on unknown node '{name}'")
        for name in self.nodes:
            if name not in self.edges and name not in self.branches:
                raise GraphError(f"Node '{name}' has no outgoing edge")

    # ── Execution ────────────────────────────────────────

    def next_node(self, current: str, state: FixState) -> str:
        if current in self.edges:
            return self.edges[current]
        router, path_map = self.branches[current]
        decision = router(state)
        if decision not in path_map:
            raise GraphError(f"Router for '{current}' returned unmapped value '{decision}'")
        return path_map[decision]

    async def run(self, state: FixState, context: WorkflowContext) -> RunOutcome:
        """
        Execute steps one at a time until a terminal node is reached.
        Step exceptions propagate to the caller.
        """
        self.validate()
        outcome = RunOutcome(state=state)
        node = self.entry_point

        while node not in (END, FAIL):
            if len(outcome.trace) >= self.max_steps:
                raise GraphError(f"Step limit of {self.max_steps} reached without a terminal state")

            guard = self.guards.get(node)
            if guard and guard(state):
                logger.warning(f"Guard refused entry to '{node}'; terminating run as failed")
                node = FAIL
                break

            logger.debug(f"Running step '{node}'")
            outcome.trace.append(node)
            await emit_event(context, self.phases[node], f"Entering step: {node}",
                             data={"node": node, "step": len(outcome.trace)}, event_type="phase_change")
            update = await self.nodes[node](state, context)
            merge_update(state, update)
            node = self.next_node(node, state)

        if node == FAIL:
            merge_update(state, {
                "status": WorkflowStatus.FAILED,
                "error": state.get("error") or self.failure_message(state),
            })

        return outcome
