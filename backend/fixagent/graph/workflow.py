from fixagent.graph.runner import END, FAIL, FixGraph
from fixagent.graph.state import FixState
from fixagent.models import RunPhase, WorkflowStatus
from fixagent.graph.nodes import (
    analyze_issue_node, detect_stack_node, search_code_node, generate_fix_node,
    review_fix_node, verify_fix_node, submit_fix_node,
)


def attempts_exhausted(state: FixState) -> bool:
    """True once no further fix may be generated."""
    return state.get("attempts", 0) >= state["max_attempts"]


def route_after_review(state: FixState) -> str:
    """Rejected fixes go back to generation without spending a test run."""
    if state.get("review_feedback"):
        return "generate_fix"
    return "verify_fix"


def route_after_verify(state: FixState) -> str:
    """Decides next step after verification: submit, retry, or give up."""
    if state.get("status") == WorkflowStatus.SUCCESS:
        return "submit_fix"

    if attempts_exhausted(state):
        return "give_up"

    return "generate_fix"


def describe_failure(state: FixState) -> str:
    """Error message for a run that ran out of attempts."""
    max_attempts = state["max_attempts"]
    results = state.get("test_results", [])
    if state.get("review_feedback"):
        return (
            f"Exhausted {max_attempts} fix attempt(s); last fix was rejected in review: "
            f"{state['review_feedback']}"
        )
    if results:
        last = results[-1]
        return (
            f"Exhausted {max_attempts} fix attempt(s); tests still failing "
            f"(exit code {last.exit_code})"
        )
    return "Workflow completed without reaching success state."


def build_fix_graph() -> FixGraph:
    """
    analyze_issue → detect_stack → search_code → generate_fix → review_fix
    review_fix → generate_fix | verify_fix
    verify_fix → generate_fix | submit_fix | failed
    submit_fix → end
    """
    workflow = FixGraph(failure_message=describe_failure)

    # Add nodes
    workflow.add_node("analyze_issue", analyze_issue_node, RunPhase.ANALYZING_ISSUE)
    workflow.add_node("detect_stack", detect_stack_node, RunPhase.DETECTING_STACK)
    workflow.add_node("search_code", search_code_node, RunPhase.SEARCHING_CODE)
    workflow.add_node("generate_fix", generate_fix_node, RunPhase.GENERATING_FIX)
    workflow.add_node("review_fix", review_fix_node, RunPhase.REVIEWING_FIX)
    workflow.add_node("verify_fix", verify_fix_node, RunPhase.VERIFYING_FIX)
    workflow.add_node("submit_fix", submit_fix_node, RunPhase.SUBMITTING_FIX)

    # Set entry point
    workflow.set_entry_point("analyze_issue")

    # Add standard edges
    workflow.add_edge("analyze_issue", "detect_stack")
    workflow.add_edge("detect_stack", "search_code")
    workflow.add_edge("search_code", "generate_fix")
    workflow.add_edge("generate_fix", "review_fix")
    workflow.add_edge("submit_fix", END)

    # Add conditional edges
    workflow.add_conditional_edges(
        "review_fix",
        route_after_review,
        {
            "generate_fix": "generate_fix",
            "verify_fix": "verify_fix",
        },
    )
    workflow.add_conditional_edges(
        "verify_fix",
        route_after_verify,
        {
            "submit_fix": "submit_fix",
            "generate_fix": "generate_fix",
            "give_up": FAIL,
        },
    )

    # No fix is generated once the ceiling is reached
    workflow.add_guard("generate_fix", attempts_exhausted)

    return workflow
