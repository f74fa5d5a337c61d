"""LangGraph wrapper for the regeneration loop - trace harness only.

Wraps the orchestrator's generate and validate nodes in a StateGraph so
each attempt is visible as a node in LangGraph Studio. Same semantics as
run_regeneration_loop(), just structured visibility.
"""

from typing import Any, List, Optional
from typing_extensions import TypedDict

from langgraph.graph import StateGraph, END

from bundle_reconciler.orchestrator import generate_node, validate_node
from bundle_reconciler.state import IDLE, RETRYING, RegenerationState


class RegenerationGraphState(TypedDict):
    """State for the regeneration graph - mirrors RegenerationState fields."""
    spec_text: str
    writable_root: str
    readable_roots: List[str]
    environments: List[str]
    run_dir: Optional[str]
    attempt: int
    max_attempts: int
    status: str
    last_exit_code: Optional[int]
    errors: List[str]
    feedback: List[str]
    attempt_log: List[dict]
    # Collaborators (passed through state)
    generator: Any
    validator: Any


def graph_state_to_regeneration_state(state: RegenerationGraphState) -> RegenerationState:
    """Convert graph state to the RegenerationState dataclass."""
    return RegenerationState(
        spec_text=state["spec_text"],
        writable_root=state["writable_root"],
        readable_roots=list(state["readable_roots"]),
        environments=list(state["environments"]),
        run_dir=state.get("run_dir"),
        attempt=state["attempt"],
        max_attempts=state["max_attempts"],
        status=state["status"],
        last_exit_code=state.get("last_exit_code"),
        errors=list(state["errors"]),
        feedback=list(state["feedback"]),
        attempt_log=list(state["attempt_log"]),
    )


def regeneration_state_to_dict(rs: RegenerationState, generator: Any, validator: Any) -> dict:
    """Convert RegenerationState back to a graph state dict."""
    return {
        "spec_text": rs.spec_text,
        "writable_root": rs.writable_root,
        "readable_roots": list(rs.readable_roots),
        "environments": list(rs.environments),
        "run_dir": rs.run_dir,
        "attempt": rs.attempt,
        "max_attempts": rs.max_attempts,
        "status": rs.status,
        "last_exit_code": rs.last_exit_code,
        "errors": list(rs.errors),
        "feedback": list(rs.feedback),
        "attempt_log": list(rs.attempt_log),
        "generator": generator,
        "validator": validator,
    }


# --- Graph Nodes ---

def node_generate(state: RegenerationGraphState) -> RegenerationGraphState:
    """Run one generation attempt into the writable root."""
    rs = graph_state_to_regeneration_state(state)
    rs = generate_node(rs, state["generator"])
    return regeneration_state_to_dict(rs, state["generator"], state["validator"])


def node_validate(state: RegenerationGraphState) -> RegenerationGraphState:
    """Validate the attempt and decide the next status."""
    rs = graph_state_to_regeneration_state(state)
    rs = validate_node(rs, state["validator"])
    return regeneration_state_to_dict(rs, state["generator"], state["validator"])


# --- Conditional Edges ---

def should_retry(state: RegenerationGraphState) -> str:
    """Loop back to generate while the validator asks for a retry."""
    if state["status"] == RETRYING and state["attempt"] < state["max_attempts"]:
        return "retry"
    return "end"


# --- Graph Builder ---

def build_regeneration_graph() -> StateGraph:
    """
    Build the regeneration graph.

    Flow:
        generate -> validate -> (passed or out of attempts?) -> end
                             -> (retrying?) -> generate
    """
    graph = StateGraph(RegenerationGraphState)

    graph.add_node("generate", node_generate)
    graph.add_node("validate", node_validate)

    graph.set_entry_point("generate")

    graph.add_edge("generate", "validate")
    graph.add_conditional_edges(
        "validate",
        should_retry,
        {
            "end": END,
            "retry": "generate",
        }
    )

    return graph


def run_regeneration_graph(
    state: RegenerationState,
    generator: Any,
    validator: Any,
) -> RegenerationState:
    """
    Run the regeneration graph and return the final state.

    This is the traced equivalent of run_regeneration_loop().

    Raises:
        ValueError: If max_attempts < 1
    """
    if state.max_attempts < 1:
        raise ValueError(f"max_attempts must be at least 1, got {state.max_attempts}")

    compiled = build_regeneration_graph().compile()

    initial_state = regeneration_state_to_dict(state, generator, validator)
    initial_state["status"] = IDLE

    # Two node visits per attempt, plus headroom
    final_state = compiled.invoke(
        initial_state,
        config={"recursion_limit": state.max_attempts * 3 + 5},
    )

    return graph_state_to_regeneration_state(final_state)


# Pre-compiled graph for Studio discovery
regeneration_graph = build_regeneration_graph().compile()
