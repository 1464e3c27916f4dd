from typing import Any, Awaitable, Callable

from langgraph.graph import END, StateGraph

from fieldops.state import PipelineState

Node = Callable[[PipelineState], Awaitable[dict[str, Any]]]


def route_after_intake(state: PipelineState) -> str:
    return "feedback" if state.get("feedback_rating") is not None else "classify"


def build_graph(
    intake: Node,
    feedback: Node,
    classify: Node,
    update_scene: Node,
    resolve: Node,
    execute: Node,
) -> StateGraph:
    """received -> logged -> classified -> scene-updated -> resolved -> executing."""
    graph = StateGraph(PipelineState)
    graph.add_node("intake", intake)
    graph.add_node("feedback", feedback)
    graph.add_node("classify", classify)
    graph.add_node("update_scene", update_scene)
    graph.add_node("resolve", resolve)
    graph.add_node("execute", execute)

    graph.set_entry_point("intake")
    graph.add_conditional_edges(
        "intake",
        route_after_intake,
        {"feedback": "feedback", "classify": "classify"},
    )
    graph.add_edge("feedback", END)
    graph.add_edge("classify", "update_scene")
    graph.add_edge("update_scene", "resolve")
    graph.add_edge("resolve", "execute")
    graph.add_edge("execute", END)

    return graph
