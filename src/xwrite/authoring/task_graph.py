"""Visit-capped, cancellable task graph executed on LangGraph.

Nodes do their work against a shared, caller-owned state object; the LangGraph
state only carries the traversal cursor (the node to run next and a visit
table). Every node declares the node ids it may hand over to, so misspelled
transitions fail when the graph is built rather than mid-run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Generic, Mapping, Optional, Sequence, TypedDict, TypeVar

from langgraph.graph import END, START, StateGraph

logger = logging.getLogger(__name__)

__all__ = [
    "TaskGraphError",
    "TaskGraphLoopError",
    "TaskGraphNode",
    "TaskGraphContext",
    "TaskGraph",
    "run_task_graph",
]

StateT = TypeVar("StateT")

CancelCheck = Callable[[], bool]
TransitionHook = Callable[[str, Optional[str], Dict[str, int]], Awaitable[None]]


class TaskGraphError(RuntimeError):
    """Raised for structural problems: unknown node ids or undeclared transitions."""


class TaskGraphLoopError(TaskGraphError):
    """Raised when a node would run more often than its ``max_visits``."""


@dataclass(slots=True)
class TaskGraphNode(Generic[StateT]):
    id: str
    run: Callable[[StateT], Awaitable[None]]
    next: Callable[[StateT], Optional[str]]
    max_visits: int = 1
    targets: Optional[Sequence[str]] = None

    @property
    def visit_cap(self) -> int:
        return max(1, self.max_visits or 1)


@dataclass(slots=True)
class TaskGraphContext:
    current_node_id: Optional[str]
    visit_count: Dict[str, int] = field(default_factory=dict)
    cancelled: bool = False

    @property
    def completed(self) -> bool:
        return self.current_node_id is None and not self.cancelled


class _Cursor(TypedDict, total=False):
    current: Optional[str]
    visits: Dict[str, int]
    cancelled: bool


class TaskGraph(Generic[StateT]):
    """Compile a node map into a LangGraph workflow and run it."""

    def __init__(self, nodes: Sequence[TaskGraphNode[StateT]]) -> None:
        self.nodes: Dict[str, TaskGraphNode[StateT]] = {}
        for node in nodes:
            if node.id in self.nodes:
                raise TaskGraphError(f"Duplicate task graph node '{node.id}'")
            self.nodes[node.id] = node
        self._validate_targets()

    def _validate_targets(self) -> None:
        for node in self.nodes.values():
            for target in node.targets or ():
                if target not in self.nodes:
                    raise TaskGraphError(f"Node '{node.id}' declares unknown target '{target}'")

    def _allowed_targets(self, node: TaskGraphNode[StateT]) -> Sequence[str]:
        return list(node.targets) if node.targets is not None else list(self.nodes)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    async def run(
        self,
        start_node_id: str,
        state: StateT,
        *,
        is_cancelled: CancelCheck = lambda: False,
        on_transition: TransitionHook | None = None,
        visit_count: Mapping[str, int] | None = None,
    ) -> TaskGraphContext:
        if start_node_id not in self.nodes:
            raise TaskGraphError(f"Task graph node not found: {start_node_id}")

        workflow = self._compile(state, is_cancelled, on_transition)
        initial: _Cursor = {
            "current": start_node_id,
            "visits": dict(visit_count or {}),
            "cancelled": False,
        }
        recursion_limit = sum(node.visit_cap for node in self.nodes.values()) + len(self.nodes) + 5
        final: _Cursor = await workflow.ainvoke(initial, config={"recursion_limit": recursion_limit})
        return TaskGraphContext(
            current_node_id=final.get("current"),
            visit_count=dict(final.get("visits") or {}),
            cancelled=bool(final.get("cancelled")),
        )

    def _compile(
        self,
        state: StateT,
        is_cancelled: CancelCheck,
        on_transition: TransitionHook | None,
    ):
        graph = StateGraph(_Cursor)
        for node in self.nodes.values():
            graph.add_node(node.id, self._make_step(node, state, is_cancelled, on_transition))

        def route(cursor: _Cursor) -> str:
            if cursor.get("cancelled"):
                return END
            return cursor.get("current") or END

        graph.add_conditional_edges(START, route, {**{node_id: node_id for node_id in self.nodes}, END: END})
        for node in self.nodes.values():
            path_map = {target: target for target in self._allowed_targets(node)}
            path_map[END] = END
            graph.add_conditional_edges(node.id, route, path_map)
        return graph.compile()

    def _make_step(
        self,
        node: TaskGraphNode[StateT],
        state: StateT,
        is_cancelled: CancelCheck,
        on_transition: TransitionHook | None,
    ):
        allowed = set(self._allowed_targets(node))

        async def step(cursor: _Cursor) -> _Cursor:
            if is_cancelled():
                logger.info("Task graph cancelled before node '%s'", node.id)
                return {"current": node.id, "cancelled": True}

            visits = dict(cursor.get("visits") or {})
            visits[node.id] = visits.get(node.id, 0) + 1
            if visits[node.id] > node.visit_cap:
                raise TaskGraphLoopError(
                    f"Task graph node '{node.id}' exceeded max visits ({node.visit_cap})"
                )

            logger.debug("Running task graph node '%s' (visit %s)", node.id, visits[node.id])
            await node.run(state)
            next_id = node.next(state)
            if next_id is not None and next_id not in allowed:
                raise TaskGraphError(f"Node '{node.id}' transitioned to unknown node '{next_id}'")

            if on_transition is not None:
                await on_transition(node.id, next_id, visits)
            return {"current": next_id, "visits": visits}

        step.__name__ = f"step_{node.id}"
        return step


async def run_task_graph(
    nodes: Sequence[TaskGraphNode[StateT]],
    start_node_id: str,
    state: StateT,
    *,
    is_cancelled: CancelCheck = lambda: False,
    on_transition: TransitionHook | None = None,
) -> TaskGraphContext:
    """Convenience wrapper mirroring :meth:`TaskGraph.run`."""

    return await TaskGraph(nodes).run(
        start_node_id,
        state,
        is_cancelled=is_cancelled,
        on_transition=on_transition,
    )
