"""Dependency graph: building, cycle detection and deterministic ordering.

The graph is always rebuilt from the current task set; nothing here mutates
a graph after construction. Whenever several nodes are eligible at once
(DFS start nodes, Kahn's ready set) they are taken in ascending id order,
so the same task set always yields the same order.
"""

from __future__ import annotations

import heapq
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field

from planstack import log
from planstack.errors import GraphCycleError, TaskNotInStackError
from planstack.models import Stack
from planstack.tasks.model import Task


@dataclass
class GraphNode:
    id: str
    depends_on: list[str] = field(default_factory=list)
    dependents: list[str] = field(default_factory=list)


Graph = dict[str, GraphNode]


@dataclass
class SortResult:
    order: list[str]
    has_cycle: bool = False
    cycle_nodes: list[str] = field(default_factory=list)


# ── building ─────────────────────────────────────────────────────────


def _build_from_edges(
    edges: Mapping[str, Iterable[str]],
    available_ids: Iterable[str] | None,
) -> Graph:
    graph: Graph = {tid: GraphNode(id=tid) for tid in edges}
    available = set(graph) if available_ids is None else set(available_ids) & set(graph)

    for tid, refs in edges.items():
        node = graph[tid]
        seen: set[str] = set()
        for ref in refs:
            if ref not in available:
                if ref not in seen:
                    log.debug(f"{tid}: dropping reference to {ref} (not in stack)")
                seen.add(ref)
                continue
            if ref in seen:
                continue
            seen.add(ref)
            node.depends_on.append(ref)
            graph[ref].dependents.append(tid)

    return graph


def build_graph(tasks: Iterable[Task], available_ids: Iterable[str] | None = None) -> Graph:
    """Build a graph from tasks and their raw ``references``.

    References to ids outside *available_ids* (default: the tasks' own ids)
    are dropped silently. Duplicate references collapse to one edge.
    """
    edges: dict[str, list[str]] = {}
    for task in tasks:
        edges[task.id] = list(task.references)
    return _build_from_edges(edges, available_ids)


def graph_from_stack(stack: Stack) -> Graph:
    """Rebuild the graph of a persisted stack from its resolved edges."""
    return _build_from_edges({t.task_id: t.depends_on for t in stack.tasks}, None)


def find_roots(graph: Graph) -> list[str]:
    """Ids with no intra-stack dependency, ascending."""
    return sorted(tid for tid, node in graph.items() if not node.depends_on)


# ── cycle detection ──────────────────────────────────────────────────


def detect_cycle(graph: Graph) -> list[str]:
    """Return a cyclic path ``[a, b, ..., a]`` or ``[]`` if the graph is acyclic.

    Each consecutive pair ``(x, y)`` in the path is an edge ``x -> y`` meaning
    *x depends on y*. A self-dependency is reported as ``[x, x]``.

    Iterative DFS with an explicit frame stack; each frame is an iterator over
    the node's sorted dependencies, so depth is bounded only by memory.
    """
    visited: set[str] = set()

    for start in sorted(graph):
        if start in visited:
            continue

        visited.add(start)
        path: list[str] = [start]
        on_path: set[str] = {start}
        frames: list[Iterator[str]] = [iter(sorted(graph[start].depends_on))]

        while frames:
            nxt = next(frames[-1], None)
            if nxt is None:
                frames.pop()
                on_path.discard(path.pop())
                continue
            if nxt not in graph:
                continue
            if nxt in on_path:
                return path[path.index(nxt):] + [nxt]
            if nxt in visited:
                continue
            visited.add(nxt)
            path.append(nxt)
            on_path.add(nxt)
            frames.append(iter(sorted(graph[nxt].depends_on)))

    return []


# ── ordering ─────────────────────────────────────────────────────────


def topological_sort(graph: Graph) -> SortResult:
    """Kahn's algorithm with lexicographic tie-breaking.

    Refuses (``has_cycle=True``, empty order) when :func:`detect_cycle`
    finds a cycle.
    """
    cycle = detect_cycle(graph)
    if cycle:
        return SortResult(order=[], has_cycle=True, cycle_nodes=cycle)

    in_degree: dict[str, int] = {
        tid: sum(1 for dep in node.depends_on if dep in graph)
        for tid, node in graph.items()
    }
    ready = [tid for tid, degree in in_degree.items() if degree == 0]
    heapq.heapify(ready)

    order: list[str] = []
    while ready:
        tid = heapq.heappop(ready)
        order.append(tid)
        for dependent in graph[tid].dependents:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                heapq.heappush(ready, dependent)

    return SortResult(order=order)


def execution_order(stack: Stack, from_task: str | None = None) -> list[str]:
    """Return the stack's execution order, optionally starting at *from_task*.

    Raises :class:`GraphCycleError` or :class:`TaskNotInStackError`.
    """
    result = topological_sort(graph_from_stack(stack))
    if result.has_cycle:
        raise GraphCycleError(result.cycle_nodes)

    if from_task is None:
        return result.order
    if from_task not in result.order:
        raise TaskNotInStackError(from_task, stack.name)
    return result.order[result.order.index(from_task):]
