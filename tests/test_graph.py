"""Tests for planstack.graph — building, cycle detection, deterministic ordering."""

from __future__ import annotations

import itertools

import pytest

from planstack.errors import GraphCycleError, TaskNotInStackError
from planstack.graph import (
    build_graph,
    detect_cycle,
    execution_order,
    find_roots,
    graph_from_stack,
    topological_sort,
)
from planstack.models import Stack, StackTask
from planstack.tasks.model import Task


# ── Helpers ─────────────────────────────────────────────────────────


def _t(id: str, *refs: str) -> Task:
    return Task(id=id, references=list(refs))


def _is_valid_order(graph, order: list[str]) -> bool:
    """Every dependency precedes its dependent and every node appears once."""
    position = {tid: i for i, tid in enumerate(order)}
    if len(position) != len(order) or set(position) != set(graph):
        return False
    return all(
        position[dep] < position[tid]
        for tid, node in graph.items()
        for dep in node.depends_on
    )


def _edges(path: list[str]) -> list[tuple[str, str]]:
    return list(zip(path, path[1:]))


def _assert_cycle_in_graph(graph, cycle: list[str]) -> None:
    assert cycle, "expected a cycle"
    assert cycle[0] == cycle[-1]
    for src, dst in _edges(cycle):
        assert dst in graph[src].depends_on


# ═══════════════════════════════════════════════════════════════════
#  Graph Builder
# ═══════════════════════════════════════════════════════════════════


class TestBuildGraph:
    def test_forward_and_reverse_edges(self):
        graph = build_graph([_t("A"), _t("B", "A"), _t("C", "A", "B")])

        assert graph["A"].depends_on == []
        assert graph["B"].depends_on == ["A"]
        assert graph["C"].depends_on == ["A", "B"]
        assert sorted(graph["A"].dependents) == ["B", "C"]
        assert graph["B"].dependents == ["C"]
        assert graph["C"].dependents == []

    def test_dangling_reference_is_dropped_silently(self):
        graph = build_graph([_t("A", "missing"), _t("B", "A", "also-missing")])

        assert graph["A"].depends_on == []
        assert graph["B"].depends_on == ["A"]
        assert "missing" not in graph

    def test_available_ids_restricts_edges(self):
        graph = build_graph([_t("A"), _t("B", "A")], available_ids={"B"})
        assert graph["B"].depends_on == []
        assert graph["A"].dependents == []

    def test_available_id_without_node_is_ignored(self):
        graph = build_graph([_t("B", "ghost")], available_ids={"B", "ghost"})
        assert graph["B"].depends_on == []

    def test_duplicate_references_collapse(self):
        graph = build_graph([_t("A"), _t("B", "A", "A")])
        assert graph["B"].depends_on == ["A"]
        assert graph["A"].dependents == ["B"]

    def test_edges_never_leave_the_task_set(self):
        tasks = [_t("A", "x"), _t("B", "A", "y"), _t("C", "B", "z", "A")]
        graph = build_graph(tasks)
        ids = set(graph)
        for node in graph.values():
            assert set(node.depends_on) <= ids
            assert set(node.dependents) <= ids

    def test_is_pure(self):
        tasks = [_t("A"), _t("B", "A")]
        first = build_graph(tasks)
        second = build_graph(tasks)
        assert first == second
        assert tasks[1].references == ["A"]

    def test_find_roots(self):
        graph = build_graph([_t("C"), _t("B", "C"), _t("A"), _t("D", "missing")])
        assert find_roots(graph) == ["A", "C", "D"]

    def test_graph_from_stack(self):
        stack = Stack(
            name="s",
            tasks=[StackTask("A"), StackTask("B", ["A", "gone"])],
        )
        graph = graph_from_stack(stack)
        assert graph["B"].depends_on == ["A"]
        assert graph["A"].dependents == ["B"]


# ═══════════════════════════════════════════════════════════════════
#  Cycle Detector
# ═══════════════════════════════════════════════════════════════════


class TestDetectCycle:
    def test_acyclic(self):
        graph = build_graph([_t("A"), _t("B", "A"), _t("C", "B")])
        assert detect_cycle(graph) == []

    def test_self_dependency_is_cycle_of_length_one(self):
        graph = build_graph([_t("A", "A")])
        assert detect_cycle(graph) == ["A", "A"]

    def test_two_node_cycle(self):
        graph = build_graph([_t("A", "B"), _t("B", "A")])
        cycle = detect_cycle(graph)
        _assert_cycle_in_graph(graph, cycle)
        assert set(cycle) == {"A", "B"}

    def test_reports_only_the_cyclic_segment(self):
        # entry -> x -> y -> z -> x
        graph = build_graph([
            _t("entry", "x"),
            _t("x", "y"),
            _t("y", "z"),
            _t("z", "x"),
        ])
        cycle = detect_cycle(graph)
        _assert_cycle_in_graph(graph, cycle)
        assert "entry" not in cycle
        assert len(cycle) == 4

    def test_cycle_in_second_component(self):
        graph = build_graph([
            _t("a1"),
            _t("a2", "a1"),
            _t("z1", "z2"),
            _t("z2", "z3"),
            _t("z3", "z1"),
        ])
        cycle = detect_cycle(graph)
        _assert_cycle_in_graph(graph, cycle)
        assert set(cycle) == {"z1", "z2", "z3"}

    def test_shared_dependency_is_not_a_cycle(self):
        graph = build_graph([_t("A"), _t("B", "A"), _t("C", "A"), _t("D", "B", "C")])
        assert detect_cycle(graph) == []

    def test_deterministic(self):
        tasks = [_t("A", "B"), _t("B", "C"), _t("C", "A"), _t("D", "D")]
        assert detect_cycle(build_graph(tasks)) == detect_cycle(build_graph(list(reversed(tasks))))

    def test_long_chain_does_not_hit_recursion_limit(self):
        n = 20_000
        tasks = [_t("n00000")] + [_t(f"n{i:05d}", f"n{i - 1:05d}") for i in range(1, n)]
        graph = build_graph(tasks)
        assert detect_cycle(graph) == []

    def test_long_cycle_detected(self):
        n = 20_000
        tasks = [_t(f"n{i:05d}", f"n{(i + 1) % n:05d}") for i in range(n)]
        graph = build_graph(tasks)
        cycle = detect_cycle(graph)
        _assert_cycle_in_graph(graph, cycle)
        assert len(cycle) == n + 1


# ═══════════════════════════════════════════════════════════════════
#  Topological Sorter
# ═══════════════════════════════════════════════════════════════════


class TestTopologicalSort:
    def test_diamond(self):
        graph = build_graph([_t("D", "B", "C"), _t("C", "A"), _t("B", "A"), _t("A")])
        result = topological_sort(graph)

        assert not result.has_cycle
        assert result.order[0] == "A"
        assert result.order[-1] == "D"
        assert result.order in (["A", "B", "C", "D"], ["A", "C", "B", "D"])

    def test_lexicographic_tie_break(self):
        graph = build_graph([_t("c"), _t("a"), _t("b"), _t("d", "c")])
        assert topological_sort(graph).order == ["a", "b", "c", "d"]

    def test_tie_break_after_dequeue(self):
        # z is ready first; after it, y2 and y1 become ready together.
        graph = build_graph([_t("y2", "z"), _t("y1", "z"), _t("z")])
        assert topological_sort(graph).order == ["z", "y1", "y2"]

    def test_independent_of_input_order(self):
        tasks = [_t("A"), _t("B", "A"), _t("C", "A"), _t("D", "B", "C"), _t("E")]
        orders = {
            tuple(topological_sort(build_graph(list(perm))).order)
            for perm in itertools.permutations(tasks)
        }
        assert len(orders) == 1

    def test_same_graph_twice_same_order(self):
        graph = build_graph([_t("b", "a"), _t("a"), _t("c", "a"), _t("x")])
        assert topological_sort(graph).order == topological_sort(graph).order

    def test_cycle_refused(self):
        graph = build_graph([_t("A"), _t("B", "C"), _t("C", "B")])
        result = topological_sort(graph)

        assert result.has_cycle
        assert result.order == []
        _assert_cycle_in_graph(graph, result.cycle_nodes)

    def test_self_loop_refused(self):
        result = topological_sort(build_graph([_t("A", "A"), _t("B")]))
        assert result.has_cycle
        assert result.cycle_nodes == ["A", "A"]

    def test_dangling_reference_does_not_block(self):
        result = topological_sort(build_graph([_t("B", "missing"), _t("A", "B")]))
        assert result.order == ["B", "A"]

    def test_empty_graph(self):
        result = topological_sort({})
        assert result.order == []
        assert not result.has_cycle

    @pytest.mark.parametrize(
        "tasks",
        [
            [_t("a"), _t("b", "a"), _t("c", "b"), _t("d", "a", "c")],
            [_t("m", "k", "l"), _t("k"), _t("l", "k"), _t("n", "m"), _t("o")],
            [_t(f"t{i}", *(f"t{j}" for j in range(i) if (i * j) % 3 == 1)) for i in range(12)],
        ],
    )
    def test_order_is_valid_linearization(self, tasks):
        graph = build_graph(tasks)
        order = topological_sort(graph).order
        assert _is_valid_order(graph, order)

    def test_order_check_rejects_bad_orders(self):
        graph = build_graph([_t("A"), _t("B", "A")])
        assert not _is_valid_order(graph, ["B", "A"])
        assert not _is_valid_order(graph, ["A"])


class TestExecutionOrder:
    def _stack(self) -> Stack:
        return Stack(
            name="demo",
            tasks=[
                StackTask("A"),
                StackTask("B", ["A"]),
                StackTask("C", ["A"]),
                StackTask("D", ["B", "C"]),
            ],
        )

    def test_full_order(self):
        assert execution_order(self._stack()) == ["A", "B", "C", "D"]

    def test_from_task_truncates(self):
        assert execution_order(self._stack(), "C") == ["C", "D"]

    def test_from_unknown_task_raises(self):
        with pytest.raises(TaskNotInStackError):
            execution_order(self._stack(), "nope")

    def test_cycle_raises_with_path(self):
        stack = Stack(name="loop", tasks=[StackTask("A", ["B"]), StackTask("B", ["A"])])
        with pytest.raises(GraphCycleError) as exc_info:
            execution_order(stack)
        assert exc_info.value.cycle[0] == exc_info.value.cycle[-1]
        assert "->" in str(exc_info.value)
