# tests/graph/test_scheduler.py
# coding: utf-8
"""
Тесты для PlanGraphScheduler: валидация графа, готовность, каскадный пропуск, слияние.
"""
import pytest

from plangraph.common.errors import GraphCycleError, PlanValidationError
from plangraph.graph.scheduler import PlanGraphScheduler
from plangraph.model.models import Edge, PlanGraph, StepNode


def step(step_id, *writes):
    return StepNode(id=step_id, writes=list(writes))


def chain_graph():
    """1 → 2 → 3, плюс независимый 10."""
    return PlanGraph.from_steps(
        [step("1", "a"), step("2", "b"), step("3", "c"), step("10", "d")],
        [Edge(source="1", target="2"), Edge(source="2", target="3")],
    )


# --- Тест 1: валидация при submit ---
def test_cycle_rejected():
    graph = PlanGraph.from_steps(
        [step("1", "a"), step("2", "b"), step("3", "c")],
        [Edge(source="1", target="2"), Edge(source="2", target="3"), Edge(source="3", target="1")],
    )
    with pytest.raises(GraphCycleError) as exc:
        PlanGraphScheduler(graph)
    assert exc.value.cycle[0] == exc.value.cycle[-1]
    assert set(exc.value.cycle) == {"1", "2", "3"}


def test_edge_to_unknown_step_rejected():
    graph = PlanGraph.from_steps([step("1", "a")], [Edge(source="1", target="9")])
    with pytest.raises(PlanValidationError):
        PlanGraphScheduler(graph)


def test_edge_variables_must_be_declared_by_source():
    graph = PlanGraph.from_steps(
        [step("1", "a"), step("2", "b")],
        [Edge(source="1", target="2", variables=["zzz"])],
    )
    with pytest.raises(PlanValidationError):
        PlanGraphScheduler(graph)


def test_edge_from_step_without_outputs_rejected():
    graph = PlanGraph.from_steps([step("1"), step("2", "b")], [Edge(source="1", target="2")])
    with pytest.raises(PlanValidationError):
        PlanGraphScheduler(graph)


def test_shared_write_without_dependency_rejected():
    graph = PlanGraph.from_steps([step("1", "report"), step("2", "report")])
    with pytest.raises(PlanValidationError):
        PlanGraphScheduler(graph)

    # С зависимостью 1 → 2 перезапись допустима
    ordered = PlanGraph.from_steps(
        [step("1", "report"), step("2", "report")], [Edge(source="1", target="2")]
    )
    assert PlanGraphScheduler(ordered).step_ids() == ["1", "2"]


def test_edge_variables_default_to_source_writes():
    scheduler = PlanGraphScheduler(PlanGraph.from_steps(
        [step("1", "a", "b"), step("2", "c")], [Edge(source="1", target="2")]
    ))
    assert scheduler.snapshot().edges[0].variables == ["a", "b"]


# --- Тест 2: порядок и готовность ---
def test_ready_steps_natural_order():
    scheduler = PlanGraphScheduler(chain_graph())
    assert scheduler.ready_steps() == ["1", "10"]
    assert scheduler.ready_steps(limit=1) == ["1"]
    assert scheduler.topological_order() == ["1", "2", "3", "10"]


def test_dependent_ready_after_success():
    scheduler = PlanGraphScheduler(chain_graph())
    scheduler.mark_running("1")
    assert scheduler.ready_steps() == ["10"]
    scheduler.mark_succeeded("1", committed_variant="A", iterations=1)
    assert scheduler.ready_steps() == ["2", "10"]
    assert scheduler.upstream_closure("3") == {"1", "2"}


# --- Тест 3: каскадный пропуск ---
def test_skip_cascade_one_level_per_tick():
    scheduler = PlanGraphScheduler(chain_graph())
    scheduler.mark_running("1")
    scheduler.mark_failed("1", error_kind="VariantExhaustedError", error="все варианты упали")

    assert scheduler.apply_skip_cascade() == ["2"]
    assert scheduler.get_step("3").status == "pending"
    assert scheduler.apply_skip_cascade() == ["3"]
    assert scheduler.apply_skip_cascade() == []

    skipped = scheduler.get_step("3")
    assert skipped.status == "skipped"
    assert skipped.error_kind == "VariantExhaustedError"
    # Независимая ветка не затронута
    assert scheduler.ready_steps() == ["10"]


def test_independent_edge_does_not_cascade():
    graph = PlanGraph.from_steps(
        [step("1", "a"), step("2", "b")],
        [Edge(source="1", target="2", independent=True)],
    )
    scheduler = PlanGraphScheduler(graph)
    assert scheduler.ready_steps() == ["1"]
    scheduler.mark_running("1")
    scheduler.mark_failed("1", error_kind="RunnerFault", error="boom")

    assert scheduler.apply_skip_cascade() == []
    assert scheduler.ready_steps() == ["2"]


def test_complete_and_blocked():
    scheduler = PlanGraphScheduler(PlanGraph.from_steps([step("1", "a")]))
    assert not scheduler.is_complete()
    assert not scheduler.is_blocked()
    scheduler.mark_running("1")
    scheduler.mark_succeeded("1")
    assert scheduler.is_complete()


# --- Тест 4: переходы статусов ---
def test_invalid_transition():
    scheduler = PlanGraphScheduler(PlanGraph.from_steps([step("1", "a")]))
    with pytest.raises(PlanValidationError):
        scheduler.mark_succeeded("1")
    with pytest.raises(KeyError):
        scheduler.mark_running("404")


def test_reset_running():
    scheduler = PlanGraphScheduler(chain_graph())
    scheduler.mark_running("1")
    scheduler.mark_running("10")
    assert scheduler.reset_running() == ["1", "10"]
    assert scheduler.ready_steps() == ["1", "10"]


# --- Тест 5: слияние при продолжении плана ---
def test_submit_merges_continuation():
    scheduler = PlanGraphScheduler(PlanGraph.from_steps([step("1", "a"), step("2", "b")]))
    scheduler.mark_running("1")
    scheduler.mark_succeeded("1", committed_variant="A")

    continuation = PlanGraph.from_steps(
        [step("1", "zzz"), step("2", "b2"), step("3", "c")],
        [Edge(source="2", target="3")],
    )
    merged = scheduler.submit(continuation)

    # Завершённый шаг сохранён, pending заменён, новый добавлен
    assert merged.steps["1"].writes == ["a"]
    assert merged.steps["1"].status == "succeeded"
    assert merged.steps["2"].writes == ["b2"]
    assert merged.steps["3"].status == "pending"
    assert [(e.source, e.target) for e in merged.edges] == [("2", "3")]


def test_failed_merge_leaves_graph_untouched():
    scheduler = PlanGraphScheduler(PlanGraph.from_steps([step("1", "a"), step("2", "b")]))
    bad = PlanGraph.from_steps([], [Edge(source="1", target="2"), Edge(source="2", target="1")])
    with pytest.raises(GraphCycleError):
        scheduler.submit(bad)
    assert scheduler.snapshot().edges == []
