# tests/execution/test_variant_selector.py
# coding: utf-8
"""
Тесты для VariantSelector: упорядоченный fallback с одной точкой фиксации.
"""
import pytest

from plangraph.common.errors import PlanValidationError, VariantExhaustedError
from plangraph.contract.validator import ContractValidator
from plangraph.execution.variant_selector import VariantSelector
from plangraph.model.models import CodeVariant, StepNode
from plangraph.runner.sandbox import SandboxedCodeRunner

FAILS = 'raise ValueError("boom")'
SUCCEEDS = 'result = {"total_1B": 42}'


def make_selector(workdir, policy="keep"):
    runner = SandboxedCodeRunner({}, timeout_s=1.0, memory_limit_mb=0)
    return VariantSelector(runner, ContractValidator(), str(workdir), side_effect_policy=policy)


# --- Тест 1: [падает, успешен] → фиксируется второй ---
def test_fallback_commits_second_variant(workdir):
    step = StepNode(id="1", writes=["total"], variants=[
        CodeVariant(id="A", code=FAILS),
        CodeVariant(id="B", code=SUCCEEDS),
    ])
    selection = make_selector(workdir).select(step)

    assert selection.variant.id == "B"
    assert selection.report.accepted == {"total": 42}
    assert [v.id for v in selection.executed] == ["A", "B"]
    assert selection.executed[0].record.status == "error"
    assert selection.executed[0].record.error_kind == "RunnerFault"
    assert selection.executed[1].record.status == "ok"
    assert selection.failures == [
        {"variant_id": "A", "iteration": 1, "kind": "RunnerFault", "message": selection.failures[0]["message"]}
    ]
    assert not selection.continuation


# --- Тест 2: после успешного варианта остальные не исполняются ---
def test_first_success_stops_execution(workdir):
    step = StepNode(id="1", writes=["total"], variants=[
        CodeVariant(id="A", code='result = {"total_1A": 1}'),
        CodeVariant(id="B", code=FAILS),
    ])
    selection = make_selector(workdir).select(step)
    assert selection.variant.id == "A"
    assert [v.id for v in selection.executed] == ["A"]


# --- Тест 3: все варианты упали ---
def test_all_variants_fail(workdir):
    step = StepNode(id="1", writes=["total"], variants=[
        CodeVariant(id="A", code=FAILS),
        CodeVariant(id="B", code="x = 1"),
        CodeVariant(id="C", code='result = {"total_1C": None}'),
    ])
    with pytest.raises(VariantExhaustedError) as exc:
        make_selector(workdir).select(step)

    kinds = [f["kind"] for f in exc.value.failures]
    assert kinds == ["RunnerFault", "ContractViolationError", "ContractViolationError"]
    assert [v.id for v in exc.value.executed_variants] == ["A", "B", "C"]
    assert all(v.record.status == "error" for v in exc.value.executed_variants)


def test_step_without_variants(workdir):
    with pytest.raises(PlanValidationError):
        make_selector(workdir).select(StepNode(id="1", writes=["total"]))


# --- Тест 4: политика побочных эффектов ---
def test_keep_policy_leaves_failed_variant_files(workdir):
    step = StepNode(id="1", writes=["total"], variants=[
        CodeVariant(id="A", code='write_file("tmp.txt", "partial")\nraise ValueError("boom")'),
        CodeVariant(id="B", code=SUCCEEDS),
    ])
    make_selector(workdir, policy="keep").select(step)
    assert (workdir / "tmp.txt").read_text(encoding="utf-8") == "partial"


def test_rollback_policy_restores_files(workdir):
    (workdir / "data.txt").write_text("original", encoding="utf-8")
    step = StepNode(id="1", writes=["total"], variants=[
        CodeVariant(id="A", code=(
            'write_file("data.txt", "broken")\n'
            'write_file("new.txt", "junk")\n'
            'raise ValueError("boom")'
        )),
        CodeVariant(id="B", code=SUCCEEDS),
    ])
    make_selector(workdir, policy="rollback").select(step)
    assert (workdir / "data.txt").read_text(encoding="utf-8") == "original"
    assert not (workdir / "new.txt").exists()


def test_unknown_policy():
    with pytest.raises(ValueError):
        VariantSelector(SandboxedCodeRunner({}), ContractValidator(), ".", side_effect_policy="ignore")
