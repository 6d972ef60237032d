# tests/execution/test_loop_controller.py
# coding: utf-8
"""
Тесты для SelfCorrectionLoopController.
Проверяют:
- передачу iteration_context / previous_result / next_instruction между итерациями;
- завершение в пределах бюджета и IterationBudgetExceededError на итерации budget+1;
- обращение к агенту-производителю (реальный StaticCodeAgent и Mock).
"""
import pytest
from unittest.mock import Mock

from plangraph.common.errors import IterationBudgetExceededError, VariantExhaustedError
from plangraph.contract.validator import ContractValidator
from plangraph.execution.loop_controller import LoopState, SelfCorrectionLoopController
from plangraph.execution.variant_selector import VariantSelector
from plangraph.model.agent_result import AgentResult
from plangraph.model.models import CodeVariant, StepNode
from plangraph.runner.sandbox import SandboxedCodeRunner

REFINE = (
    "if iteration < 3:\n"
    '    result = {"call_self": True, "next_instruction": "уточнить",\n'
    '              "iteration_context": {"seen": iteration}, "partial_1A": iteration}\n'
    "else:\n"
    '    result = {"total_1A": iteration_context["seen"] * 10 + previous_result["partial_1A"],\n'
    '              "hint_1A": instruction}\n'
)

ALWAYS_CONTINUE = 'result = {"call_self": True}'


@pytest.fixture
def selector(workdir):
    runner = SandboxedCodeRunner({}, timeout_s=1.0, memory_limit_mb=0)
    return VariantSelector(runner, ContractValidator(), str(workdir))


# --- Тест 1: цикл завершается и передаёт контекст ---
def test_loop_threads_context_between_iterations(selector, control_registry):
    loop = SelfCorrectionLoopController(selector, control_registry, budget=5)
    step = StepNode(id="1", writes=["total"], variants=[CodeVariant(id="A", code=REFINE)])

    outcome = loop.run(step)

    assert outcome.state == LoopState.COMPLETED
    assert outcome.iterations == 3
    assert outcome.selection.report.accepted == {"total": 22}
    # instruction последней итерации: next_instruction предыдущей
    assert outcome.selection.outcome.mapping["hint_1A"] == "уточнить"
    assert [t.continuation for t in outcome.trace] == [True, True, False]
    assert outcome.trace[0].next_instruction == "уточнить"
    assert outcome.trace[0].iteration_context == {"seen": 1}
    assert len(outcome.executed) == 3


# --- Тест 2: бюджет итераций ---
def test_budget_exceeded_at_budget_plus_one(selector, control_registry):
    loop = SelfCorrectionLoopController(selector, control_registry, budget=2)
    step = StepNode(id="1", writes=["total"], variants=[CodeVariant(id="A", code=ALWAYS_CONTINUE)])

    with pytest.raises(IterationBudgetExceededError) as exc:
        loop.run(step)

    assert exc.value.iteration == 3
    assert exc.value.budget == 2
    assert len(exc.value.executed_variants) == 2


def test_step_budget_override(selector, control_registry):
    loop = SelfCorrectionLoopController(selector, control_registry, budget=5)
    step = StepNode(id="1", writes=["total"], max_iterations=1,
                    variants=[CodeVariant(id="A", code=ALWAYS_CONTINUE)])

    with pytest.raises(IterationBudgetExceededError) as exc:
        loop.run(step)
    assert exc.value.iteration == 2


def test_step_without_continuation_runs_once(selector, control_registry):
    loop = SelfCorrectionLoopController(selector, control_registry)
    step = StepNode(id="1", writes=["total"], variants=[CodeVariant(id="A", code='result = {"total_1A": 1}')])

    outcome = loop.run(step)
    assert outcome.iterations == 1
    assert outcome.trace[0].continuation is False


# --- Тест 3: агент-производитель (Mock) ---
def make_registry(result):
    agent = Mock()
    agent.execute_operation.return_value = result
    registry = Mock()
    registry.instantiate_agent.return_value = agent
    return registry, agent


def test_producer_supplies_variants_for_first_iteration(selector):
    registry, agent = make_registry(AgentResult.ok(
        stage="variant_production",
        output={"variants": [{"id": "A", "code": 'result = {"total_1A": 5}'}]},
    ))
    loop = SelfCorrectionLoopController(selector, registry, tools_snapshot={"fetch": {"max_args": 1}})
    step = StepNode(id="1", writes=["total"], instruction="посчитать", agent="CustomAgent")

    outcome = loop.run(step, completed_steps=["0"])

    assert outcome.selection.report.accepted == {"total": 5}
    registry.instantiate_agent.assert_called_once_with("CustomAgent", control=True)
    operation = agent.execute_operation.call_args.args[0]
    params = agent.execute_operation.call_args.kwargs["params"]
    assert operation == "produce_variants"
    assert params["iteration"] == 1
    assert params["instruction"] == "посчитать"
    assert params["completed_steps"] == ["0"]
    assert params["tools"] == {"fetch": {"max_args": 1}}


def test_producer_error_exhausts_step(selector):
    registry, _ = make_registry(AgentResult.error("нет вариантов", stage="variant_production"))
    loop = SelfCorrectionLoopController(selector, registry)

    with pytest.raises(VariantExhaustedError) as exc:
        loop.run(StepNode(id="1", writes=["total"]))
    assert exc.value.failures[0]["kind"] == "ProducerError"
    assert "нет вариантов" in exc.value.failures[0]["message"]


def test_producer_exception_exhausts_step(selector):
    registry = Mock()
    registry.instantiate_agent.side_effect = KeyError("Agent 'Missing' not found")
    loop = SelfCorrectionLoopController(selector, registry)

    with pytest.raises(VariantExhaustedError):
        loop.run(StepNode(id="1", writes=["total"], agent="Missing"))


def test_invalid_budget(selector):
    with pytest.raises(ValueError):
        SelfCorrectionLoopController(selector, None, budget=0)
