# plangraph/execution/loop_controller.py
# coding: utf-8
"""
SelfCorrectionLoopController — ограниченный цикл самокоррекции шага.

Состояния:
    idle → awaiting_iteration → ... → completed | aborted

Правила:
- Шаг входит в awaiting_iteration, когда принятый вариант вернул call_self=True
  (опционально next_instruction и iteration_context).
- Следующая итерация: агент-производитель шага (CONTROL_REGISTRY, по умолчанию
  StaticCodeAgent) получает результаты предыдущей итерации и выдаёт варианты,
  которые снова проходят через VariantSelector.
- completed: вариант итерации не просит продолжения и mapping удовлетворяет writes.
- aborted: номер следующей итерации превысил бюджет → IterationBudgetExceededError.
- Агент-производитель вернул ошибку или пустой список → VariantExhaustedError.

Фиксация в хранилище — одна, после completed (делает Engine). Выходы промежуточных
итераций передаются только в previous_result следующей итерации.
"""
from __future__ import annotations
import enum
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from plangraph.common.errors import IterationBudgetExceededError, VariantExhaustedError
from plangraph.contract.validator import RESERVED_KEYS
from plangraph.execution.variant_selector import SelectionResult, VariantSelector
from plangraph.model.models import MAX_VARIANTS, CodeVariant, IterationContext, StepNode
from plangraph.model.agent_result import AgentResult

LOG = logging.getLogger(__name__)
LOG.addHandler(logging.NullHandler())

PRODUCE_OPERATION = "produce_variants"


def _as_dict(value: Any) -> Dict[str, Any]:
    return dict(value) if isinstance(value, Mapping) else {}


def _as_text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


class LoopState(str, enum.Enum):
    IDLE = "idle"
    AWAITING_ITERATION = "awaiting_iteration"
    COMPLETED = "completed"
    ABORTED = "aborted"

    def __str__(self) -> str:
        return self.value


@dataclass
class IterationTrace:
    """Итог одной итерации (для StepResult)."""
    iteration: int
    variant_id: str
    continuation: bool
    next_instruction: Optional[str] = None
    iteration_context: Dict[str, Any] = field(default_factory=dict)
    executed: List[CodeVariant] = field(default_factory=list)


@dataclass
class LoopOutcome:
    step_id: str
    state: LoopState
    selection: SelectionResult
    iterations: int
    executed: List[CodeVariant] = field(default_factory=list)
    failures: List[Dict[str, Any]] = field(default_factory=list)
    trace: List[IterationTrace] = field(default_factory=list)


class SelfCorrectionLoopController:
    def __init__(
        self,
        selector: VariantSelector,
        agent_registry=None,
        *,
        default_agent: str = "StaticCodeAgent",
        budget: int = 5,
        tools_snapshot: Optional[Dict[str, Any]] = None,
    ):
        if budget < 1:
            raise ValueError("Бюджет итераций должен быть >= 1")
        self.selector = selector
        self.agent_registry = agent_registry
        self.default_agent = default_agent
        self.budget = budget
        self.tools_snapshot = tools_snapshot or {}

    def budget_for(self, step: StepNode) -> int:
        return step.max_iterations if step.max_iterations else self.budget

    # -----------------------------
    # Агент-производитель
    # -----------------------------
    def _produce(
        self,
        step: StepNode,
        ctx: IterationContext,
        completed_steps: List[str],
        failed_steps: List[str],
        failures: List[Dict[str, Any]],
        executed: List[CodeVariant],
    ) -> List[CodeVariant]:
        agent_name = step.agent or self.default_agent
        params = {
            "step_id": step.id,
            "instruction": step.instruction,
            "writes": list(step.writes),
            "variants": [{"id": v.id, "code": v.code} for v in step.variants],
            "iteration": ctx.iteration,
            "previous_result": dict(ctx.previous_result),
            "iteration_context": dict(ctx.values),
            "next_instruction": ctx.next_instruction,
            "completed_steps": list(completed_steps),
            "failed_steps": list(failed_steps),
            "tools": self.tools_snapshot,
        }

        def exhausted(reason: str) -> VariantExhaustedError:
            failure = {"variant_id": None, "iteration": ctx.iteration, "kind": "ProducerError", "message": reason}
            LOG.error("⛔ Шаг %s: агент %s не выдал вариантов: %s", step.id, agent_name, reason)
            return VariantExhaustedError(
                step.id, failures + [failure],
                message=f"Шаг {step.id}: агент {agent_name} не выдал вариантов для итерации {ctx.iteration}: {reason}",
                executed_variants=executed,
                iterations=ctx.iteration,
            )

        if self.agent_registry is None:
            raise exhausted("реестр агентов не настроен")
        try:
            agent = self.agent_registry.instantiate_agent(agent_name, control=True)
            result: AgentResult = agent.execute_operation(PRODUCE_OPERATION, params=params)
        except Exception as e:
            LOG.exception("Ошибка агента-производителя %s для шага %s", agent_name, step.id)
            raise exhausted(f"{type(e).__name__}: {e}") from e

        if result.status != "ok":
            raise exhausted(result.error or "агент вернул ошибку")
        raw = (result.output or {}).get("variants") if isinstance(result.output, dict) else None
        try:
            variants = [v if isinstance(v, CodeVariant) else CodeVariant(id=v["id"], code=v["code"]) for v in raw or []]
        except (KeyError, TypeError, ValueError) as e:
            raise exhausted(f"некорректный формат вариантов: {e}") from e
        if not variants or len(variants) > MAX_VARIANTS:
            raise exhausted(f"ожидалось от 1 до {MAX_VARIANTS} вариантов, получено {len(variants)}")
        LOG.info("🧩 Шаг %s: агент %s выдал %d вариантов (итерация %d)",
                 step.id, agent_name, len(variants), ctx.iteration)
        return variants

    # -----------------------------
    # Цикл
    # -----------------------------
    def run(
        self,
        step: StepNode,
        *,
        bindings: Optional[Dict[str, Any]] = None,
        existing_types: Optional[Dict[str, str]] = None,
        completed_steps: Iterable[str] = (),
        failed_steps: Iterable[str] = (),
    ) -> LoopOutcome:
        """
        Исполнить шаг до completed. Бросает VariantExhaustedError или
        IterationBudgetExceededError (в обоих есть executed_variants).
        """
        completed_steps = list(completed_steps)
        failed_steps = list(failed_steps)
        budget = self.budget_for(step)
        state = LoopState.IDLE
        ctx = IterationContext(step_id=step.id, iteration=1)
        executed: List[CodeVariant] = []
        failures: List[Dict[str, Any]] = []
        trace: List[IterationTrace] = []

        variants = list(step.variants)
        if not variants:
            variants = self._produce(step, ctx, completed_steps, failed_steps, failures, executed)

        while True:
            try:
                selection = self.selector.select(
                    step,
                    variants=variants,
                    bindings=bindings,
                    existing_types=existing_types,
                    iteration=ctx.iteration,
                    iteration_context=ctx.values,
                    previous_result=ctx.previous_result,
                    instruction=ctx.next_instruction,
                )
            except VariantExhaustedError as e:
                LOG.debug("Шаг %s: состояние %s -> %s", step.id, state, LoopState.ABORTED)
                raise VariantExhaustedError(
                    step.id, failures + e.failures,
                    executed_variants=executed + e.executed_variants,
                    iterations=ctx.iteration,
                ) from e

            executed.extend(selection.executed)
            failures.extend(selection.failures)
            control = selection.report.control
            trace.append(IterationTrace(
                iteration=ctx.iteration,
                variant_id=selection.variant.id,
                continuation=selection.continuation,
                next_instruction=_as_text(control.get("next_instruction")) if selection.continuation else None,
                iteration_context=_as_dict(control.get("iteration_context")) if selection.continuation else {},
                executed=list(selection.executed),
            ))

            if not selection.continuation:
                LOG.debug("Шаг %s: состояние %s -> %s", step.id, state, LoopState.COMPLETED)
                return LoopOutcome(
                    step_id=step.id,
                    state=LoopState.COMPLETED,
                    selection=selection,
                    iterations=ctx.iteration,
                    executed=executed,
                    failures=failures,
                    trace=trace,
                )

            state = LoopState.AWAITING_ITERATION
            next_iteration = ctx.iteration + 1
            if next_iteration > budget:
                LOG.error("⛔ Шаг %s: итерация %d превышает бюджет %d", step.id, next_iteration, budget)
                raise IterationBudgetExceededError(
                    step.id, next_iteration, budget, executed_variants=executed, failures=failures
                )

            ctx = IterationContext(
                step_id=step.id,
                iteration=next_iteration,
                values=_as_dict(control.get("iteration_context")),
                next_instruction=_as_text(control.get("next_instruction")),
                previous_result={k: v for k, v in selection.outcome.mapping.items() if k not in RESERVED_KEYS},
            )
            LOG.info("🔄 Шаг %s: самокоррекция, итерация %d/%d", step.id, ctx.iteration, budget)
            variants = self._produce(step, ctx, completed_steps, failed_steps, failures, executed)
