# plangraph/execution/variant_selector.py
# coding: utf-8
"""
VariantSelector — упорядоченный перебор вариантов кода шага с одной точкой фиксации.

Логика:
1. Варианты исполняются строго в объявленном порядке (A, B, C).
2. Вариант успешен, если SandboxedCodeRunner отработал без ошибки И ContractValidator
   принял его mapping.
3. Первый успешный вариант — единственный кандидат на фиксацию; остальные не исполняются.
4. Ошибки вариантов записываются в record варианта и не становятся терминальной ошибкой
   шага, если какой-то следующий вариант успешен.
5. Все варианты упали → VariantExhaustedError со списком ошибок каждого варианта.

Побочные эффекты упавших вариантов (файлы в рабочей директории) по политике:
- keep (по умолчанию) — остаются как есть;
- rollback — восстанавливаются по журналу WorkspaceSession.
"""
from __future__ import annotations
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from plangraph.common.errors import PlanValidationError, VariantError, VariantExhaustedError
from plangraph.contract.validator import RESERVED_KEYS, ContractValidator, ValidationReport
from plangraph.model.models import MAX_VARIANTS, CodeVariant, ExecutionRecord, StepNode
from plangraph.runner.sandbox import RunOutcome, SandboxedCodeRunner
from plangraph.runner.tool_value import ToolValue
from plangraph.runner.workspace import WorkspaceSession

LOG = logging.getLogger(__name__)
LOG.addHandler(logging.NullHandler())


def plain_value(value: Any) -> Any:
    """Значение для записи в историю: ToolValue заменяется на repr."""
    if isinstance(value, ToolValue):
        return repr(value)
    if isinstance(value, Mapping):
        return {k: plain_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [plain_value(v) for v in value]
    return value


def wants_continuation(mapping: Mapping) -> bool:
    """Вариант просит следующую итерацию только явным call_self=True."""
    return mapping.get("call_self") is True


@dataclass
class SelectionResult:
    step_id: str
    variant: CodeVariant
    report: ValidationReport
    outcome: RunOutcome
    iteration: int = 1
    executed: List[CodeVariant] = field(default_factory=list)
    failures: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def continuation(self) -> bool:
        return wants_continuation(self.outcome.mapping)


class VariantSelector:
    def __init__(
        self,
        runner: SandboxedCodeRunner,
        validator: ContractValidator,
        workdir: str,
        side_effect_policy: str = "keep",
    ):
        if side_effect_policy not in ("keep", "rollback"):
            raise ValueError(f"Неизвестная политика побочных эффектов: {side_effect_policy}")
        self.runner = runner
        self.validator = validator
        self.workdir = workdir
        self.side_effect_policy = side_effect_policy

    @staticmethod
    def check_variants(step_id: str, variants: List[CodeVariant]) -> None:
        if not variants:
            raise PlanValidationError(f"Шаг {step_id}: нет вариантов кода для исполнения")
        if len(variants) > MAX_VARIANTS:
            raise PlanValidationError(
                f"Шаг {step_id}: {len(variants)} вариантов, допускается не больше {MAX_VARIANTS}"
            )

    def select(
        self,
        step: StepNode,
        *,
        variants: Optional[List[CodeVariant]] = None,
        bindings: Optional[Dict[str, Any]] = None,
        existing_types: Optional[Dict[str, str]] = None,
        iteration: int = 1,
        iteration_context: Optional[Dict[str, Any]] = None,
        previous_result: Optional[Dict[str, Any]] = None,
        instruction: Any = None,
        allow_continuation: bool = True,
    ) -> SelectionResult:
        variants = list(step.variants if variants is None else variants)
        self.check_variants(step.id, variants)

        executed: List[CodeVariant] = []
        failures: List[Dict[str, Any]] = []

        for variant in variants:
            workspace = WorkspaceSession(self.workdir)
            try:
                outcome = self.runner.execute(
                    variant.code,
                    step_id=step.id,
                    variant_id=variant.id,
                    bindings=bindings,
                    workspace=workspace,
                    iteration=iteration,
                    iteration_context=iteration_context,
                    previous_result=previous_result,
                    instruction=step.instruction if instruction is None else instruction,
                )
                intermediate = allow_continuation and wants_continuation(outcome.mapping)
                report = self.validator.validate(
                    step.writes,
                    outcome.mapping,
                    step_id=step.id,
                    variant_id=variant.id,
                    existing_types=existing_types,
                    written_paths=outcome.written_paths,
                    require_complete=not intermediate,
                )
            except VariantError as e:
                failure = {
                    "variant_id": variant.id,
                    "iteration": iteration,
                    "kind": e.kind,
                    "message": e.message,
                }
                failures.append(failure)
                record = ExecutionRecord(
                    status="error",
                    error_kind=e.kind,
                    error=e.message,
                    diagnostics=plain_value({k: v for k, v in e.details.items() if k not in ("tool_calls", "printed")}),
                    tool_calls=e.details.get("tool_calls", []),
                    printed=e.details.get("printed", ""),
                    elapsed_s=e.details.get("elapsed_s", 0.0),
                    iteration=iteration,
                )
                executed.append(variant.with_record(record))
                LOG.warning("❌ Шаг %s, вариант %s (итерация %d): %s: %s",
                            step.id, variant.id, iteration, e.kind, e.message)
                if self.side_effect_policy == "rollback":
                    workspace.rollback()
                continue

            record = ExecutionRecord(
                status="ok",
                outputs=plain_value(outcome.mapping),
                diagnostics={
                    "extras": list(report.extras),
                    "written_files": sorted(outcome.written_paths),
                    "control": plain_value({k: v for k, v in report.control.items() if k in RESERVED_KEYS}),
                },
                tool_calls=outcome.tool_calls,
                printed=outcome.printed,
                elapsed_s=outcome.elapsed_s,
                iteration=iteration,
            )
            accepted = variant.with_record(record)
            executed.append(accepted)
            if failures:
                LOG.info("🔁 Шаг %s: вариант %s успешен после %d неудачных", step.id, variant.id, len(failures))
            else:
                LOG.info("✅ Шаг %s: вариант %s успешен (итерация %d)", step.id, variant.id, iteration)
            return SelectionResult(
                step_id=step.id,
                variant=accepted,
                report=report,
                outcome=outcome,
                iteration=iteration,
                executed=executed,
                failures=failures,
            )

        LOG.error("⛔ Шаг %s: все %d вариантов завершились ошибкой", step.id, len(variants))
        raise VariantExhaustedError(step.id, failures, executed_variants=executed, iterations=iteration)
