# plangraph/common/errors.py
# coding: utf-8
"""
Таксономия ошибок движка.

Уровни:
- ошибки плана (GraphCycleError, PlanValidationError) — отклоняются при submit;
- ошибки варианта (VariantError и наследники) — локальны для варианта,
  поглощаются VariantSelector и запускают fallback;
- фатальные ошибки шага (StepFatalError и наследники) — переводят шаг в failed,
  планировщик каскадно пропускает зависимые шаги.
"""
from __future__ import annotations
from typing import Any, Dict, List, Optional


class EngineError(Exception):
    """Базовая ошибка движка: сообщение, машинный код и детали для отчёта."""

    code = "engine_error"

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details: Dict[str, Any] = details or {}

    @property
    def kind(self) -> str:
        """Имя класса ошибки — используется в отчётах как 'terminal error kind'."""
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "code": self.code, "message": self.message, "details": self.details}


# === Ошибки плана ===
class GraphCycleError(EngineError):
    code = "graph_cycle"

    def __init__(self, cycle: List[str]):
        self.cycle = list(cycle)
        super().__init__(f"Граф плана содержит цикл: {' -> '.join(self.cycle)}", details={"cycle": self.cycle})


class PlanValidationError(EngineError, ValueError):
    code = "plan_invalid"


# === Ошибки варианта (триггерят fallback) ===
class VariantError(EngineError):
    code = "variant_error"

    def __init__(
        self,
        message: str,
        step_id: Optional[str] = None,
        variant_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.step_id = step_id
        self.variant_id = variant_id
        super().__init__(message, details=details)


class ContractViolationError(VariantError):
    code = "contract_violation"

    def __init__(
        self,
        message: str,
        missing: Optional[List[str]] = None,
        malformed: Optional[List[str]] = None,
        step_id: Optional[str] = None,
        variant_id: Optional[str] = None,
    ):
        self.missing = list(missing or [])
        self.malformed = list(malformed or [])
        super().__init__(
            message,
            step_id=step_id,
            variant_id=variant_id,
            details={"missing": self.missing, "malformed": self.malformed},
        )


class RunnerFault(VariantError):
    code = "runner_fault"

    def __init__(self, message: str, cause: Optional[BaseException] = None, **kwargs: Any):
        self.cause = cause
        super().__init__(message, **kwargs)
        if cause is not None:
            self.details.setdefault("cause", type(cause).__name__)


class ResourceLimitError(VariantError):
    code = "resource_limit"

    def __init__(self, message: str, limit: str, **kwargs: Any):
        self.limit = limit
        super().__init__(message, **kwargs)
        self.details.setdefault("limit", limit)


# === Фатальные ошибки шага ===
class StepFatalError(EngineError):
    code = "step_fatal"

    def __init__(
        self,
        message: str,
        step_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        executed_variants: Optional[List[Any]] = None,
        failures: Optional[List[Dict[str, Any]]] = None,
        iterations: int = 0,
    ):
        self.step_id = step_id
        # Исполненные варианты (CodeVariant с record) до момента фатальной ошибки
        self.executed_variants: List[Any] = list(executed_variants or [])
        # Цепочка ошибок вариантов по всем итерациям шага
        self.failures: List[Dict[str, Any]] = list(failures or [])
        # Число исполненных итераций
        self.iterations = iterations
        super().__init__(message, details=details)


class VariantExhaustedError(StepFatalError):
    code = "variants_exhausted"

    def __init__(
        self,
        step_id: str,
        failures: List[Dict[str, Any]],
        message: Optional[str] = None,
        executed_variants: Optional[List[Any]] = None,
        iterations: int = 1,
    ):
        super().__init__(
            message or f"Шаг {step_id}: все варианты завершились ошибкой ({len(failures)})",
            step_id=step_id,
            details={"failures": list(failures)},
            executed_variants=executed_variants,
            failures=failures,
            iterations=iterations,
        )


class IterationBudgetExceededError(StepFatalError):
    code = "iteration_budget_exceeded"

    def __init__(
        self,
        step_id: str,
        iteration: int,
        budget: int,
        executed_variants: Optional[List[Any]] = None,
        failures: Optional[List[Dict[str, Any]]] = None,
    ):
        self.iteration = iteration
        self.budget = budget
        super().__init__(
            f"Шаг {step_id}: итерация {iteration} превышает бюджет самокоррекции ({budget})",
            step_id=step_id,
            details={"iteration": iteration, "budget": budget},
            executed_variants=executed_variants,
            failures=failures,
            iterations=budget,
        )


# === Ошибки формы значений инструментов ===
class ShapeError(TypeError):
    """Значение инструмента не соответствует ожидаемой форме при явном сужении."""
