# plangraph/model/interfaces.py
"""
Внешние интерфейсы движка (pydantic-модели).

1. StepSubmission — описание шага от верхнего слоя планирования.
2. StepResult — результат каждой исполненной итерации шага.
3. StepOutcome — итог шага в отчёте запуска.
4. RunReport — отчёт запуска: итоги шагов, цепочки ошибок вариантов, порядок фиксаций.
"""
from __future__ import annotations
from typing import Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, Field

from plangraph.model.models import CodeVariant, Edge, PlanGraph, StepNode, StepStatus


class Dependency(BaseModel):
    """Зависимость в StepSubmission.depends_on (альтернатива строке с id)."""
    step_id: str
    variables: List[str] = Field(default_factory=list)
    independent: bool = False


# === 1. Отправка шага ===
class StepSubmission(BaseModel):
    """
    step_id, instruction, writes, depends_on — обязательная часть;
    variants — 0..3 фрагмента (0 — варианты запросят у агента-производителя);
    graph — существующий граф, который нужно расширить (продолжение плана);
    completed_steps / failed_steps — контекст верхнего слоя (для логов и агента).
    """
    step_id: str
    instruction: Any = None
    writes: List[str] = Field(default_factory=list)
    depends_on: List[Union[str, Dependency]] = Field(default_factory=list)
    variants: List[CodeVariant] = Field(default_factory=list)
    agent: Optional[str] = None
    max_iterations: Optional[int] = None
    graph: Optional[PlanGraph] = None
    completed_steps: List[str] = Field(default_factory=list)
    failed_steps: List[str] = Field(default_factory=list)

    def to_graph(self) -> PlanGraph:
        """Граф из одного шага и его входящих рёбер (поверх graph, если задан)."""
        base = self.graph.model_copy(deep=True) if self.graph is not None else PlanGraph()
        step = StepNode(
            id=self.step_id,
            instruction=self.instruction,
            writes=list(self.writes),
            variants=list(self.variants),
            agent=self.agent,
            max_iterations=self.max_iterations,
        )
        base.steps[step.id] = step
        for dep in self.depends_on:
            if isinstance(dep, str):
                base.edges.append(Edge(source=dep, target=step.id))
            else:
                base.edges.append(Edge(source=dep.step_id, target=step.id,
                                       variables=list(dep.variables), independent=dep.independent))
        return base


# === 2. Результат итерации шага ===
class StepResult(BaseModel):
    step_id: str
    status: StepStatus
    iteration: int = 1
    graph: Optional[PlanGraph] = None
    next_step_id: Optional[str] = None
    executed_variants: List[CodeVariant] = Field(default_factory=list)
    committed_variant: Optional[str] = None
    continuation: bool = False
    next_instruction: Optional[str] = None
    iteration_context: Dict[str, Any] = Field(default_factory=dict)
    committed: List[str] = Field(default_factory=list)
    error_kind: Optional[str] = None
    error: Optional[str] = None


# === 3. Итог шага ===
class StepOutcome(BaseModel):
    step_id: str
    status: StepStatus
    committed_variant: Optional[str] = None
    iterations: int = 0
    outputs: List[str] = Field(default_factory=list)
    error_kind: Optional[str] = None
    error: Optional[str] = None
    variant_failures: List[Dict[str, Any]] = Field(default_factory=list)

    @classmethod
    def from_step(cls, step: StepNode) -> "StepOutcome":
        return cls(
            step_id=step.id,
            status=step.status,
            committed_variant=step.committed_variant,
            iterations=step.iterations,
            outputs=list(step.writes) if step.status == "succeeded" else [],
            error_kind=step.error_kind,
            error=step.error,
            variant_failures=list(step.variant_failures),
        )


# === 4. Отчёт запуска ===
class RunReport(BaseModel):
    run_id: str
    status: Literal["completed", "partial", "failed", "blocked", "pending"]
    steps: Dict[str, StepOutcome] = Field(default_factory=dict)
    commit_order: List[str] = Field(default_factory=list)
    results: List[StepResult] = Field(default_factory=list)
    variables: List[str] = Field(default_factory=list)

    def failed_steps(self) -> List[str]:
        return [sid for sid, o in self.steps.items() if o.status == "failed"]

    def skipped_steps(self) -> List[str]:
        return [sid for sid, o in self.steps.items() if o.status == "skipped"]
