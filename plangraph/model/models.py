# plangraph/model/models.py
"""
Pydantic-модели данных движка исполнения плана.

Эти модели описывают структуру данных, но не содержат логики планирования.
ВАЖНО:
- PlanGraph, StepNode и Edge — структура плана; статусы шагов меняют только
  Scheduler и VariantSelector/Engine.
- CodeVariant неизменяем: запись об исполнении прикрепляется копией (with_record).
- VariableStoreEntry — одна версия значения в хранилище переменных.
- IterationContext — временный контекст цикла самокоррекции, живёт только пока
  шаг находится в цикле.

Структура:
1. ExecutionRecord: результат исполнения одного варианта
2. CodeVariant: кандидатный фрагмент кода для шага
3. StepNode: узел плана
4. Edge: зависимость producer → consumer
5. PlanGraph: граф плана
6. VariableStoreEntry: версия переменной в хранилище
7. IterationContext: контекст итерации самокоррекции
"""

from __future__ import annotations
import re
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from plangraph.common import settings

# Статусы жизненного цикла шага
StepStatus = Literal[
    "pending",      # Шаг ещё не запускался
    "running",      # Шаг отдан в исполнение (включая цикл самокоррекции)
    "succeeded",    # Выходы зафиксированы в хранилище
    "failed",       # Фатальная ошибка шага
    "skipped",      # Пропущен из-за упавшей зависимости
]
TERMINAL_STATUSES = frozenset({"succeeded", "failed", "skipped"})

# Тип-тег записи хранилища
EntryType = Literal["scalar", "structured", "file"]

# id шага и варианта участвуют в суффиксе имени выхода, поэтому только [A-Za-z0-9]
_ID_RE = re.compile(r"^[A-Za-z0-9]+$")
# id варианта: один символ, иначе суффиксы шагов "1"+"AB" и "1A"+"B" совпадут
_VARIANT_ID_RE = re.compile(r"^[A-Za-z0-9]$")
MAX_VARIANTS = 3

# Имена, которые песочница связывает сама; выход шага не может их занять
RESERVED_NAMES = frozenset({
    settings.RUNNER_RESULT_NAME,
    "write_file", "read_file", "file_exists",
    "step_id", "variant_id", "iteration", "iteration_context", "previous_result", "instruction",
    "call_self", "next_instruction",
})


def _check_id(value: str, what: str) -> str:
    if not isinstance(value, str) or not _ID_RE.match(value):
        raise ValueError(f"{what} должен состоять из [A-Za-z0-9]+, получено: {value!r}")
    return value


# === 1. Результат исполнения варианта ===
class ExecutionRecord(BaseModel):
    """Запись об исполнении одного варианта.

    Поля:
    - status: 'ok' | 'error'
    - outputs: mapping, который вернул фрагмент (полностью, включая диагностику)
    - error_kind / error: класс и текст ошибки варианта
    - diagnostics: лишние ключи, журнал файлов и прочая информация для логов
    - tool_calls: журнал вызовов инструментов (имя, число аргументов)
    - printed: вывод print() внутри фрагмента
    """
    status: Literal["ok", "error"]
    outputs: Dict[str, Any] = Field(default_factory=dict)
    error_kind: Optional[str] = None
    error: Optional[str] = None
    diagnostics: Dict[str, Any] = Field(default_factory=dict)
    tool_calls: List[Dict[str, Any]] = Field(default_factory=list)
    printed: str = ""
    elapsed_s: float = 0.0
    iteration: int = 1


# === 2. Кандидатный фрагмент кода ===
class CodeVariant(BaseModel):
    """Один вариант кода для шага ("A"/"B"/"C").

    Неизменяем: после исполнения создаётся копия с заполненным record.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    code: str
    record: Optional[ExecutionRecord] = None

    @field_validator("id")
    @classmethod
    def _validate_id(cls, v: str) -> str:
        if not isinstance(v, str) or not _VARIANT_ID_RE.match(v):
            raise ValueError(f"id варианта должен быть одним символом [A-Za-z0-9], получено: {v!r}")
        return v

    @property
    def executed(self) -> bool:
        return self.record is not None

    def with_record(self, record: ExecutionRecord) -> "CodeVariant":
        if self.record is not None:
            raise ValueError(f"Вариант {self.id} уже исполнен и неизменяем")
        return self.model_copy(update={"record": record})


# === 3. Узел плана ===
class StepNode(BaseModel):
    """Шаг плана.

    Поля:
    - id: стабильный идентификатор (не меняется при перепланировании)
    - instruction: непрозрачная инструкция для агента-производителя кода
    - writes: контракт выходов (логические имена переменных)
    - variants: 0..3 кандидата; 0 — варианты запросит агент-производитель
    - agent: имя агента-производителя в CONTROL_REGISTRY
    - max_iterations: переопределение бюджета самокоррекции для шага
    - executed_variants: все исполненные варианты по всем итерациям
    """
    id: str
    instruction: Any = None
    writes: List[str] = Field(default_factory=list)
    status: StepStatus = "pending"
    variants: List[CodeVariant] = Field(default_factory=list)
    agent: Optional[str] = None
    max_iterations: Optional[int] = None

    # --- Результаты исполнения ---
    iterations: int = 0
    committed_variant: Optional[str] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None
    variant_failures: List[Dict[str, Any]] = Field(default_factory=list)
    executed_variants: List[CodeVariant] = Field(default_factory=list)

    @field_validator("id")
    @classmethod
    def _validate_id(cls, v: str) -> str:
        return _check_id(v, "id шага")

    @field_validator("variants")
    @classmethod
    def _validate_variants(cls, v: List[CodeVariant]) -> List[CodeVariant]:
        if len(v) > MAX_VARIANTS:
            raise ValueError(f"У шага не может быть больше {MAX_VARIANTS} вариантов, получено {len(v)}")
        ids = [variant.id for variant in v]
        if len(set(ids)) != len(ids):
            raise ValueError(f"id вариантов должны быть уникальны: {ids}")
        return v

    @field_validator("writes")
    @classmethod
    def _validate_writes(cls, v: List[str]) -> List[str]:
        for name in v:
            if not isinstance(name, str) or not name.isidentifier() or name.startswith("_"):
                raise ValueError(f"Имя выхода должно быть идентификатором без '_' в начале: {name!r}")
            if name in RESERVED_NAMES:
                raise ValueError(f"Имя выхода {name!r} зарезервировано песочницей")
        if len(set(v)) != len(v):
            raise ValueError(f"Имена выходов должны быть уникальны: {v}")
        return v

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


# === 4. Зависимость ===
class Edge(BaseModel):
    """Ребро producer → consumer.

    - variables: имена выходов source, которые потребляет target
      (пусто — все writes источника, подставляется при submit)
    - independent: явная "независимая ветка" — падение source не каскадируется на target
    """
    source: str
    target: str
    variables: List[str] = Field(default_factory=list)
    independent: bool = False


# === 5. Граф плана ===
class PlanGraph(BaseModel):
    """Граф плана: шаги по id и список рёбер."""
    steps: Dict[str, StepNode] = Field(default_factory=dict)
    edges: List[Edge] = Field(default_factory=list)

    @classmethod
    def from_steps(cls, steps: List[StepNode], edges: Optional[List[Edge]] = None) -> "PlanGraph":
        return cls(steps={s.id: s for s in steps}, edges=list(edges or []))

    def upstream_edges(self, step_id: str) -> List[Edge]:
        return [e for e in self.edges if e.target == step_id]

    def downstream_edges(self, step_id: str) -> List[Edge]:
        return [e for e in self.edges if e.source == step_id]


# === 6. Запись хранилища переменных ===
class VariableStoreEntry(BaseModel):
    """Одна версия переменной.

    - name: логическое имя (из writes шага)
    - type: тип-тег (scalar | structured | file); перезапись обязана его сохранить
    - content: значение (для file — содержимое файла)
    - path: путь файла относительно рабочей директории (только для file)
    - updated_at: id шага-производителя
    - source_key: имя с суффиксом, под которым вариант вернул значение
    """
    model_config = ConfigDict(frozen=True)

    name: str
    type: EntryType
    content: Any = None
    path: Optional[str] = None
    updated_at: str
    variant_id: Optional[str] = None
    source_key: Optional[str] = None
    version: int = 1


# === 7. Контекст итерации самокоррекции ===
class IterationContext(BaseModel):
    """Временный контекст между последовательными вызовами одного шага."""
    step_id: str
    iteration: int = 1
    values: Dict[str, Any] = Field(default_factory=dict)
    next_instruction: Optional[str] = None
    previous_result: Dict[str, Any] = Field(default_factory=dict)
