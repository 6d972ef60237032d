# plangraph/graph/scheduler.py
# coding: utf-8
"""
PlanGraphScheduler — владелец графа плана и статусов шагов.

Отвечает за:
- submit(): регистрацию и слияние графа (продолжение может добавлять шаги и рёбра);
- валидацию: циклы (GraphCycleError), ссылки на неизвестные шаги, переменные рёбер,
  общие имена writes без пути зависимости (PlanValidationError);
- готовность: шаг pending, все обычные входящие рёбра от succeeded-шагов,
  независимые (independent=True) — от любых завершённых;
- каскадный пропуск: прямые зависимые упавшего/пропущенного шага помечаются skipped
  на следующем тике планирования (транзитивно — на последующих тиках);
- стабильный порядок готовых шагов: натуральная сортировка id ("2" < "10").

Правила слияния при submit:
- новый шаг добавляется;
- известный шаг в статусе pending заменяется (id стабильны при перепланировании);
- известный шаг в статусе running или в терминальном статусе сохраняет состояние.
Слияние проверяется на копии: при ошибке зарегистрированный граф не меняется.
"""
from __future__ import annotations
import logging
import threading
from typing import Dict, List, Optional, Set, Tuple

from plangraph.common.errors import GraphCycleError, PlanValidationError
from plangraph.model.models import Edge, PlanGraph, StepNode
from plangraph.utils.utils import natural_step_key

LOG = logging.getLogger(__name__)
LOG.addHandler(logging.NullHandler())


def _find_cycle(steps: List[str], edges: List[Edge]) -> Optional[List[str]]:
    """Путь цикла [a, b, ..., a] или None (итеративный DFS)."""
    adjacency: Dict[str, List[str]] = {s: [] for s in steps}
    for e in edges:
        adjacency.setdefault(e.source, []).append(e.target)
    for targets in adjacency.values():
        targets.sort(key=natural_step_key)

    WHITE, GREY, BLACK = 0, 1, 2
    color = {s: WHITE for s in adjacency}
    for root in sorted(adjacency, key=natural_step_key):
        if color[root] != WHITE:
            continue
        path: List[str] = [root]
        stack: List[Tuple[str, int]] = [(root, 0)]
        color[root] = GREY
        while stack:
            node, idx = stack[-1]
            targets = adjacency.get(node, [])
            if idx < len(targets):
                stack[-1] = (node, idx + 1)
                nxt = targets[idx]
                if color.get(nxt, WHITE) == GREY:
                    return path[path.index(nxt):] + [nxt]
                if color.get(nxt, WHITE) == WHITE:
                    color[nxt] = GREY
                    path.append(nxt)
                    stack.append((nxt, 0))
            else:
                color[node] = BLACK
                path.pop()
                stack.pop()
    return None


def _ancestors(step_id: str, edges: List[Edge]) -> Set[str]:
    """Транзитивные предки шага (все входящие рёбра, включая независимые)."""
    parents: Dict[str, Set[str]] = {}
    for e in edges:
        parents.setdefault(e.target, set()).add(e.source)
    seen: Set[str] = set()
    stack = list(parents.get(step_id, ()))
    while stack:
        cur = stack.pop()
        if cur in seen:
            continue
        seen.add(cur)
        stack.extend(parents.get(cur, ()))
    return seen


def normalize_edges(graph: PlanGraph) -> None:
    """
    Проверить рёбра и подставить variables по умолчанию (все writes источника).
    Дубликаты (source, target) объединяются. Бросает PlanValidationError.
    """
    merged: Dict[Tuple[str, str], Edge] = {}
    for edge in graph.edges:
        for ref in (edge.source, edge.target):
            if ref not in graph.steps:
                raise PlanValidationError(
                    f"Ребро {edge.source} -> {edge.target} ссылается на неизвестный шаг '{ref}'",
                    details={"edge": edge.model_dump(), "unknown": ref},
                )
        if edge.source == edge.target:
            raise GraphCycleError([edge.source, edge.target])
        source = graph.steps[edge.source]
        variables = list(edge.variables) or list(source.writes)
        if not variables:
            raise PlanValidationError(
                f"Ребро {edge.source} -> {edge.target}: шаг {edge.source} не объявляет выходов для потребителя",
                details={"edge": edge.model_dump()},
            )
        undeclared = [v for v in variables if v not in source.writes]
        if undeclared:
            raise PlanValidationError(
                f"Ребро {edge.source} -> {edge.target}: переменные {undeclared} не объявлены в writes шага {edge.source}",
                details={"edge": edge.model_dump(), "undeclared": undeclared},
            )
        key = (edge.source, edge.target)
        if key in merged:
            prev = merged[key]
            variables = prev.variables + [v for v in variables if v not in prev.variables]
        merged[key] = Edge(source=edge.source, target=edge.target, variables=variables, independent=edge.independent)
    graph.edges = list(merged.values())


def validate_graph(graph: PlanGraph) -> None:
    """Полная проверка графа (мутирует рёбра: variables по умолчанию)."""
    normalize_edges(graph)

    cycle = _find_cycle(list(graph.steps), graph.edges)
    if cycle:
        raise GraphCycleError(cycle)

    writers: Dict[str, List[str]] = {}
    for step in graph.steps.values():
        for name in step.writes:
            writers.setdefault(name, []).append(step.id)
    ancestors = {sid: _ancestors(sid, graph.edges) for sid in graph.steps}
    for name, step_ids in writers.items():
        ordered = sorted(step_ids, key=natural_step_key)
        for i, a in enumerate(ordered):
            for b in ordered[i + 1:]:
                if a not in ancestors[b] and b not in ancestors[a]:
                    raise PlanValidationError(
                        f"Шаги {a} и {b} пишут '{name}' без зависимости между ними",
                        details={"name": name, "steps": [a, b]},
                    )


class PlanGraphScheduler:
    def __init__(self, graph: Optional[PlanGraph] = None):
        self._lock = threading.RLock()
        self._graph = PlanGraph()
        if graph is not None:
            self.submit(graph)

    @classmethod
    def restore(cls, graph: PlanGraph) -> "PlanGraphScheduler":
        """Восстановить планировщик из сохранённого графа со статусами шагов."""
        scheduler = cls()
        restored = graph.model_copy(deep=True)
        validate_graph(restored)
        scheduler._graph = restored
        return scheduler

    # -----------------------------
    # Регистрация графа
    # -----------------------------
    def submit(self, graph: PlanGraph) -> PlanGraph:
        """Зарегистрировать или слить граф. Возвращает снимок результата."""
        with self._lock:
            merged = self._graph.model_copy(deep=True)
            added, replaced, kept = [], [], []
            for step_id, incoming in graph.steps.items():
                current = merged.steps.get(step_id)
                if current is None:
                    merged.steps[step_id] = incoming.model_copy(deep=True)
                    added.append(step_id)
                elif current.status == "pending":
                    merged.steps[step_id] = incoming.model_copy(deep=True, update={"status": "pending"})
                    replaced.append(step_id)
                else:
                    kept.append(step_id)
            merged.edges = merged.edges + [e.model_copy(deep=True) for e in graph.edges]

            validate_graph(merged)
            self._graph = merged

        if kept:
            LOG.warning("⚠️ Шаги %s уже исполняются или завершены: их состояние сохранено", kept)
        LOG.info("📋 Граф принят: добавлено %s, заменено %s, всего шагов %d, рёбер %d",
                 added, replaced, len(merged.steps), len(merged.edges))
        return self.snapshot()

    # -----------------------------
    # Чтение
    # -----------------------------
    def snapshot(self) -> PlanGraph:
        with self._lock:
            return self._graph.model_copy(deep=True)

    def get_step(self, step_id: str) -> StepNode:
        with self._lock:
            if step_id not in self._graph.steps:
                raise KeyError(f"Шаг '{step_id}' отсутствует в графе")
            return self._graph.steps[step_id].model_copy(deep=True)

    def step_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._graph.steps, key=natural_step_key)

    def steps_with_status(self, *statuses: str) -> List[str]:
        with self._lock:
            return sorted((s.id for s in self._graph.steps.values() if s.status in statuses), key=natural_step_key)

    def upstream_closure(self, step_id: str) -> Set[str]:
        """Все транзитивные зависимости шага: их выходы видны шагу."""
        with self._lock:
            return _ancestors(step_id, self._graph.edges)

    def topological_order(self) -> List[str]:
        """Детерминированный топологический порядок (Kahn + натуральная сортировка)."""
        with self._lock:
            indegree = {s: 0 for s in self._graph.steps}
            for e in self._graph.edges:
                indegree[e.target] += 1
            ready = sorted((s for s, d in indegree.items() if d == 0), key=natural_step_key)
            order: List[str] = []
            while ready:
                cur = ready.pop(0)
                order.append(cur)
                for e in self._graph.downstream_edges(cur):
                    indegree[e.target] -= 1
                    if indegree[e.target] == 0:
                        ready.append(e.target)
                ready.sort(key=natural_step_key)
            return order

    # -----------------------------
    # Готовность
    # -----------------------------
    def _is_ready(self, step: StepNode) -> bool:
        if step.status != "pending":
            return False
        for edge in self._graph.upstream_edges(step.id):
            source = self._graph.steps[edge.source]
            if edge.independent:
                if not source.is_terminal:
                    return False
            elif source.status != "succeeded":
                return False
        return True

    def ready_steps(self, limit: Optional[int] = None) -> List[str]:
        with self._lock:
            ready = sorted((s.id for s in self._graph.steps.values() if self._is_ready(s)), key=natural_step_key)
        return ready if limit is None else ready[:limit]

    def next_ready(self) -> Optional[str]:
        """Следующий готовый шаг или None, если граф завершён или заблокирован."""
        ready = self.ready_steps(limit=1)
        return ready[0] if ready else None

    def is_complete(self) -> bool:
        with self._lock:
            return all(s.is_terminal for s in self._graph.steps.values())

    def is_blocked(self) -> bool:
        """Есть незавершённые шаги, но ни один не готов, не исполняется и не будет пропущен."""
        with self._lock:
            if self.is_complete():
                return False
            if any(s.status == "running" for s in self._graph.steps.values()):
                return False
            return not self.ready_steps() and not self._pending_skips()

    # -----------------------------
    # Каскадный пропуск
    # -----------------------------
    def _pending_skips(self) -> List[Tuple[str, str]]:
        """(шаг, причина-источник) для pending-шагов с упавшей обычной зависимостью."""
        skips = []
        for step in self._graph.steps.values():
            if step.status != "pending":
                continue
            for edge in self._graph.upstream_edges(step.id):
                if edge.independent:
                    continue
                if self._graph.steps[edge.source].status in ("failed", "skipped"):
                    skips.append((step.id, edge.source))
                    break
        return sorted(skips, key=lambda item: natural_step_key(item[0]))

    def apply_skip_cascade(self) -> List[str]:
        """Один уровень каскада: прямые зависимые упавших/пропущенных шагов → skipped."""
        with self._lock:
            skipped = []
            for step_id, source_id in self._pending_skips():
                step = self._graph.steps[step_id]
                source = self._graph.steps[source_id]
                step.status = "skipped"
                step.error_kind = source.error_kind
                step.error = f"Пропущен: зависимость {source_id} в статусе {source.status}"
                skipped.append(step_id)
        if skipped:
            LOG.warning("⏭️ Пропущены шаги из-за упавших зависимостей: %s", skipped)
        return skipped

    # -----------------------------
    # Переходы статусов
    # -----------------------------
    def _transition(self, step_id: str, allowed_from: Tuple[str, ...], status: str) -> StepNode:
        step = self._graph.steps.get(step_id)
        if step is None:
            raise KeyError(f"Шаг '{step_id}' отсутствует в графе")
        if step.status not in allowed_from:
            raise PlanValidationError(
                f"Шаг {step_id}: переход {step.status} -> {status} недопустим",
                details={"step_id": step_id, "from": step.status, "to": status},
            )
        step.status = status
        return step

    def mark_running(self, step_id: str) -> None:
        with self._lock:
            self._transition(step_id, ("pending",), "running")

    def mark_pending(self, step_id: str) -> None:
        """Вернуть подготовленный, но не запущенный шаг в pending."""
        with self._lock:
            self._transition(step_id, ("running",), "pending")

    def mark_succeeded(self, step_id: str, *, committed_variant: Optional[str] = None,
                       iterations: int = 0, executed_variants=None, variant_failures=None) -> None:
        with self._lock:
            step = self._transition(step_id, ("running",), "succeeded")
            step.committed_variant = committed_variant
            step.iterations = iterations
            step.executed_variants = list(executed_variants or [])
            step.variant_failures = list(variant_failures or [])

    def mark_failed(self, step_id: str, *, error_kind: str, error: str, iterations: int = 0,
                    executed_variants=None, variant_failures=None) -> None:
        with self._lock:
            step = self._transition(step_id, ("running", "pending"), "failed")
            step.error_kind = error_kind
            step.error = error
            step.iterations = iterations
            step.executed_variants = list(executed_variants or [])
            step.variant_failures = list(variant_failures or [])

    def reset_running(self) -> List[str]:
        """Вернуть running-шаги в pending (возобновление после сбоя процесса)."""
        with self._lock:
            reset = []
            for step in self._graph.steps.values():
                if step.status == "running":
                    step.status = "pending"
                    reset.append(step.id)
        if reset:
            LOG.info("♻️ Шаги %s возвращены в pending", reset)
        return sorted(reset, key=natural_step_key)
