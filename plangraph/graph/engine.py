# plangraph/graph/engine.py
# coding: utf-8
"""
Engine — сборка компонентов и цикл исполнения графа плана.

Поток управления одного тика:
  Scheduler.apply_skip_cascade()
  → Scheduler.ready_steps(parallelism) → mark_running
  → привязки переменных шага (транзитивные зависимости) считаются в координирующем потоке
  → SelfCorrectionLoopController.run() в ThreadPoolExecutor
  → фиксации в VariableStore и смена статусов — в координирующем потоке,
    в натуральном порядке id шагов внутри тика
  → сохранение состояния (RunStateRepository), StepResult в журнал.

Цикл тиков — скомпилированный LangGraph-граф (см. engine_graph.py).
Ошибка одного шага никогда не прерывает запуск: она переводит шаг в failed,
зависимые шаги пропускаются на следующем тике.
"""
from __future__ import annotations
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Tuple

from plangraph.agents.registry import AgentRegistry
from plangraph.common.errors import (
    ContractViolationError,
    EngineError,
    StepFatalError,
)
from plangraph.contract.validator import ContractValidator
from plangraph.execution.loop_controller import LoopOutcome, SelfCorrectionLoopController
from plangraph.execution.variant_selector import VariantSelector, plain_value
from plangraph.graph.engine_graph import build_engine_graph
from plangraph.graph.scheduler import PlanGraphScheduler
from plangraph.model.config import EngineConfig
from plangraph.model.interfaces import RunReport, StepOutcome, StepResult, StepSubmission
from plangraph.model.models import PlanGraph, StepNode
from plangraph.runner.sandbox import SandboxedCodeRunner
from plangraph.store.variable_store import VariableStore
from plangraph.utils.utils import build_tool_snapshot

LOG = logging.getLogger(__name__)
LOG.addHandler(logging.NullHandler())

# Подготовленный к исполнению шаг: (шаг, привязки, типы выходов, выполненные, упавшие)
Prepared = Tuple[StepNode, Dict[str, Any], Dict[str, str], List[str], List[str]]


class Engine:
    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        *,
        agent_registry: Optional[AgentRegistry] = None,
        tools: Optional[Dict[str, Callable]] = None,
        repository=None,
        run_id: str = "default",
        store: Optional[VariableStore] = None,
        scheduler: Optional[PlanGraphScheduler] = None,
    ):
        self.config = config or EngineConfig()
        self.run_id = run_id
        self.agent_registry = agent_registry if agent_registry is not None else AgentRegistry()
        self.repository = repository
        self.store = store if store is not None else VariableStore()
        self.scheduler = scheduler if scheduler is not None else PlanGraphScheduler()

        capabilities = self.agent_registry.build_capabilities(override_config=self._tool_overrides())
        capabilities.update(tools or {})
        self.capabilities = capabilities

        self.runner = SandboxedCodeRunner.from_config(self.config, capabilities)
        self.validator = ContractValidator(self.config.suffix_template)
        self.selector = VariantSelector(
            self.runner, self.validator, self.config.workdir, self.config.side_effect_policy
        )
        self.loop = SelfCorrectionLoopController(
            self.selector,
            self.agent_registry,
            default_agent=self.config.default_agent,
            budget=self.config.iteration_budget,
            tools_snapshot=build_tool_snapshot(capabilities),
        )

        self.results: List[StepResult] = []
        self.commit_order: List[str] = []
        self._lock = threading.Lock()
        # Один запуск или шаг за раз на движок: пул и статусы шагов общие
        self._run_lock = threading.RLock()
        self._pool: Optional[ThreadPoolExecutor] = None
        self._tick = 0
        LOG.info("🚀 Engine %s: инструменты %s, параллелизм %d",
                 run_id, sorted(capabilities), self.config.parallelism)

    def _tool_overrides(self) -> Dict[str, Dict[str, Any]]:
        """Инструменты с рабочей директорией работают в workdir запуска."""
        overrides = {}
        for name, entry in self.agent_registry.tool_registry.items():
            cfg = dict(entry.get("config") or {})
            if "workdir" in cfg:
                cfg["workdir"] = self.config.workdir
                overrides[name] = cfg
        return overrides

    # -----------------------------
    # Возобновление
    # -----------------------------
    @classmethod
    def resume(cls, run_id: str, repository, config: Optional[EngineConfig] = None, **kwargs: Any) -> "Engine":
        """
        Восстановить запуск из RunStateRepository: граф со статусами и все версии
        переменных. Шаги в статусе running (не зафиксированные) возвращаются в pending.
        """
        loaded = repository.load(run_id)
        if loaded is None:
            raise KeyError(f"Запуск '{run_id}' не найден в хранилище состояния")
        graph, entries, commit_order = loaded
        scheduler = PlanGraphScheduler.restore(graph)
        scheduler.reset_running()
        engine = cls(
            config,
            repository=repository,
            run_id=run_id,
            store=VariableStore.restore(entries),
            scheduler=scheduler,
            **kwargs,
        )
        engine.commit_order = list(commit_order)
        LOG.info("♻️ Запуск %s возобновлён: зафиксировано шагов %d", run_id, len(engine.commit_order))
        return engine

    # -----------------------------
    # Приём плана
    # -----------------------------
    def put_input(self, name: str, value: Any) -> None:
        """Входное значение запуска, видимое всем шагам."""
        self.store.put_input(name, value)
        self._persist()

    def submit(self, graph: PlanGraph) -> PlanGraph:
        snapshot = self.scheduler.submit(graph)
        self._persist()
        return snapshot

    def submit_step(self, submission: StepSubmission) -> PlanGraph:
        """Принять шаг от слоя планирования (с возможным расширением существующего графа)."""
        LOG.info("📥 Шаг %s принят: writes=%s, зависимости=%s (выполнено: %s, упало: %s)",
                 submission.step_id, submission.writes, submission.depends_on,
                 submission.completed_steps, submission.failed_steps)
        return self.submit(submission.to_graph())

    # -----------------------------
    # Исполнение шага
    # -----------------------------
    def _prepare(self, step_id: str) -> Prepared:
        self.scheduler.mark_running(step_id)
        try:
            step = self.scheduler.get_step(step_id)
            bindings = self.store.bindings(self.scheduler.upstream_closure(step_id))
            existing_types = {n: self.store.type_of(n) for n in step.writes if n in self.store}
            completed = self.scheduler.steps_with_status("succeeded")
            failed = self.scheduler.steps_with_status("failed", "skipped")
        except BaseException:
            self.scheduler.mark_pending(step_id)
            raise
        LOG.info("▶️ Шаг %s запущен: видимых переменных %d", step_id, len(bindings))
        return step, bindings, existing_types, completed, failed

    def _execute(self, prepared: Prepared) -> LoopOutcome:
        step, bindings, existing_types, completed, failed = prepared
        return self.loop.run(
            step,
            bindings=bindings,
            existing_types=existing_types,
            completed_steps=completed,
            failed_steps=failed,
        )

    def _execute_inline(self, prepared: Prepared) -> Future:
        """Исполнить шаг в текущем потоке; результат или ошибка — в Future, как из пула."""
        future: Future = Future()
        try:
            future.set_result(self._execute(prepared))
        except Exception as e:
            future.set_exception(e)
        return future

    def _finish(self, step_id: str, future: "Future[LoopOutcome]") -> List[StepResult]:
        """Зафиксировать результат шага или перевести его в failed. Только координирующий поток."""
        try:
            outcome = future.result()
        except StepFatalError as e:
            return [self._fail(step_id, e.kind, e.message, e.executed_variants, e.failures, e.iterations)]
        except EngineError as e:
            return [self._fail(step_id, e.kind, e.message, [], [])]
        except Exception as e:
            LOG.exception("💥 Непредвиденная ошибка шага %s: %s", step_id, e)
            return [self._fail(step_id, type(e).__name__, str(e), [], [])]

        selection = outcome.selection
        try:
            entries = self.store.commit(
                step_id,
                selection.variant.id,
                selection.report.accepted,
                source_keys=selection.report.source_keys,
            )
        except ContractViolationError as e:
            return [self._fail(step_id, e.kind, e.message, outcome.executed, outcome.failures, outcome.iterations)]

        self.scheduler.mark_succeeded(
            step_id,
            committed_variant=selection.variant.id,
            iterations=outcome.iterations,
            executed_variants=outcome.executed,
            variant_failures=outcome.failures,
        )
        with self._lock:
            self.commit_order.append(step_id)
        self._persist()
        LOG.info("✅ Шаг %s завершён: вариант %s, итераций %d, выходы %s",
                 step_id, selection.variant.id, outcome.iterations, [e.name for e in entries])

        graph = self.scheduler.snapshot()
        next_step_id = self.scheduler.next_ready()
        results = []
        for item in outcome.trace:
            final = item is outcome.trace[-1]
            results.append(StepResult(
                step_id=step_id,
                status="succeeded" if final else "running",
                iteration=item.iteration,
                graph=graph if final else None,
                next_step_id=next_step_id if final else None,
                executed_variants=item.executed,
                committed_variant=item.variant_id if final else None,
                continuation=item.continuation,
                next_instruction=item.next_instruction,
                iteration_context=plain_value(item.iteration_context),
                committed=[e.name for e in entries] if final else [],
            ))
        return self._record(results)

    def _fail(self, step_id: str, kind: str, message: str, executed, failures, iterations: int = 0) -> StepResult:
        self.scheduler.mark_failed(
            step_id,
            error_kind=kind,
            error=message,
            iterations=iterations,
            executed_variants=executed,
            variant_failures=failures,
        )
        self._persist()
        LOG.error("⛔ Шаг %s завершился ошибкой %s: %s", step_id, kind, message)
        result = StepResult(
            step_id=step_id,
            status="failed",
            iteration=max(iterations, 1),
            graph=self.scheduler.snapshot(),
            next_step_id=self.scheduler.next_ready(),
            executed_variants=list(executed),
            error_kind=kind,
            error=message,
        )
        return self._record([result])[0]

    def _record(self, results: List[StepResult]) -> List[StepResult]:
        with self._lock:
            self.results.extend(results)
        return results

    def _persist(self) -> None:
        if self.repository is None:
            return
        self.repository.save(self.run_id, self.scheduler.snapshot(), self.store.snapshot(), self.commit_order)

    # -----------------------------
    # Тики планирования
    # -----------------------------
    def schedule_tick(self) -> bool:
        """Каскад пропусков. True, если исполнять больше нечего (граф завершён или заблокирован)."""
        self._tick += 1
        self.scheduler.apply_skip_cascade()
        if self.scheduler.is_complete():
            return True
        if self.scheduler.is_blocked():
            LOG.warning("⚠️ Запуск %s заблокирован: нет готовых шагов", self.run_id)
            return True
        return False

    def dispatch_ready(self) -> List[str]:
        """
        Исполнить все готовые шаги тика (не больше parallelism) и зафиксировать результаты.
        Если подготовка или постановка шага в пул упала, уже запущенные шаги всё равно
        фиксируются, а не запущенный возвращается в pending.
        """
        ready = self.scheduler.ready_steps(limit=self.config.parallelism)
        if not ready:
            return []
        LOG.info("⚙️ Тик %d: готовые шаги %s", self._tick, ready)
        jobs: List[Tuple[str, Future]] = []
        try:
            for step_id in ready:
                prepared = self._prepare(step_id)
                try:
                    if self._pool is not None:
                        future = self._pool.submit(self._execute, prepared)
                    else:
                        future = self._execute_inline(prepared)
                except BaseException:
                    self.scheduler.mark_pending(step_id)
                    raise
                jobs.append((step_id, future))
        finally:
            for step_id, future in jobs:
                self._finish(step_id, future)
        return ready

    def execute_step(self, step_id: Optional[str] = None) -> List[StepResult]:
        """
        Синхронно исполнить один шаг (по умолчанию — следующий готовый).
        Возвращает StepResult всех его итераций; пустой список, если готовых шагов нет.
        """
        with self._run_lock:
            self.scheduler.apply_skip_cascade()
            step_id = step_id or self.scheduler.next_ready()
            if step_id is None:
                return []
            if step_id not in self.scheduler.ready_steps():
                step = self.scheduler.get_step(step_id)
                raise EngineError(f"Шаг {step_id} не готов к исполнению (статус {step.status})",
                                  code="step_not_ready", details={"step_id": step_id, "status": step.status})
            return self._finish(step_id, self._execute_inline(self._prepare(step_id)))

    def run(self) -> RunReport:
        """Исполнить граф до завершения или блокировки."""
        with self._run_lock:
            graph = build_engine_graph(self)
            with ThreadPoolExecutor(max_workers=self.config.parallelism,
                                    thread_name_prefix=f"plangraph-{self.run_id}") as pool:
                self._pool = pool
                try:
                    graph.invoke({"run_id": self.run_id},
                                 config={"recursion_limit": self.config.recursion_limit})
                finally:
                    self._pool = None
            return self.report()

    # -----------------------------
    # Отчёт
    # -----------------------------
    def report(self) -> RunReport:
        graph = self.scheduler.snapshot()
        steps = {sid: StepOutcome.from_step(graph.steps[sid]) for sid in self.scheduler.step_ids()}
        statuses = [o.status for o in steps.values()]
        if not self.scheduler.is_complete():
            status = "blocked" if self.scheduler.is_blocked() else "pending"
        elif all(s == "succeeded" for s in statuses):
            status = "completed"
        elif any(s == "succeeded" for s in statuses):
            status = "partial"
        else:
            status = "failed"
        with self._lock:
            return RunReport(
                run_id=self.run_id,
                status=status,
                steps=steps,
                commit_order=list(self.commit_order),
                results=list(self.results),
                variables=self.store.names(),
            )
