# plangraph/runner/sandbox.py
# coding: utf-8
"""
SandboxedCodeRunner — исполнение одного фрагмента кода (варианта шага).

ОСНОВНЫЕ ПРИНЦИПЫ:
1. Фрагмент компилируется RestrictedPython (compile_restricted) и исполняется с guarded globals.
2. Фрагменту доступны:
   - значения хранилища, видимые шагу (логические имена и имена с суффиксом);
   - iteration, iteration_context, previous_result, instruction, step_id, variant_id;
   - инструменты (capabilities) — только позиционные аргументы, квота вызовов на фрагмент;
   - write_file / read_file / file_exists в пределах рабочей директории.
3. Итог фрагмента — mapping в переменной `result`.
4. Любая ошибка фрагмента превращается в ошибку варианта:
   - RunnerFault — исключение во фрагменте (включая ошибки компиляции и ShapeError);
   - ResourceLimitError — превышены время, память, квота или число аргументов инструмента;
   - ContractViolationError — нет `result` или это не mapping.

ПРИМЕР:
runner = SandboxedCodeRunner(capabilities={"fetch": fetch_prices})
outcome = runner.execute(
    'rows = fetch("books")\\nresult = {"total_1A": rows.get("total").as_int()}',
    step_id="1", variant_id="A", bindings={}, workspace=WorkspaceSession(tmp_dir),
)
outcome.mapping  # {"total_1A": 3}
"""
from __future__ import annotations
import copy
import logging
import threading
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from RestrictedPython import compile_restricted

from plangraph.common import settings
from plangraph.common.errors import (
    ContractViolationError,
    ResourceLimitError,
    RunnerFault,
    VariantError,
)
from plangraph.runner.guards import ExecutionBudget, LimitTripped, build_restricted_globals
from plangraph.runner.tool_value import ToolValue
from plangraph.runner.workspace import WorkspaceSession
from plangraph.utils.utils import summarize

LOG = logging.getLogger(__name__)
LOG.addHandler(logging.NullHandler())


@dataclass
class RunOutcome:
    """Успешное исполнение фрагмента."""
    mapping: Dict[str, Any]
    printed: str = ""
    tool_calls: List[Dict[str, Any]] = field(default_factory=list)
    written_paths: Set[str] = field(default_factory=set)
    elapsed_s: float = 0.0


class CapabilityGate:
    """
    Обёртка над инструментами для одного фрагмента:
    - только позиционные аргументы, не больше max_args (или max_args инструмента);
    - не больше max_calls вызовов на фрагмент;
    - аргументы ToolValue разворачиваются, результат оборачивается в ToolValue.
    """

    def __init__(self, capabilities: Dict[str, Callable], max_calls: int, max_args: int):
        self.capabilities = dict(capabilities)
        self.max_calls = max_calls
        self.max_args = max_args
        self.calls: List[Dict[str, Any]] = []
        # Выставляется, когда фрагмент оставлен по таймауту
        self.revoked = False

    def _limit_for(self, fn: Callable) -> int:
        own = getattr(fn, "max_args", None)
        if isinstance(own, int) and own >= 0:
            return min(own, self.max_args)
        return self.max_args

    def _wrap(self, name: str, fn: Callable) -> Callable:
        limit = self._limit_for(fn)

        def call(*args, **kwargs):
            if self.revoked:
                raise LimitTripped("time", "Фрагмент оставлен после истечения лимита времени")
            if kwargs:
                raise TypeError(f"Инструмент '{name}' принимает только позиционные аргументы")
            if len(args) > limit:
                raise LimitTripped("tool_args", f"Инструмент '{name}': {len(args)} аргументов при лимите {limit}")
            if len(self.calls) >= self.max_calls:
                raise LimitTripped("tool_calls", f"Превышена квота вызовов инструментов ({self.max_calls})")
            plain = [a.unwrap() if isinstance(a, ToolValue) else a for a in args]
            self.calls.append({"tool": name, "args": len(plain)})
            LOG.debug("🔧 Вызов инструмента %s, аргументов: %d", name, len(plain))
            return ToolValue(fn(*plain), origin=name)

        call.__name__ = name
        return call

    def bind(self) -> Dict[str, Callable]:
        return {name: self._wrap(name, fn) for name, fn in self.capabilities.items()}

    def guard(self, fn: Callable) -> Callable:
        """Файловые операции фрагмента: закрываются вместе с инструментами."""
        def guarded(*args, **kwargs):
            if self.revoked:
                raise LimitTripped("time", "Фрагмент оставлен после истечения лимита времени")
            return fn(*args, **kwargs)

        guarded.__name__ = fn.__name__
        return guarded

    def revoke(self) -> None:
        self.revoked = True


class SandboxedCodeRunner:
    def __init__(
        self,
        capabilities: Optional[Dict[str, Callable]] = None,
        *,
        timeout_s: float = settings.RUNNER_TIMEOUT_S,
        memory_limit_mb: int = settings.RUNNER_MEMORY_LIMIT_MB,
        max_tool_calls: int = settings.RUNNER_MAX_TOOL_CALLS,
        max_tool_args: int = settings.RUNNER_MAX_TOOL_ARGS,
        allowed_modules: Iterable[str] = tuple(settings.RUNNER_ALLOWED_MODULES),
        result_name: str = settings.RUNNER_RESULT_NAME,
    ):
        self.capabilities: Dict[str, Callable] = dict(capabilities or {})
        self.timeout_s = timeout_s
        self.memory_limit_mb = memory_limit_mb
        self.max_tool_calls = max_tool_calls
        self.max_tool_args = max_tool_args
        self.allowed_modules = list(allowed_modules)
        self.result_name = result_name

    @classmethod
    def from_config(cls, config, capabilities: Optional[Dict[str, Callable]] = None) -> "SandboxedCodeRunner":
        return cls(
            capabilities,
            timeout_s=config.timeout_s,
            memory_limit_mb=config.memory_limit_mb,
            max_tool_calls=config.max_tool_calls,
            max_tool_args=config.max_tool_args,
            allowed_modules=config.allowed_modules,
            result_name=config.result_name,
        )

    @staticmethod
    def fragment_filename(step_id: str, variant_id: str) -> str:
        return f"<variant:{step_id}:{variant_id}>"

    def _build_globals(
        self,
        gate: CapabilityGate,
        workspace: WorkspaceSession,
        bindings: Dict[str, Any],
        context: Dict[str, Any],
    ) -> Dict[str, Any]:
        glb = build_restricted_globals(self.allowed_modules)
        glb.update(copy.deepcopy(bindings))
        # Итог фрагмента всегда задаёт сам фрагмент
        glb.pop(self.result_name, None)
        glb.update(copy.deepcopy(context))
        glb.update(gate.bind())
        glb["write_file"] = gate.guard(workspace.write_file)
        glb["read_file"] = gate.guard(workspace.read_file)
        glb["file_exists"] = gate.guard(workspace.file_exists)
        return glb

    def _exec_supervised(self, byte_code, glb: Dict[str, Any], filename: str, gate: CapabilityGate):
        """
        Исполнить фрагмент в отдельном потоке и ждать не дольше timeout_s.
        Возвращает исключение фрагмента (LimitTripped или Exception) либо None.

        Поток, не завершившийся к сроку, оставляется: инструменты и файловые
        операции для него закрываются, trace-хук остановит его на ближайшей
        строке фрагмента. Долгий вызов C-кода, удерживающий GIL, не даёт
        дождаться срока; такой запуск отклоняется по замеру времени.
        """
        box: Dict[str, Any] = {}

        def target():
            try:
                with ExecutionBudget(filename, self.timeout_s, self.memory_limit_mb):
                    exec(byte_code, glb)
            except (LimitTripped, Exception) as e:
                box["error"] = e

        worker = threading.Thread(target=target, name=f"fragment{filename}", daemon=True)
        started = time.monotonic()
        worker.start()
        worker.join(self.timeout_s)
        elapsed = time.monotonic() - started
        if worker.is_alive():
            gate.revoke()
            LOG.warning("⏱️ Фрагмент %s не завершился за %.2fs, поток оставлен", filename, self.timeout_s)
            return LimitTripped("time", f"Превышен лимит времени {self.timeout_s:.2f}s")
        if "error" in box:
            return box["error"]
        if elapsed > self.timeout_s:
            return LimitTripped("time", f"Превышен лимит времени {self.timeout_s:.2f}s (прошло {elapsed:.2f}s)")
        return None

    def execute(
        self,
        code: str,
        *,
        step_id: str,
        variant_id: str,
        bindings: Optional[Dict[str, Any]] = None,
        workspace: WorkspaceSession,
        iteration: int = 1,
        iteration_context: Optional[Dict[str, Any]] = None,
        previous_result: Optional[Dict[str, Any]] = None,
        instruction: Any = None,
    ) -> RunOutcome:
        """
        Исполнить фрагмент. Возвращает RunOutcome с mapping из `result`.
        Бросает RunnerFault / ResourceLimitError / ContractViolationError.
        """
        filename = self.fragment_filename(step_id, variant_id)
        attribution = {"step_id": step_id, "variant_id": variant_id}

        try:
            byte_code = compile_restricted(code, filename=filename, mode="exec")
        except SyntaxError as e:
            raise RunnerFault(f"Вариант {step_id}{variant_id}: ошибка компиляции: {e}", cause=e, **attribution) from e

        gate = CapabilityGate(self.capabilities, self.max_tool_calls, self.max_tool_args)
        context = {
            "iteration": iteration,
            "iteration_context": dict(iteration_context or {}),
            "previous_result": dict(previous_result or {}),
            "instruction": instruction,
            "step_id": step_id,
            "variant_id": variant_id,
        }
        glb = self._build_globals(gate, workspace, bindings or {}, context)

        LOG.debug("▶️ Исполнение варианта %s%s (итерация %d)", step_id, variant_id, iteration)
        started = time.monotonic()
        raised = self._exec_supervised(byte_code, glb, filename, gate)
        elapsed = time.monotonic() - started

        error: Optional[VariantError] = None
        if isinstance(raised, LimitTripped):
            error = ResourceLimitError(f"Вариант {step_id}{variant_id}: {raised.message}", limit=raised.limit, **attribution)
        elif isinstance(raised, MemoryError):
            error = ResourceLimitError(f"Вариант {step_id}{variant_id}: нехватка памяти", limit="memory", **attribution)
        elif raised is not None:
            error = RunnerFault(
                f"Вариант {step_id}{variant_id}: {type(raised).__name__}: {raised}", cause=raised, **attribution
            )

        collector = glb.get("_print")
        printed = collector() if callable(collector) else ""

        if error is not None:
            error.details.update({"tool_calls": list(gate.calls), "printed": printed, "elapsed_s": elapsed})
            LOG.warning("⚠️ %s", error.message)
            raise error

        result = glb.get(self.result_name)
        if not isinstance(result, Mapping):
            err = ContractViolationError(
                f"Вариант {step_id}{variant_id}: '{self.result_name}' должен быть mapping, "
                f"получено {type(result).__name__ if result is not None else 'ничего'}",
                missing=[self.result_name] if result is None else [],
                malformed=[] if result is None else [self.result_name],
                **attribution,
            )
            err.details.update({"tool_calls": list(gate.calls), "printed": printed, "elapsed_s": elapsed})
            raise err

        mapping = dict(result)
        LOG.debug("✅ Вариант %s%s вернул ключи %s за %.3fs: %s",
                  step_id, variant_id, list(mapping), elapsed, summarize(mapping, 200))
        return RunOutcome(
            mapping=mapping,
            printed=printed,
            tool_calls=list(gate.calls),
            written_paths=set(workspace.written),
            elapsed_s=elapsed,
        )
