# plangraph/runner/guards.py
"""
Ограничения исполнения фрагментов кода.

Содержит:
 - сборку restricted globals для RestrictedPython (guards, builtins, импорт по белому списку);
 - ExecutionBudget — потолки времени и памяти через trace-хук текущего потока;
 - LimitTripped — внутренний сигнал превышения лимита (BaseException, чтобы
   `except Exception` во фрагменте его не перехватывал).
"""
from __future__ import annotations
import builtins
import logging
import operator
import sys
import threading
import time
import tracemalloc
from typing import Any, Callable, Dict, Iterable, Optional

from RestrictedPython import safe_builtins
from RestrictedPython.Eval import default_guarded_getitem, default_guarded_getiter
from RestrictedPython.Guards import (
    full_write_guard,
    guarded_iter_unpack_sequence,
    guarded_unpack_sequence,
    safer_getattr,
)
from RestrictedPython.PrintCollector import PrintCollector

LOG = logging.getLogger(__name__)
LOG.addHandler(logging.NullHandler())

# Чистые builtins, которых нет в safe_builtins RestrictedPython
_EXTRA_BUILTINS = {
    name: getattr(builtins, name)
    for name in ("dict", "list", "set", "frozenset", "sum", "min", "max",
                 "enumerate", "any", "all", "map", "filter", "reversed")
}

_INPLACE_OPS: Dict[str, Callable[[Any, Any], Any]] = {
    "+=": operator.iadd,
    "-=": operator.isub,
    "*=": operator.imul,
    "/=": operator.itruediv,
    "//=": operator.ifloordiv,
    "%=": operator.imod,
    "**=": operator.ipow,
    "<<=": operator.ilshift,
    ">>=": operator.irshift,
    "&=": operator.iand,
    "|=": operator.ior,
    "^=": operator.ixor,
}


class LimitTripped(BaseException):
    """Превышен лимит исполнения (time | memory | tool_calls | tool_args)."""

    def __init__(self, limit: str, message: str):
        super().__init__(message)
        self.limit = limit
        self.message = message


def _inplacevar(op: str, x: Any, y: Any) -> Any:
    fn = _INPLACE_OPS.get(op)
    if fn is None:
        raise NotImplementedError(f"Операция {op} не поддерживается")
    return fn(x, y)


def _apply(func: Callable, *args: Any, **kwargs: Any) -> Any:
    return func(*args, **kwargs)


def make_import_guard(allowed_modules: Iterable[str]) -> Callable:
    allowed = frozenset(allowed_modules)

    def guarded_import(name, globals=None, locals=None, fromlist=(), level=0):
        if level != 0 or name.split(".")[0] not in allowed:
            raise ImportError(f"Импорт модуля '{name}' запрещён (разрешены: {sorted(allowed)})")
        return builtins.__import__(name, globals, locals, fromlist, level)

    return guarded_import


def build_restricted_globals(allowed_modules: Iterable[str]) -> Dict[str, Any]:
    """Базовые globals для exec() байткода из compile_restricted."""
    restricted_builtins = dict(safe_builtins)
    restricted_builtins.update(_EXTRA_BUILTINS)
    restricted_builtins["__import__"] = make_import_guard(allowed_modules)
    return {
        "__builtins__": restricted_builtins,
        "__name__": "fragment",
        "__metaclass__": type,
        "_getattr_": safer_getattr,
        "_getitem_": default_guarded_getitem,
        "_getiter_": default_guarded_getiter,
        "_iter_unpack_sequence_": guarded_iter_unpack_sequence,
        "_unpack_sequence_": guarded_unpack_sequence,
        "_write_": full_write_guard,
        "_inplacevar_": _inplacevar,
        "_print_": PrintCollector,
        "_apply_": _apply,
    }


# tracemalloc глобален для процесса: включаем, пока есть хотя бы один пользователь
_TRACEMALLOC_LOCK = threading.Lock()
_TRACEMALLOC_USERS = 0
_TRACEMALLOC_OWNED = False


def _acquire_tracemalloc() -> None:
    global _TRACEMALLOC_USERS, _TRACEMALLOC_OWNED
    with _TRACEMALLOC_LOCK:
        if _TRACEMALLOC_USERS == 0 and not tracemalloc.is_tracing():
            tracemalloc.start()
            _TRACEMALLOC_OWNED = True
        _TRACEMALLOC_USERS += 1


def _release_tracemalloc() -> None:
    global _TRACEMALLOC_USERS, _TRACEMALLOC_OWNED
    with _TRACEMALLOC_LOCK:
        _TRACEMALLOC_USERS -= 1
        if _TRACEMALLOC_USERS == 0 and _TRACEMALLOC_OWNED:
            tracemalloc.stop()
            _TRACEMALLOC_OWNED = False


class ExecutionBudget:
    """
    Потолки времени и памяти для одного фрагмента.

    Проверка выполняется trace-хуком на строках фрагмента (frames с его filename).
    Долгие вызовы C-кода и инструментов хук не прерывает: срок для них держит
    SandboxedCodeRunner._exec_supervised. Память считается как прирост
    traced-аллокаций процесса с момента входа: при параллельных шагах оценка
    включает аллокации соседних потоков.
    """

    def __init__(self, filename: str, timeout_s: float, memory_limit_mb: int = 0, check_every: int = 64):
        self.filename = filename
        self.timeout_s = timeout_s
        self.memory_limit = max(0, int(memory_limit_mb)) * 1024 * 1024
        self.check_every = max(1, check_every)
        self._deadline = 0.0
        self._baseline = 0
        self._ticks = 0
        self._previous_trace: Optional[Callable] = None

    def __enter__(self) -> "ExecutionBudget":
        if self.memory_limit:
            _acquire_tracemalloc()
            self._baseline = tracemalloc.get_traced_memory()[0]
        self._deadline = time.monotonic() + self.timeout_s
        self._previous_trace = sys.gettrace()
        sys.settrace(self._global_trace)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        sys.settrace(self._previous_trace)
        if self.memory_limit:
            _release_tracemalloc()

    def _global_trace(self, frame, event, arg):
        if frame.f_code.co_filename != self.filename:
            return None
        self._check()
        return self._local_trace

    def _local_trace(self, frame, event, arg):
        if event == "line":
            self._check()
        return self._local_trace

    def _check(self) -> None:
        self._ticks += 1
        if time.monotonic() > self._deadline:
            raise LimitTripped("time", f"Превышен лимит времени {self.timeout_s:.2f}s")
        if self.memory_limit and self._ticks % self.check_every == 0:
            used = tracemalloc.get_traced_memory()[0] - self._baseline
            if used > self.memory_limit:
                raise LimitTripped(
                    "memory", f"Превышен лимит памяти: {used // (1024 * 1024)}MB > {self.memory_limit // (1024 * 1024)}MB"
                )
