# plangraph/graph/nodes/dispatch.py
"""
Узел исполнения тика.
Цель: отдать готовые шаги в пул потоков и зафиксировать их результаты.
Логирование:
  - список шагов тика
  - пустой тик (нечего исполнять, но граф не завершён)
"""
from __future__ import annotations
import logging
from typing import Any, Dict

LOG = logging.getLogger(__name__)


def dispatch_node(state, engine=None) -> Dict[str, Any]:
    if engine is None:
        raise ValueError("dispatch_node: engine is required")
    dispatched = engine.dispatch_ready()
    if not dispatched:
        LOG.warning("⚠️ dispatch_node: тик %d без готовых шагов", state.tick)
    return {"dispatched": state.dispatched + dispatched}
