# plangraph/graph/nodes/schedule.py
"""
Узел планирования.
Цель: применить каскадный пропуск и решить, есть ли что исполнять.
"""
from __future__ import annotations
import logging
from typing import Any, Dict

LOG = logging.getLogger(__name__)


def schedule_node(state, engine=None) -> Dict[str, Any]:
    if engine is None:
        raise ValueError("schedule_node: engine is required")
    finished = engine.schedule_tick()
    LOG.debug("🗓️ Тик %d запуска %s: завершено=%s", state.tick + 1, state.run_id, finished)
    return {"tick": state.tick + 1, "finished": finished}
