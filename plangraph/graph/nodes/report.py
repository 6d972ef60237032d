# plangraph/graph/nodes/report.py
"""
Узел итогового отчёта.
"""
from __future__ import annotations
import logging
from typing import Any, Dict

LOG = logging.getLogger(__name__)


def report_node(state, engine=None) -> Dict[str, Any]:
    if engine is None:
        raise ValueError("report_node: engine is required")
    report = engine.report()
    failed = report.failed_steps()
    skipped = report.skipped_steps()
    if failed or skipped:
        LOG.warning("🏁 Запуск %s: %s, упали %s, пропущены %s", state.run_id, report.status, failed, skipped)
    else:
        LOG.info("🏁 Запуск %s: %s, порядок фиксаций %s", state.run_id, report.status, report.commit_order)
    return {"status": report.status}
