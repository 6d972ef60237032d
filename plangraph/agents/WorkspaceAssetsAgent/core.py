# plangraph/agents/WorkspaceAssetsAgent/core.py
"""
WorkspaceAssetsAgent — агент-инструмент для обзора рабочей директории.

Операции доступны фрагментам кода как capabilities:
    list_assets(prefix)  -> список относительных путей
    asset_info(path)     -> {"path", "exists", "size"}

Конфигурация: config["workdir"] — корень рабочей директории.
"""

from __future__ import annotations
import logging
from typing import Any, Dict, Optional

from plangraph.agents.base import BaseAgent
from plangraph.common import settings
from plangraph.runner.workspace import WorkspaceSession

LOG = logging.getLogger(__name__)


class WorkspaceAssetsAgent(BaseAgent):
    def __init__(self, descriptor: Dict[str, Any], config: Optional[Dict[str, Any]] = None):
        super().__init__(descriptor, config)
        self.workspace = WorkspaceSession(self.config.get("workdir") or settings.WORKDIR)
        LOG.debug("WorkspaceAssetsAgent: корень %s", self.workspace.root)
