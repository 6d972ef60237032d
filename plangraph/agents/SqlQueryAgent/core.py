# plangraph/agents/SqlQueryAgent/core.py
"""
SqlQueryAgent — агент-инструмент для чтения данных из БД.

Особенности:
- Подключение создаётся по config["db_uri"] через кэш get_engine().
- Разрешены только SELECT-запросы; выборка ограничена config["max_rows"].
- Доступен фрагментам кода как capability `sql_query(sql)`.
"""

from __future__ import annotations
import logging
from typing import Any, Dict, Optional

from plangraph.agents.base import BaseAgent
from plangraph.services.db_service.connection import get_engine

LOG = logging.getLogger(__name__)


class SqlQueryAgent(BaseAgent):
    def __init__(self, descriptor: Dict[str, Any], config: Optional[Dict[str, Any]] = None):
        super().__init__(descriptor, config)
        db_uri = self.config.get("db_uri")
        self.engine = get_engine(db_uri) if db_uri else None
        self.max_rows = int(self.config.get("max_rows", 500))
        LOG.debug("SqlQueryAgent: подключение %s", "настроено" if self.engine is not None else "отсутствует")
