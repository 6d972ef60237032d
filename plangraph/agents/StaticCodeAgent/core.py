# plangraph/agents/StaticCodeAgent/core.py
"""
StaticCodeAgent — агент-производитель вариантов кода без генерации.

Особенности:
- Не пишет код сам: повторно выдаёт варианты, уже объявленные у шага
  (или переданные в instruction["variants"]).
- Используется циклом самокоррекции по умолчанию: фрагмент сам читает
  iteration / iteration_context / previous_result и решает, звать ли себя снова.
- Вся логика вынесена в операцию `produce_variants`.

Пример использования:
>>> agent = agent_registry.instantiate_agent("StaticCodeAgent", control=True)
>>> result = agent.execute_operation("produce_variants", params={"step_id": "2", "variants": [...]})
"""

from __future__ import annotations
import logging
from typing import Any, Dict, Optional
from plangraph.agents.base import BaseAgent

LOG = logging.getLogger(__name__)


class StaticCodeAgent(BaseAgent):
    def __init__(self, descriptor: Dict[str, Any], config: Optional[Dict[str, Any]] = None):
        super().__init__(descriptor, config)
        LOG.debug("StaticCodeAgent инициализирован.")
