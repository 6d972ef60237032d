# plangraph/common/control_registry.py
# coding: utf-8
"""
CONTROL_REGISTRY — реестр агентов-производителей кода.
Использует тот же формат AgentEntry, что и TOOL_REGISTRY.

Агент-производитель вызывается циклом самокоррекции операцией `produce_variants`:
вход — шаг, номер итерации и результаты предыдущей итерации,
выход — {"variants": [{"id": "A", "code": "..."}, ...]} (от 1 до 3 вариантов).

Правила:
- Control agents не попадают в capabilities фрагментов кода.
- Имя агента шага задаётся StepNode.agent; по умолчанию settings.DEFAULT_PRODUCER_AGENT.
"""

from typing import Dict, Any

CONTROL_REGISTRY: Dict[str, Any] = {
    "StaticCodeAgent": {
        "name": "StaticCodeAgent",
        "title": "Повторная выдача вариантов (StaticCodeAgent)",
        "description": (
            "Агент-производитель по умолчанию: повторно выдаёт варианты, объявленные у шага.\n"
            "Фрагменты сами читают iteration / iteration_context / previous_result."
        ),
        "implementation": "plangraph.agents.StaticCodeAgent.core:StaticCodeAgent",
        "config": {},
        "meta": {"role": "control", "maintainers": ["platform-team"]}
    },
}
