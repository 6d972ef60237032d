# plangraph/common/tool_registry.py
# coding: utf-8
"""
TOOL_REGISTRY — централизованный реестр агентов-инструментов (AgentEntry).

Инструменты — capability-интерфейсы для фрагментов кода: каждая операция агента
доступна во фрагменте как функция с позиционными аргументами (порядок — Operation.args).
Результат вызова во фрагменте всегда приходит обёрнутым в ToolValue.

AgentEntry (примерный Python dict)
{
  "name": "<string>",             # уникальный идентификатор (повторяет ключ)
  "title": "<string>",            # человекочитаемое имя
  "description": "<string>",      # краткое назначение + ограничения
  "implementation": "<module:Class|module:function>",
                                  # пример: "plangraph.agents.SqlQueryAgent.core:SqlQueryAgent"
                                  # функция регистрируется как инструмент под именем записи
  "config": { ... },              # runtime-конфигурация агента (optional)
  "meta": { ... }                 # только для разработчиков (optional)
}
"""

from typing import Dict, Any

from plangraph.common import settings

TOOL_REGISTRY: Dict[str, Any] = {
    "WorkspaceAssetsAgent": {
        "name": "WorkspaceAssetsAgent",
        "title": "Файлы рабочей директории (WorkspaceAssetsAgent)",
        "description": (
            "Read-only обзор рабочей директории шагов: list_assets(prefix), asset_info(path).\n"
            "Пути относительные, выход за пределы рабочей директории запрещён."
        ),
        "implementation": "plangraph.agents.WorkspaceAssetsAgent.core:WorkspaceAssetsAgent",
        "config": {
            "workdir": settings.WORKDIR,
        },
        "meta": {
            "maintainers": ["platform-team"],
        }
    },

    "SqlQueryAgent": {
        "name": "SqlQueryAgent",
        "title": "Read-only SQL (SqlQueryAgent)",
        "description": (
            "Выполнение одного SELECT-запроса: sql_query(sql) -> список строк.\n"
            "Выборка ограничена max_rows; DML/DDL запрещены."
        ),
        "implementation": "plangraph.agents.SqlQueryAgent.core:SqlQueryAgent",
        "config": {
            "db_uri": settings.TOOLS_DB_DSN,
            "max_rows": settings.TOOLS_MAX_ROWS,
        },
        "meta": {
            "maintainers": ["platform-team"],
            "notes": "Подзапрос оборачивается в SELECT * FROM (...) LIMIT n.",
        }
    },
}
