# plangraph/common/settings.py
# coding: utf-8
"""
Централизованные настройки движка исполнения плана (на русском).

Конвенции:
- Все значения читаются из переменных окружения один раз при импорте.
- Движок собирает их в EngineConfig (см. plangraph/model/config.py), который можно
  переопределить для конкретного запуска.
"""

from typing import List
import os

# Окружение и режим работы
APP_ENV = os.environ.get("APP_ENV", "development")
DEBUG = APP_ENV != "production"
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

# --------------------------
# Песочница (Sandboxed Code Runner)
# --------------------------
# Потолок времени на один фрагмент кода (секунды)
RUNNER_TIMEOUT_S = float(os.environ.get("RUNNER_TIMEOUT_S", "5.0"))
# Потолок прироста памяти на один фрагмент (МБ); 0: без ограничения
RUNNER_MEMORY_LIMIT_MB = int(os.environ.get("RUNNER_MEMORY_LIMIT_MB", "256"))
# Квота вызовов инструментов на один фрагмент
RUNNER_MAX_TOOL_CALLS = int(os.environ.get("RUNNER_MAX_TOOL_CALLS", "3"))
# Максимальное число позиционных аргументов в вызове инструмента
RUNNER_MAX_TOOL_ARGS = int(os.environ.get("RUNNER_MAX_TOOL_ARGS", "4"))
# Модули, которые фрагмент может импортировать
RUNNER_ALLOWED_MODULES: List[str] = [
    m.strip()
    for m in os.environ.get("RUNNER_ALLOWED_MODULES", "math,json,re,statistics,datetime").split(",")
    if m.strip()
]
# Имя переменной, в которую фрагмент кладёт итоговый mapping
RUNNER_RESULT_NAME = os.environ.get("RUNNER_RESULT_NAME", "result")

# --------------------------
# Контракт выходов
# --------------------------
# Шаблон имени выхода: логическое имя + id шага + id варианта (например, total_2A)
OUTPUT_SUFFIX_TEMPLATE = os.environ.get("OUTPUT_SUFFIX_TEMPLATE", "{name}_{step_id}{variant_id}")

# --------------------------
# Исполнение графа
# --------------------------
ITERATION_BUDGET = int(os.environ.get("ITERATION_BUDGET", "5"))
ENGINE_PARALLELISM = int(os.environ.get("ENGINE_PARALLELISM", "4"))
# keep: побочные эффекты упавших вариантов не откатываются; rollback: файлы восстанавливаются
SIDE_EFFECT_POLICY = os.environ.get("SIDE_EFFECT_POLICY", "keep")
# Рабочая директория для файловых артефактов шагов
WORKDIR = os.environ.get("PLANGRAPH_WORKDIR", os.path.join(os.getcwd(), ".plangraph", "workdir"))
# Агент-производитель кода по умолчанию (ключ в CONTROL_REGISTRY)
DEFAULT_PRODUCER_AGENT = os.environ.get("DEFAULT_PRODUCER_AGENT", "StaticCodeAgent")

# --------------------------
# Хранилище состояния запуска
# --------------------------
RUN_STATE_DSN = os.environ.get(
    "RUN_STATE_DSN",
    "sqlite:///" + os.path.join(os.getcwd(), ".plangraph", "run_state.db"),
)

# --------------------------
# LangGraph / рекурсия
# --------------------------
# Каждый тик планировщика: два узла графа (schedule + dispatch)
LANGGRAPH_RECURSION_LIMIT = int(os.environ.get("LANGGRAPH_RECURSION_LIMIT", "500"))

# --------------------------
# Инструменты (TOOL_REGISTRY)
# --------------------------
# БД для read-only инструмента sql_query; пусто: инструмент сообщает об ошибке при вызове
TOOLS_DB_DSN = os.environ.get("TOOLS_DB_DSN", "")
TOOLS_MAX_ROWS = int(os.environ.get("TOOLS_MAX_ROWS", "500"))
