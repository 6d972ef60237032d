# plangraph/agents/base.py
# coding: utf-8
"""
BaseAgent — унифицированный базовый класс для всех агентов.
ОСНОВНЫЕ ПРИНЦИПЫ:
1. Агенты НЕ требуют ручного вызова .initialize() — инициализация происходит автоматически при первом execute_operation.
2. Операции размещаются в папке operations/ рядом с core.py: каждый файл <operation_name>.py должен содержать
   класс Operation, унаследованный от BaseOperation.
3. Агент должен наследоваться от BaseAgent и реализовывать только бизнес-логику в файлах operations/.

СТРУКТУРА АГЕНТА:
plangraph/agents/MyAgent/
├── __init__.py
├── core.py                 # from .core import MyAgent
└── operations/
    ├── op1.py              # class Operation(BaseOperation): ...
    └── op2.py              # class Operation(BaseOperation): ...

КОНФИГУРАЦИЯ:
В реестре (control_registry.py или tool_registry.py) указывается:
{
  "config": {
    "workdir": "...",           # ← любые параметры агента
    ...
  }
}

ПРИМЕР ИСПОЛЬЗОВАНИЯ В ДВИЖКЕ:
agent = agent_registry.instantiate_agent("StaticCodeAgent", control=True)
result = agent.execute_operation("produce_variants", {"step_id": "2", "variants": [...]})
"""

from __future__ import annotations
import importlib.util
import inspect
import logging
import time
from pathlib import Path
from typing import Any, Dict, Optional

from plangraph.agents.operations_base import BaseOperation
from plangraph.model.agent_result import AgentResult

LOG = logging.getLogger(__name__)
LOG.addHandler(logging.NullHandler())


def _load_operation_classes(module_path: str) -> Dict[str, type]:
    """
    Сканирует папку operations/ рядом с модулем и возвращает классы Operation.
    Файлы без корректного класса Operation пропускаются с записью в лог.
    """
    spec = importlib.util.find_spec(module_path)
    if spec is None or spec.origin is None:
        raise ValueError(f"Не удалось найти origin для модуля {module_path}")
    operations_dir = Path(spec.origin).resolve().parent / "operations"
    if not operations_dir.exists():
        return {}

    ops: Dict[str, type] = {}
    for op_file in sorted(operations_dir.glob("*.py")):
        if op_file.name.startswith("_"):
            continue
        op_name = op_file.stem
        try:
            spec_op = importlib.util.spec_from_file_location(f"{module_path}.operations.{op_name}", op_file)
            if spec_op is None:
                LOG.warning("Не удалось создать spec для %s", op_file)
                continue
            mod = importlib.util.module_from_spec(spec_op)
            spec_op.loader.exec_module(mod)

            # Требуем наличие класса Operation
            op_cls = getattr(mod, "Operation", None)
            if op_cls is None:
                LOG.error("Файл %s не содержит класса 'Operation'", op_file)
                continue
            if not (inspect.isclass(op_cls) and issubclass(op_cls, BaseOperation)):
                LOG.error("Operation в %s не наследуется от BaseOperation", op_file)
                continue
            ops[op_name] = op_cls
        except Exception as e:
            LOG.exception("Ошибка загрузки операции %s из %s: %s", op_name, op_file, e)
    return ops


class BaseAgent:
    """
    Базовый класс для всех агентов.

    Атрибуты:
        descriptor (Dict[str, Any]): Метаданные агента из реестра (name, title, implementation и т.д.).
        config (Dict[str, Any]): Конфигурация агента (из поля "config" в реестре).
        _operations (Dict[str, type[BaseOperation]]): Кэш загруженных классов операций из папки operations/.
        _initialized (bool): Флаг, показывающий, была ли выполнена инициализация.
    """

    # Обязательные поля в descriptor
    _REQUIRED_DESCRIPTOR_KEYS = {"name", "title", "description", "implementation"}

    def __init__(self, descriptor: Dict[str, Any], config: Optional[Dict[str, Any]] = None):
        if not isinstance(descriptor, dict):
            raise ValueError("descriptor must be a dict (AgentEntry).")
        missing = self._REQUIRED_DESCRIPTOR_KEYS - set(descriptor.keys())
        if missing:
            raise ValueError(f"descriptor missing required keys: {sorted(missing)}")

        self.descriptor: Dict[str, Any] = descriptor
        self.config: Dict[str, Any] = dict(config or {})
        # Храним классы операций (не экземпляры!)
        self._operations: Dict[str, type[BaseOperation]] = {}
        self._initialized: bool = False
        LOG.debug("BaseAgent инициализирован: %s", self.name)

    # -------------------------
    # Свойства дескриптора
    # -------------------------

    @property
    def name(self) -> str:
        return str(self.descriptor["name"])

    @property
    def title(self) -> str:
        return str(self.descriptor.get("title", self.name))

    @property
    def description(self) -> str:
        return str(self.descriptor.get("description", ""))

    # -------------------------
    # Ленивая инициализация (выполняется автоматически)
    # -------------------------

    def _lazy_initialize(self) -> None:
        """Выполняет инициализацию при первом вызове execute_operation."""
        if self._initialized:
            return
        try:
            self._operations = _load_operation_classes(self.__class__.__module__)
        except Exception as e:
            LOG.exception("Ошибка при загрузке операций для агента %s: %s", self.name, e)
        self._initialized = True
        LOG.debug("Агент %s инициализирован; операции: %s", self.name, list(self._operations))

    # -------------------------
    # Методы для AgentRegistry (анализ без инициализации)
    # -------------------------

    @classmethod
    def discover_operations(cls, descriptor: Dict[str, Any]) -> Dict[str, Any]:
        """
        Обнаруживает операции агента из папки operations/ без создания экземпляра.
        Возвращает манифесты {"op_name": {"kind", "description", "params", "outputs", "args"}}.
        """
        impl = descriptor.get("implementation")
        if not impl or ":" not in impl:
            return {}
        module_path, _ = impl.rsplit(":", 1)
        try:
            return {name: op_cls.get_manifest() for name, op_cls in _load_operation_classes(module_path).items()}
        except Exception as e:
            LOG.debug("Не удалось загрузить операции для модуля %s: %s", module_path, e)
            return {}

    # -------------------------
    # Выполнение операций
    # -------------------------

    def execute_operation(
        self,
        operation: str,
        params: Optional[Dict[str, Any]] = None,
        context: Optional[Dict[str, Any]] = None
    ) -> AgentResult:
        """
        Выполняет операцию агента.

        Логика:
        1. Вызывает _lazy_initialize() для гарантии инициализации.
        2. Проверяет существование операции в self._operations.
        3. Создаёт экземпляр операции и вызывает метод run().
        4. Дополняет AgentResult метаданными (agent, operation, elapsed_s).

        Raises:
            KeyError: Если операция не найдена.
        """
        self._lazy_initialize()

        if operation not in self._operations:
            available = list(self._operations.keys())
            raise KeyError(f"Операция '{operation}' не найдена у агента '{self.name}'. Доступны: {available}")

        params = params or {}
        context = context or {}

        op_cls = self._operations[operation]
        start = time.time()
        try:
            result = op_cls().run(params, context, self)
            if not isinstance(result, AgentResult):
                raise TypeError(f"Операция должна вернуть AgentResult, получено: {type(result)}")

            if result.agent is None:
                result.agent = self.name
            if result.operation is None:
                result.operation = operation

            meta = getattr(result, "metadata", {}) or {}
            meta.setdefault("elapsed_s", time.time() - start)
            result.metadata = meta
            return result
        except Exception as exc:
            LOG.exception("Агент %s: ошибка при выполнении операции %s", self.name, operation)
            return AgentResult.error(
                f"Операция '{operation}' завершилась с ошибкой: {exc}",
                stage="operation_execution",
                agent=self.name,
                operation=operation,
            )
