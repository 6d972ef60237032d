# plangraph/agents/registry.py
# coding: utf-8
"""
AgentRegistry — менеджер реестра агентов (tools и control agents) для проекта.
Назначение:
- Поддерживать единый программный интерфейс доступа к TOOL_REGISTRY и CONTROL_REGISTRY.
- Валидировать записи агентов по единой схеме AgentEntry.
- Импортировать (smoke-test) и инстанцировать реализации (implementation: "module:Attr").
- Строить capabilities для песочницы: каждая операция агента-инструмента становится
  функцией с позиционными аргументами (порядок задаёт Operation.args).

Операции агентов загружаются из папки operations/ рядом с core.py через
BaseAgent.discover_operations(descriptor) и возвращаются в формате:
    {"op_name": {"kind": "...", "description": "...", "params": {...}, "outputs": {...}, "args": [...]}}

Как использовать (примеры):
>>> from plangraph.agents.registry import AgentRegistry
>>> ar = AgentRegistry()  # автоматически подхватит plangraph.common.tool_registry и control_registry
>>> ar.validate_all()
>>> producer = ar.instantiate_agent("StaticCodeAgent", control=True)
>>> caps = ar.build_capabilities()   # {"list_assets": <fn>, "asset_info": <fn>, "sql_query": <fn>}
"""
from __future__ import annotations
import importlib
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple
from plangraph.agents.base import BaseAgent

LOG = logging.getLogger(__name__)
LOG.addHandler(logging.NullHandler())

_VALID_KINDS = ("direct", "producer", "control")


def _load_registry_module(module_path: str) -> Optional[Dict[str, Any]]:
    """
    Попытаться импортировать модуль-реестр и вернуть TOOL_REGISTRY/CONTROL_REGISTRY,
    если модуль доступен и содержит соответствующее имя.
    """
    try:
        mod = importlib.import_module(module_path)
    except ImportError:
        LOG.debug("Модуль реестра %s не найден.", module_path)
        return None
    for varname in ("TOOL_REGISTRY", "CONTROL_REGISTRY"):
        val = getattr(mod, varname, None)
        if isinstance(val, dict):
            LOG.debug("Загружен реестр %s из %s", varname, module_path)
            return val
    LOG.debug("Модуль %s импортирован, но не содержит TOOL_REGISTRY/CONTROL_REGISTRY.", module_path)
    return None


def _tool_capability(agent: BaseAgent, operation: str, manifest: Dict[str, Any]) -> Callable:
    """Операция агента как функция с позиционными аргументами."""
    arg_names = list(manifest.get("args") or [])

    def capability(*args):
        if len(args) > len(arg_names):
            raise TypeError(f"{operation}() принимает не больше {len(arg_names)} аргументов, получено {len(args)}")
        result = agent.execute_operation(operation, dict(zip(arg_names, args)))
        if result.status != "ok":
            raise RuntimeError(f"{agent.name}.{operation}: {result.error}")
        return result.output

    capability.__name__ = operation
    capability.__doc__ = manifest.get("description", "")
    capability.max_args = len(arg_names)
    return capability


class AgentRegistry:
    """
    Управляет набором зарегистрированных агентов.
    Конструктор:
        AgentRegistry(tool_registry=None, control_registry=None, validate_on_init=False)
    Если tool_registry/control_registry не переданы, импортирует:
     - plangraph.common.tool_registry.TOOL_REGISTRY
     - plangraph.common.control_registry.CONTROL_REGISTRY
    """
    _REQUIRED_TOP_LEVEL = {"name", "title", "description", "implementation"}

    def __init__(
        self,
        tool_registry: Optional[Dict[str, Dict[str, Any]]] = None,
        control_registry: Optional[Dict[str, Dict[str, Any]]] = None,
        validate_on_init: bool = False,
    ) -> None:
        if tool_registry is None:
            tool_registry = _load_registry_module("plangraph.common.tool_registry") or {}
        if control_registry is None:
            control_registry = _load_registry_module("plangraph.common.control_registry") or {}
        self.tool_registry = tool_registry
        self.control_registry = control_registry
        # Кеш импортированных реализаций (module:attr -> object)
        self._impl_cache: Dict[str, Any] = {}
        if validate_on_init:
            self.validate_all()

    # -----------------------------
    # Базовые методы доступа
    # -----------------------------
    def list_agents(self, control: bool = False) -> List[str]:
        """Вернуть список имён агентов (ключи). По умолчанию — tool_registry."""
        reg = self.control_registry if control else self.tool_registry
        return list(reg.keys())

    def get_agent_entry(self, name: str, control: bool = False) -> Dict[str, Any]:
        """Получить запись агента по имени. Бросает KeyError если не найден."""
        reg = self.control_registry if control else self.tool_registry
        if name not in reg:
            raise KeyError(f"Agent '{name}' not found in {'control' if control else 'tool'} registry.")
        return reg[name]

    def _is_control_agent(self, name: str) -> bool:
        return name in self.control_registry

    def _resolve_operations(self, name: str, entry: Dict[str, Any]) -> Dict[str, Any]:
        """
        Разрешает операции агента:
        - Если operations есть в entry — возвращает их.
        - Иначе — загружает из папки operations/ через BaseAgent.discover_operations().
        """
        if entry.get("operations"):
            return entry["operations"]
        try:
            impl_obj = self.get_implementation(name, control=self._is_control_agent(name))
            if not inspect.isclass(impl_obj) or not issubclass(impl_obj, BaseAgent):
                return {}
            return impl_obj.discover_operations(entry)
        except Exception as e:
            LOG.warning("Не удалось загрузить операции для агента %s из файлов: %s", name, e)
            return {}

    def get_operation(self, agent_name: str, op_name: str, control: bool = False) -> Dict[str, Any]:
        entry = self.get_agent_entry(agent_name, control=control)
        ops = self._resolve_operations(agent_name, entry)
        if op_name not in ops:
            raise KeyError(f"Operation '{op_name}' not found in agent '{agent_name}'.")
        return ops[op_name]

    def get_agent_operations(self, agent_name: str, control: bool = False) -> List[str]:
        entry = self.get_agent_entry(agent_name, control=control)
        return list(self._resolve_operations(agent_name, entry).keys())

    # -----------------------------
    # Импорт и инстанцирование реализаций
    # -----------------------------
    @staticmethod
    def _parse_implementation(impl: str) -> Tuple[str, str]:
        """
        Разбить implementation 'module.path:Attr' -> (module_path, attr_name).
        Бросает ValueError при неверном формате.
        """
        if not isinstance(impl, str) or ":" not in impl:
            raise ValueError(f"Invalid implementation format: {impl!r}. Expected 'module.path:Attr'.")
        module_path, attr = (part.strip() for part in impl.split(":", 1))
        if not module_path or not attr:
            raise ValueError(f"Invalid implementation format: {impl!r}. Expected 'module.path:Attr'.")
        return module_path, attr

    def _import_implementation(self, implementation: str) -> Any:
        """Импортировать объект по строке implementation и кешировать результат."""
        if implementation in self._impl_cache:
            return self._impl_cache[implementation]
        module_path, attr = self._parse_implementation(implementation)
        try:
            module = importlib.import_module(module_path)
        except Exception as e:
            LOG.exception("Ошибка импорта модуля %s: %s", module_path, e)
            raise
        cur: Any = module
        for part in attr.split("."):
            if not hasattr(cur, part):
                LOG.error("Attribute %s not found in module %s", attr, module_path)
                raise AttributeError(f"Attribute {attr} not found in module {module_path}")
            cur = getattr(cur, part)
        self._impl_cache[implementation] = cur
        return cur

    def get_implementation(self, agent_name: str, control: bool = False) -> Any:
        entry = self.get_agent_entry(agent_name, control=control)
        impl = entry.get("implementation")
        if not impl:
            raise ValueError(f"Agent '{agent_name}' has no 'implementation' field.")
        return self._import_implementation(impl)

    def instantiate_agent(self, agent_name: str, control: bool = False, *, override_config: Optional[Dict[str, Any]] = None) -> Any:
        """
        Инстанцировать агента:
        - Если implementation — класс, создаём экземпляр (descriptor/config передаются, если конструктор их принимает).
        - Если implementation — функция, возвращаем её саму (функция-инструмент).
        """
        impl_obj = self.get_implementation(agent_name, control=control)
        entry = self.get_agent_entry(agent_name, control=control)
        config = override_config if override_config is not None else entry.get("config", {}) or {}
        if inspect.isclass(impl_obj):
            parameters = inspect.signature(impl_obj).parameters
            accepts_kwargs = any(p.kind == p.VAR_KEYWORD for p in parameters.values())
            try:
                if "descriptor" in parameters and "config" in parameters:
                    return impl_obj(descriptor=entry, config=config)
                if "descriptor" in parameters:
                    return impl_obj(descriptor=entry, **config)
                if "config" in parameters:
                    return impl_obj(config=config)
                if accepts_kwargs:
                    return impl_obj(**config)
                return impl_obj()
            except Exception as e:
                LOG.exception("Не удалось инстанцировать агент %s: %s", agent_name, e)
                raise
        if callable(impl_obj):
            return impl_obj
        raise TypeError(f"Implementation for agent '{agent_name}' is not a class or callable: {type(impl_obj)}")

    # -----------------------------
    # Capabilities для песочницы
    # -----------------------------
    def build_capabilities(self, override_config: Optional[Dict[str, Dict[str, Any]]] = None) -> Dict[str, Callable]:
        """
        Собрать функции-инструменты из tool_registry:
        - агент-класс: каждая операция → функция с позиционными аргументами Operation.args;
        - агент-функция: сама функция под именем записи.
        override_config: имя агента → конфиг, заменяющий entry["config"].
        """
        override_config = override_config or {}
        capabilities: Dict[str, Callable] = {}
        for name, entry in self.tool_registry.items():
            instance = self.instantiate_agent(name, override_config=override_config.get(name))
            if isinstance(instance, BaseAgent):
                for op_name, manifest in self._resolve_operations(name, entry).items():
                    if op_name in capabilities:
                        LOG.warning("Инструмент %s переопределён агентом %s", op_name, name)
                    capabilities[op_name] = _tool_capability(instance, op_name, manifest)
            elif callable(instance):
                capabilities[name] = instance
        LOG.debug("Собраны capabilities: %s", sorted(capabilities))
        return capabilities

    # -----------------------------
    # Валидация структуры
    # -----------------------------
    def _validate_agent_entry(self, name: str, entry: Dict[str, Any]) -> None:
        """Проверка базовой структуры AgentEntry. Бросает ValueError при несоответствии."""
        missing = self._REQUIRED_TOP_LEVEL - set(entry.keys())
        if missing:
            raise ValueError(f"Agent '{name}': missing required top-level fields: {sorted(missing)}")
        impl = entry.get("implementation")
        if not isinstance(impl, str) or ":" not in impl:
            raise ValueError(f"Agent '{name}': 'implementation' must be a string 'module:Attr'.")

        impl_obj = self.get_implementation(name, control=self._is_control_agent(name))
        if not inspect.isclass(impl_obj):
            # Функция-инструмент: операций нет
            return

        operations = self._resolve_operations(name, entry)
        if not operations:
            raise ValueError(f"Agent '{name}': не удалось определить операции (ни в дескрипторе, ни в папке operations/).")
        for op_name, op in operations.items():
            if not isinstance(op, dict):
                raise ValueError(f"Agent '{name}' operation '{op_name}' must be a dict.")
            kind = op.get("kind")
            if kind not in _VALID_KINDS:
                raise ValueError(f"Agent '{name}' operation '{op_name}': invalid kind '{kind}'. Expected one of {_VALID_KINDS}.")
            desc = op.get("description")
            if not isinstance(desc, str) or not desc.strip():
                raise ValueError(f"Agent '{name}' operation '{op_name}': 'description' is required and must be a non-empty string.")

    def validate_all(self) -> None:
        """Проверить все записи tool_registry и control_registry. Бросает ValueError при первой проблеме."""
        for name, entry in self.tool_registry.items():
            self._validate_agent_entry(name, entry)
        for name, entry in self.control_registry.items():
            self._validate_agent_entry(name, entry)
        LOG.info("AgentRegistry: validation passed for %d tools and %d control agents.", len(self.tool_registry), len(self.control_registry))
