# plangraph/store/variable_store.py
# coding: utf-8
"""
VariableStore — версионируемое хранилище артефактов шагов.

Модель: append-mostly карта "имя → список версий", каждая версия помечена
id шага-производителя (updated_at). Это сохраняет происхождение значений и
позволяет детерминированно воспроизвести состояние.

Правила:
- commit() атомарен на уровне шага: все записи шага видны одновременно или ни одна.
- Перезапись имени допустима (например, новая ревизия файла), но тип-тег обязан
  сохраниться.
- view(steps) возвращает только версии, произведённые указанными шагами
  (транзитивные зависимости читающего шага) и входами запуска.

Пример:
>>> store = VariableStore()
>>> store.put_input("threshold", 10)
>>> store.commit("1", "A", {"total": 42}, source_keys={"total": "total_1A"})
>>> store.get("total").content
42
"""
from __future__ import annotations
import logging
import threading
from typing import Any, Dict, Iterable, List, Optional

from plangraph.common.errors import ContractViolationError
from plangraph.model.models import VariableStoreEntry
from plangraph.utils.utils import infer_entry_type

LOG = logging.getLogger(__name__)
LOG.addHandler(logging.NullHandler())

# Псевдо-шаг входных значений запуска, виден всем шагам. Угловые скобки не проходят проверку id шага
INPUT_STEP_ID = "<input>"


class VariableStore:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._versions: Dict[str, List[VariableStoreEntry]] = {}

    # -----------------------------
    # Запись
    # -----------------------------
    @staticmethod
    def _make_entry(name: str, value: Any, step_id: str, variant_id: Optional[str],
                    source_key: Optional[str], version: int) -> VariableStoreEntry:
        entry_type = infer_entry_type(value)
        if entry_type == "file":
            return VariableStoreEntry(
                name=name, type="file", content=value.get("content"), path=value["path"],
                updated_at=step_id, variant_id=variant_id, source_key=source_key, version=version,
            )
        return VariableStoreEntry(
            name=name, type=entry_type, content=value,
            updated_at=step_id, variant_id=variant_id, source_key=source_key, version=version,
        )

    def put_input(self, name: str, value: Any) -> VariableStoreEntry:
        """Положить входное значение запуска (видно всем шагам)."""
        return self.commit(INPUT_STEP_ID, None, {name: value})[0]

    def commit(
        self,
        step_id: str,
        variant_id: Optional[str],
        values: Dict[str, Any],
        source_keys: Optional[Dict[str, str]] = None,
    ) -> List[VariableStoreEntry]:
        """
        Атомарно зафиксировать выходы шага.
        Бросает ContractViolationError, если перезапись меняет тип-тег имени;
        в этом случае ни одна запись не применяется.
        """
        source_keys = source_keys or {}
        with self._lock:
            staged: List[VariableStoreEntry] = []
            bad_types: List[str] = []
            for name in sorted(values):
                history = self._versions.get(name, [])
                entry = self._make_entry(
                    name, values[name], step_id, variant_id, source_keys.get(name), len(history) + 1
                )
                if history and history[-1].type != entry.type:
                    bad_types.append(f"{name} ({history[-1].type} -> {entry.type})")
                staged.append(entry)
            if bad_types:
                raise ContractViolationError(
                    f"Шаг {step_id}: перезапись меняет тип-тег: {', '.join(bad_types)}",
                    malformed=bad_types, step_id=step_id, variant_id=variant_id,
                )
            for entry in staged:
                self._versions.setdefault(entry.name, []).append(entry)
        LOG.info("💾 Шаг %s: зафиксировано %d переменных: %s", step_id, len(staged), [e.name for e in staged])
        return staged

    # -----------------------------
    # Чтение
    # -----------------------------
    def get(self, name: str) -> VariableStoreEntry:
        """Последняя версия имени. Бросает KeyError, если имени нет."""
        with self._lock:
            history = self._versions.get(name)
            if not history:
                raise KeyError(f"Переменная '{name}' отсутствует в хранилище")
            return history[-1]

    def history(self, name: str) -> List[VariableStoreEntry]:
        with self._lock:
            return list(self._versions.get(name, []))

    def names(self) -> List[str]:
        with self._lock:
            return sorted(self._versions)

    def type_of(self, name: str) -> Optional[str]:
        with self._lock:
            history = self._versions.get(name)
            return history[-1].type if history else None

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._versions

    def view(self, visible_steps: Iterable[str]) -> Dict[str, VariableStoreEntry]:
        """
        Последние версии имён, произведённые шагами из visible_steps (и входами запуска).
        Версии от других шагов (например, параллельных веток) невидимы.
        """
        allowed = set(visible_steps) | {INPUT_STEP_ID}
        result: Dict[str, VariableStoreEntry] = {}
        with self._lock:
            for name, history in self._versions.items():
                for entry in reversed(history):
                    if entry.updated_at in allowed:
                        result[name] = entry
                        break
        return result

    def bindings(self, visible_steps: Iterable[str]) -> Dict[str, Any]:
        """
        Значения для привязки во фрагменте кода: логическое имя и имя с суффиксом
        (source_key) указывают на одно и то же значение. Файлы привязываются как
        ссылка {"type": "file", "path": ..., "content": ...}.
        """
        bound: Dict[str, Any] = {}
        for name, entry in self.view(visible_steps).items():
            value = entry.content
            if entry.type == "file":
                value = {"type": "file", "path": entry.path, "content": entry.content}
            bound[name] = value
            if entry.source_key and entry.source_key not in bound:
                bound[entry.source_key] = value
        return bound

    def latest_by_producer(self, step_id: str) -> Dict[str, VariableStoreEntry]:
        """Последние версии, записанные конкретным шагом."""
        result: Dict[str, VariableStoreEntry] = {}
        with self._lock:
            for name, history in self._versions.items():
                for entry in reversed(history):
                    if entry.updated_at == step_id:
                        result[name] = entry
                        break
        return result

    # -----------------------------
    # Снимок / восстановление
    # -----------------------------
    def snapshot(self) -> List[VariableStoreEntry]:
        """Все версии всех имён (для персистентности)."""
        with self._lock:
            return [entry for name in sorted(self._versions) for entry in self._versions[name]]

    @classmethod
    def restore(cls, entries: Iterable[VariableStoreEntry]) -> "VariableStore":
        store = cls()
        for entry in sorted(entries, key=lambda e: (e.name, e.version)):
            store._versions.setdefault(entry.name, []).append(entry)
        return store

    def as_plain_dict(self) -> Dict[str, Any]:
        """name → значение последней версии (файлы — как ссылка)."""
        with self._lock:
            out: Dict[str, Any] = {}
            for name, history in self._versions.items():
                entry = history[-1]
                out[name] = (
                    {"type": "file", "path": entry.path, "content": entry.content}
                    if entry.type == "file" else entry.content
                )
            return out


__all__ = ["VariableStore", "INPUT_STEP_ID"]
