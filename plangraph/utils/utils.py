"""
Общие утилиты движка.
Содержит вспомогательные функции, используемые несколькими компонентами.
"""

from __future__ import annotations
import re
from typing import Any, Dict, List, Mapping, Tuple, Union
import logging


LOG = logging.getLogger(__name__)

_NUM_CHUNK_RE = re.compile(r"(\d+)")


def natural_step_key(step_id: str) -> Tuple[Union[int, str], ...]:
    """
    Ключ сортировки id шагов с учётом чисел: "2" < "10", "s2" < "s10".
    Используется для стабильного порядка готовых шагов.
    """
    parts: List[Union[int, str]] = []
    for chunk in _NUM_CHUNK_RE.split(step_id):
        if not chunk:
            continue
        parts.append(int(chunk) if chunk.isdigit() else chunk)
    # Кортеж (тип, значение), чтобы int и str не сравнивались напрямую
    return tuple((0, p) if isinstance(p, int) else (1, p) for p in parts)


def file_asset(path: str, content: Any) -> Dict[str, Any]:
    """Ссылка на файловый артефакт в формате записи хранилища."""
    return {"type": "file", "path": path, "content": content}


def is_file_asset(value: Any) -> bool:
    return isinstance(value, Mapping) and value.get("type") == "file" and isinstance(value.get("path"), str)


def infer_entry_type(value: Any) -> str:
    """Тип-тег значения: file | structured | scalar."""
    if is_file_asset(value):
        return "file"
    if isinstance(value, (Mapping, list, tuple, set, frozenset)):
        return "structured"
    return "scalar"


def summarize(value: Any, limit: int = 400) -> str:
    """Короткое строковое резюме значения для логов и истории."""
    try:
        s = str(value)
    except Exception:
        return "<unserializable>"
    return s if len(s) < limit else s[:limit] + "..."


def build_tool_snapshot(capabilities: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Снимок доступных инструментов для агентов-производителей кода:
    имя → {"max_args", "description"}. Реализации не раскрываются.
    """
    snapshot = {}
    for name in sorted(capabilities):
        fn = capabilities[name]
        doc = (getattr(fn, "__doc__", None) or "").strip()
        snapshot[name] = {
            "max_args": getattr(fn, "max_args", None),
            "description": doc.splitlines()[0] if doc else "",
        }
    return snapshot
