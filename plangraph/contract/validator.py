# plangraph/contract/validator.py
"""
ContractValidator — проверка mapping варианта против контракта writes шага.

Правила:
- каждое объявленное имя присутствует (с суффиксом шага и варианта, если они заданы)
  и его значение не None;
- ключи без суффикса (кроме управляющих call_self / next_instruction / iteration_context)
  считаются некорректными;
- лишние ключи с правильным суффиксом допустимы: попадают в диагностику, но не фиксируются;
- при перезаписи имя сохраняет тип-тег (scalar | structured | file);
- файловый артефакт ссылается на путь, который вариант действительно записал;
- значение ToolValue без сужения не может быть выходом.

Пример:
>>> v = ContractValidator()
>>> v.commit_view(["total"], {"total_2A": 42}, step_id="2", variant_id="A")
{'total': 42}
"""
from __future__ import annotations
import logging
import posixpath
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from plangraph.common import settings
from plangraph.common.errors import ContractViolationError
from plangraph.runner.tool_value import ToolValue
from plangraph.utils.utils import infer_entry_type

LOG = logging.getLogger(__name__)
LOG.addHandler(logging.NullHandler())

# Управляющие ключи цикла самокоррекции: не выходы шага
RESERVED_KEYS = frozenset({"call_self", "next_instruction", "iteration_context"})


def _contains_tool_value(value: Any) -> bool:
    if isinstance(value, ToolValue):
        return True
    if isinstance(value, Mapping):
        return any(_contains_tool_value(v) for v in value.values())
    if isinstance(value, (list, tuple, set, frozenset)):
        return any(_contains_tool_value(v) for v in value)
    return False


@dataclass
class ValidationReport:
    """Результат успешной проверки.

    - accepted: логическое имя → значение (то, что можно зафиксировать)
    - source_keys: логическое имя → ключ с суффиксом, под которым пришло значение
    - extras: лишние ключи (только для диагностики)
    - control: управляющие ключи (call_self и т.п.), если присутствовали
    """
    accepted: Dict[str, Any] = field(default_factory=dict)
    source_keys: Dict[str, str] = field(default_factory=dict)
    extras: List[str] = field(default_factory=list)
    control: Dict[str, Any] = field(default_factory=dict)


class ContractValidator:
    def __init__(self, suffix_template: str = settings.OUTPUT_SUFFIX_TEMPLATE):
        self.suffix_template = suffix_template

    def output_key(self, name: str, step_id: Optional[str], variant_id: Optional[str]) -> str:
        """Ключ выхода в mapping варианта: total -> total_2A."""
        if step_id is None or variant_id is None:
            return name
        return self.suffix_template.format(name=name, step_id=step_id, variant_id=variant_id)

    def _has_suffix(self, key: str, step_id: str, variant_id: str) -> bool:
        # Суффикс: то, что шаблон добавляет к имени
        marker = "\x00"
        template = self.suffix_template.format(name=marker, step_id=step_id, variant_id=variant_id)
        prefix, _, suffix = template.partition(marker)
        return key.startswith(prefix) and key.endswith(suffix) and len(key) > len(prefix) + len(suffix)

    def validate(
        self,
        writes: Iterable[str],
        mapping: Mapping,
        *,
        step_id: Optional[str] = None,
        variant_id: Optional[str] = None,
        existing_types: Optional[Dict[str, str]] = None,
        written_paths: Optional[Iterable[str]] = None,
        require_complete: bool = True,
    ) -> ValidationReport:
        """
        Проверить mapping. Бросает ContractViolationError со списками missing/malformed.
        require_complete=False — проверяется только дисциплина имён
        (промежуточные итерации самокоррекции).
        """
        if not isinstance(mapping, Mapping):
            raise ContractViolationError(
                f"Ожидался mapping, получено {type(mapping).__name__}",
                malformed=["<mapping>"], step_id=step_id, variant_id=variant_id,
            )
        writes = list(writes)
        suffixed = step_id is not None and variant_id is not None
        expected = {self.output_key(name, step_id, variant_id): name for name in writes}
        existing_types = existing_types or {}
        written = None if written_paths is None else {posixpath.normpath(p) for p in written_paths}

        report = ValidationReport()
        missing: List[str] = []
        malformed: List[str] = []

        for key, value in mapping.items():
            if not isinstance(key, str):
                malformed.append(repr(key))
                continue
            if key in RESERVED_KEYS:
                report.control[key] = value
                continue
            if key in expected:
                continue
            if suffixed and not self._has_suffix(key, step_id, variant_id):
                malformed.append(key)
                continue
            report.extras.append(key)

        for key, name in expected.items():
            if key not in mapping or mapping[key] is None:
                if require_complete:
                    missing.append(key)
                continue
            value = mapping[key]
            if require_complete:
                if _contains_tool_value(value):
                    malformed.append(f"{key}: значение ToolValue без сужения")
                    continue
                previous = existing_types.get(name)
                tag = infer_entry_type(value)
                if previous is not None and previous != tag:
                    malformed.append(f"{key}: тип-тег {previous} -> {tag}")
                    continue
                if tag == "file" and written is not None and posixpath.normpath(value["path"]) not in written:
                    malformed.append(f"{key}: файл {value['path']} не был записан вариантом")
                    continue
            report.accepted[name] = value
            report.source_keys[name] = key

        if missing or malformed:
            where = f"{step_id}{variant_id}" if suffixed else (step_id or "?")
            raise ContractViolationError(
                f"Вариант {where}: нарушен контракт выходов (missing={missing}, malformed={malformed})",
                missing=missing, malformed=malformed, step_id=step_id, variant_id=variant_id,
            )

        if report.extras:
            LOG.info("ℹ️ Вариант %s%s: лишние ключи не фиксируются: %s",
                     step_id or "", variant_id or "", report.extras)
        return report

    def commit_view(self, writes: Iterable[str], mapping: Mapping, **kwargs: Any) -> Dict[str, Any]:
        """Подмножество {логическое имя: значение}, которое разрешено зафиксировать."""
        return self.validate(writes, mapping, **kwargs).accepted


__all__ = ["ContractValidator", "ValidationReport", "RESERVED_KEYS"]
