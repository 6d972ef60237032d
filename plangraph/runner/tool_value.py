# plangraph/runner/tool_value.py
"""
ToolValue — непрозрачная обёртка над результатом инструмента.

Инструменты возвращают значения произвольной формы (вложенные списки, словари,
скаляры). Фрагмент кода обязан явно сузить значение перед использованием:

    rows = search("книги Пушкина")          # ToolValue
    count = rows.get("total").as_int()      # явное сужение -> int
    count + 1                               # ок
    rows + 1                                # TypeError -> RunnerFault

Любое несоответствие формы — ShapeError (TypeError), без молчаливого приведения.
"""
from __future__ import annotations
from collections.abc import Mapping, Sequence
from typing import Any, Dict, List

from plangraph.common.errors import ShapeError


def _shape_of(raw: Any) -> str:
    if raw is None:
        return "none"
    if isinstance(raw, bool):
        return "bool"
    if isinstance(raw, (int, float)):
        return "number"
    if isinstance(raw, str):
        return "text"
    if isinstance(raw, Mapping):
        return "mapping"
    if isinstance(raw, Sequence) and not isinstance(raw, (bytes, bytearray)):
        return "sequence"
    return "other"


class ToolValue:
    __slots__ = ("_raw", "_origin")

    def __init__(self, raw: Any, origin: str = "tool"):
        self._raw = raw
        self._origin = origin

    def _fail(self, expected: str) -> ShapeError:
        return ShapeError(
            f"{self._origin}: ожидалась форма '{expected}', получена '{_shape_of(self._raw)}'"
        )

    # -----------------------------
    # Интроспекция
    # -----------------------------
    def shape(self) -> str:
        """none | bool | number | text | mapping | sequence | other"""
        return _shape_of(self._raw)

    def is_empty(self) -> bool:
        shape = self.shape()
        if shape == "none":
            return True
        if shape in ("text", "mapping", "sequence"):
            return len(self._raw) == 0
        return False

    # -----------------------------
    # Сужение к скалярам
    # -----------------------------
    def as_number(self):
        if self.shape() != "number":
            raise self._fail("number")
        return self._raw

    def as_int(self) -> int:
        value = self.as_number()
        if isinstance(value, float):
            if not value.is_integer():
                raise ShapeError(f"{self._origin}: число {value} не является целым")
            return int(value)
        return value

    def as_text(self) -> str:
        if self.shape() != "text":
            raise self._fail("text")
        return self._raw

    def as_bool(self) -> bool:
        if self.shape() != "bool":
            raise self._fail("bool")
        return self._raw

    # -----------------------------
    # Сужение к контейнерам (элементы остаются ToolValue)
    # -----------------------------
    def as_list(self) -> List["ToolValue"]:
        if self.shape() != "sequence":
            raise self._fail("sequence")
        return [ToolValue(item, f"{self._origin}[{i}]") for i, item in enumerate(self._raw)]

    def as_mapping(self) -> Dict[str, "ToolValue"]:
        if self.shape() != "mapping":
            raise self._fail("mapping")
        return {str(k): ToolValue(v, f"{self._origin}.{k}") for k, v in self._raw.items()}

    def get(self, key: str) -> "ToolValue":
        if self.shape() != "mapping":
            raise self._fail("mapping")
        if key not in self._raw:
            raise ShapeError(f"{self._origin}: ключ '{key}' отсутствует (доступны: {sorted(map(str, self._raw))})")
        return ToolValue(self._raw[key], f"{self._origin}.{key}")

    def at(self, index: int) -> "ToolValue":
        if self.shape() != "sequence":
            raise self._fail("sequence")
        try:
            return ToolValue(self._raw[index], f"{self._origin}[{index}]")
        except IndexError:
            raise ShapeError(f"{self._origin}: индекс {index} вне диапазона (длина {len(self._raw)})") from None

    def first(self) -> "ToolValue":
        return self.at(0)

    def unwrap(self) -> Any:
        """Явно забрать сырое значение (ответственность за форму — на вызывающем)."""
        return self._raw

    # -----------------------------
    # Запрет неявного использования
    # -----------------------------
    def __bool__(self) -> bool:
        raise ShapeError(f"{self._origin}: неявная проверка истинности запрещена, используйте is_empty()/as_bool()")

    def __eq__(self, other: object) -> bool:
        raise ShapeError(f"{self._origin}: сравнение без сужения запрещено")

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"ToolValue(origin={self._origin!r}, shape={self.shape()!r})"
