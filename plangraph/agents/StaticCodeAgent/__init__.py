# plangraph/agents/StaticCodeAgent/__init__.py
# coding: utf-8
"""
Пакет StaticCodeAgent — агент-производитель кода по умолчанию.
Экспортируем основной класс StaticCodeAgent.
"""
from .core import StaticCodeAgent

__all__ = ["StaticCodeAgent"]
