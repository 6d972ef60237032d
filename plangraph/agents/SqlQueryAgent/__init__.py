# plangraph/agents/SqlQueryAgent/__init__.py
# coding: utf-8
"""
Пакет SqlQueryAgent — read-only SQL-инструмент для фрагментов кода.
"""
from .core import SqlQueryAgent

__all__ = ["SqlQueryAgent"]
