# plangraph/agents/WorkspaceAssetsAgent/__init__.py
# coding: utf-8
"""
Пакет WorkspaceAssetsAgent — read-only доступ к файловым артефактам рабочей директории.
"""
from .core import WorkspaceAssetsAgent

__all__ = ["WorkspaceAssetsAgent"]
