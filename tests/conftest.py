# tests/conftest.py
# coding: utf-8
"""
Общие фикстуры: конфигурация движка во временной директории и реестр агентов
без инструментов (только агенты-производители).
"""
import pytest

from plangraph.agents.registry import AgentRegistry
from plangraph.common.control_registry import CONTROL_REGISTRY
from plangraph.model.config import EngineConfig


@pytest.fixture
def workdir(tmp_path):
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture
def engine_config(workdir):
    return EngineConfig(
        workdir=str(workdir),
        timeout_s=2.0,
        memory_limit_mb=0,
        parallelism=2,
        iteration_budget=3,
    )


@pytest.fixture
def control_registry():
    """Реестр только с агентами-производителями: инструменты задаются тестом явно."""
    return AgentRegistry(tool_registry={}, control_registry=CONTROL_REGISTRY)
