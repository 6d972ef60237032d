# plangraph/model/config.py
"""
EngineConfig — параметры запуска движка.

Значения по умолчанию берутся из plangraph.common.settings; для конкретного
запуска любое поле можно переопределить.
"""
from __future__ import annotations
from typing import List, Literal
from pydantic import BaseModel, Field

from plangraph.common import settings


class EngineConfig(BaseModel):
    timeout_s: float = Field(default_factory=lambda: settings.RUNNER_TIMEOUT_S, gt=0)
    memory_limit_mb: int = Field(default_factory=lambda: settings.RUNNER_MEMORY_LIMIT_MB)
    max_tool_calls: int = Field(default_factory=lambda: settings.RUNNER_MAX_TOOL_CALLS)
    max_tool_args: int = Field(default_factory=lambda: settings.RUNNER_MAX_TOOL_ARGS)
    allowed_modules: List[str] = Field(default_factory=lambda: list(settings.RUNNER_ALLOWED_MODULES))
    result_name: str = Field(default_factory=lambda: settings.RUNNER_RESULT_NAME)
    suffix_template: str = Field(default_factory=lambda: settings.OUTPUT_SUFFIX_TEMPLATE)
    iteration_budget: int = Field(default_factory=lambda: settings.ITERATION_BUDGET)
    parallelism: int = Field(default_factory=lambda: settings.ENGINE_PARALLELISM)
    side_effect_policy: Literal["keep", "rollback"] = Field(default_factory=lambda: settings.SIDE_EFFECT_POLICY)
    workdir: str = Field(default_factory=lambda: settings.WORKDIR)
    default_agent: str = Field(default_factory=lambda: settings.DEFAULT_PRODUCER_AGENT)
    recursion_limit: int = Field(default_factory=lambda: settings.LANGGRAPH_RECURSION_LIMIT)
