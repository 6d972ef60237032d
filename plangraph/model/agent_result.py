# plangraph/model/agent_result.py
"""
Универсальный результат выполнения операции агента.

Стандартный контракт для всех операций агентов (агенты-производители кода
и агенты-инструменты). Агенты сообщают об ошибках через AgentResult.error(...),
а не исключениями.

Основные поля:
  - status: 'ok' | 'error'
  - stage: этап жизненного цикла (variant_production, tool_call, ...)
  - agent: имя агента, который выполнил операцию (например, "StaticCodeAgent")
  - operation: имя операции (например, "produce_variants")
  - input_params: исходные параметры операции (для аудита и отладки)
  - output: основной результат операции (структурированные данные)
  - summary: краткое текстовое резюме того, что было сделано
  - metadata: дополнительная информация (elapsed_s, iteration и т.д.)
  - error: текст ошибки при status='error'
  - ts: временная метка выполнения
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
import time


@dataclass
class AgentResult:
    # Статус выполнения
    status: str  # "ok" или "error"

    # === Семантический контекст выполнения ===
    stage: Optional[str] = None          # "variant_production", "tool_call", ...

    # === Источник результата ===
    agent: Optional[str] = None
    operation: Optional[str] = None

    # === Вход и выход операции ===
    input_params: Optional[Dict[str, Any]] = None
    output: Optional[Any] = None

    summary: Optional[str] = None

    # === Метаданные и служебная информация ===
    metadata: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    ts: float = field(default_factory=time.time)

    @classmethod
    def ok(
        cls,
        stage: str,
        output: Any = None,
        summary: Optional[str] = None,
        input_params: Optional[Dict[str, Any]] = None,
        agent: Optional[str] = None,
        operation: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> "AgentResult":
        """Создаёт успешный результат.

        Пример:
            >>> result = AgentResult.ok(
            ...     stage="variant_production",
            ...     output={"variants": [{"id": "A", "code": "result = {}"}]},
            ...     summary="Сформирован 1 вариант",
            ... )
            >>> result.status
            'ok'
        """
        return cls(
            status="ok",
            stage=stage,
            agent=agent,
            operation=operation,
            input_params=input_params,
            output=output,
            summary=summary,
            metadata=metadata or {},
            error=None,
        )

    @classmethod
    def error(
        cls,
        message: str,
        stage: str,
        input_params: Optional[Dict[str, Any]] = None,
        agent: Optional[str] = None,
        operation: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> "AgentResult":
        """Создаёт результат с ошибкой.

        Пример:
            >>> result = AgentResult.error(
            ...     message="У шага нет вариантов для повторного запуска",
            ...     stage="variant_production",
            ... )
            >>> result.status
            'error'
        """
        return cls(
            status="error",
            stage=stage,
            agent=agent,
            operation=operation,
            input_params=input_params,
            output=None,
            summary=message[:200] if message else None,  # Краткое описание ошибки
            metadata=metadata or {},
            error=message,
        )
