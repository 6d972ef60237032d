"""
Операция: выполнить read-only SELECT и вернуть строки.
Используется фрагментами кода как `rows = sql_query("SELECT ...")`.
"""
from plangraph.agents.operations_base import BaseOperation, OperationKind
from plangraph.model.agent_result import AgentResult
from plangraph.services.db_service.executor import execute_select


class Operation(BaseOperation):
    kind = OperationKind.DIRECT
    description = "Выполнить SELECT-запрос (без LIMIT) и вернуть список строк-словарей."
    params_schema = {
        "sql": {"type": "string", "required": True},
    }
    outputs_schema = {"type": "array", "items": "object"}
    args = ("sql",)

    def run(self, params: dict, context: dict, agent) -> AgentResult:
        if getattr(agent, "engine", None) is None:
            return AgentResult.error(
                message="База данных недоступна: не задан db_uri",
                stage="tool_call",
                input_params=params,
            )
        sql = params.get("sql")
        if not isinstance(sql, str) or not sql.strip():
            return AgentResult.error(message="Параметр 'sql' обязателен", stage="tool_call", input_params=params)

        rows, metadata = execute_select(agent.engine, sql, limit=agent.max_rows)
        if "error" in metadata:
            return AgentResult.error(
                message=f"Ошибка выполнения SQL: {metadata['error']}",
                stage="tool_call",
                input_params=params,
                metadata=metadata,
            )
        return AgentResult.ok(
            stage="tool_call",
            input_params=params,
            output=rows,
            summary=f"Получено строк: {len(rows)}",
            metadata=metadata,
        )
