"""
Операция: сведения о файле рабочей директории.
"""
from plangraph.agents.operations_base import BaseOperation, OperationKind
from plangraph.model.agent_result import AgentResult


class Operation(BaseOperation):
    kind = OperationKind.DIRECT
    description = "Вернуть {path, exists, size} для файла рабочей директории."
    params_schema = {
        "path": {"type": "string", "required": True},
    }
    outputs_schema = {"path": "string", "exists": "boolean", "size": "integer"}
    args = ("path",)

    def run(self, params: dict, context: dict, agent) -> AgentResult:
        path = params.get("path")
        try:
            full = agent.workspace.resolve(path)
        except (PermissionError, ValueError) as e:
            return AgentResult.error(message=str(e), stage="tool_call", input_params=params)
        exists = full.is_file()
        return AgentResult.ok(
            stage="tool_call",
            input_params=params,
            output={
                "path": agent.workspace.normalize(path),
                "exists": exists,
                "size": full.stat().st_size if exists else 0,
            },
        )
