"""
Операция: список файлов рабочей директории (относительные пути, отсортированы).
"""
from plangraph.agents.operations_base import BaseOperation, OperationKind
from plangraph.model.agent_result import AgentResult


class Operation(BaseOperation):
    kind = OperationKind.DIRECT
    description = "Вернуть отсортированный список файлов рабочей директории, начинающихся с prefix."
    params_schema = {
        "prefix": {"type": "string", "required": False},
    }
    outputs_schema = {"type": "array", "items": "string"}
    args = ("prefix",)

    def run(self, params: dict, context: dict, agent) -> AgentResult:
        prefix = params.get("prefix") or ""
        root = agent.workspace.root
        paths = sorted(
            p.relative_to(root).as_posix()
            for p in root.rglob("*")
            if p.is_file()
        )
        paths = [p for p in paths if p.startswith(prefix)]
        return AgentResult.ok(
            stage="tool_call",
            input_params=params,
            output=paths,
            summary=f"Найдено файлов: {len(paths)}",
        )
