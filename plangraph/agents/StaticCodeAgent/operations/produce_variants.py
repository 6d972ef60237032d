"""
Операция: выдать варианты кода для очередной итерации шага.

Источник вариантов (по приоритету):
1. params["variants"] — варианты, объявленные у шага;
2. params["instruction"]["variants"] — варианты, переданные в payload инструкции.

Параметры итерации (iteration, previous_result, iteration_context, next_instruction,
completed_steps, failed_steps) не меняют выдачу: фрагменты получают их напрямую.
"""
from typing import Any, Dict, List

from plangraph.agents.operations_base import BaseOperation, OperationKind
from plangraph.model.agent_result import AgentResult
from plangraph.model.models import MAX_VARIANTS


def _normalize(raw: Any) -> List[Dict[str, str]]:
    variants = []
    for item in raw or []:
        if hasattr(item, "model_dump"):
            item = item.model_dump()
        if isinstance(item, dict) and isinstance(item.get("code"), str):
            variants.append({"id": str(item.get("id") or chr(ord("A") + len(variants))), "code": item["code"]})
    return variants


class Operation(BaseOperation):
    kind = OperationKind.PRODUCER
    description = "Повторно выдать варианты кода шага для следующей итерации."
    params_schema = {
        "step_id": {"type": "string", "required": True},
        "instruction": {"type": "any", "required": False},
        "variants": {"type": "array", "required": False},
        "iteration": {"type": "integer", "required": False},
        "previous_result": {"type": "object", "required": False},
        "iteration_context": {"type": "object", "required": False},
        "next_instruction": {"type": "string", "required": False},
        "completed_steps": {"type": "array", "required": False},
        "failed_steps": {"type": "array", "required": False},
    }
    outputs_schema = {
        "variants": {"type": "array", "items": {"id": "string", "code": "string"}}
    }

    def run(self, params: dict, context: dict, agent) -> AgentResult:
        step_id = params.get("step_id")
        variants = _normalize(params.get("variants"))
        instruction = params.get("instruction")
        if not variants and isinstance(instruction, dict):
            variants = _normalize(instruction.get("variants"))

        if not variants:
            return AgentResult.error(
                message=f"Шаг {step_id}: нет вариантов кода для повторной выдачи",
                stage="variant_production",
                input_params={"step_id": step_id, "iteration": params.get("iteration")},
            )
        if len(variants) > MAX_VARIANTS:
            return AgentResult.error(
                message=f"Шаг {step_id}: {len(variants)} вариантов, допускается не больше {MAX_VARIANTS}",
                stage="variant_production",
                input_params={"step_id": step_id, "iteration": params.get("iteration")},
            )

        return AgentResult.ok(
            stage="variant_production",
            output={"variants": variants},
            summary=f"Шаг {step_id}: выдано {len(variants)} вариантов (итерация {params.get('iteration', 1)})",
            input_params={"step_id": step_id, "iteration": params.get("iteration")},
        )
