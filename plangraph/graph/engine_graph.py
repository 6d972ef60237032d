# plangraph/graph/engine_graph.py
"""
Граф исполнения плана (LangGraph).
Маршрутизация:
  schedule → (dispatch → schedule)* → report
schedule — каскад пропусков и проверка завершения;
dispatch — один тик: готовые шаги исполняются параллельно и фиксируются;
report   — итоговый статус запуска.
"""
from typing import Any, Dict, List
from langgraph.graph import StateGraph, END
from pydantic import BaseModel, Field

from plangraph.graph.nodes.dispatch import dispatch_node
from plangraph.graph.nodes.report import report_node
from plangraph.graph.nodes.schedule import schedule_node


class TickState(BaseModel):
    """Состояние цикла тиков. Граф плана и переменные живут в Engine."""
    run_id: str
    tick: int = 0
    dispatched: List[str] = Field(default_factory=list)
    finished: bool = False
    status: str = "pending"


def build_engine_graph(engine):
    def schedule(state: TickState) -> Dict[str, Any]:
        return schedule_node(state, engine=engine)

    def dispatch(state: TickState) -> Dict[str, Any]:
        return dispatch_node(state, engine=engine)

    def report(state: TickState) -> Dict[str, Any]:
        return report_node(state, engine=engine)

    graph = StateGraph(TickState)
    graph.add_node("schedule", schedule)
    graph.add_node("dispatch", dispatch)
    graph.add_node("report", report)

    graph.set_entry_point("schedule")

    def schedule_router(state: TickState) -> str:
        return "report" if state.finished else "dispatch"

    graph.add_conditional_edges("schedule", schedule_router)

    # 🔁 Ключевой цикл: dispatch → schedule
    graph.add_edge("dispatch", "schedule")

    graph.add_edge("report", END)
    return graph.compile()
