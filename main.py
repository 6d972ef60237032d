# main.py
import logging

from plangraph.agents.registry import AgentRegistry
from plangraph.graph.engine import Engine
from plangraph.model.config import EngineConfig
from plangraph.model.models import CodeVariant, Edge, PlanGraph, StepNode

logging.basicConfig(level=logging.INFO)


def fetch_prices(ticker):
    """Котировки тикера (демо-инструмент: вложенная структура произвольной формы)."""
    return {"ticker": ticker, "quotes": [[1, 101.5], [2, 99.0], [3, 104.25]]}


# Создаём реестр агентов и движок
agent_registry = AgentRegistry(validate_on_init=True)
engine = Engine(EngineConfig(parallelism=2), agent_registry=agent_registry, tools={"fetch_prices": fetch_prices}, run_id="demo")

# === 1. Входные значения запуска ===
engine.put_input("ticker", "ACME")

# === 2. План из трёх шагов: fetch → transform → write-file ===
graph = PlanGraph.from_steps(
    [
        StepNode(id="1", instruction="Получить котировки", writes=["prices"], variants=[
            # A забывает сузить результат инструмента → RunnerFault, B: корректный
            CodeVariant(id="A", code='raw = fetch_prices(ticker)\nresult = {"prices_1A": raw + 1}'),
            CodeVariant(id="B", code=(
                'raw = fetch_prices(ticker)\n'
                'rows = [[q.at(0).as_int(), q.at(1).as_number()] for q in raw.get("quotes").as_list()]\n'
                'result = {"prices_1B": rows}'
            )),
        ]),
        StepNode(id="2", instruction="Средняя цена", writes=["avg"], variants=[
            CodeVariant(id="A", code='result = {"avg_2A": sum(p for t, p in prices) / len(prices)}'),
        ]),
        StepNode(id="3", instruction="Отчёт в файл", writes=["report"], variants=[
            CodeVariant(id="A", code='result = {"report_3A": write_file("reports/avg.txt", "avg=" + str(round(avg, 2)))}'),
        ]),
    ],
    [Edge(source="1", target="2"), Edge(source="2", target="3")],
)
engine.submit(graph)

# === 3. Запускаем граф ===
report = engine.run()

# === 4. Читаем результат ===
print("STATUS:", report.status)
print("COMMIT ORDER:", report.commit_order)
print("VARIABLES:", engine.store.as_plain_dict())
