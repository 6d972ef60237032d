# tests/agents/test_sql_query_agent.py
# coding: utf-8
"""
Тесты для SqlQueryAgent: операция sql_query как инструмент фрагмента кода.
"""
import pytest
from sqlalchemy import text

from plangraph.agents.registry import AgentRegistry
from plangraph.common.tool_registry import TOOL_REGISTRY
from plangraph.graph.engine import Engine
from plangraph.model.models import CodeVariant, PlanGraph, StepNode
from plangraph.services.db_service.connection import get_engine


@pytest.fixture
def db_uri(tmp_path):
    uri = f"sqlite:///{tmp_path / 'library.db'}"
    with get_engine(uri).begin() as conn:
        conn.execute(text("CREATE TABLE authors (id INTEGER PRIMARY KEY, name TEXT);"))
        conn.execute(text("INSERT INTO authors (id, name) VALUES (1, 'Пушкин'), (2, 'Гоголь');"))
    return uri


@pytest.fixture
def registry(db_uri):
    entry = dict(TOOL_REGISTRY["SqlQueryAgent"], config={"db_uri": db_uri, "max_rows": 10})
    return AgentRegistry(tool_registry={"SqlQueryAgent": entry}, control_registry={})


def test_sql_query_operation(registry):
    agent = registry.instantiate_agent("SqlQueryAgent")
    result = agent.execute_operation("sql_query", {"sql": "SELECT name FROM authors ORDER BY id"})
    assert result.status == "ok"
    assert result.output == [{"name": "Пушкин"}, {"name": "Гоголь"}]

    rejected = agent.execute_operation("sql_query", {"sql": "DROP TABLE authors"})
    assert rejected.status == "error"


def test_sql_query_without_database():
    entry = dict(TOOL_REGISTRY["SqlQueryAgent"], config={"db_uri": "", "max_rows": 10})
    registry = AgentRegistry(tool_registry={"SqlQueryAgent": entry}, control_registry={})
    result = registry.instantiate_agent("SqlQueryAgent").execute_operation("sql_query", {"sql": "SELECT 1"})
    assert result.status == "error"


def test_sql_query_inside_fragment(registry, engine_config):
    code = (
        'rows = sql_query("SELECT id, name FROM authors ORDER BY id")\n'
        'result = {"names_1A": [r.get("name").as_text() for r in rows.as_list()]}\n'
    )
    engine = Engine(engine_config, agent_registry=registry)
    engine.submit(PlanGraph.from_steps([StepNode(id="1", writes=["names"], variants=[CodeVariant(id="A", code=code)])]))

    report = engine.run()
    assert report.status == "completed"
    assert engine.store.get("names").content == ["Пушкин", "Гоголь"]


def test_failed_tool_call_is_variant_error(registry, engine_config):
    engine = Engine(engine_config, agent_registry=registry)
    engine.submit(PlanGraph.from_steps([StepNode(id="1", writes=["n"], variants=[
        CodeVariant(id="A", code='rows = sql_query("DELETE FROM authors")\nresult = {"n_1A": 0}'),
        CodeVariant(id="B", code='rows = sql_query("SELECT COUNT(*) AS n FROM authors")\n'
                                 'result = {"n_1B": rows.first().get("n").as_int()}'),
    ])]))

    report = engine.run()
    assert report.steps["1"].committed_variant == "B"
    assert report.steps["1"].variant_failures[0]["kind"] == "RunnerFault"
    assert engine.store.get("n").content == 2
