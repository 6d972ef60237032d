# tests/api/test_api.py
# coding: utf-8
"""
Тесты HTTP-поверхности движка (FastAPI TestClient).
"""
import pytest
from fastapi.testclient import TestClient

from plangraph.api.main import create_app
from plangraph.model.config import EngineConfig


@pytest.fixture
def client(tmp_path, control_registry):
    def config_factory(run_id):
        return EngineConfig(workdir=str(tmp_path / run_id), memory_limit_mb=0, timeout_s=2.0)

    return TestClient(create_app(config_factory=config_factory, agent_registry=control_registry))


def submit(client, run_id, step_id, writes, code, depends_on=()):
    return client.post(f"/runs/{run_id}/steps", json={
        "step_id": step_id,
        "writes": writes,
        "depends_on": list(depends_on),
        "variants": [{"id": "A", "code": code}],
    })


def test_submit_and_execute(client):
    resp = client.post("/runs/r1/inputs", json={"n": 2})
    assert resp.status_code == 200
    assert resp.json()["inputs"] == ["n"]

    resp = submit(client, "r1", "1", ["double"], 'result = {"double_1A": n * 2}')
    assert resp.status_code == 200
    assert resp.json()["next_step_id"] == "1"

    resp = submit(client, "r1", "2", ["triple"], 'result = {"triple_2A": double + n}', depends_on=["1"])
    assert resp.status_code == 200
    assert set(resp.json()["graph"]["steps"]) == {"1", "2"}

    resp = client.post("/runs/r1/execute")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "completed"
    assert body["commit_order"] == ["1", "2"]
    assert body["steps"]["2"]["committed_variant"] == "A"

    assert client.get("/runs/r1/variables").json() == {"n": 2, "double": 4, "triple": 6}
    assert client.get("/runs/r1/report").json()["status"] == "completed"


def test_next_executes_single_step(client):
    submit(client, "r2", "1", ["a"], 'result = {"a_1A": 1}')
    submit(client, "r2", "2", ["b"], 'result = {"b_2A": a + 1}', depends_on=["1"])

    resp = client.post("/runs/r2/next")
    assert resp.status_code == 200
    results = resp.json()
    assert [r["step_id"] for r in results] == ["1"]
    assert results[-1]["status"] == "succeeded"
    assert results[-1]["next_step_id"] == "2"
    assert client.get("/runs/r2/report").json()["status"] == "pending"


def test_unknown_run_is_404(client):
    assert client.get("/runs/missing/report").status_code == 404
    assert client.post("/runs/missing/execute").status_code == 404


def test_self_dependency_rejected(client):
    resp = submit(client, "r3", "1", ["a"], 'result = {"a_1A": 1}', depends_on=["1"])
    assert resp.status_code == 422
    assert resp.json()["kind"] == "GraphCycleError"


def test_invalid_submission_body(client):
    resp = client.post("/runs/r4/steps", json={"writes": ["a"]})
    assert resp.status_code == 422
