# plangraph/api/main.py
"""
HTTP-поверхность движка (FastAPI).

  POST /runs/{run_id}/inputs     — входные значения запуска
  POST /runs/{run_id}/steps      — принять шаг (StepSubmission)
  POST /runs/{run_id}/execute    — исполнить граф до завершения/блокировки
  POST /runs/{run_id}/next       — исполнить один следующий готовый шаг
  GET  /runs/{run_id}/report     — отчёт запуска
  GET  /runs/{run_id}/variables  — последние значения переменных

Запуск: uvicorn plangraph.api.main:app
"""
from __future__ import annotations
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse

from plangraph.agents.registry import AgentRegistry
from plangraph.common.errors import EngineError
from plangraph.execution.variant_selector import plain_value
from plangraph.graph.engine import Engine
from plangraph.model.config import EngineConfig
from plangraph.model.interfaces import RunReport, StepResult, StepSubmission

LOG = logging.getLogger(__name__)
LOG.addHandler(logging.NullHandler())


def create_app(
    config_factory: Optional[Callable[[str], EngineConfig]] = None,
    agent_registry: Optional[AgentRegistry] = None,
    repository=None,
) -> FastAPI:
    """
    config_factory: run_id → EngineConfig (по умолчанию EngineConfig()).
    repository: RunStateRepository; если задан, неизвестный run_id сначала ищется в нём.
    """
    app = FastAPI(title="plangraph")
    registry = agent_registry if agent_registry is not None else AgentRegistry(validate_on_init=True)
    engines: Dict[str, Engine] = {}
    lock = threading.Lock()

    def get_engine(run_id: str, create: bool = True) -> Engine:
        with lock:
            engine = engines.get(run_id)
            if engine is not None:
                return engine
            config = config_factory(run_id) if config_factory else EngineConfig()
            if repository is not None and run_id in repository.list_runs():
                engine = Engine.resume(run_id, repository, config, agent_registry=registry)
            elif create:
                engine = Engine(config, agent_registry=registry, repository=repository, run_id=run_id)
            else:
                raise HTTPException(status_code=404, detail=f"Запуск '{run_id}' не найден")
            engines[run_id] = engine
            return engine

    @app.exception_handler(EngineError)
    async def engine_error_handler(request, exc: EngineError):
        LOG.warning("⚠️ Отклонён запрос %s: %s", request.url.path, exc.message)
        return JSONResponse(status_code=422, content=plain_value(exc.to_dict()))

    @app.post("/runs/{run_id}/inputs")
    def put_inputs(run_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        engine = get_engine(run_id)
        for name, value in values.items():
            engine.put_input(name, value)
        return {"run_id": run_id, "inputs": sorted(values)}

    @app.post("/runs/{run_id}/steps")
    def submit_step(run_id: str, submission: StepSubmission) -> Dict[str, Any]:
        engine = get_engine(run_id)
        graph = engine.submit_step(submission)
        return {
            "run_id": run_id,
            "graph": graph.model_dump(),
            "next_step_id": engine.scheduler.next_ready(),
        }

    @app.post("/runs/{run_id}/execute", response_model=RunReport)
    def execute(run_id: str) -> RunReport:
        return get_engine(run_id, create=False).run()

    @app.post("/runs/{run_id}/next", response_model=List[StepResult])
    def execute_next(run_id: str) -> List[StepResult]:
        return get_engine(run_id, create=False).execute_step()

    @app.get("/runs/{run_id}/report", response_model=RunReport)
    def report(run_id: str) -> RunReport:
        return get_engine(run_id, create=False).report()

    @app.get("/runs/{run_id}/variables")
    def variables(run_id: str) -> Dict[str, Any]:
        return plain_value(get_engine(run_id, create=False).store.as_plain_dict())

    return app


app = create_app()
