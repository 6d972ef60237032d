"""
services/run_state/repository.py

Хранилище состояния запуска (SQLAlchemy):
- run_graphs        — граф плана и порядок фиксаций шагов (один ряд на run_id);
- variable_entries  — все версии переменных хранилища.

Сохранение выполняется после каждой фиксации шага; load() восстанавливает
граф и VariableStore для Engine.resume().
"""

import json
import logging
import time
from typing import Any, List, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from plangraph.model.models import PlanGraph, VariableStoreEntry
from plangraph.services.db_service.connection import get_engine

LOG = logging.getLogger(__name__)
LOG.addHandler(logging.NullHandler())

_DDL = (
    """
    CREATE TABLE IF NOT EXISTS run_graphs (
        run_id VARCHAR(128) PRIMARY KEY,
        graph_json TEXT NOT NULL,
        commit_order_json TEXT NOT NULL,
        saved_ts DOUBLE PRECISION NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS variable_entries (
        run_id VARCHAR(128) NOT NULL,
        name VARCHAR(256) NOT NULL,
        version INTEGER NOT NULL,
        type VARCHAR(16) NOT NULL,
        content_json TEXT,
        path TEXT,
        updated_at VARCHAR(128) NOT NULL,
        variant_id VARCHAR(16),
        source_key VARCHAR(256),
        PRIMARY KEY (run_id, name, version)
    )
    """,
)


def _json_default(value: Any) -> Any:
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=repr)
    if isinstance(value, tuple):
        return list(value)
    return str(value)


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=_json_default)


class RunStateRepository:
    def __init__(self, db_uri: Optional[str] = None, engine: Optional[Engine] = None):
        if engine is None:
            if not db_uri:
                raise ValueError("Нужен db_uri или engine")
            engine = get_engine(db_uri)
        self.engine = engine
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        with self.engine.begin() as conn:
            for ddl in _DDL:
                conn.execute(text(ddl))

    def save(self, run_id: str, graph: PlanGraph, entries: List[VariableStoreEntry], commit_order: List[str]) -> None:
        """Перезаписать состояние запуска одной транзакцией."""
        graph_json = _dumps(graph.model_dump())
        rows = [
            {
                "run_id": run_id,
                "name": e.name,
                "version": e.version,
                "type": e.type,
                "content_json": _dumps(e.content),
                "path": e.path,
                "updated_at": e.updated_at,
                "variant_id": e.variant_id,
                "source_key": e.source_key,
            }
            for e in entries
        ]
        try:
            with self.engine.begin() as conn:
                conn.execute(text("DELETE FROM run_graphs WHERE run_id = :run_id"), {"run_id": run_id})
                conn.execute(
                    text(
                        "INSERT INTO run_graphs (run_id, graph_json, commit_order_json, saved_ts) "
                        "VALUES (:run_id, :graph_json, :commit_order_json, :saved_ts)"
                    ),
                    {
                        "run_id": run_id,
                        "graph_json": graph_json,
                        "commit_order_json": _dumps(list(commit_order)),
                        "saved_ts": time.time(),
                    },
                )
                conn.execute(text("DELETE FROM variable_entries WHERE run_id = :run_id"), {"run_id": run_id})
                if rows:
                    conn.execute(
                        text(
                            "INSERT INTO variable_entries "
                            "(run_id, name, version, type, content_json, path, updated_at, variant_id, source_key) "
                            "VALUES (:run_id, :name, :version, :type, :content_json, :path, :updated_at, "
                            ":variant_id, :source_key)"
                        ),
                        rows,
                    )
        except SQLAlchemyError as e:
            LOG.exception("Не удалось сохранить состояние запуска %s: %s", run_id, e)
            raise
        LOG.debug("💽 Состояние запуска %s сохранено: шагов %d, версий переменных %d",
                  run_id, len(graph.steps), len(rows))

    def load(self, run_id: str) -> Optional[Tuple[PlanGraph, List[VariableStoreEntry], List[str]]]:
        """(граф, версии переменных, порядок фиксаций) или None, если запуск неизвестен."""
        with self.engine.connect() as conn:
            head = conn.execute(
                text("SELECT graph_json, commit_order_json FROM run_graphs WHERE run_id = :run_id"),
                {"run_id": run_id},
            ).mappings().first()
            if head is None:
                return None
            rows = conn.execute(
                text(
                    "SELECT name, version, type, content_json, path, updated_at, variant_id, source_key "
                    "FROM variable_entries WHERE run_id = :run_id ORDER BY name, version"
                ),
                {"run_id": run_id},
            ).mappings().all()

        graph = PlanGraph.model_validate(json.loads(head["graph_json"]))
        entries = [
            VariableStoreEntry(
                name=row["name"],
                version=row["version"],
                type=row["type"],
                content=json.loads(row["content_json"]) if row["content_json"] is not None else None,
                path=row["path"],
                updated_at=row["updated_at"],
                variant_id=row["variant_id"],
                source_key=row["source_key"],
            )
            for row in rows
        ]
        return graph, entries, json.loads(head["commit_order_json"])

    def list_runs(self) -> List[str]:
        with self.engine.connect() as conn:
            return [r[0] for r in conn.execute(text("SELECT run_id FROM run_graphs ORDER BY run_id"))]
