"""
services/db_service/executor.py

Безопасное выполнение SELECT-запросов для агентов-инструментов:
- только один SELECT (без ';' внутри, без DML/DDL)
- ограничение выборки
- возврат (rows, metadata)
- логирование ошибок
"""

import logging
import re
from typing import Any, Dict, List, Tuple
from sqlalchemy import text
from sqlalchemy.engine import Engine, Result
from sqlalchemy.exc import OperationalError, SQLAlchemyError

LOG = logging.getLogger(__name__)

_SELECT_RE = re.compile(r"^\s*(select|with)\b", re.IGNORECASE)


def execute_select(engine: Engine, sql: str, limit: int = 500) -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
    """
    Выполнить SELECT-запрос в безопасном режиме.

    :param engine: SQLAlchemy engine
    :param sql: строка SQL-запроса (без LIMIT)
    :param limit: ограничение выборки
    :return: (rows, metadata); при ошибке rows пуст, metadata["error"] заполнен
    """
    statement = sql.strip().rstrip(";")
    if not _SELECT_RE.match(statement) or ";" in statement:
        return [], {"error": "Разрешён только один SELECT-запрос", "sql": sql}

    # Оборачиваем запрос в подзапрос с лимитом
    safe_sql = f"SELECT * FROM ({statement}) AS subq LIMIT {int(limit)}"

    try:
        with engine.connect() as conn:
            res: Result = conn.execute(text(safe_sql))
            rows = [dict(row) for row in res.mappings().all()]
            return rows, {"rowcount": len(rows), "sql": sql, "safe_sql": safe_sql}

    except OperationalError as oe:
        LOG.error("SQL execution error: %s", oe)
        return [], {"error": str(oe), "sql": sql, "safe_sql": safe_sql}

    except SQLAlchemyError as e:
        LOG.exception("Unexpected SQLAlchemy error: %s", e)
        return [], {"error": str(e), "sql": sql, "safe_sql": safe_sql}
