from __future__ import annotations

import re
from typing import Any, Dict, List

import pandas as pd
from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from askbase.errors import DatabaseError
from askbase.utils.dataframe_utils import frame_to_records
from askbase.utils.sql_utils import split_statements, strip_quoted_text


FORBIDDEN_TOKENS = {
    "drop",
    "insert",
    "update",
    "delete",
    "create",
    "alter",
    "truncate",
    "grant",
    "revoke",
    "copy",
    "attach",
    "detach",
    "pragma",
    "call",
    "vacuum",
}

_FORBIDDEN_RE = re.compile(r"\b(" + "|".join(sorted(FORBIDDEN_TOKENS)) + r")\b", re.IGNORECASE)


def is_single_statement(sql: str) -> bool:
    return len(split_statements(sql)) == 1


def is_safe_select(sql: str) -> bool:
    """True for one read-only SELECT/WITH statement."""
    statements = split_statements(sql)
    if len(statements) != 1:
        return False
    skeleton = re.sub(r"\s+", " ", strip_quoted_text(statements[0])).strip().lower()
    if not (skeleton.startswith("select") or skeleton.startswith("with")):
        return False
    return _FORBIDDEN_RE.search(skeleton) is None


def _escape_bind_markers(sql: str) -> str:
    # text() treats ":name" as a bind parameter, even inside literals
    return re.sub(r"'[^']*'|\"[^\"]*\"", lambda m: m.group(0).replace(":", "\\:"), sql)


def _driver_message(exc: Exception) -> str:
    # pandas re-raises driver failures with the SQLAlchemy error as the cause
    cause = exc if isinstance(exc, SQLAlchemyError) else (exc.__cause__ or exc)
    return str(getattr(cause, "orig", None) or cause)


def run_sql(conn: Connection, sql: str) -> List[Dict[str, Any]]:
    """Execute one SELECT/CTE statement and return JSON-safe rows."""
    if not is_single_statement(sql):
        raise DatabaseError(
            "Exactly one SQL statement can be executed per question",
            code="db_query_failed",
        )
    if not is_safe_select(sql):
        raise DatabaseError("Only SELECT/WITH queries are allowed.", code="db_query_failed")
    statement = split_statements(sql)[0]
    try:
        df = pd.read_sql_query(text(_escape_bind_markers(statement)), conn)
    except (SQLAlchemyError, pd.errors.DatabaseError) as exc:
        raise DatabaseError(
            "Failed to execute SQL query",
            code="db_query_failed",
            detail=_driver_message(exc),
        ) from exc
    return frame_to_records(df)
