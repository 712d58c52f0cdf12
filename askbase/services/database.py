from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence

from pydantic import BaseModel, Field
from sqlalchemy import create_engine, inspect
from sqlalchemy.engine import URL, Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import NullPool

from askbase.config import Settings, settings
from askbase.errors import AskBaseError, DatabaseError, MissingInputError
from askbase.utils.logger import logger


class ConnectionInfo(BaseModel):
    """Credentials for the database a question is asked against."""

    url: Optional[str] = Field(None, description="Full SQLAlchemy URL; overrides the discrete fields")
    dialect: str = Field("postgresql", description="SQLAlchemy dialect, optionally with driver")
    host: Optional[str] = None
    port: Optional[int] = None
    database: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None

    def is_complete(self) -> bool:
        return bool(self.url or (self.host and self.database))

    def to_url(self) -> URL | str:
        if self.url:
            return self.url
        if not self.is_complete():
            raise MissingInputError("Database host and name are required")
        port = self.port
        if port is None and self.dialect.startswith("postgresql"):
            port = 5432
        return URL.create(
            self.dialect,
            username=self.username,
            password=self.password,
            host=self.host,
            port=port,
            database=self.database,
        )

    def describe(self) -> str:
        if self.url:
            return self.url.split("@")[-1]
        return f"{self.host}:{self.port or ''}/{self.database}"


@dataclass(frozen=True)
class ColumnInfo:
    name: str
    type: str
    nullable: bool = True


@dataclass(frozen=True)
class TableDescriptor:
    name: str
    columns: List[ColumnInfo] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "columns": [
                {"name": c.name, "type": c.type, "nullable": c.nullable} for c in self.columns
            ],
        }


def _connect_args(backend: str, cfg: Settings) -> Dict[str, Any]:
    if backend == "postgresql":
        return {
            "connect_timeout": cfg.db_connect_timeout_seconds,
            "options": f"-c statement_timeout={cfg.db_statement_timeout_ms}",
        }
    if backend == "mysql":
        return {
            "connect_timeout": cfg.db_connect_timeout_seconds,
            "read_timeout": max(1, cfg.db_statement_timeout_ms // 1000),
        }
    if backend == "sqlite":
        return {"timeout": cfg.db_connect_timeout_seconds}
    return {}


def create_target_engine(info: ConnectionInfo, cfg: Settings = settings) -> Engine:
    """Build a single-connection engine for one request; it is never shared."""
    try:
        url = info.to_url()
        backend = url.get_backend_name() if isinstance(url, URL) else url.split(":", 1)[0].split("+", 1)[0]
        return create_engine(
            url,
            poolclass=NullPool,
            connect_args=_connect_args(backend, cfg),
        )
    except AskBaseError:
        raise
    except Exception as exc:  # noqa: BLE001
        raise DatabaseError(
            "Invalid database connection settings",
            code="db_connection_failed",
            detail=str(exc),
        ) from exc


@contextmanager
def open_connection(info: ConnectionInfo, cfg: Settings = settings) -> Iterator[Connection]:
    """Open the request-scoped connection and release it on every exit path."""
    engine = create_target_engine(info, cfg)
    try:
        conn = engine.connect()
    except SQLAlchemyError as exc:
        engine.dispose()
        logger.error("Database connection to %s failed: %s", info.describe(), exc)
        raise DatabaseError(
            "Failed to connect to database",
            code="db_connection_failed",
            detail=str(exc.__cause__ or exc),
        ) from exc

    try:
        yield conn
    finally:
        conn.close()
        engine.dispose()


def list_tables(conn: Connection, schema: Optional[str] = settings.db_schema) -> List[str]:
    """Base tables of the default (or configured) schema, sorted by name."""
    try:
        return sorted(inspect(conn).get_table_names(schema=schema))
    except SQLAlchemyError as exc:
        raise DatabaseError(
            "Failed to get tables",
            code="db_introspection_failed",
            detail=str(exc),
        ) from exc


def _type_name(col_type: Any) -> str:
    try:
        return str(col_type).lower()
    except Exception:  # noqa: BLE001
        # untyped columns (e.g. SQLite NullType) cannot be compiled
        return "unknown"


def list_columns(conn: Connection, table: str, schema: Optional[str] = settings.db_schema) -> List[ColumnInfo]:
    """Columns of ``table`` in their physical ordinal order."""
    try:
        columns = inspect(conn).get_columns(table, schema=schema)
    except SQLAlchemyError as exc:
        raise DatabaseError(
            f"Failed to get columns for table {table}",
            code="db_introspection_failed",
            detail=str(exc),
        ) from exc
    return [
        ColumnInfo(
            name=col["name"],
            type=_type_name(col["type"]),
            nullable=bool(col.get("nullable", True)),
        )
        for col in columns
    ]


def describe_tables(conn: Connection, names: Sequence[str], schema: Optional[str] = settings.db_schema) -> List[TableDescriptor]:
    # One table at a time to keep load on the source database predictable
    return [TableDescriptor(name=name, columns=list_columns(conn, name, schema)) for name in names]


def check_connection(info: ConnectionInfo, cfg: Settings = settings) -> List[str]:
    with open_connection(info, cfg) as conn:
        return list_tables(conn, cfg.db_schema)
