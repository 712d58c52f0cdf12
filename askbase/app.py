from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from askbase.config import settings
from askbase.errors import AskBaseError, MissingInputError
from askbase.models.chat import (
    AskRequest,
    AskResponse,
    ChatHistoryResponse,
    ConnectionCheckResponse,
    SchemaResponse,
    SessionRequest,
    StoredConnectionResponse,
)
from askbase.services import query_engine as engine_module
from askbase.services.database import (
    ConnectionInfo,
    check_connection,
    describe_tables,
    list_tables,
    open_connection,
)
from askbase.services.session_store import close_session_store
from askbase.utils.logger import logger


@asynccontextmanager
async def lifespan(_: FastAPI):
    yield
    close_session_store()


app = FastAPI(default_response_class=JSONResponse, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


async def _to_thread(func, *args, **kwargs):  # type: ignore[no-untyped-def]
    return await asyncio.to_thread(func, *args, **kwargs)


async def _call(label: str, func, *args, **kwargs):  # type: ignore[no-untyped-def]
    """Run blocking work off the event loop and map failures to structured errors."""
    try:
        return await _to_thread(func, *args, **kwargs)
    except AskBaseError as err:
        logger.warning("%s failed: %s (%s)", label, err.message, err.code)
        raise HTTPException(status_code=err.status_code, detail=err.to_dict()) from err
    except Exception as exc:  # noqa: BLE001
        logger.exception("%s failed", label)
        raise HTTPException(
            status_code=500, detail={"error": "internal_error", "message": str(exc)}
        ) from exc


def _require_session_id(session_id: str | None) -> str:
    if not session_id:
        err = MissingInputError("Missing session_id")
        raise HTTPException(status_code=err.status_code, detail=err.to_dict())
    return session_id


@app.get("/api/healthz")
async def healthz() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/api/ask", response_model=AskResponse)
async def ask(req: AskRequest) -> AskResponse:
    result = await _call(
        "Ask",
        engine_module.query_engine.answer,
        req.question,
        session_id=req.session_id,
        connection_id=req.connection_id,
        connection=req.connection,
    )
    return AskResponse(**result)


@app.get("/api/chat-history", response_model=ChatHistoryResponse)
async def chat_history(session_id: str | None = Query(None)) -> ChatHistoryResponse:
    sid = _require_session_id(session_id)
    history = await _call("Get chat history", engine_module.query_engine.history, sid)
    return ChatHistoryResponse(session_id=sid, history=history)


@app.delete("/api/chat-history")
async def clear_chat_history(req: SessionRequest) -> Dict[str, Any]:
    sid = _require_session_id(req.session_id)
    if not await _call("Clear chat history", engine_module.query_engine.reset, sid):
        raise HTTPException(
            status_code=404,
            detail={"error": "session_not_found", "message": "Session not found"},
        )
    return {"message": "Chat history cleared", "session_id": sid}


@app.post("/api/reset-session-history")
async def reset_session_history(req: SessionRequest) -> Dict[str, Any]:
    sid = _require_session_id(req.session_id)
    if not await _call("Reset session history", engine_module.query_engine.reset, sid):
        raise HTTPException(
            status_code=404,
            detail={"error": "session_not_found", "message": "Session not found"},
        )
    return {"success": True, "message": "Session history reset."}


@app.post("/api/connect-db", response_model=ConnectionCheckResponse)
async def connect_db(info: ConnectionInfo) -> ConnectionCheckResponse:
    tables = await _call("Connect database", check_connection, info, settings)
    return ConnectionCheckResponse(
        status="success",
        message="Database connected successfully",
        table_count=len(tables),
    )


def _read_schema(info: ConnectionInfo) -> list:
    with open_connection(info, settings) as conn:
        names = list_tables(conn, settings.db_schema)
        return [t.to_dict() for t in describe_tables(conn, names, settings.db_schema)]


@app.post("/api/schema", response_model=SchemaResponse)
async def schema(info: ConnectionInfo) -> SchemaResponse:
    tables = await _call("Read schema", _read_schema, info)
    return SchemaResponse(tables=tables)


@app.post("/api/database-connections", response_model=StoredConnectionResponse)
async def save_database_connection(info: ConnectionInfo) -> StoredConnectionResponse:
    connection_id = await _call("Save connection", engine_module.query_engine.store.save_connection, info)
    return StoredConnectionResponse(connection_id=connection_id)
