from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from askbase.services.database import ConnectionInfo


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class AskRequest(BaseModel):
    question: Optional[str] = Field(None, description="User question in natural language")
    session_id: Optional[str] = Field(None, description="Conversation id; a new one is minted when absent")
    connection_id: Optional[str] = Field(None, description="Id of a stored database connection")
    connection: Optional[ConnectionInfo] = Field(None, description="Inline database credentials")


class AskResponse(BaseModel):
    answer: str
    sql: Optional[str] = None
    results: List[Dict[str, Any]] = Field(default_factory=list)
    result_count: int = 0
    tables_used: List[str] = Field(default_factory=list)
    session_id: str
    execution_time_ms: int
    chart_data: Optional[Dict[str, Any]] = None


class ConversationTurn(BaseModel):
    """One question/answer exchange; turns are appended and never edited."""

    model_config = ConfigDict(frozen=True)

    question: str
    sql: str
    tables_used: List[str] = Field(default_factory=list)
    result_count: int = 0
    results: List[Dict[str, Any]] = Field(default_factory=list, description="Sample of the result rows")
    answer: str = ""
    chart_data: Optional[Dict[str, Any]] = None
    execution_time_ms: int = 0
    is_followup: bool = False
    timestamp: str = Field(default_factory=_utcnow_iso)


class SessionRequest(BaseModel):
    session_id: Optional[str] = None


class ChatHistoryResponse(BaseModel):
    session_id: str
    history: List[ConversationTurn]


class ConnectionCheckResponse(BaseModel):
    status: str
    message: str
    table_count: int


class SchemaResponse(BaseModel):
    tables: List[Dict[str, Any]]


class StoredConnectionResponse(BaseModel):
    connection_id: str
