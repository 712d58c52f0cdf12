from __future__ import annotations

import re
import time
import uuid
from typing import Any, Dict, List, Optional, Sequence

from askbase.config import Settings, settings
from askbase.errors import InvalidConnectionError, MissingInputError, NoRelevantTablesError
from askbase.models.chat import ConversationTurn
from askbase.services.answer_synthesizer import generate_answer
from askbase.services.chart_service import detect_chart_request, generate_chart_data
from askbase.services.database import (
    ConnectionInfo,
    TableDescriptor,
    describe_tables,
    list_tables,
    open_connection,
)
from askbase.services.llm_client import LLMClient, llm_client
from askbase.services.session_store import SessionStore, get_session_store
from askbase.services.sql_generator import generate_fallback_sql, generate_sql
from askbase.services.sql_runner import is_safe_select, run_sql
from askbase.services.table_selector import select_relevant_tables
from askbase.utils.logger import logger
from askbase.utils.sql_utils import ensure_order_by, validate_sql

_VISUALIZATION_RE = re.compile(r"\b(chart|graph|bar|pie|line|plot|visuali[sz]e)\b", re.IGNORECASE)
_BACK_REFERENCE_RE = re.compile(
    r"\b(that|this|it|those|these|them|above|previous|same|results?)\b", re.IGNORECASE
)


def is_visualization_follow_up(question: str, history: Sequence[ConversationTurn]) -> bool:
    """A chart request about the previous turn's output, e.g. "now chart that"."""
    if not history or not history[-1].sql:
        return False
    return bool(_VISUALIZATION_RE.search(question) and _BACK_REFERENCE_RE.search(question))


class QueryEngine:
    """Runs one question from text to answer.

    The LLM client and session store are shared across requests; everything
    else, including the database connection, belongs to a single call.
    """

    def __init__(
        self,
        llm: Optional[LLMClient] = None,
        store: Optional[SessionStore] = None,
        cfg: Settings = settings,
    ) -> None:
        self._llm = llm or llm_client
        self._store = store
        self._settings = cfg

    @property
    def store(self) -> SessionStore:
        if self._store is None:
            self._store = get_session_store(self._settings)
        return self._store

    def _load_history(self, session_id: str) -> List[ConversationTurn]:
        try:
            self.store.ensure_session(session_id)
            return self.store.recent_turns(session_id, self._settings.history_turns)
        except Exception:  # noqa: BLE001
            logger.exception("Could not load conversation context for session %s", session_id)
            return []

    def _resolve_connection(
        self, connection_id: Optional[str], connection: Optional[ConnectionInfo]
    ) -> ConnectionInfo:
        if connection is not None:
            return connection
        info = self.store.get_connection(connection_id) if connection_id else None
        if info is None:
            raise InvalidConnectionError("Database connection not found")
        return info

    def _generate(
        self,
        question: str,
        tables: List[TableDescriptor],
        history: List[ConversationTurn],
    ) -> str:
        if is_visualization_follow_up(question, history):
            sql = ensure_order_by(history[-1].sql)
            logger.info("Reusing previous query for visualization: %s", sql)
            return sql
        return generate_sql(question, tables, history, self._llm, self._settings)

    def _checked(self, sql: str, tables: List[TableDescriptor], question: str) -> str:
        validation = validate_sql(sql)
        if not validation["valid"]:
            logger.warning("Invalid SQL generated (%s): %s, using fallback", validation["error"], sql)
            return generate_fallback_sql(tables, question)
        if not is_safe_select(sql):
            logger.warning("SQL is not a single read-only statement: %s, using fallback", sql)
            return generate_fallback_sql(tables, question)
        return sql

    def _persist(self, session_id: str, turn: ConversationTurn) -> None:
        try:
            self.store.append_turn(session_id, turn)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to save turn to session %s", session_id)

    def answer(
        self,
        question: Optional[str],
        session_id: Optional[str] = None,
        connection_id: Optional[str] = None,
        connection: Optional[ConnectionInfo] = None,
    ) -> Dict[str, Any]:
        if not question or not question.strip():
            raise MissingInputError("Question is required")
        if connection is None and not connection_id:
            raise MissingInputError("A stored connection id or inline database credentials are required")
        if connection is not None and not connection.is_complete():
            raise MissingInputError("Database url, or host and database name, are required")
        question = question.strip()

        session_id = session_id or str(uuid.uuid4())
        history = self._load_history(session_id)
        info = self._resolve_connection(connection_id, connection)

        with open_connection(info, self._settings) as conn:
            all_tables = list_tables(conn, self._settings.db_schema)

            table_names = select_relevant_tables(question, all_tables, history, self._llm, self._settings)
            if not table_names:
                raise NoRelevantTablesError("No relevant tables found for your question.")

            tables = describe_tables(conn, table_names, self._settings.db_schema)
            sql = self._checked(self._generate(question, tables, history), tables, question)

            logger.info("Executing SQL: %s", sql)
            started = time.perf_counter()
            results = run_sql(conn, sql)
            execution_time_ms = int((time.perf_counter() - started) * 1000)

        chart_data = None
        chart_request = detect_chart_request(question)
        if chart_request["requested"] and results:
            chart_data = generate_chart_data(results, chart_request["type"])

        answer_text = generate_answer(
            question, sql, results, table_names, history, self._llm, self._settings
        )

        sample = results[: self._settings.response_sample_rows]
        turn = ConversationTurn(
            question=question,
            sql=sql,
            tables_used=table_names,
            result_count=len(results),
            results=sample,
            answer=answer_text,
            chart_data=chart_data,
            execution_time_ms=execution_time_ms,
            is_followup=bool(history),
        )
        self._persist(session_id, turn)

        return {
            "answer": answer_text,
            "sql": sql if self._settings.enable_sql_output else None,
            "results": sample,
            "result_count": len(results),
            "tables_used": table_names,
            "session_id": session_id,
            "execution_time_ms": execution_time_ms,
            "chart_data": chart_data,
        }

    def history(self, session_id: str) -> List[ConversationTurn]:
        return self.store.recent_turns(session_id, self._settings.max_chat_history)

    def reset(self, session_id: str) -> bool:
        return self.store.reset_history(session_id)


query_engine = QueryEngine()
