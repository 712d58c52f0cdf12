from __future__ import annotations

from typing import Any, Dict, Optional


class AskBaseError(Exception):
    """Base for failures that end a request with a structured error body."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str, *, code: Optional[str] = None, detail: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.detail = detail

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.detail:
            body["detail"] = self.detail
        return body


class MissingInputError(AskBaseError):
    status_code = 400
    code = "missing_input"


class InvalidConnectionError(MissingInputError):
    code = "invalid_connection"


class NoRelevantTablesError(AskBaseError):
    status_code = 400
    code = "no_relevant_tables"


class DatabaseError(AskBaseError):
    status_code = 500
    code = "db_query_failed"


class UpstreamLLMError(AskBaseError):
    status_code = 502
    code = "llm_unavailable"
