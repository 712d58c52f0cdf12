from __future__ import annotations

import re
from typing import Dict, List, Optional, Union

_FENCE_SQL = re.compile(r"```sql\s*", re.IGNORECASE)
_FENCE = re.compile(r"```\s*")
_DATE_PART_CALL = re.compile(r"\b(YEAR|MONTH|DAY)\s*\(\s*([^)]+?)\s*\)", re.IGNORECASE)
_BACKTICK_IDENT = re.compile(r"`([^`]*)`")
_NOW_CALL = re.compile(r"\bNOW\s*\(\s*\)", re.IGNORECASE)
_SEMICOLON_RUN = re.compile(r";{2,}")
_TRAILING_TERMINATORS = re.compile(r"[;\s]+$")
_BARE_SELECT = re.compile(r"select", re.IGNORECASE)


def _rewrite_date_part(match: "re.Match[str]") -> str:
    return f"EXTRACT({match.group(1).upper()} FROM {match.group(2)})"


def _close_unterminated_quotes(text: str) -> str:
    body = _TRAILING_TERMINATORS.sub("", text)
    if body.count("'") % 2:
        body += "'"
    if body.count('"') % 2:
        body += '"'
    return body


def clean_sql_response(raw: Optional[str]) -> str:
    """Repair SQL text returned by the LLM into a single terminated statement.

    Markdown fences are removed, MySQL-isms (``YEAR()``, backticks, ``NOW()``)
    are rewritten to PostgreSQL forms, a dangling quote is closed and the
    result always ends with exactly one semicolon. Running it twice yields
    the same text. Never raises.
    """
    cleaned = raw if isinstance(raw, str) else ""
    cleaned = _FENCE_SQL.sub("", cleaned)
    cleaned = _FENCE.sub("", cleaned)
    cleaned = cleaned.strip()

    # nested calls like MONTH(DAY(x)) need one pass per level
    rewrites = 1
    while rewrites:
        cleaned, rewrites = _DATE_PART_CALL.subn(_rewrite_date_part, cleaned)
    cleaned = _BACKTICK_IDENT.sub(r'"\1"', cleaned)
    cleaned = _NOW_CALL.sub("CURRENT_TIMESTAMP", cleaned)
    cleaned = _close_unterminated_quotes(cleaned)
    cleaned = _SEMICOLON_RUN.sub(";", cleaned)

    body = _TRAILING_TERMINATORS.sub("", cleaned)
    if not body or _BARE_SELECT.fullmatch(body):
        body = "SELECT 1"
    return body + ";"


def validate_sql(sql: Optional[str]) -> Dict[str, Union[bool, str]]:
    """Cheap structural gate run before executing generated SQL."""
    if not sql or not isinstance(sql, str):
        return {"valid": False, "error": "SQL query is empty or invalid"}

    trimmed = sql.strip()
    if not trimmed or trimmed == ";":
        return {"valid": False, "error": "SQL query is empty"}

    if trimmed.count("'") % 2 != 0:
        return {"valid": False, "error": "Unterminated single quotes"}

    if trimmed.count('"') % 2 != 0:
        return {"valid": False, "error": "Unterminated double quotes"}

    if "SELECT" not in trimmed.upper():
        return {"valid": False, "error": "SQL must start with SELECT"}

    return {"valid": True}


def split_statements(sql: str) -> List[str]:
    """Split on semicolons that sit outside quoted text; empty pieces are dropped."""
    statements: List[str] = []
    current: List[str] = []
    quote: Optional[str] = None
    for ch in sql:
        if quote:
            current.append(ch)
            if ch == quote:
                quote = None
            continue
        if ch in ("'", '"'):
            quote = ch
            current.append(ch)
        elif ch == ";":
            statements.append("".join(current))
            current = []
        else:
            current.append(ch)
    statements.append("".join(current))
    return [s.strip() for s in statements if s.strip()]


def strip_quoted_text(sql: str) -> str:
    """Blank out string literals and quoted identifiers, keeping the SQL skeleton."""
    return re.sub(r"'[^']*'|\"[^\"]*\"", "''", sql)


def ensure_order_by(sql: str) -> str:
    """Add ``ORDER BY 1`` to a statement that has no ORDER BY, ahead of any trailing LIMIT."""
    body = _TRAILING_TERMINATORS.sub("", sql)
    if re.search(r"\border\s+by\b", strip_quoted_text(body), re.IGNORECASE):
        return body + ";"
    limit = re.search(r"\s+(LIMIT\s+\d+(?:\s+OFFSET\s+\d+)?)$", body, re.IGNORECASE)
    if limit:
        return f"{body[: limit.start()]} ORDER BY 1 {limit.group(1)};"
    return f"{body} ORDER BY 1;"
