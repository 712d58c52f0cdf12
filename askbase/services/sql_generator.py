from __future__ import annotations

from typing import Optional, Sequence

from langchain_core.prompts import ChatPromptTemplate

from askbase.config import Settings, settings
from askbase.errors import UpstreamLLMError
from askbase.models.chat import ConversationTurn
from askbase.services.database import TableDescriptor
from askbase.services.llm_client import LLMClient
from askbase.utils.logger import logger
from askbase.utils.sql_utils import clean_sql_response

SYSTEM_INSTRUCTIONS = (
    "You are a PostgreSQL SQL expert. ALWAYS qualify column names with table names "
    '(e.g., "users"."id", "orders"."total_amount"). NEVER use window functions in WHERE clauses. '
    "Keep queries simple and avoid complex nested subqueries. Use CURRENT_TIMESTAMP instead of NOW(). "
    "Return ONLY the raw SQL query with NO markdown formatting, NO code blocks, NO explanations."
)

HUMAN_TEMPLATE = """Given this question: "{question}"

Table schemas:
{schema}
{context}

Generate a SQL query to answer the question.

CRITICAL SQL GUIDELINES:
1. Use PostgreSQL syntax:
   - Use double quotes (") for identifiers, NOT backticks (`)
   - Use single quotes (') for string literals
   - Use CURRENT_TIMESTAMP instead of NOW()
2. ALWAYS qualify column names with table names to avoid ambiguity:
   - Use "users"."id" instead of just "id"
   - Use "orders"."total_amount" instead of just "total_amount"
3. NEVER use window functions (ROW_NUMBER(), RANK(), etc.) in WHERE clauses
4. Keep queries simple - avoid complex nested subqueries
5. For "top N" queries, use ORDER BY + LIMIT instead of window functions
6. Always use LIMIT 10 or less to avoid large result sets
7. If this is a follow-up question, build upon the previous query
8. Return exactly one SELECT statement

Examples of GOOD queries:
- SELECT "users"."name", SUM("orders"."total_amount") FROM "users" JOIN "orders" ON "users"."id" = "orders"."user_id" GROUP BY "users"."id", "users"."name" ORDER BY SUM("orders"."total_amount") DESC LIMIT 3;
- SELECT "products"."name" FROM "products" JOIN "order_items" ON "products"."id" = "order_items"."product_id" WHERE "order_items"."order_id" IN (SELECT "id" FROM "orders" ORDER BY "total_amount" DESC LIMIT 3);

Return only the SQL query, no explanation."""

SQL_PROMPT = ChatPromptTemplate.from_messages(
    [("system", SYSTEM_INSTRUCTIONS), ("human", HUMAN_TEMPLATE)]
)


def format_schema(tables: Sequence[TableDescriptor]) -> str:
    lines = []
    for table in tables:
        lines.append(f"Table: {table.name}")
        lines.extend(f"  - {col.name}: {col.type}" for col in table.columns)
    return "\n".join(lines)


def format_sql_context(history: Sequence[ConversationTurn]) -> str:
    if not history:
        return ""
    lines = ["", "Recent conversation context:"]
    for i, turn in enumerate(history, start=1):
        lines.append(f"Previous question {i}: {turn.question}")
        lines.append(f"Previous SQL: {turn.sql}")
        lines.append(f"Previous results: {turn.result_count} rows")
    return "\n".join(lines)


def simple_select_sql(tables: Sequence[TableDescriptor]) -> str:
    """All columns of the first relevant table, five rows."""
    if not tables:
        return "SELECT 1;"
    table = tables[0]
    if not table.columns:
        return f'SELECT * FROM "{table.name}" LIMIT 5;'
    columns = ", ".join(col.name for col in table.columns)
    return f'SELECT {columns} FROM "{table.name}" LIMIT 5;'


def generate_fallback_sql(tables: Sequence[TableDescriptor], question: Optional[str] = None) -> str:
    """Safe replacement for generated SQL that failed validation."""
    if not tables:
        return "SELECT 1;"
    table = tables[0]
    if not table.columns:
        return f'SELECT * FROM "{table.name}" LIMIT 5;'
    columns = ", ".join(f'"{col.name}"' for col in table.columns[:3])
    return f'SELECT {columns} FROM "{table.name}" LIMIT 5;'


def generate_sql(
    question: str,
    tables: Sequence[TableDescriptor],
    history: Sequence[ConversationTurn],
    llm: LLMClient,
    cfg: Settings = settings,
) -> str:
    if not llm.is_available():
        logger.warning("No LLM key, using simple SELECT fallback")
        return simple_select_sql(tables)

    recent = list(history)[-cfg.prompt_history_turns:] if cfg.prompt_history_turns > 0 else []
    schema_text = format_schema(tables)
    try:
        raw = llm.run(
            SQL_PROMPT,
            {"question": question, "schema": schema_text, "context": format_sql_context(recent)},
            max_tokens=200,
            temperature=0.1,
        )
    except UpstreamLLMError as exc:
        logger.error("SQL generation failed, using simple SELECT fallback: %s", exc.message)
        return simple_select_sql(tables)

    cleaned = clean_sql_response(raw)
    logger.info("Raw LLM SQL: %s", raw)
    logger.info("Cleaned SQL: %s", cleaned)
    logger.debug("Schema passed to LLM:\n%s", schema_text)
    return cleaned
