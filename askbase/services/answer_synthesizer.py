from __future__ import annotations

from typing import Any, Dict, List, Sequence, Set

import orjson
from langchain_core.prompts import ChatPromptTemplate

from askbase.config import Settings, settings
from askbase.errors import UpstreamLLMError
from askbase.models.chat import ConversationTurn
from askbase.services.llm_client import LLMClient
from askbase.utils.logger import logger

SYSTEM_INSTRUCTIONS = (
    "You are a data analyst. Use ONLY the actual data values provided in the SQL results. "
    "Do NOT make assumptions or create fictional data. If no data is provided, say \"No data found\". "
    "Be factual and precise with the real data values. Format your responses with proper structure "
    "using bullet points (*), bold text (**text**), and line breaks for readability."
)

HUMAN_TEMPLATE = """Given this question: "{question}"

SQL query executed: {sql}
Tables used: {tables}
Number of results: {result_count}
{results_data}
{context}

Generate a natural language answer based on the actual SQL results data provided above.

CRITICAL REQUIREMENTS:
1. Use ONLY the actual data values from the results provided above
2. Do NOT make assumptions about what the data represents
3. Do NOT use placeholder variables like X, Y, Z
4. Do NOT create fictional data or examples
5. If the results are empty, say "No data found"
6. If the results contain specific values, use those exact values
7. Keep the answer concise and factual
8. Do not interpret what the data "might" represent - just describe what it actually shows
9. Format the response with proper structure:
   - Use bullet points (*) for lists
   - Use bold (**text**) for emphasis
   - Use line breaks for readability
   - Format dates in a readable way
   - Use proper paragraphs

Return only the natural language answer based on the real data provided."""

ANSWER_PROMPT = ChatPromptTemplate.from_messages(
    [("system", SYSTEM_INSTRUCTIONS), ("human", HUMAN_TEMPLATE)]
)

GROUNDING_SAMPLE_ROWS = 3


def count_answer(results: Sequence[Dict[str, Any]]) -> str:
    return f"Found {len(results)} results from the query."


def _display(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def grounded_fallback_answer(results: Sequence[Dict[str, Any]]) -> str:
    """Answer assembled from the first rows when the model ignores the data."""
    sample = "; ".join(
        ", ".join(f"{k}: {_display(v)}" for k, v in row.items()) for row in results[:GROUNDING_SAMPLE_ROWS]
    )
    return f"The query returned {len(results)} results. {sample}"


def _value_forms(value: Any) -> Set[str]:
    if value is None or isinstance(value, bool):
        return set()
    forms = {str(value)}
    if isinstance(value, float):
        if value.is_integer():
            forms.add(str(int(value)))
        forms.add(f"{value:,.2f}")
        forms.add(f"{value:.2f}")
    elif isinstance(value, int):
        forms.add(f"{value:,}")
    return {form for form in forms if form.strip()}


def is_grounded(answer: str, rows: Sequence[Dict[str, Any]]) -> bool:
    """True when ``answer`` quotes at least one literal value from ``rows``."""
    return any(
        form in answer for row in rows for value in row.values() for form in _value_forms(value)
    )


def format_results_data(results: Sequence[Dict[str, Any]], limit: int) -> str:
    if not results:
        return "\nSQL Results Data: No data found"
    shown = list(results[:limit])
    text = "\nSQL Results Data:\n" + orjson.dumps(shown, option=orjson.OPT_INDENT_2).decode()
    if len(results) > limit:
        text += f"\n\n(Showing first {limit} of {len(results)} total results)"
    return text


def format_answer_context(history: Sequence[ConversationTurn]) -> str:
    if not history:
        return ""
    lines = ["", "Recent conversation context:"]
    for i, turn in enumerate(history, start=1):
        lines.append(f"Previous question {i}: {turn.question}")
        lines.append(f"Previous answer: {turn.answer}")
    return "\n".join(lines)


def generate_answer(
    question: str,
    sql: str,
    results: List[Dict[str, Any]],
    tables_used: Sequence[str],
    history: Sequence[ConversationTurn],
    llm: LLMClient,
    cfg: Settings = settings,
) -> str:
    if not llm.is_available():
        logger.warning("No LLM key, using simple answer fallback")
        return count_answer(results)

    recent = list(history)[-cfg.prompt_history_turns:] if cfg.prompt_history_turns > 0 else []
    try:
        answer = llm.run(
            ANSWER_PROMPT,
            {
                "question": question,
                "sql": sql,
                "tables": ", ".join(tables_used),
                "result_count": len(results),
                "results_data": format_results_data(results, cfg.answer_rows_for_llm),
                "context": format_answer_context(recent),
            },
            max_tokens=500,
            temperature=0.3,
        )
    except UpstreamLLMError as exc:
        logger.error("Answer generation failed: %s", exc.message)
        return count_answer(results)

    if results and not is_grounded(answer, results[:GROUNDING_SAMPLE_ROWS]):
        logger.warning("LLM answer does not quote any result values, using fallback")
        return grounded_fallback_answer(results)

    return answer
