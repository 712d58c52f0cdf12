from __future__ import annotations

import re
from typing import List, Optional, Sequence

from langchain_core.prompts import ChatPromptTemplate

from askbase.config import Settings, settings
from askbase.errors import UpstreamLLMError
from askbase.models.chat import ConversationTurn
from askbase.services.llm_client import LLMClient
from askbase.utils.logger import logger

# Terse refinements ("show more", "sort by date") rarely mention a table name
FOLLOW_UP_INDICATORS = (
    "more",
    "details",
    "show",
    "filter",
    "sort",
    "order",
    "limit",
    "top",
    "recent",
    "latest",
    "previous",
    "last",
)
MAX_KEYWORD_MATCHES = 2
MIN_KEYWORD_LENGTH = 3
STOPWORDS = {"and", "the", "for", "with", "from", "all", "what", "which", "how", "many", "are", "was", "were"}

RELEVANCE_PROMPT = ChatPromptTemplate.from_messages(
    [
        (
            "system",
            "You are a database expert. Return only table names separated by commas.",
        ),
        (
            "human",
            'Given this question: "{question}"\n\n'
            "Available tables: {tables}\n"
            "{context}\n"
            "Which tables are most relevant to answer this question?\n"
            "Return only the table names separated by commas, no explanation.",
        ),
    ]
)


def _words(text: str) -> List[str]:
    return re.findall(r"[a-z0-9_]+", text.lower())


def is_follow_up(question: str) -> bool:
    words = set(_words(question))
    return any(indicator in words for indicator in FOLLOW_UP_INDICATORS)


def format_relevance_context(history: Sequence[ConversationTurn]) -> str:
    if not history:
        return ""
    lines = ["", "Recent conversation context:"]
    for i, turn in enumerate(history, start=1):
        lines.append(f"Previous question {i}: {turn.question}")
        lines.append(f"Tables used: {', '.join(turn.tables_used)}")
        lines.append(f"SQL: {turn.sql}")
        lines.append(f"Results: {turn.result_count} rows")
        if turn.results:
            sample = ", ".join(f"{k}={v}" for k, v in turn.results[0].items())
            lines.append(f"Sample data: {sample}")
        lines.append("")
    return "\n".join(lines)


def parse_table_list(response: str, all_tables: Sequence[str]) -> List[str]:
    """Keep only names that exist in ``all_tables``, in the order the model gave them."""
    known = set(all_tables)
    selected: List[str] = []
    for part in response.split(","):
        name = part.strip().strip("`\"'")
        if name in known and name not in selected:
            selected.append(name)
    return selected


def keyword_relevant_tables(
    question: str,
    all_tables: Sequence[str],
    history: Sequence[ConversationTurn] = (),
) -> List[str]:
    """Heuristic selection used without an LLM."""
    if history and is_follow_up(question):
        last = history[-1]
        logger.info("Detected follow-up question, reusing tables: %s", last.tables_used)
        return list(last.tables_used)

    lowered = question.lower()
    words = [w for w in _words(question) if len(w) >= MIN_KEYWORD_LENGTH and w not in STOPWORDS]
    relevant: List[str] = []
    for table in all_tables:
        table_lower = table.lower()
        if table_lower in lowered or any(word in table_lower for word in words):
            relevant.append(table)
        if len(relevant) == MAX_KEYWORD_MATCHES:
            break
    return relevant


def select_relevant_tables(
    question: str,
    all_tables: Sequence[str],
    history: Sequence[ConversationTurn],
    llm: LLMClient,
    cfg: Settings = settings,
) -> List[str]:
    """Pick the tables needed to answer ``question``.

    With an LLM the model chooses from the table list, retried up to
    ``cfg.relevance_retries`` times on failure; without one, or once the
    retries are spent, the keyword heuristic answers.
    """
    if not llm.is_available():
        logger.warning("No LLM key, using keyword matching to select tables")
        return keyword_relevant_tables(question, all_tables, history)

    recent = list(history)[-cfg.prompt_history_turns:] if cfg.prompt_history_turns > 0 else []
    variables = {
        "question": question,
        "tables": ", ".join(all_tables),
        "context": format_relevance_context(recent),
    }

    last_error: Optional[UpstreamLLMError] = None
    for attempt in range(cfg.relevance_retries + 1):
        try:
            response = llm.run(RELEVANCE_PROMPT, variables, max_tokens=100, temperature=0.1)
        except UpstreamLLMError as exc:
            last_error = exc
            logger.warning("Table selection attempt %d failed: %s", attempt + 1, exc.message)
            continue
        selected = parse_table_list(response, all_tables)
        logger.info("LLM suggested tables: %s", selected)
        return selected

    logger.error("Table selection via LLM failed (%s), using keyword matching", last_error)
    return keyword_relevant_tables(question, all_tables, history)
