import os
from dataclasses import dataclass, field
from typing import List, Optional

try:
    from dotenv import load_dotenv

    load_dotenv()
except Exception:
    # .env is optional
    pass


def _default_cors_origins() -> List[str]:
    value = os.getenv("CORS_ORIGINS")
    return value.split(",") if value else ["*"]


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


@dataclass
class Settings:
    """Runtime configuration loaded from environment variables."""

    llm_api_key: str = os.getenv("LLM_API_KEY", os.getenv("OPENAI_API_KEY", ""))
    llm_model: str = os.getenv("LLM_MODEL", "mistralai/mistral-7b-instruct")
    llm_base_url: str = os.getenv("LLM_BASE_URL", "https://openrouter.ai/api/v1")
    llm_timeout_seconds: float = float(os.getenv("LLM_TIMEOUT_SECONDS", "30"))
    llm_app_referer: str = os.getenv("LLM_APP_REFERER", "https://askbase.local")
    llm_app_title: str = os.getenv("LLM_APP_TITLE", "AskBase")
    cors_origins: List[str] = field(default_factory=_default_cors_origins)
    history_turns: int = int(os.getenv("HISTORY_TURNS", "6"))
    prompt_history_turns: int = int(os.getenv("PROMPT_HISTORY_TURNS", "2"))
    response_sample_rows: int = int(os.getenv("RESPONSE_SAMPLE_ROWS", "5"))
    answer_rows_for_llm: int = int(os.getenv("ANSWER_ROWS_FOR_LLM", "10"))
    relevance_retries: int = int(os.getenv("RELEVANCE_RETRIES", "1"))
    db_connect_timeout_seconds: int = int(os.getenv("DB_CONNECT_TIMEOUT_SECONDS", "5"))
    db_statement_timeout_ms: int = int(os.getenv("DB_STATEMENT_TIMEOUT_MS", "30000"))
    db_schema: Optional[str] = os.getenv("DB_SCHEMA") or None
    redis_url: str = os.getenv("REDIS_URL", "")
    redis_prefix: str = os.getenv("REDIS_PREFIX", "askbase:")
    session_ttl_minutes: int = int(os.getenv("SESSION_TTL_MINUTES", "1440"))
    max_chat_history: int = int(os.getenv("MAX_CHAT_HISTORY", "50"))
    enable_sql_output: bool = _env_flag("ENABLE_SQL_OUTPUT", "1")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()


settings = Settings()
