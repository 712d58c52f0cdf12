from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import create_engine, text

from askbase.config import Settings
from askbase.errors import UpstreamLLMError
from askbase.services.database import ConnectionInfo
from askbase.services.llm_client import LLMClient
from askbase.services.query_engine import QueryEngine
from askbase.services.session_store import InMemorySessionStore


class FakeLLM:
    """Scripted stand-in for LLMClient; renders each prompt so tests can inspect it."""

    def __init__(self, responses: Optional[List[Any]] = None, available: bool = True) -> None:
        self.responses = list(responses or [])
        self.available = available
        self.calls: List[Dict[str, Any]] = []

    def is_available(self) -> bool:
        return self.available

    def run(self, prompt, variables, *, max_tokens, temperature):  # type: ignore[no-untyped-def]
        messages = prompt.format_messages(**variables)
        self.calls.append(
            {
                "system": messages[0].content,
                "human": messages[-1].content,
                "max_tokens": max_tokens,
                "temperature": temperature,
            }
        )
        if not self.responses:
            raise UpstreamLLMError("No scripted response left")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def cfg() -> Settings:
    return Settings(llm_api_key="", redis_url="", db_schema=None, enable_sql_output=True)


@pytest.fixture
def offline_llm(cfg: Settings) -> LLMClient:
    return LLMClient(cfg)


@pytest.fixture
def shop_db(tmp_path) -> ConnectionInfo:
    path = tmp_path / "shop.db"
    engine = create_engine(f"sqlite:///{path}")
    with engine.begin() as conn:
        conn.execute(
            text(
                "CREATE TABLE products (id INTEGER PRIMARY KEY, name TEXT NOT NULL, "
                "category TEXT, price INTEGER)"
            )
        )
        conn.execute(
            text(
                "CREATE TABLE orders (id INTEGER PRIMARY KEY, customer TEXT, "
                "total_amount NUMERIC, created_at TIMESTAMP)"
            )
        )
        conn.execute(
            text(
                "INSERT INTO products (id, name, category, price) VALUES "
                "(1, 'Laptop', 'Electronics', 1000), (2, 'Phone', 'Electronics', 500), "
                "(3, 'Desk', 'Furniture', 300), (4, 'Chair', 'Furniture', 150), "
                "(5, 'Pen', 'Office', 2), (6, 'Lamp', 'Furniture', 45)"
            )
        )
        conn.execute(
            text(
                "INSERT INTO orders (id, customer, total_amount, created_at) VALUES "
                "(1, 'alice', 120.5, '2024-01-05 10:00:00'), (2, 'bob', 80, '2024-02-11 12:30:00')"
            )
        )
    engine.dispose()
    return ConnectionInfo(url=f"sqlite:///{path}")


@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore(ttl_minutes=60)


@pytest.fixture
def make_engine(cfg: Settings, store: InMemorySessionStore):
    def _make(llm=None) -> QueryEngine:  # type: ignore[no-untyped-def]
        return QueryEngine(llm=llm or LLMClient(cfg), store=store, cfg=cfg)

    return _make
