from askbase.errors import UpstreamLLMError
from askbase.models.chat import ConversationTurn
from askbase.services.table_selector import (
    keyword_relevant_tables,
    parse_table_list,
    select_relevant_tables,
)
from conftest import FakeLLM

TABLES = ["customers", "order_items", "orders", "products"]


def _turn(question, tables, **kwargs):
    return ConversationTurn(question=question, sql="SELECT 1;", tables_used=tables, **kwargs)


def test_follow_up_reuses_previous_tables(offline_llm, cfg):
    history = [_turn("top products", ["products"])]
    assert select_relevant_tables("show more", ["orders", "products"], history, offline_llm, cfg) == ["products"]


def test_follow_up_words_need_history():
    assert keyword_relevant_tables("show more", TABLES, []) == []


def test_keyword_matching_limits_to_two_tables():
    assert keyword_relevant_tables("list customers and orders", TABLES) == ["customers", "orders"]
    assert keyword_relevant_tables("customers orders products", TABLES) == ["customers", "orders"]


def test_keyword_matching_uses_word_overlap():
    assert keyword_relevant_tables("which product sold best", TABLES) == ["products"]


def test_parse_table_list_drops_unknown_names():
    assert parse_table_list(' orders, "products", invoices ,orders', TABLES) == ["orders", "products"]


def test_llm_selection_filters_hallucinated_tables(cfg):
    llm = FakeLLM(["orders, refunds, customers"])
    assert select_relevant_tables("who spent most", TABLES, [], llm, cfg) == ["orders", "customers"]
    call = llm.calls[0]
    assert call["max_tokens"] == 100
    assert "Available tables: customers, order_items, orders, products" in call["human"]
    assert "separated by commas" in call["system"]


def test_llm_prompt_includes_last_two_turns_with_sample(cfg):
    history = [
        _turn("first", ["customers"]),
        _turn("second", ["orders"], result_count=2, results=[{"id": 1, "customer": "alice"}]),
        _turn("third", ["products"]),
    ]
    llm = FakeLLM(["products"])
    select_relevant_tables("and the cheapest?", TABLES, history, llm, cfg)
    human = llm.calls[0]["human"]
    assert "first" not in human
    assert "Previous question 1: second" in human
    assert "Sample data: id=1, customer=alice" in human
    assert "Previous question 2: third" in human


def test_llm_failure_is_retried_once(cfg):
    llm = FakeLLM([UpstreamLLMError("boom"), "products"])
    assert select_relevant_tables("cheapest product", TABLES, [], llm, cfg) == ["products"]
    assert len(llm.calls) == 2


def test_llm_failures_fall_back_to_keywords(cfg):
    llm = FakeLLM([UpstreamLLMError("boom"), UpstreamLLMError("boom again"), "orders"])
    assert select_relevant_tables("cheapest product", TABLES, [], llm, cfg) == ["products"]
    assert len(llm.calls) == 2
