"""Tests for the Translator (question -> TranslationResult)."""
import json

import pytest

from snowquery.deadline import Deadline
from snowquery.errors import ConfigurationError, TimeoutError
from snowquery.llm.providers import MockProvider
from snowquery.schemas import ConversationTurn, PipelineState, QueryResponse
from snowquery.tenants import StoreConfigBackend, TenantConfigResolver
from snowquery.translator import (
    RETRY_INSTRUCTION,
    Translator,
    build_history_messages,
    extract_json,
    summarize_turn,
)


GOOD_REPLY = json.dumps({
    "sql": 'SELECT COUNT(*) AS member_count FROM ANALYTICS_DB.PUBLIC."MEMBERS"',
    "explanation": "Counts members",
    "assumptions": ["All rows are members"],
    "error": None,
})

REFUSAL_REPLY = json.dumps({
    "sql": None,
    "explanation": None,
    "assumptions": [],
    "error": "There is no weather table",
})


class FixedContext:
    """Context builder stand-in returning a constant document."""

    def __init__(self):
        self.calls = 0

    def build(self, tenant_id, resolved=None):
        self.calls += 1
        return "## Available Tables\n### MEMBERS (PUBLIC.MEMBERS)"


@pytest.fixture
def make_translator(store, settings):
    def _make(provider):
        resolver = TenantConfigResolver([StoreConfigBackend(store)])
        return Translator(resolver, FixedContext(), provider, settings)
    return _make


def assistant_turn(sql, row_count=1, state=PipelineState.SUCCEEDED, error=None):
    return ConversationTurn(role="assistant", response=QueryResponse(
        question="q", sql=sql, explanation="Counts rows", row_count=row_count, state=state, error=error,
    ))


class TestExtractJson:

    def test_exact_json(self):
        result = extract_json(GOOD_REPLY)

        assert result.sql.startswith("SELECT COUNT(*)")
        assert result.assumptions == ["All rows are members"]
        assert result.error is None

    def test_fenced_json(self):
        result = extract_json(f"```json\n{GOOD_REPLY}\n```")

        assert result is not None
        assert result.explanation == "Counts members"

    def test_prose_around_json(self):
        result = extract_json(f"Sure! Here is the query:\n{GOOD_REPLY}\nLet me know if you need more.")

        assert result is not None
        assert result.sql.endswith('"MEMBERS"')

    def test_braces_in_prose_before_object(self):
        result = extract_json("Use {curly} braces carefully. " + GOOD_REPLY)

        assert result is not None

    def test_refusal_is_a_valid_reply(self):
        result = extract_json(REFUSAL_REPLY)

        assert result.sql is None
        assert result.error == "There is no weather table"

    @pytest.mark.parametrize("text", [
        "",
        "I cannot help with that",
        '{"sql": "SELECT 1"}',
        '{"sql": "SELECT 1", "explanation": "x", "assumptions": [], "error": "also an error"}',
        '{"sql": null, "explanation": null, "assumptions": [], "error": null}',
        '{"explanation": "x", "assumptions": []}',
    ])
    def test_unusable_replies(self, text):
        assert extract_json(text) is None


class TestHistory:

    def test_user_turn_passes_through(self):
        assert summarize_turn(ConversationTurn(role="user", text="How many members?")) == "How many members?"

    def test_assistant_turn_summary(self):
        summary = summarize_turn(assistant_turn("SELECT 1", row_count=1))

        assert summary == "I generated this SQL:\nSELECT 1\n\nExplanation: Counts rows\n\nQuery returned 1 row."

    def test_translate_only_turn_has_no_row_count(self):
        summary = summarize_turn(assistant_turn("SELECT 1", state=PipelineState.SKIP_EXECUTE))

        assert "Query returned" not in summary

    def test_error_turn_summary(self):
        summary = summarize_turn(assistant_turn(None, error="Query error: boom", state=PipelineState.EXEC_FAILED))

        assert summary == "I encountered an error: Query error: boom"

    def test_type_alias_accepted(self):
        turn = ConversationTurn.model_validate({"type": "user", "text": "hello"})

        assert turn.role == "user"

    def test_window_keeps_last_six_turns(self):
        history = []
        for i in range(1, 5):
            history.append(ConversationTurn(role="user", text=f"q{i}"))
            history.append(assistant_turn(f"SELECT {i}", row_count=i))

        messages = build_history_messages(history, max_turns=6)

        assert len(messages) == 6
        assert messages[0] == {"role": "user", "content": "q2"}
        assert "SELECT 4" in messages[-1]["content"]
        assert "Query returned 4 rows." in messages[-1]["content"]

    def test_leading_assistant_dropped_and_same_roles_merged(self):
        history = [
            assistant_turn("SELECT 0"),
            ConversationTurn(role="user", text="first"),
            ConversationTurn(role="user", text="second"),
        ]

        messages = build_history_messages(history)

        assert messages == [{"role": "user", "content": "first\n\nsecond"}]


class TestTranslator:

    def test_success_single_call(self, make_translator):
        provider = MockProvider(responses=[GOOD_REPLY])

        result = make_translator(provider).translate("How many members are there?", "acme")

        assert result.sql == 'SELECT COUNT(*) AS member_count FROM ANALYTICS_DB.PUBLIC."MEMBERS"'
        assert provider.call_count == 1
        call = provider.calls[0]
        assert call["temperature"] == 0.0
        assert call["messages"] == [{"role": "user", "content": "How many members are there?"}]
        assert "### MEMBERS (PUBLIC.MEMBERS)" in call["system"]
        assert 'ANALYTICS_DB.PUBLIC."TABLE_NAME"' in call["system"]
        assert "Limit results to 500 rows" in call["system"]

    def test_timeout_capped_by_translation_setting(self, make_translator):
        provider = MockProvider(responses=[GOOD_REPLY])

        make_translator(provider).translate("q", "acme", deadline=Deadline(120.0))

        assert provider.calls[0]["timeout"] == 10.0

    def test_timeout_capped_by_request_deadline(self, make_translator):
        provider = MockProvider(responses=[GOOD_REPLY])

        make_translator(provider).translate("q", "acme", deadline=Deadline(3.0))

        assert provider.calls[0]["timeout"] <= 3.0

    def test_garbage_retries_exactly_once(self, make_translator):
        provider = MockProvider(responses=["I think you want the members table.", "Still not JSON"])

        result = make_translator(provider).translate("How many members?", "acme")

        assert provider.call_count == 2
        assert not provider.calls[0]["system"].endswith(RETRY_INSTRUCTION)
        assert provider.calls[1]["system"].endswith(RETRY_INSTRUCTION)
        assert result.sql is None
        assert result.error == "Failed to parse response after 2 attempts. Last response: Still not JSON"

    def test_last_response_excerpt_is_truncated(self, make_translator):
        provider = MockProvider(responses=["x" * 2000])

        result = make_translator(provider).translate("q", "acme")

        assert result.error.endswith("Last response: " + "x" * 500)

    def test_retry_recovers(self, make_translator):
        provider = MockProvider(responses=["not json", GOOD_REPLY])

        result = make_translator(provider).translate("q", "acme")

        assert provider.call_count == 2
        assert result.sql is not None

    def test_refusal_not_retried(self, make_translator):
        provider = MockProvider(responses=[REFUSAL_REPLY])

        result = make_translator(provider).translate("What is the weather?", "acme")

        assert provider.call_count == 1
        assert result.error == "There is no weather table"

    def test_llm_timeout_in_band_without_retry(self, make_translator):
        provider = MockProvider(should_timeout=True)

        result = make_translator(provider).translate("q", "acme")

        assert provider.call_count == 1
        assert result.sql is None
        assert result.error == "Query generation timed out after 10s. Please try a simpler question."

    def test_llm_error_in_band_without_retry(self, make_translator):
        provider = MockProvider(should_fail=True)

        result = make_translator(provider).translate("q", "acme")

        assert provider.call_count == 1
        assert result.error == "SQL generation error: Mock provider configured to fail"

    def test_history_sent_before_question(self, make_translator):
        provider = MockProvider(responses=[GOOD_REPLY])
        history = [
            ConversationTurn(role="user", text="How many members?"),
            assistant_turn('SELECT COUNT(*) FROM "MEMBERS"', row_count=1),
        ]

        make_translator(provider).translate("And how many are active?", "acme", history=history)

        messages = provider.calls[0]["messages"]
        assert [m["role"] for m in messages] == ["user", "assistant", "user"]
        assert messages[-1]["content"] == "And how many are active?"

    def test_trailing_user_history_merged_with_question(self, make_translator):
        provider = MockProvider(responses=[GOOD_REPLY])
        history = [ConversationTurn(role="user", text="Context: we mean 2024")]

        make_translator(provider).translate("How many members?", "acme", history=history)

        assert provider.calls[0]["messages"] == [
            {"role": "user", "content": "Context: we mean 2024\n\nHow many members?"}
        ]

    def test_unknown_tenant_raises(self, make_translator):
        provider = MockProvider(responses=[GOOD_REPLY])

        with pytest.raises(ConfigurationError):
            make_translator(provider).translate("q", "ghost")

        assert provider.call_count == 0

    def test_expired_deadline_raises_before_model_call(self, make_translator):
        provider = MockProvider(responses=[GOOD_REPLY])

        with pytest.raises(TimeoutError):
            make_translator(provider).translate("q", "acme", deadline=Deadline(0.0))

        assert provider.call_count == 0

    def test_usage_and_model_name(self, make_translator):
        translator = make_translator(MockProvider(responses=[GOOD_REPLY], input_tokens=10, output_tokens=5))

        result = translator.translate("q", "acme")

        assert result.tokens_input == 10
        assert result.tokens_output == 5
        assert result.cost_usd == pytest.approx(0.001)
        assert "tokens_input" not in result.model_dump()
        assert translator.model_name == "mock-llm-v1"

    def test_usage_summed_across_retry(self, make_translator):
        provider = MockProvider(responses=["not json", GOOD_REPLY], input_tokens=10, output_tokens=5)

        result = make_translator(provider).translate("q", "acme")

        assert result.sql is not None
        assert result.tokens_input == 20
        assert result.tokens_output == 10
        assert result.cost_usd == pytest.approx(0.002)

    def test_usage_belongs_to_each_call(self, make_translator):
        provider = MockProvider(responses=[GOOD_REPLY, "not json"], input_tokens=10, output_tokens=5)
        translator = make_translator(provider)

        first = translator.translate("q", "acme")
        second = translator.translate("q", "acme")

        assert first.tokens_input == 10
        assert second.error is not None
        assert second.tokens_input == 20
        assert provider.call_count == 3

    def test_provider_failure_reports_no_usage(self, make_translator):
        result = make_translator(MockProvider(should_fail=True)).translate("q", "acme")

        assert result.error is not None
        assert result.tokens_input == 0
        assert result.tokens_output == 0
        assert result.cost_usd == 0.0
