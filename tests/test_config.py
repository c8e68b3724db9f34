"""Tests for Settings and the per-request Deadline."""
import time

import pytest
from pydantic import ValidationError

from snowquery.config import Settings
from snowquery.deadline import Deadline
from snowquery.errors import TimeoutError


class TestSettings:

    def test_defaults(self):
        s = Settings()

        assert s.default_tenant_id == "default"
        assert s.schema_cache_ttl_seconds == 3600
        assert s.memory_schema_cache_ttl_seconds == 1800
        assert s.history_turns == 6
        assert s.max_translation_attempts == 2
        assert s.strict_sql_validation is False

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("DEFAULT_TENANT_ID", "acme")
        monkeypatch.setenv("TRANSLATION_TIMEOUT_SECONDS", "15")
        monkeypatch.setenv("HISTORY_PAIRS", "1")
        monkeypatch.setenv("STRICT_SQL_VALIDATION", "yes")
        monkeypatch.setenv("REQUEST_TIMEOUT_SECONDS", "")

        s = Settings.from_env()

        assert s.default_tenant_id == "acme"
        assert s.translation_timeout_seconds == 15.0
        assert s.history_turns == 2
        assert s.strict_sql_validation is True
        assert s.request_timeout_seconds == 180.0

    def test_invalid_value_rejected(self, monkeypatch):
        monkeypatch.setenv("INTROSPECTION_WORKERS", "0")

        with pytest.raises(ValidationError):
            Settings.from_env()


class TestDeadline:

    def test_unbounded(self):
        deadline = Deadline.unbounded()

        assert deadline.remaining() is None
        assert deadline.expired is False
        assert deadline.budget(60.0) == 60.0

    def test_budget_is_min_of_stage_and_remaining(self):
        deadline = Deadline(120.0)

        assert deadline.budget(60.0, stage="translation") == 60.0
        assert deadline.budget(500.0) <= 120.0

    def test_budget_seconds_rounds_up(self):
        assert Deadline(2.5).budget_seconds(30) == 3
        assert Deadline(100.0).budget_seconds(30) == 30

    def test_expired_deadline_raises(self):
        deadline = Deadline(0.01)
        time.sleep(0.02)

        assert deadline.expired
        with pytest.raises(TimeoutError) as exc_info:
            deadline.budget(30.0, stage="execution")

        assert exc_info.value.details == {"stage": "execution"}
        assert exc_info.value.message == "Request deadline exceeded before execution"
