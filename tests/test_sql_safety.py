"""Tests for the SQL safety validator.

Covers the textual rules (SELECT/WITH prefix, whole-word blocked keywords)
and the opt-in sqlglot strict mode.
"""
import pytest

from snowquery.errors import ErrorCategory, UnsafeQueryError
from snowquery.sql_safety import BLOCKED_KEYWORDS, SafetyValidator


class TestSafetyValidatorRules:
    """Default (textual) validation."""

    def setup_method(self):
        self.validator = SafetyValidator()

    def test_simple_select_passes(self):
        self.validator.validate("SELECT * FROM T")

    def test_with_clause_passes(self):
        self.validator.validate(
            'WITH recent AS (SELECT * FROM ANALYTICS_DB.PUBLIC."CLAIMS") SELECT COUNT(*) FROM recent'
        )

    def test_leading_whitespace_and_lowercase_pass(self):
        self.validator.validate("   select member_id from members")

    def test_drop_rejected_by_prefix_rule(self):
        with pytest.raises(UnsafeQueryError) as exc_info:
            self.validator.validate("DROP TABLE T")

        assert exc_info.value.details == {"rule": "select_only", "keyword": "DROP"}
        assert exc_info.value.message == "Only SELECT queries are allowed. Found: DROP"

    def test_non_keyword_prefix_rejected(self):
        with pytest.raises(UnsafeQueryError) as exc_info:
            self.validator.validate("SHOW TABLES")

        assert exc_info.value.details == {"rule": "select_only"}
        assert exc_info.value.message == "Only SELECT queries are allowed."

    def test_drop_keyword_inside_select_is_named(self):
        with pytest.raises(UnsafeQueryError) as exc_info:
            self.validator.validate("SELECT 1; DROP TABLE T")

        assert exc_info.value.details == {"keyword": "DROP"}
        assert "DROP" in str(exc_info.value)

    def test_keyword_anywhere_in_text_is_rejected(self):
        """Multi-statement injection is caught by the keyword scan."""
        with pytest.raises(UnsafeQueryError) as exc_info:
            self.validator.validate("select * from t; DELETE FROM t")

        assert exc_info.value.details["keyword"] == "DELETE"

    def test_match_is_case_insensitive(self):
        with pytest.raises(UnsafeQueryError):
            self.validator.validate("SELECT * FROM t WHERE x IN (select 1); grant all on t to r")

    def test_no_false_positive_on_substrings(self):
        """DESCRIPTION, CREATED_AT and UPDATED_BY contain blocked words but not as whole words."""
        self.validator.validate("SELECT description FROM T")
        self.validator.validate("SELECT CREATED_AT, UPDATED_BY, DELETED_FLAG FROM MEMBERS")
        self.validator.validate("SELECT executive_name FROM staff")

    def test_keyword_in_string_literal_is_rejected(self):
        """Known limitation: the textual filter does not understand literals."""
        with pytest.raises(UnsafeQueryError):
            self.validator.validate("SELECT * FROM notes WHERE body = 'please delete me'")

    @pytest.mark.parametrize("keyword", BLOCKED_KEYWORDS)
    def test_every_blocked_keyword_is_rejected(self, keyword):
        with pytest.raises(UnsafeQueryError) as exc_info:
            self.validator.validate(f"SELECT 1 FROM t /* {keyword} */")

        assert exc_info.value.details == {"keyword": keyword}

    def test_empty_statement_rejected(self):
        with pytest.raises(UnsafeQueryError):
            self.validator.validate("   ")

    def test_error_is_validation_category(self):
        with pytest.raises(UnsafeQueryError) as exc_info:
            self.validator.validate("UPDATE t SET x = 1")

        payload = exc_info.value.to_dict()
        assert payload["category"] == ErrorCategory.VALIDATION.value
        assert payload["retryable"] is False


class TestStrictMode:
    """AST-based single read-only statement check."""

    def setup_method(self):
        self.validator = SafetyValidator(strict=True)

    def test_strict_flag_exposed(self):
        assert self.validator.strict is True
        assert SafetyValidator().strict is False

    def test_single_select_passes(self):
        self.validator.validate('SELECT COUNT(*) AS member_count FROM ANALYTICS_DB.PUBLIC."MEMBERS" LIMIT 100')

    def test_cte_passes(self):
        self.validator.validate("WITH a AS (SELECT 1 AS x) SELECT x FROM a")

    def test_union_passes(self):
        self.validator.validate("SELECT 1 AS x UNION ALL SELECT 2 AS x")

    def test_two_selects_rejected(self):
        """Passes the textual rules, fails the single-statement rule."""
        with pytest.raises(UnsafeQueryError) as exc_info:
            self.validator.validate("SELECT 1; SELECT 2")

        assert exc_info.value.details == {"rule": "single_statement"}

    def test_textual_rules_still_apply_first(self):
        with pytest.raises(UnsafeQueryError) as exc_info:
            self.validator.validate("SELECT 1; DROP TABLE t")

        assert exc_info.value.details == {"keyword": "DROP"}
