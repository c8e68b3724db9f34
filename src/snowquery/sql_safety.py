"""SQL safety validator for model-generated statements.

Rules, in order:
  1. The trimmed, upper-cased statement must start with SELECT or WITH
  2. No blocked keyword may appear anywhere in the raw text as a whole word
     (case-insensitive)

This is a conservative textual filter. It over-rejects a keyword inside a
string literal or quoted identifier (e.g. a column literally named "DELETE"),
while CREATED_AT or DESCRIPTION pass because matching is whole-word.

strict=True additionally parses the statement with sqlglot (Snowflake
dialect) and requires exactly one read-only query with no DML/DDL nodes.
"""
import logging
import re

import sqlglot
from sqlglot import expressions as exp
from sqlglot.errors import SqlglotError

from .errors import UnsafeQueryError

logger = logging.getLogger(__name__)

BLOCKED_KEYWORDS = (
    "INSERT", "UPDATE", "DELETE", "DROP", "CREATE", "ALTER",
    "TRUNCATE", "EXEC", "EXECUTE", "GRANT", "REVOKE",
)

_KEYWORD_PATTERNS = [(kw, re.compile(rf"\b{kw}\b", re.IGNORECASE)) for kw in BLOCKED_KEYWORDS]

# Node types that must never appear in a read-only statement
_WRITE_NODES = (exp.Insert, exp.Update, exp.Delete, exp.Create, exp.Drop, exp.Merge, exp.Command)


class SafetyValidator:
    """Rejects anything that is not a single read-only statement.

    Example:
        >>> SafetyValidator().validate("SELECT * FROM T")
        >>> SafetyValidator().validate("DROP TABLE T")
        Traceback (most recent call last):
        ...
        snowquery.errors.UnsafeQueryError: Only SELECT queries are allowed. Found: DROP
    """

    def __init__(self, strict: bool = False, dialect: str = "snowflake"):
        """Initialize validator.

        Args:
            strict: Also require an AST-verified single read-only statement
            dialect: sqlglot dialect used in strict mode
        """
        self._strict = strict
        self._dialect = dialect

    @property
    def strict(self) -> bool:
        return self._strict

    def validate(self, sql: str) -> None:
        """Validate a candidate statement.

        Raises:
            UnsafeQueryError: Naming the violated rule (details["rule"]) or the
                offending keyword (details["keyword"]).
        """
        normalized = (sql or "").strip().upper()
        if not (normalized.startswith("SELECT") or normalized.startswith("WITH")):
            details = {"rule": "select_only"}
            message = "Only SELECT queries are allowed."
            leading = normalized.split(None, 1)[0] if normalized else ""
            if leading in BLOCKED_KEYWORDS:
                details["keyword"] = leading
                message += f" Found: {leading}"
            logger.warning("Rejected non-SELECT statement")
            raise UnsafeQueryError(message, details=details)

        for keyword, pattern in _KEYWORD_PATTERNS:
            if pattern.search(sql):
                logger.warning("Rejected SQL containing forbidden keyword %s", keyword)
                raise UnsafeQueryError(
                    f"Query contains forbidden keyword: {keyword}",
                    details={"keyword": keyword}
                )

        if self._strict:
            self._validate_ast(sql)

    def _validate_ast(self, sql: str) -> None:
        try:
            statements = [s for s in sqlglot.parse(sql, read=self._dialect) if s is not None]
        except SqlglotError as e:
            raise UnsafeQueryError(
                f"Query could not be parsed: {e}",
                details={"rule": "parse"}
            ) from e

        if len(statements) != 1:
            raise UnsafeQueryError(
                f"Exactly one statement is allowed, found {len(statements)}.",
                details={"rule": "single_statement"}
            )

        statement = statements[0]
        if not isinstance(statement, exp.Query):
            raise UnsafeQueryError(
                "Only SELECT queries are allowed.",
                details={"rule": "select_only"}
            )
        write_node = statement.find(*_WRITE_NODES)
        if write_node is not None:
            raise UnsafeQueryError(
                f"Query contains a write operation: {write_node.key.upper()}",
                details={"rule": "read_only"}
            )
