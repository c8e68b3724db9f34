"""Structured error taxonomy for the query pipeline.

Every failure the pipeline can hit maps onto one class here:

- ConfigurationError: no usable tenant credentials
- ConnectionError: handshake/auth failure against the warehouse
- IntrospectionError: metadata query failure during a schema refresh
- TranslationError: language-model transport failure (parse failures are
  reported in-band on TranslationResult, not raised)
- UnsafeQueryError: SafetyValidator rejection
- ExecutionError: the warehouse rejected or failed the statement
- TimeoutError: the per-request deadline ran out between stages

All errors inherit from StructuredError and serialize through to_dict() so the
HTTP layer and logs see a predictable shape.

Example:
    >>> try:
    ...     raise UnsafeQueryError("Query contains forbidden keyword: DROP",
    ...                            details={"keyword": "DROP"})
    ... except StructuredError as e:
    ...     payload = e.to_dict()
    ...     print(payload["category"])
    validation
"""
from enum import Enum
from typing import Optional, Dict, Any
from datetime import datetime, timezone


class ErrorCategory(Enum):
    """Error categories for classification."""
    CONFIGURATION = "configuration"  # Missing/invalid tenant credentials
    CONNECTION = "connection"        # Warehouse handshake/auth
    INTROSPECTION = "introspection"  # Schema metadata queries
    TRANSLATION = "translation"      # Language-model calls
    VALIDATION = "validation"        # SQL safety rules
    EXECUTION = "execution"          # Statement execution
    TIMEOUT = "timeout"              # Request deadline exceeded
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Error severity levels."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class StructuredError(Exception):
    """Base class for all pipeline errors.

    Attributes:
        message: Human-readable error message
        category: ErrorCategory classification
        severity: ErrorSeverity level
        retryable: Whether the caller may reasonably retry the request
        details: Additional context (dict)
        timestamp: When the error occurred
    """

    category = ErrorCategory.UNKNOWN
    severity = ErrorSeverity.ERROR
    default_retryable = False

    def __init__(
        self,
        message: str,
        retryable: Optional[bool] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.retryable = self.default_retryable if retryable is None else retryable
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to a structured dictionary.

        Returns:
            {
                "error_type": "ErrorClassName",
                "message": "...",
                "category": "configuration|connection|...",
                "severity": "info|warning|error|critical",
                "retryable": true|false,
                "details": {...},
                "timestamp": "2024-01-01T12:00:00+00:00"
            }
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "severity": self.severity.value,
            "retryable": self.retryable,
            "details": self.details,
            "timestamp": self.timestamp.isoformat()
        }


class ConfigurationError(StructuredError):
    """No usable credentials/connection parameters for a tenant.

    Raised by the tenant resolver when neither the metadata store nor the
    environment fallback yields a config, or when a config is invalid
    (e.g. both password and private key supplied). Needs an operator.
    """
    category = ErrorCategory.CONFIGURATION
    severity = ErrorSeverity.CRITICAL


class ConnectionError(StructuredError):
    """Warehouse connect handshake or authentication failed."""
    category = ErrorCategory.CONNECTION
    default_retryable = True


class IntrospectionError(StructuredError):
    """A metadata query failed while refreshing a tenant's schema.

    The refresh is abandoned as a whole; no partial snapshot is cached.
    """
    category = ErrorCategory.INTROSPECTION
    default_retryable = True


class TranslationError(StructuredError):
    """The language-model service failed (transport, auth, empty reply)."""
    category = ErrorCategory.TRANSLATION
    default_retryable = True


class UnsafeQueryError(StructuredError):
    """Candidate SQL is not a single read-only statement.

    Example:
        >>> raise UnsafeQueryError(
        ...     "Only SELECT queries are allowed.",
        ...     details={"rule": "select_only"}
        ... )
    """
    category = ErrorCategory.VALIDATION


class ExecutionError(StructuredError):
    """The warehouse rejected or failed the statement (including its timeout)."""
    category = ErrorCategory.EXECUTION


class TimeoutError(StructuredError):
    """The per-request deadline expired before a stage could start."""
    category = ErrorCategory.TIMEOUT
    severity = ErrorSeverity.WARNING
    default_retryable = True
