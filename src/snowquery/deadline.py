"""Per-request deadline shared by every blocking stage of the pipeline.

A Deadline is created once per question. Each stage asks it for a budget
that is the smaller of the stage's own bound (the tenant's statement timeout,
the translation timeout) and whatever is left of the request.
"""
import math
import time
from typing import Optional

from .errors import TimeoutError


class Deadline:
    """Monotonic-clock deadline.

    Example:
        >>> deadline = Deadline(120.0)
        >>> deadline.budget(60.0, stage="translation")
        60.0
    """

    def __init__(self, seconds: Optional[float] = None):
        """Initialize deadline.

        Args:
            seconds: Total time allowed from now. None means unbounded.
        """
        self._expires_at = None if seconds is None else time.monotonic() + seconds

    @classmethod
    def unbounded(cls) -> "Deadline":
        return cls(None)

    def remaining(self) -> Optional[float]:
        """Seconds left, or None for an unbounded deadline. Never negative."""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0.0

    def budget(self, stage_limit: float, stage: str = "request") -> float:
        """Return the time a stage may spend, capped by what is left.

        Raises:
            TimeoutError: If the deadline already expired.
        """
        remaining = self.remaining()
        if remaining is None:
            return stage_limit
        if remaining <= 0.0:
            raise TimeoutError(
                f"Request deadline exceeded before {stage}",
                details={"stage": stage}
            )
        return min(stage_limit, remaining)

    def budget_seconds(self, stage_limit: int, stage: str = "request") -> int:
        """Whole-second variant for warehouse session timeouts (minimum 1)."""
        return max(1, int(math.ceil(self.budget(float(stage_limit), stage=stage))))
