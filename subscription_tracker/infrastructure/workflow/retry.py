"""
Retry policy for durable workflow steps.
"""

from dataclasses import dataclass, field
from typing import Tuple, Type


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded exponential backoff for a durable step.

    Only exceptions listed in ``retry_on`` are retried; anything else fails
    the step on the first attempt.
    """
    max_attempts: int = 1
    base_delay: float = 1.0
    max_delay: float = 10.0
    retry_on: Tuple[Type[BaseException], ...] = field(default_factory=tuple)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        """Whether a failure on 1-based ``attempt`` gets another try."""
        return attempt < self.max_attempts and isinstance(error, self.retry_on)

    def delay_for(self, attempt: int) -> float:
        """Backoff before the attempt following 1-based ``attempt``."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)


NO_RETRY = RetryPolicy()
