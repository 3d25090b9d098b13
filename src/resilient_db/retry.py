"""
Retry budget shared by every connection acquisition path.
"""

import asyncio
import logging
from typing import Callable, Optional

from resilient_db import observability
from resilient_db.exceptions import RetryBudgetExhaustedError
from resilient_db.log_events import LoggerLike, log_event

logger = logging.getLogger(__name__)

FatalHandler = Callable[[RetryBudgetExhaustedError], None]


class RetryBudget:
    """
    Cumulative connection-failure counter compared against a ceiling.

    One budget belongs to one Database instance and is handed by reference to
    its connection strategy. ``attempt()`` increments and checks exhaustion with
    no suspension point in between, so two concurrent failures can never both
    slip past the ceiling.

    Attributes:
        max_attempts: Ceiling after which no connection attempt is permitted
        backoff_step: Linear backoff step in seconds
        attempts: Failures counted so far
    """

    def __init__(
        self,
        max_attempts: int,
        backoff_step: float = 0.1,
        on_fatal: Optional[FatalHandler] = None,
        log: Optional[LoggerLike] = None,
    ):
        if max_attempts <= 0:
            raise ValueError("max_attempts must be positive")

        self.max_attempts = max_attempts
        self.backoff_step = backoff_step
        self.attempts = 0
        self._on_fatal = on_fatal
        self._fatal_signaled = False
        self._log = log or logger

    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def attempt(self) -> int:
        """
        Count one connection-level failure.

        The first time the ceiling is reached the fatal condition is signaled:
        a critical log line plus the ``on_fatal`` callback, exactly once.

        Returns:
            The attempt number just recorded
        """
        self.attempts += 1
        if self.exhausted() and not self._fatal_signaled:
            self._signal_fatal()
        return self.attempts

    def ensure_available(self) -> None:
        """
        Raises:
            RetryBudgetExhaustedError: If no further attempt is permitted
        """
        if self.exhausted():
            raise RetryBudgetExhaustedError(self.attempts, self.max_attempts)

    def reset(self) -> None:
        """Forget past failures. Only the single-connection strategy does this."""
        self.attempts = 0
        observability.record_budget_reset()

    def backoff_delay(self, attempt: int) -> float:
        return self.backoff_step * attempt

    async def backoff(self, attempt: int) -> None:
        delay = self.backoff_delay(attempt)
        if delay > 0:
            await asyncio.sleep(delay)

    def _signal_fatal(self) -> None:
        self._fatal_signaled = True
        error = RetryBudgetExhaustedError(self.attempts, self.max_attempts)
        log_event(self._log, logging.CRITICAL, "db/connect", {
            "text": "Maximum connection attempts reached",
            "attempts": self.attempts,
        })
        observability.record_budget_exhausted()

        if self._on_fatal is not None:
            try:
                self._on_fatal(error)
            except Exception as e:
                self._log.error(f"on_fatal handler failed: {e}", exc_info=True)
