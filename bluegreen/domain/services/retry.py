"""
Bounded Retry

Architectural Intent:
- Transient infrastructure errors are retried at the point of occurrence
- Attempts are bounded and spaced with capped exponential backoff
- Exhaustion surfaces the last error to the caller, which decides whether
  that becomes a rollback trigger or a pipeline failure
"""

from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryExhausted(Exception):
    def __init__(self, operation: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"{operation} failed after {attempts} attempt(s): {last_error}")
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 0.5
    multiplier: float = 2.0
    max_delay: float = 8.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    def delay_for(self, attempt: int) -> float:
        """Delay before retrying after the given (1-based) failed attempt."""
        return min(self.base_delay * (self.multiplier ** (attempt - 1)), self.max_delay)

    async def run(
        self,
        operation: str,
        fn: Callable[[], Awaitable[T]],
        retry_on: tuple[type[BaseException], ...] = (Exception,),
    ) -> T:
        last_error: BaseException | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await fn()
            except retry_on as exc:
                last_error = exc
                if attempt == self.max_attempts:
                    break
                delay = self.delay_for(attempt)
                logger.warning(
                    "%s failed (attempt %d/%d): %s; retrying in %.2fs",
                    operation,
                    attempt,
                    self.max_attempts,
                    exc,
                    delay,
                )
                await asyncio.sleep(delay)
        assert last_error is not None
        raise RetryExhausted(operation, self.max_attempts, last_error)
