"""
Retry Policy
============

Exponential-backoff retry for primary persistence writes.

Attempt ``n`` (1-based) that fails is followed by a delay of
``base_delay * 2 ** (n - 1)`` seconds before the next attempt. Validation
and duplicate errors are never retried.
"""

import asyncio
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from src.core.exceptions import (
    DuplicateRecordError,
    RetryExhaustedError,
    ValidationException,
)
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

NON_RETRYABLE: Tuple[Type[BaseException], ...] = (ValidationException, DuplicateRecordError)


class RetryPolicy:
    """Retries an async operation with fixed exponential backoff."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._sleep = sleep or asyncio.sleep

    def delay_for(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based)."""
        return self.base_delay * (2 ** (attempt - 1))

    async def run(self, operation: Callable[[], Awaitable[T]], name: str) -> T:
        """
        Run ``operation`` until it succeeds or attempts run out.

        Raises:
            RetryExhaustedError: carrying the last failure as ``cause``
        """
        last_error: Optional[BaseException] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                return await operation()
            except NON_RETRYABLE:
                raise
            except Exception as e:
                last_error = e
                logger.warning(
                    "Operation attempt failed",
                    extra={
                        "operation": name,
                        "attempt": attempt,
                        "max_attempts": self.max_attempts,
                        "error": str(e)
                    }
                )

            if attempt < self.max_attempts:
                await self._sleep(self.delay_for(attempt))

        raise RetryExhaustedError(name, self.max_attempts, last_error)
