"""
Retry with exponential backoff.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Awaitable, Callable, List, Type

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """Retry configuration."""
    max_attempts: int = 3
    initial_delay: timedelta = field(default_factory=lambda: timedelta(seconds=1))
    max_delay: timedelta = field(default_factory=lambda: timedelta(seconds=30))
    multiplier: float = 2.0
    jitter: bool = True
    retryable_exceptions: List[Type[Exception]] = field(default_factory=lambda: [Exception])

    def __post_init__(self):
        if self.max_attempts <= 0:
            raise ValueError("max_attempts must be positive")
        if not self.retryable_exceptions:
            self.retryable_exceptions = [Exception]


class Retry:
    """Retry handler with exponential backoff."""

    def __init__(self, config: RetryConfig):
        self.config = config
        self._attempt_count = 0

    @property
    def attempts(self) -> int:
        return self._attempt_count

    async def execute(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Await ``func`` until it succeeds or attempts are exhausted."""
        for attempt in range(1, self.config.max_attempts + 1):
            try:
                self._attempt_count = attempt
                result = await func(*args, **kwargs)

                if attempt > 1:
                    logger.info(f"Succeeded on attempt {attempt}")

                return result

            except asyncio.CancelledError:
                raise
            except Exception as e:
                if not self._is_retryable(e):
                    logger.warning(f"Non-retryable exception: {e}")
                    raise

                if attempt == self.config.max_attempts:
                    logger.error(f"Failed after {attempt} attempts: {e}")
                    raise

                delay = self._calculate_delay(attempt)
                logger.warning(f"Attempt {attempt} failed: {e}. Retrying in {delay:.2f}s")

                await asyncio.sleep(delay)

    def _is_retryable(self, exception: Exception) -> bool:
        return any(isinstance(exception, exc_type) for exc_type in self.config.retryable_exceptions)

    def _calculate_delay(self, attempt: int) -> float:
        """Calculate delay for the given attempt."""
        delay_seconds = self.config.initial_delay.total_seconds() * (self.config.multiplier ** (attempt - 1))
        delay_seconds = min(delay_seconds, self.config.max_delay.total_seconds())

        if self.config.jitter:
            delay_seconds *= random.uniform(0.5, 1.5)

        return delay_seconds
