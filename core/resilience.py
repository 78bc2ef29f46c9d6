"""
learnflow - Retry Policy

Bounded retry with exponential backoff, used by the command handler and the
downstream ingestor to re-run a load-apply-append cycle after a stream
version race.

All attempts run inside OpenTelemetry spans.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import (
    Any,
    Awaitable,
    Callable,
    Optional,
    Set,
    Type,
    TypeVar,
)

from opentelemetry import trace

T = TypeVar("T")

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass
class RetryConfig:
    """Configuration for retry policy."""

    max_attempts: int = 3
    base_delay: float = 0.01
    max_delay: float = 1.0
    exponential_base: float = 2.0
    jitter: bool = True
    retryable_exceptions: Set[Type[Exception]] = field(
        default_factory=lambda: {Exception}
    )
    non_retryable_exceptions: Set[Type[Exception]] = field(default_factory=set)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must be >= 0")


class RetryPolicy:
    """
    Configurable retry policy with exponential backoff.

    Features:
    - Exponential backoff with optional jitter
    - Configurable retryable exceptions
    - Maximum delay cap
    - OpenTelemetry tracing

    Usage:
        policy = RetryPolicy(RetryConfig(retryable_exceptions={ConcurrencyError}))

        result = await policy.run(handler.execute_once, command)
    """

    def __init__(self, config: Optional[RetryConfig] = None):
        self.config = config or RetryConfig()

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay for given attempt number."""
        delay = min(
            self.config.base_delay * (self.config.exponential_base ** attempt),
            self.config.max_delay
        )

        if self.config.jitter:
            delay *= (0.5 + random.random())

        return delay

    def is_retryable(self, exception: Exception) -> bool:
        """Check if exception should trigger retry."""
        exc_type = type(exception)

        if any(issubclass(exc_type, t) for t in self.config.non_retryable_exceptions):
            return False

        return any(issubclass(exc_type, t) for t in self.config.retryable_exceptions)

    async def run(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """Await func until it succeeds, raises a non-retryable error or attempts run out."""
        last_exception: Optional[Exception] = None

        for attempt in range(self.config.max_attempts):
            with tracer.start_as_current_span(
                f"retry.attempt_{attempt}",
            ) as span:
                span.set_attribute("retry.attempt", attempt)
                span.set_attribute("retry.max_attempts", self.config.max_attempts)

                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    last_exception = e
                    span.set_attribute("retry.exception", type(e).__name__)

                    if not self.is_retryable(e):
                        raise

                    if attempt < self.config.max_attempts - 1:
                        delay = self.calculate_delay(attempt)
                        span.set_attribute("retry.delay_seconds", delay)
                        logger.debug(
                            f"Retrying after {type(e).__name__} "
                            f"(attempt {attempt + 1}/{self.config.max_attempts}, "
                            f"sleeping {delay:.3f}s)"
                        )
                        await asyncio.sleep(delay)

        logger.warning(
            f"Giving up after {self.config.max_attempts} attempts: {last_exception}"
        )
        raise last_exception  # type: ignore
