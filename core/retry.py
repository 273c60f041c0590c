# core/retry.py
"""Retry policy for provider calls: error classification plus exponential backoff."""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TypeVar

import httpx
import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")

TRANSIENT_STATUS_CODES = frozenset({429, 503, 504, 524})
OVERLOAD_STATUS_CODE = 529


class ErrorClass(str, Enum):
    OVERLOAD = "overload"
    TRANSIENT = "transient"
    FATAL = "fatal"


def classify_error(exc: BaseException) -> ErrorClass:
    """Map an exception raised by a provider call onto a retry class."""
    status = getattr(exc, "status_code", None)
    error_type = getattr(exc, "error_type", None)
    message = str(exc).lower()

    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code

    if (
        error_type == "overloaded_error"
        or status == OVERLOAD_STATUS_CODE
        or "overload" in message
    ):
        return ErrorClass.OVERLOAD
    if status in TRANSIENT_STATUS_CODES:
        return ErrorClass.TRANSIENT
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
        return ErrorClass.TRANSIENT
    return ErrorClass.FATAL


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to retry a call and how long to wait between attempts.

    ``retries`` counts re-tries, so an operation runs at most
    ``retries + 1`` times. Fatal errors are raised immediately.
    """

    retries: int = 8
    base_delay: float = 1.0
    max_jitter: float = 0.5
    classifier: Callable[[BaseException], ErrorClass] = field(default=classify_error)

    def delay_for(self, attempt: int, error_class: ErrorClass) -> float:
        multiplier = 3 if error_class is ErrorClass.OVERLOAD else 2
        return self.base_delay * multiplier ** (attempt + 1) + random.uniform(
            0, self.max_jitter
        )

    async def run(
        self, operation: Callable[[], Awaitable[T]], *, stage: str = ""
    ) -> T:
        attempt = 0
        while True:
            try:
                return await operation()
            except Exception as exc:
                error_class = self.classifier(exc)
                if error_class is ErrorClass.FATAL or attempt >= self.retries:
                    logger.error(
                        "Provider call failed",
                        stage=stage,
                        attempt=attempt + 1,
                        error_class=error_class.value,
                        error=str(exc),
                    )
                    raise
                delay = self.delay_for(attempt, error_class)
                logger.warning(
                    "Retrying provider call",
                    stage=stage,
                    attempt=attempt + 1,
                    retries=self.retries,
                    error_class=error_class.value,
                    delay_seconds=round(delay, 2),
                )
                await asyncio.sleep(delay)
                attempt += 1


# Per call-site budgets.
PLANNING_POLICY = RetryPolicy(retries=8, base_delay=1.0)
LONG_PLANNING_POLICY = RetryPolicy(retries=2, base_delay=1.0)
POLISH_POLICY = RetryPolicy(retries=3, base_delay=0.8)
REVISION_POLICY = RetryPolicy(retries=2, base_delay=1.0)
