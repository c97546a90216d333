"""Bounded retry of whole transactions on transient lock contention."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from channel_sync.errors import (
    FatalIngestionError,
    IntegrityViolationError,
    TransientContentionError,
)

logger = logging.getLogger(__name__)
T = TypeVar("T")

_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "database is locked",
    "database table is locked",
    "database is busy",
    "deadlock",
    "lock wait timeout",
    "could not serialize",
    "timed out",
)


@dataclass(slots=True)
class RetryPolicy:
    """Attempt ceiling and fixed delay between attempts."""

    max_attempts: int = 3
    backoff_seconds: float = 0.25

    def __post_init__(self) -> None:
        if self.max_attempts <= 0:
            raise ValueError("max_attempts must be > 0")
        if self.backoff_seconds < 0:
            raise ValueError("backoff_seconds must be >= 0")

    def delay_for(self, attempt: int) -> float:  # noqa: ARG002
        return self.backoff_seconds


def is_transient_contention(error: BaseException) -> bool:
    """Return whether an error is lock contention or a timeout."""

    if isinstance(error, (TimeoutError, PoolTimeoutError)):
        return True
    if isinstance(error, OperationalError):
        message = str(error.orig if error.orig is not None else error).lower()
        return any(pattern in message for pattern in _TRANSIENT_PATTERNS)
    return False


def run_with_retry(
    operation: Callable[[], T],
    *,
    policy: RetryPolicy,
    description: str,
    sleep: Callable[[float], None] = time.sleep,
) -> tuple[T, int]:
    """Run ``operation`` until it succeeds or the attempt ceiling is reached.

    ``operation`` must run one complete transaction so a failed attempt leaves
    nothing behind. Returns the result and the number of attempts used.
    Integrity errors are never retried; other non-transient errors propagate
    unchanged.
    """

    attempt = 0
    last_error: TransientContentionError | None = None
    last_cause: BaseException | None = None
    while attempt < policy.max_attempts:
        attempt += 1
        try:
            return operation(), attempt
        except IntegrityError as error:
            raise IntegrityViolationError(
                message=f"{description} violated a constraint: {error.orig or error}",
            ) from error
        except (OperationalError, TimeoutError, PoolTimeoutError) as error:
            if not is_transient_contention(error):
                raise
            last_cause = error
            last_error = TransientContentionError(
                message=f"{description} hit transient contention: {error}",
                attempt=attempt,
            )

        if attempt < policy.max_attempts:
            delay = policy.delay_for(attempt)
            logger.warning(
                "%s failed on attempt %s/%s, retrying in %.2fs: %s",
                description,
                attempt,
                policy.max_attempts,
                delay,
                last_error,
            )
            sleep(delay)

    raise FatalIngestionError(
        message=f"{description} failed after {attempt} attempt(s): {last_error}",
        attempts=attempt,
    ) from last_cause
