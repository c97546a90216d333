from __future__ import annotations

import sqlite3

import allure
import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from channel_sync.errors import FatalIngestionError, IntegrityViolationError
from channel_sync.ingestion.retry import RetryPolicy, is_transient_contention, run_with_retry

pytestmark = [
    allure.epic("Channel Sync"),
    allure.feature("Atomic Ingestion"),
]


def _operational(message: str) -> OperationalError:
    return OperationalError("UPDATE channels", {}, sqlite3.OperationalError(message))


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (_operational("database is locked"), True),
        (_operational("database table is locked"), True),
        (TimeoutError("connect"), True),
        (_operational("no such column: sync_timeout_expires_at"), False),
        (ValueError("database is locked"), False),
    ],
)
def test_is_transient_contention(error: BaseException, expected: bool) -> None:
    assert is_transient_contention(error) is expected


def test_run_with_retry_returns_result_and_attempts() -> None:
    outcomes: list[BaseException | str] = [_operational("database is locked"), "done"]
    sleeps: list[float] = []

    def operation() -> str:
        outcome = outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    result = run_with_retry(
        operation,
        policy=RetryPolicy(max_attempts=3, backoff_seconds=0.5),
        description="Test",
        sleep=sleeps.append,
    )

    assert result == ("done", 2)
    assert sleeps == [0.5]


def test_run_with_retry_gives_up_at_ceiling(caplog: pytest.LogCaptureFixture) -> None:
    sleeps: list[float] = []

    def operation() -> None:
        raise _operational("database is locked")

    with pytest.raises(FatalIngestionError, match="failed after 2 attempt") as error:
        run_with_retry(
            operation,
            policy=RetryPolicy(max_attempts=2, backoff_seconds=0.1),
            description="Test",
            sleep=sleeps.append,
        )

    assert error.value.attempts == 2
    assert isinstance(error.value.__cause__, OperationalError)
    assert sleeps == [0.1]
    assert "retrying" in caplog.text


def test_run_with_retry_maps_integrity_errors_without_retry() -> None:
    sleeps: list[float] = []

    def operation() -> None:
        raise IntegrityError("INSERT", {}, sqlite3.IntegrityError("UNIQUE constraint failed"))

    with pytest.raises(IntegrityViolationError, match="UNIQUE constraint failed"):
        run_with_retry(
            operation,
            policy=RetryPolicy(),
            description="Test",
            sleep=sleeps.append,
        )
    assert sleeps == []


def test_retry_policy_rejects_invalid_values() -> None:
    with pytest.raises(ValueError, match="max_attempts"):
        RetryPolicy(max_attempts=0)
    with pytest.raises(ValueError, match="backoff_seconds"):
        RetryPolicy(backoff_seconds=-1)
