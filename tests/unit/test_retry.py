# tests/unit/test_retry.py
"""Unit tests for the exponential-backoff retry policy."""

from typing import List, Tuple

import pytest

from strata_sync.retry import backoff_delay, with_retry


@pytest.mark.parametrize(
    "attempt, expected",
    [(0, 1.0), (1, 2.0), (2, 4.0), (4, 16.0), (5, 30.0), (10, 30.0)],
)
def test_backoff_delay_grows_and_caps(attempt: int, expected: float) -> None:
    """
    Tests that delays double per attempt up to the cap.

    Args:
        attempt (int): Zero-based attempt number.
        expected (float): Expected delay in seconds.
    """
    assert backoff_delay(attempt, 1.0, 30.0) == expected


@pytest.mark.asyncio
async def test_with_retry_succeeds_after_failures() -> None:
    """
    Tests that a transiently failing operation eventually succeeds.

    Arrange:
        - An operation that fails twice, then returns a value.
    Act:
        - Run it through `with_retry` with an observation hook.
    Assert:
        - The value is returned.
        - The hook saw attempts 1 and 2 with growing delays.
    """
    calls: List[int] = []
    seen: List[Tuple[int, int, str, float]] = []

    async def operation() -> str:
        calls.append(1)
        if len(calls) < 3:
            raise ConnectionError(f"failure {len(calls)}")
        return "ok"

    result: str = await with_retry(
        operation,
        retries=3,
        base_delay=0.001,
        max_delay=0.002,
        on_retry=lambda attempt, retries, error, delay: seen.append(
            (attempt, retries, str(error), delay)
        ),
    )

    assert result == "ok"
    assert len(calls) == 3
    assert seen == [
        (1, 3, "failure 1", 0.001),
        (2, 3, "failure 2", 0.002),
    ]


@pytest.mark.asyncio
async def test_with_retry_raises_last_error_when_exhausted() -> None:
    """
    Tests that `with_retry` makes retries + 1 attempts, then re-raises.
    """
    attempts: List[int] = []

    async def operation() -> None:
        attempts.append(1)
        raise TimeoutError(f"attempt {len(attempts)}")

    with pytest.raises(TimeoutError, match="attempt 3"):
        await with_retry(operation, retries=2, base_delay=0.0)

    assert len(attempts) == 3


@pytest.mark.asyncio
async def test_with_retry_zero_retries_runs_once() -> None:
    """
    Tests that no retry happens when retries is zero.
    """
    attempts: List[int] = []

    async def operation() -> None:
        attempts.append(1)
        raise ValueError("boom")

    with pytest.raises(ValueError):
        await with_retry(operation, retries=0)

    assert attempts == [1]
