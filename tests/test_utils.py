"""
Tests for digitalme.utils.

Covers:
    - utc_now() / ensure_utc() / parse_timestamp(): aware UTC datetimes
    - generate_id(): UUID4 ids for profiles and sources
    - round_half_up(): stable rounding of serialized floats
    - with_retry(): exponential backoff around the text-analysis calls
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch
from uuid import UUID

import pytest

from digitalme.exceptions import RetryExhaustedError
from digitalme.utils import (
    ensure_utc,
    generate_id,
    parse_timestamp,
    round_half_up,
    utc_now,
    with_retry,
)


# ===========================================================================
# Time helpers
# ===========================================================================


def test_utc_now_is_aware():
    result = utc_now()
    assert result.tzinfo == timezone.utc


def test_ensure_utc_attaches_utc_to_naive():
    """Naive datetimes are assumed to already be UTC, not shifted."""
    result = ensure_utc(datetime(2025, 6, 15, 12, 0, 0))
    assert result == datetime(2025, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


def test_ensure_utc_converts_other_offsets():
    minus_three = timezone(timedelta(hours=-3))
    result = ensure_utc(datetime(2025, 6, 15, 9, 0, 0, tzinfo=minus_three))
    assert result.tzinfo == timezone.utc
    assert result.hour == 12


@pytest.mark.parametrize(
    "value",
    [
        "2025-06-15T12:00:00+00:00",
        "2025-06-15T12:00:00Z",
        "2025-06-15T14:00:00+02:00",
        "2025-06-15T12:00:00",
    ],
)
def test_parse_timestamp_variants(value):
    """ISO strings from Python and JavaScript writers parse to the same instant."""
    assert parse_timestamp(value) == datetime(2025, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


def test_parse_timestamp_rejects_garbage():
    with pytest.raises(ValueError):
        parse_timestamp("last tuesday")


# ===========================================================================
# Ids and rounding
# ===========================================================================


def test_generate_id_is_unique_uuid4():
    ids = {generate_id() for _ in range(50)}
    assert len(ids) == 50
    assert all(UUID(i).version == 4 for i in ids)


@pytest.mark.parametrize(
    "value,digits,expected",
    [
        (0.125, 2, 0.13),
        (0.375, 2, 0.38),
        (2.5, 0, 3.0),
        (0.900125, 6, 0.900125),
        (-0.125, 2, -0.13),
    ],
)
def test_round_half_up(value, digits, expected):
    """Halves round away from zero instead of to even."""
    assert round_half_up(value, digits) == expected


# ===========================================================================
# with_retry()
# ===========================================================================


@patch("digitalme.utils.time_module.sleep")
def test_with_retry_sync_backs_off_then_succeeds(mock_sleep):
    attempts = []

    @with_retry(max_attempts=4, base_delay=0.5)
    def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise ConnectionError("blip")
        return "done"

    assert flaky() == "done"
    assert len(attempts) == 3
    assert [c.args[0] for c in mock_sleep.call_args_list] == [0.5, 1.0]


@patch("digitalme.utils.time_module.sleep")
def test_with_retry_sync_exhausted(mock_sleep):

    @with_retry(max_attempts=2, base_delay=1.0, operation_name="analyze")
    def always_fail():
        raise TimeoutError("slow")

    with pytest.raises(RetryExhaustedError) as exc_info:
        always_fail()

    assert exc_info.value.operation == "analyze"
    assert exc_info.value.attempts == 2
    assert isinstance(exc_info.value.last_error, TimeoutError)
    mock_sleep.assert_called_once_with(1.0)


@patch("digitalme.utils.time_module.sleep")
def test_with_retry_non_retryable_propagates(mock_sleep):

    @with_retry(max_attempts=3, retryable_exceptions=(ConnectionError,))
    def bad_input():
        raise KeyError("tone")

    with pytest.raises(KeyError):
        bad_input()
    mock_sleep.assert_not_called()


@pytest.mark.asyncio
async def test_with_retry_async_backs_off_then_succeeds():
    with patch("digitalme.utils.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        calls = 0

        @with_retry(max_attempts=3, base_delay=2.0)
        async def flaky():
            nonlocal calls
            calls += 1
            if calls == 1:
                raise ConnectionError("blip")
            return {"tone": "casual"}

        assert await flaky() == {"tone": "casual"}
        mock_sleep.assert_awaited_once_with(2.0)


@pytest.mark.asyncio
async def test_with_retry_async_exhausted():
    with patch("digitalme.utils.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:

        @with_retry(max_attempts=3, base_delay=1.0)
        async def down():
            raise ConnectionError("refused")

        with pytest.raises(RetryExhaustedError) as exc_info:
            await down()

        assert exc_info.value.operation == "down"
        assert mock_sleep.await_count == 2


def test_with_retry_keeps_names():

    @with_retry()
    def sync_fn():
        pass

    @with_retry()
    async def async_fn():
        pass

    assert sync_fn.__name__ == "sync_fn"
    assert async_fn.__name__ == "async_fn"
