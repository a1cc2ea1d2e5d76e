"""
Tests for the async timeout and retry wrapper.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from range_backtest.exceptions import OracleRequestError, OracleTimeoutError
from range_backtest.utils.timeout import with_timeout_and_retry


@pytest.mark.unit
class TestWithTimeoutAndRetry:

    @pytest.mark.asyncio
    async def test_returns_first_success(self):
        func = AsyncMock(return_value=42)

        result = await with_timeout_and_retry(func, timeout=1.0)

        assert result == 42
        assert func.await_count == 1

    @pytest.mark.asyncio
    async def test_backoff_doubles(self):
        func = AsyncMock(side_effect=[asyncio.TimeoutError(), asyncio.TimeoutError(), "ok"])

        with patch("range_backtest.utils.timeout.asyncio.sleep", new=AsyncMock()) as sleep:
            result = await with_timeout_and_retry(func, timeout=1.0, retries=3, base_delay=0.5)

        assert result == "ok"
        assert [c.args[0] for c in sleep.await_args_list] == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_all_timeouts_raise_oracle_timeout(self):
        async def slow():
            await asyncio.sleep(1)

        with pytest.raises(OracleTimeoutError):
            await with_timeout_and_retry(slow, timeout=0.01, retries=1, base_delay=0)

    @pytest.mark.asyncio
    async def test_last_retryable_error_is_raised(self):
        func = AsyncMock(side_effect=OracleRequestError("HTTP 500", status=500))

        with pytest.raises(OracleRequestError):
            await with_timeout_and_retry(
                func, timeout=1.0, retries=2, base_delay=0, retry_on=(OracleRequestError,)
            )

        assert func.await_count == 3

    @pytest.mark.asyncio
    async def test_other_errors_are_not_retried(self):
        func = AsyncMock(side_effect=KeyError("boom"))

        with pytest.raises(KeyError):
            await with_timeout_and_retry(func, timeout=1.0, retries=3, base_delay=0)

        assert func.await_count == 1
