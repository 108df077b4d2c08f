"""Unit tests for retry with backoff."""
import pytest

from ..retry import calculate_delay, retry_async
from ...exceptions import InvalidInputError, RateLimitError, UpstreamError


class TestCalculateDelay:
    def test_delay_is_capped(self):
        for attempt in range(10):
            assert calculate_delay(attempt, 0.5, 4.0) <= 4.0

    def test_retry_after_floor(self):
        error = RateLimitError(retry_after=3.0)
        assert calculate_delay(0, 0.1, 10.0, error) >= 3.0


class TestRetryAsync:
    @pytest.mark.asyncio
    async def test_retries_rate_limit_then_succeeds(self):
        calls = 0

        async def func():
            nonlocal calls
            calls += 1
            if calls < 3:
                raise RateLimitError()
            return "ok"

        result = await retry_async(func, max_retries=2, base_delay=0, max_delay=0)
        assert result == "ok"
        assert calls == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        calls = 0

        async def func():
            nonlocal calls
            calls += 1
            raise RateLimitError()

        with pytest.raises(RateLimitError):
            await retry_async(func, max_retries=2, base_delay=0, max_delay=0)
        assert calls == 3

    @pytest.mark.asyncio
    async def test_other_errors_are_not_retried(self):
        calls = 0

        async def func():
            nonlocal calls
            calls += 1
            raise InvalidInputError("bad key")

        with pytest.raises(InvalidInputError):
            await retry_async(func, max_retries=5, base_delay=0, max_delay=0)
        assert calls == 1

    @pytest.mark.asyncio
    async def test_raw_errors_are_classified(self):
        async def func():
            raise ConnectionError("reset by peer")

        with pytest.raises(UpstreamError):
            await retry_async(func, max_retries=0)
