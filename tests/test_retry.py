"""Tests for retry with backoff."""

from unittest.mock import AsyncMock, patch

import pytest

from link_tagger.errors import MetadataFetchError, QuotaExceededError
from link_tagger.processing.retry import retry_async


class Flaky:
    def __init__(self, failures, error):
        self.failures = failures
        self.error = error
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


@pytest.mark.asyncio
async def test_succeeds_after_transient_failures():
    func = Flaky(2, MetadataFetchError("down"))
    with patch("link_tagger.processing.retry.asyncio.sleep", new=AsyncMock()) as sleep:
        result = await retry_async(func, attempts=3, delay_secs=0.5, backoff_multiplier=2.0)

    assert result == "ok"
    assert func.calls == 3
    assert [c.args[0] for c in sleep.await_args_list] == [0.5, 1.0]


@pytest.mark.asyncio
async def test_reraises_last_error_when_exhausted():
    func = Flaky(5, TimeoutError("slow"))
    with pytest.raises(TimeoutError):
        await retry_async(func, attempts=2, delay_secs=0)
    assert func.calls == 2


@pytest.mark.asyncio
async def test_quota_errors_not_retried():
    func = Flaky(1, QuotaExceededError("exhausted"))
    with pytest.raises(QuotaExceededError):
        await retry_async(func, attempts=3, delay_secs=0)
    assert func.calls == 1


@pytest.mark.asyncio
async def test_attempts_must_be_positive():
    with pytest.raises(ValueError):
        await retry_async(Flaky(0, None), attempts=0)
