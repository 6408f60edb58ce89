"""Tests for the shared tokens-per-minute limiter."""

import asyncio
import time
from unittest.mock import AsyncMock, patch

import pytest

from newsroom.services.rate_limiter import (
    TokenBucketRateLimiter,
    estimate_request_tokens,
    estimate_tokens,
)


@pytest.mark.unit
class TestTokenEstimates:
    def test_estimate_tokens_uses_model_encoding(self, tokenizer):
        tokens = estimate_tokens("This is a simple test sentence.", "gpt-4o")

        assert tokens == 6
        tokenizer.encoding_for_model.assert_called_once_with("gpt-4o")
        tokenizer.get_encoding.assert_not_called()

    def test_unknown_model_falls_back_to_cl100k(self, tokenizer):
        tokenizer.encoding_for_model.side_effect = KeyError("custom-model")

        tokens = estimate_tokens("one two three", "custom-model")

        assert tokens == 3
        tokenizer.get_encoding.assert_called_once_with("cl100k_base")

    def test_empty_text(self):
        assert estimate_tokens("") == 0

    def test_request_estimate_includes_buffer(self, tokenizer):
        assert estimate_request_tokens("", "", response_buffer=1000) == 1008
        assert estimate_request_tokens("a b", "c d e", "gpt-4o", response_buffer=0) == 13
        tokenizer.encoding_for_model.assert_called_with("gpt-4o")


@pytest.mark.unit
class TestRateLimiter:
    @pytest.mark.asyncio
    async def test_allows_within_limit(self):
        limiter = TokenBucketRateLimiter(tpm_limit=10000)

        start = time.monotonic()
        await limiter.acquire(5000)
        await limiter.acquire(5000)

        assert time.monotonic() - start < 0.1
        assert limiter.tokens_used == 10000

    @pytest.mark.asyncio
    async def test_waits_for_next_window_when_over_limit(self):
        limiter = TokenBucketRateLimiter(tpm_limit=1000)
        await limiter.acquire(800)

        with patch("newsroom.services.rate_limiter.asyncio.sleep", new_callable=AsyncMock) as sleep:
            await limiter.acquire(500)

        sleep.assert_awaited_once()
        assert 55 <= sleep.call_args.args[0] <= 60
        # Fresh window holds only the new reservation
        assert limiter.tokens_used == 500

    @pytest.mark.asyncio
    async def test_oversized_request_on_fresh_window(self):
        limiter = TokenBucketRateLimiter(tpm_limit=100)

        with patch("newsroom.services.rate_limiter.asyncio.sleep", new_callable=AsyncMock) as sleep:
            await limiter.acquire(5000)

        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_resets_after_window(self):
        limiter = TokenBucketRateLimiter(tpm_limit=1000)
        await limiter.acquire(1000)

        limiter.window_start -= 61

        start = time.monotonic()
        await limiter.acquire(500)

        assert time.monotonic() - start < 0.1
        assert limiter.tokens_used == 500

    def test_actual_usage_corrects_estimate(self):
        limiter = TokenBucketRateLimiter(tpm_limit=1000)
        limiter.tokens_used = 600

        limiter.report_actual_usage(actual_tokens=200, estimated_tokens=500)
        assert limiter.tokens_used == 300

        limiter.report_actual_usage(actual_tokens=0, estimated_tokens=1000)
        assert limiter.tokens_used == 0

    @pytest.mark.asyncio
    async def test_concurrent_acquires_are_counted(self):
        limiter = TokenBucketRateLimiter(tpm_limit=100000)

        await asyncio.gather(*(limiter.acquire(1000) for _ in range(20)))

        assert limiter.tokens_used == 20000
