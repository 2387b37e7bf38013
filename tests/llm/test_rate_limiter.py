"""Tests for the token bucket rate limiter."""

import pytest

from research_agent.llm.rate_limiter import RateLimiter, TokenBucket


class TestTokenBucket:
    def test_starts_full_and_consumes(self):
        bucket = TokenBucket(capacity=2, refill_rate=0.001)
        assert bucket.try_acquire()
        assert bucket.try_acquire()
        assert not bucket.try_acquire()

    def test_wait_time(self):
        bucket = TokenBucket(capacity=1, refill_rate=0.5)
        assert bucket.wait_time() == 0.0
        bucket.try_acquire()
        assert bucket.wait_time() == pytest.approx(2.0, abs=0.05)

    def test_zero_rate_waits_forever(self):
        bucket = TokenBucket(capacity=0, refill_rate=0)
        assert bucket.wait_time() == float("inf")


class TestRateLimiter:
    @pytest.mark.asyncio
    async def test_acquire_consumes_both_buckets(self):
        limiter = RateLimiter(max_rpm=60, max_tpm=1000)

        await limiter.acquire(100)

        assert limiter.rpm_bucket.tokens == pytest.approx(59, abs=0.1)
        assert limiter.tpm_bucket.tokens == pytest.approx(900, abs=1)

    @pytest.mark.asyncio
    async def test_oversized_request_capped_to_capacity(self):
        limiter = RateLimiter(max_rpm=60, max_tpm=1000)
        await limiter.acquire(5000)
        assert limiter.tpm_bucket.tokens == pytest.approx(0, abs=1)
