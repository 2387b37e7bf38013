"""Token bucket rate limiter for inference request throttling."""

import asyncio
import time

from loguru import logger


class TokenBucket:
    """
    Token bucket algorithm implementation for rate limiting.

    Tokens refill continuously at a fixed rate. Requests consume tokens.

    Attributes:
        capacity: Maximum number of tokens the bucket can hold
        refill_rate: Tokens added per second
        tokens: Current number of tokens available
    """

    def __init__(self, capacity: int, refill_rate: float):
        """
        Initialize token bucket with capacity and refill rate.

        Args:
            capacity: Maximum tokens (e.g., 15 for 15 RPM)
            refill_rate: Tokens per second (e.g., 0.25 = 15 per minute)
        """
        self.capacity = capacity
        self.refill_rate = refill_rate
        self.tokens = float(capacity)
        self.last_refill = time.monotonic()

    def _refill(self) -> None:
        now = time.monotonic()
        self.tokens = min(self.capacity, self.tokens + (now - self.last_refill) * self.refill_rate)
        self.last_refill = now

    def try_acquire(self, tokens: float = 1) -> bool:
        """Consume ``tokens`` if available."""
        self._refill()
        if self.tokens >= tokens:
            self.tokens -= tokens
            return True
        return False

    def wait_time(self, tokens: float = 1) -> float:
        """Seconds until ``tokens`` will be available."""
        self._refill()
        missing = max(0.0, tokens - self.tokens)
        return missing / self.refill_rate if self.refill_rate > 0 else float("inf")


class RateLimiter:
    """
    Requests-per-minute and tokens-per-minute limiter for asyncio callers.

    ``acquire`` sleeps until both buckets can serve the request, so callers
    are throttled rather than rejected.
    """

    def __init__(self, max_rpm: int, max_tpm: int):
        """
        Initialize rate limiter with RPM and TPM constraints.

        Args:
            max_rpm: Maximum requests per minute
            max_tpm: Maximum tokens per minute
        """
        self.rpm_bucket = TokenBucket(capacity=max_rpm, refill_rate=max_rpm / 60.0)
        self.tpm_bucket = TokenBucket(capacity=max_tpm, refill_rate=max_tpm / 60.0)
        self._lock = asyncio.Lock()

        logger.bind(component="RateLimiter").info(f"RateLimiter initialized: {max_rpm} RPM, {max_tpm:,} TPM")

    async def acquire(self, token_count: int = 1) -> None:
        """
        Wait until one request of ``token_count`` tokens may proceed.

        Args:
            token_count: Estimated tokens the request will consume
        """
        token_count = min(token_count, self.tpm_bucket.capacity)
        async with self._lock:
            while True:
                delay = max(self.rpm_bucket.wait_time(1), self.tpm_bucket.wait_time(token_count))
                if delay <= 0:
                    self.rpm_bucket.try_acquire(1)
                    self.tpm_bucket.try_acquire(token_count)
                    return
                logger.bind(component="RateLimiter").debug(f"Throttled for {delay:.2f}s")
                await asyncio.sleep(delay)
