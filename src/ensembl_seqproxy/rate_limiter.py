"""Client-side throttling and the retry policy for 429 responses."""

import logging
import time
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class RetryPolicy:
    """
    How often, and how long, to wait when the service answers 429.

    ``sleep`` is injectable so tests can record the delays instead of
    waiting them out.
    """

    def __init__(self,
                 max_attempts: int = 3,
                 max_retry_after: float = 10.0,
                 sleep: Callable[[float], None] = time.sleep):
        self.max_attempts = max_attempts
        self.max_retry_after = max_retry_after
        self._sleep = sleep
        self.total_slept = 0.0
        self.retry_count = 0
        self._lock = Lock()

    def parse_retry_after(self, header: Optional[str]) -> Optional[float]:
        """
        Seconds to wait from a ``Retry-After`` header.

        Returns:
            The delay when it lies in ``(0, max_retry_after]``, otherwise None
            (missing, malformed, non-positive or too long to be worth waiting)
        """
        if header is None:
            return None
        try:
            seconds = float(str(header).strip())
        except ValueError:
            logger.debug(f"Ignoring unparseable Retry-After header: {header!r}")
            return None
        if 0 < seconds <= self.max_retry_after:
            return seconds
        return None

    def should_retry(self, attempt: int) -> bool:
        """True if another attempt is allowed after ``attempt`` (1-based) failed."""
        return attempt < self.max_attempts

    def wait(self, seconds: float):
        with self._lock:
            self.total_slept += seconds
            self.retry_count += 1
        logger.info(f"Rate limited, retrying in {seconds:.1f}s")
        self._sleep(seconds)


@dataclass
class RateLimitConfig:
    """Sustained request rate for one domain; bursts default to two seconds' worth."""
    requests_per_second: float
    burst_size: Optional[int] = None

    def __post_init__(self):
        if self.burst_size is None:
            self.burst_size = max(1, int(2 * self.requests_per_second))


class TokenBucket:
    """
    Token bucket throttling requests to a single domain.

    A blocking caller that finds the bucket short borrows the missing tokens
    (the balance goes negative) and then sleeps outside the lock for as long
    as the refill takes, so concurrent callers queue up behind each other.
    """

    def __init__(self,
                 config: RateLimitConfig,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        self.config = config
        self.tokens = float(config.burst_size)
        self._clock = clock
        self._sleep = sleep
        self._refilled_at = clock()
        self.lock = Lock()

        self.total_requests = 0
        self.total_wait_time = 0.0

    def acquire(self, tokens: int = 1, blocking: bool = True) -> bool:
        """Take ``tokens``; False only when non-blocking and the bucket is short."""
        with self.lock:
            wait_time = self._reserve(tokens, blocking)
        if wait_time is None:
            return False
        if wait_time > 0:
            logger.debug(f"Rate limit: waiting {wait_time:.2f}s for {tokens} tokens")
            self._sleep(wait_time)
        return True

    def _reserve(self, tokens: int, blocking: bool) -> Optional[float]:
        now = self._clock()
        rate = self.config.requests_per_second
        self.tokens = min(float(self.config.burst_size), self.tokens + (now - self._refilled_at) * rate)
        self._refilled_at = now

        shortfall = tokens - self.tokens
        if shortfall > 0 and not blocking:
            return None

        wait_time = max(0.0, shortfall / rate)
        self.tokens -= tokens
        self.total_requests += 1
        self.total_wait_time += wait_time
        return wait_time

    def get_stats(self) -> Dict[str, float]:
        with self.lock:
            requests_made = self.total_requests
            return {
                'total_requests': requests_made,
                'total_wait_time': self.total_wait_time,
                'average_wait_time': self.total_wait_time / requests_made if requests_made else 0,
                'current_tokens': self.tokens,
                'max_tokens': self.config.burst_size
            }


class RateLimiter:
    """
    Token buckets keyed by REST domain.

    Domains get a bucket at ``requests_per_second`` the first time they are
    used unless :meth:`configure` gave them their own. With no default rate,
    unconfigured domains are not throttled.
    """

    def __init__(self,
                 requests_per_second: Optional[float] = None,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        self.default_rate = requests_per_second
        self._clock = clock
        self._sleep = sleep
        self.buckets: Dict[str, TokenBucket] = {}
        self.lock = Lock()

    def _new_bucket(self, config: RateLimitConfig) -> TokenBucket:
        return TokenBucket(config, self._clock, self._sleep)

    def configure(self, domain: str, config: RateLimitConfig) -> None:
        with self.lock:
            self.buckets[domain] = self._new_bucket(config)
        logger.debug(f"Configured rate limit for {domain}: {config.requests_per_second} req/s")

    def acquire(self, domain: str, tokens: int = 1, blocking: bool = True) -> bool:
        with self.lock:
            bucket = self.buckets.get(domain)
            if bucket is None and self.default_rate:
                bucket = self.buckets[domain] = self._new_bucket(RateLimitConfig(self.default_rate))
        if bucket is None:
            return True
        return bucket.acquire(tokens, blocking)

    def get_stats(self, domain: Optional[str] = None) -> Dict[str, Any]:
        with self.lock:
            buckets = dict(self.buckets)
        if domain is not None:
            buckets = {domain: buckets[domain]} if domain in buckets else {}
        return {name: bucket.get_stats() for name, bucket in buckets.items()}
