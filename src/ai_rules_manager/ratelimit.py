"""Per-registry token bucket rate limiting.

Rate limits are configured as "N/unit" strings (unit in second, minute, hour).
A bucket holds up to N tokens and one token trickles back every unit/N.
"""

import logging
import re
import threading
import time
from collections.abc import Callable

from .config import DEFAULT_RATE_LIMIT

logger = logging.getLogger(__name__)

_RATE_LIMIT_PATTERN = re.compile(r"^\s*(\d+)\s*/\s*(second|minute|hour)\s*$")
_UNIT_SECONDS = {
    "second": 1.0,
    "minute": 60.0,
    "hour": 3600.0,
}
_DEFAULT_CAPACITY = 10
_DEFAULT_UNIT_SECONDS = 60.0

# Fixed backoff between token polls
POLL_INTERVAL = 0.1


def parse_rate_limit(limit_text: str | None) -> tuple[int, float]:
    """Parse a rate limit string into (capacity, refill_interval_seconds).

    Malformed or missing values fall back to 10/minute.

    Examples:
        >>> parse_rate_limit("10/minute")
        (10, 6.0)
        >>> parse_rate_limit("2/second")
        (2, 0.5)
        >>> parse_rate_limit("bogus")
        (10, 6.0)
    """
    match = _RATE_LIMIT_PATTERN.match(limit_text or "")
    if match is None or int(match.group(1)) <= 0:
        if limit_text:
            logger.warning(f"Invalid rate limit {limit_text!r}, using {DEFAULT_RATE_LIMIT}")
        return _DEFAULT_CAPACITY, _DEFAULT_UNIT_SECONDS / _DEFAULT_CAPACITY

    capacity = int(match.group(1))
    return capacity, _UNIT_SECONDS[match.group(2)] / capacity


class TokenBucket:
    """Thread-safe token bucket.

    Starts full. Each take first refills whole tokens for the time elapsed since the
    last refill (capped at capacity), then consumes one token if available.
    """

    def __init__(
        self,
        capacity: int,
        refill_interval: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        if refill_interval <= 0:
            raise ValueError(f"refill_interval must be positive, got {refill_interval}")

        self.capacity = capacity
        self.refill_interval = refill_interval
        self._clock = clock
        self._tokens = capacity
        self._last_refill = clock()
        self._lock = threading.Lock()

    @classmethod
    def from_rate_limit(cls, limit_text: str | None) -> "TokenBucket":
        capacity, refill_interval = parse_rate_limit(limit_text)
        return cls(capacity, refill_interval)

    @property
    def tokens(self) -> int:
        with self._lock:
            self._refill()
            return self._tokens

    def _refill(self) -> None:
        now = self._clock()
        tokens_to_add = int((now - self._last_refill) / self.refill_interval)
        # Timestamp only moves when a token was actually added
        if tokens_to_add > 0:
            self._tokens = min(self.capacity, self._tokens + tokens_to_add)
            self._last_refill = now

    def try_take(self) -> bool:
        """Take one token without waiting. Returns False if the bucket is empty."""
        with self._lock:
            self._refill()
            if self._tokens > 0:
                self._tokens -= 1
                return True
            return False

    def wait_for_token(
        self,
        cancel_event: threading.Event | None = None,
        poll_interval: float = POLL_INTERVAL,
    ) -> bool:
        """Block until a token is taken.

        Args:
            cancel_event: Optional event; when set, waiting stops
            poll_interval: Backoff between attempts in seconds

        Returns:
            True once a token was taken, False if cancelled first
        """
        while not self.try_take():
            if cancel_event is None:
                time.sleep(poll_interval)
            elif cancel_event.wait(poll_interval):
                return False
        return True


class RateLimiterRegistry:
    """Token buckets keyed by registry name, created lazily on first use.

    Each bucket has its own lock; the registry lock only guards bucket creation, so
    unrelated registries never serialize on each other.
    """

    def __init__(self, rate_limit_for: Callable[[str], str]):
        """Initialize with a lookup returning the configured rate limit for a registry.

        Args:
            rate_limit_for: e.g. ArmConfig.rate_limit_for
        """
        self._rate_limit_for = rate_limit_for
        self._buckets: dict[str, TokenBucket] = {}
        self._lock = threading.Lock()

    def get(self, registry: str) -> TokenBucket:
        bucket = self._buckets.get(registry)
        if bucket is not None:
            return bucket

        with self._lock:
            bucket = self._buckets.get(registry)
            if bucket is None:
                limit_text = self._rate_limit_for(registry)
                bucket = TokenBucket.from_rate_limit(limit_text)
                self._buckets[registry] = bucket
                logger.debug(
                    f"Created rate limiter for {registry}: {bucket.capacity} tokens, "
                    f"one every {bucket.refill_interval:.3f}s"
                )
            return bucket

    def __contains__(self, registry: str) -> bool:
        return registry in self._buckets

    def __len__(self) -> int:
        return len(self._buckets)
