"""In-memory fixed-window rate limiter keyed by client identifier."""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

import structlog
from cachetools import TTLCache
from starlette.requests import Request

from brainstormer_api.config import get_settings

logger = structlog.get_logger()

UNKNOWN_CLIENT = "unknown"


@dataclass
class RateLimitRecord:
    """Request count for one client inside its current window."""

    client_key: str
    count: int
    window_reset_at: float


def resolve_client_key(request: Request) -> str:
    """Resolve the identifier a request is throttled under.

    Priority:
    1. First address in X-Forwarded-For
    2. X-Real-IP
    3. Transport peer address
    4. "unknown" (all unresolvable clients share one bucket)
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = request.headers.get("x-real-ip", "").strip()
    if real_ip:
        return real_ip

    if request.client and request.client.host:
        return request.client.host

    return UNKNOWN_CLIENT


class FixedWindowRateLimiter:
    """Thread-safe fixed-window counter with lazy eviction of expired windows.

    A window opens on the first request from a client and lasts
    ``window_seconds``. Denied requests leave the record untouched. Live
    records are never evicted: once ``max_clients`` windows are open, new
    clients are denied until one of them expires.
    """

    def __init__(
        self,
        limit: int | None = None,
        window_seconds: float | None = None,
        max_clients: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the rate limiter.

        Args:
            limit: Requests allowed per window. Defaults to config value.
            window_seconds: Window length in seconds. Defaults to config value.
            max_clients: Maximum client records kept. Defaults to config value.
            clock: Monotonic time source, injectable for tests.
        """
        settings = get_settings()
        self._limit = limit or settings.rate_limit_requests
        self._window = window_seconds or settings.rate_limit_window_seconds
        self._max_clients = max_clients or settings.rate_limit_max_clients
        self._clock = clock
        # Records are never re-inserted while their window is open, so the cache
        # expiry equals window_reset_at.
        self._records: TTLCache[str, RateLimitRecord] = TTLCache(
            maxsize=self._max_clients,
            ttl=self._window,
            timer=clock,
        )
        self._lock = threading.Lock()

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def window_seconds(self) -> float:
        return self._window

    def allow(self, client_key: str) -> bool:
        """Count a request from ``client_key`` and report whether it may proceed."""
        with self._lock:
            now = self._clock()
            record = self._records.get(client_key)

            if record is None and len(self._records) >= self._max_clients:
                logger.warning(
                    "Rate limiter table full, denying new client",
                    client_key=client_key,
                    max_clients=self._max_clients,
                )
                return False

            if record is None or now > record.window_reset_at:
                self._records[client_key] = RateLimitRecord(
                    client_key=client_key,
                    count=1,
                    window_reset_at=now + self._window,
                )
                return True

            if record.count >= self._limit:
                logger.warning(
                    "Rate limit exceeded",
                    client_key=client_key,
                    count=record.count,
                    retry_after_seconds=round(record.window_reset_at - now, 1),
                )
                return False

            record.count += 1
            return True

    def get_record(self, client_key: str) -> RateLimitRecord | None:
        """Return a copy of the live record for ``client_key``, if any."""
        with self._lock:
            record = self._records.get(client_key)
            if record is None:
                return None
            return RateLimitRecord(record.client_key, record.count, record.window_reset_at)

    def purge_expired(self) -> int:
        """Evict records whose window has closed.

        Returns:
            Number of records evicted.
        """
        with self._lock:
            return len(list(self._records.expire()))

    def count(self) -> int:
        """Number of client records currently held."""
        with self._lock:
            return len(self._records)

    def clear(self) -> None:
        """Drop all records."""
        with self._lock:
            self._records.clear()


# Global rate limiter instance
_rate_limiter: FixedWindowRateLimiter | None = None


def get_rate_limiter() -> FixedWindowRateLimiter:
    """Get the global rate limiter instance."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = FixedWindowRateLimiter()
    return _rate_limiter


def reset_rate_limiter() -> None:
    """Reset the global rate limiter (useful for testing)."""
    global _rate_limiter
    _rate_limiter = None
