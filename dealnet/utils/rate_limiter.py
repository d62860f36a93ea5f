"""
In-process fixed-window rate limiter.

Shared by the tracking/redirect endpoints, the partner API and governance
throttling. A window opens on the first call for a key; every call increments
the count; once the window has elapsed the count resets before the current
call is evaluated. Bursts of up to 2x the limit are possible across a window
boundary.

State is process-local and lost on restart. With N processes the effective
limit is N x the configured limit. Swap InMemoryRateLimiter for a shared-store
implementation of RateLimiter if that matters.
"""
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_MS = 60_000
MAX_TRACKED_KEYS = 5000


@dataclass(frozen=True)
class RateLimitResult:
    ok: bool
    retry_after_seconds: Optional[int] = None


class RateLimiter(Protocol):
    def allow(self, key: str, limit: int, window_ms: int = DEFAULT_WINDOW_MS) -> RateLimitResult:
        ...


@dataclass
class _Window:
    count: int
    expires_at: float  # seconds, from the limiter clock


class InMemoryRateLimiter:
    """
    Fixed-window counters keyed by composite identity string.

    Past max_keys, expired windows are swept (at most once per
    SWEEP_INTERVAL_SECONDS). A window that is still open is never dropped, so
    a flood of new keys can't reset another key's count mid-window; the table
    may grow past max_keys while that many windows are live.
    """

    SWEEP_INTERVAL_SECONDS = 1.0

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        max_keys: int = MAX_TRACKED_KEYS,
    ):
        self._clock = clock
        self._max_keys = max_keys
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()
        self._next_sweep_at = 0.0

    def allow(self, key: str, limit: int, window_ms: int = DEFAULT_WINDOW_MS) -> RateLimitResult:
        now = self._clock()
        window_seconds = window_ms / 1000.0

        with self._lock:
            window = self._windows.get(key)
            if window is None or now >= window.expires_at:
                is_new_key = window is None
                window = _Window(count=0, expires_at=now + window_seconds)
                self._windows[key] = window
                if is_new_key:
                    self._sweep_expired(now)

            window.count += 1
            if window.count > limit:
                retry_after = max(1, math.ceil(window.expires_at - now))
                logger.debug(
                    "Rate limit exceeded: key=%s count=%d limit=%d", key, window.count, limit,
                )
                return RateLimitResult(ok=False, retry_after_seconds=retry_after)

        return RateLimitResult(ok=True)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()
            self._next_sweep_at = 0.0

    def __len__(self) -> int:
        return len(self._windows)

    def _sweep_expired(self, now: float) -> None:
        if len(self._windows) <= self._max_keys or now < self._next_sweep_at:
            return
        self._next_sweep_at = now + self.SWEEP_INTERVAL_SECONDS
        expired = [k for k, w in self._windows.items() if now >= w.expires_at]
        for key in expired:
            del self._windows[key]
        if len(self._windows) > self._max_keys:
            logger.info(
                "Rate limiter tracking %d live windows (max_keys=%d)",
                len(self._windows), self._max_keys,
            )


_default_limiter = InMemoryRateLimiter()


def get_rate_limiter() -> InMemoryRateLimiter:
    return _default_limiter


def rate_limit(key: str, limit: int, window_ms: int = DEFAULT_WINDOW_MS) -> RateLimitResult:
    """Check and count one call against the process-wide limiter."""
    return _default_limiter.allow(key, limit, window_ms)


def request_fingerprint(client_ip: str, user_agent: str) -> str:
    """
    Coarse request identity for abuse limits: first forwarded IP plus a
    truncated user agent. Never persisted.
    """
    ip = (client_ip or "").split(",")[0].strip()
    ua = (user_agent or "")[:80]
    return f"{ip or 'noip'}|{ua or 'noua'}"
