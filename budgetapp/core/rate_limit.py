"""
Rate limiting

Two layers:

1. SlowAPI per-IP limits on routes (coarse flood protection).
2. RateLimiter: a fixed-window attempt counter keyed by an identifier
   (usually the email being targeted), consulted by the auth routes before
   sending codes, checking codes or checking passwords.

RateLimiter is injected (see budgetapp.api.deps.get_rate_limiter) rather
than read from a module global. The in-memory backend is only correct for a
single instance; multi-instance deployments must use RATE_LIMIT_BACKEND=redis.
Either way this is defense in depth, not a hard security boundary.
"""
import logging
import math
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict, Optional, Protocol

from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from starlette.requests import Request
from starlette.responses import JSONResponse

from budgetapp.core.config import settings
from budgetapp.core.exceptions import RateLimited

logger = logging.getLogger(__name__)


def get_client_ip(request: Request) -> str:
    """
    Get client IP, respecting X-Forwarded-For for proxied requests.
    Falls back to direct IP if header not present.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        # First IP in the chain is the original client
        return forwarded.split(",")[0].strip()
    return get_remote_address(request)


# Uses in-memory storage (suitable for single-instance)
limiter = Limiter(
    key_func=get_client_ip,
    enabled=settings.RATE_LIMIT_ENABLED,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """JSON 429 for SlowAPI per-IP limits."""
    logger.warning(
        f"Rate limit exceeded: {get_client_ip(request)} on {request.url.path}"
    )

    retry_after = exc.detail.split("per")[0].strip() if exc.detail else "1 minute"

    return JSONResponse(
        status_code=429,
        content={
            "error": "RATE_LIMITED",
            "message": f"Too many requests. Please try again in {retry_after}.",
        },
        headers={"Retry-After": "60"},
    )


# ============================================================
# Per-identifier attempt limiter
# ============================================================

@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: float  # epoch seconds when the current window ends

    def retry_after_seconds(self, now: Optional[float] = None) -> int:
        now = time.time() if now is None else now
        return max(0, math.ceil(self.reset_at - now))


class RateLimitBackend(Protocol):
    async def check(self, key: str, max_attempts: int, window_seconds: float) -> RateLimitResult:
        ...

    async def reset(self, key: str) -> None:
        ...


@dataclass
class _Window:
    count: int
    reset_at: float


class InMemoryRateLimitBackend:
    """
    Process-local fixed windows.

    - no window, or window elapsed: start a new one with count=1, allow
    - inside the window and count < max: increment, allow
    - count >= max: deny until reset_at

    Elapsed windows of every key are swept at most once per sweep_interval
    seconds, so keys that are never seen again do not pile up.
    """

    def __init__(self, clock: Callable[[], float] = time.time, sweep_interval: float = 60.0):
        self._clock = clock
        self._windows: Dict[str, _Window] = {}
        self._lock = Lock()
        self._sweep_interval = sweep_interval
        self._next_sweep = 0.0

    async def check(self, key: str, max_attempts: int, window_seconds: float) -> RateLimitResult:
        now = self._clock()
        with self._lock:
            if now >= self._next_sweep:
                self._drop_elapsed(now)
                self._next_sweep = now + self._sweep_interval

            window = self._windows.get(key)

            if window is None or now >= window.reset_at:
                window = _Window(count=1, reset_at=now + window_seconds)
                self._windows[key] = window
                return RateLimitResult(True, max_attempts - 1, window.reset_at)

            if window.count >= max_attempts:
                return RateLimitResult(False, 0, window.reset_at)

            window.count += 1
            return RateLimitResult(True, max_attempts - window.count, window.reset_at)

    async def reset(self, key: str) -> None:
        with self._lock:
            self._windows.pop(key, None)

    def purge_expired(self) -> int:
        """Drop elapsed windows now instead of waiting for the next sweep."""
        with self._lock:
            return self._drop_elapsed(self._clock())

    def _drop_elapsed(self, now: float) -> int:
        stale = [k for k, w in self._windows.items() if now >= w.reset_at]
        for k in stale:
            del self._windows[k]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)


class RedisRateLimitBackend:
    """
    Fixed windows shared across instances: INCR, and PEXPIRE on the first hit.

    Denied attempts still increment the counter; the window length does not
    change, so allow/deny decisions match the in-memory backend.
    """

    KEY_PREFIX = "ratelimit:"

    def __init__(self, redis_client, clock: Callable[[], float] = time.time):
        self._redis = redis_client
        self._clock = clock

    async def check(self, key: str, max_attempts: int, window_seconds: float) -> RateLimitResult:
        redis_key = f"{self.KEY_PREFIX}{key}"
        window_ms = int(window_seconds * 1000)

        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.incr(redis_key)
            pipe.pttl(redis_key)
            count, ttl_ms = await pipe.execute()

        if count == 1 or ttl_ms < 0:
            await self._redis.pexpire(redis_key, window_ms)
            ttl_ms = window_ms

        reset_at = self._clock() + ttl_ms / 1000.0
        if count > max_attempts:
            return RateLimitResult(False, 0, reset_at)
        return RateLimitResult(True, max_attempts - count, reset_at)

    async def reset(self, key: str) -> None:
        await self._redis.delete(f"{self.KEY_PREFIX}{key}")


class RateLimiter:
    """Attempt limiter with a pluggable backend."""

    def __init__(
        self,
        backend: RateLimitBackend,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.backend = backend
        self.enabled = enabled
        self._clock = clock

    async def check(self, key: str, max_attempts: int, window_seconds: float) -> RateLimitResult:
        if not self.enabled:
            return RateLimitResult(True, max_attempts, self._clock() + window_seconds)
        return await self.backend.check(key, max_attempts, window_seconds)

    async def reset(self, key: str) -> None:
        await self.backend.reset(key)

    async def enforce(self, key: str, max_attempts: int, window_seconds: float) -> RateLimitResult:
        """check() that raises RateLimited on denial."""
        result = await self.check(key, max_attempts, window_seconds)
        if not result.allowed:
            retry_after = result.retry_after_seconds(self._clock())
            logger.warning(f"Attempt limit reached for {key.split(':', 1)[0]} (retry in {retry_after}s)")
            raise RateLimited(retry_after_seconds=retry_after)
        return result


async def build_rate_limiter() -> RateLimiter:
    """Create the limiter configured by RATE_LIMIT_BACKEND."""
    if settings.RATE_LIMIT_BACKEND == "redis":
        from budgetapp.core.redis_client import get_redis

        client = await get_redis()
        if client is not None:
            logger.info("Attempt limiter using Redis backend")
            return RateLimiter(RedisRateLimitBackend(client), enabled=settings.RATE_LIMIT_ENABLED)
        logger.warning(
            "RATE_LIMIT_BACKEND=redis but Redis is unavailable. "
            "Attempt counters are process-local until Redis is reachable."
        )

    return RateLimiter(InMemoryRateLimitBackend(), enabled=settings.RATE_LIMIT_ENABLED)
