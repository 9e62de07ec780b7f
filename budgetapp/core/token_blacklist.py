"""
Session revocation

Session tokens are stateless, so verify_session_token consults this list on
every call:
- logout revokes one session by jti, until that token would have expired
- password change, password reset and account deletion set a per-user
  cutoff; sessions issued before it are rejected

Storage is pluggable like the attempt limiter. The in-memory store only
covers one process; TOKEN_BLACKLIST_BACKEND=redis shares revocations between
instances and keeps them across restarts.
"""
import asyncio
import logging
import math
from datetime import datetime, timezone
from threading import Lock
from typing import TYPE_CHECKING, Callable, Dict, Optional, Protocol

from budgetapp.core.config import settings

if TYPE_CHECKING:
    from budgetapp.core.security import SessionClaims

logger = logging.getLogger(__name__)

# A cutoff is irrelevant once every session issued before it has expired
USER_CUTOFF_TTL_SECONDS = settings.ACCESS_TOKEN_EXPIRE_DAYS * 24 * 60 * 60


def epoch_now() -> float:
    """Wall clock with the same microsecond precision as token iat claims."""
    return datetime.now(timezone.utc).timestamp()


class RevocationStore(Protocol):
    async def revoke_jti(self, jti: str, expires_at: float) -> None:
        ...

    async def is_jti_revoked(self, jti: str) -> bool:
        ...

    async def set_user_cutoff(self, user_id: int, cutoff: float) -> None:
        ...

    async def get_user_cutoff(self, user_id: int) -> Optional[float]:
        ...

    async def purge_expired(self) -> int:
        ...


class InMemoryRevocationStore:
    """Process-local revocations, purged by the cleanup task."""

    def __init__(self, clock: Callable[[], float] = epoch_now):
        self._clock = clock
        # {jti: token expiry, epoch seconds}
        self._jtis: Dict[str, float] = {}
        # {user_id: cutoff, epoch seconds}
        self._cutoffs: Dict[int, float] = {}
        self._lock = Lock()

    async def revoke_jti(self, jti: str, expires_at: float) -> None:
        with self._lock:
            self._jtis[jti] = expires_at

    async def is_jti_revoked(self, jti: str) -> bool:
        with self._lock:
            return jti in self._jtis

    async def set_user_cutoff(self, user_id: int, cutoff: float) -> None:
        with self._lock:
            self._cutoffs[user_id] = max(cutoff, self._cutoffs.get(user_id, cutoff))

    async def get_user_cutoff(self, user_id: int) -> Optional[float]:
        with self._lock:
            return self._cutoffs.get(user_id)

    async def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            stale_jtis = [jti for jti, expires_at in self._jtis.items() if expires_at <= now]
            for jti in stale_jtis:
                del self._jtis[jti]

            stale_users = [
                user_id for user_id, cutoff in self._cutoffs.items()
                if now - cutoff > USER_CUTOFF_TTL_SECONDS
            ]
            for user_id in stale_users:
                del self._cutoffs[user_id]

        return len(stale_jtis) + len(stale_users)

    def __len__(self) -> int:
        with self._lock:
            return len(self._jtis) + len(self._cutoffs)


class RedisRevocationStore:
    """Revocations as Redis keys that expire with the sessions they cover."""

    JTI_PREFIX = "revoked:jti:"
    USER_PREFIX = "revoked:user:"

    def __init__(self, redis_client, clock: Callable[[], float] = epoch_now):
        self._redis = redis_client
        self._clock = clock

    async def revoke_jti(self, jti: str, expires_at: float) -> None:
        ttl = max(1, math.ceil(expires_at - self._clock()))
        await self._redis.set(f"{self.JTI_PREFIX}{jti}", "1", ex=ttl)

    async def is_jti_revoked(self, jti: str) -> bool:
        return bool(await self._redis.exists(f"{self.JTI_PREFIX}{jti}"))

    async def set_user_cutoff(self, user_id: int, cutoff: float) -> None:
        await self._redis.set(f"{self.USER_PREFIX}{user_id}", repr(cutoff), ex=USER_CUTOFF_TTL_SECONDS)

    async def get_user_cutoff(self, user_id: int) -> Optional[float]:
        value = await self._redis.get(f"{self.USER_PREFIX}{user_id}")
        return float(value) if value is not None else None

    async def purge_expired(self) -> int:
        # Keys carry their own TTL
        return 0


class TokenBlacklist:
    """Revocation checks for session claims over a pluggable store."""

    def __init__(
        self,
        store: Optional[RevocationStore] = None,
        clock: Callable[[], float] = epoch_now,
    ):
        self._clock = clock
        self.store: RevocationStore = store or InMemoryRevocationStore(clock)
        self._cleanup_task: Optional[asyncio.Task] = None

    def use_store(self, store: RevocationStore) -> None:
        self.store = store

    async def revoke(self, claims: "SessionClaims") -> None:
        """Revoke one session (logout)."""
        await self.store.revoke_jti(claims.jti, claims.expires_at.timestamp())
        logger.info(f"Session {claims.jti[:8]}... revoked for user {claims.user_id}")

    async def revoke_all_for_user(self, user_id: int) -> None:
        """Reject every session of the user issued before now."""
        await self.store.set_user_cutoff(user_id, self._clock())
        logger.info(f"All sessions revoked for user {user_id}")

    async def is_revoked(self, claims: "SessionClaims") -> bool:
        if await self.store.is_jti_revoked(claims.jti):
            return True
        cutoff = await self.store.get_user_cutoff(claims.user_id)
        return cutoff is not None and claims.issued_at.timestamp() < cutoff

    async def start_cleanup_task(self, interval_minutes: int = 60) -> None:
        """Periodically drop entries whose sessions have expired anyway."""
        async def cleanup_loop():
            while True:
                await asyncio.sleep(interval_minutes * 60)
                try:
                    removed = await self.store.purge_expired()
                except Exception as e:
                    logger.error(f"Session revocation cleanup failed: {type(e).__name__}: {e}")
                    continue
                if removed:
                    logger.debug(f"Session revocation cleanup: removed {removed} entries")

        self._cleanup_task = asyncio.create_task(cleanup_loop())
        logger.info(f"Session revocation cleanup task started (interval: {interval_minutes} min)")

    async def stop_cleanup_task(self) -> None:
        if self._cleanup_task and not self._cleanup_task.done():
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            logger.info("Session revocation cleanup task stopped")


async def build_revocation_store() -> RevocationStore:
    """Create the store configured by TOKEN_BLACKLIST_BACKEND."""
    if settings.TOKEN_BLACKLIST_BACKEND == "redis":
        from budgetapp.core.redis_client import get_redis

        client = await get_redis()
        if client is not None:
            logger.info("Session revocation using Redis backend")
            return RedisRevocationStore(client)
        logger.warning(
            "TOKEN_BLACKLIST_BACKEND=redis but Redis is unavailable. "
            "Revocations are process-local until Redis is reachable."
        )

    return InMemoryRevocationStore()


token_blacklist = TokenBlacklist()
