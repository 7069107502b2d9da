"""
Lease-based execution mutex.
At most one bot process may submit for a given opportunity key at a time.
Leases carry a random token; only the holder of that token can release.
"""

import asyncio
import secrets
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional, TYPE_CHECKING

import redis.asyncio as redis
from redis.exceptions import RedisError

if TYPE_CHECKING:
    from ..monitor.logger import Logger

# compare-and-delete so a lease reassigned after expiry is never released
RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


@dataclass(frozen=True)
class ExecutionLease:
    """Time-bounded exclusive claim on an opportunity key."""
    key: str
    token: str
    expiry: float  # wall-clock seconds

    def is_expired(self, now: Optional[float] = None) -> bool:
        return (now if now is not None else time.time()) >= self.expiry


class LockBackend(ABC):
    """Atomic set-if-absent-with-expiry store."""

    name: str
    distributed = False

    @abstractmethod
    async def set_if_absent(self, key: str, token: str, ttl_ms: int) -> bool:
        ...

    @abstractmethod
    async def delete_if_equals(self, key: str, token: str) -> bool:
        ...

    async def close(self) -> None:
        return None


class RedisLockBackend(LockBackend):
    """Shared backend: SET NX PX plus a Lua compare-and-delete."""

    name = "redis"
    distributed = True

    def __init__(self, client: "redis.Redis"):
        self.client = client
        self._release = client.register_script(RELEASE_SCRIPT)

    async def set_if_absent(self, key: str, token: str, ttl_ms: int) -> bool:
        return bool(await self.client.set(key, token, nx=True, px=ttl_ms))

    async def delete_if_equals(self, key: str, token: str) -> bool:
        return bool(await self._release(keys=[key], args=[token]))

    async def close(self) -> None:
        await self.client.aclose()


class InMemoryLockBackend(LockBackend):
    """
    Process-local backend with timer-based expiry.
    Only excludes callers within this process.
    """

    name = "memory"

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self._store: dict[str, tuple[str, float]] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}

    def _expire(self, key: str, token: str) -> None:
        entry = self._store.get(key)
        if entry is not None and entry[0] == token:
            del self._store[key]
        self._timers.pop(key, None)

    def _live(self, key: str) -> Optional[tuple[str, float]]:
        entry = self._store.get(key)
        if entry is not None and self.clock() >= entry[1]:
            # timer may not have fired yet
            self._expire(key, entry[0])
            return None
        return entry

    async def set_if_absent(self, key: str, token: str, ttl_ms: int) -> bool:
        if self._live(key) is not None:
            return False

        self._store[key] = (token, self.clock() + ttl_ms / 1000)
        old_timer = self._timers.pop(key, None)
        if old_timer is not None:
            old_timer.cancel()
        loop = asyncio.get_running_loop()
        self._timers[key] = loop.call_later(ttl_ms / 1000, self._expire, key, token)
        return True

    async def delete_if_equals(self, key: str, token: str) -> bool:
        entry = self._live(key)
        if entry is None or entry[0] != token:
            return False
        del self._store[key]
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
        return True

    async def close(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._store.clear()


class FailoverLockBackend(LockBackend):
    """
    Redis backend that degrades to a process-local one on the first store error.

    The switch is one-way for the life of the process. Leases taken on Redis
    before the switch are left to expire by TTL.
    """

    def __init__(
        self,
        primary: RedisLockBackend,
        fallback: Optional[InMemoryLockBackend] = None,
        logger: Optional["Logger"] = None,
    ):
        self.primary = primary
        self.fallback = fallback or InMemoryLockBackend()
        self.logger = logger
        self.degraded = False

    @property
    def name(self) -> str:
        return self.fallback.name if self.degraded else self.primary.name

    @property
    def distributed(self) -> bool:
        return not self.degraded

    def _degrade(self, error: Exception) -> None:
        self.degraded = True
        if self.logger:
            self.logger.warning(
                "lock_backend_degraded",
                backend=self.fallback.name,
                error=str(error),
                note="mutual exclusion holds within this process only",
            )

    async def set_if_absent(self, key: str, token: str, ttl_ms: int) -> bool:
        if not self.degraded:
            try:
                return await self.primary.set_if_absent(key, token, ttl_ms)
            except (RedisError, OSError) as e:
                self._degrade(e)
        return await self.fallback.set_if_absent(key, token, ttl_ms)

    async def delete_if_equals(self, key: str, token: str) -> bool:
        if not self.degraded:
            try:
                return await self.primary.delete_if_equals(key, token)
            except (RedisError, OSError) as e:
                self._degrade(e)
        return await self.fallback.delete_if_equals(key, token)

    async def close(self) -> None:
        await self.fallback.close()
        await self.primary.close()


class ExecutionMutex:
    """
    Mutex over a backend chosen once at construction.

    Use `ExecutionMutex.create()` to ping Redis first. An unreachable store
    selects the in-process backend; a reachable one is wrapped so a later
    outage degrades to it instead of refusing every lease.
    """

    def __init__(
        self,
        backend: LockBackend,
        key_prefix: str = "arb_lock",
        default_ttl_ms: int = 15_000,
        logger: Optional["Logger"] = None,
    ):
        self.backend = backend
        self.key_prefix = key_prefix
        self.default_ttl_ms = default_ttl_ms
        self.logger = logger

    @classmethod
    async def create(
        cls,
        redis_url: str = "",
        key_prefix: str = "arb_lock",
        default_ttl_ms: int = 15_000,
        logger: Optional["Logger"] = None,
    ) -> "ExecutionMutex":
        backend: LockBackend
        if redis_url:
            client = redis.from_url(redis_url, decode_responses=True)
            try:
                await client.ping()
                backend = FailoverLockBackend(RedisLockBackend(client), logger=logger)
                if logger:
                    logger.info("lock_backend_ready", backend="redis", url=redis_url)
            except (RedisError, OSError) as e:
                await client.aclose()
                backend = InMemoryLockBackend()
                if logger:
                    logger.warning(
                        "lock_backend_degraded",
                        backend="memory",
                        error=str(e),
                        note="mutual exclusion holds within this process only",
                    )
        else:
            backend = InMemoryLockBackend()
            if logger:
                logger.info("lock_backend_ready", backend="memory")

        return cls(backend, key_prefix, default_ttl_ms, logger)

    @property
    def is_distributed(self) -> bool:
        return self.backend.distributed

    def _full_key(self, key: str) -> str:
        return f"{self.key_prefix}:{key}"

    async def acquire(self, key: str, ttl_ms: Optional[int] = None) -> Optional[ExecutionLease]:
        """Claim key for ttl_ms. Returns None if it is held or the store errors."""
        ttl_ms = ttl_ms or self.default_ttl_ms
        token = secrets.token_hex(16)
        try:
            acquired = await self.backend.set_if_absent(self._full_key(key), token, ttl_ms)
        except (RedisError, OSError) as e:
            if self.logger:
                self.logger.error("lock_acquire_error", key=key, error=str(e))
            return None

        if not acquired:
            return None
        return ExecutionLease(key=key, token=token, expiry=time.time() + ttl_ms / 1000)

    async def release(self, key: str, token: str) -> bool:
        """Release only if token still owns key."""
        try:
            released = await self.backend.delete_if_equals(self._full_key(key), token)
        except (RedisError, OSError) as e:
            if self.logger:
                self.logger.error("lock_release_error", key=key, error=str(e))
            return False

        if not released and self.logger:
            self.logger.warning("lock_release_lost", key=key)
        return released

    async def close(self) -> None:
        await self.backend.close()
