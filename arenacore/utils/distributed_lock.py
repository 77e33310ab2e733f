"""
Redis-based Distributed Locking System.

Exclusivity scopes for the competitive core. Each tournament and each
matchmaking mode gets its own independent lock, so unrelated tournaments and
modes never contend.

Design:
1. Atomic acquisition with SET NX PX
2. Lock timeout so a crashed holder cannot wedge a scope forever
3. Owner-checked release and renewal through Lua scripts

Lock keys:
- lock:tournament:{id}               result commits, bracket advance, lifecycle
- lock:queue:{mode}                  matchmaking tick / enqueue / dequeue per mode
- lock:queue-match:{match_id}        result commit for a queue-formed match
- lock:rating:{mode}                 rating read-modify-write per mode
"""

import asyncio
import hashlib
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import AsyncGenerator, Optional, Set
from uuid import uuid4

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class LockType(Enum):
    """Lock scope types."""

    TOURNAMENT = "tournament"
    QUEUE = "queue"
    QUEUE_MATCH = "queue-match"
    RATING = "rating"


@dataclass
class LockInfo:
    """Lock metadata."""

    lock_key: str
    owner_id: str
    acquired_at: float
    expires_at: float
    lock_type: LockType


class DistributedLockError(Exception):
    """Base lock error."""

    pass


class LockAcquisitionError(DistributedLockError):
    """Failed to acquire lock within timeout."""

    pass


class DistributedLockManager:
    """
    Redis-based Distributed Lock Manager.

    Only one holder per key at a time. Holders are identified by a per-acquisition
    owner token; release and renew are no-ops for anyone else's token.

    Redis commands:
    - SET NX PX: atomic acquisition with expiry
    - GET + DEL (Lua): owner-checked release
    - GET + PEXPIRE (Lua): owner-checked renewal
    """

    RELEASE_LOCK_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    RENEW_LOCK_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("pexpire", KEYS[1], ARGV[2])
    else
        return 0
    end
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        default_lock_timeout_ms: int = 10000,
        default_acquire_timeout_ms: int = 5000,
        retry_interval_ms: int = 20,
    ):
        self.redis = redis_client
        self.default_lock_timeout_ms = default_lock_timeout_ms
        self.default_acquire_timeout_ms = default_acquire_timeout_ms
        self.retry_interval_ms = retry_interval_ms

        self._instance_id = str(uuid4())

        # Currently held locks (for cleanup on shutdown)
        self._held_locks: Set[str] = set()

        self._release_script = None
        self._renew_script = None

    def _ensure_scripts(self) -> None:
        """Register Lua scripts if not already done."""
        if self._release_script is None:
            self._release_script = self.redis.register_script(self.RELEASE_LOCK_SCRIPT)
        if self._renew_script is None:
            self._renew_script = self.redis.register_script(self.RENEW_LOCK_SCRIPT)

    def make_lock_key(self, scope_id: str, lock_type: LockType) -> str:
        """Generate Redis key for a lock scope."""
        return f"lock:{lock_type.value}:{scope_id}"

    def _make_owner_token(self) -> str:
        raw = f"{self._instance_id}:{time.time_ns()}:{uuid4().hex[:8]}"
        return hashlib.sha256(raw.encode()).hexdigest()[:32]

    async def acquire(
        self,
        scope_id: str,
        lock_type: LockType,
        lock_timeout_ms: Optional[int] = None,
        acquire_timeout_ms: Optional[int] = None,
    ) -> LockInfo:
        """
        Acquire distributed lock.

        Retries SET NX PX at retry_interval_ms until acquire_timeout_ms elapses.

        Raises:
            LockAcquisitionError: If lock cannot be acquired within timeout
        """
        self._ensure_scripts()

        lock_timeout = lock_timeout_ms or self.default_lock_timeout_ms
        acquire_timeout = acquire_timeout_ms or self.default_acquire_timeout_ms

        lock_key = self.make_lock_key(scope_id, lock_type)
        owner_token = self._make_owner_token()

        start_time = time.monotonic() * 1000

        while True:
            acquired = await self.redis.set(
                lock_key,
                owner_token,
                nx=True,
                px=lock_timeout,
            )

            if acquired:
                now = time.time()
                self._held_locks.add(lock_key)
                return LockInfo(
                    lock_key=lock_key,
                    owner_id=owner_token,
                    acquired_at=now,
                    expires_at=now + (lock_timeout / 1000),
                    lock_type=lock_type,
                )

            elapsed = (time.monotonic() * 1000) - start_time
            if elapsed >= acquire_timeout:
                logger.warning("Lock %s not acquired within %sms", lock_key, acquire_timeout)
                raise LockAcquisitionError(
                    f"Failed to acquire lock {lock_key} within {acquire_timeout}ms. "
                    f"Lock is held by another process."
                )

            await asyncio.sleep(self.retry_interval_ms / 1000)

    async def release(self, lock_info: LockInfo) -> bool:
        """
        Release distributed lock.

        Returns:
            True if lock was released, False if not held (expired or stolen)
        """
        self._ensure_scripts()

        result = await self._release_script(
            keys=[lock_info.lock_key],
            args=[lock_info.owner_id],
        )

        self._held_locks.discard(lock_info.lock_key)
        return result == 1

    async def renew(
        self,
        lock_info: LockInfo,
        additional_time_ms: Optional[int] = None,
    ) -> bool:
        """
        Renew (extend) lock TTL.

        Returns:
            True if renewed, False if lock no longer held
        """
        self._ensure_scripts()

        ttl = additional_time_ms or self.default_lock_timeout_ms

        result = await self._renew_script(
            keys=[lock_info.lock_key],
            args=[lock_info.owner_id, ttl],
        )
        return result == 1

    async def is_locked(self, scope_id: str, lock_type: LockType) -> bool:
        """Check if scope is currently locked."""
        lock_key = self.make_lock_key(scope_id, lock_type)
        return await self.redis.exists(lock_key) == 1

    @asynccontextmanager
    async def lock(
        self,
        scope_id: str,
        lock_type: LockType,
        lock_timeout_ms: Optional[int] = None,
        acquire_timeout_ms: Optional[int] = None,
    ) -> AsyncGenerator[LockInfo, None]:
        """
        Context manager for automatic lock acquire/release.

        ```python
        async with lock_manager.lock("t1", LockType.TOURNAMENT):
            ...  # exclusive access to tournament t1
        ```
        """
        lock_info = await self.acquire(
            scope_id,
            lock_type,
            lock_timeout_ms,
            acquire_timeout_ms,
        )
        try:
            yield lock_info
        finally:
            await self.release(lock_info)

    async def cleanup_all(self) -> int:
        """
        Release all locks held by this instance.

        Returns:
            Number of locks released
        """
        released = 0
        for lock_key in list(self._held_locks):
            try:
                await self.redis.delete(lock_key)
                released += 1
            except redis.RedisError as e:
                logger.warning("Failed to release %s on shutdown: %s", lock_key, e)
            self._held_locks.discard(lock_key)
        return released


class MultiLockManager:
    """
    Acquire several scopes at once.

    Locks are taken in sorted key order so two callers asking for the same set
    can never deadlock; partial acquisitions are released on failure.
    """

    def __init__(self, lock_manager: DistributedLockManager):
        self.lock_manager = lock_manager

    @asynccontextmanager
    async def multi_lock(
        self,
        locks: list[tuple[str, LockType]],
        lock_timeout_ms: Optional[int] = None,
        acquire_timeout_ms: Optional[int] = None,
    ) -> AsyncGenerator[list[LockInfo], None]:
        sorted_locks = sorted(
            set(locks), key=lambda x: self.lock_manager.make_lock_key(x[0], x[1])
        )

        acquired_locks: list[LockInfo] = []

        try:
            for scope_id, lock_type in sorted_locks:
                lock_info = await self.lock_manager.acquire(
                    scope_id,
                    lock_type,
                    lock_timeout_ms,
                    acquire_timeout_ms,
                )
                acquired_locks.append(lock_info)

            yield acquired_locks

        finally:
            for lock_info in reversed(acquired_locks):
                try:
                    await self.lock_manager.release(lock_info)
                except redis.RedisError as e:
                    logger.warning("Failed to release %s: %s", lock_info.lock_key, e)
