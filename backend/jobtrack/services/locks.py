"""
Single-writer locks keyed by user / application.

KeyedLock is process-local and built on threading locks, so it works from
plain threads (Celery prefork/threads) and from any event loop. RedisKeyedLock
serializes across hosts; it is used when DISTRIBUTED_LOCKS is on and Redis
answers, with graceful fallback to process-local locks otherwise.
"""
import asyncio
import logging
import threading
from contextlib import asynccontextmanager, contextmanager
from typing import Callable, Optional

from ..config import settings
from .store import TransientStoreError

logger = logging.getLogger(__name__)

_redis_client = None
_redis_unavailable = False  # Track if Redis connection failed
_registry = None
_registry_guard = threading.Lock()


class LockTimeoutError(TransientStoreError):
    """Could not enter the critical section in time; retry later."""


async def _acquire_off_loop(acquire: Callable[[], bool], release: Callable[[], None]) -> bool:
    """
    Run a blocking acquire in a worker thread. If the awaiting task is
    cancelled, release the lock as soon as the thread gets it.
    """
    fut = asyncio.ensure_future(asyncio.to_thread(acquire))
    try:
        return await asyncio.shield(fut)
    except asyncio.CancelledError:
        def _release_late(f):
            if not f.cancelled() and f.exception() is None and f.result():
                release()
        fut.add_done_callback(_release_late)
        raise


class KeyedLock:
    """In-process mutual exclusion per key. Idle keys are dropped."""

    def __init__(self, timeout_s: Optional[float] = None):
        self.timeout_s = timeout_s
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._refs: dict[str, int] = {}

    def _checkout(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            self._refs[key] = self._refs.get(key, 0) + 1
            return lock

    def _checkin(self, key: str) -> None:
        with self._guard:
            remaining = self._refs.get(key, 1) - 1
            if remaining <= 0:
                self._refs.pop(key, None)
                self._locks.pop(key, None)
            else:
                self._refs[key] = remaining

    def _timeout(self) -> float:
        return self.timeout_s if self.timeout_s and self.timeout_s > 0 else -1

    @contextmanager
    def hold(self, key: str):
        lock = self._checkout(key)
        try:
            if not lock.acquire(True, self._timeout()):
                raise LockTimeoutError(f"timed out waiting for lock {key}")
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(key)

    @asynccontextmanager
    async def hold_async(self, key: str):
        lock = self._checkout(key)
        try:
            acquired = lock.acquire(False)
            if not acquired:
                acquired = await _acquire_off_loop(lambda: lock.acquire(True, self._timeout()), lock.release)
            if not acquired:
                raise LockTimeoutError(f"timed out waiting for lock {key}")
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(key)


class RedisKeyedLock:
    """Cross-process lock per key on top of redis-py's Lock."""

    def __init__(self, client, *, timeout_s: int, blocking_timeout_s: float, prefix: str = "jobtrack:lock:"):
        self.client = client
        self.timeout_s = timeout_s
        self.blocking_timeout_s = blocking_timeout_s
        self.prefix = prefix

    def _lock(self, key: str):
        # thread_local=False: the async path acquires in a worker thread and releases elsewhere.
        return self.client.lock(
            f"{self.prefix}{key}",
            timeout=self.timeout_s,
            blocking_timeout=self.blocking_timeout_s,
            thread_local=False,
        )

    @staticmethod
    def _release(lock, key: str) -> None:
        from redis.exceptions import LockError

        try:
            lock.release()
        except LockError as e:
            # Expired while held; the next writer already owns it.
            logger.warning(f"Redis lock {key} expired before release: {e}")

    @contextmanager
    def hold(self, key: str):
        lock = self._lock(key)
        if not lock.acquire():
            raise LockTimeoutError(f"timed out waiting for redis lock {key}")
        try:
            yield
        finally:
            self._release(lock, key)

    @asynccontextmanager
    async def hold_async(self, key: str):
        lock = self._lock(key)
        acquired = await _acquire_off_loop(lock.acquire, lambda: self._release(lock, key))
        if not acquired:
            raise LockTimeoutError(f"timed out waiting for redis lock {key}")
        try:
            yield
        finally:
            await asyncio.to_thread(self._release, lock, key)


def get_redis_client():
    """
    Get or create Redis client.
    Returns None if Redis unavailable (connection failed).
    """
    global _redis_client, _redis_unavailable

    # If we already know Redis is unavailable, skip connection attempts
    if _redis_unavailable:
        return None

    if _redis_client is not None:
        return _redis_client

    import redis

    try:
        client = redis.from_url(
            settings.redis_url,
            socket_connect_timeout=2,
            socket_timeout=5,
        )
        # Test connection
        client.ping()
    except redis.RedisError as e:
        logger.warning(f"Redis unavailable: {e}. Using in-process locks.")
        _redis_unavailable = True
        return None
    _redis_client = client
    logger.debug("Redis lock backend connected successfully")
    return _redis_client


def get_lock_registry():
    """Process-wide lock registry chosen from settings."""
    global _registry
    with _registry_guard:
        if _registry is not None:
            return _registry
        if settings.distributed_locks:
            client = get_redis_client()
            if client is not None:
                _registry = RedisKeyedLock(
                    client,
                    timeout_s=settings.lock_timeout_s,
                    blocking_timeout_s=settings.lock_blocking_timeout_s,
                )
                return _registry
        _registry = KeyedLock(timeout_s=settings.lock_blocking_timeout_s)
        return _registry


def reset_lock_registry() -> None:
    """Forget the cached registry and Redis state (tests, settings reload)."""
    global _registry, _redis_client, _redis_unavailable
    with _registry_guard:
        _registry = None
        _redis_client = None
        _redis_unavailable = False
