import asyncio
import threading

import pytest

from jobtrack.services import locks as locks_module
from jobtrack.services.locks import KeyedLock, LockTimeoutError, get_lock_registry, reset_lock_registry
from jobtrack.services.store import TransientStoreError


def test_hold_is_exclusive_per_key():
    registry = KeyedLock(timeout_s=0.1)
    with registry.hold("user:1"):
        with pytest.raises(LockTimeoutError):
            with registry.hold("user:1"):
                pass
        # Other keys are independent.
        with registry.hold("user:2"):
            pass


def test_lock_timeout_is_transient():
    assert issubclass(LockTimeoutError, TransientStoreError)


def test_idle_keys_are_dropped():
    registry = KeyedLock()
    with registry.hold("user:1"):
        assert "user:1" in registry._locks
    assert registry._locks == {}


def test_hold_async_serializes_tasks():
    registry = KeyedLock(timeout_s=5)
    order = []

    async def worker(name):
        async with registry.hold_async("user:1"):
            order.append(f"{name}-in")
            await asyncio.sleep(0.01)
            order.append(f"{name}-out")

    async def main():
        await asyncio.gather(worker("a"), worker("b"))

    asyncio.run(main())
    assert order in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])


def test_hold_async_waits_for_thread_holder():
    registry = KeyedLock(timeout_s=5)
    entered = threading.Event()
    release = threading.Event()

    def holder():
        with registry.hold("user:1"):
            entered.set()
            release.wait(5)

    thread = threading.Thread(target=holder)
    thread.start()
    entered.wait(5)

    async def main():
        asyncio.get_running_loop().call_later(0.05, release.set)
        async with registry.hold_async("user:1"):
            return True

    assert asyncio.run(main())
    thread.join(5)


def test_hold_async_times_out():
    registry = KeyedLock(timeout_s=0.1)

    async def main():
        with registry.hold("user:1"):
            async with registry.hold_async("user:1"):
                pass

    with pytest.raises(LockTimeoutError):
        asyncio.run(main())


def test_registry_falls_back_to_process_locks_without_redis(monkeypatch):
    reset_lock_registry()
    monkeypatch.setattr(locks_module.settings, "distributed_locks", True)
    monkeypatch.setattr(locks_module, "get_redis_client", lambda: None)
    try:
        registry = get_lock_registry()
        assert isinstance(registry, KeyedLock)
        assert get_lock_registry() is registry
    finally:
        reset_lock_registry()
