"""
Integration tests for wait_until_deleted.

Tests cover:
- Immediate return for absent nodes
- Blocking until deletion by another client
- Re-arming after non-delete events
- Subscription cleanup
- Close while waiting
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from sdk.keeper_sdk.client import KeeperClient
from sdk.keeper_sdk.driver import InMemoryDriver, InMemoryTree
from sdk.keeper_sdk.errors import InvalidStateError


@pytest.fixture
def tree():
    return InMemoryTree()


@pytest.fixture
def zk(tree):
    client = KeeperClient(driver=InMemoryDriver(tree))
    yield client
    client.close()


@pytest.fixture
def other(tree):
    """Second client on the same tree."""
    client = KeeperClient(driver=InMemoryDriver(tree))
    yield client
    client.close()


@pytest.fixture
def executor():
    pool = ThreadPoolExecutor(max_workers=2)
    yield pool
    pool.shutdown(wait=False)


def wait_for(predicate, timeout=5.0):
    """Poll until predicate() is true."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


class TestWaitUntilDeleted:
    """Tests for wait_until_deleted."""

    def test_absent_node_returns_immediately(self, zk, monkeypatch):
        """The caller never suspends on the deletion event."""
        caller = threading.current_thread()
        suspended = []
        original_wait = threading.Event.wait

        def recording_wait(event, timeout=None):
            if threading.current_thread() is caller:
                suspended.append(event)
            return original_wait(event, timeout)

        monkeypatch.setattr(threading.Event, "wait", recording_wait)

        assert zk.wait_until_deleted("/missing") is True
        assert suspended == []
        assert zk.event_handler.subscription_count() == 0

    def test_blocks_until_deleted(self, zk, other, executor):
        other.create("/lock", mode="persistent")

        waiter = executor.submit(zk.wait_until_deleted, "/lock")
        assert wait_for(lambda: zk.event_handler.subscription_count("/lock") == 1)
        time.sleep(0.1)
        assert not waiter.done()

        other.delete("/lock")

        assert waiter.result(timeout=5) is True
        assert not zk.exists("/lock")

    def test_subscription_count_restored(self, zk, other, executor):
        zk.event_handler.register("/lock", lambda e: None)
        other.create("/lock", mode="persistent")
        before = zk.event_handler.subscription_count()

        waiter = executor.submit(zk.wait_until_deleted, "/lock")
        assert wait_for(lambda: zk.event_handler.subscription_count() == before + 1)
        other.delete("/lock")
        waiter.result(timeout=5)

        assert zk.event_handler.subscription_count() == before

    def test_survives_data_changes(self, zk, other, executor):
        """Non-delete events re-arm the watch and keep waiting."""
        other.create("/lock", mode="persistent")

        waiter = executor.submit(zk.wait_until_deleted, "/lock")
        assert wait_for(lambda: zk.event_handler.subscription_count("/lock") == 1)

        for i in range(3):
            other.set("/lock", str(i))
            time.sleep(0.05)
        assert not waiter.done()

        other.delete("/lock")
        assert waiter.result(timeout=5) is True

    def test_ephemeral_owner_closing(self, zk, tree, executor):
        """Deletion caused by the owner's session ending wakes the waiter."""
        owner = KeeperClient(driver=InMemoryDriver(tree))
        owner.create("/lock")

        waiter = executor.submit(zk.wait_until_deleted, "/lock")
        assert wait_for(lambda: zk.event_handler.subscription_count("/lock") == 1)
        owner.close()

        assert waiter.result(timeout=5) is True

    def test_deleted_between_event_and_recheck(self, zk, other, executor):
        """A deletion right after a change is still noticed."""
        other.create("/lock", mode="persistent")

        waiter = executor.submit(zk.wait_until_deleted, "/lock")
        assert wait_for(lambda: zk.event_handler.subscription_count("/lock") == 1)
        other.set("/lock", b"x")
        other.delete("/lock")

        assert waiter.result(timeout=5) is True

    def test_many_waiters(self, zk, other):
        other.create("/lock", mode="persistent")
        pool = ThreadPoolExecutor(max_workers=4)
        try:
            waiters = [pool.submit(zk.wait_until_deleted, "/lock") for _ in range(4)]
            assert wait_for(lambda: zk.event_handler.subscription_count("/lock") == 4)

            other.delete("/lock")

            assert all(w.result(timeout=5) for w in waiters)
        finally:
            pool.shutdown(wait=False)
        assert zk.event_handler.subscription_count() == 0

    def test_close_releases_waiter(self, zk, other, executor):
        other.create("/lock", mode="persistent")

        waiter = executor.submit(zk.wait_until_deleted, "/lock")
        assert wait_for(lambda: zk.event_handler.subscription_count("/lock") == 1)
        zk.close()

        with pytest.raises(InvalidStateError):
            waiter.result(timeout=5)

    def test_closed_client(self, zk):
        zk.close()
        with pytest.raises(InvalidStateError):
            zk.wait_until_deleted("/lock")

    def test_invalid_path(self, zk):
        with pytest.raises(ValueError):
            zk.wait_until_deleted("lock")
        assert zk.event_handler.subscription_count() == 0

    def test_from_watch_callback_thread(self, zk, other):
        """Waiting from inside a subscriber does not deadlock the event thread."""
        other.create("/trigger", mode="persistent")
        other.create("/lock", mode="persistent")
        result = {}
        done = threading.Event()

        def on_trigger(event):
            result["absent"] = zk.wait_until_deleted("/missing")
            done.set()

        zk.event_handler.register("/trigger", on_trigger)
        zk.exists("/trigger", watch=True)
        other.set("/trigger", b"go")

        assert done.wait(timeout=5)
        assert result["absent"] is True
