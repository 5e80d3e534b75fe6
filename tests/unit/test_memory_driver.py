"""
Unit tests for the in-memory driver.

Tests cover:
- Node CRUD result codes
- Sequential and ephemeral nodes
- One-shot watch semantics
- Session lifecycle
- Threading of completions and events
"""

import queue
import threading
import time

import pytest

from sdk.keeper_sdk.driver import InMemoryDriver, InMemoryTree
from sdk.keeper_sdk.types import (
    ACL,
    ConnectionState,
    DebugLevel,
    EventType,
    OperationRequest,
    ResultCode,
)


def call(driver, op, request, timeout=5.0):
    """Issue a driver operation and wait for its completion."""
    done = queue.Queue()
    getattr(driver, op)(request, done.put)
    return done.get(timeout=timeout)


class EventSink:
    """Watcher collecting raw events."""

    def __init__(self):
        self.events = queue.Queue()

    def __call__(self, event):
        self.events.put(event)

    def next(self, timeout=5.0):
        return self.events.get(timeout=timeout)

    def next_node_event(self, timeout=5.0):
        while True:
            event = self.next(timeout)
            if event.type != EventType.SESSION:
                return event


class TestInMemoryDriverOperations:
    """Tests for node operations."""

    @pytest.fixture
    def driver(self):
        """Connected driver on a private tree."""
        driver = InMemoryDriver()
        driver.connect(EventSink())
        yield driver
        driver.close()

    def test_connect_sets_state(self):
        driver = InMemoryDriver()
        assert driver.state is ConnectionState.CONNECTING

        sink = EventSink()
        driver.connect(sink)

        assert driver.state is ConnectionState.CONNECTED
        event = sink.next()
        assert event.type == EventType.SESSION
        assert event.state == "CONNECTED"
        driver.close()

    def test_create_and_get(self, driver):
        response = call(driver, "create", OperationRequest(path="/a", data=b"hello"))
        assert response.code == ResultCode.OK
        assert response.path == "/a"

        response = call(driver, "get", OperationRequest(path="/a"))
        assert response.ok
        assert response.data == b"hello"
        assert response.stat.version == 0
        assert response.stat.data_length == 5

    def test_create_existing(self, driver):
        call(driver, "create", OperationRequest(path="/a"))
        response = call(driver, "create", OperationRequest(path="/a"))
        assert response.code == ResultCode.NODE_EXISTS

    def test_create_root(self, driver):
        assert call(driver, "create", OperationRequest(path="/")).code == ResultCode.NODE_EXISTS

    def test_create_without_parent(self, driver):
        response = call(driver, "create", OperationRequest(path="/a/b"))
        assert response.code == ResultCode.NO_NODE

    def test_no_children_for_ephemerals(self, driver):
        call(driver, "create", OperationRequest(path="/e", ephemeral=True))
        response = call(driver, "create", OperationRequest(path="/e/child"))
        assert response.code == ResultCode.NO_CHILDREN_FOR_EPHEMERALS

    def test_sequential_names(self, driver):
        call(driver, "create", OperationRequest(path="/q"))

        first = call(driver, "create", OperationRequest(path="/q/item-", sequence=True))
        second = call(driver, "create", OperationRequest(path="/q/item-", sequence=True))

        assert first.path == "/q/item-0000000000"
        assert second.path == "/q/item-0000000001"

    def test_set_bumps_version(self, driver):
        call(driver, "create", OperationRequest(path="/a", data=b"1"))

        response = call(driver, "set", OperationRequest(path="/a", data=b"2"))
        assert response.ok
        assert response.stat.version == 1

        response = call(driver, "set", OperationRequest(path="/a", data=b"3", version=0))
        assert response.code == ResultCode.BAD_VERSION

    def test_set_missing(self, driver):
        assert call(driver, "set", OperationRequest(path="/nope", data=b"")).code == ResultCode.NO_NODE

    def test_delete(self, driver):
        call(driver, "create", OperationRequest(path="/a"))
        call(driver, "create", OperationRequest(path="/a/b"))

        assert call(driver, "delete", OperationRequest(path="/a")).code == ResultCode.NOT_EMPTY
        assert call(driver, "delete", OperationRequest(path="/a/b")).ok
        assert call(driver, "delete", OperationRequest(path="/a/b")).code == ResultCode.NO_NODE
        assert call(driver, "delete", OperationRequest(path="/a", version=3)).code == ResultCode.BAD_VERSION
        assert call(driver, "delete", OperationRequest(path="/a")).ok

    def test_delete_root(self, driver):
        assert call(driver, "delete", OperationRequest(path="/")).code == ResultCode.BAD_ARGUMENTS

    def test_get_children(self, driver):
        for path in ("/p", "/p/b", "/p/a"):
            call(driver, "create", OperationRequest(path=path))

        response = call(driver, "get_children", OperationRequest(path="/p"))

        assert response.children == ["a", "b"]
        assert response.stat.num_children == 2

    def test_exists(self, driver):
        missing = call(driver, "exists", OperationRequest(path="/a"))
        assert missing.code == ResultCode.NO_NODE
        assert missing.stat.exists is False

        call(driver, "create", OperationRequest(path="/a"))
        present = call(driver, "exists", OperationRequest(path="/a"))
        assert present.ok
        assert present.stat.exists

    def test_acl_roundtrip(self, driver):
        call(driver, "create", OperationRequest(path="/a"))
        acl = [ACL(1, "digest", "bob:hash")]

        response = call(driver, "set_acl", OperationRequest(path="/a", acl=acl))
        assert response.stat.aversion == 1

        response = call(driver, "get_acl", OperationRequest(path="/a"))
        assert response.acl == acl

        response = call(driver, "set_acl", OperationRequest(path="/a", acl=acl, version=0))
        assert response.code == ResultCode.BAD_VERSION

    def test_set_debug_level(self, driver):
        driver.set_debug_level(DebugLevel.DEBUG)
        assert driver.debug_level is DebugLevel.DEBUG

    def test_completion_runs_on_driver_thread(self, driver):
        caller = threading.current_thread()
        threads = queue.Queue()

        driver.exists(OperationRequest(path="/"), lambda r: threads.put(threading.current_thread()))

        assert threads.get(timeout=5) is not caller


class TestInMemoryDriverWatches:
    """Tests for watch semantics."""

    @pytest.fixture
    def tree(self):
        return InMemoryTree()

    @pytest.fixture
    def driver(self, tree):
        driver = InMemoryDriver(tree)
        driver.connect(EventSink())
        yield driver
        driver.close()

    def test_data_watch_fires_once(self, driver, tree):
        sink = EventSink()
        call(driver, "create", OperationRequest(path="/a"))
        call(driver, "get", OperationRequest(path="/a", watcher=sink))
        assert tree.watch_count("/a") == 1

        call(driver, "set", OperationRequest(path="/a", data=b"1"))
        call(driver, "set", OperationRequest(path="/a", data=b"2"))

        event = sink.next()
        assert event.type == EventType.CHANGED
        assert event.path == "/a"
        with pytest.raises(queue.Empty):
            sink.next(timeout=0.2)
        assert tree.watch_count("/a") == 0

    def test_exists_watch_on_missing_node(self, driver):
        sink = EventSink()
        call(driver, "exists", OperationRequest(path="/a", watcher=sink))

        call(driver, "create", OperationRequest(path="/a"))

        assert sink.next().type == EventType.CREATED

    def test_get_does_not_arm_on_missing_node(self, driver, tree):
        call(driver, "get", OperationRequest(path="/a", watcher=EventSink()))
        assert tree.watch_count("/a") == 0

    def test_delete_fires_deleted(self, driver):
        sink = EventSink()
        call(driver, "create", OperationRequest(path="/a"))
        call(driver, "exists", OperationRequest(path="/a", watcher=sink))

        call(driver, "delete", OperationRequest(path="/a"))

        event = sink.next()
        assert event.type == EventType.DELETED
        assert event.path == "/a"

    def test_child_watch(self, driver):
        sink = EventSink()
        call(driver, "create", OperationRequest(path="/p"))
        call(driver, "get_children", OperationRequest(path="/p", watcher=sink))

        call(driver, "create", OperationRequest(path="/p/c"))

        event = sink.next()
        assert event.type == EventType.CHILD
        assert event.path == "/p"

    def test_same_watcher_deduplicated(self, driver, tree):
        """One watcher armed twice on a path fires once."""
        sink = EventSink()
        call(driver, "create", OperationRequest(path="/a"))
        call(driver, "get", OperationRequest(path="/a", watcher=sink))
        call(driver, "exists", OperationRequest(path="/a", watcher=sink))
        assert tree.watch_count("/a") == 1

        call(driver, "delete", OperationRequest(path="/a"))

        assert sink.next().type == EventType.DELETED
        with pytest.raises(queue.Empty):
            sink.next(timeout=0.2)

    def test_watch_fires_for_other_session(self, driver, tree):
        other = InMemoryDriver(tree)
        other.connect(EventSink())
        sink = EventSink()
        call(driver, "create", OperationRequest(path="/a"))
        call(driver, "exists", OperationRequest(path="/a", watcher=sink))

        call(other, "delete", OperationRequest(path="/a"))

        assert sink.next().type == EventType.DELETED
        other.close()


class TestInMemoryDriverSessions:
    """Tests for session lifecycle."""

    def test_close_removes_ephemerals(self):
        tree = InMemoryTree()
        owner = InMemoryDriver(tree)
        owner.connect(EventSink())
        observer = InMemoryDriver(tree)
        observer.connect(EventSink())
        sink = EventSink()

        call(owner, "create", OperationRequest(path="/e", ephemeral=True))
        call(owner, "create", OperationRequest(path="/p"))
        call(observer, "exists", OperationRequest(path="/e", watcher=sink))

        owner.close()

        assert "/e" not in tree.paths()
        assert "/p" in tree.paths()
        assert sink.next().type == EventType.DELETED
        assert ("expire", "/e", ResultCode.OK) in tree.history
        observer.close()

    def test_close_is_idempotent(self):
        driver = InMemoryDriver()
        driver.connect(EventSink())

        driver.close()
        driver.close()

        assert driver.state is ConnectionState.CLOSED

    def test_operations_after_close(self):
        driver = InMemoryDriver()
        driver.connect(EventSink())
        driver.close()

        response = call(driver, "get", OperationRequest(path="/"))

        assert response.code == ResultCode.INVALID_STATE

    def test_close_drops_session_watches(self):
        tree = InMemoryTree()
        driver = InMemoryDriver(tree)
        driver.connect(EventSink())
        call(driver, "exists", OperationRequest(path="/a", watcher=EventSink()))
        assert tree.watch_count() == 1

        driver.close()

        assert tree.watch_count() == 0

    def test_reconnect_after_close(self):
        driver = InMemoryDriver()
        driver.connect(EventSink())
        driver.close()

        with pytest.raises(RuntimeError):
            driver.connect(EventSink())

    def test_close_while_operation_waits_for_lock(self):
        """An operation queued behind close() still completes."""
        tree = InMemoryTree()
        driver = InMemoryDriver(tree)
        driver.connect(EventSink())
        done = queue.Queue()
        issuer = threading.Thread(
            target=driver.exists, args=(OperationRequest(path="/x"), done.put), daemon=True
        )

        with tree.lock:
            issuer.start()
            time.sleep(0.1)
            driver.close()

        issuer.join(timeout=5)
        assert not issuer.is_alive()
        assert done.get(timeout=5).code == ResultCode.INVALID_STATE
