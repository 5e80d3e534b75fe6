"""
In-memory coordination-service driver for testing.

This module provides a fully functional in-process backend for:
- Unit tests
- Integration tests
- Local development without a running ensemble

It consists of two parts:
- InMemoryTree: the shared node tree (plays the role of the ensemble)
- InMemoryDriver: one client session against a tree

Several drivers may share one tree to simulate several clients.

Invariants:
    - All data is lost on process exit
    - Mutations are applied atomically under a single tree lock
    - Completions run on the session's completion thread, watch
      events on its event thread, never on the submitting thread
    - A watch fires at most once, then must be re-armed
    - Ephemeral nodes disappear when their session closes

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep result codes and watch triggers aligned with the service
"""

from __future__ import annotations

import itertools
import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set, Tuple

from .. import paths
from ..types import (
    ACL,
    OPEN_ACL_UNSAFE,
    Completion,
    ConnectionState,
    DebugLevel,
    EventType,
    NodeStat,
    OperationRequest,
    OperationResponse,
    RawWatchEvent,
    ResultCode,
    Watcher,
)

logger = logging.getLogger(__name__)

# (session id, watcher, event) triples produced by a mutation
Trigger = Tuple[int, Watcher, RawWatchEvent]


@dataclass
class InMemoryNode:
    """In-memory node storage."""

    data: bytes = b""
    acl: List[ACL] = field(default_factory=lambda: list(OPEN_ACL_UNSAFE))
    czxid: int = 0
    mzxid: int = 0
    pzxid: int = 0
    ctime: int = 0
    mtime: int = 0
    version: int = 0
    cversion: int = 0
    aversion: int = 0
    ephemeral_owner: int = 0
    children: Set[str] = field(default_factory=set)
    next_sequence: int = 0

    def to_stat(self) -> NodeStat:
        return NodeStat(
            exists=True,
            czxid=self.czxid,
            mzxid=self.mzxid,
            ctime=self.ctime,
            mtime=self.mtime,
            version=self.version,
            cversion=self.cversion,
            aversion=self.aversion,
            ephemeral_owner=self.ephemeral_owner,
            data_length=len(self.data),
            num_children=len(self.children),
            pzxid=self.pzxid,
        )


class InMemoryTree:
    """Shared node tree with the service's watch semantics.

    Thread safety:
        Every operation runs under one lock, so each mutation and the
        watches it triggers are observed atomically.

    Example:
        >>> tree = InMemoryTree()
        >>> alice = InMemoryDriver(tree)
        >>> bob = InMemoryDriver(tree)
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._nodes: Dict[str, InMemoryNode] = {paths.ROOT: InMemoryNode()}
        self._data_watches: Dict[str, Dict[Tuple[int, Watcher], None]] = {}
        self._child_watches: Dict[str, Dict[Tuple[int, Watcher], None]] = {}
        self._zxid = itertools.count(1)
        self._session_ids = itertools.count(0x1000)
        self._sessions: Dict[int, "InMemoryDriver"] = {}
        self.history: List[Tuple[str, str, int]] = []

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def attach(self, driver: "InMemoryDriver") -> int:
        """Register a session and return its id."""
        with self._lock:
            session_id = next(self._session_ids)
            self._sessions[session_id] = driver
            return session_id

    def session(self, session_id: int) -> Optional["InMemoryDriver"]:
        with self._lock:
            return self._sessions.get(session_id)

    # Operations. Each returns the response plus the watches it fired.

    def create(self, session_id: int, request: OperationRequest) -> Tuple[OperationResponse, List[Trigger]]:
        path = request.path
        with self._lock:
            if path == paths.ROOT or (path in self._nodes and not request.sequence):
                return self._finish("create", path, ResultCode.NODE_EXISTS), []

            parent_path = paths.dirname(path)
            parent = self._nodes.get(parent_path)
            if parent is None:
                return self._finish("create", path, ResultCode.NO_NODE), []
            if parent.ephemeral_owner:
                return self._finish("create", path, ResultCode.NO_CHILDREN_FOR_EPHEMERALS), []

            if request.sequence:
                path = f"{path}{parent.next_sequence:010d}"
                parent.next_sequence += 1
                if path in self._nodes:
                    return self._finish("create", path, ResultCode.NODE_EXISTS), []

            zxid = next(self._zxid)
            now = _now_ms()
            self._nodes[path] = InMemoryNode(
                data=request.data or b"",
                acl=list(request.acl) if request.acl else list(OPEN_ACL_UNSAFE),
                czxid=zxid,
                mzxid=zxid,
                pzxid=zxid,
                ctime=now,
                mtime=now,
                ephemeral_owner=session_id if request.ephemeral else 0,
            )
            parent.children.add(paths.basename(path))
            parent.cversion += 1
            parent.pzxid = zxid

            triggers = self._fire(self._data_watches, path, EventType.CREATED)
            triggers += self._fire(self._child_watches, parent_path, EventType.CHILD)
            return self._finish("create", path, ResultCode.OK), triggers

    def get(self, session_id: int, request: OperationRequest) -> Tuple[OperationResponse, List[Trigger]]:
        with self._lock:
            node = self._nodes.get(request.path)
            if node is None:
                return self._finish("get", request.path, ResultCode.NO_NODE), []
            self._arm(self._data_watches, request, session_id)
            return (
                self._finish("get", request.path, ResultCode.OK, data=node.data, stat=node.to_stat()),
                [],
            )

    def set(self, session_id: int, request: OperationRequest) -> Tuple[OperationResponse, List[Trigger]]:
        with self._lock:
            node = self._nodes.get(request.path)
            if node is None:
                return self._finish("set", request.path, ResultCode.NO_NODE), []
            if request.version != -1 and request.version != node.version:
                return self._finish("set", request.path, ResultCode.BAD_VERSION), []

            node.data = request.data or b""
            node.version += 1
            node.mzxid = next(self._zxid)
            node.mtime = _now_ms()

            triggers = self._fire(self._data_watches, request.path, EventType.CHANGED)
            return self._finish("set", request.path, ResultCode.OK, stat=node.to_stat()), triggers

    def delete(self, session_id: int, request: OperationRequest) -> Tuple[OperationResponse, List[Trigger]]:
        path = request.path
        with self._lock:
            if path == paths.ROOT:
                return self._finish("delete", path, ResultCode.BAD_ARGUMENTS), []
            node = self._nodes.get(path)
            if node is None:
                return self._finish("delete", path, ResultCode.NO_NODE), []
            if request.version != -1 and request.version != node.version:
                return self._finish("delete", path, ResultCode.BAD_VERSION), []
            if node.children:
                return self._finish("delete", path, ResultCode.NOT_EMPTY), []

            triggers = self._remove(path)
            return self._finish("delete", path, ResultCode.OK), triggers

    def get_children(self, session_id: int, request: OperationRequest) -> Tuple[OperationResponse, List[Trigger]]:
        with self._lock:
            node = self._nodes.get(request.path)
            if node is None:
                return self._finish("get_children", request.path, ResultCode.NO_NODE), []
            self._arm(self._child_watches, request, session_id)
            return (
                self._finish(
                    "get_children",
                    request.path,
                    ResultCode.OK,
                    children=sorted(node.children),
                    stat=node.to_stat(),
                ),
                [],
            )

    def exists(self, session_id: int, request: OperationRequest) -> Tuple[OperationResponse, List[Trigger]]:
        with self._lock:
            # exists leaves a watch even when the node is missing
            self._arm(self._data_watches, request, session_id)
            node = self._nodes.get(request.path)
            if node is None:
                return self._finish("exists", request.path, ResultCode.NO_NODE, stat=NodeStat.missing()), []
            return self._finish("exists", request.path, ResultCode.OK, stat=node.to_stat()), []

    def get_acl(self, session_id: int, request: OperationRequest) -> Tuple[OperationResponse, List[Trigger]]:
        with self._lock:
            node = self._nodes.get(request.path)
            if node is None:
                return self._finish("get_acl", request.path, ResultCode.NO_NODE), []
            return (
                self._finish("get_acl", request.path, ResultCode.OK, acl=list(node.acl), stat=node.to_stat()),
                [],
            )

    def set_acl(self, session_id: int, request: OperationRequest) -> Tuple[OperationResponse, List[Trigger]]:
        with self._lock:
            node = self._nodes.get(request.path)
            if node is None:
                return self._finish("set_acl", request.path, ResultCode.NO_NODE), []
            if request.version != -1 and request.version != node.aversion:
                return self._finish("set_acl", request.path, ResultCode.BAD_VERSION), []
            node.acl = list(request.acl or OPEN_ACL_UNSAFE)
            node.aversion += 1
            return self._finish("set_acl", request.path, ResultCode.OK, stat=node.to_stat()), []

    def close_session(self, session_id: int) -> List[Trigger]:
        """Drop a session's watches and ephemeral nodes."""
        with self._lock:
            self._sessions.pop(session_id, None)
            for watches in (self._data_watches, self._child_watches):
                for path in list(watches):
                    for key in [k for k in watches[path] if k[0] == session_id]:
                        del watches[path][key]
                    if not watches[path]:
                        del watches[path]

            owned = [p for p, n in self._nodes.items() if n.ephemeral_owner == session_id]
            triggers: List[Trigger] = []
            # deepest first; ephemerals have no children but keep it robust
            for path in sorted(owned, key=len, reverse=True):
                if path in self._nodes:
                    triggers += self._remove(path)
                    self.history.append(("expire", path, ResultCode.OK))
            return triggers

    # Testing helpers

    def paths(self) -> List[str]:
        """All node paths, sorted (testing helper)."""
        with self._lock:
            return sorted(self._nodes)

    def data(self, path: str) -> Optional[bytes]:
        """Data stored at a path, None if missing (testing helper)."""
        with self._lock:
            node = self._nodes.get(path)
            return None if node is None else node.data

    def watch_count(self, path: Optional[str] = None) -> int:
        """Number of armed watches, optionally for one path (testing helper)."""
        with self._lock:
            total = 0
            for watches in (self._data_watches, self._child_watches):
                for watch_path, entries in watches.items():
                    if path is None or watch_path == path:
                        total += len(entries)
            return total

    # Internals

    def _remove(self, path: str) -> List[Trigger]:
        parent_path = paths.dirname(path)
        del self._nodes[path]
        parent = self._nodes[parent_path]
        parent.children.discard(paths.basename(path))
        parent.cversion += 1
        parent.pzxid = next(self._zxid)

        triggers = self._fire(self._data_watches, path, EventType.DELETED)
        triggers += self._fire(self._child_watches, path, EventType.DELETED)
        triggers += self._fire(self._child_watches, parent_path, EventType.CHILD)
        return triggers

    def _arm(
        self,
        watches: Dict[str, Dict[Tuple[int, Watcher], None]],
        request: OperationRequest,
        session_id: int,
    ) -> None:
        if request.watcher is not None:
            watches.setdefault(request.path, {})[(session_id, request.watcher)] = None

    def _fire(
        self,
        watches: Dict[str, Dict[Tuple[int, Watcher], None]],
        path: str,
        event_type: EventType,
    ) -> List[Trigger]:
        entries = watches.pop(path, {})
        event = RawWatchEvent(type=int(event_type), state=ConnectionState.CONNECTED.value, path=path)
        return [(session_id, watcher, event) for session_id, watcher in entries]

    def _finish(self, op: str, path: str, code: int, **fields) -> OperationResponse:
        self.history.append((op, path, int(code)))
        return OperationResponse(code=int(code), path=path, **fields)


class _CallbackWorker:
    """Single thread draining a queue of callables in order."""

    def __init__(self, name: str) -> None:
        self._queue: queue.Queue = queue.Queue()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._thread.start()

    def submit(self, fn: Callable[[], None]) -> None:
        self._queue.put(fn)

    def stop(self) -> None:
        self._queue.put(None)
        if threading.current_thread() is not self._thread:
            self._thread.join()

    def _run(self) -> None:
        while True:
            fn = self._queue.get()
            if fn is None:
                return
            try:
                fn()
            except Exception:
                logger.exception("Unhandled exception in callback on %s", self._thread.name)


class InMemoryDriver:
    """In-memory implementation of Driver for testing.

    One driver is one session. Completions are delivered on a
    completion thread and watch events on a separate event thread, so a
    blocking call made from inside a watch callback cannot deadlock.

    Attributes:
        tree: The node tree this session operates on
        session_id: Session identifier (owner of ephemeral nodes)

    Example:
        >>> driver = InMemoryDriver()
        >>> driver.connect(watcher)
        >>> driver.create(OperationRequest(path="/a", data=b"x"), print)
    """

    def __init__(self, tree: Optional[InMemoryTree] = None) -> None:
        """Initialize an in-memory session.

        Args:
            tree: Shared tree; a private one is created when omitted
        """
        self.tree = tree or InMemoryTree()
        self.session_id = self.tree.attach(self)
        self.debug_level = DebugLevel.DISABLED
        self._state = ConnectionState.CONNECTING
        self._state_lock = threading.Lock()
        self._default_watcher: Optional[Watcher] = None
        self._completions: Optional[_CallbackWorker] = None
        self._events: Optional[_CallbackWorker] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    def connect(self, watcher: Watcher) -> None:
        """Start the session (no network involved)."""
        with self._state_lock:
            if self._state is ConnectionState.CLOSED:
                raise RuntimeError("Cannot reconnect a closed in-memory session")
            self._default_watcher = watcher
            self._completions = _CallbackWorker(f"keeper-memory-{self.session_id:x}-completion")
            self._events = _CallbackWorker(f"keeper-memory-{self.session_id:x}-event")
            self._state = ConnectionState.CONNECTED

        self._events.submit(
            lambda: watcher(RawWatchEvent(type=int(EventType.SESSION), state=ConnectionState.CONNECTED.value))
        )
        logger.debug("InMemoryDriver connected", extra={"session_id": self.session_id})

    def close(self) -> None:
        """Close the session, removing its ephemeral nodes."""
        with self._state_lock:
            if self._state is ConnectionState.CLOSED:
                return
            self._state = ConnectionState.CLOSED

        with self.tree.lock:
            self._deliver(self.tree.close_session(self.session_id))
        for worker in (self._completions, self._events):
            if worker is not None:
                worker.stop()
        logger.debug("InMemoryDriver closed", extra={"session_id": self.session_id})

    def set_debug_level(self, level: DebugLevel) -> None:
        self.debug_level = level

    def create(self, request: OperationRequest, completion: Completion) -> None:
        self._submit(self.tree.create, request, completion)

    def get(self, request: OperationRequest, completion: Completion) -> None:
        self._submit(self.tree.get, request, completion)

    def set(self, request: OperationRequest, completion: Completion) -> None:
        self._submit(self.tree.set, request, completion)

    def delete(self, request: OperationRequest, completion: Completion) -> None:
        self._submit(self.tree.delete, request, completion)

    def get_children(self, request: OperationRequest, completion: Completion) -> None:
        self._submit(self.tree.get_children, request, completion)

    def exists(self, request: OperationRequest, completion: Completion) -> None:
        self._submit(self.tree.exists, request, completion)

    def get_acl(self, request: OperationRequest, completion: Completion) -> None:
        self._submit(self.tree.get_acl, request, completion)

    def set_acl(self, request: OperationRequest, completion: Completion) -> None:
        self._submit(self.tree.set_acl, request, completion)

    # Internals

    def _submit(
        self,
        operation: Callable[[int, OperationRequest], Tuple[OperationResponse, List[Trigger]]],
        request: OperationRequest,
        completion: Completion,
    ) -> None:
        # hold the tree lock so completions and events keep mutation order;
        # close() marks the session CLOSED before taking it
        with self.tree.lock:
            if self._state is not ConnectionState.CONNECTED or self._completions is None:
                # workers are gone, there is no thread left to deliver on
                completion(OperationResponse(code=int(ResultCode.INVALID_STATE), path=request.path))
                return
            response, triggers = operation(self.session_id, request)
            self._completions.submit(lambda: completion(response))
            self._deliver(triggers)

    def _deliver(self, triggers: List[Trigger]) -> None:
        for session_id, watcher, event in triggers:
            session = self.tree.session(session_id)
            if session is None:
                continue
            session._dispatch_event(watcher, event)

    def _dispatch_event(self, watcher: Watcher, event: RawWatchEvent) -> None:
        events = self._events
        if events is None or self._state is ConnectionState.CLOSED:
            return
        events.submit(lambda: watcher(event))


def _now_ms() -> int:
    return int(time.time() * 1000)
