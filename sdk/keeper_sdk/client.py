"""
Keeper client for the Python SDK.

This module provides the main client interface:
- KeeperClient: facade over a coordination-service driver

Every primitive has two entry points:
- a blocking method (create, get, set, ...) that waits for the driver,
  raises the mapped KeeperError on failure and returns a typed value
- a *_async method that returns a concurrent.futures.Future resolving to
  the raw OperationResponse, optionally invoking a callback with it

On top of the primitives the client offers idempotent tree helpers
(ensure_path, delete_subtree), a blocking wait for node deletion, and
factories for the lock and queue recipes.

Example:
    >>> with KeeperClient("zk1:2181") as zk:
    ...     zk.ensure_path("/app/config")
    ...     zk.set("/app/config", b"v2")
    ...     data, stat = zk.get("/app/config")

Invariants:
    - Operations on a closed client raise InvalidStateError before I/O
    - Argument errors (path shape, mode, debug level) raise before I/O
    - A watch armed by a read fires at most once
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from contextlib import contextmanager
from typing import Any, Callable, Iterable, Iterator, List, Optional, Set, Tuple, Union

from . import paths
from .config import KeeperSettings
from .driver import Driver, create_driver
from .errors import InvalidStateError, KeeperError, NodeExistsError, NoNodeError, validate
from .events import EventHandler, WatchArming
from .recipes import Locker, MessageQueue
from .types import (
    ACL,
    ConnectionState,
    CreateMode,
    DebugLevel,
    NodeStat,
    OperationRequest,
    OperationResponse,
    ResultCode,
    WatchEvent,
)

logger = logging.getLogger(__name__)

Data = Union[bytes, bytearray, str, None]
ResponseCallback = Callable[[OperationResponse], None]
PathArg = Union[str, Iterable[Any]]


def _to_bytes(data: Data) -> bytes:
    if data is None:
        return b""
    if isinstance(data, str):
        return data.encode("utf-8")
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    raise TypeError(f"Invalid type for data (bytes or str expected): {type(data).__name__}")


def _flatten(items: PathArg) -> Iterator[str]:
    if isinstance(items, str):
        yield items
        return
    for item in items:
        yield from _flatten(item)


class KeeperClient:
    """Client for a tree-structured coordination service.

    Provides a clean Python API over a callback-only driver.
    Handles dispatch, error translation and watch routing.

    Attributes:
        settings: Client settings
        event_handler: Registry that watch events are routed to

    Example:
        >>> zk = KeeperClient("localhost:2181")
        >>> zk.create("/workers/w-", b"", mode="ephemeral_sequential")
        '/workers/w-0000000000'
    """

    def __init__(
        self,
        hosts: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        driver: Optional[Driver] = None,
        settings: Optional[KeeperSettings] = None,
    ) -> None:
        """Initialize and connect the client.

        Args:
            hosts: Ensemble address list (overrides settings)
            timeout: Session timeout in seconds (overrides settings)
            driver: Driver to use instead of building one from settings
            settings: Client settings (loaded from env if not provided)
        """
        settings = settings or KeeperSettings()
        overrides: dict[str, Any] = {}
        if hosts is not None:
            overrides["hosts"] = hosts
        if timeout is not None:
            overrides["timeout"] = timeout
        if overrides:
            settings = settings.model_copy(update=overrides)
        self.settings = settings

        self.event_handler = EventHandler(self)
        self._watcher = WatchArming(self.event_handler)
        self._driver = driver or create_driver(settings)
        self._pending_waits: Set[threading.Event] = set()
        self._pending_lock = threading.Lock()

        self._driver.connect(self._watcher)
        if settings.debug_level is not None:
            self.set_debug_level(settings.debug_level)
        logger.debug("KeeperClient created", extra={"hosts": settings.hosts})

    @classmethod
    def from_settings(cls, settings: KeeperSettings) -> KeeperClient:
        """Build a client from settings."""
        return cls(settings=settings)

    def __enter__(self) -> KeeperClient:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"KeeperClient(hosts={self.settings.hosts!r}, state={self.state.value})"

    # Connection state

    @property
    def driver(self) -> Driver:
        """The underlying driver."""
        return self._driver

    @property
    def state(self) -> ConnectionState:
        """State of the underlying connection."""
        return self._driver.state

    @property
    def closed(self) -> bool:
        """Whether the client has been closed."""
        return self._driver.state is ConnectionState.CLOSED

    @property
    def connected(self) -> bool:
        return self.state in (ConnectionState.CONNECTED, ConnectionState.CONNECTED_READ_ONLY)

    @property
    def connecting(self) -> bool:
        return self.state is ConnectionState.CONNECTING

    @property
    def associating(self) -> bool:
        return self.state is ConnectionState.ASSOCIATING

    def close(self) -> None:
        """Close the client.

        Subscriptions are dropped, pending wait_until_deleted() calls
        are released with InvalidStateError, and later operations fail
        fast. Calling close() twice is harmless.
        """
        if self.closed:
            return
        self.event_handler.clear()
        self._driver.close()
        with self._pending_lock:
            waits = list(self._pending_waits)
        for wake in waits:
            wake.set()
        logger.debug("KeeperClient closed", extra={"hosts": self.settings.hosts})

    def set_debug_level(self, level: Union[DebugLevel, str, int]) -> None:
        """Set the driver's debug level.

        Args:
            level: DebugLevel, its name ("debug", "info", "warn", "error",
                "disabled") or its number

        Raises:
            ValueError: If level is not recognised
        """
        self._driver.set_debug_level(DebugLevel.parse(level))

    # Primitives: blocking

    def create(
        self,
        path: str,
        data: Data = b"",
        mode: Union[CreateMode, str] = CreateMode.EPHEMERAL,
        acl: Optional[List[ACL]] = None,
    ) -> str:
        """Create a node.

        Ephemeral is the default mode. Sequential modes append a
        monotonically increasing, zero-padded counter to the name.

        Args:
            path: Node path (prefix, for sequential modes)
            data: Initial payload
            mode: CreateMode or its name
            acl: ACL entries (service default when omitted)

        Returns:
            The path actually created

        Raises:
            NodeExistsError: If the node already exists
            NoNodeError: If the parent does not exist
            ValueError: If mode is unknown
        """
        response = validate(self._call("create", self._create_request(path, data, mode, acl)))
        return response.path

    def get(self, path: str, watch: bool = False) -> Tuple[bytes, NodeStat]:
        """Read a node.

        Args:
            path: Node path
            watch: Arm a one-shot watch for the next data change or deletion

        Returns:
            Tuple of (data, stat)

        Raises:
            NoNodeError: If the node does not exist
        """
        response = validate(self._call("get", self._read_request(path, watch)))
        return response.data or b"", response.stat

    def set(self, path: str, data: Data, version: int = -1) -> NodeStat:
        """Write a node's data.

        Args:
            path: Node path
            data: New payload
            version: Expected version, -1 for any

        Returns:
            Stat after the write

        Raises:
            NoNodeError: If the node does not exist
            BadVersionError: If version does not match
        """
        request = OperationRequest(path=paths.validate_path(path), data=_to_bytes(data), version=version)
        return validate(self._call("set", request)).stat

    def delete(self, path: str, version: int = -1) -> None:
        """Delete a node.

        Args:
            path: Node path
            version: Expected version, -1 for any

        Raises:
            NoNodeError: If the node does not exist
            NotEmptyError: If the node has children
            BadVersionError: If version does not match
        """
        request = OperationRequest(path=paths.validate_path(path), version=version)
        validate(self._call("delete", request))

    def children(self, path: str, watch: bool = False) -> List[str]:
        """List child names of a node.

        Args:
            path: Node path
            watch: Arm a one-shot watch for the next child change

        Returns:
            Child names in the order the service returned them
        """
        response = validate(self._call("get_children", self._read_request(path, watch)))
        return list(response.children or [])

    def stat(self, path: str, watch: bool = False) -> NodeStat:
        """Stat a node. A missing node is not an error.

        Args:
            path: Node path
            watch: Arm a one-shot watch (fires on creation if missing)

        Returns:
            NodeStat; stat.exists is False when the node is missing
        """
        response = self._call("exists", self._read_request(path, watch))
        if response.code not in (ResultCode.OK, ResultCode.NO_NODE):
            validate(response)
        return response.stat

    def exists(self, path: str, watch: bool = False) -> bool:
        """Whether a node exists (sugar over stat)."""
        return self.stat(path, watch=watch).exists

    def get_acl(self, path: str) -> Tuple[List[ACL], NodeStat]:
        """Read a node's ACL.

        Returns:
            Tuple of (acl entries, stat)
        """
        request = OperationRequest(path=paths.validate_path(path))
        response = validate(self._call("get_acl", request))
        return list(response.acl), response.stat

    def set_acl(self, path: str, acl: List[ACL], version: int = -1) -> NodeStat:
        """Replace a node's ACL.

        Returns:
            Stat after the update
        """
        request = OperationRequest(path=paths.validate_path(path), acl=list(acl), version=version)
        return validate(self._call("set_acl", request)).stat

    # Primitives: asynchronous

    def create_async(
        self,
        path: str,
        data: Data = b"",
        mode: Union[CreateMode, str] = CreateMode.EPHEMERAL,
        acl: Optional[List[ACL]] = None,
        callback: Optional[ResponseCallback] = None,
    ) -> Future:
        """Submit a create; see create(). Resolves to the raw response."""
        return self._dispatch("create", self._create_request(path, data, mode, acl), callback)

    def get_async(self, path: str, watch: bool = False, callback: Optional[ResponseCallback] = None) -> Future:
        return self._dispatch("get", self._read_request(path, watch), callback)

    def set_async(
        self,
        path: str,
        data: Data,
        version: int = -1,
        callback: Optional[ResponseCallback] = None,
    ) -> Future:
        request = OperationRequest(path=paths.validate_path(path), data=_to_bytes(data), version=version)
        return self._dispatch("set", request, callback)

    def delete_async(self, path: str, version: int = -1, callback: Optional[ResponseCallback] = None) -> Future:
        request = OperationRequest(path=paths.validate_path(path), version=version)
        return self._dispatch("delete", request, callback)

    def children_async(
        self, path: str, watch: bool = False, callback: Optional[ResponseCallback] = None
    ) -> Future:
        return self._dispatch("get_children", self._read_request(path, watch), callback)

    def stat_async(self, path: str, watch: bool = False, callback: Optional[ResponseCallback] = None) -> Future:
        """Submit a stat. A missing node resolves with code NO_NODE."""
        return self._dispatch("exists", self._read_request(path, watch), callback)

    def exists_async(
        self, path: str, watch: bool = False, callback: Optional[ResponseCallback] = None
    ) -> Future:
        """Same as stat_async(); check response.stat.exists."""
        return self.stat_async(path, watch=watch, callback=callback)

    def get_acl_async(self, path: str, callback: Optional[ResponseCallback] = None) -> Future:
        return self._dispatch("get_acl", OperationRequest(path=paths.validate_path(path)), callback)

    def set_acl_async(
        self,
        path: str,
        acl: List[ACL],
        version: int = -1,
        callback: Optional[ResponseCallback] = None,
    ) -> Future:
        request = OperationRequest(path=paths.validate_path(path), acl=list(acl), version=version)
        return self._dispatch("set_acl", request, callback)

    # Extensions: mkdir -p, rm -rf, wait for deletion

    def ensure_path(self, path: str) -> None:
        """Create a node and all missing ancestors as empty persistent nodes.

        Idempotent: existing nodes are left alone, and nodes created
        concurrently by other clients count as success.

        Raises:
            NoNodeError: If a node's parent vanished again after being created
            KeeperError: If a top-level node cannot be created
        """
        paths.validate_path(path)
        if path == paths.ROOT:
            return

        pending = [path]
        retried: Set[str] = set()
        while pending:
            current = pending[-1]
            try:
                self.create(current, b"", mode=CreateMode.PERSISTENT)
            except NodeExistsError:
                pass
            except NoNodeError:
                parent = paths.dirname(current)
                if parent == paths.ROOT:
                    raise KeeperError("could not create '/', something is wrong", path=current)
                if current in retried:
                    raise
                retried.add(current)
                pending.append(parent)
                continue
            pending.pop()

    def delete_subtree(self, paths_to_delete: PathArg) -> None:
        """Delete nodes and all their descendants.

        Children are always deleted before their parent. A node that
        disappears underneath us (another client deleting the same
        tree) is skipped. Any other error propagates and the tree may be
        left partially deleted. For "/" only the children are removed.

        Args:
            paths_to_delete: A path, or an iterable (possibly nested) of paths
        """
        for root in _flatten(paths_to_delete):
            paths.validate_path(root)
            stack: List[Tuple[str, bool]] = [(root, False)]
            while stack:
                path, expanded = stack.pop()
                try:
                    if expanded:
                        if path != paths.ROOT:
                            self.delete(path)
                        continue
                    children = self.children(path)
                except NoNodeError:
                    continue
                stack.append((path, True))
                stack.extend((paths.join(path, child), False) for child in reversed(children))

    def wait_until_deleted(self, path: str) -> bool:
        """Block the calling thread until a node no longer exists.

        Returns immediately when the node is already gone. No timeout is
        applied; wrap the call if you need one.

        Args:
            path: Node path

        Returns:
            True once the node is gone

        Raises:
            InvalidStateError: If the client is closed before the node goes away
        """
        paths.validate_path(path)
        deleted = threading.Event()

        def on_recheck(response: OperationResponse) -> None:
            if response.code == ResultCode.NO_NODE:
                deleted.set()

        def on_event(event: WatchEvent) -> None:
            if event.node_deleted:
                deleted.set()
            elif not self.closed:
                # the watch is spent; re-arm it and look again
                self.exists_async(path, watch=True, callback=on_recheck)

        # subscribe before looking so a deletion in between is not missed
        subscription = self.event_handler.register(path, on_event)
        with self._pending_lock:
            self._pending_waits.add(deleted)
        try:
            if not self.exists(path, watch=True):
                return True
            logger.debug("Waiting for node deletion", extra={"path": path})
            deleted.wait()
            if self.closed:
                raise InvalidStateError("client closed while waiting for deletion", path=path)
            return True
        finally:
            subscription.unregister()
            with self._pending_lock:
                self._pending_waits.discard(deleted)

    # Recipes

    def locker(self, name: str) -> Locker:
        """Create a lock bound to this client and name (no I/O).

        Example:
            >>> zk.locker("reindex").lock()
        """
        return Locker(self, name)

    @contextmanager
    def with_lock(self, name: str) -> Iterator[Locker]:
        """Hold the named lock for the duration of a with-block."""
        with self.locker(name).with_lock() as locker:
            yield locker

    def queue(self, name: str) -> MessageQueue:
        """Create a message queue bound to this client and name (no I/O).

        Example:
            >>> zk.queue("jobs").publish({"id": 1})
        """
        return MessageQueue(self, name)

    # Internals

    def _create_request(
        self,
        path: str,
        data: Data,
        mode: Union[CreateMode, str],
        acl: Optional[List[ACL]],
    ) -> OperationRequest:
        create_mode = CreateMode.from_value(mode)
        return OperationRequest(
            path=paths.validate_path(path),
            data=_to_bytes(data),
            ephemeral=create_mode.ephemeral,
            sequence=create_mode.sequential,
            acl=list(acl) if acl is not None else None,
        )

    def _read_request(self, path: str, watch: bool) -> OperationRequest:
        request = OperationRequest(path=paths.validate_path(path))
        if watch:
            self._watcher.arm(request)
        return request

    def _call(self, operation: str, request: OperationRequest) -> OperationResponse:
        return self._dispatch(operation, request).result()

    def _dispatch(
        self,
        operation: str,
        request: OperationRequest,
        callback: Optional[ResponseCallback] = None,
    ) -> Future:
        if self.closed:
            raise InvalidStateError("client is closed", path=request.path)

        future: Future = Future()
        # a submitted operation cannot be withdrawn
        future.set_running_or_notify_cancel()
        if callback is not None:
            future.add_done_callback(lambda f: callback(f.result()))

        getattr(self._driver, operation)(request, future.set_result)
        return future
