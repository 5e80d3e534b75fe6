"""
ZooKeeper driver backed by kazoo.

This module adapts kazoo's asynchronous API to the callback-only Driver
protocol:
- every operation is issued with kazoo's *_async method
- the async result is linked to a completion that converts the outcome
  (value or kazoo exception) into an OperationResponse with a result code
- watch callbacks receive RawWatchEvent instead of kazoo's WatchedEvent

Completions run on kazoo's completion thread and watch events on its
callback thread (SequentialThreadingHandler), never on the caller.

Invariants:
    - Kazoo exceptions never escape an operation method
    - One kazoo watcher per Watcher object, so the service's per-watcher
      de-duplication still applies
    - A closed driver reports ConnectionState.CLOSED from its own flag,
      not from error text

How to change safely:
    - Keep the exception -> result code table in sync with kazoo
    - Test against a real ensemble before changing watch adaptation
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from kazoo.client import KazooClient
from kazoo.exceptions import (
    BadArgumentsError,
    BadVersionError,
    ConnectionClosedError,
    ConnectionLoss,
    KazooException,
    NoChildrenForEphemeralsError,
    NodeExistsError,
    NoNodeError,
    NotEmptyError,
    SessionExpiredError,
)
from kazoo.handlers.threading import KazooTimeoutError
from kazoo.protocol.states import Callback, KazooState, ZnodeStat
from kazoo.security import ACL as KazooACL
from kazoo.security import Id

from ..errors import ConnectionLossError
from ..types import (
    ACL,
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

# ConnectionClosedError subclasses SessionExpiredError, so it is listed first
_CODES_BY_EXCEPTION = (
    (ConnectionClosedError, ResultCode.INVALID_STATE),
    (NoNodeError, ResultCode.NO_NODE),
    (NodeExistsError, ResultCode.NODE_EXISTS),
    (NotEmptyError, ResultCode.NOT_EMPTY),
    (BadVersionError, ResultCode.BAD_VERSION),
    (BadArgumentsError, ResultCode.BAD_ARGUMENTS),
    (NoChildrenForEphemeralsError, ResultCode.NO_CHILDREN_FOR_EPHEMERALS),
    (ConnectionLoss, ResultCode.CONNECTION_LOSS),
    (SessionExpiredError, ResultCode.SESSION_EXPIRED),
)

_EVENT_TYPES = {
    "CREATED": EventType.CREATED,
    "DELETED": EventType.DELETED,
    "CHANGED": EventType.CHANGED,
    "CHILD": EventType.CHILD,
    "NONE": EventType.SESSION,
}

_LOG_LEVELS = {
    DebugLevel.DISABLED: logging.CRITICAL + 10,
    DebugLevel.ERROR: logging.ERROR,
    DebugLevel.WARN: logging.WARNING,
    DebugLevel.INFO: logging.INFO,
    DebugLevel.DEBUG: logging.DEBUG,
}


def result_code(exc: BaseException) -> int:
    """Map a kazoo exception onto a result code."""
    for exc_type, code in _CODES_BY_EXCEPTION:
        if isinstance(exc, exc_type):
            return int(code)
    return int(getattr(exc, "code", ResultCode.SYSTEM_ERROR))


def to_node_stat(stat: Optional[ZnodeStat]) -> NodeStat:
    """Convert kazoo's ZnodeStat (None for a missing node)."""
    if stat is None:
        return NodeStat.missing()
    return NodeStat(
        exists=True,
        czxid=stat.czxid,
        mzxid=stat.mzxid,
        ctime=stat.ctime,
        mtime=stat.mtime,
        version=stat.version,
        cversion=stat.cversion,
        aversion=stat.aversion,
        ephemeral_owner=stat.ephemeralOwner,
        data_length=stat.dataLength,
        num_children=stat.numChildren,
        pzxid=stat.pzxid,
    )


def to_kazoo_acl(acl: Optional[List[ACL]]) -> Optional[List[KazooACL]]:
    if acl is None:
        return None
    return [KazooACL(entry.perms, Id(entry.scheme, entry.id)) for entry in acl]


def from_kazoo_acl(acl: List[KazooACL]) -> List[ACL]:
    return [ACL(entry.perms, entry.id.scheme, entry.id.id) for entry in acl]


class ZookeeperDriver:
    """Driver talking to a ZooKeeper ensemble through kazoo.

    Attributes:
        hosts: Comma-separated host:port list
        timeout: Session timeout in seconds

    Example:
        >>> driver = ZookeeperDriver("zk1:2181,zk2:2181", timeout=10)
        >>> driver.connect(watcher)
    """

    def __init__(
        self,
        hosts: str = "127.0.0.1:2181",
        timeout: float = 10.0,
        client: Optional[KazooClient] = None,
    ) -> None:
        """Initialize the driver.

        Args:
            hosts: Ensemble address list
            timeout: Session timeout in seconds
            client: Pre-built KazooClient (mainly for tests)
        """
        self.hosts = hosts
        self.timeout = timeout
        self._client = client or KazooClient(hosts=hosts, timeout=timeout)
        self._started = False
        self._closed = False
        self._default_watcher: Optional[Watcher] = None
        self._adapters: Dict[Watcher, Callable[[Any], None]] = {}
        self._adapters_lock = threading.Lock()

    @property
    def state(self) -> ConnectionState:
        if self._closed:
            return ConnectionState.CLOSED
        if not self._started:
            return ConnectionState.CONNECTING
        try:
            return ConnectionState(self._client.client_state)
        except ValueError:
            return ConnectionState.CONNECTING

    def connect(self, watcher: Watcher) -> None:
        """Start the kazoo session; blocks up to the session timeout."""
        self._default_watcher = watcher
        self._client.add_listener(self._on_state_change)
        try:
            self._client.start(timeout=self.timeout)
        except KazooTimeoutError as e:
            # kazoo has already stopped the client
            self._closed = True
            self._client.remove_listener(self._on_state_change)
            raise ConnectionLossError(f"could not connect to {self.hosts}") from e
        self._started = True
        logger.info("Connected to ZooKeeper", extra={"hosts": self.hosts})
        self._dispatch(watcher, RawWatchEvent(int(EventType.SESSION), ConnectionState.CONNECTED.value))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._client.remove_listener(self._on_state_change)
        self._client.stop()
        self._client.close()
        with self._adapters_lock:
            self._adapters.clear()
        logger.info("ZooKeeper session closed", extra={"hosts": self.hosts})

    def set_debug_level(self, level: DebugLevel) -> None:
        # kazoo is pure Python; its verbosity is its logger's level
        logging.getLogger("kazoo").setLevel(_LOG_LEVELS[level])

    def create(self, request: OperationRequest, completion: Completion) -> None:
        self._issue(
            lambda: self._client.create_async(
                request.path,
                request.data or b"",
                acl=to_kazoo_acl(request.acl),
                ephemeral=request.ephemeral,
                sequence=request.sequence,
            ),
            request,
            completion,
            lambda created: OperationResponse(code=ResultCode.OK, path=created),
        )

    def get(self, request: OperationRequest, completion: Completion) -> None:
        self._issue(
            lambda: self._client.get_async(request.path, watch=self._adapt(request.watcher)),
            request,
            completion,
            lambda value: OperationResponse(
                code=ResultCode.OK, path=request.path, data=value[0], stat=to_node_stat(value[1])
            ),
        )

    def set(self, request: OperationRequest, completion: Completion) -> None:
        self._issue(
            lambda: self._client.set_async(request.path, request.data or b"", version=request.version),
            request,
            completion,
            lambda stat: OperationResponse(code=ResultCode.OK, path=request.path, stat=to_node_stat(stat)),
        )

    def delete(self, request: OperationRequest, completion: Completion) -> None:
        self._issue(
            lambda: self._client.delete_async(request.path, version=request.version),
            request,
            completion,
            lambda _: OperationResponse(code=ResultCode.OK, path=request.path),
        )

    def get_children(self, request: OperationRequest, completion: Completion) -> None:
        self._issue(
            lambda: self._client.get_children_async(request.path, watch=self._adapt(request.watcher)),
            request,
            completion,
            lambda children: OperationResponse(code=ResultCode.OK, path=request.path, children=list(children)),
        )

    def exists(self, request: OperationRequest, completion: Completion) -> None:
        def convert(stat: Optional[ZnodeStat]) -> OperationResponse:
            code = ResultCode.OK if stat is not None else ResultCode.NO_NODE
            return OperationResponse(code=int(code), path=request.path, stat=to_node_stat(stat))

        self._issue(
            lambda: self._client.exists_async(request.path, watch=self._adapt(request.watcher)),
            request,
            completion,
            convert,
        )

    def get_acl(self, request: OperationRequest, completion: Completion) -> None:
        self._issue(
            lambda: self._client.get_acls_async(request.path),
            request,
            completion,
            lambda value: OperationResponse(
                code=ResultCode.OK,
                path=request.path,
                acl=from_kazoo_acl(value[0]),
                stat=to_node_stat(value[1]),
            ),
        )

    def set_acl(self, request: OperationRequest, completion: Completion) -> None:
        self._issue(
            lambda: self._client.set_acls_async(
                request.path, to_kazoo_acl(request.acl) or [], version=request.version
            ),
            request,
            completion,
            lambda stat: OperationResponse(code=ResultCode.OK, path=request.path, stat=to_node_stat(stat)),
        )

    # Internals

    def _issue(
        self,
        start: Callable[[], Any],
        request: OperationRequest,
        completion: Completion,
        convert: Callable[[Any], OperationResponse],
    ) -> None:
        def on_done(async_result: Any) -> None:
            try:
                value = async_result.get()
            except KazooException as e:
                completion(OperationResponse(code=result_code(e), path=request.path))
                return
            except Exception:
                # the completion must still run once or the caller never wakes
                logger.exception("Unexpected error from kazoo operation", extra={"path": request.path})
                completion(OperationResponse(code=int(ResultCode.SYSTEM_ERROR), path=request.path))
                return
            completion(convert(value))

        try:
            async_result = start()
        except KazooException as e:
            # kazoo raises synchronously for some argument and state errors
            completion(OperationResponse(code=result_code(e), path=request.path))
            return
        async_result.rawlink(on_done)

    def _adapt(self, watcher: Optional[Watcher]) -> Optional[Callable[[Any], None]]:
        if watcher is None:
            return None
        with self._adapters_lock:
            adapter = self._adapters.get(watcher)
            if adapter is None:

                def adapter(event: Any, _watcher: Watcher = watcher) -> None:
                    _watcher(
                        RawWatchEvent(
                            type=int(_EVENT_TYPES.get(event.type, EventType.SESSION)),
                            state=str(event.state),
                            path=event.path or "",
                        )
                    )

                self._adapters[watcher] = adapter
            return adapter

    def _on_state_change(self, state: str) -> None:
        # runs on kazoo's connection thread; hand off to the callback thread
        watcher = self._default_watcher
        if watcher is None:
            return
        if state == KazooState.LOST:
            keeper_state = ConnectionState.EXPIRED_SESSION
        elif state == KazooState.SUSPENDED:
            keeper_state = ConnectionState.CONNECTING
        else:
            keeper_state = ConnectionState.CONNECTED
        logger.info("ZooKeeper connection state changed", extra={"state": str(state)})
        self._dispatch(watcher, RawWatchEvent(int(EventType.SESSION), keeper_state.value))

    def _dispatch(self, watcher: Watcher, event: RawWatchEvent) -> None:
        self._client.handler.dispatch_callback(Callback("watch", watcher, (event,)))
