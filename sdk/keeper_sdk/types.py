"""
Core value types shared by the client, drivers and event handler.

This module defines:
- ResultCode: numeric outcome of a driver operation
- CreateMode: node lifetime/sequencing selector
- NodeStat: node metadata produced by drivers
- ACL: access control entry (passed through untouched)
- OperationRequest / OperationResponse: the driver call envelope
- RawWatchEvent / WatchEvent: watch notifications before/after translation

Invariants:
    - Result codes and event type numbers follow the coordination
      service's numbering so drivers can pass them straight through
    - NodeStat instances are built by drivers, never by the client
    - OperationResponse is never mutated after a driver completes it
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Callable, Optional


class ResultCode(IntEnum):
    """Result codes returned by drivers."""

    OK = 0
    SYSTEM_ERROR = -1
    CONNECTION_LOSS = -4
    BAD_ARGUMENTS = -8
    INVALID_STATE = -9
    NO_NODE = -101
    BAD_VERSION = -103
    NO_CHILDREN_FOR_EPHEMERALS = -108
    NODE_EXISTS = -110
    NOT_EMPTY = -111
    SESSION_EXPIRED = -112


class EventType(IntEnum):
    """Watch event kinds."""

    SESSION = -1
    CREATED = 1
    DELETED = 2
    CHANGED = 3
    CHILD = 4


class ConnectionState(Enum):
    """Connection states reported by a driver."""

    CONNECTING = "CONNECTING"
    ASSOCIATING = "ASSOCIATING"
    CONNECTED = "CONNECTED"
    CONNECTED_READ_ONLY = "CONNECTED_RO"
    EXPIRED_SESSION = "EXPIRED_SESSION"
    AUTH_FAILED = "AUTH_FAILED"
    CLOSED = "CLOSED"


class DebugLevel(IntEnum):
    """Driver debug levels, matching the native client's log levels."""

    DISABLED = 0
    ERROR = 1
    WARN = 2
    INFO = 3
    DEBUG = 4

    @classmethod
    def parse(cls, level: Any) -> DebugLevel:
        """Convert a name or number into a DebugLevel.

        Raises:
            ValueError: If level is not a recognised name or number
        """
        if isinstance(level, DebugLevel):
            return level
        if isinstance(level, bool):
            raise ValueError(f"{level!r} is not a valid debug level")
        if isinstance(level, int):
            try:
                return cls(level)
            except ValueError:
                raise ValueError(f"{level!r} is not a valid debug level") from None
        if isinstance(level, str):
            name = level.strip().upper()
            if name == "WARNING":
                name = "WARN"
            if name in cls.__members__:
                return cls[name]
        raise ValueError(f"{level!r} is not a valid debug level")


class CreateMode(Enum):
    """How a node is created.

    Two independent switches: ephemeral vs persistent, and
    sequential vs not.
    """

    EPHEMERAL = "ephemeral"
    EPHEMERAL_SEQUENTIAL = "ephemeral_sequential"
    PERSISTENT = "persistent"
    PERSISTENT_SEQUENTIAL = "persistent_sequential"

    @property
    def ephemeral(self) -> bool:
        return self in (CreateMode.EPHEMERAL, CreateMode.EPHEMERAL_SEQUENTIAL)

    @property
    def sequential(self) -> bool:
        return self in (CreateMode.EPHEMERAL_SEQUENTIAL, CreateMode.PERSISTENT_SEQUENTIAL)

    @classmethod
    def from_value(cls, mode: CreateMode | str) -> CreateMode:
        """Convert a mode name into a CreateMode.

        Raises:
            ValueError: If mode is unknown
        """
        if isinstance(mode, CreateMode):
            return mode
        for candidate in cls:
            if candidate.value == mode:
                return candidate
        valid = ", ".join(m.value for m in cls)
        raise ValueError(f"Invalid create mode {mode!r}. Must be one of: {valid}")


class Perms(IntEnum):
    """ACL permission bits."""

    READ = 1
    WRITE = 2
    CREATE = 4
    DELETE = 8
    ADMIN = 16
    ALL = 31


@dataclass(frozen=True)
class ACL:
    """A single access control entry.

    Attributes:
        perms: Bitmask of Perms
        scheme: Authentication scheme (world, digest, ip, ...)
        id: Identity within the scheme
    """

    perms: int
    scheme: str
    id: str


OPEN_ACL_UNSAFE: tuple[ACL, ...] = (ACL(Perms.ALL, "world", "anyone"),)


@dataclass(frozen=True)
class NodeStat:
    """Node metadata as reported by the service.

    Attributes:
        exists: Whether the node exists
        czxid: Transaction id that created the node
        mzxid: Transaction id that last modified the node
        ctime: Creation time (Unix ms)
        mtime: Last modification time (Unix ms)
        version: Data version
        cversion: Children version
        aversion: ACL version
        ephemeral_owner: Owning session id for ephemeral nodes, else 0
        data_length: Length of the data payload
        num_children: Number of children
        pzxid: Transaction id that last modified the children
    """

    exists: bool = True
    czxid: int = 0
    mzxid: int = 0
    ctime: int = 0
    mtime: int = 0
    version: int = 0
    cversion: int = 0
    aversion: int = 0
    ephemeral_owner: int = 0
    data_length: int = 0
    num_children: int = 0
    pzxid: int = 0

    @property
    def ephemeral(self) -> bool:
        """Whether the node is ephemeral."""
        return self.ephemeral_owner != 0

    @classmethod
    def missing(cls) -> NodeStat:
        """Stat describing an absent node."""
        return cls(exists=False)


@dataclass(frozen=True)
class RawWatchEvent:
    """A watch notification exactly as a driver delivers it.

    Attributes:
        type: Numeric event type (see EventType)
        state: Connection state name at delivery time
        path: Node path, empty for session events
    """

    type: int
    state: str
    path: str = ""


@dataclass(frozen=True)
class WatchEvent:
    """A translated watch notification."""

    type: EventType
    state: ConnectionState
    path: str

    @classmethod
    def from_raw(cls, raw: RawWatchEvent) -> WatchEvent:
        """Translate a raw driver event."""
        try:
            state = ConnectionState(raw.state)
        except ValueError:
            state = ConnectionState.CONNECTED
        return cls(type=EventType(raw.type), state=state, path=raw.path or "")

    @property
    def node_created(self) -> bool:
        return self.type is EventType.CREATED

    @property
    def node_deleted(self) -> bool:
        return self.type is EventType.DELETED

    @property
    def node_changed(self) -> bool:
        return self.type is EventType.CHANGED

    @property
    def node_child(self) -> bool:
        return self.type is EventType.CHILD

    @property
    def session_event(self) -> bool:
        return self.type is EventType.SESSION


Watcher = Callable[[RawWatchEvent], None]


@dataclass
class OperationRequest:
    """A single driver call.

    Attributes:
        path: Target node path
        data: Payload for create/set
        version: Expected version, -1 matches any version
        ephemeral: Create an ephemeral node
        sequence: Append a sequence number to the created node name
        acl: ACL entries for create/set_acl
        watcher: One-shot watch callback for read operations
    """

    path: str
    data: Optional[bytes] = None
    version: int = -1
    ephemeral: bool = False
    sequence: bool = False
    acl: Optional[list[ACL]] = None
    watcher: Optional[Watcher] = None


@dataclass(frozen=True)
class OperationResponse:
    """Result of a driver call.

    Attributes:
        code: Result code (ResultCode.OK on success)
        path: Request path, or the assigned path for create
        data: Node payload (get)
        stat: Node metadata (get/set/exists/get_acl/set_acl)
        children: Child names (get_children)
        acl: ACL entries (get_acl)
    """

    code: int
    path: str = ""
    data: Optional[bytes] = None
    stat: Optional[NodeStat] = None
    children: Optional[list[str]] = None
    acl: list[ACL] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """Whether the operation succeeded."""
        return self.code == ResultCode.OK


Completion = Callable[[OperationResponse], None]
