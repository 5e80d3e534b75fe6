"""
Keeper Python SDK - Client library for tree-structured coordination services.

This SDK provides a blocking and a future-based interface to a
ZooKeeper-style ensemble:
- KeeperClient facade (create/get/set/delete/children/stat/exists/ACLs)
- Idempotent tree helpers (ensure_path, delete_subtree)
- Race-free wait for node deletion
- Event registry for one-shot watches
- Lock and message queue recipes

Example:
    >>> from sdk.keeper_sdk import KeeperClient
    >>>
    >>> with KeeperClient("localhost:2181") as zk:
    ...     zk.ensure_path("/app/workers")
    ...     me = zk.create("/app/workers/w-", b"", mode="ephemeral_sequential")
    ...     future = zk.children_async("/app/workers")
    ...     print(future.result().children)

Invariants:
    - Operations on a closed client raise InvalidStateError
    - A watch armed by a read fires at most once
    - Async operations resolve exactly once

Version: 1.0.0
"""

__version__ = "1.0.0"

from .client import KeeperClient
from .config import DriverBackend, KeeperSettings, LogFormat
from .driver import Driver, InMemoryDriver, InMemoryTree, ZookeeperDriver, create_driver
from .errors import (
    BadVersionError,
    ConnectionLossError,
    InvalidStateError,
    KeeperError,
    NodeExistsError,
    NoNodeError,
    NotEmptyError,
    SessionExpiredError,
    UnknownError,
    error_for_code,
    validate,
)
from .events import EventHandler, Subscription, WatchArming
from .recipes import Locker, MessageQueue
from .types import (
    ACL,
    OPEN_ACL_UNSAFE,
    ConnectionState,
    CreateMode,
    DebugLevel,
    EventType,
    NodeStat,
    OperationRequest,
    OperationResponse,
    Perms,
    RawWatchEvent,
    ResultCode,
    WatchEvent,
)

__all__ = [
    # Version
    "__version__",
    # Client
    "KeeperClient",
    "KeeperSettings",
    "DriverBackend",
    "LogFormat",
    # Drivers
    "Driver",
    "create_driver",
    "ZookeeperDriver",
    "InMemoryDriver",
    "InMemoryTree",
    # Events
    "EventHandler",
    "Subscription",
    "WatchArming",
    # Recipes
    "Locker",
    "MessageQueue",
    # Types
    "ACL",
    "OPEN_ACL_UNSAFE",
    "Perms",
    "ConnectionState",
    "CreateMode",
    "DebugLevel",
    "EventType",
    "NodeStat",
    "OperationRequest",
    "OperationResponse",
    "RawWatchEvent",
    "ResultCode",
    "WatchEvent",
    # Errors
    "KeeperError",
    "NoNodeError",
    "NodeExistsError",
    "NotEmptyError",
    "BadVersionError",
    "ConnectionLossError",
    "SessionExpiredError",
    "InvalidStateError",
    "UnknownError",
    "error_for_code",
    "validate",
]
