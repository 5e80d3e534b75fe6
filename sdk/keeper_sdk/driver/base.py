"""
Base protocol for coordination-service drivers.

A driver is the callback-only layer underneath KeeperClient. Every
operation takes an OperationRequest plus a completion callable and
returns immediately; the completion is invoked exactly once, later,
on a driver-owned thread.

Invariants:
    - Completions are delivered exactly once per submitted request
    - Completions and watch events never run on the submitting thread
    - Watches attached to a request fire at most once
    - A driver never raises from an operation method; failures are
      reported through the completion's result code

How to change safely:
    - Protocol changes require updating all implementations
    - Keep result codes in the service's numbering (see ResultCode)
"""

from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING, Protocol, runtime_checkable
import logging

from ..types import (
    Completion,
    ConnectionState,
    DebugLevel,
    OperationRequest,
    Watcher,
)

if TYPE_CHECKING:
    from ..config import KeeperSettings

logger = logging.getLogger(__name__)


@runtime_checkable
class Driver(Protocol):
    """Protocol for coordination-service drivers.

    Example:
        >>> driver = InMemoryDriver()
        >>> driver.connect(watcher)
        >>> driver.get(OperationRequest(path="/"), on_complete)
    """

    @abstractmethod
    def connect(self, watcher: Watcher) -> None:
        """Open the session.

        Args:
            watcher: Default watcher receiving session events
        """
        ...

    @abstractmethod
    def close(self) -> None:
        """Close the session and stop delivering callbacks."""
        ...

    @property
    @abstractmethod
    def state(self) -> ConnectionState:
        """Current connection state."""
        ...

    @abstractmethod
    def set_debug_level(self, level: DebugLevel) -> None:
        """Adjust driver verbosity (best effort)."""
        ...

    @abstractmethod
    def create(self, request: OperationRequest, completion: Completion) -> None:
        """Create a node; the response path is the assigned path."""
        ...

    @abstractmethod
    def get(self, request: OperationRequest, completion: Completion) -> None:
        """Read node data and stat."""
        ...

    @abstractmethod
    def set(self, request: OperationRequest, completion: Completion) -> None:
        """Write node data."""
        ...

    @abstractmethod
    def delete(self, request: OperationRequest, completion: Completion) -> None:
        """Delete a node."""
        ...

    @abstractmethod
    def get_children(self, request: OperationRequest, completion: Completion) -> None:
        """List child names."""
        ...

    @abstractmethod
    def exists(self, request: OperationRequest, completion: Completion) -> None:
        """Stat a node; a missing node completes with NO_NODE and a missing stat."""
        ...

    @abstractmethod
    def get_acl(self, request: OperationRequest, completion: Completion) -> None:
        """Read a node's ACL."""
        ...

    @abstractmethod
    def set_acl(self, request: OperationRequest, completion: Completion) -> None:
        """Replace a node's ACL."""
        ...


def create_driver(settings: "KeeperSettings") -> Driver:
    """Factory function to create a driver from configuration.

    Args:
        settings: Client settings

    Returns:
        Appropriate Driver implementation

    Raises:
        ValueError: If the driver backend is not supported
    """
    from ..config import DriverBackend
    from .memory import InMemoryDriver
    from .zookeeper import ZookeeperDriver

    if settings.driver == DriverBackend.ZOOKEEPER:
        return ZookeeperDriver(hosts=settings.hosts, timeout=settings.timeout)
    elif settings.driver == DriverBackend.MEMORY:
        return InMemoryDriver()
    else:
        raise ValueError(f"Unsupported driver backend: {settings.driver}")
