"""
Coordination recipes built on the KeeperClient primitives.

This module provides:
- Locker: exclusive lock using ephemeral sequential nodes
- MessageQueue: FIFO queue of YAML payloads using persistent sequential nodes

Both are cheap to construct (no I/O) and bound to one client and name.

Example:
    >>> with zk.locker("reindex").with_lock():
    ...     reindex()
    >>> zk.queue("jobs").publish({"id": 1, "kind": "resize"})

Invariants:
    - Lock order is the order of the sequence numbers the service assigns
    - A lock holder's node is ephemeral, so a dead session releases the lock
    - A queued message is delivered by receive() to at most one caller
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Iterator, List, Optional, Tuple

import yaml

from . import paths
from .errors import BadVersionError, NoNodeError
from .types import CreateMode

if TYPE_CHECKING:
    from .client import KeeperClient

logger = logging.getLogger(__name__)


def _check_name(name: str) -> str:
    if not isinstance(name, str) or not name or paths.SEPARATOR in name:
        raise ValueError(f"Recipe name must be a single path segment: {name!r}")
    return name


def _sorted_sequential(children: List[str], prefix: str) -> List[str]:
    names = [c for c in children if c.startswith(prefix)]
    return sorted(names, key=paths.sequence_number)


class Locker:
    """Exclusive lock for a name.

    Each contender creates an ephemeral sequential node under
    <lock_root>/<name>. The contender with the lowest sequence number
    holds the lock; everyone else waits for the node just ahead of
    theirs to be deleted.

    Attributes:
        client: Owning client
        name: Lock name
        root: Parent node of the contenders
        lock_path: Our contender node while locked, else None
    """

    PREFIX = "lock"

    def __init__(self, client: KeeperClient, name: str) -> None:
        self.client = client
        self.name = _check_name(name)
        self.root = paths.join(client.settings.lock_root, name)
        self.lock_path: Optional[str] = None

    def __repr__(self) -> str:
        return f"Locker(name={self.name!r}, locked={self.locked})"

    @property
    def locked(self) -> bool:
        """Whether this Locker currently holds the lock."""
        return self.lock_path is not None

    def lock(self, blocking: bool = True) -> bool:
        """Acquire the lock.

        Args:
            blocking: Wait for the current holder instead of giving up

        Returns:
            True if the lock is held, False if blocking is False and
            someone else holds it

        Raises:
            NoNodeError: If our contender node vanished (session expired)
        """
        if self.locked:
            return True

        self.client.ensure_path(self.root)
        self.lock_path = self.client.create(
            paths.join(self.root, self.PREFIX), b"", mode=CreateMode.EPHEMERAL_SEQUENTIAL
        )
        logger.debug("Lock contender created", extra={"path": self.lock_path})

        try:
            while True:
                predecessor = self._predecessor()
                if predecessor is None:
                    logger.debug("Lock acquired", extra={"path": self.lock_path})
                    return True
                if not blocking:
                    self.unlock()
                    return False
                self.client.wait_until_deleted(predecessor)
        except BaseException:
            if self.client.closed:
                self.lock_path = None
            elif self.lock_path is not None:
                self.unlock()
            raise

    def unlock(self) -> bool:
        """Release the lock.

        Returns:
            True if a held lock was released, False if it was not held
        """
        if self.lock_path is None:
            return False
        path, self.lock_path = self.lock_path, None
        try:
            self.client.delete(path)
        except NoNodeError:
            pass
        logger.debug("Lock released", extra={"path": path})
        return True

    @contextmanager
    def with_lock(self) -> Iterator[Locker]:
        """Hold the lock for the duration of a with-block."""
        self.lock()
        try:
            yield self
        finally:
            self.unlock()

    def _predecessor(self) -> Optional[str]:
        contenders = _sorted_sequential(self.client.children(self.root), self.PREFIX)
        own = paths.basename(self.lock_path)
        if own not in contenders:
            path, self.lock_path = self.lock_path, None
            raise NoNodeError("lock node disappeared", path=path)
        index = contenders.index(own)
        if index == 0:
            return None
        return paths.join(self.root, contenders[index - 1])


class MessageQueue:
    """FIFO message queue for a name.

    Messages are persistent sequential nodes under <queue_root>/<name>
    holding a YAML document. Any YAML-serializable payload can be
    published.

    Attributes:
        client: Owning client
        name: Queue name
        root: Parent node of the messages
    """

    PREFIX = "message"

    def __init__(self, client: KeeperClient, name: str) -> None:
        self.client = client
        self.name = _check_name(name)
        self.root = paths.join(client.settings.queue_root, name)

    def __repr__(self) -> str:
        return f"MessageQueue(name={self.name!r})"

    def publish(self, payload: Any) -> str:
        """Append a message.

        Args:
            payload: YAML-serializable value

        Returns:
            Message id (the node name)
        """
        data = yaml.safe_dump(payload, default_flow_style=False)
        self.client.ensure_path(self.root)
        path = self.client.create(
            paths.join(self.root, self.PREFIX), data, mode=CreateMode.PERSISTENT_SEQUENTIAL
        )
        logger.debug("Message published", extra={"path": path})
        return paths.basename(path)

    def messages(self) -> List[str]:
        """Ids of queued messages, oldest first."""
        try:
            children = self.client.children(self.root)
        except NoNodeError:
            return []
        return _sorted_sequential(children, self.PREFIX)

    def receive(self) -> Optional[Tuple[str, Any]]:
        """Take the oldest message off the queue.

        Messages claimed by another consumer between listing and
        deleting are skipped.

        Returns:
            Tuple of (message id, payload), or None if the queue is empty
        """
        for message_id in self.messages():
            path = paths.join(self.root, message_id)
            try:
                data, stat = self.client.get(path)
                self.client.delete(path, version=stat.version)
            except (NoNodeError, BadVersionError):
                continue
            return message_id, yaml.safe_load(data)
        return None

    def destroy(self) -> None:
        """Delete the queue and every message in it."""
        self.client.delete_subtree(self.root)
