"""
Watch event routing for the keeper SDK.

This module provides:
- EventHandler: registry mapping node paths to subscriber callbacks
- Subscription: handle returned by EventHandler.register()
- WatchArming: the single low-level watcher a client attaches to
  read requests; it translates raw driver events and hands them to the
  EventHandler

Watches on the service are one-shot: a watch armed by a read fires at
most once and has to be re-armed by another read. Subscriptions here
are not one-shot; they stay registered until unregistered, so a
subscriber can keep re-arming the underlying watch.

Example:
    >>> sub = zk.event_handler.register("/config", on_change)
    >>> zk.get("/config", watch=True)
    >>> ...
    >>> sub.unregister()

Invariants:
    - register/unregister/process are safe to call from any thread
    - a subscriber that raises does not stop delivery to the others
    - WatchArming owns no subscribers
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Callable, Dict, List, Optional

from .types import OperationRequest, RawWatchEvent, WatchEvent

if TYPE_CHECKING:
    from .client import KeeperClient

logger = logging.getLogger(__name__)

EventCallback = Callable[[WatchEvent], None]

# registry key for connection-state subscribers
STATE_KEY = ""


class Subscription:
    """A registered callback for one path.

    Attributes:
        path: Node path (empty for connection-state subscriptions)
        callback: Called with each WatchEvent for the path
    """

    def __init__(self, handler: EventHandler, path: str, callback: EventCallback) -> None:
        self.path = path
        self.callback = callback
        self._handler = handler
        self._active = True

    @property
    def active(self) -> bool:
        """Whether the subscription is still registered."""
        return self._active

    def unregister(self) -> None:
        """Stop receiving events. Safe to call more than once."""
        if self._active:
            self._active = False
            self._handler._remove(self)

    def __repr__(self) -> str:
        return f"Subscription(path={self.path!r}, active={self._active})"


class EventHandler:
    """Thread-safe registry of watch event subscribers.

    The owning client is passed in explicitly; once it is closed no
    further events are delivered.

    Example:
        >>> handler = EventHandler(client)
        >>> sub = handler.register("/a", lambda event: print(event))
        >>> handler.process(WatchEvent(EventType.DELETED, ConnectionState.CONNECTED, "/a"))
    """

    def __init__(self, client: Optional[KeeperClient] = None) -> None:
        """Initialize an empty registry.

        Args:
            client: Owning client, consulted for its closed state
        """
        self.client = client
        self._subscriptions: Dict[str, List[Subscription]] = {}
        self._lock = threading.Lock()

    def register(self, path: str, callback: EventCallback) -> Subscription:
        """Subscribe to events for a node path.

        Registering does not arm a watch; issue a read with watch=True
        to make the service report the next change.

        Args:
            path: Node path
            callback: Called with each WatchEvent for path

        Returns:
            Subscription handle
        """
        subscription = Subscription(self, path, callback)
        with self._lock:
            self._subscriptions.setdefault(path, []).append(subscription)
        logger.debug("Registered watch subscriber", extra={"path": path})
        return subscription

    def register_state_handler(self, callback: EventCallback) -> Subscription:
        """Subscribe to connection-state (session) events."""
        return self.register(STATE_KEY, callback)

    def process(self, event: WatchEvent) -> None:
        """Deliver an event to every subscriber of its path.

        Args:
            event: Translated watch event
        """
        if self.client is not None and self.client.closed:
            logger.debug("Dropping event for closed client", extra={"path": event.path})
            return

        key = STATE_KEY if event.session_event else event.path
        with self._lock:
            subscribers = list(self._subscriptions.get(key, ()))

        for subscription in subscribers:
            if not subscription.active:
                continue
            try:
                subscription.callback(event)
            except Exception:
                logger.exception(
                    "Watch subscriber raised",
                    extra={"path": event.path, "event_type": event.type.name},
                )

    def subscription_count(self, path: Optional[str] = None) -> int:
        """Number of live subscriptions, optionally for one path."""
        with self._lock:
            if path is not None:
                return len(self._subscriptions.get(path, ()))
            return sum(len(subs) for subs in self._subscriptions.values())

    def clear(self) -> None:
        """Drop every subscription."""
        with self._lock:
            subscriptions = [s for subs in self._subscriptions.values() for s in subs]
            self._subscriptions.clear()
        for subscription in subscriptions:
            subscription._active = False

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            subs = self._subscriptions.get(subscription.path)
            if not subs:
                return
            try:
                subs.remove(subscription)
            except ValueError:
                return
            if not subs:
                del self._subscriptions[subscription.path]


class WatchArming:
    """The one watcher a client hands to its driver.

    Attached to read requests that ask for a watch, and used as the
    driver's default (session) watcher. Translates each RawWatchEvent
    into a WatchEvent and passes it to the event handler.
    """

    def __init__(self, handler: EventHandler) -> None:
        self.handler = handler

    def arm(self, request: OperationRequest) -> OperationRequest:
        """Attach the watcher to a request."""
        request.watcher = self
        return request

    def __call__(self, raw_event: RawWatchEvent) -> None:
        try:
            event = WatchEvent.from_raw(raw_event)
        except ValueError:
            logger.warning("Ignoring unknown watch event type", extra={"raw_type": raw_event.type})
            return
        logger.debug(
            "Watch event",
            extra={"path": event.path, "event_type": event.type.name, "state": event.state.value},
        )
        self.handler.process(event)
