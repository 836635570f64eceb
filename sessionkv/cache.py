"""
In-memory entity cache and per-entity update notifications.

The cache is the working copy the application reads and writes. Entries are
installed by the loader once a session lock is held and removed when the
entity departs. All record changes go through EntityCache.update(), which is
also the only place subscribers get notified, so every mutation is seen
exactly once and in call order.

The cache is touched only from the event loop thread and never awaits, so it
needs no lock.
"""

from __future__ import annotations

from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, Iterator, List, Optional

from .logging_utils import get_logger

logger = get_logger(__name__)

Record = Dict[str, Any]
Transform = Callable[[Record], Record]
UpdateCallback = Callable[[Record], None]


@dataclass
class CacheEntry:
    record: Record
    # False is reserved for entries still waiting on lock confirmation
    locked: bool = True
    # Set once departure began; only the final save may touch the lock
    departing: bool = False


class Subscription:
    """Handle returned by subscribe(); call unsubscribe() to stop delivery."""

    def __init__(self, notifier: "UpdateNotifier", entity_id: str, callback: UpdateCallback):
        self._notifier = notifier
        self.entity_id = entity_id
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self._notifier._discard(self)

    def __repr__(self) -> str:
        state = "active" if self.active else "closed"
        return f"<Subscription {self.entity_id} {state}>"


class UpdateNotifier:
    """Registry of per-entity update callbacks."""

    def __init__(self):
        self._subscriptions: Dict[str, List[Subscription]] = defaultdict(list)
        self._queued: Dict[str, Deque[Record]] = {}

    def subscribe(self, entity_id: str, callback: UpdateCallback) -> Subscription:
        subscription = Subscription(self, entity_id, callback)
        self._subscriptions[entity_id].append(subscription)
        return subscription

    def _discard(self, subscription: Subscription) -> None:
        subscriptions = self._subscriptions.get(subscription.entity_id)
        if not subscriptions:
            return
        try:
            subscriptions.remove(subscription)
        except ValueError:
            return
        if not subscriptions:
            del self._subscriptions[subscription.entity_id]

    def subscriber_count(self, entity_id: str) -> int:
        return len(self._subscriptions.get(entity_id, ()))

    def dispatch(self, entity_id: str, record: Record) -> int:
        """
        Deliver `record` to every subscriber of `entity_id`, in subscription order.

        Iterates over a snapshot, so callbacks may subscribe or unsubscribe
        freely; a subscription closed mid-dispatch receives nothing further.
        A failing callback is logged and does not stop the others.

        A dispatch issued from inside a callback for the same entity is
        queued and delivered after the current one, so every subscriber
        sees updates in the order they were made.

        Returns:
            Number of callbacks invoked (0 when queued behind a running dispatch)
        """
        queue = self._queued.get(entity_id)
        if queue is not None:
            queue.append(record)
            return 0

        queue = self._queued[entity_id] = deque([record])
        delivered = 0
        try:
            while queue:
                delivered += self._deliver(entity_id, queue.popleft())
        finally:
            del self._queued[entity_id]
        return delivered

    def _deliver(self, entity_id: str, record: Record) -> int:
        delivered = 0
        for subscription in list(self._subscriptions.get(entity_id, ())):
            if not subscription.active:
                continue
            try:
                subscription.callback(record)
            except Exception:
                logger.exception(f"Update subscriber for {entity_id} raised")
            delivered += 1
        return delivered


class EntityCache:
    """entity_id -> CacheEntry, plus the update notifier."""

    def __init__(self, notifier: Optional[UpdateNotifier] = None):
        self._entries: Dict[str, CacheEntry] = {}
        self.notifier = notifier or UpdateNotifier()

    def __contains__(self, entity_id: str) -> bool:
        return entity_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._entries))

    def get(self, entity_id: str) -> Optional[Record]:
        entry = self._entries.get(entity_id)
        return entry.record if entry is not None else None

    def entry(self, entity_id: str) -> Optional[CacheEntry]:
        return self._entries.get(entity_id)

    def install(self, entity_id: str, record: Record, locked: bool = True) -> CacheEntry:
        """Install a fully loaded entry. Only the loader should call this."""
        entry = CacheEntry(record=record, locked=locked)
        self._entries[entity_id] = entry
        logger.debug(f"Cached {entity_id} (locked={locked})")
        return entry

    def update(self, entity_id: str, transform: Transform) -> Optional[Record]:
        """
        Replace the cached record with transform(current) and notify subscribers.

        Returns:
            The new record, or None if the entity is not cached.
        """
        entry = self._entries.get(entity_id)
        if entry is None:
            logger.warning(f"Update ignored for {entity_id}: not loaded")
            return None
        record = entry.record = transform(entry.record)
        self.notifier.dispatch(entity_id, record)
        return record

    def subscribe(self, entity_id: str, callback: UpdateCallback) -> Subscription:
        return self.notifier.subscribe(entity_id, callback)

    def remove(self, entity_id: str) -> Optional[CacheEntry]:
        entry = self._entries.pop(entity_id, None)
        if entry is not None:
            logger.debug(f"Evicted {entity_id}")
        return entry

    def entity_ids(self) -> List[str]:
        return list(self._entries)

    def locked_entity_ids(self) -> List[str]:
        return [
            entity_id
            for entity_id, entry in self._entries.items()
            if entry.locked and not entry.departing
        ]
