"""Subscriber registry — live connections indexed by user and role.

Learn: Three structures are kept consistent under one lock:

    _all               every registered subscriber
    _by_user[user_id]  subscribers tagged with that user (non-empty ids only)
    _by_role[role]     subscribers tagged with that role (non-empty roles only)

Publishing to a role or a user is O(targets) instead of scanning every
connection. Empty buckets are pruned as soon as their last subscriber
leaves, so the indexes never hold dangling empty sets.

Lookups return frozen snapshots. Callers iterate them outside the lock,
so the lock is only ever held for in-memory set operations.
"""

import threading
import uuid
from collections import Counter
from dataclasses import dataclass, field

from ordernotify.realtime.channel import DeliveryChannel


@dataclass(eq=False)
class Subscriber:
    """One live real-time connection.

    Identity-hashed: two subscribers with the same user/role are still
    distinct connections.
    """

    channel: DeliveryChannel
    user_id: str = ""
    role: str = ""
    transport: str = "sse"
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])


class SubscriberRegistry:
    """Thread-safe registry of live subscribers."""

    def __init__(self):
        self._lock = threading.Lock()
        self._all: set[Subscriber] = set()
        self._by_user: dict[str, set[Subscriber]] = {}
        self._by_role: dict[str, set[Subscriber]] = {}

    def register(self, subscriber: Subscriber) -> None:
        with self._lock:
            if subscriber in self._all:
                return
            self._all.add(subscriber)
            if subscriber.user_id:
                self._by_user.setdefault(subscriber.user_id, set()).add(subscriber)
            if subscriber.role:
                self._by_role.setdefault(subscriber.role, set()).add(subscriber)

    def unregister(self, subscriber: Subscriber) -> bool:
        """Remove a subscriber and close its channel.

        Returns False when the subscriber was not registered. Pump failure
        and connection cancellation can both race to get here, so the
        second call must not close the channel again.
        """
        with self._lock:
            if subscriber not in self._all:
                return False
            self._all.discard(subscriber)
            _discard(self._by_user, subscriber.user_id, subscriber)
            _discard(self._by_role, subscriber.role, subscriber)
        subscriber.channel.close()
        return True

    def lookup_by_user(self, user_id: str) -> frozenset[Subscriber]:
        with self._lock:
            return frozenset(self._by_user.get(user_id, ()))

    def lookup_by_role(self, role: str) -> frozenset[Subscriber]:
        with self._lock:
            return frozenset(self._by_role.get(role, ()))

    def snapshot(self) -> frozenset[Subscriber]:
        with self._lock:
            return frozenset(self._all)

    def stats(self) -> dict:
        """Counts for health reporting."""
        with self._lock:
            transports = Counter(s.transport for s in self._all)
            return {
                "subscribers": len(self._all),
                "users": len(self._by_user),
                "roles": {role: len(subs) for role, subs in self._by_role.items()},
                "transports": dict(transports),
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._all)

    def __contains__(self, subscriber: object) -> bool:
        with self._lock:
            return subscriber in self._all


def _discard(index: dict[str, set[Subscriber]], key: str, subscriber: Subscriber) -> None:
    """Remove subscriber from index[key], pruning the bucket if it empties."""
    if not key:
        return
    bucket = index.get(key)
    if bucket is None:
        return
    bucket.discard(subscriber)
    if not bucket:
        del index[key]
