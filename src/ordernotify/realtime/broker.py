"""Broker — the single publish entry point for real-time notifications.

Learn: The broker owns the subscriber registry and applies the three
addressing modes:

    publish_all(payload)              every live subscriber
    publish_to_role(role, payload)    subscribers whose role matches exactly
    publish_to_user(user_id, payload) subscribers whose user_id matches

Delivery is fire-and-forget. Each target gets a non-blocking offer on its
channel; a full channel drops the payload for that subscriber only. The
publisher is never blocked and never sees an error for a slow consumer.
Events are also written to the database by the order service, so a missed
push is recovered by the notification list endpoint.

Publishing is synchronous (no awaits) and must run on the server's event
loop: channels wrap asyncio.Queue, which is not thread-safe. Any
coroutine can call it directly after committing a domain event. Code on
a worker thread hands the call over with loop.call_soon_threadsafe (or
anyio's from_thread.run_sync). The registry lock only guards the index
maps, so lookups from other threads stay consistent.

One broker per process, built in main.create_app() and stored on
app.state.broker. Transports and services receive it by reference.
"""

from typing import Iterable

import structlog
from starlette.requests import HTTPConnection

from ordernotify.realtime.channel import DeliveryChannel
from ordernotify.realtime.registry import Subscriber, SubscriberRegistry

logger = structlog.get_logger()


class Broker:
    """In-memory pub/sub hub shared by the SSE and WebSocket transports."""

    def __init__(self, registry: SubscriberRegistry | None = None):
        self.registry = registry or SubscriberRegistry()
        self.published = 0
        self.dropped = 0

    # ── Subscriber lifecycle ─────────────────────────────────

    def subscriber(
        self,
        user_id: str = "",
        role: str = "",
        *,
        capacity: int,
        transport: str = "sse",
    ) -> Subscriber:
        """Build a subscriber with a fresh delivery channel (not yet connected).

        capacity has no default: transports pass the mailbox size from Settings.
        """
        return Subscriber(
            channel=DeliveryChannel(capacity),
            user_id=user_id or "",
            role=role or "",
            transport=transport,
        )

    def connect(self, subscriber: Subscriber) -> None:
        self.registry.register(subscriber)
        logger.info(
            "broker.subscriber_connected",
            subscriber_id=subscriber.id,
            user_id=subscriber.user_id,
            role=subscriber.role,
            transport=subscriber.transport,
            total=len(self.registry),
        )

    def disconnect(self, subscriber: Subscriber) -> bool:
        """Unregister a subscriber. Safe to call more than once."""
        removed = self.registry.unregister(subscriber)
        if removed:
            logger.info(
                "broker.subscriber_disconnected",
                subscriber_id=subscriber.id,
                user_id=subscriber.user_id,
                role=subscriber.role,
                transport=subscriber.transport,
                total=len(self.registry),
            )
        return removed

    def close(self) -> None:
        """Disconnect everyone. Called from the app lifespan on shutdown."""
        subscribers = self.registry.snapshot()
        for subscriber in subscribers:
            self.disconnect(subscriber)
        logger.info("broker.closed", disconnected=len(subscribers))

    # ── Publish API ──────────────────────────────────────────

    def publish_all(self, payload: str) -> int:
        """Offer payload to every subscriber. Call from the event loop thread."""
        return self._deliver(self.registry.snapshot(), payload)

    def publish_to_role(self, role: str, payload: str) -> int:
        if not role:
            return 0
        return self._deliver(self.registry.lookup_by_role(role), payload)

    def publish_to_user(self, user_id: str, payload: str) -> int:
        if not user_id:
            return 0
        return self._deliver(self.registry.lookup_by_user(user_id), payload)

    def _deliver(self, targets: Iterable[Subscriber], payload: str) -> int:
        """Offer payload to each target. Returns how many accepted it."""
        delivered = 0
        for subscriber in targets:
            if subscriber.channel.offer(payload):
                delivered += 1
            else:
                self.dropped += 1
                logger.debug(
                    "broker.delivery_dropped",
                    subscriber_id=subscriber.id,
                    closed=subscriber.channel.closed,
                )
        self.published += 1
        return delivered

    def stats(self) -> dict:
        return {
            **self.registry.stats(),
            "published": self.published,
            "dropped": self.dropped,
        }


def get_broker(conn: HTTPConnection) -> Broker:
    """FastAPI dependency — the process broker from app state.

    Typed as HTTPConnection so it resolves for both HTTP and WebSocket routes.
    """
    return conn.app.state.broker
