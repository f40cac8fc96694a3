"""Delivery channel — per-subscriber bounded mailbox with drop-on-full.

Learn: Every connected client owns exactly one channel. The broker is the
producer (offer), the transport pump is the consumer (receive). Offering
never blocks: when the mailbox is full the payload is dropped for that
subscriber only. Real-time push is a convenience channel; the persisted
notifications are the source of truth, so losing a message under load
is acceptable.

Closing is idempotent. A closed channel refuses new payloads and wakes
the consumer with ChannelClosed so the connection can unwind.
"""

import asyncio
from typing import AsyncIterator


class ChannelClosed(Exception):
    """Raised by receive() once the channel has been closed."""


# Marker pushed on close so a parked consumer wakes up immediately.
_CLOSED = object()


class DeliveryChannel:
    """Bounded FIFO of pre-serialized payloads.

    The underlying asyncio.Queue is unbounded; capacity is enforced in
    offer() so that close() can always enqueue its wake-up marker, even
    when the mailbox is full.
    """

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._queue: asyncio.Queue = asyncio.Queue()
        self._pending = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return self._pending

    def full(self) -> bool:
        return self._pending >= self.capacity

    def offer(self, payload: str) -> bool:
        """Enqueue without blocking. Returns False if dropped."""
        if self._closed or self.full():
            return False
        self._pending += 1
        self._queue.put_nowait(payload)
        return True

    async def receive(self) -> str:
        """Wait for the next payload in publish order."""
        if self._closed:
            raise ChannelClosed()
        item = await self._queue.get()
        if item is _CLOSED:
            raise ChannelClosed()
        self._pending -= 1
        return item

    def close(self) -> bool:
        """Close the channel. Returns False if it was already closed."""
        if self._closed:
            return False
        self._closed = True
        self._queue.put_nowait(_CLOSED)
        return True

    async def __aiter__(self) -> AsyncIterator[str]:
        while True:
            try:
                yield await self.receive()
            except ChannelClosed:
                return
