"""Server-Sent Events endpoint — one-way push over a long-lived HTTP response.

Learn: Each client opens GET /events?user_id=...&role=... (both optional;
without them the client only receives broadcast-all events). The stream:

    retry: 5000            reconnect advisory for EventSource, sent first
    data: {...}            one frame per notification
    : ping                 comment frame on a fixed 25s ticker

The heartbeat keeps proxies (nginx, load balancers) from closing the
connection as idle. The ticker is periodic: a busy stream still pings on
schedule.

The loop parks on three things at once: the next channel message, the
next heartbeat tick, and the client going away. The last one is watched
by a task that reads the ASGI receive channel until http.disconnect, so
an idle stream notices immediately instead of at the next write.
Teardown also happens on task cancellation (Starlette cancels the body
iterator when a send fails) and on ChannelClosed when the broker shuts
down. Every exit path runs the same finally block, and
broker.disconnect() is idempotent, so teardown happens exactly once.
"""

import asyncio
from typing import AsyncIterator, Awaitable, Callable, Optional

import structlog
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from ordernotify.realtime.broker import Broker, get_broker
from ordernotify.realtime.channel import ChannelClosed
from ordernotify.realtime.registry import Subscriber

logger = structlog.get_logger()
router = APIRouter()

PING_FRAME = ": ping\n\n"


def format_event(payload: str) -> str:
    """Encode a payload as one SSE message (multi-line payloads get one data: line each)."""
    lines = payload.splitlines() or [""]
    return "".join(f"data: {line}\n" for line in lines) + "\n"


def format_retry(retry_ms: int) -> str:
    return f"retry: {retry_ms}\n\n"


async def wait_for_disconnect(request: Request) -> None:
    """Return once the ASGI server reports that the client went away."""
    while True:
        message = await request.receive()
        if message["type"] == "http.disconnect":
            return


async def event_stream(
    broker: Broker,
    subscriber: Subscriber,
    *,
    heartbeat_interval: float,
    retry_ms: int,
    disconnected: Optional[Callable[[], Awaitable[None]]] = None,
) -> AsyncIterator[str]:
    """Connect the subscriber and yield SSE frames until the connection ends.

    disconnected, when given, is awaited alongside the channel so a client
    that leaves an idle stream is unregistered right away instead of at
    the next heartbeat write.
    """
    loop = asyncio.get_running_loop()
    log = logger.bind(subscriber_id=subscriber.id, user_id=subscriber.user_id, role=subscriber.role)

    broker.connect(subscriber)
    watcher = asyncio.ensure_future(disconnected()) if disconnected is not None else None
    receive = None
    try:
        yield format_retry(retry_ms)

        next_ping = loop.time() + heartbeat_interval
        while True:
            receive = asyncio.ensure_future(subscriber.channel.receive())
            waiting = {receive} if watcher is None else {receive, watcher}
            await asyncio.wait(
                waiting,
                timeout=max(0.0, next_ping - loop.time()),
                return_when=asyncio.FIRST_COMPLETED,
            )

            if watcher is not None and watcher.done():
                log.info("sse.client_gone")
                break
            if not receive.done():
                receive.cancel()
                next_ping += heartbeat_interval
                yield PING_FRAME
                continue
            try:
                payload = receive.result()
            except ChannelClosed:
                log.info("sse.channel_closed")
                break
            yield format_event(payload)
    finally:
        for task in (receive, watcher):
            if task is not None:
                task.cancel()
        broker.disconnect(subscriber)
        log.info("sse.stream_closed")


@router.get("/events")
async def sse_events(
    request: Request,
    user_id: str = Query(default=""),
    role: str = Query(default=""),
    broker: Broker = Depends(get_broker),
):
    """Real-time notification stream (text/event-stream).

    The subscriber is registered when the response body starts streaming,
    not here, so a request that never reaches the stream leaves nothing
    behind in the registry.
    """
    settings = request.app.state.settings
    subscriber = broker.subscriber(
        user_id=user_id,
        role=role,
        capacity=settings.sse_channel_capacity,
        transport="sse",
    )
    stream = event_stream(
        broker,
        subscriber,
        heartbeat_interval=settings.sse_heartbeat_seconds,
        retry_ms=settings.sse_retry_ms,
        disconnected=lambda: wait_for_disconnect(request),
    )
    return StreamingResponse(
        stream,
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
