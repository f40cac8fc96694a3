"""SSE transport tests.

Learn: event_stream() is an async generator, so most tests drive it
directly: pull frames with __anext__(), publish into the broker in
between, and check registry state as the stream opens and closes. The
route test goes through the real app and ends the stream by closing the
broker, which is what shutdown does.
"""

import asyncio
import json

import pytest
from starlette.requests import Request

from ordernotify.realtime.sse import (
    PING_FRAME,
    event_stream,
    format_event,
    format_retry,
    wait_for_disconnect,
)

HEARTBEAT = 0.05


def open_stream(broker, subscriber, **kwargs):
    return event_stream(broker, subscriber, heartbeat_interval=HEARTBEAT, retry_ms=5000, **kwargs)


async def next_frame(stream, timeout: float = 1.0) -> str:
    return await asyncio.wait_for(stream.__anext__(), timeout=timeout)


# ═══════════════════════════════════════════════════════════
# Frame format
# ═══════════════════════════════════════════════════════════


def test_format_event_single_line():
    assert format_event('{"x": 1}') == 'data: {"x": 1}\n\n'


def test_format_event_splits_multiline_payload():
    assert format_event("a\nb") == "data: a\ndata: b\n\n"


def test_format_retry():
    assert format_retry(5000) == "retry: 5000\n\n"


# ═══════════════════════════════════════════════════════════
# Stream lifecycle
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_stream_registers_and_sends_retry_first(broker):
    sub = broker.subscriber(user_id="U1", capacity=8)
    stream = open_stream(broker, sub)

    assert sub not in broker.registry
    assert await next_frame(stream) == "retry: 5000\n\n"
    assert sub in broker.registry

    await stream.aclose()
    assert sub not in broker.registry
    assert sub.channel.closed


@pytest.mark.asyncio
async def test_user_addressed_payload_becomes_data_frame(broker):
    sub = broker.subscriber(user_id="U1", role="", capacity=8)
    stream = open_stream(broker, sub)
    await next_frame(stream)

    broker.publish_to_user("U1", json.dumps({"x": 1}))

    frame = await next_frame(stream)
    assert frame.startswith("data: ")
    assert json.loads(frame[len("data: "):].strip()) == {"x": 1}
    await stream.aclose()


@pytest.mark.asyncio
async def test_frames_follow_publish_order(broker):
    sub = broker.subscriber(role="admin", capacity=8)
    stream = open_stream(broker, sub)
    await next_frame(stream)

    for i in range(3):
        broker.publish_to_role("admin", f"m{i}")

    frames = [await next_frame(stream) for _ in range(3)]
    assert frames == ["data: m0\n\n", "data: m1\n\n", "data: m2\n\n"]
    await stream.aclose()


@pytest.mark.asyncio
async def test_idle_stream_sends_heartbeats_and_stays_open(broker):
    sub = broker.subscriber(user_id="U1", capacity=8)
    stream = open_stream(broker, sub)
    await next_frame(stream)

    loop = asyncio.get_running_loop()
    started = loop.time()
    frames = [await next_frame(stream) for _ in range(2)]
    elapsed = loop.time() - started

    assert frames == [PING_FRAME, PING_FRAME]
    assert elapsed >= HEARTBEAT * 1.5
    assert sub in broker.registry
    assert not sub.channel.closed
    await stream.aclose()


@pytest.mark.asyncio
async def test_heartbeat_keeps_ticking_while_messages_flow(broker):
    sub = broker.subscriber(role="admin", capacity=8)
    stream = open_stream(broker, sub)
    await next_frame(stream)

    async def publisher():
        for i in range(6):
            broker.publish_to_role("admin", f"m{i}")
            await asyncio.sleep(HEARTBEAT / 3)

    task = asyncio.create_task(publisher())
    frames = []
    while len([f for f in frames if f.startswith("data:")]) < 6:
        frames.append(await next_frame(stream))
    await task

    assert PING_FRAME in frames
    await stream.aclose()


@pytest.mark.asyncio
async def test_client_leaving_idle_stream_unregisters_before_next_heartbeat(broker):
    sub = broker.subscriber(user_id="U1", capacity=8)
    gone = asyncio.Event()
    stream = event_stream(
        broker, sub, heartbeat_interval=30.0, retry_ms=5000, disconnected=gone.wait
    )
    await next_frame(stream)
    pending = asyncio.ensure_future(stream.__anext__())
    await asyncio.sleep(0.01)
    assert sub in broker.registry

    gone.set()

    with pytest.raises(StopAsyncIteration):
        await asyncio.wait_for(pending, timeout=1)
    assert sub not in broker.registry
    assert sub.channel.closed


@pytest.mark.asyncio
async def test_disconnect_watcher_reads_until_http_disconnect():
    messages = [
        {"type": "http.request", "body": b"", "more_body": False},
        {"type": "http.disconnect"},
    ]

    async def receive():
        return messages.pop(0)

    request = Request({"type": "http", "method": "GET", "path": "/events", "headers": []}, receive)
    await asyncio.wait_for(wait_for_disconnect(request), timeout=1)
    assert messages == []


@pytest.mark.asyncio
async def test_cancelled_consumer_unregisters(broker, wait_until):
    sub = broker.subscriber(role="admin", capacity=8)
    frames = []

    async def consume():
        async for frame in open_stream(broker, sub):
            frames.append(frame)

    task = asyncio.create_task(consume())
    await wait_until(lambda: sub in broker.registry)

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert sub not in broker.registry
    assert broker.publish_to_role("admin", "m") == 0


@pytest.mark.asyncio
async def test_broker_close_ends_stream(broker):
    sub = broker.subscriber(role="admin", capacity=8)
    stream = open_stream(broker, sub)
    await next_frame(stream)

    broker.close()

    with pytest.raises(StopAsyncIteration):
        await next_frame(stream)
    # The finally block's disconnect is a no-op the second time round
    assert broker.disconnect(sub) is False


# ═══════════════════════════════════════════════════════════
# HTTP route
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_events_route_streams_until_shutdown(client, broker, wait_until):
    request = asyncio.create_task(
        client.get("/events", params={"user_id": "U1", "role": "admin"})
    )
    await wait_until(lambda: len(broker.registry) == 1)

    (sub,) = broker.registry.snapshot()
    assert (sub.user_id, sub.role, sub.transport) == ("U1", "admin", "sse")
    assert sub.channel.capacity == 8

    broker.publish_to_role("admin", json.dumps({"order_id": "o1"}))
    broker.close()

    r = await asyncio.wait_for(request, timeout=5)
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/event-stream")
    assert r.headers["cache-control"] == "no-cache"
    assert r.headers["x-accel-buffering"] == "no"
    assert r.text.startswith("retry: 5000\n\n")
    assert 'data: {"order_id": "o1"}\n\n' in r.text
    assert len(broker.registry) == 0


@pytest.mark.asyncio
async def test_events_route_without_params_is_broadcast_only(client, broker, wait_until):
    request = asyncio.create_task(client.get("/events"))
    await wait_until(lambda: len(broker.registry) == 1)

    stats = broker.stats()
    assert stats["users"] == 0
    assert stats["roles"] == {}

    broker.publish_all("everyone")
    broker.close()

    r = await asyncio.wait_for(request, timeout=5)
    assert "data: everyone\n\n" in r.text
