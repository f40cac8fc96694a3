"""Test fixtures — a fresh broker and app per test.

Learn: create_app() takes the broker as a parameter, so each test builds
its own app around its own Broker. Nothing leaks between tests through
module state, and tests can publish into exactly the broker the
transports are registered with.

The SSE heartbeat is shortened so idle-stream behaviour is testable in
milliseconds instead of 25-second ticks.
"""

import asyncio
import time

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from ordernotify.config import Settings
from ordernotify.main import create_app
from ordernotify.realtime.broker import Broker


@pytest.fixture()
def broker():
    return Broker()


@pytest.fixture()
def app_settings():
    return Settings(sse_heartbeat_seconds=0.05, sse_channel_capacity=8, ws_channel_capacity=256)


@pytest.fixture()
def app(app_settings, broker):
    return create_app(app_settings, broker)


@pytest_asyncio.fixture()
async def client(app):
    """HTTP client bound to the ASGI app (no network, no lifespan)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture()
def wait_until():
    """Poll a condition from async tests; fails the test on timeout."""

    async def _wait(predicate, timeout: float = 2.0, interval: float = 0.005):
        deadline = time.monotonic() + timeout
        while not predicate():
            if time.monotonic() > deadline:
                pytest.fail("condition not met before timeout")
            await asyncio.sleep(interval)

    return _wait
