"""ordernotify CLI — run the server, watch the notification stream.

Usage:
    ordernotify serve                              # Run the API with uvicorn
    ordernotify listen --role admin                # Print admin notifications
    ordernotify listen --user-id <uuid>            # Print one customer's notifications
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
from typing import Iterable, Iterator, Optional

import click
import httpx

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:8000"


def _api_url() -> str:
    return os.environ.get("ORDERNOTIFY_API_URL", DEFAULT_API_URL).rstrip("/")


# ---------------------------------------------------------------------------
# SSE parsing
# ---------------------------------------------------------------------------


class SSEParser:
    """Incremental SSE line parser.

    feed() takes one line at a time and returns a (kind, value) pair when
    one is complete: "data" for a message (multi-line data joined with
    newlines), "comment" for ": ..." lines, "retry" for the reconnect
    advisory. Unknown fields are ignored, as EventSource does.
    """

    def __init__(self):
        self._data: list[str] = []

    def feed(self, raw: str) -> Optional[tuple[str, str]]:
        line = raw.rstrip("\r\n")
        if not line:
            return self.flush()
        if line.startswith(":"):
            return "comment", line[1:].strip()
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "data":
            self._data.append(value)
        elif field == "retry":
            return "retry", value
        return None

    def flush(self) -> Optional[tuple[str, str]]:
        if not self._data:
            return None
        message = "\n".join(self._data)
        self._data = []
        return "data", message


def iter_sse_events(lines: Iterable[str]) -> Iterator[tuple[str, str]]:
    """Parse a finite sequence of SSE lines."""
    parser = SSEParser()
    for line in lines:
        event = parser.feed(line)
        if event:
            yield event
    event = parser.flush()
    if event:
        yield event


def _pretty(payload: str) -> str:
    try:
        return json.dumps(json.loads(payload), indent=2, ensure_ascii=False)
    except json.JSONDecodeError:
        return payload


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version="0.1.0", prog_name="ordernotify")
def main():
    """ordernotify — real-time order notification server and tools."""


@main.command()
@click.option("--host", default=None, help="Bind address (default: ORDERNOTIFY_HOST)")
@click.option("--port", type=int, default=None, help="Port (default: ORDERNOTIFY_PORT)")
@click.option("--reload", is_flag=True, help="Auto-reload on code changes")
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """Run the notification server."""
    import uvicorn

    from ordernotify.config import settings

    uvicorn.run(
        "ordernotify.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
    )


@main.command()
@click.option("--user-id", "-u", default="", help="Receive notifications addressed to this user")
@click.option("--role", "-r", default="", help="Receive notifications addressed to this role")
@click.option("--url", default=None, help="Server base URL (or set ORDERNOTIFY_API_URL)")
@click.option("--show-pings", is_flag=True, help="Also print heartbeat comments")
def listen(user_id: str, role: str, url: Optional[str], show_pings: bool):
    """Stream notifications from /events and print them."""
    try:
        asyncio.run(_listen_impl(user_id, role, (url or _api_url()).rstrip("/"), show_pings))
    except KeyboardInterrupt:
        pass


async def _listen_impl(user_id: str, role: str, base_url: str, show_pings: bool):
    params = {k: v for k, v in {"user_id": user_id, "role": role}.items() if v}
    # No read timeout: the stream is idle between heartbeats by design
    timeout = httpx.Timeout(10.0, read=None)
    parser = SSEParser()

    async with httpx.AsyncClient(base_url=base_url, timeout=timeout) as c:
        try:
            async with c.stream("GET", "/events", params=params) as r:
                r.raise_for_status()
                click.secho(f"Connected to {base_url}/events", fg="green", err=True)
                async for line in r.aiter_lines():
                    event = parser.feed(line)
                    if event:
                        _print_event(*event, show_pings=show_pings)
        except httpx.HTTPError as e:
            click.secho(f"Error: {e}", fg="red", err=True)
            sys.exit(1)


def _print_event(kind: str, value: str, show_pings: bool) -> None:
    if kind == "data":
        click.echo(_pretty(value))
    elif kind == "comment" and show_pings:
        click.secho(f": {value}", dim=True)
    elif kind == "retry":
        click.secho(f"(server retry hint: {value}ms)", dim=True, err=True)
