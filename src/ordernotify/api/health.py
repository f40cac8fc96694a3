"""Health check endpoint.

Learn: Simple GET endpoint that verifies the server is running and
reports what the real-time layer is holding: live subscribers per
transport and role, plus publish/drop counters. A climbing drop count
means clients are not draining their mailboxes.
"""

from fastapi import APIRouter, Depends

from ordernotify import __version__
from ordernotify.realtime.broker import Broker, get_broker

router = APIRouter()


@router.get("/health")
async def health_check(broker: Broker = Depends(get_broker)):
    """Check server health and real-time broker state."""
    return {
        "status": "healthy",
        "server": "ok",
        "version": __version__,
        "realtime": broker.stats(),
    }
