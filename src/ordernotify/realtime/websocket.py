"""WebSocket endpoint — real-time notification delivery over a socket.

Learn: Each client connects to /ws?user_id=...&role=... (both required).
The handler:
1. Refuses the handshake (HTTP 400) before accept if either parameter is missing
2. Creates a subscriber with a large mailbox and connects it to the broker
3. Runs an outbound pump (channel → socket) and an inbound pump
   (socket → debug log) side by side
4. Tears everything down once, whichever side stops first

This is a long-lived connection — one per browser tab.
"""

import asyncio

import structlog
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status
from fastapi.responses import JSONResponse
from starlette.websockets import WebSocketState

from ordernotify.realtime.broker import Broker, get_broker
from ordernotify.realtime.registry import Subscriber

logger = structlog.get_logger()
router = APIRouter()

MISSING_PARAMS_ERROR = "user_id and role are required"
DENIAL_EXTENSION = "websocket.http.response"


async def reject_handshake(websocket: WebSocket, error: str) -> None:
    """Refuse the upgrade before accept. No subscriber exists at this point."""
    if DENIAL_EXTENSION in websocket.scope.get("extensions", {}):
        await websocket.send_denial_response(
            JSONResponse({"error": error}, status_code=status.HTTP_400_BAD_REQUEST)
        )
    else:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=error)


async def outbound_pump(websocket: WebSocket, subscriber: Subscriber) -> None:
    """Forward channel payloads to the client until the channel closes or a send fails."""
    async for payload in subscriber.channel:
        try:
            await websocket.send_text(payload)
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            logger.info("ws.send_failed", subscriber_id=subscriber.id, error=str(e))
            return


async def inbound_pump(websocket: WebSocket, subscriber: Subscriber) -> None:
    """Read client frames until the peer goes away.

    No inbound protocol is defined; text and binary frames alike are only
    logged for liveness.
    """
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                return
            data = message.get("text")
            if data is None:
                data = message.get("bytes")
            logger.debug("ws.received", subscriber_id=subscriber.id, user_id=subscriber.user_id, data=data)
    except WebSocketDisconnect:
        pass
    except (RuntimeError, OSError) as e:
        logger.info("ws.receive_failed", subscriber_id=subscriber.id, error=str(e))


async def serve_subscriber(websocket: WebSocket, broker: Broker, subscriber: Subscriber) -> None:
    """Accept the socket and pump until either direction stops.

    The subscriber is connected before accept so a publish racing the
    handshake is queued rather than lost.
    """
    broker.connect(subscriber)
    try:
        await websocket.accept()

        outbound = asyncio.create_task(outbound_pump(websocket, subscriber))
        inbound = asyncio.create_task(inbound_pump(websocket, subscriber))

        try:
            # Wait for either to finish (usually client disconnect)
            done, _ = await asyncio.wait(
                [outbound, inbound],
                return_when=asyncio.FIRST_COMPLETED,
            )
            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    logger.warning(
                        "ws.pump_crashed",
                        subscriber_id=subscriber.id,
                        error=repr(task.exception()),
                    )
        finally:
            for task in (outbound, inbound):
                task.cancel()
            await asyncio.gather(outbound, inbound, return_exceptions=True)
    finally:
        broker.disconnect(subscriber)
        if websocket.client_state == WebSocketState.CONNECTED:
            try:
                await websocket.close()
            except (RuntimeError, OSError):
                pass
        logger.info("ws.closed", subscriber_id=subscriber.id, user_id=subscriber.user_id)


@router.websocket("/ws")
async def notification_websocket(
    websocket: WebSocket,
    broker: Broker = Depends(get_broker),
):
    """WebSocket endpoint for real-time order notifications.

    Learn: Query params are read by hand instead of declared as required
    parameters so a missing one can be refused before the upgrade
    completes. Servers that support the denial-response extension get a
    plain HTTP 400 with a JSON error body; otherwise the handshake is
    closed with 1008, which the ASGI server answers with HTTP 403.
    """
    user_id = websocket.query_params.get("user_id", "")
    role = websocket.query_params.get("role", "")

    if not user_id or not role:
        logger.info("ws.rejected", user_id=user_id, role=role)
        await reject_handshake(websocket, MISSING_PARAMS_ERROR)
        return

    settings = websocket.app.state.settings
    subscriber = broker.subscriber(
        user_id=user_id,
        role=role,
        capacity=settings.ws_channel_capacity,
        transport="ws",
    )
    await serve_subscriber(websocket, broker, subscriber)
