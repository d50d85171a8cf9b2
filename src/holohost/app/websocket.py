"""WebSocket transport for realtime instance events.

Clients authenticate with their instance's security code in the
X-Security-Code header and may only subscribe to that instance. The
security_code query parameter is accepted only when ws_query_auth is
enabled, since request URLs are recorded by proxies. Client messages:

    {"type": "subscribe.instance", "instance_id": "..."}
    {"type": "subscribe.logs", "instance_id": "..."}
    {"type": "unsubscribe.instance" | "unsubscribe.logs", "instance_id": "..."}

Server events are the broadcaster's instance.status/stats/logs, plus
{"type": "error", "data": {"message": ...}} for rejected client messages.
"""

import asyncio
import logging

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from holohost.app.dependencies import get_runtime
from holohost.core.events import ClientEvent, ClientEventType, ServerEvent
from holohost.core.interfaces import Subscriber
from holohost.logging import bind_connection_instance
from holohost.logging_schema import LogEvent
from holohost.metrics import WS_ACTIVE_CONNECTIONS
from holohost.services import RealtimeBroadcaster

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])

SECURITY_CODE_HEADER = "x-security-code"
CLOSE_UNAUTHORIZED = 4401


class WebSocketSubscriber(Subscriber):
    """Delivers broadcaster events over one WebSocket connection."""

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket
        # Log pumps and the receive loop send concurrently
        self._send_lock = asyncio.Lock()

    async def deliver(self, event: ServerEvent) -> None:
        await self.send(event.model_dump(mode="json"))

    async def send_error(self, message: str) -> None:
        await self.send({"type": "error", "data": {"message": message}})

    async def send(self, payload: dict) -> None:
        async with self._send_lock:
            await self._websocket.send_json(payload)


async def _dispatch(
    broadcaster: RealtimeBroadcaster,
    event: ClientEvent,
    subscriber: WebSocketSubscriber,
) -> None:
    match event.type:
        case ClientEventType.SUBSCRIBE_INSTANCE:
            broadcaster.subscribe_status(event.instance_id, subscriber)
        case ClientEventType.UNSUBSCRIBE_INSTANCE:
            broadcaster.unsubscribe_status(event.instance_id, subscriber)
        case ClientEventType.SUBSCRIBE_LOGS:
            await broadcaster.subscribe_logs(event.instance_id, subscriber)
        case ClientEventType.UNSUBSCRIBE_LOGS:
            broadcaster.unsubscribe_logs(event.instance_id, subscriber)


@router.websocket("/ws")
async def instance_events(
    websocket: WebSocket,
    security_code: str | None = Query(default=None),
) -> None:
    """Realtime status, stats and logs for the authenticated instance."""
    runtime = get_runtime()

    code = websocket.headers.get(SECURITY_CODE_HEADER)
    if not code and runtime.ws_query_auth:
        code = security_code
    instance = await runtime.store.get_by_security_code(code) if code else None
    if instance is None:
        logger.warning(
            "WebSocket rejected",
            extra={"event": LogEvent.WS_REJECTED, "has_code": bool(code)},
        )
        await websocket.close(code=CLOSE_UNAUTHORIZED, reason="Invalid security code")
        return

    await websocket.accept()
    subscriber = WebSocketSubscriber(websocket)
    bind_connection_instance(instance.id)
    WS_ACTIVE_CONNECTIONS.inc()
    logger.info(
        "WebSocket connected",
        extra={"event": LogEvent.WS_CONNECTED, "instance_id": instance.id},
    )

    try:
        while True:
            message = await websocket.receive_text()
            try:
                event = ClientEvent.model_validate_json(message)
            except ValidationError:
                await subscriber.send_error("Invalid event")
                continue

            if event.instance_id != instance.id:
                await subscriber.send_error("Not authorized for this instance")
                continue

            await _dispatch(runtime.broadcaster, event, subscriber)
    except WebSocketDisconnect:
        pass
    finally:
        runtime.broadcaster.remove_subscriber(subscriber)
        WS_ACTIVE_CONNECTIONS.dec()
        logger.info(
            "WebSocket disconnected",
            extra={"event": LogEvent.WS_DISCONNECTED, "instance_id": instance.id},
        )
