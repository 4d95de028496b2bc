import json
from typing import Any, Dict

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from prometheus_client import Counter, Gauge

from config import get_settings
from schemas.recording import OutboundEvent
from services.broadcast import WebSocketConnection
from services.dispatcher import EventDispatcher

LOGGER = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["recording-stream"])
settings = get_settings()

OPEN_CONNECTIONS = Gauge("recording_stream_open_connections", "Open recording stream WebSocket connections")
INBOUND_MESSAGES = Counter(
    "recording_stream_inbound_messages_total",
    "WebSocket frames received on the recording stream",
)
INBOUND_BYTES = Counter(
    "recording_stream_inbound_bytes_total",
    "WebSocket payload bytes received on the recording stream",
)
REJECTED_MESSAGES = Counter(
    "recording_stream_rejected_messages_total",
    "Frames rejected before reaching the dispatcher",
    ["reason"],
)


async def _reject(
    dispatcher: EventDispatcher, connection: WebSocketConnection, message: str, code: str
) -> None:
    REJECTED_MESSAGES.labels(reason=code).inc()
    await dispatcher.channel.send(connection, OutboundEvent.ERROR.value, {"message": message, "code": code})


@router.websocket("/recording/stream")
async def websocket_recording_stream(websocket: WebSocket) -> None:
    dispatcher: EventDispatcher = websocket.app.state.dispatcher
    await websocket.accept()
    connection = WebSocketConnection(websocket)
    OPEN_CONNECTIONS.inc()
    LOGGER.info(
        "recording_stream_connected",
        connection_id=connection.id,
        client=websocket.client.host if websocket.client else "unknown",
    )

    max_bytes = settings.ws_max_message_bytes
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            if message["type"] != "websocket.receive":
                continue

            data = message.get("text")
            if data is None:
                size = len(message.get("bytes") or b"")
                INBOUND_BYTES.inc(size)
                await _reject(dispatcher, connection, "Binary frames are not supported", "INVALID_PAYLOAD")
                continue

            size = len(data.encode("utf-8"))
            INBOUND_MESSAGES.inc()
            INBOUND_BYTES.inc(size)
            if size > max_bytes:
                LOGGER.warning("recording_stream_message_too_large", connection_id=connection.id, size=size)
                await _reject(
                    dispatcher,
                    connection,
                    f"Message exceeds the maximum size of {max_bytes} bytes",
                    "MESSAGE_TOO_LARGE",
                )
                continue

            try:
                envelope = json.loads(data)
            except json.JSONDecodeError:
                await _reject(dispatcher, connection, "Invalid JSON payload.", "INVALID_PAYLOAD")
                continue
            if not isinstance(envelope, dict):
                await _reject(dispatcher, connection, "Expected a JSON object.", "INVALID_PAYLOAD")
                continue

            event = envelope.pop("event", None)
            payload: Dict[str, Any] = envelope
            await dispatcher.dispatch(connection, event, payload)
    except WebSocketDisconnect:
        pass
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("recording_stream_failure", connection_id=connection.id, error=str(exc))
        if connection.connected:
            await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
    finally:
        await dispatcher.disconnect(connection)
        OPEN_CONNECTIONS.dec()
        LOGGER.info("recording_stream_disconnected", connection_id=connection.id)
