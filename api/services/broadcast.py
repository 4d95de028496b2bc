"""
Broadcast Channel

Per-session multicast groups. Every connection watching a session receives the
same lifecycle and transcript events; errors go only to the connection that
caused them.
"""

import json
import logging
import uuid
from typing import Any, Dict, List, Optional

from prometheus_client import Counter
from starlette.websockets import WebSocket, WebSocketState

logger = logging.getLogger(__name__)

OUTBOUND_MESSAGES = Counter(
    "recording_stream_outbound_messages_total",
    "Events sent to recording stream clients",
    ["event"],
)
OUTBOUND_BYTES = Counter(
    "recording_stream_outbound_bytes_total",
    "Payload bytes sent to recording stream clients",
)


def build_message(event: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    message: Dict[str, Any] = {"event": event}
    if payload:
        message.update(payload)
    return message


class Connection:
    """One client endpoint of the event channel."""

    def __init__(self, connection_id: Optional[str] = None) -> None:
        self.id = connection_id or uuid.uuid4().hex

    async def send_json(self, message: Dict[str, Any]) -> None:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.id})"


class WebSocketConnection(Connection):
    def __init__(self, websocket: WebSocket, connection_id: Optional[str] = None) -> None:
        super().__init__(connection_id)
        self.websocket = websocket

    @property
    def connected(self) -> bool:
        return self.websocket.client_state == WebSocketState.CONNECTED

    async def send_json(self, message: Dict[str, Any]) -> None:
        if not self.connected:
            return
        encoded = json.dumps(message)
        await self.websocket.send_text(encoded)
        OUTBOUND_BYTES.inc(len(encoded))


class BroadcastChannel:
    """
    Named multicast groups keyed by session identifier.

    A connection that fails while receiving a group message is dropped from
    that group; the remaining subscribers still get the message.
    """

    def __init__(self) -> None:
        self._groups: Dict[str, Dict[str, Connection]] = {}

    def subscribe(self, session_id: str, connection: Connection) -> None:
        group = self._groups.setdefault(session_id, {})
        group[connection.id] = connection
        logger.debug(f"Connection {connection.id} joined group {session_id} ({len(group)} subscribers)")

    def unsubscribe(self, session_id: str, connection: Connection) -> None:
        group = self._groups.get(session_id)
        if not group:
            return
        group.pop(connection.id, None)
        if not group:
            del self._groups[session_id]

    def unsubscribe_all(self, connection: Connection) -> List[str]:
        """Remove a connection from every group; returns the sessions it was watching."""
        left = [session_id for session_id, group in self._groups.items() if connection.id in group]
        for session_id in left:
            self.unsubscribe(session_id, connection)
        return left

    def subscribers(self, session_id: str) -> List[Connection]:
        return list(self._groups.get(session_id, {}).values())

    def close_group(self, session_id: str) -> None:
        self._groups.pop(session_id, None)

    async def send(self, connection: Connection, event: str, payload: Optional[Dict[str, Any]] = None) -> bool:
        """Send one event to a single connection. Returns False when delivery failed."""
        try:
            await connection.send_json(build_message(event, payload))
        except Exception as exc:  # noqa: BLE001
            logger.warning(f"Delivery of {event} to {connection.id} failed: {exc}")
            return False
        OUTBOUND_MESSAGES.labels(event=event).inc()
        return True

    async def publish(self, session_id: str, event: str, payload: Optional[Dict[str, Any]] = None) -> int:
        """Fan an event out to every subscriber of a session; returns the number of deliveries."""
        delivered = 0
        for connection in self.subscribers(session_id):
            if await self.send(connection, event, payload):
                delivered += 1
            else:
                self.unsubscribe(session_id, connection)
        return delivered

    def get_stats(self) -> dict:
        return {
            "groups": len(self._groups),
            "subscriptions": sum(len(group) for group in self._groups.values()),
        }
