"""
Realtime gateway: per-recipient websocket subscription groups.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set

from aiohttp import web, WSMsgType
from aiohttp.web import Request

logger = logging.getLogger(__name__)


def _json_default(obj):
    if isinstance(obj, datetime):
        return obj.isoformat()
    raise TypeError(f"Type {type(obj)} not serializable")


class RealtimeGateway:
    """
    Tracks live connections per recipient and pushes events to them.

    State is process-local. Pushes are fire-and-forget: a recipient without
    connections simply receives nothing.
    """

    NEW_NOTIFICATION_EVENT = "notification.new"

    def __init__(self, heartbeat: float = 30.0):
        self.heartbeat = heartbeat
        self._connections: Set[Any] = set()
        self._groups: Dict[str, Set[Any]] = {}
        self._memberships: Dict[Any, Set[str]] = {}

    def connect(self, connection, recipient_id: Optional[str] = None) -> None:
        """Register a connection, joining the recipient's group if one is given."""
        self._connections.add(connection)
        self._memberships.setdefault(connection, set())
        if recipient_id:
            self.join(connection, recipient_id)
        else:
            logger.info("Client connected without recipientId")

    def join(self, connection, recipient_id: str) -> None:
        self._groups.setdefault(recipient_id, set()).add(connection)
        self._memberships.setdefault(connection, set()).add(recipient_id)
        logger.info(f"Client joined recipient group {recipient_id}")

    def disconnect(self, connection) -> None:
        """Forget a connection and remove it from every group."""
        self._connections.discard(connection)
        for recipient_id in self._memberships.pop(connection, set()):
            group = self._groups.get(recipient_id)
            if group is None:
                continue
            group.discard(connection)
            if not group:
                del self._groups[recipient_id]
        logger.info(f"WebSocket client disconnected. Total clients: {len(self._connections)}")

    def group_size(self, recipient_id: str) -> int:
        return len(self._groups.get(recipient_id, ()))

    async def emit_to_recipient(self, recipient_id: str, payload: Dict[str, Any]) -> int:
        """Push a `notification.new` event to every connection of the recipient."""
        group = self._groups.get(recipient_id)
        if not group:
            logger.debug(f"No live connections for recipient {recipient_id}")
            return 0

        message = json.dumps({
            "event": self.NEW_NOTIFICATION_EVENT,
            "data": payload,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }, default=_json_default)

        delivered = 0
        disconnected = set()
        for connection in list(group):
            try:
                await connection.send_str(message)
                delivered += 1
            except (ConnectionError, RuntimeError) as e:
                logger.warning(f"Dropping connection for recipient {recipient_id}: {e}")
                disconnected.add(connection)

        for connection in disconnected:
            self.disconnect(connection)

        logger.info(f"Emitted {self.NEW_NOTIFICATION_EVENT} to recipient {recipient_id} ({delivered} connections)")
        return delivered

    async def handle_websocket(self, request: Request) -> web.WebSocketResponse:
        """aiohttp handler: `GET /notifications/ws?recipientId=...`."""
        ws = web.WebSocketResponse(heartbeat=self.heartbeat)
        await ws.prepare(request)

        self.connect(ws, request.query.get("recipientId") or None)
        logger.info(f"WebSocket client connected. Total clients: {len(self._connections)}")

        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    try:
                        data = json.loads(msg.data)
                    except json.JSONDecodeError as e:
                        logger.warning("WebSocket invalid JSON from client: %s", e)
                        continue
                    if not isinstance(data, dict):
                        logger.warning("WebSocket message body is not an object, ignoring")
                        continue
                    await self._handle_message(ws, data)
                elif msg.type == WSMsgType.ERROR:
                    logger.error(f"WebSocket error: {ws.exception()}")
        finally:
            self.disconnect(ws)

        return ws

    async def _handle_message(self, ws, data: Dict[str, Any]) -> None:
        message_type = data.get("type")

        if message_type == "ping":
            await ws.send_str(json.dumps({"type": "pong"}))
        elif message_type == "subscribe":
            recipient_id = data.get("recipientId")
            if isinstance(recipient_id, str) and recipient_id:
                self.join(ws, recipient_id)
                await ws.send_str(json.dumps({"type": "subscribed", "recipientId": recipient_id}))
            else:
                await ws.send_str(json.dumps({"type": "error", "message": "recipientId is required"}))

    def get_stats(self) -> Dict[str, int]:
        return {
            "connections": len(self._connections),
            "recipient_groups": len(self._groups),
        }

    async def close_all(self) -> None:
        """Close every live connection (shutdown)."""
        for connection in list(self._connections):
            try:
                await connection.close()
            except (ConnectionError, RuntimeError) as e:
                logger.debug(f"Error closing websocket: {e}")
            self.disconnect(connection)
