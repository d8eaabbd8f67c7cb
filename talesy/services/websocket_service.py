"""
WebSocket connection manager.
Tracks the live notification sockets of each user so comment events can be
pushed to whoever is online.
"""
from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionManager:
    """
    Active WebSocket connections keyed by user_id (string).
    A user may hold several connections at once (one per open tab).
    """

    def __init__(self) -> None:
        self._connections: dict[str, list[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, user_id: str) -> None:
        await websocket.accept()
        self._connections.setdefault(user_id, []).append(websocket)
        logger.info("WebSocket connected: user_id=%s", user_id)

    def disconnect(self, websocket: WebSocket, user_id: str) -> None:
        connections = self._connections.get(user_id)
        if connections and websocket in connections:
            connections.remove(websocket)
        if user_id in self._connections and not self._connections[user_id]:
            del self._connections[user_id]
        logger.info("WebSocket disconnected: user_id=%s", user_id)

    def is_connected(self, user_id: str) -> bool:
        return bool(self._connections.get(user_id))

    async def send_personal_message(
        self, user_id: str, data: dict[str, Any]
    ) -> int:
        """
        Send a JSON message to every connection of one user.
        Connections that fail are dropped. Returns the number of sockets reached.
        """
        connections = list(self._connections.get(user_id, []))
        if not connections:
            return 0
        message = json.dumps(data, default=str)
        delivered = 0
        for ws in connections:
            try:
                await ws.send_text(message)
                delivered += 1
            except Exception as exc:
                logger.warning(
                    "Dropping dead WebSocket for user_id=%s: %s", user_id, exc
                )
                self.disconnect(ws, user_id)
        return delivered


# Singleton instance shared across the application
ws_manager = ConnectionManager()
