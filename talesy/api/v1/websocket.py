"""
WebSocket endpoint for comment notifications.
Clients connect with a valid JWT access token as a query parameter.
Heartbeat pings every 30 seconds keep connections alive.
"""
from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from jose import JWTError

from talesy.core.security import decode_access_token
from talesy.services.websocket_service import ws_manager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["WebSocket"])

HEARTBEAT_INTERVAL = 30  # seconds


@router.websocket("/ws/{user_id}")
async def websocket_endpoint(websocket: WebSocket, user_id: str) -> None:
    """
    Real-time comment notifications.

    Query parameters:
        token: A valid JWT access token whose subject is user_id.

    The server sends:
        - {"type": "connected", "user_id": "..."} once accepted.
        - {"type": "ping"} every 30 seconds.
        - {"type": "notification", "data": {...}} for comment_created and
          comment_liked events.
    """
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=4001, reason="Missing authentication token")
        return

    try:
        token_user_id = decode_access_token(token).get("sub")
    except JWTError:
        await websocket.close(code=4001, reason="Invalid or expired token")
        return

    if token_user_id != user_id:
        await websocket.close(code=4003, reason="Token user_id mismatch")
        return

    await ws_manager.connect(websocket, user_id)
    heartbeat_task = asyncio.create_task(_heartbeat(websocket))
    try:
        await websocket.send_json({"type": "connected", "user_id": user_id})
        while True:
            data = await websocket.receive_json()
            if data.get("type") == "pong":
                logger.debug("Received pong from user_id=%s", user_id)
    except WebSocketDisconnect:
        logger.info("WebSocket client disconnected: user_id=%s", user_id)
    finally:
        heartbeat_task.cancel()
        ws_manager.disconnect(websocket, user_id)


async def _heartbeat(websocket: WebSocket) -> None:
    while True:
        await asyncio.sleep(HEARTBEAT_INTERVAL)
        try:
            await websocket.send_json({"type": "ping"})
        except Exception:
            break
