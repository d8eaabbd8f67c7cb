"""
Aggregates all v1 API routers into a single APIRouter.
"""
from __future__ import annotations

from fastapi import APIRouter

from talesy.api.v1 import comments, websocket

api_router = APIRouter()

api_router.include_router(comments.router)
api_router.include_router(websocket.router)
