"""
User Pydantic schemas.
"""
from __future__ import annotations

import uuid

from pydantic import BaseModel


class UserReadPublic(BaseModel):
    """Minimal public profile, safe to embed in comment responses."""

    id: uuid.UUID
    username: str
    display_name: str | None = None
    avatar_url: str | None = None

    model_config = {"from_attributes": True, "frozen": True}
