"""
Comment Pydantic schemas.

CommentNode is the nested, viewer-specific view of a comment. It is frozen:
every change to a client tree produces new node objects along the changed
path only, so untouched branches can be shared between tree versions.
"""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Annotated

from pydantic import BaseModel, Field, StringConstraints, computed_field

from talesy.core.config import settings
from talesy.schemas.user import UserReadPublic

CommentContent = Annotated[
    str,
    StringConstraints(
        strip_whitespace=True,
        min_length=1,
        max_length=settings.COMMENT_MAX_LENGTH,
    ),
]


# ── Requests ──────────────────────────────────────────────────────────────────

class CommentCreate(BaseModel):
    content: CommentContent
    parent_id: uuid.UUID | None = None


class ReplyCreate(BaseModel):
    content: CommentContent


class CommentUpdate(BaseModel):
    content: CommentContent


# ── Tree view ─────────────────────────────────────────────────────────────────

class CommentNode(BaseModel):
    id: uuid.UUID
    subject_id: uuid.UUID
    parent_id: uuid.UUID | None = None
    author_id: uuid.UUID
    author: UserReadPublic | None = None
    content: str
    created_at: datetime
    updated_at: datetime | None = None
    like_count: int = Field(default=0, ge=0)
    liked_by_viewer: bool = False
    replies: tuple[CommentNode, ...] = ()

    model_config = {"frozen": True}

    @computed_field  # type: ignore[misc]
    @property
    def is_edited(self) -> bool:
        return self.updated_at is not None


class CommentTreeRead(BaseModel):
    subject_id: uuid.UUID
    total: int
    items: list[CommentNode]


# ── Mutation deltas ───────────────────────────────────────────────────────────

class CommentEditResult(BaseModel):
    id: uuid.UUID
    content: str
    updated_at: datetime


class CommentDeleteResult(BaseModel):
    removed_ids: list[uuid.UUID]


class LikeToggleResult(BaseModel):
    comment_id: uuid.UUID
    liked: bool
    like_count: int = Field(ge=0)
