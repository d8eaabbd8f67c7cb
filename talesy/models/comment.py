"""
Comment and CommentLike ORM models.

Comments are stored flat as an adjacency list: each row points at its parent
through parent_id (NULL for top-level). The nested tree is never persisted;
it is rebuilt on read by the tree assembler. parent_id is written once at
creation, so a comment can never become its own ancestor.
"""
from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from talesy.db.base import Base, utcnow


class Comment(Base):
    __tablename__ = "comments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    subject_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("posts.id", ondelete="CASCADE"),
        nullable=False,
    )
    author_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    parent_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("comments.id", ondelete="CASCADE"),
        nullable=True,
    )
    # 0 for top-level comments, parent depth + 1 for replies.
    depth: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    # Only set by an edit; its presence is what marks a comment as edited.
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    like_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )

    # ── Relationships ─────────────────────────────────────────────────────────
    author: Mapped["User"] = relationship(  # type: ignore[name-defined]  # noqa: F821
        "User",
        lazy="raise",
    )

    __table_args__ = (
        Index("ix_comments_subject_id_parent_id", "subject_id", "parent_id"),
        Index("ix_comments_author_id", "author_id"),
        Index("ix_comments_parent_id", "parent_id"),
        CheckConstraint("like_count >= 0", name="like_count_non_negative"),
        CheckConstraint("depth >= 0", name="depth_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<Comment id={self.id} subject_id={self.subject_id} parent_id={self.parent_id}>"


class CommentLike(Base):
    """Like membership: one row per (comment, user); existence means liked."""

    __tablename__ = "comment_likes"

    comment_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("comments.id", ondelete="CASCADE"),
        primary_key=True,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    __table_args__ = (
        Index("ix_comment_likes_user_id", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<CommentLike comment_id={self.comment_id} user_id={self.user_id}>"
