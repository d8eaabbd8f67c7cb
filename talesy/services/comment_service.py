"""
Comment mutation service.

Authenticated entry points over the comment store. Each method checks the
caller, delegates to the store and returns only the delta a client needs to
patch its local tree. Notifications are handed to BackgroundTasks so they
run after the response and can never undo a mutation.
"""
from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import BackgroundTasks
from sqlalchemy.ext.asyncio import AsyncSession

from talesy.core.exceptions import AuthenticationError, NotFoundError
from talesy.crud.comment import crud_comment
from talesy.crud.post import crud_post
from talesy.models.comment import Comment
from talesy.models.user import User
from talesy.schemas.comment import (
    CommentDeleteResult,
    CommentEditResult,
    CommentNode,
    CommentTreeRead,
    LikeToggleResult,
)
from talesy.schemas.user import UserReadPublic
from talesy.services.comment_tree import assemble_tree, count_nodes, new_node
from talesy.services.notification_service import notification_service

logger = logging.getLogger(__name__)


class CommentService:

    async def get_tree(
        self,
        db: AsyncSession,
        *,
        subject_id: uuid.UUID,
        viewer: User | None = None,
    ) -> CommentTreeRead:
        """Assemble the full comment tree of a post for one viewer (or anonymous)."""
        if not await crud_post.exists(db, id=subject_id):
            raise NotFoundError("Post", str(subject_id))

        records = await crud_comment.list_by_subject(db, subject_id=subject_id)
        liked: set[uuid.UUID] = set()
        if viewer is not None:
            liked = await crud_comment.liked_ids(
                db, subject_id=subject_id, user_id=viewer.id
            )
        items = assemble_tree(records, liked)
        return CommentTreeRead(subject_id=subject_id, total=count_nodes(items), items=items)

    async def post_comment(
        self,
        db: AsyncSession,
        *,
        subject_id: uuid.UUID,
        content: str,
        current_user: User | None,
        parent_id: uuid.UUID | None = None,
        background_tasks: BackgroundTasks | None = None,
    ) -> CommentNode:
        """Create a top-level comment, or a reply when parent_id is given."""
        caller = self._caller(current_user)
        comment = await crud_comment.create(
            db,
            subject_id=subject_id,
            author_id=caller.id,
            content=content,
            parent_id=parent_id,
        )
        logger.info(
            "Comment created: id=%s subject_id=%s parent_id=%s author_id=%s",
            comment.id,
            subject_id,
            parent_id,
            caller.id,
        )

        post = await crud_post.get(db, subject_id)
        if post is not None and post.author_id != caller.id:
            await self._dispatch(
                background_tasks,
                notification_service.notify_comment_created,
                post_author_id=post.author_id,
                post_id=post.id,
                post_title=post.title,
                comment_id=comment.id,
                commenter_name=caller.display_name or caller.username,
                content=comment.content,
            )

        return new_node(comment, author=caller)

    async def edit_comment(
        self,
        db: AsyncSession,
        *,
        subject_id: uuid.UUID,
        comment_id: uuid.UUID,
        content: str,
        current_user: User | None,
    ) -> CommentEditResult:
        caller = self._caller(current_user)
        await self._get_on_subject(db, subject_id=subject_id, comment_id=comment_id)

        comment = await crud_comment.edit(
            db, comment_id=comment_id, by_user_id=caller.id, new_content=content
        )
        logger.info("Comment edited: id=%s author_id=%s", comment_id, caller.id)
        return CommentEditResult(
            id=comment.id,
            content=comment.content,
            updated_at=comment.updated_at,  # type: ignore[arg-type]
        )

    async def delete_comment(
        self,
        db: AsyncSession,
        *,
        subject_id: uuid.UUID,
        comment_id: uuid.UUID,
        current_user: User | None,
    ) -> CommentDeleteResult:
        """Delete a comment with its whole subtree; reports every removed id."""
        caller = self._caller(current_user)
        await self._get_on_subject(db, subject_id=subject_id, comment_id=comment_id)

        removed = await crud_comment.delete(db, comment_id=comment_id, by_user_id=caller.id)
        logger.info(
            "Comment deleted: id=%s removed=%d author_id=%s",
            comment_id,
            len(removed),
            caller.id,
        )
        return CommentDeleteResult(removed_ids=sorted(removed, key=str))

    async def toggle_comment_like(
        self,
        db: AsyncSession,
        *,
        subject_id: uuid.UUID,
        comment_id: uuid.UUID,
        current_user: User | None,
        background_tasks: BackgroundTasks | None = None,
    ) -> LikeToggleResult:
        caller = self._caller(current_user)
        comment = await self._get_on_subject(
            db, subject_id=subject_id, comment_id=comment_id
        )
        author_id = comment.author_id

        liked, like_count = await crud_comment.toggle_like(
            db, comment_id=comment_id, user_id=caller.id
        )
        logger.info(
            "Comment like toggled: id=%s user_id=%s liked=%s like_count=%d",
            comment_id,
            caller.id,
            liked,
            like_count,
        )

        if liked and author_id != caller.id:
            await self._dispatch(
                background_tasks,
                notification_service.notify_comment_liked,
                comment_author_id=author_id,
                post_id=subject_id,
                comment_id=comment_id,
                liker_name=caller.display_name or caller.username,
            )

        return LikeToggleResult(comment_id=comment_id, liked=liked, like_count=like_count)

    # ── Private helpers ───────────────────────────────────────────────────────

    @staticmethod
    def _caller(current_user: User | None) -> UserReadPublic:
        """
        Detached copy of the signed-in user. A write-conflict retry rolls
        the session back and expires the ORM user, so only this copy is
        read once a store call has started.
        """
        if current_user is None:
            raise AuthenticationError("You must be signed in to do that")
        return UserReadPublic.model_validate(current_user)

    async def _get_on_subject(
        self,
        db: AsyncSession,
        *,
        subject_id: uuid.UUID,
        comment_id: uuid.UUID,
    ) -> Comment:
        comment = await crud_comment.get(db, comment_id)
        if comment is None or comment.subject_id != subject_id:
            raise NotFoundError("Comment", str(comment_id))
        return comment

    @staticmethod
    async def _dispatch(
        background_tasks: BackgroundTasks | None,
        func: Callable[..., Awaitable[Any]],
        **kwargs: Any,
    ) -> None:
        if background_tasks is not None:
            background_tasks.add_task(func, **kwargs)
        else:
            await func(**kwargs)


comment_service = CommentService()
