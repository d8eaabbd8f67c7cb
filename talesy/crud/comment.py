"""
Comment store.

Durable, flat storage of comments and like memberships. Every write runs
inside the caller's transaction (one per request, see get_db) so a cascading
delete or a like toggle is applied completely or not at all, and is retried
as a whole on transient write conflicts.
"""
from __future__ import annotations

import uuid

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased, selectinload

from talesy.core.config import settings
from talesy.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from talesy.crud.base import CRUDBase
from talesy.crud.post import crud_post
from talesy.db.base import utcnow
from talesy.db.session import run_with_conflict_retry
from talesy.models.comment import Comment, CommentLike


def _clean_content(content: str | None) -> str:
    text = (content or "").strip()
    if not text:
        raise ValidationError("Comment content cannot be empty")
    if len(text) > settings.COMMENT_MAX_LENGTH:
        raise ValidationError(
            f"Comment content cannot exceed {settings.COMMENT_MAX_LENGTH} characters"
        )
    return text


class CRUDComment(CRUDBase[Comment]):

    # ── Writes ────────────────────────────────────────────────────────────────

    async def create(
        self,
        db: AsyncSession,
        *,
        subject_id: uuid.UUID,
        author_id: uuid.UUID,
        content: str,
        parent_id: uuid.UUID | None = None,
    ) -> Comment:
        """
        Insert a top-level comment or a reply.
        The parent, when given, must be a comment on the same subject.
        """

        async def _create() -> Comment:
            text = _clean_content(content)
            if not await crud_post.exists(db, id=subject_id):
                raise NotFoundError("Post", str(subject_id))
            depth = 0
            if parent_id is not None:
                parent = await self.get(db, parent_id)
                if parent is None or parent.subject_id != subject_id:
                    raise ValidationError(
                        f"Parent comment '{parent_id}' does not exist on this post"
                    )
                depth = parent.depth + 1
                if depth > settings.COMMENT_MAX_DEPTH:
                    raise ValidationError(
                        f"Replies cannot be nested more than "
                        f"{settings.COMMENT_MAX_DEPTH} levels deep"
                    )

            comment = Comment(
                content=text,
                subject_id=subject_id,
                author_id=author_id,
                parent_id=parent_id,
                depth=depth,
            )
            db.add(comment)
            await db.flush()
            await crud_post.adjust_comment_count(db, post_id=subject_id, delta=1)
            await db.refresh(comment)
            return comment

        return await run_with_conflict_retry(db, _create, label="comment create")

    async def edit(
        self,
        db: AsyncSession,
        *,
        comment_id: uuid.UUID,
        by_user_id: uuid.UUID,
        new_content: str,
    ) -> Comment:
        """Replace the content of a comment. Only its author may do so."""

        async def _edit() -> Comment:
            comment = await self.get_for_update(db, comment_id)
            if comment is None:
                raise NotFoundError("Comment", str(comment_id))
            if comment.author_id != by_user_id:
                raise AuthorizationError("Only the comment author can edit this comment")
            comment.content = _clean_content(new_content)
            comment.updated_at = utcnow()
            await db.flush()
            await db.refresh(comment)
            return comment

        return await run_with_conflict_retry(db, _edit, label="comment edit")

    async def delete(
        self,
        db: AsyncSession,
        *,
        comment_id: uuid.UUID,
        by_user_id: uuid.UUID,
    ) -> set[uuid.UUID]:
        """
        Remove a comment and its whole reply subtree, likes included.

        The subtree rows are locked before anything is removed. Replies can
        no longer be attached under a locked row, and rows a concurrent
        delete already removed drop out of the set, so the ids returned are
        exactly the rows this call deleted.
        """

        async def _delete() -> set[uuid.UUID]:
            comment = await self.get_for_update(db, comment_id)
            if comment is None:
                raise NotFoundError("Comment", str(comment_id))
            if comment.author_id != by_user_id:
                raise AuthorizationError("Only the comment author can delete this comment")

            subject_id = comment.subject_id
            removed = await self._lock_subtree(db, comment_id)

            await db.execute(
                delete(CommentLike)
                .where(CommentLike.comment_id.in_(list(removed)))
                .execution_options(synchronize_session=False)
            )
            result = await db.execute(
                delete(Comment)
                .where(Comment.id.in_(list(removed)))
                .execution_options(synchronize_session=False)
            )
            await crud_post.adjust_comment_count(
                db, post_id=subject_id, delta=-result.rowcount
            )
            # Rows may be expired after a retry rollback; match on identity keys.
            for key, obj in list(db.identity_map.items()):
                if isinstance(obj, Comment) and key[1][0] in removed:
                    db.expunge(obj)
            return removed

        return await run_with_conflict_retry(db, _delete, label="comment delete")

    async def toggle_like(
        self,
        db: AsyncSession,
        *,
        comment_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> tuple[bool, int]:
        """
        Flip the (comment, user) like membership.
        Returns (liked, like_count) as committed by this transaction.
        """

        async def _toggle() -> tuple[bool, int]:
            # Row lock serialises concurrent toggles on the same comment.
            comment = await self.get_for_update(db, comment_id)
            if comment is None:
                raise NotFoundError("Comment", str(comment_id))

            result = await db.execute(
                select(CommentLike).where(
                    CommentLike.comment_id == comment_id,
                    CommentLike.user_id == user_id,
                )
            )
            existing = result.scalar_one_or_none()
            if existing is not None:
                await db.delete(existing)
                liked, delta = False, -1
            else:
                db.add(CommentLike(comment_id=comment_id, user_id=user_id))
                liked, delta = True, 1
            await db.flush()

            await db.execute(
                update(Comment)
                .where(Comment.id == comment_id)
                .values(like_count=Comment.like_count + delta)
                .execution_options(synchronize_session=False)
            )
            await db.refresh(comment)
            return liked, comment.like_count

        return await run_with_conflict_retry(db, _toggle, label="comment like toggle")

    # ── Reads ─────────────────────────────────────────────────────────────────

    async def subtree_ids(
        self, db: AsyncSession, comment_id: uuid.UUID
    ) -> set[uuid.UUID]:
        """Ids of a comment and all of its descendants."""
        subtree = (
            select(Comment.id)
            .where(Comment.id == comment_id)
            .cte(name="subtree", recursive=True)
        )
        child = aliased(Comment)
        subtree = subtree.union_all(
            select(child.id).where(child.parent_id == subtree.c.id)
        )
        result = await db.execute(select(subtree.c.id))
        return set(result.scalars().all())

    async def _lock_subtree(
        self, db: AsyncSession, comment_id: uuid.UUID
    ) -> set[uuid.UUID]:
        """
        Lock every row of a subtree and return its ids.
        Re-reads until the locked set matches the subtree, which covers
        replies committed or removed between the read and the lock.
        """
        ids = await self.subtree_ids(db, comment_id)
        while True:
            await db.execute(
                select(Comment.id).where(Comment.id.in_(list(ids))).with_for_update()
            )
            current = await self.subtree_ids(db, comment_id)
            if current == ids:
                return ids
            ids = current

    async def list_by_subject(
        self, db: AsyncSession, *, subject_id: uuid.UUID
    ) -> list[Comment]:
        """Every comment of a subject, authors loaded, in no particular order."""
        result = await db.execute(
            select(Comment)
            .options(selectinload(Comment.author))
            .where(Comment.subject_id == subject_id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def liked_ids(
        self,
        db: AsyncSession,
        *,
        subject_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> set[uuid.UUID]:
        """Ids of the subject's comments that the given user currently likes."""
        result = await db.execute(
            select(CommentLike.comment_id)
            .join(Comment, Comment.id == CommentLike.comment_id)
            .where(
                Comment.subject_id == subject_id,
                CommentLike.user_id == user_id,
            )
        )
        return set(result.scalars().all())

    async def get_with_author(
        self, db: AsyncSession, comment_id: uuid.UUID
    ) -> Comment | None:
        result = await db.execute(
            select(Comment)
            .options(selectinload(Comment.author))
            .where(Comment.id == comment_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()


crud_comment = CRUDComment(Comment)
