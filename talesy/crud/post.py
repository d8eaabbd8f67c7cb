"""
Post lookups and the denormalised comment counter.
"""
from __future__ import annotations

import uuid

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from talesy.crud.base import CRUDBase
from talesy.models.post import Post


class CRUDPost(CRUDBase[Post]):

    async def adjust_comment_count(
        self, db: AsyncSession, *, post_id: uuid.UUID, delta: int
    ) -> None:
        """Shift comment_count by delta inside the caller's transaction."""
        await db.execute(
            update(Post)
            .where(Post.id == post_id)
            .values(comment_count=Post.comment_count + delta)
            .execution_options(synchronize_session=False)
        )


crud_post = CRUDPost(Post)
