"""
Comment event notifications.
Fire-and-forget: events are scheduled after the mutation has been handled
and pushed to connected users over WebSocket. A delivery failure is logged
and never reaches the mutation that caused it.
"""
from __future__ import annotations

import logging
import uuid
from typing import Any

from talesy.db.base import utcnow
from talesy.services.websocket_service import ws_manager

logger = logging.getLogger(__name__)

EXCERPT_LENGTH = 200


class NotificationService:

    async def notify_user(
        self,
        *,
        user_id: uuid.UUID,
        type: str,
        message: str,
        data: dict[str, Any],
    ) -> bool:
        """Push one event to a user if they are online. Returns True if delivered."""
        if not ws_manager.is_connected(str(user_id)):
            logger.debug("Skipping %s notification, user_id=%s offline", type, user_id)
            return False

        payload: dict[str, Any] = {
            "type": "notification",
            "data": {
                "notification_type": type,
                "message": message,
                "created_at": utcnow().isoformat(),
                **data,
            },
        }
        try:
            delivered = await ws_manager.send_personal_message(str(user_id), payload)
        except Exception:
            logger.exception(
                "Failed to deliver %s notification to user_id=%s", type, user_id
            )
            return False
        return delivered > 0

    async def notify_comment_created(
        self,
        *,
        post_author_id: uuid.UUID,
        post_id: uuid.UUID,
        post_title: str,
        comment_id: uuid.UUID,
        commenter_name: str,
        content: str,
    ) -> bool:
        return await self.notify_user(
            user_id=post_author_id,
            type="comment_created",
            message=f"{commenter_name} commented on your story: {post_title!r}",
            data={
                "post_id": str(post_id),
                "comment_id": str(comment_id),
                "excerpt": content[:EXCERPT_LENGTH],
            },
        )

    async def notify_comment_liked(
        self,
        *,
        comment_author_id: uuid.UUID,
        post_id: uuid.UUID,
        comment_id: uuid.UUID,
        liker_name: str,
    ) -> bool:
        return await self.notify_user(
            user_id=comment_author_id,
            type="comment_liked",
            message=f"{liker_name} liked your comment",
            data={"post_id": str(post_id), "comment_id": str(comment_id)},
        )


notification_service = NotificationService()
