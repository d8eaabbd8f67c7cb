"""
Comment routes nested under posts.
/api/v1/posts/{post_id}/comments

Annotations stay eager here: the rate-limit decorator wraps the endpoints,
and FastAPI must be able to resolve their parameter types at import time.
"""
import uuid

from fastapi import APIRouter, BackgroundTasks, Request, status
from slowapi import Limiter
from slowapi.util import get_remote_address

from talesy.core.config import settings
from talesy.core.dependencies import CurrentUser, DBSession, OptionalUser
from talesy.schemas.comment import (
    CommentCreate,
    CommentDeleteResult,
    CommentEditResult,
    CommentNode,
    CommentTreeRead,
    CommentUpdate,
    LikeToggleResult,
    ReplyCreate,
)
from talesy.services.comment_service import comment_service

router = APIRouter(prefix="/posts/{post_id}/comments", tags=["Comments"])

limiter = Limiter(key_func=get_remote_address)


@router.get(
    "",
    response_model=CommentTreeRead,
    summary="Get the comment tree of a post",
)
async def get_comment_tree(
    post_id: uuid.UUID,
    viewer: OptionalUser,
    db: DBSession,
) -> CommentTreeRead:
    return await comment_service.get_tree(db, subject_id=post_id, viewer=viewer)


@router.post(
    "",
    response_model=CommentNode,
    status_code=status.HTTP_201_CREATED,
    summary="Comment on a post, or reply when parent_id is set",
)
@limiter.limit(settings.RATE_LIMIT_COMMENT)
async def create_comment(
    request: Request,
    post_id: uuid.UUID,
    comment_in: CommentCreate,
    current_user: CurrentUser,
    db: DBSession,
    background_tasks: BackgroundTasks,
) -> CommentNode:
    return await comment_service.post_comment(
        db,
        subject_id=post_id,
        content=comment_in.content,
        parent_id=comment_in.parent_id,
        current_user=current_user,
        background_tasks=background_tasks,
    )


@router.post(
    "/{comment_id}/replies",
    response_model=CommentNode,
    status_code=status.HTTP_201_CREATED,
    summary="Reply to a comment",
)
@limiter.limit(settings.RATE_LIMIT_COMMENT)
async def create_reply(
    request: Request,
    post_id: uuid.UUID,
    comment_id: uuid.UUID,
    reply_in: ReplyCreate,
    current_user: CurrentUser,
    db: DBSession,
    background_tasks: BackgroundTasks,
) -> CommentNode:
    return await comment_service.post_comment(
        db,
        subject_id=post_id,
        content=reply_in.content,
        parent_id=comment_id,
        current_user=current_user,
        background_tasks=background_tasks,
    )


@router.patch(
    "/{comment_id}",
    response_model=CommentEditResult,
    summary="Edit a comment",
)
async def update_comment(
    post_id: uuid.UUID,
    comment_id: uuid.UUID,
    comment_in: CommentUpdate,
    current_user: CurrentUser,
    db: DBSession,
) -> CommentEditResult:
    return await comment_service.edit_comment(
        db,
        subject_id=post_id,
        comment_id=comment_id,
        content=comment_in.content,
        current_user=current_user,
    )


@router.delete(
    "/{comment_id}",
    response_model=CommentDeleteResult,
    summary="Delete a comment and all of its replies",
)
async def delete_comment(
    post_id: uuid.UUID,
    comment_id: uuid.UUID,
    current_user: CurrentUser,
    db: DBSession,
) -> CommentDeleteResult:
    return await comment_service.delete_comment(
        db,
        subject_id=post_id,
        comment_id=comment_id,
        current_user=current_user,
    )


@router.post(
    "/{comment_id}/like",
    response_model=LikeToggleResult,
    summary="Like or unlike a comment",
)
async def toggle_comment_like(
    post_id: uuid.UUID,
    comment_id: uuid.UUID,
    current_user: CurrentUser,
    db: DBSession,
    background_tasks: BackgroundTasks,
) -> LikeToggleResult:
    return await comment_service.toggle_comment_like(
        db,
        subject_id=post_id,
        comment_id=comment_id,
        current_user=current_user,
        background_tasks=background_tasks,
    )
