"""
Async HTTP client for the comment API.
Error responses are turned back into the domain exceptions of
talesy.core.exceptions, so callers can tell "not the author" (403) from
"no longer exists" (404).
"""
from __future__ import annotations

import uuid
from typing import Any

import httpx

from talesy.core.exceptions import error_from_response
from talesy.schemas.comment import (
    CommentDeleteResult,
    CommentEditResult,
    CommentNode,
    CommentTreeRead,
    LikeToggleResult,
)


class CommentApiClient:

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        token: str | None = None,
        api_prefix: str = "/api/v1",
    ) -> None:
        self._http = http
        self._token = token
        self._prefix = api_prefix.rstrip("/")

    def _comments_path(self, subject_id: uuid.UUID) -> str:
        return f"{self._prefix}/posts/{subject_id}/comments"

    async def _request(
        self, method: str, path: str, json: dict[str, Any] | None = None
    ) -> Any:
        headers = {"Authorization": f"Bearer {self._token}"} if self._token else {}
        response = await self._http.request(method, path, json=json, headers=headers)
        if response.is_error:
            try:
                body = response.json()
            except ValueError:
                body = {}
            if not isinstance(body, dict):
                body = {}
            raise error_from_response(response.status_code, body)
        return response.json()

    async def fetch_tree(self, subject_id: uuid.UUID) -> CommentTreeRead:
        data = await self._request("GET", self._comments_path(subject_id))
        return CommentTreeRead.model_validate(data)

    async def post_comment(
        self,
        subject_id: uuid.UUID,
        content: str,
        parent_id: uuid.UUID | None = None,
    ) -> CommentNode:
        payload: dict[str, Any] = {"content": content}
        if parent_id is not None:
            payload["parent_id"] = str(parent_id)
        data = await self._request("POST", self._comments_path(subject_id), json=payload)
        return CommentNode.model_validate(data)

    async def edit_comment(
        self, subject_id: uuid.UUID, comment_id: uuid.UUID, content: str
    ) -> CommentEditResult:
        data = await self._request(
            "PATCH",
            f"{self._comments_path(subject_id)}/{comment_id}",
            json={"content": content},
        )
        return CommentEditResult.model_validate(data)

    async def delete_comment(
        self, subject_id: uuid.UUID, comment_id: uuid.UUID
    ) -> CommentDeleteResult:
        data = await self._request(
            "DELETE", f"{self._comments_path(subject_id)}/{comment_id}"
        )
        return CommentDeleteResult.model_validate(data)

    async def toggle_like(
        self, subject_id: uuid.UUID, comment_id: uuid.UUID
    ) -> LikeToggleResult:
        data = await self._request(
            "POST", f"{self._comments_path(subject_id)}/{comment_id}/like"
        )
        return LikeToggleResult.model_validate(data)
