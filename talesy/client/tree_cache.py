"""
Client-side comment tree cache.

Holds an immutable CommentNode forest for one post and keeps it in step with
the server without re-fetching. Every mutation goes through apply_at_node,
which rebuilds only the path from the root to the target node; all other
branches are the very same objects as in the previous version of the tree.

Mutations are optimistic: the local tree is patched first, the API call is
awaited, and then either the server's answer is applied over the guess or
the exact inverse patch restores the pre-action state before the error is
re-raised.
"""
from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from typing import Protocol

from talesy.core.exceptions import AuthenticationError, NotFoundError
from talesy.db.base import utcnow
from talesy.schemas.comment import (
    CommentDeleteResult,
    CommentEditResult,
    CommentNode,
    CommentTreeRead,
    LikeToggleResult,
)

logger = logging.getLogger(__name__)


class _Remove:
    def __repr__(self) -> str:
        return "REMOVE"


REMOVE = _Remove()

Forest = tuple[CommentNode, ...]
Transform = Callable[[CommentNode], "CommentNode | _Remove"]


class CommentApi(Protocol):
    async def fetch_tree(self, subject_id: uuid.UUID) -> CommentTreeRead: ...

    async def post_comment(
        self, subject_id: uuid.UUID, content: str, parent_id: uuid.UUID | None = None
    ) -> CommentNode: ...

    async def edit_comment(
        self, subject_id: uuid.UUID, comment_id: uuid.UUID, content: str
    ) -> CommentEditResult: ...

    async def delete_comment(
        self, subject_id: uuid.UUID, comment_id: uuid.UUID
    ) -> CommentDeleteResult: ...

    async def toggle_like(
        self, subject_id: uuid.UUID, comment_id: uuid.UUID
    ) -> LikeToggleResult: ...


# ── Pure tree patching ────────────────────────────────────────────────────────

def apply_at_node(nodes: Forest, target_id: uuid.UUID, transform: Transform) -> Forest:
    """
    Replace the node with id target_id by transform(node), or drop it with
    its subtree when the transform returns REMOVE.

    Returns `nodes` itself when the target is not in the forest. Otherwise
    only the ancestors of the target are copied.
    """
    for index, node in enumerate(nodes):
        if node.id == target_id:
            replacement = transform(node)
            if replacement is REMOVE:
                return nodes[:index] + nodes[index + 1:]
            return nodes[:index] + (replacement,) + nodes[index + 1:]  # type: ignore[operator]
        if node.replies:
            replies = apply_at_node(node.replies, target_id, transform)
            if replies is not node.replies:
                patched = node.model_copy(update={"replies": replies})
                return nodes[:index] + (patched,) + nodes[index + 1:]
    return nodes


def locate(
    nodes: Forest, target_id: uuid.UUID, parent_id: uuid.UUID | None = None
) -> tuple[uuid.UUID | None, int, CommentNode] | None:
    """(parent id, position among siblings, node) of target_id, or None."""
    for index, node in enumerate(nodes):
        if node.id == target_id:
            return parent_id, index, node
        found = locate(node.replies, target_id, node.id)
        if found is not None:
            return found
    return None


def _insert(siblings: Forest, index: int, node: CommentNode) -> Forest:
    index = min(index, len(siblings))
    return siblings[:index] + (node,) + siblings[index:]


def add_reply(reply: CommentNode) -> Transform:
    # Newest first, matching the server's ordering.
    return lambda node: node.model_copy(update={"replies": (reply,) + node.replies})


def set_fields(**fields: object) -> Transform:
    return lambda node: node.model_copy(update=fields)


def replace_with(new: CommentNode) -> Transform:
    return lambda node: new


def remove(node: CommentNode) -> _Remove:
    return REMOVE


# ── Cache ─────────────────────────────────────────────────────────────────────

class CommentTreeCache:
    """Optimistically updated local copy of one post's comment tree."""

    def __init__(
        self,
        api: CommentApi,
        subject_id: uuid.UUID,
        *,
        viewer_id: uuid.UUID | None = None,
        roots: Forest = (),
    ) -> None:
        self._api = api
        self.subject_id = subject_id
        self.viewer_id = viewer_id
        self._roots: Forest = tuple(roots)
        self._pending: set[uuid.UUID] = set()

    @property
    def roots(self) -> Forest:
        return self._roots

    def find(self, comment_id: uuid.UUID) -> CommentNode | None:
        found = locate(self._roots, comment_id)
        return found[2] if found is not None else None

    def is_pending(self, comment_id: uuid.UUID) -> bool:
        return comment_id in self._pending

    def apply(self, target_id: uuid.UUID, transform: Transform) -> bool:
        """Patch the tree in place of the cache. Returns False if target_id is absent."""
        patched = apply_at_node(self._roots, target_id, transform)
        changed = patched is not self._roots
        self._roots = patched
        return changed

    async def load(self) -> CommentTreeRead:
        """Full fetch; replaces whatever the cache held."""
        tree = await self._api.fetch_tree(self.subject_id)
        self._roots = tuple(tree.items)
        self._pending.clear()
        return tree

    # ── Optimistic mutations ──────────────────────────────────────────────────

    async def post(
        self, content: str, parent_id: uuid.UUID | None = None
    ) -> CommentNode:
        """Add a comment (or a reply to parent_id) before the server confirms it."""
        if self.viewer_id is None:
            raise AuthenticationError("You must be signed in to do that")

        placeholder = CommentNode(
            id=uuid.uuid4(),
            subject_id=self.subject_id,
            parent_id=parent_id,
            author_id=self.viewer_id,
            content=content.strip(),
            created_at=utcnow(),
        )
        self._place(placeholder)
        self._pending.add(placeholder.id)
        try:
            created = await self._api.post_comment(self.subject_id, content, parent_id)
        except Exception as exc:
            self._rollback("post", placeholder.id, exc)
            self.apply(placeholder.id, remove)
            raise
        finally:
            self._pending.discard(placeholder.id)

        if not self.apply(placeholder.id, replace_with(created)):
            self._place(created)
        return created

    async def edit(self, comment_id: uuid.UUID, content: str) -> CommentEditResult:
        node = self._require(comment_id)
        previous = {"content": node.content, "updated_at": node.updated_at}

        self.apply(comment_id, set_fields(content=content.strip(), updated_at=utcnow()))
        try:
            result = await self._api.edit_comment(self.subject_id, comment_id, content)
        except Exception as exc:
            self._rollback("edit", comment_id, exc)
            self.apply(comment_id, set_fields(**previous))
            raise

        self.apply(
            comment_id, set_fields(content=result.content, updated_at=result.updated_at)
        )
        return result

    async def delete(self, comment_id: uuid.UUID) -> CommentDeleteResult:
        found = locate(self._roots, comment_id)
        if found is None:
            raise NotFoundError("Comment", str(comment_id))
        parent_id, index, node = found

        self.apply(comment_id, remove)
        try:
            result = await self._api.delete_comment(self.subject_id, comment_id)
        except Exception as exc:
            self._rollback("delete", comment_id, exc)
            self._restore(parent_id, index, node)
            raise

        for removed_id in result.removed_ids:
            self.apply(removed_id, remove)
        return result

    async def toggle_like(self, comment_id: uuid.UUID) -> LikeToggleResult:
        node = self._require(comment_id)
        previous = {"liked_by_viewer": node.liked_by_viewer, "like_count": node.like_count}
        liked = not node.liked_by_viewer
        guess = max(0, node.like_count + (1 if liked else -1))

        self.apply(comment_id, set_fields(liked_by_viewer=liked, like_count=guess))
        try:
            result = await self._api.toggle_like(self.subject_id, comment_id)
        except Exception as exc:
            self._rollback("like toggle", comment_id, exc)
            self.apply(comment_id, set_fields(**previous))
            raise

        self.apply(
            comment_id,
            set_fields(liked_by_viewer=result.liked, like_count=result.like_count),
        )
        return result

    # ── Private helpers ───────────────────────────────────────────────────────

    def _require(self, comment_id: uuid.UUID) -> CommentNode:
        node = self.find(comment_id)
        if node is None:
            raise NotFoundError("Comment", str(comment_id))
        return node

    def _place(self, node: CommentNode) -> None:
        if node.parent_id is None:
            self._roots = (node,) + self._roots
        else:
            self.apply(node.parent_id, add_reply(node))

    def _restore(
        self, parent_id: uuid.UUID | None, index: int, node: CommentNode
    ) -> None:
        if parent_id is None:
            self._roots = _insert(self._roots, index, node)
        else:
            self.apply(
                parent_id,
                lambda parent: parent.model_copy(
                    update={"replies": _insert(parent.replies, index, node)}
                ),
            )

    @staticmethod
    def _rollback(action: str, comment_id: uuid.UUID, exc: Exception) -> None:
        logger.warning(
            "Rolling back optimistic %s on comment %s: %s", action, comment_id, exc
        )
