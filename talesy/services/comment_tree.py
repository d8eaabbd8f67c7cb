"""
Comment tree assembly.

Turns the flat adjacency-list rows of one subject into the nested,
viewer-specific CommentNode forest. Pure and deterministic: the same rows
and liked-id set always produce the same tree, whatever order the store
returned them in.
"""
from __future__ import annotations

import uuid
from collections import defaultdict
from collections.abc import Iterable, Iterator
from typing import Any

from talesy.db.base import as_utc
from talesy.schemas.comment import CommentNode
from talesy.schemas.user import UserReadPublic


def _recency_key(record: Any) -> tuple:
    return (as_utc(record.created_at), str(record.id))


def _author_of(record: Any) -> UserReadPublic | None:
    # Only an already-loaded author is used; never trigger a lazy load here.
    author = vars(record).get("author")
    if author is None:
        return None
    return UserReadPublic.model_validate(author)


def assemble_tree(
    comments: Iterable[Any],
    liked_ids: Iterable[uuid.UUID] = frozenset(),
) -> list[CommentNode]:
    """
    Build the nested comment forest.

    Records are grouped by parent_id and every level is ordered newest
    first. A record whose parent is not among the records is unreachable
    from the roots and is left out, so the result never contains orphans.
    """
    records = list(comments)
    liked = frozenset(liked_ids)
    children: dict[uuid.UUID | None, list[Any]] = defaultdict(list)
    for record in records:
        children[record.parent_id].append(record)

    def build(parent_id: uuid.UUID | None) -> tuple[CommentNode, ...]:
        level = sorted(children.get(parent_id, ()), key=_recency_key, reverse=True)
        return tuple(
            CommentNode(
                id=record.id,
                subject_id=record.subject_id,
                parent_id=record.parent_id,
                author_id=record.author_id,
                author=_author_of(record),
                content=record.content,
                created_at=record.created_at,
                updated_at=record.updated_at,
                like_count=record.like_count,
                liked_by_viewer=record.id in liked,
                replies=build(record.id),
            )
            for record in level
        )

    return list(build(None))


def new_node(record: Any, *, author: Any = None) -> CommentNode:
    """A freshly created comment as a leaf node: no replies, no likes."""
    return CommentNode(
        id=record.id,
        subject_id=record.subject_id,
        parent_id=record.parent_id,
        author_id=record.author_id,
        author=UserReadPublic.model_validate(author) if author is not None else None,
        content=record.content,
        created_at=record.created_at,
        updated_at=None,
        like_count=0,
        liked_by_viewer=False,
        replies=(),
    )


def iter_nodes(nodes: Iterable[CommentNode]) -> Iterator[CommentNode]:
    """Depth-first, pre-order walk over a forest."""
    stack = list(reversed(tuple(nodes)))
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.replies))


def count_nodes(nodes: Iterable[CommentNode]) -> int:
    return sum(1 for _ in iter_nodes(nodes))
