"""
Client tree cache tests.
Covers: structural sharing of apply_at_node, optimistic mutations with
confirmation and exact rollback, and the HTTP client against the real app.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient

from talesy.client.api import CommentApiClient
from talesy.client.tree_cache import (
    REMOVE,
    CommentTreeCache,
    add_reply,
    apply_at_node,
    locate,
    remove,
    set_fields,
)
from talesy.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
    TalesyError,
    ValidationError,
    WriteConflictError,
)
from talesy.core.security import create_access_token
from talesy.models.post import Post
from talesy.models.user import User
from talesy.schemas.comment import (
    CommentDeleteResult,
    CommentEditResult,
    CommentNode,
    CommentTreeRead,
    LikeToggleResult,
)

SUBJECT = uuid.uuid4()
VIEWER = uuid.uuid4()
T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def node(minute: int = 0, *replies: CommentNode, parent_id=None, **fields) -> CommentNode:
    node_id = fields.pop("id", None) or uuid.uuid4()
    return CommentNode(
        id=node_id,
        subject_id=SUBJECT,
        parent_id=parent_id,
        author_id=fields.pop("author_id", VIEWER),
        content=fields.pop("content", f"minute {minute}"),
        created_at=T0 + timedelta(minutes=minute),
        replies=tuple(
            r.model_copy(update={"parent_id": node_id}) for r in replies
        ),
        **fields,
    )


def token_for(user: User) -> str:
    return create_access_token(str(user.id))


class StubApi:
    """In-memory CommentApi; records what the cache saw while a call was in flight."""

    def __init__(self, fail_with: Exception | None = None) -> None:
        self.fail_with = fail_with
        self.cache: CommentTreeCache | None = None
        self.seen: list[tuple[CommentNode, ...]] = []
        self.tree: CommentTreeRead | None = None
        self.created: CommentNode | None = None
        self.removed_ids: list[uuid.UUID] = []
        self.like_count: int | None = None

    async def _call(self) -> None:
        if self.cache is not None:
            self.seen.append(self.cache.roots)
        if self.fail_with is not None:
            raise self.fail_with

    async def fetch_tree(self, subject_id):
        await self._call()
        return self.tree

    async def post_comment(self, subject_id, content, parent_id=None):
        await self._call()
        self.created = node(
            30, parent_id=parent_id, content=content.strip(), id=uuid.uuid4()
        )
        return self.created

    async def edit_comment(self, subject_id, comment_id, content):
        await self._call()
        return CommentEditResult(
            id=comment_id, content=content.strip(), updated_at=T0 + timedelta(hours=1)
        )

    async def delete_comment(self, subject_id, comment_id):
        await self._call()
        return CommentDeleteResult(removed_ids=self.removed_ids or [comment_id])

    async def toggle_like(self, subject_id, comment_id):
        await self._call()
        assert self.cache is not None
        current = self.cache.find(comment_id)
        count = self.like_count if self.like_count is not None else current.like_count
        return LikeToggleResult(
            comment_id=comment_id, liked=current.liked_by_viewer, like_count=count
        )


def make_cache(roots, fail_with: Exception | None = None, viewer_id=VIEWER):
    api = StubApi(fail_with)
    cache = CommentTreeCache(api, SUBJECT, viewer_id=viewer_id, roots=roots)
    api.cache = cache
    return api, cache


class TestApplyAtNode:
    def test_missing_target_returns_same_forest(self) -> None:
        forest = (node(0, node(1)), node(2))
        assert apply_at_node(forest, uuid.uuid4(), set_fields(content="x")) is forest

    def test_only_ancestors_are_copied(self) -> None:
        leaf = node(3)
        branch = node(1, node(2, leaf))
        untouched = node(4, node(5))
        forest = (untouched, branch)
        target = branch.replies[0].replies[0]

        patched = apply_at_node(forest, target.id, set_fields(content="patched"))

        assert patched is not forest
        assert patched[0] is untouched
        assert patched[1] is not branch
        assert patched[1].replies[0] is not branch.replies[0]
        assert patched[1].replies[0].replies[0].content == "patched"
        assert branch.replies[0].replies[0].content == "minute 3"

    def test_siblings_of_target_are_shared(self) -> None:
        a, b = node(1), node(2)
        root = node(0, a, b)
        shared_b = root.replies[1]
        patched = apply_at_node((root,), root.replies[0].id, set_fields(content="a'"))
        assert patched[0].replies[1] is shared_b

    def test_remove_drops_subtree(self) -> None:
        root = node(0, node(1, node(2)), node(3))
        doomed = root.replies[0]
        patched = apply_at_node((root,), doomed.id, remove)
        assert [r.id for r in patched[0].replies] == [root.replies[1].id]
        assert locate(patched, doomed.replies[0].id) is None

    def test_remove_sentinel(self) -> None:
        top = node(0)
        assert apply_at_node((top,), top.id, lambda n: REMOVE) == ()

    def test_add_reply_prepends(self) -> None:
        root = node(0, node(1))
        reply = node(9, parent_id=root.id)
        patched = apply_at_node((root,), root.id, add_reply(reply))
        assert patched[0].replies[0] is reply
        assert len(patched[0].replies) == 2

    def test_locate(self) -> None:
        root = node(0, node(1), node(2))
        second = root.replies[1]
        assert locate((root,), second.id) == (root.id, 1, second)
        assert locate((root,), root.id) == (None, 0, root)

    def test_deep_chain(self) -> None:
        chain = node(200)
        for minute in range(199, -1, -1):
            chain = node(minute, chain)
        deepest = chain
        while deepest.replies:
            deepest = deepest.replies[0]

        parent_id, index, found = locate((chain,), deepest.id)
        assert (index, found) == (0, deepest)
        assert parent_id == deepest.parent_id

        patched = apply_at_node((chain,), deepest.id, set_fields(content="bottom"))
        assert locate(patched, deepest.id)[2].content == "bottom"
        assert apply_at_node(patched, deepest.id, remove)[0].replies


@pytest.mark.asyncio
class TestOptimisticLike:
    async def test_like_applied_before_server_answers(self) -> None:
        target = node(0)
        api, cache = make_cache((target,))
        api.like_count = 1

        result = await cache.toggle_like(target.id)

        assert api.seen[0][0].liked_by_viewer is True
        assert api.seen[0][0].like_count == 1
        assert result.liked is True
        assert cache.find(target.id).like_count == 1

    async def test_server_count_wins_over_guess(self) -> None:
        target = node(0, like_count=4)
        api, cache = make_cache((target,))
        api.like_count = 7
        await cache.toggle_like(target.id)
        assert cache.find(target.id).like_count == 7
        assert cache.find(target.id).liked_by_viewer is True

    async def test_failed_like_rolls_back(self) -> None:
        target = node(0)
        before = (target,)
        api, cache = make_cache(before, fail_with=WriteConflictError())

        with pytest.raises(WriteConflictError):
            await cache.toggle_like(target.id)

        assert api.seen[0][0].like_count == 1
        restored = cache.find(target.id)
        assert restored.like_count == 0
        assert restored.liked_by_viewer is False
        assert cache.roots == before

    async def test_failed_unlike_rolls_back(self) -> None:
        target = node(0, like_count=3, liked_by_viewer=True)
        api, cache = make_cache((target,), fail_with=NotFoundError("Comment"))

        with pytest.raises(NotFoundError):
            await cache.toggle_like(target.id)

        assert api.seen[0][0].like_count == 2
        assert cache.find(target.id) == target

    async def test_unknown_comment(self) -> None:
        _, cache = make_cache((node(0),))
        with pytest.raises(NotFoundError):
            await cache.toggle_like(uuid.uuid4())


@pytest.mark.asyncio
class TestOptimisticEdit:
    async def test_edit_confirmed(self) -> None:
        target = node(0, content="Frist")
        api, cache = make_cache((target,))

        result = await cache.edit(target.id, "First")

        assert api.seen[0][0].content == "First"
        assert api.seen[0][0].is_edited is True
        assert cache.find(target.id).updated_at == result.updated_at

    async def test_failed_edit_restores_content(self) -> None:
        target = node(0, content="Mine")
        api, cache = make_cache((target,), fail_with=AuthorizationError())

        with pytest.raises(AuthorizationError):
            await cache.edit(target.id, "Not yours")

        assert api.seen[0][0].content == "Not yours"
        assert cache.find(target.id) == target
        assert cache.find(target.id).is_edited is False


@pytest.mark.asyncio
class TestOptimisticDelete:
    async def test_delete_confirmed_removes_subtree(self) -> None:
        root = node(0, node(1, node(2)))
        child = root.replies[0]
        api, cache = make_cache((root,))
        api.removed_ids = [child.id, child.replies[0].id]

        await cache.delete(child.id)

        assert api.seen[0][0].replies == ()
        assert cache.find(child.id) is None
        assert cache.find(child.replies[0].id) is None
        assert cache.find(root.id).replies == ()

    async def test_failed_delete_reinserts_at_original_position(self) -> None:
        root = node(0, node(3), node(2), node(1))
        middle = root.replies[1]
        before = (root,)
        api, cache = make_cache(before, fail_with=WriteConflictError())

        with pytest.raises(WriteConflictError):
            await cache.delete(middle.id)

        assert len(api.seen[0][0].replies) == 2
        assert cache.roots == before
        assert cache.find(root.id).replies[1] is middle

    async def test_failed_root_delete_reinserts_root(self) -> None:
        first, second, third = node(3), node(2), node(1)
        api, cache = make_cache((first, second, third), fail_with=AuthorizationError())

        with pytest.raises(AuthorizationError):
            await cache.delete(second.id)

        assert cache.roots == (first, second, third)

    async def test_delete_unknown(self) -> None:
        _, cache = make_cache(())
        with pytest.raises(NotFoundError):
            await cache.delete(uuid.uuid4())


@pytest.mark.asyncio
class TestOptimisticPost:
    async def test_post_shows_placeholder_then_server_node(self) -> None:
        existing = node(0)
        api, cache = make_cache((existing,))

        created = await cache.post("  Hello there  ")

        placeholder = api.seen[0][0]
        assert placeholder.content == "Hello there"
        assert placeholder.id != created.id
        assert cache.roots[0] is created
        assert cache.roots[1] is existing
        assert cache.find(placeholder.id) is None
        assert not cache.is_pending(placeholder.id)

    async def test_reply_is_placed_under_parent(self) -> None:
        parent = node(0, node(1))
        api, cache = make_cache((parent,))

        created = await cache.post("A reply", parent_id=parent.id)

        assert api.seen[0][0].replies[0].parent_id == parent.id
        assert cache.find(parent.id).replies[0] == created
        assert len(cache.find(parent.id).replies) == 2

    async def test_failed_post_removes_placeholder(self) -> None:
        existing = node(0)
        api, cache = make_cache((existing,), fail_with=ValidationError("bad parent"))

        with pytest.raises(ValidationError):
            await cache.post("Doomed")

        assert len(api.seen[0]) == 2
        assert cache.roots == (existing,)

    async def test_anonymous_viewer_cannot_post(self) -> None:
        api, cache = make_cache((), viewer_id=None)
        with pytest.raises(AuthenticationError):
            await cache.post("Hi")
        assert api.seen == []


@pytest.mark.asyncio
class TestCacheLoad:
    async def test_load_replaces_roots(self) -> None:
        api, cache = make_cache((node(0),))
        fresh = node(5)
        api.tree = CommentTreeRead(subject_id=SUBJECT, total=1, items=[fresh])
        tree = await cache.load()
        assert tree.total == 1
        assert cache.roots == (fresh,)


@pytest.mark.asyncio
class TestClientAgainstApp:
    async def test_round_trip_through_http(
        self, client: AsyncClient, post: Post, reader: User, author: User
    ) -> None:
        reader_api = CommentApiClient(client, token=token_for(reader))
        cache = CommentTreeCache(reader_api, post.id, viewer_id=reader.id)
        await cache.load()
        assert cache.roots == ()

        created = await cache.post("From the client")
        liked = await cache.toggle_like(created.id)
        assert liked.like_count == 1

        server_tree = await reader_api.fetch_tree(post.id)
        assert server_tree.items[0].id == created.id
        assert server_tree.items[0].liked_by_viewer is True

    async def test_403_and_404_are_distinguished(
        self, client: AsyncClient, post: Post, reader: User, author: User
    ) -> None:
        reader_api = CommentApiClient(client, token=token_for(reader))
        author_api = CommentApiClient(client, token=token_for(author))
        created = await reader_api.post_comment(post.id, "Mine")

        with pytest.raises(AuthorizationError) as forbidden:
            await author_api.edit_comment(post.id, created.id, "Yours now")
        assert forbidden.value.status_code == 403
        assert forbidden.value.error_code == "FORBIDDEN"

        await reader_api.delete_comment(post.id, created.id)
        with pytest.raises(NotFoundError) as missing:
            await reader_api.delete_comment(post.id, created.id)
        assert missing.value.status_code == 404

    async def test_failed_server_call_rolls_cache_back(
        self, client: AsyncClient, post: Post, reader: User, author: User
    ) -> None:
        reader_api = CommentApiClient(client, token=token_for(reader))
        created = await reader_api.post_comment(post.id, "Hands off")

        author_api = CommentApiClient(client, token=token_for(author))
        cache = CommentTreeCache(author_api, post.id, viewer_id=author.id)
        await cache.load()
        before = cache.roots

        with pytest.raises(TalesyError):
            await cache.delete(created.id)
        assert cache.roots == before

    async def test_missing_token_maps_to_authentication_error(
        self, client: AsyncClient, post: Post
    ) -> None:
        anonymous = CommentApiClient(client)
        with pytest.raises(AuthenticationError) as exc:
            await anonymous.post_comment(post.id, "Hello")
        assert exc.value.status_code == 401
