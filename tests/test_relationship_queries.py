"""
Tests for RelationshipQueryEngine.

Channel profile counts and watch history ordering are checked against real
rows; the timeout path uses a stalled session.
"""

import asyncio
from unittest.mock import MagicMock
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import AccountNotFoundError, ChannelNotFoundError, QueryTimeoutError
from app.services.relationship_queries import RelationshipQueryEngine


@pytest.fixture
def engine_queries(db_session: AsyncSession) -> RelationshipQueryEngine:
    """Query engine over the test database."""
    return RelationshipQueryEngine(db_session, timeout_seconds=5.0)


class TestChannelProfile:
    """Tests for get_channel_profile."""

    async def test_counts_and_viewer_flag(
        self, engine_queries: RelationshipQueryEngine, make_account, subscribe
    ):
        """Edges {A->C, B->C}: C has two subscribers, A sees itself subscribed, Z does not."""
        a = await make_account("a_user")
        b = await make_account("b_user")
        c = await make_account("channel")
        z = await make_account("z_user")
        await subscribe(a, c)
        await subscribe(b, c)
        await subscribe(c, a)

        as_a = await engine_queries.get_channel_profile("channel", a.id)
        as_z = await engine_queries.get_channel_profile("channel", z.id)

        assert as_a.subscribers_count == 2
        assert as_a.subscribed_to_count == 1
        assert as_a.is_subscribed is True
        assert as_z.subscribers_count == 2
        assert as_z.is_subscribed is False

    async def test_no_edges_counts_zero(
        self, engine_queries: RelationshipQueryEngine, make_account
    ):
        """An account without edges still yields exactly one profile."""
        lonely = await make_account("lonely", cover_image_url="https://example.com/c.png")

        profile = await engine_queries.get_channel_profile("lonely", None)

        assert profile.account_id == lonely.id
        assert profile.subscribers_count == 0
        assert profile.subscribed_to_count == 0
        assert profile.is_subscribed is False
        assert profile.cover_image_url == "https://example.com/c.png"

    async def test_username_case_folded(
        self, engine_queries: RelationshipQueryEngine, make_account
    ):
        """Lookup ignores case of the requested username."""
        await make_account("channel")
        profile = await engine_queries.get_channel_profile("ChAnNeL", None)
        assert profile.username == "channel"

    async def test_unknown_channel(self, engine_queries: RelationshipQueryEngine):
        """No match is NotFound."""
        with pytest.raises(ChannelNotFoundError):
            await engine_queries.get_channel_profile("ghost", uuid4())

    async def test_blank_username(self, engine_queries: RelationshipQueryEngine):
        """Blank username never matches."""
        with pytest.raises(ChannelNotFoundError):
            await engine_queries.get_channel_profile("   ", None)

    async def test_own_channel_not_subscribed(
        self, engine_queries: RelationshipQueryEngine, make_account
    ):
        """Viewing one's own channel without a self-edge is not subscribed."""
        me = await make_account("me")
        profile = await engine_queries.get_channel_profile("me", me.id)
        assert profile.is_subscribed is False


class TestWatchHistory:
    """Tests for get_watch_history."""

    async def test_preserves_visit_order(
        self, engine_queries: RelationshipQueryEngine, make_account, make_video, watch
    ):
        """History [v3, v1, v2] comes back in exactly that order."""
        viewer = await make_account("viewer")
        owner = await make_account("owner", full_name="Video Owner")
        v1 = await make_video(owner.id, "first")
        v2 = await make_video(owner.id, "second")
        v3 = await make_video(owner.id, "third")
        await watch(viewer, v3.id, v1.id, v2.id)

        history = await engine_queries.get_watch_history(viewer.id)

        assert [item.video_id for item in history] == [v3.id, v1.id, v2.id]

    async def test_owner_is_single_object(
        self, engine_queries: RelationshipQueryEngine, make_account, make_video, watch
    ):
        """Each item embeds its owner as one projection, not a list."""
        viewer = await make_account("viewer")
        owner = await make_account("owner", full_name="Video Owner")
        video = await make_video(owner.id, "clip")
        await watch(viewer, video.id)

        [item] = await engine_queries.get_watch_history(viewer.id)

        assert item.title == "clip"
        assert item.owner is not None
        assert item.owner.account_id == owner.id
        assert item.owner.username == "owner"
        assert item.owner.full_name == "Video Owner"
        assert item.owner.avatar_url == owner.avatar_url

    async def test_repeat_visits_kept(
        self, engine_queries: RelationshipQueryEngine, make_account, make_video, watch
    ):
        """Watching a video twice yields two entries."""
        viewer = await make_account("viewer")
        video = await make_video(viewer.id)
        await watch(viewer, video.id, video.id)

        history = await engine_queries.get_watch_history(viewer.id)
        assert [item.video_id for item in history] == [video.id, video.id]

    async def test_empty_history(self, engine_queries: RelationshipQueryEngine, make_account):
        """No history is an empty list, not an error."""
        viewer = await make_account("viewer")
        assert await engine_queries.get_watch_history(viewer.id) == []

    async def test_missing_video_skipped(
        self, engine_queries: RelationshipQueryEngine, make_account, make_video, watch
    ):
        """Entries pointing at deleted videos are dropped."""
        viewer = await make_account("viewer")
        video = await make_video(viewer.id)
        await watch(viewer, uuid4(), video.id)

        history = await engine_queries.get_watch_history(viewer.id)
        assert [item.video_id for item in history] == [video.id]

    async def test_missing_owner_is_null(
        self, engine_queries: RelationshipQueryEngine, make_account, make_video, watch
    ):
        """A video whose owner is gone has owner=None."""
        viewer = await make_account("viewer")
        orphan = await make_video(None, "orphan")
        await watch(viewer, orphan.id)

        [item] = await engine_queries.get_watch_history(viewer.id)
        assert item.owner is None

    async def test_unknown_account(self, engine_queries: RelationshipQueryEngine):
        """History of a non-existent account is NotFound."""
        with pytest.raises(AccountNotFoundError):
            await engine_queries.get_watch_history(uuid4())


class TestTimeout:
    """Tests for the query deadline."""

    async def test_slow_query_times_out(self):
        """A query exceeding the deadline raises QueryTimeoutError."""

        async def stall(*args, **kwargs):
            await asyncio.sleep(1)

        session = MagicMock(spec=AsyncSession)
        session.execute = stall
        queries = RelationshipQueryEngine(session, timeout_seconds=0.01)

        with pytest.raises(QueryTimeoutError) as exc_info:
            await queries.get_watch_history(uuid4())
        assert exc_info.value.operation == "watch_history"

        with pytest.raises(QueryTimeoutError):
            await queries.get_channel_profile("alice", None)
