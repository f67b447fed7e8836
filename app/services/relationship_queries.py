"""
Relationship Query Engine - Channel profiles and watch history in one query each.

Both views are derived from the account/subscription/video graph with a single
statement instead of per-record lookups:

- channel profile: the account row plus two correlated edge counts and an
  EXISTS probe for the viewer's own edge
- watch history: account LEFT JOIN history entries LEFT JOIN videos LEFT JOIN
  owner accounts, ordered by the entry position (visit order)
"""

import asyncio
import time
from collections.abc import Awaitable
from typing import TypeVar
from uuid import UUID

from sqlalchemy import false, func, select
from sqlalchemy.engine import Result
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased
from structlog import get_logger

from app.db.models import Account, Subscription, Video, WatchHistoryEntry
from app.exceptions import AccountNotFoundError, ChannelNotFoundError, QueryTimeoutError
from app.models.domain import ChannelProfile, VideoOwner, WatchHistoryItem
from app.observability.metrics import metrics
from app.observability.tracing import trace_operation
from app.services.account_store import fold

logger = get_logger(__name__)

R = TypeVar("R")


class RelationshipQueryEngine:
    """Read-side views over the account graph."""

    def __init__(self, session: AsyncSession, timeout_seconds: float = 5.0) -> None:
        self.session = session
        self.timeout_seconds = timeout_seconds

    async def get_channel_profile(
        self, username: str, viewer_id: UUID | None
    ) -> ChannelProfile:
        """
        Build the channel view of the account with this username.

        Counts are plain edge counts; zero edges yield zero, never a missing row.

        Raises:
            ChannelNotFoundError: no account with this (case-folded) username
            QueryTimeoutError: query exceeded its deadline
        """
        if not username or not username.strip():
            raise ChannelNotFoundError(username or "")

        subscribers_count = (
            select(func.count(Subscription.id))
            .where(Subscription.channel_id == Account.id)
            .correlate(Account)
            .scalar_subquery()
        )
        subscribed_to_count = (
            select(func.count(Subscription.id))
            .where(Subscription.subscriber_id == Account.id)
            .correlate(Account)
            .scalar_subquery()
        )
        if viewer_id is None:
            is_subscribed = false()
        else:
            is_subscribed = (
                select(Subscription.id)
                .where(
                    Subscription.channel_id == Account.id,
                    Subscription.subscriber_id == viewer_id,
                )
                .correlate(Account)
                .exists()
            )

        stmt = select(
            Account.id,
            Account.username,
            Account.email,
            Account.full_name,
            Account.avatar_url,
            Account.cover_image_url,
            subscribers_count.label("subscribers_count"),
            subscribed_to_count.label("subscribed_to_count"),
            is_subscribed.label("is_subscribed"),
        ).where(Account.username == fold(username))

        with trace_operation("channel_profile", username=fold(username)):
            result = await self._run("channel_profile", self.session.execute(stmt))
            row = result.one_or_none()

        if row is None:
            raise ChannelNotFoundError(fold(username))

        return ChannelProfile(
            account_id=row.id,
            username=row.username,
            email=row.email,
            full_name=row.full_name,
            avatar_url=row.avatar_url,
            cover_image_url=row.cover_image_url,
            subscribers_count=int(row.subscribers_count or 0),
            subscribed_to_count=int(row.subscribed_to_count or 0),
            is_subscribed=bool(row.is_subscribed),
        )

    async def get_watch_history(self, account_id: UUID) -> list[WatchHistoryItem]:
        """
        The account's watched videos in visit order, each with its owner.

        Entries whose video is gone are skipped; a video whose owner is gone is
        returned with owner=None.

        Raises:
            AccountNotFoundError: no account with this id
            QueryTimeoutError: query exceeded its deadline
        """
        owner = aliased(Account, name="owner")
        stmt = (
            select(
                Account.id.label("account_id"),
                WatchHistoryEntry.position,
                Video.id.label("video_id"),
                Video.title,
                Video.description,
                Video.video_url,
                Video.thumbnail_url,
                Video.duration_seconds,
                Video.views,
                Video.created_at,
                owner.id.label("owner_id"),
                owner.username.label("owner_username"),
                owner.full_name.label("owner_full_name"),
                owner.avatar_url.label("owner_avatar_url"),
            )
            .select_from(Account)
            .outerjoin(WatchHistoryEntry, WatchHistoryEntry.account_id == Account.id)
            .outerjoin(Video, Video.id == WatchHistoryEntry.video_id)
            .outerjoin(owner, owner.id == Video.owner_id)
            .where(Account.id == account_id)
            .order_by(WatchHistoryEntry.position)
        )

        with trace_operation("watch_history", account_id=str(account_id)):
            result = await self._run("watch_history", self.session.execute(stmt))
            rows = result.all()

        if not rows:
            raise AccountNotFoundError(account_id)

        history: list[WatchHistoryItem] = []
        for row in rows:
            if row.video_id is None:
                # No entries at all, or an entry pointing at a deleted video
                if row.position is not None:
                    logger.debug(
                        "watch_history_dangling_entry",
                        account_id=str(account_id),
                        position=row.position,
                    )
                continue

            video_owner = None
            if row.owner_id is not None:
                video_owner = VideoOwner(
                    account_id=row.owner_id,
                    username=row.owner_username,
                    full_name=row.owner_full_name,
                    avatar_url=row.owner_avatar_url,
                )

            history.append(
                WatchHistoryItem(
                    video_id=row.video_id,
                    title=row.title,
                    description=row.description,
                    video_url=row.video_url,
                    thumbnail_url=row.thumbnail_url,
                    duration_seconds=row.duration_seconds,
                    views=row.views,
                    created_at=row.created_at,
                    owner=video_owner,
                )
            )

        return history

    async def _run(self, view: str, query: Awaitable[Result[R]]) -> Result[R]:
        """Await a query under the configured deadline, recording its latency."""
        start = time.perf_counter()
        try:
            return await asyncio.wait_for(query, timeout=self.timeout_seconds)
        except TimeoutError as e:
            metrics.record_error("QueryTimeoutError", view)
            logger.error("query_timeout", view=view, timeout_seconds=self.timeout_seconds)
            raise QueryTimeoutError(view, self.timeout_seconds) from e
        finally:
            metrics.record_query(view, time.perf_counter() - start)
