"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class Account(Base):
    """
    ORM model for accounts table.

    username and email are stored case-folded; the refresh credential is kept
    as a SHA-256 digest and is NULL whenever there is no live session.
    """

    __tablename__ = "accounts"

    # Primary Key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Identity fields
    username: Mapped[str] = mapped_column(String(64), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Credentials
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    refresh_token_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Media references (object storage URLs)
    avatar_url: Mapped[str] = mapped_column(Text, nullable=False)
    cover_image_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        UniqueConstraint("username", name="uq_accounts_username"),
        UniqueConstraint("email", name="uq_accounts_email"),
        CheckConstraint("username = lower(username)", name="ck_accounts_username_folded"),
        CheckConstraint("email = lower(email)", name="ck_accounts_email_folded"),
    )

    def __repr__(self) -> str:
        """String representation for debugging (no credential fields)."""
        return f"<Account(id={self.id}, username={self.username}, email={self.email})>"


class Subscription(Base):
    """
    ORM model for subscriptions table.

    Directed edge: subscriber_id follows channel_id. Edges are written by the
    subscription service; this service only reads them.
    """

    __tablename__ = "subscriptions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    subscriber_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    channel_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        UniqueConstraint("subscriber_id", "channel_id", name="uq_subscription_edge"),
        Index("idx_subscriptions_channel_id", "channel_id"),
        Index("idx_subscriptions_subscriber_id", "subscriber_id"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Subscription(subscriber={self.subscriber_id}, channel={self.channel_id})>"


class Video(Base):
    """
    ORM model for videos table.

    Owned by the video service; read here to enrich watch history.
    """

    __tablename__ = "videos"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    owner_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    video_url: Mapped[str] = mapped_column(Text, nullable=False)
    thumbnail_url: Mapped[str] = mapped_column(Text, nullable=False)
    duration_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    views: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("duration_seconds >= 0", name="ck_video_duration_non_negative"),
        CheckConstraint("views >= 0", name="ck_video_views_non_negative"),
        Index("idx_videos_owner_id", "owner_id"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Video(id={self.id}, title={self.title!r}, owner={self.owner_id})>"


class WatchHistoryEntry(Base):
    """
    ORM model for watch_history_entries table.

    One row per visit; position is the visit order within an account's history.
    """

    __tablename__ = "watch_history_entries"

    account_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), primary_key=True
    )
    position: Mapped[int] = mapped_column(Integer, primary_key=True)
    video_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    watched_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("position >= 0", name="ck_watch_history_position_non_negative"),
        Index("idx_watch_history_video_id", "video_id"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<WatchHistoryEntry(account={self.account_id}, "
            f"position={self.position}, video={self.video_id})>"
        )
