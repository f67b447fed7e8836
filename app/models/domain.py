"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID


class TokenClass(str, Enum):
    """The two session credential classes."""

    ACCESS = "access"
    REFRESH = "refresh"


@dataclass(frozen=True)
class AuthenticatedIdentity:
    """Caller identity resolved from a verified access token."""

    account_id: UUID
    username: str
    email: str


@dataclass(frozen=True)
class PublicAccount:
    """Account snapshot safe to return to callers (no credential fields)."""

    account_id: UUID
    username: str
    email: str
    full_name: str
    avatar_url: str
    cover_image_url: str | None
    created_at: datetime
    updated_at: datetime

    def to_identity(self) -> AuthenticatedIdentity:
        """Convert to AuthenticatedIdentity."""
        return AuthenticatedIdentity(
            account_id=self.account_id,
            username=self.username,
            email=self.email,
        )


@dataclass(frozen=True)
class TokenPair:
    """Freshly minted access + refresh tokens."""

    access_token: str
    refresh_token: str

    def __post_init__(self) -> None:
        """Validate both tokens are present."""
        if not self.access_token or not self.refresh_token:
            raise ValueError("Token pair requires both tokens")


@dataclass(frozen=True)
class LoginResult:
    """Outcome of a successful login."""

    tokens: TokenPair
    account: PublicAccount


@dataclass(frozen=True)
class ChannelProfile:
    """An account viewed as a channel, with derived subscription counts."""

    account_id: UUID
    username: str
    email: str
    full_name: str
    avatar_url: str
    cover_image_url: str | None
    subscribers_count: int
    subscribed_to_count: int
    is_subscribed: bool

    def __post_init__(self) -> None:
        """Validate derived counts."""
        if self.subscribers_count < 0 or self.subscribed_to_count < 0:
            raise ValueError("Subscription counts cannot be negative")


@dataclass(frozen=True)
class VideoOwner:
    """Public projection of a video's owning account."""

    account_id: UUID
    username: str
    full_name: str
    avatar_url: str


@dataclass(frozen=True)
class WatchHistoryItem:
    """One watched video, enriched with its owner."""

    video_id: UUID
    title: str
    description: str
    video_url: str
    thumbnail_url: str
    duration_seconds: int
    views: int
    created_at: datetime
    owner: VideoOwner | None
