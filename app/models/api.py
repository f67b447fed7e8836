"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
Wire format is camelCase; requests also accept snake_case field names.
"""

from datetime import datetime
from typing import Generic, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel

from app.models.domain import ChannelProfile, PublicAccount, TokenPair, WatchHistoryItem

T = TypeVar("T")


class CamelModel(BaseModel):
    """Base model serialising to camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Envelopes
# ============================================================================


class ApiResponse(CamelModel, Generic[T]):
    """Success envelope wrapping every 2xx payload."""

    status_code: int = 200
    data: T | None = None
    message: str = "Success"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def success(self) -> bool:
        """True for any status below 400."""
        return self.status_code < 400


class ErrorResponse(CamelModel):
    """Failure envelope rendered for every error."""

    status_code: int
    data: None = None
    message: str
    success: bool = False
    errors: list[str] = Field(default_factory=list)


# ============================================================================
# Session Models
# ============================================================================


class LoginRequest(CamelModel):
    """POST /api/v1/users/login request body."""

    email: str = Field("", max_length=255)
    password: str = Field("", max_length=1024)


class RefreshTokenRequest(CamelModel):
    """POST /api/v1/users/refresh-token request body (cookie takes precedence)."""

    refresh_token: str | None = None


class ChangePasswordRequest(CamelModel):
    """POST /api/v1/users/change-password request body."""

    old_password: str = Field(..., max_length=1024)
    new_password: str = Field(..., max_length=1024)


class UpdateAccountRequest(CamelModel):
    """PATCH /api/v1/users/update-account request body."""

    full_name: str | None = Field(None, max_length=255)
    username: str | None = Field(None, max_length=64)


class AccountResponse(CamelModel):
    """Public account fields."""

    id: UUID
    username: str
    email: str
    full_name: str
    avatar: str
    cover_image: str | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, account: PublicAccount) -> "AccountResponse":
        """Build from a PublicAccount snapshot."""
        return cls(
            id=account.account_id,
            username=account.username,
            email=account.email,
            full_name=account.full_name,
            avatar=account.avatar_url,
            cover_image=account.cover_image_url,
            created_at=account.created_at,
            updated_at=account.updated_at,
        )


class TokenPairResponse(CamelModel):
    """Access + refresh token pair."""

    access_token: str
    refresh_token: str

    @classmethod
    def from_domain(cls, tokens: TokenPair) -> "TokenPairResponse":
        """Build from a TokenPair."""
        return cls(access_token=tokens.access_token, refresh_token=tokens.refresh_token)


class LoginResponse(CamelModel):
    """Payload returned by login."""

    user: AccountResponse
    access_token: str
    refresh_token: str


# ============================================================================
# Relationship Models
# ============================================================================


class ChannelProfileResponse(CamelModel):
    """Channel profile with subscription counts."""

    id: UUID
    username: str
    email: str
    full_name: str
    avatar: str
    cover_image: str | None = None
    subscribers_count: int
    subscribed_to_count: int
    is_subscribed: bool

    @classmethod
    def from_domain(cls, profile: ChannelProfile) -> "ChannelProfileResponse":
        """Build from a ChannelProfile."""
        return cls(
            id=profile.account_id,
            username=profile.username,
            email=profile.email,
            full_name=profile.full_name,
            avatar=profile.avatar_url,
            cover_image=profile.cover_image_url,
            subscribers_count=profile.subscribers_count,
            subscribed_to_count=profile.subscribed_to_count,
            is_subscribed=profile.is_subscribed,
        )


class VideoOwnerResponse(CamelModel):
    """Owner projection embedded in a watch history item."""

    id: UUID
    username: str
    full_name: str
    avatar: str


class WatchHistoryItemResponse(CamelModel):
    """One entry of the watch history."""

    id: UUID
    title: str
    description: str
    video_file: str
    thumbnail: str
    duration: int
    views: int
    created_at: datetime
    owner: VideoOwnerResponse | None = None

    @classmethod
    def from_domain(cls, item: WatchHistoryItem) -> "WatchHistoryItemResponse":
        """Build from a WatchHistoryItem."""
        owner = None
        if item.owner is not None:
            owner = VideoOwnerResponse(
                id=item.owner.account_id,
                username=item.owner.username,
                full_name=item.owner.full_name,
                avatar=item.owner.avatar_url,
            )
        return cls(
            id=item.video_id,
            title=item.title,
            description=item.description,
            video_file=item.video_url,
            thumbnail=item.thumbnail_url,
            duration=item.duration_seconds,
            views=item.views,
            created_at=item.created_at,
            owner=owner,
        )


# ============================================================================
# Health Models
# ============================================================================


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str
    database: str
    timestamp: str


class WatchRecordedResponse(CamelModel):
    """Entry appended to the watch history."""

    video_id: UUID
    position: int
