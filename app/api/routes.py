"""
API Routes - FastAPI endpoints for account sessions, profiles and channels.

NO DICTIONARIES - All requests/responses use Pydantic models.
Every success is wrapped in ApiResponse; every failure is rendered by the
handlers in app.api.errors.
"""

from pathlib import Path
from uuid import UUID

from fastapi import APIRouter, Body, Depends, File, Form, Request, Response, UploadFile
from structlog import get_logger

from app.api.dependencies import (
    ACCESS_TOKEN_COOKIE,
    REFRESH_TOKEN_COOKIE,
    get_current_identity,
    get_object_storage,
    get_profile_mutator,
    get_relationship_queries,
    get_session_controller,
    get_token_service,
)
from app.config import settings
from app.exceptions import ValidationError
from app.models.api import (
    AccountResponse,
    ApiResponse,
    ChangePasswordRequest,
    ChannelProfileResponse,
    LoginRequest,
    LoginResponse,
    RefreshTokenRequest,
    TokenPairResponse,
    UpdateAccountRequest,
    WatchHistoryItemResponse,
    WatchRecordedResponse,
)
from app.models.domain import AuthenticatedIdentity, TokenClass, TokenPair
from app.observability.metrics import metrics
from app.services.object_storage import ObjectStorage, StoredAsset, stage_upload, upload_staged_asset
from app.services.profile_mutator import ProfileMutator
from app.services.relationship_queries import RelationshipQueryEngine
from app.services.session_controller import SessionController
from app.services.token_service import TokenService

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1/users", tags=["users"])


# ============================================================================
# Helpers
# ============================================================================


def set_session_cookies(response: Response, tokens: TokenPair, token_service: TokenService) -> None:
    """Deliver both tokens as http-only cookies."""
    for key, value, token_class in (
        (ACCESS_TOKEN_COOKIE, tokens.access_token, TokenClass.ACCESS),
        (REFRESH_TOKEN_COOKIE, tokens.refresh_token, TokenClass.REFRESH),
    ):
        response.set_cookie(
            key=key,
            value=value,
            httponly=True,
            secure=settings.cookie_secure,
            samesite=settings.cookie_samesite,
            max_age=int(token_service.ttl(token_class).total_seconds()),
        )


def clear_session_cookies(response: Response) -> None:
    """Remove both session cookies."""
    for key in (ACCESS_TOKEN_COOKIE, REFRESH_TOKEN_COOKIE):
        response.delete_cookie(
            key=key,
            httponly=True,
            secure=settings.cookie_secure,
            samesite=settings.cookie_samesite,
        )


def discard_staged(*paths: Path | None) -> None:
    """Remove staged uploads that were never sent to storage."""
    for path in paths:
        if path is not None:
            path.unlink(missing_ok=True)


# ============================================================================
# Sessions
# ============================================================================


@router.post("/register", response_model=ApiResponse[AccountResponse])
async def register(
    username: str = Form(""),
    email: str = Form(""),
    full_name: str = Form("", alias="fullName"),
    password: str = Form(""),
    avatar: UploadFile | None = File(None),
    cover_image: UploadFile | None = File(None, alias="coverImage"),
    controller: SessionController = Depends(get_session_controller),
    storage: ObjectStorage = Depends(get_object_storage),
) -> ApiResponse[AccountResponse]:
    """
    Register a new account with an avatar and optional cover image.

    Input and uniqueness are checked before anything is uploaded. Media is
    deleted again only if the insert itself fails afterwards.
    """
    avatar_path = await stage_upload(avatar, settings.upload_dir)
    cover_path = await stage_upload(cover_image, settings.upload_dir)

    uploaded: list[StoredAsset] = []
    try:
        await controller.validate_registration(username, email, full_name, password)
        if avatar_path is None:
            raise ValidationError("Avatar image is required", ["avatar"])

        avatar_asset = await upload_staged_asset(storage, avatar_path, "avatar")
        uploaded.append(avatar_asset)

        cover_url = None
        if cover_path is not None:
            cover_asset = await storage.upload(cover_path)
            if cover_asset is not None:
                uploaded.append(cover_asset)
                cover_url = cover_asset.url

        account = await controller.register(
            username=username,
            email=email,
            full_name=full_name,
            password=password,
            avatar_url=avatar_asset.url,
            cover_image_url=cover_url,
        )
    except Exception:
        for asset in uploaded:
            if not await storage.delete(asset.url):
                metrics.record_asset_cleanup_failure()
                logger.warning("asset_cleanup_failed", public_id=asset.public_id)
        raise
    finally:
        discard_staged(avatar_path, cover_path)

    return ApiResponse(
        data=AccountResponse.from_domain(account),
        message="User registered successfully",
    )


@router.post("/login", response_model=ApiResponse[LoginResponse])
async def login(
    body: LoginRequest,
    response: Response,
    controller: SessionController = Depends(get_session_controller),
    token_service: TokenService = Depends(get_token_service),
) -> ApiResponse[LoginResponse]:
    """Verify credentials, open a session and set the session cookies."""
    result = await controller.login(body.email, body.password)
    set_session_cookies(response, result.tokens, token_service)

    return ApiResponse(
        data=LoginResponse(
            user=AccountResponse.from_domain(result.account),
            access_token=result.tokens.access_token,
            refresh_token=result.tokens.refresh_token,
        ),
        message="User logged in successfully",
    )


@router.post("/logout", response_model=ApiResponse[None])
async def logout(
    response: Response,
    identity: AuthenticatedIdentity = Depends(get_current_identity),
    controller: SessionController = Depends(get_session_controller),
) -> ApiResponse[None]:
    """End the caller's session and clear the session cookies."""
    await controller.logout(identity.account_id)
    clear_session_cookies(response)
    return ApiResponse(message="User logged out successfully")


@router.post("/refresh-token", response_model=ApiResponse[TokenPairResponse])
async def refresh_token(
    request: Request,
    response: Response,
    body: RefreshTokenRequest | None = Body(None),
    controller: SessionController = Depends(get_session_controller),
    token_service: TokenService = Depends(get_token_service),
) -> ApiResponse[TokenPairResponse]:
    """Rotate the session using the refresh token from the cookie or the body."""
    incoming = request.cookies.get(REFRESH_TOKEN_COOKIE) or (body.refresh_token if body else None)

    tokens = await controller.refresh(incoming)
    set_session_cookies(response, tokens, token_service)

    return ApiResponse(
        data=TokenPairResponse.from_domain(tokens),
        message="Access token refreshed successfully",
    )


@router.post("/change-password", response_model=ApiResponse[None])
async def change_password(
    body: ChangePasswordRequest,
    identity: AuthenticatedIdentity = Depends(get_current_identity),
    controller: SessionController = Depends(get_session_controller),
) -> ApiResponse[None]:
    """Replace the caller's password."""
    await controller.change_password(identity.account_id, body.old_password, body.new_password)
    return ApiResponse(message="Password changed successfully")


@router.get("/current-user", response_model=ApiResponse[AccountResponse])
async def current_user(
    identity: AuthenticatedIdentity = Depends(get_current_identity),
    controller: SessionController = Depends(get_session_controller),
) -> ApiResponse[AccountResponse]:
    """Return the caller's own account."""
    account = await controller.get_current_account(identity.account_id)
    return ApiResponse(
        data=AccountResponse.from_domain(account),
        message="Current user fetched successfully",
    )


# ============================================================================
# Profile
# ============================================================================


@router.patch("/update-account", response_model=ApiResponse[AccountResponse])
async def update_account(
    body: UpdateAccountRequest,
    identity: AuthenticatedIdentity = Depends(get_current_identity),
    mutator: ProfileMutator = Depends(get_profile_mutator),
) -> ApiResponse[AccountResponse]:
    """Update full name and/or username."""
    account = await mutator.update_profile(
        identity.account_id, full_name=body.full_name, username=body.username
    )
    return ApiResponse(
        data=AccountResponse.from_domain(account),
        message="Account details updated successfully",
    )


@router.patch("/avatar", response_model=ApiResponse[AccountResponse])
async def update_avatar(
    avatar: UploadFile | None = File(None),
    identity: AuthenticatedIdentity = Depends(get_current_identity),
    mutator: ProfileMutator = Depends(get_profile_mutator),
) -> ApiResponse[AccountResponse]:
    """Replace the caller's avatar."""
    staged = await stage_upload(avatar, settings.upload_dir)
    try:
        account = await mutator.update_avatar(identity.account_id, staged)
    finally:
        discard_staged(staged)

    return ApiResponse(
        data=AccountResponse.from_domain(account),
        message="Avatar updated successfully",
    )


@router.patch("/cover-image", response_model=ApiResponse[AccountResponse])
async def update_cover_image(
    cover_image: UploadFile | None = File(None, alias="coverImage"),
    identity: AuthenticatedIdentity = Depends(get_current_identity),
    mutator: ProfileMutator = Depends(get_profile_mutator),
) -> ApiResponse[AccountResponse]:
    """Replace the caller's cover image."""
    staged = await stage_upload(cover_image, settings.upload_dir)
    try:
        account = await mutator.update_cover(identity.account_id, staged)
    finally:
        discard_staged(staged)

    return ApiResponse(
        data=AccountResponse.from_domain(account),
        message="Cover image updated successfully",
    )


# ============================================================================
# Channels and history
# ============================================================================


@router.get("/c/{username}", response_model=ApiResponse[ChannelProfileResponse])
async def channel_profile(
    username: str,
    identity: AuthenticatedIdentity = Depends(get_current_identity),
    queries: RelationshipQueryEngine = Depends(get_relationship_queries),
) -> ApiResponse[ChannelProfileResponse]:
    """Channel view of an account, with the caller's subscription flag."""
    profile = await queries.get_channel_profile(username, identity.account_id)
    return ApiResponse(
        data=ChannelProfileResponse.from_domain(profile),
        message="User channel fetched successfully",
    )


@router.get("/history", response_model=ApiResponse[list[WatchHistoryItemResponse]])
async def watch_history(
    identity: AuthenticatedIdentity = Depends(get_current_identity),
    queries: RelationshipQueryEngine = Depends(get_relationship_queries),
) -> ApiResponse[list[WatchHistoryItemResponse]]:
    """The caller's watched videos in visit order."""
    history = await queries.get_watch_history(identity.account_id)
    return ApiResponse(
        data=[WatchHistoryItemResponse.from_domain(item) for item in history],
        message="Watch history fetched successfully",
    )


@router.post("/history/{video_id}", response_model=ApiResponse[WatchRecordedResponse])
async def record_watch(
    video_id: UUID,
    identity: AuthenticatedIdentity = Depends(get_current_identity),
    mutator: ProfileMutator = Depends(get_profile_mutator),
) -> ApiResponse[WatchRecordedResponse]:
    """Append a video to the caller's watch history."""
    position = await mutator.record_watch(identity.account_id, video_id)
    return ApiResponse(
        data=WatchRecordedResponse(video_id=video_id, position=position),
        message="Video added to watch history",
    )
