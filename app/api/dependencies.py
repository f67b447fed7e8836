"""
FastAPI Dependencies - Service wiring and caller authentication.

NO DICTIONARIES - All dependencies return typed objects.
"""

from functools import lru_cache

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.config import get_settings
from app.db.session import get_read_db, get_write_db
from app.exceptions import UnauthorizedError
from app.models.domain import AuthenticatedIdentity
from app.services.object_storage import CloudinaryStorage, ObjectStorage
from app.services.passwords import PasswordService
from app.services.profile_mutator import ProfileMutator
from app.services.relationship_queries import RelationshipQueryEngine
from app.services.session_controller import SessionController
from app.services.token_service import TokenService

logger = get_logger(__name__)

ACCESS_TOKEN_COOKIE = "accessToken"
REFRESH_TOKEN_COOKIE = "refreshToken"

# Bearer token scheme; cookie is the fallback
bearer_scheme = HTTPBearer(auto_error=False)


# ============================================================================
# Process-wide services
# ============================================================================


@lru_cache
def get_token_service() -> TokenService:
    """Token service built once from settings."""
    return TokenService.from_settings(get_settings())


@lru_cache
def get_password_service() -> PasswordService:
    """Password hashing service."""
    return PasswordService()


@lru_cache
def get_object_storage() -> ObjectStorage:
    """Object storage client."""
    return CloudinaryStorage.from_settings(get_settings())


# ============================================================================
# Per-request services
# ============================================================================


async def get_session_controller(
    db: AsyncSession = Depends(get_write_db),
    tokens: TokenService = Depends(get_token_service),
    passwords: PasswordService = Depends(get_password_service),
) -> SessionController:
    """Session controller bound to a write session."""
    return SessionController(
        db,
        tokens,
        passwords,
        revoke_sessions_on_password_change=get_settings().revoke_sessions_on_password_change,
    )


async def get_profile_mutator(
    db: AsyncSession = Depends(get_write_db),
    storage: ObjectStorage = Depends(get_object_storage),
) -> ProfileMutator:
    """Profile mutator bound to a write session."""
    return ProfileMutator(db, storage)


async def get_relationship_queries(
    db: AsyncSession = Depends(get_read_db),
) -> RelationshipQueryEngine:
    """Query engine bound to a read session (replica when configured)."""
    return RelationshipQueryEngine(db, timeout_seconds=get_settings().query_timeout_seconds)


# ============================================================================
# Caller authentication
# ============================================================================


def extract_access_token(
    request: Request, credentials: HTTPAuthorizationCredentials | None
) -> str | None:
    """Authorization header first, then the accessToken cookie."""
    if credentials is not None and credentials.scheme.lower() == "bearer":
        return credentials.credentials
    return request.cookies.get(ACCESS_TOKEN_COOKIE)


async def get_current_identity(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    controller: SessionController = Depends(get_session_controller),
) -> AuthenticatedIdentity:
    """
    Resolve the caller from their access token.

    Raises:
        UnauthorizedError: token missing, invalid, expired, or account gone
    """
    token = extract_access_token(request, credentials)
    if not token:
        logger.warning("auth_no_token", path=request.url.path)
        raise UnauthorizedError("Unauthorized request")

    identity = await controller.resolve_identity(token)
    request.state.account_id = str(identity.account_id)
    return identity
