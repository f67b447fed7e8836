"""
Session Controller - Registration, login, logout, refresh rotation, password change.

The only component that writes the account's refresh credential. One live
refresh token per account: login overwrites it, refresh rotates it with a
compare-and-swap, logout clears it.

State per account: Registered --login--> Authenticated --refresh--> Authenticated
                   Authenticated --logout--> Registered
"""

from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.exceptions import (
    AccountNotFoundError,
    ConflictError,
    InvalidTokenError,
    UnauthorizedError,
    ValidationError,
)
from app.models.domain import (
    AuthenticatedIdentity,
    LoginResult,
    PublicAccount,
    TokenClass,
    TokenPair,
)
from app.observability.metrics import metrics, track_session_event
from app.services.account_store import AccountStore, to_public, token_hash_matches
from app.services.passwords import PasswordService, check_strength
from app.services.token_service import TokenService

logger = get_logger(__name__)


def _blank_fields(**fields: str | None) -> list[str]:
    """Names of fields that are missing or whitespace-only."""
    return [name for name, value in fields.items() if value is None or not value.strip()]


class SessionController:
    """Account session lifecycle."""

    def __init__(
        self,
        session: AsyncSession,
        tokens: TokenService,
        passwords: PasswordService,
        revoke_sessions_on_password_change: bool = False,
    ) -> None:
        self.store = AccountStore(session)
        self.tokens = tokens
        self.passwords = passwords
        self.revoke_sessions_on_password_change = revoke_sessions_on_password_change

    async def validate_registration(
        self, username: str, email: str, full_name: str, password: str
    ) -> None:
        """
        Check registration input before any media is uploaded.

        Raises:
            ValidationError: a required field is blank
            ConflictError: username or email already registered (case-insensitive)
        """
        try:
            await self._check_registration(username, email, full_name, password)
        except (ValidationError, ConflictError) as e:
            metrics.record_session_event("register", type(e).__name__)
            raise

    async def _check_registration(
        self, username: str, email: str, full_name: str, password: str
    ) -> None:
        blank = _blank_fields(
            username=username, email=email, fullName=full_name, password=password
        )
        if blank:
            raise ValidationError("All fields are required", blank)

        conflict = await self.store.find_conflict(username=username, email=email)
        if conflict is not None:
            logger.info("registration_conflict", field=conflict.field)
            raise conflict

    async def register(
        self,
        username: str,
        email: str,
        full_name: str,
        password: str,
        avatar_url: str | None,
        cover_image_url: str | None = None,
    ) -> PublicAccount:
        """
        Create an account.

        The checks of validate_registration are repeated here; the unique
        constraints still catch a concurrent registration that passes both.

        Raises:
            ValidationError: a required field is blank or the avatar is missing
            ConflictError: username or email already registered (case-insensitive)
        """
        with track_session_event("register"):
            await self._check_registration(username, email, full_name, password)
            if not avatar_url:
                raise ValidationError("Avatar image is required", ["avatar"])

            password_hash = await self.passwords.hash(password)
            account = await self.store.create(
                username=username,
                email=email,
                full_name=full_name,
                password_hash=password_hash,
                avatar_url=avatar_url,
                cover_image_url=cover_image_url or None,
            )

            logger.info(
                "account_registered", account_id=str(account.id), username=account.username
            )
            return to_public(account)

    async def login(self, email: str, password: str) -> LoginResult:
        """
        Verify credentials and open a new session.

        Any previous session of the account stops being refreshable.

        Raises:
            ValidationError: email missing
            AccountNotFoundError: no account with this email
            UnauthorizedError: password does not match
        """
        with track_session_event("login"):
            if not email or not email.strip():
                raise ValidationError("email is required", ["email"])

            account = await self.store.get_by_email(email)
            if account is None:
                raise AccountNotFoundError(email.strip().lower())

            if not await self.passwords.verify(account.password_hash, password or ""):
                logger.warning("login_password_mismatch", account_id=str(account.id))
                raise UnauthorizedError("Invalid user credentials")

            if self.passwords.needs_rehash(account.password_hash):
                await self.store.set_password_hash(account, await self.passwords.hash(password))
                logger.info("password_hash_upgraded", account_id=str(account.id))

            public = to_public(account)
            tokens = self.tokens.issue_pair(public)
            await self.store.set_refresh_token(
                account.id, self.tokens.hash_token(tokens.refresh_token)
            )

            logger.info("account_logged_in", account_id=str(account.id))
            return LoginResult(tokens=tokens, account=public)

    async def logout(self, account_id: UUID) -> None:
        """End the account's session. Idempotent."""
        with track_session_event("logout"):
            await self.store.clear_refresh_token(account_id)
            logger.info("account_logged_out", account_id=str(account_id))

    async def refresh(self, incoming_refresh_token: str | None) -> TokenPair:
        """
        Rotate the session: trade the live refresh token for a new pair.

        The presented token must be the one currently stored; the swap to the new
        one is conditional on that, so a token can be redeemed at most once.

        Raises:
            UnauthorizedError: token missing, invalid, expired, superseded or already used
        """
        with track_session_event("refresh"):
            if not incoming_refresh_token:
                raise UnauthorizedError("Unauthorized request")

            try:
                account_id = self.tokens.verify(incoming_refresh_token, TokenClass.REFRESH)
            except InvalidTokenError as e:
                logger.warning("refresh_token_rejected", reason=e.reason, expired=e.expired)
                raise

            account = await self.store.get_by_id(account_id)
            if account is None:
                raise UnauthorizedError("Invalid refresh token")

            presented_hash = self.tokens.hash_token(incoming_refresh_token)
            stored_hash = await self.store.get_refresh_token_hash(account_id)
            if not token_hash_matches(stored_hash, presented_hash):
                logger.warning(
                    "refresh_token_superseded",
                    account_id=str(account_id),
                    token_hash=presented_hash[:16],
                )
                raise UnauthorizedError("Refresh token is expired or used")

            tokens = self.tokens.issue_pair(to_public(account))
            swapped = await self.store.swap_refresh_token(
                account_id, presented_hash, self.tokens.hash_token(tokens.refresh_token)
            )
            if not swapped:
                logger.warning("refresh_rotation_lost_race", account_id=str(account_id))
                raise UnauthorizedError("Refresh token is expired or used")

            logger.info("session_refreshed", account_id=str(account_id))
            return tokens

    async def change_password(
        self, account_id: UUID, old_password: str, new_password: str
    ) -> None:
        """
        Replace the account's password.

        Existing sessions stay valid unless revoke_sessions_on_password_change is set.

        Raises:
            AccountNotFoundError: account vanished
            UnauthorizedError: old password does not match
            ValidationError: new password equals the old one or is too weak
        """
        with track_session_event("change_password"):
            account = await self.store.get_by_id(account_id)
            if account is None:
                raise AccountNotFoundError(account_id)

            if not await self.passwords.verify(account.password_hash, old_password):
                logger.warning("change_password_mismatch", account_id=str(account_id))
                raise UnauthorizedError("Invalid old password")

            if await self.passwords.verify(account.password_hash, new_password):
                raise ValidationError(
                    "New password cannot be the same as the old password", ["newPassword"]
                )

            problems = check_strength(new_password)
            if problems:
                raise ValidationError(
                    "New password must be at least 10 characters long, contain a mix of "
                    "uppercase and lowercase letters, a number, and a special character.",
                    problems,
                )

            await self.store.set_password_hash(account, await self.passwords.hash(new_password))
            if self.revoke_sessions_on_password_change:
                await self.store.clear_refresh_token(account_id)

            logger.info(
                "password_changed",
                account_id=str(account_id),
                sessions_revoked=self.revoke_sessions_on_password_change,
            )

    async def get_current_account(self, account_id: UUID) -> PublicAccount:
        """Load the caller's own account."""
        account = await self.store.get_by_id(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        return to_public(account)

    async def resolve_identity(self, access_token: str | None) -> AuthenticatedIdentity:
        """
        Turn an access token into the caller identity.

        Raises:
            UnauthorizedError: token missing/invalid or account no longer exists
        """
        if not access_token:
            raise UnauthorizedError("Unauthorized request")

        account_id = self.tokens.verify(access_token, TokenClass.ACCESS)
        account = await self.store.get_by_id(account_id)
        if account is None:
            logger.warning("access_token_orphaned", account_id=str(account_id))
            raise UnauthorizedError("Invalid access token")
        return to_public(account).to_identity()
