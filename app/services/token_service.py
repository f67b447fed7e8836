"""
Token Service - Signs and verifies session JWTs.

Two token classes share one shape but never one secret:
- access: short-lived, carries the public identity claims
- refresh: long-lived, carries only the subject; its SHA-256 digest is what
  the account row stores as the single live session

Stateless: output depends only on the secrets, the payload and the clock.
"""

import hashlib
import secrets
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from uuid import UUID

import jwt
from structlog import get_logger

from app.config import Settings
from app.exceptions import InvalidTokenError
from app.models.domain import PublicAccount, TokenClass, TokenPair
from app.observability.metrics import metrics

logger = get_logger(__name__)

REQUIRED_CLAIMS = ["sub", "typ", "jti", "iat", "exp"]


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class TokenService:
    """Issue and verify access/refresh tokens."""

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        access_ttl: timedelta = timedelta(minutes=60),
        refresh_ttl: timedelta = timedelta(days=10),
        algorithm: str = "HS256",
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        if access_secret == refresh_secret:
            raise ValueError("Access and refresh tokens must use distinct secrets")
        self._secrets = {TokenClass.ACCESS: access_secret, TokenClass.REFRESH: refresh_secret}
        self._ttls = {TokenClass.ACCESS: access_ttl, TokenClass.REFRESH: refresh_ttl}
        self.algorithm = algorithm
        self.clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenService":
        """Build from application settings."""
        return cls(
            access_secret=settings.ACCESS_TOKEN_SECRET,
            refresh_secret=settings.REFRESH_TOKEN_SECRET,
            access_ttl=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
            refresh_ttl=timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
            algorithm=settings.jwt_algorithm,
        )

    @staticmethod
    def hash_token(token: str) -> str:
        """SHA-256 hex digest used to store refresh tokens at rest."""
        return hashlib.sha256(token.encode()).hexdigest()

    def ttl(self, token_class: TokenClass) -> timedelta:
        """Lifetime of a token class."""
        return self._ttls[token_class]

    def issue_access_token(self, account: PublicAccount) -> str:
        """Mint a short-lived access token for an account."""
        return self._encode(
            account.account_id,
            TokenClass.ACCESS,
            email=account.email,
            username=account.username,
            full_name=account.full_name,
        )

    def issue_refresh_token(self, account_id: UUID) -> str:
        """Mint a long-lived refresh token for an account."""
        return self._encode(account_id, TokenClass.REFRESH)

    def issue_pair(self, account: PublicAccount) -> TokenPair:
        """Mint a fresh access + refresh pair."""
        return TokenPair(
            access_token=self.issue_access_token(account),
            refresh_token=self.issue_refresh_token(account.account_id),
        )

    def verify(self, token: str, token_class: TokenClass) -> UUID:
        """
        Verify a token of the given class.

        Returns:
            The account id in the subject claim.

        Raises:
            InvalidTokenError: bad signature, malformed payload, wrong class, or expired
        """
        if not token:
            raise InvalidTokenError("missing token")

        try:
            payload = jwt.decode(
                token,
                self._secrets[token_class],
                algorithms=[self.algorithm],
                # exp/iat are checked against the injected clock below
                options={"require": REQUIRED_CLAIMS, "verify_exp": False, "verify_iat": False},
            )
        except jwt.InvalidTokenError as e:
            logger.warning("token_invalid", token_class=token_class.value, error=str(e))
            raise InvalidTokenError("signature or payload rejected") from e

        try:
            expires_at = float(payload["exp"])
        except (TypeError, ValueError) as e:
            raise InvalidTokenError("malformed expiry") from e
        if self.clock().timestamp() >= expires_at:
            raise InvalidTokenError("token expired", expired=True)

        if payload.get("typ") != token_class.value:
            logger.warning(
                "token_class_mismatch", expected=token_class.value, got=payload.get("typ")
            )
            raise InvalidTokenError("wrong token class")

        try:
            return UUID(str(payload["sub"]))
        except ValueError as e:
            raise InvalidTokenError("malformed subject") from e

    def _encode(self, account_id: UUID, token_class: TokenClass, **claims: str) -> str:
        now = self.clock()
        payload: dict[str, object] = {
            "sub": str(account_id),
            "typ": token_class.value,
            "jti": secrets.token_urlsafe(16),
            "iat": now,
            "exp": now + self._ttls[token_class],
            **claims,
        }
        token = jwt.encode(payload, self._secrets[token_class], algorithm=self.algorithm)
        metrics.record_token_issued(token_class.value)
        return token
