"""
Account Store - Persistence for account records.

Owns case-folding of username/email and the uniqueness contract on both.
All writes follow the pattern:
1. Execute write
2. Flush to database
3. Read back and verify
4. Commit
"""

import hmac
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.models import Account, WatchHistoryEntry
from app.exceptions import ConflictError, WriteVerificationError
from app.models.domain import PublicAccount

logger = get_logger(__name__)


def fold(value: str) -> str:
    """Case-fold an identifier for storage and comparison."""
    return value.strip().lower()


def to_public(account: Account) -> PublicAccount:
    """Convert ORM account to its public domain snapshot."""
    return PublicAccount(
        account_id=account.id,
        username=account.username,
        email=account.email,
        full_name=account.full_name,
        avatar_url=account.avatar_url,
        cover_image_url=account.cover_image_url,
        created_at=account.created_at,
        updated_at=account.updated_at,
    )


def token_hash_matches(stored_hash: str | None, candidate_hash: str) -> bool:
    """Constant-time comparison of a stored refresh digest."""
    if stored_hash is None:
        return False
    return hmac.compare_digest(stored_hash, candidate_hash)


class AccountStore:
    """Account lookups and field-level writes."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize store with database session."""
        self.session = session

    # ========================================================================
    # Lookups
    # ========================================================================

    async def get_by_id(self, account_id: UUID) -> Account | None:
        """Find account by primary key."""
        return await self.session.get(Account, account_id)

    async def get_by_email(self, email: str) -> Account | None:
        """Find account by case-folded email."""
        stmt = select(Account).where(Account.email == fold(email))
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_username(self, username: str) -> Account | None:
        """Find account by case-folded username."""
        stmt = select(Account).where(Account.username == fold(username))
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_refresh_token_hash(self, account_id: UUID) -> str | None:
        """Read the live refresh digest straight from the row (bypasses the identity map)."""
        stmt = select(Account.refresh_token_hash).where(Account.id == account_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_conflict(
        self,
        username: str | None = None,
        email: str | None = None,
        exclude_id: UUID | None = None,
    ) -> ConflictError | None:
        """
        Check uniqueness of username and/or email.

        Returns:
            A ConflictError naming the colliding field, or None when both are free.
        """
        clauses = []
        if username is not None:
            clauses.append(Account.username == fold(username))
        if email is not None:
            clauses.append(Account.email == fold(email))
        if not clauses:
            return None

        stmt = select(Account.id, Account.username, Account.email).where(or_(*clauses))
        if exclude_id is not None:
            stmt = stmt.where(Account.id != exclude_id)
        result = await self.session.execute(stmt)

        for row in result.all():
            if username is not None and row.username == fold(username):
                return ConflictError("username", fold(username))
            if email is not None and row.email == fold(email):
                return ConflictError("email", fold(email))
        return None

    # ========================================================================
    # Writes
    # ========================================================================

    async def create(
        self,
        username: str,
        email: str,
        full_name: str,
        password_hash: str,
        avatar_url: str,
        cover_image_url: str | None = None,
    ) -> Account:
        """
        Insert a new account.

        Raises:
            ConflictError: username or email taken (including a lost insert race)
            WriteVerificationError: row not readable after insert
        """
        account = Account(
            username=fold(username),
            email=fold(email),
            full_name=full_name.strip(),
            password_hash=password_hash,
            avatar_url=avatar_url,
            cover_image_url=cover_image_url,
        )
        self.session.add(account)
        try:
            await self.session.flush()
        except IntegrityError as e:
            await self.session.rollback()
            conflict = await self.find_conflict(username=username, email=email)
            logger.warning("account_insert_conflict", username=fold(username))
            raise conflict or ConflictError("username or email", fold(username)) from e

        verified = await self.session.get(Account, account.id)
        if verified is None:
            raise WriteVerificationError(f"Account {account.id} not found after insert")

        await self.session.commit()
        return verified

    async def update_fields(
        self,
        account: Account,
        full_name: str | None = None,
        username: str | None = None,
        avatar_url: str | None = None,
        cover_image_url: str | None = None,
    ) -> Account:
        """
        Apply a partial update to profile fields.

        Raises:
            ConflictError: new username taken by a concurrent writer
        """
        if full_name is not None:
            account.full_name = full_name.strip()
        if username is not None:
            account.username = fold(username)
        if avatar_url is not None:
            account.avatar_url = avatar_url
        if cover_image_url is not None:
            account.cover_image_url = cover_image_url

        try:
            await self.session.flush()
        except IntegrityError as e:
            await self.session.rollback()
            raise ConflictError("username", fold(username or "")) from e

        await self.session.commit()
        return account

    async def set_password_hash(self, account: Account, password_hash: str) -> None:
        """Replace the stored password hash."""
        account.password_hash = password_hash
        await self.session.flush()
        await self.session.commit()

    async def set_refresh_token(self, account_id: UUID, token_hash: str) -> None:
        """Unconditionally store a new refresh digest (last login wins)."""
        stmt = (
            update(Account)
            .where(Account.id == account_id)
            .values(refresh_token_hash=token_hash)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        if result.rowcount == 0:  # type: ignore[attr-defined]
            raise WriteVerificationError(f"Account {account_id} disappeared during login")

    async def clear_refresh_token(self, account_id: UUID) -> None:
        """Drop the live session, if any. Idempotent."""
        stmt = (
            update(Account)
            .where(Account.id == account_id)
            .values(refresh_token_hash=None)
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)
        await self.session.commit()

    async def swap_refresh_token(
        self, account_id: UUID, expected_hash: str, new_hash: str
    ) -> bool:
        """
        Compare-and-swap the refresh digest.

        The UPDATE only matches while the stored digest still equals the one the
        caller presented, so of two concurrent rotations exactly one wins.

        Returns:
            True if this caller's rotation was applied.
        """
        stmt = (
            update(Account)
            .where(Account.id == account_id, Account.refresh_token_hash == expected_hash)
            .values(refresh_token_hash=new_hash)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        return bool(result.rowcount)  # type: ignore[attr-defined]

    async def append_watch_history(self, account_id: UUID, video_id: UUID) -> int:
        """
        Append a video to the account's watch history.

        Returns:
            The position assigned to the new entry.
        """
        stmt = select(func.coalesce(func.max(WatchHistoryEntry.position) + 1, 0)).where(
            WatchHistoryEntry.account_id == account_id
        )
        position = int((await self.session.execute(stmt)).scalar_one())

        self.session.add(
            WatchHistoryEntry(account_id=account_id, position=position, video_id=video_id)
        )
        try:
            await self.session.flush()
        except IntegrityError as e:
            await self.session.rollback()
            raise WriteVerificationError(
                f"Watch history position {position} taken concurrently"
            ) from e

        await self.session.commit()
        return position
