"""
Profile Mutator - Account field and media reference updates.

Media replacement is two-phase: the new reference is committed first, then the
previous asset is deleted from object storage on a best-effort basis. A failed
delete leaves an orphaned asset behind; it never rolls the account back.
"""

from pathlib import Path
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.models import Account, Video
from app.exceptions import AccountNotFoundError, NotFoundError, ValidationError
from app.models.domain import PublicAccount
from app.observability.metrics import metrics
from app.services.account_store import AccountStore, fold, to_public
from app.services.object_storage import ObjectStorage, upload_staged_asset

logger = get_logger(__name__)


class ProfileMutator:
    """Update profile fields and media references of an account."""

    def __init__(self, session: AsyncSession, storage: ObjectStorage) -> None:
        self.store = AccountStore(session)
        self.storage = storage

    async def update_profile(
        self,
        account_id: UUID,
        full_name: str | None = None,
        username: str | None = None,
    ) -> PublicAccount:
        """
        Apply a partial update of full name and/or username.

        Raises:
            ValidationError: nothing provided, a provided value is blank, or
                every provided value equals the current one
            ConflictError: username belongs to another account
        """
        if full_name is not None and not full_name.strip():
            raise ValidationError("Full name cannot be blank", ["fullName"])
        if username is not None and not username.strip():
            raise ValidationError("Username cannot be blank", ["username"])
        if full_name is None and username is None:
            raise ValidationError("At least one of fullName or username is required")

        account = await self._load(account_id)

        changes: dict[str, str] = {}
        if full_name is not None and full_name.strip() != account.full_name:
            changes["full_name"] = full_name
        if username is not None and fold(username) != account.username:
            changes["username"] = username
        if not changes:
            raise ValidationError(
                "New full name and username cannot be the same as the old ones",
                [name for name, value in (("fullName", full_name), ("username", username)) if value],
            )

        if "username" in changes:
            conflict = await self.store.find_conflict(
                username=changes["username"], exclude_id=account_id
            )
            if conflict is not None:
                raise conflict

        account = await self.store.update_fields(account, **changes)
        logger.info("profile_updated", account_id=str(account_id), fields=sorted(changes))
        return to_public(account)

    async def update_avatar(self, account_id: UUID, staged_path: Path | None) -> PublicAccount:
        """
        Replace the avatar with a staged upload.

        Raises:
            AssetNotFoundError: no file staged
            UploadFailedError: storage could not produce a reference
        """
        return await self._replace_media(account_id, staged_path, "avatar")

    async def update_cover(self, account_id: UUID, staged_path: Path | None) -> PublicAccount:
        """Replace the cover image with a staged upload. Same failures as update_avatar."""
        return await self._replace_media(account_id, staged_path, "coverImage")

    async def record_watch(self, account_id: UUID, video_id: UUID) -> int:
        """
        Append a video to the account's watch history.

        Returns:
            Position of the new entry (0-based visit order).

        Raises:
            NotFoundError: no video with this id
        """
        await self._load(account_id)
        if await self.store.session.get(Video, video_id) is None:
            raise NotFoundError("Video does not exist", ["videoId"])

        position = await self.store.append_watch_history(account_id, video_id)
        logger.info(
            "watch_recorded", account_id=str(account_id), video_id=str(video_id), position=position
        )
        return position

    async def _replace_media(
        self, account_id: UUID, staged_path: Path | None, field: str
    ) -> PublicAccount:
        account = await self._load(account_id)
        asset = await upload_staged_asset(self.storage, staged_path, field)

        if field == "avatar":
            previous_url = account.avatar_url
            account = await self.store.update_fields(account, avatar_url=asset.url)
        else:
            previous_url = account.cover_image_url
            account = await self.store.update_fields(account, cover_image_url=asset.url)

        logger.info("media_replaced", account_id=str(account_id), field=field)

        if previous_url and previous_url != asset.url:
            await self._discard(previous_url, account_id, field)

        return to_public(account)

    async def _discard(self, url: str, account_id: UUID, field: str) -> None:
        """Best-effort delete of a replaced asset."""
        if await self.storage.delete(url):
            return
        metrics.record_asset_cleanup_failure()
        logger.warning(
            "asset_cleanup_failed", account_id=str(account_id), field=field, url=url
        )

    async def _load(self, account_id: UUID) -> Account:
        account = await self.store.get_by_id(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        return account
