"""
Tests for ProfileMutator.
"""

from unittest.mock import MagicMock
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import (
    AccountNotFoundError,
    AssetNotFoundError,
    ConflictError,
    NotFoundError,
    UploadFailedError,
    ValidationError,
)
from app.observability.metrics import metrics
from app.services import profile_mutator
from app.services.object_storage import StoredAsset
from app.services.profile_mutator import ProfileMutator


@pytest.fixture
def mutator(db_session: AsyncSession, storage) -> ProfileMutator:
    """Mutator over the test database and fake storage."""
    return ProfileMutator(db_session, storage)


class TestUpdateProfile:
    """Tests for update_profile."""

    async def test_partial_update(self, mutator: ProfileMutator, make_account):
        """Only provided fields change."""
        account = await make_account("alice", full_name="Alice")

        updated = await mutator.update_profile(account.id, full_name="Alice Liddell")

        assert updated.full_name == "Alice Liddell"
        assert updated.username == "alice"

    async def test_username_folded(self, mutator: ProfileMutator, make_account):
        """New usernames are stored case-folded."""
        account = await make_account("alice")
        updated = await mutator.update_profile(account.id, username="Wonderland")
        assert updated.username == "wonderland"

    async def test_username_conflict(self, mutator: ProfileMutator, make_account):
        """Taking another account's username is a conflict."""
        account = await make_account("alice")
        await make_account("bob")

        with pytest.raises(ConflictError):
            await mutator.update_profile(account.id, username="BOB")

    async def test_identical_values_rejected(self, mutator: ProfileMutator, make_account):
        """A no-op update is rejected."""
        account = await make_account("alice", full_name="Alice")

        with pytest.raises(ValidationError, match="cannot be the same"):
            await mutator.update_profile(account.id, full_name="Alice", username="ALICE")

    async def test_one_changed_field_is_enough(self, mutator: ProfileMutator, make_account):
        """Repeating the current username alongside a new name is accepted."""
        account = await make_account("alice", full_name="Alice")

        updated = await mutator.update_profile(account.id, full_name="Alicia", username="alice")
        assert updated.full_name == "Alicia"

    async def test_nothing_provided(self, mutator: ProfileMutator, make_account):
        """At least one field is required."""
        account = await make_account("alice")
        with pytest.raises(ValidationError):
            await mutator.update_profile(account.id)

    async def test_blank_value(self, mutator: ProfileMutator, make_account):
        """Blank values are rejected, not stored."""
        account = await make_account("alice")
        with pytest.raises(ValidationError):
            await mutator.update_profile(account.id, username="  ")

    async def test_unknown_account(self, mutator: ProfileMutator):
        """Unknown account is NotFound."""
        with pytest.raises(AccountNotFoundError):
            await mutator.update_profile(uuid4(), full_name="Ghost")


class TestUpdateMedia:
    """Tests for update_avatar and update_cover."""

    async def test_avatar_replaced_and_old_deleted(
        self, mutator: ProfileMutator, make_account, storage, staged_file
    ):
        """New avatar is persisted, then the previous asset is deleted."""
        account = await make_account("alice")
        old_url = account.avatar_url

        updated = await mutator.update_avatar(account.id, staged_file())

        assert updated.avatar_url != old_url
        assert storage.deleted == [old_url]

    async def test_identical_reference_not_deleted(
        self, mutator: ProfileMutator, make_account, storage, staged_file, monkeypatch
    ):
        """If storage hands back the same reference, nothing is deleted."""
        account = await make_account("alice")

        async def same_url(path):
            return StoredAsset(url=account.avatar_url, public_id="avatars/a")

        monkeypatch.setattr(storage, "upload", same_url)
        await mutator.update_avatar(account.id, staged_file())

        assert storage.deleted == []

    async def test_cover_without_previous(
        self, mutator: ProfileMutator, make_account, storage, staged_file
    ):
        """First cover image has nothing to clean up."""
        account = await make_account("alice")

        updated = await mutator.update_cover(account.id, staged_file("cover.png"))

        assert updated.cover_image_url is not None
        assert storage.deleted == []

    async def test_nothing_staged(self, mutator: ProfileMutator, make_account):
        """Missing local file is AssetNotFound."""
        account = await make_account("alice")
        with pytest.raises(AssetNotFoundError):
            await mutator.update_avatar(account.id, None)

    async def test_upload_failure(
        self, mutator: ProfileMutator, make_account, storage, staged_file
    ):
        """Storage returning no reference is UploadFailed and changes nothing."""
        account = await make_account("alice")
        old_url = account.avatar_url
        storage.fail_uploads = True

        with pytest.raises(UploadFailedError):
            await mutator.update_avatar(account.id, staged_file())

        reloaded = await mutator.store.get_by_id(account.id)
        assert reloaded.avatar_url == old_url
        assert storage.deleted == []

    async def test_delete_failure_keeps_update(
        self, mutator: ProfileMutator, make_account, storage, staged_file
    ):
        """A failed cleanup is counted but never rolls back the new avatar."""
        account = await make_account("alice")
        storage.fail_deletes = True
        before = metrics.asset_cleanup_failures_total._value.get()

        updated = await mutator.update_avatar(account.id, staged_file())

        reloaded = await mutator.store.get_by_id(account.id)
        assert reloaded.avatar_url == updated.avatar_url
        assert metrics.asset_cleanup_failures_total._value.get() == before + 1

    async def test_delete_failure_logs_cleanup_event(
        self, mutator: ProfileMutator, make_account, storage, staged_file, monkeypatch
    ):
        """A failed cleanup is logged as asset_cleanup_failed with the old URL."""
        account = await make_account("alice")
        old_url = account.avatar_url
        storage.fail_deletes = True
        fake_logger = MagicMock()
        monkeypatch.setattr(profile_mutator, "logger", fake_logger)

        await mutator.update_avatar(account.id, staged_file())

        [event] = [
            c for c in fake_logger.warning.call_args_list if c.args == ("asset_cleanup_failed",)
        ]
        assert event.kwargs["url"] == old_url
        assert event.kwargs["field"] == "avatar"


class TestRecordWatch:
    """Tests for record_watch."""

    async def test_appends_in_order(self, mutator: ProfileMutator, make_account, make_video):
        """Positions follow the order of visits."""
        account = await make_account("alice")
        v1 = await make_video(account.id)
        v2 = await make_video(account.id)

        assert await mutator.record_watch(account.id, v1.id) == 0
        assert await mutator.record_watch(account.id, v2.id) == 1

    async def test_unknown_video(self, mutator: ProfileMutator, make_account):
        """Watching a non-existent video is NotFound."""
        account = await make_account("alice")
        with pytest.raises(NotFoundError, match="Video"):
            await mutator.record_watch(account.id, uuid4())
