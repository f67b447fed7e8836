"""
Object Storage - Media upload/delete behind a provider-agnostic interface.

Account media (avatar, cover image) is staged on local disk by the API layer,
pushed to object storage, and referenced by the returned URL. The staged file
is always removed after an upload attempt.
"""

import hashlib
import re
import shutil
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import httpx
from fastapi import UploadFile
from starlette.concurrency import run_in_threadpool
from structlog import get_logger

from app.config import Settings
from app.exceptions import AssetNotFoundError, UploadFailedError

logger = get_logger(__name__)

_VERSION_SEGMENT = re.compile(r"^v\d+$")
_RESOURCE_TYPES = frozenset({"image", "video", "raw"})


@dataclass(frozen=True)
class StoredAsset:
    """Reference to an uploaded asset."""

    url: str
    public_id: str
    resource_type: str = "image"


class ObjectStorage(Protocol):
    """
    Object storage protocol.

    Failures are reported through return values, never raised: callers decide
    whether a missing reference is fatal (upload) or ignorable (delete).
    """

    async def upload(self, path: Path) -> StoredAsset | None:
        """Upload a staged local file. Returns None on failure."""
        ...

    async def delete(self, url: str) -> bool:
        """Delete an asset by its URL. Returns True if the provider confirmed it."""
        ...


def resource_type_from_url(url: str) -> str:
    """
    Resource type segment of a delivery URL (image, video or raw).

    https://res.cloudinary.com/demo/video/upload/v1/clips/a.mp4 -> video
    """
    head, marker, _ = url.partition("/upload/")
    resource_type = head.rsplit("/", 1)[-1] if marker else ""
    return resource_type if resource_type in _RESOURCE_TYPES else "image"


def public_id_from_url(url: str) -> str | None:
    """
    Derive the provider public id from a delivery URL.

    https://res.cloudinary.com/demo/image/upload/v1712/avatars/abc.png -> avatars/abc
    Raw assets keep their extension as part of the id.
    """
    _, marker, tail = url.partition("/upload/")
    if not marker or not tail:
        return None

    segments = [s for s in tail.split("?")[0].split("/") if s]
    if segments and _VERSION_SEGMENT.match(segments[0]):
        segments = segments[1:]
    if not segments:
        return None

    if resource_type_from_url(url) != "raw":
        segments[-1] = segments[-1].rsplit(".", 1)[0]
    return "/".join(segments)


class CloudinaryStorage:
    """Cloudinary REST API client (signed upload and destroy)."""

    def __init__(
        self,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        base_url: str = "https://api.cloudinary.com/v1_1",
        timeout_seconds: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._http_client = http_client

    @classmethod
    def from_settings(cls, settings: Settings) -> "CloudinaryStorage":
        """Build from application settings."""
        return cls(
            cloud_name=settings.CLOUDINARY_CLOUD_NAME,
            api_key=settings.CLOUDINARY_API_KEY,
            api_secret=settings.CLOUDINARY_API_SECRET,
            base_url=settings.cloudinary_base_url,
            timeout_seconds=settings.storage_timeout_seconds,
        )

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._http_client

    def sign(self, params: dict[str, str]) -> str:
        """SHA-1 signature over the sorted request parameters plus the API secret."""
        to_sign = "&".join(f"{key}={params[key]}" for key in sorted(params))
        return hashlib.sha1(f"{to_sign}{self.api_secret}".encode()).hexdigest()

    def _signed(self, params: dict[str, str]) -> dict[str, str]:
        params = {**params, "timestamp": str(int(time.time()))}
        return {**params, "api_key": self.api_key, "signature": self.sign(params)}

    async def upload(self, path: Path) -> StoredAsset | None:
        """Upload a staged file; the local copy is removed whatever the outcome."""
        try:
            content = await run_in_threadpool(path.read_bytes)
            response = await self.http_client.post(
                f"{self.base_url}/{self.cloud_name}/auto/upload",
                data=self._signed({}),
                files={"file": (path.name, content)},
            )
            response.raise_for_status()
            body = response.json()
            asset = StoredAsset(
                url=body["secure_url"],
                public_id=body["public_id"],
                resource_type=body.get("resource_type", "image"),
            )
            logger.info("asset_uploaded", public_id=asset.public_id)
            return asset

        except FileNotFoundError:
            logger.warning("asset_upload_missing_file", path=str(path))
            return None
        except httpx.HTTPStatusError as e:
            logger.error(
                "asset_upload_failed", status=e.response.status_code, text=e.response.text
            )
            return None
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.error("asset_upload_error", error=str(e))
            return None
        finally:
            path.unlink(missing_ok=True)

    async def delete(self, url: str) -> bool:
        """Destroy the asset behind a delivery URL."""
        public_id = public_id_from_url(url)
        resource_type = resource_type_from_url(url)
        if public_id is None:
            logger.warning("asset_delete_unparseable_url", url=url)
            return False

        try:
            response = await self.http_client.post(
                f"{self.base_url}/{self.cloud_name}/{resource_type}/destroy",
                data=self._signed({"public_id": public_id}),
            )
            response.raise_for_status()
            result = response.json().get("result")
        except httpx.HTTPStatusError as e:
            logger.error(
                "asset_delete_failed",
                public_id=public_id,
                status=e.response.status_code,
                text=e.response.text,
            )
            return False
        except (httpx.HTTPError, ValueError) as e:
            logger.error("asset_delete_error", public_id=public_id, error=str(e))
            return False

        if result != "ok":
            logger.warning("asset_delete_rejected", public_id=public_id, result=result)
            return False

        logger.info("asset_deleted", public_id=public_id, resource_type=resource_type)
        return True

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()


async def stage_upload(upload: UploadFile | None, directory: Path) -> Path | None:
    """
    Copy an incoming multipart file to the staging directory.

    Returns:
        Path of the staged copy, or None when no file was sent.
    """
    if upload is None or not upload.filename:
        return None

    suffix = Path(upload.filename).suffix
    target = directory / f"{uuid.uuid4().hex}{suffix}"

    def _copy() -> None:
        directory.mkdir(parents=True, exist_ok=True)
        with target.open("wb") as out:
            shutil.copyfileobj(upload.file, out)

    await run_in_threadpool(_copy)
    logger.debug("upload_staged", field=upload.filename, path=str(target))
    return target


async def upload_staged_asset(
    storage: ObjectStorage, path: Path | None, field: str
) -> StoredAsset:
    """
    Push a staged file to storage.

    Raises:
        AssetNotFoundError: nothing was staged
        UploadFailedError: storage returned no reference
    """
    if path is None:
        raise AssetNotFoundError(field)

    asset = await storage.upload(path)
    if asset is None or not asset.url:
        raise UploadFailedError(field)
    return asset
