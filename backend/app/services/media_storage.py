"""Blob storage adapter used to remove message media."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol
from urllib.parse import urlparse

import cloudinary.uploader
from cloudinary.exceptions import Error as CloudinaryError

from app.config import get_settings

_DESTROY_OK_RESULTS = {"ok", "not found"}


class MediaStorageError(RuntimeError):
    """Raised when the blob store rejects a delete request."""


class MediaStorage(Protocol):
    """Protocol for blob stores that can delete an object by key."""

    def destroy(self, public_id: str) -> None:
        """Delete one stored object."""


def derive_media_public_id(media_url: str | None) -> str | None:
    """Derive the storage key from a delivery URL.

    The key is the last two path segments with the file extension removed, so
    ``.../upload/v1712/chat_media/photo.jpg`` maps to ``chat_media/photo``.
    """

    if not media_url:
        return None
    path = urlparse(media_url).path or media_url
    segments = [segment for segment in path.split("/") if segment]
    if not segments:
        return None
    public_id = "/".join(segments[-2:]).split(".")[0]
    return public_id or None


@dataclass(slots=True)
class CloudinaryMediaStorage:
    """Cloudinary-backed media deletion."""

    cloud_name: str | None = None
    api_key: str | None = None
    api_secret: str | None = None

    def destroy(self, public_id: str) -> None:
        options = {
            key: value
            for key, value in (
                ("cloud_name", self.cloud_name),
                ("api_key", self.api_key),
                ("api_secret", self.api_secret),
            )
            if value
        }
        try:
            response = cloudinary.uploader.destroy(public_id, **options)
        except CloudinaryError as exc:
            raise MediaStorageError(f"Cloudinary destroy failed for {public_id}: {exc}") from exc
        result = (response or {}).get("result")
        if result not in _DESTROY_OK_RESULTS:
            raise MediaStorageError(f"Cloudinary destroy returned {result!r} for {public_id}")


def get_media_storage() -> CloudinaryMediaStorage:
    """Build the configured media storage adapter."""

    settings = get_settings()
    return CloudinaryMediaStorage(
        cloud_name=settings.cloudinary_cloud_name,
        api_key=settings.cloudinary_api_key,
        api_secret=settings.cloudinary_api_secret,
    )
