"""Upload a single file through the presigned-URL flow."""

from __future__ import annotations

import hashlib
import logging
import mimetypes
from pathlib import Path
from typing import Callable, Optional, Protocol

from syncpair.api import FileCheckItem, SyncApiClient, SyncApiError
from syncpair.config import UploadConfig

from .models import UploadItem

LOGGER = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"
_HASH_CHUNK_SIZE = 1024 * 1024


class UploadError(Exception):
    """Raised when a single upload attempt fails."""


class Uploader(Protocol):
    def upload(self, item: UploadItem, config: UploadConfig) -> bool:
        """Upload ``item`` and return True if file bytes were transferred."""


def content_type_for(path: Path) -> str:
    guessed, _ = mimetypes.guess_type(path.name)
    return guessed or DEFAULT_CONTENT_TYPE


def sha256_of(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(_HASH_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


class PresignedUploader:
    """Upload files by asking the server for a presigned URL first.

    The server answers ``exists`` for content it already holds, in which
    case nothing is transferred.
    """

    def __init__(
        self,
        client: SyncApiClient,
        token_provider: Callable[[], Optional[str]],
    ) -> None:
        self._client = client
        self._token_provider = token_provider

    def upload(self, item: UploadItem, config: UploadConfig) -> bool:
        """Upload one file.

        Args:
            item: File to send.
            config: Upload configuration in effect when the attempt started.

        Returns:
            bool: True if the file was transferred, False if the server
            already had it.

        Raises:
            UploadError: If any step of the transfer fails.
        """
        path = item.path
        if not path.is_file():
            raise UploadError(f"{item.relative_path} no longer exists.")

        client = self._client.rebase(config.server_url)
        token = self._token_provider()
        content_type = content_type_for(path)
        try:
            checksum = sha256_of(path)
        except OSError as exc:
            raise UploadError(f"Could not read {item.relative_path}: {exc}") from exc

        request = FileCheckItem(
            file_name=item.relative_path, content_type=content_type, sha256=checksum
        )
        try:
            results = client.get_presigned_batch(token, [request])
        except SyncApiError as exc:
            raise UploadError(f"Presign request failed for {item.relative_path}: {exc}") from exc

        result = next((entry for entry in results if entry.file_name == item.relative_path), None)
        if result is None:
            raise UploadError(f"Server did not answer for {item.relative_path}.")
        if result.status == "exists":
            LOGGER.debug("Server already has %s; skipping transfer", item.relative_path)
            return False
        if not result.upload_url:
            raise UploadError(f"No upload URL returned for {item.relative_path}.")

        try:
            with path.open("rb") as stream:
                client.put_file(result.upload_url, stream, content_type)
        except OSError as exc:
            raise UploadError(f"Could not read {item.relative_path}: {exc}") from exc
        except SyncApiError as exc:
            raise UploadError(f"Upload failed for {item.relative_path}: {exc}") from exc

        try:
            client.update_metadata(token, result.file_id)
        except SyncApiError as exc:
            LOGGER.warning("Metadata update failed for %s: %s", item.relative_path, exc)
        return True


__all__ = ["PresignedUploader", "UploadError", "Uploader", "content_type_for", "sha256_of"]
