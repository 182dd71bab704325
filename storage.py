"""
Object storage for uploaded files (ImageKit upload API).
"""
import logging
from typing import Iterable, Optional

import requests
from fastapi import Depends

from config import Settings, get_settings
from errors import ApiError

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when the storage service rejects or fails an upload."""


class ImageKitStorage:
    def __init__(self, private_key: str, upload_url: str, timeout: float = 30.0, session: Optional[requests.Session] = None):
        self.private_key = private_key
        self.upload_url = upload_url
        self.timeout = timeout
        self.session = session or requests.Session()

    def upload(
        self,
        content: bytes,
        file_name: str,
        folder: str,
        tags: Optional[Iterable[str]] = None,
        use_unique_file_name: bool = True,
    ) -> str:
        """Upload bytes and return the public URL of the stored file."""
        data = {
            "fileName": file_name,
            "folder": folder,
            "useUniqueFileName": "true" if use_unique_file_name else "false",
        }
        if tags:
            data["tags"] = ",".join(t for t in tags if t)

        try:
            resp = self.session.post(
                self.upload_url,
                auth=(self.private_key, ""),
                data=data,
                files={"file": (file_name, content)},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            payload = resp.json()
        except requests.RequestException as e:
            raise StorageError(f"Upload of {file_name} failed: {e}") from e
        except ValueError as e:
            raise StorageError(f"Upload of {file_name} returned invalid JSON") from e

        url = payload.get("url")
        if not url:
            raise StorageError(f"Upload of {file_name} returned no url")
        logger.info(f"Uploaded {file_name} to {folder}")
        return url


def get_storage(settings: Settings = Depends(get_settings)) -> Optional[ImageKitStorage]:
    """Build the storage client, or None when no credentials are configured."""
    if not settings.storage_configured:
        return None
    return ImageKitStorage(
        private_key=settings.imagekit_private_key,
        upload_url=settings.imagekit_upload_url,
        timeout=settings.storage_timeout,
    )


def require_storage(storage: Optional[ImageKitStorage]) -> ImageKitStorage:
    if storage is None:
        raise ApiError(500, "File storage not configured")
    return storage
