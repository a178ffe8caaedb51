"""Base object store interface for uploaded artifacts."""

from __future__ import annotations

import abc
import logging
from datetime import timedelta
from typing import Iterable, Optional

from ..constants import DEFAULT_UPLOAD_URL_TTL_SECONDS
from ..models import UploadTicket, utcnow
from ..uploads import build_object_path, normalize_object_path, validate_upload

logger = logging.getLogger(__name__)


class BaseObjectStore(metaclass=abc.ABCMeta):
    """Abstract gateway to the object store holding uploaded documents.

    Implementations never drive workflow logic; they only sign uploads,
    read and delete objects.
    """

    def __init__(
        self,
        upload_url_ttl_seconds: int = DEFAULT_UPLOAD_URL_TTL_SECONDS,
        allowed_mime_types: Optional[Iterable[str]] = None,
        max_file_size_bytes: Optional[int] = None,
    ) -> None:
        self.upload_url_ttl_seconds = upload_url_ttl_seconds
        self.allowed_mime_types = (
            frozenset(allowed_mime_types) if allowed_mime_types else None
        )
        self.max_file_size_bytes = max_file_size_bytes

    async def request_upload_url(
        self, name: str, size: int, content_type: str
    ) -> UploadTicket:
        """Validate the upload and return a short-lived write URL for it."""
        validate_upload(
            content_type,
            size,
            allowed_mime_types=self.allowed_mime_types,
            max_file_size_bytes=self.max_file_size_bytes,
        )
        object_path = normalize_object_path(build_object_path(name))
        upload_url = await self._sign_upload(
            object_path, content_type, self.upload_url_ttl_seconds
        )
        logger.info(f"Issued upload URL for {object_path} ({content_type}, {size} bytes)")
        return UploadTicket(
            upload_url=upload_url,
            object_path=object_path,
            expires_at=utcnow() + timedelta(seconds=self.upload_url_ttl_seconds),
        )

    @abc.abstractmethod
    async def _sign_upload(
        self, object_path: str, content_type: str, expires_in: int
    ) -> str:
        """Return a URL the client can PUT the object to."""
        raise NotImplementedError

    @abc.abstractmethod
    async def delete_object(self, object_path: str) -> None:
        """Delete the object. Deleting a missing object is not an error."""
        raise NotImplementedError

    @abc.abstractmethod
    async def read_object(self, object_path: str) -> bytes:
        """Return the object's bytes or raise ``ObjectNotFound``."""
        raise NotImplementedError

    @abc.abstractmethod
    async def object_exists(self, object_path: str) -> bool:
        raise NotImplementedError
