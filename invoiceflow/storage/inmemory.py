"""In-memory object store for testing and local runs."""

from __future__ import annotations

import asyncio
from typing import Dict, Optional

from ..errors import ObjectNotFound
from ..uploads import normalize_object_path
from .base import BaseObjectStore


class InMemoryObjectStore(BaseObjectStore):
    """Keep uploaded objects in a dictionary keyed by object path."""

    def __init__(self, base_url: str = "memory://uploads", **kwargs) -> None:
        super().__init__(**kwargs)
        self.base_url = base_url.rstrip("/")
        self._objects: Dict[str, bytes] = {}
        self._content_types: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def _sign_upload(
        self, object_path: str, content_type: str, expires_in: int
    ) -> str:
        return f"{self.base_url}/{object_path}?expires_in={expires_in}"

    async def put_object(
        self, object_path: str, data: bytes, content_type: Optional[str] = None
    ) -> str:
        """Store ``data`` directly, standing in for the client-side upload."""
        path = normalize_object_path(object_path)
        async with self._lock:
            self._objects[path] = data
            if content_type:
                self._content_types[path] = content_type
        return path

    async def delete_object(self, object_path: str) -> None:
        path = normalize_object_path(object_path)
        async with self._lock:
            self._objects.pop(path, None)
            self._content_types.pop(path, None)

    async def read_object(self, object_path: str) -> bytes:
        path = normalize_object_path(object_path)
        try:
            return self._objects[path]
        except KeyError:
            raise ObjectNotFound(path) from None

    async def object_exists(self, object_path: str) -> bool:
        return normalize_object_path(object_path) in self._objects
