"""Helpers for naming and validating uploaded artifacts."""

from __future__ import annotations

import re
import uuid
from typing import Iterable, Optional

from .constants import (
    INVOICE_ALLOWED_MIME_TYPES,
    MAX_FILE_NAME_LENGTH,
    MAX_FILE_SIZE_BYTES,
    UPLOAD_PREFIX,
)
from .errors import InvalidUpload

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]")
_DOT_RUNS = re.compile(r"\.{2,}")


def sanitize_file_name(file_name: str) -> str:
    """Reduce ``file_name`` to a safe base name for use in object paths."""
    base_name = re.split(r"[\\/]", file_name)[-1] or "document"
    sanitized = _UNSAFE_CHARS.sub("_", base_name)
    sanitized = _DOT_RUNS.sub(".", sanitized).strip(".")[:MAX_FILE_NAME_LENGTH]
    return sanitized or "document"


def normalize_object_path(path: str) -> str:
    """Strip leading slashes and reject traversal or backslash segments."""
    trimmed = path.lstrip("/")
    if not trimmed or ".." in trimmed or "\\" in trimmed:
        raise InvalidUpload(f"Invalid object path: {path!r}")
    return trimmed


def build_object_path(file_name: str) -> str:
    return f"{UPLOAD_PREFIX}/{uuid.uuid4()}-{sanitize_file_name(file_name)}"


def validate_upload(
    content_type: str,
    size: int,
    allowed_mime_types: Optional[Iterable[str]] = None,
    max_file_size_bytes: Optional[int] = None,
) -> None:
    """Raise ``InvalidUpload`` if the declared type or size is not accepted."""
    allowed = set(allowed_mime_types or INVOICE_ALLOWED_MIME_TYPES)
    limit = max_file_size_bytes or MAX_FILE_SIZE_BYTES
    if content_type not in allowed:
        raise InvalidUpload(f"Unsupported file type: {content_type}")
    if size < 0:
        raise InvalidUpload("File size must not be negative.")
    if size > limit:
        raise InvalidUpload(f"File exceeds size limit of {limit} bytes.")
