"""Object store factory and initialization."""

from __future__ import annotations

import os
from typing import Optional

from ..config import InvoiceFlowConfig, load_config
from .base import BaseObjectStore
from .inmemory import InMemoryObjectStore

_object_store_instance: BaseObjectStore | None = None


def get_object_store(
    backend: Optional[str] = None, config: Optional[InvoiceFlowConfig] = None
) -> BaseObjectStore:
    """Factory function to get the configured object store."""

    global _object_store_instance
    if _object_store_instance is not None and backend is None and config is None:
        return _object_store_instance

    config = config or load_config()
    backend = (
        backend
        or os.getenv("INVOICEFLOW_OBJECT_STORE")
        or config.object_store.backend
    ).lower()
    common = dict(
        upload_url_ttl_seconds=config.object_store.upload_url_ttl_seconds,
        allowed_mime_types=config.uploads.allowed_mime_types,
        max_file_size_bytes=config.uploads.max_file_size_bytes,
    )

    if backend == "inmemory":
        _object_store_instance = InMemoryObjectStore(**common)
    elif backend == "s3":
        from .s3 import S3ObjectStore

        s3_conf = config.object_store.s3
        _object_store_instance = S3ObjectStore(
            bucket_name=s3_conf.bucket,
            aws_access_key_id=s3_conf.aws_access_key_id,
            aws_secret_access_key=s3_conf.aws_secret_access_key,
            region_name=s3_conf.region,
            endpoint_url=s3_conf.endpoint_url,
            **common,
        )
    else:
        raise ValueError(f"Unsupported object store backend: {backend}")

    return _object_store_instance


__all__ = ["BaseObjectStore", "InMemoryObjectStore", "get_object_store"]
