from __future__ import annotations

import os
from datetime import timedelta
from typing import List, Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_EXTRACTION_MODEL,
    DEFAULT_REAPER_BATCH_LIMIT,
    DEFAULT_UPLOAD_URL_TTL_SECONDS,
    INVOICE_ALLOWED_MIME_TYPES,
    MAX_FILE_SIZE_BYTES,
)


class S3Config(BaseModel):
    """Configuration for the S3 object store."""

    bucket: str = "invoiceflow-uploads"
    region: str = "us-east-1"
    endpoint_url: Optional[str] = None
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None


class ObjectStoreConfig(BaseModel):
    """Object store backend selection."""

    backend: Literal["inmemory", "s3"] = "inmemory"
    upload_url_ttl_seconds: int = DEFAULT_UPLOAD_URL_TTL_SECONDS
    s3: S3Config = S3Config()


class UploadConfig(BaseModel):
    """Limits applied to upload URL requests."""

    max_file_size_bytes: int = MAX_FILE_SIZE_BYTES
    allowed_mime_types: List[str] = Field(
        default_factory=lambda: sorted(INVOICE_ALLOWED_MIME_TYPES)
    )


class ExtractionConfig(BaseModel):
    """Settings for the AI extraction agent."""

    model: str = DEFAULT_EXTRACTION_MODEL


class ReaperConfig(BaseModel):
    batch_limit: Optional[int] = DEFAULT_REAPER_BATCH_LIMIT


class InvoiceFlowConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    retention_hours: float = 1.0
    definitions_path: Optional[str] = None
    object_store: ObjectStoreConfig = ObjectStoreConfig()
    uploads: UploadConfig = UploadConfig()
    extraction: ExtractionConfig = ExtractionConfig()
    reaper: ReaperConfig = ReaperConfig()

    @property
    def retention(self) -> timedelta:
        return timedelta(hours=self.retention_hours)


def load_config(path: Optional[str] = None) -> InvoiceFlowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to INVOICEFLOW_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("INVOICEFLOW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = InvoiceFlowConfig(**data)
    else:
        config = InvoiceFlowConfig()

    env_db_url = os.getenv("INVOICEFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
