"""Core data contracts for documents, uploads and sweeps."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentStatus(str, Enum):
    """Lifecycle states of an uploaded document."""

    UPLOADING = "uploading"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (DocumentStatus.COMPLETED, DocumentStatus.ERROR)


class LineItem(BaseModel):
    """Single invoice line."""

    description: str
    quantity: float = 1
    unit_price: float = 0
    total: float = 0


class ExtractedData(BaseModel):
    """Structured invoice fields returned by the extraction service."""

    vendor_name: str
    invoice_number: str
    invoice_date: Optional[str] = None
    due_date: Optional[str] = None
    total_amount: float
    vat_amount: Optional[float] = None
    currency: str
    line_items: List[LineItem] = Field(default_factory=list)


class Document(BaseModel):
    """Persisted record of an uploaded invoice document."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    object_path: str
    file_name: str
    file_type: str
    file_size: int
    status: DocumentStatus = DocumentStatus.UPLOADING
    extracted_data: Optional[ExtractedData] = None
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at < (now or utcnow())


class UploadMetadata(BaseModel):
    """Raw upload details used to create a document lazily."""

    object_path: str
    file_name: str
    file_type: str = "application/pdf"
    file_size: int = 0


class UploadTicket(BaseModel):
    """Short-lived write URL issued by the object store."""

    upload_url: str
    object_path: str
    expires_at: datetime


class SweepReport(BaseModel):
    """Outcome counts of one TTL sweep."""

    expired: int = 0
    deleted: int = 0
    failed: int = 0
