"""Default values shared across invoiceflow."""

from __future__ import annotations

from datetime import timedelta

DEFAULT_RETENTION = timedelta(hours=1)
DEFAULT_UPLOAD_URL_TTL_SECONDS = 15 * 60
DEFAULT_REAPER_BATCH_LIMIT = 200

MAX_FILE_SIZE_BYTES = 10 * 1024 * 1024
INVOICE_ALLOWED_MIME_TYPES = frozenset(
    {
        "application/pdf",
        "image/jpeg",
        "image/png",
    }
)

UPLOAD_PREFIX = "uploads"
MAX_FILE_NAME_LENGTH = 128

DEFAULT_WORKFLOW_TYPE = "invoice_approval"
DEFAULT_EXTRACTION_MODEL = "openai:gpt-4o-mini"
