"""Document lifecycle state machine."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Union

from .constants import DEFAULT_RETENTION
from .errors import InvalidTransition
from .models import Document, DocumentStatus, ExtractedData, utcnow
from .persistence import DocumentStore, WorkflowRepository
from .storage import BaseObjectStore
from .uploads import normalize_object_path

logger = logging.getLogger(__name__)

# Allowed moves: uploading -> processing -> completed | error.
TRANSITIONS: Dict[DocumentStatus, frozenset[DocumentStatus]] = {
    DocumentStatus.UPLOADING: frozenset({DocumentStatus.PROCESSING}),
    DocumentStatus.PROCESSING: frozenset(
        {DocumentStatus.COMPLETED, DocumentStatus.ERROR}
    ),
    DocumentStatus.COMPLETED: frozenset(),
    DocumentStatus.ERROR: frozenset(),
}


async def remove_document_workflows(
    workflows: WorkflowRepository, document_id: str
) -> int:
    """Delete every workflow instance that references ``document_id``."""
    removed = 0
    for instance in await workflows.list_for_document(document_id):
        if await workflows.delete_instance(instance.id):
            removed += 1
            logger.info(
                f"Removed workflow instance {instance.id} of document {document_id}"
            )
    return removed


class DocumentLifecycleManager:
    """Owns document creation, status transitions and explicit deletion.

    Every transition is one conditional update on the document store keyed
    on the expected current status, so concurrent callers racing on the same
    document are serialized by the store and the loser gets
    ``InvalidTransition``. The manager never calls the extraction service.
    """

    def __init__(
        self,
        store: DocumentStore,
        object_store: BaseObjectStore,
        retention: timedelta = DEFAULT_RETENTION,
        clock: Callable[[], datetime] = utcnow,
        workflows: Optional[WorkflowRepository] = None,
    ) -> None:
        self._store = store
        self._object_store = object_store
        self._workflows = workflows
        self.retention = retention
        self._clock = clock

    async def create_document(
        self,
        object_path: str,
        file_name: str,
        file_type: str,
        file_size: int,
        retention: Optional[timedelta] = None,
    ) -> Document:
        """Persist a new ``uploading`` document expiring ``retention`` from now."""
        retention = retention if retention is not None else self.retention
        if retention <= timedelta(0):
            raise ValueError("retention must be positive")
        if file_size < 0:
            raise ValueError("file_size must not be negative")

        now = self._clock()
        document = Document(
            object_path=normalize_object_path(object_path),
            file_name=file_name,
            file_type=file_type,
            file_size=file_size,
            status=DocumentStatus.UPLOADING,
            created_at=now,
            expires_at=now + retention,
        )
        await self._store.create(document)
        logger.info(
            f"Created document {document.id} for {document.object_path}, "
            f"expires at {document.expires_at.isoformat()}"
        )
        return document

    async def get_document(self, document_id: str) -> Document:
        return await self._store.get_by_id(document_id)

    async def begin_processing(self, document_id: str) -> Document:
        return await self._transition(
            document_id, DocumentStatus.UPLOADING, DocumentStatus.PROCESSING
        )

    async def complete_processing(
        self,
        document_id: str,
        extracted_data: Union[ExtractedData, Dict[str, Any]],
    ) -> Document:
        data = ExtractedData.model_validate(extracted_data)
        return await self._transition(
            document_id,
            DocumentStatus.PROCESSING,
            DocumentStatus.COMPLETED,
            {"extracted_data": data.model_dump(mode="json"), "error_message": None},
        )

    async def fail_processing(self, document_id: str, error_message: str) -> Document:
        return await self._transition(
            document_id,
            DocumentStatus.PROCESSING,
            DocumentStatus.ERROR,
            {"error_message": error_message or "Processing failed", "extracted_data": None},
        )

    async def delete_document(self, document_id: str) -> None:
        """Delete the stored object, then the record, then its workflow instances.

        If the object deletion fails the record and instances stay so the TTL
        reaper can retry once the document expires.
        """
        document = await self._store.get_by_id(document_id)
        await self._object_store.delete_object(document.object_path)
        await self._store.delete_by_id(document_id)
        logger.info(f"Deleted document {document_id} ({document.object_path})")
        if self._workflows is not None:
            await remove_document_workflows(self._workflows, document_id)

    async def _transition(
        self,
        document_id: str,
        expected: DocumentStatus,
        target: DocumentStatus,
        patch: Optional[Dict[str, Any]] = None,
    ) -> Document:
        if target not in TRANSITIONS[expected]:
            raise InvalidTransition(document_id, expected.value, None, target.value)
        try:
            document = await self._store.update_status(
                document_id, expected, target, patch
            )
        except InvalidTransition as e:
            logger.error(f"Rejected transition: {e}")
            raise
        logger.info(
            f"Document {document_id} moved {expected.value} -> {target.value}"
        )
        return document
