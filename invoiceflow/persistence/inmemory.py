"""In-memory implementations of the document store and workflow repository."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Dict, Optional

from ..errors import ActiveWorkflowExists, InvalidTransition, NotFound
from ..models import Document, DocumentStatus
from .models import WorkflowInstance, WorkflowStatus
from .repository import DocumentStore, WorkflowRepository


class InMemoryDocumentStore(DocumentStore):
    """Store document records in local memory.

    Useful for tests or when no database is configured. Records are copied on
    the way in and out so callers never share mutable state with the store.
    """

    def __init__(self) -> None:
        self._documents: Dict[str, Document] = {}
        self._lock = asyncio.Lock()

    async def create(self, document: Document) -> Document:
        async with self._lock:
            self._documents[document.id] = document.model_copy(deep=True)
        return document

    async def get_by_id(self, document_id: str) -> Document:
        doc = self._documents.get(document_id)
        if doc is None:
            raise NotFound("Document", document_id)
        return doc.model_copy(deep=True)

    async def update_status(
        self,
        document_id: str,
        expected_status: DocumentStatus,
        new_status: DocumentStatus,
        patch: Optional[dict[str, Any]] = None,
    ) -> Document:
        async with self._lock:
            doc = self._documents.get(document_id)
            if doc is None:
                raise NotFound("Document", document_id)
            if doc.status != expected_status:
                raise InvalidTransition(
                    document_id, expected_status.value, doc.status.value, new_status.value
                )
            data = doc.model_dump()
            data.update(patch or {})
            data["status"] = new_status
            updated = Document.model_validate(data)
            self._documents[document_id] = updated
        return updated.model_copy(deep=True)

    async def delete_by_id(self, document_id: str) -> bool:
        async with self._lock:
            return self._documents.pop(document_id, None) is not None

    async def query_expired(
        self, now: datetime, limit: Optional[int] = None
    ) -> list[Document]:
        expired = sorted(
            (d for d in self._documents.values() if d.expires_at < now),
            key=lambda d: d.expires_at,
        )
        if limit is not None:
            expired = expired[:limit]
        return [d.model_copy(deep=True) for d in expired]

    async def list_documents(self) -> list[Document]:
        return [d.model_copy(deep=True) for d in self._documents.values()]


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store workflow instances in local memory.

    Data is not persisted across process restarts.
    """

    def __init__(self) -> None:
        self._instances: Dict[str, WorkflowInstance] = {}
        self._lock = asyncio.Lock()

    async def create_instance(self, instance: WorkflowInstance) -> WorkflowInstance:
        async with self._lock:
            if instance.status == WorkflowStatus.RUNNING:
                for wf in self._instances.values():
                    if (
                        wf.document_id == instance.document_id
                        and wf.status == WorkflowStatus.RUNNING
                    ):
                        raise ActiveWorkflowExists(instance.document_id, wf.id)
            self._instances[instance.id] = instance.model_copy(deep=True)
        return instance

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        wf = self._instances.get(instance_id)
        return wf.model_copy(deep=True) if wf else None

    async def update_instance(
        self, instance: WorkflowInstance, expected_version: int
    ) -> bool:
        async with self._lock:
            current = self._instances.get(instance.id)
            if current is None or current.version != expected_version:
                return False
            stored = instance.model_copy(deep=True)
            stored.version = expected_version + 1
            self._instances[instance.id] = stored
        instance.version = expected_version + 1
        return True

    async def find_running_for_document(
        self, document_id: str
    ) -> WorkflowInstance | None:
        for wf in self._instances.values():
            if wf.document_id == document_id and wf.status == WorkflowStatus.RUNNING:
                return wf.model_copy(deep=True)
        return None

    async def list_for_document(self, document_id: str) -> list[WorkflowInstance]:
        return [
            wf.model_copy(deep=True)
            for wf in self._instances.values()
            if wf.document_id == document_id
        ]

    async def list_instances(self) -> list[WorkflowInstance]:
        return [wf.model_copy(deep=True) for wf in self._instances.values()]

    async def delete_instance(self, instance_id: str) -> bool:
        async with self._lock:
            return self._instances.pop(instance_id, None) is not None
