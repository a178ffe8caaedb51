"""Repository abstractions for document and workflow persistence."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Protocol

from ..models import Document, DocumentStatus
from .models import WorkflowInstance


class DocumentStore(Protocol):
    """Protocol for document record persistence backends."""

    async def create(self, document: Document) -> Document:
        """Persist a new document record."""

    async def get_by_id(self, document_id: str) -> Document:
        """Return the document or raise ``NotFound``."""

    async def update_status(
        self,
        document_id: str,
        expected_status: DocumentStatus,
        new_status: DocumentStatus,
        patch: Optional[dict[str, Any]] = None,
    ) -> Document:
        """Move the document to ``new_status`` only if it is in ``expected_status``.

        Raises ``NotFound`` when the record is missing and ``InvalidTransition``
        when its current status differs from ``expected_status``.
        """

    async def delete_by_id(self, document_id: str) -> bool:
        """Delete the record. Returns ``False`` when it did not exist."""

    async def query_expired(
        self, now: datetime, limit: Optional[int] = None
    ) -> list[Document]:
        """Return documents whose ``expires_at`` is before ``now``."""

    async def list_documents(self) -> list[Document]:
        """Return all persisted documents."""


class WorkflowRepository(Protocol):
    """Protocol for workflow instance persistence backends."""

    async def create_instance(self, instance: WorkflowInstance) -> WorkflowInstance:
        """Persist initial workflow state.

        Raises ``ActiveWorkflowExists`` when ``instance`` is running and the
        document already has a running instance. The check and the insert
        are one atomic step.
        """

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        """Retrieve the workflow instance by id."""

    async def update_instance(
        self, instance: WorkflowInstance, expected_version: int
    ) -> bool:
        """Store ``instance`` if the persisted version equals ``expected_version``.

        The stored version becomes ``expected_version + 1``. Returns ``False``
        when another writer got there first.
        """

    async def find_running_for_document(
        self, document_id: str
    ) -> WorkflowInstance | None:
        """Return the running instance that references ``document_id``."""

    async def list_for_document(self, document_id: str) -> list[WorkflowInstance]:
        """Return every instance that references ``document_id``."""

    async def list_instances(self) -> list[WorkflowInstance]:
        """Return all persisted instances."""

    async def delete_instance(self, instance_id: str) -> bool:
        """Remove the instance. Returns ``False`` when it did not exist."""
