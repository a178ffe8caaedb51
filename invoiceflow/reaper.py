"""TTL reaper for expired documents."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from .errors import InvoiceFlowError
from .lifecycle import remove_document_workflows
from .models import Document, SweepReport, utcnow
from .persistence import DocumentStore, WorkflowRepository
from .storage import BaseObjectStore

logger = logging.getLogger(__name__)


class TTLReaper:
    """Deletes documents whose ``expires_at`` has passed, whatever their status.

    For each expired document the stored object is deleted first and the
    record second; the record is kept whenever the object deletion fails, so
    storage is never left without a tracking record. The reaper has no
    schedule of its own; a cron job or the CLI calls :meth:`sweep`.
    """

    def __init__(
        self,
        store: DocumentStore,
        object_store: BaseObjectStore,
        workflows: Optional[WorkflowRepository] = None,
        batch_limit: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._object_store = object_store
        self._workflows = workflows
        self.batch_limit = batch_limit
        self._clock = clock

    async def sweep(self, now: Optional[datetime] = None) -> SweepReport:
        """Run one pass over expired documents.

        A failure for one document is logged and counted; it never stops the
        sweep. Only a failure of the expiry query itself propagates.
        """
        now = now or self._clock()
        logger.info(f"Running TTL sweep at {now.isoformat()}")
        expired = await self._store.query_expired(now, limit=self.batch_limit)
        report = SweepReport(expired=len(expired))

        for document in expired:
            if await self._reap(document):
                report.deleted += 1
            else:
                report.failed += 1

        logger.info(
            f"TTL sweep finished: expired={report.expired} "
            f"deleted={report.deleted} failed={report.failed}"
        )
        return report

    async def _reap(self, document: Document) -> bool:
        logger.info(f"Deleting expired document {document.id} ({document.object_path})")
        try:
            await self._object_store.delete_object(document.object_path)
        except Exception as e:
            logger.error(
                f"Failed to delete object {document.object_path} for document "
                f"{document.id}; keeping record: {e}"
            )
            return False

        try:
            await self._store.delete_by_id(document.id)
        except Exception as e:
            logger.error(
                f"Deleted object for document {document.id} but not its record; "
                f"next sweep will retry: {e}"
            )
            return False

        await self._teardown_workflows(document.id)
        return True

    async def _teardown_workflows(self, document_id: str) -> None:
        if self._workflows is None:
            return
        try:
            await remove_document_workflows(self._workflows, document_id)
        except InvoiceFlowError as e:
            logger.warning(
                f"Could not remove workflow instances of document {document_id}: {e}"
            )
