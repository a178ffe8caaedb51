"""Persistence layer for invoiceflow documents and workflow instances."""

from __future__ import annotations

import os
from typing import Optional

from ..config import InvoiceFlowConfig, load_config
from .inmemory import InMemoryDocumentStore, InMemoryWorkflowRepository
from .models import HistoryEntry, PendingAction, WorkflowInstance, WorkflowStatus
from .repository import DocumentStore, WorkflowRepository
from .sqlite import SQLiteDocumentStore, SQLiteWorkflowRepository

try:  # pragma: no cover - optional dependency
    from .postgres import PostgresDocumentStore, PostgresWorkflowRepository
except ImportError:  # pragma: no cover - optional dependency
    PostgresDocumentStore = None  # type: ignore
    PostgresWorkflowRepository = None  # type: ignore

_document_store_instance: DocumentStore | None = None
_repository_instance: WorkflowRepository | None = None


def _resolve_database_url(
    database_url: Optional[str], config: Optional[InvoiceFlowConfig]
) -> Optional[str]:
    config = config or load_config()
    return (
        database_url
        or os.getenv("INVOICEFLOW_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or getattr(config, "database_url", None)
    )


def _is_postgres(database_url: str) -> bool:
    return database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    )


def get_document_store(
    database_url: Optional[str] = None, config: Optional[InvoiceFlowConfig] = None
) -> DocumentStore:
    """Factory function to obtain a document store.

    The backend is selected based on ``database_url`` which can be provided
    explicitly, via environment variable ``INVOICEFLOW_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory store is returned.
    """

    global _document_store_instance
    if _document_store_instance is not None and database_url is None and config is None:
        return _document_store_instance

    database_url = _resolve_database_url(database_url, config)

    if not database_url:
        _document_store_instance = InMemoryDocumentStore()
    elif database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        _document_store_instance = SQLiteDocumentStore(path)
    elif _is_postgres(database_url):
        if PostgresDocumentStore is None:
            raise RuntimeError("Postgres support not available")
        _document_store_instance = PostgresDocumentStore(database_url)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _document_store_instance


def get_workflow_repository(
    database_url: Optional[str] = None, config: Optional[InvoiceFlowConfig] = None
) -> WorkflowRepository:
    """Factory function to obtain a workflow repository.

    Backend selection follows the same rules as :func:`get_document_store`.
    """

    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    database_url = _resolve_database_url(database_url, config)

    if not database_url:
        _repository_instance = InMemoryWorkflowRepository()
    elif database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        _repository_instance = SQLiteWorkflowRepository(path)
    elif _is_postgres(database_url):
        if PostgresWorkflowRepository is None:
            raise RuntimeError("Postgres support not available")
        _repository_instance = PostgresWorkflowRepository(database_url)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _repository_instance


__all__ = [
    "DocumentStore",
    "WorkflowRepository",
    "WorkflowInstance",
    "WorkflowStatus",
    "HistoryEntry",
    "PendingAction",
    "InMemoryDocumentStore",
    "InMemoryWorkflowRepository",
    "SQLiteDocumentStore",
    "SQLiteWorkflowRepository",
    "PostgresDocumentStore",
    "PostgresWorkflowRepository",
    "get_document_store",
    "get_workflow_repository",
]
