"""PostgreSQL implementations of the document store and workflow repository."""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Optional

import asyncpg

from ..errors import ActiveWorkflowExists, InvalidTransition, NotFound, StorageError
from ..models import Document, DocumentStatus
from .models import WorkflowInstance, WorkflowStatus
from .repository import DocumentStore, WorkflowRepository
from .sqlite import PATCHABLE_COLUMNS

_DOCUMENT_COLUMNS = (
    "id, object_path, file_name, file_type, file_size, status, "
    "extracted_data, error_message, created_at, expires_at"
)
_INSTANCE_COLUMNS = (
    "id, workflow_type, definition_version, document_id, current_step, status, "
    "history, context, pending_action, version, created_at, updated_at"
)


def _json_or_none(value: Any) -> Any:
    if value is None:
        return None
    return json.loads(value) if isinstance(value, str) else value


class _PostgresBase:
    """Connection handling shared by the PostgreSQL backends."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
        try:
            conn = await self._connect()
        except (OSError, asyncpg.PostgresError) as exc:
            raise StorageError(f"PostgreSQL unavailable: {exc}") from exc
        try:
            yield conn
        except asyncpg.PostgresError as exc:
            raise StorageError(f"PostgreSQL operation failed: {exc}") from exc
        finally:
            await conn.close()

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS documents (
                id TEXT PRIMARY KEY,
                object_path TEXT NOT NULL,
                file_name TEXT NOT NULL,
                file_type TEXT NOT NULL,
                file_size INTEGER NOT NULL,
                status TEXT NOT NULL,
                extracted_data JSONB,
                error_message TEXT,
                created_at TIMESTAMPTZ NOT NULL,
                expires_at TIMESTAMPTZ NOT NULL
            )
            """
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_documents_expires_at ON documents (expires_at)"
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_instances (
                id TEXT PRIMARY KEY,
                workflow_type TEXT NOT NULL,
                definition_version TEXT NOT NULL,
                document_id TEXT NOT NULL,
                current_step INTEGER NOT NULL,
                status TEXT NOT NULL,
                history JSONB NOT NULL,
                context JSONB NOT NULL,
                pending_action JSONB,
                version INTEGER NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL
            )
            """
        )
        await conn.execute(
            "CREATE UNIQUE INDEX IF NOT EXISTS idx_workflow_instances_running "
            "ON workflow_instances (document_id) WHERE status = 'running'"
        )


def _record_to_document(r: asyncpg.Record) -> Document:
    return Document(
        id=r["id"],
        object_path=r["object_path"],
        file_name=r["file_name"],
        file_type=r["file_type"],
        file_size=r["file_size"],
        status=r["status"],
        extracted_data=_json_or_none(r["extracted_data"]),
        error_message=r["error_message"],
        created_at=r["created_at"],
        expires_at=r["expires_at"],
    )


def _record_to_instance(r: asyncpg.Record) -> WorkflowInstance:
    return WorkflowInstance(
        id=r["id"],
        workflow_type=r["workflow_type"],
        definition_version=r["definition_version"],
        document_id=r["document_id"],
        current_step=r["current_step"],
        status=r["status"],
        history=_json_or_none(r["history"]) or [],
        context=_json_or_none(r["context"]) or {},
        pending_action=_json_or_none(r["pending_action"]),
        version=r["version"],
        created_at=r["created_at"],
        updated_at=r["updated_at"],
    )


class PostgresDocumentStore(_PostgresBase, DocumentStore):
    """Persist document records using PostgreSQL."""

    async def create(self, document: Document) -> Document:
        async with self._connection() as conn:
            await conn.execute(
                f"INSERT INTO documents ({_DOCUMENT_COLUMNS}) "
                "VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)",
                document.id,
                document.object_path,
                document.file_name,
                document.file_type,
                document.file_size,
                document.status.value,
                document.extracted_data.model_dump_json() if document.extracted_data else None,
                document.error_message,
                document.created_at,
                document.expires_at,
            )
        return document

    async def get_by_id(self, document_id: str) -> Document:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE id = $1", document_id
            )
        if row is None:
            raise NotFound("Document", document_id)
        return _record_to_document(row)

    async def update_status(
        self,
        document_id: str,
        expected_status: DocumentStatus,
        new_status: DocumentStatus,
        patch: Optional[dict[str, Any]] = None,
    ) -> Document:
        patch = patch or {}
        unknown = set(patch) - set(PATCHABLE_COLUMNS)
        if unknown:
            raise ValueError(f"Cannot patch document columns: {sorted(unknown)}")

        assignments = ["status = $1"]
        params: list[Any] = [new_status.value]
        for column, value in patch.items():
            if column == "extracted_data" and value is not None:
                value = json.dumps(value)
            params.append(value)
            assignments.append(f"{column} = ${len(params)}")
        params.extend([document_id, expected_status.value])

        async with self._connection() as conn:
            row = await conn.fetchrow(
                f"UPDATE documents SET {', '.join(assignments)} "
                f"WHERE id = ${len(params) - 1} AND status = ${len(params)} "
                f"RETURNING {_DOCUMENT_COLUMNS}",
                *params,
            )
            if row is None:
                current = await conn.fetchval(
                    "SELECT status FROM documents WHERE id = $1", document_id
                )
                if current is None:
                    raise NotFound("Document", document_id)
                raise InvalidTransition(
                    document_id, expected_status.value, current, new_status.value
                )
        return _record_to_document(row)

    async def delete_by_id(self, document_id: str) -> bool:
        async with self._connection() as conn:
            result = await conn.execute("DELETE FROM documents WHERE id = $1", document_id)
        return result.endswith(" 1")

    async def query_expired(
        self, now: datetime, limit: Optional[int] = None
    ) -> list[Document]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"SELECT {_DOCUMENT_COLUMNS} FROM documents "
                "WHERE expires_at < $1 ORDER BY expires_at LIMIT $2",
                now,
                limit,
            )
        return [_record_to_document(r) for r in rows]

    async def list_documents(self) -> list[Document]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"SELECT {_DOCUMENT_COLUMNS} FROM documents ORDER BY created_at"
            )
        return [_record_to_document(r) for r in rows]


class PostgresWorkflowRepository(_PostgresBase, WorkflowRepository):
    """Persist workflow instances using PostgreSQL."""

    async def create_instance(self, instance: WorkflowInstance) -> WorkflowInstance:
        async with self._connection() as conn:
            try:
                await conn.execute(
                    f"INSERT INTO workflow_instances ({_INSTANCE_COLUMNS}) "
                    "VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)",
                    instance.id,
                    instance.workflow_type,
                    instance.definition_version,
                    instance.document_id,
                    instance.current_step,
                    instance.status.value,
                    json.dumps([h.model_dump(mode="json") for h in instance.history]),
                    json.dumps(instance.context),
                    instance.pending_action.model_dump_json() if instance.pending_action else None,
                    instance.version,
                    instance.created_at,
                    instance.updated_at,
                )
            except asyncpg.UniqueViolationError:
                running_id = await conn.fetchval(
                    "SELECT id FROM workflow_instances WHERE document_id = $1 AND status = $2",
                    instance.document_id,
                    WorkflowStatus.RUNNING.value,
                )
                if running_id is None:
                    raise
                raise ActiveWorkflowExists(instance.document_id, running_id) from None
        return instance

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                f"SELECT {_INSTANCE_COLUMNS} FROM workflow_instances WHERE id = $1",
                instance_id,
            )
        return _record_to_instance(row) if row else None

    async def update_instance(
        self, instance: WorkflowInstance, expected_version: int
    ) -> bool:
        async with self._connection() as conn:
            result = await conn.execute(
                """
                UPDATE workflow_instances
                SET current_step = $1, status = $2, history = $3, context = $4,
                    pending_action = $5, version = $6, updated_at = $7
                WHERE id = $8 AND version = $9
                """,
                instance.current_step,
                instance.status.value,
                json.dumps([h.model_dump(mode="json") for h in instance.history]),
                json.dumps(instance.context),
                instance.pending_action.model_dump_json() if instance.pending_action else None,
                expected_version + 1,
                instance.updated_at,
                instance.id,
                expected_version,
            )
        updated = result.endswith(" 1")
        if updated:
            instance.version = expected_version + 1
        return updated

    async def find_running_for_document(
        self, document_id: str
    ) -> WorkflowInstance | None:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                f"SELECT {_INSTANCE_COLUMNS} FROM workflow_instances "
                "WHERE document_id = $1 AND status = $2 LIMIT 1",
                document_id,
                WorkflowStatus.RUNNING.value,
            )
        return _record_to_instance(row) if row else None

    async def list_for_document(self, document_id: str) -> list[WorkflowInstance]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"SELECT {_INSTANCE_COLUMNS} FROM workflow_instances WHERE document_id = $1",
                document_id,
            )
        return [_record_to_instance(r) for r in rows]

    async def list_instances(self) -> list[WorkflowInstance]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"SELECT {_INSTANCE_COLUMNS} FROM workflow_instances ORDER BY created_at"
            )
        return [_record_to_instance(r) for r in rows]

    async def delete_instance(self, instance_id: str) -> bool:
        async with self._connection() as conn:
            result = await conn.execute(
                "DELETE FROM workflow_instances WHERE id = $1", instance_id
            )
        return result.endswith(" 1")
