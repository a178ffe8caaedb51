"""SQLite implementations of the document store and workflow repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar

from ..errors import ActiveWorkflowExists, InvalidTransition, NotFound, StorageError
from ..models import Document, DocumentStatus
from .models import WorkflowInstance, WorkflowStatus
from .repository import DocumentStore, WorkflowRepository

T = TypeVar("T")

# Columns a status transition may patch alongside the status itself.
PATCHABLE_COLUMNS = ("extracted_data", "error_message")

_DOCUMENT_COLUMNS = (
    "id, object_path, file_name, file_type, file_size, status, "
    "extracted_data, error_message, created_at, expires_at"
)
_INSTANCE_COLUMNS = (
    "id, workflow_type, definition_version, document_id, current_step, status, "
    "history, context, pending_action, version, created_at, updated_at"
)


def _ts(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _encode_patch_value(column: str, value: Any) -> Any:
    if column == "extracted_data" and value is not None:
        return json.dumps(value)
    return value


class _SQLiteBase:
    """Shared connection handling for the SQLite backends."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._write_lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS documents (
                id TEXT PRIMARY KEY,
                object_path TEXT NOT NULL,
                file_name TEXT NOT NULL,
                file_type TEXT NOT NULL,
                file_size INTEGER NOT NULL,
                status TEXT NOT NULL,
                extracted_data TEXT,
                error_message TEXT,
                created_at TEXT NOT NULL,
                expires_at TEXT NOT NULL
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_documents_expires_at ON documents (expires_at)"
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_instances (
                id TEXT PRIMARY KEY,
                workflow_type TEXT NOT NULL,
                definition_version TEXT NOT NULL,
                document_id TEXT NOT NULL,
                current_step INTEGER NOT NULL,
                status TEXT NOT NULL,
                history TEXT NOT NULL,
                context TEXT NOT NULL,
                pending_action TEXT,
                version INTEGER NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        # At most one running instance per document.
        cur.execute(
            "CREATE UNIQUE INDEX IF NOT EXISTS idx_workflow_instances_running "
            "ON workflow_instances (document_id) WHERE status = 'running'"
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        with self._write_lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            self._conn.commit()
            return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._write_lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._write_lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.to_thread(fn, *args)
        except sqlite3.Error as exc:
            raise StorageError(f"SQLite operation failed: {exc}") from exc

    def close(self) -> None:
        self._conn.close()


def _row_to_document(row: sqlite3.Row) -> Document:
    return Document(
        id=row["id"],
        object_path=row["object_path"],
        file_name=row["file_name"],
        file_type=row["file_type"],
        file_size=row["file_size"],
        status=row["status"],
        extracted_data=json.loads(row["extracted_data"]) if row["extracted_data"] else None,
        error_message=row["error_message"],
        created_at=datetime.fromisoformat(row["created_at"]),
        expires_at=datetime.fromisoformat(row["expires_at"]),
    )


def _row_to_instance(row: sqlite3.Row) -> WorkflowInstance:
    return WorkflowInstance(
        id=row["id"],
        workflow_type=row["workflow_type"],
        definition_version=row["definition_version"],
        document_id=row["document_id"],
        current_step=row["current_step"],
        status=row["status"],
        history=json.loads(row["history"]),
        context=json.loads(row["context"]),
        pending_action=json.loads(row["pending_action"]) if row["pending_action"] else None,
        version=row["version"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


class SQLiteDocumentStore(_SQLiteBase, DocumentStore):
    """Persist document records using SQLite."""

    async def create(self, document: Document) -> Document:
        await self._run(
            self._execute,
            f"INSERT INTO documents ({_DOCUMENT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            document.id,
            document.object_path,
            document.file_name,
            document.file_type,
            document.file_size,
            document.status.value,
            document.extracted_data.model_dump_json() if document.extracted_data else None,
            document.error_message,
            _ts(document.created_at),
            _ts(document.expires_at),
        )
        return document

    async def get_by_id(self, document_id: str) -> Document:
        row = await self._run(
            self._fetchone,
            f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE id = ?",
            document_id,
        )
        if row is None:
            raise NotFound("Document", document_id)
        return _row_to_document(row)

    def _update_status_sync(
        self,
        document_id: str,
        expected_status: DocumentStatus,
        new_status: DocumentStatus,
        patch: dict[str, Any],
    ) -> sqlite3.Row:
        unknown = set(patch) - set(PATCHABLE_COLUMNS)
        if unknown:
            raise ValueError(f"Cannot patch document columns: {sorted(unknown)}")
        assignments = ["status = ?"] + [f"{column} = ?" for column in patch]
        params = [new_status.value] + [
            _encode_patch_value(column, value) for column, value in patch.items()
        ]
        with self._write_lock:
            cur = self._conn.cursor()
            cur.execute(
                f"UPDATE documents SET {', '.join(assignments)} WHERE id = ? AND status = ?",
                (*params, document_id, expected_status.value),
            )
            self._conn.commit()
            updated = cur.rowcount
            cur.execute(
                f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE id = ?", (document_id,)
            )
            row = cur.fetchone()
        if row is None:
            raise NotFound("Document", document_id)
        if not updated:
            raise InvalidTransition(
                document_id, expected_status.value, row["status"], new_status.value
            )
        return row

    async def update_status(
        self,
        document_id: str,
        expected_status: DocumentStatus,
        new_status: DocumentStatus,
        patch: Optional[dict[str, Any]] = None,
    ) -> Document:
        row = await self._run(
            self._update_status_sync,
            document_id,
            expected_status,
            new_status,
            patch or {},
        )
        return _row_to_document(row)

    async def delete_by_id(self, document_id: str) -> bool:
        deleted = await self._run(
            self._execute, "DELETE FROM documents WHERE id = ?", document_id
        )
        return deleted > 0

    async def query_expired(
        self, now: datetime, limit: Optional[int] = None
    ) -> list[Document]:
        query = (
            f"SELECT {_DOCUMENT_COLUMNS} FROM documents "
            "WHERE expires_at < ? ORDER BY expires_at"
        )
        params: list[Any] = [_ts(now)]
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        rows = await self._run(self._fetchall, query, *params)
        return [_row_to_document(r) for r in rows]

    async def list_documents(self) -> list[Document]:
        rows = await self._run(
            self._fetchall, f"SELECT {_DOCUMENT_COLUMNS} FROM documents ORDER BY created_at"
        )
        return [_row_to_document(r) for r in rows]


class SQLiteWorkflowRepository(_SQLiteBase, WorkflowRepository):
    """Persist workflow instances using SQLite."""

    def _create_instance_sync(self, instance: WorkflowInstance) -> None:
        params = (
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
            _ts(instance.created_at),
            _ts(instance.updated_at),
        )
        with self._write_lock:
            cur = self._conn.cursor()
            try:
                cur.execute(
                    f"INSERT INTO workflow_instances ({_INSTANCE_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    params,
                )
            except sqlite3.IntegrityError:
                self._conn.rollback()
                cur.execute(
                    "SELECT id FROM workflow_instances WHERE document_id = ? AND status = ?",
                    (instance.document_id, WorkflowStatus.RUNNING.value),
                )
                running = cur.fetchone()
                if running is None:
                    raise
                raise ActiveWorkflowExists(instance.document_id, running["id"]) from None
            self._conn.commit()

    async def create_instance(self, instance: WorkflowInstance) -> WorkflowInstance:
        await self._run(self._create_instance_sync, instance)
        return instance

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        row = await self._run(
            self._fetchone,
            f"SELECT {_INSTANCE_COLUMNS} FROM workflow_instances WHERE id = ?",
            instance_id,
        )
        return _row_to_instance(row) if row else None

    async def update_instance(
        self, instance: WorkflowInstance, expected_version: int
    ) -> bool:
        updated = await self._run(
            self._execute,
            """
            UPDATE workflow_instances
            SET current_step = ?, status = ?, history = ?, context = ?,
                pending_action = ?, version = ?, updated_at = ?
            WHERE id = ? AND version = ?
            """,
            instance.current_step,
            instance.status.value,
            json.dumps([h.model_dump(mode="json") for h in instance.history]),
            json.dumps(instance.context),
            instance.pending_action.model_dump_json() if instance.pending_action else None,
            expected_version + 1,
            _ts(instance.updated_at),
            instance.id,
            expected_version,
        )
        if updated:
            instance.version = expected_version + 1
        return updated > 0

    async def find_running_for_document(
        self, document_id: str
    ) -> WorkflowInstance | None:
        row = await self._run(
            self._fetchone,
            f"SELECT {_INSTANCE_COLUMNS} FROM workflow_instances "
            "WHERE document_id = ? AND status = ? LIMIT 1",
            document_id,
            WorkflowStatus.RUNNING.value,
        )
        return _row_to_instance(row) if row else None

    async def list_for_document(self, document_id: str) -> list[WorkflowInstance]:
        rows = await self._run(
            self._fetchall,
            f"SELECT {_INSTANCE_COLUMNS} FROM workflow_instances WHERE document_id = ?",
            document_id,
        )
        return [_row_to_instance(r) for r in rows]

    async def list_instances(self) -> list[WorkflowInstance]:
        rows = await self._run(
            self._fetchall,
            f"SELECT {_INSTANCE_COLUMNS} FROM workflow_instances ORDER BY created_at",
        )
        return [_row_to_instance(r) for r in rows]

    async def delete_instance(self, instance_id: str) -> bool:
        deleted = await self._run(
            self._execute, "DELETE FROM workflow_instances WHERE id = ?", instance_id
        )
        return deleted > 0
