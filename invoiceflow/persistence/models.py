"""Data models for persisted workflow state."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from ..models import utcnow


class WorkflowStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class HistoryEntry(BaseModel):
    """Record of a finished workflow step."""

    step: str
    outcome: str
    at: datetime = Field(default_factory=utcnow)
    actor: Optional[str] = None
    detail: Optional[str] = None


class PendingAction(BaseModel):
    """Decision recorded against a step that waits for one."""

    step: str
    action: str
    actor: Optional[str] = None
    note: Optional[str] = None
    recorded_at: datetime = Field(default_factory=utcnow)


class WorkflowInstance(BaseModel):
    """Persisted workflow instance data."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    workflow_type: str
    definition_version: str = "1"
    document_id: str
    current_step: int = 0
    status: WorkflowStatus = WorkflowStatus.RUNNING
    history: list[HistoryEntry] = Field(default_factory=list)
    context: dict[str, Any] = Field(default_factory=dict)
    pending_action: Optional[PendingAction] = None
    version: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status != WorkflowStatus.RUNNING
