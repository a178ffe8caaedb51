"""Workflow engine for invoiceflow."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from .definitions import (
    ActionTarget,
    DefinitionRegistry,
    StepCondition,
    StepDefinition,
    WorkflowDefinition,
    get_registry,
)
from .errors import (
    ActiveWorkflowExists,
    ExtractionError,
    InvalidAction,
    NotFound,
    ObjectNotFound,
    ObjectStoreError,
)
from .extraction import BaseExtractor
from .lifecycle import DocumentLifecycleManager
from .models import Document, DocumentStatus, UploadMetadata, utcnow
from .persistence import (
    HistoryEntry,
    PendingAction,
    WorkflowInstance,
    WorkflowRepository,
    WorkflowStatus,
)
from .risk import calculate_risk_score

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


class WorkflowEngine:
    """Wraps documents in workflow instances and moves them step by step.

    The engine holds no cached state between calls: every ``advance`` reads
    the instance and its document afresh from their stores.
    """

    def __init__(
        self,
        lifecycle: DocumentLifecycleManager,
        repository: WorkflowRepository,
        extractor: Optional[BaseExtractor] = None,
        registry: Optional[DefinitionRegistry] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._lifecycle = lifecycle
        self._repository = repository
        self._extractor = extractor
        self._registry = registry or get_registry()
        self._clock = clock

    # ------------------------------------------------------------------
    # Instance creation and lookup
    async def start_workflow(
        self,
        workflow_type: str,
        document_id: Optional[str] = None,
        upload: Optional[UploadMetadata] = None,
        retention: Optional[timedelta] = None,
    ) -> WorkflowInstance:
        """Create a running instance at step 0 for an existing or new document.

        Exactly one of ``document_id`` or ``upload`` must be given. With
        ``upload`` the document record is created first; its object path is
        required.
        """
        if (document_id is None) == (upload is None):
            raise ValueError("Provide exactly one of document_id or upload")

        definition = self._registry.get(workflow_type)

        if upload is not None:
            document = await self._lifecycle.create_document(
                upload.object_path,
                upload.file_name,
                upload.file_type,
                upload.file_size,
                retention=retention,
            )
        else:
            document = await self._lifecycle.get_document(document_id)
            running = await self._repository.find_running_for_document(document.id)
            if running is not None:
                raise ActiveWorkflowExists(document.id, running.id)

        now = self._clock()
        instance = WorkflowInstance(
            workflow_type=definition.name,
            definition_version=definition.version,
            document_id=document.id,
            current_step=0,
            status=WorkflowStatus.RUNNING,
            created_at=now,
            updated_at=now,
        )
        await self._repository.create_instance(instance)
        logger.info(
            f"Started {definition.name} v{definition.version} instance {instance.id} "
            f"for document {document.id}"
        )
        return instance

    async def get_instance(self, instance_id: str) -> WorkflowInstance:
        instance = await self._repository.get_instance(instance_id)
        if instance is None:
            raise NotFound("WorkflowInstance", instance_id)
        return instance

    async def list_instances(self) -> list[WorkflowInstance]:
        return await self._repository.list_instances()

    async def timeline(self, instance_id: str) -> list[HistoryEntry]:
        """Return the completed steps of the instance in order."""
        return list((await self.get_instance(instance_id)).history)

    async def teardown(self, instance_id: str) -> None:
        """Delete the instance. The document is left untouched."""
        if not await self._repository.delete_instance(instance_id):
            raise NotFound("WorkflowInstance", instance_id)
        logger.info(f"Tore down workflow instance {instance_id}")

    def definition_for(self, instance: WorkflowInstance) -> WorkflowDefinition:
        return self._registry.get(instance.workflow_type)

    # ------------------------------------------------------------------
    # Step progression
    async def advance(self, instance_id: str) -> WorkflowInstance:
        """Move the instance past its current step if that step's condition holds.

        Unmet conditions and terminal instances return the stored instance
        unchanged, so the method can be polled or triggered repeatedly.
        """
        instance = await self.get_instance(instance_id)
        if instance.is_terminal:
            return instance

        definition = self.definition_for(instance)
        step = definition.step_at(instance.current_step)
        document = await self._lifecycle.get_document(instance.document_id)
        expected_version = instance.version

        if step is None:
            # Steps ran out without a terminal write, e.g. a crash between writes.
            self._finish(instance, WorkflowStatus.COMPLETED)
        elif document.status == DocumentStatus.ERROR:
            self._record(instance, step, "failed", detail=document.error_message)
            self._finish(instance, WorkflowStatus.FAILED)
        elif not self._inputs_available(step, instance, document):
            return instance
        elif step.condition == StepCondition.DOCUMENT_RESOLVED:
            if document.status != DocumentStatus.COMPLETED:
                return instance
            self._record(instance, step, "completed")
            self._move_next(instance, definition)
        elif step.condition == StepCondition.RISK_ASSESSED:
            if document.status != DocumentStatus.COMPLETED or document.extracted_data is None:
                return instance
            self._assess_risk(instance, step, document)
            self._move_next(instance, definition)
        elif step.condition == StepCondition.DECISION_RECORDED:
            pending = instance.pending_action
            if pending is None or pending.step != step.name:
                return instance
            self._apply_decision(instance, definition, step, pending)
        else:  # pragma: no cover - enum is exhaustive
            return instance

        if instance.status == WorkflowStatus.COMPLETED:
            self._archive(instance, document)
        return await self._save(instance, expected_version)

    async def record_decision(
        self,
        instance_id: str,
        action: str,
        actor: Optional[str] = None,
        note: Optional[str] = None,
    ) -> WorkflowInstance:
        """Record a reviewer decision on the current step, then advance."""
        instance = await self.get_instance(instance_id)
        if instance.is_terminal:
            raise InvalidAction(
                f"Workflow {instance_id} is already {instance.status.value}"
            )
        step = self.definition_for(instance).step_at(instance.current_step)
        if step is None or step.condition != StepCondition.DECISION_RECORDED:
            current = step.name if step else "<none>"
            raise InvalidAction(f"Step '{current}' of {instance_id} does not take decisions")
        if action not in step.actions:
            raise InvalidAction(
                f"Invalid action '{action}' for step '{step.name}'; "
                f"expected one of {sorted(step.actions)}"
            )

        expected_version = instance.version
        instance.pending_action = PendingAction(
            step=step.name, action=action, actor=actor, note=note, recorded_at=self._clock()
        )
        instance.updated_at = self._clock()
        if not await self._repository.update_instance(instance, expected_version):
            raise InvalidAction(
                f"Workflow {instance_id} changed while recording '{action}'; reload and retry"
            )
        logger.info(f"Recorded '{action}' on step {step.name} of {instance_id}")
        return await self.advance(instance_id)

    # ------------------------------------------------------------------
    # Extraction orchestration
    async def run_extraction(self, instance_id: str) -> WorkflowInstance:
        """Run the extraction service once for the instance's document.

        The outcome is written to the document through the lifecycle manager
        (``completed`` with data, or ``error`` with a message) and the
        instance is then advanced. Extraction and object store failures end
        in ``error`` and are not re-raised. Nothing is retried here.
        """
        if self._extractor is None:
            raise RuntimeError("No extractor configured for this engine")

        instance = await self.get_instance(instance_id)
        if instance.is_terminal:
            return instance

        document = await self._lifecycle.get_document(instance.document_id)
        if document.status == DocumentStatus.UPLOADING:
            document = await self._lifecycle.begin_processing(document.id)
        elif document.status != DocumentStatus.PROCESSING:
            logger.info(
                f"Document {document.id} already {document.status.value}; skipping extraction"
            )
            return await self.advance(instance_id)

        try:
            extracted = await self._extractor.extract(document.object_path, document.file_type)
        except ObjectNotFound as e:
            await self._fail_if_present(document.id, f"Uploaded object is missing: {e.object_path}")
        except (ExtractionError, ObjectStoreError) as e:
            await self._fail_if_present(document.id, str(e))
        else:
            try:
                await self._lifecycle.complete_processing(document.id, extracted)
            except NotFound:
                logger.warning(
                    f"Document {document.id} was deleted before extraction finished"
                )

        try:
            return await self.advance(instance_id)
        except NotFound:
            logger.warning(
                f"Document {document.id} expired while instance {instance_id} was extracting"
            )
            return await self.get_instance(instance_id)

    async def _fail_if_present(self, document_id: str, message: str) -> None:
        try:
            await self._lifecycle.fail_processing(document_id, message)
        except NotFound:
            logger.warning(
                f"Document {document_id} no longer exists; dropping failure: {message}"
            )

    # ------------------------------------------------------------------
    # Helpers
    def _inputs_available(
        self, step: StepDefinition, instance: WorkflowInstance, document: Document
    ) -> bool:
        for name in step.requires:
            if name in instance.context:
                continue
            if getattr(document, name, None) is not None:
                continue
            return False
        return True

    def _assess_risk(
        self, instance: WorkflowInstance, step: StepDefinition, document: Document
    ) -> None:
        score, flags = calculate_risk_score(document.extracted_data)
        instance.context["risk_score"] = score
        instance.context["risk_flags"] = flags
        role = step.route_for(score)
        if role is not None:
            instance.context["review_role"] = role
        self._record(
            instance,
            step,
            "completed",
            detail=f"risk_score={score} flags={','.join(flags) or 'none'} role={role}",
        )

    def _apply_decision(
        self,
        instance: WorkflowInstance,
        definition: WorkflowDefinition,
        step: StepDefinition,
        pending: PendingAction,
    ) -> None:
        target = step.actions[pending.action]
        self._record(instance, step, pending.action, actor=pending.actor, detail=pending.note)
        instance.pending_action = None
        if target == ActionTarget.STAY:
            # The step waits for another decision.
            return
        decisions = instance.context.setdefault("decisions", {})
        decisions[step.name] = pending.action
        if target == ActionTarget.COMPLETE:
            self._finish(instance, WorkflowStatus.COMPLETED)
        elif target == ActionTarget.FAIL:
            self._finish(instance, WorkflowStatus.FAILED)
        else:
            self._move_next(instance, definition)

    def _archive(self, instance: WorkflowInstance, document: Document) -> None:
        """Snapshot the invoice as it was decided on into ``context["archive"]``."""
        extracted = document.extracted_data
        instance.context["archive"] = {
            "document_id": document.id,
            "file_name": document.file_name,
            "extracted_data": extracted.model_dump(mode="json") if extracted else None,
            "risk_score": instance.context.get("risk_score"),
            "risk_flags": list(instance.context.get("risk_flags", [])),
            "review_role": instance.context.get("review_role"),
            "decisions": dict(instance.context.get("decisions", {})),
            "archived_at": self._clock().isoformat(),
        }
        logger.info(f"Archived document {document.id} into workflow {instance.id}")

    def _record(
        self,
        instance: WorkflowInstance,
        step: StepDefinition,
        outcome: str,
        actor: Optional[str] = SYSTEM_ACTOR,
        detail: Optional[str] = None,
    ) -> None:
        instance.history.append(
            HistoryEntry(
                step=step.name,
                outcome=outcome,
                at=self._clock(),
                actor=actor,
                detail=detail,
            )
        )

    def _move_next(self, instance: WorkflowInstance, definition: WorkflowDefinition) -> None:
        instance.current_step += 1
        if instance.current_step >= len(definition.steps):
            self._finish(instance, WorkflowStatus.COMPLETED)

    def _finish(self, instance: WorkflowInstance, status: WorkflowStatus) -> None:
        instance.status = status
        instance.pending_action = None

    async def _save(
        self, instance: WorkflowInstance, expected_version: int
    ) -> WorkflowInstance:
        instance.updated_at = self._clock()
        if await self._repository.update_instance(instance, expected_version):
            logger.info(
                f"Workflow {instance.id} at step {instance.current_step} ({instance.status.value})"
            )
            return instance
        logger.debug(
            f"Workflow {instance.id} was advanced concurrently; returning stored state"
        )
        return await self.get_instance(instance.id)
