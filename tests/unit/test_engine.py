"""Workflow engine tests."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, Mock

import pytest
from pydantic_ai import Agent

from invoiceflow.engine import WorkflowEngine
from invoiceflow.errors import (
    ActiveWorkflowExists,
    InvalidAction,
    NotFound,
    ObjectNotFound,
    ObjectStoreError,
    UnknownWorkflowType,
)
from invoiceflow.extraction import AgentExtractor
from invoiceflow.models import DocumentStatus, UploadMetadata
from invoiceflow.persistence import WorkflowStatus
from invoiceflow.storage import InMemoryObjectStore

UPLOAD = UploadMetadata(
    object_path="uploads/abc-inv.pdf",
    file_name="inv.pdf",
    file_type="application/pdf",
    file_size=2048,
)


async def _approval(engine):
    return await engine.start_workflow("invoice_approval", upload=UPLOAD)


@pytest.mark.asyncio
async def test_start_workflow_with_upload_creates_document(engine, lifecycle, clock):
    instance = await _approval(engine)

    assert instance.status == WorkflowStatus.RUNNING
    assert instance.current_step == 0
    assert instance.history == []
    doc = await lifecycle.get_document(instance.document_id)
    assert doc.status == DocumentStatus.UPLOADING
    assert doc.object_path == UPLOAD.object_path
    assert doc.expires_at == clock.now + timedelta(hours=24)


@pytest.mark.asyncio
async def test_start_workflow_for_existing_document(engine, lifecycle):
    doc = await lifecycle.create_document("uploads/a.pdf", "a.pdf", "application/pdf", 10)
    instance = await engine.start_workflow("invoice_approval", document_id=doc.id)
    assert instance.document_id == doc.id
    assert (await engine.get_instance(instance.id)).id == instance.id


@pytest.mark.asyncio
async def test_start_workflow_validation(engine, lifecycle):
    with pytest.raises(UnknownWorkflowType):
        await engine.start_workflow("expense_report", upload=UPLOAD)
    with pytest.raises(NotFound):
        await engine.start_workflow("invoice_approval", document_id="missing")
    with pytest.raises(ValueError):
        await engine.start_workflow("invoice_approval")

    doc = await lifecycle.create_document("uploads/a.pdf", "a.pdf", "application/pdf", 10)
    with pytest.raises(ValueError):
        await engine.start_workflow("invoice_approval", document_id=doc.id, upload=UPLOAD)


@pytest.mark.asyncio
async def test_one_running_instance_per_document(engine, lifecycle):
    doc = await lifecycle.create_document("uploads/a.pdf", "a.pdf", "application/pdf", 10)
    first = await engine.start_workflow("invoice_approval", document_id=doc.id)

    with pytest.raises(ActiveWorkflowExists) as exc_info:
        await engine.start_workflow("invoice_extraction", document_id=doc.id)
    assert exc_info.value.instance_id == first.id


@pytest.mark.asyncio
async def test_concurrent_starts_for_one_document(engine, lifecycle, repository):
    doc = await lifecycle.create_document("uploads/a.pdf", "a.pdf", "application/pdf", 10)

    results = await asyncio.gather(
        *(engine.start_workflow("invoice_approval", document_id=doc.id) for _ in range(5)),
        return_exceptions=True,
    )

    assert sum(not isinstance(r, Exception) for r in results) == 1
    assert sum(isinstance(r, ActiveWorkflowExists) for r in results) == 4
    assert len(await repository.list_for_document(doc.id)) == 1


@pytest.mark.asyncio
async def test_advance_is_a_noop_while_condition_unmet(engine, lifecycle):
    instance = await _approval(engine)
    await lifecycle.begin_processing(instance.document_id)

    snapshots = [await engine.advance(instance.id) for _ in range(10)]

    assert all(s == snapshots[0] for s in snapshots)
    stored = await engine.get_instance(instance.id)
    assert stored.history == []
    assert stored.current_step == 0
    assert stored.version == instance.version


@pytest.mark.asyncio
async def test_document_error_fails_instance(engine, lifecycle):
    instance = await engine.start_workflow("invoice_approval", document_id=(
        await lifecycle.create_document("uploads/a.pdf", "a.pdf", "application/pdf", 10)
    ).id)
    await lifecycle.begin_processing(instance.document_id)
    await lifecycle.fail_processing(instance.document_id, "unreadable")

    instance = await engine.advance(instance.id)

    assert instance.status == WorkflowStatus.FAILED
    assert instance.history[-1].step == "extract"
    assert instance.history[-1].outcome == "failed"
    assert instance.history[-1].detail == "unreadable"

    again = await engine.advance(instance.id)
    assert again == instance


@pytest.mark.asyncio
async def test_full_approval_path(engine, lifecycle, make_invoice):
    instance = await _approval(engine)
    await lifecycle.begin_processing(instance.document_id)
    await lifecycle.complete_processing(instance.document_id, make_invoice())

    instance = await engine.advance(instance.id)
    assert instance.current_step == 1
    assert [h.step for h in instance.history] == ["extract"]

    instance = await engine.advance(instance.id)
    assert instance.current_step == 2
    assert instance.context["risk_score"] == 0
    assert instance.context["risk_flags"] == []
    assert instance.context["review_role"] == "finance_approval"

    # Review waits for a decision.
    assert await engine.advance(instance.id) == instance

    instance = await engine.record_decision(instance.id, "approve", actor="alice")
    assert instance.status == WorkflowStatus.COMPLETED
    assert [h.step for h in instance.history] == ["extract", "assess_risk", "review"]
    assert instance.history[-1].outcome == "approve"
    assert instance.history[-1].actor == "alice"
    assert instance.context["decisions"] == {"review": "approve"}
    assert instance.pending_action is None


@pytest.mark.asyncio
async def test_reject_fails_instance(engine, lifecycle, make_invoice):
    instance = await _approval(engine)
    await lifecycle.begin_processing(instance.document_id)
    await lifecycle.complete_processing(instance.document_id, make_invoice(vendor_name=""))
    await engine.advance(instance.id)
    instance = await engine.advance(instance.id)

    assert instance.context["risk_score"] == 30
    assert instance.context["review_role"] == "dept_review"

    instance = await engine.record_decision(instance.id, "reject", note="unknown vendor")
    assert instance.status == WorkflowStatus.FAILED
    assert instance.history[-1].outcome == "reject"
    assert instance.history[-1].detail == "unknown vendor"


async def _at_review(engine, lifecycle, invoice):
    instance = await _approval(engine)
    await lifecycle.begin_processing(instance.document_id)
    await lifecycle.complete_processing(instance.document_id, invoice)
    await engine.advance(instance.id)
    return await engine.advance(instance.id)


@pytest.mark.asyncio
async def test_request_info_stays_on_review(engine, lifecycle, make_invoice):
    instance = await _at_review(engine, lifecycle, make_invoice())
    assert instance.current_step == 2

    instance = await engine.record_decision(
        instance.id, "request_info", actor="bob", note="need the PO number"
    )

    assert instance.status == WorkflowStatus.RUNNING
    assert instance.current_step == 2
    assert instance.pending_action is None
    assert (instance.history[-1].step, instance.history[-1].outcome) == ("review", "request_info")
    assert instance.history[-1].actor == "bob"
    assert instance.history[-1].detail == "need the PO number"
    assert "decisions" not in instance.context
    assert await engine.advance(instance.id) == instance

    instance = await engine.record_decision(instance.id, "approve", actor="alice")
    assert instance.status == WorkflowStatus.COMPLETED
    assert [h.outcome for h in instance.history] == [
        "completed",
        "completed",
        "request_info",
        "approve",
    ]
    assert instance.context["decisions"] == {"review": "approve"}


@pytest.mark.asyncio
async def test_approval_archives_invoice_snapshot(engine, lifecycle, clock, make_invoice):
    instance = await _at_review(engine, lifecycle, make_invoice(total_amount=6000.0, line_items=[]))
    assert "archive" not in instance.context

    instance = await engine.record_decision(instance.id, "approve", actor="alice")

    archive = (await engine.get_instance(instance.id)).context["archive"]
    assert archive["document_id"] == instance.document_id
    assert archive["file_name"] == UPLOAD.file_name
    assert archive["extracted_data"]["vendor_name"] == "Acme"
    assert archive["extracted_data"]["total_amount"] == 6000.0
    assert archive["risk_score"] == instance.context["risk_score"]
    assert archive["risk_flags"] == instance.context["risk_flags"]
    assert archive["review_role"] == instance.context["review_role"]
    assert archive["decisions"] == {"review": "approve"}
    assert archive["archived_at"] == clock.now.isoformat()


@pytest.mark.asyncio
async def test_rejection_is_not_archived(engine, lifecycle, make_invoice):
    instance = await _at_review(engine, lifecycle, make_invoice())
    instance = await engine.record_decision(instance.id, "reject")
    assert instance.status == WorkflowStatus.FAILED
    assert "archive" not in instance.context


@pytest.mark.asyncio
async def test_extraction_only_workflow_archives_on_completion(engine, lifecycle, make_invoice):
    instance = await engine.start_workflow("invoice_extraction", upload=UPLOAD)
    await lifecycle.begin_processing(instance.document_id)
    await lifecycle.complete_processing(instance.document_id, make_invoice())

    instance = await engine.advance(instance.id)

    archive = instance.context["archive"]
    assert archive["extracted_data"]["invoice_number"] == "1001"
    assert archive["risk_score"] is None
    assert archive["decisions"] == {}


@pytest.mark.asyncio
async def test_record_decision_validation(engine, lifecycle, make_invoice):
    instance = await _approval(engine)
    with pytest.raises(InvalidAction):
        await engine.record_decision(instance.id, "approve")

    await lifecycle.begin_processing(instance.document_id)
    await lifecycle.complete_processing(instance.document_id, make_invoice())
    await engine.advance(instance.id)
    await engine.advance(instance.id)

    with pytest.raises(InvalidAction):
        await engine.record_decision(instance.id, "escalate")

    await engine.record_decision(instance.id, "approve")
    with pytest.raises(InvalidAction):
        await engine.record_decision(instance.id, "reject")


@pytest.mark.asyncio
async def test_single_step_definition_completes(engine, lifecycle, make_invoice):
    instance = await engine.start_workflow("invoice_extraction", upload=UPLOAD)
    await lifecycle.begin_processing(instance.document_id)
    await lifecycle.complete_processing(instance.document_id, make_invoice())

    instance = await engine.advance(instance.id)
    assert instance.status == WorkflowStatus.COMPLETED
    assert instance.current_step == 1


@pytest.mark.asyncio
async def test_advance_rereads_document_every_call(engine, lifecycle, make_invoice):
    instance = await engine.start_workflow("invoice_extraction", upload=UPLOAD)
    await lifecycle.begin_processing(instance.document_id)
    assert (await engine.advance(instance.id)).status == WorkflowStatus.RUNNING

    await lifecycle.complete_processing(instance.document_id, make_invoice())
    assert (await engine.advance(instance.id)).status == WorkflowStatus.COMPLETED


@pytest.mark.asyncio
async def test_concurrent_advance_moves_once(engine, lifecycle, make_invoice):
    instance = await engine.start_workflow("invoice_extraction", upload=UPLOAD)
    await lifecycle.begin_processing(instance.document_id)
    await lifecycle.complete_processing(instance.document_id, make_invoice())

    results = await asyncio.gather(*(engine.advance(instance.id) for _ in range(5)))

    assert all(r.status == WorkflowStatus.COMPLETED for r in results)
    stored = await engine.get_instance(instance.id)
    assert len(stored.history) == 1


@pytest.mark.asyncio
async def test_get_instance_and_teardown(engine):
    with pytest.raises(NotFound):
        await engine.get_instance("missing")

    instance = await _approval(engine)
    await engine.teardown(instance.id)
    with pytest.raises(NotFound):
        await engine.get_instance(instance.id)
    with pytest.raises(NotFound):
        await engine.teardown(instance.id)


@pytest.mark.asyncio
async def test_advance_after_document_reaped_raises_not_found(engine, store):
    instance = await _approval(engine)
    await store.delete_by_id(instance.document_id)

    with pytest.raises(NotFound):
        await engine.advance(instance.id)


# ----------------------------------------------------------------------
# Extraction orchestration


@pytest.mark.asyncio
async def test_run_extraction_completes_document_and_advances(engine, lifecycle, extractor):
    instance = await _approval(engine)

    instance = await engine.run_extraction(instance.id)

    doc = await lifecycle.get_document(instance.document_id)
    assert doc.status == DocumentStatus.COMPLETED
    assert doc.extracted_data.vendor_name == "Acme"
    assert extractor.calls == [(UPLOAD.object_path, UPLOAD.file_type)]
    assert instance.current_step == 1
    assert instance.history[0].step == "extract"


@pytest.mark.asyncio
async def test_run_extraction_failure_marks_document_error(
    lifecycle, repository, registry, clock, failing_extractor
):
    engine = WorkflowEngine(
        lifecycle, repository, extractor=failing_extractor, registry=registry, clock=clock
    )
    instance = await _approval(engine)

    instance = await engine.run_extraction(instance.id)

    doc = await lifecycle.get_document(instance.document_id)
    assert doc.status == DocumentStatus.ERROR
    assert doc.error_message == "model timed out"
    assert instance.status == WorkflowStatus.FAILED
    assert len(failing_extractor.calls) == 1


@pytest.mark.asyncio
async def test_run_extraction_missing_object_marks_error(
    lifecycle, repository, registry, clock, make_extractor
):
    extractor = make_extractor(error=ObjectNotFound(UPLOAD.object_path))
    engine = WorkflowEngine(
        lifecycle, repository, extractor=extractor, registry=registry, clock=clock
    )
    instance = await _approval(engine)

    instance = await engine.run_extraction(instance.id)

    doc = await lifecycle.get_document(instance.document_id)
    assert doc.status == DocumentStatus.ERROR
    assert "missing" in doc.error_message
    assert instance.status == WorkflowStatus.FAILED


@pytest.mark.asyncio
async def test_run_extraction_object_store_outage_marks_error(
    lifecycle, repository, registry, clock
):
    class OutageStore(InMemoryObjectStore):
        async def read_object(self, object_path):
            raise ObjectStoreError("s3 returned 503")

    agent = Mock(spec=Agent)
    agent.run = AsyncMock()
    engine = WorkflowEngine(
        lifecycle,
        repository,
        extractor=AgentExtractor(OutageStore(), agent=agent),
        registry=registry,
        clock=clock,
    )
    instance = await _approval(engine)

    instance = await engine.run_extraction(instance.id)

    doc = await lifecycle.get_document(instance.document_id)
    assert doc.status == DocumentStatus.ERROR
    assert "503" in doc.error_message
    assert instance.status == WorkflowStatus.FAILED
    agent.run.assert_not_called()


@pytest.mark.asyncio
async def test_run_extraction_store_error_from_custom_extractor(
    lifecycle, repository, registry, clock, make_extractor
):
    extractor = make_extractor(error=ObjectStoreError("connection reset"))
    engine = WorkflowEngine(
        lifecycle, repository, extractor=extractor, registry=registry, clock=clock
    )
    instance = await _approval(engine)

    instance = await engine.run_extraction(instance.id)

    doc = await lifecycle.get_document(instance.document_id)
    assert doc.status == DocumentStatus.ERROR
    assert doc.error_message == "connection reset"
    assert instance.status == WorkflowStatus.FAILED


@pytest.mark.asyncio
async def test_run_extraction_tolerates_reaped_record(
    lifecycle, repository, registry, clock, store, make_extractor
):
    """Object and record vanish mid-extraction: nothing crashes."""

    class ReapingExtractor(make_extractor):
        async def extract(self, object_path, file_type):
            await store.delete_by_id(document_id)
            raise ObjectNotFound(object_path)

    engine = WorkflowEngine(
        lifecycle, repository, extractor=ReapingExtractor(), registry=registry, clock=clock
    )
    instance = await _approval(engine)
    document_id = instance.document_id

    result = await engine.run_extraction(instance.id)

    assert result.status == WorkflowStatus.RUNNING
    with pytest.raises(NotFound):
        await lifecycle.get_document(document_id)


@pytest.mark.asyncio
async def test_run_extraction_skips_resolved_document(engine, lifecycle, extractor, make_invoice):
    instance = await _approval(engine)
    await lifecycle.begin_processing(instance.document_id)
    await lifecycle.complete_processing(instance.document_id, make_invoice())

    instance = await engine.run_extraction(instance.id)

    assert extractor.calls == []
    assert instance.current_step == 1


@pytest.mark.asyncio
async def test_run_extraction_requires_extractor(lifecycle, repository, registry):
    engine = WorkflowEngine(lifecycle, repository, registry=registry)
    instance = await _approval(engine)
    with pytest.raises(RuntimeError):
        await engine.run_extraction(instance.id)


@pytest.mark.asyncio
async def test_timeline_returns_history(engine, lifecycle, make_invoice):
    instance = await _approval(engine)
    await lifecycle.begin_processing(instance.document_id)
    await lifecycle.complete_processing(instance.document_id, make_invoice())
    await engine.advance(instance.id)

    timeline = await engine.timeline(instance.id)
    assert [(e.step, e.outcome) for e in timeline] == [("extract", "completed")]
