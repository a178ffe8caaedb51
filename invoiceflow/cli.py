"""Command line interface for invoiceflow."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import timedelta
from typing import Any, Coroutine, Optional, TypeVar

import typer

from invoiceflow.config import load_config
from invoiceflow.constants import DEFAULT_WORKFLOW_TYPE
from invoiceflow.definitions import get_registry
from invoiceflow.engine import WorkflowEngine
from invoiceflow.errors import InvoiceFlowError
from invoiceflow.extraction import get_extractor
from invoiceflow.lifecycle import DocumentLifecycleManager
from invoiceflow.models import UploadMetadata
from invoiceflow.persistence import WorkflowInstance, get_document_store, get_workflow_repository
from invoiceflow.reaper import TTLReaper
from invoiceflow.storage import get_object_store

T = TypeVar("T")

app = typer.Typer(help="CLI for invoiceflow documents and workflows")

# Command groups
workflow_app = typer.Typer(help="Commands for managing workflow instances")
document_app = typer.Typer(help="Commands for inspecting documents")
definitions_app = typer.Typer(help="Commands for workflow definitions")
upload_app = typer.Typer(help="Commands for upload URLs")
reaper_app = typer.Typer(help="Commands for the TTL reaper")

app.add_typer(workflow_app, name="workflow")
app.add_typer(document_app, name="document")
app.add_typer(definitions_app, name="definitions")
app.add_typer(upload_app, name="upload")
app.add_typer(reaper_app, name="reaper")


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", help="Logging level for invoiceflow"),
) -> None:
    """invoiceflow CLI entry point."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _run(coro: Coroutine[Any, Any, T]) -> T:
    try:
        return asyncio.run(coro)
    except InvoiceFlowError as e:
        typer.secho(str(e), fg=typer.colors.RED)
        raise typer.Exit(code=1)


def _lifecycle() -> DocumentLifecycleManager:
    config = load_config()
    return DocumentLifecycleManager(
        get_document_store(),
        get_object_store(),
        retention=config.retention,
        workflows=get_workflow_repository(),
    )


def _engine(with_extractor: bool = False) -> WorkflowEngine:
    config = load_config()
    extractor = (
        get_extractor(object_store=get_object_store(), config=config)
        if with_extractor
        else None
    )
    return WorkflowEngine(
        _lifecycle(),
        get_workflow_repository(),
        extractor=extractor,
        registry=get_registry(config.definitions_path),
    )


def _echo_instance(instance: WorkflowInstance) -> None:
    typer.echo(f"Workflow {instance.id}: {instance.status.value}")
    typer.echo(f"Type: {instance.workflow_type} v{instance.definition_version}")
    typer.echo(f"Document: {instance.document_id}")
    typer.echo(f"Current step: {instance.current_step}")
    if instance.context:
        typer.echo(f"Context: {json.dumps(instance.context, sort_keys=True)}")
    for entry in instance.history:
        typer.echo(
            f"- {entry.step}: {entry.outcome} ({entry.at.isoformat()})"
            + (f" by {entry.actor}" if entry.actor else "")
        )


@upload_app.command("url")
def upload_url(
    file_name: str,
    size: int = typer.Option(..., help="Declared file size in bytes"),
    content_type: str = typer.Option("application/pdf", help="MIME type of the upload"),
) -> None:
    """Request a short-lived upload URL from the object store."""
    ticket = _run(get_object_store().request_upload_url(file_name, size, content_type))
    typer.echo(f"Upload URL: {ticket.upload_url}")
    typer.echo(f"Object path: {ticket.object_path}")
    typer.echo(f"Expires at: {ticket.expires_at.isoformat()}")


@definitions_app.command("list")
def definitions_list() -> None:
    """List registered workflow definitions and their steps."""
    registry = get_registry(load_config().definitions_path)
    for name in registry.names():
        definition = registry.get(name)
        steps = " -> ".join(step.name for step in definition.steps)
        typer.echo(f"{definition.name}\tv{definition.version}\t{steps}")


@document_app.command("list")
def document_list() -> None:
    """List documents with their status and expiry."""
    documents = _run(get_document_store().list_documents())
    if not documents:
        typer.echo("No documents found")
        return
    for doc in documents:
        typer.echo(f"{doc.id}\t{doc.status.value}\t{doc.expires_at.isoformat()}\t{doc.file_name}")


@document_app.command("show")
def document_show(document_id: str) -> None:
    """Show a document record."""
    doc = _run(_lifecycle().get_document(document_id))
    typer.echo(doc.model_dump_json(indent=2))


@document_app.command("delete")
def document_delete(document_id: str) -> None:
    """Delete a document's stored object and then its record."""
    _run(_lifecycle().delete_document(document_id))
    typer.echo(f"Deleted document {document_id}")


@workflow_app.command("start")
def workflow_start(
    workflow_type: str = typer.Argument(DEFAULT_WORKFLOW_TYPE),
    document_id: Optional[str] = typer.Option(None, help="Existing document id"),
    object_path: Optional[str] = typer.Option(None, help="Object path of a finished upload"),
    file_name: str = typer.Option("document.pdf", help="Original file name"),
    file_type: str = typer.Option("application/pdf", help="MIME type"),
    file_size: int = typer.Option(0, help="File size in bytes"),
    retention_hours: Optional[float] = typer.Option(None, help="Override retention window"),
) -> None:
    """
    Start a workflow for a document.

    Pass either --document-id for an existing record, or --object-path (with
    file metadata) to create the document record first.

    Example:
        invoiceflow workflow start invoice_approval --object-path uploads/abc-inv.pdf
    """
    if (document_id is None) == (object_path is None):
        typer.secho("Provide exactly one of --document-id or --object-path", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    upload = (
        UploadMetadata(
            object_path=object_path,
            file_name=file_name,
            file_type=file_type,
            file_size=file_size,
        )
        if object_path
        else None
    )
    retention = timedelta(hours=retention_hours) if retention_hours else None
    instance = _run(
        _engine().start_workflow(
            workflow_type, document_id=document_id, upload=upload, retention=retention
        )
    )
    typer.echo(f"Started workflow {instance.id} for document {instance.document_id}")


@workflow_app.command("list")
def workflow_list() -> None:
    """List all workflow instances with their status."""
    instances = _run(_engine().list_instances())
    if not instances:
        typer.echo("No workflows found")
        return
    for wf in instances:
        typer.echo(f"{wf.id}\t{wf.workflow_type}\t{wf.status.value}")


@workflow_app.command("show")
def workflow_show(instance_id: str) -> None:
    """Show status, context and step history of a workflow instance."""
    _echo_instance(_run(_engine().get_instance(instance_id)))


@workflow_app.command("timeline")
def workflow_timeline(instance_id: str) -> None:
    """Print the completed steps of a workflow instance."""
    for entry in _run(_engine().timeline(instance_id)):
        typer.echo(
            f"{entry.at.isoformat()}\t{entry.step}\t{entry.outcome}"
            + (f"\t{entry.detail}" if entry.detail else "")
        )


@workflow_app.command("advance")
def workflow_advance(instance_id: str) -> None:
    """Advance a workflow instance if its current step is satisfied."""
    _echo_instance(_run(_engine().advance(instance_id)))


@workflow_app.command("run")
def workflow_run(instance_id: str) -> None:
    """Run extraction for the instance's document, then advance."""
    _echo_instance(_run(_engine(with_extractor=True).run_extraction(instance_id)))


@workflow_app.command("decide")
def workflow_decide(
    instance_id: str,
    action: str,
    actor: Optional[str] = typer.Option(None, help="Who made the decision"),
    note: Optional[str] = typer.Option(None, help="Free-text note"),
) -> None:
    """Record a review decision (e.g. approve, reject or request_info)."""
    _echo_instance(
        _run(_engine().record_decision(instance_id, action, actor=actor, note=note))
    )


@reaper_app.command("sweep")
def reaper_sweep() -> None:
    """
    Delete expired documents: stored object first, then the record.

    Meant to be run from cron or another scheduler.

    Example:
        */10 * * * * invoiceflow reaper sweep
    """
    config = load_config()
    reaper = TTLReaper(
        get_document_store(),
        get_object_store(),
        workflows=get_workflow_repository(),
        batch_limit=config.reaper.batch_limit,
    )
    report = _run(reaper.sweep())
    typer.echo(
        f"Expired: {report.expired}\tDeleted: {report.deleted}\tFailed: {report.failed}"
    )
    if report.failed:
        raise typer.Exit(code=2)


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
