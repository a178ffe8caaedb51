"""Exception hierarchy shared by the invoiceflow components."""

from __future__ import annotations

from typing import Optional


class InvoiceFlowError(Exception):
    """Base class for all invoiceflow errors."""


class InvalidTransition(InvoiceFlowError):
    """A document status change was attempted from the wrong state.

    Raised for programming errors (e.g. completing a document that never
    started processing) and for lost races where another caller moved the
    document first.
    """

    def __init__(
        self,
        document_id: str,
        expected: str,
        actual: Optional[str],
        target: str,
    ) -> None:
        self.document_id = document_id
        self.expected = expected
        self.actual = actual
        self.target = target
        super().__init__(
            f"Cannot move document {document_id} to '{target}': "
            f"expected status '{expected}', found '{actual}'"
        )


class UnknownWorkflowType(InvoiceFlowError):
    """No workflow definition is registered under the requested name."""

    def __init__(self, workflow_type: str) -> None:
        self.workflow_type = workflow_type
        super().__init__(f"Unknown workflow type: {workflow_type}")


class NotFound(InvoiceFlowError):
    """A document or workflow instance does not exist."""

    def __init__(self, kind: str, identifier: str) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} {identifier} not found")


class StorageError(InvoiceFlowError):
    """The document store or workflow repository backend failed."""


class ExtractionError(InvoiceFlowError):
    """The extraction service could not produce invoice data."""


class ObjectNotFound(InvoiceFlowError):
    """The object store holds nothing at the requested path."""

    def __init__(self, object_path: str) -> None:
        self.object_path = object_path
        super().__init__(f"Object not found: {object_path}")


class ObjectStoreError(InvoiceFlowError):
    """The object store rejected or failed an operation."""


class InvalidUpload(InvoiceFlowError):
    """An upload request failed validation (type, size or path)."""


class ActiveWorkflowExists(InvoiceFlowError):
    """The document is already referenced by a running workflow instance."""

    def __init__(self, document_id: str, instance_id: str) -> None:
        self.document_id = document_id
        self.instance_id = instance_id
        super().__init__(
            f"Document {document_id} already has running workflow {instance_id}"
        )


class InvalidAction(InvoiceFlowError):
    """A decision was recorded that the current workflow step does not accept."""


class DefinitionError(InvoiceFlowError):
    """A workflow definition file is malformed."""


__all__ = [
    "InvoiceFlowError",
    "InvalidTransition",
    "UnknownWorkflowType",
    "NotFound",
    "StorageError",
    "ExtractionError",
    "ObjectNotFound",
    "ObjectStoreError",
    "InvalidUpload",
    "ActiveWorkflowExists",
    "InvalidAction",
    "DefinitionError",
]
