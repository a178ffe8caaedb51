"""invoiceflow: invoice document lifecycle and approval workflows."""

from .config import InvoiceFlowConfig, load_config
from .definitions import get_registry, load_definitions
from .engine import WorkflowEngine
from .extraction import AgentExtractor, BaseExtractor, get_extractor
from .lifecycle import DocumentLifecycleManager
from .models import (
    Document,
    DocumentStatus,
    ExtractedData,
    LineItem,
    SweepReport,
    UploadMetadata,
    UploadTicket,
)
from .persistence import (
    WorkflowInstance,
    WorkflowStatus,
    get_document_store,
    get_workflow_repository,
)
from .reaper import TTLReaper
from .storage import BaseObjectStore, get_object_store

__version__ = "0.1.0"
__all__ = [
    "AgentExtractor",
    "BaseExtractor",
    "BaseObjectStore",
    "Document",
    "DocumentLifecycleManager",
    "DocumentStatus",
    "ExtractedData",
    "InvoiceFlowConfig",
    "LineItem",
    "SweepReport",
    "TTLReaper",
    "UploadMetadata",
    "UploadTicket",
    "WorkflowEngine",
    "WorkflowInstance",
    "WorkflowStatus",
    "get_document_store",
    "get_extractor",
    "get_object_store",
    "get_registry",
    "get_workflow_repository",
    "load_config",
    "load_definitions",
]
