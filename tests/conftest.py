"""Shared fakes and fixtures for invoiceflow tests."""

from datetime import datetime, timedelta, timezone

import pytest

from invoiceflow.definitions import load_definitions
from invoiceflow.engine import WorkflowEngine
from invoiceflow.errors import ExtractionError, ObjectStoreError
from invoiceflow.extraction import BaseExtractor
from invoiceflow.lifecycle import DocumentLifecycleManager
from invoiceflow.models import ExtractedData, LineItem
from invoiceflow.persistence import InMemoryDocumentStore, InMemoryWorkflowRepository
from invoiceflow.storage import InMemoryObjectStore


class FakeClock:
    """Manually driven clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def tick(self, delta: timedelta) -> None:
        self.now = self.now + delta


class FakeExtractor(BaseExtractor):
    """Returns canned data or raises a canned error."""

    def __init__(self, result=None, error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.calls = []

    async def extract(self, object_path: str, file_type: str) -> ExtractedData:
        self.calls.append((object_path, file_type))
        if self.error is not None:
            raise self.error
        return self.result


class FlakyObjectStore(InMemoryObjectStore):
    """In-memory store whose deletes fail for selected paths."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.fail_deletes: set[str] = set()
        self.deleted: list[str] = []

    async def delete_object(self, object_path: str) -> None:
        if object_path in self.fail_deletes:
            raise ObjectStoreError(f"simulated outage deleting {object_path}")
        await super().delete_object(object_path)
        self.deleted.append(object_path)


def sample_invoice(**overrides) -> ExtractedData:
    data = dict(
        vendor_name="Acme",
        invoice_number="1001",
        invoice_date="2026-01-02",
        total_amount=250.00,
        currency="USD",
        line_items=[
            LineItem(description="Widgets", quantity=5, unit_price=30.0, total=150.0),
            LineItem(description="Gadgets", quantity=2, unit_price=50.0, total=100.0),
        ],
    )
    data.update(overrides)
    return ExtractedData(**data)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def object_store():
    return FlakyObjectStore()


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def repository():
    return InMemoryWorkflowRepository()


@pytest.fixture
def lifecycle(store, object_store, clock, repository):
    return DocumentLifecycleManager(
        store, object_store, retention=timedelta(hours=24), clock=clock, workflows=repository
    )


@pytest.fixture
def extractor():
    return FakeExtractor(result=sample_invoice())


@pytest.fixture
def registry():
    return load_definitions()


@pytest.fixture
def engine(lifecycle, repository, extractor, registry, clock):
    return WorkflowEngine(
        lifecycle, repository, extractor=extractor, registry=registry, clock=clock
    )


@pytest.fixture
def failing_extractor():
    return FakeExtractor(error=ExtractionError("model timed out"))


@pytest.fixture
def make_invoice():
    return sample_invoice


@pytest.fixture
def make_extractor():
    return FakeExtractor
