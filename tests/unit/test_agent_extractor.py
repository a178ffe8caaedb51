"""Tests for the pydantic-ai backed extractor."""

from unittest.mock import AsyncMock, Mock

import pytest
from pydantic_ai import Agent, BinaryContent
from pydantic_ai.models.test import TestModel as CannedModel

from invoiceflow.errors import ExtractionError, ObjectNotFound, ObjectStoreError
from invoiceflow.extraction import AgentExtractor
from invoiceflow.models import ExtractedData
from invoiceflow.storage import InMemoryObjectStore


class UnreachableObjectStore(InMemoryObjectStore):
    """Object store whose reads fail with a backend error."""

    async def read_object(self, object_path: str) -> bytes:
        raise ObjectStoreError(f"s3 returned 503 for {object_path}")


@pytest.fixture
def pdf_store():
    return InMemoryObjectStore()


@pytest.mark.asyncio
async def test_extracts_with_canned_model(pdf_store):
    await pdf_store.put_object("uploads/a.pdf", b"%PDF-1.7")
    model = CannedModel(
        custom_output_args={
            "vendor_name": "Acme",
            "invoice_number": "1001",
            "total_amount": 250.0,
            "currency": "USD",
        }
    )
    extractor = AgentExtractor(pdf_store, model=model)

    data = await extractor.extract("uploads/a.pdf", "application/pdf")

    assert isinstance(data, ExtractedData)
    assert data.vendor_name == "Acme"
    assert data.total_amount == 250.0


@pytest.mark.asyncio
async def test_sends_document_bytes_to_agent(pdf_store, make_invoice):
    await pdf_store.put_object("uploads/a.png", b"\x89PNG")
    agent = Mock(spec=Agent)
    agent.run = AsyncMock(return_value=Mock(output=make_invoice()))
    extractor = AgentExtractor(pdf_store, agent=agent)

    data = await extractor.extract("uploads/a.png", "image/png")

    assert data.invoice_number == "1001"
    prompt = agent.run.call_args.args[0]
    binary = prompt[1]
    assert isinstance(binary, BinaryContent)
    assert binary.data == b"\x89PNG"
    assert binary.media_type == "image/png"


@pytest.mark.asyncio
async def test_missing_object_propagates(pdf_store):
    agent = Mock(spec=Agent)
    agent.run = AsyncMock()
    extractor = AgentExtractor(pdf_store, agent=agent)

    with pytest.raises(ObjectNotFound):
        await extractor.extract("uploads/gone.pdf", "application/pdf")
    agent.run.assert_not_called()


@pytest.mark.asyncio
async def test_agent_failures_become_extraction_errors(pdf_store):
    await pdf_store.put_object("uploads/a.pdf", b"%PDF-1.7")
    agent = Mock(spec=Agent)
    agent.run = AsyncMock(side_effect=RuntimeError("rate limited"))
    extractor = AgentExtractor(pdf_store, agent=agent)

    with pytest.raises(ExtractionError, match="rate limited"):
        await extractor.extract("uploads/a.pdf", "application/pdf")


@pytest.mark.asyncio
async def test_empty_object_and_bad_output(pdf_store):
    await pdf_store.put_object("uploads/empty.pdf", b"")
    await pdf_store.put_object("uploads/a.pdf", b"%PDF-1.7")
    agent = Mock(spec=Agent)
    agent.run = AsyncMock(return_value=Mock(output="not an invoice"))
    extractor = AgentExtractor(pdf_store, agent=agent)

    with pytest.raises(ExtractionError):
        await extractor.extract("uploads/empty.pdf", "application/pdf")
    with pytest.raises(ExtractionError):
        await extractor.extract("uploads/a.pdf", "application/pdf")


@pytest.mark.asyncio
async def test_object_store_failure_becomes_extraction_error():
    agent = Mock(spec=Agent)
    agent.run = AsyncMock()
    extractor = AgentExtractor(UnreachableObjectStore(), agent=agent)

    with pytest.raises(ExtractionError, match="503") as exc_info:
        await extractor.extract("uploads/a.pdf", "application/pdf")
    assert isinstance(exc_info.value.__cause__, ObjectStoreError)
    agent.run.assert_not_called()
