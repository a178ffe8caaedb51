"""Invoice extraction backed by a pydantic-ai agent."""

from __future__ import annotations

import logging
from typing import Optional, Union

from pydantic_ai import Agent, BinaryContent
from pydantic_ai.models import Model

from ..constants import DEFAULT_EXTRACTION_MODEL
from ..errors import ExtractionError, ObjectStoreError
from ..models import ExtractedData
from ..storage import BaseObjectStore
from .base import BaseExtractor

logger = logging.getLogger(__name__)

EXTRACTION_PROMPT = (
    "You extract structured data from invoices. Return the vendor name, "
    "invoice number, invoice and due dates as printed, the total amount, the "
    "VAT amount if shown, the ISO currency code and every line item with its "
    "description, quantity, unit price and line total. Use numbers without "
    "currency symbols or thousands separators."
)


class AgentExtractor(BaseExtractor):
    """Reads the artifact from the object store and asks an LLM for its fields."""

    def __init__(
        self,
        object_store: BaseObjectStore,
        model: Union[str, Model, None] = None,
        agent: Optional[Agent] = None,
    ) -> None:
        self._object_store = object_store
        self.agent: Agent = agent or Agent(
            model or DEFAULT_EXTRACTION_MODEL,
            output_type=ExtractedData,
            system_prompt=EXTRACTION_PROMPT,
            defer_model_check=True,
        )

    async def extract(self, object_path: str, file_type: str) -> ExtractedData:
        # ObjectNotFound is not an ObjectStoreError and propagates as is.
        try:
            data = await self._object_store.read_object(object_path)
        except ObjectStoreError as e:
            logger.error(f"Could not read {object_path} for extraction: {e}")
            raise ExtractionError(f"Could not read {object_path}: {e}") from e
        if not data:
            raise ExtractionError(f"Object {object_path} is empty")

        logger.info(f"Extracting invoice fields from {object_path} ({file_type})")
        try:
            result = await self.agent.run(
                [
                    "Extract the invoice fields from this document.",
                    BinaryContent(data=data, media_type=file_type),
                ]
            )
        except Exception as e:
            logger.error(f"Extraction failed for {object_path}: {e}")
            raise ExtractionError(f"Extraction failed: {e}") from e

        output = result.output
        if not isinstance(output, ExtractedData):
            raise ExtractionError(
                f"Extraction returned unexpected output type {type(output).__name__}"
            )
        return output
