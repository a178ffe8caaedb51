"""Extraction service implementations."""

from __future__ import annotations

from typing import Optional

from ..config import InvoiceFlowConfig, load_config
from ..storage import BaseObjectStore, get_object_store
from .agent import AgentExtractor
from .base import BaseExtractor


def get_extractor(
    object_store: Optional[BaseObjectStore] = None,
    config: Optional[InvoiceFlowConfig] = None,
) -> BaseExtractor:
    """Build the configured extractor."""

    config = config or load_config()
    return AgentExtractor(
        object_store or get_object_store(config=config),
        model=config.extraction.model,
    )


__all__ = ["AgentExtractor", "BaseExtractor", "get_extractor"]
