"""Extraction service interface."""

from __future__ import annotations

import abc

from ..models import ExtractedData


class BaseExtractor(metaclass=abc.ABCMeta):
    """Turns a stored invoice into structured fields.

    One call is one attempt: implementations either return data or raise
    ``ExtractionError`` (``ObjectNotFound`` when the artifact is gone) and
    never retry on their own.
    """

    @abc.abstractmethod
    async def extract(self, object_path: str, file_type: str) -> ExtractedData:
        raise NotImplementedError
