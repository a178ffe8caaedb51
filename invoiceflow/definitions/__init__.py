"""Workflow definitions and the process-wide definition registry."""

from __future__ import annotations

import logging
from importlib import resources
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

import yaml
from pydantic import ValidationError

from ..errors import DefinitionError, UnknownWorkflowType
from .models import (
    ActionTarget,
    ReviewRoute,
    StepCondition,
    StepDefinition,
    WorkflowDefinition,
)

logger = logging.getLogger(__name__)


class DefinitionRegistry:
    """Read-only lookup of workflow definitions by name."""

    def __init__(self, definitions: Iterable[WorkflowDefinition]) -> None:
        by_name: dict[str, WorkflowDefinition] = {}
        for definition in definitions:
            if definition.name in by_name:
                logger.warning(
                    f"Workflow definition {definition.name} redefined; "
                    f"version {definition.version} replaces {by_name[definition.name].version}"
                )
            by_name[definition.name] = definition
        self._definitions: Mapping[str, WorkflowDefinition] = MappingProxyType(by_name)

    def get(self, name: str) -> WorkflowDefinition:
        try:
            return self._definitions[name]
        except KeyError:
            raise UnknownWorkflowType(name) from None

    def names(self) -> list[str]:
        return sorted(self._definitions)

    def __contains__(self, name: object) -> bool:
        return name in self._definitions

    def __len__(self) -> int:
        return len(self._definitions)


def parse_definition(text: str, source: str = "<string>") -> WorkflowDefinition:
    """Parse one YAML workflow definition."""
    try:
        data = yaml.safe_load(text) or {}
        return WorkflowDefinition.model_validate(data)
    except (yaml.YAMLError, ValidationError) as exc:
        raise DefinitionError(f"Invalid workflow definition in {source}: {exc}") from exc


def _packaged_definitions() -> list[WorkflowDefinition]:
    definitions = []
    for entry in sorted(resources.files(__name__).iterdir(), key=lambda e: e.name):
        if entry.name.endswith((".yaml", ".yml")):
            definitions.append(parse_definition(entry.read_text(), entry.name))
    return definitions


def load_definitions(extra_path: Optional[str | Path] = None) -> DefinitionRegistry:
    """Load packaged definitions plus any YAML files found under ``extra_path``."""
    definitions = _packaged_definitions()
    if extra_path:
        directory = Path(extra_path).expanduser()
        if not directory.is_dir():
            raise DefinitionError(f"Definitions directory not found: {directory}")
        for path in sorted(directory.glob("*.y*ml")):
            definitions.append(parse_definition(path.read_text(), str(path)))
    registry = DefinitionRegistry(definitions)
    logger.debug(f"Loaded workflow definitions: {registry.names()}")
    return registry


_registry: DefinitionRegistry | None = None
_registry_path: Path | None = None


def _as_path(extra_path: Optional[str | Path]) -> Path | None:
    return Path(extra_path).expanduser() if extra_path else None


def get_registry(extra_path: Optional[str | Path] = None) -> DefinitionRegistry:
    """Return the process-wide registry, loading it on first use.

    ``extra_path`` only takes effect on the first call. A later call naming a
    different directory gets the already loaded registry and a warning; use
    :func:`load_definitions` for a separate registry.
    """
    global _registry, _registry_path
    requested = _as_path(extra_path)
    if _registry is None:
        _registry = load_definitions(requested)
        _registry_path = requested
    elif requested is not None and requested != _registry_path:
        logger.warning(
            f"Workflow definitions already loaded from {_registry_path or 'package'}; "
            f"ignoring {requested}"
        )
    return _registry


__all__ = [
    "ActionTarget",
    "DefinitionRegistry",
    "ReviewRoute",
    "StepCondition",
    "StepDefinition",
    "WorkflowDefinition",
    "get_registry",
    "load_definitions",
    "parse_definition",
]
