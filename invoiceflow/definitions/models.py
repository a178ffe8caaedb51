"""Typed workflow definition models."""

from __future__ import annotations

from enum import Enum
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class StepCondition(str, Enum):
    """Completion predicates a step can declare."""

    DOCUMENT_RESOLVED = "document_resolved"
    RISK_ASSESSED = "risk_assessed"
    DECISION_RECORDED = "decision_recorded"


class ActionTarget(str, Enum):
    """Where a recorded decision sends the workflow."""

    NEXT = "next"
    COMPLETE = "complete"
    FAIL = "fail"
    STAY = "stay"


class ReviewRoute(BaseModel):
    """Assign ``role`` when the risk score is at least ``min_score``."""

    model_config = ConfigDict(frozen=True)

    min_score: int = 0
    role: str


class StepDefinition(BaseModel):
    """One step of a workflow definition."""

    model_config = ConfigDict(frozen=True)

    name: str
    condition: StepCondition
    description: Optional[str] = None
    requires: Tuple[str, ...] = ()
    actions: Dict[str, ActionTarget] = Field(default_factory=dict)
    routes: Tuple[ReviewRoute, ...] = ()

    @model_validator(mode="after")
    def _check_actions(self) -> "StepDefinition":
        if self.condition == StepCondition.DECISION_RECORDED and not self.actions:
            raise ValueError(f"step '{self.name}' waits for a decision but lists no actions")
        if self.condition != StepCondition.DECISION_RECORDED and self.actions:
            raise ValueError(f"step '{self.name}' does not take decisions")
        if self.actions and all(t == ActionTarget.STAY for t in self.actions.values()):
            raise ValueError(f"step '{self.name}' has no action that leaves it")
        return self

    def route_for(self, risk_score: int) -> Optional[str]:
        """Return the reviewer role for ``risk_score``, highest threshold first."""
        for route in sorted(self.routes, key=lambda r: r.min_score, reverse=True):
            if risk_score >= route.min_score:
                return route.role
        return None


class WorkflowDefinition(BaseModel):
    """Named, versioned, ordered sequence of steps."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str = "1"
    description: Optional[str] = None
    steps: Tuple[StepDefinition, ...]

    @field_validator("version", mode="before")
    @classmethod
    def _version_as_text(cls, v: object) -> object:
        return str(v) if isinstance(v, (int, float)) else v

    @field_validator("steps")
    @classmethod
    def _ensure_steps(cls, v: Tuple[StepDefinition, ...]) -> Tuple[StepDefinition, ...]:
        if not v:
            raise ValueError("workflow definition needs at least one step")
        names = [s.name for s in v]
        if len(set(names)) != len(names):
            raise ValueError("step names must be unique")
        return v

    def step_at(self, index: int) -> Optional[StepDefinition]:
        return self.steps[index] if 0 <= index < len(self.steps) else None
