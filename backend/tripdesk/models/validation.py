"""Verdict models returned by validators and gatekeepers."""
from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class VerdictType(str, Enum):
    """Severity of a verdict."""

    HARD_BLOCK = "hard_block"
    WARNING = "warning"


class AssignmentMode(str, Enum):
    """How a load joins a trip: same-route complement, or a return leg."""

    COMPLEMENT = "complement"
    RETURN = "return"


class ValidationResult(BaseModel):
    """Outcome of one business rule."""

    valid: bool
    type: VerdictType = VerdictType.HARD_BLOCK
    error: Optional[str] = None
    warning: Optional[str] = None

    @classmethod
    def passed(cls, kind: VerdictType = VerdictType.HARD_BLOCK) -> "ValidationResult":
        return cls(valid=True, type=kind)

    @classmethod
    def blocked(cls, error: str) -> "ValidationResult":
        return cls(valid=False, type=VerdictType.HARD_BLOCK, error=error)

    @classmethod
    def warned(cls, warning: str) -> "ValidationResult":
        return cls(valid=True, type=VerdictType.WARNING, warning=warning)


class AddLoadValidation(BaseModel):
    """Aggregate of every rule checked when a load joins a trip."""

    valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    @property
    def requires_confirmation(self) -> bool:
        return self.valid and bool(self.warnings)


class FiscalReadinessReport(BaseModel):
    """Per-trip summary of which load legs still lack an authorized waybill."""

    trip_id: str
    ready: bool
    load_legs: int = 0
    missing_leg_ids: List[str] = Field(default_factory=list)
