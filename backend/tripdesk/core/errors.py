"""Typed rejections raised at the controller's mutation seam.

Validators never raise; they return verdicts. The trip board converts a
rejected verdict into one of these so callers can catch by type and still
read every violated rule from the exception.
"""
from __future__ import annotations

from typing import Iterable, List


class TripDeskError(Exception):
    """Base class for TripDesk business-rule rejections."""

    code: str = "tripdesk_error"


class HardBlockError(TripDeskError):
    """The mutation violates at least one hard rule and was not applied."""

    code = "hard_block"

    def __init__(self, errors: Iterable[str]):
        self.errors: List[str] = [str(item) for item in errors if item]
        super().__init__("; ".join(self.errors) or "Operation blocked.")


class ConfirmationRequired(TripDeskError):
    """The mutation is allowed only after the caller confirms the warnings."""

    code = "confirmation_required"

    def __init__(self, warnings: Iterable[str]):
        self.warnings: List[str] = [str(item) for item in warnings if item]
        super().__init__("; ".join(self.warnings) or "Confirmation required.")
