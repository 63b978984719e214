"""Fiscal paperwork models: invoices, waybills, manifests and reconciliation output."""
from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentType(str, Enum):
    """Kind of fiscal document attached to a delivery."""

    WAYBILL = "waybill"
    INVOICE = "invoice"


class FiscalStatus(str, Enum):
    """Authorization status of an issued waybill or manifest."""

    PENDING = "pending"
    AUTHORIZED = "authorized"
    CANCELLED = "cancelled"


def _coerce_key_list(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, (list, tuple, set)):
        return [str(item).strip() for item in value if item and str(item).strip()]
    if isinstance(value, str):
        text = value.strip()
        if (text.startswith("[") and text.endswith("]")) or (text.startswith('"') and text.endswith('"')):
            try:
                parsed = json.loads(text)
            except ValueError:
                return []
            if isinstance(parsed, list):
                return [str(item).strip() for item in parsed if item and str(item).strip()]
    return []


class Document(BaseModel):
    """An invoice or waybill as it sits on a delivery."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    number: str
    type: DocumentType
    control_number: Optional[str] = None
    linked_waybill_number: Optional[str] = None
    access_key: Optional[str] = None
    referenced_access_keys: List[str] = Field(default_factory=list)
    is_subcontracted: bool = False
    value: float = Field(default=0.0, ge=0)
    weight_kg: Optional[float] = Field(default=None, ge=0)
    status: Optional[FiscalStatus] = None

    @field_validator("referenced_access_keys", mode="before")
    @classmethod
    def _parse_referenced_keys(cls, value: Any) -> List[str]:
        return _coerce_key_list(value)

    @property
    def is_waybill(self) -> bool:
        return self.type == DocumentType.WAYBILL

    @property
    def counts_as_authorized_waybill(self) -> bool:
        """Imported waybills carry no status and are authorized by the issuer."""
        if not self.is_waybill:
            return False
        return self.status not in (FiscalStatus.PENDING, FiscalStatus.CANCELLED)


class AvailableDocument(Document):
    """A document in the pool, not yet placed on any delivery."""

    recipient_name: str = ""
    destination_city: str = ""
    destination_address: str = ""
    emission_date: Optional[datetime] = None

    def to_document(self) -> Document:
        return Document(**self.model_dump(include=set(Document.model_fields)))


class Waybill(BaseModel):
    """Issued transport authorization for one load. Records are never edited after cancellation."""

    model_config = ConfigDict(frozen=True)

    waybill_id: str
    load_id: str
    number: str
    access_key: str
    freight_value: float = Field(ge=0)
    status: FiscalStatus = FiscalStatus.PENDING
    is_subcontracted: bool = False
    issued_at: datetime = Field(default_factory=_utcnow)
    authorized_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_authorized(self) -> bool:
        return self.status == FiscalStatus.AUTHORIZED


class Manifest(BaseModel):
    """Trip-level fiscal record aggregating the trip's authorized waybills."""

    model_config = ConfigDict(frozen=True)

    manifest_id: str
    trip_id: str
    number: str
    access_key: str
    status: FiscalStatus = FiscalStatus.PENDING
    waybill_numbers: List[str] = Field(default_factory=list)
    issued_at: datetime = Field(default_factory=_utcnow)
    authorized_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_authorized(self) -> bool:
        return self.status == FiscalStatus.AUTHORIZED


# ==================== RECONCILIATION OUTPUT ====================

class WaybillGroup(BaseModel):
    """One waybill with the invoices it covers on a delivery."""
    waybill_number: str
    waybill: Document
    referenced_keys: List[str] = Field(default_factory=list)
    invoices: List[Document] = Field(default_factory=list)
    missing_referenced_keys: List[str] = Field(default_factory=list)


class HierarchyCounts(BaseModel):
    waybills: int = 0
    invoices_total: int = 0
    invoices_linked: int = 0
    invoices_unlinked: int = 0


class WaybillHierarchy(BaseModel):
    """Waybill -> invoice grouping for a delivery's documents."""
    groups: List[WaybillGroup] = Field(default_factory=list)
    unlinked_invoices: List[Document] = Field(default_factory=list)
    counts: HierarchyCounts = Field(default_factory=HierarchyCounts)
