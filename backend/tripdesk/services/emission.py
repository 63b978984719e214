"""
Fiscal Emission Gatekeeper

Guards waybill and manifest issuance:
1. A waybill needs a trip with a confirmed driver and truck plate
2. A load holds at most one authorized waybill
3. Only scheduled/emitted loads can be emitted
4. Driver and plate lock once any waybill on the trip is authorized

Issuance here is an internal authorization step; nothing is sent to a tax
authority. Waybill and manifest records are built by one factory each so the
load collection and the trip's embedded copy always share the same record.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from tripdesk.core.config import Settings, get_settings
from tripdesk.models.fiscal import FiscalStatus, Manifest, Waybill
from tripdesk.models.trips import Load, LoadStatus, Trip, TripStatus
from tripdesk.models.validation import ValidationResult

EMITTABLE_LOAD_STATUSES = (LoadStatus.SCHEDULED, LoadStatus.EMITTED)
MINIMUM_FREIGHT_VALUE = 0.01


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_access_key() -> str:
    """Synthetic 44-digit access key in the shape of a transport fiscal key."""
    return f"{uuid.uuid4().int % 10**44:044d}"


def format_fiscal_number(series: str, sequence: int) -> str:
    return f"{series}-{sequence:06d}"


def compute_freight_value(weight_kg: Optional[float], settings: Optional[Settings] = None) -> float:
    """Freight charged per kg, or the flat fallback when the load has no weight.

    Any positive weight is charged at least one cent.
    """
    settings = settings or get_settings()
    if weight_kg and weight_kg > 0:
        return max(round(weight_kg * settings.freight_rate_per_kg, 2), MINIMUM_FREIGHT_VALUE)
    return settings.freight_flat_fallback


def validate_emission_preconditions(trip: Optional[Trip], settings: Optional[Settings] = None) -> ValidationResult:
    """A waybill needs a trip with a confirmed driver and vehicle."""
    settings = settings or get_settings()
    if trip is None:
        return ValidationResult.blocked(
            "A waybill can only be issued after the load is attached to a trip with a driver and vehicle."
        )
    if settings.is_driver_placeholder(trip.driver_name):
        return ValidationResult.blocked("A waybill requires a confirmed driver on the trip.")
    if not (trip.truck_plate or "").strip():
        return ValidationResult.blocked("A waybill requires a confirmed vehicle plate on the trip.")
    return ValidationResult.passed()


def validate_emission(load: Load, trip: Optional[Trip], settings: Optional[Settings] = None) -> ValidationResult:
    """Full gate for issuing a waybill on a load."""
    basic = validate_emission_preconditions(trip, settings)
    if not basic.valid:
        return basic

    if load.has_authorized_waybill:
        return ValidationResult.blocked("This load already has an authorized waybill.")

    if load.status not in EMITTABLE_LOAD_STATUSES:
        return ValidationResult.blocked("A waybill can only be issued for loads scheduled on a trip.")

    return ValidationResult.passed()


def validate_post_emission_change(
    trip: Trip,
    new_driver_name: Optional[str] = None,
    new_truck_plate: Optional[str] = None,
) -> ValidationResult:
    """Driver and plate are frozen while any load on the trip holds an authorized waybill."""
    if not trip.has_authorized_waybill():
        return ValidationResult.passed()

    if new_driver_name is not None and new_driver_name != trip.driver_name:
        return ValidationResult.blocked(
            "Cannot change the driver after a waybill is authorized. Cancel the waybill first."
        )

    if new_truck_plate is not None and new_truck_plate.strip().upper() != trip.truck_plate:
        return ValidationResult.blocked(
            "Cannot change the vehicle after a waybill is authorized. Cancel the waybill first."
        )

    return ValidationResult.passed()


def validate_cancellation(load: Load, trip: Optional[Trip]) -> ValidationResult:
    if not load.has_authorized_waybill:
        return ValidationResult.blocked("This load has no authorized waybill to cancel.")
    if trip is not None and trip.status == TripStatus.COMPLETED:
        return ValidationResult.blocked("Cannot cancel a waybill on a completed trip.")
    return ValidationResult.passed()


def validate_manifest_emission(trip: Trip, settings: Optional[Settings] = None) -> ValidationResult:
    """A manifest aggregates authorized waybills; one open manifest per trip."""
    basic = validate_emission_preconditions(trip, settings)
    if not basic.valid:
        return basic
    if trip.status == TripStatus.COMPLETED:
        return ValidationResult.blocked("Cannot issue a manifest for a completed trip.")
    if any(manifest.is_authorized for manifest in trip.manifests):
        return ValidationResult.blocked("This trip already has an authorized manifest.")
    if not trip.has_authorized_waybill():
        return ValidationResult.blocked("A manifest requires at least one authorized waybill on the trip.")
    return ValidationResult.passed()


def issue_waybill(
    load: Load,
    sequence: int,
    settings: Optional[Settings] = None,
    issued_at: Optional[datetime] = None,
) -> Waybill:
    """Build the single authorized waybill record for a load."""
    settings = settings or get_settings()
    now = issued_at or _utcnow()
    return Waybill(
        waybill_id=str(uuid.uuid4()),
        load_id=load.load_id,
        number=format_fiscal_number(settings.waybill_series, sequence),
        access_key=generate_access_key(),
        freight_value=compute_freight_value(load.weight_kg, settings),
        status=FiscalStatus.AUTHORIZED,
        issued_at=now,
        authorized_at=now,
        created_at=now,
    )


def cancel_waybill(waybill: Waybill, reason: str, cancelled_at: Optional[datetime] = None) -> Waybill:
    """Return a cancelled copy; the authorized record stays untouched in history."""
    return waybill.model_copy(
        update={
            "status": FiscalStatus.CANCELLED,
            "cancelled_at": cancelled_at or _utcnow(),
            "cancellation_reason": reason.strip(),
        }
    )


def issue_manifest(
    trip: Trip,
    sequence: int,
    settings: Optional[Settings] = None,
    issued_at: Optional[datetime] = None,
) -> Manifest:
    settings = settings or get_settings()
    now = issued_at or _utcnow()
    return Manifest(
        manifest_id=str(uuid.uuid4()),
        trip_id=trip.trip_id,
        number=format_fiscal_number(settings.manifest_series, sequence),
        access_key=generate_access_key(),
        status=FiscalStatus.AUTHORIZED,
        waybill_numbers=sorted(
            load.waybill.number for load in trip.loads if load.has_authorized_waybill
        ),
        issued_at=now,
        authorized_at=now,
        created_at=now,
    )
