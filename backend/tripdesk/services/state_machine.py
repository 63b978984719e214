"""Trip and load lifecycle transitions, guards and their side effects."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, FrozenSet, Iterable, List, Optional, Set

from tripdesk.models.trips import (
    DeliveryStatus,
    LoadLeg,
    LoadStatus,
    Trip,
    TripStatus,
)
from tripdesk.models.validation import FiscalReadinessReport, ValidationResult

# Delayed is handled separately: it returns to the status it left or its successor.
ALLOWED_TRIP_TRANSITIONS: Dict[TripStatus, FrozenSet[TripStatus]] = {
    TripStatus.PLANNED: frozenset({TripStatus.PICKING_UP}),
    TripStatus.PICKING_UP: frozenset({TripStatus.IN_TRANSIT, TripStatus.DELAYED}),
    TripStatus.IN_TRANSIT: frozenset({TripStatus.COMPLETED, TripStatus.DELAYED}),
    TripStatus.COMPLETED: frozenset(),
}

MAIN_LINE_SUCCESSOR: Dict[TripStatus, TripStatus] = {
    TripStatus.PLANNED: TripStatus.PICKING_UP,
    TripStatus.PICKING_UP: TripStatus.IN_TRANSIT,
    TripStatus.IN_TRANSIT: TripStatus.COMPLETED,
}

IN_PROGRESS_STATUSES = frozenset({TripStatus.PICKING_UP, TripStatus.IN_TRANSIT, TripStatus.DELAYED})

ALLOWED_LOAD_TRANSITIONS: Dict[LoadStatus, FrozenSet[LoadStatus]] = {
    LoadStatus.PENDING: frozenset({LoadStatus.SCHEDULED}),
    LoadStatus.SCHEDULED: frozenset({LoadStatus.EMITTED, LoadStatus.DELIVERED}),
    LoadStatus.EMITTED: frozenset({LoadStatus.SCHEDULED, LoadStatus.DELIVERED}),
    LoadStatus.DELIVERED: frozenset(),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def allowed_trip_targets(trip: Trip) -> Set[TripStatus]:
    if trip.status != TripStatus.DELAYED:
        return set(ALLOWED_TRIP_TRANSITIONS.get(trip.status, frozenset()))
    if trip.delayed_from is None:
        return {TripStatus.PICKING_UP, TripStatus.IN_TRANSIT, TripStatus.COMPLETED}
    targets = {trip.delayed_from}
    successor = MAIN_LINE_SUCCESSOR.get(trip.delayed_from)
    if successor is not None:
        targets.add(successor)
    return targets


def leg_is_fiscally_ready(leg: LoadLeg, trip: Trip) -> bool:
    """A load leg is ready once its load or one of its deliveries holds an authorized waybill."""
    if leg.load_id:
        linked = trip.load_by_id().get(leg.load_id)
        if linked is not None and linked.has_authorized_waybill:
            return True
    return any(
        document.counts_as_authorized_waybill
        for delivery in leg.deliveries
        for document in delivery.documents
    )


def fiscal_readiness(trip: Trip) -> FiscalReadinessReport:
    legs = trip.load_legs()
    missing = [leg.leg_id for leg in legs if not leg_is_fiscally_ready(leg, trip)]
    return FiscalReadinessReport(
        trip_id=trip.trip_id,
        ready=not missing,
        load_legs=len(legs),
        missing_leg_ids=missing,
    )


def _fiscal_guard(trip: Trip) -> Optional[ValidationResult]:
    report = fiscal_readiness(trip)
    if report.ready:
        return None
    return ValidationResult.blocked(
        f"Trip {trip.trip_id} is not fiscally ready: load legs without an authorized waybill: "
        f"{', '.join(report.missing_leg_ids)}."
    )


def vehicle_busy_elsewhere(trip: Trip, trips: Iterable[Trip]) -> Optional[Trip]:
    for other in trips:
        if other.trip_id == trip.trip_id:
            continue
        if other.truck_plate == trip.truck_plate and other.status in IN_PROGRESS_STATUSES:
            return other
    return None


def validate_trip_transition(
    trip: Trip,
    target: TripStatus,
    trips: Iterable[Trip] = (),
    proof_of_delivery: Optional[str] = None,
) -> ValidationResult:
    """Check the transition table, then the guard for the target state."""
    target = TripStatus(target)
    if target == trip.status:
        return ValidationResult.blocked(f"Trip {trip.trip_id} is already {target.value}.")

    allowed = allowed_trip_targets(trip)
    if target not in allowed:
        return ValidationResult.blocked(
            f"Invalid status transition {trip.status.value} -> {target.value}. "
            f"Allowed: {sorted(status.value for status in allowed)}"
        )

    if target == TripStatus.PICKING_UP:
        busy = vehicle_busy_elsewhere(trip, trips)
        if busy is not None:
            return ValidationResult.blocked(
                f"Vehicle {trip.truck_plate} is busy on trip {busy.trip_id} ({busy.status.value})."
            )

    if target in (TripStatus.PICKING_UP, TripStatus.IN_TRANSIT):
        blocked = _fiscal_guard(trip)
        if blocked is not None:
            return blocked

    if target == TripStatus.COMPLETED and not (proof_of_delivery or "").strip():
        return ValidationResult.blocked("Completing a trip requires a proof of delivery.")

    return ValidationResult.passed()


def validate_load_transition(current: LoadStatus, target: LoadStatus) -> ValidationResult:
    current = LoadStatus(current)
    target = LoadStatus(target)
    if target in ALLOWED_LOAD_TRANSITIONS.get(current, frozenset()):
        return ValidationResult.passed()
    allowed = sorted(status.value for status in ALLOWED_LOAD_TRANSITIONS.get(current, frozenset()))
    return ValidationResult.blocked(
        f"Invalid load transition {current.value} -> {target.value}. Allowed: {allowed}"
    )


def apply_trip_transition(
    trip: Trip,
    target: TripStatus,
    proof_of_delivery: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Trip:
    """
    Build the trip after a transition. Assumes validate_trip_transition passed.

    Completing closes every delivery and marks every carried load delivered.
    Vehicle release is the board's job since vehicles live outside the trip.
    """
    target = TripStatus(target)
    update: Dict[str, object] = {"status": target}

    if target == TripStatus.DELAYED:
        update["delayed_from"] = trip.status
    else:
        update["delayed_from"] = None

    if target == TripStatus.COMPLETED:
        stamp = now or _utcnow()
        update["proof_of_delivery"] = proof_of_delivery.strip() if proof_of_delivery else None
        update["legs"] = [_close_leg(leg, stamp) for leg in trip.legs]
        update["loads"] = [
            load.model_copy(update={"status": LoadStatus.DELIVERED}) for load in trip.loads
        ]

    return trip.model_copy(update=update)


def _close_leg(leg, stamp: datetime):
    if not isinstance(leg, LoadLeg):
        return leg
    deliveries: List = []
    for delivery in leg.deliveries:
        if delivery.status == DeliveryStatus.DELIVERED:
            deliveries.append(delivery)
            continue
        deliveries.append(
            delivery.model_copy(update={"status": DeliveryStatus.DELIVERED, "delivered_at": stamp})
        )
    return leg.model_copy(update={"deliveries": deliveries})
