"""
Compatibility & Capacity Validation

Decides whether a load may join a trip on a given vehicle:
1. Trip status gate (completed trips are closed, delayed trips need confirmation)
2. Segment / body type compatibility
3. Dedicated (exclusive) vehicle rule
4. Weight and volume capacity
5. Return-leg date sequence

Every function is pure and returns a verdict. Hard blocks reject the
mutation; warnings let it through once a person confirms.
"""

from __future__ import annotations

from tripdesk.models.trips import LegDirection, Load, Trip, TripStatus, Vehicle, ensure_utc
from tripdesk.models.validation import AddLoadValidation, AssignmentMode, ValidationResult, VerdictType
from tripdesk.services.segments import get_segment, is_vehicle_compatible


def _fmt(amount: float) -> str:
    return f"{amount:g}"


def validate_compatibility(vehicle: Vehicle, load: Load) -> ValidationResult:
    """Check the load's required segment against the vehicle class and body type."""
    if not load.segment:
        return ValidationResult.passed()

    if is_vehicle_compatible(vehicle.vehicle_class, vehicle.body_type, load.segment):
        return ValidationResult.passed()

    config = get_segment(load.segment)
    required = ", ".join(body.value for body in config.compatible_body_types) if config else "specific body types"
    actual = vehicle.body_type.value if vehicle.body_type else vehicle.vehicle_class.value
    return ValidationResult.blocked(
        f'Incompatible vehicle: "{load.segment}" cargo requires {required}. Vehicle has: {actual}.'
    )


def validate_dedicated_vehicle(trip: Trip, load: Load) -> ValidationResult:
    """An exclusive load travels alone."""
    if not trip.loads:
        return ValidationResult.passed()

    if any(existing.is_exclusive for existing in trip.loads):
        return ValidationResult.blocked(
            "Cannot add another load: the trip carries an exclusive/full-truckload load."
        )

    if load.is_exclusive:
        return ValidationResult.blocked(
            "Cannot add an exclusive/full-truckload load to a trip that already carries other loads."
        )

    return ValidationResult.passed()


def assigned_weight(trip: Trip) -> float:
    loads = trip.load_by_id()
    total = 0.0
    for leg in trip.load_legs():
        linked = loads.get(leg.load_id) if leg.load_id else None
        if linked and linked.weight_kg:
            total += linked.weight_kg
    return total


def assigned_volume(trip: Trip) -> float:
    loads = trip.load_by_id()
    total = 0.0
    for leg in trip.load_legs():
        linked = loads.get(leg.load_id) if leg.load_id else None
        if linked and linked.volume_m3:
            total += linked.volume_m3
    return total


def validate_capacity(
    vehicle: Vehicle,
    trip: Trip,
    load: Load,
    mode: AssignmentMode = AssignmentMode.COMPLEMENT,
) -> ValidationResult:
    """
    Check weight, then volume, against what is left on the vehicle.

    In complement mode the weight of every load leg already on the trip is
    subtracted; a return leg starts from the full capacity. A vehicle without
    a recorded capacity is not checked on that dimension.
    """
    mode = AssignmentMode(mode)

    capacity = vehicle.capacity_kg or 0.0
    if load.weight_kg and capacity > 0:
        available = capacity
        if mode == AssignmentMode.COMPLEMENT:
            available = capacity - assigned_weight(trip)
        if load.weight_kg > available:
            return ValidationResult.blocked(
                f"Load weight ({_fmt(load.weight_kg)}kg) exceeds available capacity "
                f"({_fmt(available)}kg). Vehicle total capacity: {_fmt(capacity)}kg."
            )

    volume_capacity = vehicle.volume_capacity_m3 or 0.0
    if load.volume_m3 and volume_capacity > 0:
        available_volume = volume_capacity
        if mode == AssignmentMode.COMPLEMENT:
            available_volume = volume_capacity - assigned_volume(trip)
        if load.volume_m3 > available_volume:
            return ValidationResult.blocked(
                f"Load volume ({_fmt(load.volume_m3)}m3) exceeds available capacity "
                f"({_fmt(available_volume)}m3). Vehicle total capacity: {_fmt(volume_capacity)}m3."
            )

    return ValidationResult.passed()


def validate_return_sequence(
    trip: Trip,
    load: Load,
    mode: AssignmentMode = AssignmentMode.RETURN,
) -> ValidationResult:
    """Warn when a return load is collected before the outbound leg is delivered."""
    if AssignmentMode(mode) != AssignmentMode.RETURN:
        return ValidationResult.passed(VerdictType.WARNING)

    outbound = next(
        (leg for leg in trip.load_legs() if leg.direction == LegDirection.OUTBOUND),
        None,
    )
    if outbound is None:
        return ValidationResult.passed(VerdictType.WARNING)

    expected_delivery = ensure_utc(outbound.estimated_delivery_at or trip.estimated_return_at)
    collection = ensure_utc(load.collection_date)
    if expected_delivery is None or collection is None:
        return ValidationResult.passed(VerdictType.WARNING)

    if collection < expected_delivery:
        return ValidationResult.warned(
            f"Return collection date ({collection:%Y-%m-%d}) is earlier than the outbound "
            f"estimated delivery ({expected_delivery:%Y-%m-%d}). Confirm the sequence?"
        )
    return ValidationResult.passed(VerdictType.WARNING)


def validate_trip_status(trip: Trip) -> ValidationResult:
    if trip.status == TripStatus.COMPLETED:
        return ValidationResult.blocked(
            "Cannot add cargo to a completed trip. Create a new trip instead."
        )
    if trip.status == TripStatus.DELAYED:
        return ValidationResult.warned(
            "Trip is delayed. Confirm adding cargo anyway?"
        )
    return ValidationResult.passed()


def validate_add_load_to_trip(
    trip: Trip,
    load: Load,
    vehicle: Vehicle,
    mode: AssignmentMode = AssignmentMode.COMPLEMENT,
) -> AddLoadValidation:
    """Run every rule in a fixed order and collect all errors and warnings."""
    mode = AssignmentMode(mode)
    errors = []
    warnings = []

    checks = (
        validate_trip_status(trip),
        validate_compatibility(vehicle, load),
        validate_dedicated_vehicle(trip, load),
        validate_capacity(vehicle, trip, load, mode),
        validate_return_sequence(trip, load, mode),
    )
    for result in checks:
        if not result.valid:
            errors.append(result.error)
        elif result.warning:
            warnings.append(result.warning)

    return AddLoadValidation(valid=not errors, errors=errors, warnings=warnings)
