"""Unit tests for load-to-trip compatibility and capacity rules."""
from __future__ import annotations

import sys
from datetime import datetime, timezone
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from tripdesk.models.trips import (  # noqa: E402
    BodyType,
    EmptyLeg,
    LegDirection,
    Load,
    LoadLeg,
    Trip,
    TripStatus,
    Vehicle,
    VehicleClass,
)
from tripdesk.models.validation import AssignmentMode, VerdictType  # noqa: E402
from tripdesk.services.compatibility import (  # noqa: E402
    validate_add_load_to_trip,
    validate_capacity,
    validate_compatibility,
    validate_dedicated_vehicle,
    validate_return_sequence,
    validate_trip_status,
)


def _vehicle(**overrides) -> Vehicle:
    data = {
        "vehicle_id": "VEH-T",
        "plate": "tst1a23",
        "vehicle_class": VehicleClass.TRUCK,
        "body_type": BodyType.BOX,
        "capacity_kg": 10000,
        "volume_capacity_m3": 50,
    }
    data.update(overrides)
    return Vehicle(**data)


def _load(load_id: str = "L-NEW", **overrides) -> Load:
    data = {"load_id": load_id, "client_name": "Acme", "origin_city": "Porto Alegre"}
    data.update(overrides)
    return Load(**data)


def _trip_carrying(*loads: Load, **overrides) -> Trip:
    legs = [
        LoadLeg(leg_id=f"LEG-{index}", sequence=index, origin_city="Porto Alegre", load_id=load.load_id)
        for index, load in enumerate(loads, start=1)
    ]
    data = {
        "trip_id": "TRIP-T",
        "driver_name": "Driver",
        "truck_plate": "TST1A23",
        "origin_city": "Porto Alegre",
        "legs": legs,
        "loads": list(loads),
    }
    data.update(overrides)
    return Trip(**data)


def test_capacity_blocks_and_cites_available_weight():
    trip = _trip_carrying(_load("L-OLD", weight_kg=8000))
    result = validate_capacity(_vehicle(), trip, _load(weight_kg=3000), AssignmentMode.COMPLEMENT)

    assert result.valid is False
    assert result.type == VerdictType.HARD_BLOCK
    assert "available capacity (2000kg)" in result.error
    assert "10000kg" in result.error


def test_capacity_exact_fit_is_valid():
    trip = _trip_carrying(_load("L-OLD", weight_kg=8000))
    result = validate_capacity(_vehicle(), trip, _load(weight_kg=2000))
    assert result.valid is True


def test_capacity_return_mode_starts_from_full_capacity():
    trip = _trip_carrying(_load("L-OLD", weight_kg=8000))
    result = validate_capacity(_vehicle(), trip, _load(weight_kg=9000), AssignmentMode.RETURN)
    assert result.valid is True


def test_capacity_ignores_empty_legs_and_missing_weights():
    trip = _trip_carrying(_load("L-OLD", weight_kg=8000))
    trip = trip.model_copy(
        update={"legs": [*trip.legs, EmptyLeg(leg_id="LEG-E", sequence=2, origin_city="A", destination_city="B")]}
    )
    assert validate_capacity(_vehicle(), trip, _load(weight_kg=2000)).valid is True
    assert validate_capacity(_vehicle(), trip, _load(weight_kg=None)).valid is True
    assert validate_capacity(_vehicle(capacity_kg=None), trip, _load(weight_kg=50000)).valid is True


def test_capacity_checks_volume_after_weight():
    trip = _trip_carrying(_load("L-OLD", weight_kg=1000, volume_m3=45))
    result = validate_capacity(_vehicle(), trip, _load(weight_kg=100, volume_m3=10))
    assert result.valid is False
    assert "available capacity (5m3)" in result.error


def test_compatibility_rejects_wrong_body_type():
    result = validate_compatibility(_vehicle(body_type=BodyType.BOX), _load(segment="refrigerated"))
    assert result.valid is False
    assert "reefer" in result.error
    assert "box" in result.error


def test_compatibility_accepts_missing_or_unknown_segment():
    assert validate_compatibility(_vehicle(), _load(segment=None)).valid is True
    assert validate_compatibility(_vehicle(), _load(segment="moon_rocks")).valid is True


def test_compatibility_checks_class_when_body_type_missing():
    urban = _vehicle(vehicle_class=VehicleClass.URBAN, body_type=None)
    truck = _vehicle(body_type=None)
    assert validate_compatibility(urban, _load(segment="refrigerated")).valid is False
    assert validate_compatibility(truck, _load(segment="refrigerated")).valid is True


def test_dedicated_vehicle_rule_both_directions():
    exclusive = _load("L-EX", requirements=["Full_Truckload"])
    shared = _load("L-SH")

    assert validate_dedicated_vehicle(_trip_carrying(), exclusive).valid is True
    assert validate_dedicated_vehicle(_trip_carrying(shared), exclusive).valid is False
    assert validate_dedicated_vehicle(_trip_carrying(exclusive), shared).valid is False


def test_return_sequence_warns_on_early_collection():
    outbound = LoadLeg(
        leg_id="LEG-1",
        sequence=1,
        origin_city="Porto Alegre",
        direction=LegDirection.OUTBOUND,
        estimated_delivery_at=datetime(2025, 3, 12, 12, tzinfo=timezone.utc),
    )
    trip = _trip_carrying(legs=[outbound])
    early = _load(collection_date=datetime(2025, 3, 11))
    late = _load(collection_date=datetime(2025, 3, 13, tzinfo=timezone.utc))

    warned = validate_return_sequence(trip, early, AssignmentMode.RETURN)
    assert warned.valid is True
    assert warned.type == VerdictType.WARNING
    assert "2025-03-11" in warned.warning

    assert validate_return_sequence(trip, late, AssignmentMode.RETURN).warning is None
    assert validate_return_sequence(trip, early, AssignmentMode.COMPLEMENT).warning is None


def test_trip_status_gate():
    completed = validate_trip_status(_trip_carrying(status=TripStatus.COMPLETED))
    delayed = validate_trip_status(_trip_carrying(status=TripStatus.DELAYED))

    assert completed.valid is False
    assert "cannot add cargo to a completed trip" in completed.error.lower()
    assert delayed.valid is True
    assert delayed.warning


def test_add_load_collects_every_error_without_short_circuit():
    trip = _trip_carrying(_load("L-OLD", weight_kg=8000, requirements=["exclusive"]), status=TripStatus.COMPLETED)
    load = _load(weight_kg=3000, segment="refrigerated")

    verdict = validate_add_load_to_trip(trip, load, _vehicle(), AssignmentMode.COMPLEMENT)

    assert verdict.valid is False
    assert len(verdict.errors) == 4
    assert "completed trip" in verdict.errors[0]
    assert "reefer" in verdict.errors[1]
    assert "exclusive" in verdict.errors[2]
    assert "2000kg" in verdict.errors[3]


def test_add_load_delayed_trip_requires_confirmation():
    verdict = validate_add_load_to_trip(
        _trip_carrying(status=TripStatus.DELAYED),
        _load(weight_kg=100),
        _vehicle(),
    )
    assert verdict.valid is True
    assert verdict.requires_confirmation is True
