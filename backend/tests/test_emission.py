"""Unit tests for waybill/manifest emission gates and factories."""
from __future__ import annotations

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from tripdesk.core.config import Settings  # noqa: E402
from tripdesk.models.fiscal import FiscalStatus  # noqa: E402
from tripdesk.models.trips import Load, LoadLeg, LoadStatus, Trip, TripStatus  # noqa: E402
from tripdesk.services.emission import (  # noqa: E402
    cancel_waybill,
    compute_freight_value,
    generate_access_key,
    issue_manifest,
    issue_waybill,
    validate_cancellation,
    validate_emission,
    validate_manifest_emission,
    validate_post_emission_change,
)

SETTINGS = Settings(
    driver_placeholder="TBD",
    freight_rate_per_kg=0.15,
    freight_flat_fallback=1500.0,
    waybill_series="WB",
    manifest_series="MF",
)


def _load(**overrides) -> Load:
    data = {
        "load_id": "L-1",
        "client_name": "Acme",
        "origin_city": "Porto Alegre",
        "status": LoadStatus.SCHEDULED,
        "weight_kg": 4000,
    }
    data.update(overrides)
    return Load(**data)


def _trip(load: Load, **overrides) -> Trip:
    data = {
        "trip_id": "TRIP-1",
        "driver_name": "Ana Souza",
        "truck_plate": "ABC1D23",
        "origin_city": "Porto Alegre",
        "legs": [LoadLeg(leg_id="LEG-1", sequence=1, origin_city="Porto Alegre", load_id=load.load_id)],
        "loads": [load],
    }
    data.update(overrides)
    return Trip(**data)


def _emitted(load: Load) -> Load:
    waybill = issue_waybill(load, 7, SETTINGS)
    return load.model_copy(update={"waybill": waybill, "status": LoadStatus.EMITTED})


def test_emission_requires_a_trip():
    result = validate_emission(_load(), None, SETTINGS)
    assert result.valid is False
    assert "trip" in result.error


def test_emission_rejects_placeholder_driver_case_insensitively():
    load = _load()
    for driver in ("TBD", "tbd", "  ", ""):
        result = validate_emission(load, _trip(load, driver_name=driver), SETTINGS)
        assert result.valid is False
        assert "driver" in result.error


def test_emission_rejects_missing_plate():
    load = _load()
    result = validate_emission(load, _trip(load, truck_plate=" "), SETTINGS)
    assert result.valid is False
    assert "plate" in result.error


def test_emission_rejects_second_authorized_waybill():
    load = _emitted(_load())
    result = validate_emission(load, _trip(load), SETTINGS)
    assert result.valid is False
    assert "already has an authorized waybill" in result.error


def test_emission_rejects_pending_load():
    load = _load(status=LoadStatus.PENDING)
    result = validate_emission(load, _trip(load), SETTINGS)
    assert result.valid is False
    assert "scheduled" in result.error


def test_emission_passes_for_scheduled_load_with_confirmed_crew():
    load = _load()
    assert validate_emission(load, _trip(load), SETTINGS).valid is True


def test_driver_check_runs_before_waybill_check():
    load = _emitted(_load())
    result = validate_emission(load, _trip(load, driver_name="TBD"), SETTINGS)
    assert "driver" in result.error


def test_issue_waybill_builds_authorized_record():
    waybill = issue_waybill(_load(weight_kg=4000), 12, SETTINGS)

    assert waybill.number == "WB-000012"
    assert waybill.status == FiscalStatus.AUTHORIZED
    assert waybill.freight_value == 600.0
    assert waybill.authorized_at is not None
    assert len(waybill.access_key) == 44
    assert waybill.access_key.isdigit()


def test_freight_value_falls_back_to_flat_rate():
    assert compute_freight_value(None, SETTINGS) == 1500.0
    assert compute_freight_value(0, SETTINGS) == 1500.0
    assert compute_freight_value(1000, SETTINGS) == 150.0


def test_tiny_weight_still_charges_freight():
    load = _load(weight_kg=0.02)
    assert validate_emission(load, _trip(load), SETTINGS).valid is True

    waybill = issue_waybill(load, 1, SETTINGS)
    assert waybill.freight_value == 0.01
    assert compute_freight_value(0.034, SETTINGS) > 0


def test_access_keys_are_unique_digits():
    keys = {generate_access_key() for _ in range(50)}
    assert len(keys) == 50
    assert all(len(key) == 44 and key.isdigit() for key in keys)


def test_post_emission_change_locks_driver_and_plate():
    load = _emitted(_load())
    trip = _trip(load)

    assert validate_post_emission_change(trip, new_driver_name="Other").valid is False
    assert validate_post_emission_change(trip, new_truck_plate="XYZ9Z99").valid is False
    assert validate_post_emission_change(trip, new_driver_name="Ana Souza").valid is True
    assert validate_post_emission_change(trip, new_truck_plate="abc1d23").valid is True


def test_post_emission_change_free_without_authorized_waybill():
    load = _load()
    assert validate_post_emission_change(_trip(load), new_driver_name="Other").valid is True


def test_cancel_waybill_returns_new_cancelled_record():
    load = _emitted(_load())
    cancelled = cancel_waybill(load.waybill, "  wrong weight ")

    assert cancelled.status == FiscalStatus.CANCELLED
    assert cancelled.cancellation_reason == "wrong weight"
    assert cancelled.cancelled_at is not None
    assert cancelled.waybill_id == load.waybill.waybill_id
    assert load.waybill.status == FiscalStatus.AUTHORIZED


def test_cancellation_gate():
    load = _load()
    assert validate_cancellation(load, _trip(load)).valid is False

    emitted = _emitted(load)
    assert validate_cancellation(emitted, _trip(emitted)).valid is True
    assert validate_cancellation(emitted, _trip(emitted, status=TripStatus.COMPLETED)).valid is False


def test_manifest_needs_authorized_waybill_and_is_unique():
    load = _load()
    assert validate_manifest_emission(_trip(load), SETTINGS).valid is False

    emitted = _emitted(load)
    trip = _trip(emitted)
    assert validate_manifest_emission(trip, SETTINGS).valid is True

    manifest = issue_manifest(trip, 3, SETTINGS)
    assert manifest.number == "MF-000003"
    assert manifest.waybill_numbers == ["WB-000007"]

    with_manifest = trip.model_copy(update={"manifests": [manifest]})
    assert validate_manifest_emission(with_manifest, SETTINGS).valid is False
