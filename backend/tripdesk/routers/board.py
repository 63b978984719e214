"""API routes over the trip board: assignment, deliveries, lifecycle and fiscal emission."""
from __future__ import annotations

from typing import Any, Callable, List

from fastapi import APIRouter, HTTPException

from tripdesk.core.errors import ConfirmationRequired, HardBlockError
from tripdesk.core.logging import logger
from tripdesk.models.fiscal import Manifest, Waybill, WaybillHierarchy
from tripdesk.models.trips import (
    AddLoadRequest,
    BootstrapPayload,
    CargoFromDocumentsRequest,
    DeliveryCreateRequest,
    DeliveryStatusRequest,
    DocumentCreateRequest,
    EmptyLegRequest,
    Load,
    LoadCreateRequest,
    ReorderDeliveriesRequest,
    Trip,
    TripCreateRequest,
    TripResourcesRequest,
    TripStatusRequest,
    WaybillCancelRequest,
)
from tripdesk.models.validation import AddLoadValidation, FiscalReadinessReport
from tripdesk.services.segments import SegmentConfig, available_segments
from tripdesk.services.trip_board import trip_board

router = APIRouter(prefix="/board", tags=["board"])


def _execute(failure: str, operation: Callable[[], Any], **context) -> Any:
    try:
        return operation()
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"Not found: {exc.args[0] if exc.args else exc}")
    except HardBlockError as exc:
        raise HTTPException(status_code=409, detail={"code": exc.code, "errors": exc.errors})
    except ConfirmationRequired as exc:
        raise HTTPException(status_code=428, detail={"code": exc.code, "warnings": exc.warnings})
    except ValueError as exc:
        logger.error(failure, error=str(exc), **context)
        raise HTTPException(status_code=400, detail=str(exc))


@router.get("", response_model=BootstrapPayload)
def get_board():
    return trip_board.snapshot()


@router.get("/segments", response_model=List[SegmentConfig])
def list_segments():
    return available_segments()


@router.post("/loads", response_model=Load)
def create_load(request: LoadCreateRequest):
    return _execute("Failed to create load", lambda: trip_board.create_load(request))


@router.post("/trips", response_model=Trip)
def create_trip(request: TripCreateRequest):
    return _execute(
        "Failed to create trip",
        lambda: trip_board.create_trip(request),
        vehicle_id=request.vehicle_id,
    )


@router.get("/trips/{trip_id}", response_model=Trip)
def get_trip(trip_id: str):
    return _execute("Failed to read trip", lambda: trip_board.get_trip(trip_id), trip_id=trip_id)


@router.post("/trips/{trip_id}/loads/validate", response_model=AddLoadValidation)
def validate_add_load(trip_id: str, request: AddLoadRequest):
    """Dry run: every violated rule and warning, nothing applied."""
    return _execute(
        "Failed to validate load",
        lambda: trip_board.validate_add_load(trip_id, request.load_id, request.mode),
        trip_id=trip_id,
        load_id=request.load_id,
    )


@router.post("/trips/{trip_id}/loads", response_model=Trip)
def add_load(trip_id: str, request: AddLoadRequest):
    return _execute(
        "Failed to add load",
        lambda: trip_board.add_load_to_trip(trip_id, request.load_id, request.mode, request.confirm),
        trip_id=trip_id,
        load_id=request.load_id,
    )


@router.post("/trips/{trip_id}/empty-legs", response_model=Trip)
def add_empty_leg(trip_id: str, request: EmptyLegRequest):
    return _execute("Failed to add empty leg", lambda: trip_board.add_empty_leg(trip_id, request), trip_id=trip_id)


@router.post("/trips/{trip_id}/cargo", response_model=Trip)
def add_cargo_from_documents(trip_id: str, request: CargoFromDocumentsRequest):
    return _execute(
        "Failed to add cargo",
        lambda: trip_board.add_cargo_from_documents(trip_id, request),
        trip_id=trip_id,
    )


@router.post("/trips/{trip_id}/legs/{leg_id}/deliveries", response_model=Trip)
def add_delivery(trip_id: str, leg_id: str, request: DeliveryCreateRequest):
    return _execute(
        "Failed to add delivery",
        lambda: trip_board.add_delivery(trip_id, leg_id, request),
        trip_id=trip_id,
        leg_id=leg_id,
    )


@router.put("/trips/{trip_id}/legs/{leg_id}/deliveries/order", response_model=Trip)
def reorder_deliveries(trip_id: str, leg_id: str, request: ReorderDeliveriesRequest):
    return _execute(
        "Failed to reorder deliveries",
        lambda: trip_board.reorder_deliveries(trip_id, leg_id, request),
        trip_id=trip_id,
        leg_id=leg_id,
    )


@router.post("/trips/{trip_id}/legs/{leg_id}/deliveries/{delivery_id}/documents", response_model=Trip)
def add_document(trip_id: str, leg_id: str, delivery_id: str, request: DocumentCreateRequest):
    return _execute(
        "Failed to add document",
        lambda: trip_board.add_document(trip_id, leg_id, delivery_id, request),
        trip_id=trip_id,
        delivery_id=delivery_id,
    )


@router.post("/trips/{trip_id}/legs/{leg_id}/deliveries/{delivery_id}/status", response_model=Trip)
def update_delivery_status(trip_id: str, leg_id: str, delivery_id: str, request: DeliveryStatusRequest):
    return _execute(
        "Failed to update delivery",
        lambda: trip_board.update_delivery_status(trip_id, leg_id, delivery_id, request),
        trip_id=trip_id,
        delivery_id=delivery_id,
    )


@router.post("/trips/{trip_id}/legs/{leg_id}/deliveries/{delivery_id}/retry", response_model=Trip)
def retry_delivery(trip_id: str, leg_id: str, delivery_id: str):
    return _execute(
        "Failed to retry delivery",
        lambda: trip_board.retry_delivery(trip_id, leg_id, delivery_id),
        trip_id=trip_id,
        delivery_id=delivery_id,
    )


@router.get(
    "/trips/{trip_id}/legs/{leg_id}/deliveries/{delivery_id}/hierarchy",
    response_model=WaybillHierarchy,
)
def get_delivery_hierarchy(trip_id: str, leg_id: str, delivery_id: str):
    return _execute(
        "Failed to build waybill hierarchy",
        lambda: trip_board.delivery_hierarchy(trip_id, leg_id, delivery_id),
        trip_id=trip_id,
        delivery_id=delivery_id,
    )


@router.patch("/trips/{trip_id}/resources", response_model=Trip)
def change_trip_resources(trip_id: str, request: TripResourcesRequest):
    return _execute(
        "Failed to change trip resources",
        lambda: trip_board.change_trip_resources(trip_id, request),
        trip_id=trip_id,
    )


@router.post("/trips/{trip_id}/status", response_model=Trip)
def transition_trip(trip_id: str, request: TripStatusRequest):
    return _execute(
        "Failed to change trip status",
        lambda: trip_board.transition_trip(trip_id, request.status, request.proof_of_delivery),
        trip_id=trip_id,
        target=request.status.value,
    )


@router.get("/trips/{trip_id}/fiscal-readiness", response_model=FiscalReadinessReport)
def get_fiscal_readiness(trip_id: str):
    return _execute("Failed to compute fiscal readiness", lambda: trip_board.fiscal_readiness(trip_id), trip_id=trip_id)


@router.post("/trips/{trip_id}/manifest", response_model=Manifest)
def emit_manifest(trip_id: str):
    return _execute("Failed to emit manifest", lambda: trip_board.emit_manifest(trip_id), trip_id=trip_id)


@router.post("/loads/{load_id}/waybill", response_model=Waybill)
def emit_waybill(load_id: str):
    return _execute("Failed to emit waybill", lambda: trip_board.emit_waybill(load_id), load_id=load_id)


@router.post("/loads/{load_id}/waybill/cancel", response_model=Waybill)
def cancel_waybill(load_id: str, request: WaybillCancelRequest):
    return _execute(
        "Failed to cancel waybill",
        lambda: trip_board.cancel_waybill(load_id, request.reason),
        load_id=load_id,
    )
