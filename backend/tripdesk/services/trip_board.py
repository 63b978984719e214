"""
Trip Board Controller

Owns the board's collections (trips, loads, vehicles, document pool) and is
the only place they change:
1. Look up the entities a mutation touches (unknown ids raise KeyError)
2. Ask the validators / gatekeeper / state machine for a verdict
3. Raise HardBlockError or ConfirmationRequired when the verdict says so
4. Otherwise build new frozen models and swap in new collection dicts

Loads live in two places: the board's load collection and the copy carried
by the owning trip. Every load change goes through _store_load so both copies
always hold the same record.

Handlers run on a threadpool, so every public operation holds the board's
RLock for its whole read-validate-commit cycle.
"""

from __future__ import annotations

import functools
import uuid
from collections import Counter, OrderedDict
from datetime import datetime, timezone
from threading import RLock
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from tripdesk.core.config import Settings, get_settings
from tripdesk.core.errors import ConfirmationRequired, HardBlockError
from tripdesk.core.logging import logger
from tripdesk.models.fiscal import AvailableDocument, Document, Manifest, WaybillHierarchy, Waybill
from tripdesk.models.trips import (
    BootstrapPayload,
    CargoFromDocumentsRequest,
    Client,
    Delivery,
    DeliveryCreateRequest,
    DeliveryStatus,
    DeliveryStatusRequest,
    DocumentCreateRequest,
    EmptyLeg,
    EmptyLegRequest,
    LegDirection,
    Load,
    LoadCreateRequest,
    LoadLeg,
    LoadStatus,
    ReorderDeliveriesRequest,
    Trip,
    TripCreateRequest,
    TripResourcesRequest,
    TripStatus,
    Vehicle,
    VehicleStatus,
)
from tripdesk.models.validation import (
    AddLoadValidation,
    AssignmentMode,
    FiscalReadinessReport,
    ValidationResult,
)
from tripdesk.services.compatibility import (
    assigned_volume,
    assigned_weight,
    validate_add_load_to_trip,
    validate_compatibility,
    validate_trip_status,
)
from tripdesk.services.emission import (
    cancel_waybill as cancelled_copy,
    compute_freight_value,
    issue_manifest,
    issue_waybill,
    validate_cancellation,
    validate_emission,
    validate_manifest_emission,
    validate_post_emission_change,
)
from tripdesk.services.reconciliation import build_waybill_hierarchy
from tripdesk.services.state_machine import (
    apply_trip_transition,
    fiscal_readiness,
    validate_load_transition,
    validate_trip_transition,
)

CLOSED_DELIVERY_STATUSES = (DeliveryStatus.DELIVERED,)
RETRYABLE_DELIVERY_STATUSES = (DeliveryStatus.FAILED, DeliveryStatus.RETURNED)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def _synchronized(method):
    """Hold the board lock from lookup through commit."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)

    return wrapper


class TripBoard:
    """In-memory owner of every trip, load, vehicle and pooled document."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()
        self._lock = RLock()
        self._trips: Dict[str, Trip] = {}
        self._loads: Dict[str, Load] = {}
        self._vehicles: Dict[str, Vehicle] = {}
        self._available_documents: Dict[str, AvailableDocument] = {}
        self._clients: List[Client] = []
        self._cities: List[str] = []
        self._waybill_sequence = 0
        self._manifest_sequence = 0

    # ==================== STATE ====================

    @_synchronized
    def reset(self, payload: BootstrapPayload) -> None:
        """Replace the whole board with a bootstrap payload."""
        self._trips = {trip.trip_id: trip for trip in payload.trips}
        self._loads = {load.load_id: load for load in payload.loads}
        # Loads carried by a trip are owned by the board too.
        for trip in payload.trips:
            for load in trip.loads:
                self._loads.setdefault(load.load_id, load)
        self._vehicles = {vehicle.vehicle_id: vehicle for vehicle in payload.vehicles}
        self._available_documents = {doc.document_id: doc for doc in payload.available_documents}
        self._clients = list(payload.clients)
        self._cities = list(payload.cities)
        self._waybill_sequence = self._highest_sequence(
            waybill.number
            for load in self._loads.values()
            for waybill in load.waybill_history
        )
        self._manifest_sequence = self._highest_sequence(
            manifest.number for trip in self._trips.values() for manifest in trip.manifests
        )
        logger.info(
            "Trip board loaded",
            trips=len(self._trips),
            loads=len(self._loads),
            vehicles=len(self._vehicles),
            available_documents=len(self._available_documents),
        )

    @staticmethod
    def _highest_sequence(numbers: Iterable[str]) -> int:
        highest = 0
        for number in numbers:
            _, _, tail = str(number).rpartition("-")
            if tail.isdigit():
                highest = max(highest, int(tail))
        return highest

    @property
    def trips(self) -> List[Trip]:
        return list(self._trips.values())

    @property
    def loads(self) -> List[Load]:
        return list(self._loads.values())

    @property
    def vehicles(self) -> List[Vehicle]:
        return list(self._vehicles.values())

    @property
    def available_documents(self) -> List[AvailableDocument]:
        return list(self._available_documents.values())

    @property
    def clients(self) -> List[Client]:
        return list(self._clients)

    @property
    def cities(self) -> List[str]:
        return list(self._cities)

    @_synchronized
    def snapshot(self) -> BootstrapPayload:
        return BootstrapPayload(
            trips=self.trips,
            loads=self.loads,
            vehicles=self.vehicles,
            available_documents=self.available_documents,
            clients=self.clients,
            cities=self.cities,
        )

    def get_trip(self, trip_id: str) -> Trip:
        return self._trips[trip_id]

    def get_load(self, load_id: str) -> Load:
        return self._loads[load_id]

    def get_vehicle(self, vehicle_id: str) -> Vehicle:
        return self._vehicles[vehicle_id]

    def vehicle_for_plate(self, plate: Optional[str]) -> Optional[Vehicle]:
        wanted = (plate or "").strip().upper()
        for vehicle in self._vehicles.values():
            if vehicle.plate == wanted:
                return vehicle
        return None

    def trip_for_load(self, load_id: str) -> Optional[Trip]:
        for trip in self._trips.values():
            if load_id in trip.load_by_id():
                return trip
        return None

    # ==================== COMMIT HELPERS ====================

    def _store_trip(self, trip: Trip) -> None:
        self._trips = {**self._trips, trip.trip_id: trip}

    def _store_vehicle(self, vehicle: Vehicle) -> None:
        self._vehicles = {**self._vehicles, vehicle.vehicle_id: vehicle}

    def _store_load(self, load: Load, trip: Optional[Trip] = None) -> Optional[Trip]:
        """Write a load to the collection and to its trip's copy. Returns the updated trip."""
        self._loads = {**self._loads, load.load_id: load}
        trip = trip or self.trip_for_load(load.load_id)
        if trip is None:
            return None
        loads = [load if existing.load_id == load.load_id else existing for existing in trip.loads]
        updated = trip.model_copy(update={"loads": loads})
        self._store_trip(updated)
        return updated

    def _set_vehicle_status(self, vehicle: Optional[Vehicle], status: VehicleStatus) -> None:
        if vehicle is None or vehicle.status == status:
            return
        self._store_vehicle(vehicle.model_copy(update={"status": status}))

    @staticmethod
    def _block(action: str, errors: List[str], **context) -> None:
        logger.info(f"{action} blocked", errors=errors, **context)
        raise HardBlockError(errors)

    def _gate(self, result: ValidationResult, action: str, **context) -> None:
        if not result.valid:
            self._block(action, [result.error], **context)

    def _enforce(self, validation: AddLoadValidation, confirm: bool, action: str, **context) -> None:
        if validation.errors:
            self._block(action, validation.errors, **context)
        if validation.warnings and not confirm:
            logger.info(f"{action} needs confirmation", warnings=validation.warnings, **context)
            raise ConfirmationRequired(validation.warnings)

    def _require_open_trip(self, trip: Trip, action: str) -> None:
        if trip.status == TripStatus.COMPLETED:
            self._block(action, [f"Trip {trip.trip_id} is completed and can no longer change."], trip_id=trip.trip_id)

    # ==================== LOADS & TRIPS ====================

    @_synchronized
    def create_load(self, request: LoadCreateRequest) -> Load:
        load = Load(load_id=_new_id(), status=LoadStatus.PENDING, **request.model_dump())
        self._loads = {**self._loads, load.load_id: load}
        logger.info("Load created", load_id=load.load_id, client=load.client_name)
        return load

    @staticmethod
    def _freight_total(trip: Trip, settings: Settings) -> float:
        loads = trip.load_by_id()
        total = 0.0
        for leg in trip.load_legs():
            linked = loads.get(leg.load_id) if leg.load_id else None
            if linked is not None:
                total += compute_freight_value(linked.weight_kg, settings)
        return round(total, 2)

    def _attach(self, trip: Trip, load: Load, mode: AssignmentMode) -> Trip:
        """Append a load leg for the load and carry a scheduled copy on the trip."""
        scheduled = load.model_copy(update={"status": LoadStatus.SCHEDULED})
        leg = LoadLeg(
            leg_id=_new_id(),
            sequence=len(trip.legs) + 1,
            origin_city=load.origin_city,
            destination_city=load.destination_city,
            segment=load.segment,
            vehicle_type_req=load.vehicle_type_req,
            direction=LegDirection.RETURN if mode == AssignmentMode.RETURN else LegDirection.OUTBOUND,
            load_id=load.load_id,
            estimated_delivery_at=load.delivery_deadline,
        )
        attached = trip.model_copy(
            update={
                "legs": [*trip.legs, leg],
                "loads": [*trip.loads, scheduled],
                "segment": trip.segment or load.segment,
                "main_destination": trip.main_destination or (load.destination_city or ""),
            }
        )
        return attached.model_copy(update={"freight_value": self._freight_total(attached, self.settings)})

    def _load_attach_errors(self, trip: Trip, load: Load) -> List[str]:
        errors: List[str] = []
        if load.load_id in trip.load_by_id():
            errors.append(f"Load {load.load_id} is already on trip {trip.trip_id}.")
            return errors
        transition = validate_load_transition(load.status, LoadStatus.SCHEDULED)
        if not transition.valid:
            owner = self.trip_for_load(load.load_id)
            if owner is not None:
                errors.append(f"Load {load.load_id} is already assigned to trip {owner.trip_id}.")
            else:
                errors.append(transition.error)
        return errors

    @_synchronized
    def create_trip(self, request: TripCreateRequest) -> Trip:
        """Assemble a trip from a vehicle and pending loads, validating each load in turn."""
        vehicle = self.get_vehicle(request.vehicle_id)
        loads = [self.get_load(load_id) for load_id in request.load_ids]

        errors: List[str] = []
        warnings: List[str] = []
        if vehicle.status == VehicleStatus.MAINTENANCE:
            errors.append(f"Vehicle {vehicle.plate} is under maintenance.")
        elif vehicle.status == VehicleStatus.IN_USE:
            warnings.append(f"Vehicle {vehicle.plate} is already in use on another trip. Confirm?")

        origin = (request.origin_city or "").strip() or (loads[0].origin_city if loads else "")
        if not origin:
            errors.append("A trip needs an origin city or at least one load.")
        if errors:
            self._block("Trip creation", errors, vehicle_id=vehicle.vehicle_id)

        driver = (request.driver_name or "").strip() or vehicle.driver_name or self.settings.driver_placeholder
        trip = Trip(
            trip_id=_new_id(),
            scheduled_at=request.scheduled_at,
            estimated_return_at=request.estimated_return_at,
            driver_name=driver,
            truck_plate=vehicle.plate,
            trailer_plates=request.trailer_plates,
            origin_city=origin,
        )

        for load in loads:
            attach_errors = self._load_attach_errors(trip, load)
            if attach_errors:
                errors.extend(attach_errors)
                continue
            verdict = validate_add_load_to_trip(trip, load, vehicle, AssignmentMode.COMPLEMENT)
            errors.extend(verdict.errors)
            warnings.extend(verdict.warnings)
            if verdict.valid:
                trip = self._attach(trip, load, AssignmentMode.COMPLEMENT)

        self._enforce(
            AddLoadValidation(valid=not errors, errors=errors, warnings=warnings),
            request.confirm,
            "Trip creation",
            vehicle_id=vehicle.vehicle_id,
        )

        self._store_trip(trip)
        for carried in trip.loads:
            self._loads = {**self._loads, carried.load_id: carried}
        self._set_vehicle_status(vehicle, VehicleStatus.IN_USE)
        logger.info(
            "Trip created",
            trip_id=trip.trip_id,
            vehicle=vehicle.plate,
            driver=trip.driver_name,
            loads=len(trip.loads),
        )
        return trip

    def _vehicle_or_none_errors(self, trip: Trip) -> Tuple[Optional[Vehicle], List[str]]:
        vehicle = self.vehicle_for_plate(trip.truck_plate)
        if vehicle is None:
            return None, [f"No vehicle with plate {trip.truck_plate} is registered on the board."]
        return vehicle, []

    @_synchronized
    def validate_add_load(
        self,
        trip_id: str,
        load_id: str,
        mode: AssignmentMode = AssignmentMode.COMPLEMENT,
    ) -> AddLoadValidation:
        """Dry run of add_load_to_trip: every rule, no state change."""
        trip = self.get_trip(trip_id)
        load = self.get_load(load_id)
        errors = self._load_attach_errors(trip, load)
        vehicle, vehicle_errors = self._vehicle_or_none_errors(trip)
        errors.extend(vehicle_errors)
        if vehicle is None:
            return AddLoadValidation(valid=False, errors=errors)
        verdict = validate_add_load_to_trip(trip, load, vehicle, mode)
        errors.extend(verdict.errors)
        return AddLoadValidation(valid=not errors, errors=errors, warnings=verdict.warnings)

    @_synchronized
    def add_load_to_trip(
        self,
        trip_id: str,
        load_id: str,
        mode: AssignmentMode = AssignmentMode.COMPLEMENT,
        confirm: bool = False,
    ) -> Trip:
        mode = AssignmentMode(mode)
        validation = self.validate_add_load(trip_id, load_id, mode)
        self._enforce(validation, confirm, "Add load", trip_id=trip_id, load_id=load_id, mode=mode.value)

        trip = self._attach(self.get_trip(trip_id), self.get_load(load_id), mode)
        self._store_trip(trip)
        self._loads = {**self._loads, load_id: trip.load_by_id()[load_id]}
        logger.info("Load added to trip", trip_id=trip_id, load_id=load_id, mode=mode.value)
        return trip

    # ==================== LEGS & DELIVERIES ====================

    @_synchronized
    def add_empty_leg(self, trip_id: str, request: EmptyLegRequest) -> Trip:
        trip = self.get_trip(trip_id)
        self._require_open_trip(trip, "Add empty leg")
        leg = EmptyLeg(
            leg_id=_new_id(),
            sequence=len(trip.legs) + 1,
            origin_city=request.origin_city,
            origin_address=request.origin_address,
            destination_city=request.destination_city,
            hub_name=request.hub_name,
        )
        updated = trip.model_copy(update={"legs": [*trip.legs, leg]})
        self._store_trip(updated)
        logger.info("Empty leg added", trip_id=trip_id, leg_id=leg.leg_id, destination=leg.destination_city)
        return updated

    def _pooled_documents(self, document_ids: List[str], action: str, **context) -> List[AvailableDocument]:
        repeated = sorted(document_id for document_id, count in Counter(document_ids).items() if count > 1)
        if repeated:
            self._block(
                action,
                [f"Document {document_id} is listed more than once." for document_id in repeated],
                **context,
            )
        return [self._available_documents[document_id] for document_id in document_ids]

    def _release_documents(self, document_ids: Iterable[str]) -> None:
        used = set(document_ids)
        self._available_documents = {
            document_id: doc
            for document_id, doc in self._available_documents.items()
            if document_id not in used
        }

    @staticmethod
    def _deliveries_by_control_number(
        documents: List[AvailableDocument],
        city: str,
        first_sequence: int = 1,
    ) -> List[Delivery]:
        grouped: "OrderedDict[str, List[AvailableDocument]]" = OrderedDict()
        for doc in documents:
            grouped.setdefault((doc.control_number or "").strip() or doc.document_id, []).append(doc)

        deliveries: List[Delivery] = []
        for offset, docs in enumerate(grouped.values()):
            head = docs[0]
            deliveries.append(
                Delivery(
                    delivery_id=_new_id(),
                    sequence=first_sequence + offset,
                    destination_city=city,
                    destination_address=head.destination_address,
                    recipient_name=head.recipient_name,
                    documents=[doc.to_document() for doc in docs],
                )
            )
        return deliveries

    @_synchronized
    def add_cargo_from_documents(self, trip_id: str, request: CargoFromDocumentsRequest) -> Trip:
        """Turn pooled documents into load legs: one leg per destination city."""
        trip = self.get_trip(trip_id)
        self._gate(validate_trip_status(trip), "Add cargo", trip_id=trip_id)
        documents = self._pooled_documents(request.document_ids, "Add cargo", trip_id=trip_id)

        missing_city = [doc.document_id for doc in documents if not doc.destination_city.strip()]
        if missing_city:
            self._block(
                "Add cargo",
                [f"Document {document_id} has no destination city." for document_id in missing_city],
                trip_id=trip_id,
            )

        by_city: "OrderedDict[str, List[AvailableDocument]]" = OrderedDict()
        for doc in documents:
            by_city.setdefault(doc.destination_city.strip(), []).append(doc)

        legs = list(trip.legs)
        for city, docs in by_city.items():
            control_number = next((doc.control_number for doc in docs if doc.control_number), None)
            legs.append(
                LoadLeg(
                    leg_id=_new_id(),
                    sequence=len(legs) + 1,
                    origin_city=request.origin_city,
                    origin_address=request.origin_address,
                    destination_city=city,
                    control_number=control_number,
                    segment=request.segment or trip.segment,
                    vehicle_type_req=request.vehicle_type_req,
                    deliveries=self._deliveries_by_control_number(docs, city),
                )
            )

        updated = trip.model_copy(
            update={
                "legs": legs,
                "segment": trip.segment or request.segment,
                "main_destination": trip.main_destination or next(iter(by_city)),
            }
        )
        self._store_trip(updated)
        self._release_documents(request.document_ids)
        logger.info(
            "Cargo added from documents",
            trip_id=trip_id,
            legs=len(by_city),
            documents=len(documents),
        )
        return updated

    def _load_leg(self, trip: Trip, leg_id: str, action: str) -> LoadLeg:
        leg = trip.find_leg(leg_id)
        if not isinstance(leg, LoadLeg):
            self._block(action, ["Empty legs carry no deliveries."], trip_id=trip.trip_id, leg_id=leg_id)
        return leg

    @staticmethod
    def _replace_leg(trip: Trip, leg: LoadLeg) -> Trip:
        legs = [leg if existing.leg_id == leg.leg_id else existing for existing in trip.legs]
        return trip.model_copy(update={"legs": legs})

    @staticmethod
    def _find_delivery(leg: LoadLeg, delivery_id: str) -> Delivery:
        for delivery in leg.deliveries:
            if delivery.delivery_id == delivery_id:
                return delivery
        raise KeyError(delivery_id)

    def _update_delivery(
        self,
        trip_id: str,
        leg_id: str,
        delivery_id: str,
        action: str,
        change: Callable[[Delivery], Delivery],
    ) -> Trip:
        trip = self.get_trip(trip_id)
        self._require_open_trip(trip, action)
        leg = self._load_leg(trip, leg_id, action)
        delivery = self._find_delivery(leg, delivery_id)
        changed = change(delivery)
        deliveries = [changed if item.delivery_id == delivery_id else item for item in leg.deliveries]
        updated = self._replace_leg(trip, leg.model_copy(update={"deliveries": deliveries}))
        self._store_trip(updated)
        return updated

    @_synchronized
    def add_delivery(self, trip_id: str, leg_id: str, request: DeliveryCreateRequest) -> Trip:
        """Place pooled documents on a new delivery. A load leg serves a single destination."""
        trip = self.get_trip(trip_id)
        self._require_open_trip(trip, "Add delivery")
        leg = self._load_leg(trip, leg_id, "Add delivery")
        documents = self._pooled_documents(request.document_ids, "Add delivery", trip_id=trip_id, leg_id=leg_id)

        cities = {doc.destination_city.strip() for doc in documents if doc.destination_city.strip()}
        expected = (leg.destination_city or "").strip()
        if not expected and leg.deliveries:
            expected = leg.deliveries[0].destination_city
        if len(cities) > 1:
            self._block(
                "Add delivery",
                [f"A load leg serves one destination; documents span {', '.join(sorted(cities))}."],
                trip_id=trip_id,
                leg_id=leg_id,
            )
        city = next(iter(cities), expected)
        if not city:
            self._block("Add delivery", ["The delivery has no destination city."], trip_id=trip_id, leg_id=leg_id)
        if expected and city.casefold() != expected.casefold():
            self._block(
                "Add delivery",
                [f"A load leg serves one destination: {city} does not match the leg destination {expected}."],
                trip_id=trip_id,
                leg_id=leg_id,
            )

        head = documents[0]
        delivery = Delivery(
            delivery_id=_new_id(),
            sequence=len(leg.deliveries) + 1,
            destination_city=expected or city,
            destination_address=head.destination_address,
            recipient_name=head.recipient_name,
            documents=[doc.to_document() for doc in documents],
        )
        new_leg = leg.model_copy(
            update={
                "destination_city": leg.destination_city or city,
                "control_number": leg.control_number or head.control_number,
                "deliveries": [*leg.deliveries, delivery],
            }
        )
        updated = self._replace_leg(trip, new_leg)
        self._store_trip(updated)
        self._release_documents(request.document_ids)
        logger.info("Delivery added", trip_id=trip_id, leg_id=leg_id, delivery_id=delivery.delivery_id)
        return updated

    @_synchronized
    def add_document(
        self,
        trip_id: str,
        leg_id: str,
        delivery_id: str,
        request: DocumentCreateRequest,
    ) -> Trip:
        document = Document(document_id=_new_id(), **request.model_dump())

        def append(delivery: Delivery) -> Delivery:
            return delivery.model_copy(update={"documents": [*delivery.documents, document]})

        updated = self._update_delivery(trip_id, leg_id, delivery_id, "Add document", append)
        logger.info(
            "Document attached",
            trip_id=trip_id,
            delivery_id=delivery_id,
            document_id=document.document_id,
            type=document.type.value,
        )
        return updated

    @_synchronized
    def update_delivery_status(
        self,
        trip_id: str,
        leg_id: str,
        delivery_id: str,
        request: DeliveryStatusRequest,
    ) -> Trip:
        status = DeliveryStatus(request.status)
        proof = (request.proof_of_delivery or "").strip()
        reason = (request.failure_reason or "").strip()
        context = {"trip_id": trip_id, "delivery_id": delivery_id, "status": status.value}

        if status == DeliveryStatus.DELIVERED and not proof:
            self._block("Delivery update", ["A delivered status requires a proof of delivery."], **context)
        if status in RETRYABLE_DELIVERY_STATUSES and not reason:
            self._block("Delivery update", [f"A {status.value} delivery requires a reason."], **context)

        def change(delivery: Delivery) -> Delivery:
            if delivery.status in CLOSED_DELIVERY_STATUSES:
                self._block("Delivery update", [f"Delivery {delivery_id} is already delivered."], **context)
            return delivery.model_copy(
                update={
                    "status": status,
                    "proof_of_delivery": proof or delivery.proof_of_delivery,
                    "delivered_at": _utcnow() if status == DeliveryStatus.DELIVERED else None,
                    "failure_reason": reason or None,
                }
            )

        updated = self._update_delivery(trip_id, leg_id, delivery_id, "Delivery update", change)
        logger.info("Delivery status updated", **context)
        return updated

    @_synchronized
    def retry_delivery(self, trip_id: str, leg_id: str, delivery_id: str) -> Trip:
        """Schedule a new attempt for a failed or returned delivery. The old attempt is kept."""
        trip = self.get_trip(trip_id)
        self._require_open_trip(trip, "Delivery retry")
        leg = self._load_leg(trip, leg_id, "Delivery retry")
        delivery = self._find_delivery(leg, delivery_id)
        if delivery.status not in RETRYABLE_DELIVERY_STATUSES:
            self._block(
                "Delivery retry",
                [f"Only failed or returned deliveries can be retried (current: {delivery.status.value})."],
                trip_id=trip_id,
                delivery_id=delivery_id,
            )

        attempt = delivery.model_copy(
            update={
                "delivery_id": _new_id(),
                "sequence": len(leg.deliveries) + 1,
                "attempt_number": delivery.attempt_number + 1,
                "status": DeliveryStatus.PENDING,
                "proof_of_delivery": None,
                "delivered_at": None,
                "failure_reason": None,
            }
        )
        updated = self._replace_leg(trip, leg.model_copy(update={"deliveries": [*leg.deliveries, attempt]}))
        self._store_trip(updated)
        logger.info(
            "Delivery retry scheduled",
            trip_id=trip_id,
            delivery_id=attempt.delivery_id,
            attempt=attempt.attempt_number,
        )
        return updated

    @_synchronized
    def reorder_deliveries(self, trip_id: str, leg_id: str, request: ReorderDeliveriesRequest) -> Trip:
        trip = self.get_trip(trip_id)
        self._require_open_trip(trip, "Reorder deliveries")
        leg = self._load_leg(trip, leg_id, "Reorder deliveries")
        by_id = {delivery.delivery_id: delivery for delivery in leg.deliveries}
        if sorted(request.delivery_ids) != sorted(by_id):
            self._block(
                "Reorder deliveries",
                ["The new order must list every delivery of the leg exactly once."],
                trip_id=trip_id,
                leg_id=leg_id,
            )

        deliveries = [
            by_id[delivery_id].model_copy(update={"sequence": position})
            for position, delivery_id in enumerate(request.delivery_ids, start=1)
        ]
        updated = self._replace_leg(trip, leg.model_copy(update={"deliveries": deliveries}))
        self._store_trip(updated)
        logger.info("Deliveries reordered", trip_id=trip_id, leg_id=leg_id)
        return updated

    @_synchronized
    def delivery_hierarchy(self, trip_id: str, leg_id: str, delivery_id: str) -> WaybillHierarchy:
        trip = self.get_trip(trip_id)
        leg = trip.find_leg(leg_id)
        if not isinstance(leg, LoadLeg):
            raise KeyError(delivery_id)
        return build_waybill_hierarchy(self._find_delivery(leg, delivery_id).documents)

    # ==================== RESOURCES & LIFECYCLE ====================

    @_synchronized
    def change_trip_resources(self, trip_id: str, request: TripResourcesRequest) -> Trip:
        """Swap driver and/or truck. Locked while an authorized waybill exists on the trip."""
        trip = self.get_trip(trip_id)
        self._require_open_trip(trip, "Resource change")
        self._gate(
            validate_post_emission_change(trip, request.driver_name, request.truck_plate),
            "Resource change",
            trip_id=trip_id,
        )

        update: Dict[str, object] = {}
        if request.driver_name is not None:
            update["driver_name"] = request.driver_name.strip() or self.settings.driver_placeholder

        old_vehicle = self.vehicle_for_plate(trip.truck_plate)
        new_vehicle: Optional[Vehicle] = None
        if request.truck_plate is not None and request.truck_plate.strip().upper() != trip.truck_plate:
            new_vehicle = self.vehicle_for_plate(request.truck_plate)
            errors: List[str] = []
            if new_vehicle is None:
                errors.append(f"No vehicle with plate {request.truck_plate.strip().upper()} is registered.")
            else:
                if new_vehicle.status == VehicleStatus.MAINTENANCE:
                    errors.append(f"Vehicle {new_vehicle.plate} is under maintenance.")
                for load in trip.loads:
                    compatible = validate_compatibility(new_vehicle, load)
                    if not compatible.valid:
                        errors.append(compatible.error)
                if new_vehicle.capacity_kg and assigned_weight(trip) > new_vehicle.capacity_kg:
                    errors.append(
                        f"Assigned weight ({assigned_weight(trip):g}kg) exceeds vehicle "
                        f"{new_vehicle.plate} capacity ({new_vehicle.capacity_kg:g}kg)."
                    )
                if new_vehicle.volume_capacity_m3 and assigned_volume(trip) > new_vehicle.volume_capacity_m3:
                    errors.append(
                        f"Assigned volume ({assigned_volume(trip):g}m3) exceeds vehicle "
                        f"{new_vehicle.plate} capacity ({new_vehicle.volume_capacity_m3:g}m3)."
                    )
            if errors:
                self._block("Resource change", errors, trip_id=trip_id)
            update["truck_plate"] = new_vehicle.plate

        updated = trip.model_copy(update=update)
        self._store_trip(updated)
        if new_vehicle is not None:
            self._set_vehicle_status(old_vehicle, VehicleStatus.AVAILABLE)
            self._set_vehicle_status(new_vehicle, VehicleStatus.IN_USE)
        logger.info(
            "Trip resources changed",
            trip_id=trip_id,
            driver=updated.driver_name,
            truck_plate=updated.truck_plate,
        )
        return updated

    @_synchronized
    def transition_trip(
        self,
        trip_id: str,
        target: TripStatus,
        proof_of_delivery: Optional[str] = None,
    ) -> Trip:
        trip = self.get_trip(trip_id)
        target = TripStatus(target)
        self._gate(
            validate_trip_transition(trip, target, self._trips.values(), proof_of_delivery),
            "Trip transition",
            trip_id=trip_id,
            current=trip.status.value,
            target=target.value,
        )

        updated = apply_trip_transition(trip, target, proof_of_delivery)
        self._store_trip(updated)
        if target == TripStatus.COMPLETED:
            for carried in updated.loads:
                self._loads = {**self._loads, carried.load_id: carried}
            self._set_vehicle_status(self.vehicle_for_plate(updated.truck_plate), VehicleStatus.AVAILABLE)

        logger.info(
            "Trip status changed",
            trip_id=trip_id,
            previous=trip.status.value,
            status=updated.status.value,
        )
        return updated

    @_synchronized
    def fiscal_readiness(self, trip_id: str) -> FiscalReadinessReport:
        return fiscal_readiness(self.get_trip(trip_id))

    # ==================== FISCAL ====================

    @_synchronized
    def emit_waybill(self, load_id: str) -> Waybill:
        """Issue and authorize the load's waybill; the same record lands on the load and the trip copy."""
        load = self.get_load(load_id)
        trip = self.trip_for_load(load_id)
        context = {"load_id": load_id, "trip_id": trip.trip_id if trip else None}
        self._gate(validate_emission(load, trip, self.settings), "Waybill emission", **context)
        if load.status != LoadStatus.EMITTED:
            self._gate(validate_load_transition(load.status, LoadStatus.EMITTED), "Waybill emission", **context)

        self._waybill_sequence += 1
        waybill = issue_waybill(load, self._waybill_sequence, self.settings)
        emitted = load.model_copy(
            update={
                "waybill": waybill,
                "waybill_history": [*load.waybill_history, waybill],
                "status": LoadStatus.EMITTED,
            }
        )
        self._store_load(emitted, trip)
        logger.info(
            "Waybill authorized",
            number=waybill.number,
            freight_value=waybill.freight_value,
            **context,
        )
        return waybill

    @_synchronized
    def cancel_waybill(self, load_id: str, reason: str) -> Waybill:
        """Cancel the current waybill. The cancelled record replaces the authorized one in history."""
        load = self.get_load(load_id)
        trip = self.trip_for_load(load_id)
        context = {"load_id": load_id, "trip_id": trip.trip_id if trip else None}
        if not (reason or "").strip():
            self._block("Waybill cancellation", ["A cancellation reason is required."], **context)
        self._gate(validate_cancellation(load, trip), "Waybill cancellation", **context)
        if load.status == LoadStatus.EMITTED:
            self._gate(
                validate_load_transition(load.status, LoadStatus.SCHEDULED),
                "Waybill cancellation",
                **context,
            )

        cancelled = cancelled_copy(load.waybill, reason)
        history = [
            cancelled if record.waybill_id == cancelled.waybill_id else record
            for record in load.waybill_history
        ]
        if cancelled.waybill_id not in {record.waybill_id for record in history}:
            history.append(cancelled)
        reverted = load.model_copy(
            update={
                "waybill": None,
                "waybill_history": history,
                "status": LoadStatus.SCHEDULED if load.status == LoadStatus.EMITTED else load.status,
            }
        )
        self._store_load(reverted, trip)
        logger.info("Waybill cancelled", number=cancelled.number, reason=cancelled.cancellation_reason, **context)
        return cancelled

    @_synchronized
    def emit_manifest(self, trip_id: str) -> Manifest:
        trip = self.get_trip(trip_id)
        self._gate(validate_manifest_emission(trip, self.settings), "Manifest emission", trip_id=trip_id)

        self._manifest_sequence += 1
        manifest = issue_manifest(trip, self._manifest_sequence, self.settings)
        loads = [
            load.model_copy(update={"manifest": manifest}) if load.has_authorized_waybill else load
            for load in trip.loads
        ]
        updated = trip.model_copy(update={"manifests": [*trip.manifests, manifest], "loads": loads})
        self._store_trip(updated)
        for load in loads:
            if load.manifest is not None and load.manifest.manifest_id == manifest.manifest_id:
                self._loads = {**self._loads, load.load_id: load}
        logger.info(
            "Manifest authorized",
            trip_id=trip_id,
            number=manifest.number,
            waybills=len(manifest.waybill_numbers),
        )
        return manifest


trip_board = TripBoard()
