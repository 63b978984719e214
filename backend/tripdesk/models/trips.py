"""Domain models for trips, loads, vehicles, legs and deliveries."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tripdesk.models.fiscal import AvailableDocument, Document, DocumentType, Manifest, Waybill
from tripdesk.models.validation import AssignmentMode


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps as UTC so mixed inputs stay comparable."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


EXCLUSIVE_REQUIREMENTS = frozenset({"exclusive", "dedicated", "full_truckload"})


class VehicleClass(str, Enum):
    """Tractor/trailer combination of a vehicle."""

    TRUCK = "truck"
    SEMI_TRAILER = "semi_trailer"
    B_TRAIN = "b_train"
    URBAN = "urban"


class BodyType(str, Enum):
    """Cargo body fitted to a vehicle."""

    BOX = "box"
    CURTAIN_SIDE = "curtain_side"
    REEFER = "reefer"
    SILO = "silo"
    GRAIN = "grain"
    FLATBED = "flatbed"
    TIPPER = "tipper"
    TANK = "tank"
    CONTAINER = "container"
    CAR_CARRIER = "car_carrier"


class VehicleStatus(str, Enum):
    AVAILABLE = "available"
    IN_USE = "in_use"
    MAINTENANCE = "maintenance"


class LoadStatus(str, Enum):
    """Lifecycle status for a load."""

    PENDING = "pending"
    SCHEDULED = "scheduled"
    EMITTED = "emitted"
    DELIVERED = "delivered"


class LoadPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class TripStatus(str, Enum):
    """Lifecycle status for a trip. DELAYED is a side state."""

    PLANNED = "planned"
    PICKING_UP = "picking_up"
    IN_TRANSIT = "in_transit"
    COMPLETED = "completed"
    DELAYED = "delayed"


class LegDirection(str, Enum):
    OUTBOUND = "outbound"
    RETURN = "return"


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    RETURNED = "returned"
    FAILED = "failed"


class Vehicle(BaseModel):
    """Fleet vehicle with hard capacity ceilings."""

    model_config = ConfigDict(frozen=True)

    vehicle_id: str
    plate: str
    vehicle_class: VehicleClass
    model: str = ""
    body_type: Optional[BodyType] = None
    segment: Optional[str] = None
    driver_name: Optional[str] = None
    driver_phone: Optional[str] = None
    status: VehicleStatus = VehicleStatus.AVAILABLE
    capacity_kg: Optional[float] = Field(default=None, ge=0)
    volume_capacity_m3: Optional[float] = Field(default=None, ge=0)
    last_maintenance: Optional[datetime] = None
    next_maintenance: Optional[datetime] = None

    @field_validator("plate")
    @classmethod
    def _normalize_plate(cls, value: str) -> str:
        return value.strip().upper()


class Load(BaseModel):
    """Shipment demand. Exists before any trip and survives waybill cancellation."""

    model_config = ConfigDict(frozen=True)

    load_id: str
    client_name: str
    origin_city: str
    destination_city: Optional[str] = None
    collection_date: Optional[datetime] = None
    status: LoadStatus = LoadStatus.PENDING

    weight_kg: Optional[float] = Field(default=None, ge=0)
    net_weight_kg: Optional[float] = Field(default=None, ge=0)
    volume_m3: Optional[float] = Field(default=None, ge=0)
    packages: Optional[int] = Field(default=None, ge=0)
    max_stacking: Optional[int] = Field(default=None, ge=0)

    segment: Optional[str] = None
    vehicle_type_req: Optional[str] = None
    requirements: List[str] = Field(default_factory=list)
    priority: LoadPriority = LoadPriority.NORMAL
    observations: Optional[str] = None

    collection_window_start: Optional[datetime] = None
    collection_window_end: Optional[datetime] = None
    delivery_deadline: Optional[datetime] = None
    merchandise_value: Optional[float] = Field(default=None, ge=0)
    insurance_required: bool = False

    waybill: Optional[Waybill] = None
    waybill_history: List[Waybill] = Field(default_factory=list)
    manifest: Optional[Manifest] = None

    @property
    def is_exclusive(self) -> bool:
        return any(tag.strip().lower() in EXCLUSIVE_REQUIREMENTS for tag in self.requirements)

    @property
    def has_authorized_waybill(self) -> bool:
        return self.waybill is not None and self.waybill.is_authorized


class Delivery(BaseModel):
    """One destination drop within a load leg."""

    model_config = ConfigDict(frozen=True)

    delivery_id: str
    sequence: int = Field(ge=1)
    attempt_number: int = Field(default=1, ge=1)
    destination_city: str
    destination_address: str = ""
    recipient_name: str = ""
    status: DeliveryStatus = DeliveryStatus.PENDING
    proof_of_delivery: Optional[str] = None
    delivered_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    documents: List[Document] = Field(default_factory=list)


class LoadLeg(BaseModel):
    """Cargo-carrying leg: one destination, covered by one waybill."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["load"] = "load"
    leg_id: str
    sequence: int = Field(ge=1)
    origin_city: str
    origin_address: str = ""
    destination_city: Optional[str] = None
    hub_name: Optional[str] = None
    control_number: Optional[str] = None
    segment: Optional[str] = None
    vehicle_type_req: Optional[str] = None
    direction: LegDirection = LegDirection.OUTBOUND
    load_id: Optional[str] = None
    estimated_delivery_at: Optional[datetime] = None
    deliveries: List[Delivery] = Field(default_factory=list)


class EmptyLeg(BaseModel):
    """Repositioning leg. Carries no cargo and no deliveries."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["empty"] = "empty"
    leg_id: str
    sequence: int = Field(ge=1)
    origin_city: str
    origin_address: str = ""
    destination_city: str
    hub_name: Optional[str] = None


Leg = Annotated[Union[LoadLeg, EmptyLeg], Field(discriminator="kind")]


class Trip(BaseModel):
    """One driver and one vehicle moving through an ordered set of legs."""

    model_config = ConfigDict(frozen=True)

    trip_id: str
    created_at: datetime = Field(default_factory=_utcnow)
    scheduled_at: Optional[datetime] = None
    estimated_return_at: Optional[datetime] = None

    driver_name: str
    truck_plate: str
    trailer_plates: List[str] = Field(default_factory=list, max_length=3)
    segment: Optional[str] = None

    origin_city: str
    main_destination: str = ""
    freight_value: float = Field(default=0.0, ge=0)

    status: TripStatus = TripStatus.PLANNED
    delayed_from: Optional[TripStatus] = None
    legs: List[Leg] = Field(default_factory=list)
    loads: List[Load] = Field(default_factory=list)
    manifests: List[Manifest] = Field(default_factory=list)
    proof_of_delivery: Optional[str] = None

    @field_validator("truck_plate")
    @classmethod
    def _normalize_plate(cls, value: str) -> str:
        return value.strip().upper()

    def load_legs(self) -> List[LoadLeg]:
        return [leg for leg in self.legs if isinstance(leg, LoadLeg)]

    def load_by_id(self) -> Dict[str, Load]:
        return {load.load_id: load for load in self.loads}

    def has_authorized_waybill(self) -> bool:
        return any(load.has_authorized_waybill for load in self.loads)

    def find_leg(self, leg_id: str) -> Leg:
        for leg in self.legs:
            if leg.leg_id == leg_id:
                return leg
        raise KeyError(leg_id)


class Client(BaseModel):
    name: str
    address: str = ""


class BootstrapPayload(BaseModel):
    """Initial board data served by the bootstrap endpoint or the static fixture."""

    trips: List[Trip] = Field(default_factory=list)
    loads: List[Load] = Field(default_factory=list)
    vehicles: List[Vehicle] = Field(default_factory=list)
    available_documents: List[AvailableDocument] = Field(default_factory=list)
    clients: List[Client] = Field(default_factory=list)
    cities: List[str] = Field(default_factory=list)


# ==================== REQUESTS ====================

class LoadCreateRequest(BaseModel):
    """Request payload to create a new pending load."""

    client_name: str
    origin_city: str
    destination_city: Optional[str] = None
    collection_date: Optional[datetime] = None
    weight_kg: Optional[float] = Field(default=None, ge=0)
    volume_m3: Optional[float] = Field(default=None, ge=0)
    packages: Optional[int] = Field(default=None, ge=0)
    segment: Optional[str] = None
    vehicle_type_req: Optional[str] = None
    requirements: List[str] = Field(default_factory=list)
    priority: LoadPriority = LoadPriority.NORMAL
    merchandise_value: Optional[float] = Field(default=None, ge=0)
    insurance_required: bool = False
    delivery_deadline: Optional[datetime] = None
    observations: Optional[str] = None


class TripCreateRequest(BaseModel):
    """Assemble a new trip from a vehicle and a set of pending loads."""

    vehicle_id: str
    driver_name: Optional[str] = None
    load_ids: List[str] = Field(default_factory=list)
    origin_city: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    estimated_return_at: Optional[datetime] = None
    trailer_plates: List[str] = Field(default_factory=list, max_length=3)
    confirm: bool = False


class AddLoadRequest(BaseModel):
    load_id: str
    mode: AssignmentMode = AssignmentMode.COMPLEMENT
    confirm: bool = False


class EmptyLegRequest(BaseModel):
    origin_city: str
    destination_city: str
    origin_address: str = ""
    hub_name: Optional[str] = None


class CargoFromDocumentsRequest(BaseModel):
    """Create load legs from pooled documents, one leg per destination city."""

    origin_city: str
    origin_address: str = ""
    segment: Optional[str] = None
    vehicle_type_req: Optional[str] = None
    document_ids: List[str] = Field(min_length=1)


class DeliveryCreateRequest(BaseModel):
    document_ids: List[str] = Field(min_length=1)


class DocumentCreateRequest(BaseModel):
    number: str
    type: DocumentType
    control_number: Optional[str] = None
    linked_waybill_number: Optional[str] = None
    access_key: Optional[str] = None
    referenced_access_keys: List[str] = Field(default_factory=list)
    is_subcontracted: bool = False
    value: float = Field(default=0.0, ge=0)
    weight_kg: Optional[float] = Field(default=None, ge=0)


class DeliveryStatusRequest(BaseModel):
    status: DeliveryStatus
    proof_of_delivery: Optional[str] = None
    failure_reason: Optional[str] = None


class ReorderDeliveriesRequest(BaseModel):
    delivery_ids: List[str] = Field(min_length=1)


class TripResourcesRequest(BaseModel):
    driver_name: Optional[str] = None
    truck_plate: Optional[str] = None


class TripStatusRequest(BaseModel):
    status: TripStatus
    proof_of_delivery: Optional[str] = None


class WaybillCancelRequest(BaseModel):
    reason: str = Field(min_length=1)
