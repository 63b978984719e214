"""Static board dataset used when the bootstrap endpoint cannot be reached."""
from __future__ import annotations

from datetime import datetime, timezone

from tripdesk.models.fiscal import AvailableDocument, Document, DocumentType
from tripdesk.models.trips import (
    BodyType,
    BootstrapPayload,
    Client,
    Delivery,
    EmptyLeg,
    LegDirection,
    Load,
    LoadLeg,
    LoadPriority,
    LoadStatus,
    Trip,
    Vehicle,
    VehicleClass,
    VehicleStatus,
)


def _at(day: int, hour: int = 8) -> datetime:
    return datetime(2025, 3, day, hour, 0, tzinfo=timezone.utc)


def _key(serial: int) -> str:
    return f"43250312345678000190550010000{serial:05d}1{serial:09d}"[:44]


def fixture_vehicles() -> list[Vehicle]:
    return [
        Vehicle(
            vehicle_id="VEH-001",
            plate="ABC1D23",
            vehicle_class=VehicleClass.SEMI_TRAILER,
            model="Scania R450 - Box",
            body_type=BodyType.BOX,
            driver_name="Carlos Mendes",
            driver_phone="+55 51 99999-0001",
            capacity_kg=27000,
            volume_capacity_m3=90,
        ),
        Vehicle(
            vehicle_id="VEH-002",
            plate="DEF4G56",
            vehicle_class=VehicleClass.TRUCK,
            model="Volvo VM 270 - Reefer",
            body_type=BodyType.REEFER,
            driver_name="Ana Souza",
            status=VehicleStatus.IN_USE,
            capacity_kg=12000,
            volume_capacity_m3=45,
        ),
        Vehicle(
            vehicle_id="VEH-003",
            plate="GHI7J89",
            vehicle_class=VehicleClass.B_TRAIN,
            model="Mercedes-Benz Actros - Grain",
            body_type=BodyType.GRAIN,
            capacity_kg=37000,
            volume_capacity_m3=110,
        ),
        Vehicle(
            vehicle_id="VEH-004",
            plate="JKL0M12",
            vehicle_class=VehicleClass.URBAN,
            model="Iveco Daily - Box",
            body_type=BodyType.BOX,
            status=VehicleStatus.MAINTENANCE,
            capacity_kg=3500,
            volume_capacity_m3=18,
        ),
    ]


def fixture_loads() -> list[Load]:
    return [
        Load(
            load_id="LOAD-2001",
            client_name="Agro Vale",
            origin_city="Porto Alegre",
            destination_city="Caxias do Sul",
            collection_date=_at(10),
            weight_kg=8000,
            volume_m3=30,
            segment="pallet",
            requirements=["pallets"],
        ),
        Load(
            load_id="LOAD-2002",
            client_name="Frigo Sul",
            origin_city="Porto Alegre",
            destination_city="Pelotas",
            collection_date=_at(11),
            weight_kg=6000,
            volume_m3=25,
            segment="refrigerated",
            priority=LoadPriority.HIGH,
        ),
        Load(
            load_id="LOAD-2003",
            client_name="Cerealista Norte",
            origin_city="Passo Fundo",
            destination_city="Rio Grande",
            collection_date=_at(12),
            weight_kg=30000,
            segment="bulk_grain",
            requirements=["full_truckload"],
        ),
        Load(
            load_id="LOAD-2004",
            client_name="Construtora Lima",
            origin_city="Caxias do Sul",
            destination_city="Porto Alegre",
            collection_date=_at(14),
            weight_kg=5000,
            segment="brick",
            priority=LoadPriority.LOW,
        ),
    ]


def fixture_trips() -> list[Trip]:
    carried = Load(
        load_id="LOAD-1900",
        client_name="Frigo Sul",
        origin_city="Porto Alegre",
        destination_city="Santa Maria",
        collection_date=_at(8),
        status=LoadStatus.SCHEDULED,
        weight_kg=4000,
        volume_m3=15,
        segment="refrigerated",
    )
    return [
        Trip(
            trip_id="TRIP-1001",
            created_at=_at(7),
            scheduled_at=_at(9),
            estimated_return_at=_at(12, 18),
            driver_name="Ana Souza",
            truck_plate="DEF4G56",
            segment="refrigerated",
            origin_city="Porto Alegre",
            main_destination="Santa Maria",
            freight_value=600.0,
            legs=[
                LoadLeg(
                    leg_id="LEG-1001-1",
                    sequence=1,
                    origin_city="Porto Alegre",
                    origin_address="Av. Farrapos 1200",
                    destination_city="Santa Maria",
                    control_number="48213377",
                    segment="refrigerated",
                    direction=LegDirection.OUTBOUND,
                    load_id="LOAD-1900",
                    estimated_delivery_at=_at(10, 16),
                    deliveries=[
                        Delivery(
                            delivery_id="DEL-1001-1",
                            sequence=1,
                            destination_city="Santa Maria",
                            destination_address="Rua do Acampamento 45",
                            recipient_name="Mercado Central SM",
                            documents=[
                                Document(
                                    document_id="DOC-1001-1",
                                    number="CTe-000101",
                                    type=DocumentType.WAYBILL,
                                    access_key=_key(101),
                                    referenced_access_keys=[_key(5501), _key(5502)],
                                    value=600.0,
                                ),
                                Document(
                                    document_id="DOC-1001-2",
                                    number="NF-5501",
                                    type=DocumentType.INVOICE,
                                    access_key=_key(5501),
                                    control_number="48213377",
                                    value=18500.0,
                                    weight_kg=2500,
                                ),
                                Document(
                                    document_id="DOC-1001-3",
                                    number="NF-5503",
                                    type=DocumentType.INVOICE,
                                    access_key=_key(5503),
                                    control_number="48213377",
                                    value=9100.0,
                                    weight_kg=1500,
                                ),
                            ],
                        )
                    ],
                ),
                EmptyLeg(
                    leg_id="LEG-1001-2",
                    sequence=2,
                    origin_city="Santa Maria",
                    destination_city="Porto Alegre",
                ),
            ],
            loads=[carried],
        )
    ]


def fixture_available_documents() -> list[AvailableDocument]:
    return [
        AvailableDocument(
            document_id="AVD-3001",
            number="NF-7001",
            type=DocumentType.INVOICE,
            control_number="51002001",
            access_key=_key(7001),
            value=12000.0,
            weight_kg=3000,
            recipient_name="Atacado Serra",
            destination_city="Caxias do Sul",
            destination_address="Rua Sinimbu 800",
            emission_date=_at(9),
        ),
        AvailableDocument(
            document_id="AVD-3002",
            number="NF-7002",
            type=DocumentType.INVOICE,
            control_number="51002001",
            access_key=_key(7002),
            value=8000.0,
            weight_kg=2000,
            recipient_name="Atacado Serra",
            destination_city="Caxias do Sul",
            destination_address="Rua Sinimbu 800",
            emission_date=_at(9),
        ),
        AvailableDocument(
            document_id="AVD-3003",
            number="CTe-000210",
            type=DocumentType.WAYBILL,
            control_number="51002001",
            access_key=_key(210),
            referenced_access_keys=[_key(7001), _key(7002)],
            value=750.0,
            weight_kg=5000,
            recipient_name="Atacado Serra",
            destination_city="Caxias do Sul",
            destination_address="Rua Sinimbu 800",
            emission_date=_at(9),
        ),
        AvailableDocument(
            document_id="AVD-3004",
            number="NF-7100",
            type=DocumentType.INVOICE,
            control_number="51002002",
            access_key=_key(7100),
            value=4300.0,
            weight_kg=1200,
            recipient_name="Porto Pescados",
            destination_city="Pelotas",
            destination_address="Av. Bento Goncalves 3100",
            emission_date=_at(10),
        ),
    ]


def fixture_payload() -> BootstrapPayload:
    """Fresh copy of the static dataset, same shape as the bootstrap endpoint."""
    return BootstrapPayload(
        trips=fixture_trips(),
        loads=fixture_loads(),
        vehicles=fixture_vehicles(),
        available_documents=fixture_available_documents(),
        clients=[
            Client(name="Agro Vale", address="Rod. RS-122 km 14, Farroupilha"),
            Client(name="Frigo Sul", address="Av. Assis Brasil 5000, Porto Alegre"),
            Client(name="Cerealista Norte", address="Rua Moron 300, Passo Fundo"),
            Client(name="Construtora Lima", address="Rua Os 18 do Forte 950, Caxias do Sul"),
        ],
        cities=[
            "Caxias do Sul",
            "Passo Fundo",
            "Pelotas",
            "Porto Alegre",
            "Rio Grande",
            "Santa Maria",
        ],
    )
