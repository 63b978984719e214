"""Operational segments and the vehicle classes/body types able to carry them."""
from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from tripdesk.models.trips import BodyType, VehicleClass


class SegmentConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    segment_id: str
    name: str
    description: str
    compatible_vehicle_classes: List[VehicleClass]
    compatible_body_types: List[BodyType]


SEGMENTS: Dict[str, SegmentConfig] = {
    "feed": SegmentConfig(
        segment_id="feed",
        name="Feed",
        description="Animal feed (silo or grain body)",
        compatible_vehicle_classes=[VehicleClass.TRUCK, VehicleClass.SEMI_TRAILER],
        compatible_body_types=[BodyType.SILO, BodyType.GRAIN],
    ),
    "pallet": SegmentConfig(
        segment_id="pallet",
        name="Pallet",
        description="Palletized cargo (box or curtain side)",
        compatible_vehicle_classes=[VehicleClass.TRUCK, VehicleClass.SEMI_TRAILER, VehicleClass.B_TRAIN],
        compatible_body_types=[BodyType.BOX, BodyType.CURTAIN_SIDE, BodyType.REEFER],
    ),
    "brick": SegmentConfig(
        segment_id="brick",
        name="Brick",
        description="Construction material (open or curtain side body)",
        compatible_vehicle_classes=[VehicleClass.TRUCK, VehicleClass.SEMI_TRAILER],
        compatible_body_types=[BodyType.CURTAIN_SIDE, BodyType.FLATBED, BodyType.TIPPER],
    ),
    "bulk_grain": SegmentConfig(
        segment_id="bulk_grain",
        name="Bulk Grain",
        description="Grain and commodities (grain body)",
        compatible_vehicle_classes=[VehicleClass.TRUCK, VehicleClass.SEMI_TRAILER, VehicleClass.B_TRAIN],
        compatible_body_types=[BodyType.GRAIN, BodyType.SILO],
    ),
    "refrigerated": SegmentConfig(
        segment_id="refrigerated",
        name="Refrigerated",
        description="Chilled and frozen goods (reefer)",
        compatible_vehicle_classes=[VehicleClass.TRUCK, VehicleClass.SEMI_TRAILER],
        compatible_body_types=[BodyType.REEFER],
    ),
    "industrial": SegmentConfig(
        segment_id="industrial",
        name="Industrial",
        description="General industrial cargo",
        compatible_vehicle_classes=[VehicleClass.TRUCK, VehicleClass.SEMI_TRAILER, VehicleClass.B_TRAIN],
        compatible_body_types=[BodyType.BOX, BodyType.CURTAIN_SIDE, BodyType.FLATBED],
    ),
    "ecommerce": SegmentConfig(
        segment_id="ecommerce",
        name="E-commerce",
        description="Parcel and e-commerce cargo (box)",
        compatible_vehicle_classes=[VehicleClass.TRUCK, VehicleClass.SEMI_TRAILER],
        compatible_body_types=[BodyType.BOX, BodyType.CURTAIN_SIDE],
    ),
}


def get_segment(id_or_name: Optional[str]) -> Optional[SegmentConfig]:
    """Look a segment up by id or display name, ignoring case."""
    if not id_or_name:
        return None
    needle = id_or_name.strip().casefold()
    for segment in SEGMENTS.values():
        if needle in (segment.segment_id.casefold(), segment.name.casefold()):
            return segment
    return None


def available_segments() -> List[SegmentConfig]:
    return list(SEGMENTS.values())


def is_vehicle_compatible(
    vehicle_class: VehicleClass,
    body_type: Optional[BodyType],
    segment: Optional[str],
) -> bool:
    """
    Check a vehicle against a segment.

    No segment, or a segment missing from the table, accepts any vehicle. A
    vehicle without a recorded body type is judged on its class alone.
    """
    if not segment:
        return True
    config = get_segment(segment)
    if config is None:
        return True
    if vehicle_class not in config.compatible_vehicle_classes:
        return False
    return body_type is None or body_type in config.compatible_body_types
