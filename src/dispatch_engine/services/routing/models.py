"""Routing domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Sequence

from ...models.domain import DeliveryRequest, GeoPoint, VehicleType


class WaypointKind(str, Enum):
    PICKUP = "PICKUP"
    DELIVERY = "DELIVERY"
    WAYPOINT = "WAYPOINT"


@dataclass(slots=True, frozen=True)
class Waypoint:
    point: GeoPoint
    kind: WaypointKind = WaypointKind.WAYPOINT
    delivery_id: Optional[str] = None


@dataclass(slots=True)
class SolverResult:
    """Visiting order produced by one solver, as indices into the waypoint list."""

    algorithm_name: str
    order: List[int]
    total_distance_km: float
    estimated_duration_min: float
    fitness: Optional[float] = None
    iterations: int = 0


@dataclass(slots=True)
class RouteCandidate:
    result: SolverResult
    composite_score: float


@dataclass(slots=True)
class RouteSegment:
    from_index: Optional[int]
    to_index: int
    distance_km: float
    duration_min: float
    instruction: str
    traffic_sourced: bool = False


@dataclass(slots=True)
class RouteMetrics:
    fuel_consumption_l: float
    carbon_emission_kg: float
    average_speed_kmh: float
    efficiency_score: float
    delivery_density: float


@dataclass(slots=True)
class Route:
    waypoints: List[Waypoint]
    total_distance_km: float
    estimated_duration_min: float
    algorithm_name: str
    composite_score: float
    vehicle_type: VehicleType
    segments: List[RouteSegment] = field(default_factory=list)
    metrics: Optional[RouteMetrics] = None
    confidence: float = 0.0
    alternatives: List[RouteCandidate] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)
    origin: Optional[GeoPoint] = None
    optimization_id: str = ""
    created_at: Optional[datetime] = None

    @property
    def stop_count(self) -> int:
        return len(self.waypoints)


def delivery_waypoints(deliveries: Sequence[DeliveryRequest]) -> list[Waypoint]:
    """One PICKUP and one DELIVERY waypoint per delivery, in input order."""

    waypoints: list[Waypoint] = []
    for delivery in deliveries:
        waypoints.append(Waypoint(point=delivery.pickup, kind=WaypointKind.PICKUP, delivery_id=delivery.id))
        waypoints.append(Waypoint(point=delivery.dropoff, kind=WaypointKind.DELIVERY, delivery_id=delivery.id))
    return waypoints
