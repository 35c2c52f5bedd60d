"""Route optimisation request/response schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, Field, model_validator

from ..models.domain import GeoPoint, VehicleType
from ..services.routing.models import Route, RouteCandidate, RouteMetrics, RouteSegment, Waypoint, WaypointKind
from .common import GeoPointModel, validate_payload


class WaypointModel(BaseModel):
    point: GeoPointModel
    kind: WaypointKind = WaypointKind.WAYPOINT
    delivery_id: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _accept_flat_layout(cls, data: Any) -> Any:
        """Also accept ``{"lat", "lng", "type", "deliveryId"}`` objects."""
        if not isinstance(data, dict) or "point" in data:
            return data
        flat = dict(data)
        point = {"lat": flat.pop("lat", None), "lon": flat.pop("lon", flat.pop("lng", None))}
        kind = flat.pop("kind", flat.pop("type", WaypointKind.WAYPOINT.value))
        delivery_id = flat.pop("delivery_id", flat.pop("deliveryId", None))
        return {
            "point": point,
            "kind": kind.upper() if isinstance(kind, str) else kind,
            "delivery_id": delivery_id,
        }

    def to_domain(self) -> Waypoint:
        return Waypoint(point=self.point.to_domain(), kind=self.kind, delivery_id=self.delivery_id)

    @classmethod
    def from_domain(cls, waypoint: Waypoint) -> "WaypointModel":
        return cls(
            point=GeoPointModel.from_domain(waypoint.point),
            kind=waypoint.kind,
            delivery_id=waypoint.delivery_id,
        )


class TrafficOverrideModel(BaseModel):
    from_index: int = Field(..., ge=0)
    to_index: int = Field(..., ge=0)
    duration_min: float = Field(..., ge=0.0)


class RouteOptimizationRequest(BaseModel):
    waypoints: List[WaypointModel] = Field(..., min_length=1)
    vehicle_type: VehicleType = VehicleType.MOTORCYCLE
    origin: Optional[GeoPointModel] = Field(default=None, description="Fixed start, e.g. the partner's location.")
    traffic: List[TrafficOverrideModel] = Field(default_factory=list)
    persist: bool = False

    @model_validator(mode="before")
    @classmethod
    def _normalise_vehicle_type(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("vehicle_type"), str):
            data = {**data, "vehicle_type": data["vehicle_type"].strip().upper()}
        return data

    @model_validator(mode="after")
    def _check_traffic_indices(self) -> "RouteOptimizationRequest":
        size = len(self.waypoints)
        for override in self.traffic:
            if override.from_index >= size or override.to_index >= size:
                raise ValueError(
                    f"Traffic override {override.from_index}->{override.to_index} references a missing waypoint."
                )
            if override.from_index == override.to_index:
                raise ValueError("Traffic overrides must connect two different waypoints.")
        return self

    def to_domain(self) -> List[Waypoint]:
        return [waypoint.to_domain() for waypoint in self.waypoints]

    def traffic_durations(self) -> Dict[tuple[int, int], float]:
        return {(item.from_index, item.to_index): item.duration_min for item in self.traffic}

    def origin_point(self) -> Optional[GeoPoint]:
        return self.origin.to_domain() if self.origin else None


class RouteSegmentModel(BaseModel):
    from_index: Optional[int]
    to_index: int
    distance_km: float
    duration_min: float
    instruction: str
    traffic_sourced: bool

    @classmethod
    def from_domain(cls, segment: RouteSegment) -> "RouteSegmentModel":
        return cls(
            from_index=segment.from_index,
            to_index=segment.to_index,
            distance_km=round(segment.distance_km, 3),
            duration_min=round(segment.duration_min, 1),
            instruction=segment.instruction,
            traffic_sourced=segment.traffic_sourced,
        )


class RouteMetricsModel(BaseModel):
    fuel_consumption_l: float
    carbon_emission_kg: float
    average_speed_kmh: float
    efficiency_score: float
    delivery_density: float

    @classmethod
    def from_domain(cls, metrics: RouteMetrics) -> "RouteMetricsModel":
        return cls(
            fuel_consumption_l=round(metrics.fuel_consumption_l, 3),
            carbon_emission_kg=round(metrics.carbon_emission_kg, 3),
            average_speed_kmh=round(metrics.average_speed_kmh, 2),
            efficiency_score=metrics.efficiency_score,
            delivery_density=round(metrics.delivery_density, 3),
        )


class RouteAlternativeModel(BaseModel):
    algorithm_name: str
    total_distance_km: float
    estimated_duration_min: float
    composite_score: float
    order: List[int]

    @classmethod
    def from_domain(cls, candidate: RouteCandidate) -> "RouteAlternativeModel":
        return cls(
            algorithm_name=candidate.result.algorithm_name,
            total_distance_km=round(candidate.result.total_distance_km, 3),
            estimated_duration_min=round(candidate.result.estimated_duration_min, 1),
            composite_score=round(candidate.composite_score, 2),
            order=list(candidate.result.order),
        )


class RouteModel(BaseModel):
    optimization_id: str
    algorithm_name: str
    vehicle_type: VehicleType
    total_distance_km: float
    estimated_duration_min: float
    composite_score: float
    confidence: float
    origin: Optional[GeoPointModel] = None
    waypoints: List[WaypointModel]
    segments: List[RouteSegmentModel] = Field(default_factory=list)
    metrics: Optional[RouteMetricsModel] = None
    alternatives: List[RouteAlternativeModel] = Field(default_factory=list)
    failures: Dict[str, str] = Field(default_factory=dict)
    created_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, route: Route) -> "RouteModel":
        return cls(
            optimization_id=route.optimization_id,
            algorithm_name=route.algorithm_name,
            vehicle_type=route.vehicle_type,
            total_distance_km=round(route.total_distance_km, 3),
            estimated_duration_min=round(route.estimated_duration_min, 1),
            composite_score=round(route.composite_score, 2),
            confidence=route.confidence,
            origin=GeoPointModel.from_domain(route.origin) if route.origin else None,
            waypoints=[WaypointModel.from_domain(waypoint) for waypoint in route.waypoints],
            segments=[RouteSegmentModel.from_domain(segment) for segment in route.segments],
            metrics=RouteMetricsModel.from_domain(route.metrics) if route.metrics else None,
            alternatives=[RouteAlternativeModel.from_domain(candidate) for candidate in route.alternatives],
            failures=dict(route.failures),
            created_at=route.created_at,
        )


def parse_route_request(payload: Union[Mapping[str, Any], str, bytes]) -> RouteOptimizationRequest:
    return validate_payload(RouteOptimizationRequest, payload, "route request")
