"""Domain models for delivery requests, partners and dispatch outcomes."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from ..errors import ValidationError


class Priority(str, Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]

    @property
    def is_urgent(self) -> bool:
        return self in (Priority.HIGH, Priority.URGENT)


_PRIORITY_RANK = {Priority.LOW: 1, Priority.NORMAL: 2, Priority.HIGH: 3, Priority.URGENT: 4}


class DeliveryType(str, Enum):
    STANDARD = "STANDARD"
    EXPRESS = "EXPRESS"
    SCHEDULED = "SCHEDULED"


class VehicleType(str, Enum):
    BICYCLE = "BICYCLE"
    MOTORCYCLE = "MOTORCYCLE"
    CAR = "CAR"
    SCOOTER = "SCOOTER"
    WALKING = "WALKING"

    @classmethod
    def parse(cls, value: "VehicleType | str") -> "VehicleType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError as exc:
            raise ValidationError(f"Unknown vehicle type '{value}'.") from exc


@dataclass(slots=True, frozen=True)
class GeoPoint:
    """Latitude/longitude pair in decimal degrees."""

    lat: float
    lon: float

    def __post_init__(self) -> None:
        if not (math.isfinite(self.lat) and math.isfinite(self.lon)):
            raise ValidationError(f"Coordinates must be finite numbers (got {self.lat}, {self.lon}).")
        if not -90.0 <= self.lat <= 90.0:
            raise ValidationError(f"Latitude {self.lat} outside [-90, 90].")
        if not -180.0 <= self.lon <= 180.0:
            raise ValidationError(f"Longitude {self.lon} outside [-180, 180].")


@dataclass(slots=True, frozen=True)
class ServiceArea:
    """Named polygon a partner is allowed to serve, vertices as (lat, lon)."""

    name: str
    vertices: tuple[tuple[float, float], ...]

    def __post_init__(self) -> None:
        if len(self.vertices) < 3:
            raise ValidationError(f"Service area '{self.name}' needs at least three vertices.")


@dataclass(slots=True, frozen=True)
class DeliveryRequest:
    """Immutable delivery order handed over by order management."""

    id: str
    pickup: GeoPoint
    dropoff: GeoPoint
    priority: Priority = Priority.NORMAL
    delivery_type: DeliveryType = DeliveryType.STANDARD
    estimated_weight_kg: Optional[float] = None
    created_at: Optional[datetime] = None

    @property
    def is_urgent(self) -> bool:
        return self.priority.is_urgent or self.delivery_type == DeliveryType.EXPRESS


@dataclass(slots=True)
class Partner:
    """Snapshot of a delivery partner as read from the repository.

    Performance metrics are optional; scoring substitutes neutral values for missing ones.
    """

    id: str
    location: Optional[GeoPoint]
    vehicle_type: VehicleType
    rating_avg: Optional[float] = None
    total_deliveries: Optional[int] = None
    successful_deliveries: Optional[int] = None
    active_delivery_count: int = 0
    max_capacity: int = 3
    is_online: bool = True
    is_available: bool = True
    is_verified: bool = True
    is_active: bool = True
    service_areas: tuple[ServiceArea, ...] = ()
    joined_at: Optional[datetime] = None
    last_location_update_at: Optional[datetime] = None
    name: Optional[str] = None

    @property
    def remaining_capacity(self) -> int:
        return max(0, self.max_capacity - self.active_delivery_count)


@dataclass(slots=True)
class ScoreBreakdown:
    distance: float
    rating: float
    availability: float
    experience: float
    efficiency: float
    reliability: float
    composite: float


@dataclass(slots=True)
class EligibilityResult:
    eligible: bool
    reasons: List[str]


@dataclass(slots=True)
class ScoredCandidate:
    """An eligible partner with its scores; ``total_score`` moves with boosts and balancing."""

    partner: Partner
    breakdown: ScoreBreakdown
    estimated_arrival_minutes: float
    distance_km: Optional[float]
    total_score: float
    recent_assignments: Optional[int] = None


@dataclass(slots=True)
class Assignment:
    delivery_id: str
    partner_id: str
    score: float
    confidence: float
    reasons: List[str]
    estimated_arrival_minutes: float
    breakdown: Optional[ScoreBreakdown] = None
    attempt: int = 1
    assigned_at: Optional[datetime] = None
    alternatives: List[str] = field(default_factory=list)
