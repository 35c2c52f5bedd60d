"""Distance/duration matrices and tour evaluation for one optimisation run.

All solvers share a single ``CostModel``. It is built once from an immutable copy of the
waypoints and is read-only afterwards, so concurrent solvers can use it without locking.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Mapping, Optional, Sequence

import numpy as np

from ...config import settings
from ...errors import ValidationError
from ...models.domain import GeoPoint, VehicleType
from ..dispatch.scoring import TravelModel
from ..geospatial import EARTH_RADIUS_KM
from .models import Waypoint, WaypointKind

logger = logging.getLogger(__name__)

FITNESS_SCALE = 10000.0
DURATION_COST_DIVISOR = 10.0


def haversine_matrix(latitudes: np.ndarray, longitudes: np.ndarray) -> np.ndarray:
    """Pairwise great-circle distances (km) between points given in degrees."""

    lat = np.radians(latitudes)
    lon = np.radians(longitudes)
    d_lat = lat[:, None] - lat[None, :]
    d_lon = lon[:, None] - lon[None, :]
    a = np.sin(d_lat / 2) ** 2 + np.cos(lat)[:, None] * np.cos(lat)[None, :] * np.sin(d_lon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * np.arcsin(np.sqrt(np.clip(a, 0.0, 1.0)))


def validate_waypoints(waypoints: Sequence[Waypoint]) -> tuple[Waypoint, ...]:
    """Reject empty sets and duplicate pickup/delivery stops; returns an immutable copy."""

    if not waypoints:
        raise ValidationError("At least one waypoint is required for route optimisation.")
    seen: set[tuple[str, WaypointKind]] = set()
    for index, waypoint in enumerate(waypoints):
        if not isinstance(waypoint, Waypoint):
            raise ValidationError(f"Waypoint {index} is not a Waypoint instance.")
        if waypoint.kind == WaypointKind.WAYPOINT:
            continue
        if not waypoint.delivery_id:
            raise ValidationError(f"{waypoint.kind.value} waypoint {index} has no delivery id.")
        key = (waypoint.delivery_id, waypoint.kind)
        if key in seen:
            raise ValidationError(
                f"Delivery {waypoint.delivery_id} has more than one {waypoint.kind.value} waypoint."
            )
        seen.add(key)
    return tuple(waypoints)


class CostModel:
    def __init__(
        self,
        waypoints: Sequence[Waypoint],
        vehicle_type: VehicleType,
        *,
        departure: datetime,
        traffic_durations: Optional[Mapping[tuple[int, int], float]] = None,
        origin: Optional[GeoPoint] = None,
        travel: Optional[TravelModel] = None,
        road_factor: float = settings.road_factor,
        pickup_dwell_minutes: float = settings.pickup_dwell_minutes,
        delivery_dwell_minutes: float = settings.delivery_dwell_minutes,
    ) -> None:
        self.waypoints = tuple(waypoints)
        self.size = len(self.waypoints)
        self.vehicle_type = vehicle_type
        self.origin = origin
        travel = travel or TravelModel()

        latitudes = np.array([wp.point.lat for wp in self.waypoints], dtype=float)
        longitudes = np.array([wp.point.lon for wp in self.waypoints], dtype=float)
        minutes_per_km = 60.0 / travel.speed_kmh(vehicle_type) * travel.congestion_factor(departure)

        self.distance = haversine_matrix(latitudes, longitudes) * road_factor
        self.duration = self.distance * minutes_per_km
        self.traffic_sourced = np.zeros((self.size, self.size), dtype=bool)
        for (i, j), minutes in (traffic_durations or {}).items():
            if not (0 <= i < self.size and 0 <= j < self.size) or i == j:
                logger.warning(f"Ignoring traffic duration for unknown segment {i}->{j}")
                continue
            if minutes is None or not math.isfinite(minutes) or minutes < 0:
                continue
            self.duration[i, j] = minutes
            self.traffic_sourced[i, j] = True
        np.fill_diagonal(self.distance, 0.0)
        np.fill_diagonal(self.duration, 0.0)

        self.dwell = np.array(
            [
                pickup_dwell_minutes
                if wp.kind == WaypointKind.PICKUP
                else delivery_dwell_minutes
                if wp.kind == WaypointKind.DELIVERY
                else 0.0
                for wp in self.waypoints
            ],
            dtype=float,
        )

        if origin is not None:
            self.origin_distance = (
                haversine_matrix(
                    np.append(latitudes, origin.lat),
                    np.append(longitudes, origin.lon),
                )[-1, :-1]
                * road_factor
            )
        else:
            self.origin_distance = np.zeros(self.size)
        self.origin_duration = self.origin_distance * minutes_per_km

        pickups = {
            wp.delivery_id: index for index, wp in enumerate(self.waypoints) if wp.kind == WaypointKind.PICKUP
        }
        # delivery index -> pickup index, only for deliveries whose pickup is part of the run
        self.pickup_of: dict[int, int] = {
            index: pickups[wp.delivery_id]
            for index, wp in enumerate(self.waypoints)
            if wp.kind == WaypointKind.DELIVERY and wp.delivery_id in pickups
        }

    @property
    def has_origin(self) -> bool:
        return self.origin is not None

    def tour_distance(self, order: Sequence[int]) -> float:
        if not order:
            return 0.0
        index = np.asarray(order, dtype=int)
        return float(self.origin_distance[index[0]] + self.distance[index[:-1], index[1:]].sum())

    def tour_duration(self, order: Sequence[int]) -> float:
        if not order:
            return 0.0
        index = np.asarray(order, dtype=int)
        travel = self.origin_duration[index[0]] + self.duration[index[:-1], index[1:]].sum()
        # dwell is charged on arrival; an open path starts at its first stop
        arrivals = index if self.has_origin else index[1:]
        return float(travel + self.dwell[arrivals].sum())

    def cost(self, order: Sequence[int]) -> float:
        return self.tour_distance(order) + self.tour_duration(order) / DURATION_COST_DIVISOR

    def fitness(self, order: Sequence[int]) -> float:
        return FITNESS_SCALE / max(self.cost(order), 1e-9)

    def can_visit(self, index: int, visited: set[int] | frozenset[int]) -> bool:
        pickup = self.pickup_of.get(index)
        return pickup is None or pickup in visited

    def is_feasible(self, order: Sequence[int]) -> bool:
        """A complete permutation with every pickup ahead of its delivery."""

        if sorted(order) != list(range(self.size)):
            return False
        position = {index: rank for rank, index in enumerate(order)}
        return all(position[pickup] < position[delivery] for delivery, pickup in self.pickup_of.items())

    def repair(self, order: Sequence[int]) -> list[int]:
        """Defer each delivery whose pickup has not been visited to right after that pickup."""

        placed: set[int] = set()
        deferred: dict[int, list[int]] = {}
        repaired: list[int] = []
        for index in order:
            pickup = self.pickup_of.get(index)
            if pickup is not None and pickup not in placed:
                deferred.setdefault(pickup, []).append(index)
                continue
            repaired.append(index)
            placed.add(index)
            for delivery in deferred.pop(index, []):
                repaired.append(delivery)
                placed.add(delivery)
        return repaired
