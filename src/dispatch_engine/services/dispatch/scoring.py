"""Six-dimension partner scoring and arrival estimates.

Every component lands in [0, 100]. Components whose inputs are missing fall back to
the neutral score so that incomplete partner records never abort a dispatch.
"""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from ...clock import Clock, SystemClock, minutes_between
from ...config import VehicleProfile, settings
from ...models.domain import DeliveryRequest, Partner, ScoreBreakdown, VehicleType
from ..geospatial import distance_between

logger = logging.getLogger(__name__)

NEUTRAL_SCORE = 50.0
DEFAULT_ARRIVAL_MINUTES = 15.0
DAYS_PER_MONTH = 30.0


def clamp(value: float, lower: float = 0.0, upper: float = 100.0) -> float:
    return max(lower, min(upper, value))


@dataclass(slots=True)
class ScoringWeights:
    distance: float = settings.weight_distance
    rating: float = settings.weight_rating
    availability: float = settings.weight_availability
    experience: float = settings.weight_experience
    efficiency: float = settings.weight_efficiency
    reliability: float = settings.weight_reliability

    def __post_init__(self) -> None:
        total = self.distance + self.rating + self.availability + self.experience + self.efficiency + self.reliability
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"Scoring weights must sum to 1.0 (got {total:.4f}).")


@dataclass(slots=True)
class TravelModel:
    """Speeds and multipliers shared by arrival estimates and route durations."""

    vehicle_profiles: dict[str, VehicleProfile] = field(default_factory=lambda: dict(settings.vehicle_profiles))
    default_speed_kmh: float = settings.default_speed_kmh
    rush_hour_windows: tuple[tuple[int, int], ...] = settings.rush_hour_windows
    rush_hour_factor: float = settings.rush_hour_factor
    urban_factor: float = settings.urban_factor
    arrival_buffer_minutes: float = settings.arrival_buffer_minutes

    def speed_kmh(self, vehicle_type: VehicleType | str) -> float:
        key = vehicle_type.value if isinstance(vehicle_type, VehicleType) else str(vehicle_type)
        profile = self.vehicle_profiles.get(key)
        return profile.speed_kmh if profile else self.default_speed_kmh

    def is_rush_hour(self, moment: datetime) -> bool:
        return any(start <= moment.hour <= end for start, end in self.rush_hour_windows)

    def congestion_factor(self, moment: datetime) -> float:
        factor = self.urban_factor
        if self.is_rush_hour(moment):
            factor *= self.rush_hour_factor
        return factor


def _neutral_on_error(component: str) -> Callable:
    def decorator(func: Callable[..., float]) -> Callable[..., float]:
        @functools.wraps(func)
        def wrapper(self, partner: Partner, *args) -> float:
            try:
                return func(self, partner, *args)
            except (TypeError, ValueError, ZeroDivisionError, OverflowError) as exc:
                logger.warning(f"{component} score calculation failed for partner {partner.id}: {exc}")
                return NEUTRAL_SCORE

        return wrapper

    return decorator


class PartnerScorer:
    def __init__(
        self,
        weights: ScoringWeights | None = None,
        travel: TravelModel | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.weights = weights or ScoringWeights()
        self.travel = travel or TravelModel()
        self.clock = clock or SystemClock()

    def score(self, partner: Partner, request: DeliveryRequest) -> ScoreBreakdown:
        distance_km = self.distance_to_pickup(partner, request)
        now = self.clock.now()
        components = {
            "distance": self.distance_score(partner, distance_km),
            "rating": self.rating_score(partner),
            "availability": self.availability_score(partner, now),
            "experience": self.experience_score(partner, now),
            "efficiency": self.efficiency_score(partner, now),
            "reliability": self.reliability_score(partner, now),
        }
        composite = sum(getattr(self.weights, name) * value for name, value in components.items())
        return ScoreBreakdown(composite=round(clamp(composite), 2), **components)

    @_neutral_on_error("Distance")
    def distance_score(self, partner: Partner, distance_km: Optional[float]) -> float:
        if distance_km is None:
            return NEUTRAL_SCORE
        score = max(0.0, 100 - distance_km * 8)
        if distance_km <= 2:
            score = min(100.0, score + 20)
        if distance_km > 10:
            score = max(0.0, score - (distance_km - 10) * 15)
        return float(round(clamp(score)))

    @_neutral_on_error("Rating")
    def rating_score(self, partner: Partner) -> float:
        rating = partner.rating_avg
        if rating is None:
            return NEUTRAL_SCORE
        total = partner.total_deliveries or 0

        score = (rating / 5) * 100
        if total < 10:
            score *= 0.7
        elif total < 50:
            score *= 0.85
        elif total > 500:
            score *= 1.1

        if rating >= 4.8:
            score = min(100.0, score + 10)
        elif rating >= 4.5:
            score = min(100.0, score + 5)
        if rating < 3.5:
            score = max(0.0, score - 20)
        return float(round(clamp(score)))

    @_neutral_on_error("Availability")
    def availability_score(self, partner: Partner, now: datetime) -> float:
        if partner.max_capacity is None or partner.active_delivery_count is None:
            return NEUTRAL_SCORE
        if partner.max_capacity <= 0:
            return 0.0
        utilization = partner.active_delivery_count / partner.max_capacity

        score = (1 - utilization) * 100
        if partner.active_delivery_count == 0:
            score = min(100.0, score + 20)
        elif utilization < 0.5:
            score = min(100.0, score + 10)
        if utilization > 0.8:
            score = max(0.0, score - 15)

        if partner.last_location_update_at is not None:
            stale_minutes = minutes_between(partner.last_location_update_at, now)
            if stale_minutes > settings.very_stale_location_minutes:
                score *= 0.7
            elif stale_minutes > settings.stale_location_minutes:
                score *= 0.85
        return float(round(clamp(score)))

    @_neutral_on_error("Experience")
    def experience_score(self, partner: Partner, now: datetime) -> float:
        total = partner.total_deliveries
        if total is None:
            return NEUTRAL_SCORE
        tenure = self._tenure_months(partner, now) or 0.0

        score = min(80.0, total / 10) + min(20.0, tenure * 2)
        if total >= 1000:
            score = min(100.0, score + 15)
        elif total >= 500:
            score = min(100.0, score + 10)
        elif total >= 100:
            score = min(100.0, score + 5)
        if partner.vehicle_type == VehicleType.MOTORCYCLE and total > 200:
            score = min(100.0, score + 5)
        return float(round(clamp(score)))

    @_neutral_on_error("Efficiency")
    def efficiency_score(self, partner: Partner, now: datetime) -> float:
        total = partner.total_deliveries or 0
        if total == 0 or partner.successful_deliveries is None:
            return NEUTRAL_SCORE
        success_rate = partner.successful_deliveries / total * 100
        score = success_rate * 0.7

        per_day = self._deliveries_per_day(partner, now)
        if per_day is None:
            productivity = 10
        elif 8 <= per_day <= 12:
            productivity = 30
        elif 6 <= per_day <= 15:
            productivity = 25
        elif 4 <= per_day <= 18:
            productivity = 20
        else:
            productivity = 10
        score += productivity

        if success_rate >= 95 and per_day is not None and per_day >= 8:
            score = min(100.0, score + 10)
        return float(round(clamp(score)))

    @_neutral_on_error("Reliability")
    def reliability_score(self, partner: Partner, now: datetime) -> float:
        rating = partner.rating_avg
        if rating is None or (partner.total_deliveries or 0) < 5:
            return NEUTRAL_SCORE

        score = (rating / 5) * 80
        if rating >= 4.8:
            score += 20
        elif rating >= 4.5:
            score += 15
        elif rating >= 4.0:
            score += 10
        elif rating >= 3.5:
            score += 5

        tenure = self._tenure_months(partner, now)
        if tenure is not None and tenure > 6 and rating >= 4.0:
            score = min(100.0, score + 5)
        return float(round(clamp(score)))

    def estimated_arrival_minutes(self, partner: Partner, request: DeliveryRequest) -> float:
        distance_km = self.distance_to_pickup(partner, request)
        if distance_km is None:
            return DEFAULT_ARRIVAL_MINUTES
        travel_minutes = distance_km / self.travel.speed_kmh(partner.vehicle_type) * 60
        adjusted = travel_minutes * self.travel.congestion_factor(self.clock.now())
        adjusted += self.travel.arrival_buffer_minutes
        return float(max(1, round(adjusted)))

    @staticmethod
    def distance_to_pickup(partner: Partner, request: DeliveryRequest) -> Optional[float]:
        if partner.location is None:
            return None
        return distance_between(partner.location, request.pickup)

    @staticmethod
    def _tenure_months(partner: Partner, now: datetime) -> Optional[float]:
        if partner.joined_at is None:
            return None
        return max(0.0, minutes_between(partner.joined_at, now) / (60 * 24) / DAYS_PER_MONTH)

    @staticmethod
    def _deliveries_per_day(partner: Partner, now: datetime) -> Optional[float]:
        if partner.joined_at is None or partner.total_deliveries is None:
            return None
        days = minutes_between(partner.joined_at, now) / (60 * 24)
        return partner.total_deliveries / max(1.0, days)
