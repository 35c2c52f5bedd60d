"""Hard eligibility rules a partner must pass before being scored."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ...config import VehicleEnvelope, settings
from ...models.domain import DeliveryRequest, EligibilityResult, Partner
from ..geospatial import any_area_contains, distance_between

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class FilterThresholds:
    min_rating: float = settings.min_rating
    priority_min_rating: float = settings.priority_min_rating
    max_distance_km: float = settings.max_distance_km
    vehicle_envelopes: dict[str, VehicleEnvelope] = field(default_factory=lambda: dict(settings.vehicle_envelopes))


class ConstraintFilter:
    """Pure predicate over (partner, request); collects every failed rule."""

    def __init__(self, thresholds: FilterThresholds | None = None) -> None:
        self.thresholds = thresholds or FilterThresholds()

    def evaluate(self, partner: Partner, request: DeliveryRequest) -> EligibilityResult:
        limits = self.thresholds
        reasons: list[str] = []

        if not partner.is_online or not partner.is_available:
            reasons.append("Partner is offline or unavailable")
        if not partner.is_verified:
            reasons.append("Partner is not verified")
        if partner.active_delivery_count >= partner.max_capacity:
            reasons.append(
                f"Partner at full capacity: {partner.active_delivery_count}/{partner.max_capacity} active deliveries"
            )

        rating = partner.rating_avg
        if rating is None:
            reasons.append(f"Rating unknown; minimum rating {limits.min_rating} required")
        elif rating < limits.min_rating:
            reasons.append(f"Rating too low: {rating} < {limits.min_rating}")

        distance = None
        if partner.location is None:
            reasons.append("Partner location unknown")
        else:
            distance = distance_between(partner.location, request.pickup)
            if distance > limits.max_distance_km:
                reasons.append(f"Distance too far: {distance:.1f}km > {limits.max_distance_km}km")

        envelope = limits.vehicle_envelopes.get(partner.vehicle_type.value)
        if envelope:
            weight = request.estimated_weight_kg
            if weight and weight > envelope.max_weight_kg:
                reasons.append(f"Weight exceeds vehicle capacity: {weight}kg > {envelope.max_weight_kg}kg")
            if distance is not None and distance > envelope.max_distance_km:
                reasons.append(f"Distance exceeds vehicle range: {distance:.1f}km > {envelope.max_distance_km}km")

        if partner.service_areas and not any_area_contains(partner.service_areas, request.pickup):
            reasons.append("Pickup location outside partner service area")

        if request.priority.is_urgent and (rating is None or rating < limits.priority_min_rating):
            reasons.append(
                f"{request.priority.value.title()} priority delivery requires rating >= {limits.priority_min_rating}"
            )

        if reasons:
            logger.debug(f"Partner {partner.id} not eligible for {request.id}: {', '.join(reasons)}")
            return EligibilityResult(eligible=False, reasons=reasons)
        return EligibilityResult(eligible=True, reasons=["All constraints satisfied"])

    def is_eligible(self, partner: Partner, request: DeliveryRequest) -> bool:
        return self.evaluate(partner, request).eligible
