"""Workload fairness for dispatch and partner rebalancing across areas."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence

from ...config import settings
from ...data.assignments_repository import RecentAssignmentRepository
from ...models.domain import Partner, ScoredCandidate

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class FairnessPolicy:
    window_minutes: int = settings.fairness_window_minutes
    soft_limit: int = settings.fairness_soft_limit
    penalty_per_assignment: float = settings.fairness_penalty_per_assignment
    idle_bonus: float = settings.fairness_idle_bonus
    top_n: int = settings.fairness_top_n


def ranking_key(candidate: ScoredCandidate) -> tuple:
    return (-candidate.total_score, candidate.estimated_arrival_minutes, candidate.partner.id)


class LoadBalancer:
    """Nudges the head of a ranked list away from partners that were just assigned work."""

    def __init__(
        self,
        recent_assignments: RecentAssignmentRepository | None = None,
        policy: FairnessPolicy | None = None,
    ) -> None:
        self.recent_assignments = recent_assignments
        self.policy = policy or FairnessPolicy()

    def adjustment(self, recent_count: int) -> float:
        if recent_count > self.policy.soft_limit:
            return -(recent_count - self.policy.soft_limit) * self.policy.penalty_per_assignment
        if recent_count == 0:
            return self.policy.idle_bonus
        return 0.0

    def rebalance(
        self,
        ranked: Sequence[ScoredCandidate],
        extra_counts: Optional[Mapping[str, int]] = None,
    ) -> list[ScoredCandidate]:
        """Adjust and re-sort the top window; candidates below it keep their order.

        ``extra_counts`` adds assignments that are not in the repository yet, such as
        deliveries handed out earlier in the same batch.
        """
        head = list(ranked[: self.policy.top_n])
        tail = list(ranked[self.policy.top_n :])
        extra_counts = extra_counts or {}

        for candidate in head:
            recent = self._recent_count(candidate.partner.id) + extra_counts.get(candidate.partner.id, 0)
            candidate.recent_assignments = recent
            candidate.total_score += self.adjustment(recent)

        head.sort(key=ranking_key)
        return head + tail

    def _recent_count(self, partner_id: str) -> int:
        if self.recent_assignments is None:
            return 0
        try:
            return self.recent_assignments.count_since(partner_id, self.policy.window_minutes)
        except (ConnectionError, TimeoutError) as exc:
            logger.warning(f"Recent assignment lookup failed for partner {partner_id}, assuming none: {exc}")
            return 0


@dataclass(slots=True)
class RebalanceRecommendation:
    area: str
    action: str
    partners: int
    priority: str


@dataclass(slots=True)
class RebalanceResult:
    zone_id: str
    current_distribution: int
    recommendations: List[RebalanceRecommendation]
    projected_improvement: float


def required_partners(demand_forecast: Mapping[str, float], deliveries_per_partner_hour: float = 10.0) -> Dict[str, int]:
    return {area: math.ceil(demand / deliveries_per_partner_hour) for area, demand in demand_forecast.items()}


def _partner_in_area(partner: Partner, area: str) -> bool:
    return any(service_area.name == area for service_area in partner.service_areas)


def _rebalancing_priority(missing: int) -> str:
    if missing >= 3:
        return "HIGH"
    if missing >= 2:
        return "MEDIUM"
    return "LOW"


def rebalance_partner_allocation(
    zone_id: str,
    demand_forecast: Mapping[str, float],
    partners: Sequence[Partner],
    *,
    deliveries_per_partner_hour: float = 10.0,
) -> RebalanceResult:
    """Compare partners per service area against forecast demand (deliveries/hour)."""

    if deliveries_per_partner_hour <= 0:
        raise ValueError("deliveries_per_partner_hour must be > 0")

    recommendations: list[RebalanceRecommendation] = []
    for area, needed in required_partners(demand_forecast, deliveries_per_partner_hour).items():
        current = sum(1 for partner in partners if _partner_in_area(partner, area))
        difference = needed - current
        if difference > 0:
            recommendations.append(
                RebalanceRecommendation(
                    area=area, action="INCREASE", partners=difference, priority=_rebalancing_priority(difference)
                )
            )
        elif difference < 0:
            recommendations.append(
                RebalanceRecommendation(area=area, action="DECREASE", partners=-difference, priority="LOW")
            )

    high_priority = sum(1 for item in recommendations if item.priority == "HIGH")
    logger.info(f"Rebalancing zone {zone_id}: {len(recommendations)} recommendations ({high_priority} high priority)")
    return RebalanceResult(
        zone_id=zone_id,
        current_distribution=len(partners),
        recommendations=recommendations,
        projected_improvement=float(min(25, high_priority * 8)),
    )
