"""Greedy capacity-constrained assignment of many deliveries to many partners."""

from __future__ import annotations

import logging
from collections import Counter
from contextlib import nullcontext
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from ...data.partners_repository import CommitResult
from ...errors import OptimizationFailure
from ...models.domain import Assignment, DeliveryRequest, Partner, ScoredCandidate
from ..routing.models import Route, delivery_waypoints
from ..routing.service import RouteOptimizer
from .selector import PartnerSelector

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(slots=True)
class Batch:
    partner_id: str
    deliveries: List[DeliveryRequest] = field(default_factory=list)
    route: Optional[Route] = None
    remaining_capacity: int = 0


@dataclass(slots=True)
class UnassignedDelivery:
    delivery: DeliveryRequest
    reasons: List[str]


@dataclass(slots=True)
class BatchResult:
    assignments: List[Assignment]
    unassigned: List[UnassignedDelivery]
    utilization_rate: float
    batches: List[Batch]

    @property
    def total(self) -> int:
        return len(self.assignments) + len(self.unassigned)


def batch_order_key(delivery: DeliveryRequest) -> tuple:
    """Highest priority first, then oldest; deliveries without a timestamp go last within their priority."""

    created = delivery.created_at
    if created is not None and created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return (-delivery.priority.rank, created is None, created or _EPOCH, delivery.id)


class BatchAssigner:
    """Hands out deliveries one at a time against a shrinking capacity ledger.

    With ``commit=True`` every pick also goes through the partner repository, so the
    batch competes safely with concurrent single dispatches; a lost capacity race moves
    on to the next-ranked partner.
    """

    def __init__(
        self,
        selector: PartnerSelector,
        route_optimizer: RouteOptimizer | None = None,
        *,
        commit: bool = False,
    ) -> None:
        self.selector = selector
        self.route_optimizer = route_optimizer
        self.commit = commit

    def assign_batch(
        self,
        deliveries: Sequence[DeliveryRequest],
        partners: Sequence[Partner],
        *,
        optimize_routes: bool = False,
    ) -> BatchResult:
        snapshots: Dict[str, Partner] = {partner.id: replace(partner) for partner in partners}
        remaining: Dict[str, int] = {partner.id: partner.remaining_capacity for partner in partners}
        batches: Dict[str, Batch] = {}
        assigned_counts: Counter[str] = Counter()
        assignments: list[Assignment] = []
        unassigned: list[UnassignedDelivery] = []

        for delivery in sorted(deliveries, key=batch_order_key):
            # in commit mode the whole check-claim-commit runs under the delivery's lock
            guard = self.selector.tracker.guard(delivery.id) if self.commit else nullcontext()
            with guard:
                assignment, reasons = self._place(delivery, snapshots, remaining, assigned_counts)
            if assignment is None:
                self._leave(unassigned, delivery, reasons)
                continue
            batch = batches.setdefault(assignment.partner_id, Batch(partner_id=assignment.partner_id))
            batch.deliveries.append(delivery)
            assignments.append(assignment)

        for partner_id, batch in batches.items():
            batch.remaining_capacity = remaining[partner_id]
            if optimize_routes and self.route_optimizer is not None:
                batch.route = self._route_for(batch, snapshots[partner_id])

        total = len(assignments) + len(unassigned)
        utilization = round(len(assignments) / total * 100, 2) if total else 0.0
        logger.info(
            f"Batch assignment: {len(assignments)}/{total} deliveries assigned across "
            f"{len(batches)} partners ({utilization:.1f}% utilization)"
        )
        return BatchResult(
            assignments=assignments,
            unassigned=unassigned,
            utilization_rate=utilization,
            batches=list(batches.values()),
        )

    def _place(
        self,
        delivery: DeliveryRequest,
        snapshots: Dict[str, Partner],
        remaining: Dict[str, int],
        assigned_counts: Counter[str],
    ) -> tuple[Optional[Assignment], List[str]]:
        if self.commit and self.selector.tracker.committed(delivery.id) is not None:
            return None, ["already assigned by another dispatch"]

        pool = [snapshot for pid, snapshot in snapshots.items() if remaining[pid] > 0]
        if not pool:
            return None, ["no partner with remaining capacity"]

        ranked, rejections = self.selector.rank(delivery, pool, extra_counts=assigned_counts)
        if not ranked:
            reasons = [f"{pid}: {reason}" for pid, items in rejections.items() for reason in items]
            return None, reasons or ["no eligible partner"]

        chosen = self._claim(delivery, ranked, remaining)
        if chosen is None:
            return None, ["capacity taken concurrently"]

        assignment = self.selector.build_assignment(delivery, chosen, ranked)
        partner_id = chosen.partner.id
        remaining[partner_id] -= 1
        snapshots[partner_id].active_delivery_count += 1
        assigned_counts[partner_id] += 1

        if self.commit:
            self.selector.tracker.mark_committed(delivery.id, assignment)
            if self.selector.recent_assignments is not None:
                self.selector.recent_assignments.record(partner_id, assignment.assigned_at)
        return assignment, []

    def _claim(
        self,
        delivery: DeliveryRequest,
        ranked: Sequence[ScoredCandidate],
        remaining: Dict[str, int],
    ) -> Optional[ScoredCandidate]:
        if not self.commit:
            return ranked[0]
        repository = self.selector.partner_repository
        for candidate in ranked[: self.selector.policy.max_commit_attempts]:
            if repository.increment_active(candidate.partner.id) is CommitResult.OK:
                return candidate
            logger.warning(
                f"Capacity conflict on partner {candidate.partner.id} for delivery {delivery.id}; "
                f"trying next candidate"
            )
            remaining[candidate.partner.id] = 0
        return None

    def _route_for(self, batch: Batch, partner: Partner) -> Optional[Route]:
        try:
            return self.route_optimizer.optimize_route(
                delivery_waypoints(batch.deliveries),
                partner.vehicle_type,
                origin=partner.location,
            )
        except OptimizationFailure as exc:
            logger.warning(f"Route optimisation failed for partner {batch.partner_id}: {exc.message}")
            return None

    @staticmethod
    def _leave(unassigned: list[UnassignedDelivery], delivery: DeliveryRequest, reasons: List[str]) -> None:
        logger.warning(f"Delivery {delivery.id} left unassigned: {'; '.join(reasons)}")
        unassigned.append(UnassignedDelivery(delivery=delivery, reasons=reasons))
