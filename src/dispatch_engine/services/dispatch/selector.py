"""Single-delivery partner selection.

Pipeline: repository search within an adaptive radius, hard constraints, scoring,
urgency boost, fairness pass over the head of the ranking, then a capacity commit that
falls through to the next candidate whenever another dispatcher won the race.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterator, Mapping, Optional, Sequence

from ...clock import Clock, SystemClock
from ...config import settings
from ...data.assignments_repository import RecentAssignmentRepository
from ...data.partners_repository import CandidateFilters, CommitResult, PartnerRepository
from ...errors import (
    ConcurrencyConflict,
    NoCandidatesError,
    NoEligiblePartnerError,
    SupersededDispatchError,
)
from ...models.domain import Assignment, DeliveryRequest, Partner, Priority, ScoreBreakdown, ScoredCandidate
from ..balancing.service import LoadBalancer, ranking_key
from .constraints import ConstraintFilter
from .scoring import PartnerScorer, clamp

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SelectionPolicy:
    urgent_radius_km: float = settings.urgent_search_radius_km
    default_radius_km: float = settings.default_search_radius_km
    low_priority_radius_km: float = settings.low_priority_search_radius_km
    radius_widening_km: tuple[float, ...] = settings.radius_widening_km
    urgent_rating_threshold: float = settings.urgent_rating_threshold
    urgent_rating_boost: float = settings.urgent_rating_boost
    quick_arrival_minutes: float = settings.urgent_quick_arrival_minutes
    quick_arrival_boost: float = settings.urgent_quick_arrival_boost
    min_confidence: float = settings.min_confidence
    max_confidence: float = settings.max_confidence
    max_commit_attempts: int = settings.max_commit_attempts

    def search_radius(self, request: DeliveryRequest) -> float:
        if request.is_urgent:
            return self.urgent_radius_km
        if request.priority == Priority.LOW:
            return self.low_priority_radius_km
        return self.default_radius_km


def assignment_confidence(breakdown: ScoreBreakdown, lower: float = 50.0, upper: float = 95.0) -> float:
    confidence = 70.0
    if breakdown.distance >= 80:
        confidence += 10
    if breakdown.rating >= 85:
        confidence += 8
    if breakdown.availability >= 80:
        confidence += 5
    if breakdown.experience >= 75:
        confidence += 5
    if breakdown.efficiency >= 80:
        confidence += 7

    if breakdown.distance < 50:
        confidence -= 10
    if breakdown.rating < 60:
        confidence -= 15
    if breakdown.availability < 40:
        confidence -= 10
    return clamp(confidence, lower, upper)


def assignment_reasons(candidate: ScoredCandidate) -> list[str]:
    scores = candidate.breakdown
    reasons: list[str] = []
    if scores.distance >= 80:
        reasons.append("very close to pickup location")
    elif scores.distance >= 60:
        reasons.append("close proximity to pickup")
    if scores.rating >= 90:
        reasons.append("excellent customer ratings")
    elif scores.rating >= 75:
        reasons.append("high customer ratings")
    if scores.availability >= 85:
        reasons.append("high availability and low current workload")
    if scores.experience >= 80:
        reasons.append("highly experienced partner")
    if scores.efficiency >= 85:
        reasons.append("excellent delivery efficiency")
    if scores.reliability >= 85:
        reasons.append("strong reliability track record")
    if candidate.estimated_arrival_minutes <= 10:
        reasons.append("quick arrival time estimated")
    return reasons or ["best overall match for this delivery"]


@dataclass(slots=True)
class _DeliveryState:
    lock: threading.Lock = field(default_factory=threading.Lock)
    attempts: int = 0
    in_flight: int = 0
    committed: Optional[Assignment] = None
    committed_at: Optional[datetime] = None


class DispatchAttemptTracker:
    """Remembers which dispatch attempt committed each delivery.

    The first attempt to commit wins; any other attempt for the same delivery that
    reaches its commit afterwards is discarded as superseded. State is kept only while
    an attempt is in flight or a commit is younger than the retention window.
    """

    def __init__(
        self,
        clock: Clock | None = None,
        retention_minutes: int = settings.dispatch_retention_minutes,
    ) -> None:
        self.clock = clock or SystemClock()
        self.retention = timedelta(minutes=retention_minutes)
        self._lock = threading.Lock()
        self._states: dict[str, _DeliveryState] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)

    @contextmanager
    def attempt(self, delivery_id: str) -> Iterator[int]:
        """Number the attempt and keep the delivery's state alive until it finishes."""

        state = self._enter(delivery_id)
        with self._lock:
            state.attempts += 1
            number = state.attempts
        try:
            yield number
        finally:
            self._leave(delivery_id, state)

    @contextmanager
    def guard(self, delivery_id: str) -> Iterator[None]:
        """Serialize check-and-commit for one delivery."""

        state = self._enter(delivery_id)
        try:
            with state.lock:
                yield
        finally:
            self._leave(delivery_id, state)

    def committed(self, delivery_id: str) -> Optional[Assignment]:
        with self._lock:
            state = self._states.get(delivery_id)
            return state.committed if state else None

    def mark_committed(self, delivery_id: str, assignment: Assignment) -> None:
        with self._lock:
            state = self._states.setdefault(delivery_id, _DeliveryState())
            state.committed = assignment
            state.committed_at = self.clock.now()

    def release(self, delivery_id: str) -> Optional[Assignment]:
        with self._lock:
            state = self._states.get(delivery_id)
            if state is None:
                return None
            assignment, state.committed, state.committed_at = state.committed, None, None
            self._discard_if_idle(delivery_id, state)
            return assignment

    def _enter(self, delivery_id: str) -> _DeliveryState:
        with self._lock:
            self._evict_expired()
            state = self._states.setdefault(delivery_id, _DeliveryState())
            state.in_flight += 1
            return state

    def _leave(self, delivery_id: str, state: _DeliveryState) -> None:
        with self._lock:
            state.in_flight -= 1
            self._discard_if_idle(delivery_id, state)

    def _discard_if_idle(self, delivery_id: str, state: _DeliveryState) -> None:
        if state.in_flight == 0 and state.committed is None and self._states.get(delivery_id) is state:
            del self._states[delivery_id]

    def _evict_expired(self) -> None:
        cutoff = self.clock.now() - self.retention
        expired = [
            delivery_id
            for delivery_id, state in self._states.items()
            if state.in_flight == 0 and state.committed_at is not None and state.committed_at < cutoff
        ]
        for delivery_id in expired:
            del self._states[delivery_id]


class PartnerSelector:
    def __init__(
        self,
        partner_repository: PartnerRepository,
        recent_assignments: RecentAssignmentRepository | None = None,
        *,
        constraint_filter: ConstraintFilter | None = None,
        scorer: PartnerScorer | None = None,
        load_balancer: LoadBalancer | None = None,
        policy: SelectionPolicy | None = None,
        clock: Clock | None = None,
        tracker: DispatchAttemptTracker | None = None,
    ) -> None:
        self.partner_repository = partner_repository
        self.recent_assignments = recent_assignments
        self.clock = clock or SystemClock()
        self.constraint_filter = constraint_filter or ConstraintFilter()
        self.scorer = scorer or PartnerScorer(clock=self.clock)
        self.load_balancer = load_balancer or LoadBalancer(recent_assignments)
        self.policy = policy or SelectionPolicy()
        self.tracker = tracker or DispatchAttemptTracker(clock=self.clock)

    def find_best_partner(self, request: DeliveryRequest, *, radius_km: float | None = None) -> Assignment:
        with self.tracker.attempt(request.id) as attempt:
            radius = radius_km if radius_km is not None else self.policy.search_radius(request)
            logger.info(f"Dispatching delivery {request.id} (attempt {attempt}, radius {radius}km)")

            candidates = self.partner_repository.list_candidates(request.pickup, radius, CandidateFilters())
            if not candidates:
                raise NoCandidatesError(
                    f"No available partners within {radius}km of pickup for delivery {request.id}.",
                    radius_km=radius,
                    reasons=[f"no online, available, verified partner within {radius}km"],
                )

            ranked, rejections = self.rank(request, candidates)
            if not ranked:
                raise NoEligiblePartnerError(
                    f"None of {len(candidates)} candidates is eligible for delivery {request.id}.",
                    rejections=rejections,
                    radius_km=radius,
                )
            return self._commit(request, ranked, attempt)

    def dispatch_with_widening(self, request: DeliveryRequest) -> Assignment:
        """Try the adaptive radius first, then each configured wider radius."""

        first = self.policy.search_radius(request)
        radii = [first] + [radius for radius in self.policy.radius_widening_km if radius > first]
        for radius in radii[:-1]:
            try:
                return self.find_best_partner(request, radius_km=radius)
            except (NoCandidatesError, NoEligiblePartnerError) as exc:
                logger.info(f"Dispatch of {request.id} at {radius}km failed ({exc.message}); widening")
        return self.find_best_partner(request, radius_km=radii[-1])

    def rank(
        self,
        request: DeliveryRequest,
        partners: Sequence[Partner],
        extra_counts: Optional[Mapping[str, int]] = None,
    ) -> tuple[list[ScoredCandidate], dict[str, list[str]]]:
        """Filter, score, boost and balance; returns the ranking and rejection reasons."""

        rejections: dict[str, list[str]] = {}
        scored: list[ScoredCandidate] = []
        for partner in partners:
            verdict = self.constraint_filter.evaluate(partner, request)
            if not verdict.eligible:
                rejections[partner.id] = verdict.reasons
                continue
            breakdown = self.scorer.score(partner, request)
            scored.append(
                ScoredCandidate(
                    partner=partner,
                    breakdown=breakdown,
                    estimated_arrival_minutes=self.scorer.estimated_arrival_minutes(partner, request),
                    distance_km=self.scorer.distance_to_pickup(partner, request),
                    total_score=breakdown.composite,
                )
            )
        scored.sort(key=ranking_key)

        if request.is_urgent:
            for candidate in scored:
                rating = candidate.partner.rating_avg
                if rating is not None and rating >= self.policy.urgent_rating_threshold:
                    candidate.total_score += self.policy.urgent_rating_boost
                if candidate.estimated_arrival_minutes <= self.policy.quick_arrival_minutes:
                    candidate.total_score += self.policy.quick_arrival_boost
            scored.sort(key=ranking_key)

        return self.load_balancer.rebalance(scored, extra_counts), rejections

    def build_assignment(
        self, request: DeliveryRequest, candidate: ScoredCandidate, ranked: Sequence[ScoredCandidate], attempt: int = 1
    ) -> Assignment:
        return Assignment(
            delivery_id=request.id,
            partner_id=candidate.partner.id,
            score=round(candidate.total_score, 2),
            confidence=assignment_confidence(
                candidate.breakdown, self.policy.min_confidence, self.policy.max_confidence
            ),
            reasons=assignment_reasons(candidate),
            estimated_arrival_minutes=candidate.estimated_arrival_minutes,
            breakdown=candidate.breakdown,
            attempt=attempt,
            assigned_at=self.clock.now(),
            alternatives=[other.partner.id for other in ranked if other is not candidate][:2],
        )

    def release(self, delivery_id: str) -> None:
        """Undo a committed assignment so the delivery can be dispatched again."""

        assignment = self.tracker.release(delivery_id)
        if assignment is not None:
            self.partner_repository.decrement_active(assignment.partner_id)
            logger.info(f"Released partner {assignment.partner_id} from delivery {delivery_id}")

    def _commit(self, request: DeliveryRequest, ranked: Sequence[ScoredCandidate], attempt: int) -> Assignment:
        conflicts: list[str] = []
        for candidate in ranked[: self.policy.max_commit_attempts]:
            with self.tracker.guard(request.id):
                committed = self.tracker.committed(request.id)
                if committed is not None:
                    logger.info(
                        f"Discarding attempt {attempt} for delivery {request.id}: "
                        f"attempt {committed.attempt} already assigned partner {committed.partner_id}"
                    )
                    raise SupersededDispatchError(
                        f"Delivery {request.id} was already assigned by attempt {committed.attempt}.",
                        committed=committed,
                    )
                outcome = self.partner_repository.increment_active(candidate.partner.id)
                if outcome is CommitResult.CONFLICT:
                    logger.warning(
                        f"Capacity conflict on partner {candidate.partner.id} for delivery {request.id}; "
                        f"trying next candidate"
                    )
                    conflicts.append(candidate.partner.id)
                    continue
                assignment = self.build_assignment(request, candidate, ranked, attempt)
                self.tracker.mark_committed(request.id, assignment)

            if self.recent_assignments is not None:
                self.recent_assignments.record(candidate.partner.id, assignment.assigned_at)
            logger.info(
                f"Assigned delivery {request.id} to partner {assignment.partner_id} "
                f"(score {assignment.score:.2f}, confidence {assignment.confidence:.0f})"
            )
            return assignment

        raise ConcurrencyConflict(
            f"Lost the capacity race for delivery {request.id} on {len(conflicts)} candidates.",
            reasons=[f"{partner_id}: capacity taken concurrently" for partner_id in conflicts],
        )
