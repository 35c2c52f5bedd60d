from datetime import datetime, timedelta, timezone

from dispatch_engine.clock import FixedClock
from dispatch_engine.data.assignments_repository import InMemoryRecentAssignmentRepository
from dispatch_engine.models.domain import GeoPoint, Partner, ScoreBreakdown, ScoredCandidate, ServiceArea, VehicleType
from dispatch_engine.services.balancing.service import (
    FairnessPolicy,
    LoadBalancer,
    rebalance_partner_allocation,
)

NOW = datetime(2024, 3, 12, 12, 0, tzinfo=timezone.utc)
AREA = ((0.0, 0.0), (0.0, 1.0), (1.0, 1.0))


def _candidate(pid: str, score: float, eta: float = 10.0) -> ScoredCandidate:
    partner = Partner(id=pid, location=GeoPoint(0.0, 0.0), vehicle_type=VehicleType.CAR, rating_avg=4.5)
    breakdown = ScoreBreakdown(50, 50, 50, 50, 50, 50, score)
    return ScoredCandidate(
        partner=partner,
        breakdown=breakdown,
        estimated_arrival_minutes=eta,
        distance_km=1.0,
        total_score=score,
    )


def _history(clock: FixedClock, counts: dict[str, int]) -> InMemoryRecentAssignmentRepository:
    repository = InMemoryRecentAssignmentRepository(clock)
    for partner_id, count in counts.items():
        for _ in range(count):
            repository.record(partner_id, clock.now() - timedelta(minutes=5))
    return repository


def test_busy_partner_never_outranks_idle_partner_with_equal_score():
    clock = FixedClock(NOW)
    balancer = LoadBalancer(_history(clock, {"busy": 4}))

    ranked = balancer.rebalance([_candidate("busy", 80.0), _candidate("idle", 80.0)])

    assert [candidate.partner.id for candidate in ranked] == ["idle", "busy"]
    assert ranked[0].total_score == 83.0
    assert ranked[1].total_score == 78.0
    assert ranked[1].recent_assignments == 4


def test_only_top_window_is_adjusted():
    clock = FixedClock(NOW)
    balancer = LoadBalancer(_history(clock, {}), FairnessPolicy(top_n=2))
    candidates = [_candidate(f"P{index}", 90.0 - index) for index in range(4)]

    ranked = balancer.rebalance(candidates)

    assert [candidate.total_score for candidate in ranked] == [93.0, 92.0, 88.0, 87.0]
    assert ranked[2].recent_assignments is None


def test_assignments_outside_window_are_ignored():
    clock = FixedClock(NOW)
    repository = InMemoryRecentAssignmentRepository(clock)
    repository.record("P1", NOW - timedelta(minutes=90))

    assert repository.count_since("P1", 60) == 0
    assert LoadBalancer(repository).rebalance([_candidate("P1", 70.0)])[0].total_score == 73.0


def test_extra_counts_add_to_history():
    balancer = LoadBalancer()

    ranked = balancer.rebalance([_candidate("P1", 70.0)], extra_counts={"P1": 5})

    assert ranked[0].recent_assignments == 5
    assert ranked[0].total_score == 66.0


def test_history_lookup_failure_counts_as_no_assignments():
    class Unreachable:
        def count_since(self, partner_id, minutes):
            raise ConnectionError("history store down")

    ranked = LoadBalancer(Unreachable()).rebalance([_candidate("P1", 70.0)])

    assert ranked[0].total_score == 73.0


def test_rebalance_partner_allocation_recommends_changes():
    partners = [
        Partner(
            id=f"P{index}",
            location=GeoPoint(0.5, 0.5),
            vehicle_type=VehicleType.MOTORCYCLE,
            service_areas=(ServiceArea(name="downtown", vertices=AREA),),
        )
        for index in range(3)
    ]

    result = rebalance_partner_allocation("Z1", {"downtown": 10, "airport": 45}, partners)

    by_area = {item.area: item for item in result.recommendations}
    assert by_area["downtown"].action == "DECREASE"
    assert by_area["downtown"].partners == 2
    assert by_area["airport"].action == "INCREASE"
    assert by_area["airport"].partners == 5
    assert by_area["airport"].priority == "HIGH"
    assert result.projected_improvement == 8.0
    assert result.current_distribution == 3
