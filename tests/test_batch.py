import threading
from datetime import datetime, timedelta, timezone

from dispatch_engine.clock import FixedClock
from dispatch_engine.data.assignments_repository import InMemoryRecentAssignmentRepository
from dispatch_engine.data.partners_repository import InMemoryPartnerRepository
from dispatch_engine.errors import SupersededDispatchError
from dispatch_engine.models.domain import DeliveryRequest, GeoPoint, Partner, Priority, VehicleType
from dispatch_engine.services.dispatch.batch import BatchAssigner, batch_order_key
from dispatch_engine.services.dispatch.selector import PartnerSelector
from dispatch_engine.services.routing.models import WaypointKind
from dispatch_engine.services.routing.service import RouteOptimizer
from dispatch_engine.services.routing.solvers import NearestNeighborSolver, SolverRegistry

NOON = datetime(2024, 3, 12, 12, 0, tzinfo=timezone.utc)


def _partner(pid: str, capacity: int, lon: float = 0.01) -> Partner:
    return Partner(
        id=pid,
        location=GeoPoint(0.0, lon),
        vehicle_type=VehicleType.MOTORCYCLE,
        rating_avg=4.6,
        total_deliveries=300,
        successful_deliveries=295,
        max_capacity=capacity,
        joined_at=datetime(2023, 1, 1, tzinfo=timezone.utc),
    )


def _delivery(did: str, priority: Priority = Priority.NORMAL, minutes_ago: int | None = 5, **overrides) -> DeliveryRequest:
    created = NOON - timedelta(minutes=minutes_ago) if minutes_ago is not None else None
    values = dict(
        id=did,
        pickup=GeoPoint(0.0, 0.0),
        dropoff=GeoPoint(0.01, 0.02),
        priority=priority,
        created_at=created,
    )
    values.update(overrides)
    return DeliveryRequest(**values)


def _assigner(partners, *, commit: bool = False, optimizer: RouteOptimizer | None = None) -> BatchAssigner:
    clock = FixedClock(NOON)
    selector = PartnerSelector(
        InMemoryPartnerRepository(partners),
        InMemoryRecentAssignmentRepository(clock),
        clock=clock,
    )
    return BatchAssigner(selector, optimizer, commit=commit)


def _mixed_deliveries() -> list[DeliveryRequest]:
    return [
        _delivery("D-low-1", Priority.LOW, minutes_ago=30),
        _delivery("D-normal", Priority.NORMAL),
        _delivery("D-low-2", Priority.LOW, minutes_ago=40),
        _delivery("D-urgent", Priority.URGENT, minutes_ago=1),
        _delivery("D-high", Priority.HIGH),
    ]


def test_order_key_puts_priority_then_age_first():
    deliveries = [
        _delivery("late", Priority.HIGH, minutes_ago=None),
        _delivery("young", Priority.HIGH, minutes_ago=1),
        _delivery("old", Priority.HIGH, minutes_ago=20),
        _delivery("urgent", Priority.URGENT),
    ]

    ordered = [delivery.id for delivery in sorted(deliveries, key=batch_order_key)]

    assert ordered == ["urgent", "old", "young", "late"]


def test_capacity_runs_out_for_lowest_priority_deliveries():
    partners = [_partner("P1", capacity=2), _partner("P2", capacity=1, lon=0.02)]

    result = _assigner(partners).assign_batch(_mixed_deliveries(), partners)

    assert {item.delivery_id for item in result.assignments} == {"D-urgent", "D-high", "D-normal"}
    assert [item.delivery.id for item in result.unassigned] == ["D-low-2", "D-low-1"]
    assert result.unassigned[0].reasons == ["no partner with remaining capacity"]
    assert result.utilization_rate == 60.0
    assert result.total == 5


def test_no_partner_exceeds_its_remaining_capacity():
    partners = [_partner("P1", capacity=2), _partner("P2", capacity=1, lon=0.02)]

    result = _assigner(partners).assign_batch(_mixed_deliveries(), partners)

    per_partner = {batch.partner_id: len(batch.deliveries) for batch in result.batches}
    assert per_partner == {"P1": 2, "P2": 1}
    assert all(batch.remaining_capacity == 0 for batch in result.batches)


def test_dry_run_leaves_repository_untouched():
    partners = [_partner("P1", capacity=3)]
    assigner = _assigner(partners)

    assigner.assign_batch([_delivery("D1"), _delivery("D2")], partners)

    assert assigner.selector.partner_repository.get_by_id("P1").active_delivery_count == 0
    assert partners[0].active_delivery_count == 0


def test_commit_mode_claims_capacity_and_blocks_repeats():
    partners = [_partner("P1", capacity=3)]
    assigner = _assigner(partners, commit=True)

    first = assigner.assign_batch([_delivery("D1"), _delivery("D2")], partners)
    second = assigner.assign_batch([_delivery("D1")], partners)

    assert len(first.assignments) == 2
    assert assigner.selector.partner_repository.get_by_id("P1").active_delivery_count == 2
    assert assigner.selector.recent_assignments.count_since("P1", 60) == 2
    assert second.unassigned[0].reasons == ["already assigned by another dispatch"]


def test_commit_mode_falls_through_when_capacity_was_taken():
    partners = [_partner("P1", capacity=1), _partner("P2", capacity=1, lon=0.03)]
    assigner = _assigner(partners, commit=True)
    assigner.selector.partner_repository.increment_active("P1")

    result = assigner.assign_batch([_delivery("D1"), _delivery("D2")], partners)

    assert [item.partner_id for item in result.assignments] == ["P2"]
    assert result.unassigned[0].delivery.id == "D2"


def test_ineligible_deliveries_report_partner_reasons():
    partners = [_partner("P1", capacity=3)]

    result = _assigner(partners).assign_batch([_delivery("heavy", estimated_weight_kg=40.0)], partners)

    assert not result.assignments
    assert any(reason.startswith("P1: Weight exceeds vehicle capacity") for reason in result.unassigned[0].reasons)
    assert result.utilization_rate == 0.0


def test_empty_batch():
    result = _assigner([]).assign_batch([], [])

    assert result.total == 0
    assert result.utilization_rate == 0.0


def test_routes_are_built_from_the_partner_location():
    partners = [_partner("P1", capacity=3)]
    optimizer = RouteOptimizer(SolverRegistry([NearestNeighborSolver()]), clock=FixedClock(NOON))
    deliveries = [_delivery("D1"), _delivery("D2", pickup=GeoPoint(0.005, 0.005), dropoff=GeoPoint(0.02, 0.0))]

    result = _assigner(partners, optimizer=optimizer).assign_batch(deliveries, partners, optimize_routes=True)

    route = result.batches[0].route
    assert route is not None
    assert route.origin == partners[0].location
    assert route.stop_count == 4
    assert route.waypoints[0].kind == WaypointKind.PICKUP


def test_single_dispatch_racing_a_committing_batch_is_superseded():
    partners = [_partner("P1", capacity=3)]
    clock = FixedClock(NOON)
    outcomes: list[object] = []

    class RacingRepository(InMemoryPartnerRepository):
        raced = False

        def increment_active(self, partner_id):
            if not self.raced:
                self.raced = True
                racer = threading.Thread(target=dispatch_single)
                racer.start()
                # the single dispatch must block on the delivery while the batch commits
                racer.join(timeout=0.3)
                outcomes.append(racer)
            return super().increment_active(partner_id)

    def dispatch_single():
        try:
            outcomes.append(selector.find_best_partner(_delivery("D1")))
        except SupersededDispatchError as exc:
            outcomes.append(exc)

    repository = RacingRepository(partners)
    selector = PartnerSelector(repository, InMemoryRecentAssignmentRepository(clock), clock=clock)

    result = BatchAssigner(selector, commit=True).assign_batch([_delivery("D1")], partners)
    outcomes[0].join()

    assert len(result.assignments) == 1
    assert isinstance(outcomes[1], SupersededDispatchError)
    assert outcomes[1].committed is result.assignments[0]
    assert repository.get_by_id("P1").active_delivery_count == 1


def test_batch_skips_delivery_already_dispatched_singly():
    partners = [_partner("P1", capacity=3)]
    assigner = _assigner(partners, commit=True)
    single = assigner.selector.find_best_partner(_delivery("D1"))

    result = assigner.assign_batch([_delivery("D1")], partners)

    assert result.unassigned[0].reasons == ["already assigned by another dispatch"]
    assert assigner.selector.tracker.committed("D1") is single
    assert assigner.selector.partner_repository.get_by_id("P1").active_delivery_count == 1
