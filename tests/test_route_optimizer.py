import threading
from datetime import datetime, timezone

import pytest

from dispatch_engine.clock import FixedClock
from dispatch_engine.errors import OptimizationFailure, ValidationError
from dispatch_engine.models.domain import GeoPoint, VehicleType
from dispatch_engine.services.geospatial import haversine_km
from dispatch_engine.services.routing.models import Waypoint, WaypointKind
from dispatch_engine.services.routing.service import RouteOptimizer, route_confidence, route_efficiency_score
from dispatch_engine.services.routing.solvers import (
    NearestNeighborSolver,
    RouteSolver,
    SolverParameters,
    SolverRegistry,
    default_registry,
)

NOON = datetime(2024, 3, 12, 12, 0, tzinfo=timezone.utc)


class _FailingSolver(RouteSolver):
    name = "Broken"

    def solve(self, cost, rng, stop):
        raise RuntimeError("boom")


class _SlowSolver(RouteSolver):
    name = "Slow"

    def solve(self, cost, rng, stop):
        stop.wait(5)
        return self.result(cost, list(range(cost.size)))


class _BackwardsSolver(RouteSolver):
    name = "Backwards"

    def solve(self, cost, rng, stop):
        return self.result(cost, list(reversed(range(cost.size))))


def _params() -> SolverParameters:
    return SolverParameters(
        seed=7,
        genetic_population_size=30,
        genetic_max_iterations=300,
        ant_count=5,
        ant_iterations=20,
        annealing_cooling_rate=0.95,
    )


def _optimizer(*solvers, now: datetime = NOON, **kwargs) -> RouteOptimizer:
    registry = SolverRegistry(solvers) if solvers else default_registry(_params())
    return RouteOptimizer(registry, clock=FixedClock(now), **kwargs)


def _pair() -> list[Waypoint]:
    return [
        Waypoint(GeoPoint(24.70, 46.67), WaypointKind.PICKUP, "D1"),
        Waypoint(GeoPoint(24.75, 46.70), WaypointKind.DELIVERY, "D1"),
    ]


def _five_stops() -> list[Waypoint]:
    return [
        Waypoint(GeoPoint(24.700, 46.670), WaypointKind.PICKUP, "A"),
        Waypoint(GeoPoint(24.731, 46.702), WaypointKind.DELIVERY, "A"),
        Waypoint(GeoPoint(24.690, 46.650), WaypointKind.PICKUP, "B"),
        Waypoint(GeoPoint(24.741, 46.640), WaypointKind.DELIVERY, "B"),
        Waypoint(GeoPoint(24.715, 46.685)),
    ]


def test_single_delivery_route_uses_road_adjusted_distance():
    route = _optimizer().optimize_route(_pair(), "motorcycle")

    expected = haversine_km(24.70, 46.67, 24.75, 46.70) * 1.3
    assert route.total_distance_km == pytest.approx(expected, abs=1e-6)
    assert [waypoint.kind for waypoint in route.waypoints] == [WaypointKind.PICKUP, WaypointKind.DELIVERY]
    assert route.vehicle_type == VehicleType.MOTORCYCLE
    assert route.optimization_id
    assert route.created_at == NOON
    assert len(route.segments) == 1


def test_every_route_keeps_pickups_ahead_of_deliveries():
    route = _optimizer().optimize_route(_five_stops(), VehicleType.CAR)

    positions = {(wp.delivery_id, wp.kind): index for index, wp in enumerate(route.waypoints)}
    for delivery_id in ("A", "B"):
        assert positions[(delivery_id, WaypointKind.PICKUP)] < positions[(delivery_id, WaypointKind.DELIVERY)]
    assert route.stop_count == 5
    assert len(route.alternatives) == 2
    assert not route.failures


def test_racing_all_solvers_never_loses_to_nearest_neighbor_alone():
    full = _optimizer().optimize_route(_five_stops(), VehicleType.MOTORCYCLE)
    baseline = _optimizer(NearestNeighborSolver(_params())).optimize_route(_five_stops(), VehicleType.MOTORCYCLE)

    assert full.composite_score >= baseline.composite_score


def test_failing_solver_is_excluded_and_reported():
    route = _optimizer(_FailingSolver(), NearestNeighborSolver()).optimize_route(_pair(), "CAR")

    assert route.algorithm_name == "Nearest Neighbor + 2-Opt"
    assert route.failures == {"Broken": "boom"}


def test_all_solvers_failing_raises():
    with pytest.raises(OptimizationFailure) as excinfo:
        _optimizer(_FailingSolver()).optimize_route(_pair(), "CAR")

    assert excinfo.value.failures == {"Broken": "boom"}
    assert excinfo.value.retryable


def test_empty_registry_raises():
    with pytest.raises(OptimizationFailure):
        RouteOptimizer(SolverRegistry(), clock=FixedClock(NOON)).optimize_route(_pair(), "CAR")


def test_slow_solver_times_out_without_blocking_the_result():
    optimizer = _optimizer(_SlowSolver(), NearestNeighborSolver(), timeout_seconds=0.3)

    route = optimizer.optimize_route(_pair(), "CAR")

    assert route.algorithm_name == "Nearest Neighbor + 2-Opt"
    assert "timed out" in route.failures["Slow"]


def test_order_breaking_precedence_is_discarded():
    route = _optimizer(_BackwardsSolver(), NearestNeighborSolver()).optimize_route(_pair(), "CAR")

    assert route.algorithm_name == "Nearest Neighbor + 2-Opt"
    assert "precedence" in route.failures["Backwards"]


def test_traffic_override_replaces_segment_duration():
    route = _optimizer(NearestNeighborSolver()).optimize_route(_pair(), "MOTORCYCLE", {(0, 1): 42.0})

    # 42 minutes of driving plus the dwell at the delivery; the path starts at the pickup
    assert route.estimated_duration_min == pytest.approx(47.0)
    assert route.segments[0].traffic_sourced


def test_rush_hour_slows_the_route():
    calm = _optimizer(NearestNeighborSolver()).optimize_route(_pair(), "CAR")
    rush = _optimizer(NearestNeighborSolver(), now=NOON.replace(hour=18)).optimize_route(_pair(), "CAR")

    assert rush.total_distance_km == pytest.approx(calm.total_distance_km)
    assert rush.estimated_duration_min > calm.estimated_duration_min


def test_traffic_provider_answers_are_used():
    class FlatProvider:
        def segment_duration(self, origin, destination):
            return 20.0

    optimizer = _optimizer(NearestNeighborSolver(), traffic_provider=FlatProvider())

    route = optimizer.optimize_route(_pair(), "CAR")

    assert route.estimated_duration_min == pytest.approx(25.0)


def test_origin_adds_a_leading_segment():
    origin = GeoPoint(24.69, 46.66)

    route = _optimizer(NearestNeighborSolver()).optimize_route(_pair(), "BICYCLE", origin=origin)

    assert route.origin == origin
    assert route.segments[0].from_index is None
    assert route.segments[0].instruction.endswith("to pickup point")
    assert route.total_distance_km > haversine_km(24.70, 46.67, 24.75, 46.70) * 1.3


@pytest.mark.parametrize(
    "waypoints",
    [
        [],
        [Waypoint(GeoPoint(24.7, 46.6), WaypointKind.PICKUP)],
        [
            Waypoint(GeoPoint(24.7, 46.6), WaypointKind.PICKUP, "D1"),
            Waypoint(GeoPoint(24.8, 46.6), WaypointKind.PICKUP, "D1"),
        ],
    ],
)
def test_invalid_waypoints_are_rejected(waypoints):
    with pytest.raises(ValidationError):
        _optimizer(NearestNeighborSolver()).optimize_route(waypoints, "CAR")


def test_unknown_vehicle_type_is_rejected():
    with pytest.raises(ValidationError):
        _optimizer(NearestNeighborSolver()).optimize_route(_pair(), "hovercraft")


def test_efficiency_and_confidence_helpers():
    assert route_efficiency_score(0, 0.0, 10.0) == 0.0
    assert route_efficiency_score(2, 5.0, 20.0) == 100.0
    assert route_efficiency_score(10, 60.0, 150.0) == 47.0
    assert route_confidence(90, 10, 2) == 95.0
    assert route_confidence(10, 80, 8) == 80.0


@pytest.mark.parametrize("origin", [None, GeoPoint(24.69, 46.66)])
def test_segment_durations_add_up_to_the_route_duration(origin):
    route = _optimizer(NearestNeighborSolver()).optimize_route(_five_stops(), "CAR", origin=origin)

    assert sum(segment.duration_min for segment in route.segments) == pytest.approx(route.estimated_duration_min)


def test_first_stop_dwell_is_charged_only_when_driving_from_an_origin():
    open_path = _optimizer(NearestNeighborSolver()).optimize_route(_pair(), "CAR", {(0, 1): 10.0})
    from_start = _optimizer(NearestNeighborSolver()).optimize_route(
        _pair(), "CAR", {(0, 1): 10.0}, origin=GeoPoint(24.70, 46.67)
    )

    assert open_path.estimated_duration_min == pytest.approx(15.0)
    assert from_start.estimated_duration_min == pytest.approx(18.0)


def test_broken_traffic_provider_falls_back_to_distance_durations():
    class BrokenProvider:
        def segment_duration(self, origin, destination):
            raise RuntimeError("provider bug")

    baseline = _optimizer(NearestNeighborSolver()).optimize_route(_pair(), "CAR")
    route = _optimizer(NearestNeighborSolver(), traffic_provider=BrokenProvider()).optimize_route(_pair(), "CAR")

    assert route.estimated_duration_min == pytest.approx(baseline.estimated_duration_min)
    assert not route.segments[0].traffic_sourced
