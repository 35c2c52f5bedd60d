import random
import threading
from datetime import datetime, timezone

import pytest

from dispatch_engine.models.domain import GeoPoint, VehicleType
from dispatch_engine.services.routing.cost import CostModel
from dispatch_engine.services.routing.models import Waypoint, WaypointKind
from dispatch_engine.services.routing.solvers import (
    AntColonySolver,
    GeneticSolver,
    NearestNeighborSolver,
    SimulatedAnnealingSolver,
    SolverParameters,
    SolverRegistry,
    build_solver,
    default_registry,
)
from dispatch_engine.services.routing.solvers.genetic import order_crossover, swap_mutation

NOON = datetime(2024, 3, 12, 12, 0, tzinfo=timezone.utc)


def _params() -> SolverParameters:
    return SolverParameters(
        seed=7,
        genetic_population_size=30,
        genetic_max_iterations=300,
        ant_count=5,
        ant_iterations=20,
        annealing_cooling_rate=0.95,
    )


def _waypoints() -> list[Waypoint]:
    stops = [
        ("A", (24.700, 46.670), (24.730, 46.700)),
        ("B", (24.690, 46.650), (24.740, 46.640)),
        ("C", (24.720, 46.690), (24.680, 46.710)),
    ]
    waypoints = []
    for delivery_id, pickup, dropoff in stops:
        waypoints.append(Waypoint(GeoPoint(*pickup), WaypointKind.PICKUP, delivery_id))
        waypoints.append(Waypoint(GeoPoint(*dropoff), WaypointKind.DELIVERY, delivery_id))
    return waypoints


def _cost(origin: GeoPoint | None = None) -> CostModel:
    return CostModel(_waypoints(), VehicleType.MOTORCYCLE, departure=NOON, origin=origin)


def test_repair_moves_deliveries_behind_their_pickups():
    cost = _cost()

    repaired = cost.repair([1, 3, 0, 2, 5, 4])

    assert repaired == [0, 1, 2, 3, 4, 5]
    assert cost.is_feasible(repaired)


def test_is_feasible_rejects_partial_and_out_of_order_tours():
    cost = _cost()

    assert not cost.is_feasible([0, 1, 2, 3])
    assert not cost.is_feasible([1, 0, 2, 3, 4, 5])
    assert cost.is_feasible([0, 2, 4, 1, 3, 5])


def test_order_crossover_yields_a_permutation():
    rng = random.Random(3)
    child = order_crossover([0, 1, 2, 3, 4, 5], [5, 4, 3, 2, 1, 0], rng)

    assert sorted(child) == [0, 1, 2, 3, 4, 5]


def test_swap_mutation_with_zero_rate_keeps_individual():
    assert swap_mutation([3, 1, 2, 0], 0.0, random.Random(1)) == [3, 1, 2, 0]


@pytest.mark.parametrize(
    "solver_cls", [NearestNeighborSolver, SimulatedAnnealingSolver, GeneticSolver, AntColonySolver]
)
def test_every_solver_returns_a_feasible_tour(solver_cls):
    cost = _cost()
    solver = solver_cls(_params())

    result = solver.run(cost)

    assert cost.is_feasible(result.order)
    assert result.algorithm_name == solver.name
    assert result.total_distance_km == pytest.approx(cost.tour_distance(result.order))


@pytest.mark.parametrize(
    "solver_cls", [NearestNeighborSolver, SimulatedAnnealingSolver, GeneticSolver, AntColonySolver]
)
def test_solvers_respect_a_fixed_origin(solver_cls):
    cost = _cost(origin=GeoPoint(24.70, 46.66))

    result = solver_cls(_params()).run(cost)

    assert cost.is_feasible(result.order)
    assert result.total_distance_km > 0


def test_seeded_solvers_are_reproducible():
    cost = _cost()

    first = GeneticSolver(_params()).run(cost)
    second = GeneticSolver(_params()).run(cost)

    assert first.order == second.order


def test_single_waypoint_is_trivial():
    cost = CostModel([Waypoint(GeoPoint(24.7, 46.6))], VehicleType.CAR, departure=NOON)

    result = AntColonySolver(_params()).run(cost)

    assert result.order == [0]
    assert result.total_distance_km == 0.0


def test_nearest_neighbor_starts_closest_to_origin():
    cost = _cost(origin=GeoPoint(24.690, 46.649))

    order = NearestNeighborSolver.construct(cost)

    assert order[0] == 2


def test_two_opt_stops_when_asked():
    cost = _cost()
    stop = threading.Event()
    stop.set()

    order, passes = NearestNeighborSolver.two_opt(cost, [0, 1, 2, 3, 4, 5], stop)

    assert order == [0, 1, 2, 3, 4, 5]
    assert passes == 0


def test_registry_rejects_duplicates_and_unknown_names():
    registry = SolverRegistry([NearestNeighborSolver()])

    with pytest.raises(ValueError):
        registry.register(NearestNeighborSolver())
    with pytest.raises(ValueError):
        registry.get("Tabu Search")
    with pytest.raises(ValueError):
        build_solver("tabu")

    registry.unregister("Nearest Neighbor + 2-Opt")
    assert len(registry) == 0


def test_default_registry_holds_all_four_solvers():
    registry = default_registry(_params())

    assert registry.names() == [
        "Genetic Algorithm",
        "Simulated Annealing",
        "Nearest Neighbor + 2-Opt",
        "Ant Colony Optimization",
    ]
