"""Route optimisation orchestration: race the solvers, keep the best, enrich the winner."""

from __future__ import annotations

import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Mapping, Optional, Sequence

from ...clock import Clock, SystemClock
from ...config import VehicleProfile, settings
from ...errors import OptimizationFailure
from ...models.domain import GeoPoint, VehicleType
from ..dispatch.scoring import TravelModel, clamp
from ..geospatial import bearing_degrees, compass_heading
from .cost import CostModel, validate_waypoints
from .models import Route, RouteCandidate, RouteMetrics, RouteSegment, SolverResult, Waypoint, WaypointKind
from .solvers.registry import SolverRegistry, default_registry
from .traffic import TrafficDataProvider, TrafficMatrixProvider, collect_traffic_durations

logger = logging.getLogger(__name__)

DEFAULT_ALGORITHM_WEIGHT = 70.0
DEFAULT_QUALITY_SCORE = 70.0
MAX_ALTERNATIVES = 2


def route_efficiency_score(stop_count: int, distance_km: float, duration_min: float) -> float:
    if distance_km <= 0 or duration_min <= 0:
        return 0.0
    base = min(100.0, max(stop_count, 1) * 10 / distance_km * 60 / duration_min * 100)
    penalty = 0.0
    if distance_km > 50:
        penalty += 10
    if duration_min > 120:
        penalty += 10
    return float(max(0, round(base - penalty)))


def route_confidence(efficiency: float, distance_km: float, stop_count: int) -> float:
    confidence = 85.0
    if efficiency > 80:
        confidence += 10
    if distance_km < 30:
        confidence += 5
    if stop_count > 5:
        confidence -= 5
    return clamp(confidence, 60.0, 95.0)


class RouteOptimizer:
    """Runs every registered solver concurrently and returns the best-scoring route.

    Solvers that raise, time out, or hand back an order that breaks pickup-before-delivery
    are excluded from selection and reported in ``Route.failures``. Only when no solver
    produces a usable order does ``optimize_route`` raise ``OptimizationFailure``.
    """

    def __init__(
        self,
        registry: SolverRegistry | None = None,
        *,
        traffic_provider: TrafficDataProvider | TrafficMatrixProvider | None = None,
        clock: Clock | None = None,
        travel: TravelModel | None = None,
        timeout_seconds: float = settings.solver_timeout_seconds,
        traffic_timeout_seconds: float = settings.traffic_timeout_seconds,
        algorithm_weights: Mapping[str, float] | None = None,
        vehicle_profiles: Mapping[str, VehicleProfile] | None = None,
    ) -> None:
        self.registry = registry if registry is not None else default_registry()
        self.traffic_provider = traffic_provider
        self.clock = clock or SystemClock()
        self.travel = travel or TravelModel()
        self.timeout_seconds = timeout_seconds
        self.traffic_timeout_seconds = traffic_timeout_seconds
        self.algorithm_weights = dict(algorithm_weights or settings.algorithm_weights)
        self.vehicle_profiles = dict(vehicle_profiles or settings.vehicle_profiles)

    def optimize_route(
        self,
        waypoints: Sequence[Waypoint],
        vehicle_type: VehicleType | str,
        traffic_durations: Optional[Mapping[tuple[int, int], float]] = None,
        *,
        origin: Optional[GeoPoint] = None,
    ) -> Route:
        vehicle = VehicleType.parse(vehicle_type)
        stops = validate_waypoints(waypoints)
        if len(self.registry) == 0:
            raise OptimizationFailure("No route solvers are registered.")

        traffic = dict(traffic_durations or {})
        if not traffic and self.traffic_provider is not None:
            traffic = collect_traffic_durations(
                self.traffic_provider, [stop.point for stop in stops], self.traffic_timeout_seconds
            )

        cost = CostModel(
            stops,
            vehicle,
            departure=self.clock.now(),
            traffic_durations=traffic,
            origin=origin,
            travel=self.travel,
        )
        results, failures = self._run_solvers(cost)
        if not results:
            raise OptimizationFailure(
                f"All {len(self.registry)} route solvers failed for {len(stops)} waypoints.",
                failures=failures,
            )

        candidates = sorted(
            (RouteCandidate(result=result, composite_score=self.composite_score(result, cost)) for result in results),
            key=lambda candidate: (-candidate.composite_score, candidate.result.total_distance_km),
        )
        best = candidates[0]
        logger.info(
            f"Selected {best.result.algorithm_name} route: {best.result.total_distance_km:.2f}km, "
            f"{best.result.estimated_duration_min:.1f}min, composite {best.composite_score:.2f} "
            f"({len(results)} solvers succeeded, {len(failures)} excluded)"
        )
        return self._build_route(cost, best, candidates[1 : 1 + MAX_ALTERNATIVES], failures)

    def composite_score(self, result: SolverResult, cost: CostModel) -> float:
        distance_score = max(0.0, 100 - result.total_distance_km * 2)
        time_score = max(0.0, 100 - result.estimated_duration_min / 2)
        algorithm_score = self.algorithm_weights.get(result.algorithm_name, DEFAULT_ALGORITHM_WEIGHT)
        complexity_score = max(0.0, 100 - cost.size * 5)
        quality = result.fitness or route_efficiency_score(
            cost.size, result.total_distance_km, result.estimated_duration_min
        )
        quality_score = clamp(quality) if quality else DEFAULT_QUALITY_SCORE
        return round(
            distance_score * 0.30
            + time_score * 0.25
            + algorithm_score * 0.20
            + complexity_score * 0.15
            + quality_score * 0.10,
            4,
        )

    def _run_solvers(self, cost: CostModel) -> tuple[list[SolverResult], dict[str, str]]:
        stop = threading.Event()
        executor = ThreadPoolExecutor(max_workers=len(self.registry), thread_name_prefix="route-solver")
        futures = {executor.submit(solver.run, cost, stop): solver.name for solver in self.registry}
        results: list[SolverResult] = []
        failures: dict[str, str] = {}
        try:
            for future in as_completed(futures, timeout=self.timeout_seconds):
                name = futures[future]
                try:
                    result = future.result()
                except Exception as exc:
                    logger.warning(f"Route solver {name} failed: {exc}")
                    failures[name] = str(exc) or type(exc).__name__
                    continue
                if not cost.is_feasible(result.order):
                    logger.warning(f"Route solver {name} returned an order that breaks pickup-before-delivery")
                    failures[name] = "route violates pickup-before-delivery precedence"
                    continue
                results.append(result)
        except FuturesTimeoutError:
            for future, name in futures.items():
                if not future.done():
                    logger.warning(f"Route solver {name} timed out after {self.timeout_seconds}s")
                    failures[name] = f"timed out after {self.timeout_seconds}s"
        finally:
            stop.set()
            executor.shutdown(wait=False, cancel_futures=True)
        return results, failures

    def _build_route(
        self,
        cost: CostModel,
        best: RouteCandidate,
        alternatives: list[RouteCandidate],
        failures: dict[str, str],
    ) -> Route:
        result = best.result
        segments = self._segments(cost, result.order)
        profile = self.vehicle_profiles.get(cost.vehicle_type.value)
        distance = result.total_distance_km
        duration = result.estimated_duration_min
        efficiency = route_efficiency_score(cost.size, distance, duration)
        metrics = RouteMetrics(
            fuel_consumption_l=distance * (profile.fuel_consumption if profile else 0.0) / 100,
            carbon_emission_kg=distance * (profile.carbon_emission if profile else 0.0) / 1000,
            average_speed_kmh=distance / (duration / 60) if duration > 0 else 0.0,
            efficiency_score=efficiency,
            delivery_density=cost.size / distance if distance > 0 else 0.0,
        )
        return Route(
            waypoints=[cost.waypoints[index] for index in result.order],
            total_distance_km=distance,
            estimated_duration_min=duration,
            algorithm_name=result.algorithm_name,
            composite_score=best.composite_score,
            vehicle_type=cost.vehicle_type,
            segments=segments,
            metrics=metrics,
            confidence=route_confidence(efficiency, distance, cost.size),
            alternatives=alternatives,
            failures=failures,
            origin=cost.origin,
            optimization_id=str(uuid.uuid4()),
            created_at=self.clock.now(),
        )

    @staticmethod
    def _segments(cost: CostModel, order: Sequence[int]) -> list[RouteSegment]:
        segments: list[RouteSegment] = []
        if cost.origin is not None and order:
            first = order[0]
            segments.append(
                RouteSegment(
                    from_index=None,
                    to_index=first,
                    distance_km=float(cost.origin_distance[first]),
                    duration_min=float(cost.origin_duration[first] + cost.dwell[first]),
                    instruction=_instruction(cost.origin, cost.waypoints[first], float(cost.origin_distance[first])),
                )
            )
        for current, nxt in zip(order, order[1:]):
            distance = float(cost.distance[current, nxt])
            segments.append(
                RouteSegment(
                    from_index=current,
                    to_index=nxt,
                    distance_km=distance,
                    duration_min=float(cost.duration[current, nxt] + cost.dwell[nxt]),
                    instruction=_instruction(cost.waypoints[current].point, cost.waypoints[nxt], distance),
                    traffic_sourced=bool(cost.traffic_sourced[current, nxt]),
                )
            )
        return segments


def _instruction(start: GeoPoint, target: Waypoint, distance_km: float) -> str:
    heading = compass_heading(bearing_degrees(start.lat, start.lon, target.point.lat, target.point.lon))
    destination = "pickup" if target.kind == WaypointKind.PICKUP else "delivery"
    return f"Head {heading} for {distance_km:.1f} km to {destination} point"
