"""Facade that wires the dispatch, batching and routing services together."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Mapping, Optional, Sequence

from .clock import Clock, SystemClock
from .config import settings
from .data.assignments_repository import InMemoryRecentAssignmentRepository, RecentAssignmentRepository
from .data.partners_repository import InMemoryPartnerRepository, PartnerRepository
from .models.domain import Assignment, DeliveryRequest, GeoPoint, Partner, VehicleType
from .persistence.filesystem import FileStorage
from .services.balancing.service import RebalanceResult, rebalance_partner_allocation
from .services.dispatch.batch import BatchAssigner, BatchResult
from .services.dispatch.selector import PartnerSelector
from .services.outputs.formatter import batch_result_to_csv, batch_result_to_json, route_to_csv, route_to_json
from .services.routing.models import Route, Waypoint
from .services.routing.service import RouteOptimizer
from .services.routing.solvers.registry import SolverRegistry, default_registry
from .services.routing.traffic import OSRMTrafficProvider, TrafficDataProvider

logger = logging.getLogger(__name__)


class DispatchEngine:
    """Entry point for ``find_best_partner``, ``optimize_route`` and ``assign_batch``.

    Collaborators are passed in; anything left out is built from ``settings``.
    """

    def __init__(
        self,
        partner_repository: PartnerRepository,
        recent_assignments: RecentAssignmentRepository | None = None,
        *,
        clock: Clock | None = None,
        selector: PartnerSelector | None = None,
        solver_registry: SolverRegistry | None = None,
        traffic_provider: TrafficDataProvider | None = None,
        route_optimizer: RouteOptimizer | None = None,
        storage: FileStorage | None = None,
        commit_batches: bool = True,
    ) -> None:
        self.clock = clock or SystemClock()
        self.partner_repository = partner_repository
        self.recent_assignments = recent_assignments
        self.selector = selector or PartnerSelector(partner_repository, recent_assignments, clock=self.clock)
        if traffic_provider is None and settings.traffic_base_url:
            traffic_provider = OSRMTrafficProvider()
        self.route_optimizer = route_optimizer or RouteOptimizer(
            solver_registry if solver_registry is not None else default_registry(),
            traffic_provider=traffic_provider,
            clock=self.clock,
        )
        self.batch_assigner = BatchAssigner(self.selector, self.route_optimizer, commit=commit_batches)
        self._storage = storage

    @classmethod
    def in_memory(cls, partners: Iterable[Partner] = (), *, clock: Clock | None = None, **kwargs) -> "DispatchEngine":
        clock = clock or SystemClock()
        return cls(
            InMemoryPartnerRepository(partners),
            InMemoryRecentAssignmentRepository(clock),
            clock=clock,
            **kwargs,
        )

    @property
    def storage(self) -> FileStorage:
        if self._storage is None:
            self._storage = FileStorage(clock=self.clock)
        return self._storage

    def find_best_partner(self, request: DeliveryRequest, *, widen: bool = False) -> Assignment:
        if widen:
            return self.selector.dispatch_with_widening(request)
        return self.selector.find_best_partner(request)

    def release(self, delivery_id: str) -> None:
        self.selector.release(delivery_id)

    def optimize_route(
        self,
        waypoints: Sequence[Waypoint],
        vehicle_type: VehicleType | str,
        traffic_durations: Optional[Mapping[tuple[int, int], float]] = None,
        *,
        origin: Optional[GeoPoint] = None,
        persist: bool = False,
    ) -> Route:
        route = self.route_optimizer.optimize_route(waypoints, vehicle_type, traffic_durations, origin=origin)
        if persist:
            self.persist_route(route)
        return route

    def assign_batch(
        self,
        deliveries: Sequence[DeliveryRequest],
        partners: Sequence[Partner],
        *,
        optimize_routes: bool = False,
        persist: bool = False,
    ) -> BatchResult:
        result = self.batch_assigner.assign_batch(deliveries, partners, optimize_routes=optimize_routes)
        if persist:
            self.persist_batch(result)
        return result

    def rebalance(
        self, zone_id: str, demand_forecast: Mapping[str, float], partners: Sequence[Partner]
    ) -> RebalanceResult:
        return rebalance_partner_allocation(zone_id, demand_forecast, partners)

    def persist_route(self, route: Route) -> Path:
        run_dir = self.storage.write_run(
            "route", route_to_json(route), {"route": route_to_csv(route)}, run_id=route.optimization_id
        )
        logger.info(f"Persisted route {route.optimization_id} to {run_dir}")
        return run_dir

    def persist_batch(self, result: BatchResult) -> Path:
        run_dir = self.storage.write_run(
            "batch", batch_result_to_json(result), {"assignments": batch_result_to_csv(result)}
        )
        logger.info(f"Persisted batch of {result.total} deliveries to {run_dir}")
        return run_dir
