"""Greedy nearest-neighbour construction refined by 2-opt."""

from __future__ import annotations

import random
import threading

from ..cost import CostModel
from ..models import SolverResult
from .base import RouteSolver

IMPROVEMENT_EPSILON = 1e-9


class NearestNeighborSolver(RouteSolver):
    name = "Nearest Neighbor + 2-Opt"

    def solve(self, cost: CostModel, rng: random.Random, stop: threading.Event) -> SolverResult:
        order = self.construct(cost)
        order, passes = self.two_opt(cost, order, stop)
        return self.result(cost, order, iterations=passes)

    @staticmethod
    def construct(cost: CostModel) -> list[int]:
        """Start from the origin (or the first visitable waypoint) and always go to the closest next stop."""

        visited: set[int] = set()
        order: list[int] = []
        current: int | None = None
        while len(order) < cost.size:
            feasible = [index for index in range(cost.size) if index not in visited and cost.can_visit(index, visited)]
            if current is None and not cost.has_origin:
                nxt = feasible[0]
            elif current is None:
                nxt = min(feasible, key=lambda index: (cost.origin_distance[index], index))
            else:
                row = cost.distance[current]
                nxt = min(feasible, key=lambda index: (row[index], index))
            order.append(nxt)
            visited.add(nxt)
            current = nxt
        return order

    @staticmethod
    def two_opt(cost: CostModel, order: list[int], stop: threading.Event) -> tuple[list[int], int]:
        best = list(order)
        best_distance = cost.tour_distance(best)
        passes = 0
        improved = True
        while improved and not stop.is_set():
            improved = False
            passes += 1
            for i in range(len(best) - 1):
                for j in range(i + 1, len(best)):
                    candidate = best[:i] + best[i : j + 1][::-1] + best[j + 1 :]
                    candidate_distance = cost.tour_distance(candidate)
                    if candidate_distance < best_distance - IMPROVEMENT_EPSILON and cost.is_feasible(candidate):
                        best, best_distance = candidate, candidate_distance
                        improved = True
        return best, passes
