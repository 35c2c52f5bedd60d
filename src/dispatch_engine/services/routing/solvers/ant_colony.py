"""Ant colony optimisation with a symmetric pheromone matrix."""

from __future__ import annotations

import math
import random
import threading

import numpy as np

from ..cost import CostModel
from ..models import SolverResult
from .base import RouteSolver

MIN_EDGE_KM = 1e-6


class AntColonySolver(RouteSolver):
    name = "Ant Colony Optimization"

    def solve(self, cost: CostModel, rng: random.Random, stop: threading.Event) -> SolverResult:
        params = self.parameters
        ants = min(params.ant_count, cost.size)
        pheromone = np.ones((cost.size, cost.size))
        origin_pheromone = np.ones(cost.size)
        visibility = 1.0 / np.maximum(cost.distance, MIN_EDGE_KM)
        origin_visibility = 1.0 / np.maximum(cost.origin_distance, MIN_EDGE_KM)

        best: list[int] | None = None
        best_distance = math.inf
        iteration = 0
        while iteration < params.ant_iterations and not stop.is_set():
            iteration += 1
            tours = []
            for _ in range(ants):
                tour = self._construct(cost, rng, pheromone, visibility, origin_pheromone, origin_visibility)
                distance = cost.tour_distance(tour)
                tours.append((tour, distance))
                if distance < best_distance:
                    best, best_distance = tour, distance

            pheromone *= 1.0 - params.ant_evaporation_rate
            origin_pheromone *= 1.0 - params.ant_evaporation_rate
            for tour, distance in tours:
                deposit = params.ant_pheromone_deposit / max(distance, MIN_EDGE_KM)
                for a, b in zip(tour, tour[1:]):
                    pheromone[a, b] += deposit
                    pheromone[b, a] += deposit
                if cost.has_origin:
                    origin_pheromone[tour[0]] += deposit

        if best is None:
            best = cost.repair(list(range(cost.size)))
        return self.result(cost, best, iterations=iteration)

    def _construct(
        self,
        cost: CostModel,
        rng: random.Random,
        pheromone: np.ndarray,
        visibility: np.ndarray,
        origin_pheromone: np.ndarray,
        origin_visibility: np.ndarray,
    ) -> list[int]:
        alpha, beta = self.parameters.ant_alpha, self.parameters.ant_beta
        visited: set[int] = set()
        tour: list[int] = []
        while len(tour) < cost.size:
            feasible = [index for index in range(cost.size) if index not in visited and cost.can_visit(index, visited)]
            if tour:
                current = tour[-1]
                weights = pheromone[current, feasible] ** alpha * visibility[current, feasible] ** beta
            elif cost.has_origin:
                weights = origin_pheromone[feasible] ** alpha * origin_visibility[feasible] ** beta
            else:
                weights = np.ones(len(feasible))

            total = float(weights.sum())
            if not math.isfinite(total) or total <= 0:
                nxt = rng.choice(feasible)
            else:
                nxt = rng.choices(feasible, weights=weights.tolist(), k=1)[0]
            tour.append(nxt)
            visited.add(nxt)
        return tour
