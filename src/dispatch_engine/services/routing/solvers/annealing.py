"""Simulated annealing over swap moves."""

from __future__ import annotations

import math
import random
import threading

from ..cost import CostModel
from ..models import SolverResult
from .base import RouteSolver, random_tour


class SimulatedAnnealingSolver(RouteSolver):
    name = "Simulated Annealing"

    def solve(self, cost: CostModel, rng: random.Random, stop: threading.Event) -> SolverResult:
        params = self.parameters
        current = random_tour(cost, rng)
        current_cost = cost.cost(current)
        best, best_cost = list(current), current_cost

        temperature = params.annealing_initial_temperature
        iterations = 0
        while temperature >= params.annealing_min_temperature and not stop.is_set():
            i, j = rng.sample(range(cost.size), 2)
            candidate = list(current)
            candidate[i], candidate[j] = candidate[j], candidate[i]
            candidate = cost.repair(candidate)
            candidate_cost = cost.cost(candidate)

            delta = candidate_cost - current_cost
            if delta < 0 or rng.random() < math.exp(-delta / temperature):
                current, current_cost = candidate, candidate_cost
                if current_cost < best_cost:
                    best, best_cost = list(current), current_cost

            temperature *= params.annealing_cooling_rate
            iterations += 1
        return self.result(cost, best, iterations=iterations)
