"""Base classes for route solver implementations."""

from __future__ import annotations

import random
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Sequence

from ....config import settings
from ..cost import CostModel
from ..models import SolverResult


@dataclass(slots=True)
class SolverParameters:
    annealing_initial_temperature: float = settings.annealing_initial_temperature
    annealing_cooling_rate: float = settings.annealing_cooling_rate
    annealing_min_temperature: float = settings.annealing_min_temperature
    genetic_population_size: int = settings.genetic_population_size
    genetic_max_iterations: int = settings.genetic_max_iterations
    genetic_elitism_rate: float = settings.genetic_elitism_rate
    genetic_tournament_size: int = settings.genetic_tournament_size
    genetic_mutation_rate: float = settings.genetic_mutation_rate
    genetic_convergence_ratio: float = settings.genetic_convergence_ratio
    ant_count: int = settings.ant_count
    ant_iterations: int = settings.ant_iterations
    ant_alpha: float = settings.ant_alpha
    ant_beta: float = settings.ant_beta
    ant_evaporation_rate: float = settings.ant_evaporation_rate
    ant_pheromone_deposit: float = settings.ant_pheromone_deposit
    seed: Optional[int] = settings.solver_random_seed


class RouteSolver(ABC):
    """Contract for route solvers.

    A solver receives a shared, read-only ``CostModel`` and returns a visiting order that
    keeps every pickup ahead of its delivery. Solvers poll ``stop`` and return their best
    order so far once it is set.
    """

    name: str = ""

    def __init__(self, parameters: SolverParameters | None = None) -> None:
        self.parameters = parameters or SolverParameters()

    def run(self, cost: CostModel, stop: threading.Event | None = None) -> SolverResult:
        stop = stop or threading.Event()
        if cost.size <= 1:
            return self.result(cost, list(range(cost.size)))
        return self.solve(cost, self.make_rng(), stop)

    @abstractmethod
    def solve(self, cost: CostModel, rng: random.Random, stop: threading.Event) -> SolverResult:
        raise NotImplementedError

    def make_rng(self) -> random.Random:
        if self.parameters.seed is None:
            return random.Random()
        return random.Random(f"{self.parameters.seed}:{self.name}")

    def result(
        self,
        cost: CostModel,
        order: Sequence[int],
        *,
        fitness: float | None = None,
        iterations: int = 0,
    ) -> SolverResult:
        return SolverResult(
            algorithm_name=self.name,
            order=list(order),
            total_distance_km=cost.tour_distance(order),
            estimated_duration_min=cost.tour_duration(order),
            fitness=fitness,
            iterations=iterations,
        )


def random_tour(cost: CostModel, rng: random.Random) -> list[int]:
    return cost.repair(rng.sample(range(cost.size), cost.size))
