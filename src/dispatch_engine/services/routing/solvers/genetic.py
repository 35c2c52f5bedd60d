"""Genetic search with elitism, tournament selection, order crossover and swap mutation."""

from __future__ import annotations

import random
import threading
from typing import Sequence

from ..cost import CostModel
from ..models import SolverResult
from .base import RouteSolver, random_tour


def order_crossover(first: Sequence[int], second: Sequence[int], rng: random.Random) -> list[int]:
    """OX: keep a slice of ``first`` and fill the gaps in ``second``'s order."""

    size = len(first)
    start, end = sorted(rng.sample(range(size), 2))
    child: list[int | None] = [None] * size
    child[start : end + 1] = first[start : end + 1]
    kept = set(first[start : end + 1])
    filler = iter(gene for gene in second if gene not in kept)
    for position in range(size):
        if child[position] is None:
            child[position] = next(filler)
    return [gene for gene in child if gene is not None]


def swap_mutation(individual: list[int], rate: float, rng: random.Random) -> list[int]:
    mutated = list(individual)
    for position in range(len(mutated)):
        if rng.random() < rate:
            other = rng.randrange(len(mutated))
            mutated[position], mutated[other] = mutated[other], mutated[position]
    return mutated


class GeneticSolver(RouteSolver):
    name = "Genetic Algorithm"

    def solve(self, cost: CostModel, rng: random.Random, stop: threading.Event) -> SolverResult:
        params = self.parameters
        population_size = params.genetic_population_size
        generations = max(1, params.genetic_max_iterations // population_size)
        elite_count = max(1, int(population_size * params.genetic_elitism_rate))

        population = [random_tour(cost, rng) for _ in range(population_size)]
        best: list[int] = population[0]
        best_fitness = cost.fitness(best)
        generation = 0

        while generation < generations and not stop.is_set():
            generation += 1
            scored = sorted(
                ((cost.fitness(individual), individual) for individual in population),
                key=lambda item: item[0],
                reverse=True,
            )
            if scored[0][0] > best_fitness:
                best_fitness, best = scored[0][0], list(scored[0][1])

            fitnesses = [fitness for fitness, _ in scored]
            average = sum(fitnesses) / len(fitnesses)
            if fitnesses[0] > 0 and average / fitnesses[0] > params.genetic_convergence_ratio:
                break

            next_population = [list(individual) for _, individual in scored[:elite_count]]
            while len(next_population) < population_size:
                mother = self._tournament(scored, rng)
                father = self._tournament(scored, rng)
                child = order_crossover(mother, father, rng)
                child = swap_mutation(child, params.genetic_mutation_rate, rng)
                next_population.append(cost.repair(child))
            population = next_population

        for individual in population:
            fitness = cost.fitness(individual)
            if fitness > best_fitness:
                best_fitness, best = fitness, list(individual)
        return self.result(cost, best, fitness=best_fitness, iterations=generation)

    def _tournament(self, scored: Sequence[tuple[float, list[int]]], rng: random.Random) -> list[int]:
        size = min(self.parameters.genetic_tournament_size, len(scored))
        contenders = rng.sample(range(len(scored)), size)
        # scored is sorted best first, so the lowest index wins
        return scored[min(contenders)][1]
