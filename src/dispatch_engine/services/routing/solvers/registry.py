"""Explicitly constructed registry of route solvers."""

from __future__ import annotations

from typing import Iterable, Iterator

from .annealing import SimulatedAnnealingSolver
from .ant_colony import AntColonySolver
from .base import RouteSolver, SolverParameters
from .genetic import GeneticSolver
from .nearest_neighbor import NearestNeighborSolver

DEFAULT_SOLVERS = ("genetic", "annealing", "nearest_neighbor", "ant_colony")


def build_solver(method: str, parameters: SolverParameters | None = None) -> RouteSolver:
    match method:
        case "genetic":
            return GeneticSolver(parameters)
        case "annealing":
            return SimulatedAnnealingSolver(parameters)
        case "nearest_neighbor":
            return NearestNeighborSolver(parameters)
        case "ant_colony":
            return AntColonySolver(parameters)
        case _:
            raise ValueError(f"Unknown route solver '{method}'.")


class SolverRegistry:
    """Holds the solvers a ``RouteOptimizer`` races against each other, keyed by display name."""

    def __init__(self, solvers: Iterable[RouteSolver] = ()) -> None:
        self._solvers: dict[str, RouteSolver] = {}
        for solver in solvers:
            self.register(solver)

    def register(self, solver: RouteSolver) -> None:
        if not solver.name:
            raise ValueError(f"Solver {type(solver).__name__} has no name.")
        if solver.name in self._solvers:
            raise ValueError(f"A solver named '{solver.name}' is already registered.")
        self._solvers[solver.name] = solver

    def unregister(self, name: str) -> RouteSolver:
        try:
            return self._solvers.pop(name)
        except KeyError as exc:
            raise ValueError(f"No solver named '{name}' is registered.") from exc

    def get(self, name: str) -> RouteSolver:
        try:
            return self._solvers[name]
        except KeyError as exc:
            raise ValueError(f"No solver named '{name}' is registered.") from exc

    def names(self) -> list[str]:
        return list(self._solvers)

    def __iter__(self) -> Iterator[RouteSolver]:
        return iter(list(self._solvers.values()))

    def __len__(self) -> int:
        return len(self._solvers)


def default_registry(parameters: SolverParameters | None = None) -> SolverRegistry:
    return SolverRegistry(build_solver(method, parameters) for method in DEFAULT_SOLVERS)
