"""Route solvers raced by the route optimizer."""

from .annealing import SimulatedAnnealingSolver
from .ant_colony import AntColonySolver
from .base import RouteSolver, SolverParameters
from .genetic import GeneticSolver
from .nearest_neighbor import NearestNeighborSolver
from .registry import SolverRegistry, build_solver, default_registry

__all__ = [
    "AntColonySolver",
    "GeneticSolver",
    "NearestNeighborSolver",
    "RouteSolver",
    "SimulatedAnnealingSolver",
    "SolverParameters",
    "SolverRegistry",
    "build_solver",
    "default_registry",
]
