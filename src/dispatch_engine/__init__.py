"""Delivery dispatch and route optimisation engine."""

from .engine import DispatchEngine
from .errors import (
    ConcurrencyConflict,
    DispatchError,
    NoCandidatesError,
    NoEligiblePartnerError,
    OptimizationFailure,
    SupersededDispatchError,
    ValidationError,
)
from .models.domain import Assignment, DeliveryRequest, DeliveryType, GeoPoint, Partner, Priority, VehicleType

__all__ = [
    "Assignment",
    "ConcurrencyConflict",
    "DeliveryRequest",
    "DeliveryType",
    "DispatchEngine",
    "DispatchError",
    "GeoPoint",
    "NoCandidatesError",
    "NoEligiblePartnerError",
    "OptimizationFailure",
    "Partner",
    "Priority",
    "SupersededDispatchError",
    "ValidationError",
    "VehicleType",
]
