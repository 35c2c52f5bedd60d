"""Error taxonomy shared by dispatch, batching and routing."""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, Mapping

if TYPE_CHECKING:
    from .models.domain import Assignment


class DispatchError(Exception):
    """Base class for failures surfaced by the engine.

    Every error carries human-readable ``reasons`` so callers can log or display why a
    dispatch did not go through, and a ``retryable`` flag telling them whether trying
    again (wider radius, back-off) can help.
    """

    retryable: bool = False

    def __init__(self, message: str, reasons: Iterable[str] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.reasons = list(reasons or [])


class ValidationError(DispatchError, ValueError):
    """Malformed input (coordinates, vehicle type, waypoint set)."""


class NoCandidatesError(DispatchError):
    """No partner matched the repository search."""

    retryable = True

    def __init__(self, message: str, *, radius_km: float, reasons: Iterable[str] | None = None) -> None:
        super().__init__(message, reasons)
        self.radius_km = radius_km


class NoEligiblePartnerError(DispatchError):
    """Candidates were found but every one failed a hard constraint."""

    retryable = True

    def __init__(
        self,
        message: str,
        *,
        rejections: Mapping[str, list[str]] | None = None,
        radius_km: float | None = None,
    ) -> None:
        rejections = dict(rejections or {})
        reasons = [f"{partner_id}: {reason}" for partner_id, items in rejections.items() for reason in items]
        super().__init__(message, reasons)
        self.rejections = rejections
        self.radius_km = radius_km


class OptimizationFailure(DispatchError):
    """Every route solver errored or timed out."""

    retryable = True

    def __init__(self, message: str, *, failures: Mapping[str, str] | None = None) -> None:
        failures = dict(failures or {})
        super().__init__(message, [f"{name}: {error}" for name, error in failures.items()])
        self.failures = failures


class ConcurrencyConflict(DispatchError):
    """Lost every capacity race within the bounded number of commit attempts."""

    retryable = True


class SupersededDispatchError(DispatchError):
    """Another attempt for the same delivery already committed; this one was discarded."""

    def __init__(self, message: str, *, committed: "Assignment | None" = None) -> None:
        super().__init__(message)
        self.committed = committed


class TrafficLookupError(Exception):
    """A traffic provider could not answer."""


class TrafficTimeoutError(TrafficLookupError, TimeoutError):
    """A traffic provider did not answer within its timeout."""
