"""Partner repository contract, an in-memory implementation and a CSV roster loader."""

from __future__ import annotations

import csv
import functools
import json
import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional, Protocol, Sequence

from ..errors import ValidationError
from ..models.domain import GeoPoint, Partner, ServiceArea, VehicleType
from ..services.geospatial import distance_between

logger = logging.getLogger(__name__)


class CommitResult(str, Enum):
    OK = "OK"
    CONFLICT = "CONFLICT"


@dataclass(slots=True, frozen=True)
class CandidateFilters:
    online: bool = True
    available: bool = True
    verified: bool = True
    active: bool = True

    def matches(self, partner: Partner) -> bool:
        return (
            (not self.online or partner.is_online)
            and (not self.available or partner.is_available)
            and (not self.verified or partner.is_verified)
            and (not self.active or partner.is_active)
        )


class PartnerRepository(Protocol):
    def list_candidates(self, center: GeoPoint, radius_km: float, filters: CandidateFilters) -> list[Partner]: ...

    def get_by_id(self, partner_id: str) -> Optional[Partner]: ...

    def increment_active(self, partner_id: str) -> CommitResult: ...

    def decrement_active(self, partner_id: str) -> None: ...


class InMemoryPartnerRepository:
    """Thread-safe partner store.

    Reads hand out copies so callers can never mutate the stored counters. Writes take a
    per-partner lock, which makes ``increment_active`` an atomic compare-and-increment.
    """

    def __init__(self, partners: Iterable[Partner] = ()) -> None:
        self._partners: dict[str, Partner] = {}
        self._locks: defaultdict[str, threading.Lock] = defaultdict(threading.Lock)
        self._registry_lock = threading.Lock()
        for partner in partners:
            self.upsert(partner)

    def _lock_for(self, partner_id: str) -> threading.Lock:
        with self._registry_lock:
            return self._locks[partner_id]

    def upsert(self, partner: Partner) -> None:
        with self._lock_for(partner.id):
            self._partners[partner.id] = replace(partner)

    def list_candidates(self, center: GeoPoint, radius_km: float, filters: CandidateFilters) -> list[Partner]:
        candidates: list[Partner] = []
        for partner in list(self._partners.values()):
            if partner.location is None or not filters.matches(partner):
                continue
            if distance_between(partner.location, center) <= radius_km:
                candidates.append(replace(partner))
        return candidates

    def get_by_id(self, partner_id: str) -> Optional[Partner]:
        partner = self._partners.get(partner_id)
        return replace(partner) if partner else None

    def increment_active(self, partner_id: str) -> CommitResult:
        with self._lock_for(partner_id):
            partner = self._partners.get(partner_id)
            if partner is None or partner.active_delivery_count >= partner.max_capacity:
                return CommitResult.CONFLICT
            self._partners[partner_id] = replace(partner, active_delivery_count=partner.active_delivery_count + 1)
            return CommitResult.OK

    def decrement_active(self, partner_id: str) -> None:
        with self._lock_for(partner_id):
            partner = self._partners.get(partner_id)
            if partner is None:
                logger.warning(f"Cannot release capacity for unknown partner {partner_id}")
                return
            self._partners[partner_id] = replace(
                partner, active_delivery_count=max(0, partner.active_delivery_count - 1)
            )

    def all(self) -> list[Partner]:
        return [replace(partner) for partner in self._partners.values()]


def _coerce_float(value: Optional[str]) -> Optional[float]:
    if value is None or value.strip() == "":
        return None
    try:
        return float(value.replace(",", ""))
    except ValueError as exc:
        raise ValueError(f"Unable to parse float from value '{value}'") from exc


def _coerce_int(value: Optional[str], default: Optional[int] = None) -> Optional[int]:
    number = _coerce_float(value)
    return default if number is None else int(number)


def _coerce_bool(value: Optional[str], default: bool = True) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "y"}


def _coerce_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value or not value.strip():
        return None
    return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))


def parse_service_areas(raw: object) -> tuple[ServiceArea, ...]:
    """Turn a JSON blob (string or decoded list) of polygons into ``ServiceArea`` objects."""

    if raw is None or raw == "":
        return ()
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"Service areas are not valid JSON: {exc}") from exc
    if not isinstance(raw, Sequence):
        raise ValidationError("Service areas must be a list of polygons.")
    areas: list[ServiceArea] = []
    for index, item in enumerate(raw):
        if isinstance(item, dict):
            name = str(item.get("name") or f"area_{index + 1}")
            coordinates = item.get("coordinates") or []
        else:
            name, coordinates = f"area_{index + 1}", item
        areas.append(ServiceArea(name=name, vertices=tuple((float(lat), float(lon)) for lat, lon in coordinates)))
    return tuple(areas)


@functools.lru_cache(maxsize=4)
def load_partners(source: Path) -> tuple[Partner, ...]:
    """Load a partner roster from CSV. Rows without coordinates get no location."""

    if not source.exists():
        raise FileNotFoundError(f"Partner file not found: {source}")

    partners: list[Partner] = []
    with source.open(mode="r", encoding="utf-8-sig", newline="") as handle:
        reader = csv.DictReader(handle)
        if not reader.fieldnames:
            raise ValueError(f"Partner file '{source}' is missing a header row.")
        for row in reader:
            partner_id = (row.get("id") or row.get("partner_id") or "").strip()
            if not partner_id:
                continue
            lat = _coerce_float(row.get("latitude"))
            lon = _coerce_float(row.get("longitude"))
            partners.append(
                Partner(
                    id=partner_id,
                    name=(row.get("name") or "").strip() or None,
                    location=GeoPoint(lat, lon) if lat is not None and lon is not None else None,
                    vehicle_type=VehicleType.parse(row.get("vehicle_type") or "MOTORCYCLE"),
                    rating_avg=_coerce_float(row.get("rating_avg")),
                    total_deliveries=_coerce_int(row.get("total_deliveries")),
                    successful_deliveries=_coerce_int(row.get("successful_deliveries")),
                    active_delivery_count=_coerce_int(row.get("active_delivery_count"), 0),
                    max_capacity=_coerce_int(row.get("max_capacity"), 3),
                    is_online=_coerce_bool(row.get("is_online")),
                    is_available=_coerce_bool(row.get("is_available")),
                    is_verified=_coerce_bool(row.get("is_verified")),
                    is_active=_coerce_bool(row.get("is_active")),
                    service_areas=parse_service_areas(row.get("service_areas")),
                    joined_at=_coerce_datetime(row.get("joined_at")),
                    last_location_update_at=_coerce_datetime(row.get("last_location_update_at")),
                )
            )
    logger.info(f"Loaded {len(partners)} partners from {source}")
    return tuple(partners)
