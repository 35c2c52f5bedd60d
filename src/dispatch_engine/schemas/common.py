"""Shared boundary schemas for geodata and payload validation."""

from __future__ import annotations

import json
from typing import Any, List, Mapping, Tuple, Type, TypeVar, Union

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError
from ..models.domain import GeoPoint, ServiceArea

ModelT = TypeVar("ModelT", bound=BaseModel)


class GeoPointModel(BaseModel):
    lat: float = Field(..., ge=-90.0, le=90.0)
    lon: float = Field(..., ge=-180.0, le=180.0)

    def to_domain(self) -> GeoPoint:
        return GeoPoint(lat=self.lat, lon=self.lon)

    @classmethod
    def from_domain(cls, point: GeoPoint) -> "GeoPointModel":
        return cls(lat=point.lat, lon=point.lon)


class ServiceAreaModel(BaseModel):
    name: str = "area"
    coordinates: List[Tuple[float, float]] = Field(..., min_length=3, description="Polygon vertices as (lat, lon).")

    def to_domain(self) -> ServiceArea:
        return ServiceArea(name=self.name, vertices=tuple(self.coordinates))


def decode_json_blob(value: Any) -> Any:
    """Geodata columns often arrive as JSON text; decode them once here."""

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return []
        return json.loads(text)
    return value


def validate_payload(model: Type[ModelT], payload: Union[Mapping[str, Any], str, bytes], label: str) -> ModelT:
    """Validate raw input, turning pydantic errors into the engine's ``ValidationError``."""

    try:
        if isinstance(payload, (str, bytes)):
            return model.model_validate_json(payload)
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        reasons = [f"{'.'.join(str(part) for part in error['loc']) or label}: {error['msg']}" for error in exc.errors()]
        raise ValidationError(f"Invalid {label}: {len(reasons)} problem(s).", reasons=reasons) from exc
