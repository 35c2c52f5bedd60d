"""Dispatch request/response schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Mapping, Optional, Union

from pydantic import BaseModel, Field, field_validator

from ..models.domain import Assignment, DeliveryRequest, DeliveryType, Partner, Priority, ScoreBreakdown, VehicleType
from ..services.dispatch.batch import Batch, BatchResult
from .common import GeoPointModel, ServiceAreaModel, decode_json_blob, validate_payload
from .routing import RouteModel


def _upper(value: Any) -> Any:
    return value.strip().upper() if isinstance(value, str) else value


class DeliveryRequestModel(BaseModel):
    id: str = Field(..., min_length=1)
    pickup: GeoPointModel
    dropoff: GeoPointModel
    priority: Priority = Priority.NORMAL
    delivery_type: DeliveryType = DeliveryType.STANDARD
    estimated_weight_kg: Optional[float] = Field(default=None, ge=0.0)
    created_at: Optional[datetime] = None

    @field_validator("priority", "delivery_type", mode="before")
    @classmethod
    def _normalise_enum(cls, value: Any) -> Any:
        return _upper(value)

    def to_domain(self) -> DeliveryRequest:
        return DeliveryRequest(
            id=self.id,
            pickup=self.pickup.to_domain(),
            dropoff=self.dropoff.to_domain(),
            priority=self.priority,
            delivery_type=self.delivery_type,
            estimated_weight_kg=self.estimated_weight_kg,
            created_at=self.created_at,
        )


class PartnerModel(BaseModel):
    id: str = Field(..., min_length=1)
    name: Optional[str] = None
    location: Optional[GeoPointModel] = None
    vehicle_type: VehicleType
    rating_avg: Optional[float] = Field(default=None, ge=0.0, le=5.0)
    total_deliveries: Optional[int] = Field(default=None, ge=0)
    successful_deliveries: Optional[int] = Field(default=None, ge=0)
    active_delivery_count: int = Field(default=0, ge=0)
    max_capacity: int = Field(default=3, ge=0)
    is_online: bool = True
    is_available: bool = True
    is_verified: bool = True
    is_active: bool = True
    service_areas: List[ServiceAreaModel] = Field(default_factory=list)
    joined_at: Optional[datetime] = None
    last_location_update_at: Optional[datetime] = None

    @field_validator("vehicle_type", mode="before")
    @classmethod
    def _normalise_vehicle_type(cls, value: Any) -> Any:
        return _upper(value)

    @field_validator("service_areas", mode="before")
    @classmethod
    def _parse_service_areas(cls, value: Any) -> Any:
        """Accept a JSON blob and bare vertex lists as well as ``{"name", "coordinates"}`` objects."""
        value = decode_json_blob(value)
        if value is None:
            return []
        if isinstance(value, list):
            return [
                item if isinstance(item, dict) else {"name": f"area_{index + 1}", "coordinates": item}
                for index, item in enumerate(value)
            ]
        return value

    def to_domain(self) -> Partner:
        return Partner(
            id=self.id,
            name=self.name,
            location=self.location.to_domain() if self.location else None,
            vehicle_type=self.vehicle_type,
            rating_avg=self.rating_avg,
            total_deliveries=self.total_deliveries,
            successful_deliveries=self.successful_deliveries,
            active_delivery_count=self.active_delivery_count,
            max_capacity=self.max_capacity,
            is_online=self.is_online,
            is_available=self.is_available,
            is_verified=self.is_verified,
            is_active=self.is_active,
            service_areas=tuple(area.to_domain() for area in self.service_areas),
            joined_at=self.joined_at,
            last_location_update_at=self.last_location_update_at,
        )


class ScoreBreakdownModel(BaseModel):
    distance: float
    rating: float
    availability: float
    experience: float
    efficiency: float
    reliability: float
    composite: float

    @classmethod
    def from_domain(cls, breakdown: ScoreBreakdown) -> "ScoreBreakdownModel":
        return cls(
            distance=breakdown.distance,
            rating=breakdown.rating,
            availability=breakdown.availability,
            experience=breakdown.experience,
            efficiency=breakdown.efficiency,
            reliability=breakdown.reliability,
            composite=breakdown.composite,
        )


class AssignmentModel(BaseModel):
    delivery_id: str
    partner_id: str
    score: float
    confidence: float = Field(..., ge=0.0, le=100.0)
    reasons: List[str]
    estimated_arrival_minutes: float
    breakdown: Optional[ScoreBreakdownModel] = None
    alternatives: List[str] = Field(default_factory=list)
    attempt: int = 1
    assigned_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, assignment: Assignment) -> "AssignmentModel":
        return cls(
            delivery_id=assignment.delivery_id,
            partner_id=assignment.partner_id,
            score=assignment.score,
            confidence=assignment.confidence,
            reasons=list(assignment.reasons),
            estimated_arrival_minutes=assignment.estimated_arrival_minutes,
            breakdown=ScoreBreakdownModel.from_domain(assignment.breakdown) if assignment.breakdown else None,
            alternatives=list(assignment.alternatives),
            attempt=assignment.attempt,
            assigned_at=assignment.assigned_at,
        )


class UnassignedDeliveryModel(BaseModel):
    delivery_id: str
    priority: Priority
    reasons: List[str]


class BatchModel(BaseModel):
    partner_id: str
    delivery_ids: List[str]
    remaining_capacity: int
    route: Optional[RouteModel] = None

    @classmethod
    def from_domain(cls, batch: Batch) -> "BatchModel":
        return cls(
            partner_id=batch.partner_id,
            delivery_ids=[delivery.id for delivery in batch.deliveries],
            remaining_capacity=batch.remaining_capacity,
            route=RouteModel.from_domain(batch.route) if batch.route else None,
        )


class BatchAssignmentResponse(BaseModel):
    total: int
    assigned: int
    utilization_rate: float
    assignments: List[AssignmentModel]
    unassigned: List[UnassignedDeliveryModel]
    batches: List[BatchModel]

    @classmethod
    def from_domain(cls, result: BatchResult) -> "BatchAssignmentResponse":
        return cls(
            total=result.total,
            assigned=len(result.assignments),
            utilization_rate=result.utilization_rate,
            assignments=[AssignmentModel.from_domain(item) for item in result.assignments],
            unassigned=[
                UnassignedDeliveryModel(
                    delivery_id=item.delivery.id, priority=item.delivery.priority, reasons=list(item.reasons)
                )
                for item in result.unassigned
            ],
            batches=[BatchModel.from_domain(batch) for batch in result.batches],
        )


def parse_delivery_request(payload: Union[Mapping[str, Any], str, bytes]) -> DeliveryRequest:
    return validate_payload(DeliveryRequestModel, payload, "delivery request").to_domain()


def parse_partner(payload: Union[Mapping[str, Any], str, bytes]) -> Partner:
    return validate_payload(PartnerModel, payload, "partner").to_domain()
