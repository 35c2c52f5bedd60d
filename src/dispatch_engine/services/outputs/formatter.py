"""Serializers for route and batch outputs."""

from __future__ import annotations

import csv
import io

from ...schemas.dispatch import BatchAssignmentResponse
from ...schemas.routing import RouteModel
from ..dispatch.batch import BatchResult
from ..routing.models import Route


def route_to_json(route: Route) -> dict:
    return RouteModel.from_domain(route).model_dump(mode="json")


def route_to_csv(route: Route) -> str:
    buffer = io.StringIO()
    fieldnames = [
        "sequence",
        "kind",
        "delivery_id",
        "lat",
        "lon",
        "distance_from_prev_km",
        "duration_from_prev_min",
        "instruction",
    ]
    writer = csv.DictWriter(buffer, fieldnames=fieldnames)
    writer.writeheader()
    # with an origin every stop has an incoming segment; otherwise the first stop has none
    offset = 0 if route.origin is not None else 1
    for sequence, waypoint in enumerate(route.waypoints, start=1):
        segment_index = sequence - 1 - offset
        segment = route.segments[segment_index] if 0 <= segment_index < len(route.segments) else None
        writer.writerow(
            {
                "sequence": sequence,
                "kind": waypoint.kind.value,
                "delivery_id": waypoint.delivery_id or "",
                "lat": waypoint.point.lat,
                "lon": waypoint.point.lon,
                "distance_from_prev_km": round(segment.distance_km, 3) if segment else 0.0,
                "duration_from_prev_min": round(segment.duration_min, 1) if segment else 0.0,
                "instruction": segment.instruction if segment else "",
            }
        )
    return buffer.getvalue()


def batch_result_to_json(result: BatchResult) -> dict:
    return BatchAssignmentResponse.from_domain(result).model_dump(mode="json")


def batch_result_to_csv(result: BatchResult) -> str:
    buffer = io.StringIO()
    fieldnames = [
        "delivery_id",
        "status",
        "partner_id",
        "score",
        "confidence",
        "estimated_arrival_minutes",
        "reasons",
    ]
    writer = csv.DictWriter(buffer, fieldnames=fieldnames)
    writer.writeheader()
    for assignment in result.assignments:
        writer.writerow(
            {
                "delivery_id": assignment.delivery_id,
                "status": "assigned",
                "partner_id": assignment.partner_id,
                "score": assignment.score,
                "confidence": assignment.confidence,
                "estimated_arrival_minutes": assignment.estimated_arrival_minutes,
                "reasons": "; ".join(assignment.reasons),
            }
        )
    for item in result.unassigned:
        writer.writerow(
            {
                "delivery_id": item.delivery.id,
                "status": "unassigned",
                "partner_id": "",
                "score": "",
                "confidence": "",
                "estimated_arrival_minutes": "",
                "reasons": "; ".join(item.reasons),
            }
        )
    return buffer.getvalue()
