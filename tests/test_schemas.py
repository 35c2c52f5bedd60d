import json

import pytest

from dispatch_engine.errors import ValidationError
from dispatch_engine.models.domain import DeliveryType, GeoPoint, Priority, VehicleType
from dispatch_engine.schemas.dispatch import parse_delivery_request, parse_partner
from dispatch_engine.schemas.routing import parse_route_request
from dispatch_engine.services.routing.models import WaypointKind


def test_delivery_request_accepts_lowercase_enums():
    request = parse_delivery_request(
        {
            "id": "D1",
            "pickup": {"lat": 24.7, "lon": 46.67},
            "dropoff": {"lat": 24.75, "lon": 46.7},
            "priority": "urgent",
            "delivery_type": "express",
            "estimated_weight_kg": 2.5,
        }
    )

    assert request.priority == Priority.URGENT
    assert request.delivery_type == DeliveryType.EXPRESS
    assert request.pickup == GeoPoint(24.7, 46.67)


def test_delivery_request_out_of_range_coordinates_are_rejected():
    with pytest.raises(ValidationError) as excinfo:
        parse_delivery_request({"id": "D1", "pickup": {"lat": 95, "lon": 0}, "dropoff": {"lat": 0, "lon": 0}})

    assert any(reason.startswith("pickup.lat") for reason in excinfo.value.reasons)


def test_delivery_request_from_json_text():
    payload = json.dumps({"id": "D2", "pickup": {"lat": 1, "lon": 2}, "dropoff": {"lat": 1.1, "lon": 2.1}})

    request = parse_delivery_request(payload)

    assert request.priority == Priority.NORMAL
    assert request.created_at is None


def test_partner_service_areas_accept_json_blob():
    partner = parse_partner(
        {
            "id": "P1",
            "vehicle_type": "scooter",
            "location": {"lat": 24.7, "lon": 46.67},
            "service_areas": json.dumps([[[24.6, 46.6], [24.6, 46.8], [24.8, 46.8], [24.8, 46.6]]]),
        }
    )

    assert partner.vehicle_type == VehicleType.SCOOTER
    assert partner.service_areas[0].name == "area_1"
    assert len(partner.service_areas[0].vertices) == 4


def test_partner_with_degenerate_service_area_is_rejected():
    with pytest.raises(ValidationError):
        parse_partner(
            {"id": "P1", "vehicle_type": "CAR", "service_areas": [{"name": "strip", "coordinates": [[0, 0], [1, 1]]}]}
        )


def test_partner_rating_must_stay_on_the_five_point_scale():
    with pytest.raises(ValidationError):
        parse_partner({"id": "P1", "vehicle_type": "CAR", "rating_avg": 7})


def test_route_request_accepts_flat_waypoints():
    request = parse_route_request(
        {
            "vehicle_type": "car",
            "waypoints": [
                {"lat": 24.7, "lng": 46.67, "type": "pickup", "deliveryId": "D1"},
                {"lat": 24.75, "lng": 46.7, "type": "delivery", "deliveryId": "D1"},
            ],
            "traffic": [{"from_index": 0, "to_index": 1, "duration_min": 12}],
            "origin": {"lat": 24.69, "lon": 46.66},
        }
    )

    waypoints = request.to_domain()
    assert request.vehicle_type == VehicleType.CAR
    assert waypoints[0].kind == WaypointKind.PICKUP
    assert waypoints[1].delivery_id == "D1"
    assert request.traffic_durations() == {(0, 1): 12.0}
    assert request.origin_point() == GeoPoint(24.69, 46.66)


def test_route_request_rejects_unknown_traffic_indices():
    with pytest.raises(ValidationError):
        parse_route_request(
            {
                "waypoints": [{"point": {"lat": 1, "lon": 1}}],
                "traffic": [{"from_index": 0, "to_index": 3, "duration_min": 5}],
            }
        )


def test_route_request_needs_waypoints():
    with pytest.raises(ValidationError):
        parse_route_request({"waypoints": []})
