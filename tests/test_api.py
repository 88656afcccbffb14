from fastapi.testclient import TestClient

from api import app

from conftest import BASE_LAT, BASE_LNG

client = TestClient(app)


def _payload():
    return {
        "candidates": [
            {"id": "louvre", "name": "Louvre", "lat": BASE_LAT + 0.004, "lng": BASE_LNG - 0.015,
             "duration_min": 120, "must_see": True, "category": "museum"},
            {"id": "tuileries", "name": "Tuileries", "lat": BASE_LAT + 0.007, "lng": BASE_LNG - 0.025,
             "category": "park"},
            {"id": "orsay", "name": "Musée d'Orsay", "lat": BASE_LAT + 0.003, "lng": BASE_LNG - 0.026,
             "duration_min": 90, "opening_hours": {"monday": None}},
        ],
        "meals": [
            {"day_number": 1, "meal_type": "lunch",
             "restaurant": {"id": "r1", "name": "Le Fumoir", "lat": BASE_LAT + 0.005, "lng": BASE_LNG - 0.018,
                            "price_level": 2}},
        ],
        "accommodation": {"name": "Hotel Central", "lat": BASE_LAT, "lng": BASE_LNG, "nightly_price": 100},
        "preferences": {
            "duration_days": 1,
            "start_date": "2025-06-03",
            "dest_coords": {"lat": BASE_LAT, "lng": BASE_LNG},
        },
    }


def test_health():
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_assemble_trip():
    response = client.post("/api/v1/trips/assemble", json=_payload())
    assert response.status_code == 200
    body = response.json()
    assert len(body["days"]) == 1
    ids = [item["candidate_id"] for item in body["days"][0]["items"] if item["candidate_id"]]
    assert sorted(ids) == ["louvre", "orsay", "tuileries"]
    assert 0 <= body["validation"]["score"] <= 100
    assert body["cost_breakdown"]["accommodation"] == 100


def test_assemble_rejects_duplicate_candidates():
    payload = _payload()
    payload["candidates"].append(dict(payload["candidates"][0]))
    response = client.post("/api/v1/trips/assemble", json=payload)
    assert response.status_code == 422


def test_validate_endpoint_dedupes_meals():
    day = {
        "day_number": 1,
        "date": "2025-06-03",
        "items": [
            {"id": "a", "day_number": 1, "start_time": "09:00", "end_time": "10:00", "type": "activity",
             "title": "Louvre", "lat": BASE_LAT, "lng": BASE_LNG, "order_index": 0, "data_reliability": "verified"},
            {"id": "l1", "day_number": 1, "start_time": "12:00", "end_time": "13:00", "type": "restaurant",
             "title": "Lunch — Le Fumoir", "lat": BASE_LAT, "lng": BASE_LNG, "order_index": 1,
             "data_reliability": "verified"},
            {"id": "l2", "day_number": 1, "start_time": "13:30", "end_time": "14:30", "type": "restaurant",
             "title": "Lunch — Le Fumoir", "lat": BASE_LAT, "lng": BASE_LNG, "order_index": 2,
             "data_reliability": "verified"},
        ],
    }
    response = client.post("/api/v1/trips/validate", json={"days": [day]})
    assert response.status_code == 200
    body = response.json()
    assert body["score"] == 95
    assert len(body["auto_fixes"]) == 1
