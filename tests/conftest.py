import math
from datetime import date, datetime

import pytest

from models.schemas import (
    Accommodation, Candidate, Coordinates, MealCandidate, Preferences, Restaurant, TripItem
)
from services.geo_clusterer import Cluster

# Centro de referencia (París)
BASE_LAT = 48.8566
BASE_LNG = 2.3522
# 2025-06-02 es lunes
MONDAY = date(2025, 6, 2)


def offset_point(north_km: float = 0.0, east_km: float = 0.0, lat: float = BASE_LAT, lng: float = BASE_LNG):
    """Desplaza un punto N/E en km (aproximación plana, suficiente a escala urbana)."""
    new_lat = lat + north_km / 111.32
    new_lng = lng + east_km / (111.32 * math.cos(math.radians(lat)))
    return new_lat, new_lng


@pytest.fixture
def point():
    return offset_point


@pytest.fixture
def make_candidate():
    def _make(candidate_id: str, north_km: float = 0.0, east_km: float = 0.0, **kwargs) -> Candidate:
        lat, lng = offset_point(north_km, east_km)
        data = {
            "id": candidate_id,
            "name": kwargs.pop("name", f"Lugar {candidate_id}"),
            "lat": lat,
            "lng": lng,
            "duration_min": 60,
        }
        data.update(kwargs)
        return Candidate(**data)
    return _make


@pytest.fixture
def make_cluster():
    def _make(day_number: int, candidates, is_day_trip: bool = False) -> Cluster:
        cluster = Cluster(day_number=day_number, candidates=list(candidates), is_day_trip=is_day_trip)
        cluster.recompute()
        return cluster
    return _make


@pytest.fixture
def make_restaurant():
    def _make(restaurant_id: str, north_km: float = 0.0, east_km: float = 0.0, **kwargs) -> Restaurant:
        lat, lng = offset_point(north_km, east_km)
        data = {"id": restaurant_id, "name": f"Resto {restaurant_id}", "lat": lat, "lng": lng, "price_level": 2}
        data.update(kwargs)
        return Restaurant(**data)
    return _make


@pytest.fixture
def make_item():
    def _make(item_id: str, start: str, end: str, north_km: float = 0.0, east_km: float = 0.0,
              item_type: str = "activity", order_index: int = 0, day_number: int = 1, **kwargs) -> TripItem:
        lat, lng = offset_point(north_km, east_km)
        data = {
            "id": item_id,
            "day_number": day_number,
            "start_time": start,
            "end_time": end,
            "type": item_type,
            "title": kwargs.pop("title", f"Item {item_id}"),
            "lat": lat,
            "lng": lng,
            "order_index": order_index,
            "data_reliability": "verified",
        }
        data.update(kwargs)
        return TripItem(**data)
    return _make


@pytest.fixture
def preferences():
    def _make(duration_days: int = 3, start_date: date = MONDAY, **kwargs) -> Preferences:
        data = {
            "duration_days": duration_days,
            "start_date": start_date,
            "dest_coords": Coordinates(lat=BASE_LAT, lng=BASE_LNG),
        }
        data.update(kwargs)
        return Preferences(**data)
    return _make


@pytest.fixture
def hotel():
    return Accommodation(name="Hotel Central", lat=BASE_LAT, lng=BASE_LNG, nightly_price=120.0)


@pytest.fixture
def meals_for(make_restaurant):
    def _make(day_number: int, north_km: float = 0.2, east_km: float = 0.2, breakfast: bool = False):
        meals = [
            MealCandidate(day_number=day_number, meal_type="lunch",
                          restaurant=make_restaurant(f"L{day_number}", north_km, east_km)),
            MealCandidate(day_number=day_number, meal_type="dinner",
                          restaurant=make_restaurant(f"D{day_number}", -north_km, east_km)),
        ]
        if breakfast:
            meals.append(MealCandidate(day_number=day_number, meal_type="breakfast",
                                       restaurant=make_restaurant(f"B{day_number}", north_km, -east_km)))
        return meals
    return _make


def _to_minutes(value: str) -> int:
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


@pytest.fixture
def assert_no_overlaps():
    def _check(days):
        for day in days:
            ordered = sorted(day.items, key=lambda item: _to_minutes(item.start_time))
            for prev, curr in zip(ordered, ordered[1:]):
                assert _to_minutes(prev.end_time) <= _to_minutes(curr.start_time), (
                    f"Día {day.day_number}: '{prev.title}' {prev.start_time}-{prev.end_time} "
                    f"solapa con '{curr.title}' {curr.start_time}-{curr.end_time}"
                )
    return _check


def at(day: date, hhmm: str) -> datetime:
    hours, minutes = hhmm.split(":")
    return datetime(day.year, day.month, day.day, int(hours), int(minutes))
