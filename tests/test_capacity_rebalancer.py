from datetime import datetime, timedelta

import pytest

from itinerary.logistics import resolve_leg_window
from models.schemas import TransportLeg
from services.capacity_rebalancer import CapacityRebalancer
from utils.planner_events import CANDIDATE_DROPPED, CANDIDATE_MOVED, EventRecorder

from conftest import MONDAY


def _arrival(day_offset: int, hour: int):
    day = MONDAY + timedelta(days=day_offset)
    arrival = datetime(day.year, day.month, day.day, hour, 0)
    leg = TransportLeg(direction="outbound", departure_time=arrival - timedelta(hours=2), arrival_time=arrival)
    return resolve_leg_window(leg, day)


def _departure(day_offset: int, hour: int):
    day = MONDAY + timedelta(days=day_offset)
    departure = datetime(day.year, day.month, day.day, hour, 0)
    leg = TransportLeg(direction="return", departure_time=departure, arrival_time=departure + timedelta(hours=2))
    return resolve_leg_window(leg, day)


def _clusters(make_candidate, make_cluster, sizes):
    clusters = []
    for day, size in enumerate(sizes, start=1):
        members = [make_candidate(f"d{day}-{i}", north_km=day, east_km=0.1 * i) for i in range(size)]
        clusters.append(make_cluster(day, members))
    return clusters


def _all_ids(clusters):
    return sorted(cid for c in clusters for cid in c.candidate_ids)


def test_available_hours_defaults():
    assert CapacityRebalancer().available_hours(3, MONDAY) == [12.0, 12.0, 12.0]


def test_available_hours_same_day_arrival_and_departure():
    hours = CapacityRebalancer().available_hours(1, MONDAY, _arrival(0, 10), _departure(0, 20))
    # libre desde 11:30, salida hacia el aeropuerto a las 17:00
    assert hours == [pytest.approx(5.5)]


def test_early_departure_moves_last_day_without_losing_candidates(make_candidate, make_cluster):
    clusters = _clusters(make_candidate, make_cluster, [3, 3, 3])
    before = _all_ids(clusters)
    recorder = EventRecorder()

    result = CapacityRebalancer(events=recorder).rebalance(clusters, MONDAY, None, _departure(2, 8))

    assert result.max_per_day == [8, 8, 0]
    assert result.clusters[2].size == 0
    assert result.dropped == []
    assert _all_ids(result.clusters) == before
    assert len(recorder.named(CANDIDATE_MOVED)) == 3
    assert sorted(c.size for c in result.clusters[:2]) == [4, 5]


def test_late_arrival_empties_first_day(make_candidate, make_cluster):
    clusters = _clusters(make_candidate, make_cluster, [2, 2])
    result = CapacityRebalancer().rebalance(clusters, MONDAY, _arrival(0, 20), None)
    assert result.available_hours[0] == pytest.approx(0.5)
    assert result.max_per_day[0] == 0
    assert result.clusters[0].size == 0
    assert result.clusters[1].size == 4


def test_candidates_dropped_when_no_day_can_receive(make_candidate, make_cluster):
    clusters = _clusters(make_candidate, make_cluster, [2, 1])
    recorder = EventRecorder()

    result = CapacityRebalancer(events=recorder).rebalance(clusters, MONDAY, _arrival(0, 20), _departure(1, 8))

    assert result.max_per_day == [0, 0]
    assert sorted(c.id for c in result.dropped) == ["d1-0", "d1-1", "d2-0"]
    assert len(recorder.named(CANDIDATE_DROPPED)) == 3
    assert all(c.size == 0 for c in result.clusters)


def test_overfull_day_sheds_last_visits(make_candidate, make_cluster):
    clusters = _clusters(make_candidate, make_cluster, [6, 2])
    tail = clusters[0].candidate_ids[-2:]

    result = CapacityRebalancer().rebalance(clusters, MONDAY, _arrival(0, 14), None)

    assert result.max_per_day == [4, 8]
    assert result.clusters[0].size == 4
    assert set(tail) <= set(result.clusters[1].candidate_ids)


def test_day_trip_never_receives(make_candidate, make_cluster):
    clusters = _clusters(make_candidate, make_cluster, [3, 1, 2])
    clusters[1].is_day_trip = True

    result = CapacityRebalancer().rebalance(clusters, MONDAY, None, _departure(2, 8))

    assert result.clusters[1].candidate_ids == ["d2-0"]
    assert result.clusters[0].size == 5
    # el day-trip conserva un día completo
    assert result.available_hours[1] == 12.0


def test_overfull_day_trip_keeps_its_members(make_candidate, make_cluster):
    clusters = _clusters(make_candidate, make_cluster, [2, 10, 2])
    clusters[1].is_day_trip = True
    recorder = EventRecorder()

    result = CapacityRebalancer(events=recorder).rebalance(clusters, MONDAY, None, None)

    assert result.max_per_day == [8, 8, 8]
    assert result.clusters[1].size == 10
    assert [c.size for c in (result.clusters[0], result.clusters[2])] == [2, 2]
    assert recorder.named(CANDIDATE_MOVED) == []
