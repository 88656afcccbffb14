"""
🧪 Tests del DayScheduler
"""
from datetime import timedelta

import pytest

from itinerary.scheduler import DayScheduler
from utils.planner_events import CONFLICT_RESOLVED, EventRecorder

from conftest import MONDAY, at


@pytest.fixture
def scheduler():
    return DayScheduler(MONDAY, at(MONDAY, "09:00"), at(MONDAY, "22:00"))


def test_add_item_advances_cursor(scheduler):
    item = scheduler.add_item("a", "Museo", "activity", 90, travel_time=10)
    assert item.start == at(MONDAY, "09:10")
    assert item.end == at(MONDAY, "10:40")
    assert scheduler.current_time == at(MONDAY, "10:40")
    assert item.duration_min == 90


def test_add_item_without_advance(scheduler):
    scheduler.add_item("a", "Check-in", "checkin", 30, advance=False)
    assert scheduler.current_time == at(MONDAY, "09:00")


def test_add_item_respects_min_start_and_max_end(scheduler):
    item = scheduler.add_item("a", "Museo", "activity", 60, min_start_time=at(MONDAY, "11:00"))
    assert item.start == at(MONDAY, "11:00")
    assert scheduler.add_item("b", "Tarde", "activity", 120, max_end_time=at(MONDAY, "12:30")) is None
    assert not scheduler.has_item("b")


def test_add_item_rejects_past_day_end(scheduler):
    scheduler.advance_to(at(MONDAY, "21:30"))
    assert scheduler.add_item("late", "Tarde", "activity", 60) is None
    assert scheduler.add_item("zero", "Nada", "activity", 0) is None


def test_flexible_item_slides_past_fixed_items(scheduler):
    scheduler.insert_fixed_item("checkin", "Check-in", "checkin", at(MONDAY, "09:30"), at(MONDAY, "10:00"))
    item = scheduler.add_item("a", "Museo", "activity", 60)
    assert item.start == at(MONDAY, "10:00")
    assert scheduler.validate().valid


def test_insert_fixed_item_rejects_overlap_and_empty_window(scheduler):
    first = scheduler.insert_fixed_item("f1", "Vuelo", "flight", at(MONDAY, "12:00"), at(MONDAY, "14:00"))
    assert first is not None and first.fixed
    assert scheduler.insert_fixed_item("f2", "Traslado", "transfer",
                                       at(MONDAY, "13:30"), at(MONDAY, "14:30")) is None
    assert scheduler.insert_fixed_item("f3", "Vacío", "transfer",
                                       at(MONDAY, "15:00"), at(MONDAY, "15:00")) is None
    # adyacente: intervalos semiabiertos
    assert scheduler.insert_fixed_item("f4", "Traslado", "transfer",
                                       at(MONDAY, "14:00"), at(MONDAY, "15:00")) is not None
    # los items fijos no mueven el cursor
    assert scheduler.current_time == at(MONDAY, "09:00")


def test_day_end_before_start_is_forced_to_minimum_span():
    scheduler = DayScheduler(MONDAY, at(MONDAY, "20:00"), at(MONDAY, "19:00"))
    assert scheduler.day_end == at(MONDAY, "20:00") + timedelta(minutes=120)


def test_queries(scheduler):
    scheduler.add_item("a", "Museo", "activity", 60)
    assert scheduler.remaining_minutes() == pytest.approx(12 * 60)
    assert scheduler.can_fit(600, 60)
    assert not scheduler.can_fit(700, 60)
    assert scheduler.get_item("a").title == "Museo"
    assert scheduler.get_item("missing") is None
    assert scheduler.has_item("a")
    assert not scheduler.has_item("missing")


def test_advance_to_never_moves_backwards(scheduler):
    scheduler.advance_to(at(MONDAY, "12:00"))
    scheduler.advance_to(at(MONDAY, "10:00"))
    assert scheduler.current_time == at(MONDAY, "12:00")


def test_remove_conflicts_keeps_fixed_items():
    recorder = EventRecorder()
    scheduler = DayScheduler(MONDAY, at(MONDAY, "09:00"), at(MONDAY, "22:00"), events=recorder)
    scheduler.add_item("museo", "Museo", "activity", 120)
    # Forzar un solape directo sobre la lista interna
    scheduler.insert_fixed_item("tmp", "Tmp", "transfer", at(MONDAY, "15:00"), at(MONDAY, "16:00"))
    scheduler.get_item("tmp").start = at(MONDAY, "10:00")
    scheduler.get_item("tmp").end = at(MONDAY, "10:30")

    assert not scheduler.validate().valid
    removed = scheduler.remove_conflicts()

    assert removed == 1
    assert scheduler.has_item("tmp")
    assert not scheduler.has_item("museo")
    assert scheduler.validate().valid
    events = recorder.named(CONFLICT_RESOLVED)
    assert len(events) == 1
    assert events[0].payload["removed"] == "museo"


def test_remove_conflicts_prefers_earlier_flexible_item(scheduler):
    scheduler.add_item("first", "Primero", "activity", 60)
    second = scheduler.add_item("second", "Segundo", "activity", 60)
    second.start = at(MONDAY, "09:30")
    second.end = at(MONDAY, "10:30")

    assert scheduler.remove_conflicts() == 1
    assert scheduler.has_item("first")
    assert not scheduler.has_item("second")


def test_remove_items_before_protects_logistics(scheduler):
    scheduler.insert_fixed_item("leg", "Vuelo", "flight", at(MONDAY, "07:00"), at(MONDAY, "09:00"))
    scheduler.add_item("early", "Temprano", "activity", 60)
    scheduler.add_item("late", "Tarde", "activity", 60, min_start_time=at(MONDAY, "12:00"))

    removed = scheduler.remove_items_before(at(MONDAY, "11:00"))

    assert removed == 1
    assert [item.id for item in scheduler.items] == ["leg", "late"]


def test_validate_reports_conflicting_pairs(scheduler):
    scheduler.add_item("a", "A", "activity", 60)
    scheduler.add_item("b", "B", "activity", 60)
    scheduler.get_item("b").start = at(MONDAY, "09:15")
    validation = scheduler.validate()
    assert not validation.valid
    assert validation.conflicts == [("a", "b")]
