from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple
import logging

from utils.planner_events import CONFLICT_RESOLVED, NullEventSink, PlannerEventSink

DEFAULT_PROTECTED_TYPES = ("flight", "transport", "transfer", "checkin", "checkout")


@dataclass
class ScheduleItem:
    id: str
    title: str
    type: str
    start: datetime
    end: datetime
    fixed: bool = False
    min_start_time: Optional[datetime] = None
    max_end_time: Optional[datetime] = None
    travel_time_from_previous: int = 0
    data: Dict[str, Any] = field(default_factory=dict)
    sequence: int = 0

    @property
    def duration_min(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)

    def overlaps(self, start: datetime, end: datetime) -> bool:
        # Intervalos semiabiertos [start, end)
        return self.start < end and start < self.end


@dataclass
class ScheduleValidation:
    valid: bool
    conflicts: List[Tuple[str, str]] = field(default_factory=list)


class DayScheduler:
    """
    Asignador de un día sobre un eje de tiempo.

    Los items fijos se insertan tal cual; los flexibles se colocan en el
    primer hueco libre a partir del cursor. Ninguna operación lanza
    excepciones: un fallo de colocación devuelve None.
    """

    def __init__(self, day: date, day_start: datetime, day_end: datetime,
                 events: Optional[PlannerEventSink] = None, min_span_min: int = 120):
        self.date = day
        self.day_start = day_start
        if day_end <= day_start:
            logging.warning(
                f"⚠️ Fin de día {day_end:%H:%M} ≤ inicio {day_start:%H:%M}, forzando {min_span_min} min"
            )
            day_end = day_start + timedelta(minutes=min_span_min)
        self.day_end = day_end
        self.cursor = day_start
        self.events = events or NullEventSink()
        self._items: List[ScheduleItem] = []
        self._sequence = 0

    # ------------------------------------------------------------------
    # Consultas
    # ------------------------------------------------------------------

    @property
    def items(self) -> List[ScheduleItem]:
        return sorted(self._items, key=lambda item: (item.start, item.sequence))

    @property
    def current_time(self) -> datetime:
        return self.cursor

    def remaining_minutes(self) -> float:
        return max(0.0, (self.day_end - self.cursor).total_seconds() / 60.0)

    def can_fit(self, duration_min: float, travel_buffer_min: float = 0) -> bool:
        return self.remaining_minutes() >= duration_min + travel_buffer_min

    def has_item(self, item_id: str) -> bool:
        return self.get_item(item_id) is not None

    def get_item(self, item_id: str) -> Optional[ScheduleItem]:
        return next((item for item in self._items if item.id == item_id), None)

    # ------------------------------------------------------------------
    # Colocación
    # ------------------------------------------------------------------

    def insert_fixed_item(self, item_id: str, title: str, item_type: str,
                          start: datetime, end: datetime,
                          data: Optional[Dict[str, Any]] = None) -> Optional[ScheduleItem]:
        """Inserta un item en su ventana absoluta; None si solapa con otro."""
        if end <= start:
            logging.warning(f"⚠️ Item fijo '{title}' con ventana vacía, ignorado")
            return None
        for placed in self._items:
            if placed.overlaps(start, end):
                logging.debug(f"⛔ '{title}' solapa con '{placed.title}'")
                return None

        item = ScheduleItem(
            id=item_id, title=title, type=item_type, start=start, end=end,
            fixed=True, data=dict(data or {}), sequence=self._next_sequence()
        )
        self._items.append(item)
        return item

    def add_item(self, item_id: str, title: str, item_type: str, duration_min: int,
                 travel_time: int = 0,
                 min_start_time: Optional[datetime] = None,
                 max_end_time: Optional[datetime] = None,
                 data: Optional[Dict[str, Any]] = None,
                 advance: bool = True) -> Optional[ScheduleItem]:
        """
        Coloca un item flexible en el primer hueco libre a partir de
        cursor + traslado, respetando min_start_time y max_end_time.
        Avanza el cursor al final del item colocado (salvo advance=False).
        """
        if duration_min <= 0:
            return None

        start = self.cursor + timedelta(minutes=travel_time)
        if min_start_time is not None and start < min_start_time:
            start = min_start_time
        start = self._first_free_slot(start, duration_min)
        end = start + timedelta(minutes=duration_min)

        if max_end_time is not None and end > max_end_time:
            return None
        if end > self.day_end:
            return None

        item = ScheduleItem(
            id=item_id, title=title, type=item_type, start=start, end=end,
            fixed=False, min_start_time=min_start_time, max_end_time=max_end_time,
            travel_time_from_previous=travel_time, data=dict(data or {}),
            sequence=self._next_sequence()
        )
        self._items.append(item)
        if advance:
            self.cursor = end
        return item

    def advance_to(self, moment: datetime) -> None:
        """Mueve el cursor hacia adelante (nunca hacia atrás)."""
        if moment > self.cursor:
            self.cursor = moment

    def _first_free_slot(self, start: datetime, duration_min: int) -> datetime:
        duration = timedelta(minutes=duration_min)
        for placed in self.items:
            if placed.overlaps(start, start + duration):
                start = placed.end
        return start

    def _next_sequence(self) -> int:
        self._sequence += 1
        return self._sequence

    # ------------------------------------------------------------------
    # Resolución de conflictos
    # ------------------------------------------------------------------

    @staticmethod
    def _priority(item: ScheduleItem) -> Tuple[int, int]:
        # Mayor es mejor: fijo sobre flexible, luego el insertado antes
        return (1 if item.fixed else 0, -item.sequence)

    def remove_conflicts(self) -> int:
        """Elimina el item de menor prioridad en cada solape. Devuelve cuántos se eliminaron."""
        removed = 0
        ordered = self.items
        kept: List[ScheduleItem] = []
        for item in ordered:
            loser = None
            for other in kept:
                if other.overlaps(item.start, item.end):
                    loser = item if self._priority(other) >= self._priority(item) else other
                    break
            if loser is None:
                kept.append(item)
                continue
            if loser is not item:
                kept.remove(loser)
                kept.append(item)
            removed += 1
            self._items.remove(loser)
            winner = item if loser is not item else other
            logging.info(f"🔧 Conflicto resuelto: se mantiene '{winner.title}', se elimina '{loser.title}'")
            self.events.emit(
                CONFLICT_RESOLVED,
                date=self.date.isoformat(),
                kept=winner.id,
                removed=loser.id,
            )
        if removed:
            # Una eliminación puede dejar solapes con items ya aceptados
            removed += self.remove_conflicts()
        return removed

    def remove_items_before(self, moment: datetime,
                            protected_types: Iterable[str] = DEFAULT_PROTECTED_TYPES) -> int:
        """Elimina items no protegidos que empiezan antes de `moment`."""
        protected = set(protected_types)
        doomed = [item for item in self._items if item.start < moment and item.type not in protected]
        for item in doomed:
            self._items.remove(item)
            logging.info(f"🧹 '{item.title}' eliminado: empieza antes de {moment:%H:%M}")
        return len(doomed)

    def validate(self) -> ScheduleValidation:
        conflicts = []
        ordered = self.items
        for i, item in enumerate(ordered):
            for other in ordered[i + 1:]:
                if other.start >= item.end:
                    break
                if item.overlaps(other.start, other.end):
                    conflicts.append((item.id, other.id))
        return ScheduleValidation(valid=not conflicts, conflicts=conflicts)
