"""
🕐 Utilidades de tiempo: HH:MM, fechas de día y horarios de apertura
"""
from datetime import date, datetime, time, timedelta
from typing import Optional, Tuple

from models.schemas import Candidate, OpeningHours, WEEKDAYS


def parse_hhmm(value: str) -> Tuple[int, int]:
    hours, minutes = value.split(':')
    return int(hours), int(minutes)


def at_time(day: date, value: str) -> datetime:
    """Combina una fecha con un 'HH:MM'. '24:00' se interpreta como medianoche siguiente."""
    hours, minutes = parse_hhmm(value)
    if hours >= 24:
        return datetime.combine(day, time(0, minutes)) + timedelta(days=1)
    return datetime.combine(day, time(hours, minutes))


def at_hour(day: date, hour: float) -> datetime:
    return datetime.combine(day, time(0, 0)) + timedelta(minutes=round(hour * 60))


def minutes_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 60.0


def format_hhmm(moment: datetime, day: date) -> str:
    """
    Formatea un instante como HH:MM relativo al día del itinerario.

    Instantes de días anteriores se muestran como 00:00 y de días
    posteriores como 23:59, para que el rango siga siendo legible.
    """
    if moment.date() < day:
        return "00:00"
    if moment.date() > day:
        return "23:59"
    return moment.strftime("%H:%M")


def resolve_opening_hours(
    candidate: Candidate,
    day: date
) -> Tuple[bool, Optional[datetime], Optional[datetime]]:
    """
    Resuelve el horario de un candidato para una fecha concreta.

    Returns:
        (abierto, apertura, cierre). Sin datos de horario se asume abierto
        todo el día y apertura/cierre son None.
    """
    hours = candidate.opening_hours
    if hours is None:
        return True, None, None

    if isinstance(hours, dict):
        weekday = WEEKDAYS[day.weekday()]
        if weekday not in hours:
            # Día sin información: no se bloquea la visita
            return True, None, None
        hours = hours[weekday]
        if hours is None:
            return False, None, None

    if not isinstance(hours, OpeningHours):
        return True, None, None

    opening = at_time(day, hours.open)
    closing = at_time(day, hours.close)
    if closing <= opening:
        # Cierre pasada la medianoche
        closing += timedelta(days=1)
    return True, opening, closing
