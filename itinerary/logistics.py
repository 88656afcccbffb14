"""
✈️ Ventanas logísticas fijas: transporte de ida/vuelta y alojamiento

Calcula a partir de horarios reales (o de una duración estimada cuando no hay
horario) los instantes que el ensamblador inserta como items fijos.
"""
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

from models.schemas import Accommodation, TransportLeg
from settings import settings
from utils.time_utils import at_hour, at_time

DEFAULT_LEG_DURATION_MIN = 120


@dataclass
class LegWindow:
    leg: TransportLeg
    departure: datetime
    arrival: datetime
    estimated: bool = False

    @property
    def is_flight(self) -> bool:
        return self.leg.is_flight

    @property
    def duration_min(self) -> float:
        return (self.arrival - self.departure).total_seconds() / 60.0


def resolve_leg_window(leg: TransportLeg, day: date, config=None) -> LegWindow:
    """
    Ventana salida/llegada de un tramo.

    Sin horario real: la ida sale a las 08:00 del primer día; la vuelta sale
    a las 14:00 si dura más de 4h, si no a las 15:00.
    """
    cfg = config or settings
    duration = timedelta(minutes=leg.duration_min or DEFAULT_LEG_DURATION_MIN)

    if leg.departure_time and leg.arrival_time:
        return LegWindow(leg, leg.departure_time, leg.arrival_time)
    if leg.departure_time:
        return LegWindow(leg, leg.departure_time, leg.departure_time + duration, estimated=True)
    if leg.arrival_time:
        return LegWindow(leg, leg.arrival_time - duration, leg.arrival_time, estimated=True)

    if leg.direction == "outbound":
        departure = at_hour(day, cfg.DEFAULT_OUTBOUND_DEPARTURE_HOUR)
    elif (leg.duration_min or DEFAULT_LEG_DURATION_MIN) > cfg.LONG_RETURN_LEG_MIN:
        departure = at_hour(day, cfg.LONG_RETURN_DEPARTURE_HOUR)
    else:
        departure = at_hour(day, cfg.SHORT_RETURN_DEPARTURE_HOUR)
    return LegWindow(leg, departure, departure + duration, estimated=True)


def ready_after_arrival(window: LegWindow, config=None) -> datetime:
    """Momento en que el viajero está libre tras llegar (traslado incluido)."""
    cfg = config or settings
    return window.arrival + timedelta(minutes=cfg.AIRPORT_TRANSFER_MIN)


def presentation_buffer_min(window: LegWindow, config=None) -> int:
    cfg = config or settings
    return cfg.AIRPORT_CHECKIN_BUFFER_MIN if window.is_flight else cfg.STATION_BUFFER_MIN


def must_leave_by(window: LegWindow, config=None) -> datetime:
    """Último instante libre antes de salir hacia aeropuerto/estación."""
    cfg = config or settings
    buffer_min = presentation_buffer_min(window, cfg) + cfg.AIRPORT_TRANSFER_MIN
    return window.departure - timedelta(minutes=buffer_min)


def checkin_time(
    accommodation: Accommodation,
    day: date,
    inbound: Optional[LegWindow] = None,
    config=None
) -> datetime:
    cfg = config or settings
    posted = at_time(day, accommodation.check_in_time)
    if inbound is None:
        return posted
    return max(posted, ready_after_arrival(inbound, cfg))


def checkout_time(
    accommodation: Accommodation,
    day: date,
    outbound: Optional[LegWindow] = None,
    config=None
) -> datetime:
    """Hora de check-out, adelantada a 3.5h antes de un vuelo de salida."""
    cfg = config or settings
    posted = at_time(day, accommodation.check_out_time)
    if outbound is None:
        return posted
    if outbound.is_flight:
        cap = outbound.departure - timedelta(hours=cfg.CHECKOUT_BEFORE_FLIGHT_HOURS)
    else:
        cap = must_leave_by(outbound, cfg)
    return min(posted, cap)
