"""
🧩 Schedule Assembler - Construye cada día sobre un DayScheduler

Orden por día:
1. Logística fija (ida/vuelta, check-in/check-out)
2. Desayuno si el día empieza antes de las 10:00
3. Actividades del cluster en su orden de visita
4. Almuerzo/cena cuando el cursor entra en su ventana
5. Relleno de huecos con candidatos cercanos no usados
6. Resolución de conflictos y validación
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Set, Tuple

from itinerary.logistics import (
    LegWindow, checkin_time, checkout_time, must_leave_by, ready_after_arrival
)
from itinerary.planning_context import PlanningContext
from itinerary.scheduler import DEFAULT_PROTECTED_TYPES, DayScheduler, ScheduleItem
from models.schemas import (
    Accommodation, Candidate, ItemType, MealCandidate, Preferences, Restaurant, TripDay, TripItem
)
from services.day_advisor import DayPlan
from utils.geo_utils import (
    LatLng, distance_between, estimate_travel_minutes, is_valid_point, round_up_minutes
)
from utils.planner_events import ITEM_SKIPPED, SCHEDULE_DEFECT
from utils.time_utils import (
    at_hour, at_time, format_hhmm, minutes_between, resolve_opening_hours
)

MEAL_LABELS = {"breakfast": "Breakfast", "lunch": "Lunch", "dinner": "Dinner"}
UNKNOWN_TRAVEL_MIN = 15


@dataclass
class _DayState:
    plan: DayPlan
    day: date
    scheduler: DayScheduler
    position: Optional[LatLng]
    hotel: Optional[LatLng]
    meals: Dict[str, MealCandidate] = field(default_factory=dict)
    pending_meals: Set[str] = field(default_factory=set)
    claimed: Set[str] = field(default_factory=set)
    extras: int = 0
    group_size: int = 1
    first_activity_done: bool = False


class ScheduleAssembler:
    def __init__(self, context: Optional[PlanningContext] = None):
        self.context = context or PlanningContext()
        self.config = self.context.cfg
        self.events = self.context.events
        self.logger = logging.getLogger(__name__)

    # =========================================================================
    # TRIP
    # =========================================================================

    def assemble(
        self,
        plans: List[DayPlan],
        preferences: Preferences,
        accommodation: Optional[Accommodation] = None,
        meals: Optional[List[MealCandidate]] = None,
        inbound: Optional[LegWindow] = None,
        outbound: Optional[LegWindow] = None,
        reserve_pool: Optional[List[Candidate]] = None
    ) -> List[TripDay]:
        """
        Ensambla todos los días del viaje.

        `reserve_pool` son candidatos sin día asignado (pool extra o
        descartados por capacidad); se le suman los candidatos que un día no
        logró colocar para que días posteriores puedan usarlos en el relleno.
        """
        meals = meals or []
        reserve = list(reserve_pool or [])
        days: List[TripDay] = []
        total = len(plans)

        for index, plan in enumerate(plans):
            day = preferences.start_date + timedelta(days=plan.day_number - 1)
            day_meals = {m.meal_type: m for m in meals if m.day_number == plan.day_number}
            trip_day = self.assemble_day(
                plan,
                day,
                preferences,
                is_first=index == 0,
                is_last=index == total - 1,
                accommodation=accommodation,
                meals=day_meals,
                inbound=inbound if index == 0 else None,
                outbound=outbound if index == total - 1 else None,
                pool=reserve,
            )
            days.append(trip_day)
            placed = {item.candidate_id for item in trip_day.items if item.candidate_id}
            reserve.extend(c for c in plan.ordered if c.id not in placed)

        self.logger.info(
            f"✅ Ensamblados {len(days)} días, {len(self.context.registry)} candidatos programados"
        )
        return days

    # =========================================================================
    # DAY
    # =========================================================================

    def assemble_day(
        self,
        plan: DayPlan,
        day: date,
        preferences: Preferences,
        is_first: bool = False,
        is_last: bool = False,
        accommodation: Optional[Accommodation] = None,
        meals: Optional[Dict[str, MealCandidate]] = None,
        inbound: Optional[LegWindow] = None,
        outbound: Optional[LegWindow] = None,
        pool: Optional[List[Candidate]] = None
    ) -> TripDay:
        cfg = self.config
        hotel = (accommodation.lat, accommodation.lng) if accommodation else None
        destination = (preferences.dest_coords.lat, preferences.dest_coords.lng)

        day_start = at_time(day, plan.suggested_start)
        day_end = at_hour(day, cfg.DAY_END_HOUR)
        arrival_ready = ready_after_arrival(inbound, cfg) if inbound else None
        if arrival_ready is not None:
            day_start = max(day_start, arrival_ready)
        if outbound is not None:
            day_end = min(day_end, must_leave_by(outbound, cfg))
            if outbound.departure.date() == day and outbound.departure.hour <= 12:
                day_start = min(day_start, at_hour(day, cfg.EARLY_DEPARTURE_START_HOUR))

        transit_only = day_start >= day_end
        if transit_only:
            self.logger.info(f"✈️ Día {plan.day_number}: solo tránsito ({day_start:%H:%M} → {day_end:%H:%M})")

        scheduler = DayScheduler(day, day_start, day_end, events=self.events,
                                 min_span_min=cfg.MIN_DAY_SPAN_MIN)
        state = _DayState(
            plan=plan,
            day=day,
            scheduler=scheduler,
            position=hotel or plan.cluster.centroid or destination,
            hotel=hotel,
            meals=dict(meals or {}),
            group_size=preferences.group_size,
        )

        # 1. Logística fija
        checkout_item = self._insert_logistics(state, accommodation, inbound, outbound,
                                               is_first, is_last, preferences)
        if arrival_ready is not None:
            scheduler.advance_to(arrival_ready)

        if not transit_only:
            # 2. Desayuno
            if day_start < at_hour(day, cfg.BREAKFAST_BEFORE_HOUR):
                self._insert_breakfast(state, accommodation, is_first)
            if checkout_item is not None:
                # Con equipaje: actividades después del check-out
                scheduler.advance_to(checkout_item.end)

            state.pending_meals = {
                meal_type for meal_type in ("lunch", "dinner")
                if self._restaurant_for(state, meal_type) is not None
            }

            # 3-4. Actividades del cluster con comidas oportunistas
            for candidate in plan.ordered:
                self._maybe_insert_meals(state)
                self._place_activity(state, candidate, preferences)

            if plan.is_day_trip and state.first_activity_done:
                self._insert_day_trip_return(state)

            # 5. Relleno de huecos y comidas pendientes
            self._fill_remaining(state, pool or [], preferences)

        # Purga de seguridad: nada turístico antes de estar disponible
        if arrival_ready is not None:
            scheduler.remove_items_before(arrival_ready, DEFAULT_PROTECTED_TYPES)

        # 6. Conflictos y validación
        removed = scheduler.remove_conflicts()
        if removed:
            self.logger.warning(f"🔧 Día {plan.day_number}: {removed} conflictos resueltos")
        validation = scheduler.validate()
        if not validation.valid:
            self.logger.error(f"❌ Día {plan.day_number}: solapes sin resolver {validation.conflicts}")
            self.events.emit(SCHEDULE_DEFECT, day_number=plan.day_number, conflicts=validation.conflicts)

        self._release_unplaced(state)
        items = self._to_trip_items(state, preferences)
        return TripDay(
            day_number=plan.day_number,
            date=day,
            items=items,
            theme=plan.theme,
            narrative=plan.narrative,
            is_day_trip=plan.is_day_trip,
        )

    # =========================================================================
    # 1. LOGÍSTICA
    # =========================================================================

    def _insert_logistics(
        self,
        state: _DayState,
        accommodation: Optional[Accommodation],
        inbound: Optional[LegWindow],
        outbound: Optional[LegWindow],
        is_first: bool,
        is_last: bool,
        preferences: Preferences
    ) -> Optional[ScheduleItem]:
        cfg = self.config
        scheduler = state.scheduler
        lodging = state.hotel or state.position
        checkout_item = None

        if inbound is not None:
            leg = inbound.leg
            arrival_point = (leg.destination.lat, leg.destination.lng) if leg.destination else lodging
            scheduler.insert_fixed_item(
                "leg-inbound",
                leg.label or ("Vuelo de llegada" if inbound.is_flight else "Viaje de llegada"),
                ItemType.FLIGHT.value if inbound.is_flight else ItemType.TRANSPORT.value,
                inbound.departure,
                inbound.arrival,
                data=self._logistics_data(arrival_point, leg.price * preferences.group_size,
                                          "estimated" if inbound.estimated else "verified"),
            )
            scheduler.insert_fixed_item(
                "transfer-arrival",
                "Traslado al alojamiento",
                ItemType.TRANSFER.value,
                inbound.arrival,
                ready_after_arrival(inbound, cfg),
                data=self._logistics_data(lodging, 0.0, "generated"),
            )

        if is_first and accommodation is not None:
            start = checkin_time(accommodation, state.day, inbound, cfg)
            end = start + timedelta(minutes=cfg.CHECKIN_DURATION_MIN)
            data = self._logistics_data(state.hotel, 0.0, "verified")
            placed = scheduler.insert_fixed_item("checkin", f"Check-in {accommodation.name}",
                                                 ItemType.CHECKIN.value, start, end, data=data)
            if placed is None:
                # Ventana ocupada: colocar en el primer hueco posterior
                scheduler.add_item("checkin", f"Check-in {accommodation.name}", ItemType.CHECKIN.value,
                                   cfg.CHECKIN_DURATION_MIN, min_start_time=start, data=data,
                                   advance=False)

        if is_last and not is_first and accommodation is not None:
            end = checkout_time(accommodation, state.day, outbound, cfg)
            start = end - timedelta(minutes=cfg.CHECKOUT_DURATION_MIN)
            checkout_item = scheduler.insert_fixed_item(
                "checkout", f"Check-out {accommodation.name}", ItemType.CHECKOUT.value,
                start, end, data=self._logistics_data(state.hotel, 0.0, "verified"),
            )

        if outbound is not None:
            leg = outbound.leg
            leave_by = must_leave_by(outbound, cfg)
            departure_point = (leg.origin.lat, leg.origin.lng) if leg.origin else lodging
            scheduler.insert_fixed_item(
                "transfer-departure",
                "Traslado y embarque" if outbound.is_flight else "Traslado a la estación",
                ItemType.TRANSFER.value,
                leave_by,
                outbound.departure,
                data=self._logistics_data(departure_point, 0.0, "generated"),
            )
            scheduler.insert_fixed_item(
                "leg-return",
                leg.label or ("Vuelo de regreso" if outbound.is_flight else "Viaje de regreso"),
                ItemType.FLIGHT.value if outbound.is_flight else ItemType.TRANSPORT.value,
                outbound.departure,
                outbound.arrival,
                data=self._logistics_data(departure_point, leg.price * preferences.group_size,
                                          "estimated" if outbound.estimated else "verified"),
            )
        return checkout_item

    @staticmethod
    def _logistics_data(point: Optional[LatLng], cost: float, reliability: str) -> Dict:
        return {
            "lat": point[0] if point else 0.0,
            "lng": point[1] if point else 0.0,
            "cost": cost,
            "reliability": reliability,
        }

    # =========================================================================
    # 2-4. COMIDAS
    # =========================================================================

    def _restaurant_for(self, state: _DayState, meal_type: str) -> Optional[Restaurant]:
        meal = state.meals.get(meal_type)
        return meal.restaurant if meal is not None else None

    def _insert_breakfast(self, state: _DayState, accommodation: Optional[Accommodation], is_first: bool):
        cfg = self.config
        day = state.day
        min_start = max(state.scheduler.cursor, at_time(day, cfg.BREAKFAST_EARLIEST))
        max_end = at_time(day, cfg.BREAKFAST_LATEST_END)

        if accommodation is not None and accommodation.breakfast_included and not is_first:
            item = state.scheduler.add_item(
                f"breakfast-{state.plan.day_number}",
                f"{MEAL_LABELS['breakfast']} — {accommodation.name} (hotel)",
                ItemType.RESTAURANT.value,
                cfg.BREAKFAST_DURATION_MIN,
                min_start_time=min_start,
                max_end_time=max_end,
                data={
                    "lat": accommodation.lat, "lng": accommodation.lng, "cost": 0.0,
                    "reliability": "estimated", "meal_type": "breakfast", "hotel_provided": True,
                },
            )
            if item is not None:
                state.position = (accommodation.lat, accommodation.lng)
            return

        self._insert_meal(state, "breakfast", min_start, max_end)

    def _insert_meal(self, state: _DayState, meal_type: str,
                     min_start: datetime, max_end: datetime) -> Optional[ScheduleItem]:
        cfg = self.config
        restaurant = self._restaurant_for(state, meal_type)
        if restaurant is None:
            return None

        point = (restaurant.lat, restaurant.lng) if restaurant.has_valid_coords else None
        duration = {
            "breakfast": cfg.BREAKFAST_DURATION_MIN,
            "lunch": cfg.LUNCH_DURATION_MIN,
            "dinner": cfg.DINNER_DURATION_MIN,
        }[meal_type]
        cost = restaurant.estimated_cost
        if cost is None:
            cost = (restaurant.price_level or 0) * cfg.RESTAURANT_COST_PER_PRICE_LEVEL

        item = state.scheduler.add_item(
            f"{meal_type}-{state.plan.day_number}",
            f"{MEAL_LABELS[meal_type]} — {restaurant.name}",
            ItemType.RESTAURANT.value,
            duration,
            travel_time=self._travel_minutes(state.position, point),
            min_start_time=min_start,
            max_end_time=max_end,
            data={
                "lat": point[0] if point else 0.0,
                "lng": point[1] if point else 0.0,
                "cost": cost * state.group_size,
                "reliability": "verified" if restaurant.verified else "estimated",
                "meal_type": meal_type,
                "restaurant_id": restaurant.id,
                "description": ", ".join(restaurant.cuisine_tags) or None,
            },
        )
        if item is not None and point is not None:
            state.position = point
        if item is None:
            self.logger.debug(f"🍽️ {meal_type} no cabe en el día {state.plan.day_number}")
        return item

    def _maybe_insert_meals(self, state: _DayState):
        """Inserta almuerzo/cena si el cursor está dentro de su ventana."""
        cfg = self.config
        day = state.day
        cursor = state.scheduler.cursor

        if "lunch" in state.pending_meals and \
                at_time(day, cfg.LUNCH_WINDOW_START) <= cursor < at_time(day, cfg.LUNCH_WINDOW_END):
            if self._insert_meal(state, "lunch", at_time(day, cfg.LUNCH_MIN_START),
                                 at_time(day, cfg.LUNCH_WINDOW_END)):
                state.pending_meals.discard("lunch")

        cursor = state.scheduler.cursor
        if "dinner" in state.pending_meals and \
                at_time(day, cfg.DINNER_WINDOW_START) <= cursor < at_time(day, cfg.DINNER_WINDOW_END):
            if self._insert_meal(state, "dinner", at_time(day, cfg.DINNER_MIN_START),
                                 at_time(day, cfg.DINNER_LATEST_END)):
                state.pending_meals.discard("dinner")

    def _insert_pending_meal(self, state: _DayState, meal_type: str):
        """Última oportunidad para una comida pendiente (ventana ampliada)."""
        cfg = self.config
        day = state.day
        if meal_type == "lunch":
            item = self._insert_meal(state, "lunch", at_time(day, cfg.LUNCH_MIN_START),
                                     at_time(day, cfg.LUNCH_FALLBACK_END))
        else:
            item = self._insert_meal(state, "dinner", at_time(day, cfg.DINNER_MIN_START),
                                     at_time(day, cfg.DINNER_LATEST_END))
        if item is None:
            self.logger.info(f"🍽️ Día {state.plan.day_number}: {meal_type} omitido, sin hueco")
        state.pending_meals.discard(meal_type)

    # =========================================================================
    # 3. ACTIVIDADES
    # =========================================================================

    def _travel_minutes(self, origin: Optional[LatLng], destination: Optional[LatLng],
                        speed_kmh: Optional[float] = None) -> int:
        if origin is None or destination is None or not is_valid_point(*origin) or not is_valid_point(*destination):
            return UNKNOWN_TRAVEL_MIN
        km = distance_between(origin, destination)
        if speed_kmh:
            minutes = km / speed_kmh * 60.0
        else:
            minutes = estimate_travel_minutes(km, self.config)
        return round_up_minutes(minutes, self.config.TRAVEL_ROUNDING_MIN)

    def _activity_duration(self, candidate: Candidate, preferences: Preferences, day_trip: bool) -> int:
        cfg = self.config
        factor = cfg.PACING_FACTORS.get(preferences.pacing, 1.0)
        duration = int(round(candidate.duration_min * factor))
        if day_trip:
            duration = max(duration, cfg.DAY_TRIP_MIN_ACTIVITY_MIN)
        return max(duration, 15)

    def _place_activity(self, state: _DayState, candidate: Candidate, preferences: Preferences,
                        latest_end: Optional[datetime] = None) -> bool:
        cfg = self.config
        registry = self.context.registry
        day_number = state.plan.day_number

        if registry.is_used(candidate.id):
            self.logger.debug(f"♻️ {candidate.name} ya programado en otro día")
            return False

        is_open, opening, closing = resolve_opening_hours(candidate, state.day)
        if not is_open:
            self.logger.info(f"🚪 {candidate.name} cerrado el {state.day.isoformat()}, se omite")
            self.events.emit(ITEM_SKIPPED, candidate_id=candidate.id, day_number=day_number, reason="closed")
            return False

        day_trip = state.plan.is_day_trip
        duration = self._activity_duration(candidate, preferences, day_trip)
        point = (candidate.lat, candidate.lng) if candidate.has_valid_coords else None
        speed = cfg.DAY_TRIP_SPEED_KMH if day_trip and not state.first_activity_done else None
        travel = self._travel_minutes(state.position, point, speed)

        max_end = None
        if closing is not None:
            max_end = closing - timedelta(minutes=cfg.CLOSING_SAFETY_MARGIN_MIN)
        if latest_end is not None:
            max_end = latest_end if max_end is None else min(max_end, latest_end)

        if not registry.claim(candidate.id):
            return False

        data = {
            "lat": point[0] if point else 0.0,
            "lng": point[1] if point else 0.0,
            "cost": candidate.estimated_cost * preferences.group_size,
            "reliability": candidate.data_reliability if point else "generated",
            "candidate_id": candidate.id,
            "description": candidate.category,
        }
        item = state.scheduler.add_item(candidate.id, candidate.name, ItemType.ACTIVITY.value,
                                        duration, travel, min_start_time=opening,
                                        max_end_time=max_end, data=data)

        if item is None and candidate.must_see:
            shorter = max(cfg.MUST_SEE_MIN_DURATION_MIN, duration // 2)
            if shorter < duration:
                item = state.scheduler.add_item(candidate.id, candidate.name, ItemType.ACTIVITY.value,
                                                shorter, travel, min_start_time=opening,
                                                max_end_time=max_end, data=data)
                if item is not None:
                    self.logger.info(f"⭐ {candidate.name} (imperdible) acortado a {shorter} min")

        if item is None:
            registry.release(candidate.id)
            self.logger.info(f"⏭️ {candidate.name} no cabe en el día {day_number}")
            self.events.emit(ITEM_SKIPPED, candidate_id=candidate.id, day_number=day_number, reason="no_fit")
            return False

        state.claimed.add(candidate.id)
        state.first_activity_done = True
        if point is not None:
            state.position = point
        return True

    def _insert_day_trip_return(self, state: _DayState):
        cfg = self.config
        target = state.hotel
        travel = self._travel_minutes(state.position, target, cfg.DAY_TRIP_SPEED_KMH)
        if target is None or travel < cfg.RETURN_TRANSPORT_MIN_TRAVEL_MIN:
            return
        item = state.scheduler.add_item(
            f"return-{state.plan.day_number}",
            "Regreso al alojamiento",
            ItemType.TRANSPORT.value,
            travel,
            data=self._logistics_data(target, 0.0, "estimated"),
        )
        if item is not None:
            state.position = target

    # =========================================================================
    # 5. GAP-FILL
    # =========================================================================

    def _next_boundary(self, state: _DayState) -> Tuple[datetime, Optional[str]]:
        cfg = self.config
        day = state.day
        cursor = state.scheduler.cursor
        lunch_start = at_time(day, cfg.LUNCH_WINDOW_START)
        dinner_start = at_time(day, cfg.DINNER_WINDOW_START)
        if "lunch" in state.pending_meals and cursor < at_time(day, cfg.LUNCH_FALLBACK_END):
            return max(cursor, lunch_start), "lunch"
        if "dinner" in state.pending_meals and cursor < at_time(day, cfg.DINNER_WINDOW_END):
            return max(cursor, dinner_start), "dinner"
        return state.scheduler.day_end, None

    def _try_gap_fill(self, state: _DayState, pool: List[Candidate],
                      preferences: Preferences, boundary: datetime) -> bool:
        cfg = self.config
        if not cfg.ENABLE_GAP_FILL or state.extras >= cfg.GAP_FILL_MAX_EXTRA:
            return False
        if state.position is None:
            return False
        if minutes_between(state.scheduler.cursor, boundary) < cfg.GAP_FILL_MIN_GAP_MIN:
            return False

        options = []
        for candidate in pool:
            if not candidate.has_valid_coords or self.context.registry.is_used(candidate.id):
                continue
            km = distance_between(state.position, (candidate.lat, candidate.lng))
            if km <= cfg.GAP_FILL_RADIUS_KM:
                options.append((km, candidate.id, candidate))

        for _, _, candidate in sorted(options, key=lambda option: (option[0], option[1])):
            if self._place_activity(state, candidate, preferences, latest_end=boundary):
                state.extras += 1
                self.logger.info(f"🧩 Hueco rellenado con {candidate.name}")
                return True
        return False

    def _fill_remaining(self, state: _DayState, pool: List[Candidate], preferences: Preferences):
        while True:
            self._maybe_insert_meals(state)
            boundary, meal_type = self._next_boundary(state)
            if self._try_gap_fill(state, pool, preferences, boundary):
                continue
            if meal_type is None:
                break
            self._insert_pending_meal(state, meal_type)

    # =========================================================================
    # SALIDA
    # =========================================================================

    def _release_unplaced(self, state: _DayState):
        """Libera candidatos reclamados cuyo item fue eliminado por conflictos/purga."""
        for candidate_id in list(state.claimed):
            if not state.scheduler.has_item(candidate_id):
                self.context.registry.release(candidate_id)
                state.claimed.discard(candidate_id)

    def _to_trip_items(self, state: _DayState, preferences: Preferences) -> List[TripItem]:
        items = []
        previous_point: Optional[LatLng] = None
        for index, entry in enumerate(state.scheduler.items):
            data = entry.data
            point = (data.get("lat", 0.0), data.get("lng", 0.0))
            route_item = (
                entry.type in (ItemType.ACTIVITY.value, ItemType.RESTAURANT.value)
                and not data.get("hotel_provided", False)
            )
            distance = None
            travel = None
            if route_item and is_valid_point(*point):
                if previous_point is not None:
                    distance = round(distance_between(previous_point, point), 3)
                    travel = float(entry.travel_time_from_previous)
                previous_point = point

            items.append(TripItem(
                id=entry.id,
                day_number=state.plan.day_number,
                start_time=format_hhmm(entry.start, state.day),
                end_time=format_hhmm(entry.end, state.day),
                type=entry.type,
                title=entry.title,
                lat=point[0],
                lng=point[1],
                estimated_cost=round(float(data.get("cost", 0.0)), 2),
                order_index=index,
                data_reliability=data.get("reliability", "generated"),
                duration_min=entry.duration_min,
                distance_from_previous_km=distance,
                time_from_previous_min=travel,
                meal_type=data.get("meal_type"),
                hotel_provided=data.get("hotel_provided", False),
                candidate_id=data.get("candidate_id"),
                restaurant_id=data.get("restaurant_id"),
                description=data.get("description"),
            ))
        return items
