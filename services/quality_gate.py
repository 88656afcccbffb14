"""
✅ Quality Gate - Diagnóstico geográfico y auto-reparación del itinerario

Nunca bloquea la entrega: calcula métricas por día, marca transiciones
implausibles, elimina duplicados obvios y devuelve un score 0-100 con
advertencias y correcciones aplicadas.
"""
import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from models.schemas import (
    Accommodation, GeoDiagnostics, ItemType, TRANSIT_TYPES, LOGISTICS_TYPES,
    TripDay, TripItem, ValidationResult
)
from settings import settings
from utils.geo_utils import (
    LatLng, calculate_centroid, distance_between, estimate_travel_minutes,
    is_valid_point, nearest_rank_percentile
)
from utils.planner_events import AUTO_FIX_APPLIED, NullEventSink, PlannerEventSink
from utils.time_utils import parse_hhmm

MEAL_TITLE_PATTERN = re.compile(
    r'^\s*(breakfast|lunch|dinner|desayuno|almuerzo|cena)\s*[—–:-]\s*(.+?)\s*$',
    re.IGNORECASE
)
MEAL_ALIASES = {"desayuno": "breakfast", "almuerzo": "lunch", "cena": "dinner"}
HOTEL_MEAL_MARKERS = ("à l'hôtel", "hôtel", "hotel")


@dataclass
class RouteLeg:
    origin: TripItem
    destination: TripItem
    direct_km: float
    leg_km: float
    travel_min: float
    gap_min: float


def _minutes(value: str) -> int:
    hours, minutes = parse_hhmm(value)
    return hours * 60 + minutes


def _point(item: TripItem) -> LatLng:
    return item.lat, item.lng


def _is_zero_point(item: TripItem) -> bool:
    return item.lat == 0 and item.lng == 0


def _sorted_items(items: List[TripItem]) -> List[TripItem]:
    return sorted(items, key=lambda item: (_minutes(item.start_time), item.order_index))


def meal_key(item: TripItem) -> Optional[Tuple[str, str]]:
    """(tipo de comida, restaurante) de un item restaurante, o None."""
    if item.type != ItemType.RESTAURANT.value:
        return None
    match = MEAL_TITLE_PATTERN.match(item.title)
    meal_type = item.meal_type
    name = item.title.strip().lower()
    if match:
        meal_type = meal_type or MEAL_ALIASES.get(match.group(1).lower(), match.group(1).lower())
        name = match.group(2).strip().lower()
    if meal_type is None:
        return None
    return meal_type, item.restaurant_id or name


def is_hotel_meal(item: TripItem) -> bool:
    if item.hotel_provided:
        return True
    title = item.title.lower()
    return item.type == ItemType.RESTAURANT.value and any(marker in title for marker in HOTEL_MEAL_MARKERS)


def is_route_item(item: TripItem) -> bool:
    if item.type in LOGISTICS_TYPES:
        return False
    if item.type not in (ItemType.ACTIVITY.value, ItemType.RESTAURANT.value):
        return False
    return not is_hotel_meal(item)


class QualityGate:
    def __init__(self, config=None, events: Optional[PlannerEventSink] = None):
        self.config = config or settings
        self.events = events or NullEventSink()
        self.logger = logging.getLogger(__name__)

    def validate_and_fix(
        self,
        days: List[TripDay],
        accommodation: Optional[Accommodation] = None
    ) -> ValidationResult:
        """Valida el viaje completo; aplica auto-fixes y adjunta geo_diagnostics in situ."""
        warnings: List[str] = []
        auto_fixes: List[str] = []
        penalty = 0

        for day in days:
            penalty += self._dedupe_meals(day, warnings, auto_fixes)
            penalty += self._check_legs(day, warnings)
            penalty += self._check_restaurants(day, warnings)
            penalty += self._check_day_content(day, warnings)

        penalty += self._check_hotel(days, accommodation, warnings)

        score = max(0, 100 - penalty)
        self.logger.info(f"📊 Quality gate: score {score}, {len(warnings)} advertencias, {len(auto_fixes)} correcciones")
        return ValidationResult(score=score, warnings=warnings, auto_fixes=auto_fixes)

    # =========================================================================
    # DUPLICADOS
    # =========================================================================

    def _dedupe_meals(self, day: TripDay, warnings: List[str], auto_fixes: List[str]) -> int:
        cfg = self.config
        seen: Dict[Tuple[str, str], TripItem] = {}
        duplicates: List[TripItem] = []
        for item in _sorted_items(day.items):
            key = meal_key(item)
            if key is None:
                continue
            if key in seen:
                duplicates.append(item)
            else:
                seen[key] = item

        if not duplicates:
            return 0

        doomed = {id(item) for item in duplicates}
        remaining = [item for item in sorted(day.items, key=lambda i: i.order_index) if id(item) not in doomed]
        for index, item in enumerate(remaining):
            item.order_index = index
        day.items = remaining

        for item in duplicates:
            warnings.append(f"Day {day.day_number}: duplicate meal '{item.title}' at {item.start_time}")
            auto_fixes.append(f"Day {day.day_number}: removed duplicate '{item.title}' at {item.start_time}")
            self.events.emit(AUTO_FIX_APPLIED, day_number=day.day_number, removed=item.id, reason="duplicate_meal")
        return cfg.PENALTY_DUPLICATE_MEAL * len(duplicates)

    # =========================================================================
    # TRAMOS
    # =========================================================================

    def route_legs(self, day: TripDay) -> List[RouteLeg]:
        cfg = self.config
        route = [
            item for item in _sorted_items(day.items)
            if is_route_item(item) and is_valid_point(item.lat, item.lng)
        ]
        legs = []
        for prev, curr in zip(route, route[1:]):
            direct = distance_between(_point(prev), _point(curr))
            reported = curr.distance_from_previous_km
            trusted = reported is not None and abs(reported - direct) <= cfg.REPORTED_DISTANCE_TOLERANCE_KM
            leg_km = reported if trusted else direct
            if trusted and curr.time_from_previous_min is not None:
                travel = curr.time_from_previous_min
            else:
                travel = estimate_travel_minutes(direct, cfg)
            gap = _minutes(curr.start_time) - _minutes(prev.end_time)
            legs.append(RouteLeg(prev, curr, direct, leg_km, travel, gap))
        return legs

    def _check_legs(self, day: TripDay, warnings: List[str]) -> int:
        cfg = self.config
        legs = self.route_legs(day)
        leg_kms = [leg.leg_km for leg in legs]
        day.geo_diagnostics = GeoDiagnostics(
            max_leg_km=round(max(leg_kms), 3) if leg_kms else 0.0,
            p95_leg_km=round(nearest_rank_percentile(leg_kms, 0.95), 3),
            total_travel_min=round(sum(leg.travel_min for leg in legs), 1),
        )

        if not cfg.STRICT_GEO_CHECKS:
            return 0

        penalty = 0
        long_legs = 0
        for leg in legs:
            names = f"'{leg.origin.title}' → '{leg.destination.title}'"
            if leg.direct_km > cfg.LONG_LEG_KM:
                long_legs += 1
            if leg.direct_km > cfg.HARD_LONG_LEG_KM and not day.is_day_trip:
                penalty += cfg.PENALTY_HARD_LONG_LEG
                warnings.append(f"Day {day.day_number}: hard long leg {leg.direct_km:.1f} km {names}")

            too_fast = False
            if leg.direct_km > cfg.IMPOSSIBLE_SPEED_MIN_KM:
                if leg.gap_min <= 0:
                    too_fast = True
                else:
                    too_fast = leg.direct_km / (leg.gap_min / 60.0) > cfg.IMPOSSIBLE_SPEED_KMH
            if (leg.direct_km > cfg.HARD_LONG_LEG_KM and leg.gap_min < cfg.IMPOSSIBLE_MIN_GAP_MIN) or too_fast:
                penalty += cfg.PENALTY_IMPOSSIBLE_TRANSITION
                warnings.append(
                    f"Day {day.day_number}: impossible transition {leg.direct_km:.1f} km "
                    f"in {leg.gap_min:.0f} min {names}"
                )

        if long_legs > 1:
            penalty += cfg.PENALTY_TOO_MANY_LONG_LEGS * (long_legs - 1)
            warnings.append(f"Day {day.day_number}: too many long legs ({long_legs} over {cfg.LONG_LEG_KM} km)")
        return penalty

    # =========================================================================
    # RESTAURANTES Y CONTENIDO
    # =========================================================================

    def _check_restaurants(self, day: TripDay, warnings: List[str]) -> int:
        cfg = self.config
        penalty = 0
        activities = [
            _point(item) for item in day.items
            if item.type == ItemType.ACTIVITY.value and is_valid_point(item.lat, item.lng)
        ]
        for item in day.items:
            if item.type != ItemType.RESTAURANT.value or is_hotel_meal(item):
                continue
            if item.data_reliability != "verified":
                penalty += cfg.PENALTY_UNVERIFIED_RESTAURANT
                warnings.append(f"Day {day.day_number}: restaurant without verified data '{item.title}'")
            if activities and is_valid_point(item.lat, item.lng):
                nearest = min(distance_between(_point(item), point) for point in activities)
                if nearest > cfg.RESTAURANT_MAX_DISTANCE_KM:
                    penalty += cfg.PENALTY_FAR_RESTAURANT
                    warnings.append(
                        f"Day {day.day_number}: restaurant far from activities '{item.title}' ({nearest:.1f} km)"
                    )
        return penalty

    def _check_day_content(self, day: TripDay, warnings: List[str]) -> int:
        cfg = self.config
        penalty = 0
        has_activity = any(item.type == ItemType.ACTIVITY.value for item in day.items)
        is_transit = any(item.type in TRANSIT_TYPES for item in day.items)
        if not has_activity and not is_transit:
            penalty += cfg.PENALTY_EMPTY_DAY
            warnings.append(f"Day {day.day_number}: no activities scheduled")

        for item in day.items:
            if item.type in (ItemType.ACTIVITY.value, ItemType.RESTAURANT.value) and _is_zero_point(item):
                penalty += cfg.PENALTY_ZERO_COORDS
                warnings.append(f"Day {day.day_number}: invalid coordinates (0,0) on '{item.title}'")

        ordered = _sorted_items(day.items)
        for prev, curr in zip(ordered, ordered[1:]):
            gap = _minutes(curr.start_time) - _minutes(prev.end_time)
            if gap > cfg.MAX_GAP_MIN:
                penalty += cfg.PENALTY_LARGE_GAP
                warnings.append(
                    f"Day {day.day_number}: large gap of {gap} min between '{prev.title}' and '{curr.title}'"
                )
        return penalty

    def _check_hotel(self, days: List[TripDay], accommodation: Optional[Accommodation], warnings: List[str]) -> int:
        cfg = self.config
        hotel: Optional[LatLng] = None
        if accommodation is not None:
            hotel = (accommodation.lat, accommodation.lng)
        else:
            for day in days:
                for item in day.items:
                    if item.type in (ItemType.CHECKIN.value, ItemType.CHECKOUT.value) and is_valid_point(item.lat, item.lng):
                        hotel = _point(item)
                        break
                if hotel:
                    break
        if hotel is None or not is_valid_point(*hotel):
            return 0

        activities = [
            _point(item) for day in days for item in day.items
            if item.type == ItemType.ACTIVITY.value and is_valid_point(item.lat, item.lng)
        ]
        centroid = calculate_centroid(activities)
        if centroid is None:
            return 0
        distance = distance_between(hotel, centroid)
        if distance > cfg.HOTEL_MAX_CENTROID_KM:
            warnings.append(f"Trip: hotel far from activities ({distance:.1f} km from their centroid)")
            return cfg.PENALTY_FAR_HOTEL
        return 0
