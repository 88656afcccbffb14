"""
🧭 Directions Enricher - Distancias/tiempos reales para los tramos del día

El proveedor de direcciones es externo (Google, OSRM, ...). Las consultas se
lanzan en paralelo con semáforo y timeout por llamada; si una falla o expira
el tramo conserva su estimación previa.
"""
import asyncio
import logging
from typing import Dict, List, Optional, Tuple

from models.schemas import TripDay, TripItem
from services.quality_gate import is_route_item
from settings import settings
from utils.geo_utils import LatLng, distance_between, is_valid_point
from utils.planner_events import DIRECTIONS_FALLBACK, NullEventSink, PlannerEventSink


class DirectionsProvider:
    """Interfaz del proveedor externo"""

    async def get_directions(self, origin: LatLng, destination: LatLng, mode: str) -> Optional[Dict]:
        """Devuelve {'distance_km': float, 'duration_minutes': float} o None."""
        raise NotImplementedError


class DirectionsEnricher:
    def __init__(self, provider: DirectionsProvider, config=None,
                 events: Optional[PlannerEventSink] = None):
        self.provider = provider
        self.config = config or settings
        self.events = events or NullEventSink()
        self.logger = logging.getLogger(__name__)

    def _pending_legs(self, days: List[TripDay]) -> List[Tuple[TripDay, TripItem, LatLng, LatLng, str]]:
        cfg = self.config
        legs = []
        for day in days:
            previous: Optional[TripItem] = None
            for item in sorted(day.items, key=lambda i: i.order_index):
                if not is_route_item(item) or not is_valid_point(item.lat, item.lng):
                    continue
                if previous is not None:
                    origin = (previous.lat, previous.lng)
                    destination = (item.lat, item.lng)
                    km = distance_between(origin, destination)
                    if km >= cfg.DIRECTIONS_MIN_LEG_KM:
                        mode = "walk" if km <= 2.0 else "transit"
                        legs.append((day, item, origin, destination, mode))
                previous = item
        return legs

    async def enrich(self, days: List[TripDay]) -> int:
        """Actualiza los tramos in situ. Devuelve cuántos se enriquecieron."""
        legs = self._pending_legs(days)
        if not legs:
            return 0

        self.logger.info(f"🗺️ Consultando {len(legs)} tramos en paralelo")

        # Crear semáforo para limitar concurrencia
        semaphore = asyncio.Semaphore(self.config.MAX_CONCURRENT_REQUESTS)
        tasks = [
            self._throttled_directions(origin, destination, mode, semaphore)
            for _, _, origin, destination, mode in legs
        ]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        enriched = 0
        for (day, item, _, _, _), result in zip(legs, results):
            if isinstance(result, Exception) or not result:
                reason = type(result).__name__ if isinstance(result, Exception) else "empty"
                self.logger.warning(f"⚠️ Día {day.day_number}: sin direcciones para '{item.title}' ({reason}), se mantiene la estimación")
                self.events.emit(DIRECTIONS_FALLBACK, day_number=day.day_number, item_id=item.id, reason=reason)
                continue
            try:
                distance = float(result['distance_km'])
                duration = float(result['duration_minutes'])
            except (KeyError, TypeError, ValueError) as e:
                self.logger.warning(f"⚠️ Respuesta de direcciones inválida para '{item.title}': {e}")
                self.events.emit(DIRECTIONS_FALLBACK, day_number=day.day_number, item_id=item.id, reason="invalid")
                continue
            item.distance_from_previous_km = round(distance, 3)
            item.time_from_previous_min = round(duration, 1)
            enriched += 1

        self.logger.info(f"✅ Direcciones: {enriched}/{len(legs)} tramos enriquecidos")
        return enriched

    async def _throttled_directions(self, origin: LatLng, destination: LatLng, mode: str,
                                    semaphore: asyncio.Semaphore) -> Optional[Dict]:
        """🎛️ Consulta throttled con semáforo y timeout"""
        async with semaphore:
            return await asyncio.wait_for(
                self.provider.get_directions(origin, destination, mode),
                timeout=self.config.DIRECTIONS_TIMEOUT_S,
            )
