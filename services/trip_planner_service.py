import asyncio
import time
import logging
from collections import Counter
from datetime import timedelta
from typing import Dict, List, Optional, Tuple

from itinerary.logistics import resolve_leg_window
from itinerary.planning_context import PlanningContext
from itinerary.schedule_assembler import ScheduleAssembler
from models.schemas import Candidate, ItemType, TripDay, TripRequest, TripResponse
from services.capacity_rebalancer import CapacityRebalancer
from services.candidate_curator import CandidateCurator
from services.city_density_profiler import CityDensityProfiler
from services.day_advisor import DayAdvisor, resolve_day_plans
from services.directions_enricher import DirectionsEnricher, DirectionsProvider
from services.geo_clusterer import Cluster, GeoClusterer
from services.quality_gate import QualityGate
from settings import settings
from utils.exceptions import PlannerInvariantError
from utils.planner_events import EventRecorder, FanOutEventSink, LoggingEventSink


class TripPlannerService:
    """Servicio principal: candidatos → días programados + validación"""

    def __init__(self, config=None, advisor: Optional[DayAdvisor] = None,
                 directions_provider: Optional[DirectionsProvider] = None,
                 log_events: bool = True):
        self.config = config or settings
        self.advisor = advisor
        self.directions_provider = directions_provider
        self.log_events = log_events
        self.logger = logging.getLogger(__name__)

    def _new_context(self) -> Tuple[PlanningContext, EventRecorder]:
        recorder = EventRecorder()
        sink = FanOutEventSink(recorder, LoggingEventSink()) if self.log_events else recorder
        return PlanningContext(events=sink, config=self.config), recorder

    def plan_trip(self, request: TripRequest) -> TripResponse:
        """Planificación síncrona (sin enriquecimiento de direcciones)"""
        start_time = time.time()
        context, recorder = self._new_context()
        days, dropped, duplicates = self._build_days(request, context)
        response = self._finalize(request, days, dropped, duplicates, context, recorder)
        self.logger.info(f"✅ Viaje planificado en {time.time() - start_time:.3f}s")
        return response

    async def plan_trip_async(self, request: TripRequest) -> TripResponse:
        """Planificación + enriquecimiento de direcciones en paralelo"""
        start_time = time.time()
        context, recorder = self._new_context()
        # El núcleo es CPU puro: no bloquear el event loop
        days, dropped, duplicates = await asyncio.to_thread(self._build_days, request, context)

        if self.directions_provider is not None:
            enricher = DirectionsEnricher(self.directions_provider, self.config, context.events)
            await enricher.enrich(days)

        response = self._finalize(request, days, dropped, duplicates, context, recorder)
        self.logger.info(f"✅ Viaje planificado (async) en {time.time() - start_time:.3f}s")
        return response

    # =========================================================================
    # PIPELINE
    # =========================================================================

    def _build_days(self, request: TripRequest,
                    context: PlanningContext) -> Tuple[List[TripDay], List[Candidate], List[Candidate]]:
        cfg = self.config
        prefs = request.preferences
        num_days = prefs.duration_days
        center = (prefs.dest_coords.lat, prefs.dest_coords.lng)
        if prefs.origin_coords is not None:
            origin = (prefs.origin_coords.lat, prefs.origin_coords.lng)
        elif request.accommodation:
            origin = (request.accommodation.lat, request.accommodation.lng)
        else:
            origin = center

        self.logger.info(f"🚀 Planificando {num_days} días con {len(request.candidates)} candidatos")

        # 1. Prioridad + deduplicación
        curated = CandidateCurator(cfg, context.events).curate(request.candidates, request.extra_pool)

        # 2. Perfil de densidad + clustering
        profile = CityDensityProfiler(cfg).profile(curated.candidates, num_days)
        clusters = GeoClusterer(cfg, context.events).cluster(
            curated.candidates, num_days, center, profile, origin=origin
        )

        # Un único cluster para varios días: completar con días libres
        while len(clusters) < num_days:
            clusters.append(Cluster(day_number=len(clusters) + 1))

        # 3. Capacidad por llegada/salida
        last_day = prefs.start_date + timedelta(days=num_days - 1)
        inbound = resolve_leg_window(request.outbound_leg, prefs.start_date, cfg) if request.outbound_leg else None
        outbound = resolve_leg_window(request.return_leg, last_day, cfg) if request.return_leg else None
        rebalance = CapacityRebalancer(cfg, context.events).rebalance(clusters, prefs.start_date, inbound, outbound)

        # 4. Planes de día (asesor opcional)
        advisor = self.advisor if (self.advisor is not None and cfg.ENABLE_ADVISOR) else None
        plans = resolve_day_plans(rebalance.clusters, advisor, context.events, cfg)

        # 5. Ensamblado
        assembler = ScheduleAssembler(context)
        days = assembler.assemble(
            plans,
            prefs,
            accommodation=request.accommodation,
            meals=request.meals,
            inbound=inbound,
            outbound=outbound,
            reserve_pool=curated.extra_pool + list(rebalance.dropped),
        )
        self._verify_unique_candidates(days)
        return days, rebalance.dropped, curated.duplicates

    def _verify_unique_candidates(self, days: List[TripDay]):
        counts = Counter(
            item.candidate_id for day in days for item in day.items if item.candidate_id
        )
        repeated = [candidate_id for candidate_id, count in counts.items() if count > 1]
        if repeated:
            raise PlannerInvariantError(f"Candidatos programados en más de un día: {repeated}")

    def _finalize(self, request: TripRequest, days: List[TripDay], dropped: List[Candidate],
                  duplicates: List[Candidate], context: PlanningContext, recorder: EventRecorder) -> TripResponse:
        validation = QualityGate(self.config, context.events).validate_and_fix(days, request.accommodation)
        return TripResponse(
            days=days,
            validation=validation,
            cost_breakdown=self.cost_breakdown(request, days),
            dropped_candidate_ids=[c.id for c in dropped],
            duplicate_candidate_ids=[c.id for c in duplicates],
            events=recorder.as_dicts(),
        )

    def cost_breakdown(self, request: TripRequest, days: List[TripDay]) -> Dict[str, float]:
        prefs = request.preferences
        nights = max(1, prefs.duration_days - 1)
        costs = {
            "transport": sum(leg.price for leg in request.transport_legs) * prefs.group_size,
            "accommodation": (request.accommodation.nightly_price * nights) if request.accommodation else 0.0,
            "food": sum(i.estimated_cost for d in days for i in d.items if i.type == ItemType.RESTAURANT.value),
            "activities": sum(i.estimated_cost for d in days for i in d.items if i.type == ItemType.ACTIVITY.value),
        }
        costs = {key: round(value, 2) for key, value in costs.items()}
        costs["total"] = round(sum(costs.values()), 2)
        return costs
