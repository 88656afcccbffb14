"""
⚖️ Capacity Rebalancer - Ajusta clusters a las horas disponibles por día

El primer y último día pierden horas por llegada/salida. Un día sin
capacidad cede todos sus candidatos; un día sobrecargado cede los últimos
de su orden de visita.
"""
import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import List, Optional

from itinerary.logistics import LegWindow
from models.schemas import Candidate
from services.geo_clusterer import Cluster, optimize_visit_order
from settings import settings
from utils.planner_events import CANDIDATE_DROPPED, CANDIDATE_MOVED, NullEventSink, PlannerEventSink


@dataclass
class RebalanceResult:
    clusters: List[Cluster]
    available_hours: List[float]
    max_per_day: List[int]
    dropped: List[Candidate] = field(default_factory=list)


def _hours_since_midnight(moment: datetime, day: date) -> float:
    """Horas desde la medianoche de `day` (puede superar 24 o ser negativa)."""
    return (moment - datetime.combine(day, time(0, 0))).total_seconds() / 3600.0


class CapacityRebalancer:
    def __init__(self, config=None, events: Optional[PlannerEventSink] = None):
        self.config = config or settings
        self.events = events or NullEventSink()
        self.logger = logging.getLogger(__name__)

    def available_hours(
        self,
        num_days: int,
        start_date: date,
        inbound: Optional[LegWindow] = None,
        outbound: Optional[LegWindow] = None
    ) -> List[float]:
        cfg = self.config
        hours = [cfg.DEFAULT_AVAILABLE_HOURS] * num_days
        last_day = start_date + timedelta(days=num_days - 1)

        arrival_ready = None
        if inbound is not None:
            arrival_ready = _hours_since_midnight(inbound.arrival, start_date) + cfg.ARRIVAL_SETTLE_HOURS
            hours[0] = max(0.0, cfg.ARRIVAL_DAY_END_HOUR - arrival_ready)

        if outbound is not None:
            leave_by = _hours_since_midnight(outbound.departure, last_day) - cfg.DEPARTURE_BUFFER_HOURS
            if num_days == 1 and arrival_ready is not None:
                # Llegada y salida el mismo día
                hours[-1] = max(0.0, leave_by - arrival_ready)
            else:
                hours[-1] = max(0.0, leave_by - cfg.DEPARTURE_DAY_START_HOUR)
        return hours

    def rebalance(
        self,
        clusters: List[Cluster],
        start_date: date,
        inbound: Optional[LegWindow] = None,
        outbound: Optional[LegWindow] = None
    ) -> RebalanceResult:
        cfg = self.config
        num_days = len(clusters)
        hours = self.available_hours(num_days, start_date, inbound, outbound)
        # Un day-trip ocupa un día completo
        for i, cluster in enumerate(clusters):
            if cluster.is_day_trip:
                hours[i] = cfg.DEFAULT_AVAILABLE_HOURS
        max_per_day = [int(math.floor(h / cfg.HOURS_PER_ACTIVITY)) for h in hours]
        dropped: List[Candidate] = []
        touched = set()

        self.logger.info(
            f"⚖️ Capacidad por día: {[f'{h:.1f}h/{m}' for h, m in zip(hours, max_per_day)]}"
        )

        # Pasada 1: vaciar días sin capacidad
        for i, cluster in enumerate(clusters):
            if cluster.is_day_trip or max_per_day[i] > 0:
                continue
            while cluster.candidates:
                candidate = cluster.candidates[-1]
                receiver = self._best_receiver(clusters, max_per_day, exclude=i)
                cluster.remove(candidate)
                touched.add(i)
                if receiver is None:
                    dropped.append(candidate)
                    self.logger.warning(f"🗑️ {candidate.name} descartado: ningún día puede recibirlo")
                    self.events.emit(CANDIDATE_DROPPED, candidate_id=candidate.id, day_number=cluster.day_number)
                    continue
                clusters[receiver].add(candidate)
                touched.add(receiver)
                self._log_move(candidate, cluster, clusters[receiver], "zero_capacity")

        # Pasada 2: recortar días sobrecargados
        for i, cluster in enumerate(clusters):
            if cluster.is_day_trip:
                continue
            while cluster.size > max_per_day[i]:
                receiver = self._best_receiver(clusters, max_per_day, exclude=i)
                if receiver is None or self._remaining(clusters, max_per_day, receiver) <= 0:
                    self.logger.info(f"⚠️ Día {cluster.day_number} sigue sobre su capacidad ({cluster.size}/{max_per_day[i]})")
                    break
                candidate = cluster.candidates[-1]
                cluster.remove(candidate)
                clusters[receiver].add(candidate)
                touched.update((i, receiver))
                self._log_move(candidate, cluster, clusters[receiver], "over_capacity")

        for i in sorted(touched):
            optimize_visit_order(clusters[i], cfg.TWO_OPT_MIN_GAIN_KM)

        return RebalanceResult(clusters=clusters, available_hours=hours, max_per_day=max_per_day, dropped=dropped)

    def _remaining(self, clusters: List[Cluster], max_per_day: List[int], index: int) -> int:
        return max_per_day[index] - clusters[index].size

    def _best_receiver(self, clusters: List[Cluster], max_per_day: List[int], exclude: int) -> Optional[int]:
        """Día con más capacidad restante (nunca el day-trip ni días sin capacidad)."""
        options = [
            i for i, cluster in enumerate(clusters)
            if i != exclude and not cluster.is_day_trip and max_per_day[i] > 0
        ]
        if not options:
            return None
        return max(options, key=lambda i: (self._remaining(clusters, max_per_day, i), -i))

    def _log_move(self, candidate: Candidate, source: Cluster, target: Cluster, reason: str):
        self.logger.info(f"↪️ {candidate.name}: día {source.day_number} → día {target.day_number} ({reason})")
        self.events.emit(
            CANDIDATE_MOVED,
            candidate_id=candidate.id,
            from_day=source.day_number,
            to_day=target.day_number,
            reason=reason,
        )
