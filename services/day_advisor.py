"""
🧠 Day Advisor - Temas y orden sugerido por día

Un asesor externo (p. ej. un LLM) puede proponer tema, narrativa y orden de
visita para un día. Es opcional: el asesor determinista produce siempre un
plan completo a partir del orden geográfico del cluster.
"""
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import List, Optional

from models.schemas import Candidate
from services.geo_clusterer import Cluster
from settings import settings
from utils.planner_events import ADVISOR_FALLBACK, NullEventSink, PlannerEventSink

logger = logging.getLogger(__name__)

THEME_KEYWORDS = [
    ("Cultura y museos", ("museum", "museo", "gallery", "galeria", "art_gallery")),
    ("Naturaleza y parques", ("park", "parque", "garden", "jardin", "natural", "beach", "viewpoint")),
    ("Mercados y compras", ("market", "mercado", "shopping", "store")),
    ("Historia y patrimonio", ("palace", "palacio", "castle", "castillo", "monument", "historic")),
    ("Espiritualidad", ("church", "iglesia", "cathedral", "temple", "templo", "mosque")),
]
DEFAULT_THEME = "Exploración"
DAY_TRIP_THEME = "Excursión de un día"


@dataclass
class DayHint:
    activity_order: List[str]
    theme: Optional[str] = None
    narrative: Optional[str] = None
    suggested_start: Optional[str] = None


@dataclass
class DayPlan:
    day_number: int
    cluster: Cluster
    ordered: List[Candidate] = field(default_factory=list)
    theme: str = DEFAULT_THEME
    narrative: str = ""
    suggested_start: str = "09:00"
    advisor_used: bool = False

    @property
    def is_day_trip(self) -> bool:
        return self.cluster.is_day_trip


class DayAdvisor:
    """Capacidad opcional: proponer orden/tema de un cluster o None si no puede."""

    def propose_order(self, cluster: Cluster) -> Optional[DayHint]:
        raise NotImplementedError


class DeterministicAdvisor(DayAdvisor):
    """Orden geográfico del cluster + tema por categorías dominantes"""

    def __init__(self, config=None):
        self.config = config or settings

    def theme_for(self, cluster: Cluster) -> str:
        if cluster.is_day_trip:
            return DAY_TRIP_THEME
        votes = Counter()
        for candidate in cluster.candidates:
            text = f"{candidate.category} {candidate.name}".lower()
            for theme, keywords in THEME_KEYWORDS:
                if any(keyword in text for keyword in keywords):
                    votes[theme] += 1
                    break
        if not votes:
            return DEFAULT_THEME
        # Desempate por el orden de THEME_KEYWORDS
        best = max(votes.values())
        return next(theme for theme, _ in THEME_KEYWORDS if votes.get(theme) == best)

    def propose_order(self, cluster: Cluster) -> Optional[DayHint]:
        names = [c.name for c in cluster.candidates]
        if names:
            narrative = f"{len(names)} visitas: " + " → ".join(names)
        else:
            narrative = "Día libre para explorar a tu ritmo"
        return DayHint(
            activity_order=cluster.candidate_ids,
            theme=self.theme_for(cluster),
            narrative=narrative,
            suggested_start=self._start_for(cluster.day_number),
        )

    def _start_for(self, day_number: int) -> str:
        hour = self.config.FIRST_DAY_START_HOUR if day_number == 1 else self.config.DAY_START_HOUR
        return f"{hour:02d}:00"


def _sanitize_order(order: List[str], cluster: Cluster) -> List[Candidate]:
    """Solo reordena ids del propio cluster; los omitidos se añaden al final."""
    by_id = {c.id: c for c in cluster.candidates}
    ordered = []
    for candidate_id in order:
        if candidate_id in by_id and by_id[candidate_id] not in ordered:
            ordered.append(by_id[candidate_id])
    ordered.extend(c for c in cluster.candidates if c not in ordered)
    return ordered


def _valid_start(value: Optional[str]) -> bool:
    if not value or len(value) != 5 or value[2] != ':':
        return False
    hours, minutes = value[:2], value[3:]
    if not (hours.isdigit() and minutes.isdigit()):
        return False
    return 6 <= int(hours) <= 12 and int(minutes) < 60


def resolve_day_plans(
    clusters: List[Cluster],
    advisor: Optional[DayAdvisor] = None,
    events: Optional[PlannerEventSink] = None,
    config=None
) -> List[DayPlan]:
    """
    Construye el plan de cada día y congela los clusters.

    Cualquier fallo del asesor (excepción, None o respuesta inválida) cae al
    plan determinista sin que el resultado final lo refleje.
    """
    events = events or NullEventSink()
    fallback = DeterministicAdvisor(config)
    plans = []

    for cluster in clusters:
        cluster.freeze()
        base = fallback.propose_order(cluster)
        hint = None
        if advisor is not None and cluster.candidates:
            try:
                hint = advisor.propose_order(cluster)
            except Exception as e:
                logger.warning(f"⚠️ Asesor no disponible para día {cluster.day_number}: {e}")
            if hint is None:
                events.emit(ADVISOR_FALLBACK, day_number=cluster.day_number)

        if hint is not None and hint.activity_order:
            plans.append(DayPlan(
                day_number=cluster.day_number,
                cluster=cluster,
                ordered=_sanitize_order(hint.activity_order, cluster),
                theme=hint.theme or base.theme,
                narrative=hint.narrative or base.narrative,
                suggested_start=hint.suggested_start if _valid_start(hint.suggested_start) else base.suggested_start,
                advisor_used=True,
            ))
            continue

        plans.append(DayPlan(
            day_number=cluster.day_number,
            cluster=cluster,
            ordered=list(cluster.candidates),
            theme=base.theme,
            narrative=base.narrative,
            suggested_start=base.suggested_start,
        ))
    return plans
