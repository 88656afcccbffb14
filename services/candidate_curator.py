"""
🧹 Candidate Curator - Prioridad y deduplicación de candidatos

Antes del clustering:
1. Ordena los candidatos por prioridad (must-see, rating ponderado por
   popularidad, fiabilidad del dato)
2. Elimina casi-duplicados (mismo lugar con nombres distintos de varias
   fuentes) comparando nombres normalizados y distancia. Los casi-duplicados
   encadenan clusters y consumen huecos del día.
"""
import logging
import math
import re
import unicodedata
from dataclasses import dataclass, field
from difflib import SequenceMatcher
from typing import Iterable, List, Optional, Tuple

from models.schemas import Candidate
from settings import settings
from utils.geo_utils import distance_between
from utils.planner_events import CANDIDATE_DEDUPED, NullEventSink, PlannerEventSink

MUST_SEE_BONUS = 100.0
DEFAULT_RATING = 3.0

STOPWORDS = {'de', 'du', 'des', 'la', 'le', 'les', 'the', 'of', 'and', 'et', 'a', 'au', 'el', 'los', 'del'}


# =========================================================================
# PRIORIDAD
# =========================================================================

def priority_score(candidate: Candidate) -> float:
    """must-see + popularidad (log10 de reseñas) + rating + dato verificado"""
    popularity = math.log10(max(candidate.review_count, 1)) * 2
    rating = (candidate.rating if candidate.rating is not None else DEFAULT_RATING) * 2
    reliability = 1.0 if candidate.data_reliability == "verified" else 0.0
    bonus = MUST_SEE_BONUS if candidate.must_see else 0.0
    return round(bonus + popularity + rating + reliability, 6)


def priority_key(candidate: Candidate) -> Tuple[float, str]:
    return -priority_score(candidate), candidate.id


def rank_candidates(candidates: Iterable[Candidate]) -> List[Candidate]:
    """Mayor prioridad primero; empates por id."""
    return sorted(candidates, key=priority_key)


# =========================================================================
# DEDUPLICACIÓN
# =========================================================================

def normalize_name(name: str) -> str:
    text = unicodedata.normalize('NFD', name or '')
    text = ''.join(ch for ch in text if not unicodedata.combining(ch)).lower()
    text = re.sub(r'[^a-z0-9\s]', ' ', text)
    return re.sub(r'\s+', ' ', text).strip()


def name_tokens(normalized: str) -> set:
    # Los números se conservan: distinguen "Terminal 1" de "Terminal 2"
    return {
        token for token in normalized.split()
        if (len(token) > 1 or token.isdigit()) and token not in STOPWORDS
    }


def _numbers(normalized: str) -> set:
    return {token for token in normalized.split() if token.isdigit()}


def token_overlap(a: str, b: str) -> float:
    ta, tb = name_tokens(a), name_tokens(b)
    if not ta or not tb:
        return 0.0
    return len(ta & tb) / max(len(ta), len(tb))


def is_duplicate_candidate(candidate: Candidate, existing: Candidate, config=None) -> bool:
    cfg = config or settings
    name_a, name_b = normalize_name(candidate.name), normalize_name(existing.name)
    if not name_a or not name_b:
        return False

    distance: Optional[float] = None
    if candidate.has_valid_coords and existing.has_valid_coords:
        distance = distance_between((candidate.lat, candidate.lng), (existing.lat, existing.lng))

    # Mismo nombre: duplicado salvo que estén claramente separados
    if name_a == name_b:
        return distance is None or distance <= cfg.DEDUP_SAME_NAME_DISTANCE_KM

    # Nombres parecidos: solo si además están prácticamente en el mismo punto
    if distance is None or distance > cfg.DEDUP_NEAR_DISTANCE_KM:
        return False
    if _numbers(name_a) != _numbers(name_b):
        return False
    if token_overlap(name_a, name_b) >= cfg.DEDUP_TOKEN_OVERLAP:
        return True
    if min(len(name_a), len(name_b)) >= cfg.DEDUP_MIN_NAME_LENGTH:
        if name_a in name_b or name_b in name_a:
            return True
        return SequenceMatcher(None, name_a, name_b).ratio() >= cfg.DEDUP_NAME_SIMILARITY
    return False


@dataclass
class CurationResult:
    candidates: List[Candidate] = field(default_factory=list)
    extra_pool: List[Candidate] = field(default_factory=list)
    duplicates: List[Candidate] = field(default_factory=list)


class CandidateCurator:
    def __init__(self, config=None, events: Optional[PlannerEventSink] = None):
        self.config = config or settings
        self.events = events or NullEventSink()
        self.logger = logging.getLogger(__name__)

    def dedupe(self, candidates: Iterable[Candidate],
               seen: Iterable[Candidate] = ()) -> Tuple[List[Candidate], List[Candidate]]:
        """
        Recorre los candidatos en el orden dado y descarta los que duplican a
        uno ya aceptado (o a uno de `seen`). Los must-see nunca se descartan.
        """
        accepted = list(seen)
        kept: List[Candidate] = []
        duplicates: List[Candidate] = []
        for candidate in candidates:
            original = None
            if not candidate.must_see:
                original = next(
                    (other for other in accepted if is_duplicate_candidate(candidate, other, self.config)),
                    None
                )
            if original is not None:
                duplicates.append(candidate)
                self.logger.info(f"🧹 '{candidate.name}' descartado: duplica a '{original.name}'")
                self.events.emit(CANDIDATE_DEDUPED, candidate_id=candidate.id, duplicate_of=original.id)
                continue
            kept.append(candidate)
            accepted.append(candidate)
        return kept, duplicates

    def curate(self, candidates: List[Candidate], extra_pool: Iterable[Candidate] = ()) -> CurationResult:
        """Prioriza y deduplica candidatos y reserva (la reserva contra los candidatos)."""
        ranked = rank_candidates(candidates)
        ranked_pool = rank_candidates(extra_pool)
        if not self.config.ENABLE_DEDUP:
            return CurationResult(candidates=ranked, extra_pool=ranked_pool)

        kept, duplicates = self.dedupe(ranked)
        pool, pool_duplicates = self.dedupe(ranked_pool, seen=kept)
        if duplicates or pool_duplicates:
            self.logger.info(f"🧹 {len(duplicates) + len(pool_duplicates)} candidatos duplicados eliminados")
        return CurationResult(candidates=kept, extra_pool=pool, duplicates=duplicates + pool_duplicates)
