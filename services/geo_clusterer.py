"""
🗺️ Geo Clusterer - Agrupa candidatos en clusters diarios caminables

Pipeline:
1. Separación de day-trips (candidatos lejanos del centro)
2. Clustering aglomerativo average-linkage con radio máximo adaptativo,
   relajado por fases (strict → relaxed → unconstrained)
3. Balanceo de tamaños
4. Orden de visita por cluster (vecino más cercano + 2-opt)
5. Orden de días por proximidad desde el origen del viaje
"""
import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np

from models.schemas import Candidate
from services.candidate_curator import priority_score, rank_candidates
from services.city_density_profiler import CityDensityProfile, CityDensityProfiler
from settings import settings
from utils.exceptions import PlannerInvariantError
from utils.geo_utils import (
    LatLng, calculate_centroid, distance_between, haversine_to_point_km,
    max_radius_km, pairwise_distance_matrix, path_length_km
)
from utils.planner_events import (
    CANDIDATE_MOVED, CLUSTER_FORMED, CLUSTERING_PHASE, NullEventSink, PlannerEventSink
)


@dataclass(eq=False)
class Cluster:
    day_number: int
    candidates: List[Candidate] = field(default_factory=list)
    centroid: Optional[LatLng] = None
    total_path_km: float = 0.0
    max_radius_km: float = 0.0
    is_day_trip: bool = False
    frozen: bool = False

    @property
    def size(self) -> int:
        return len(self.candidates)

    @property
    def candidate_ids(self) -> List[str]:
        return [c.id for c in self.candidates]

    @property
    def label(self) -> str:
        """Id más bajo del cluster, usado para desempates deterministas"""
        return min(self.candidate_ids) if self.candidates else ""

    def _check_mutable(self):
        if self.frozen:
            raise PlannerInvariantError(f"Cluster del día {self.day_number} congelado: no se puede modificar")

    def add(self, candidate: Candidate):
        self._check_mutable()
        self.candidates.append(candidate)
        self.recompute()

    def remove(self, candidate: Candidate):
        self._check_mutable()
        self.candidates = [c for c in self.candidates if c.id != candidate.id]
        self.recompute()

    def set_order(self, ordered: List[Candidate]):
        self._check_mutable()
        if sorted(c.id for c in ordered) != sorted(self.candidate_ids):
            raise PlannerInvariantError(f"Reordenamiento del día {self.day_number} altera los miembros")
        self.candidates = list(ordered)
        self.recompute()

    def recompute(self):
        points = [(c.lat, c.lng) for c in self.candidates if c.has_valid_coords]
        self.centroid = calculate_centroid(points)
        self.max_radius_km = max_radius_km(self.centroid, points)
        self.total_path_km = path_length_km(points)

    def freeze(self):
        self.frozen = True


@dataclass(frozen=True)
class MergePhase:
    name: str
    radius_factor: Optional[float]  # None = sin restricción de radio


# =========================================================================
# VISIT ORDER (vecino más cercano + 2-opt)
# =========================================================================

def _point(candidate: Candidate) -> LatLng:
    return candidate.lat, candidate.lng


def nearest_neighbor_order(candidates: Sequence[Candidate]) -> List[Candidate]:
    """
    Tour greedy de vecino más cercano empezando por el candidato de mayor
    prioridad (a igual prioridad, el primero). Candidatos sin coordenadas van
    al final.
    """
    located = [c for c in candidates if c.has_valid_coords]
    unlocated = [c for c in candidates if not c.has_valid_coords]
    if not located:
        return unlocated

    start = min(located, key=lambda c: -priority_score(c))
    tour = [start]
    remaining = [c for c in located if c is not start]
    while remaining:
        current = _point(tour[-1])
        nxt = min(remaining, key=lambda c: (distance_between(current, _point(c)), c.id))
        tour.append(nxt)
        remaining.remove(nxt)
    return tour + unlocated


def two_opt(order: Sequence[Candidate], min_gain_km: Optional[float] = None) -> List[Candidate]:
    """
    2-opt sobre un camino abierto con inicio fijo.

    Invierte el segmento [i+1..j] cuando acorta el recorrido en más de
    `min_gain_km`. Nunca aumenta la longitud total.
    """
    gain = settings.TWO_OPT_MIN_GAIN_KM if min_gain_km is None else min_gain_km
    tour = [c for c in order if c.has_valid_coords]
    unlocated = [c for c in order if not c.has_valid_coords]
    n = len(tour)
    if n < 4:
        return tour + unlocated

    dist = pairwise_distance_matrix([_point(c) for c in tour]).tolist()
    perm = list(range(n))

    def d(a: int, b: int) -> float:
        return dist[perm[a]][perm[b]]

    improved = True
    sweeps = 0
    while improved and sweeps < 100:
        improved = False
        sweeps += 1
        for i in range(0, n - 2):
            for j in range(i + 2, n):
                if j == n - 1:
                    delta = d(i, j) - d(i, i + 1)
                else:
                    delta = d(i, j) + d(i + 1, j + 1) - d(i, i + 1) - d(j, j + 1)
                if delta < -gain:
                    perm[i + 1:j + 1] = reversed(perm[i + 1:j + 1])
                    improved = True
    return [tour[k] for k in perm] + unlocated


def optimize_visit_order(cluster: Cluster, min_gain_km: Optional[float] = None) -> Cluster:
    if cluster.size > 1:
        cluster.set_order(two_opt(nearest_neighbor_order(cluster.candidates), min_gain_km))
    else:
        cluster.recompute()
    return cluster


# =========================================================================
# AGGLOMERATIVE CLUSTERING (average-linkage con radio máximo)
# =========================================================================

class _MergeSpace:
    """Distancias precalculadas sobre los candidatos urbanos"""

    def __init__(self, candidates: List[Candidate]):
        self.candidates = candidates
        self.ids = [c.id for c in candidates]
        self.points = np.asarray([_point(c) for c in candidates], dtype=float)
        self.matrix = pairwise_distance_matrix([tuple(p) for p in self.points])

    def label(self, group: Tuple[int, ...]) -> str:
        return min(self.ids[i] for i in group)

    def _block_reduce(self, groups: List[Tuple[int, ...]], ufunc) -> np.ndarray:
        order = [i for group in groups for i in group]
        starts = np.cumsum([0] + [len(group) for group in groups[:-1]])
        block = self.matrix[np.ix_(order, order)]
        return ufunc.reduceat(ufunc.reduceat(block, starts, axis=0), starts, axis=1)

    def linkage_matrix(self, groups: List[Tuple[int, ...]]) -> np.ndarray:
        """Distancia media entre miembros para cada par de grupos"""
        sizes = np.array([len(group) for group in groups], dtype=float)
        return self._block_reduce(groups, np.add) / np.outer(sizes, sizes)

    def spread_matrix(self, groups: List[Tuple[int, ...]]) -> np.ndarray:
        """Distancia máxima entre miembros para cada par de grupos"""
        return self._block_reduce(groups, np.maximum)

    def radius(self, group: Tuple[int, ...]) -> float:
        members = self.points[list(group)]
        return float(haversine_to_point_km(members.mean(axis=0), members).max())


def _drop_index(matrix: np.ndarray, index: int) -> np.ndarray:
    return np.delete(np.delete(matrix, index, axis=0), index, axis=1)


def try_merge(
    space: _MergeSpace,
    groups: List[Tuple[int, ...]],
    target_k: int,
    max_radius: Optional[float]
) -> List[Tuple[int, ...]]:
    """
    Fusiona pares por menor distancia media hasta `target_k` grupos.

    Omite fusiones cuyo radio resultante supere `max_radius`. Devuelve una
    lista nueva ordenada por etiqueta; si no hay fusión posible, devuelve los
    grupos tal cual.

    Las distancias entre grupos viven en una matriz y tras cada fusión solo
    se recalcula la fila del grupo nuevo (Lance-Williams). Con los grupos
    ordenados por etiqueta, el primer mínimo de argmin es el par de ids más
    bajos entre los empatados.
    """
    groups = sorted(groups, key=space.label)
    if len(groups) <= target_k:
        return groups

    linkage = space.linkage_matrix(groups)
    spread = space.spread_matrix(groups)
    sizes = np.array([len(group) for group in groups], dtype=float)
    rejected = np.zeros(linkage.shape, dtype=bool)

    while len(groups) > target_k:
        n = len(groups)
        scores = np.round(linkage, 9)
        scores[np.tril_indices(n)] = np.inf
        if max_radius is not None:
            # El radio nunca es menor que la mitad de la distancia entre dos miembros
            scores[rejected | (spread > 2 * max_radius + 1e-9)] = np.inf
        i, j = divmod(int(np.argmin(scores)), n)
        if not np.isfinite(scores[i, j]):
            break

        merged = tuple(sorted(groups[i] + groups[j]))
        if max_radius is not None and space.radius(merged) > max_radius:
            rejected[i, j] = rejected[j, i] = True
            continue

        # i < j: el grupo fusionado hereda la posición (y la etiqueta) de i
        row = (sizes[i] * linkage[i] + sizes[j] * linkage[j]) / (sizes[i] + sizes[j])
        linkage[i, :] = row
        linkage[:, i] = row
        spread_row = np.maximum(spread[i], spread[j])
        spread[i, :] = spread_row
        spread[:, i] = spread_row
        rejected[i, :] = False
        rejected[:, i] = False
        sizes[i] += sizes[j]
        groups[i] = merged

        del groups[j]
        sizes = np.delete(sizes, j)
        linkage = _drop_index(linkage, j)
        spread = _drop_index(spread, j)
        rejected = _drop_index(rejected, j)
    return groups


class GeoClusterer:
    def __init__(self, config=None, events: Optional[PlannerEventSink] = None):
        self.config = config or settings
        self.events = events or NullEventSink()
        self.logger = logging.getLogger(__name__)

    def merge_phases(self) -> Tuple[MergePhase, ...]:
        return (
            MergePhase("strict", 1.0),
            MergePhase("relaxed", self.config.RELAXED_RADIUS_FACTOR),
            MergePhase("unconstrained", None),
        )

    def cluster(
        self,
        candidates: List[Candidate],
        num_days: int,
        center_point: LatLng,
        density_profile: Optional[CityDensityProfile] = None,
        origin: Optional[LatLng] = None
    ) -> List[Cluster]:
        """
        Particiona los candidatos en clusters diarios.

        `center_point` define qué es un day-trip; `origin` (por defecto el
        centro) es desde dónde se ordenan los días.
        """
        cfg = self.config
        self._check_unique_ids(candidates)
        candidates = rank_candidates(candidates)
        num_days = max(1, num_days)
        profile = density_profile or CityDensityProfiler(cfg).profile(candidates, num_days)
        radius = profile.max_cluster_radius_km

        self.logger.info(
            f"🗺️ Clustering {len(candidates)} candidatos en {num_days} días (radio {radius:.2f}km)"
        )

        # 🔒 GARANTÍA: pocos candidatos o un solo día → un único cluster
        if len(candidates) <= cfg.SINGLE_CLUSTER_MAX_CANDIDATES or num_days <= 1:
            single = Cluster(day_number=1, candidates=list(candidates))
            optimize_visit_order(single, cfg.TWO_OPT_MIN_GAIN_KM)
            self._verify_partition(candidates, [single])
            self._emit_formed([single])
            return [single]

        # 1. Separación de day-trips
        day_trip_members: List[Candidate] = []
        city: List[Candidate] = list(candidates)
        if num_days > cfg.DAY_TRIP_MIN_DAYS:
            day_trip_members = [
                c for c in candidates
                if c.has_valid_coords and distance_between(center_point, _point(c)) > cfg.DAY_TRIP_DISTANCE_KM
            ]
            far_ids = {c.id for c in day_trip_members}
            city = [c for c in candidates if c.id not in far_ids]
            if day_trip_members:
                self.logger.info(f"🚗 {len(day_trip_members)} candidatos a más de {cfg.DAY_TRIP_DISTANCE_KM:.0f}km → day-trip")

        target_k = num_days - (1 if day_trip_members else 0)

        # 2. Clustering aglomerativo sobre candidatos urbanos con coordenadas
        located = [c for c in city if c.has_valid_coords]
        unlocated = [c for c in city if not c.has_valid_coords]
        clusters = self._agglomerate(located, target_k, radius)

        # Candidatos sin coordenadas: al cluster más pequeño
        for candidate in unlocated:
            smallest = min(range(len(clusters)), key=lambda i: (clusters[i].size, i))
            clusters[smallest].add(candidate)
            self.logger.warning(f"⚠️ {candidate.name} sin coordenadas válidas, asignado por tamaño")

        if day_trip_members:
            day_trip = Cluster(day_number=0, candidates=day_trip_members, is_day_trip=True)
            day_trip.recompute()
            clusters.append(day_trip)

        # 3. Balanceo
        self._balance(clusters, len(candidates), num_days, radius)

        # 4. Orden de visita
        for cluster in clusters:
            optimize_visit_order(cluster, cfg.TWO_OPT_MIN_GAIN_KM)

        # 5. Orden de días
        ordered = order_days(clusters, origin or center_point)

        self._verify_partition(candidates, ordered)
        self._emit_formed(ordered)
        return ordered

    def _agglomerate(self, located: List[Candidate], target_k: int, radius: float) -> List[Cluster]:
        groups: List[Tuple[int, ...]] = []
        if located:
            space = _MergeSpace(located)
            groups = [(i,) for i in range(len(located))]
            for phase in self.merge_phases():
                if len(groups) <= target_k:
                    break
                max_radius = None if phase.radius_factor is None else radius * phase.radius_factor
                groups = try_merge(space, groups, target_k, max_radius)
                self.logger.debug(f"🔗 Fase {phase.name}: {len(groups)} grupos (objetivo {target_k})")
                self.events.emit(CLUSTERING_PHASE, phase=phase.name, groups=len(groups), target=target_k)

        clusters = []
        for group in groups:
            cluster = Cluster(day_number=0, candidates=[located[i] for i in sorted(group)])
            cluster.recompute()
            clusters.append(cluster)

        # Menos candidatos que días: completar con días libres
        while len(clusters) < target_k:
            clusters.append(Cluster(day_number=0))
        return clusters

    def _balance(self, clusters: List[Cluster], total: int, num_days: int, radius: float):
        cfg = self.config
        cap = math.ceil(total / num_days) + 1
        reach = radius * cfg.BALANCE_RADIUS_FACTOR

        for pass_number in range(cfg.BALANCE_MAX_PASSES):
            moved_any = False
            for source in clusters:
                while source.size > cap:
                    move = self._balance_move(source, clusters, cap, reach)
                    if move is None:
                        break
                    candidate, destination = move
                    source.remove(candidate)
                    destination.add(candidate)
                    moved_any = True
                    self.logger.debug(f"⚖️ {candidate.name} movido a cluster de {destination.size} miembros")
                    self.events.emit(CANDIDATE_MOVED, candidate_id=candidate.id, reason="size_balance")
            if not moved_any:
                break

    def _balance_move(self, source: Cluster, clusters: List[Cluster], cap: int,
                      reach: float) -> Optional[Tuple[Candidate, Cluster]]:
        """Miembro movible más lejano del centroide que tenga algún destino válido"""
        if source.centroid is None:
            return None
        movable = sorted(
            (c for c in source.candidates if not c.must_see and c.has_valid_coords),
            key=lambda c: (distance_between(source.centroid, _point(c)), c.id),
            reverse=True
        )
        for candidate in movable:
            destinations = [
                (i, c) for i, c in enumerate(clusters)
                if c is not source and not c.is_day_trip and c.size + 1 <= cap
                and c.centroid is not None
                and distance_between(c.centroid, _point(candidate)) <= reach
            ]
            if destinations:
                _, destination = min(destinations, key=lambda pair: (pair[1].size, pair[0]))
                return candidate, destination
        return None

    def _check_unique_ids(self, candidates: List[Candidate]):
        ids = [c.id for c in candidates]
        if len(ids) != len(set(ids)):
            raise PlannerInvariantError("Ids de candidatos duplicados en la entrada del clustering")

    def _verify_partition(self, candidates: List[Candidate], clusters: List[Cluster]):
        assigned = [cid for cluster in clusters for cid in cluster.candidate_ids]
        if sorted(assigned) != sorted(c.id for c in candidates):
            raise PlannerInvariantError("Los clusters no forman una partición de los candidatos")

    def _emit_formed(self, clusters: List[Cluster]):
        for cluster in clusters:
            self.events.emit(
                CLUSTER_FORMED,
                day_number=cluster.day_number,
                size=cluster.size,
                radius_km=round(cluster.max_radius_km, 3),
                path_km=round(cluster.total_path_km, 3),
                is_day_trip=cluster.is_day_trip,
            )
            self.logger.info(
                f"📍 Día {cluster.day_number}: {cluster.size} candidatos, "
                f"radio {cluster.max_radius_km:.2f}km{' (day-trip)' if cluster.is_day_trip else ''}"
            )


def order_days(clusters: List[Cluster], origin: Optional[LatLng]) -> List[Cluster]:
    """
    Ordena los clusters por vecino más cercano entre centroides desde el
    origen. El day-trip se inserta en la posición central y los días se
    renumeran 1..N.
    """
    day_trips = [c for c in clusters if c.is_day_trip]
    city = [c for c in clusters if not c.is_day_trip]
    located = [c for c in city if c.centroid is not None]
    empty = [c for c in city if c.centroid is None]

    ordered: List[Cluster] = []
    current = origin if origin is not None else (located[0].centroid if located else None)
    while located:
        nxt = min(located, key=lambda c: (distance_between(current, c.centroid), c.label))
        ordered.append(nxt)
        located.remove(nxt)
        current = nxt.centroid
    ordered.extend(empty)

    for day_trip in day_trips:
        ordered.insert(len(ordered) // 2, day_trip)

    for number, cluster in enumerate(ordered, start=1):
        cluster.day_number = number
    return ordered
