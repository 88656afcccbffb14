"""
🏙️ Perfil de densidad de ciudad

Deriva un radio de clustering adaptativo a partir de la dispersión de los
candidatos: ciudades compactas producen clusters caminables pequeños y
destinos dispersos permiten clusters más amplios.
"""
import logging
from dataclasses import dataclass
from typing import List, Literal

import numpy as np

from models.schemas import Candidate
from settings import settings
from utils.geo_utils import nearest_rank_percentile, pairwise_distance_matrix

DensityCategory = Literal["dense", "medium", "spread"]


@dataclass(frozen=True)
class CityDensityProfile:
    median_pairwise_km: float
    p75_pairwise_km: float
    max_cluster_radius_km: float
    density_category: DensityCategory


class CityDensityProfiler:
    def __init__(self, config=None):
        self.config = config or settings
        self.logger = logging.getLogger(__name__)

    def default_profile(self) -> CityDensityProfile:
        radius = self.config.DENSITY_DEFAULT_RADIUS_KM
        return CityDensityProfile(
            median_pairwise_km=0.0,
            p75_pairwise_km=0.0,
            max_cluster_radius_km=radius,
            density_category="medium",
        )

    def profile(self, candidates: List[Candidate], num_days: int) -> CityDensityProfile:
        cfg = self.config
        points = [(c.lat, c.lng) for c in candidates if c.has_valid_coords]

        if len(points) < 2:
            self.logger.info(f"🏙️ Solo {len(points)} coordenadas válidas, usando perfil por defecto")
            return self.default_profile()

        matrix = pairwise_distance_matrix(points)
        upper = matrix[np.triu_indices(len(points), k=1)]

        p50 = nearest_rank_percentile(upper, 0.50)
        p75 = nearest_rank_percentile(upper, 0.75)

        raw_radius = p75 / max(1, num_days)
        raw_radius = min(max(raw_radius, cfg.DENSITY_MIN_RADIUS_KM), cfg.DENSITY_MAX_RADIUS_KM)
        radius = min(raw_radius, cfg.DENSITY_SOFT_CAP_KM)

        if raw_radius <= cfg.DENSITY_DENSE_MAX_KM:
            category = "dense"
        elif raw_radius <= cfg.DENSITY_MEDIUM_MAX_KM:
            category = "medium"
        else:
            category = "spread"

        self.logger.info(
            f"🏙️ Densidad {category}: p50={p50:.2f}km p75={p75:.2f}km → radio {radius:.2f}km"
        )
        return CityDensityProfile(
            median_pairwise_km=round(p50, 3),
            p75_pairwise_km=round(p75, 3),
            max_cluster_radius_km=radius,
            density_category=category,
        )
