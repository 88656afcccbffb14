import math
from typing import Iterable, Optional, Sequence, Tuple

import numpy as np
from sklearn.metrics.pairwise import haversine_distances

from settings import settings

# Constantes para mejor legibilidad
EARTH_RADIUS_KM = 6371.0
LatLng = Tuple[float, float]


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calcula la distancia entre dos puntos usando la fórmula de Haversine.

    Args:
        lat1, lon1: Coordenadas del primer punto
        lat2, lon2: Coordenadas del segundo punto

    Returns:
        Distancia en kilómetros

    Raises:
        ValueError: Si las coordenadas están fuera del rango válido
    """
    # Validación de coordenadas
    if not (-90 <= lat1 <= 90 and -90 <= lat2 <= 90):
        raise ValueError("Latitud debe estar entre -90 y 90 grados")
    if not (-180 <= lon1 <= 180 and -180 <= lon2 <= 180):
        raise ValueError("Longitud debe estar entre -180 y 180 grados")

    # Caso especial: misma ubicación
    if lat1 == lat2 and lon1 == lon2:
        return 0.0

    p1, p2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlmb = math.radians(lon2 - lon1)

    a = (math.sin(dphi/2)**2 +
         math.cos(p1) * math.cos(p2) * math.sin(dlmb/2)**2)

    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def distance_between(a: LatLng, b: LatLng) -> float:
    """Atajo de haversine_km para tuplas (lat, lng)."""
    return haversine_km(a[0], a[1], b[0], b[1])


def is_valid_point(lat: Optional[float], lng: Optional[float]) -> bool:
    """Coordenadas presentes, en rango y distintas de (0, 0)."""
    if lat is None or lng is None:
        return False
    if not (-90 <= lat <= 90 and -180 <= lng <= 180):
        return False
    return not (lat == 0 and lng == 0)


def pairwise_distance_matrix(points: Sequence[LatLng]) -> np.ndarray:
    """
    Matriz NxN de distancias Haversine en km.

    Usa sklearn (espera [lat, lon] en radianes) y escala por el radio terrestre.
    """
    if not points:
        return np.zeros((0, 0))
    radians = np.radians(np.asarray(points, dtype=float))
    return haversine_distances(radians) * EARTH_RADIUS_KM


def haversine_to_point_km(center: Sequence[float], points: np.ndarray) -> np.ndarray:
    """
    Distancias Haversine (km) desde `center` a cada fila [lat, lng] de `points`.

    Versión vectorizada con numpy para bucles internos del clustering.
    """
    lat1, lng1 = np.radians(center[0]), np.radians(center[1])
    lat2, lng2 = np.radians(points[:, 0]), np.radians(points[:, 1])
    a = (np.sin((lat2 - lat1) / 2) ** 2
         + np.cos(lat1) * np.cos(lat2) * np.sin((lng2 - lng1) / 2) ** 2)
    return 2 * EARTH_RADIUS_KM * np.arcsin(np.sqrt(np.clip(a, 0.0, 1.0)))


def nearest_rank_percentile(values: Iterable[float], fraction: float) -> float:
    """
    Percentil por rango más cercano sobre valores ordenados.

    Devuelve 0.0 si no hay valores.
    """
    ordered = np.sort(np.asarray(list(values), dtype=float))
    if ordered.size == 0:
        return 0.0
    index = min(ordered.size - 1, int(math.floor(fraction * ordered.size)))
    return float(ordered[index])


def calculate_centroid(coordinates: Sequence[LatLng]) -> Optional[LatLng]:
    """
    Centroide aritmético (media de lat/lng) de una lista de coordenadas.

    Para clusters de escala urbana la media simple es suficiente y coincide
    con la definición de centroide usada en clustering.
    """
    if not coordinates:
        return None
    arr = np.asarray(coordinates, dtype=float)
    lat, lng = arr.mean(axis=0)
    return float(lat), float(lng)


def max_radius_km(center: Optional[LatLng], coordinates: Sequence[LatLng]) -> float:
    """Distancia máxima desde el centro a cualquiera de los puntos."""
    if center is None or not coordinates:
        return 0.0
    return max(distance_between(center, point) for point in coordinates)


def path_length_km(coordinates: Sequence[LatLng]) -> float:
    """Calcula distancia total de una ruta secuencial abierta."""
    if len(coordinates) < 2:
        return 0.0

    total = 0.0
    for i in range(len(coordinates) - 1):
        total += distance_between(coordinates[i], coordinates[i + 1])
    return total


def estimate_travel_minutes(distance_km: float, config=None) -> float:
    """
    Estima minutos de traslado urbano a partir de la distancia en línea recta.

    Aplica un factor de desvío por calles y velocidades escalonadas:
    <1 km caminando lento, <3 km caminando, <15 km transporte urbano,
    y 50 km/h para distancias mayores.
    """
    cfg = config or settings
    if distance_km <= 0:
        return 0.0

    road_km = distance_km * cfg.ROAD_FACTOR
    if road_km < 1:
        return max(5.0, road_km * 12)
    if road_km < 3:
        return road_km * 8
    if road_km < 15:
        return road_km * 4
    return road_km / 50.0 * 60.0


def round_up_minutes(minutes: float, step: int = 5) -> int:
    """Redondea hacia arriba al múltiplo de `step` minutos."""
    if minutes <= 0:
        return 0
    return int(math.ceil(minutes / step) * step)
