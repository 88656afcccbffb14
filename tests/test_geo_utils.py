"""
🧪 Tests de utilidades geográficas
"""
import math

import numpy as np
import pytest

from utils.geo_utils import (
    calculate_centroid, distance_between, estimate_travel_minutes, haversine_km,
    is_valid_point, max_radius_km, nearest_rank_percentile, pairwise_distance_matrix,
    path_length_km, round_up_minutes
)


def test_haversine_same_point_is_zero():
    assert haversine_km(48.85, 2.35, 48.85, 2.35) == 0.0


def test_haversine_paris_london():
    # ~343.5 km en línea recta
    km = haversine_km(48.8566, 2.3522, 51.5074, -0.1278)
    assert 340 < km < 347


def test_haversine_rejects_out_of_range():
    with pytest.raises(ValueError):
        haversine_km(95.0, 0.0, 0.0, 0.0)
    with pytest.raises(ValueError):
        haversine_km(0.0, 190.0, 0.0, 0.0)


def test_distance_between_matches_manual_offset(point):
    a = point(0, 0)
    b = point(0, 3)
    assert distance_between(a, b) == pytest.approx(3.0, abs=0.02)


def test_is_valid_point():
    assert is_valid_point(48.0, 2.0)
    assert not is_valid_point(None, 2.0)
    assert not is_valid_point(0, 0)
    assert not is_valid_point(91, 0)


def test_pairwise_matrix_is_symmetric_and_matches_haversine(point):
    points = [point(0, 0), point(1, 2), point(-3, 0.5), point(2, -2)]
    matrix = pairwise_distance_matrix(points)
    assert matrix.shape == (4, 4)
    assert np.allclose(matrix, matrix.T)
    assert np.allclose(np.diag(matrix), 0.0)
    for i in range(4):
        for j in range(4):
            assert matrix[i, j] == pytest.approx(distance_between(points[i], points[j]), abs=1e-6)


def test_pairwise_matrix_empty():
    assert pairwise_distance_matrix([]).shape == (0, 0)


def test_nearest_rank_percentile():
    assert nearest_rank_percentile([4, 1, 3, 2], 0.5) == 3
    assert nearest_rank_percentile([4, 1, 3, 2], 0.75) == 4
    assert nearest_rank_percentile([4, 1, 3, 2], 0.95) == 4
    assert nearest_rank_percentile([7], 0.95) == 7
    assert nearest_rank_percentile([], 0.5) == 0.0


def test_centroid_radius_and_path(point):
    coords = [point(0, 0), point(0, 2)]
    centroid = calculate_centroid(coords)
    assert distance_between(centroid, point(0, 1)) < 0.01
    assert max_radius_km(centroid, coords) == pytest.approx(1.0, abs=0.02)
    assert path_length_km(coords) == pytest.approx(2.0, abs=0.02)
    assert calculate_centroid([]) is None
    assert max_radius_km(None, coords) == 0.0
    assert path_length_km(coords[:1]) == 0.0


@pytest.mark.parametrize("distance_km, expected", [
    (0.0, 0.0),
    (0.2, 5.0),                  # mínimo de 5 min
    (0.5, 0.5 * 1.4 * 12),
    (1.5, 1.5 * 1.4 * 8),
    (5.0, 5.0 * 1.4 * 4),
    (20.0, 20.0 * 1.4 / 50 * 60),
])
def test_estimate_travel_minutes_tiers(distance_km, expected):
    assert estimate_travel_minutes(distance_km) == pytest.approx(expected)


def test_round_up_minutes():
    assert round_up_minutes(0) == 0
    assert round_up_minutes(11) == 15
    assert round_up_minutes(15) == 15
    assert round_up_minutes(15.1) == 20
    assert round_up_minutes(7, step=10) == 10
    assert math.isclose(round_up_minutes(0.1), 5)
