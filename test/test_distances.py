"""Tests of the distances module"""

import pytest  # noqa: F401
from math import sqrt
import numpy as np
import polars as pl
import xarray as xr

from temperature_kriging.distances import (
    calculate_distance_matrix,
    distance_to_mask,
    euclidean_distance,
    haversine_distance,
    inverse_distance_weights,
    knn_index,
)
from temperature_kriging.utils import ColumnNotFoundError


def test_euclidean() -> None:
    points = np.array([[0.0, 0.0], [3.0, 4.0], [1.0, 1.0]])

    dist = euclidean_distance(points)

    assert dist.shape == (3, 3)
    assert dist[0, 0] == dist[1, 1] == dist[2, 2] == 0.0
    assert dist[0, 1] == pytest.approx(5.0)
    assert dist[0, 2] == pytest.approx(sqrt(2))
    assert np.allclose(dist, dist.T)

    cross = euclidean_distance(points, np.array([[0.0, 4.0]]))
    assert cross.shape == (3, 1)
    assert cross[1, 0] == pytest.approx(3.0)


def test_haversine() -> None:
    R = 6371.0
    halifax = (-63.5728, 44.6476)
    southampton = (-1.4049, 50.9105)
    expected = 4557  # From Google

    dist = haversine_distance(np.array([halifax, southampton]), radius=R)

    assert dist[0, 0] == dist[1, 1] == 0.0
    assert dist[0, 1] == pytest.approx(expected, abs=1)  # Allow 1km out


def test_haversine_poles() -> None:
    R = 6371.0
    points = np.array([[0.0, -90.0], [0.0, 90.0], [23.0, 0.0]])

    dist = haversine_distance(points, radius=R)

    assert dist[0, 1] == pytest.approx(np.pi * R)
    assert dist[0, 2] == pytest.approx(np.pi * R / 2)


def test_distance_matrix_frame() -> None:
    df = pl.DataFrame({"lon": [0.0, 3.0], "lat": [0.0, 4.0]})

    dist = calculate_distance_matrix(df)
    assert dist[0, 1] == pytest.approx(5.0)

    with pytest.raises(ColumnNotFoundError):
        calculate_distance_matrix(df.rename({"lon": "x"}))

    with pytest.raises(ValueError):
        calculate_distance_matrix(df, method="manhattan")  # type: ignore


def test_inverse_distance_weights() -> None:
    dist = np.array(
        [
            [0.0, 2.0, 0.0],
            [2.0, 0.0, 4.0],
            [0.0, 4.0, 0.0],
        ]
    )
    weights = inverse_distance_weights(dist)

    assert np.all(np.diag(weights) == 0.0)
    assert weights[0, 1] == pytest.approx(0.5)
    assert weights[1, 2] == pytest.approx(0.25)
    # Coincident points
    assert weights[0, 2] == 0.0

    with pytest.raises(ValueError):
        inverse_distance_weights(np.ones((2, 3)))


def test_knn_index() -> None:
    points = np.array([[0.0, 0.0], [1.0, 0.0], [3.0, 0.0], [7.0, 0.0]])

    index, dist = knn_index(points, 2)

    assert index.shape == dist.shape == (4, 2)
    # No point is its own neighbour
    assert not np.any(index == np.arange(4)[:, None])
    assert list(index[0]) == [1, 2]
    assert list(index[3]) == [2, 1]
    assert np.allclose(dist[0], [1.0, 3.0])
    assert np.all(np.diff(dist, axis=1) >= 0)

    with pytest.raises(ValueError):
        knn_index(points, 4)


def test_distance_to_mask() -> None:
    lat = np.arange(0.0, 5.0)
    lon = np.arange(0.0, 10.0, 2.0)
    mask = np.zeros((5, 5), dtype=bool)
    mask[:, 0] = True
    mask = xr.DataArray(
        mask, coords={"lat": lat, "lon": lon}, dims=["lat", "lon"]
    )

    dist = distance_to_mask(mask)

    assert dist.dims == ("lat", "lon")
    assert np.all(dist.values[:, 0] == 0.0)
    # Sampling is taken from the coordinate spacing
    assert np.allclose(dist.values[:, 1], 2.0)
    assert np.allclose(dist.values[:, 4], 8.0)

    with pytest.raises(ValueError):
        distance_to_mask(xr.zeros_like(mask, dtype=bool))
