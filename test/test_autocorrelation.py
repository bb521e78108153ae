import pytest  # noqa: F401
import numpy as np

from temperature_kriging.autocorrelation import (
    knn_autocorrelation,
    morans_i,
    row_standardise,
)
from temperature_kriging.distances import (
    euclidean_distance,
    inverse_distance_weights,
)


def smooth_field(n: int = 200, seed: int = 7):
    rng = np.random.default_rng(seed)
    points = rng.uniform(0, 50, size=(n, 2))
    values = np.sin(points[:, 0] / 8) + np.cos(points[:, 1] / 8)
    return points, values


def test_row_standardise() -> None:
    weights = np.array([[0.0, 1.0, 3.0], [0.0, 0.0, 0.0], [2.0, 2.0, 0.0]])
    out = row_standardise(weights)
    assert np.allclose(out.sum(axis=1), [1.0, 0.0, 1.0])
    assert out[0, 2] == pytest.approx(0.75)


def test_morans_i_autocorrelated() -> None:
    points, values = smooth_field()
    weights = inverse_distance_weights(euclidean_distance(points))

    result = morans_i(values, weights)

    assert -1.0 <= result.observed <= 1.0
    assert result.expected == pytest.approx(-1 / 199)
    assert result.observed > result.expected
    assert result.sd > 0
    assert result.z > 0
    assert 0.0 <= result.p_value <= 1.0
    assert result.p_value < 0.01
    assert set(result.as_dict()) == {
        "morans_i",
        "morans_i_expected",
        "morans_i_sd",
        "morans_i_z",
        "morans_i_p_value",
    }


def test_morans_i_shuffled() -> None:
    points, values = smooth_field()
    weights = inverse_distance_weights(euclidean_distance(points))
    rng = np.random.default_rng(11)

    observed = [
        morans_i(rng.permutation(values), weights).observed
        for _ in range(50)
    ]

    # Spatially random values are close to the null expectation
    assert np.mean(observed) == pytest.approx(-1 / 199, abs=0.02)


def test_morans_i_invalid() -> None:
    weights = np.ones((3, 3)) - np.eye(3)
    with pytest.raises(ValueError):
        morans_i(np.ones(3), weights)
    with pytest.raises(ValueError):
        morans_i(np.arange(3.0), np.zeros((3, 3)))
    with pytest.raises(ValueError):
        morans_i(np.arange(2.0), weights[:2, :2])
    with pytest.raises(ValueError):
        morans_i(np.arange(4.0), weights)


def test_knn_autocorrelation() -> None:
    points, values = smooth_field()

    table = knn_autocorrelation(values, points, orders=[4, 1, 2])

    assert table.columns == [
        "order",
        "mean_distance",
        "autocovariance",
        "autocorrelation",
    ]
    assert table.get_column("order").to_list() == [1, 2, 4]
    dist = table.get_column("mean_distance").to_numpy()
    assert np.all(np.diff(dist) >= 0)
    corr = table.get_column("autocorrelation").to_numpy()
    assert np.all(corr > 0.5)

    with pytest.raises(ValueError):
        knn_autocorrelation(values, points, orders=[])
    with pytest.raises(ValueError):
        knn_autocorrelation(values, points, orders=[0, 1])
