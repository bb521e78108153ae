"""
Spatial Autocorrelation
-----------------------

Diagnostics of the spatial dependence remaining in a set of values, typically
the residuals of the drift regression.

Global Moran's I with its moments under the null hypothesis of no spatial
autocorrelation (normality assumption), and nearest-neighbour (h-scatter)
autocovariance and autocorrelation at increasing neighbour orders.
"""

from collections.abc import Iterable
from dataclasses import dataclass
import logging
import numpy as np
import polars as pl
from scipy.stats import norm

from .constants import NEIGHBOUR_ORDERS
from .distances import knn_index


@dataclass(frozen=True)
class MoranResult:
    """
    Moran's I test result.

    Parameters
    ----------
    observed : float
        Moran's I statistic.
    expected : float
        Expectation under the null hypothesis, -1 / (n - 1).
    sd : float
        Standard deviation under the null hypothesis.
    z : float
        Standardised statistic.
    p_value : float
        Two-sided p-value.
    """

    observed: float
    expected: float
    sd: float
    z: float
    p_value: float

    def as_dict(self) -> dict[str, float]:
        return {
            "morans_i": self.observed,
            "morans_i_expected": self.expected,
            "morans_i_sd": self.sd,
            "morans_i_z": self.z,
            "morans_i_p_value": self.p_value,
        }


def row_standardise(weights: np.ndarray) -> np.ndarray:
    """Scale each row of a weight matrix to sum to 1, zero rows are kept"""
    weights = np.asarray(weights, dtype=float)
    row_sums = weights.sum(axis=1, keepdims=True)
    row_sums[row_sums == 0] = 1.0
    return weights / row_sums


def morans_i(
    values: np.ndarray,
    weights: np.ndarray,
    row_standardize: bool = True,
) -> MoranResult:
    """
    Compute global Moran's I for a set of values and a spatial weight matrix.

    .. math::
        I = \\frac{n}{S_0}
            \\frac{\\sum_i \\sum_j w_{ij} (r_i - \\bar{r})(r_j - \\bar{r})}
                  {\\sum_i (r_i - \\bar{r})^2}

    where :math:`S_0 = \\sum_i \\sum_j w_{ij}`. The expectation and variance
    of I under the null hypothesis of no spatial autocorrelation are computed
    assuming normality, and give a two-sided p-value.

    Parameters
    ----------
    values : numpy.ndarray
        Values at each of the n positions, for example regression residuals.
    weights : numpy.ndarray
        Spatial weight matrix of shape (n, n) with zero diagonal, for example
        from `distances.inverse_distance_weights`.
    row_standardize : bool
        Scale the rows of the weight matrix to sum to 1 before computing the
        statistic.

    Returns
    -------
    MoranResult
    """
    values = np.asarray(values, dtype=float)
    weights = np.asarray(weights, dtype=float)
    n = len(values)
    if weights.shape != (n, n):
        raise ValueError(
            f"Weight matrix shape {weights.shape} does not match {n} values"
        )
    if n < 3:
        raise ValueError("Moran's I requires at least 3 values")
    if row_standardize:
        weights = row_standardise(weights)

    s0 = weights.sum()
    if s0 == 0:
        raise ValueError("Weight matrix does not contain any non-zero weights")
    dev = values - values.mean()
    denom = np.sum(dev**2)
    if denom == 0:
        raise ValueError("Values have zero variance")

    observed = float((n / s0) * (dev @ weights @ dev) / denom)
    expected = -1.0 / (n - 1)

    s1 = 0.5 * np.sum((weights + weights.T) ** 2)
    s2 = np.sum((weights.sum(axis=1) + weights.sum(axis=0)) ** 2)
    variance = (n**2 * s1 - n * s2 + 3 * s0**2) / (
        s0**2 * (n**2 - 1)
    ) - expected**2
    sd = float(np.sqrt(max(variance, 0.0)))

    z = (observed - expected) / sd if sd > 0 else np.nan
    p_value = float(2 * norm.sf(abs(z))) if sd > 0 else np.nan
    logging.info(
        f"Moran's I = {observed:.4f} (expected {expected:.4f}, "
        + f"sd {sd:.4f}, p = {p_value:.4g})"
    )
    return MoranResult(
        observed=observed,
        expected=expected,
        sd=sd,
        z=float(z),
        p_value=p_value,
    )


def knn_autocorrelation(
    values: np.ndarray,
    points: np.ndarray,
    orders: Iterable[int] = NEIGHBOUR_ORDERS,
) -> pl.DataFrame:
    """
    Nearest-neighbour (h-scatter) autocovariance and autocorrelation.

    For neighbour order k, each value is paired with the value at its kth
    nearest neighbour:

    .. math::
        cov_k = \\frac{1}{n} \\sum_i (z_i - \\bar{z})(z_{nn(k, i)} - \\bar{z})

    and the autocorrelation is :math:`cov_k / s^2` with :math:`s^2` the
    sample variance of the values.

    Parameters
    ----------
    values : numpy.ndarray
        Values at each position.
    points : numpy.ndarray
        Array of shape (n, 2) of positions.
    orders : Iterable[int]
        Neighbour orders to compute, each must be less than n.

    Returns
    -------
    polars.DataFrame
        Columns "order", "mean_distance", "autocovariance" and
        "autocorrelation", one row per order.
    """
    values = np.asarray(values, dtype=float)
    orders = sorted(set(int(k) for k in orders))
    if not orders:
        raise ValueError("No neighbour orders requested")
    if orders[0] < 1:
        raise ValueError("Neighbour orders must be >= 1")

    index, dist = knn_index(points, orders[-1])
    dev = values - values.mean()
    variance = values.var(ddof=1)

    n = len(values)
    autocov = [float(np.sum(dev * dev[index[:, k - 1]]) / n) for k in orders]
    return pl.DataFrame(
        {
            "order": orders,
            "mean_distance": [float(dist[:, k - 1].mean()) for k in orders],
            "autocovariance": autocov,
            "autocorrelation": [c / variance for c in autocov],
        }
    )
