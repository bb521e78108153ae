"""
Empirical Semivariance
----------------------

Estimation of the empirical (experimental) semivariogram from irregularly
spaced point observations, and diagnostics for choosing the lag bin width.
"""

from collections.abc import Iterable
from dataclasses import dataclass
import logging
import numpy as np
import polars as pl
from scipy.spatial.distance import pdist

from .constants import VARIOGRAM_CUTOFF, VARIOGRAM_WIDTH
from .distances import get_distance_func
from .errors import EmptyVariogramBin
from .types import DistanceMethod
from .utils import check_cols


@dataclass(frozen=True)
class EmpiricalVariogram:
    """
    Binned empirical semivariogram.

    The bins are contiguous and non-overlapping, bin `k` contains the point
    pairs with separation in `[k * width, (k + 1) * width)`, the last bin is
    closed at the cutoff.

    Parameters
    ----------
    lag : numpy.ndarray
        Centre of each bin.
    semivariance : numpy.ndarray
        Semivariance estimate of each bin, NaN for bins without pairs.
    n_pairs : numpy.ndarray[int]
        Number of point pairs in each bin.
    mean_distance : numpy.ndarray
        Average separation of the point pairs in each bin, NaN for bins
        without pairs. Models are fitted at these distances.
    cutoff : float
        Maximum separation of the point pairs considered.
    width : float
        Width of the bins.
    """

    lag: np.ndarray
    semivariance: np.ndarray
    n_pairs: np.ndarray
    mean_distance: np.ndarray
    cutoff: float
    width: float

    def __len__(self) -> int:
        return len(self.lag)

    @property
    def bin_edges(self) -> np.ndarray:
        """Boundaries of the bins, length is number of bins + 1"""
        half = self.width / 2
        return np.append(self.lag - half, self.lag[-1] + half)

    def nonempty(self) -> "EmpiricalVariogram":
        """
        The empirical variogram without the bins that contain no point pairs.

        Raises
        ------
        EmptyVariogramBin
            If every bin is empty.
        """
        keep = self.n_pairs > 0
        if not keep.any():
            raise EmptyVariogramBin(
                f"No point pairs within cutoff = {self.cutoff} using bin "
                + f"width = {self.width}. Adjust the cutoff or width."
            )
        return EmpiricalVariogram(
            lag=self.lag[keep],
            semivariance=self.semivariance[keep],
            n_pairs=self.n_pairs[keep],
            mean_distance=self.mean_distance[keep],
            cutoff=self.cutoff,
            width=self.width,
        )

    def to_frame(self) -> pl.DataFrame:
        """The empirical variogram as a DataFrame, one row per bin"""
        return pl.DataFrame(
            {
                "lag": self.lag,
                "mean_distance": self.mean_distance,
                "semivariance": self.semivariance,
                "n_pairs": self.n_pairs,
            }
        )


def _pair_statistics(
    points: np.ndarray,
    values: np.ndarray | None,
    method: DistanceMethod,
) -> tuple[np.ndarray, np.ndarray | None]:
    points = np.atleast_2d(np.asarray(points, dtype=float))
    dist_func = get_distance_func(method)
    # Condensed form, each unordered pair once
    i, j = np.triu_indices(points.shape[0], k=1)
    dist = dist_func(points)[i, j]
    if values is None:
        return dist, None
    values = np.asarray(values, dtype=float).reshape(-1, 1)
    if values.shape[0] != points.shape[0]:
        raise ValueError("Number of values must match number of positions")
    sq_diff = pdist(values, metric="sqeuclidean")
    return dist, sq_diff


def _bin_index(
    dist: np.ndarray,
    cutoff: float,
    width: float,
) -> tuple[np.ndarray, np.ndarray, int]:
    if not cutoff > 0:
        raise ValueError(f"cutoff must be > 0, got {cutoff}")
    if not width > 0:
        raise ValueError(f"width must be > 0, got {width}")
    n_bins = int(np.ceil(cutoff / width))
    within = dist <= cutoff
    idx = np.minimum((dist[within] // width).astype(int), n_bins - 1)
    return idx, within, n_bins


def estimate_variogram(
    points: np.ndarray,
    values: np.ndarray,
    cutoff: float = VARIOGRAM_CUTOFF,
    width: float = VARIOGRAM_WIDTH,
    method: DistanceMethod = "euclidean",
) -> EmpiricalVariogram:
    """
    Compute the empirical semivariogram of point values.

    For every unordered pair of observations with separation no larger than
    the cutoff, the squared difference of the values is accumulated into the
    bin containing the separation. The semivariance of a bin is then

    .. math::
        \\gamma_k = \\frac{1}{2 N_k} \\sum_{(i, j) \\in k} (z_i - z_j)^2

    Parameters
    ----------
    points : numpy.ndarray
        Array of shape (n, 2) containing the (lon, lat) positions.
    values : numpy.ndarray
        The observed values at each position.
    cutoff : float
        Maximum separation of pairs to include.
    width : float
        Width of the lag bins.
    method : DistanceMethod
        Distance metric used to compute separations.

    Returns
    -------
    EmpiricalVariogram
        Including bins that contain no pairs (for inspection), use
        `EmpiricalVariogram.nonempty` to drop these.
    """
    dist, sq_diff = _pair_statistics(points, values, method)
    idx, within, n_bins = _bin_index(dist, cutoff, width)

    n_pairs = np.bincount(idx, minlength=n_bins)
    sum_sq = np.bincount(
        idx, weights=sq_diff[within], minlength=n_bins  # type: ignore
    )
    sum_dist = np.bincount(idx, weights=dist[within], minlength=n_bins)

    with np.errstate(invalid="ignore", divide="ignore"):
        semivariance = np.where(n_pairs > 0, sum_sq / (2 * n_pairs), np.nan)
        mean_distance = np.where(n_pairs > 0, sum_dist / n_pairs, np.nan)

    lag = (np.arange(n_bins) + 0.5) * width
    logging.debug(
        f"Empirical variogram: {int(n_pairs.sum())} pairs in {n_bins} bins "
        + f"({int((n_pairs == 0).sum())} empty)"
    )
    return EmpiricalVariogram(
        lag=lag,
        semivariance=semivariance,
        n_pairs=n_pairs,
        mean_distance=mean_distance,
        cutoff=float(cutoff),
        width=float(width),
    )


def estimate_variogram_frame(
    df: pl.DataFrame,
    value_col: str,
    cutoff: float = VARIOGRAM_CUTOFF,
    width: float = VARIOGRAM_WIDTH,
    method: DistanceMethod = "euclidean",
    lon_col: str = "lon",
    lat_col: str = "lat",
) -> EmpiricalVariogram:
    """
    Compute the empirical semivariogram of a column of an observational
    DataFrame. See `estimate_variogram`.
    """
    check_cols(df, [lon_col, lat_col, value_col])
    return estimate_variogram(
        df.select([lon_col, lat_col]).to_numpy(),
        df.get_column(value_col).to_numpy(),
        cutoff=cutoff,
        width=width,
        method=method,
    )


def bin_width_pair_counts(
    points: np.ndarray,
    cutoff: float,
    widths: Iterable[float] = (1.0, 5.0, 10.0, 15.0),
    method: DistanceMethod = "euclidean",
) -> pl.DataFrame:
    """
    Number of point pairs per lag bin for a set of candidate bin widths.

    A bin width should be chosen such that the number of pairs per bin is
    roughly stable across the bins, see `summarise_pair_counts`.

    Returns
    -------
    counts : polars.DataFrame
        Columns "width", "lag" and "n_pairs", one row per bin per width.
    """
    dist, _ = _pair_statistics(points, None, method)
    frames: list[pl.DataFrame] = []
    for width in widths:
        idx, _, n_bins = _bin_index(dist, cutoff, width)
        frames.append(
            pl.DataFrame(
                {
                    "width": np.full(n_bins, float(width)),
                    "lag": (np.arange(n_bins) + 0.5) * width,
                    "n_pairs": np.bincount(idx, minlength=n_bins),
                }
            )
        )
    return pl.concat(frames)


def summarise_pair_counts(counts: pl.DataFrame) -> pl.DataFrame:
    """
    Summary statistics of the pair counts for each candidate bin width.

    The coefficient of variation ("cv") of the counts indicates how stable the
    number of pairs is across the bins, smaller values are more stable.
    """
    check_cols(counts, ["width", "n_pairs"])
    return (
        counts.group_by("width")
        .agg(
            pl.len().alias("n_bins"),
            (pl.col("n_pairs") == 0).sum().alias("n_empty"),
            pl.col("n_pairs").min().alias("min"),
            pl.col("n_pairs").median().alias("median"),
            pl.col("n_pairs").max().alias("max"),
            pl.col("n_pairs").mean().alias("mean"),
            pl.col("n_pairs").std().alias("std"),
        )
        .with_columns((pl.col("std") / pl.col("mean")).alias("cv"))
        .sort("width")
    )
