"""
Validation of the predicted surface against held-out observations.
"""

from dataclasses import dataclass
import logging
from warnings import warn
import numpy as np
import polars as pl
import xarray as xr

from .errors import CoverageGap
from .grid import sample_surface
from .utils import check_cols


@dataclass(frozen=True)
class ValidationReport:
    """
    Parameters
    ----------
    rmse : float
        Root mean square error of the prediction at the held-out sites that
        are covered by the surface. NaN if no site is covered.
    n_holdout : int
        Number of held-out sites used to compute the RMSE.
    n_coverage_gap : int
        Number of held-out sites outside the extent of the surface or where
        the prediction is undefined.
    """

    rmse: float
    n_holdout: int
    n_coverage_gap: int = 0

    def as_dict(self) -> dict:
        return {
            "rmse": self.rmse,
            "n_holdout": self.n_holdout,
            "n_coverage_gap": self.n_coverage_gap,
        }


def rmse(
    predicted: np.ndarray,
    observed: np.ndarray,
) -> ValidationReport:
    """
    Root mean square error between predicted and observed values.

    Pairs where the prediction is undefined (NaN) are coverage gaps: they are
    excluded from the RMSE and counted separately.
    """
    predicted = np.asarray(predicted, dtype=float)
    observed = np.asarray(observed, dtype=float)
    if predicted.shape != observed.shape:
        raise ValueError("predicted and observed must have the same shape")

    covered = ~np.isnan(predicted)
    n_gap = int((~covered).sum())
    if n_gap:
        warn(
            f"{n_gap} validation sites are not covered by the prediction",
            CoverageGap,
        )
    n = int(covered.sum())
    if n == 0:
        return ValidationReport(rmse=np.nan, n_holdout=0, n_coverage_gap=n_gap)

    err = predicted[covered] - observed[covered]
    return ValidationReport(
        rmse=float(np.sqrt(np.mean(err**2))),
        n_holdout=n,
        n_coverage_gap=n_gap,
    )


def validate(
    surface: xr.DataArray,
    holdout: pl.DataFrame,
    value_col: str = "value",
    lon_col: str = "lon",
    lat_col: str = "lat",
) -> ValidationReport:
    """
    Compare a predicted surface with held-out observations.

    The surface is queried at the nearest grid cell to each held-out site.
    Sites outside the extent of the surface are coverage gaps.

    Parameters
    ----------
    surface : xarray.DataArray
        Predicted surface with (lat, lon) coordinates.
    holdout : polars.DataFrame
        Held-out observations with position and value columns.
    value_col : str
        Name of the column containing the observed values.

    Returns
    -------
    ValidationReport
    """
    check_cols(holdout, [lon_col, lat_col, value_col])
    predicted, _ = sample_surface(
        surface,
        holdout.get_column(lon_col),
        holdout.get_column(lat_col),
    )
    report = rmse(predicted, holdout.get_column(value_col).to_numpy())
    logging.info(
        f"Validation RMSE = {report.rmse:.4f} from {report.n_holdout} sites "
        + f"({report.n_coverage_gap} coverage gaps)"
    )
    return report
