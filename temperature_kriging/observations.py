"""
Observations
------------

Handling of the point observations: filtering to complete records, the fixed
validation hold-out, per-stratum views of the value columns, and attaching
covariate values and regression residuals.

Observations are held in polars DataFrames with at least an id column and
"lon", "lat" position columns.
"""

from dataclasses import dataclass, field
import logging
from warnings import warn
import numpy as np
import polars as pl

from .constants import VALIDATION_FRACTION
from .errors import MissingCovariate
from .grid import CovariateGrid
from .utils import check_cols


@dataclass(frozen=True)
class CovariateSubstitution:
    """Number of missing covariate values substituted with 0, by covariate"""

    counts: dict[str, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def __add__(
        self, other: "CovariateSubstitution"
    ) -> "CovariateSubstitution":
        keys = list(dict.fromkeys([*self.counts, *other.counts]))
        return CovariateSubstitution(
            {
                k: self.counts.get(k, 0) + other.counts.get(k, 0)
                for k in keys
            }
        )


def complete_cases(
    df: pl.DataFrame,
    cols: list[str] | None = None,
) -> pl.DataFrame:
    """
    Drop records with a missing (null or NaN) value in any of the columns.

    Parameters
    ----------
    df : polars.DataFrame
        Observations.
    cols : list[str] | None
        Columns to check, defaults to all columns.
    """
    cols = df.columns if cols is None else cols
    check_cols(df, cols)
    float_cols = [
        c for c in cols if df.schema[c] in (pl.Float32, pl.Float64)
    ]
    out = df.drop_nulls(subset=cols)
    if float_cols:
        out = out.filter(~pl.any_horizontal(pl.col(float_cols).is_nan()))
    n_dropped = df.height - out.height
    if n_dropped:
        logging.info(f"Dropped {n_dropped} incomplete observations")
    return out


def split_validation(
    df: pl.DataFrame,
    fraction: float = VALIDATION_FRACTION,
    seed: int | None = None,
) -> tuple[pl.DataFrame, pl.DataFrame]:
    """
    Randomly hold out a fraction of the observations for validation.

    The number of held-out records is `floor(n * fraction)`. The split is made
    once and shared by every stratum.

    Returns
    -------
    fit : polars.DataFrame
        Observations used to fit the models.
    holdout : polars.DataFrame
        Observations held out for validation.
    """
    if not 0 <= fraction < 1:
        raise ValueError(f"fraction must be in [0, 1), got {fraction}")
    n_holdout = int(np.floor(df.height * fraction))
    rng = np.random.default_rng(seed)
    holdout_idx = rng.choice(df.height, size=n_holdout, replace=False)
    is_holdout = np.zeros(df.height, dtype=bool)
    is_holdout[holdout_idx] = True
    mask = pl.Series("holdout", is_holdout)
    logging.info(
        f"Holding out {n_holdout} of {df.height} observations for validation"
    )
    return df.filter(~mask), df.filter(mask)


def stratum_view(
    df: pl.DataFrame,
    value_col: str,
    id_col: str = "id",
    lon_col: str = "lon",
    lat_col: str = "lat",
) -> pl.DataFrame:
    """
    Select the id, position and one value column of the observations. The
    value column is renamed to "value".
    """
    check_cols(df, [id_col, lon_col, lat_col, value_col])
    return df.select(
        pl.col(id_col).alias("id"),
        pl.col(lon_col).alias("lon"),
        pl.col(lat_col).alias("lat"),
        pl.col(value_col).cast(pl.Float64).alias("value"),
    )


def substitute_missing(
    values: np.ndarray,
    names: list[str],
) -> tuple[np.ndarray, CovariateSubstitution]:
    """
    Replace missing (NaN) covariate values with 0 and count the substitutions
    for each covariate. A `MissingCovariate` warning is emitted if any value
    is substituted.

    Parameters
    ----------
    values : numpy.ndarray
        Covariate values, shape (n, len(names)).
    names : list[str]
        Covariate names.
    """
    values = np.array(values, dtype=float, copy=True).reshape(-1, len(names))
    missing = np.isnan(values)
    counts = CovariateSubstitution(
        {n: int(missing[:, i].sum()) for i, n in enumerate(names)}
    )
    if counts.total:
        detail = ", ".join(f"{k}: {v}" for k, v in counts.counts.items() if v)
        warn(
            f"Substituted {counts.total} missing covariate values with 0 "
            + f"({detail})",
            MissingCovariate,
        )
        values[missing] = 0.0
    return values, counts


def extract_covariates(
    df: pl.DataFrame,
    grid: CovariateGrid,
    names: list[str],
    lon_col: str = "lon",
    lat_col: str = "lat",
) -> tuple[pl.DataFrame, CovariateSubstitution]:
    """
    Add covariate columns to the observations, from the nearest grid cell.

    Covariates that are undefined at an observation, including observations
    outside the extent of the grid, are substituted with 0.

    Returns
    -------
    df : polars.DataFrame
        Observations with one additional column per covariate.
    substitutions : CovariateSubstitution
        Number of substituted values per covariate.
    """
    check_cols(df, [lon_col, lat_col])
    sampled, in_grid = grid.sample(
        df.get_column(lon_col), df.get_column(lat_col), names
    )
    if not in_grid.all():
        logging.warning(
            f"{int((~in_grid).sum())} observations are outside of the "
            + "covariate grid"
        )
    values, counts = substitute_missing(sampled, names)
    return (
        df.with_columns(
            [pl.Series(n, values[:, i]) for i, n in enumerate(names)]
        ),
        counts,
    )


def attach_residuals(
    df: pl.DataFrame,
    residuals: np.ndarray,
    value_col: str = "value",
) -> pl.DataFrame:
    """
    Add the regression residuals to the observations, as "residual" and
    "relative_residual" (residual / value) columns.
    """
    check_cols(df, [value_col])
    residuals = np.asarray(residuals, dtype=float)
    if len(residuals) != df.height:
        raise ValueError("Number of residuals must match number of records")
    return df.with_columns(pl.Series("residual", residuals)).with_columns(
        (pl.col("residual") / pl.col(value_col)).alias("relative_residual")
    )
