"""
Drift Regression
----------------

Ordinary least squares regression of the observed values on the drift
covariates. The residuals are a diagnostic of how much of the spatial
structure is explained by the covariates, the kriging predictor re-estimates
the drift jointly with the spatial covariance.
"""

from dataclasses import dataclass
import logging
import numpy as np
import polars as pl
import statsmodels.api as sm
from statsmodels.regression.linear_model import RegressionResultsWrapper

from .errors import DegenerateRegression
from .utils import check_cols

INTERCEPT: str = "const"


@dataclass(frozen=True)
class DriftRegression:
    """
    Result of the drift regression.

    Parameters
    ----------
    names : list[str]
        Names of the regression terms, starting with the intercept.
    coefficients : numpy.ndarray
        Fitted coefficient for each term.
    residuals : numpy.ndarray
        Observed minus fitted value for each observation.
    fitted : numpy.ndarray
        Fitted value for each observation.
    rsquared : float
        Coefficient of determination.
    results : RegressionResultsWrapper
        The underlying statsmodels results.
    """

    names: list[str]
    coefficients: np.ndarray
    residuals: np.ndarray
    fitted: np.ndarray
    rsquared: float
    results: RegressionResultsWrapper

    @property
    def params(self) -> dict[str, float]:
        """Coefficients keyed by term name"""
        return {n: float(c) for n, c in zip(self.names, self.coefficients)}

    def summary(self) -> str:
        """Printable regression summary table"""
        return str(self.results.summary(xname=self.names))


def fit_drift(
    values: np.ndarray,
    covariates: np.ndarray,
    names: list[str],
) -> DriftRegression:
    """
    Fit the observed values on an intercept plus the covariates by ordinary
    least squares.

    Parameters
    ----------
    values : numpy.ndarray
        Observed values, length n.
    covariates : numpy.ndarray
        Covariate design of shape (n, p), without intercept column.
    names : list[str]
        Names of the p covariates.

    Returns
    -------
    DriftRegression

    Raises
    ------
    DegenerateRegression
        If there are fewer than p + 1 observations, or the design matrix
        (including intercept) is rank deficient.
    """
    values = np.asarray(values, dtype=float)
    covariates = np.asarray(covariates, dtype=float).reshape(len(values), -1)
    if covariates.shape[1] != len(names):
        raise ValueError("Number of covariate names must match columns")
    if np.isnan(values).any() or np.isnan(covariates).any():
        raise ValueError("Drift regression inputs contain NaN values")

    n, p = covariates.shape
    if n < p + 1:
        raise DegenerateRegression(
            f"Cannot fit {p + 1} drift coefficients to {n} observations"
        )
    design = sm.add_constant(covariates, has_constant="add")
    rank = np.linalg.matrix_rank(design)
    if rank < p + 1:
        raise DegenerateRegression(
            f"Drift design matrix is rank deficient (rank {rank} < {p + 1}), "
            + "covariates may be collinear or constant"
        )

    results = sm.OLS(values, design).fit()
    regression = DriftRegression(
        names=[INTERCEPT, *names],
        coefficients=np.asarray(results.params),
        residuals=np.asarray(results.resid),
        fitted=np.asarray(results.fittedvalues),
        rsquared=float(results.rsquared),
        results=results,
    )
    logging.info(
        f"Drift regression R^2 = {regression.rsquared:.3f}, "
        + f"coefficients: {regression.params}"
    )
    return regression


def fit_drift_frame(
    df: pl.DataFrame,
    value_col: str,
    names: list[str],
) -> DriftRegression:
    """Fit the drift regression using columns of an observation DataFrame"""
    check_cols(df, [value_col, *names])
    return fit_drift(
        df.get_column(value_col).to_numpy(),
        df.select(names).to_numpy(),
        names,
    )
