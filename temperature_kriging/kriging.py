"""
Functions for performing Kriging.

Universal Kriging with external drift: the mean of the field is a linear
function of covariates (the drift), the residual from the drift is modelled
as a spatially correlated process with covariance given by a fitted variogram
plus an uncorrelated nugget component.
"""

from dataclasses import dataclass
import logging
import numpy as np
import xarray as xr
from scipy.linalg import LinAlgError, cho_factor, cho_solve

from .constants import KRIGING_JITTER, KRIGING_MAX_JITTER_TRIES
from .distances import get_distance_func
from .errors import KrigingSingular
from .grid import CovariateGrid
from .types import DistanceMethod
from .utils import adjust_small_negative, batched
from .variogram import Variogram


@dataclass(frozen=True)
class KrigingResult:
    """
    Kriging prediction and prediction variance at each target site.

    Parameters
    ----------
    prediction : numpy.ndarray
        Predicted value at each target site. NaN where the covariates of the
        site are undefined.
    variance : numpy.ndarray
        Prediction variance at each target site, non-negative.
    drift_coefficients : numpy.ndarray
        Generalised least squares estimate of the drift coefficients
        (intercept first) estimated jointly with the spatial covariance.
    """

    prediction: np.ndarray
    variance: np.ndarray
    drift_coefficients: np.ndarray

    def __len__(self) -> int:
        return len(self.prediction)

    @property
    def standard_error(self) -> np.ndarray:
        return np.sqrt(self.variance)

    def to_dataset(self, grid: CovariateGrid) -> xr.Dataset:
        """
        Reshape the result onto the grid of prediction sites. The result must
        have been computed at `grid.coordinates()`.
        """
        return xr.Dataset(
            {
                "prediction": grid.to_grid(self.prediction, "prediction"),
                "variance": grid.to_grid(self.variance, "variance"),
            }
        )


def _drift_design(covariates: np.ndarray, n: int) -> np.ndarray:
    covariates = np.asarray(covariates, dtype=float).reshape(n, -1)
    return np.column_stack([np.ones(n), covariates])


class UniversalKriging:
    r"""
    Class for Universal Kriging with external drift.

    The Kriging weights :math:`\lambda` and Lagrange multipliers :math:`\mu`
    at a target site solve the system

    .. math::
        \begin{pmatrix} C & X \\ X^T & 0 \end{pmatrix}
        \begin{pmatrix} \lambda \\ \mu \end{pmatrix}
        = \begin{pmatrix} c_0 \\ x_0 \end{pmatrix}

    where :math:`C` is the covariance between observations (partial sill
    covariance plus the nugget on the diagonal), :math:`X` is the drift
    design (intercept plus covariates) of the observations, :math:`c_0` is
    the covariance between the observations and the target, and :math:`x_0`
    is the drift design of the target. The constraint :math:`X^T \lambda = x_0`
    makes the predictor unbiased for any drift coefficients. At zero
    separation :math:`c_0` includes the nugget, so the predictor is exact:
    a target at an observation site returns the observed value.

    The prediction is :math:`\lambda^T z` and the prediction variance is

    .. math::
        \sigma^2 = c(0) + nugget - \lambda^T c_0^* - \mu^T x_0

    where :math:`c(0)` is the partial sill and :math:`c_0^*` the target
    covariance without the nugget. At an observation site this is the nugget.

    The system is not solved directly. :math:`C` and :math:`X^T C^{-1} X` are
    factored once (Cholesky) and reused for every target site.

    Parameters
    ----------
    variogram : Variogram
        The fitted variogram model.
    points : numpy.ndarray
        Array of shape (n, 2) of observation positions (lon, lat).
    values : numpy.ndarray
        Observed values, length n.
    covariates : numpy.ndarray | None
        Drift covariates of the observations, shape (n, p). If None only an
        intercept is used (Ordinary Kriging).
    distance_method : DistanceMethod
        Distance metric, must match the one used to fit the variogram.
    jitter : float
        Initial value added to the diagonal of the covariance matrix, relative
        to the sill, to guarantee a positive definite matrix.
    max_jitter_tries : int
        Number of times the jitter is increased (by a factor of 10) if the
        covariance matrix cannot be factored.
    """

    method: str = "universal"

    def __init__(
        self,
        variogram: Variogram,
        points: np.ndarray,
        values: np.ndarray,
        covariates: np.ndarray | None = None,
        distance_method: DistanceMethod = "euclidean",
        jitter: float = KRIGING_JITTER,
        max_jitter_tries: int = KRIGING_MAX_JITTER_TRIES,
    ) -> None:
        self.variogram = variogram
        self.points = np.atleast_2d(np.asarray(points, dtype=float))
        self.values = np.asarray(values, dtype=float)
        n = len(self.values)
        if self.points.shape[0] != n:
            raise ValueError("Number of values must match number of positions")
        if np.isnan(self.values).any():
            raise ValueError("Observed values contain NaN")
        if covariates is None:
            covariates = np.empty((n, 0))
        self.design = _drift_design(covariates, n)
        if np.isnan(self.design).any():
            raise ValueError("Observation covariates contain NaN")
        self.distance_func = get_distance_func(distance_method)
        self.jitter = jitter
        self.max_jitter_tries = max_jitter_tries
        return None

    @property
    def n_obs(self) -> int:
        return len(self.values)

    @property
    def n_drift(self) -> int:
        """Number of drift terms, including the intercept"""
        return self.design.shape[1]

    def _factor_covariance(self, obs_obs_cov: np.ndarray) -> None:
        scale = max(self.variogram.sill, 1.0)
        jitter = self.jitter * scale
        eye = np.eye(self.n_obs)
        for attempt in range(self.max_jitter_tries + 1):
            try:
                self._cov_factor = cho_factor(obs_obs_cov + jitter * eye)
            except LinAlgError:
                logging.debug(
                    f"Covariance factorisation failed with jitter {jitter:.3g}"
                )
                jitter = jitter * 10.0 if jitter > 0 else KRIGING_JITTER * scale
                continue
            if attempt > 0:
                logging.warning(
                    f"Covariance matrix regularised with jitter {jitter:.3g}"
                )
            self.applied_jitter = jitter
            return None
        raise KrigingSingular(
            "Covariance matrix is singular after "
            + f"{self.max_jitter_tries} increases of the diagonal jitter"
        )

    def factorize(self) -> None:
        """
        Build and factor the observation side of the Kriging system.

        Sets the `drift_coefficients` attribute to the generalised least
        squares estimate of the drift coefficients.

        Raises
        ------
        KrigingSingular
            If the covariance matrix cannot be factored after adding jitter,
            or the drift design is singular.
        """
        if self.n_obs <= self.n_drift:
            raise KrigingSingular(
                f"{self.n_obs} observations cannot constrain "
                + f"{self.n_drift} drift terms"
            )
        if np.linalg.matrix_rank(self.design) < self.n_drift:
            raise KrigingSingular(
                "Drift design is rank deficient, covariates may be collinear "
                + "or constant"
            )
        dist = self.distance_func(self.points)
        obs_obs_cov = self.variogram.covariance(dist)
        obs_obs_cov[np.diag_indices_from(obs_obs_cov)] += self.variogram.nugget
        self._factor_covariance(obs_obs_cov)

        # C^{-1} X and X^T C^{-1} X
        self._cinv_design = cho_solve(self._cov_factor, self.design)
        drift_cov = self.design.T @ self._cinv_design
        try:
            self._drift_factor = cho_factor(drift_cov)
        except LinAlgError as e:
            raise KrigingSingular(
                "Drift design is singular, covariates may be collinear"
            ) from e

        cinv_values = cho_solve(self._cov_factor, self.values)
        self.drift_coefficients = cho_solve(
            self._drift_factor, self.design.T @ cinv_values
        )
        logging.debug(f"Kriging drift coefficients: {self.drift_coefficients}")
        return None

    def get_kriging_weights(
        self,
        target_points: np.ndarray,
        target_covariates: np.ndarray | None = None,
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        """
        Compute the Kriging weights and Lagrange multipliers for a set of
        target sites.

        Returns
        -------
        weights : numpy.ndarray
            Kriging weights, shape (n_obs, n_targets).
        multipliers : numpy.ndarray
            Lagrange multipliers, shape (n_drift, n_targets).
        obs_target_cov : numpy.ndarray
            Covariance between observations and targets, excluding the
            nugget.
        target_design : numpy.ndarray
            Drift design of the targets, shape (n_drift, n_targets).
        """
        if not hasattr(self, "_cov_factor"):
            self.factorize()
        target_points = np.atleast_2d(np.asarray(target_points, dtype=float))
        m = target_points.shape[0]
        if target_covariates is None:
            target_covariates = np.empty((m, 0))
        target_design = _drift_design(target_covariates, m).T
        if target_design.shape[0] != self.n_drift:
            raise ValueError(
                f"Expected {self.n_drift - 1} target covariates, got "
                + f"{target_design.shape[0] - 1}"
            )

        dist = self.distance_func(self.points, target_points)
        obs_target_cov = self.variogram.covariance(dist)
        # A target coincident with an observation shares its nugget
        rhs_cov = obs_target_cov + self.variogram.nugget * (dist == 0.0)
        cinv_cov = cho_solve(self._cov_factor, rhs_cov)
        multipliers = cho_solve(
            self._drift_factor,
            self.design.T @ cinv_cov - target_design,
        )
        weights = cinv_cov - self._cinv_design @ multipliers
        return weights, multipliers, obs_target_cov, target_design

    def solve(
        self,
        target_points: np.ndarray,
        target_covariates: np.ndarray | None = None,
        batch_size: int = 1024,
    ) -> KrigingResult:
        """
        Predict the value, and prediction variance, at a set of target sites.

        Parameters
        ----------
        target_points : numpy.ndarray
            Array of shape (m, 2) of target positions.
        target_covariates : numpy.ndarray | None
            Drift covariates at the targets, shape (m, p). Targets with any NaN
            covariate are not predicted (NaN prediction and variance).
        batch_size : int
            Number of target sites solved at once.

        Returns
        -------
        KrigingResult
        """
        if not hasattr(self, "_cov_factor"):
            self.factorize()
        target_points = np.atleast_2d(np.asarray(target_points, dtype=float))
        m = target_points.shape[0]
        if target_covariates is None:
            target_covariates = np.empty((m, 0))
        target_covariates = np.asarray(target_covariates, dtype=float).reshape(
            m, -1
        )

        prediction = np.full(m, np.nan)
        variance = np.full(m, np.nan)
        valid = np.flatnonzero(~np.isnan(target_covariates).any(axis=1))
        if len(valid) < m:
            logging.warning(
                f"{m - len(valid)} target sites have undefined covariates "
                + "and are not predicted"
            )

        for batch in batched(valid, batch_size):
            idx = np.asarray(batch)
            weights, multipliers, obs_target_cov, target_design = (
                self.get_kriging_weights(
                    target_points[idx], target_covariates[idx]
                )
            )
            prediction[idx] = weights.T @ self.values
            variance[idx] = (
                self.variogram.psill
                + self.variogram.nugget
                - np.sum(weights * obs_target_cov, axis=0)
                - np.sum(multipliers * target_design, axis=0)
            )

        variance[valid] = adjust_small_negative(variance[valid])
        logging.info(f"Kriged {len(valid)} target sites")
        return KrigingResult(
            prediction=prediction,
            variance=variance,
            drift_coefficients=np.asarray(self.drift_coefficients),
        )

    def solve_grid(
        self,
        grid: CovariateGrid,
        names: list[str],
        batch_size: int = 1024,
    ) -> KrigingResult:
        """Predict at every site of a covariate grid"""
        return self.solve(
            grid.coordinates(),
            grid.values(names),
            batch_size=batch_size,
        )
