"""
Variogram Fitting
-----------------

Fit theoretical variogram models to an empirical semivariogram by weighted
non-linear least squares, and select a model from a set of fitted shapes.

The fit of each shape is independent, `fit_variogram` can be called for a
single shape. `fit_variogram_models` fits a family of shapes and
`select_variogram` is the (replaceable) policy used to choose between them.
"""

from collections.abc import Iterable
from dataclasses import dataclass
import logging
import warnings
import numpy as np
from scipy.optimize import OptimizeWarning, curve_fit

from .constants import MIN_BIN_PAIRS
from .errors import VariogramFitError
from .semivariance import EmpiricalVariogram
from .types import SelectionPolicy, VariogramShape
from .variogram import Variogram, get_variogram_class

# Relative weight of bins with fewer pairs than the minimum
LOW_COUNT_WEIGHT: float = 0.1
MIN_RANGE: float = 1e-6


@dataclass(frozen=True)
class FittedVariogram:
    """
    A fitted variogram model with the weighted residual sum of squares of the
    fit to the empirical semivariogram.
    """

    model: Variogram
    wsse: float

    @property
    def shape(self) -> VariogramShape:
        return self.model.shape


def _bin_weights(n_pairs: np.ndarray, min_pairs: int) -> np.ndarray:
    weights = n_pairs.astype(float)
    weights[n_pairs < min_pairs] *= LOW_COUNT_WEIGHT
    return weights / weights.sum()


def initial_guess(
    empirical: EmpiricalVariogram,
    effective_range_factor: float = 1.0,
) -> tuple[float, float, float]:
    """
    Starting values (nugget, psill, range) for the non-linear fit.

    The apparent sill is the maximum semivariance, the apparent (effective)
    range is the mean pair distance of the first bin where the semivariance
    reaches 95% of the apparent sill. The nugget is the linear extrapolation
    of the first two bins to distance 0.

    Parameters
    ----------
    empirical : EmpiricalVariogram
        Empirical variogram containing only non-empty bins.
    effective_range_factor : float
        Ratio of effective range to range parameter for the model shape.
    """
    lag = empirical.mean_distance
    gamma = empirical.semivariance
    max_gamma = float(np.max(gamma))

    nugget = 0.0
    if len(lag) > 1 and lag[1] != lag[0]:
        slope = (gamma[1] - gamma[0]) / (lag[1] - lag[0])
        nugget = float(np.clip(gamma[0] - slope * lag[0], 0.0, max_gamma))

    psill = max(max_gamma - nugget, 1e-3 * max(max_gamma, 1.0))

    reached = np.flatnonzero(gamma >= 0.95 * max_gamma)
    apparent_range = float(lag[reached[0]]) if len(reached) else float(lag[-1])
    range_ = max(apparent_range / effective_range_factor, MIN_RANGE * 10)

    return nugget, psill, range_


def fit_variogram(
    empirical: EmpiricalVariogram,
    shape: VariogramShape | str,
    min_pairs: int = MIN_BIN_PAIRS,
    **model_kwargs,
) -> FittedVariogram:
    """
    Fit a single variogram model shape to an empirical semivariogram.

    Minimises the weighted sum of squared differences between the empirical
    and model semivariance. The weight of each bin is proportional to the
    number of point pairs in the bin, bins containing fewer than `min_pairs`
    pairs are down-weighted and bins without pairs are excluded.

    Parameters
    ----------
    empirical : EmpiricalVariogram
        The empirical semivariogram.
    shape : VariogramShape
        Name of the model shape.
    min_pairs : int
        Bins with fewer pairs than this are down-weighted.
    **model_kwargs
        Additional fixed parameters of the model, for example `nu` for the
        Matern model.

    Returns
    -------
    FittedVariogram

    Raises
    ------
    EmptyVariogramBin
        If the empirical variogram contains no pairs.
    VariogramFitError
        If the optimiser fails to converge.
    """
    model_class = get_variogram_class(shape)
    empirical = empirical.nonempty()
    # Bins sit at the mean distance of their pairs, not the bin centre
    lag = empirical.mean_distance
    gamma = empirical.semivariance
    weights = _bin_weights(empirical.n_pairs, min_pairs)

    def _model(h: np.ndarray, nugget: float, psill: float, range_: float):
        return model_class(
            psill=psill, nugget=nugget, range=range_, **model_kwargs
        ).semivariance(h)

    p0 = initial_guess(empirical, model_class.effective_range_factor)
    max_gamma = float(np.max(gamma))
    upper_range = 10.0 * float(np.max(lag)) / model_class.effective_range_factor
    lower = [0.0, 0.0, MIN_RANGE]
    upper = [
        max(2.0 * max_gamma, 1e-12),
        max(4.0 * max_gamma, 1e-12),
        max(upper_range, 10 * MIN_RANGE),
    ]
    p0 = tuple(float(np.clip(p, lo, hi)) for p, lo, hi in zip(p0, lower, upper))

    try:
        with warnings.catch_warnings():
            # Parameter covariance is not used
            warnings.simplefilter("ignore", OptimizeWarning)
            popt, _ = curve_fit(
                _model,
                lag,
                gamma,
                p0=p0,
                sigma=1.0 / np.sqrt(weights),
                bounds=(lower, upper),
                maxfev=10_000,
            )
    except (RuntimeError, ValueError) as e:
        raise VariogramFitError(
            f"Fitting {model_class.shape} variogram failed: {e}"
        ) from e

    nugget, psill, range_ = (float(p) for p in popt)
    model = model_class(
        psill=psill, nugget=nugget, range=range_, **model_kwargs
    )
    wsse = float(np.sum(weights * (gamma - model.semivariance(lag)) ** 2))
    logging.info(
        f"Fitted {model.shape} variogram: nugget = {nugget:.4g}, "
        + f"psill = {psill:.4g}, range = {range_:.4g}, wsse = {wsse:.4g}"
    )
    return FittedVariogram(model=model, wsse=wsse)


def fit_variogram_models(
    empirical: EmpiricalVariogram,
    shapes: Iterable[VariogramShape | str] = (
        "exponential",
        "spherical",
        "gaussian",
        "matern",
    ),
    min_pairs: int = MIN_BIN_PAIRS,
) -> list[FittedVariogram]:
    """
    Fit each of a set of variogram shapes to an empirical semivariogram.

    Shapes that fail to fit are logged and skipped.

    Returns
    -------
    fits : list[FittedVariogram]
        One entry for each shape that was fitted successfully, in the order of
        `shapes`.

    Raises
    ------
    EmptyVariogramBin
        If the empirical variogram contains no pairs.
    VariogramFitError
        If no shape could be fitted.
    """
    empirical = empirical.nonempty()
    fits: list[FittedVariogram] = []
    failures: list[str] = []
    for shape in shapes:
        try:
            fits.append(fit_variogram(empirical, shape, min_pairs=min_pairs))
        except VariogramFitError as e:
            logging.warning(str(e))
            failures.append(str(shape))
    if not fits:
        raise VariogramFitError(
            f"No variogram shape could be fitted: {', '.join(failures)}"
        )
    return fits


def select_variogram(
    fits: list[FittedVariogram],
    policy: SelectionPolicy | str = "best",
    tolerance: float = 0.05,
    preferred: VariogramShape | str = "gaussian",
) -> FittedVariogram:
    """
    Choose a variogram model from a set of fits.

    Parameters
    ----------
    fits : list[FittedVariogram]
        Fitted models, for example from `fit_variogram_models`.
    policy : SelectionPolicy
        "best" selects the fit with the lowest weighted residual sum of
        squares. Otherwise the name of a shape, the fit of that shape is
        always selected.
    tolerance : float
        With the "best" policy, fits whose residual is within this relative
        tolerance of the lowest residual are considered equivalent, and the
        `preferred` shape is chosen if it is among them.
    preferred : VariogramShape
        Shape chosen when fits are equivalent.

    Returns
    -------
    FittedVariogram
    """
    if not fits:
        raise ValueError("No fitted variograms to select from")

    policy = policy.lower()
    if policy != "best":
        for fit in fits:
            if fit.shape == policy:
                return fit
        raise VariogramFitError(f"No fitted variogram with shape '{policy}'")

    best = min(fits, key=lambda f: f.wsse)
    threshold = best.wsse * (1.0 + tolerance)
    for fit in fits:
        if fit.shape == preferred.lower() and fit.wsse <= threshold:
            best = fit
            break
    logging.info(f"Selected {best.shape} variogram (wsse = {best.wsse:.4g})")
    return best
