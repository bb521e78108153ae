"""
Pipeline
--------

Runs the full workflow for each stratum (era and season combination):

1. Empirical semivariogram of the observed values.
2. Fit of the variogram model shapes and selection of a model.
3. Drift regression on the covariates (diagnostic), Moran's I of the
   residuals and nearest-neighbour autocorrelation.
4. Universal Kriging onto the covariate grid.
5. Validation against the held-out observations.

Strata are independent and can run concurrently. Each stratum builds its own
season-specific CovariateGrid from the shared base grid, which is never
modified. An error in one stratum is recorded in its result and does not
affect the others.
"""

from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
import logging
import numpy as np
import polars as pl
import xarray as xr

from .autocorrelation import MoranResult, knn_autocorrelation, morans_i
from .constants import (
    KRIGING_JITTER,
    KRIGING_MAX_JITTER_TRIES,
    MIN_BIN_PAIRS,
    NEIGHBOUR_ORDERS,
    VALIDATION_FRACTION,
    VARIOGRAM_CUTOFF,
    VARIOGRAM_WIDTH,
)
from .covariates import DRIFT_COVARIATES, seasonal_covariates
from .distances import calculate_distance_matrix, inverse_distance_weights
from .errors import KrigingPipelineError
from .fitting import FittedVariogram, fit_variogram_models, select_variogram
from .grid import CovariateGrid, sample_surface
from .io import get_recurse
from .kriging import UniversalKriging
from .observations import (
    CovariateSubstitution,
    attach_residuals,
    complete_cases,
    extract_covariates,
    split_validation,
    stratum_view,
    substitute_missing,
)
from .regression import DriftRegression, fit_drift_frame
from .semivariance import estimate_variogram_frame
from .types import DistanceMethod, Season, StratumStatus
from .validation import ValidationReport, validate


@dataclass(frozen=True)
class Stratum:
    """
    A combination of era and season, with the observation column holding its
    values.
    """

    name: str
    column: str
    era: str
    season: Season


@dataclass
class PipelineConfig:
    """Settings of the per-stratum workflow"""

    covariates: list[str] = field(
        default_factory=lambda: list(DRIFT_COVARIATES)
    )
    distance_method: DistanceMethod = "euclidean"
    # Empirical variogram
    cutoff: float = VARIOGRAM_CUTOFF
    width: float = VARIOGRAM_WIDTH
    min_pairs: int = MIN_BIN_PAIRS
    # Model fitting and selection
    shapes: list[str] = field(
        default_factory=lambda: [
            "exponential",
            "spherical",
            "gaussian",
            "matern",
        ]
    )
    selection: str = "best"
    tolerance: float = 0.05
    preferred: str = "gaussian"
    # Diagnostics
    neighbour_orders: tuple[int, ...] = NEIGHBOUR_ORDERS
    # Kriging
    jitter: float = KRIGING_JITTER
    max_jitter_tries: int = KRIGING_MAX_JITTER_TRIES
    batch_size: int = 1024

    @classmethod
    def from_config(cls, config: dict) -> "PipelineConfig":
        """Read the settings from the "variogram" and "kriging" sections"""
        d = cls()

        def _get(section: str, key: str, default):
            return get_recurse(config, section, key, default=default)

        return cls(
            covariates=list(_get("kriging", "covariates", d.covariates)),
            distance_method=_get(
                "kriging", "distance_method", d.distance_method
            ),
            cutoff=float(_get("variogram", "cutoff", d.cutoff)),
            width=float(_get("variogram", "width", d.width)),
            min_pairs=int(_get("variogram", "min_pairs", d.min_pairs)),
            shapes=list(_get("variogram", "shapes", d.shapes)),
            selection=str(_get("variogram", "selection", d.selection)),
            tolerance=float(_get("variogram", "tolerance", d.tolerance)),
            preferred=str(_get("variogram", "preferred", d.preferred)),
            neighbour_orders=tuple(
                _get("variogram", "neighbour_orders", d.neighbour_orders)
            ),
            jitter=float(_get("kriging", "jitter", d.jitter)),
            max_jitter_tries=int(
                _get("kriging", "max_jitter_tries", d.max_jitter_tries)
            ),
            batch_size=int(_get("kriging", "batch_size", d.batch_size)),
        )


@dataclass
class StratumResult:
    """Outputs and diagnostics of one stratum"""

    stratum: Stratum
    status: StratumStatus = "ok"
    message: str = ""
    fits: list[FittedVariogram] = field(default_factory=list)
    variogram: FittedVariogram | None = None
    regression: DriftRegression | None = None
    moran: MoranResult | None = None
    autocorrelation: pl.DataFrame | None = None
    surface: xr.Dataset | None = None
    validation: ValidationReport | None = None
    substitutions: CovariateSubstitution = field(
        default_factory=CovariateSubstitution
    )

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    def summary(self) -> dict:
        """Flat summary of the stratum, one row of the summary table"""
        row: dict = {
            "stratum": self.stratum.name,
            "era": self.stratum.era,
            "season": self.stratum.season,
            "status": self.status,
            "message": self.message,
            "shape": None,
            "nugget": None,
            "psill": None,
            "range": None,
            "wsse": None,
            "rsquared": None,
            "morans_i": None,
            "morans_i_p_value": None,
            "rmse": None,
            "n_holdout": None,
            "n_coverage_gap": None,
            "n_substituted": self.substitutions.total,
        }
        if self.variogram is not None:
            model = self.variogram.model
            row.update(
                shape=model.shape,
                nugget=model.nugget,
                psill=model.psill,
                range=model.range,
                wsse=self.variogram.wsse,
            )
        if self.regression is not None:
            row["rsquared"] = self.regression.rsquared
        if self.moran is not None:
            row["morans_i"] = self.moran.observed
            row["morans_i_p_value"] = self.moran.p_value
        if self.validation is not None:
            row.update(self.validation.as_dict())
        return row


def prepare_observations(
    df: pl.DataFrame,
    value_cols: list[str],
    fraction: float = VALIDATION_FRACTION,
    seed: int | None = None,
) -> tuple[pl.DataFrame, pl.DataFrame]:
    """
    Filter to complete records and split off the validation hold-out, once for
    all strata.
    """
    df = complete_cases(df, ["id", "lon", "lat", *value_cols])
    return split_validation(df, fraction=fraction, seed=seed)


def _run_stratum(
    result: StratumResult,
    fit_obs: pl.DataFrame,
    holdout: pl.DataFrame,
    base_grid: CovariateGrid,
    config: PipelineConfig,
) -> None:
    stratum = result.stratum
    names = config.covariates

    obs = stratum_view(fit_obs, stratum.column)
    grid = seasonal_covariates(base_grid, stratum.season).select(names)
    obs, obs_subs = extract_covariates(obs, grid, names)

    empirical = estimate_variogram_frame(
        obs,
        "value",
        cutoff=config.cutoff,
        width=config.width,
        method=config.distance_method,
    )
    result.fits = fit_variogram_models(
        empirical, config.shapes, min_pairs=config.min_pairs
    )
    result.variogram = select_variogram(
        result.fits,
        policy=config.selection,
        tolerance=config.tolerance,
        preferred=config.preferred,
    )

    result.regression = fit_drift_frame(obs, "value", names)
    obs = attach_residuals(obs, result.regression.residuals)
    weights = inverse_distance_weights(
        calculate_distance_matrix(obs, method=config.distance_method)
    )
    result.moran = morans_i(obs.get_column("residual").to_numpy(), weights)
    points = obs.select(["lon", "lat"]).to_numpy()
    orders = [k for k in config.neighbour_orders if k < obs.height]
    if orders:
        result.autocorrelation = knn_autocorrelation(
            obs.get_column("value").to_numpy(), points, orders
        )

    target_covariates, grid_subs = substitute_missing(
        grid.values(names), names
    )
    result.substitutions = obs_subs + grid_subs

    kriging = UniversalKriging(
        result.variogram.model,
        points,
        obs.get_column("value").to_numpy(),
        obs.select(names).to_numpy(),
        distance_method=config.distance_method,
        jitter=config.jitter,
        max_jitter_tries=config.max_jitter_tries,
    )
    prediction = kriging.solve(
        grid.coordinates(), target_covariates, batch_size=config.batch_size
    )
    result.surface = prediction.to_dataset(grid)

    holdout_view = complete_cases(stratum_view(holdout, stratum.column))
    if holdout_view.height:
        result.validation = validate(result.surface["prediction"], holdout_view)
    return None


def run_stratum(
    stratum: Stratum,
    fit_obs: pl.DataFrame,
    holdout: pl.DataFrame,
    base_grid: CovariateGrid,
    config: PipelineConfig | None = None,
) -> StratumResult:
    """
    Run the full workflow for a single stratum.

    Errors that are fatal for the stratum (`KrigingPipelineError`) are caught,
    the returned result has status "failed" and contains the outputs computed
    before the error.

    Parameters
    ----------
    stratum : Stratum
        The stratum to process.
    fit_obs : polars.DataFrame
        Observations used for fitting, with "id", "lon", "lat" and the value
        column of the stratum.
    holdout : polars.DataFrame
        Held-out observations for validation.
    base_grid : CovariateGrid
        Season independent covariate grid, must contain the north-south
        surface gradient. Not modified.
    config : PipelineConfig | None
        Workflow settings, defaults are used if not set.

    Returns
    -------
    StratumResult
    """
    config = config or PipelineConfig()
    result = StratumResult(stratum=stratum)
    logging.info(f"Starting stratum {stratum.name}")
    try:
        _run_stratum(result, fit_obs, holdout, base_grid, config)
    except KrigingPipelineError as e:
        result.status = "failed"
        result.message = f"{type(e).__name__}: {e}"
        logging.error(f"Stratum {stratum.name} failed: {result.message}")
        return result
    logging.info(f"Completed stratum {stratum.name}")
    return result


def run_pipeline(
    strata: Iterable[Stratum],
    fit_obs: pl.DataFrame,
    holdout: pl.DataFrame,
    base_grid: CovariateGrid,
    config: PipelineConfig | None = None,
    n_workers: int = 1,
) -> list[StratumResult]:
    """
    Run every stratum, concurrently if `n_workers` > 1.

    Returns
    -------
    results : list[StratumResult]
        One result per stratum in the input order, including failed strata.
    """
    strata = list(strata)
    names = [s.name for s in strata]
    if len(set(names)) != len(names):
        raise ValueError("Stratum names must be unique")
    config = config or PipelineConfig()

    if n_workers <= 1:
        return [
            run_stratum(s, fit_obs, holdout, base_grid, config) for s in strata
        ]

    results: dict[str, StratumResult] = {}
    with ThreadPoolExecutor(max_workers=n_workers) as executor:
        futures = {
            executor.submit(
                run_stratum, s, fit_obs, holdout, base_grid, config
            ): s.name
            for s in strata
        }
        for future in as_completed(futures):
            results[futures[future]] = future.result()
    return [results[name] for name in names]


def site_prediction_table(
    sites: pl.DataFrame,
    results: list[StratumResult],
) -> pl.DataFrame:
    """
    Predicted value of every stratum at a set of sites.

    Parameters
    ----------
    sites : polars.DataFrame
        Sites with "id", "lon" and "lat" columns.
    results : list[StratumResult]
        Stratum results.

    Returns
    -------
    polars.DataFrame
        The site id and position, plus one column per stratum. Values are null
        for sites outside the grid and for failed strata.
    """
    table = sites.select(["id", "lon", "lat"])
    lon = table.get_column("lon")
    lat = table.get_column("lat")
    columns = []
    for result in results:
        if result.surface is None or not result.ok:
            values = np.full(table.height, np.nan)
        else:
            values, _ = sample_surface(result.surface["prediction"], lon, lat)
        columns.append(
            pl.Series(result.stratum.name, values, dtype=pl.Float64).fill_nan(
                None
            )
        )
    return table.with_columns(columns)


def difference_grids(
    results: list[StratumResult],
    pre_era: str,
    post_era: str,
) -> xr.Dataset:
    """
    Post-era minus pre-era prediction for each season with successful results
    for both eras. Variables are named "diff_<season>".
    """
    surfaces = {
        (r.stratum.era, r.stratum.season): r.surface["prediction"]
        for r in results
        if r.ok and r.surface is not None
    }
    diffs = {}
    for season in dict.fromkeys(r.stratum.season for r in results):
        pre = surfaces.get((pre_era, season))
        post = surfaces.get((post_era, season))
        if pre is None or post is None:
            logging.warning(
                f"Cannot compute {season} difference: missing prediction "
                + f"for era {pre_era if pre is None else post_era}"
            )
            continue
        diffs[f"diff_{season}"] = (post - pre).rename(f"diff_{season}")
    return xr.Dataset(diffs)


def summary_table(results: list[StratumResult]) -> pl.DataFrame:
    """Summary of every stratum, one row per stratum"""
    return pl.DataFrame(
        [r.summary() for r in results], infer_schema_length=None
    )
