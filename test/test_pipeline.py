import pytest  # noqa: F401
import numpy as np
import polars as pl
import xarray as xr

from temperature_kriging.covariates import build_covariate_grid
from temperature_kriging.grid import CovariateGrid, grid_from_resolution
from temperature_kriging.pipeline import (
    PipelineConfig,
    Stratum,
    difference_grids,
    prepare_observations,
    run_pipeline,
    run_stratum,
    site_prediction_table,
    summary_table,
)

CONFIG = PipelineConfig(
    covariates=["elev"],
    cutoff=5.0,
    width=0.5,
    shapes=["exponential"],
)

STRATA = [
    Stratum("1970w", "t1970w", "1970", "winter"),
    Stratum("2010w", "t2010w", "2010", "winter"),
]


def base_grid() -> CovariateGrid:
    grid = grid_from_resolution(1, [(0, 10), (0, 10)], ["lat", "lon"])
    elevation = (
        grid
        + xr.DataArray(100.0 * grid.coords["lon"].values, dims=["lon"])
        + xr.DataArray(50.0 * grid.coords["lat"].values, dims=["lat"])
    )
    ocean = elevation.coords["lon"].broadcast_like(elevation) == 0
    return build_covariate_grid(elevation, ocean)


def observations(base: CovariateGrid, n: int = 300) -> pl.DataFrame:
    rng = np.random.default_rng(17)
    lon = rng.uniform(-0.4, 9.4, size=n)
    lat = rng.uniform(-0.4, 9.4, size=n)
    elev, _ = base.sample(lon, lat, ["elev"])
    values = 20.0 - 0.01 * elev[:, 0] + rng.normal(scale=0.5, size=n)
    return pl.DataFrame(
        {
            "id": [f"station_{i}" for i in range(n)],
            "lon": lon,
            "lat": lat,
            "t1970w": values,
            "t2010w": values + 1.0,
            "tbad": np.full(n, np.nan),
        }
    )


def test_prepare_observations() -> None:
    df = observations(base_grid())
    fit_obs, holdout = prepare_observations(
        df, ["t1970w", "t2010w"], fraction=0.1, seed=3
    )
    assert holdout.height == 30
    assert fit_obs.height == 270

    # NaN values are incomplete records
    fit_obs, holdout = prepare_observations(df, ["tbad"], fraction=0.1)
    assert fit_obs.height == holdout.height == 0


def test_run_stratum() -> None:
    base = base_grid()
    fit_obs, holdout = prepare_observations(
        observations(base), ["t1970w", "t2010w"], fraction=0.1, seed=3
    )

    result = run_stratum(STRATA[0], fit_obs, holdout, base, CONFIG)

    assert result.ok, result.message
    assert result.variogram is not None
    assert result.variogram.shape == "exponential"
    assert result.regression is not None
    assert result.regression.params["elev"] == pytest.approx(-0.01, abs=2e-3)
    assert result.moran is not None
    assert 0.0 <= result.moran.p_value <= 1.0
    assert result.autocorrelation is not None
    assert result.autocorrelation.height == 4

    assert result.surface is not None
    assert result.surface["prediction"].shape == (10, 10)
    assert np.all(result.surface["variance"].values >= 0)
    assert result.validation is not None
    assert result.validation.n_holdout == 30
    assert result.validation.rmse < 1.0
    assert result.substitutions.total == 0

    # The shared grid is not modified by the stratum
    assert base.names == ["elev", "cont", "ns_gradient"]


def test_gaussian_grid_scenario() -> None:
    # One station at the centre of each cell of a 10 x 10 grid
    base = base_grid()
    sites = base.sites()
    elev = sites.get_column("elev").to_numpy()
    truth = 20.0 - 0.01 * elev
    rng = np.random.default_rng(23)
    obs = sites.select(
        pl.format("site_{}", pl.col("site_idx")).alias("id"),
        "lon",
        "lat",
        pl.Series("t1970w", truth + rng.normal(scale=0.5, size=len(truth))),
    )
    fit_obs, holdout = prepare_observations(
        obs, ["t1970w"], fraction=0.1, seed=5
    )
    config = PipelineConfig(
        covariates=["elev"],
        cutoff=5.0,
        width=0.5,
        shapes=["gaussian"],
        selection="gaussian",
    )

    result = run_stratum(STRATA[0], fit_obs, holdout, base, config)

    assert result.ok, result.message
    assert result.variogram is not None
    assert result.variogram.shape == "gaussian"
    assert result.validation is not None
    assert result.validation.n_holdout == 10
    assert result.validation.rmse < 1.0

    assert result.surface is not None
    predicted = result.surface["prediction"].values.ravel()
    fitted = np.isin(
        sites.get_column("site_idx").to_numpy(),
        fit_obs.get_column("id").str.strip_prefix("site_").cast(int).to_numpy(),
    )
    observed = obs.get_column("t1970w").to_numpy()
    err = predicted[fitted] - observed[fitted]
    assert np.sqrt(np.mean(err**2)) < 0.75


def test_run_pipeline() -> None:
    base = base_grid()
    obs = observations(base)
    fit_obs, holdout = prepare_observations(
        obs, ["t1970w", "t2010w"], fraction=0.1, seed=3
    )
    # The all-missing column fails its stratum only
    strata = [*STRATA, Stratum("bad", "tbad", "1970", "summer")]

    results = run_pipeline(strata, fit_obs, holdout, base, CONFIG)

    assert [r.stratum.name for r in results] == ["1970w", "2010w", "bad"]
    assert results[0].ok and results[1].ok
    assert results[2].status == "failed"
    assert results[2].message.startswith("VariogramFitError")
    assert results[2].surface is None

    diffs = difference_grids(results, "1970", "2010")
    assert list(diffs.data_vars) == ["diff_winter"]
    # Kriging weights sum to one, so a constant shift is reproduced
    assert np.allclose(diffs["diff_winter"].values, 1.0)

    sites = site_prediction_table(holdout.head(5), results)
    assert sites.columns == ["id", "lon", "lat", "1970w", "2010w", "bad"]
    assert sites.get_column("bad").null_count() == 5
    assert np.allclose(
        sites.get_column("2010w").to_numpy()
        - sites.get_column("1970w").to_numpy(),
        1.0,
    )

    summary = summary_table(results)
    assert summary.height == 3
    assert summary.get_column("status").to_list() == ["ok", "ok", "failed"]
    assert summary.get_column("shape").to_list()[:2] == [
        "exponential",
        "exponential",
    ]


def test_run_pipeline_concurrent() -> None:
    base = base_grid()
    fit_obs, holdout = prepare_observations(
        observations(base), ["t1970w", "t2010w"], fraction=0.1, seed=3
    )

    serial = run_pipeline(STRATA, fit_obs, holdout, base, CONFIG)
    threaded = run_pipeline(STRATA, fit_obs, holdout, base, CONFIG, n_workers=2)

    assert [r.stratum.name for r in threaded] == ["1970w", "2010w"]
    for s, t in zip(serial, threaded):
        assert s.surface is not None and t.surface is not None
        assert np.allclose(
            s.surface["prediction"].values, t.surface["prediction"].values
        )

    with pytest.raises(ValueError):
        run_pipeline([STRATA[0], STRATA[0]], fit_obs, holdout, base, CONFIG)


def test_config_from_dict() -> None:
    config = PipelineConfig.from_config(
        {
            "variogram": {"cutoff": 100, "shapes": ["gaussian"]},
            "kriging": {"covariates": ["elev", "hsun"], "batch_size": 64},
        }
    )
    assert config.cutoff == 100.0
    assert config.width == PipelineConfig().width
    assert config.shapes == ["gaussian"]
    assert config.covariates == ["elev", "hsun"]
    assert config.batch_size == 64

    defaults = PipelineConfig.from_config({"variogram": None})
    assert defaults == PipelineConfig()
