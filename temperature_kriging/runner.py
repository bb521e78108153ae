"""
Command line runner for the full batch: load the inputs named in a YAML
configuration file, run every stratum, and write the outputs.

Usage::

    temperature-kriging -config config_kriging.yaml
"""

import argparse
import os
import logging
from datetime import datetime
import polars as pl
import xarray as xr

from .constants import VALIDATION_FRACTION, VARIOGRAM_CUTOFF
from .covariates import build_covariate_grid
from .grid import CovariateGrid, grid_from_resolution, regrid_block_mean
from .io import (
    get_recurse,
    load_array,
    load_config,
    load_observations,
    load_ocean_mask,
    write_csv,
    write_dataset,
)
from .pipeline import (
    PipelineConfig,
    Stratum,
    StratumResult,
    difference_grids,
    prepare_observations,
    run_pipeline,
    site_prediction_table,
    summary_table,
)
from .semivariance import bin_width_pair_counts, summarise_pair_counts
from .utils import init_logging

DEFAULT_STRATA: list[dict] = [
    {
        "name": "1970w",
        "column": "meanWi_before1970",
        "era": "1970",
        "season": "winter",
    },
    {
        "name": "1970s",
        "column": "meanSu_before1970",
        "era": "1970",
        "season": "summer",
    },
    {
        "name": "2010w",
        "column": "meanWi_after1990",
        "era": "2010",
        "season": "winter",
    },
    {
        "name": "2010s",
        "column": "meanSu_after1990",
        "era": "2010",
        "season": "summer",
    },
]

parser = argparse.ArgumentParser(
    description="Universal Kriging of station temperatures onto a grid"
)
parser.add_argument(
    "-config",
    dest="config",
    required=True,
    help="YAML file containing configuration settings",
)


def _prediction_grid(elevation: xr.DataArray, config: dict) -> xr.DataArray:
    """Average the elevation onto the configured grid, if one is configured"""
    resolution = get_recurse(config, "grid", "resolution")
    if resolution is None:
        return elevation
    bounds = get_recurse(
        config, "grid", "bounds", default=[[-90, 90], [-180, 180]]
    )
    target = grid_from_resolution(
        resolution, [tuple(b) for b in bounds], ["lat", "lon"]
    )
    return regrid_block_mean(elevation, target)


def _load_base_grid(config: dict) -> CovariateGrid:
    elevation = load_array(
        config["data"]["elevation"],
        var=get_recurse(config, "data", "elevation_var", default="elevation"),
    ).load()
    elevation = _prediction_grid(elevation, config)
    ocean_mask = load_ocean_mask(config["data"]["ocean"], elevation)
    return build_covariate_grid(elevation, ocean_mask)


def _log_bin_width_diagnostic(fit_obs: pl.DataFrame, config: dict) -> None:
    widths = get_recurse(config, "variogram", "candidate_widths")
    if not widths:
        return None
    counts = bin_width_pair_counts(
        fit_obs.select(["lon", "lat"]).to_numpy(),
        cutoff=float(
            get_recurse(
                config, "variogram", "cutoff", default=VARIOGRAM_CUTOFF
            )
        ),
        widths=widths,
    )
    logging.info(f"Pair counts by bin width:\n{summarise_pair_counts(counts)}")
    return None


def _optional_str(value) -> str | None:
    return None if value is None else str(value)


def write_outputs(
    results: list[StratumResult],
    out_path: str,
    sites: pl.DataFrame | None = None,
    pre_era: str | None = None,
    post_era: str | None = None,
) -> None:
    """Write the grids and tables produced by the pipeline"""
    for result in results:
        if result.surface is not None:
            write_dataset(
                result.surface,
                os.path.join(out_path, f"kriging_{result.stratum.name}.nc"),
            )
    write_csv(summary_table(results), os.path.join(out_path, "summary.csv"))
    if sites is not None:
        write_csv(
            site_prediction_table(sites, results),
            os.path.join(out_path, "test_sites.csv"),
        )
    if pre_era is not None and post_era is not None:
        diffs = difference_grids(results, pre_era, post_era)
        if diffs.data_vars:
            write_dataset(diffs, os.path.join(out_path, "differences.nc"))
    return None


def main(argv: list[str] | None = None) -> None:
    """Run the batch described by the configuration file"""
    args = parser.parse_args(argv)
    config = load_config(args.config)

    init_logging(
        get_recurse(config, "setup", "log_file"),
        get_recurse(config, "setup", "log_level", default="info"),
    )
    logging.info(f"Started at {datetime.today()} with config {args.config}")

    strata = [
        Stratum(
            name=str(s["name"]),
            column=s["column"],
            era=str(s["era"]),
            season=s["season"],
        )
        for s in get_recurse(config, "strata", default=DEFAULT_STRATA)
    ]
    data = config["data"]
    obs = load_observations(
        data["observations"],
        id_col=data.get("id_col", "id"),
        lon_col=data.get("lon_col", "long"),
        lat_col=data.get("lat_col", "lat"),
    )
    fit_obs, holdout = prepare_observations(
        obs,
        [s.column for s in strata],
        fraction=float(
            get_recurse(
                config, "validation", "fraction", default=VALIDATION_FRACTION
            )
        ),
        seed=get_recurse(config, "setup", "seed"),
    )
    _log_bin_width_diagnostic(fit_obs, config)

    base_grid = _load_base_grid(config)
    results = run_pipeline(
        strata,
        fit_obs,
        holdout,
        base_grid,
        PipelineConfig.from_config(config),
        n_workers=int(get_recurse(config, "setup", "n_workers", default=1)),
    )

    sites = None
    if data.get("test_sites"):
        sites = load_observations(
            data["test_sites"],
            id_col=data.get("id_col", "id"),
            lon_col=data.get("lon_col", "long"),
            lat_col=data.get("lat_col", "lat"),
        )
    write_outputs(
        results,
        get_recurse(config, "output", "path", default="output"),
        sites=sites,
        pre_era=_optional_str(get_recurse(config, "output", "pre_era")),
        post_era=_optional_str(get_recurse(config, "output", "post_era")),
    )

    failed = [r.stratum.name for r in results if not r.ok]
    if failed:
        logging.warning(f"Failed strata: {', '.join(failed)}")
    logging.info(f"Finished at {datetime.today()}")
    return None


if __name__ == "__main__":
    main()
