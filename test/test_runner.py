import pytest  # noqa: F401
import os
import geopandas as gpd
import numpy as np
import polars as pl
import shapely
import xarray as xr
import yaml

from temperature_kriging.grid import grid_from_resolution
from temperature_kriging.runner import main


def write_inputs(tmp_path) -> str:
    grid = grid_from_resolution(1, [(0, 10), (0, 10)], ["lat", "lon"])
    elevation = (
        grid
        + xr.DataArray(100.0 * grid.coords["lon"].values, dims=["lon"])
        + xr.DataArray(50.0 * grid.coords["lat"].values, dims=["lat"])
    ).rename("elevation")
    elevation.to_dataset().to_netcdf(tmp_path / "elevation.nc")

    gpd.GeoDataFrame(
        geometry=[shapely.box(-0.5, -0.5, 0.5, 10.0)], crs="EPSG:4326"
    ).to_file(tmp_path / "ocean.geojson", driver="GeoJSON")

    rng = np.random.default_rng(8)
    n = 200
    lon = rng.uniform(-0.4, 9.4, size=n)
    lat = rng.uniform(-0.4, 9.4, size=n)
    values = 20.0 - 0.01 * (100 * np.round(lon) + 50 * np.round(lat))
    values += rng.normal(scale=0.5, size=n)
    obs = pl.DataFrame(
        {
            "id": [f"s{i}" for i in range(n)],
            "long": lon,
            "lat": lat,
            "t1970w": values,
            "t2010w": values + 0.5,
        }
    )
    obs.write_csv(tmp_path / "obs.csv")
    obs.head(3).select(["id", "long", "lat"]).write_csv(tmp_path / "sites.csv")

    config = {
        "setup": {"log_level": "warn", "seed": 4, "n_workers": 2},
        "data": {
            "observations": str(tmp_path / "obs.csv"),
            "test_sites": str(tmp_path / "sites.csv"),
            "elevation": str(tmp_path / "elevation.nc"),
            "ocean": str(tmp_path / "ocean.geojson"),
        },
        "variogram": {
            "cutoff": 5,
            "width": 0.5,
            "candidate_widths": [0.5, 1],
            "shapes": ["exponential", "spherical"],
        },
        "kriging": {"covariates": ["elev", "cont"]},
        "validation": {"fraction": 0.1},
        "strata": [
            {
                "name": f"{era}w",
                "column": f"t{era}w",
                "era": era,
                "season": "winter",
            }
            for era in (1970, 2010)
        ],
        "output": {
            "path": str(tmp_path / "output"),
            "pre_era": 1970,
            "post_era": 2010,
        },
    }
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(config))
    return str(path)


def test_main(tmp_path) -> None:
    config_path = write_inputs(tmp_path)

    main(["-config", config_path])

    out = tmp_path / "output"
    for name in [
        "kriging_1970w.nc",
        "kriging_2010w.nc",
        "summary.csv",
        "test_sites.csv",
        "differences.nc",
    ]:
        assert os.path.isfile(out / name), name

    summary = pl.read_csv(out / "summary.csv")
    assert summary.get_column("status").to_list() == ["ok", "ok"]

    sites = pl.read_csv(out / "test_sites.csv")
    assert sites.columns == ["id", "lon", "lat", "1970w", "2010w"]

    with xr.open_dataset(out / "differences.nc") as diffs:
        assert np.allclose(diffs["diff_winter"].values, 0.5)


def test_main_requires_config() -> None:
    with pytest.raises(SystemExit):
        main([])
