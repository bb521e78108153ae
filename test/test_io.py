import pytest  # noqa: F401
import os
import geopandas as gpd
import numpy as np
import polars as pl
import shapely
import yaml

from temperature_kriging.grid import grid_from_resolution
from temperature_kriging.io import (
    load_array,
    load_config,
    load_dataset,
    load_observations,
    load_ocean_mask,
    write_csv,
    write_dataset,
)


def test_load_config(tmp_path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(
        yaml.safe_dump({"variogram": {"cutoff": 150, "width": 10}})
    )
    config = load_config(str(path))
    assert config["variogram"]["width"] == 10

    empty = tmp_path / "empty.yaml"
    empty.write_text("")
    assert load_config(str(empty)) == {}

    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "missing.yaml"))


def test_load_observations(tmp_path) -> None:
    path = str(tmp_path / "obs.csv")
    pl.DataFrame(
        {
            "id": ["a", "b"],
            "long": [10.0, 11.0],
            "lat": [45.0, 46.0],
            "meanWi_before1970": [-2.5, 0.5],
        }
    ).write_csv(path)

    df = load_observations(path)
    assert df.columns == ["id", "lon", "lat", "meanWi_before1970"]
    assert df.height == 2

    with pytest.raises(KeyError):
        load_observations(path, id_col="station")
    with pytest.raises(FileNotFoundError):
        load_observations(str(tmp_path / "missing.csv"))


def test_netcdf_round_trip(tmp_path) -> None:
    grid = grid_from_resolution(1, [(0, 3), (0, 4)], ["lat", "lon"])
    elevation = (grid + np.arange(12.0).reshape(3, 4)).rename("elevation")
    path = os.path.join(tmp_path, "nested", "elevation_1deg.nc")

    write_dataset(elevation.to_dataset(), path)

    loaded = load_array(
        os.path.join(tmp_path, "nested", "elevation_{res}deg.nc"), res=1
    )
    assert np.allclose(loaded.values, elevation.values)

    with pytest.raises(KeyError):
        load_array(path, var="height")
    with pytest.raises(FileNotFoundError):
        load_dataset(os.path.join(tmp_path, "missing.nc"))


def test_load_ocean_mask(tmp_path) -> None:
    grid = grid_from_resolution(1, [(0, 4), (0, 6)], ["lat", "lon"])
    oceans = gpd.GeoDataFrame(
        geometry=[shapely.box(-0.5, -0.5, 1.5, 4.0)], crs="EPSG:4326"
    )
    path = str(tmp_path / "ocean.geojson")
    oceans.to_file(path, driver="GeoJSON")

    mask = load_ocean_mask(path, grid)

    assert mask.name == "ocean"
    assert mask.dims == ("lat", "lon")
    assert mask.dtype == bool
    assert np.all(mask.values[:, :2])
    assert not np.any(mask.values[:, 2:])

    with pytest.raises(FileNotFoundError):
        load_ocean_mask(str(tmp_path / "missing.shp"), grid)


def test_write_csv(tmp_path) -> None:
    path = str(tmp_path / "out" / "summary.csv")
    df = pl.DataFrame({"stratum": ["1970w"], "rmse": [0.5]})
    write_csv(df, path)
    assert pl.read_csv(path).equals(df)
