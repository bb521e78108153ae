"""
Functions for loading inputs and writing outputs at the boundary of the
pipeline: the YAML configuration, observation tables (CSV), gridded data
(netCDF) and ocean polygons (any format readable by geopandas).
"""

import os
import logging
import geopandas as gpd
import numpy as np
import polars as pl
import shapely
import xarray as xr
import yaml


def get_recurse(config: dict, *keys, default=None):
    """
    Get a value from a nested dictionary, returning `default` if any of the
    keys is missing.

    Examples
    --------
    >>> get_recurse({"kriging": {"jitter": 1e-8}}, "kriging", "jitter")
    1e-08
    """
    value = config
    for key in keys:
        if not isinstance(value, dict) or key not in value:
            return default
        value = value[key]
    return value


def load_config(path: str) -> dict:
    """Load the YAML configuration file"""
    if not os.path.isfile(path):
        raise FileNotFoundError(f"Config file: {path} not found")
    with open(path, "r") as io:
        config: dict = yaml.safe_load(io) or {}
    return config


def load_observations(
    path: str,
    id_col: str = "id",
    lon_col: str = "long",
    lat_col: str = "lat",
) -> pl.DataFrame:
    """
    Load an observation table from a CSV file. The id and position columns are
    renamed to "id", "lon" and "lat".
    """
    if not os.path.isfile(path):
        raise FileNotFoundError(f"Observation file: {path} not found")
    df = pl.read_csv(path)
    missing = [c for c in (id_col, lon_col, lat_col) if c not in df.columns]
    if missing:
        raise KeyError(f"{path} is missing columns: {', '.join(missing)}")
    df = df.rename(
        {
            k: v
            for k, v in {id_col: "id", lon_col: "lon", lat_col: "lat"}.items()
            if k != v
        }
    )
    logging.info(f"Loaded {df.height} records from {path}")
    return df


def load_dataset(
    path: str,
    **kwargs,
) -> xr.Dataset:
    """
    Load an xarray.Dataset from a netCDF file. The path can contain str.format
    replacements, filled from the keyword arguments. For example:
        /path/to/elevation_{resolution}deg.nc
    """
    filename = path.format(**kwargs) if kwargs else path
    if not os.path.isfile(filename):
        raise FileNotFoundError(f"netCDF file: {filename} not found")
    return xr.open_dataset(filename, engine="netcdf4")


def load_array(
    path: str,
    var: str = "elevation",
    **kwargs,
) -> xr.DataArray:
    """Load a single variable from a netCDF file, see `load_dataset`"""
    ds = load_dataset(path, **kwargs)
    if var not in ds:
        raise KeyError(f"Variable {var} not found in {path}")
    return ds[var]


def load_ocean_mask(
    path: str,
    grid: xr.DataArray | xr.Dataset,
    lat_coord: str = "lat",
    lon_coord: str = "lon",
) -> xr.DataArray:
    """
    Rasterise ocean polygons onto a grid.

    A cell is masked (True) if its centre lies within any of the polygons. The
    polygons are re-projected to EPSG:4326 if they have a different CRS.

    Parameters
    ----------
    path : str
        File containing the ocean polygons, e.g. a shapefile.
    grid : xarray.DataArray | xarray.Dataset
        Grid with latitude and longitude coordinates.

    Returns
    -------
    mask : xarray.DataArray
        Boolean grid, True over the ocean.
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Ocean polygon file: {path} not found")
    oceans = gpd.read_file(path)
    if oceans.crs is not None and oceans.crs.to_epsg() != 4326:
        oceans = oceans.to_crs("EPSG:4326")
    geometry = oceans.geometry.union_all()
    shapely.prepare(geometry)

    lat = grid.coords[lat_coord].values
    lon = grid.coords[lon_coord].values
    lon2d, lat2d = np.meshgrid(lon, lat)
    mask = shapely.contains_xy(geometry, lon2d, lat2d)
    logging.info(
        f"Ocean mask covers {int(mask.sum())} of {mask.size} grid cells"
    )
    return xr.DataArray(
        mask,
        coords={lat_coord: lat, lon_coord: lon},
        dims=[lat_coord, lon_coord],
        name="ocean",
    )


def write_dataset(ds: xr.Dataset | xr.DataArray, path: str) -> None:
    """Write gridded output to netCDF"""
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    ds.to_netcdf(path, engine="netcdf4")
    logging.info(f"Written {path}")
    return None


def write_csv(df: pl.DataFrame, path: str) -> None:
    """Write tabular output to CSV"""
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    df.write_csv(path)
    logging.info(f"Written {path}")
    return None
