"""
Covariate Surfaces
------------------

Gridded covariates used as the kriging drift: land elevation, continentality
(distance to the ocean), and two season-dependent proxies for the solar
geometry, the inclination of the midday sun and the atmospheric path length.

Season-dependent layers are added to a new CovariateGrid for each season, the
base grid is never modified.
"""

import numpy as np
import xarray as xr

from .constants import KM_TO_M, SOLAR_DECLINATION
from .distances import distance_to_mask
from .grid import CovariateGrid
from .types import Season
from .utils import deg_to_km

ELEVATION: str = "elev"
CONTINENTALITY: str = "cont"
NS_GRADIENT: str = "ns_gradient"
SOLAR_INCLINATION: str = "hsun"
ATMOSPHERIC_PATH: str = "dist"

DRIFT_COVARIATES: list[str] = [
    ELEVATION,
    CONTINENTALITY,
    SOLAR_INCLINATION,
    ATMOSPHERIC_PATH,
]


def _declination_offset(season: Season | str) -> float:
    # Latitude offset giving the angle to the sub-solar point
    match season.lower():
        case "winter":
            return SOLAR_DECLINATION
        case "summer":
            return -SOLAR_DECLINATION
        case _:
            raise ValueError(f"Unknown season: {season}")


def land_elevation(elevation: xr.DataArray) -> xr.DataArray:
    """Elevation with negative values (bathymetry) set to 0"""
    return elevation.where(~(elevation < 0), 0.0).rename(ELEVATION)


def continentality(
    ocean_mask: xr.DataArray,
    lat_coord: str = "lat",
    lon_coord: str = "lon",
) -> xr.DataArray:
    """
    Distance from each cell to the nearest ocean cell, in degrees. Ocean cells
    have a continentality of 0.
    """
    return distance_to_mask(
        ocean_mask, lat_coord=lat_coord, lon_coord=lon_coord, units="deg"
    ).rename(CONTINENTALITY)


def slope_aspect(
    elevation: xr.DataArray,
    lat_coord: str = "lat",
    lon_coord: str = "lon",
) -> tuple[xr.DataArray, xr.DataArray]:
    """
    Compute the slope and aspect of an elevation surface on a regular
    latitude/longitude grid, using central differences.

    Horizontal distances are converted from degrees to metres, with the
    longitudinal spacing scaled by the cosine of latitude.

    Parameters
    ----------
    elevation : xarray.DataArray
        Elevation in metres.

    Returns
    -------
    slope : xarray.DataArray
        Slope in radians.
    aspect : xarray.DataArray
        Direction the slope faces in radians, clockwise from north. NaN on
        flat cells.
    """
    elevation = elevation.transpose(lat_coord, lon_coord)
    lat = elevation.coords[lat_coord].values
    lon = elevation.coords[lon_coord].values
    z = np.asarray(elevation.values, dtype=float)

    lat_m = deg_to_km(lat) * KM_TO_M
    lon_m = deg_to_km(lon) * KM_TO_M
    dz_dnorth = (
        np.gradient(z, lat_m, axis=0) if len(lat) > 1 else np.zeros_like(z)
    )
    dz_deast = (
        np.gradient(z, lon_m, axis=1) if len(lon) > 1 else np.zeros_like(z)
    )
    dz_deast = dz_deast / np.clip(np.cos(np.radians(lat)), 1e-6, None)[:, None]

    grad = np.hypot(dz_deast, dz_dnorth)
    slope = np.arctan(grad)
    # Downslope direction, clockwise from north
    aspect = np.mod(np.arctan2(-dz_deast, -dz_dnorth), 2 * np.pi)
    aspect[grad == 0] = np.nan

    coords = {lat_coord: lat, lon_coord: lon}
    dims = [lat_coord, lon_coord]
    return (
        xr.DataArray(slope, coords=coords, dims=dims, name="slope"),
        xr.DataArray(aspect, coords=coords, dims=dims, name="aspect"),
    )


def north_south_gradient(
    elevation: xr.DataArray,
    lat_coord: str = "lat",
    lon_coord: str = "lon",
) -> xr.DataArray:
    """
    Surface gradient in the north-south direction in degrees, positive for
    north facing slopes. Flat cells have a gradient of 0.
    """
    slope, aspect = slope_aspect(elevation, lat_coord, lon_coord)
    gradient = np.degrees(np.cos(aspect) * slope)
    return gradient.fillna(0.0).rename(NS_GRADIENT)


def hemisphere_sign(lat: xr.DataArray, season: Season | str) -> xr.DataArray:
    """
    -1 for latitudes north of the latitude opposite the sub-solar point, +1
    otherwise. North facing slopes receive less sun north of the split.
    """
    split = -_declination_offset(season)
    return xr.where(lat > split, -1.0, 1.0)


def solar_inclination(
    lat: xr.DataArray,
    gradient: xr.DataArray,
    season: Season | str,
) -> xr.DataArray:
    """
    Inclination of the midday sun at the solstice in degrees, corrected for
    the north-south surface gradient.

    .. math::
        h = 90 - |lat \\pm 23.5| + s \\times gradient

    where :math:`s` is the hemisphere sign.
    """
    offset = _declination_offset(season)
    sign = hemisphere_sign(lat, season)
    return (90.0 - np.abs(lat + offset) + sign * gradient).rename(
        SOLAR_INCLINATION
    )


def atmospheric_path(lat: xr.DataArray, season: Season | str) -> xr.DataArray:
    """
    Proxy for the length of the path of sunlight through the atmosphere at
    the solstice

    .. math::
        1 - \\cos(|lat \\pm 23.5|)
    """
    offset = _declination_offset(season)
    return (1.0 - np.cos(np.radians(np.abs(lat + offset)))).rename(
        ATMOSPHERIC_PATH
    )


def build_covariate_grid(
    elevation: xr.DataArray,
    ocean_mask: xr.DataArray,
    lat_coord: str = "lat",
    lon_coord: str = "lon",
) -> CovariateGrid:
    """
    Build the season independent covariate grid.

    Parameters
    ----------
    elevation : xarray.DataArray
        Elevation (m), defines the prediction sites.
    ocean_mask : xarray.DataArray
        Boolean mask, True over the ocean, on the same grid as `elevation`.

    Returns
    -------
    CovariateGrid
        Containing land elevation, continentality and the north-south surface
        gradient.
    """
    elevation = elevation.transpose(lat_coord, lon_coord)
    ocean_mask = ocean_mask.transpose(lat_coord, lon_coord)
    if elevation.shape != ocean_mask.shape:
        raise ValueError("Elevation and ocean mask must be on the same grid")
    land = land_elevation(elevation)
    base = CovariateGrid.from_layers(
        {ELEVATION: land}, lat_coord=lat_coord, lon_coord=lon_coord
    )
    return base.with_layers(
        **{
            CONTINENTALITY: continentality(ocean_mask, lat_coord, lon_coord),
            NS_GRADIENT: north_south_gradient(land, lat_coord, lon_coord),
        }
    )


def seasonal_covariates(
    grid: CovariateGrid,
    season: Season | str,
) -> CovariateGrid:
    """
    Return a new CovariateGrid with the solar inclination and atmospheric path
    layers for a season. The input grid must contain the north-south gradient.
    """
    if NS_GRADIENT not in grid.names:
        raise KeyError(f"Covariate grid does not contain '{NS_GRADIENT}'")
    lat = grid.layers.coords[grid.lat_coord]
    lat = xr.ones_like(grid.layers[NS_GRADIENT]) * lat
    return grid.with_layers(
        **{
            SOLAR_INCLINATION: solar_inclination(
                lat, grid.layers[NS_GRADIENT], season
            ),
            ATMOSPHERIC_PATH: atmospheric_path(lat, season),
        }
    )
