"""
Grid
----

The covariate grid used as the set of prediction sites, plus functions for
creating grids and mapping point observations to grid cells.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
import logging
import numpy as np
import polars as pl
import xarray as xr

from .utils import check_cols, find_nearest


def grid_from_resolution(
    resolution: float | list[float],
    bounds: list[tuple[float, float]],
    coord_names: list[str] = ["lat", "lon"],
) -> xr.DataArray:
    """
    Build an empty (zero filled) regular grid.

    Cell centres along each axis run from the lower bound up to, but not
    including, the upper bound in steps of the resolution.

    Parameters
    ----------
    resolution : float | list[float]
        Spacing along every axis, or one spacing per axis.
    bounds : list[tuple[float, float]]
        `(start, stop)` of each axis, in the order of `coord_names`.
    coord_names : list[str]
        Dimension names, for example `["lat", "lon"]`.

    Returns
    -------
    grid : xarray.DataArray
    """
    n_axes = len(coord_names)
    steps = (
        list(resolution)
        if isinstance(resolution, Iterable)
        else [resolution] * len(bounds)
    )
    if len(steps) != n_axes or len(bounds) != n_axes:
        raise ValueError(
            f"Got {len(steps)} resolution(s) and {len(bounds)} bound(s) "
            + f"for {n_axes} coordinate(s)"
        )
    axes = {
        name: np.arange(start, stop, step)
        for name, (start, stop), step in zip(coord_names, bounds, steps)
    }
    return xr.DataArray(
        np.zeros([len(v) for v in axes.values()], dtype=float),
        coords=axes,
        dims=list(axes),
    )


def _half_cell(values: np.ndarray) -> float:
    if len(values) < 2:
        return 0.5
    return float(np.abs(np.diff(values)).max()) / 2


def nearest_cell(
    grid: xr.DataArray | xr.Dataset,
    lon: Iterable[float],
    lat: Iterable[float],
    lat_coord: str = "lat",
    lon_coord: str = "lon",
) -> tuple[np.ndarray, np.ndarray]:
    """
    Get the flattened ("C" ordering) index of the nearest grid cell to each
    position, and whether the position lies within the extent of the grid.

    A position is within the extent if it is no more than half a cell from the
    outermost cell centres.

    Returns
    -------
    grid_idx : numpy.ndarray[int]
        Row-major flattened index of the nearest cell.
    in_grid : numpy.ndarray[bool]
        Indicates positions within the extent of the grid.
    """
    lon = np.asarray(list(lon), dtype=float)
    lat = np.asarray(list(lat), dtype=float)
    lat_vals = grid.coords[lat_coord].values
    lon_vals = grid.coords[lon_coord].values

    lat_idx, _ = find_nearest(lat_vals, lat)
    lon_idx, _ = find_nearest(lon_vals, lon)
    grid_idx = np.ravel_multi_index(
        [lat_idx, lon_idx],
        (len(lat_vals), len(lon_vals)),
        order="C",
    )

    lat_half = _half_cell(lat_vals)
    lon_half = _half_cell(lon_vals)
    in_grid = (
        (lat >= lat_vals.min() - lat_half)
        & (lat <= lat_vals.max() + lat_half)
        & (lon >= lon_vals.min() - lon_half)
        & (lon <= lon_vals.max() + lon_half)
    )
    return np.asarray(grid_idx, dtype=int), in_grid


def map_to_grid(
    obs: pl.DataFrame,
    grid: xr.DataArray | xr.Dataset,
    obs_coords: list[str] = ["lon", "lat"],
    grid_coords: list[str] = ["lon", "lat"],
    grid_prefix: str = "grid_",
) -> pl.DataFrame:
    """
    Align an observation DataFrame to a grid.

    Maps observations to the nearest grid-point, adding the 1d row-major index
    of the grid cell (`grid_idx`) and a flag indicating whether the observation
    falls within the extent of the grid (`grid_in`).

    Parameters
    ----------
    obs : polars.DataFrame
        Station table with longitude and latitude columns.
    grid : xarray.DataArray | xarray.Dataset
        Any object carrying the target grid coordinates.
    obs_coords : list[str]
        Longitude and latitude column names in `obs`.
    grid_coords : list[str]
        Longitude and latitude coordinate names of `grid`.
    grid_prefix : str
        Prefix of the two added columns.

    Returns
    -------
    obs : polars.DataFrame
        Containing additional `grid_idx` and `grid_in` columns.
    """
    check_cols(obs, obs_coords)
    grid_idx, in_grid = nearest_cell(
        grid,
        obs.get_column(obs_coords[0]),
        obs.get_column(obs_coords[1]),
        lon_coord=grid_coords[0],
        lat_coord=grid_coords[1],
    )
    return obs.with_columns(
        pl.Series(grid_prefix + "idx", grid_idx),
        pl.Series(grid_prefix + "in", in_grid),
    )


def assign_to_grid(
    values: np.ndarray,
    grid: xr.DataArray | xr.Dataset,
    name: str | None = None,
    lat_coord: str = "lat",
    lon_coord: str = "lon",
) -> xr.DataArray:
    """
    Reshape a vector of values, one per grid cell in row-major order, onto a
    grid.

    Parameters
    ----------
    values : numpy.ndarray
        The values to map onto the output grid. Length must equal the number
        of cells in the grid.
    grid : xarray.DataArray | xarray.Dataset
        The grid used to define the output grid.
    name : str | None
        Name of the output DataArray.

    Returns
    -------
    out_grid : xarray.DataArray
        A new grid containing the values.
    """
    shape = (grid.sizes[lat_coord], grid.sizes[lon_coord])
    values = np.asarray(values)
    if values.size != shape[0] * shape[1]:
        raise ValueError(
            f"Cannot assign {values.size} values to a grid of shape {shape}"
        )
    return xr.DataArray(
        np.reshape(values, shape, "C"),
        coords={
            lat_coord: grid.coords[lat_coord].values,
            lon_coord: grid.coords[lon_coord].values,
        },
        dims=[lat_coord, lon_coord],
        name=name,
    )


def regrid_block_mean(
    surface: xr.DataArray,
    target: xr.DataArray,
    lat_coord: str = "lat",
    lon_coord: str = "lon",
) -> xr.DataArray:
    """
    Resample a surface onto the cells of a coarser target grid.

    Where the target spacing is a whole multiple of the source spacing along
    both axes, the surface is first averaged over blocks of source cells.
    The (block averaged) surface is then read at the cell nearest each target
    cell centre, and carries the target coordinates.

    Parameters
    ----------
    surface : xarray.DataArray
        Source surface, for example a fine elevation model.
    target : xarray.DataArray
        Grid with the output coordinates.
    lat_coord, lon_coord : str
        Names of the latitude and longitude coordinates of both grids.

    Returns
    -------
    xarray.DataArray
    """
    factors = {}
    for coord in (lat_coord, lon_coord):
        src = surface.coords[coord].values
        dst = target.coords[coord].values
        if len(src) < 2 or len(dst) < 2:
            continue
        ratio = np.abs(np.diff(dst)).mean() / np.abs(np.diff(src)).mean()
        factor = int(round(ratio))
        if factor > 1 and np.isclose(ratio, factor):
            factors[coord] = factor

    if len(factors) == 2:
        logging.info(f"Averaging surface over blocks of {factors} cells")
        surface = surface.coarsen(factors, boundary="trim").mean()

    sampled = surface.sel(
        {
            lat_coord: target.coords[lat_coord],
            lon_coord: target.coords[lon_coord],
        },
        method="nearest",
    )
    return sampled.assign_coords(
        {
            lat_coord: target.coords[lat_coord].values,
            lon_coord: target.coords[lon_coord].values,
        }
    )


@dataclass(frozen=True)
class CovariateGrid:
    """
    A regular grid of prediction sites with one covariate layer per variable.

    The grid is immutable: layers are never overwritten in place, instead
    `with_layers` returns a new CovariateGrid sharing the unchanged layers.
    This allows a single grid to be shared between strata that run
    concurrently, each swapping in their own season-specific layers.

    Parameters
    ----------
    layers : xarray.Dataset
        Dataset with dimensions (`lat`, `lon`), each data variable is a
        covariate layer.
    """

    layers: xr.Dataset
    lat_coord: str = "lat"
    lon_coord: str = "lon"

    def __post_init__(self) -> None:
        for c in (self.lat_coord, self.lon_coord):
            if c not in self.layers.dims:
                raise KeyError(f"Cannot find coordinate {c} in the grid.")
        # Force a consistent (lat, lon) ordering of every layer
        object.__setattr__(
            self,
            "layers",
            self.layers.transpose(self.lat_coord, self.lon_coord),
        )
        return None

    @classmethod
    def from_layers(
        cls,
        layers: Mapping[str, xr.DataArray],
        lat_coord: str = "lat",
        lon_coord: str = "lon",
    ) -> "CovariateGrid":
        """Build a CovariateGrid from a mapping of name to DataArray"""
        return cls(xr.Dataset(dict(layers)), lat_coord, lon_coord)

    @property
    def names(self) -> list[str]:
        """Names of the covariate layers"""
        return [str(v) for v in self.layers.data_vars]

    @property
    def shape(self) -> tuple[int, int]:
        """Shape of the grid (n_lat, n_lon)"""
        return (
            self.layers.sizes[self.lat_coord],
            self.layers.sizes[self.lon_coord],
        )

    @property
    def size(self) -> int:
        """Number of prediction sites"""
        return self.shape[0] * self.shape[1]

    def with_layers(
        self,
        **layers: xr.DataArray | np.ndarray,
    ) -> "CovariateGrid":
        """
        Return a new CovariateGrid with additional or replaced layers. The
        current grid is not modified.
        """
        new_layers = {}
        for name, layer in layers.items():
            if isinstance(layer, xr.DataArray):
                layer = layer.transpose(self.lat_coord, self.lon_coord)
                if layer.shape != self.shape:
                    raise ValueError(
                        f"Layer {name} has shape {layer.shape}, "
                        + f"expected {self.shape}"
                    )
                layer = layer.values
            # Values are placed on this grid's coordinates, no alignment
            new_layers[name] = assign_to_grid(
                np.asarray(layer, dtype=float),
                self.layers,
                name=name,
                lat_coord=self.lat_coord,
                lon_coord=self.lon_coord,
            )
        return CovariateGrid(
            self.layers.assign(new_layers),
            self.lat_coord,
            self.lon_coord,
        )

    def select(self, names: list[str]) -> "CovariateGrid":
        """Return a new CovariateGrid containing only the named layers"""
        missing = [n for n in names if n not in self.names]
        if missing:
            raise KeyError(f"Covariates not in grid: {', '.join(missing)}")
        return CovariateGrid(
            self.layers[names], self.lat_coord, self.lon_coord
        )

    def coordinates(self) -> np.ndarray:
        """(lon, lat) of every site in row-major order, shape (n_sites, 2)"""
        lon, lat = np.meshgrid(
            self.layers.coords[self.lon_coord].values,
            self.layers.coords[self.lat_coord].values,
        )
        return np.column_stack([lon.ravel(), lat.ravel()])

    def values(self, names: list[str] | None = None) -> np.ndarray:
        """
        Covariate values of every site in row-major order, shape
        (n_sites, n_covariates). Missing values are left as NaN.
        """
        names = self.names if names is None else names
        if not names:
            return np.empty((self.size, 0))
        return np.column_stack(
            [self.layers[n].values.ravel() for n in names]
        ).astype(float)

    def sites(self, names: list[str] | None = None) -> pl.DataFrame:
        """The prediction sites as a DataFrame, one row per grid cell"""
        names = self.names if names is None else names
        coords = self.coordinates()
        vals = self.values(names)
        return pl.DataFrame(
            {
                "site_idx": np.arange(self.size),
                "lon": coords[:, 0],
                "lat": coords[:, 1],
                **{n: vals[:, i] for i, n in enumerate(names)},
            }
        )

    def sample(
        self,
        lon: Iterable[float],
        lat: Iterable[float],
        names: list[str] | None = None,
    ) -> tuple[np.ndarray, np.ndarray]:
        """
        Extract covariate values at arbitrary positions from the nearest cell.

        Returns
        -------
        values : numpy.ndarray
            Array of shape (n_positions, n_covariates). Positions outside of
            the extent of the grid are NaN.
        in_grid : numpy.ndarray[bool]
            Indicates positions within the extent of the grid.
        """
        grid_idx, in_grid = nearest_cell(
            self.layers,
            lon,
            lat,
            lat_coord=self.lat_coord,
            lon_coord=self.lon_coord,
        )
        vals = self.values(names)[grid_idx]
        vals[~in_grid] = np.nan
        return vals, in_grid

    def to_grid(
        self,
        values: np.ndarray,
        name: str | None = None,
    ) -> xr.DataArray:
        """Reshape one value per site back onto the grid"""
        return assign_to_grid(
            values,
            self.layers,
            name=name,
            lat_coord=self.lat_coord,
            lon_coord=self.lon_coord,
        )


def sample_surface(
    surface: xr.DataArray,
    lon: Iterable[float],
    lat: Iterable[float],
    lat_coord: str = "lat",
    lon_coord: str = "lon",
) -> tuple[np.ndarray, np.ndarray]:
    """
    Extract values of a gridded surface at positions from the nearest cell.

    Positions outside of the extent of the surface are returned as NaN.

    Returns
    -------
    values : numpy.ndarray
        Surface values at the positions.
    in_grid : numpy.ndarray[bool]
        Indicates positions within the extent of the surface.
    """
    surface = surface.transpose(lat_coord, lon_coord)
    grid_idx, in_grid = nearest_cell(
        surface, lon, lat, lat_coord=lat_coord, lon_coord=lon_coord
    )
    vals = np.asarray(surface.values, dtype=float).ravel()[grid_idx]
    vals[~in_grid] = np.nan
    return vals, in_grid
