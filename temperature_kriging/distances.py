"""
Functions for calculating distances and neighbour structure between point
observations, and distances on a raster.

Pairwise distance matrices feed the empirical variogram, the kriging system and
the spatial weights used for Moran's I. The k-nearest-neighbour index is used
for h-scatter autocorrelation diagnostics, and the raster distance transform
produces the distance-to-coast covariate.
"""

import numpy as np
import polars as pl
import xarray as xr
from scipy.ndimage import distance_transform_edt
from scipy.spatial.distance import cdist, pdist, squareform
from sklearn.metrics.pairwise import haversine_distances
from sklearn.neighbors import NearestNeighbors

from .constants import RADIUS_OF_EARTH_KM
from .types import DistanceMethod
from .utils import check_cols, deg_to_km


def euclidean_distance(
    points: np.ndarray,
    other: np.ndarray | None = None,
) -> np.ndarray:
    """
    Planar Euclidean distances between positions.

    Parameters
    ----------
    points : numpy.ndarray
        Array of shape (n, 2) containing (x, y) positions.
    other : numpy.ndarray | None
        Optional array of shape (m, 2). If set, the (n, m) cross-distance
        matrix between `points` and `other` is returned, otherwise the (n, n)
        pairwise distance matrix of `points`.

    Returns
    -------
    dist : numpy.ndarray
        Distance matrix in the units of the input coordinates.
    """
    points = np.atleast_2d(np.asarray(points, dtype=float))
    if other is None:
        return squareform(pdist(points, metric="euclidean"))
    other = np.atleast_2d(np.asarray(other, dtype=float))
    return cdist(points, other, metric="euclidean")


def haversine_distance(
    points: np.ndarray,
    other: np.ndarray | None = None,
    radius: float = RADIUS_OF_EARTH_KM,
) -> np.ndarray:
    """
    Great circle distances between positions given as (lon, lat) in decimal
    degrees.

    Parameters
    ----------
    points : numpy.ndarray
        Array of shape (n, 2) containing (lon, lat) positions.
    other : numpy.ndarray | None
        Optional array of shape (m, 2) of (lon, lat) positions. If set, the
        (n, m) cross-distance matrix is returned.
    radius : float
        The radius of the sphere used for the calculation. Defaults to the
        radius of the earth in km (6371.0 km).

    Returns
    -------
    dist : numpy.ndarray
        Distance matrix in the units of `radius`.
    """
    # sklearn expects (lat, lon) in radians
    pos = np.radians(np.atleast_2d(np.asarray(points, dtype=float))[:, ::-1])
    if other is None:
        return haversine_distances(pos) * radius
    pos_other = np.radians(
        np.atleast_2d(np.asarray(other, dtype=float))[:, ::-1]
    )
    return haversine_distances(pos, pos_other) * radius


def get_distance_func(method: DistanceMethod):
    """Get the distance function for a distance method name"""
    match method.lower():
        case "euclidean":
            return euclidean_distance
        case "haversine":
            return haversine_distance
        case _:
            raise ValueError(f"Unknown distance method: {method}")


def calculate_distance_matrix(
    df: pl.DataFrame,
    method: DistanceMethod = "euclidean",
    lon_col: str = "lon",
    lat_col: str = "lat",
) -> np.ndarray:
    """
    Create a distance matrix from a DataFrame containing positional information.

    Parameters
    ----------
    df : polars.DataFrame
        DataFrame containing longitude and latitude columns indicating the
        positions between which distances are computed.
    method : DistanceMethod
        One of "euclidean" (distances in degrees, treating longitude and
        latitude as planar coordinates) or "haversine" (great circle distance
        in km).
    lon_col : str
        Name of the column in the input DataFrame containing longitude values.
    lat_col : str
        Name of the column in the input DataFrame containing latitude values.

    Returns
    -------
    dist : numpy.ndarray[float]
        A matrix of pairwise distances.
    """
    check_cols(df, [lon_col, lat_col])
    dist_func = get_distance_func(method)
    return dist_func(df.select([lon_col, lat_col]).to_numpy())


def inverse_distance_weights(dist: np.ndarray) -> np.ndarray:
    """
    Spatial weight matrix from a distance matrix, with weights equal to the
    inverse distance and 0 on the diagonal.

    Coincident points (distance 0 off the diagonal) are given weight 0.
    """
    dist = np.asarray(dist, dtype=float)
    if dist.ndim != 2 or dist.shape[0] != dist.shape[1]:
        raise ValueError("Distance matrix must be square")
    with np.errstate(divide="ignore"):
        weights = np.where(dist > 0, 1.0 / dist, 0.0)
    np.fill_diagonal(weights, 0.0)
    return weights


def knn_index(
    points: np.ndarray,
    k: int,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Indices of, and distances to, the k nearest neighbours of each point
    (excluding the point itself), found with a kd-tree.

    Parameters
    ----------
    points : numpy.ndarray
        Array of shape (n, 2) of positions.
    k : int
        Number of neighbours, must be less than the number of points.

    Returns
    -------
    index : numpy.ndarray[int]
        Array of shape (n, k), column j contains the index of the (j + 1)th
        nearest neighbour.
    dist : numpy.ndarray[float]
        Array of shape (n, k) of distances to those neighbours.
    """
    points = np.atleast_2d(np.asarray(points, dtype=float))
    n = points.shape[0]
    if not 0 < k < n:
        raise ValueError(f"k must be between 1 and {n - 1}, got {k}")
    nn = NearestNeighbors(n_neighbors=k + 1, algorithm="kd_tree").fit(points)
    dist, index = nn.kneighbors(points)

    # Drop the self-match. With duplicated positions the point itself is not
    # necessarily returned first, so remove it explicitly.
    self_match = index == np.arange(n)[:, None]
    has_self = self_match.any(axis=1)
    # Rows without a self-match (more than k duplicates) drop the last column
    self_match[~has_self, -1] = True
    keep = ~self_match
    return index[keep].reshape(n, k), dist[keep].reshape(n, k)


def distance_to_mask(
    mask: xr.DataArray,
    lat_coord: str = "lat",
    lon_coord: str = "lon",
    units: str = "deg",
) -> xr.DataArray:
    """
    Compute, for every cell of a grid, the distance to the nearest masked cell.

    Used to derive continentality (distance to the ocean) from an ocean mask.
    Masked cells have a distance of 0.

    Parameters
    ----------
    mask : xarray.DataArray
        Boolean grid with `True` where a cell is masked (e.g. ocean).
    lat_coord : str
        Name of the latitude coordinate.
    lon_coord : str
        Name of the longitude coordinate.
    units : str
        "deg" returns distances in degrees, "km" converts degrees to km using
        the meridional conversion.

    Returns
    -------
    dist : xarray.DataArray
        Grid of distances to the nearest masked cell.
    """
    if mask.dims != (lat_coord, lon_coord):
        mask = mask.transpose(lat_coord, lon_coord)
    mask_vals = np.asarray(mask.values, dtype=bool)
    if not mask_vals.any():
        raise ValueError("Mask does not contain any masked cells")

    sampling = [
        float(np.abs(np.diff(mask.coords[c].values)).mean())
        if mask.sizes[c] > 1
        else 1.0
        for c in (lat_coord, lon_coord)
    ]
    dist = distance_transform_edt(~mask_vals, sampling=sampling)

    match units:
        case "deg":
            pass
        case "km":
            dist = deg_to_km(dist)
        case _:
            raise ValueError(f"Unknown units: {units}")

    return xr.DataArray(
        dist,
        coords=mask.coords,
        dims=mask.dims,
        name="distance",
    )
