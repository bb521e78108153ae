"""Shared helpers: schema checks, variance clamping, look-ups and logging."""

from collections.abc import Iterable, Iterator
import inspect
from itertools import islice
import logging
import numpy as np
import polars as pl
from warnings import warn

from temperature_kriging.constants import KM_TO_NM, NM_PER_LAT

_LOG_LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


class ColumnNotFoundError(Exception):
    """Raised when an observation frame lacks a required column"""

    pass


def check_cols(
    df: pl.DataFrame,
    cols: list[str],
) -> None:
    """Raise ColumnNotFoundError naming the caller if any column is absent"""
    caller = str(inspect.stack()[1][3])

    absent = [c for c in cols if c not in df.columns]
    if absent:
        raise ColumnNotFoundError(
            f"{caller}: frame has no column(s) {', '.join(absent)} "
            + f"(available: {', '.join(df.columns)})"
        )
    return None


def adjust_small_negative(
    arr: np.ndarray,
    atol: float = 1e-8,
) -> np.ndarray:
    """
    Set negative values in an array of (prediction) variances to 0.

    Values that are negative only through numerical noise (absolute value
    below `atol`) are set to 0 silently. Larger negative values are also set to
    0 but raise a warning, as they indicate a badly conditioned kriging system.

    Parameters
    ----------
    arr : numpy.ndarray
        Kriging prediction variance.
    atol : float
        Absolute tolerance below which negative values are considered to be
        numerical noise.

    Returns
    -------
    arr : numpy.ndarray
        A copy of the input with negative values replaced by 0.
    """
    ret = np.array(arr, dtype=float, copy=True)
    negative = ret < 0.0
    if not negative.any():
        return ret
    large_negative = np.logical_and(negative, ret < -atol)
    if large_negative.any():
        warn(
            f"{int(large_negative.sum())} negative variance values with "
            + f"magnitude > {atol} detected (minimum = {ret.min():.3g}). "
            + "Setting to 0."
        )
    ret[negative] = 0.0
    return ret


def find_nearest(
    array: Iterable,
    values: Iterable,
) -> tuple[list[int], np.ndarray]:
    """
    Snap each look-up value to the closest entry of a coordinate array.

    Parameters
    ----------
    array : Iterable
        Coordinate values, for example grid cell centres along one axis.
    values : Iterable
        Positions to snap.

    Returns
    -------
    idx : list[int]
        Index of the closest coordinate for each value.
    nearest : numpy.ndarray
        The closest coordinate for each value.
    """
    coords = np.asarray(array)
    idx = [int(np.abs(coords - v).argmin()) for v in values]
    return idx, coords[idx]


def batched(iterable: Iterable, n: int) -> Iterator[tuple]:
    """
    Split an iterable into tuples of length `n`, the last may be shorter.

    >>> list(batched(range(5), 2))
    [(0, 1), (2, 3), (4,)]
    """
    if n < 1:
        raise ValueError(f"Batch size must be positive, got {n}")
    it = iter(iterable)
    while chunk := tuple(islice(it, n)):
        yield chunk


def init_logging(
    file: str | None = None,
    level: str = "DEBUG",
) -> None:
    """
    Configure the root logger and route warnings through it.

    Parameters
    ----------
    file : str | None
        Append log records to this file. Records go to stderr when None.
    level : str
        Name of the level: "debug", "info", "warn", "error" or "critical".
    """
    try:
        level_i = _LOG_LEVELS[level.lower()]
    except KeyError as e:
        raise ValueError(f"Unknown logging level: {level}") from e

    logging.basicConfig(
        filename=file,
        filemode="a",
        encoding="utf-8",
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        level=level_i,
        force=True,
    )
    logging.captureWarnings(True)
    return None


def deg_to_km(deg):
    """Meridional distance in km spanned by `deg` degrees of latitude"""
    return deg * NM_PER_LAT * KM_TO_NM


def km_to_deg(km):
    """Degrees of latitude spanned by a meridional distance of `km`"""
    return km / (NM_PER_LAT * KM_TO_NM)
