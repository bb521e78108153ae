"""Types and Literals used by temperature_kriging functions and methods."""

from typing import Literal

VariogramShape = Literal["exponential", "spherical", "gaussian", "matern"]

MaternModel = Literal["sklearn", "gstat", "karspeck"]

Season = Literal["winter", "summer"]

DistanceMethod = Literal["euclidean", "haversine"]

SelectionPolicy = Literal[
    "best",
    "exponential",
    "spherical",
    "gaussian",
    "matern",
]

StratumStatus = Literal["ok", "failed"]
