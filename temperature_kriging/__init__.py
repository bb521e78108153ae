"""
Universal Kriging of point temperature observations onto a grid, with external
drift from elevation, continentality and solar geometry covariates. Includes
empirical semivariogram estimation, variogram model fitting and residual
diagnostics.
"""

from .errors import (
    CoverageGap,
    DegenerateRegression,
    EmptyVariogramBin,
    KrigingPipelineError,
    KrigingSingular,
    MissingCovariate,
    VariogramFitError,
)
from .fitting import fit_variogram, fit_variogram_models, select_variogram
from .grid import CovariateGrid
from .kriging import KrigingResult, UniversalKriging
from .pipeline import Stratum, run_pipeline, run_stratum
from .semivariance import estimate_variogram
from .variogram import (
    ExponentialVariogram,
    GaussianVariogram,
    MaternVariogram,
    SphericalVariogram,
)

__all__ = [
    "CoverageGap",
    "CovariateGrid",
    "DegenerateRegression",
    "EmptyVariogramBin",
    "ExponentialVariogram",
    "GaussianVariogram",
    "KrigingPipelineError",
    "KrigingResult",
    "KrigingSingular",
    "MaternVariogram",
    "MissingCovariate",
    "SphericalVariogram",
    "Stratum",
    "UniversalKriging",
    "VariogramFitError",
    "estimate_variogram",
    "fit_variogram",
    "fit_variogram_models",
    "run_pipeline",
    "run_stratum",
    "select_variogram",
]

__version__ = "1.0.0"
