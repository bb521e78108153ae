"""
Variograms
----------

Theoretical variogram models. A model defines the semivariance function
:math:`\\gamma(h)` used both as the target of the variogram fit and to build
the covariance matrices of the kriging system.

All models follow the gstat conventions: :math:`\\gamma(0) = 0` and, for
:math:`h > 0`,

.. math::
    \\gamma(h) = nugget + psill \\times (1 - \\rho(h / range))

where :math:`\\rho` is the correlation function of the model shape. The
covariance of the spatially correlated component is
:math:`C(h) = psill \\times \\rho(h / range)`, the nugget is treated as an
uncorrelated (measurement error) variance.
"""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import ClassVar
import numpy as np

from scipy.special import gamma, kv

from .types import MaternModel, VariogramShape


@dataclass(frozen=True)
class Variogram(ABC):
    """
    Generic Variogram Class - defines the abstract class

    Parameters
    ----------
    psill : float
        Partial sill, the variance of the spatially correlated component.
    nugget : float
        Discontinuity at the origin, the variance of the uncorrelated
        component.
    range : float
        Range parameter controlling how fast the semivariance approaches the
        sill.
    """

    psill: float
    nugget: float
    range: float

    shape: ClassVar[VariogramShape]
    # Ratio of the practical range (95% of the sill) to the range parameter
    effective_range_factor: ClassVar[float] = 1.0

    def __post_init__(self) -> None:
        if self.nugget < 0:
            raise ValueError(f"nugget must be >= 0, got {self.nugget}")
        if self.psill < 0:
            raise ValueError(f"psill must be >= 0, got {self.psill}")
        if not self.range > 0:
            raise ValueError(f"range must be > 0, got {self.range}")
        return None

    @classmethod
    def from_effective_range(
        cls,
        psill: float,
        nugget: float,
        effective_range: float,
        **kwargs,
    ) -> "Variogram":
        """Construct the model from the practical range"""
        return cls(
            psill=psill,
            nugget=nugget,
            range=effective_range / cls.effective_range_factor,
            **kwargs,
        )

    @property
    def sill(self) -> float:
        """Total sill, nugget + partial sill"""
        return self.psill + self.nugget

    @property
    def effective_range(self) -> float:
        """Lag at which approximately 95% of the partial sill is reached"""
        return self.range * self.effective_range_factor

    @abstractmethod
    def correlation(self, dist_over_range: np.ndarray) -> np.ndarray:
        """Correlation function of the model shape, 1 at 0 distance"""
        raise NotImplementedError("Not implemented for base Variogram class")

    def semivariance(self, distance: np.ndarray | float) -> np.ndarray:
        """Evaluate the semivariance at the given lag distances"""
        distance = np.asarray(distance, dtype=float)
        out = self.nugget + self.psill * (
            1.0 - self.correlation(distance / self.range)
        )
        return np.where(distance > 0, out, 0.0)

    def covariance(self, distance: np.ndarray | float) -> np.ndarray:
        """
        Evaluate the covariance of the spatially correlated component at the
        given lag distances. This does not include the nugget.
        """
        distance = np.asarray(distance, dtype=float)
        return self.psill * self.correlation(distance / self.range)

    def as_dict(self) -> dict:
        """Model parameters as a dictionary, including the shape name"""
        return {"shape": self.shape, **asdict(self)}


@dataclass(frozen=True)
class ExponentialVariogram(Variogram):
    """
    Exponential Model

    .. math::
        \\rho(d) = e^{-d}
    """

    shape: ClassVar[VariogramShape] = "exponential"
    effective_range_factor: ClassVar[float] = 3.0

    def correlation(self, dist_over_range: np.ndarray) -> np.ndarray:
        """Correlation function of the Exponential model"""
        return np.exp(-dist_over_range)


@dataclass(frozen=True)
class SphericalVariogram(Variogram):
    """
    Spherical Model, reaches the sill exactly at the range.

    .. math::
        \\rho(d) = 1 - 1.5 d + 0.5 d^3 \\quad d \\le 1
    """

    shape: ClassVar[VariogramShape] = "spherical"
    effective_range_factor: ClassVar[float] = 1.0

    def correlation(self, dist_over_range: np.ndarray) -> np.ndarray:
        """Correlation function of the Spherical model"""
        d = np.minimum(dist_over_range, 1.0)
        return 1.0 - 1.5 * d + 0.5 * np.power(d, 3.0)


@dataclass(frozen=True)
class GaussianVariogram(Variogram):
    """
    Gaussian Model

    .. math::
        \\rho(d) = e^{-d^2}
    """

    shape: ClassVar[VariogramShape] = "gaussian"
    effective_range_factor: ClassVar[float] = float(np.sqrt(3.0))

    def correlation(self, dist_over_range: np.ndarray) -> np.ndarray:
        """Correlation function of the Gaussian model"""
        return np.exp(-np.power(dist_over_range, 2.0))


@dataclass(frozen=True)
class MaternVariogram(Variogram):
    """
    Matern Models

    Same args as the Variogram classes with additional nu, method parameters.

    Sklearn:

    1) This is called "sklearn" because if d/range = 1.0 and nu=0.5, it gives
       1/e correlation...
    2) The "2" is inside the square root for middle and right.

    GeoStatic:

    Uses the range scaling in gstat, there are no square root 2 or nu in middle
    and right. Yields the same answer as the sklearn form if nu == 0.5, this is
    the default and matches the gstat "Mat" model with kappa = 0.5.

    Karspeck:

    The 2 is outside the square root for middle and right, e-folding distance
    is at d/SQRT(2) for nu=0.5

    Parameters
    ----------
    nu : float
        Smoothing parameter, shapes to a smooth or rough variogram function
    method : MaternModel
        One of "sklearn", "gstat", or "karspeck"
    """

    nu: float = 0.5
    method: MaternModel = "gstat"

    shape: ClassVar[VariogramShape] = "matern"
    effective_range_factor: ClassVar[float] = 3.0

    def __post_init__(self) -> None:
        super().__post_init__()
        if not self.nu > 0:
            raise ValueError(f"nu must be > 0, got {self.nu}")
        return None

    @property
    def _left(self) -> float:
        return 1.0 / (gamma(self.nu) * np.power(2.0, self.nu - 1.0))

    def _scaled(self, dist_over_range: np.ndarray) -> np.ndarray:
        match self.method.lower():
            case "sklearn":
                return np.sqrt(2.0 * self.nu) * dist_over_range
            case "gstat":
                return dist_over_range
            case "karspeck":
                return 2.0 * np.sqrt(self.nu) * dist_over_range
            case _:
                raise ValueError("Unexpected 'method' value")

    def correlation(self, dist_over_range: np.ndarray) -> np.ndarray:
        """Correlation function of the Matern model"""
        scaled = self._scaled(np.asarray(dist_over_range, dtype=float))
        # Matern is undefined at 0 distance, where the correlation is 1
        with np.errstate(invalid="ignore", divide="ignore"):
            rho = self._left * np.power(scaled, self.nu) * kv(self.nu, scaled)
        return np.where(scaled > 0, rho, 1.0)


VARIOGRAM_MODELS: dict[str, type[Variogram]] = {
    "exponential": ExponentialVariogram,
    "spherical": SphericalVariogram,
    "gaussian": GaussianVariogram,
    "matern": MaternVariogram,
}


def get_variogram_class(shape: VariogramShape | str) -> type[Variogram]:
    """Get the Variogram class for a shape name"""
    try:
        return VARIOGRAM_MODELS[shape.lower()]
    except KeyError:
        raise ValueError(
            f"Unknown variogram shape: {shape}. "
            + f"Expected one of {', '.join(VARIOGRAM_MODELS)}"
        ) from None

