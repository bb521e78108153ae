"""Constants used by various functions and methods within the library"""

RADIUS_OF_EARTH_KM: float = 6371.0  # Average radius of Earth (km)
KM_TO_M: float = 1000.0

# Each degree of latitude is equal to 60 nautical miles (with cosine correction
# for lon values)
NM_PER_LAT: float = 60.0  # 60 nautical miles per degree latitude
KM_TO_NM: float = 1.852  # 1852 meters per nautical miles

# Latitude of the sub-solar point at the solstices (degrees)
SOLAR_DECLINATION: float = 23.5

# Fraction of the observations held out for validation
VALIDATION_FRACTION: float = 0.05

# Default empirical variogram settings (in the units of the coordinates)
VARIOGRAM_CUTOFF: float = 150.0
VARIOGRAM_WIDTH: float = 10.0
MIN_BIN_PAIRS: int = 30

# Neighbour orders used for the h-scatter autocorrelation
NEIGHBOUR_ORDERS: tuple[int, ...] = (1, 5, 10, 20)

# Diagonal jitter used to regularise near-singular covariance matrices
KRIGING_JITTER: float = 1e-10
KRIGING_MAX_JITTER_TRIES: int = 8
