"""
Errors and warnings raised by the kriging pipeline.

Fatal conditions are exceptions deriving from `KrigingPipelineError`, these
abort the processing of a single stratum. Recoverable data-quality conditions
are warnings, the number of occurrences is reported alongside the results.
"""


class KrigingPipelineError(Exception):
    """Base class for errors that abort the processing of a stratum"""

    pass


class DegenerateRegression(KrigingPipelineError):
    """
    The drift design matrix is singular: covariates are collinear or there are
    fewer observations than regression coefficients.
    """

    pass


class EmptyVariogramBin(KrigingPipelineError):
    """No lag bin contains any point pair for the chosen cutoff and width"""

    pass


class VariogramFitError(KrigingPipelineError):
    """None of the requested variogram shapes could be fitted"""

    pass


class KrigingSingular(KrigingPipelineError):
    """The kriging system remains singular after diagonal jitter"""

    pass


class MissingCovariate(UserWarning):
    """A covariate value was missing and has been substituted with 0"""

    pass


class CoverageGap(UserWarning):
    """A site falls outside of the extent of the prediction grid"""

    pass
