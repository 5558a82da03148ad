"""
Typed failures raised by the core facies classification pipeline.

Per-iteration mixture-model failures are not exceptions: they are returned as
FitFailure values by corefacies.mixture and only tallied.
"""


class CoreFaciesError(Exception):
    """Base class for all pipeline errors."""


class InputError(CoreFaciesError, ValueError):
    """Malformed or insufficiently sized observation data or parameters."""


class RobustEstimationError(CoreFaciesError):
    """MCD or the eigendecomposition of its covariance could not be computed."""


class AllFitsFailedError(CoreFaciesError):
    """Every mixture-model fit of a run failed, so there is no best/worst fit."""


class DegenerateContingencyError(CoreFaciesError):
    """Contingency table with an empty row or column (chi-square undefined)."""
