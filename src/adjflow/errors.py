class AdjflowError(Exception):
    """Base class for all adjflow-related errors."""

    pass


class ValidationError(AdjflowError, ValueError):
    """Raised when input data fails validation checks."""

    pass


class StorageError(AdjflowError):
    """Raised when persisted data cannot be written or read back."""

    pass


class PreconditionerError(AdjflowError):
    """Raised when there is an error related to preconditioners."""

    pass


class SolverError(AdjflowError):
    """Raised when a linear solver fails to produce a solution."""

    pass


class PhysicalInconsistencyError(AdjflowError):
    """
    Raised when valid input produces physically meaningless values.

    Kept apart from `ValidationError` so callers can tell bad input from solver divergence.
    """

    pass


class NegativeWellIndexError(PhysicalInconsistencyError):
    """Raised when the Peaceman well model yields a negative well index."""

    pass


class WellRadiusError(NegativeWellIndexError):
    """Raised when the equivalent radius is smaller than the well bore radius."""

    pass


class SkinFactorError(NegativeWellIndexError):
    """Raised when a large negative skin factor drives the well index below zero."""

    pass


class NonFiniteSaturationError(PhysicalInconsistencyError):
    """Raised when a transport solve leaves NaN or infinite saturations."""

    pass


class SaturationBoundsError(PhysicalInconsistencyError):
    """Raised when an accepted saturation field leaves [0, 1] beyond tolerance."""

    pass


class SimulationError(AdjflowError):
    """Base class for simulation-related errors."""

    pass


class ConvergenceError(SimulationError):
    """
    Raised when the Newton, line-search or time-step refinement budget is exhausted.

    The saturation carried by the state must not be trusted after this error.
    """

    pass
