"""
Exception types raised by the split solver components.
"""


class FlameSolverError(Exception):
    """Base class for all solver errors."""


class DimensionMismatchError(FlameSolverError, ValueError):
    """State or derivative array size disagrees with the current grid."""


class IntegrationError(FlameSolverError, RuntimeError):
    """A sub-integrator failed to reach its target time."""


class BoundaryConditionError(FlameSolverError, ValueError):
    """Requested boundary condition is incompatible with the current state."""


class PropertyEvaluationError(FlameSolverError, RuntimeError):
    """The thermochemistry evaluator rejected a state."""
