"""
PySplitFlame: operator-split solver for strained one-dimensional flames
"""
from importlib.metadata import version

__version__ = version("pysplitflame")

from .core.base import (
    OperatorKind,
    FlameComponent,
    TransportComponent,
    ChemistryComponent,
    IntegratorComponent
)
from .core.config import FlameConfig, FlamePositionConfig, StrainConfig, ToleranceConfig
from .core.errors import (
    FlameSolverError,
    DimensionMismatchError,
    IntegrationError,
    BoundaryConditionError,
    PropertyEvaluationError
)
from .core.gas import CanteraGas
from .core.grid import BoundaryCondition, GridConfig, OneDimGrid
from .transport.convection import ContinuityBoundaryCondition
from .solvers.flame import FlameSystem
