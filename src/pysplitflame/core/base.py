"""
Base classes and interfaces for pysplitflame components.
"""
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Optional


class OperatorKind(Enum):
    """Tags for the closed set of split operator variants"""
    ConvectionUTW = "convection_utw"
    ConvectionSpecies = "convection_species"
    DiffusionSpecies = "diffusion_species"
    DiffusionTemperature = "diffusion_temperature"
    DiffusionMomentum = "diffusion_momentum"
    Reaction = "reaction"


class FlameComponent(ABC):
    """
    Base class for all pysplitflame components providing common functionality
    and enforcing interface requirements.
    """
    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self._config = config or {}
        self._initialized = False

    @abstractmethod
    def initialize(self) -> None:
        """Initialize the component with current configuration."""
        self._initialized = True

    def is_initialized(self) -> bool:
        """Check if component has been initialized."""
        return self._initialized


class TransportComponent(FlameComponent):
    """Base class for transport operators (convection and diffusion)."""
    kind: OperatorKind

    @abstractmethod
    def reset_split_constants(self) -> None:
        """Zero the split correction terms."""
        pass


class ChemistryComponent(FlameComponent):
    """Base class for chemistry-related components."""
    kind = OperatorKind.Reaction

    @abstractmethod
    def compute_rates(self, T: float, Y) -> None:
        """Compute reaction rates at the given state."""
        pass


class IntegratorComponent(FlameComponent):
    """Base class for integrator components."""
    @abstractmethod
    def step(self) -> None:
        """Advance solution by one timestep."""
        pass
