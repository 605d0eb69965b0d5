"""
Thermochemistry and transport property evaluator backed by Cantera.
"""
import logging
from typing import Optional

import numpy as np
import cantera as ct

from .errors import PropertyEvaluationError

logger = logging.getLogger(__name__)


class CanteraGas:
    """
    Single-point property evaluator.

    Every accessor is a function of the most recent ``set_state`` call only.
    Instances are not safe to share between threads; use ``clone`` to give
    each worker its own.
    """
    def __init__(self, mechanism: str, pressure: float = ct.one_atm,
                 phase: Optional[str] = None, transport_model: Optional[str] = None):
        self.mechanism = mechanism
        self.phase = phase
        self.transport_model = transport_model
        kwargs = {}
        if phase:
            kwargs['name'] = phase
        if transport_model:
            kwargs['transport_model'] = transport_model
        self.gas = ct.Solution(mechanism, **kwargs)
        self.pressure = pressure
        self.gas.TP = 300.0, pressure

        self.n_spec = self.gas.n_species
        self.species_names = list(self.gas.species_names)
        self.molecular_weights = np.array(self.gas.molecular_weights)

    def clone(self) -> 'CanteraGas':
        """Independent evaluator for the same mechanism and pressure"""
        return CanteraGas(self.mechanism, self.pressure, self.phase, self.transport_model)

    def species_index(self, name: str) -> int:
        return self.gas.species_index(name)

    def set_state(self, Y: np.ndarray, T: float):
        """Set the state from mass fractions and temperature"""
        try:
            self.gas.TPY = T, self.pressure, Y
        except ct.CanteraError as e:
            raise PropertyEvaluationError(f"Invalid state T={T}: {e}") from e

    def set_state_mole(self, X, T: float):
        """Set the state from mole fractions (array or 'NAME:value' string)"""
        try:
            self.gas.TPX = T, self.pressure, X
        except ct.CanteraError as e:
            raise PropertyEvaluationError(f"Invalid state T={T}: {e}") from e

    def mass_fractions(self) -> np.ndarray:
        return self.gas.Y

    def density(self) -> float:
        return self.gas.density

    def mixture_molecular_weight(self) -> float:
        return self.gas.mean_molecular_weight

    def viscosity(self) -> float:
        return self.gas.viscosity

    def thermal_conductivity(self) -> float:
        return self.gas.thermal_conductivity

    def diffusion_coefficients(self) -> np.ndarray:
        """Mixture-averaged diffusion coefficients [m^2/s]"""
        return self.gas.mix_diff_coeffs_mass

    def weighted_diffusion_coefficients(self) -> np.ndarray:
        """Density-weighted diffusion coefficients rho*D_km [kg/m*s]"""
        return self.gas.density * self.gas.mix_diff_coeffs_mass

    def thermal_diffusion_coefficients(self) -> np.ndarray:
        """Soret coefficients [kg/m*s]"""
        return self.gas.thermal_diff_coeffs

    def specific_heat_capacity(self) -> float:
        """Mixture specific heat [J/kg*K]"""
        return self.gas.cp_mass

    def specific_heat_capacities(self) -> np.ndarray:
        """Species specific heats [J/kg*K]"""
        return self.gas.partial_molar_cp / self.molecular_weights

    def enthalpies(self) -> np.ndarray:
        """Species enthalpies [J/kmol]"""
        return self.gas.partial_molar_enthalpies

    def reaction_rates(self) -> np.ndarray:
        """Net production rates [kmol/m^3*s]"""
        try:
            return self.gas.net_production_rates
        except ct.CanteraError as e:
            raise PropertyEvaluationError(f"Reaction rate evaluation failed: {e}") from e

    def set_multiplier(self, value: float):
        self.gas.set_multiplier(value)

    def set_equivalence_ratio(self, phi: float, fuel: str, oxidizer: str, T: float):
        """Set a fuel/oxidizer mixture at the given equivalence ratio"""
        try:
            self.gas.TP = T, self.pressure
            self.gas.set_equivalence_ratio(phi, fuel, oxidizer)
        except ct.CanteraError as e:
            raise PropertyEvaluationError(f"Invalid mixture {fuel} / {oxidizer}: {e}") from e

    def equilibrate(self, mode: str = 'HP'):
        self.gas.equilibrate(mode)

    def temperature(self) -> float:
        return self.gas.T
