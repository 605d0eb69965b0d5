"""
Convection systems: the coupled velocity/temperature/molecular weight
system, per-species transport in the resulting velocity field, and the
coordinator that integrates them together.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Dict, List, Optional, Sequence, Union

import numpy as np
import cantera as ct
from scipy.integrate import solve_ivp

from ..core.base import OperatorKind, TransportComponent
from ..core.config import ToleranceConfig
from ..core.errors import BoundaryConditionError, DimensionMismatchError, IntegrationError
from ..core.gas import CanteraGas
from ..core.grid import BoundaryCondition, GridBased, OneDimGrid
from ..core.quasi2d import BilinearInterpolator
from ..solvers.integrator import ODESystem
from ..solvers.split_manager import SplitConstants

logger = logging.getLogger(__name__)


class ContinuityBoundaryCondition(Enum):
    """Boundary conditions for continuity equation"""
    Left = "left"
    Right = "right"
    Zero = "zero"
    Temp = "temp"
    Qdot = "qdot"


class ConvectionSystemUTW(GridBased, TransportComponent, ODESystem):
    """
    Velocity-Temperature-Weight (UTW) system.

    The state vector is stacked as [U, T, Wmx]. Each call to ``f`` also
    integrates the continuity equation for the mass flux ``rV`` and converts
    it to ``V``.
    """
    kind = OperatorKind.ConvectionUTW

    def __init__(self, config: Optional[dict] = None):
        super().__init__(config)
        self.P = ct.one_atm
        self.n_points = 0

        # Boundary conditions
        self.T_left = 0.0
        self.W_left = 0.0
        self.r_vzero = 0.0
        self.x_vzero: Optional[float] = None
        self.left_bc = BoundaryCondition.FixedValue
        self.right_bc = BoundaryCondition.FixedValue
        self.continuity_bc = ContinuityBoundaryCondition.Left
        self.j_cont_bc = 0

        # Strain rate a(t) and its derivative, plus the unburned density
        self.strain_function = None
        self.rhou: Optional[float] = None

        self.initialize()

    def initialize(self) -> None:
        n = self.n_points

        # Solution arrays
        self.U = np.zeros(n)
        self.T = np.zeros(n)
        self.Wmx = np.zeros(n)
        self.rho = np.zeros(n)

        # Mass flux
        self.rV = np.zeros(n)
        self.V = np.zeros(n)
        self.drho_dt = np.zeros(n)

        # Time derivatives
        self.dU_dt = np.zeros(n)
        self.dT_dt = np.zeros(n)
        self.dW_dt = np.zeros(n)

        self.reset_split_constants()
        self._initialized = True

    def resize(self, n_points: int):
        """Reallocate all per-point arrays"""
        self.n_points = n_points
        self.initialize()

    def reset_split_constants(self):
        """Reset split constants to zero"""
        self.split_const_U = np.zeros(self.n_points)
        self.split_const_T = np.zeros(self.n_points)
        self.split_const_W = np.zeros(self.n_points)

    def set_split_constants(self, split_U: np.ndarray, split_T: np.ndarray,
                            split_W: np.ndarray):
        for name, values in (('U', split_U), ('T', split_T), ('W', split_W)):
            if len(values) != self.n_points:
                raise DimensionMismatchError(
                    f"Split constant {name} has {len(values)} values, "
                    f"system has {self.n_points} points")
        self.split_const_U = np.array(split_U, dtype=float)
        self.split_const_T = np.array(split_T, dtype=float)
        self.split_const_W = np.array(split_W, dtype=float)

    def set_boundary_conditions(self, left_bc: BoundaryCondition, right_bc: BoundaryCondition,
                                continuity_bc: ContinuityBoundaryCondition, j_cont_bc: int,
                                x_vzero: Optional[float] = None):
        """Set boundary conditions"""
        self.left_bc = left_bc
        self.right_bc = right_bc
        self.continuity_bc = continuity_bc
        self.j_cont_bc = j_cont_bc
        if x_vzero is not None:
            self.x_vzero = x_vzero

    def strain_rate(self, t: float):
        if self.strain_function is None:
            return 0.0, 0.0
        return self.strain_function.a(t), self.strain_function.dadt(t)

    def unroll_y(self, y: np.ndarray):
        """Extract state variables from solution vector"""
        n = self.n_points
        self.U = y[:n]
        self.T = y[n:2*n]
        self.Wmx = y[2*n:]

    def roll_y(self) -> np.ndarray:
        return np.concatenate([self.U, self.T, self.Wmx])

    def roll_ydot(self) -> np.ndarray:
        return np.concatenate([self.dU_dt, self.dT_dt, self.dW_dt])

    def _geometric_factor(self) -> np.ndarray:
        return self.grid.geometric_factor

    def V2rV(self):
        """Update rV from V"""
        self.rV = self._geometric_factor() * self.V

    def rV2V(self):
        """Update V from rV"""
        self.V = self.rV / self._geometric_factor()

    def f(self, t: float, y: np.ndarray) -> np.ndarray:
        """Right-hand side calculation for UTW system"""
        if len(y) != 3 * self.n_points:
            raise DimensionMismatchError(
                f"State has {len(y)} values, expected {3 * self.n_points}")
        self.check_grid(self.n_points)

        self.unroll_y(y)
        self.rho = self.P * self.Wmx / (ct.gas_constant * self.T)
        self._calculate_V()

        dU_dx = self._upwind_derivative(self.U)
        dT_dx = self._upwind_derivative(self.T)
        dW_dx = self._upwind_derivative(self.Wmx)
        self._calculate_time_derivatives(t, dU_dx, dT_dx, dW_dx)

        return self.roll_ydot()

    def side_effects(self) -> Dict[str, np.ndarray]:
        return {'V': self.V.copy(), 'rV': self.rV.copy(), 'rho': self.rho.copy()}

    def _upwind_derivative(self, v: np.ndarray) -> np.ndarray:
        """Forward difference where rV < 0 and at j=0, backward otherwise"""
        diff = np.diff(v) / self.hh
        backward = np.empty_like(diff)
        backward[0] = diff[0]
        backward[1:] = diff[:-1]

        forward_mask = self.rV[:-1] < 0
        forward_mask[0] = True

        dv_dx = np.empty(self.n_points)
        dv_dx[:-1] = np.where(forward_mask, diff, backward)
        dv_dx[-1] = diff[-1]
        return dv_dx

    def _stagnation_slope(self, j: int) -> float:
        """d(rV)/dx at the stagnation point from the continuity equation"""
        def slope(i):
            return -self.rphalf[i] * (self.drho_dt[i] + self.rho[i] * self.beta * self.U[i])

        if j == self.n_points - 1:
            return slope(j - 1)
        d_vdx0 = slope(j)
        if j != 0:
            d_vdx0 = 0.5 * d_vdx0 + 0.5 * slope(j - 1)
        return d_vdx0

    def _calculate_V(self):
        """Integrate the continuity equation outward from the boundary point"""
        n = self.n_points
        src = self.hh * self.rphalf * (self.drho_dt[:-1] + self.rho[:-1] * self.beta * self.U[:-1])
        bc = self.continuity_bc

        if bc == ContinuityBoundaryCondition.Left:
            self.rV[0] = self.r_vzero
            self.rV[1:] = self.r_vzero - np.cumsum(src)

        elif bc == ContinuityBoundaryCondition.Right:
            self.rV[-1] = self.r_vzero
            self.rV[:-1] = self.r_vzero + np.cumsum(src[::-1])[::-1]

        else:
            j = self.j_cont_bc
            if bc == ContinuityBoundaryCondition.Temp:
                self.rV[j] = self._temperature_anchored_flux(j)
                j_back = j
            else:
                if bc == ContinuityBoundaryCondition.Zero:
                    if self.x_vzero is None:
                        raise BoundaryConditionError(
                            "Stagnation point location has not been set")
                    x0 = self.x_vzero
                else:
                    x0 = self.x[j]
                d_vdx0 = self._stagnation_slope(j)
                self.rV[j] = (self.x[j] - x0) * d_vdx0
                j_back = j
                if j != 0:
                    j_back = j - 1
                    self.rV[j_back] = (self.x[j_back] - x0) * d_vdx0

            # Forward and backward integration
            if j < n - 1:
                self.rV[j+1:] = self.rV[j] - np.cumsum(src[j:])
            if j_back > 0:
                self.rV[:j_back] = self.rV[j_back] + np.cumsum(src[:j_back][::-1])[::-1]

        self.rV2V()

    def _temperature_anchored_flux(self, j: int) -> float:
        """Mass flux at j that makes the convective T derivative cancel splitConstT"""
        use_forward = j == 0
        if not use_forward and j < self.n_points - 1:
            dT = self.T[j+1] - self.T[j]
            use_forward = dT != 0 and self.split_const_T[j] / dT < 0
        if use_forward:
            dT = self.T[j+1] - self.T[j]
            if dT == 0:
                return 0.0
            return self.rphalf[j] * self.rho[j] * self.split_const_T[j] * self.hh[j] / dT
        dT = self.T[j] - self.T[j-1]
        if dT == 0:
            return 0.0
        return self.rphalf[j-1] * self.rho[j] * self.split_const_T[j] * self.hh[j-1] / dT

    def _calculate_time_derivatives(self, t: float, dU_dx, dT_dx, dW_dx):
        """Calculate time derivatives of UTW system"""
        a, dadt = self.strain_rate(t)
        rhou = self.rhou if self.rhou is not None else self.rho[0]
        strain = rhou / self.rho * (dadt / self.beta + a**2 / self.beta**2)
        jj = self.n_points - 1

        # Interior points
        self.dU_dt = (-self.V * dU_dx / self.rho - self.U**2 + strain + self.split_const_U)
        self.dT_dt = -self.V * dT_dx / self.rho + self.split_const_T
        self.dW_dt = -self.V * dW_dx / self.rho - self.Wmx**2 * self.split_const_W

        # Left boundary
        self.dU_dt[0] = self.split_const_U[0] - self.U[0]**2 + strain[0]
        if self.left_bc in (BoundaryCondition.ControlVolume, BoundaryCondition.WallFlux):
            center_vol = self.x[1]**(self.alpha + 1) / (self.alpha + 1)
            r_vzero_mod = max(self.rV[0], 0.0)
            self.dT_dt[0] = (-r_vzero_mod * (self.T[0] - self.T_left) /
                             (self.rho[0] * center_vol) + self.split_const_T[0])
            self.dW_dt[0] = (-r_vzero_mod * (self.Wmx[0] - self.W_left) /
                             (self.rho[0] * center_vol) -
                             self.Wmx[0]**2 * self.split_const_W[0])
        else:
            self.dT_dt[0] = self.split_const_T[0]
            self.dW_dt[0] = -self.Wmx[0]**2 * self.split_const_W[0]

        # Right boundary
        if self.rV[jj] < 0 or self.right_bc == BoundaryCondition.FixedValue:
            self.dU_dt[jj] = self.split_const_U[jj] - self.U[jj]**2 + strain[jj]
            self.dT_dt[jj] = self.split_const_T[jj]
            self.dW_dt[jj] = -self.Wmx[jj]**2 * self.split_const_W[jj]

    def update_continuity_boundary_condition(self, mass_flux: np.ndarray,
                                             new_bc: ContinuityBoundaryCondition,
                                             qdot: Optional[np.ndarray] = None):
        """
        Switch the continuity boundary condition, locating the anchor point
        from the supplied mass flux estimate (Zero), the temperature profile
        (Temp) or the heat release rate (Qdot). On failure the previous
        boundary condition is kept.
        """
        self.check_grid(self.n_points)
        jj = self.n_points - 1
        x_vzero = self.x_vzero

        if new_bc == ContinuityBoundaryCondition.Zero:
            mass_flux = self._checked_profile(mass_flux, "Mass flux")
            crossings = self.zero_crossings(mass_flux)
            if not crossings:
                raise BoundaryConditionError(
                    "Mass flux estimate has no zero crossing; keeping "
                    f"{self.continuity_bc.value} boundary condition")
            if x_vzero is None:
                x_vzero = crossings[0]
            else:
                x_vzero = min(crossings, key=lambda xc: abs(xc - self.x_vzero))
            j_cont_bc = self.nearest_index(x_vzero)

        elif new_bc == ContinuityBoundaryCondition.Temp:
            T_mid = 0.5 * (np.max(self.T) + np.min(self.T))
            j_cont_bc = 0
            for j in range(1, self.n_points):
                if (self.T[j] - T_mid) * (self.T[j-1] - T_mid) <= 0:
                    j_cont_bc = j
                    break
            x_vzero = self.x[j_cont_bc]

        elif new_bc == ContinuityBoundaryCondition.Qdot:
            if qdot is None:
                raise BoundaryConditionError("Qdot boundary condition requires the heat release rate")
            qdot = self._checked_profile(qdot, "Heat release rate")
            j_cont_bc = int(np.argmax(qdot))
            x_vzero = self.x[j_cont_bc]

        elif new_bc == ContinuityBoundaryCondition.Left:
            j_cont_bc = 0

        else:
            j_cont_bc = jj

        self.continuity_bc = new_bc
        self.j_cont_bc = j_cont_bc
        self.x_vzero = x_vzero
        logger.debug("Continuity BC %s at j=%d", new_bc.value, self.j_cont_bc)

    def _checked_profile(self, values: np.ndarray, name: str) -> np.ndarray:
        values = np.asarray(values, dtype=float)
        if len(values) != self.n_points:
            raise DimensionMismatchError(
                f"{name} has {len(values)} values, grid has {self.n_points}")
        return values

    def zero_crossings(self, values: np.ndarray) -> List[float]:
        """Locations where the piecewise linear profile of values is zero"""
        crossings = []
        for j in range(self.n_points - 1):
            if values[j] == 0:
                crossings.append(self.x[j])
            elif values[j] * values[j+1] < 0:
                crossings.append(self.x[j] - values[j] * self.hh[j] / (values[j+1] - values[j]))
        if values[-1] == 0:
            crossings.append(self.x[-1])
        return crossings

    def nearest_index(self, x0: float) -> int:
        """Grid index nearest x0, taking the lower index on a tie"""
        dist = np.abs(self.x - x0)
        tol = 1e-12 * max(abs(self.x[-1] - self.x[0]), 1e-300)
        return int(np.nonzero(dist <= dist.min() + tol)[0][0])


class ConvectionSystemY(GridBased, TransportComponent, ODESystem):
    """
    Transport of a single species in a prescribed velocity field ``v = V/rho``
    over the sub-range [start_index, stop_index] of the grid.
    """
    kind = OperatorKind.ConvectionSpecies

    def __init__(self, k: int = 0, config: Optional[dict] = None):
        super().__init__(config)
        self.k = k
        self.start_index = 0
        self.stop_index = -1
        self.n_points = 0

        # Time-interpolated velocity fields, full grid length
        self.v_interp: Dict[float, np.ndarray] = {}
        self.quasi2d = False
        self.vz_interp: Optional[BilinearInterpolator] = None
        self.vr_interp: Optional[BilinearInterpolator] = None

        self.Y_left = 0.0
        self.left_bc = BoundaryCondition.FixedValue
        self.right_bc = BoundaryCondition.FixedValue
        self.initialize()

    def initialize(self) -> None:
        self.v = np.zeros(self.n_points)
        self.split_const = np.zeros(self.n_points)
        self._initialized = True

    def set_domain(self, start_index: int, stop_index: int):
        """Restrict the system to [start_index, stop_index] and resize"""
        self.start_index = start_index
        self.stop_index = stop_index
        self.n_points = stop_index - start_index + 1
        self.initialize()

    def setup_quasi2d(self, vz_interp: BilinearInterpolator, vr_interp: BilinearInterpolator):
        self.quasi2d = True
        self.vz_interp = vz_interp
        self.vr_interp = vr_interp

    def reset_split_constants(self):
        """Reset split constants to zero"""
        self.split_const = np.zeros(self.n_points)

    def set_split_constants(self, split_const: np.ndarray):
        if len(split_const) != self.n_points:
            raise DimensionMismatchError(
                f"Split constants for species {self.k} have {len(split_const)} "
                f"values, sub-range has {self.n_points}")
        self.split_const = np.array(split_const, dtype=float)

    def update_v(self, t: float):
        """Velocity on the sub-range at time t"""
        s = slice(self.start_index, self.stop_index + 1)
        if self.quasi2d:
            x = self.x[s]
            self.v = self.vz_interp.get(x, t) / self.vr_interp.get(x, t)
            return

        if not self.v_interp:
            raise IntegrationError("No velocity field available for species convection")
        if len(self.v_interp) == 1:
            self.v = next(iter(self.v_interp.values()))[s]
            return

        times = sorted(self.v_interp)
        if t <= times[0]:
            self.v = self.v_interp[times[0]][s]
            return
        if t >= times[-1]:
            self.v = self.v_interp[times[-1]][s]
            return

        idx = int(np.searchsorted(times, t))
        t1, t2 = times[idx-1], times[idx]
        v1, v2 = self.v_interp[t1][s], self.v_interp[t2][s]
        w = (t - t1) / (t2 - t1)
        self.v = v1 * (1 - w) + v2 * w

    def f(self, t: float, y: np.ndarray) -> np.ndarray:
        """Right-hand side for species transport equation"""
        if len(y) != self.n_points:
            raise DimensionMismatchError(
                f"State for species {self.k} has {len(y)} values, "
                f"sub-range has {self.n_points}")
        if self.grid is None:
            raise DimensionMismatchError("No grid has been set")
        self.check_grid(self.grid.nPoints)
        if self.stop_index >= self.grid.nPoints:
            raise DimensionMismatchError(
                f"Species {self.k} sub-range ends at {self.stop_index}, "
                f"grid has {self.grid.nPoints} points")
        self.update_v(t)

        n = self.n_points
        v = self.v
        y_dot = self.split_const.copy()

        # Upwinded interior convection, using only points inside the sub-range
        if n > 1:
            slope = np.diff(y) / self.hh[self.start_index:self.stop_index]
            conv = np.zeros(n)
            conv[:-1] += np.where(v[:-1] < 0, -v[:-1] * slope, 0.0)
            conv[1:] += np.where(v[1:] >= 0, -v[1:] * slope, 0.0)

            if self.stop_index == self.grid.nPoints - 1:
                if v[-1] < 0 or self.right_bc == BoundaryCondition.FixedValue:
                    conv[-1] = 0.0
            if self.start_index == 0:
                conv[0] = 0.0
            y_dot += conv

        # Left boundary
        if (self.start_index == 0 and n > 1 and
                self.left_bc in (BoundaryCondition.ControlVolume, BoundaryCondition.WallFlux)):
            center_vol = self.x[1]**(self.alpha + 1) / (self.alpha + 1)
            v_zero_mod = max(v[0], 0.0)
            y_dot[0] += -v_zero_mod * (y[0] - self.Y_left) / center_vol

        return y_dot

    def side_effects(self) -> Dict[str, np.ndarray]:
        return {'v': np.array(self.v)}


class ConvectionSystemSplit(GridBased):
    """
    Convection of U, T, Wmx and every species to a common target time.

    The UTW system is solved first and its velocity field ``V/rho`` is
    recorded at every accepted step; each species is then solved
    independently in that field over its own active sub-range.
    """
    def __init__(self, n_threads: int = 1):
        self.gas: Optional[CanteraGas] = None
        self.W: Optional[np.ndarray] = None
        self.n_threads = n_threads
        self.quasi2d = False
        self.vz_interp: Optional[BilinearInterpolator] = None
        self.vr_interp: Optional[BilinearInterpolator] = None

        # Systems
        self.utw_system = ConvectionSystemUTW()
        self.species_systems: List[ConvectionSystemY] = []

        # Integration parameters
        self.tolerances = ToleranceConfig()

        self.t = 0.0
        self.v_interp: Dict[float, np.ndarray] = {}
        self.n_steps_utw = 0
        self.n_steps_species: List[int] = []
        self.resize(0, [], 0)

    def resize(self, n_points_utw: int, n_points_spec: Union[int, Sequence[int]], n_spec: int):
        """
        Resize all systems. ``n_points_spec`` gives the sub-range length of
        each species (a single value applies to all); sub-ranges start at 0
        until ``set_species_domains`` is called.
        """
        if np.isscalar(n_points_spec):
            n_points_spec = [int(n_points_spec)] * n_spec
        if len(n_points_spec) != n_spec:
            raise DimensionMismatchError(
                f"Got {len(n_points_spec)} species sizes for {n_spec} species")
        if any(m < 1 or m > n_points_utw for m in n_points_spec):
            raise DimensionMismatchError("Species sub-range sizes must be in [1, n_points]")

        self.n_points = n_points_utw
        self.n_spec = n_spec

        self.U = np.zeros(n_points_utw)
        self.T = np.zeros(n_points_utw)
        self.Wmx = np.zeros(n_points_utw)
        self.Y = np.zeros((n_spec, n_points_utw))
        self.V = np.zeros(n_points_utw)
        self.rV = np.zeros(n_points_utw)
        self.rho = np.zeros(n_points_utw)

        self.dUdt = np.zeros(n_points_utw)
        self.dTdt = np.zeros(n_points_utw)
        self.dWdt = np.zeros(n_points_utw)
        self.dYdt = np.zeros((n_spec, n_points_utw))

        self.v_interp = {}
        self._utw_solution = None
        self._species_solutions = None
        self.utw_system.resize(n_points_utw)

        if len(self.species_systems) != n_spec:
            self.species_systems = [ConvectionSystemY(k) for k in range(n_spec)]
            if self.grid is not None:
                for system in self.species_systems:
                    system.set_grid(self.grid)
            if self.quasi2d:
                for system in self.species_systems:
                    system.setup_quasi2d(self.vz_interp, self.vr_interp)
        for system, m in zip(self.species_systems, n_points_spec):
            system.set_domain(0, m - 1)
        self.n_steps_species = [0] * n_spec

    def set_grid(self, grid: OneDimGrid):
        """Set grid for all systems"""
        super().set_grid(grid)
        self.utw_system.set_grid(grid)
        for system in self.species_systems:
            system.set_grid(grid)

    def set_tolerances(self, tolerances: ToleranceConfig):
        self.tolerances = tolerances

    def set_gas(self, gas: CanteraGas):
        """Bind the property evaluator"""
        self.gas = gas
        self.W = np.asarray(gas.molecular_weights, dtype=float)
        self.utw_system.P = gas.pressure

    def set_boundary_conditions(self, left_bc: BoundaryCondition, right_bc: BoundaryCondition,
                                continuity_bc: ContinuityBoundaryCondition, j_cont_bc: int,
                                x_vzero: Optional[float] = None):
        self.utw_system.set_boundary_conditions(left_bc, right_bc, continuity_bc,
                                                j_cont_bc, x_vzero)
        for system in self.species_systems:
            system.left_bc = left_bc
            system.right_bc = right_bc

    def update_continuity_boundary_condition(self, mass_flux: np.ndarray,
                                             new_bc: ContinuityBoundaryCondition,
                                             qdot: Optional[np.ndarray] = None):
        self.utw_system.T = self.T.copy()
        self.utw_system.update_continuity_boundary_condition(mass_flux, new_bc, qdot)

    def set_strain_function(self, strain_function):
        self.utw_system.strain_function = strain_function

    def set_rhou(self, rhou: float):
        self.utw_system.rhou = rhou

    def set_species_domains(self, start_indices: Sequence[int], stop_indices: Sequence[int]):
        """Active sub-range [start, stop] of each species"""
        if len(start_indices) != self.n_spec or len(stop_indices) != self.n_spec:
            raise DimensionMismatchError(
                f"Expected {self.n_spec} species domains, got "
                f"{len(start_indices)} starts and {len(stop_indices)} stops")
        for k, (start, stop) in enumerate(zip(start_indices, stop_indices)):
            if not 0 <= start <= stop < self.n_points:
                raise ValueError(
                    f"Invalid domain [{start}, {stop}] for species {k} "
                    f"on {self.n_points} points")
        for system, start, stop in zip(self.species_systems, start_indices, stop_indices):
            system.set_domain(int(start), int(stop))

    def species_domains(self):
        return ([s.start_index for s in self.species_systems],
                [s.stop_index for s in self.species_systems])

    def set_state(self, U: np.ndarray, T: np.ndarray, Y: np.ndarray, t_initial: float):
        """Set the state at the start of a convection step"""
        Y = np.asarray(Y, dtype=float)
        if len(U) != self.n_points or len(T) != self.n_points:
            raise DimensionMismatchError(
                f"State arrays must have {self.n_points} points")
        if Y.shape != (self.n_spec, self.n_points):
            raise DimensionMismatchError(
                f"Expected Y with shape {(self.n_spec, self.n_points)}, got {Y.shape}")
        self.U = np.array(U, dtype=float)
        self.T = np.array(T, dtype=float)
        self.Y = Y.copy()
        self.Wmx = 1.0 / np.dot(1.0 / self.W, self.Y)
        self.t = t_initial

    def set_left_bc(self, T_left: float, Y_left: np.ndarray):
        """Inflow state for control volume left boundaries"""
        self.utw_system.T_left = T_left
        self.utw_system.W_left = 1.0 / np.dot(Y_left, 1.0 / self.W)
        for k, system in enumerate(self.species_systems):
            system.Y_left = Y_left[k]

    def set_rvzero(self, r_vzero: float):
        self.utw_system.r_vzero = r_vzero

    def V2rV(self, V: np.ndarray) -> np.ndarray:
        """Mass flux for the velocity field V on the current grid"""
        utw = self.utw_system
        utw.check_grid(self.n_points)
        utw.V = np.array(V, dtype=float)
        utw.V2rV()
        return utw.rV.copy()

    def set_density_derivative(self, drho_dt: np.ndarray):
        if len(drho_dt) != self.n_points:
            raise DimensionMismatchError(
                f"drho/dt has {len(drho_dt)} values, grid has {self.n_points}")
        self.utw_system.drho_dt = np.array(drho_dt, dtype=float)

    def set_split_constants(self, split: SplitConstants):
        """Set split constants for this step"""
        if split.n_points != self.n_points or split.n_spec != self.n_spec:
            raise DimensionMismatchError(
                f"Split constants sized ({split.n_spec}, {split.n_points}), "
                f"system is ({self.n_spec}, {self.n_points})")
        self.utw_system.set_split_constants(split.U, split.T, split.W(self.W))
        for k, system in enumerate(self.species_systems):
            system.set_split_constants(split.Y[k, system.start_index:system.stop_index + 1])

    def reset_split_constants(self):
        """Reset all split constants to zero"""
        self.utw_system.reset_split_constants()
        for system in self.species_systems:
            system.reset_split_constants()

    def setup_quasi2d(self, vz_interp: BilinearInterpolator, vr_interp: BilinearInterpolator):
        """Prescribe the species velocity field as vz / vr; the UTW solve is skipped"""
        self.quasi2d = True
        self.vz_interp = vz_interp
        self.vr_interp = vr_interp
        for system in self.species_systems:
            system.setup_quasi2d(vz_interp, vr_interp)

    def _utw_state(self) -> np.ndarray:
        return np.concatenate([self.U, self.T, self.Wmx])

    def evaluate(self):
        """Time derivatives and mass flux at the current state"""
        self.dYdt = np.zeros((self.n_spec, self.n_points))
        if self.quasi2d:
            self.dUdt = np.zeros(self.n_points)
            self.dTdt = np.zeros(self.n_points)
            self.dWdt = np.zeros(self.n_points)
        else:
            ydot = self.utw_system.f(self.t, self._utw_state())
            n = self.n_points
            self.dUdt = ydot[:n].copy()
            self.dTdt = ydot[n:2*n].copy()
            self.dWdt = ydot[2*n:].copy()
            self.V = self.utw_system.V.copy()
            self.rV = self.utw_system.rV.copy()
            self.rho = self.utw_system.rho.copy()
            self.v_interp = {self.t: self.V / self.rho}

        for k, system in enumerate(self.species_systems):
            system.v_interp = self.v_interp
            s = slice(system.start_index, system.stop_index + 1)
            self.dYdt[k, s] = system.f(self.t, self.Y[k, s])

    def _solve_utw(self, tf: float):
        tol = self.tolerances
        n = self.n_points
        y0 = self._utw_state()
        atol = np.concatenate([np.full(n, tol.abstol_U), np.full(n, tol.abstol_T),
                               np.full(n, tol.abstol_W)])
        sol = solve_ivp(self.utw_system.f, (self.t, tf), y0,
                        method=tol.convection_method_utw,
                        rtol=tol.reltol_convection, atol=atol)
        if not sol.success:
            raise IntegrationError(f"UTW convection failed: {sol.message}")

        v_interp = {}
        for i, t_eval in enumerate(sol.t):
            self.utw_system.f(t_eval, sol.y[:, i])
            v_interp[float(t_eval)] = self.utw_system.V / self.utw_system.rho
        # Leave the UTW system evaluated at the final state
        self.utw_system.f(sol.t[-1], sol.y[:, -1])
        return sol.y[:, -1].copy(), v_interp, len(sol.t) - 1

    def _solve_species(self, k: int, tf: float, v_interp: Dict[float, np.ndarray]):
        tol = self.tolerances
        system = self.species_systems[k]
        system.v_interp = v_interp
        y0 = self.Y[k, system.start_index:system.stop_index + 1]
        sol = solve_ivp(system.f, (self.t, tf), y0,
                        method=tol.convection_method_species,
                        rtol=tol.reltol_convection, atol=tol.abstol_Y)
        if not sol.success:
            raise IntegrationError(
                f"Convection of species {k} failed: {sol.message}")
        return sol.y[:, -1].copy(), len(sol.t) - 1

    def integrate_to_time(self, tf: float):
        """
        Integrate the UTW system and then every species to tf. Nothing is
        committed unless every solve succeeds.
        """
        if tf < self.t:
            raise ValueError(f"Target time {tf} precedes current time {self.t}")
        if tf == self.t:
            self.n_steps_utw = 0
            self.n_steps_species = [0] * self.n_spec
            return

        if self.quasi2d:
            y_utw = self._utw_state()
            v_interp = {}
            n_steps_utw = 0
        else:
            y_utw, v_interp, n_steps_utw = self._solve_utw(tf)

        if self.n_threads > 1 and self.n_spec > 1:
            with ThreadPoolExecutor(max_workers=self.n_threads) as executor:
                results = list(executor.map(
                    lambda k: self._solve_species(k, tf, v_interp), range(self.n_spec)))
        else:
            results = [self._solve_species(k, tf, v_interp) for k in range(self.n_spec)]

        self._utw_solution = y_utw
        self._species_solutions = [r[0] for r in results]
        self.v_interp = v_interp
        self.n_steps_utw = n_steps_utw
        self.n_steps_species = [r[1] for r in results]
        self.unroll_y()
        self.t = tf

    def unroll_y(self):
        """Merge the sub-system solutions into U, T, Wmx and Y"""
        if self._utw_solution is None:
            raise RuntimeError("integrate_to_time has not produced a solution yet")
        n = self.n_points
        y = self._utw_solution
        self.U = y[:n].copy()
        self.T = y[n:2*n].copy()
        self.Wmx = y[2*n:].copy()
        if not self.quasi2d:
            self.V = self.utw_system.V.copy()
            self.rV = self.utw_system.rV.copy()
            self.rho = self.utw_system.rho.copy()

        Y = self.Y.copy()
        for system, y_k in zip(self.species_systems, self._species_solutions):
            Y[system.k, system.start_index:system.stop_index + 1] = y_k
        self.Y = Y

    def get_num_steps(self) -> int:
        return self.n_steps_utw + sum(self.n_steps_species)
