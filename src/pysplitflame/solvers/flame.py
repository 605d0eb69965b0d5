"""
Split solver for strained one-dimensional flames.

Each outer step integrates the chemical source terms, then diffusion, then
convection over the same interval, with split constants built from the
operator derivatives of the previous step.
"""
import copy
import logging
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np
import cantera as ct
from scipy.integrate import trapezoid

from ..core.config import FlameConfig
from ..core.errors import DimensionMismatchError
from ..core.gas import CanteraGas
from ..core.grid import BoundaryCondition, OneDimGrid
from ..transport.chemistry import SourcePoint, SourceSystem, integrate_source_points
from ..transport.convection import ContinuityBoundaryCondition, ConvectionSystemSplit
from ..transport.diffusion import (MomentumDiffusionSystem, SpeciesDiffusionSystem,
                                   TemperatureDiffusionSystem)
from .cross_system import CrossTermSystem
from .integrator import BDFIntegrator
from .split_manager import SplitConstantsManager
from .strain import FlamePositionController, StrainFunction

logger = logging.getLogger(__name__)

k_energy = SplitConstantsManager.k_energy
k_momentum = SplitConstantsManager.k_momentum
k_species = SplitConstantsManager.k_species


class FlameSystem:
    """
    Coordinator for the split flame solver. Owns the grid, the state
    (T, U, Y, V) and every operator.
    """
    def __init__(self, config: FlameConfig, gas: Optional[CanteraGas] = None):
        self.config = config
        self.gas = gas or CanteraGas(config.mechanism, config.pressure)
        self.n_spec = self.gas.n_spec
        self.n_vars = self.n_spec + 2  # T, U, Y1...YK
        self.W = self.gas.molecular_weights

        self.grid = OneDimGrid(config.grid)
        self.grid.setPoints(np.linspace(config.x_min, config.x_max, config.grid_points))
        self.grid.updateBoundaryConditions(config.wall_flux)

        self.strain_function = StrainFunction(config.strain)
        self.flame_position_control = FlamePositionController(config.flame_position)

        # Optional source term modifiers
        self.rate_multiplier: Optional[Callable[[float], float]] = None
        self.heat_loss: Optional[Callable] = None

        # Operators
        self.split_constants = SplitConstantsManager(
            self.grid.nPoints, self.n_spec, config.split_method)
        self.cross_terms = CrossTermSystem()
        self.cross_terms.set_grid(self.grid)

        tol = config.tolerances
        self.U_system = MomentumDiffusionSystem()
        self.T_system = TemperatureDiffusionSystem()
        self.Y_systems = [SpeciesDiffusionSystem() for _ in range(self.n_spec)]
        self.diffusion_systems = [self.T_system, self.U_system] + self.Y_systems
        self.diffusion_integrators = []
        for system in self.diffusion_systems:
            system.set_grid(self.grid)
            self.diffusion_integrators.append(BDFIntegrator(
                system, {'reltol': tol.reltol_diffusion, 'abstol': tol.abstol_diffusion}))

        # Heat exchange with the centerline wall; other variables see no flux
        self.T_system.set_wall_flux(config.T_wall, config.wall_conductance)

        self.convection = ConvectionSystemSplit(n_threads=config.n_threads)
        self.convection.set_gas(self.gas)
        self.convection.set_grid(self.grid)
        self.convection.set_tolerances(tol)
        self.convection.set_strain_function(self.strain_function)

        self.continuity_bc = ContinuityBoundaryCondition(config.continuity_bc)
        self.r_vzero = config.r_vzero
        if config.x_stagnation is None:
            self.x_vzero = 0.5 * (config.x_min + config.x_max)
        else:
            self.x_vzero = config.x_stagnation

        # Time tracking
        self.t = config.t_start
        self.dt = config.dt
        self.t_regrid = self.t + config.regrid_time_interval
        self.n_regrid = 0
        self.n_steps = 0
        self._stop_requested = False

        self._resize(self.grid.nPoints)
        self.set_boundary_values()

    def _resize(self, n_points: int):
        """Allocate all per-point arrays and size the operators"""
        n_spec = self.n_spec
        shape = (self.n_vars, n_points)
        for name in ('T', 'U', 'V', 'rV', 'rho', 'Wmx', 'cp', 'lambda_', 'mu', 'qdot'):
            if getattr(self, name, None) is None or len(getattr(self, name)) != n_points:
                setattr(self, name, np.zeros(n_points))
        if getattr(self, 'Y', None) is None or self.Y.shape != (n_spec, n_points):
            self.Y = np.zeros((n_spec, n_points))
        self.rhoD = np.zeros((n_spec, n_points))
        self.Dkt = np.zeros((n_spec, n_points))
        self.cp_spec = np.zeros((n_spec, n_points))

        self.ddt_conv = np.zeros(shape)
        self.ddt_diff = np.zeros(shape)
        self.ddt_prod = np.zeros(shape)
        self.ddt_cross = np.zeros(shape)

        for system in self.diffusion_systems:
            system.resize(n_points)
        self.cross_terms.resize(n_points, n_spec)
        self.split_constants.resize(n_points, n_spec)
        self.convection.resize(n_points, n_points, n_spec)
        self._update_boundary_conditions()

    def set_boundary_values(self) -> float:
        """
        Compute the fuel and oxidizer inlet states and the unburned density.
        """
        c = self.config
        self.gas.set_state_mole(c.fuel, c.T_fuel)
        self.Y_fuel = self.gas.mass_fractions().copy()
        self.gas.set_state_mole(c.oxidizer, c.T_oxidizer)
        self.Y_oxidizer = self.gas.mass_fractions().copy()

        # Oxidizer density is the reference for the diffusion flame
        self.rhou = self.gas.density()

        if c.fuel_left:
            self.T_left, self.Y_left = c.T_fuel, self.Y_fuel
            self.T_right, self.Y_right = c.T_oxidizer, self.Y_oxidizer
        else:
            self.T_left, self.Y_left = c.T_oxidizer, self.Y_oxidizer
            self.T_right, self.Y_right = c.T_fuel, self.Y_fuel
        self.convection.set_rhou(self.rhou)
        return self.rhou

    def _update_boundary_conditions(self):
        """Set boundary conditions for all systems"""
        self.grid.updateBoundaryConditions(self.config.wall_flux)
        for system in self.diffusion_systems:
            system.set_boundary_conditions(self.grid.leftBC, self.grid.rightBC)

        utw = self.convection.utw_system
        j_cont_bc = 0
        if self.continuity_bc == ContinuityBoundaryCondition.Right:
            j_cont_bc = self.grid.jj
        elif self.continuity_bc == ContinuityBoundaryCondition.Zero:
            utw.check_grid(utw.n_points)
            j_cont_bc = utw.nearest_index(self.x_vzero)
        elif self.continuity_bc in (ContinuityBoundaryCondition.Temp,
                                    ContinuityBoundaryCondition.Qdot):
            j_cont_bc = min(utw.j_cont_bc, self.grid.jj)
        self.convection.set_boundary_conditions(
            self.grid.leftBC, self.grid.rightBC, self.continuity_bc, j_cont_bc, self.x_vzero)

    def set_continuity_bc(self, new_bc: ContinuityBoundaryCondition):
        """
        Switch the continuity boundary condition using the current mass flux
        as the estimate of the stagnation point. On failure the previous
        boundary condition stays in effect.
        """
        qdot = self.heat_release_rate() if new_bc == ContinuityBoundaryCondition.Qdot else None
        self.convection.set_state(self.U, self.T, self.Y, self.t)
        self.convection.update_continuity_boundary_condition(self.rV, new_bc, qdot)
        self.continuity_bc = new_bc
        utw = self.convection.utw_system
        if utw.x_vzero is not None:
            self.x_vzero = utw.x_vzero

    def set_initial_state(self, x: np.ndarray, T: np.ndarray, U: np.ndarray,
                          Y: np.ndarray, t: Optional[float] = None):
        """Replace the grid and the solution"""
        x = np.asarray(x, dtype=float)
        Y = np.asarray(Y, dtype=float)
        if len(T) != len(x) or len(U) != len(x) or Y.shape != (self.n_spec, len(x)):
            raise DimensionMismatchError("Initial profiles do not match the grid")
        self.grid.setPoints(x)
        self.T = np.array(T, dtype=float)
        self.U = np.array(U, dtype=float)
        self.Y = Y.copy()
        self._resize(len(x))
        if t is not None:
            self.t = t
            self.t_regrid = t + self.config.regrid_time_interval
        self.update_properties()
        self._initialize_flow()

    def generate_initial_profiles(self):
        """
        Counterflow diffusion flame initial guess: fuel and oxidizer plateaus
        joined by linear ramps to an equilibrium plateau, then smoothed.
        """
        c = self.config
        x = self.grid.x
        n_points = len(x)
        self.set_boundary_values()

        # Scale the profile parameters to fit domain
        scale = 0.8 * (x[-1] - x[0]) / (c.center_width + 2 * c.slope_width)
        width = c.slope_width * min(scale, 1.0)
        center_width = c.center_width * min(scale, 1.0)

        dx = x[1] - x[0]
        center_points = int(0.5 + 0.5 * center_width / dx)
        slope_points = int(0.5 + width / dx)

        j_mid = n_points // 2
        j_left2 = max(j_mid - center_points, 0)
        j_left1 = max(j_left2 - slope_points, 0)
        j_right1 = min(j_mid + center_points, n_points)
        j_right2 = min(j_right1 + slope_points, n_points)

        # Equilibrium mixture at the center
        self.gas.set_equivalence_ratio(1.0, c.fuel, c.oxidizer, 0.5 * (c.T_fuel + c.T_oxidizer))
        self.gas.equilibrate('HP')
        T_center = self.gas.temperature()
        Y_center = self.gas.mass_fractions().copy()

        T = np.zeros(n_points)
        Y = np.zeros((self.n_spec, n_points))
        T_a, Y_a = self.T_left, self.Y_left
        T_b, Y_b = self.T_right, self.Y_right

        T[:j_left1] = T_a
        Y[:, :j_left1] = Y_a[:, np.newaxis]

        ramp = np.linspace(0, 1, j_left2 - j_left1)
        T[j_left1:j_left2] = T_a + (T_center - T_a) * ramp
        Y[:, j_left1:j_left2] = Y_a[:, np.newaxis] + np.outer(Y_center - Y_a, ramp)

        T[j_left2:j_right1] = T_center
        Y[:, j_left2:j_right1] = Y_center[:, np.newaxis]

        ramp = np.linspace(0, 1, j_right2 - j_right1)
        T[j_right1:j_right2] = T_center + (T_b - T_center) * ramp
        Y[:, j_right1:j_right2] = Y_center[:, np.newaxis] + np.outer(Y_b - Y_center, ramp)

        T[j_right2:] = T_b
        Y[:, j_right2:] = Y_b[:, np.newaxis]

        for _ in range(c.smooth_count):
            T = self._smooth_profile(T)
            Y = self._smooth_profile(Y)
        T[0], T[-1] = T_a, T_b
        Y[:, 0], Y[:, -1] = Y_a, Y_b

        # Potential flow velocity profile
        a = self.strain_function.a(self.t)
        rho = np.zeros(n_points)
        for j in range(n_points):
            self.gas.set_state(Y[:, j], T[j])
            rho[j] = self.gas.density()
        U = self._smooth_profile(a / self.grid.beta * np.sqrt(self.rhou / rho))

        self.set_initial_state(x, T, U, Y)
        logger.info("Generated initial profiles on %d points, T_center=%.1f K",
                    n_points, T_center)

    def _smooth_profile(self, y: np.ndarray) -> np.ndarray:
        """Apply smoothing to profile"""
        y_smooth = y.copy()
        y_smooth[..., 1:-1] = 0.25 * y[..., :-2] + 0.5 * y[..., 1:-1] + 0.25 * y[..., 2:]
        return y_smooth

    def _initialize_flow(self):
        """Mass flux consistent with the current state and no density change"""
        self._update_boundary_conditions()
        conv = self.convection
        conv.set_state(self.U, self.T, self.Y, self.t)
        conv.set_rvzero(self.r_vzero)
        conv.set_left_bc(self.T_left, self.Y_left)
        conv.set_density_derivative(np.zeros(self.grid.nPoints))
        conv.reset_split_constants()
        conv.evaluate()
        self.V = conv.V.copy()
        self.rV = conv.rV.copy()

    def update_properties(self):
        """Update transport and thermodynamic properties"""
        for j in range(self.grid.nPoints):
            self.gas.set_state(self.Y[:, j], self.T[j])
            self.rho[j] = self.gas.density()
            self.cp[j] = self.gas.specific_heat_capacity()
            self.lambda_[j] = self.gas.thermal_conductivity()
            self.mu[j] = self.gas.viscosity()
            self.rhoD[:, j] = self.gas.weighted_diffusion_coefficients()
            self.Dkt[:, j] = self.gas.thermal_diffusion_coefficients()
            self.cp_spec[:, j] = self.gas.specific_heat_capacities()
        self.Wmx = 1.0 / np.dot(1.0 / self.W, self.Y)

        self.cross_terms.set_properties(self.rho, self.cp_spec)
        self.cross_terms.calculate_cross_terms(self.T, self.Y, self.rhoD, self.Dkt)

        self.U_system.set_properties(self.mu, self.rho)
        self.T_system.set_properties(self.lambda_, self.rho, self.cp, self.cross_terms.sum_cpj)
        for k, system in enumerate(self.Y_systems):
            system.set_properties(self.rhoD[k], self.rho, self.Dkt[k], self.T)

    def species_domains(self) -> Tuple[List[int], List[int]]:
        """
        Active sub-range of each species: the points where Y exceeds the
        threshold, padded by one point on each side.
        """
        n = self.grid.nPoints
        threshold = self.config.species_threshold
        if threshold <= 0:
            return [0] * self.n_spec, [n - 1] * self.n_spec
        starts, stops = [], []
        for k in range(self.n_spec):
            active = np.nonzero(self.Y[k] > threshold)[0]
            if len(active) == 0:
                starts.append(0)
                stops.append(0)
            else:
                starts.append(max(int(active[0]) - 1, 0))
                stops.append(min(int(active[-1]) + 1, n - 1))
        return starts, stops

    def _stacked_state(self) -> np.ndarray:
        return np.vstack([self.T, self.U, self.Y])

    def _unstack_state(self, state: np.ndarray):
        self.T = state[k_energy].copy()
        self.U = state[k_momentum].copy()
        self.Y = state[k_species:].copy()

    def _density_derivative(self, ddt: np.ndarray) -> np.ndarray:
        """drho/dt from stacked time derivatives of T and Y"""
        dWdt = -self.Wmx**2 * np.dot(1.0 / self.W, ddt[k_species:])
        return self.rho * (dWdt / self.Wmx - ddt[k_energy] / self.T)

    def _cross_derivatives(self) -> np.ndarray:
        ddt_cross = np.zeros((self.n_vars, self.grid.nPoints))
        ddt_cross[k_species:] = self.cross_terms.dYdt_cross
        return ddt_cross

    def _enforce_boundary_values(self):
        if self.grid.leftBC == BoundaryCondition.FixedValue:
            self.T[0] = self.T_left
            self.Y[:, 0] = self.Y_left
        if self.grid.rightBC == BoundaryCondition.FixedValue:
            self.T[-1] = self.T_right
            self.Y[:, -1] = self.Y_right
        self.convection.set_left_bc(self.T_left, self.Y_left)

    def _save_state(self) -> Dict:
        utw = self.convection.utw_system
        return {
            'x': self.grid.x.copy(),
            'dampVal': self.grid.dampVal.copy(),
            'arrays': {name: getattr(self, name).copy()
                       for name in ('T', 'U', 'Y', 'V', 'rV', 'rho', 'Wmx',
                                    'ddt_conv', 'ddt_diff', 'ddt_prod', 'ddt_cross')},
            't': self.t,
            't_regrid': self.t_regrid,
            'n_regrid': self.n_regrid,
            'r_vzero': self.r_vzero,
            'x_vzero': self.x_vzero,
            'continuity': (self.continuity_bc, utw.j_cont_bc, utw.x_vzero),
            'split_constants': copy.deepcopy(self.split_constants),
            'control': copy.deepcopy(self.flame_position_control),
        }

    def _restore_state(self, saved: Dict):
        if not np.array_equal(saved['x'], self.grid.x):
            self.grid.setPoints(saved['x'])
            self.grid.dampVal = saved['dampVal']
            self._resize(len(saved['x']))
        for name, value in saved['arrays'].items():
            setattr(self, name, value)
        self.t = saved['t']
        self.t_regrid = saved['t_regrid']
        self.n_regrid = saved['n_regrid']
        self.r_vzero = saved['r_vzero']
        self.x_vzero = saved['x_vzero']
        self.continuity_bc, j_cont_bc, x_vzero = saved['continuity']
        self.convection.set_boundary_conditions(
            self.grid.leftBC, self.grid.rightBC, self.continuity_bc, j_cont_bc, x_vzero)
        self.split_constants = saved['split_constants']
        self.flame_position_control = saved['control']

    def step(self, dt: Optional[float] = None):
        """
        Advance the solution by one split step. If any operator fails, the
        state from before the step is restored and the error re-raised.
        """
        dt = self.dt if dt is None else dt
        if dt <= 0:
            raise ValueError(f"Timestep must be positive, got {dt}")
        saved = self._save_state()
        try:
            self._step(dt)
        except Exception:
            logger.warning("Step from t=%.6e failed; restoring previous state", saved['t'])
            self._restore_state(saved)
            raise

    def _step(self, dt: float):
        t0 = self.t
        tf = t0 + dt

        # Setup: boundary values, properties and split constants
        self._enforce_boundary_values()
        self.update_properties()
        self._update_boundary_conditions()
        self._update_continuity_anchor()
        self.ddt_cross = self._cross_derivatives()
        self.split_constants.set_cross_derivatives(self.ddt_cross)
        self.split_constants.calculate_split_constants()

        state_0 = self._stacked_state()

        self._apply_production(t0, tf)
        state_1 = self._stacked_state()
        delta_prod = state_1 - state_0

        self._apply_diffusion(t0, tf)
        state_2 = self._stacked_state()
        delta_diff = state_2 - state_1

        drhodt = self._density_derivative((delta_prod + delta_diff) / dt)
        self._apply_convection(t0, tf, drhodt)
        delta_conv = self._stacked_state() - state_2

        self.split_constants.update_derivatives(delta_conv, delta_diff, delta_prod, dt)
        self.ddt_conv = self.split_constants.ddt_conv
        self.ddt_diff = self.split_constants.ddt_diff
        self.ddt_prod = self.split_constants.ddt_prod

        self.t = tf
        self.n_steps += 1
        self.n_regrid += 1
        self.Wmx = 1.0 / np.dot(1.0 / self.W, self.Y)
        self.rho = self.gas.pressure * self.Wmx / (ct.gas_constant * self.T)

        if ((self.config.regrid_step_interval > 0 and
             self.n_regrid >= self.config.regrid_step_interval) or self.t >= self.t_regrid):
            self.regrid()
            self.n_regrid = 0
            self.t_regrid = self.t + self.config.regrid_time_interval

        self._update_flame_position_control(dt)

        logger.debug("Step %d to t=%.6e, convection steps %d", self.n_steps, self.t,
                     self.convection.get_num_steps())

    def _update_continuity_anchor(self):
        """Relocate the Temp and Qdot anchor points for the current profiles"""
        if self.continuity_bc in (ContinuityBoundaryCondition.Temp,
                                  ContinuityBoundaryCondition.Qdot):
            self.convection.set_state(self.U, self.T, self.Y, self.t)
        if self.continuity_bc == ContinuityBoundaryCondition.Temp:
            self.convection.update_continuity_boundary_condition(self.rV, self.continuity_bc)
        elif self.continuity_bc == ContinuityBoundaryCondition.Qdot:
            self.convection.update_continuity_boundary_condition(
                self.rV, self.continuity_bc, self.heat_release_rate())

    def _apply_production(self, t0: float, tf: float):
        """Integrate the source terms at every point"""
        split = self.split_constants.get_split_constants('production')
        x = self.grid.x
        points = [SourcePoint(j, x[j], self.U[j], self.T[j], self.Y[:, j],
                              split.U[j], split.T[j], split.Y[:, j])
                  for j in range(self.grid.nPoints)]
        tol = self.config.tolerances
        results = integrate_source_points(
            points, self.gas, t0, tf, tol.reltol_source, tol.abstol_source,
            self.config.n_threads, self.rate_multiplier, self.heat_loss)

        U = self.U.copy()
        T = self.T.copy()
        Y = self.Y.copy()
        for r in results:
            U[r.j] = r.U
            T[r.j] = r.T
            Y[:, r.j] = r.Y
        self.U, self.T, self.Y = U, T, Y

    def _apply_diffusion(self, t0: float, tf: float):
        """Integrate temperature, momentum and species diffusion"""
        split = self.split_constants.get_split_constants('diffusion')
        state = self._stacked_state()
        split_rows = [split.T, split.U] + list(split.Y)

        new_state = np.empty_like(state)
        for i, (system, integrator) in enumerate(zip(self.diffusion_systems,
                                                     self.diffusion_integrators)):
            system.set_split_constants(split_rows[i])
            integrator.set_state(t0, state[i])
            integrator.integrate_to_time(tf)
            new_state[i] = integrator.get_y()
        self._unstack_state(new_state)

    def _apply_convection(self, t0: float, tf: float, drhodt: np.ndarray):
        """Integrate the convection terms"""
        conv = self.convection
        conv.set_state(self.U, self.T, self.Y, t0)
        conv.set_species_domains(*self.species_domains())
        conv.set_rvzero(self.r_vzero)
        conv.set_left_bc(self.T_left, self.Y_left)
        conv.set_density_derivative(drhodt)
        conv.set_split_constants(self.split_constants.get_split_constants('convection'))
        conv.integrate_to_time(tf)

        self.U = conv.U.copy()
        self.T = conv.T.copy()
        self.Y = conv.Y.copy()
        self.V = conv.V.copy()
        self.rV = conv.rV.copy()

    def _update_flame_position_control(self, dt: float):
        if not self.flame_position_control.enabled:
            return
        signal = self.flame_position_control.update(self.t, dt, self.flame_position())
        if self.continuity_bc == ContinuityBoundaryCondition.Left:
            self.r_vzero = self.rho[0] * signal
        elif self.continuity_bc == ContinuityBoundaryCondition.Zero:
            x = self.grid.x
            self.x_vzero = float(np.clip(self.x_vzero + signal * dt, x[0], x[-1]))
            self._update_boundary_conditions()

    def run(self) -> float:
        """Step until t_end or until request_stop is called"""
        self._stop_requested = False
        t_end = self.config.t_end
        t_eps = 1e-12 * max(1.0, abs(t_end))
        while self.t < t_end - t_eps and not self._stop_requested:
            self.step(min(self.dt, t_end - self.t))
            if self.n_steps % 10 == 0:
                logger.info("t = %.6e s, steps = %d, T_max = %.1f K, points = %d",
                            self.t, self.n_steps, np.max(self.T), self.grid.nPoints)
        return self.t

    def request_stop(self):
        self._stop_requested = True

    def evaluate_derivatives(self) -> Dict[str, np.ndarray]:
        """
        Unsplit time derivatives of each operator at the current state,
        stacked as [T, U, Y_1, ..., Y_K].
        """
        self.update_properties()
        self._update_boundary_conditions()
        n = self.grid.nPoints
        t = self.t

        ddt_diff = np.zeros((self.n_vars, n))
        state = self._stacked_state()
        for i, system in enumerate(self.diffusion_systems):
            system.reset_split_constants()
            ddt_diff[i] = system.f(t, state[i])

        ddt_prod = np.zeros((self.n_vars, n))
        source = SourceSystem(self.gas)
        source.rate_mult = self.rate_multiplier
        source.heat_loss = self.heat_loss
        for j in range(n):
            source.set_position(j, self.grid.x[j])
            ydot = source.f(t, np.concatenate([[self.U[j], self.T[j]], self.Y[:, j]]))
            ddt_prod[k_momentum, j] = ydot[0]
            ddt_prod[k_energy, j] = ydot[1]
            ddt_prod[k_species:, j] = ydot[2:]

        conv = self.convection
        conv.set_state(self.U, self.T, self.Y, t)
        conv.set_species_domains(*self.species_domains())
        conv.set_rvzero(self.r_vzero)
        conv.set_left_bc(self.T_left, self.Y_left)
        conv.set_density_derivative(self._density_derivative(ddt_diff + ddt_prod))
        conv.reset_split_constants()
        conv.evaluate()
        ddt_conv = np.vstack([conv.dTdt, conv.dUdt, conv.dYdt])

        return {'convection': ddt_conv, 'diffusion': ddt_diff,
                'production': ddt_prod, 'cross': self._cross_derivatives()}

    def heat_release_rate(self) -> np.ndarray:
        """Volumetric heat release rate [W/m^3]"""
        for j in range(self.grid.nPoints):
            self.gas.set_state(self.Y[:, j], self.T[j])
            if self.rate_multiplier is not None:
                self.gas.set_multiplier(self.rate_multiplier(self.grid.x[j]))
            self.qdot[j] = -np.dot(self.gas.enthalpies(), self.gas.reaction_rates())
        return self.qdot

    def flame_position(self) -> float:
        """Heat release weighted mean position [m]"""
        qdot = self.heat_release_rate()
        x = self.grid.x
        total = trapezoid(qdot, x)
        if total == 0:
            return 0.5 * (x[0] + x[-1])
        return trapezoid(qdot * x, x) / total

    def consumption_speed(self) -> float:
        """Integrated heat release over rhou * cp * (Tb - Tu) [m/s]"""
        qdot = self.heat_release_rate()
        x = self.grid.x
        dT = self.T[self.grid.jb] - self.T[self.grid.ju]
        if dT == 0:
            return 0.0
        return trapezoid(qdot / self.cp, x) / (self.rhou * dT)

    def _update_grid_damping(self):
        """Update grid damping values"""
        D_min = self.lambda_ / (self.rho * self.cp)
        D = np.where(self.rhoD > 0, self.rhoD / self.rho, np.inf)
        D_min = np.minimum(D_min, D.min(axis=0))
        den = np.maximum(np.abs(self.rho * self.strain_function.a(self.t)), 1e-100)
        self.grid.dampVal = np.sqrt(D_min / den)

    def regrid(self) -> bool:
        """Adapt the grid to the current solution. Returns True if it changed."""
        self.update_properties()
        self._update_grid_damping()

        current = [self.T, self.U] + [self.Y[k] for k in range(self.n_spec)] + [self.V]
        self.grid.nAdapt = len(current) - 1
        if not self.grid.adapt(current):
            return False

        n_points = self.grid.nPoints
        self.T = current[0]
        self.U = current[1]
        self.Y = np.array(current[2:-1])
        V = current[-1]
        self._resize(n_points)
        self.V = V
        self.rV = self.convection.V2rV(V)
        self.update_properties()
        logger.info("Regridded to %d points at t=%.6e", n_points, self.t)
        return True
