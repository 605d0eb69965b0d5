"""
Chemical source terms, integrated independently at each grid point.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, List, Optional

import numpy as np
from scipy.linalg import lu_factor, lu_solve

from ..core.base import ChemistryComponent
from ..core.gas import CanteraGas
from ..solvers.integrator import BDFIntegrator, ImplicitSystem

logger = logging.getLogger(__name__)


@dataclass
class SourcePoint:
    """Everything needed to integrate the source terms at one grid point"""
    j: int
    x: float
    U: float
    T: float
    Y: np.ndarray
    split_U: float = 0.0
    split_T: float = 0.0
    split_Y: Optional[np.ndarray] = None


@dataclass
class SourceResult:
    j: int
    U: float
    T: float
    Y: np.ndarray
    n_steps: int


class SourceSystem(ChemistryComponent, ImplicitSystem):
    """
    Reaction and heat release at a single point. The state vector is
    [U, T, Y_1, ..., Y_K].
    """
    def __init__(self, gas: CanteraGas, config: Optional[dict] = None):
        super().__init__(config)
        self.gas = gas
        self.n_spec = gas.n_spec
        self.W = gas.molecular_weights
        self.P = gas.pressure

        # Solution state
        self.T: float = None
        self.U: float = None
        self.Y: np.ndarray = None
        self.wdot = np.zeros(self.n_spec)

        # Parameters
        self.x_pos: float = 0.0
        self.j: int = 0
        self.rate_mult: Optional[Callable[[float], float]] = None
        self.heat_loss: Optional[Callable] = None

        # Split terms
        self.split_const_T = 0.0
        self.split_const_U = 0.0
        self.split_const_Y = np.zeros(self.n_spec)

        self._lu = None
        self.integrator = BDFIntegrator(self, {
            'reltol': self._config.get('reltol', 1e-6),
            'abstol': self._config.get('abstol', 1e-10),
        })

    def initialize(self, T: float, U: float, Y: np.ndarray, t0: float = 0.0):
        """Set initial state for integration"""
        if len(Y) != self.n_spec:
            raise ValueError(f"Expected {self.n_spec} mass fractions, got {len(Y)}")
        self.T = T
        self.U = U
        self.Y = np.array(Y, dtype=float)
        self.integrator.set_state(t0, self.roll_y())
        self._initialized = True

    def set_position(self, j: int, x: float):
        """Set grid position"""
        self.j = j
        self.x_pos = x

    def set_tolerances(self, reltol: float, abstol: float):
        self.integrator.set_tolerances(reltol, abstol)

    def set_split_constants(self, split_U: float, split_T: float,
                            split_Y: Optional[np.ndarray] = None):
        self.split_const_U = split_U
        self.split_const_T = split_T
        if split_Y is None:
            self.split_const_Y = np.zeros(self.n_spec)
        else:
            self.split_const_Y = np.asarray(split_Y, dtype=float)

    def reset_split_constants(self):
        self.set_split_constants(0.0, 0.0)

    def roll_y(self) -> np.ndarray:
        return np.concatenate([[self.U, self.T], self.Y])

    def unroll_y(self, y: np.ndarray):
        self.U = y[0]
        self.T = y[1]
        self.Y = y[2:].copy()

    def compute_rates(self, T: float, Y: np.ndarray) -> np.ndarray:
        """Net molar production rates at (T, Y), with the rate multiplier applied"""
        self.gas.set_state(Y, T)
        if self.rate_mult is not None:
            self.gas.set_multiplier(self.rate_mult(self.x_pos))
        self.wdot = self.gas.reaction_rates()
        return self.wdot

    def f(self, t: float, y: np.ndarray) -> np.ndarray:
        U, T = y[0], y[1]
        Y = y[2:]

        wdot = self.compute_rates(T, Y)
        rho = self.gas.density()
        cp = self.gas.specific_heat_capacity()
        h = self.gas.enthalpies()

        dYdt = wdot * self.W / rho + self.split_const_Y

        q_dot = -np.dot(h, wdot)
        dTdt = q_dot / (rho * cp)
        if self.heat_loss is not None:
            q_loss = self.heat_loss(self.x_pos, t, U, T, Y)
            dTdt -= q_loss / (rho * cp)
        dTdt += self.split_const_T

        dUdt = self.split_const_U
        return np.concatenate([[dUdt, dTdt], dYdt])

    def jacobian(self, t: float, y: np.ndarray) -> np.ndarray:
        """Dense finite difference Jacobian of f"""
        n = len(y)
        f0 = self.f(t, y)
        J = np.zeros((n, n))
        for i in range(n):
            dy = 1e-7 * max(abs(y[i]), 1e-5)
            yp = y.copy()
            yp[i] += dy
            J[:, i] = (self.f(t, yp) - f0) / dy
        return J

    def preconditioner_setup(self, t: float, y: np.ndarray, ydot: np.ndarray,
                             c_j: float) -> None:
        P = c_j * np.eye(len(y)) - self.jacobian(t, y)
        self._lu = lu_factor(P)

    def preconditioner_solve(self, t: float, y: np.ndarray, ydot: np.ndarray,
                             rhs: np.ndarray, c_j: float, delta: float) -> np.ndarray:
        if self._lu is None:
            raise RuntimeError("preconditioner_setup must be called before solving")
        return lu_solve(self._lu, rhs)

    def integrate_to_time(self, tf: float):
        """Advance the point state to time tf"""
        self.integrator.integrate_to_time(tf)
        self.unroll_y(self.integrator.get_y())

    def number_of_steps_taken(self) -> int:
        return self.integrator.number_of_steps_taken()


def integrate_source_points(points: List[SourcePoint], gas: CanteraGas,
                            t0: float, tf: float,
                            reltol: float = 1e-6, abstol: float = 1e-10,
                            n_threads: int = 1,
                            rate_mult: Optional[Callable[[float], float]] = None,
                            heat_loss: Optional[Callable] = None) -> List[SourceResult]:
    """
    Integrate every point from t0 to tf. With ``n_threads > 1`` the points
    are spread over a thread pool and each worker thread gets its own clone
    of ``gas``. Results come back in the order of ``points``; if any point
    fails the exception propagates and no results are returned.
    """
    local = threading.local()

    def solve(point: SourcePoint) -> SourceResult:
        system = getattr(local, 'system', None)
        if system is None:
            worker_gas = gas if n_threads <= 1 else gas.clone()
            system = SourceSystem(worker_gas, {'reltol': reltol, 'abstol': abstol})
            system.rate_mult = rate_mult
            system.heat_loss = heat_loss
            local.system = system

        system.set_position(point.j, point.x)
        system.set_split_constants(point.split_U, point.split_T, point.split_Y)
        system.initialize(point.T, point.U, point.Y, t0)
        system.integrate_to_time(tf)
        return SourceResult(point.j, system.U, system.T, system.Y,
                            system.number_of_steps_taken())

    if n_threads > 1:
        with ThreadPoolExecutor(max_workers=n_threads) as executor:
            results = list(executor.map(solve, points))
    else:
        results = [solve(p) for p in points]

    logger.debug("Integrated source terms at %d points, %d steps",
                 len(results), sum(r.n_steps for r in results))
    return results
