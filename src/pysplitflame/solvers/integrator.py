import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple, Union

import numpy as np

from ..core.base import IntegratorComponent
from ..core.errors import IntegrationError

logger = logging.getLogger(__name__)


class ODESystem(ABC):
    """Abstract base class for ODE systems to be integrated"""

    @abstractmethod
    def f(self, t: float, y: np.ndarray) -> np.ndarray:
        """
        Evaluate right-hand side of the ODE system dy/dt = f(t,y)

        Args:
            t: Current time
            y: Current state vector

        Returns:
            np.ndarray: Right-hand side evaluation f(t,y)
        """
        pass

    def side_effects(self) -> Dict[str, np.ndarray]:
        """Auxiliary fields updated by the most recent call to f"""
        return {}

    def derivative(self, t: float, y: np.ndarray) -> Tuple[np.ndarray, Dict[str, np.ndarray]]:
        """Evaluate f and return it together with its side effects"""
        return self.f(t, y), self.side_effects()


class ImplicitSystem(ODESystem):
    """
    System integrated implicitly. The integrator never forms the Newton
    matrix itself; it asks the system to assemble and apply an approximation
    of ``c_j * I - df/dy``.
    """
    half_bandwidth: int = 1

    @abstractmethod
    def preconditioner_setup(self, t: float, y: np.ndarray, ydot: np.ndarray,
                             c_j: float) -> None:
        """Assemble and factorize ``c_j * I - J`` at state ``y``"""
        pass

    @abstractmethod
    def preconditioner_solve(self, t: float, y: np.ndarray, ydot: np.ndarray,
                             rhs: np.ndarray, c_j: float, delta: float) -> np.ndarray:
        """Solve ``(c_j * I - J) x = rhs`` using the current factorization"""
        pass


class BaseIntegrator(IntegratorComponent):
    """Base class for numerical integrators"""

    def __init__(self, system: ODESystem, config: Optional[dict] = None):
        super().__init__(config)
        self.system = system
        self.t: float = 0.0  # Current time
        self.dt: float = 0.0  # Suggested next timestep
        self.y: np.ndarray = None  # Current solution
        self.ydot: np.ndarray = None  # Current time derivative

    def initialize(self, t0: float = 0.0, dt: float = 0.0) -> None:
        """
        Initialize the integrator

        Args:
            t0: Initial time
            dt: Initial timestep (0 selects one automatically)
        """
        self.t = t0
        self.dt = dt
        self._initialized = True

    def set_y0(self, y0: np.ndarray) -> None:
        """Set initial condition"""
        self.y = np.array(y0, dtype=float)

    def get_y(self) -> np.ndarray:
        """Get current solution"""
        return self.y

    def get_ydot(self) -> np.ndarray:
        """Get time derivative at the current solution"""
        if self.y is None:
            return None
        return self.system.f(self.t, self.y)


class BDFIntegrator(BaseIntegrator):
    """
    Variable step BDF integrator (order 1 start, order 2 afterwards).

    Each step solves the implicit BDF equation with a Newton iteration whose
    linear systems are handed to the system's preconditioner callbacks.
    Local error is estimated from the difference between the corrected and
    predicted solutions.
    """
    def __init__(self, system: ImplicitSystem, config: Optional[dict] = None):
        super().__init__(system, config)
        cfg = self._config
        self.reltol = cfg.get('reltol', 1e-6)
        self.abstol = cfg.get('abstol', 1e-10)
        self.max_steps = cfg.get('max_steps', 20000)
        self.max_newton_iters = cfg.get('max_newton_iters', 4)
        self.newton_tol = cfg.get('newton_tol', 0.1)
        self.h_min = cfg.get('h_min', 1e-15)
        self.max_growth = cfg.get('max_growth', 2.0)

        self.n_steps = 0
        self.n_rejected = 0
        self._history = []  # (t, y) of the last accepted points

    def set_tolerances(self, reltol: float, abstol: Union[float, np.ndarray]):
        self.reltol = reltol
        self.abstol = abstol

    def initialize(self, t0: float = 0.0, dt: float = 0.0) -> None:
        super().initialize(t0, dt)
        self.n_steps = 0
        self.n_rejected = 0
        if self.y is not None:
            self._history = [(self.t, self.y.copy())]

    def set_state(self, t: float, y: np.ndarray, dt: float = 0.0):
        """Restart the integration from (t, y)"""
        self.set_y0(y)
        self.initialize(t, dt)

    def number_of_steps_taken(self) -> int:
        return self.n_steps

    def _weights(self, y: np.ndarray) -> np.ndarray:
        return 1.0 / (self.reltol * np.abs(y) + self.abstol)

    def _wrms(self, v: np.ndarray, w: np.ndarray) -> float:
        return float(np.sqrt(np.mean((v * w)**2)))

    def _initial_step(self, tf: float) -> float:
        span = tf - self.t
        if self.dt > 0:
            return min(self.dt, span)
        ydot = self.system.f(self.t, self.y)
        w = self._weights(self.y)
        d0 = self._wrms(self.y, w)
        d1 = self._wrms(ydot, w)
        if d0 < 1e-5 or d1 < 1e-5:
            h = 1e-3 * span
        else:
            h = 0.01 * d0 / d1
        return min(h, span)

    def _predict(self, t_new: float) -> np.ndarray:
        """Polynomial extrapolation through the stored history"""
        ts = [p[0] for p in self._history]
        ys = [p[1] for p in self._history]
        y_pred = np.zeros_like(self.y)
        for i, (ti, yi) in enumerate(zip(ts, ys)):
            L = 1.0
            for m, tm in enumerate(ts):
                if m != i:
                    L *= (t_new - tm) / (ti - tm)
            y_pred += L * yi
        return y_pred

    def _attempt(self, h: float):
        """Try one step of size h. Returns (accepted, step size factor)."""
        t_n, y_n = self._history[-1]
        t_new = t_n + h
        order = 1 if len(self._history) < 2 else 2

        if order == 1:
            base = y_n
            gamma = h
            ydot_n = self.system.f(t_n, y_n)
            y_pred = y_n + h * ydot_n
            err_coeff = 0.5
        else:
            t_nm1, y_nm1 = self._history[-2]
            w = h / (t_n - t_nm1)
            a1 = (1 + w)**2 / (1 + 2*w)
            a2 = w**2 / (1 + 2*w)
            base = a1 * y_n - a2 * y_nm1
            gamma = h * (1 + w) / (1 + 2*w)
            y_pred = self._predict(t_new)
            err_coeff = 2.0 / 11.0

        c_j = 1.0 / gamma
        y = y_pred.copy()
        ydot = (y - base) * c_j
        wts = self._weights(y_n)

        self.system.preconditioner_setup(t_new, y, ydot, c_j)

        converged = False
        dn_prev = None
        for _ in range(self.max_newton_iters):
            fy = self.system.f(t_new, y)
            ydot = (y - base) * c_j
            residual = ydot - fy
            delta = self.system.preconditioner_solve(
                t_new, y, ydot, -residual, c_j, self.newton_tol)
            y = y + delta
            if not np.all(np.isfinite(y)):
                break
            dn = self._wrms(delta, wts)
            if dn <= self.newton_tol:
                converged = True
                break
            if dn_prev is not None and dn > 0.9 * dn_prev:
                break
            dn_prev = dn

        if not converged:
            logger.debug("Newton iteration failed at t=%.6e, h=%.3e", t_new, h)
            return False, 0.25

        err = err_coeff * self._wrms(y - y_pred, wts)
        if err > 1.0:
            return False, max(0.2, 0.9 * err**(-1.0 / (order + 1)))

        self._history.append((t_new, y))
        if len(self._history) > 3:
            self._history.pop(0)
        self.t = t_new
        self.y = y
        self.ydot = (y - base) * c_j
        self.n_steps += 1

        if err == 0.0:
            return True, self.max_growth
        return True, min(self.max_growth, 0.9 * err**(-1.0 / (order + 1)))

    def step(self, tf: Optional[float] = None) -> None:
        """Take one accepted step, never passing tf"""
        if not self.is_initialized() or self.y is None:
            raise RuntimeError("Integrator must be initialized before stepping")
        if tf is None:
            tf = self.t + (self.dt if self.dt > 0 else 1.0)
        h = self._initial_step(tf) if self.dt <= 0 else min(self.dt, tf - self.t)
        while True:
            accepted, factor = self._attempt(h)
            if accepted:
                self.dt = h * factor
                return
            self.n_rejected += 1
            h *= factor
            if h < self.h_min * max(1.0, abs(self.t)):
                raise IntegrationError(
                    f"Step size {h:.3e} below minimum at t={self.t:.6e}")

    def integrate_to_time(self, tf: float) -> None:
        """Advance the solution to time tf"""
        if not self.is_initialized() or self.y is None:
            raise RuntimeError("Integrator must be initialized before stepping")
        if tf < self.t:
            raise ValueError(f"Target time {tf} precedes current time {self.t}")
        if len(self._history) == 0 or self._history[-1][0] != self.t:
            self._history = [(self.t, self.y.copy())]

        t_eps = 1e-14 * max(1.0, abs(tf))
        steps_start = self.n_steps
        while tf - self.t > t_eps:
            remaining = tf - self.t
            if self.dt <= 0:
                self.dt = self._initial_step(tf)
            if self.dt >= remaining or self.dt > 0.9 * remaining:
                self.dt = remaining
            self.step(tf)
            if self.n_steps - steps_start > self.max_steps:
                raise IntegrationError(
                    f"Exceeded {self.max_steps} steps before reaching t={tf}")
        self.t = tf
