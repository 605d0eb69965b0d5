"""
Diffusion systems for the split flame solver.

Each system describes one transported quantity on the whole grid as
``dy/dt = B/(r dlj) [rphalf D dy/dx]_{j-1/2}^{j+1/2} + k`` and assembles it
as a tridiagonal matrix plus a constant term.
"""
import logging
from typing import Optional, Tuple

import numpy as np
from scipy.sparse import diags, identity
from scipy.sparse.linalg import splu

from ..core.base import OperatorKind, TransportComponent
from ..core.errors import DimensionMismatchError
from ..core.grid import BoundaryCondition, GridBased
from ..solvers.integrator import ImplicitSystem

logger = logging.getLogger(__name__)


class DiffusionSystem(GridBased, TransportComponent, ImplicitSystem):
    """
    Generic diffusion operator with the boundary treatments used by the
    flame: fixed value, zero gradient, control volume and wall flux.
    """
    half_bandwidth = 1

    def __init__(self, config: Optional[dict] = None):
        super().__init__(config)
        self.n_points = 0

        # Set boundary conditions
        self.leftBC = BoundaryCondition.FixedValue
        self.rightBC = BoundaryCondition.FixedValue

        # Wall flux boundary condition parameters
        self.yInf = 0.0  # Value at infinity
        self.wallConst = 0.0  # Wall conductance

        self._lu = None
        self.initialize()

    def initialize(self) -> None:
        """Initialize system arrays"""
        n = self.n_points
        self.B = np.ones(n)  # Prefactor
        self.D = np.ones(n)  # Diffusion coefficient
        self.split_const = np.zeros(n)
        self.k_extra = np.zeros(n)  # Constant terms supplied by subclasses
        self.c1 = np.zeros(n)
        self.c2 = np.zeros(n)
        self._lu = None
        self._initialized = True

    def resize(self, n_points: int):
        self.n_points = n_points
        self.initialize()

    def set_boundary_conditions(self, leftBC: BoundaryCondition,
                                rightBC: BoundaryCondition):
        """Set boundary conditions for both ends"""
        if rightBC not in (BoundaryCondition.FixedValue, BoundaryCondition.ZeroGradient):
            raise ValueError(f"Unsupported right boundary condition: {rightBC}")
        self.leftBC = leftBC
        self.rightBC = rightBC

    def set_wall_flux(self, yInf: float, wallConst: float):
        """Set wall flux boundary condition parameters"""
        self.yInf = yInf
        self.wallConst = wallConst

    def _check_size(self, name: str, values: np.ndarray):
        if len(values) != self.n_points:
            raise DimensionMismatchError(
                f"{name} has {len(values)} values, system has {self.n_points} points")

    def set_properties(self, D: np.ndarray, B: np.ndarray):
        """
        Set the diffusion coefficient and prefactor at each grid point.
        """
        self._check_size('D', D)
        self._check_size('B', B)
        self.D = np.asarray(D, dtype=float)
        self.B = np.asarray(B, dtype=float)

    def set_split_constants(self, split_const: np.ndarray):
        self._check_size('split_const', split_const)
        self.split_const = np.array(split_const, dtype=float)

    def reset_split_constants(self):
        """Reset operator splitting terms"""
        self.split_const = np.zeros(self.n_points)

    def get_coefficients(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Lower, main and upper diagonals of the diffusion operator. Rows of
        fixed-value boundary points are identically zero.
        """
        self.check_grid(self.n_points)
        N = self.n_points
        a = np.zeros(N)
        b = np.zeros(N)
        c = np.zeros(N)

        g = np.where(self.r > 0, self.r, 1.0)
        self.c1 = np.zeros(N)
        self.c1[1:-1] = 0.5 * self.B[1:-1] / (self.dlj[1:-1] * g[1:-1])
        self.c2 = np.zeros(N)
        self.c2[:-1] = self.rphalf * (self.D[:-1] + self.D[1:]) / self.hh
        c1 = self.c1
        c2 = self.c2

        # Left boundary
        if self.leftBC == BoundaryCondition.FixedValue:
            jStart = 1
        elif self.leftBC == BoundaryCondition.ControlVolume:
            jStart = 1
            c0 = self.B[0] * (self.alpha + 1) * (self.D[0] + self.D[1]) / (2 * self.hh[0]**2)
            b[0] = -c0
            c[0] = c0
        elif self.leftBC == BoundaryCondition.WallFlux:
            jStart = 1
            c0 = self.B[0] * (self.alpha + 1) / self.hh[0]
            d = 0.5 * (self.D[0] + self.D[1])
            b[0] = -c0 * (d / self.hh[0] + self.wallConst)
            c[0] = d * c0 / self.hh[0]
        elif self.leftBC == BoundaryCondition.ZeroGradient:
            jStart = 2
            b[1] = -c1[1] * c2[1]
            c[1] = c1[1] * c2[1]
        else:
            raise ValueError(f"Unsupported left boundary condition: {self.leftBC}")

        # Right boundary
        if self.rightBC == BoundaryCondition.FixedValue:
            jStop = N - 1
        else:
            jStop = N - 2
            a[N-2] = c1[N-2] * c2[N-3]
            b[N-2] = -c1[N-2] * c2[N-3]

        # Interior points
        j = np.arange(jStart, jStop)
        a[j] = c1[j] * c2[j-1]
        b[j] = -c1[j] * (c2[j-1] + c2[j])
        c[j] = c1[j] * c2[j]

        self._add_coefficient_terms(a, b, c)
        return a, b, c

    def _add_coefficient_terms(self, a: np.ndarray, b: np.ndarray, c: np.ndarray):
        """Hook for linear terms beyond pure diffusion"""
        pass

    def get_rhs(self) -> np.ndarray:
        """Constant part of the right-hand side"""
        k = self.split_const + self.k_extra

        if self.leftBC == BoundaryCondition.WallFlux:
            k = k.copy()
            k[0] += (self.B[0] * (self.alpha + 1) / self.hh[0] *
                     self.wallConst * self.yInf)
        return k

    def f(self, t: float, y: np.ndarray) -> np.ndarray:
        if len(y) != self.n_points:
            raise DimensionMismatchError(
                f"State has {len(y)} values, system has {self.n_points} points")
        a, b, c = self.get_coefficients()
        ydot = b * y + self.get_rhs()
        ydot[1:] += a[1:] * y[:-1]
        ydot[:-1] += c[:-1] * y[1:]
        return ydot

    def jacobian(self):
        """Sparse tridiagonal Jacobian of f"""
        a, b, c = self.get_coefficients()
        return diags([a[1:], b, c[:-1]], [-1, 0, 1], format='csc')

    def preconditioner_setup(self, t: float, y: np.ndarray, ydot: np.ndarray,
                             c_j: float) -> None:
        P = c_j * identity(self.n_points, format='csc') - self.jacobian()
        self._lu = splu(P.tocsc())

    def preconditioner_solve(self, t: float, y: np.ndarray, ydot: np.ndarray,
                             rhs: np.ndarray, c_j: float, delta: float) -> np.ndarray:
        if self._lu is None:
            raise RuntimeError("preconditioner_setup must be called before solving")
        return self._lu.solve(np.asarray(rhs, dtype=float))


class SpeciesDiffusionSystem(DiffusionSystem):
    """Fickian diffusion of one species with its Soret flux as a constant term"""
    kind = OperatorKind.DiffusionSpecies

    def set_properties(self, rhoD: np.ndarray, rho: np.ndarray,
                       Dkt: Optional[np.ndarray] = None,
                       T: Optional[np.ndarray] = None):
        self._check_size('rho', rho)
        super().set_properties(rhoD, 1.0 / np.asarray(rho))
        self.k_extra = np.zeros(self.n_points)
        if Dkt is not None and T is not None:
            self.k_extra = self.soret_term(Dkt, T)

    def soret_term(self, Dkt: np.ndarray, T: np.ndarray) -> np.ndarray:
        """Divergence of the thermal diffusion flux, times B"""
        self.check_grid(self.n_points)
        Dkt = np.asarray(Dkt)
        T = np.asarray(T)
        j_soret = -0.5 * (Dkt[:-1] / T[:-1] + Dkt[1:] / T[1:]) * np.diff(T) / self.hh
        flux = self.rphalf * j_soret
        g = np.where(self.r > 0, self.r, 1.0)
        k = np.zeros(self.n_points)
        k[1:-1] = -self.B[1:-1] / (g[1:-1] * self.dlj[1:-1]) * (flux[1:] - flux[:-1])
        return k


class TemperatureDiffusionSystem(DiffusionSystem):
    """
    Heat conduction plus the enthalpy flux carried by species diffusion,
    ``-0.5 (sumcpj_{j-1} + sumcpj_j) dT/dx / (rho cp)``.
    """
    kind = OperatorKind.DiffusionTemperature

    def initialize(self) -> None:
        super().initialize()
        self.sumcpj = np.zeros(self.n_points)

    def set_properties(self, lambda_: np.ndarray, rho: np.ndarray, cp: np.ndarray,
                       sumcpj: Optional[np.ndarray] = None):
        self._check_size('rho', rho)
        self._check_size('cp', cp)
        super().set_properties(lambda_, 1.0 / (np.asarray(rho) * np.asarray(cp)))
        if sumcpj is None:
            self.sumcpj = np.zeros(self.n_points)
        else:
            self._check_size('sumcpj', sumcpj)
            self.sumcpj = np.asarray(sumcpj, dtype=float)

    def _add_coefficient_terms(self, a, b, c):
        s = self.sumcpj
        e = -0.5 * (s[:-2] + s[1:-1]) * self.B[1:-1]
        a[1:-1] += e * self.cfm[1:-1]
        b[1:-1] += e * self.cf[1:-1]
        c[1:-1] += e * self.cfp[1:-1]


class MomentumDiffusionSystem(DiffusionSystem):
    """Viscous transport of the tangential velocity U"""
    kind = OperatorKind.DiffusionMomentum

    def set_properties(self, mu: np.ndarray, rho: np.ndarray):
        self._check_size('rho', rho)
        super().set_properties(mu, 1.0 / np.asarray(rho))
