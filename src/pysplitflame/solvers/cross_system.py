import numpy as np

from ..core.errors import DimensionMismatchError
from ..core.grid import GridBased


class CrossTermSystem(GridBased):
    """
    Coupling terms between species diffusion and the other equations: the
    correction flux that keeps the net diffusive mass flux at zero, and the
    enthalpy flux carried by species diffusion.
    """
    def __init__(self, n_points: int = 0, n_spec: int = 0):
        self.rho = None
        self.cp_spec = None
        self.resize(n_points, n_spec)

    def resize(self, n_points: int, n_spec: int):
        """Resize system arrays"""
        self.n_points = n_points
        self.n_spec = n_spec

        self.dYdt_cross = np.zeros((n_spec, n_points))
        self.j_fick = np.zeros((n_spec, max(n_points - 1, 0)))
        self.j_soret = np.zeros((n_spec, max(n_points - 1, 0)))
        self.j_corr = np.zeros(max(n_points - 1, 0))
        self.sum_cpj = np.zeros(n_points)

    def set_properties(self, rho: np.ndarray, cp_spec: np.ndarray):
        """
        Args:
            rho: Density
            cp_spec: Species specific heats [J/kg*K], shape (n_spec, n_points)
        """
        if cp_spec.shape != (self.n_spec, self.n_points) or len(rho) != self.n_points:
            raise DimensionMismatchError("Cross term properties do not match system size")
        self.rho = rho
        self.cp_spec = cp_spec

    def calculate_cross_terms(self, T: np.ndarray, Y: np.ndarray,
                              rhoD: np.ndarray, Dkt: np.ndarray):
        """
        Calculate cross-coupling terms between species and temperature.

        Args:
            T: Temperature profile
            Y: Species mass fractions
            rhoD: Species diffusion coefficients (rho*D)
            Dkt: Thermal diffusion coefficients
        """
        self.check_grid(self.n_points)
        g = np.where(self.r > 0, self.r, 1.0)

        # Diffusive fluxes at cell faces
        self.j_fick = -0.5 * (rhoD[:, :-1] + rhoD[:, 1:]) * np.diff(Y, axis=1) / self.hh
        self.j_soret = (-0.5 * (Dkt[:, :-1] / T[:-1] + Dkt[:, 1:] / T[1:]) *
                        np.diff(T) / self.hh)
        self.j_corr = -np.sum(self.j_fick + self.j_soret, axis=0)

        Y_half = 0.5 * (Y[:, :-1] + Y[:, 1:])
        cp_half = 0.5 * (self.cp_spec[:, :-1] + self.cp_spec[:, 1:])
        self.sum_cpj = np.zeros(self.n_points)
        self.sum_cpj[:-1] = np.sum(
            cp_half * (self.j_fick + self.j_soret + Y_half * self.j_corr), axis=0)

        # Divergence of the correction flux
        flux = self.rphalf * Y_half * self.j_corr
        self.dYdt_cross = np.zeros((self.n_spec, self.n_points))
        self.dYdt_cross[:, 1:-1] = (-(flux[:, 1:] - flux[:, :-1]) /
                                    (g[1:-1] * self.rho[1:-1] * self.dlj[1:-1]))
