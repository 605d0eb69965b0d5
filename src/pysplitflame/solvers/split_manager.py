from dataclasses import dataclass
from typing import Optional

import numpy as np


def _frozen(a) -> np.ndarray:
    a = np.array(a, dtype=float)
    a.flags.writeable = False
    return a


@dataclass(frozen=True)
class SplitConstants:
    """
    Split correction terms handed to one operator for one outer step.

    Arrays are copied on construction and marked read-only, so a
    sub-integrator can never change the constants it was given.
    """
    U: np.ndarray
    T: np.ndarray
    Y: np.ndarray

    def __post_init__(self):
        object.__setattr__(self, 'U', _frozen(self.U))
        object.__setattr__(self, 'T', _frozen(self.T))
        object.__setattr__(self, 'Y', _frozen(np.atleast_2d(self.Y)))
        n = len(self.U)
        if len(self.T) != n or self.Y.shape[1] != n:
            raise ValueError("Split constant arrays must share the point count")

    @classmethod
    def zeros(cls, n_spec: int, n_points: int) -> 'SplitConstants':
        return cls(np.zeros(n_points), np.zeros(n_points), np.zeros((n_spec, n_points)))

    @classmethod
    def from_stacked(cls, values: np.ndarray) -> 'SplitConstants':
        """Build from an array stacked as [T, U, Y_1, ..., Y_K]"""
        return cls(values[SplitConstantsManager.k_momentum],
                   values[SplitConstantsManager.k_energy],
                   values[SplitConstantsManager.k_species:])

    @property
    def n_points(self) -> int:
        return len(self.U)

    @property
    def n_spec(self) -> int:
        return self.Y.shape[0]

    def W(self, molecular_weights: np.ndarray) -> np.ndarray:
        """Mixture molecular weight constant: sum_k Y_k / W_k"""
        return np.dot(1.0 / np.asarray(molecular_weights), self.Y)


class SplitConstantsManager:
    """
    Keeps the per-operator time derivatives of the last step and turns them
    into split constants for the next one.

    All arrays are stacked as (n_spec + 2, n_points) with rows
    [T, U, Y_1, ..., Y_K].
    """
    k_energy = 0
    k_momentum = 1
    k_species = 2

    processes = ('convection', 'diffusion', 'production')

    def __init__(self, n_points: int, n_spec: int, method: str = 'balanced'):
        if method not in ('balanced', 'simple'):
            raise ValueError(f"Unknown splitting method: {method}")
        self.method = method
        self.n_points = n_points
        self.n_spec = n_spec
        self.n_vars = n_spec + 2
        self._allocate()

    def _allocate(self):
        shape = (self.n_vars, self.n_points)

        # Split constants for each process
        self.split_conv = np.zeros(shape)
        self.split_diff = np.zeros(shape)
        self.split_prod = np.zeros(shape)

        # Time derivatives
        self.ddt_conv = np.zeros(shape)
        self.ddt_diff = np.zeros(shape)
        self.ddt_prod = np.zeros(shape)
        self.ddt_cross = np.zeros(shape)

    def calculate_split_constants(self):
        """
        Balanced splitting gives every operator the same share of the total
        derivative: split_i = (1/3) sum(ddt) - ddt_i. Simple splitting only
        carries the cross terms, through diffusion.
        """
        if self.method == 'balanced':
            share = (self.ddt_conv + self.ddt_diff + self.ddt_prod + self.ddt_cross) / 3.0
            self.split_conv = share - self.ddt_conv
            self.split_diff = share - self.ddt_diff
            self.split_prod = share - self.ddt_prod
        else:
            self.split_diff = self.ddt_cross.copy()
            self.split_conv = np.zeros_like(self.ddt_conv)
            self.split_prod = np.zeros_like(self.ddt_prod)

    def update_derivatives(self, delta_conv: np.ndarray, delta_diff: np.ndarray,
                           delta_prod: np.ndarray, dt: float):
        """Update time derivatives from changes over timestep"""
        self.ddt_conv = delta_conv / dt - self.split_conv
        self.ddt_diff = delta_diff / dt - self.split_diff
        self.ddt_prod = delta_prod / dt - self.split_prod

    def set_cross_derivatives(self, ddt_cross: np.ndarray):
        if ddt_cross.shape != (self.n_vars, self.n_points):
            raise ValueError(f"Expected shape {(self.n_vars, self.n_points)}, "
                             f"got {ddt_cross.shape}")
        self.ddt_cross = np.array(ddt_cross, dtype=float)

    def get_split_constants(self, process: str) -> SplitConstants:
        """Get split constants for specific process"""
        if process == 'convection':
            return SplitConstants.from_stacked(self.split_conv)
        elif process == 'diffusion':
            return SplitConstants.from_stacked(self.split_diff)
        elif process == 'production':
            return SplitConstants.from_stacked(self.split_prod)
        else:
            raise ValueError(f"Unknown process: {process}")

    def reset(self):
        """Reset all split constants and stored derivatives"""
        self._allocate()

    def resize(self, n_points: int, n_spec: Optional[int] = None):
        """Resize arrays for new grid"""
        if n_spec is not None:
            self.n_spec = n_spec
            self.n_vars = n_spec + 2
        self.n_points = n_points
        self._allocate()
