"""
Interpolated velocity fields for the quasi-2D convection mode.
"""
import numpy as np
from scipy.interpolate import RegularGridInterpolator


class BilinearInterpolator:
    """Bilinear interpolation of a field tabulated on an (x, t) mesh"""
    def __init__(self, x: np.ndarray, t: np.ndarray, values: np.ndarray):
        x = np.asarray(x, dtype=float)
        t = np.asarray(t, dtype=float)
        values = np.asarray(values, dtype=float)
        if values.shape != (len(x), len(t)):
            raise ValueError(
                f"Expected values with shape {(len(x), len(t))}, got {values.shape}")
        self._interp = RegularGridInterpolator(
            (x, t), values, method='linear', bounds_error=False, fill_value=None)

    def get(self, x, t: float) -> np.ndarray:
        """Evaluate at position(s) ``x`` and time ``t``"""
        x = np.atleast_1d(np.asarray(x, dtype=float))
        pts = np.column_stack([x, np.full(len(x), t)])
        return self._interp(pts)

    def __call__(self, x, t: float) -> np.ndarray:
        return self.get(x, t)
