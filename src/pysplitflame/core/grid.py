import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

import numpy as np
from scipy.interpolate import CubicSpline

from .errors import DimensionMismatchError

logger = logging.getLogger(__name__)


class BoundaryCondition(Enum):
    """Boundary conditions for the transported variables"""
    FixedValue = "fixed_value"
    ZeroGradient = "zero_gradient"
    WallFlux = "wall_flux"
    ControlVolume = "control_volume"


@dataclass
class GridConfig:
    """Configuration for grid adaptation"""
    # Grid control
    vtol: float = 0.12  # Value tolerance (gradient)
    dvtol: float = 0.2  # Derivative tolerance (curvature)
    rmTol: float = 0.6  # Point removal tolerance
    absvtol: float = 1e-8  # Absolute value tolerance

    # Grid bounds
    gridMin: float = 5e-7  # Minimum spacing
    gridMax: float = 2e-4  # Maximum spacing
    dampConst: float = 7.0  # Damping constant
    uniformityTol: float = 2.5  # Grid uniformity tolerance
    centerGridMin: float = 1e-4  # Minimum center spacing

    # Geometry
    fixedBurnedVal: bool = True  # Fix burned boundary values
    unburnedLeft: bool = True  # Unburned mixture on left
    twinFlame: bool = False  # Twin flame configuration
    cylindricalFlame: bool = False  # Cylindrical coordinates
    discFlame: bool = False  # Disc flame configuration


class OneDimGrid:
    """
    Non-uniform one-dimensional grid and the metrics derived from it.

    All derived arrays are rebuilt together by ``updateValues``, which also
    bumps ``generation`` so that operators holding cached views can tell the
    grid has changed.
    """
    def __init__(self, config: Optional[GridConfig] = None):
        self.updated = True
        self.generation = 0
        self.leftBC = BoundaryCondition.FixedValue
        self.rightBC = BoundaryCondition.FixedValue

        # Grid points
        self.x = None
        self.nPoints = 0
        self.jj = 0  # nPoints - 1

        # Grid metrics
        self.hh = None  # Grid spacing
        self.cfm = None  # Left coefficients
        self.cf = None  # Center coefficients
        self.cfp = None  # Right coefficients
        self.dlj = None  # Control volume half width
        self.rphalf = None  # r^alpha at half points
        self.r = None  # r^alpha at grid points
        self.dampVal = None  # Damping values

        self.nAdapt = 0

        # Physical indices
        self.ju = 0  # Unburned point index
        self.jb = 0  # Burned point index

        self.alpha = 0  # Coordinate system (0=planar, 1=cylindrical)
        self.beta = 1.0  # Strain metric (1=planar/cylindrical, 2=disc)

        self.setOptions(config or GridConfig())

    def setOptions(self, options: GridConfig):
        """Set grid options from configuration"""
        self.vtol = options.vtol
        self.dvtol = options.dvtol
        self.absvtol = options.absvtol
        self.rmTol = options.rmTol
        self.uniformityTol = options.uniformityTol
        self.gridMin = options.gridMin
        self.gridMax = options.gridMax
        self.dampConst = options.dampConst
        self.centerGridMin = options.centerGridMin

        self.fixedBurnedVal = options.fixedBurnedVal
        self.unburnedLeft = options.unburnedLeft
        self.twinFlame = options.twinFlame
        self.cylindricalFlame = options.cylindricalFlame
        self.discFlame = options.discFlame

        self.alpha = 1 if options.cylindricalFlame else 0
        self.beta = 2.0 if options.discFlame else 1.0

    def setSize(self, new_nPoints: int):
        """Set grid size"""
        self.nPoints = new_nPoints
        self.jj = new_nPoints - 1

    def setPoints(self, x: np.ndarray):
        """Replace the node positions and rebuild all metrics"""
        self.x = np.array(x, dtype=float)
        self.setSize(len(self.x))
        if self.dampVal is None or len(self.dampVal) != self.nPoints:
            self.dampVal = np.full(self.nPoints, np.inf)
        self.updateValues()
        self.updateBoundaryIndices()

    def updateValues(self):
        """Update grid metrics"""
        x = np.asarray(self.x, dtype=float)
        if x.ndim != 1 or len(x) < 3:
            raise ValueError("Grid needs at least three points")
        if np.any(np.diff(x) <= 0):
            raise ValueError("Grid points must be strictly increasing")

        self.x = x
        self.setSize(len(x))
        n = self.nPoints

        self.hh = np.diff(x)
        self.rphalf = np.power(0.5 * (x[:-1] + x[1:]), self.alpha)
        self.r = np.power(x, self.alpha)

        hm = self.hh[:-1]
        hp = self.hh[1:]
        self.cfm = np.zeros(n)
        self.cf = np.zeros(n)
        self.cfp = np.zeros(n)
        self.dlj = np.zeros(n)
        self.cfp[1:-1] = hm / (hp * (hp + hm))
        self.cf[1:-1] = (hp - hm) / (hp * hm)
        self.cfm[1:-1] = -hp / (hm * (hp + hm))
        self.dlj[1:-1] = 0.5 * (x[2:] - x[:-2])

        self.generation += 1

    @property
    def geometric_factor(self) -> np.ndarray:
        """Factor relating V and rV; unity at the centerline where r == 0"""
        return np.where(self.r > 0, self.r, 1.0)

    def derivative(self, v: np.ndarray) -> np.ndarray:
        """Centered three-point first derivative on the current points"""
        x = self.x
        hh = np.diff(x)
        dv = np.zeros(len(x))
        hm = hh[:-1]
        hp = hh[1:]
        dv[1:-1] = (hm / (hp * (hp + hm)) * v[2:]
                    + (hp - hm) / (hp * hm) * v[1:-1]
                    - hp / (hm * (hp + hm)) * v[:-2])
        return dv

    def adapt(self, y: List[np.ndarray]) -> bool:
        """
        Insert and remove interior points so the first ``nAdapt`` profiles
        in ``y`` are resolved. ``y`` is modified in place.
        """
        nVars = len(y)
        nAdapt = min(self.nAdapt or nVars, nVars)
        if self.dampVal is None or len(self.dampVal) != self.nPoints:
            self.dampVal = np.full(self.nPoints, np.inf)
        assert np.all(self.dampVal >= 0), "Damping values must be positive"

        self.updated = False
        inserted = []
        removed = []

        # Point insertion
        j = 0
        while j < self.jj:
            hh = np.diff(self.x)
            insert = False

            for k in range(nAdapt):
                v = y[k]
                v_range = np.ptp(v)
                if v_range < self.absvtol:
                    continue
                dv = self.derivative(v)
                dv_range = np.ptp(dv[1:-1])

                if abs(v[j+1] - v[j]) > self.vtol * v_range:
                    logger.debug("Adapt: v resolution wants a point at j=%d, k=%d", j, k)
                    insert = True

                if (0 < j < self.jj - 1 and
                        abs(dv[j+1] - dv[j]) > self.dvtol * dv_range):
                    logger.debug("Adapt: dv resolution wants a point at j=%d, k=%d", j, k)
                    insert = True

            if hh[j] > self.dampConst * self.dampVal[j]:
                logger.debug("Adapt: damping wants a point at j=%d", j)
                insert = True

            if hh[j] > self.gridMax:
                logger.debug("Adapt: maximum spacing wants a point at j=%d", j)
                insert = True

            if j != 0 and hh[j] / hh[j-1] > self.uniformityTol:
                insert = True

            if j != self.jj - 1 and hh[j] / hh[j+1] > self.uniformityTol:
                insert = True

            if (j == 0 and self.leftBC in (BoundaryCondition.ControlVolume,
                                           BoundaryCondition.WallFlux)):
                x_left_min = min(self.centerGridMin, 0.02 * self.x[self.jj])
                if hh[j] < 2 * x_left_min:
                    insert = False

            if insert and hh[j] < 2 * self.gridMin:
                logger.debug("Adapt: insertion at j=%d canceled by minimum spacing", j)
                insert = False

            if insert:
                inserted.append(j)
                self.addPoint(j, y)
                self.setSize(self.nPoints + 1)
                self.updated = True
                j += 2
            else:
                j += 1

        # Point removal
        j = 1
        while j < self.jj:
            hh = np.diff(self.x)
            remove = self.jj >= 3

            for k in range(nAdapt):
                v = y[k]
                v_range = np.ptp(v)
                if v_range < self.absvtol:
                    continue
                dv = self.derivative(v)
                dv_range = np.ptp(dv[1:-1])

                if abs(v[j+1] - v[j-1]) > self.rmTol * self.vtol * v_range:
                    remove = False

                if (1 < j < self.jj - 1 and
                        abs(dv[j+1] - dv[j-1]) > self.rmTol * self.dvtol * dv_range):
                    remove = False

            span = hh[j] + hh[j-1]
            if span >= self.rmTol * self.dampConst * self.dampVal[j]:
                remove = False
            if span > self.gridMax:
                remove = False
            if j >= 2 and span > self.uniformityTol * hh[j-2]:
                remove = False
            if j <= self.jj - 2 and span > self.uniformityTol * hh[j+1]:
                remove = False
            if (j == 1 and self.leftBC in (BoundaryCondition.ControlVolume,
                                           BoundaryCondition.WallFlux)):
                remove = False

            if remove:
                removed.append(j)
                self.removePoint(j, y)
                self.setSize(self.nPoints - 1)
                self.updated = True
            else:
                j += 1

        if self.updated:
            self.updateValues()
            self.updateBoundaryIndices()
            logger.debug("Adapt: inserted after %s, removed %s", inserted, removed)

        return self.updated

    def addPoint(self, j_insert: int, y: List[np.ndarray]):
        """Add a grid point halfway between j_insert and j_insert + 1"""
        x_insert = 0.5 * (self.x[j_insert+1] + self.x[j_insert])

        val = self._spline_interpolate(self.x, self.dampVal, x_insert)
        self.dampVal = np.insert(self.dampVal, j_insert + 1, val)

        for i in range(len(y)):
            y_new = self._spline_interpolate(self.x, y[i], x_insert)
            y[i] = np.insert(y[i], j_insert + 1, y_new)

        self.x = np.insert(self.x, j_insert + 1, x_insert)

    def removePoint(self, j_remove: int, y: List[np.ndarray]):
        """Remove a grid point"""
        self.x = np.delete(self.x, j_remove)
        self.dampVal = np.delete(self.dampVal, j_remove)

        for k in range(len(y)):
            y[k] = np.delete(y[k], j_remove)

    def updateBoundaryIndices(self):
        """Update indices for burned/unburned regions"""
        if self.unburnedLeft:
            self.ju = 0
            self.jb = self.jj
        else:
            self.jb = 0
            self.ju = self.jj

    def updateBoundaryConditions(self, wallFlux: bool = False):
        """
        Boundary treatment implied by the flame geometry. Twin and
        cylindrical flames whose domain starts on the centerline use a
        control volume (or a wall flux) at the left end; the right end is
        zero-gradient unless the burned values are fixed.
        """
        centered = (self.twinFlame or self.cylindricalFlame) and self.x[0] >= 0
        if centered and wallFlux:
            self.leftBC = BoundaryCondition.WallFlux
        elif centered:
            self.leftBC = BoundaryCondition.ControlVolume
        else:
            self.leftBC = BoundaryCondition.FixedValue

        if self.fixedBurnedVal:
            self.rightBC = BoundaryCondition.FixedValue
        else:
            self.rightBC = BoundaryCondition.ZeroGradient

    def _spline_interpolate(self, x: np.ndarray, y: np.ndarray, x_new: float) -> float:
        """Helper for cubic spline interpolation"""
        if not np.all(np.isfinite(y)):
            return float(np.interp(x_new, x, y))
        cs = CubicSpline(x, y)
        return float(cs(x_new))


class GridBased:
    """
    Mixin for operators that read the shared grid.

    Stencil views are cached from the grid and refreshed whenever the grid's
    ``generation`` changes.
    """
    grid: Optional[OneDimGrid] = None
    _grid_generation = -1

    def set_grid(self, grid: OneDimGrid):
        """Attach the shared grid and cache its metrics"""
        self.grid = grid
        self._sync_grid()

    def _sync_grid(self):
        g = self.grid
        self.x = g.x
        self.r = g.r
        self.rphalf = g.rphalf
        self.hh = g.hh
        self.dlj = g.dlj
        self.cfm = g.cfm
        self.cf = g.cf
        self.cfp = g.cfp
        self.alpha = g.alpha
        self.beta = g.beta
        self._grid_generation = g.generation

    def check_grid(self, n_points: int):
        """Refresh cached metrics if needed and verify the grid size"""
        if self.grid is None:
            raise DimensionMismatchError("No grid has been set")
        if self.grid.generation != self._grid_generation:
            self._sync_grid()
        if self.grid.nPoints != n_points:
            raise DimensionMismatchError(
                f"Grid has {self.grid.nPoints} points but system was sized "
                f"for {n_points}; call resize() after changing the grid")
