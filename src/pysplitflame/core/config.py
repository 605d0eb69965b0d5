"""
Configuration dataclasses for the split flame solver.
"""
from dataclasses import dataclass, field
from typing import Optional

from .grid import GridConfig


@dataclass
class ToleranceConfig:
    """Integrator tolerances for each split operator"""
    # Convection
    reltol_convection: float = 1e-6
    abstol_U: float = 1e-8
    abstol_T: float = 1e-8
    abstol_W: float = 1e-7
    abstol_Y: float = 1e-8
    convection_method_utw: str = 'BDF'
    convection_method_species: str = 'LSODA'

    # Diffusion
    reltol_diffusion: float = 1e-6
    abstol_diffusion: float = 1e-10

    # Source terms
    reltol_source: float = 1e-6
    abstol_source: float = 1e-10


@dataclass
class StrainConfig:
    """
    Strain rate is ``initial`` until ``t0``, ramps linearly to ``final``
    over ``dt`` and stays constant afterwards.
    """
    initial: float = 100.0  # [1/s]
    final: float = 100.0  # [1/s]
    t0: float = 0.0  # [s]
    dt: float = 0.0  # [s]


@dataclass
class FlamePositionConfig:
    """Proportional-integral control of the flame position"""
    enabled: bool = False
    x_initial: float = 0.0  # [m]
    x_final: float = 0.0  # [m]
    t0: float = 0.0  # [s]
    dt: float = 0.0  # [s]
    proportional_gain: float = 10.0  # [1/s]
    integral_gain: float = 800.0  # [1/s]


@dataclass
class FlameConfig:
    """Configuration for the flame solver"""
    mechanism: str = 'h2o2.yaml'
    fuel: str = 'H2:1.0'
    oxidizer: str = 'O2:0.21, N2:0.79'
    pressure: float = 101325.0  # [Pa]
    T_fuel: float = 300.0  # [K]
    T_oxidizer: float = 300.0  # [K]
    fuel_left: bool = True

    # Grid
    grid_points: int = 101
    x_min: float = -0.02  # [m]
    x_max: float = 0.02  # [m]
    grid: GridConfig = field(default_factory=GridConfig)
    regrid_time_interval: float = 1e-4  # [s]
    regrid_step_interval: int = 10

    # Centerline wall for twin and cylindrical flames
    wall_flux: bool = False
    T_wall: float = 300.0  # [K]
    wall_conductance: float = 0.0  # [W/m^2*K]

    # Initial profiles
    center_width: float = 0.001  # [m]
    slope_width: float = 0.0005  # [m]
    smooth_count: int = 4

    # Time integration
    t_start: float = 0.0  # [s]
    t_end: float = 0.01  # [s]
    dt: float = 1e-5  # [s]
    tolerances: ToleranceConfig = field(default_factory=ToleranceConfig)

    # Splitting
    split_method: str = 'balanced'  # 'balanced' or 'simple'
    continuity_bc: str = 'zero'  # 'left', 'right', 'zero', 'temp', 'qdot'
    x_stagnation: Optional[float] = None  # [m], defaults to domain center
    r_vzero: float = 0.0  # [kg/m^2*s], mass flux for 'left'/'right' continuity
    species_threshold: float = 0.0  # Inactive species trimming, 0 disables

    # Forcing and control
    strain: StrainConfig = field(default_factory=StrainConfig)
    flame_position: FlamePositionConfig = field(default_factory=FlamePositionConfig)

    # Parallelism
    n_threads: int = 1
