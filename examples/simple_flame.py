import logging

import numpy as np
from pysplitflame import FlameConfig, FlameSystem, StrainConfig

logging.basicConfig(level=logging.INFO, format='%(asctime)s %(name)s %(levelname)s: %(message)s')
logger = logging.getLogger('simple_flame')

# Create test configuration
config = FlameConfig(
    mechanism='h2o2.yaml',
    fuel='H2:1.0',
    oxidizer='O2:0.21, N2:0.79',
    pressure=101325.0,  # 1 atm
    T_fuel=300.0,      # K
    T_oxidizer=300.0,  # K
    strain=StrainConfig(initial=100.0, final=100.0),  # 1/s

    # Grid parameters
    grid_points=101,
    x_min=-0.02,  # m
    x_max=0.02,   # m

    # Adaptation parameters
    regrid_time_interval=1e-4,
    regrid_step_interval=10,

    # Initial profile parameters
    center_width=0.001,
    slope_width=0.0005,
    smooth_count=4,

    # Time stepping
    dt=1e-5,
    t_end=0.01,
    continuity_bc='zero',
)

# Initialize solver
flame = FlameSystem(config)
flame.generate_initial_profiles()

# Main time stepping loop
while flame.t < config.t_end:
    flame.step()
    if flame.n_steps % 10 == 0:
        logger.info("t = %.6f, n_points = %d, T_max = %.1f K, x_flame = %.3e m, S_c = %.3f m/s",
                    flame.t, flame.grid.nPoints, np.max(flame.T),
                    flame.flame_position(), flame.consumption_speed())

logger.info("Finished after %d steps, peak temperature %.1f K", flame.n_steps, np.max(flame.T))
