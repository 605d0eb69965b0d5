"""
Time dependent forcing: the imposed strain rate and the flame position
controller.
"""
import logging

from ..core.config import FlamePositionConfig, StrainConfig

logger = logging.getLogger(__name__)


class StrainFunction:
    """Piecewise linear strain rate ramp a(t)"""
    def __init__(self, config: StrainConfig):
        self.initial = config.initial
        self.final = config.final
        self.t0 = config.t0
        self.dt = config.dt

    def a(self, t: float) -> float:
        if t < self.t0:
            return self.initial
        if t >= self.t0 + self.dt:
            return self.final
        return self.initial + (self.final - self.initial) * (t - self.t0) / self.dt

    def dadt(self, t: float) -> float:
        if self.dt > 0 and self.t0 <= t < self.t0 + self.dt:
            return (self.final - self.initial) / self.dt
        return 0.0

    def __call__(self, t: float) -> float:
        return self.a(t)


class FlamePositionController:
    """
    Proportional-integral controller for the flame position. The output is
    a strain-like signal used to move the stagnation point or to adjust the
    inlet mass flux.
    """
    def __init__(self, config: FlamePositionConfig):
        self.config = config
        self.enabled = config.enabled
        self.kp = config.proportional_gain
        self.ki = config.integral_gain
        self.integral_error = 0.0
        self.x_actual = None

    def target(self, t: float) -> float:
        """Target flame position, ramped from x_initial to x_final"""
        c = self.config
        if t <= c.t0:
            return c.x_initial
        if t >= c.t0 + c.dt:
            return c.x_final
        return c.x_initial + (c.x_final - c.x_initial) * (t - c.t0) / c.dt

    def update(self, t: float, dt: float, x_flame: float) -> float:
        """Accumulate the error over the last step and return the control signal"""
        self.x_actual = x_flame
        error = self.target(t) - x_flame
        self.integral_error += error * dt
        signal = self.kp * (error + self.ki * self.integral_error)
        logger.debug("Flame position %.6e, target %.6e, signal %.4e",
                     x_flame, self.target(t), signal)
        return signal

    def reset(self):
        self.integral_error = 0.0
        self.x_actual = None
