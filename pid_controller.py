from typing import Sequence

from config import ControllerGains, PhysicalConstants


class PIDController():
    """Proportional-integral-derivative feedback with a clamped integral term.

    The controller keeps its error history between calls, so every control
    loop needs its own instance.
    """
    def __init__(self, integral_limit: float = ControllerGains.integral_limit):
        self.integral_limit = integral_limit
        self.previous_error = 0.0
        self.integral_sum = 0.0

    def output(self, gains: Sequence[float], error: float,
               dt: float = PhysicalConstants.dt) -> float:
        """
        Args:
            gains: (P, I, D)
            error: current error
            dt: fixed timestep of the control loop
        """
        gain_P, gain_I, gain_D = gains

        self.integral_sum = min(max(self.integral_sum + error * dt,
                                    -self.integral_limit), self.integral_limit)

        d_error = (error - self.previous_error) / dt
        self.previous_error = error

        return gain_P * error + gain_I * self.integral_sum + gain_D * d_error
