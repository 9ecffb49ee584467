"""Classic fixed-step fourth order Runge-Kutta.

Nothing here knows about physics: a system is anything with a fixed state
dimension and a derivative callable y -> dy/dlambda.
"""

from typing import Callable

import numpy as np
from scipy.integrate import solve_ivp

Derivative = Callable[[np.ndarray], np.ndarray]


def rk4_step(y: np.ndarray, h: float, derivative: Derivative) -> np.ndarray:
    """Advance y by one step h and return the new state.

    The input array is never written to.
    """
    k1 = derivative(y)
    k2 = derivative(y + 0.5 * h * k1)
    k3 = derivative(y + 0.5 * h * k2)
    k4 = derivative(y + h * k3)
    return y + (h / 6.0) * (k1 + 2.0 * k2 + 2.0 * k3 + k4)


class RK4:
    """RK4 stepper bound to a state dimension and a derivative function."""

    def __init__(self, dim: int, derivative: Derivative):
        if dim <= 0:
            raise ValueError("state dimension must be positive")
        self.dim = int(dim)
        self.derivative = derivative

    @classmethod
    def for_system(cls, system) -> "RK4":
        """Build a stepper for an object exposing `dim` and `derivative`."""
        return cls(system.dim, system.derivative)

    def step(self, y: np.ndarray, h: float) -> np.ndarray:
        y = np.asarray(y, dtype=float)
        if y.shape != (self.dim,):
            raise ValueError(f"expected state of shape ({self.dim},), got {y.shape}")
        return rk4_step(y, h, self.derivative)


def integrate_adaptive(
    y0: np.ndarray, length: float, derivative: Derivative, rtol: float = 1e-10, atol: float = 1e-12
) -> np.ndarray:
    """High-accuracy adaptive solution at affine parameter `length`.

    Used as a reference to check the fixed-step integrator against.
    """
    sol = solve_ivp(
        lambda lam, y: derivative(y),
        (0.0, length),
        np.asarray(y0, dtype=float),
        method="DOP853",
        rtol=rtol,
        atol=atol,
    )
    if not sol.success:
        raise RuntimeError(f"reference integration failed: {sol.message}")
    return sol.y[:, -1]
