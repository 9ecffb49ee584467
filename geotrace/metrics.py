"""Schwarzschild metric, Christoffel symbols and the geodesic derivative.

Coordinates: (t, r, theta, phi)
Units: geometric (G = c = 1), mass M is input (default M = 1).

Ray state layout: y = [t, r, theta, phi, u^t, u^r, u^theta, u^phi]

This file provides g_{mu nu}, an explicit implementation of the non-zero
Christoffel symbols, the null-energy invariant, the static-observer tetrad
and the derivative function handed to the integrator.
"""

import math

import numpy as np

T, R, THETA, PHI, UT, UR, UTHETA, UPHI = range(8)
STATE_DIM = 8

# Single floor applied wherever sin(theta) ends up in a denominator.
POLAR_EPSILON = 1e-6


def guarded_sin(theta: float) -> float:
    """sin(theta) pushed away from zero, keeping its sign."""
    s = np.sin(theta)
    if abs(s) < POLAR_EPSILON:
        return POLAR_EPSILON if s >= 0.0 else -POLAR_EPSILON
    return s


def lapse(r: float, M: float = 1.0) -> float:
    """f(r) = 1 - 2M/r."""
    assert r > 0.0, "radius must be positive"
    return 1.0 - 2.0 * M / r


def horizon_radius(M: float = 1.0) -> float:
    return 2.0 * M


def photon_sphere_radius(M: float = 1.0) -> float:
    return 3.0 * M


def critical_impact_parameter(M: float = 1.0) -> float:
    """b_c = 3 sqrt(3) M, also the shadow radius seen from infinity."""
    return 3.0 * math.sqrt(3.0) * M


def schwarzschild_metric(r: float, theta: float, M: float = 1.0) -> np.ndarray:
    """Return the covariant metric g_{mu nu} in Schwarzschild coordinates.

    Order: t=0, r=1, theta=2, phi=3
    """
    A = lapse(r, M)
    g = np.zeros((4, 4), dtype=float)
    g[0, 0] = -A
    g[1, 1] = 1.0 / A
    g[2, 2] = r * r
    g[3, 3] = r * r * (np.sin(theta) ** 2)
    return g


def christoffel_symbols(coords: tuple, M: float = 1.0) -> np.ndarray:
    """Return Christoffel symbols Gamma^mu_{alpha beta} as a (4,4,4) array.

    Uses closed-form non-zero components for Schwarzschild in standard coords.
    sin(theta) is not clamped here; cot(theta) diverges on the axis.
    """
    t, r, theta, phi = coords
    A = lapse(r, M)
    s = np.sin(theta)
    c = np.cos(theta)

    Gamma = np.zeros((4, 4, 4), dtype=float)

    # Gamma^t_{tr} = Gamma^t_{rt} = M / (r^2 f)
    Gamma[0, 1, 0] = Gamma[0, 0, 1] = M / (r * r * A)

    # Gamma^r_{tt} = f M / r^2
    Gamma[1, 0, 0] = A * M / (r * r)

    # Gamma^r_{rr} = -M / (r^2 f)
    Gamma[1, 1, 1] = -M / (r * r * A)

    # Gamma^r_{theta theta} = -r f
    Gamma[1, 2, 2] = -r * A

    # Gamma^r_{phi phi} = -r f sin^2(theta)
    Gamma[1, 3, 3] = -r * A * s * s

    # Gamma^theta_{r theta} = Gamma^theta_{theta r} = 1/r
    Gamma[2, 1, 2] = Gamma[2, 2, 1] = 1.0 / r

    # Gamma^theta_{phi phi} = -sin(theta) cos(theta)
    Gamma[2, 3, 3] = -s * c

    # Gamma^phi_{r phi} = Gamma^phi_{phi r} = 1/r
    Gamma[3, 1, 3] = Gamma[3, 3, 1] = 1.0 / r

    # Gamma^phi_{theta phi} = Gamma^phi_{phi theta} = cot(theta)
    Gamma[3, 2, 3] = Gamma[3, 3, 2] = c / s

    return Gamma


def geodesic_acceleration(y: np.ndarray, M: float = 1.0) -> np.ndarray:
    """du^mu/dlambda = -Gamma^mu_{alpha beta} u^alpha u^beta, from the full tensor.

    Slow reference path; SchwarzschildSystem.derivative is the one integrated.
    """
    Gamma = christoffel_symbols((y[T], y[R], y[THETA], y[PHI]), M)
    u = np.asarray(y[4:], dtype=float)
    return -np.einsum("mab,a,b->m", Gamma, u, u)


def null_energy(y: np.ndarray, M: float = 1.0) -> float:
    """g_tt u^t^2 + g_rr u^r^2 + g_thth u^th^2 + g_phph u^ph^2 (zero for light)."""
    r = y[R]
    f = lapse(r, M)
    s = np.sin(y[THETA])
    r2 = r * r
    return (
        -f * y[UT] * y[UT]
        + y[UR] * y[UR] / f
        + r2 * y[UTHETA] * y[UTHETA]
        + r2 * s * s * y[UPHI] * y[UPHI]
    )


def static_tetrad(r: float, theta: float, M: float = 1.0) -> np.ndarray:
    """Return orthonormal tetrad vectors e_a^mu (a=0..3, mu=0..3).

    e_0 = static observer 4-velocity (normalised)
    e_1 = radial unit vector (points outward)
    e_2 = polar (theta) unit vector
    e_3 = azimuthal (phi) unit vector
    """
    A = lapse(r, M)
    if A <= 0.0:
        raise ValueError("static observers exist only outside the horizon (r > 2M)")

    e0 = np.array([1.0 / math.sqrt(A), 0.0, 0.0, 0.0])
    e1 = np.array([0.0, math.sqrt(A), 0.0, 0.0])
    e2 = np.array([0.0, 0.0, 1.0 / r, 0.0])
    e3 = np.array([0.0, 0.0, 0.0, 1.0 / (r * guarded_sin(theta))])

    # Return as array shape (4,4): e[a, mu]
    return np.vstack([e0, e1, e2, e3])


class SchwarzschildSystem:
    """Derivative provider for the geodesic equation around a mass M.

    Holds no per-ray state, so one instance can be shared by any number of
    concurrent traces.
    """

    dim = STATE_DIM

    def __init__(self, M: float = 1.0):
        self.M = float(M)

    @property
    def horizon_radius(self) -> float:
        return horizon_radius(self.M)

    def derivative(self, y: np.ndarray) -> np.ndarray:
        """Right-hand side of the first-order geodesic system."""
        m = self.M
        r = y[R]
        theta = y[THETA]
        ut, ur, uth, uph = y[UT], y[UR], y[UTHETA], y[UPHI]

        f = 1.0 - 2.0 * m / r
        s = guarded_sin(theta)
        c = np.cos(theta)
        r2 = r * r

        g_t_tr = m / (r2 * f)
        g_r_tt = f * m / r2
        g_r_rr = -m / (r2 * f)
        g_r_thth = -r * f
        g_r_phph = g_r_thth * s * s
        g_th_phph = -s * c
        cot = c / s

        return np.array(
            [
                ut,
                ur,
                uth,
                uph,
                -2.0 * g_t_tr * ut * ur,
                -g_r_tt * ut * ut - g_r_rr * ur * ur - g_r_thth * uth * uth - g_r_phph * uph * uph,
                -2.0 * uth * ur / r - g_th_phph * uph * uph,
                -2.0 * uph * ur / r - 2.0 * cot * uth * uph,
            ],
            dtype=float,
        )

    def null_energy(self, y: np.ndarray) -> float:
        return null_energy(y, self.M)
