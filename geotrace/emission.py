"""Thin-disk emission and redshift for a Keplerian disk.

Temperature follows a r^{-3/4} flux profile converted with Stefan-Boltzmann,
colour comes from a smooth black-body-like curve, and the observed intensity
is boosted or dimmed by g^4 before exposure tone mapping.
"""

import math

import numpy as np
from scipy.constants import Stefan_Boltzmann

from geotrace.metrics import R, THETA, UPHI, UT, lapse

SOLAR_TEMPERATURE = 5778.0
FLUX_EXPONENT = -0.75


def disk_temperature(
    r: float, r_in: float = 6.0, r_out: float = 30.0, brightness: float = 1.0, M: float = 1.0
) -> float:
    """Effective temperature of the disk at radius r (clamped into the disk)."""
    inner = max(r_in, 2.01 * M)
    outer = max(r_out, inner + 1.0)
    clamped = min(max(r, inner), outer)
    flux = brightness * (clamped / inner) ** FLUX_EXPONENT
    return (flux / Stefan_Boltzmann) ** 0.25


def temperature_to_rgb(temp: float, intensity: float = 1.0) -> np.ndarray:
    """Continuous power-law channel response, normalised at the solar temperature."""
    t = max(temp, 0.0) / SOLAR_TEMPERATURE
    rgb = np.array([1.5 * t**0.6, 1.2 * t**0.5, 2.0 * t**0.4])
    return np.clip(rgb, 0.0, 1.0) * intensity


def _linear_to_srgb(x: np.ndarray) -> np.ndarray:
    return np.where(x <= 0.0031308, 12.92 * x, 1.055 * np.power(np.maximum(x, 0.0), 1.0 / 2.4) - 0.055)


def tone_map(rgb, exposure: float = 1.0) -> np.ndarray:
    """1 - exp(-exposure * c), gamma-encoded and clamped to [0, 1]."""
    v = 1.0 - np.exp(-np.asarray(rgb, dtype=float) * exposure)
    return np.clip(_linear_to_srgb(v), 0.0, 1.0)


def disk_angular_velocity(r: float, M: float = 1.0) -> float:
    """Keplerian omega = sqrt(M / r^3)."""
    return math.sqrt(M / (r**3))


def emitter_four_velocity(r: float, M: float = 1.0) -> np.ndarray:
    """Return u^mu for a circular, equatorial, timelike orbit (Keplerian).

    For Schwarzschild, the standard relations give:
      u^t = 1 / sqrt(1 - 3M/r)
      u^phi = sqrt(M / r^3) / sqrt(1 - 3M/r)
    (u^r = u^theta = 0)
    These are only valid for r > 3M (photon orbit at 3M, ISCO at 6M for timelike).
    """
    if r <= 3.0 * M:
        return np.array([np.nan, 0.0, 0.0, np.nan])
    denom = math.sqrt(1.0 - 3.0 * M / r)
    ut = 1.0 / denom
    uphi = disk_angular_velocity(r, M) * ut
    return np.array([ut, 0.0, 0.0, uphi])


def energy_at_infinity(y: np.ndarray, M: float = 1.0) -> float:
    """Conserved E = -k_t = f(r) u^t of the traced ray."""
    return lapse(y[R], M) * y[UT]


def redshift_factor(y: np.ndarray, M: float = 1.0) -> float:
    """Compute g = nu_obs / nu_emit for disk material at the ray position.

    The photon actually seen by the camera runs opposite to the traced ray, so
    its covariant momentum is k_t = -E, k_phi = -L with E, L taken from the
    traced state. A distant observer measures E; the emitter measures
    -k_mu u^mu = E u^t + L u^phi. Degenerate geometry (r <= 3M, non-finite
    or non-positive frequency) gives 0.
    """
    r = y[R]
    u_emit = emitter_four_velocity(r, M)
    if not np.isfinite(u_emit[0]):
        return 0.0

    E = energy_at_infinity(y, M)
    L = r * r * math.sin(y[THETA]) ** 2 * y[UPHI]
    omega_emit = E * u_emit[0] + L * u_emit[3]
    if not math.isfinite(omega_emit) or omega_emit <= 0.0:
        return 0.0
    g = E / omega_emit
    return g if g > 0.0 else 0.0


def apply_relativistic_transfer(rgb, g: float, exposure: float = 1.0) -> np.ndarray:
    """toneMap(rgb * g^4); g <= 0 contributes nothing."""
    if not g > 0.0:
        return np.zeros(3)
    return tone_map(np.asarray(rgb, dtype=float) * g**4, exposure)


def shade_disk(
    r: float,
    y: np.ndarray,
    *,
    r_in: float = 6.0,
    r_out: float = 30.0,
    brightness: float = 1.0,
    exposure: float = 1.0,
    M: float = 1.0,
) -> np.ndarray:
    """Final colour for a ray crossing the disk at radius r with state y."""
    temp = disk_temperature(r, r_in, r_out, brightness, M)
    base = temperature_to_rgb(temp)
    g = redshift_factor(y, M)
    return apply_relativistic_transfer(base, g, exposure)
