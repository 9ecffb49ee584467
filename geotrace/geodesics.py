"""Per-ray null geodesic tracing.

We integrate the first-order system for null geodesics:
    dx^mu/dlambda = u^mu
    du^mu/dlambda = - Gamma^mu_{alpha beta} u^alpha u^beta

with a fixed-step RK4 and classify how each ray ends: escape to the outer
radius, capture by the horizon, a hit on the equatorial disk, a non-finite
state, or running out of steps.
"""

import math
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional

import numpy as np

from geotrace.emission import shade_disk
from geotrace.integrator import RK4
from geotrace.metrics import (
    PHI,
    R,
    THETA,
    UPHI,
    UR,
    UT,
    UTHETA,
    STATE_DIM,
    SchwarzschildSystem,
    guarded_sin,
    lapse,
    null_energy,
    photon_sphere_radius,
    static_tetrad,
)

HORIZON_MARGIN = 1e-3
NULL_TOLERANCE = 1e-6
PATH_SPACING = 0.05
EQUATOR = math.pi / 2.0


class HitCode(IntEnum):
    ESCAPE = 0
    HORIZON = 1
    DISK = 2
    NUMERICAL = 3
    STEP_BUDGET = 4


@dataclass
class TraceResult:
    color: np.ndarray
    hit: HitCode
    steps: int
    path: Optional[np.ndarray] = None


def spherical_from_cartesian(p) -> tuple:
    x, y, z = (float(c) for c in p)
    r = math.sqrt(x * x + y * y + z * z)
    if r == 0.0:
        return 0.0, EQUATOR, 0.0
    theta = math.acos(min(max(z / r, -1.0), 1.0))
    return r, theta, math.atan2(y, x)


def cartesian_from_spherical(r: float, theta: float, phi: float) -> np.ndarray:
    s = math.sin(theta)
    return np.array([r * s * math.cos(phi), r * s * math.sin(phi), r * math.cos(theta)])


def local_basis(theta: float, phi: float) -> np.ndarray:
    """Rows: Cartesian unit vectors along r, theta and phi at (theta, phi)."""
    st, ct = math.sin(theta), math.cos(theta)
    sp, cp = math.sin(phi), math.cos(phi)
    return np.array(
        [
            [st * cp, st * sp, ct],
            [ct * cp, ct * sp, -st],
            [-sp, cp, 0.0],
        ]
    )


def initial_state(position, direction, M: float = 1.0) -> np.ndarray:
    """Build [t, r, theta, phi, u^t, u^r, u^theta, u^phi] for a ray leaving `position`.

    `direction` is a Cartesian vector; its components along the local
    (radial, polar, azimuthal) axes are lifted to coordinate components with
    the static-observer tetrad, then u^t is solved from the null condition.
    """
    r, theta, phi = spherical_from_cartesian(position)
    d = np.asarray(direction, dtype=float)
    d = d / np.linalg.norm(d)
    n = local_basis(theta, phi) @ d

    e = static_tetrad(r, theta, M)
    u = n[0] * e[1] + n[1] * e[2] + n[2] * e[3]

    f = lapse(r, M)
    sin_th = guarded_sin(theta)
    spatial = u[1] ** 2 / f + (r * u[2]) ** 2 + (r * sin_th * u[3]) ** 2
    u[0] = math.sqrt(spatial / f)

    y = np.array([0.0, r, theta, phi, u[0], u[1], u[2], u[3]])
    if abs(null_energy(y, M)) > NULL_TOLERANCE:
        # renormalise to unit locally measured energy and re-solve u^t
        y[UR:] /= math.sqrt(spatial)
        spatial = y[UR] ** 2 / f + (r * y[UTHETA]) ** 2 + (r * sin_th * y[UPHI]) ** 2
        y[UT] = math.sqrt(spatial / f)
    return y


def impact_parameter(y: np.ndarray, M: float = 1.0) -> Optional[float]:
    """b = L / E for the ray, None when E <= 0."""
    r = y[R]
    E = lapse(r, M) * y[UT]
    if E <= 0.0:
        return None
    s = math.sin(y[THETA])
    L2 = r**4 * (y[UTHETA] ** 2 + s * s * y[UPHI] ** 2)
    return math.sqrt(max(L2, 0.0)) / E


def crosses_equator(prev_theta: float, theta: float) -> bool:
    """True when the polar angle passes through pi/2 between two steps."""
    prev_diff = prev_theta - EQUATOR
    diff = theta - EQUATOR
    if prev_diff == 0.0:
        return abs(diff) < 1e-4
    return prev_diff * diff <= 0.0


class PathRecorder:
    """Keeps a sparse Cartesian polyline of a ray.

    A point is stored whenever the radial distance travelled since the last
    stored point exceeds `spacing`, so orbits hugging the photon sphere do not
    grow the path without bound.
    """

    def __init__(self, spacing: float = PATH_SPACING):
        self.spacing = spacing
        self.points = []
        self._travelled = 0.0
        self._last_r = None

    def add(self, y: np.ndarray) -> None:
        r = float(y[R])
        if self._last_r is not None:
            self._travelled += abs(r - self._last_r)
        self._last_r = r
        if not self.points or self._travelled > self.spacing:
            self.points.append(cartesian_from_spherical(r, y[THETA], y[PHI]))
            self._travelled = 0.0

    def as_array(self) -> np.ndarray:
        if not self.points:
            return np.zeros((0, 3))
        return np.vstack(self.points)


def trace_geodesic(
    y0: np.ndarray,
    params,
    system: Optional[SchwarzschildSystem] = None,
    record_path: bool = False,
) -> TraceResult:
    """Integrate one ray until it terminates.

    `params` supplies step_size, max_steps, the disk and escape radii, the
    background colour and the shading constants (see geotrace.params).
    """
    if system is None:
        system = SchwarzschildSystem(params.mass)
    M = system.M
    stepper = RK4.for_system(system)
    h = params.step_size
    horizon = system.horizon_radius * (1.0 + HORIZON_MARGIN)
    photon_sphere = photon_sphere_radius(M)
    escape = params.resolved_escape_radius
    inner, outer = params.disk_inner_radius, params.disk_outer_radius
    background = np.asarray(params.background_color, dtype=float)

    recorder = PathRecorder() if record_path else None
    current = np.array(y0, dtype=float)
    if current.shape != (STATE_DIM,):
        raise ValueError(f"ray state must have {STATE_DIM} components")

    def finish(color, hit, steps):
        path = recorder.as_array() if recorder is not None else None
        return TraceResult(np.asarray(color, dtype=float), hit, steps, path)

    with np.errstate(all="ignore"):
        for i in range(params.max_steps):
            if recorder is not None:
                recorder.add(current)
            nxt = stepper.step(current, h)
            r = nxt[R]
            theta = nxt[THETA]

            if not (math.isfinite(r) and math.isfinite(theta)):
                return finish(background, HitCode.NUMERICAL, i + 1)
            if r <= horizon:
                return finish((0.0, 0.0, 0.0), HitCode.HORIZON, i + 1)
            # an ingoing null ray inside the photon sphere cannot turn back out
            if current[R] < photon_sphere and current[UR] < 0.0 and r > current[R]:
                return finish(background, HitCode.NUMERICAL, i + 1)
            if r >= escape:
                return finish(background, HitCode.ESCAPE, i + 1)

            if crosses_equator(current[THETA], theta):
                radius = 0.5 * (current[R] + r)
                if inner <= radius <= outer:
                    color = shade_disk(
                        radius,
                        nxt,
                        r_in=inner,
                        r_out=outer,
                        brightness=params.disk_brightness,
                        exposure=params.exposure,
                        M=M,
                    )
                    return finish(color, HitCode.DISK, i + 1)

            current = nxt

    return finish(background, HitCode.STEP_BUDGET, params.max_steps)
