import math

import numpy as np
import pytest

from geotrace.geodesics import (
    HitCode,
    PathRecorder,
    cartesian_from_spherical,
    crosses_equator,
    impact_parameter,
    initial_state,
    local_basis,
    trace_geodesic,
)
from geotrace.metrics import UR, SchwarzschildSystem, critical_impact_parameter, null_energy, photon_sphere_radius
from geotrace.params import RenderParams


def aimed_ray(r_cam, b, M=1.0):
    """Equatorial ray from (r_cam, 0, 0) with impact parameter b."""
    sin_alpha = b * math.sqrt(1.0 - 2.0 * M / r_cam) / r_cam
    alpha = math.asin(sin_alpha)
    direction = np.array([-math.cos(alpha), math.sin(alpha), 0.0])
    return initial_state((r_cam, 0.0, 0.0), direction, M)


@pytest.fixture
def no_disk_params():
    return RenderParams(
        camera_distance=50.0,
        camera_theta=math.pi / 2,
        disk_inner_radius=0.0,
        disk_outer_radius=0.0,
        step_size=0.05,
        max_steps=20000,
    )


def test_equator_crossing_detection():
    thetas = [1.60, 1.57, 1.50]
    assert crosses_equator(thetas[0], thetas[1])
    assert not crosses_equator(thetas[1], thetas[2])
    assert not crosses_equator(1.70, 1.62)
    assert not crosses_equator(1.20, 1.50)
    assert crosses_equator(math.pi / 2, math.pi / 2 + 1e-6)
    assert not crosses_equator(math.pi / 2, math.pi / 2 + 1e-3)


@pytest.mark.parametrize("direction", [(-1, 0, 0), (-1, 0.2, 0.1), (-0.3, -0.5, 0.8), (2, 1, -3)])
def test_initial_state_is_null(direction):
    position = (20.0 * math.sin(1.1), 0.0, 20.0 * math.cos(1.1))
    y = initial_state(position, direction, 1.0)
    assert y[1] == pytest.approx(20.0)
    assert y[2] == pytest.approx(1.1)
    assert abs(null_energy(y, 1.0)) < 1e-8


def test_impact_parameter_from_camera_angle():
    y = aimed_ray(40.0, 7.0)
    assert impact_parameter(y, 1.0) == pytest.approx(7.0, rel=1e-10)
    assert impact_parameter(aimed_ray(40.0, 0.0), 1.0) == pytest.approx(0.0, abs=1e-10)


@pytest.mark.parametrize("b", [0.5, 3.0, 4.5, 4.9])
def test_rays_inside_critical_impact_parameter_are_captured(no_disk_params, b):
    assert b < critical_impact_parameter(1.0)
    result = trace_geodesic(aimed_ray(50.0, b), no_disk_params, record_path=True)
    # the fixed step can break down right above the horizon, but never lets the ray out
    assert result.hit in (HitCode.HORIZON, HitCode.NUMERICAL)
    assert np.linalg.norm(result.path, axis=1).min() < photon_sphere_radius(1.0)
    if result.hit == HitCode.HORIZON:
        assert np.array_equal(result.color, np.zeros(3))


@pytest.mark.parametrize("b", [5.6, 6.5, 9.0])
def test_rays_outside_critical_impact_parameter_escape(no_disk_params, b):
    result = trace_geodesic(aimed_ray(50.0, b), no_disk_params)
    assert result.hit == HitCode.ESCAPE
    assert np.allclose(result.color, no_disk_params.background_color)


def test_ray_aimed_at_the_disk_hits_it():
    params = RenderParams(step_size=0.1)
    cam = np.asarray(params.camera_position)
    target = np.array([15.0, 0.0, 0.0])
    result = trace_geodesic(initial_state(cam, target - cam, 1.0), params)
    assert result.hit == HitCode.DISK
    assert np.all((result.color >= 0.0) & (result.color <= 1.0))
    assert result.steps > 0


def test_trace_is_deterministic():
    params = RenderParams(step_size=0.1)
    cam = np.asarray(params.camera_position)
    y0 = initial_state(cam, np.array([0.0, 9.0, 0.0]) - cam, 1.0)
    a = trace_geodesic(y0, params, record_path=True)
    b = trace_geodesic(y0.copy(), params, record_path=True)
    assert a.hit == b.hit and a.steps == b.steps
    assert np.array_equal(a.color, b.color)
    assert np.array_equal(a.path, b.path)


def test_non_finite_state_is_a_numerical_hit(no_disk_params):
    y0 = aimed_ray(50.0, 3.0)
    y0[UR] = np.nan
    result = trace_geodesic(y0, no_disk_params)
    assert result.hit == HitCode.NUMERICAL
    assert result.steps == 1
    assert np.allclose(result.color, no_disk_params.background_color)


def test_step_budget_exhaustion(no_disk_params):
    params = RenderParams(camera_distance=50.0, max_steps=5, step_size=0.05)
    result = trace_geodesic(aimed_ray(50.0, 8.0), params)
    assert result.hit == HitCode.STEP_BUDGET
    assert result.steps == 5
    assert np.allclose(result.color, params.background_color)


def test_path_is_recorded_sparsely(no_disk_params):
    result = trace_geodesic(aimed_ray(50.0, 3.0), no_disk_params, record_path=True)
    path = result.path
    assert path.ndim == 2 and path.shape[1] == 3
    assert np.allclose(path[0], (50.0, 0.0, 0.0))
    assert 1 < len(path) < result.steps
    radii = np.linalg.norm(path, axis=1)
    assert np.all(np.abs(np.diff(radii)) > 0.05 - 1e-9)


def test_path_recorder_is_bounded_on_a_circular_orbit():
    recorder = PathRecorder(spacing=0.05)
    for phi in np.linspace(0.0, 20.0, 5000):
        recorder.add(np.array([0.0, 3.0, math.pi / 2, phi, 1.0, 0.0, 0.0, 0.2]))
    assert len(recorder.points) == 1


def test_no_path_unless_requested(no_disk_params):
    assert trace_geodesic(aimed_ray(50.0, 3.0), no_disk_params).path is None


def test_disk_inside_the_photon_sphere_is_visible():
    # from 0.35 rad above the plane a b = 1 ray sweeps that angle only at r ~ 2.6 M
    elevation = 0.35
    theta = math.pi / 2 - elevation
    r_cam = 30.0
    alpha = math.asin(1.0 * math.sqrt(1.0 - 2.0 / r_cam) / r_cam)
    basis = local_basis(theta, 0.0)
    direction = -math.cos(alpha) * basis[0] + math.sin(alpha) * basis[1]
    y0 = initial_state(cartesian_from_spherical(r_cam, theta, 0.0), direction, 1.0)
    assert impact_parameter(y0, 1.0) == pytest.approx(1.0)

    params = RenderParams(
        camera_distance=r_cam,
        camera_theta=theta,
        disk_inner_radius=2.1,
        disk_outer_radius=30.0,
        step_size=0.01,
        max_steps=20000,
    )
    result = trace_geodesic(y0, params, record_path=True)
    assert result.hit == HitCode.DISK
    last_radius = np.linalg.norm(result.path[-1])
    assert 2.1 < last_radius < photon_sphere_radius(1.0)


class OutwardKick(SchwarzschildSystem):
    """Adds a spurious outward radial acceleration."""

    def derivative(self, y):
        d = super().derivative(y)
        d[UR] += 100.0
        return d


def test_ingoing_ray_turning_inside_photon_sphere_is_numerical(no_disk_params):
    y0 = initial_state(cartesian_from_spherical(2.8, math.pi / 2, 0.0), (-1.0, 0.1, 0.0), 1.0)
    result = trace_geodesic(y0, no_disk_params, OutwardKick(1.0))
    assert result.hit == HitCode.NUMERICAL
    assert result.steps == 1
    assert np.allclose(result.color, no_disk_params.background_color)
