import numpy as np
import pytest

from geotrace.frame import (
    OVERLAY_ALPHA,
    FrameBuffer,
    ShadowEstimate,
    StepStatistics,
    hit_histogram,
    overlay_rgba,
    project_debug_path,
)
from geotrace.geodesics import HitCode
from geotrace.renderer import Tile, TileResult


def make_result(tile, stride, value, hit=HitCode.DISK, steps=7):
    pixels = np.full((tile.height, tile.width, 4), value, dtype=np.uint8)
    return TileResult(
        tile=tile,
        pass_index=0,
        stride=stride,
        pixels=pixels,
        hit_map=np.full((tile.height, tile.width), int(hit), dtype=np.uint8),
        step_map=np.full((tile.height, tile.width), steps, dtype=np.uint32),
    )


def test_merge_copies_tile_region():
    frame = FrameBuffer(8, 8, classification=True, heatmap=True)
    assert frame.merge(make_result(Tile(4, 0, 4, 4), 1, 200))
    assert np.all(frame.pixels[0:4, 4:8] == 200)
    assert np.all(frame.pixels[4:, :] == 0)
    assert np.all(frame.hit_map[0:4, 4:8] == HitCode.DISK)
    assert np.all(frame.step_map[0:4, 4:8] == 7)
    assert frame.rgb().shape == (8, 8, 3)


def test_merge_is_idempotent_and_order_independent():
    tiles = [Tile(0, 0, 4, 4), Tile(4, 0, 4, 4), Tile(0, 4, 4, 4), Tile(4, 4, 4, 4)]
    results = [make_result(t, 1, 40 * (i + 1)) for i, t in enumerate(tiles)]

    forward = FrameBuffer(8, 8)
    for r in results:
        forward.merge(r)
    backward = FrameBuffer(8, 8)
    for r in reversed(results):
        backward.merge(r)
        backward.merge(r)
    assert np.array_equal(forward.pixels, backward.pixels)


def test_coarse_result_never_overwrites_finer():
    tile = Tile(0, 0, 4, 4)
    frame = FrameBuffer(4, 4)
    assert frame.merge(make_result(tile, 4, 10))
    assert frame.merge(make_result(tile, 1, 250))
    assert not frame.merge(make_result(tile, 2, 99))
    assert np.all(frame.pixels == 250)


def test_frame_without_overlays():
    frame = FrameBuffer(4, 4)
    frame.merge(make_result(Tile(0, 0, 4, 4), 1, 1))
    assert frame.hit_map is None
    assert frame.step_map is None


def test_shadow_estimate():
    estimate = ShadowEstimate()
    assert estimate.mean_impact_parameter is None
    assert estimate.radius is None
    estimate.add(6.0, 2.0)
    estimate.add(10.0, 2.0)
    assert estimate.mean_impact_parameter == pytest.approx(4.0)
    assert estimate.radius == pytest.approx(6.0)
    estimate.reset()
    assert estimate.radius is None


def test_overlay_classification_colours():
    hit_map = np.array([[HitCode.DISK, HitCode.HORIZON], [HitCode.ESCAPE, HitCode.STEP_BUDGET]], dtype=np.uint8)
    overlay = overlay_rgba(hit_map, None)
    assert overlay.shape == (2, 2, 4)
    assert overlay.dtype == np.uint8
    assert overlay[0, 0].tolist() == [255, 120, 40, OVERLAY_ALPHA]
    assert overlay[0, 1].tolist() == [20, 20, 20, OVERLAY_ALPHA]
    assert overlay[1, 0, 3] == 0
    assert overlay[1, 1, :3].tolist() == [0, 0, 0]


def test_overlay_heatmap_scales_by_steps():
    hit_map = np.full((1, 2), HitCode.DISK, dtype=np.uint8)
    step_map = np.array([[50, 100]], dtype=np.uint32)
    overlay = overlay_rgba(hit_map, step_map, classification=True, heatmap=True)
    assert overlay[0, 1, :3].tolist() == [255, 120, 40]
    assert overlay[0, 0, 0] == 127

    heat_only = overlay_rgba(None, step_map, classification=False, heatmap=True)
    assert heat_only[0, 1, :3].tolist() == [255, 255, 255]
    assert heat_only[0, 0, 0] == 127


def test_overlay_requires_data():
    with pytest.raises(ValueError):
        overlay_rgba(None, None)


def test_project_debug_path():
    points = np.array([[0.0, 0.0, 5.0], [30.0, 0.0, 0.0], [0.0, 30.0, 0.0]])
    screen = project_debug_path(points, 200, 30.0)
    assert screen.tolist() == [[100.0, 100.0], [200.0, 100.0], [100.0, 0.0]]


def test_summaries():
    counts = np.array([3, 2, 1, 0, 4])
    assert hit_histogram(counts) == {
        "escape": 3,
        "horizon": 2,
        "disk": 1,
        "numerical": 0,
        "step_budget": 4,
    }


def test_step_statistics():
    stats = StepStatistics()
    assert stats.summary() == {"min": None, "max": None, "mean": None}

    first = make_result(Tile(0, 0, 2, 2), 1, 0)
    first.rays, first.steps, first.min_steps, first.max_steps = 4, 40, 3, 20
    second = make_result(Tile(2, 0, 2, 2), 1, 0)
    second.rays, second.steps, second.min_steps, second.max_steps = 4, 24, 5, 9
    empty = make_result(Tile(0, 2, 2, 2), 1, 0)

    for result in (first, second, empty):
        stats.add(result)
    assert stats.summary() == {"min": 3, "max": 20, "mean": 8.0}

    stats.reset()
    assert stats.rays == 0 and stats.minimum is None
