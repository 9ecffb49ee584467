"""Pinhole camera and the per-tile ray loop.

render_tile() is the unit of work handed to pool workers: it takes a
TileRequest, traces one geodesic per sampled pixel and returns a TileResult
holding only tile-local buffers. Nothing in here touches the full frame.

Notes:
 - Coordinates: the camera sits at (t=0, r, theta, phi) derived from the
   parameters and always looks at the hole.
 - With a sampling stride k only every k-th pixel per axis is traced and its
   colour fills the k x k block it stands for.
"""

import logging
import math
import time
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np

from geotrace.geodesics import HitCode, impact_parameter, initial_state, trace_geodesic
from geotrace.metrics import SchwarzschildSystem

logger = logging.getLogger(__name__)

N_HIT_CODES = len(HitCode)


class Camera:
    def __init__(self, position, forward, right, up, fov_deg=45.0):
        self.position = np.asarray(position, dtype=float)
        self.forward = np.asarray(forward, dtype=float)
        self.right = np.asarray(right, dtype=float)
        self.up = np.asarray(up, dtype=float)
        self.fov = float(np.deg2rad(fov_deg))

    @classmethod
    def from_params(cls, params) -> "Camera":
        """Camera at params.camera_position looking at the origin, z up."""
        position = np.asarray(params.camera_position, dtype=float)
        forward = -position / np.linalg.norm(position)
        world_up = np.array([0.0, 0.0, 1.0])
        if np.linalg.norm(np.cross(forward, world_up)) < 1e-6:
            world_up = np.array([0.0, 1.0, 0.0])
        right = np.cross(forward, world_up)
        right /= np.linalg.norm(right)
        up = np.cross(right, forward)
        up /= np.linalg.norm(up)
        return cls(position, forward, right, up, params.field_of_view)

    def ray_direction(self, x: float, y: float, width: int, height: int) -> np.ndarray:
        """Unit direction through the centre of pixel (x, y); row 0 is the top."""
        aspect = float(width) / float(height)
        scale = math.tan(self.fov / 2.0)
        ndc_x = (2.0 * (x + 0.5) / width - 1.0) * scale * aspect
        ndc_y = (1.0 - 2.0 * (y + 0.5) / height) * scale
        d = self.forward + ndc_x * self.right + ndc_y * self.up
        return d / np.linalg.norm(d)


@dataclass(frozen=True)
class Tile:
    x: int
    y: int
    width: int
    height: int


def tile_grid(width: int, height: int, tile_size: int) -> List[Tile]:
    """Row-major partition of the frame; edge tiles are clipped."""
    tiles = []
    for y in range(0, height, tile_size):
        for x in range(0, width, tile_size):
            tiles.append(Tile(x, y, min(tile_size, width - x), min(tile_size, height - y)))
    return tiles


@dataclass(frozen=True)
class TileRequest:
    params: object
    tile: Tile
    width: int
    height: int
    stride: int = 1
    pass_index: int = 0
    debug_pixel: Optional[Tuple[int, int]] = None
    classification: bool = False
    heatmap: bool = False


@dataclass
class DebugPath:
    pixel: Tuple[int, int]
    points: np.ndarray


@dataclass
class TileResult:
    tile: Tile
    pass_index: int
    stride: int
    pixels: np.ndarray
    hit_map: Optional[np.ndarray] = None
    step_map: Optional[np.ndarray] = None
    rays: int = 0
    steps: int = 0
    min_steps: int = 0
    max_steps: int = 0
    hit_counts: np.ndarray = field(default_factory=lambda: np.zeros(N_HIT_CODES, dtype=np.int64))
    debug_path: Optional[DebugPath] = None
    shadow_sum: float = 0.0
    shadow_weight: float = 0.0
    duration: float = 0.0


def color_to_rgba(color) -> np.ndarray:
    rgb = np.round(np.clip(np.asarray(color, dtype=float), 0.0, 1.0) * 255.0)
    return np.append(rgb, 255.0).astype(np.uint8)


def render_tile(request: TileRequest) -> TileResult:
    """Trace every sampled pixel of one tile."""
    started = time.perf_counter()
    params = request.params
    tile = request.tile
    step = max(1, int(request.stride))
    measure_shadow = step == 1

    system = SchwarzschildSystem(params.mass)
    camera = Camera.from_params(params)

    result = TileResult(
        tile=tile,
        pass_index=request.pass_index,
        stride=step,
        pixels=np.zeros((tile.height, tile.width, 4), dtype=np.uint8),
        hit_map=np.zeros((tile.height, tile.width), dtype=np.uint8) if request.classification else None,
        step_map=np.zeros((tile.height, tile.width), dtype=np.uint32) if request.heatmap else None,
    )

    for ly in range(0, tile.height, step):
        for lx in range(0, tile.width, step):
            px = tile.x + lx
            py = tile.y + ly
            if px >= request.width or py >= request.height:
                continue

            direction = camera.ray_direction(px, py, request.width, request.height)
            y0 = initial_state(camera.position, direction, system.M)
            capture = request.debug_pixel is not None and tuple(request.debug_pixel) == (px, py)
            trace = trace_geodesic(y0, params, system, record_path=capture)

            result.rays += 1
            result.steps += trace.steps
            result.min_steps = trace.steps if result.rays == 1 else min(result.min_steps, trace.steps)
            result.max_steps = max(result.max_steps, trace.steps)
            result.hit_counts[int(trace.hit)] += 1

            block_w = min(step, tile.width - lx)
            block_h = min(step, tile.height - ly)
            if measure_shadow and trace.hit == HitCode.HORIZON:
                b = impact_parameter(y0, system.M) or 0.0
                weight = block_w * block_h
                result.shadow_sum += b * weight
                result.shadow_weight += weight

            if trace.path is not None:
                result.debug_path = DebugPath((px, py), trace.path)

            block = (slice(ly, ly + block_h), slice(lx, lx + block_w))
            result.pixels[block] = color_to_rgba(trace.color)
            if result.hit_map is not None:
                result.hit_map[block] = int(trace.hit)
            if result.step_map is not None:
                result.step_map[block] = trace.steps

    result.duration = time.perf_counter() - started
    logger.debug(
        "tile (%d, %d) stride %d: %d rays, %d steps in %.3fs",
        tile.x, tile.y, step, result.rays, result.steps, result.duration,
    )
    return result
