"""Full-frame accumulators fed by tile results.

Only the render controller writes to a FrameBuffer. Merging is a plain copy
of the tile region, so merging the same result twice is harmless and tiles
may arrive in any order.
"""

from dataclasses import dataclass
from typing import Dict, Optional

import numpy as np

from geotrace.geodesics import HitCode

# mean impact parameter over a uniformly filled disk is 2/3 of its radius
SHADOW_EDGE_FACTOR = 1.5

OVERLAY_COLORS = {
    HitCode.DISK: (255, 120, 40),
    HitCode.HORIZON: (20, 20, 20),
    HitCode.ESCAPE: (30, 60, 120),
}
OVERLAY_ALPHA = 90


class FrameBuffer:
    def __init__(self, width: int, height: int, classification: bool = False, heatmap: bool = False):
        self.width = int(width)
        self.height = int(height)
        self.pixels = np.zeros((self.height, self.width, 4), dtype=np.uint8)
        self.hit_map = np.zeros((self.height, self.width), dtype=np.uint8) if classification else None
        self.step_map = np.zeros((self.height, self.width), dtype=np.uint32) if heatmap else None
        self._finest = {}

    def merge(self, result) -> bool:
        """Copy a tile result into the frame.

        Returns False when a finer pass has already written this tile; a late
        coarse result must not overwrite it.
        """
        tile = result.tile
        key = (tile.x, tile.y, tile.width, tile.height)
        finest = self._finest.get(key)
        if finest is not None and result.stride > finest:
            return False
        self._finest[key] = result.stride

        region = (slice(tile.y, tile.y + tile.height), slice(tile.x, tile.x + tile.width))
        self.pixels[region] = result.pixels
        if self.hit_map is not None and result.hit_map is not None:
            self.hit_map[region] = result.hit_map
        if self.step_map is not None and result.step_map is not None:
            self.step_map[region] = result.step_map
        return True

    def rgb(self) -> np.ndarray:
        return self.pixels[..., :3]


@dataclass
class ShadowEstimate:
    """Running sum of impact parameters of horizon-captured rays."""

    total: float = 0.0
    weight: float = 0.0

    def reset(self) -> None:
        self.total = 0.0
        self.weight = 0.0

    def add(self, total: float, weight: float) -> None:
        self.total += total
        self.weight += weight

    @property
    def mean_impact_parameter(self) -> Optional[float]:
        if self.weight <= 0.0:
            return None
        return self.total / self.weight

    @property
    def radius(self) -> Optional[float]:
        mean = self.mean_impact_parameter
        return None if mean is None else SHADOW_EDGE_FACTOR * mean


def overlay_rgba(
    hit_map: Optional[np.ndarray],
    step_map: Optional[np.ndarray],
    classification: bool = True,
    heatmap: bool = False,
) -> np.ndarray:
    """Colour the hit classes, optionally dimmed by relative step count."""
    if hit_map is None and step_map is None:
        raise ValueError("no overlay data to draw")
    shape = hit_map.shape if hit_map is not None else step_map.shape
    rgb = np.zeros(shape + (3,), dtype=float)

    if classification and hit_map is not None:
        for code, color in OVERLAY_COLORS.items():
            rgb[hit_map == code] = color
    elif heatmap:
        rgb[...] = 255.0

    if heatmap and step_map is not None:
        peak = step_map.max()
        if peak > 0:
            rgb *= (step_map / float(peak))[..., None]

    alpha = np.full(shape, OVERLAY_ALPHA, dtype=np.uint8)
    if hit_map is not None:
        alpha[hit_map == HitCode.ESCAPE] = 0
    return np.dstack([rgb.astype(np.uint8), alpha])


def project_debug_path(points: np.ndarray, resolution: int, camera_distance: float) -> np.ndarray:
    """Top-down screen coordinates for a recorded path (x right, y up)."""
    points = np.asarray(points, dtype=float)
    scale = resolution / (camera_distance * 2.0)
    screen = np.empty((len(points), 2))
    screen[:, 0] = resolution / 2.0 + points[:, 0] * scale
    screen[:, 1] = resolution / 2.0 - points[:, 1] * scale
    return screen


def hit_histogram(counts) -> Dict[str, int]:
    counts = np.asarray(counts)
    return {code.name.lower(): int(counts[code]) for code in HitCode}


@dataclass
class StepStatistics:
    """Min, max and mean integration steps per ray over the merged tiles."""

    minimum: Optional[int] = None
    maximum: int = 0
    total: int = 0
    rays: int = 0

    def reset(self) -> None:
        self.minimum = None
        self.maximum = 0
        self.total = 0
        self.rays = 0

    def add(self, result) -> None:
        if result.rays == 0:
            return
        low = int(result.min_steps)
        self.minimum = low if self.minimum is None else min(self.minimum, low)
        self.maximum = max(self.maximum, int(result.max_steps))
        self.total += int(result.steps)
        self.rays += int(result.rays)

    def summary(self) -> Dict[str, Optional[float]]:
        if self.rays == 0:
            return {"min": None, "max": None, "mean": None}
        return {"min": self.minimum, "max": self.maximum, "mean": self.total / self.rays}
