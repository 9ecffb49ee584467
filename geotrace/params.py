"""Render parameters: defaults, validation and derived camera quantities.

A RenderParams instance is immutable for the lifetime of a render pass. The
coarse passes of a progressive render get their own copy from for_pass().
"""

import dataclasses
import math
import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Tuple

from geotrace.metrics import horizon_radius

PASS_MIN_STEPS = 400
ESCAPE_FACTOR = 4.0
# the camera never sits closer than this to the polar axis (rad)
CAMERA_POLAR_LIMIT = 1e-3


class ParameterError(ValueError):
    """Physically or numerically invalid render parameters."""


def _snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


@dataclass(frozen=True)
class RenderParams:
    mass: float = 1.0
    camera_distance: float = 30.0
    camera_theta: float = 1.2
    camera_phi: float = 0.0
    field_of_view: float = 45.0
    disk_inner_radius: float = 6.0
    disk_outer_radius: float = 30.0
    disk_brightness: float = 1.0
    resolution: int = 256
    tile_size: int = 64
    max_steps: int = 20000
    step_size: float = 0.04
    exposure: float = 1.15
    background_color: Tuple[float, float, float] = (0.04, 0.04, 0.12)
    escape_radius: Optional[float] = None
    scientific_mode: bool = True
    show_heatmap: bool = False
    show_hit_classification: bool = True

    camera_position: Tuple[float, float, float] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        r, th, ph = self.camera_distance, self.polar_angle, self.camera_phi
        s = math.sin(th)
        position = (r * s * math.cos(ph), r * s * math.sin(ph), r * math.cos(th))
        object.__setattr__(self, "camera_position", position)
        object.__setattr__(self, "background_color", tuple(float(c) for c in self.background_color))

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "RenderParams":
        """Build from a flat mapping; camelCase keys are accepted, unknown keys ignored."""
        names = {f.name for f in dataclasses.fields(cls) if f.init}
        kwargs = {}
        for key, value in mapping.items():
            name = key if key in names else _snake(key)
            if name in names and value is not None:
                kwargs[name] = value
        # the control surface historically called this "fieldOfView"/"fov"
        if "fov" in mapping and "field_of_view" not in kwargs:
            kwargs["field_of_view"] = mapping["fov"]
        for name in ("resolution", "tile_size", "max_steps"):
            if name in kwargs:
                kwargs[name] = int(kwargs[name])
        return cls(**kwargs)

    @property
    def polar_angle(self) -> float:
        """camera_theta kept off the coordinate axis, where the azimuthal basis degenerates."""
        return min(max(self.camera_theta, CAMERA_POLAR_LIMIT), math.pi - CAMERA_POLAR_LIMIT)

    @property
    def horizon_radius(self) -> float:
        return horizon_radius(self.mass)

    @property
    def resolved_escape_radius(self) -> float:
        if self.escape_radius:
            return float(self.escape_radius)
        return ESCAPE_FACTOR * self.camera_distance

    @property
    def overlays_enabled(self) -> bool:
        return self.scientific_mode and (self.show_hit_classification or self.show_heatmap)

    def validate(self) -> "RenderParams":
        if not self.mass > 0.0:
            raise ParameterError(f"mass must be positive, got {self.mass}")
        if not self.camera_distance > self.horizon_radius:
            raise ParameterError(
                f"camera distance {self.camera_distance} is not outside the horizon r = {self.horizon_radius}"
            )
        if not 0.0 < self.field_of_view < 180.0:
            raise ParameterError(f"field of view must lie in (0, 180) degrees, got {self.field_of_view}")
        if self.disk_inner_radius < 0.0 or self.disk_outer_radius < self.disk_inner_radius:
            raise ParameterError(
                f"invalid disk radii [{self.disk_inner_radius}, {self.disk_outer_radius}]"
            )
        if self.resolution <= 0 or self.tile_size <= 0:
            raise ParameterError("resolution and tile size must be positive")
        if self.max_steps <= 0 or not self.step_size > 0.0:
            raise ParameterError("max steps and step size must be positive")
        if not self.exposure > 0.0:
            raise ParameterError(f"exposure must be positive, got {self.exposure}")
        if self.resolved_escape_radius <= self.camera_distance:
            raise ParameterError("escape radius must lie beyond the camera")
        if len(self.background_color) != 3:
            raise ParameterError("background colour needs three channels")
        return self

    def for_pass(self, stride: int) -> "RenderParams":
        """Coarser passes take proportionally longer steps and fewer of them."""
        stride = max(1, int(stride))
        if stride == 1:
            return self
        return dataclasses.replace(
            self,
            step_size=self.step_size * stride,
            max_steps=max(PASS_MIN_STEPS, math.ceil(self.max_steps / stride)),
        )

    def to_dict(self) -> dict:
        d = dataclasses.asdict(self)
        d["background_color"] = list(self.background_color)
        d["camera_position"] = list(self.camera_position)
        d["escape_radius"] = self.resolved_escape_radius
        return d
