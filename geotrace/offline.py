"""Offline batch rendering: one PNG plus a JSON metadata record per run."""

import json
import logging
import os
from datetime import datetime, timezone
from typing import Callable, Optional

import matplotlib.pyplot as plt

from geotrace.frame import hit_histogram, overlay_rgba, project_debug_path
from geotrace.metrics import critical_impact_parameter
from geotrace.params import RenderParams
from geotrace.scheduler import RenderController, RenderUpdate

logger = logging.getLogger(__name__)


def build_basename(label: str, when: Optional[datetime] = None) -> str:
    when = when or datetime.now(timezone.utc)
    return f"{label}_{when.strftime('%Y-%m-%d_%H-%M-%S')}"


def render_offline(
    params: RenderParams,
    output_dir: str,
    label: str = "schwarzschild",
    *,
    single_pass: bool = False,
    workers: Optional[int] = None,
    backend: str = "thread",
    debug_pixel=None,
    on_update: Optional[Callable[[RenderUpdate], None]] = None,
) -> dict:
    """Render params to output_dir and return the metadata record.

    The record carries the input parameters, ray and step statistics, the
    measured and theoretical shadow radius and a timestamp. Paths of the
    written files are under "files".
    """
    controller = RenderController(
        on_update=on_update,
        workers=workers,
        backend=backend,
        passes=(1,) if single_pass else None,
    )
    frame = controller.render(params, debug_pixel=debug_pixel)
    final = controller.last_update

    os.makedirs(output_dir, exist_ok=True)
    now = datetime.now(timezone.utc)
    basename = build_basename(label, now)
    image_path = os.path.join(output_dir, f"{basename}.png")
    plt.imsave(image_path, frame.pixels)
    files = {"image": image_path}

    if frame.hit_map is not None or frame.step_map is not None:
        overlay_path = os.path.join(output_dir, f"{basename}_overlay.png")
        overlay = overlay_rgba(
            frame.hit_map,
            frame.step_map,
            classification=params.show_hit_classification,
            heatmap=params.show_heatmap,
        )
        plt.imsave(overlay_path, overlay)
        files["overlay"] = overlay_path

    measured = controller.shadow_radius
    theoretical = critical_impact_parameter(params.mass)
    metadata = {
        "params": params.to_dict(),
        "resolution": params.resolution,
        "rays": controller.rays,
        "steps": controller.steps,
        "max_steps": controller.max_steps,
        "shadow_radius": measured,
        "shadow_radius_theoretical": theoretical,
        "histogram": hit_histogram(controller.hit_counts),
        "step_summary": controller.step_stats.summary(),
        "duration": final.duration,
        "timestamp": now.isoformat(),
        "files": files,
    }
    if final.debug_path is not None:
        screen = project_debug_path(final.debug_path.points, params.resolution, params.camera_distance)
        metadata["debug_path"] = {
            "pixel": list(final.debug_path.pixel),
            "points": final.debug_path.points.tolist(),
            "screen": screen.tolist(),
        }
    meta_path = os.path.join(output_dir, f"{basename}.json")
    with open(meta_path, "w") as fh:
        json.dump(metadata, fh, indent=2)
    files["metadata"] = meta_path

    logger.info("saved render -> %s", image_path)
    logger.info("metadata -> %s", meta_path)
    if measured is not None:
        logger.info("measured shadow radius: %.3f (theoretical %.3f)", measured, theoretical)
    return metadata
