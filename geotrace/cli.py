"""Command-line batch renderer.

Run:
    geotrace-render --resolution 256 --output-dir renders
    python -m geotrace.cli --single-pass --show
"""

import argparse
import logging
import sys

import matplotlib.pyplot as plt
from tqdm import tqdm

from geotrace.params import ParameterError, RenderParams
from geotrace.scheduler import RenderError, RenderStatus, benchmark
from geotrace.offline import render_offline

DEFAULTS = RenderParams()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Schwarzschild black hole geodesic renderer")
    parser.add_argument("--mass", type=float, default=DEFAULTS.mass, help="Black hole mass M (default: 1)")
    parser.add_argument("--camera-distance", type=float, default=DEFAULTS.camera_distance, help="Camera radius in units of M")
    parser.add_argument("--camera-theta", type=float, default=DEFAULTS.camera_theta, help="Camera polar angle (rad)")
    parser.add_argument("--camera-phi", type=float, default=DEFAULTS.camera_phi, help="Camera azimuth (rad)")
    parser.add_argument("--fov", type=float, default=DEFAULTS.field_of_view, help="Field of view in degrees")
    parser.add_argument("--disk-inner", type=float, default=DEFAULTS.disk_inner_radius, help="Disk inner radius")
    parser.add_argument("--disk-outer", type=float, default=DEFAULTS.disk_outer_radius, help="Disk outer radius")
    parser.add_argument("--disk-brightness", type=float, default=DEFAULTS.disk_brightness, help="Disk flux scale")
    parser.add_argument("--resolution", type=int, default=DEFAULTS.resolution, help="Image size (NxN)")
    parser.add_argument("--tile-size", type=int, default=DEFAULTS.tile_size, help="Tile edge in pixels")
    parser.add_argument("--max-steps", type=int, default=DEFAULTS.max_steps, help="Integration step budget per ray")
    parser.add_argument("--step-size", type=float, default=DEFAULTS.step_size, help="RK4 step in affine parameter")
    parser.add_argument("--exposure", type=float, default=DEFAULTS.exposure, help="Tone mapping exposure")
    parser.add_argument("--background", type=float, nargs=3, default=DEFAULTS.background_color,
                        metavar=("R", "G", "B"), help="Background colour in [0, 1]")
    parser.add_argument("--escape-radius", type=float, default=None, help="Escape radius (default: 4x camera distance)")
    parser.add_argument("--no-scientific", action="store_true", help="Disable hit/step overlays")
    parser.add_argument("--heatmap", action="store_true", help="Record step counts for the heatmap overlay")
    parser.add_argument("--no-classification", action="store_true", help="Do not record the hit classification overlay")
    parser.add_argument("--debug-pixel", type=int, nargs=2, default=None, metavar=("X", "Y"),
                        help="Record the geodesic path of this pixel")
    parser.add_argument("--output-dir", type=str, default="renders", help="Directory for image and metadata")
    parser.add_argument("--label", type=str, default="schwarzschild", help="File name prefix")
    parser.add_argument("--single-pass", action="store_true", help="Skip the coarse preview passes")
    parser.add_argument("--workers", type=int, default=None, help="Worker count (default: cpus-1, at most 4)")
    parser.add_argument("--backend", choices=["thread", "process"], default="thread", help="Executor used for tiles")
    parser.add_argument("--show", action="store_true", help="Display the result with matplotlib")
    parser.add_argument("--benchmark", action="store_true", help="Time one tile and exit")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return parser


def params_from_args(args: argparse.Namespace) -> RenderParams:
    return RenderParams(
        mass=args.mass,
        camera_distance=args.camera_distance,
        camera_theta=args.camera_theta,
        camera_phi=args.camera_phi,
        field_of_view=args.fov,
        disk_inner_radius=args.disk_inner,
        disk_outer_radius=args.disk_outer,
        disk_brightness=args.disk_brightness,
        resolution=args.resolution,
        tile_size=args.tile_size,
        max_steps=args.max_steps,
        step_size=args.step_size,
        exposure=args.exposure,
        background_color=tuple(args.background),
        escape_radius=args.escape_radius,
        scientific_mode=not args.no_scientific,
        show_heatmap=args.heatmap,
        show_hit_classification=not args.no_classification,
    )


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(asctime)s %(levelname)s: %(message)s")
    params = params_from_args(args)

    if args.benchmark:
        try:
            report = benchmark(params)
        except ParameterError as exc:
            logging.error("Benchmark failed: %s", exc)
            return 1
        print(f"Benchmark: {report['rays']} rays, {report['steps']} steps in {report['duration']:.3f}s "
              f"(stride {report['stride']})")
        return 0

    bar = tqdm(total=100, desc="Rendering", unit="%")

    def on_update(update):
        bar.n = round(update.progress * 100)
        postfix = {"rays": update.rays}
        if update.shadow_radius is not None:
            postfix["shadow"] = f"{update.shadow_radius:.3f}"
        bar.set_postfix(postfix, refresh=False)
        bar.refresh()
        if update.status == RenderStatus.ERROR:
            bar.write(f"error: {update.error}")

    try:
        metadata = render_offline(
            params,
            args.output_dir,
            args.label,
            single_pass=args.single_pass,
            workers=args.workers,
            backend=args.backend,
            debug_pixel=tuple(args.debug_pixel) if args.debug_pixel else None,
            on_update=on_update,
        )
    except (ParameterError, RenderError) as exc:
        logging.error("Offline render failed: %s", exc)
        return 1
    finally:
        bar.close()

    print(f"Saved render -> {metadata['files']['image']}")
    print(f"Metadata -> {metadata['files']['metadata']}")
    if metadata["shadow_radius"] is not None:
        print(f"Measured shadow radius: {metadata['shadow_radius']:.3f} "
              f"(theoretical {metadata['shadow_radius_theoretical']:.3f})")

    if args.show:
        img = plt.imread(metadata["files"]["image"])
        plt.figure(figsize=(6, 6))
        plt.imshow(img)
        if "overlay" in metadata["files"]:
            plt.imshow(plt.imread(metadata["files"]["overlay"]))
        if "debug_path" in metadata:
            screen = metadata["debug_path"]["screen"]
            plt.plot([p[0] for p in screen], [p[1] for p in screen], color="cyan", linewidth=1)
        plt.axis("off")
        plt.title("geotrace (Schwarzschild)")
        plt.show()
    return 0


if __name__ == "__main__":
    sys.exit(main())
