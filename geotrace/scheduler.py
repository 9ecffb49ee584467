"""Progressive, tile-parallel render controller.

A render is a sequence of passes, coarsest first. Each pass covers the frame
with the same row-major tile grid at a smaller sampling stride. Tiles are
handed to a fixed executor pool one at a time per idle worker; completed
futures are posted to a result queue that the controller thread drains,
merging each tile into the frame and emitting a RenderUpdate.

The controller thread is the only writer of the frame, the overlays and the
diagnostics. start() and cancel() never block on it.
"""

import logging
import os
import queue
import threading
import time
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterator, Mapping, Optional, Sequence, Tuple

import numpy as np

from geotrace.frame import FrameBuffer, ShadowEstimate, StepStatistics
from geotrace.params import RenderParams
from geotrace.renderer import N_HIT_CODES, DebugPath, Tile, TileRequest, render_tile, tile_grid

logger = logging.getLogger(__name__)

MAX_WORKERS = 4
_CANCEL = object()


class RenderError(RuntimeError):
    """A tile failed; the whole render is abandoned."""


class RenderStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class RenderUpdate:
    status: RenderStatus
    progress: float = 0.0
    tiles: int = 0
    rays: int = 0
    steps: int = 0
    eta: float = 0.0
    shadow_radius: Optional[float] = None
    max_steps: int = 0
    error: Optional[str] = None
    duration: Optional[float] = None
    debug_path: Optional[DebugPath] = None


def default_worker_count() -> int:
    """Hardware threads minus one, clamped to [1, 4]."""
    cpus = os.cpu_count() or 3
    return max(1, min(MAX_WORKERS, cpus - 1))


def passes_for_resolution(resolution: int) -> Tuple[int, ...]:
    if resolution <= 512:
        return (8, 4, 2, 1)
    return (10, 6, 3, 2, 1)


def benchmark_stride(resolution: int) -> int:
    if resolution <= 256:
        return 1
    if resolution <= 512:
        return 2
    return 4


class RenderController:
    """Drives one progressive render at a time.

    on_update receives a RenderUpdate after every merged tile and on every
    status change; it runs on the controller thread.
    """

    def __init__(
        self,
        on_update: Optional[Callable[[RenderUpdate], None]] = None,
        workers: Optional[int] = None,
        backend: str = "thread",
        passes: Optional[Sequence[int]] = None,
    ):
        if backend not in ("thread", "process"):
            raise ValueError(f"unknown backend {backend!r}")
        self.on_update = on_update
        self.workers = workers or default_worker_count()
        self.backend = backend
        self.passes_override = tuple(passes) if passes else None

        self.params: Optional[RenderParams] = None
        self.passes: Tuple[int, ...] = ()
        self.frame: Optional[FrameBuffer] = None
        self.shadow = ShadowEstimate()
        self.step_stats = StepStatistics()
        self.hit_counts = np.zeros(N_HIT_CODES, dtype=np.int64)
        self.status = RenderStatus.IDLE
        self.last_update = RenderUpdate(RenderStatus.IDLE)
        self.error: Optional[str] = None

        self._thread: Optional[threading.Thread] = None
        self._results: Optional[queue.Queue] = None
        self._cancelled: Optional[threading.Event] = None
        self._reset_counters()

    def _reset_counters(self):
        self.rays = 0
        self.steps = 0
        self.max_steps = 0
        self.tiles_done = 0
        self.total_tiles = 0
        self.durations = []
        self.debug_path = None
        self.started_at = 0.0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def shadow_radius(self) -> Optional[float]:
        return self.shadow.radius

    def start(self, params, debug_pixel: Optional[Tuple[int, int]] = None) -> None:
        """Validate parameters and begin rendering on a controller thread."""
        if isinstance(params, Mapping):
            params = RenderParams.from_mapping(params)
        params.validate()

        if self.running:
            self.cancel()
            self._thread.join()

        self.params = params
        self.passes = self.passes_override or passes_for_resolution(params.resolution)
        size = params.resolution
        self.frame = FrameBuffer(
            size,
            size,
            classification=params.scientific_mode and params.show_hit_classification,
            heatmap=params.scientific_mode and params.show_heatmap,
        )
        self.shadow.reset()
        self.step_stats.reset()
        self.hit_counts = np.zeros(N_HIT_CODES, dtype=np.int64)
        self.error = None
        self._reset_counters()
        self.total_tiles = len(tile_grid(size, size, params.tile_size)) * len(self.passes)
        self.started_at = time.perf_counter()

        logger.info(
            "render start: resolution=%d tile=%d passes=%s workers=%d backend=%s",
            size, params.tile_size, self.passes, self.workers, self.backend,
        )
        self._results = queue.Queue()
        self._cancelled = threading.Event()
        self.status = RenderStatus.RUNNING
        self._emit()
        self._thread = threading.Thread(
            target=self._run,
            args=(params, debug_pixel, self._results, self._cancelled),
            name="render-controller",
            daemon=True,
        )
        self._thread.start()

    def cancel(self) -> None:
        """Drop queued and in-flight tiles and tear the pool down."""
        if self._cancelled is None or self._cancelled.is_set():
            return
        self._cancelled.set()
        self._results.put(_CANCEL)

    def wait(self, timeout: Optional[float] = None) -> RenderUpdate:
        if self._thread is not None:
            self._thread.join(timeout)
        return self.last_update

    def render(self, params, debug_pixel: Optional[Tuple[int, int]] = None) -> FrameBuffer:
        """Blocking render; raises RenderError if a worker failed."""
        self.start(params, debug_pixel)
        self.wait()
        if self.status == RenderStatus.ERROR:
            raise RenderError(self.error)
        return self.frame

    def _requests(self, params, debug_pixel) -> Iterator[TileRequest]:
        size = params.resolution
        overlays = params.scientific_mode
        for pass_index, stride in enumerate(self.passes):
            pass_params = params.for_pass(stride)
            logger.debug("pass %d: stride %d, step %.4g, budget %d",
                         pass_index, stride, pass_params.step_size, pass_params.max_steps)
            for tile in tile_grid(size, size, params.tile_size):
                yield TileRequest(
                    params=pass_params,
                    tile=tile,
                    width=size,
                    height=size,
                    stride=stride,
                    pass_index=pass_index,
                    debug_pixel=debug_pixel,
                    classification=overlays and params.show_hit_classification,
                    heatmap=overlays and params.show_heatmap,
                )

    def _make_executor(self):
        if self.backend == "process":
            return ProcessPoolExecutor(max_workers=self.workers)
        return ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="tile-worker")

    def _run(self, params, debug_pixel, results: queue.Queue, cancelled: threading.Event) -> None:
        executor = self._make_executor()
        requests = self._requests(params, debug_pixel)

        def dispatch() -> bool:
            request = next(requests, None)
            if request is None:
                return False
            logger.debug("dispatch tile %s pass %d", request.tile, request.pass_index)
            future = executor.submit(render_tile, request)
            future.add_done_callback(results.put)
            return True

        try:
            in_flight = sum(1 for _ in range(self.workers) if dispatch())
            while in_flight:
                message = results.get()
                if message is _CANCEL or cancelled.is_set():
                    logger.info("render cancelled after %d tiles", self.tiles_done)
                    self.status = RenderStatus.IDLE
                    self._emit()
                    return
                in_flight -= 1
                exc = message.exception()
                if exc is not None:
                    raise RenderError(f"{type(exc).__name__}: {exc}") from exc
                self._merge(message.result())
                if dispatch():
                    in_flight += 1
            self._finish()
        except Exception as exc:
            logger.error("render failed: %s", exc)
            self.error = str(exc)
            self.status = RenderStatus.ERROR
            self._emit(error=self.error)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def _merge(self, result) -> None:
        self.frame.merge(result)
        self.tiles_done += 1
        self.rays += result.rays
        self.steps += result.steps
        self.durations.append(result.duration)
        self.max_steps = max(self.max_steps, result.max_steps)
        if result.stride == 1:
            self.shadow.add(result.shadow_sum, result.shadow_weight)
            self.step_stats.add(result)
            self.hit_counts += result.hit_counts
        if result.debug_path is not None:
            self.debug_path = result.debug_path
        logger.debug("tile %s pass %d merged (%.3fs)", result.tile, result.pass_index, result.duration)
        self._emit()

    def _finish(self) -> None:
        duration = time.perf_counter() - self.started_at
        self.status = RenderStatus.COMPLETED
        logger.info(
            "render complete in %.2fs: %d rays, %d steps, shadow radius %s",
            duration, self.rays, self.steps,
            "n/a" if self.shadow_radius is None else f"{self.shadow_radius:.4f}",
        )
        self._emit(duration=duration)

    def _eta(self) -> float:
        if not self.durations:
            return 0.0
        remaining = self.total_tiles - self.tiles_done
        return float(np.mean(self.durations)) * remaining / self.workers

    def _emit(self, **extra) -> None:
        progress = min(1.0, self.tiles_done / max(1, self.total_tiles))
        if self.status == RenderStatus.COMPLETED:
            progress = 1.0
        update = RenderUpdate(
            status=self.status,
            progress=progress,
            tiles=self.tiles_done,
            rays=self.rays,
            steps=self.steps,
            eta=self._eta(),
            shadow_radius=self.shadow_radius,
            max_steps=self.max_steps,
            debug_path=self.debug_path,
            **extra,
        )
        self.last_update = update
        if self.on_update is not None:
            self.on_update(update)


def benchmark(params) -> dict:
    """Time a single tile at the resolution's benchmark stride."""
    if isinstance(params, Mapping):
        params = RenderParams.from_mapping(params)
    params.validate()
    stride = benchmark_stride(params.resolution)
    size = min(params.tile_size, params.resolution)
    request = TileRequest(
        params=params.for_pass(stride),
        tile=Tile(0, 0, size, size),
        width=params.resolution,
        height=params.resolution,
        stride=stride,
    )
    started = time.perf_counter()
    result = render_tile(request)
    duration = time.perf_counter() - started
    logger.info("benchmark: %d rays in %.3fs (stride %d)", result.rays, duration, stride)
    return {"duration": duration, "rays": result.rays, "steps": result.steps, "stride": stride}
