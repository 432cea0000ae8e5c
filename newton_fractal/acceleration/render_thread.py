"""
Background render scheduler.

A single worker thread renders parameter snapshots handed to it through a
one-slot mailbox. Submitting never blocks: a newer snapshot simply replaces
an older one that has not been picked up yet, so the worker always renders
the most recent request and the backlog never grows beyond one frame.

The worker picks the backend per snapshot: orbits and CPU frames go through
the scanline accelerator, GPU frames through the CuPy kernel. Every request
passes the same mailbox whatever its processor, so frames are delivered in
the order they were started.
"""

import threading
import time
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

import numpy as np

from ..core.math_functions import IterationResult, KernelConfig
from ..core.orbit import trace_orbit
from ..core.parameters import FractalParameters, Processor, clamp_roots
from ..rendering.coloring import colorize
from .gpu_backend import GPUAccelerator, GPUUnavailableError
from .scanlines import ScanlineAccelerator

logger = logging.getLogger(__name__)


@dataclass
class RenderedFrame:
    """A finished frame and the snapshot it was rendered from."""

    image: np.ndarray
    fps: float
    params: FractalParameters
    result: Optional[IterationResult] = None


@dataclass
class RenderedOrbit:
    """A traced orbit in the pixel space of ``params.size``."""

    points: List[Tuple[int, int]]
    fps: float
    params: FractalParameters


@dataclass
class RenderFailure:
    """A frame that could not be rendered."""

    params: FractalParameters
    error: BaseException


FrameCallback = Callable[[RenderedFrame], None]
OrbitCallback = Callable[[RenderedOrbit], None]
FailureCallback = Callable[[RenderFailure], None]
NotifyCallback = Callable[[], None]


def frames_per_second(elapsed: float) -> float:
    return 1.0 / elapsed if elapsed > 0 else float('inf')


class RenderThread:
    """
    Coalescing background renderer.

    Frames are delivered through ``on_frame_rendered``, orbits through
    ``on_orbit_rendered`` and dropped frames through ``on_render_failed``,
    all called from the worker thread. ``on_gpu_unavailable`` fires the first
    time a GPU frame cannot be rendered; such frames are dropped, never
    rendered on the CPU instead.
    """

    def __init__(self, on_frame_rendered: Optional[FrameCallback] = None,
                 on_orbit_rendered: Optional[OrbitCallback] = None,
                 on_render_failed: Optional[FailureCallback] = None,
                 on_gpu_unavailable: Optional[NotifyCallback] = None,
                 num_threads: Optional[int] = None,
                 config: Optional[KernelConfig] = None):
        """
        Initialize render thread. The worker starts on the first submission.

        Args:
            on_frame_rendered: Called with every finished frame
            on_orbit_rendered: Called with every traced orbit
            on_render_failed: Called when a frame had to be dropped
            on_gpu_unavailable: Called once if the GPU path cannot be used
            num_threads: Scanline worker threads (None for CPU count)
            config: Kernel constants (defaults if None)
        """
        self.on_frame_rendered = on_frame_rendered
        self.on_orbit_rendered = on_orbit_rendered
        self.on_render_failed = on_render_failed
        self.on_gpu_unavailable = on_gpu_unavailable
        self.config = config or KernelConfig()
        self.accelerator = ScanlineAccelerator(num_threads, self.config)
        self.gpu = GPUAccelerator(self.config)
        self._gpu_reported = False

        # Guards the mailbox, the abort flag and the busy flag
        self._condition = threading.Condition(threading.Lock())
        # Held while checking abort and delivering, so shutdown() cannot
        # return while a delivery is in progress
        self._delivery_lock = threading.RLock()
        self._next_params: Optional[FractalParameters] = None
        self._abort = False
        self._busy = False
        self._thread: Optional[threading.Thread] = None
        self.frames_rendered = 0

    def submit(self, params: FractalParameters) -> None:
        """
        Request a render of ``params``. Never blocks on rendering.

        A snapshot of the parameters is taken, so the caller may keep
        mutating its instance.
        """
        snapshot = clamp_roots(params.snapshot())
        with self._condition:
            if self._abort:
                logger.debug("Ignoring submission after shutdown")
                return
            self._next_params = snapshot
            if self._thread is None:
                self._thread = threading.Thread(target=self._run, name="newton-render", daemon=True)
                self._thread.start()
                logger.info("Render thread started")
            self._condition.notify_all()

    @property
    def pending(self) -> bool:
        """Whether a submitted snapshot is waiting to be picked up."""
        with self._condition:
            return self._next_params is not None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until nothing is pending or rendering. Returns False on timeout."""
        with self._condition:
            return self._condition.wait_for(
                lambda: self._abort or (self._next_params is None and not self._busy), timeout)

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """
        Stop the worker after its in-flight frame.

        The in-flight frame is finished but never delivered. No callbacks are
        invoked once this method returns. The scanline pool is closed by the
        worker as it exits, so a join that times out does not block on it.
        """
        with self._delivery_lock:
            with self._condition:
                self._abort = True
                self._condition.notify_all()
                thread = self._thread

        if thread is None:
            self.accelerator.close()
            return
        if thread is not threading.current_thread():
            thread.join(timeout)
            if thread.is_alive():
                logger.warning("Render thread did not stop within timeout")
            else:
                logger.info("Render thread stopped")

    def _aborted(self) -> bool:
        return self._abort

    def _run(self) -> None:
        try:
            while True:
                with self._condition:
                    self._busy = False
                    self._condition.notify_all()
                    self._condition.wait_for(lambda: self._abort or self._next_params is not None)
                    if self._abort:
                        return
                    params = self._next_params
                    # Benchmark snapshots stay in the mailbox and render continuously
                    if not params.benchmark:
                        self._next_params = None
                    self._busy = True

                try:
                    if params.orbit_mode:
                        self._trace(params)
                    elif params.processor == Processor.GPU:
                        self._render_gpu(params)
                    else:
                        self._render(params)
                except Exception as e:
                    logger.exception(f"Render failed: {e}")
                    self._deliver(self.on_render_failed, RenderFailure(params, e))
        finally:
            self.accelerator.close()

    def _render(self, params: FractalParameters) -> None:
        start_time = time.perf_counter()
        try:
            result = self.accelerator.render(params, aborted=self._aborted)
            if self._abort:
                return
            image = colorize(result, params.roots)
        except MemoryError as e:
            logger.error(f"Out of memory rendering {params.result_size[0]}x{params.result_size[1]} frame")
            self._deliver(self.on_render_failed, RenderFailure(params, e))
            return

        fps = frames_per_second(time.perf_counter() - start_time)
        logger.debug(f"Frame {self.frames_rendered} rendered at {fps:.2f} fps")
        self._deliver(self.on_frame_rendered, RenderedFrame(image, fps, params, result))

    def _render_gpu(self, params: FractalParameters) -> None:
        try:
            image, result, fps = self.gpu.render(params)
        except GPUUnavailableError:
            with self._delivery_lock:
                if self._gpu_reported or self._abort:
                    return
                self._gpu_reported = True
                if self.on_gpu_unavailable is not None:
                    try:
                        self.on_gpu_unavailable()
                    except Exception as e:
                        logger.exception(f"Render callback failed: {e}")
            return
        except MemoryError as e:
            logger.error("Out of memory rendering GPU frame")
            self._deliver(self.on_render_failed, RenderFailure(params, e))
            return

        self._deliver(self.on_frame_rendered, RenderedFrame(image, fps, params, result))

    def _trace(self, params: FractalParameters) -> None:
        start_time = time.perf_counter()
        try:
            points = trace_orbit(params.orbit_start, params, self.config)
        except MemoryError as e:
            logger.error(f"Out of memory tracing orbit of {params.max_iterations} iterations")
            self._deliver(self.on_render_failed, RenderFailure(params, e))
            return

        fps = frames_per_second(time.perf_counter() - start_time)
        self._deliver(self.on_orbit_rendered, RenderedOrbit(points, fps, params))

    def _deliver(self, callback: Optional[Callable], payload) -> None:
        with self._delivery_lock:
            if self._abort:
                return
            if isinstance(payload, (RenderedFrame, RenderedOrbit)):
                self.frames_rendered += 1
            if callback is None:
                return
            try:
                callback(payload)
            except Exception as e:
                logger.exception(f"Render callback failed: {e}")
