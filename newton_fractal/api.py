"""
Main API classes for Newton fractal rendering.

This module provides the high-level interface, combining the kernel, the
CPU and GPU backends and image export:

- :class:`FractalRenderer` renders one frame or orbit synchronously, for
  scripts and the command line.
- :class:`FractalEngine` is the asynchronous engine an interactive front end
  drives: it accepts a stream of parameter snapshots through :meth:`submit`
  and reports results through callbacks.
"""

import numpy as np
from typing import Callable, Optional, Tuple, Union
from pathlib import Path
import logging
import time

from .core.math_functions import KernelConfig
from .io.config import ConfigManager
from .core.orbit import trace_orbit
from .core.parameters import FractalParameters, Processor, clamp_roots
from .rendering.coloring import colorize
from .rendering.image_output import ImageExporter, RenderMetadata, default_export_name, draw_orbit
from .acceleration.scanlines import ScanlineAccelerator
from .acceleration.gpu_backend import GPUAccelerator
from .acceleration.render_thread import (
    RenderThread, RenderedFrame, RenderedOrbit, RenderFailure, frames_per_second
)

logger = logging.getLogger(__name__)


class FractalRenderer:
    """Synchronous Newton fractal renderer."""

    def __init__(self, config: Optional[KernelConfig] = None, num_threads: Optional[int] = None):
        """
        Initialize fractal renderer.

        Args:
            config: Kernel constants (defaults if None)
            num_threads: Threads for multi-threaded CPU rendering (None for CPU count)
        """
        self.config = config or KernelConfig()
        self.accelerator = ScanlineAccelerator(num_threads, self.config)
        self.gpu = GPUAccelerator(self.config)
        self.image_exporter = ImageExporter()

    def render(self, params: FractalParameters) -> RenderedFrame:
        """
        Render a frame with the processor selected in ``params``.

        Raises:
            GPUUnavailableError: If the GPU processor was requested but cannot be used
        """
        params = clamp_roots(params.snapshot())
        params.validate()
        width, height = params.result_size
        logger.info(f"Rendering {width}x{height}, {len(params.roots)} roots, "
                    f"{params.max_iterations} iterations on {params.processor.name}")

        if params.processor == Processor.GPU:
            image, result, fps = self.gpu.render(params)
        else:
            start_time = time.perf_counter()
            result = self.accelerator.render(params)
            image = colorize(result, params.roots)
            fps = frames_per_second(time.perf_counter() - start_time)

        logger.info(f"Render complete: {fps:.2f} fps")
        return RenderedFrame(image, fps, params, result)

    def trace_orbit(self, params: FractalParameters) -> RenderedOrbit:
        """Trace the orbit starting at ``params.orbit_start``."""
        params = clamp_roots(params.snapshot())
        start_time = time.perf_counter()
        points = trace_orbit(params.orbit_start, params, self.config)
        return RenderedOrbit(points, frames_per_second(time.perf_counter() - start_time), params)

    def render_with_orbit(self, params: FractalParameters) -> Tuple[np.ndarray, RenderedOrbit]:
        """
        Render a frame at full size and draw the orbit of ``params.orbit_start`` on it.

        Returns:
            Tuple of (RGB image with the orbit overlay, traced orbit)
        """
        full = params.snapshot()
        full.scale_down = False
        frame = self.render(full)
        orbit = self.trace_orbit(full)
        return draw_orbit(frame.image, orbit.points), orbit

    def save(self, frame: RenderedFrame, output: Union[str, Path]) -> Path:
        """
        Save a frame, embedding its parameters and settings file text.

        If ``output`` is a directory the frame is saved there under its
        default export name.
        """
        output = Path(output)
        if output.is_dir():
            output = output / default_export_name(frame.params)
        metadata = RenderMetadata.from_parameters(frame.params, frame.fps)
        settings = ConfigManager().dumps(frame.params)
        return self.image_exporter.save_image(frame.image, output, metadata, settings)

    def close(self) -> None:
        self.accelerator.close()


class FractalEngine:
    """
    Asynchronous render engine.

    Frames and orbits are computed by a background :class:`RenderThread`,
    which picks the GPU or CPU backend per request. Results are delivered
    through the callbacks:

    - ``on_frame_rendered(frame: RenderedFrame)``
    - ``on_orbit_rendered(orbit: RenderedOrbit)``
    - ``on_gpu_unavailable()``, at most once per engine
    - ``on_render_failed(failure: RenderFailure)``
    """

    def __init__(self, on_frame_rendered: Optional[Callable[[RenderedFrame], None]] = None,
                 on_orbit_rendered: Optional[Callable[[RenderedOrbit], None]] = None,
                 on_gpu_unavailable: Optional[Callable[[], None]] = None,
                 on_render_failed: Optional[Callable[[RenderFailure], None]] = None,
                 config: Optional[KernelConfig] = None,
                 num_threads: Optional[int] = None):
        self.config = config or KernelConfig()
        self.render_thread = RenderThread(
            on_frame_rendered=on_frame_rendered,
            on_orbit_rendered=on_orbit_rendered,
            on_render_failed=on_render_failed,
            on_gpu_unavailable=on_gpu_unavailable,
            num_threads=num_threads,
            config=self.config,
        )
        self._closed = False

    def submit(self, params: FractalParameters) -> None:
        """Request a render of a snapshot of ``params``. Orbit requests always run on the CPU."""
        if self._closed:
            logger.debug("Ignoring submission to closed engine")
            return
        self.render_thread.submit(params)

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        return self.render_thread.wait_until_idle(timeout)

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """Stop the engine; no callbacks fire after this returns."""
        self._closed = True
        self.render_thread.shutdown(timeout)

    def __enter__(self) -> 'FractalEngine':
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.shutdown()
