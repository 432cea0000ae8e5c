"""
Scanline-parallel CPU backend.

This module splits an image into per-row work items and evaluates them with
the JIT-compiled Newton kernel, either sequentially or fanned out across a
thread pool. The kernel releases the GIL, so threads give real parallelism
without the pickling cost of a process pool.
"""

import os
import time
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, List, Optional

import numpy as np

from ..core.math_functions import IterationResult, KernelConfig
from ..core.parameters import FractalParameters, Processor, roots_to_array
from .numba_backend import newton_scanline

logger = logging.getLogger(__name__)


@dataclass
class ImageLine:
    """One scanline of work: target row views plus the inputs to compute it."""

    line_index: int
    zy: float
    zx: np.ndarray
    roots: np.ndarray
    damping: complex
    max_iterations: int
    root_index: np.ndarray
    iterations: np.ndarray


def create_image_lines(result: IterationResult, params: FractalParameters) -> List[ImageLine]:
    """
    Partition a frame into per-row work items.

    Args:
        result: Preallocated output arrays the lines write into
        params: Parameters snapshot of the frame

    Returns:
        List of ImageLine objects, one per row
    """
    height, width = result.shape
    zx = params.limits.real_axis(width)
    zys = params.limits.imag_axis(height)
    roots = roots_to_array(params.roots)

    return [
        ImageLine(
            line_index=y,
            zy=float(zys[y]),
            zx=zx,
            roots=roots,
            damping=params.damping,
            max_iterations=int(params.max_iterations),
            root_index=result.root_index[y],
            iterations=result.iterations[y],
        )
        for y in range(height)
    ]


def process_image_line(line: ImageLine, config: KernelConfig) -> None:
    """Evaluate the Newton kernel for every pixel of a line."""
    newton_scanline(line.zx, line.zy, line.roots, line.damping, line.max_iterations,
                    config.epsilon, config.step, line.root_index, line.iterations)


def get_optimal_thread_count() -> int:
    """Number of worker threads for multi-threaded rendering."""
    return os.cpu_count() or 1


class ScanlineAccelerator:
    """Thread-pool based parallel Newton fractal computation."""

    def __init__(self, num_threads: Optional[int] = None, config: Optional[KernelConfig] = None):
        """
        Initialize scanline accelerator.

        Args:
            num_threads: Number of worker threads (None for CPU count)
            config: Kernel constants (defaults if None)
        """
        if num_threads is None:
            self.num_threads = get_optimal_thread_count()
        else:
            self.num_threads = max(1, num_threads)

        self.config = config or KernelConfig()
        self._executor: Optional[ThreadPoolExecutor] = None
        logger.info(f"Scanline accelerator: {self.num_threads} threads")

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=self.num_threads,
                                                thread_name_prefix="newton-scanline")
        return self._executor

    def render(self, params: FractalParameters,
               aborted: Optional[Callable[[], bool]] = None) -> IterationResult:
        """
        Compute root indices and iteration counts for a whole frame.

        Args:
            params: Parameters snapshot to render at ``params.result_size``
            aborted: Polled before each line; remaining lines are skipped once
                it returns True

        Returns:
            IterationResult of shape (height, width)
        """
        start_time = time.perf_counter()
        width, height = params.result_size
        result = IterationResult.allocate(width, height)
        lines = create_image_lines(result, params)

        def run(line: ImageLine) -> None:
            if aborted is not None and aborted():
                return
            process_image_line(line, self.config)

        if params.processor == Processor.CPU_SINGLE or self.num_threads == 1:
            for line in lines:
                run(line)
        else:
            # map() re-raises the first worker exception here
            list(self._get_executor().map(run, lines))

        logger.debug(f"Rendered {width}x{height} in {time.perf_counter() - start_time:.3f}s "
                     f"({params.processor.name})")
        return result

    def close(self) -> None:
        """Shut down the worker pool."""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
