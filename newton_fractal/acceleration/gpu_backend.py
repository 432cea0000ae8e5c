"""
GPU acceleration backend using CuPy.

This module restates the Newton kernel as a CUDA per-pixel kernel. Roots,
root colors, damping, the iteration limit and the viewport are uploaded as
kernel arguments once per frame, and a single launch covers every pixel of
the output image. The kernel colors pixels itself, with the same shading
rule as :func:`newton_fractal.rendering.coloring.colorize`.

When CuPy is missing, no CUDA device is present or the kernel fails to
compile, the accelerator reports itself unavailable. It never substitutes a
CPU render.
"""

import numpy as np
import time
import logging
from typing import Optional

from ..core.math_functions import IterationResult, KernelConfig
from ..core.parameters import FractalParameters, MAX_ROOTS, clamp_roots, roots_to_array
from ..rendering.coloring import BACKGROUND_COLOR, DARKEN_STEP

logger = logging.getLogger(__name__)

try:
    import cupy as cp
    logger.debug(f"CuPy available: {cp.__version__}")
except ImportError:
    cp = None
    logger.debug("CuPy not installed - GPU rendering disabled")


class GPUUnavailableError(RuntimeError):
    """Raised when the GPU path cannot be used on this machine."""


NEWTON_KERNEL_SOURCE = r'''
#include <cupy/complex.cuh>

__device__ complex<double> polynomial(complex<double> z, const double* root_real,
                                      const double* root_imag, int root_count) {
    complex<double> result(1.0, 0.0);
    for (int r = 0; r < root_count; ++r) {
        result *= z - complex<double>(root_real[r], root_imag[r]);
    }
    return result;
}

extern "C" __global__
void newton_kernel(const double* root_real, const double* root_imag,
                   const unsigned char* root_color, int root_count,
                   double damping_real, double damping_imag, int max_iter,
                   double left, double right, double top, double bottom,
                   double eps, double step, double darken_step,
                   unsigned char bg_r, unsigned char bg_g, unsigned char bg_b,
                   int width, int height,
                   int* root_index, int* iterations, unsigned char* rgb) {
    int x = blockDim.x * blockIdx.x + threadIdx.x;
    int y = blockDim.y * blockIdx.y + threadIdx.y;

    if (x >= width || y >= height) return;

    int index = y * width + x;

    double zx = width > 1 ? left + x * (right - left) / (width - 1) : 0.5 * (left + right);
    double zy = height > 1 ? top + y * (bottom - top) / (height - 1) : 0.5 * (top + bottom);

    complex<double> z(zx, zy);
    const complex<double> h(step, step);
    const complex<double> damping(damping_real, damping_imag);

    int found = -1;
    int used = max_iter;

    for (int i = 0; i < max_iter; ++i) {
        complex<double> fz = polynomial(z, root_real, root_imag, root_count);
        complex<double> dz = (polynomial(z + h, root_real, root_imag, root_count) - fz) / h;
        if (dz.real() == 0.0 && dz.imag() == 0.0) {
            used = i + 1;
            break;
        }
        complex<double> z_next = z - damping * fz / dz;

        if (abs(z_next - z) < eps) {
            for (int r = 0; r < root_count; ++r) {
                if (abs(z_next - complex<double>(root_real[r], root_imag[r])) < eps) {
                    found = r;
                    break;
                }
            }
            used = i + 1;
            break;
        }
        z = z_next;
    }

    root_index[index] = found;
    iterations[index] = used;

    if (found >= 0) {
        const unsigned char* base = root_color + 3 * found;
        double shade = 100.0 / (50.0 + darken_step * (used - 1));
        int peak = max((int)base[0], max((int)base[1], (int)base[2]));
        if (peak > 0) shade = min(shade, 255.0 / peak);
        for (int c = 0; c < 3; ++c) {
            rgb[3 * index + c] = (unsigned char)min(base[c] * shade, 255.0);
        }
    } else {
        rgb[3 * index + 0] = bg_r;
        rgb[3 * index + 1] = bg_g;
        rgb[3 * index + 2] = bg_b;
    }
}
'''


def is_gpu_available() -> bool:
    """Check whether CuPy can see a CUDA device."""
    if cp is None:
        return False
    try:
        return cp.cuda.runtime.getDeviceCount() > 0
    except cp.cuda.runtime.CUDARuntimeError:
        return False


class GPUAccelerator:
    """CuPy-based GPU renderer for Newton fractals."""

    block_size = (16, 16)

    def __init__(self, config: Optional[KernelConfig] = None):
        """
        Initialize GPU accelerator. Compilation is deferred to first use.

        Args:
            config: Kernel constants (defaults if None)
        """
        self.config = config or KernelConfig()
        self.available = False
        self.error: Optional[str] = None
        self._initialized = False
        self._kernel = None

    def initialize(self) -> bool:
        """
        Query the device and compile the kernel, once.

        Returns:
            True if the GPU path is usable
        """
        if self._initialized:
            return self.available
        self._initialized = True

        if cp is None:
            self.error = "CuPy is not installed"
        elif not is_gpu_available():
            self.error = "No CUDA device available"
        else:
            try:
                kernel = cp.RawKernel(NEWTON_KERNEL_SOURCE, 'newton_kernel')
                kernel.compile()
                self._kernel = kernel
                self.available = True
                logger.info(f"Using GPU device: {cp.cuda.Device().id}")
            except Exception as e:
                self.error = f"Kernel compilation failed: {e}"

        if not self.available:
            logger.warning(f"GPU unavailable: {self.error}")
        return self.available

    def render(self, params: FractalParameters):
        """
        Render a frame on the GPU.

        Args:
            params: Parameters snapshot to render at ``params.result_size``

        Returns:
            Tuple of (RGB image array, IterationResult, fps)

        Raises:
            GPUUnavailableError: If the GPU path cannot be used
        """
        if not self.initialize():
            raise GPUUnavailableError(self.error)

        start_time = time.perf_counter()
        params = clamp_roots(params)
        width, height = params.result_size
        left, right, top, bottom = params.limits.bounds

        roots = roots_to_array(params.roots)
        colors = np.zeros((MAX_ROOTS, 3), dtype=np.uint8)
        for i, root in enumerate(params.roots):
            colors[i] = root.color

        root_real = cp.asarray(np.ascontiguousarray(roots.real))
        root_imag = cp.asarray(np.ascontiguousarray(roots.imag))
        root_color = cp.asarray(colors.ravel())

        root_index_gpu = cp.empty((height, width), dtype=cp.int32)
        iterations_gpu = cp.empty((height, width), dtype=cp.int32)
        rgb_gpu = cp.empty((height, width, 3), dtype=cp.uint8)

        grid_size = ((width + self.block_size[0] - 1) // self.block_size[0],
                     (height + self.block_size[1] - 1) // self.block_size[1])
        bg_r, bg_g, bg_b = BACKGROUND_COLOR

        self._kernel(
            grid_size, self.block_size,
            (root_real, root_imag, root_color, np.int32(len(roots)),
             np.float64(params.damping.real), np.float64(params.damping.imag),
             np.int32(params.max_iterations),
             np.float64(left), np.float64(right), np.float64(top), np.float64(bottom),
             np.float64(self.config.epsilon), np.float64(self.config.step),
             np.float64(DARKEN_STEP),
             np.uint8(bg_r), np.uint8(bg_g), np.uint8(bg_b),
             np.int32(width), np.int32(height),
             root_index_gpu, iterations_gpu, rgb_gpu)
        )

        # Downloading synchronizes with the launch
        image = cp.asnumpy(rgb_gpu)
        result = IterationResult(cp.asnumpy(root_index_gpu), cp.asnumpy(iterations_gpu))

        elapsed = time.perf_counter() - start_time
        fps = 1.0 / elapsed if elapsed > 0 else float('inf')
        return image, result, fps
