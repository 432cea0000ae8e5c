"""
Newton fractal render engine.

This library renders the basins of attraction of Newton's method for a
polynomial given by its roots. Every pixel is colored by the root its
iteration converges to and darkened by the number of iterations it took.

Key Features:
- Damped Newton iteration with a numerical derivative, compiled with Numba
- Single-threaded, multi-threaded and CUDA (CuPy) backends
- Coalescing background render thread for interactive front ends
- Pan, zoom and resize of the complex-plane viewport
- Orbit tracing of a single starting pixel
- INI settings import/export and PNG export with embedded parameters

Example usage:
    >>> from newton_fractal import FractalParameters, FractalRenderer
    >>> params = FractalParameters(size=(400, 400))
    >>> renderer = FractalRenderer()
    >>> frame = renderer.render(params)
    >>> renderer.save(frame, "newton.png")
"""

__version__ = "1.0.0"
__author__ = "Newton Fractal Team"

from newton_fractal.core.limits import Limits
from newton_fractal.core.parameters import FractalParameters, Processor, Root
from newton_fractal.core.math_functions import KernelConfig, NewtonIterator
from newton_fractal.core.orbit import trace_orbit
from newton_fractal.rendering.image_output import ImageExporter
from newton_fractal.acceleration.render_thread import RenderThread
from newton_fractal.io.config import ConfigManager

# Main API classes
from newton_fractal.api import FractalRenderer, FractalEngine

__all__ = [
    "FractalRenderer",
    "FractalEngine",
    "FractalParameters",
    "Processor",
    "Root",
    "Limits",
    "KernelConfig",
    "NewtonIterator",
    "trace_orbit",
    "RenderThread",
    "ImageExporter",
    "ConfigManager",
]
