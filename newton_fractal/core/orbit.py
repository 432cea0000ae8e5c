"""Orbit tracing: the pixel path a single starting point takes under iteration."""

from typing import List, Optional, Tuple
import logging

from ..acceleration.numba_backend import newton_orbit
from .math_functions import KernelConfig
from .parameters import FractalParameters, roots_to_array

logger = logging.getLogger(__name__)


def trace_orbit(start: Tuple[int, int], params: FractalParameters,
                config: Optional[KernelConfig] = None) -> List[Tuple[int, int]]:
    """
    Trace the Newton orbit of a pixel.

    The orbit is recomputed from scratch on every call. Positions are
    expressed in the pixel space of ``params.size``.

    Args:
        start: Starting pixel (x, y)
        params: Parameters snapshot providing roots, damping and viewport
        config: Kernel constants (defaults if None)

    Returns:
        Ordered pixel positions, starting point first
    """
    config = config or KernelConfig()
    limits = params.limits
    z0 = limits.point_to_complex(start, params.size)

    values = newton_orbit(z0, roots_to_array(params.roots), params.damping,
                          int(params.max_iterations), config.epsilon, config.step)

    points = [limits.complex_to_point(complex(z), params.size) for z in values]
    logger.debug(f"Orbit from {start}: {len(points)} points")
    return points
