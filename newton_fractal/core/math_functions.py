"""
Core mathematical functions for Newton fractal iteration.

This module provides the kernel configuration, the container for per-pixel
iteration results, and the scalar entry point into the Newton kernel.
"""

from dataclasses import dataclass
from typing import NamedTuple, Optional, Sequence, Any
import logging

import numpy as np

from ..acceleration.numba_backend import NO_ROOT, newton_point
from .parameters import roots_to_array

logger = logging.getLogger(__name__)

DEFAULT_EPSILON = 1e-3
DEFAULT_STEP = 1e-3


@dataclass(frozen=True)
class KernelConfig:
    """
    Numerical constants of the Newton kernel.

    Attributes:
        epsilon: Convergence tolerance on |z' - z|, also used to match roots
        step: Finite difference step for the derivative approximation
    """

    epsilon: float = DEFAULT_EPSILON
    step: float = DEFAULT_STEP

    def __post_init__(self):
        if not self.epsilon > 0:
            raise ValueError("epsilon must be positive")
        if not self.step > 0:
            raise ValueError("step must be positive")


class IterationOutcome(NamedTuple):
    """Result of iterating a single point."""

    root_index: Optional[int]
    iterations: int

    @property
    def converged(self) -> bool:
        return self.root_index is not None


class IterationResult:
    """Container for per-pixel Newton iteration results."""

    def __init__(self, root_index: np.ndarray, iterations: np.ndarray):
        """
        Initialize iteration result.

        Args:
            root_index: Array of matched root indices, -1 where no root matched
            iterations: Array of iteration counts actually used
        """
        if root_index.shape != iterations.shape:
            raise ValueError("root_index and iterations must have the same shape")
        self.root_index = root_index
        self.iterations = iterations
        self.shape = root_index.shape

    @classmethod
    def allocate(cls, width: int, height: int) -> 'IterationResult':
        """Allocate an unclassified result of the given pixel size."""
        root_index = np.full((height, width), NO_ROOT, dtype=np.int32)
        iterations = np.zeros((height, width), dtype=np.int32)
        return cls(root_index, iterations)

    @property
    def converged(self) -> np.ndarray:
        """Boolean mask of pixels that converged to a known root."""
        return self.root_index != NO_ROOT

    def basin_sizes(self, root_count: int) -> np.ndarray:
        """Number of pixels in each root's basin."""
        valid = self.root_index[self.converged]
        return np.bincount(valid, minlength=root_count)[:root_count]


class NewtonIterator:
    """Scalar Newton iteration against a polynomial given by its roots."""

    def __init__(self, config: Optional[KernelConfig] = None):
        self.config = config or KernelConfig()

    def iterate(self, z0: complex, roots: Sequence[Any], damping: complex = 1 + 0j,
                max_iterations: int = 30) -> IterationOutcome:
        """
        Iterate ``z0`` until it converges or ``max_iterations`` is reached.

        Args:
            z0: Starting point in the complex plane
            roots: Ordered roots (``Root`` instances or complex values)
            damping: Complex multiplier applied to each Newton step
            max_iterations: Iteration limit

        Returns:
            IterationOutcome with the matched root index (None when the point
            did not converge to a known root) and the iterations used
        """
        index, used = newton_point(
            complex(z0), roots_to_array(roots), complex(damping), int(max_iterations),
            self.config.epsilon, self.config.step
        )
        return IterationOutcome(None if index == NO_ROOT else int(index), int(used))
