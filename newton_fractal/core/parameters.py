"""
Fractal parameter management.

This module defines the roots of the rendered polynomial and the parameter
set that describes a single Newton fractal render. The interactive front end
owns one long-lived :class:`FractalParameters` instance and hands value
snapshots of it to the render engine.
"""

import cmath
import copy
import math
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, List, Sequence, Tuple
import logging

import numpy as np

from .limits import Limits, PixelSize, DEFAULT_SIZE

logger = logging.getLogger(__name__)

Color = Tuple[int, int, int]

# One color per basin; the renderer supports as many roots as there are colors
ROOT_COLORS: Tuple[Color, ...] = (
    (255, 0, 0),    # red
    (0, 255, 0),    # green
    (0, 0, 255),    # blue
    (0, 255, 255),  # cyan
    (255, 0, 255),  # magenta
    (255, 255, 0),  # yellow
)
MAX_ROOTS = len(ROOT_COLORS)
DEFAULT_ROOT_COUNT = 3
DEFAULT_MAX_ITERATIONS = 30
DEFAULT_DAMPING = complex(1.0, 0.0)
DEFAULT_SCALE_DOWN_FACTOR = 0.5


class Processor(IntEnum):
    """Where pixels are computed. Values are the persisted enum."""

    CPU_SINGLE = 0
    CPU_MULTI = 1
    GPU = 2


@dataclass
class Root:
    """A root of the polynomial and the color of its basin."""

    value: complex = 0j
    color: Color = (0, 0, 0)

    def __post_init__(self):
        self.value = complex(self.value)
        self.color = tuple(int(c) for c in self.color)
        if len(self.color) != 3 or not all(0 <= c <= 255 for c in self.color):
            raise ValueError(f"Invalid root color: {self.color}")


def default_root_color(index: int) -> Color:
    """Color assigned to the root at ``index`` when none is given."""
    if 0 <= index < MAX_ROOTS:
        return ROOT_COLORS[index]
    return (0, 0, 0)


def equidistant_roots(count: int) -> List[Root]:
    """Place ``count`` roots evenly on the unit circle, starting at 1+0i."""
    return [
        Root(cmath.rect(1.0, 2.0 * math.pi * i / count), default_root_color(i))
        for i in range(count)
    ]


def roots_to_array(roots: Sequence[Any]) -> np.ndarray:
    """Pack root values (``Root`` or plain complex) into a complex128 array."""
    values = [r.value if isinstance(r, Root) else complex(r) for r in roots]
    return np.array(values, dtype=np.complex128).reshape(len(values))


@dataclass
class FractalParameters:
    """Everything a single Newton fractal render depends on."""

    roots: List[Root] = field(default_factory=lambda: equidistant_roots(DEFAULT_ROOT_COUNT))
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    damping: complex = DEFAULT_DAMPING
    size: PixelSize = DEFAULT_SIZE
    scale_down_factor: float = DEFAULT_SCALE_DOWN_FACTOR
    scale_down: bool = False
    processor: Processor = Processor.CPU_MULTI
    orbit_mode: bool = False
    orbit_start: Tuple[int, int] = (0, 0)
    benchmark: bool = False
    limits: Limits = field(default_factory=Limits)

    def __post_init__(self):
        self.damping = complex(self.damping)
        self.size = (int(self.size[0]), int(self.size[1]))
        self.orbit_start = (int(self.orbit_start[0]), int(self.orbit_start[1]))
        self.processor = Processor(self.processor)
        # The viewport is proportioned for the output size
        self.limits.size = self.size

    def validate(self) -> None:
        """Validate parameter values."""
        if self.max_iterations <= 0:
            raise ValueError("max_iterations must be positive")
        if self.size[0] <= 0 or self.size[1] <= 0:
            raise ValueError("Width and height must be positive")
        if not 0.0 < self.scale_down_factor <= 1.0:
            raise ValueError("scale_down_factor must be in (0, 1]")
        if len(self.roots) > MAX_ROOTS:
            raise ValueError(f"At most {MAX_ROOTS} roots are supported")
        self.limits.validate()

    @property
    def result_size(self) -> PixelSize:
        """Pixel size actually rendered, reduced while scaled down for interaction."""
        if self.scale_down and not self.benchmark:
            width = max(1, int(self.size[0] * self.scale_down_factor))
            height = max(1, int(self.size[1] * self.scale_down_factor))
            return (width, height)
        return self.size

    def resize(self, size: PixelSize) -> None:
        """Change the output size, re-proportioning the viewport."""
        self.limits.resize(size)
        self.size = (int(size[0]), int(size[1]))

    def reset(self) -> None:
        """Reset roots to equidistant positions and the viewport to its baseline."""
        self.roots = equidistant_roots(len(self.roots) or DEFAULT_ROOT_COUNT)
        self.limits.reset(self.size)

    def snapshot(self) -> 'FractalParameters':
        """Independent copy of these parameters for handing to the renderer."""
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        """Convert parameters to dictionary."""
        return {
            'roots': [(r.value, r.color) for r in self.roots],
            'max_iterations': self.max_iterations,
            'damping': self.damping,
            'size': self.size,
            'scale_down_factor': self.scale_down_factor,
            'scale_down': self.scale_down,
            'processor': int(self.processor),
            'orbit_mode': self.orbit_mode,
            'orbit_start': self.orbit_start,
            'benchmark': self.benchmark,
            'limits': self.limits.bounds,
        }


def clamp_roots(params: FractalParameters) -> FractalParameters:
    """Drop roots beyond what the renderer can color."""
    if len(params.roots) > MAX_ROOTS:
        logger.warning(f"Clamping {len(params.roots)} roots to the supported {MAX_ROOTS}")
        params.roots = params.roots[:MAX_ROOTS]
    return params
