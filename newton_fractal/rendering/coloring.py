"""
Basin coloring for Newton fractals.

Each pixel takes the color of the root it converged to, darkened by the
number of iterations it needed. Pixels that did not converge to a known root
get the background color.
"""

import re
from typing import Sequence, Tuple
import logging

import numpy as np

from ..core.math_functions import IterationResult
from ..core.parameters import Color, Root

logger = logging.getLogger(__name__)

BACKGROUND_COLOR: Color = (0, 0, 0)

# Brightness after n iterations is 100 / (50 + DARKEN_STEP * (n - 1)) of the root color,
# so quick pixels are brightened and slow ones darkened, capped at full value
DARKEN_STEP = 10.0

_HEX_COLOR = re.compile(r'^#?([0-9a-fA-F]{2})([0-9a-fA-F]{2})([0-9a-fA-F]{2})$')


def parse_hex_color(text: str) -> Color:
    """Parse ``#rrggbb`` into an (r, g, b) tuple."""
    match = _HEX_COLOR.match(text.strip())
    if match is None:
        raise ValueError(f"Invalid color '{text}', expected #rrggbb")
    return tuple(int(part, 16) for part in match.groups())


def format_hex_color(color: Color) -> str:
    """Format an (r, g, b) tuple as ``#rrggbb``."""
    return '#{:02x}{:02x}{:02x}'.format(*color)


def shade_factor(iterations):
    """Brightness multiplier for an iteration count (scalar or array)."""
    steps = np.maximum(np.asarray(iterations, dtype=np.float64) - 1.0, 0.0)
    return 100.0 / (50.0 + DARKEN_STEP * steps)


def _cap_shade(base: np.ndarray, shade: np.ndarray) -> np.ndarray:
    """Limit brightening so the strongest channel saturates at 255, keeping the hue."""
    peak = base.max(axis=-1)
    limit = np.where(peak > 0, 255.0 / np.maximum(peak, 1.0), np.inf)
    return np.minimum(shade, limit)


def root_color(color: Color, iterations: int) -> Tuple[int, int, int]:
    """Shaded color of a single pixel that converged after ``iterations``."""
    base = np.asarray(color, dtype=np.float64)
    shade = _cap_shade(base, shade_factor(iterations))
    return tuple(int(c) for c in np.clip(base * shade, 0, 255))


def colorize(result: IterationResult, roots: Sequence[Root],
             background: Color = BACKGROUND_COLOR) -> np.ndarray:
    """
    Turn iteration results into an RGB raster.

    Args:
        result: Per-pixel root indices and iteration counts
        roots: Ordered roots whose colors paint their basins
        background: Color of pixels that matched no root

    Returns:
        uint8 array of shape (height, width, 3)
    """
    # Index -1 (no root) selects the trailing background entry
    palette = np.array([root.color for root in roots] + [background], dtype=np.float64)
    base = palette[result.root_index]

    shade = _cap_shade(base, shade_factor(result.iterations))
    shade = np.where(result.converged, shade, 1.0)

    return np.clip(base * shade[..., np.newaxis], 0, 255).astype(np.uint8)
