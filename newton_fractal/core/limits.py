"""
Complex plane viewport and pixel coordinate mapping.

This module defines the region of the complex plane that is mapped onto the
output image, together with the pan, zoom and resize operations the
interactive front end drives it with.
"""

import numpy as np
from typing import Optional, Tuple
from dataclasses import dataclass, field
import logging

logger = logging.getLogger(__name__)

Bounds = Tuple[float, float, float, float]
PixelSize = Tuple[int, int]

DEFAULT_BOUNDS: Bounds = (-1.0, 1.0, -1.0, 1.0)  # left, right, top, bottom
DEFAULT_SIZE: PixelSize = (600, 600)
DEFAULT_ZOOM_FACTOR = 1.25


def _axis_to_plane(pixel: float, pixels: int, low: float, high: float) -> float:
    """Map a pixel index onto [low, high]; degenerate axes map to the center."""
    if pixels <= 1:
        return 0.5 * (low + high)
    return low + pixel * (high - low) / (pixels - 1)


def _plane_to_axis(value: float, pixels: int, low: float, high: float) -> float:
    """Inverse of :func:`_axis_to_plane`."""
    if pixels <= 1:
        return 0.0
    return (value - low) * (pixels - 1) / (high - low)


@dataclass
class Limits:
    """
    Viewport of the complex plane.

    ``left``/``right`` bound the real axis, ``top``/``bottom`` the imaginary
    axis as seen from pixel row 0 and the last pixel row respectively, so the
    invariant is ``right > left`` and ``bottom > top``. ``size`` is the pixel
    size the bounds are currently proportioned for and ``original`` the
    baseline bounds captured when the viewport was created.
    """

    left: float = DEFAULT_BOUNDS[0]
    right: float = DEFAULT_BOUNDS[1]
    top: float = DEFAULT_BOUNDS[2]
    bottom: float = DEFAULT_BOUNDS[3]
    zoom_factor: float = DEFAULT_ZOOM_FACTOR
    size: PixelSize = DEFAULT_SIZE
    original: Optional[Bounds] = field(default=None)

    def __post_init__(self):
        if self.original is None:
            self.original = self.bounds
        else:
            self.original = tuple(float(v) for v in self.original)
        self.size = (int(self.size[0]), int(self.size[1]))

    @property
    def bounds(self) -> Bounds:
        """Current bounds as (left, right, top, bottom)."""
        return (self.left, self.right, self.top, self.bottom)

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top

    @property
    def center(self) -> complex:
        return complex(0.5 * (self.left + self.right), 0.5 * (self.top + self.bottom))

    def validate(self) -> None:
        """Validate viewport bounds."""
        if not self.right > self.left or not self.bottom > self.top:
            raise ValueError(f"Degenerate viewport: {self.bounds}")
        if not self.zoom_factor > 1.0:
            raise ValueError("zoom_factor must be greater than 1")

    def set_zoom_factor(self, zoom_factor: float) -> None:
        if not zoom_factor > 1.0:
            raise ValueError("zoom_factor must be greater than 1")
        self.zoom_factor = float(zoom_factor)

    def point_to_complex(self, point: Tuple[float, float], size: PixelSize) -> complex:
        """
        Convert a pixel position to a complex number.

        Args:
            point: Pixel position (x, y)
            size: Pixel bounds (width, height) the position refers to

        Returns:
            Complex plane coordinate of the pixel
        """
        real = _axis_to_plane(point[0], size[0], self.left, self.right)
        imag = _axis_to_plane(point[1], size[1], self.top, self.bottom)
        return complex(real, imag)

    def complex_to_point(self, value: complex, size: PixelSize) -> Tuple[int, int]:
        """Convert a complex number to the nearest pixel position."""
        x = _plane_to_axis(value.real, size[0], self.left, self.right)
        y = _plane_to_axis(value.imag, size[1], self.top, self.bottom)
        return int(round(x)), int(round(y))

    def distance_to_complex(self, delta: Tuple[float, float], size: PixelSize) -> complex:
        """Convert a pixel distance to a distance in the complex plane."""
        dx = delta[0] * self.width / size[0] if size[0] > 0 else 0.0
        dy = delta[1] * self.height / size[1] if size[1] > 0 else 0.0
        return complex(dx, dy)

    def real_axis(self, width: int) -> np.ndarray:
        """Real coordinate of every pixel column."""
        if width <= 1:
            return np.full(max(width, 0), 0.5 * (self.left + self.right), dtype=np.float64)
        return self.left + np.arange(width, dtype=np.float64) * self.width / (width - 1)

    def imag_axis(self, height: int) -> np.ndarray:
        """Imaginary coordinate of every pixel row."""
        if height <= 1:
            return np.full(max(height, 0), 0.5 * (self.top + self.bottom), dtype=np.float64)
        return self.top + np.arange(height, dtype=np.float64) * self.height / (height - 1)

    def move(self, delta: Tuple[float, float], reference_size: PixelSize) -> None:
        """
        Pan the viewport.

        Args:
            delta: Pixel distance (dx, dy) to move the view by
            reference_size: Pixel size the distance was measured against
        """
        d = self.distance_to_complex(delta, reference_size)
        self.left += d.real
        self.right += d.real
        self.top += d.imag
        self.bottom += d.imag

    def zoom(self, zoom_in: bool, xw: float = 0.5, yw: float = 0.5) -> None:
        """
        Zoom around a fractional pixel position.

        Args:
            zoom_in: True to zoom in by ``zoom_factor``, False to zoom out
            xw: Horizontal focus in [0, 1]
            yw: Vertical focus in [0, 1]
        """
        xw = min(max(xw, 0.0), 1.0)
        yw = min(max(yw, 0.0), 1.0)
        scale = 1.0 / self.zoom_factor if zoom_in else self.zoom_factor

        focus_x = self.left + xw * self.width
        focus_y = self.top + yw * self.height
        width = self.width * scale
        height = self.height * scale

        self.left = focus_x - xw * width
        self.right = self.left + width
        self.top = focus_y - yw * height
        self.bottom = self.top + height

    def resize(self, size: PixelSize) -> None:
        """Re-proportion the bounds for a new pixel size, keeping scale and center."""
        width, height = int(size[0]), int(size[1])
        if width <= 0 or height <= 0:
            logger.debug(f"Ignoring resize to empty size {size}")
            return

        old_width, old_height = self.size
        units_x = self.width / max(old_width, 1)
        units_y = self.height / max(old_height, 1)
        self._recenter(self.center, units_x * width, units_y * height)
        self.size = (width, height)

    def reset(self, size: PixelSize) -> None:
        """Restore the baseline bounds, fitted to the given pixel size."""
        left, right, top, bottom = self.original
        width, height = max(int(size[0]), 1), max(int(size[1]), 1)

        # Smallest scale at which the whole baseline region stays visible
        units = max((right - left) / width, (bottom - top) / height)
        center = complex(0.5 * (left + right), 0.5 * (top + bottom))
        self._recenter(center, units * width, units * height)
        self.size = (width, height)

    def _recenter(self, center: complex, width: float, height: float) -> None:
        self.left = center.real - 0.5 * width
        self.right = center.real + 0.5 * width
        self.top = center.imag - 0.5 * height
        self.bottom = center.imag + 0.5 * height
