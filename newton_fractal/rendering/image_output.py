"""
Image export for rendered Newton fractals.

Frames are written with Pillow. PNG exports carry a JSON summary of the
render and the full settings file text as text chunks, so an exported image
can be turned back into the parameters that produced it. JPEG cannot hold
text chunks, so its summary goes to a ``.json`` file next to the image.
"""

import numpy as np
from typing import Any, Dict, List, Optional, Sequence, Tuple
from pathlib import Path
from dataclasses import dataclass, asdict
import json
import logging
from datetime import datetime

from PIL import Image, ImageDraw, PngImagePlugin

from ..core.parameters import FractalParameters
from .coloring import format_hex_color

logger = logging.getLogger(__name__)

ORBIT_COLOR = (255, 255, 255)

SUMMARY_KEY = 'FractalMetadata'
SETTINGS_KEY = 'FractalSettings'


@dataclass
class RenderMetadata:
    """Summary of a rendered frame."""

    roots: List[str]  # "re,im : #rrggbb"
    bounds: Tuple[float, float, float, float]  # left, right, top, bottom
    resolution: Tuple[int, int]  # width, height
    max_iterations: int
    damping: str
    processor: str

    fps: float = 0.0
    timestamp: str = ""
    software_version: str = ""

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = datetime.now().isoformat(timespec='seconds')

    @classmethod
    def from_parameters(cls, params: FractalParameters, fps: float = 0.0) -> 'RenderMetadata':
        from .. import __version__

        return cls(
            roots=[f"{r.value.real!r},{r.value.imag!r} : {format_hex_color(r.color)}"
                   for r in params.roots],
            bounds=params.limits.bounds,
            resolution=params.result_size,
            max_iterations=params.max_iterations,
            damping=f"{params.damping.real!r},{params.damping.imag!r}",
            processor=params.processor.name,
            fps=fps,
            software_version=__version__,
        )

    def to_json(self) -> str:
        return json.dumps(asdict(self), indent=2)

    @classmethod
    def from_json(cls, text: str) -> 'RenderMetadata':
        fields: Dict[str, Any] = json.loads(text)
        fields['bounds'] = tuple(fields['bounds'])
        fields['resolution'] = tuple(fields['resolution'])
        return cls(**fields)


def default_export_name(params: FractalParameters, now: Optional[datetime] = None) -> str:
    """File name a frame is exported under, e.g. fractal_240101_120000_3roots_600x600.png."""
    now = now or datetime.now()
    width, height = params.size
    return f"fractal_{now.strftime('%y%m%d_%H%M%S')}_{len(params.roots)}roots_{width}x{height}.png"


def draw_orbit(image_array: np.ndarray, points: Sequence[Tuple[int, int]],
               color: Tuple[int, int, int] = ORBIT_COLOR, radius: int = 3) -> np.ndarray:
    """
    Draw an orbit as a polyline with a marker on every visited point.

    Args:
        image_array: RGB image array (height, width, 3), left untouched
        points: Orbit pixel positions in the image's pixel space
        color: Line and marker color
        radius: Marker radius in pixels

    Returns:
        New RGB image array with the orbit drawn on top
    """
    image = Image.fromarray(np.ascontiguousarray(image_array, dtype=np.uint8))
    draw = ImageDraw.Draw(image)

    if len(points) > 1:
        draw.line(list(points), fill=color, width=1)
    for x, y in points:
        draw.ellipse((x - radius, y - radius, x + radius, y + radius), outline=color)

    return np.asarray(image)


class ImageExporter:
    """Writes frames to PNG or JPEG and reads their embedded descriptions back."""

    def __init__(self):
        self.writers = {
            '.png': self._write_png,
            '.jpg': self._write_jpeg,
            '.jpeg': self._write_jpeg,
        }

    def save_image(self, image_array: np.ndarray, filepath: Path,
                   metadata: Optional[RenderMetadata] = None, settings: Optional[str] = None,
                   quality: int = 95) -> Path:
        """
        Write an RGB frame, choosing the format from the file suffix.

        Args:
            image_array: uint8 array of shape (height, width, 3)
            filepath: Destination, parent directories are created
            metadata: Render summary to embed
            settings: Settings file text to embed (PNG only)
            quality: JPEG quality (1-100)

        Returns:
            Path the image was written to

        Raises:
            ValueError: On an unknown suffix or a non-RGB array
        """
        filepath = Path(filepath)
        writer = self.writers.get(filepath.suffix.lower())
        if writer is None:
            raise ValueError(f"Cannot export '{filepath.suffix}' images, "
                             f"use one of {', '.join(self.writers)}")
        if image_array.ndim != 3 or image_array.shape[2] != 3:
            raise ValueError(f"Image must have shape (height, width, 3), got {image_array.shape}")

        image = Image.fromarray(np.ascontiguousarray(image_array, dtype=np.uint8))
        filepath.parent.mkdir(parents=True, exist_ok=True)
        writer(image, filepath, metadata, settings, quality)

        logger.info(f"Exported {image.size[0]}x{image.size[1]} image: {filepath}")
        return filepath

    def _write_png(self, image: Image.Image, filepath: Path, metadata: Optional[RenderMetadata],
                   settings: Optional[str], quality: int) -> None:
        chunks = PngImagePlugin.PngInfo()
        if metadata:
            chunks.add_text("Title", f"Newton fractal ({len(metadata.roots)} roots)")
            chunks.add_text("Software", f"newton-fractal {metadata.software_version}")
            chunks.add_text(SUMMARY_KEY, metadata.to_json())
        if settings:
            chunks.add_text(SETTINGS_KEY, settings)
        image.save(filepath, "PNG", pnginfo=chunks)

    def _write_jpeg(self, image: Image.Image, filepath: Path, metadata: Optional[RenderMetadata],
                    settings: Optional[str], quality: int) -> None:
        image.save(filepath, "JPEG", quality=quality)
        if metadata:
            sidecar = filepath.with_suffix('.json')
            sidecar.write_text(metadata.to_json(), encoding='utf-8')
            logger.debug(f"Wrote render summary: {sidecar}")

    def _text_chunks(self, filepath: Path) -> Dict[str, str]:
        with Image.open(filepath) as image:
            return dict(getattr(image, 'text', {}))

    def extract_metadata_from_image(self, filepath: Path) -> Optional[RenderMetadata]:
        """Read the render summary of an exported image, or None if it has none."""
        filepath = Path(filepath)
        summary = self._text_chunks(filepath).get(SUMMARY_KEY)
        if summary is not None:
            return RenderMetadata.from_json(summary)

        sidecar = filepath.with_suffix('.json')
        if filepath.suffix.lower() in ('.jpg', '.jpeg') and sidecar.exists():
            return RenderMetadata.from_json(sidecar.read_text(encoding='utf-8'))
        return None

    def extract_settings_from_image(self, filepath: Path) -> Optional[str]:
        """Settings file text embedded in an exported PNG, or None."""
        return self._text_chunks(Path(filepath)).get(SETTINGS_KEY)
