"""
Settings persistence and environment configuration.

Parameters are stored as INI files with three groups::

    [Parameters]
    size = 600x600
    maxIterations = 30
    damping = 1.0,0.0
    scaleDownFactor = 0.5
    scaleDown = false
    processor = 1
    orbitMode = false
    orbitStart = 0,0

    [Limits]
    left = -1.0
    ...
    original_left = -1.0
    ...

    [Roots]
    root0 = 1.0,0.0 : #ff0000

Fields that fail to parse fall back to their defaults individually, so a
damaged file still loads everything that is readable.
"""

import configparser
import io
import logging
import os
import re
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, TypeVar, Union

from ..core.limits import Limits
from ..core.math_functions import KernelConfig
from ..core.parameters import FractalParameters, Processor, Root
from ..rendering.coloring import format_hex_color, parse_hex_color
from ..rendering.image_output import ImageExporter

logger = logging.getLogger(__name__)

T = TypeVar('T')

PARAMETERS_GROUP = 'Parameters'
LIMITS_GROUP = 'Limits'
ROOTS_GROUP = 'Roots'

_ROOT_KEY = re.compile(r'^root(\d+)$')


def format_complex(value: complex) -> str:
    """Format a complex number as ``"re,im"`` with round-trip precision."""
    return f"{value.real!r},{value.imag!r}"


def parse_complex(text: str) -> complex:
    """Parse ``"re,im"`` into a complex number."""
    parts = text.split(',')
    if len(parts) != 2:
        raise ValueError(f"Invalid complex value '{text}', expected 're,im'")
    return complex(float(parts[0]), float(parts[1]))


def format_size(size: Tuple[int, int]) -> str:
    return f"{size[0]}x{size[1]}"


def parse_size(text: str) -> Tuple[int, int]:
    width, height = (int(part) for part in text.lower().split('x'))
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid size '{text}'")
    return width, height


def parse_point(text: str) -> Tuple[int, int]:
    x, y = (int(part) for part in text.split(','))
    return x, y


def parse_bool(text: str) -> bool:
    lowered = text.strip().lower()
    if lowered in ('true', '1', 'yes', 'on'):
        return True
    if lowered in ('false', '0', 'no', 'off'):
        return False
    raise ValueError(f"Invalid boolean '{text}'")


def format_root(root: Root) -> str:
    """Format a root as ``"re,im : #rrggbb"``."""
    return f"{format_complex(root.value)} : {format_hex_color(root.color)}"


def parse_root(text: str) -> Root:
    """Parse ``"re,im : #rrggbb"`` into a Root."""
    value, sep, color = text.partition(':')
    if not sep:
        raise ValueError(f"Invalid root '{text}', expected 're,im : #rrggbb'")
    return Root(parse_complex(value.strip()), parse_hex_color(color.strip()))


class ConfigManager:
    """Import and export of fractal parameters."""

    def to_config(self, params: FractalParameters) -> configparser.ConfigParser:
        """Build the INI representation of ``params``."""
        params.validate()
        config = _new_parser()
        limits = params.limits

        config[PARAMETERS_GROUP] = {
            'size': format_size(params.size),
            'maxIterations': str(params.max_iterations),
            'damping': format_complex(params.damping),
            'scaleDownFactor': repr(params.scale_down_factor),
            'scaleDown': _format_bool(params.scale_down),
            'processor': str(int(params.processor)),
            'orbitMode': _format_bool(params.orbit_mode),
            'orbitStart': f"{params.orbit_start[0]},{params.orbit_start[1]}",
        }

        original_left, original_right, original_top, original_bottom = limits.original
        config[LIMITS_GROUP] = {
            'left': repr(limits.left),
            'right': repr(limits.right),
            'top': repr(limits.top),
            'bottom': repr(limits.bottom),
            'zoomFactor': repr(limits.zoom_factor),
            'original_left': repr(original_left),
            'original_right': repr(original_right),
            'original_top': repr(original_top),
            'original_bottom': repr(original_bottom),
        }

        config[ROOTS_GROUP] = {f'root{i}': format_root(root) for i, root in enumerate(params.roots)}
        return config

    def from_config(self, config: configparser.ConfigParser) -> FractalParameters:
        """Rebuild parameters from an INI representation, field by field."""
        defaults = FractalParameters()
        group = _section(config, PARAMETERS_GROUP)
        size = _read(group, 'size', parse_size, defaults.size)

        params = FractalParameters(
            roots=self._read_roots(config, defaults.roots),
            max_iterations=_read(group, 'maxIterations', _positive_int, defaults.max_iterations),
            damping=_read(group, 'damping', parse_complex, defaults.damping),
            size=size,
            scale_down_factor=_read(group, 'scaleDownFactor', _unit_float, defaults.scale_down_factor),
            scale_down=_read(group, 'scaleDown', parse_bool, defaults.scale_down),
            processor=_read(group, 'processor', lambda text: Processor(int(text)), defaults.processor),
            orbit_mode=_read(group, 'orbitMode', parse_bool, defaults.orbit_mode),
            orbit_start=_read(group, 'orbitStart', parse_point, defaults.orbit_start),
            limits=self._read_limits(config, size),
        )
        return params

    def _read_limits(self, config: configparser.ConfigParser, size: Tuple[int, int]) -> Limits:
        group = _section(config, LIMITS_GROUP)
        fallback = Limits(size=size)
        fallback.reset(size)

        bounds = tuple(_read(group, key, float, None) for key in ('left', 'right', 'top', 'bottom'))
        original = tuple(_read(group, f'original_{key}', float, None)
                         for key in ('left', 'right', 'top', 'bottom'))
        zoom_factor = _read(group, 'zoomFactor', _zoom_factor, fallback.zoom_factor)

        if None in original or not _is_proper(original):
            if group is not None:
                logger.warning("Missing or degenerate original bounds, using defaults")
            original = fallback.original
        if None in bounds or not _is_proper(bounds):
            if group is not None:
                logger.warning("Missing or degenerate bounds, resetting viewport")
            limits = Limits(zoom_factor=zoom_factor, size=size, original=original)
            limits.reset(size)
            return limits

        left, right, top, bottom = bounds
        return Limits(left, right, top, bottom, zoom_factor=zoom_factor, size=size, original=original)

    def _read_roots(self, config: configparser.ConfigParser, default: List[Root]) -> List[Root]:
        group = _section(config, ROOTS_GROUP)
        if group is None:
            return default

        indexed = []
        for key, text in group.items():
            match = _ROOT_KEY.match(key)
            if match is None:
                logger.warning(f"Ignoring unknown key '{key}' in [{ROOTS_GROUP}]")
                continue
            try:
                indexed.append((int(match.group(1)), parse_root(text)))
            except ValueError as e:
                logger.warning(f"Skipping malformed {key}: {e}")
        return [root for _, root in sorted(indexed, key=lambda item: item[0])]

    def save(self, params: FractalParameters, filepath: Union[str, Path]) -> Path:
        """Export parameters to an INI file."""
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)
        with open(filepath, 'w', encoding='utf-8') as f:
            self.to_config(params).write(f)
        logger.info(f"Exported settings: {filepath}")
        return filepath

    def load(self, filepath: Union[str, Path]) -> FractalParameters:
        """Import parameters from an INI file, or from the settings embedded in an exported PNG."""
        filepath = Path(filepath)
        config = _new_parser()
        if filepath.suffix.lower() == '.png':
            text = ImageExporter().extract_settings_from_image(filepath)
            if text is None:
                raise ValueError(f"{filepath} has no embedded settings")
            config.read_string(text, source=str(filepath))
        else:
            with open(filepath, 'r', encoding='utf-8') as f:
                config.read_file(f)
        logger.info(f"Imported settings: {filepath}")
        return self.from_config(config)

    def dumps(self, params: FractalParameters) -> str:
        buffer = io.StringIO()
        self.to_config(params).write(buffer)
        return buffer.getvalue()

    def loads(self, text: str) -> FractalParameters:
        config = _new_parser()
        config.read_string(text)
        return self.from_config(config)


class EnvironmentConfig:
    """Kernel and threading overrides from environment variables."""

    EPSILON = 'NEWTON_FRACTAL_EPSILON'
    STEP = 'NEWTON_FRACTAL_STEP'
    THREADS = 'NEWTON_FRACTAL_THREADS'

    def __init__(self, environ: Optional[Dict[str, str]] = None):
        self.environ = os.environ if environ is None else environ

    def kernel_config(self) -> KernelConfig:
        """Kernel constants, with environment overrides applied."""
        defaults = KernelConfig()
        epsilon = self._get(self.EPSILON, _positive_float, defaults.epsilon)
        step = self._get(self.STEP, _positive_float, defaults.step)
        return KernelConfig(epsilon=epsilon, step=step)

    def num_threads(self) -> Optional[int]:
        """Render thread count, or None for one per CPU."""
        return self._get(self.THREADS, _positive_int, None)

    def _get(self, name: str, parse: Callable[[str], T], default: T) -> T:
        text = self.environ.get(name)
        if text is None or not text.strip():
            return default
        try:
            return parse(text)
        except ValueError:
            logger.warning(f"Ignoring invalid {name}={text!r}")
            return default


def _new_parser() -> configparser.ConfigParser:
    config = configparser.ConfigParser(interpolation=None, strict=False)
    config.optionxform = str
    return config


def _section(config: configparser.ConfigParser, name: str):
    if config.has_section(name):
        return config[name]
    logger.warning(f"Missing [{name}] group, using defaults")
    return None


def _read(group, key: str, parse: Callable[[str], T], default: T) -> T:
    if group is None:
        return default
    text = group.get(key)
    if text is None:
        logger.warning(f"Missing {key} in [{group.name}], using default {default!r}")
        return default
    try:
        return parse(text)
    except ValueError as e:
        logger.warning(f"Invalid {key}={text!r} in [{group.name}] ({e}), using default {default!r}")
        return default


def _format_bool(value: bool) -> str:
    return 'true' if value else 'false'


def _positive_int(text: str) -> int:
    value = int(text)
    if value <= 0:
        raise ValueError(f"{value} is not positive")
    return value


def _positive_float(text: str) -> float:
    value = float(text)
    if not value > 0:
        raise ValueError(f"{value} is not positive")
    return value


def _unit_float(text: str) -> float:
    value = float(text)
    if not 0.0 < value <= 1.0:
        raise ValueError(f"{value} is not in (0, 1]")
    return value


def _zoom_factor(text: str) -> float:
    value = float(text)
    if not value > 1.0:
        raise ValueError(f"{value} is not greater than 1")
    return value


def _is_proper(bounds) -> bool:
    left, right, top, bottom = bounds
    return right > left and bottom > top
