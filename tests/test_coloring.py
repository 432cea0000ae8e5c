import numpy as np
import pytest

from newton_fractal.core.math_functions import IterationResult
from newton_fractal.core.parameters import Root
from newton_fractal.rendering.coloring import (
    BACKGROUND_COLOR, colorize, format_hex_color, parse_hex_color, root_color, shade_factor,
)


def test_hex_colors():
    assert parse_hex_color('#ff8000') == (255, 128, 0)
    assert parse_hex_color('00FF7f') == (0, 255, 127)
    assert format_hex_color((255, 128, 0)) == '#ff8000'
    with pytest.raises(ValueError):
        parse_hex_color('#ff80')


def test_shade_follows_iteration_count():
    assert shade_factor(1) == 2.0
    assert shade_factor(6) == 1.0
    assert shade_factor(16) == pytest.approx(0.5)
    assert shade_factor(5) > shade_factor(6)
    assert root_color((200, 100, 50), 16) == (100, 50, 25)
    assert root_color((50, 0, 0), 6) == (50, 0, 0)


def test_quick_pixels_brighten_up_to_full_value():
    assert root_color((100, 50, 0), 1) == (200, 100, 0)
    assert root_color((255, 100, 0), 1) == (255, 100, 0)
    assert root_color((0, 0, 0), 1) == (0, 0, 0)


def test_colorize():
    roots = [Root(1, (255, 0, 0)), Root(-1, (0, 200, 0))]
    result = IterationResult(
        np.array([[0, 1, -1]], dtype=np.int32),
        np.array([[1, 16, 30]], dtype=np.int32),
    )
    image = colorize(result, roots)

    assert image.dtype == np.uint8
    assert image.shape == (1, 3, 3)
    assert tuple(image[0, 0]) == (255, 0, 0)
    assert tuple(image[0, 1]) == (0, 100, 0)
    assert tuple(image[0, 2]) == BACKGROUND_COLOR


def test_colorize_custom_background():
    result = IterationResult.allocate(2, 2)
    image = colorize(result, [], background=(10, 20, 30))
    assert (image == np.array([10, 20, 30], dtype=np.uint8)).all()
