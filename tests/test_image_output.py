from datetime import datetime

import numpy as np
import pytest
from PIL import Image

from newton_fractal import __version__
from newton_fractal.core.parameters import FractalParameters
from newton_fractal.rendering.image_output import (
    ImageExporter, RenderMetadata, default_export_name, draw_orbit,
)


@pytest.fixture
def image():
    array = np.zeros((30, 40, 3), dtype=np.uint8)
    array[:, :20] = (255, 0, 0)
    return array


def test_png_round_trip_with_metadata(tmp_path, image):
    params = FractalParameters(size=(40, 30))
    metadata = RenderMetadata.from_parameters(params, fps=12.5)
    exporter = ImageExporter()

    path = exporter.save_image(image, tmp_path / 'frame.png', metadata)
    with Image.open(path) as saved:
        assert saved.size == (40, 30)
        np.testing.assert_array_equal(np.asarray(saved.convert('RGB')), image)

    restored = exporter.extract_metadata_from_image(path)
    assert restored == metadata
    assert restored.software_version == __version__
    assert restored.roots[0] == '1.0,0.0 : #ff0000'


def test_jpeg_writes_companion_metadata(tmp_path, image):
    metadata = RenderMetadata.from_parameters(FractalParameters(size=(40, 30)))
    exporter = ImageExporter()
    path = exporter.save_image(image, tmp_path / 'frame.jpg', metadata)

    assert path.with_suffix('.json').exists()
    assert exporter.extract_metadata_from_image(path) == metadata


def test_save_without_metadata(tmp_path, image):
    exporter = ImageExporter()
    path = exporter.save_image(image, tmp_path / 'nested' / 'plain.png')
    assert path.exists()
    assert exporter.extract_metadata_from_image(path) is None


def test_rejects_unsupported_format_and_shape(tmp_path, image):
    exporter = ImageExporter()
    with pytest.raises(ValueError):
        exporter.save_image(image, tmp_path / 'frame.bmp')
    with pytest.raises(ValueError):
        exporter.save_image(image[..., 0], tmp_path / 'frame.png')


def test_default_export_name():
    params = FractalParameters(size=(800, 600))
    name = default_export_name(params, now=datetime(2024, 3, 5, 14, 7, 9))
    assert name == 'fractal_240305_140709_3roots_800x600.png'


def test_draw_orbit(image):
    points = [(5, 5), (30, 20)]
    drawn = draw_orbit(image, points, color=(255, 255, 255), radius=2)

    assert drawn.shape == image.shape
    assert tuple(drawn[5, 5]) == (255, 255, 255)
    assert tuple(drawn[20, 30]) == (255, 255, 255)
    assert (image != 255).any(axis=2).all()


def test_draw_single_point_orbit(image):
    drawn = draw_orbit(image, [(10, 10)], radius=1)
    assert (drawn[8:13, 8:13] == 255).all(axis=2).any()


def test_embedded_settings(tmp_path, image):
    exporter = ImageExporter()
    path = exporter.save_image(image, tmp_path / 'frame.png', settings='[Parameters]\nmaxIterations = 9\n')
    assert exporter.extract_settings_from_image(path) == '[Parameters]\nmaxIterations = 9\n'
    assert exporter.extract_metadata_from_image(path) is None
