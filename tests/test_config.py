import pytest

from newton_fractal.core.math_functions import KernelConfig
from newton_fractal.core.parameters import FractalParameters, Processor, Root
from newton_fractal.io.config import (
    ConfigManager, EnvironmentConfig, format_root, parse_complex, parse_point, parse_root,
    parse_size,
)


@pytest.fixture
def customized():
    params = FractalParameters(
        roots=[Root(0.1 + 0.2j, (1, 2, 3)), Root(complex(-0.7, -1 / 3), (255, 255, 0))],
        max_iterations=77,
        damping=0.5 + 0.25j,
        size=(320, 200),
        scale_down_factor=0.25,
        scale_down=True,
        processor=Processor.CPU_SINGLE,
        orbit_mode=True,
        orbit_start=(10, 20),
    )
    params.limits.zoom(True, 0.3, 0.6)
    params.limits.move((13, -7), params.size)
    params.limits.set_zoom_factor(1.5)
    return params


def test_round_trip(customized):
    manager = ConfigManager()
    assert manager.loads(manager.dumps(customized)) == customized


def test_file_round_trip(tmp_path, customized):
    manager = ConfigManager()
    path = manager.save(customized, tmp_path / 'settings' / 'newton.ini')
    assert path.exists()
    assert manager.load(path) == customized


def test_written_layout(customized):
    text = ConfigManager().dumps(customized)
    assert '[Parameters]' in text
    assert 'maxIterations = 77' in text
    assert 'size = 320x200' in text
    assert 'processor = 0' in text
    assert 'scaleDown = true' in text
    assert '[Limits]' in text
    assert 'zoomFactor = 1.5' in text
    assert 'root1 = -0.7,-0.3333333333333333 : #ffff00' in text


def test_malformed_fields_fall_back_individually(customized):
    manager = ConfigManager()
    text = manager.dumps(customized)
    text = text.replace('maxIterations = 77', 'maxIterations = lots')
    text = text.replace('damping = 0.5,0.25', 'damping = half')

    params = manager.loads(text)
    assert params.max_iterations == 30
    assert params.damping == 1 + 0j
    assert params.size == (320, 200)
    assert params.orbit_start == (10, 20)
    assert params.roots == customized.roots
    assert params.limits == customized.limits


def test_missing_groups_use_defaults():
    params = ConfigManager().loads('[Parameters]\nmaxIterations = 12\n')
    defaults = FractalParameters()
    assert params.max_iterations == 12
    assert params.roots == defaults.roots
    assert params.limits.bounds == defaults.limits.bounds


def test_degenerate_bounds_reset_viewport(customized):
    manager = ConfigManager()
    text = manager.dumps(customized)
    lines = [line if not line.startswith('right =') else 'right = -100.0'
             for line in text.splitlines()]
    params = manager.loads('\n'.join(lines))

    params.limits.validate()
    assert params.limits.original == customized.limits.original
    assert params.limits.center == pytest.approx(0j)


def test_roots_are_ordered_and_bad_entries_skipped():
    text = (
        '[Roots]\n'
        'root2 = 0.0,1.0 : #0000ff\n'
        'root0 = 1.0,0.0 : #ff0000\n'
        'root1 = nonsense\n'
        'extra = 2.0,2.0 : #ffffff\n'
    )
    params = ConfigManager().loads(text)
    assert [r.value for r in params.roots] == [1 + 0j, 1j]


def test_duplicate_keys_keep_last_value():
    text = (
        '[Parameters]\n'
        'maxIterations = 5\n'
        'maxIterations = 6\n'
        '[Roots]\n'
        'root0 = 1.0,0.0 : #ff0000\n'
    )
    params = ConfigManager().loads(text)
    assert params.max_iterations == 6
    assert [r.value for r in params.roots] == [1 + 0j]
    assert params.roots[0].color == (255, 0, 0)


def test_invalid_parameters_are_not_written():
    with pytest.raises(ValueError):
        ConfigManager().dumps(FractalParameters(max_iterations=0))


def test_value_parsers():
    assert parse_complex('1.5,-2') == 1.5 - 2j
    assert parse_size('800x600') == (800, 600)
    assert parse_size('64X48') == (64, 48)
    assert parse_point('3,4') == (3, 4)
    root = Root(0.25 - 0.5j, (16, 32, 48))
    assert parse_root(format_root(root)) == root
    for bad in ('1.5', '1,2,3'):
        with pytest.raises(ValueError):
            parse_complex(bad)
    for bad in ('800', '0x600', 'axb'):
        with pytest.raises(ValueError):
            parse_size(bad)
    with pytest.raises(ValueError):
        parse_root('1.0,0.0')


def test_environment_overrides():
    environment = EnvironmentConfig({
        'NEWTON_FRACTAL_EPSILON': '1e-6',
        'NEWTON_FRACTAL_STEP': '1e-7',
        'NEWTON_FRACTAL_THREADS': '3',
    })
    assert environment.kernel_config() == KernelConfig(epsilon=1e-6, step=1e-7)
    assert environment.num_threads() == 3


def test_environment_ignores_invalid_values():
    environment = EnvironmentConfig({
        'NEWTON_FRACTAL_EPSILON': '-1',
        'NEWTON_FRACTAL_STEP': 'tiny',
        'NEWTON_FRACTAL_THREADS': '0',
    })
    assert environment.kernel_config() == KernelConfig()
    assert environment.num_threads() is None
    assert EnvironmentConfig({}).num_threads() is None
