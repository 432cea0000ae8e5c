"""Shared fixtures for the Newton fractal tests."""

import pytest

from newton_fractal.core.limits import Limits
from newton_fractal.core.math_functions import KernelConfig
from newton_fractal.core.parameters import FractalParameters, Processor, Root


@pytest.fixture
def config():
    return KernelConfig()


@pytest.fixture
def small_params():
    """A small frame that renders quickly."""
    return FractalParameters(size=(40, 30), max_iterations=20)


@pytest.fixture
def three_roots():
    return [
        Root(complex(-1, 0), (255, 0, 0)),
        Root(complex(1, 0), (0, 255, 0)),
        Root(complex(0, 1), (0, 0, 255)),
    ]


@pytest.fixture
def single_threaded(small_params):
    small_params.processor = Processor.CPU_SINGLE
    return small_params


@pytest.fixture
def limits():
    return Limits(size=(600, 600))
