import threading

import numpy as np
import pytest

from newton_fractal.acceleration import gpu_backend
from newton_fractal.acceleration.render_thread import (
    RenderFailure, RenderThread, RenderedFrame, RenderedOrbit, frames_per_second,
)
from newton_fractal.core.math_functions import IterationResult
from newton_fractal.core.parameters import FractalParameters, Processor


@pytest.fixture
def collected():
    frames, orbits, failures = [], [], []
    thread = RenderThread(on_frame_rendered=frames.append, on_orbit_rendered=orbits.append,
                          on_render_failed=failures.append, num_threads=2)
    yield thread, frames, orbits, failures
    thread.shutdown(timeout=30)


def test_renders_submitted_frame(collected, small_params):
    thread, frames, _, _ = collected
    thread.submit(small_params)
    assert thread.wait_until_idle(timeout=60)

    assert len(frames) == 1
    frame = frames[0]
    assert isinstance(frame, RenderedFrame)
    assert frame.image.shape == (30, 40, 3)
    assert frame.fps > 0
    assert frame.params == small_params
    assert frame.params is not small_params
    assert thread.frames_rendered == 1


def test_latest_submission_wins(collected, small_params):
    thread, frames, _, _ = collected
    for iterations in range(5, 25):
        small_params.max_iterations = iterations
        thread.submit(small_params)
    assert thread.wait_until_idle(timeout=60)

    assert 1 <= len(frames) <= 20
    assert frames[-1].params.max_iterations == 24
    assert not thread.pending


def test_submitting_keeps_caller_instance_free(collected, small_params):
    thread, frames, _, _ = collected
    thread.submit(small_params)
    small_params.max_iterations = 99
    assert thread.wait_until_idle(timeout=60)
    assert frames[-1].params.max_iterations == 20


def test_orbit_mode(collected):
    thread, frames, orbits, _ = collected
    params = FractalParameters(size=(100, 100), orbit_mode=True, orbit_start=(20, 30))
    thread.submit(params)
    assert thread.wait_until_idle(timeout=60)

    assert frames == []
    assert len(orbits) == 1
    assert isinstance(orbits[0], RenderedOrbit)
    assert orbits[0].points[0] == (20, 30)


def test_no_callbacks_after_shutdown(small_params):
    frames = []
    thread = RenderThread(on_frame_rendered=frames.append, num_threads=1)
    thread.submit(small_params)
    thread.shutdown(timeout=60)
    delivered = len(frames)

    assert not thread.is_running
    thread.submit(small_params)
    assert thread.wait_until_idle(timeout=1)
    assert len(frames) == delivered


def test_shutdown_before_start():
    thread = RenderThread()
    thread.shutdown()
    assert not thread.is_running


def test_callback_errors_do_not_stop_worker(small_params):
    frames = []

    def flaky(frame):
        frames.append(frame)
        if len(frames) == 1:
            raise RuntimeError("display went away")

    thread = RenderThread(on_frame_rendered=flaky, num_threads=1)
    try:
        thread.submit(small_params)
        assert thread.wait_until_idle(timeout=60)
        thread.submit(small_params)
        assert thread.wait_until_idle(timeout=60)
    finally:
        thread.shutdown(timeout=30)
    assert len(frames) == 2


def test_out_of_memory_is_reported(collected, small_params, monkeypatch):
    thread, frames, _, failures = collected

    def exhausted(params, aborted=None):
        raise MemoryError()

    monkeypatch.setattr(thread.accelerator, 'render', exhausted)
    thread.submit(small_params)
    assert thread.wait_until_idle(timeout=60)

    assert frames == []
    assert len(failures) == 1
    assert isinstance(failures[0], RenderFailure)
    assert isinstance(failures[0].error, MemoryError)


def test_unexpected_errors_are_reported(collected, small_params, monkeypatch):
    thread, frames, _, failures = collected

    def broken(params, aborted=None):
        raise RuntimeError("kernel failure")

    monkeypatch.setattr(thread.accelerator, 'render', broken)
    thread.submit(small_params)
    assert thread.wait_until_idle(timeout=60)
    assert isinstance(failures[0].error, RuntimeError)

    monkeypatch.undo()
    thread.submit(small_params)
    assert thread.wait_until_idle(timeout=60)
    assert len(frames) == 1


def test_benchmark_renders_continuously(small_params):
    frames = []
    enough = threading.Event()

    def on_frame(frame):
        frames.append(frame)
        if len(frames) >= 3:
            enough.set()

    small_params.benchmark = True
    thread = RenderThread(on_frame_rendered=on_frame, num_threads=2)
    thread.submit(small_params)
    try:
        assert enough.wait(timeout=60)
    finally:
        thread.shutdown(timeout=30)

    count = len(frames)
    assert all(f.params.benchmark for f in frames)
    assert not thread.is_running
    assert len(frames) == count


def test_frames_per_second():
    assert frames_per_second(0.5) == 2.0
    assert frames_per_second(0.0) == float('inf')


class GatedRender:
    """Wraps the scanline render so the first call blocks until released."""

    def __init__(self, render):
        self.render = render
        self.started = threading.Event()
        self.release = threading.Event()
        self.iterations = []

    def __call__(self, params, aborted=None):
        self.iterations.append(params.max_iterations)
        self.started.set()
        assert self.release.wait(timeout=60)
        return self.render(params, aborted=aborted)


def test_only_newest_submission_renders_after_busy_frame(collected, small_params, monkeypatch):
    thread, frames, _, _ = collected
    gate = GatedRender(thread.accelerator.render)
    monkeypatch.setattr(thread.accelerator, 'render', gate)

    small_params.max_iterations = 5
    thread.submit(small_params)
    assert gate.started.wait(timeout=60)

    for iterations in range(6, 16):
        small_params.max_iterations = iterations
        thread.submit(small_params)
        assert thread.pending

    gate.release.set()
    assert thread.wait_until_idle(timeout=60)

    assert gate.iterations == [5, 15]
    assert [f.params.max_iterations for f in frames] == [5, 15]


def test_gpu_frames_render_on_worker(collected, small_params, monkeypatch):
    thread, frames, _, _ = collected
    callers = []

    def fake_gpu(params):
        callers.append(threading.current_thread())
        width, height = params.result_size
        return np.zeros((height, width, 3), np.uint8), IterationResult.allocate(width, height), 1.0

    monkeypatch.setattr(thread.gpu, 'render', fake_gpu)
    small_params.processor = Processor.GPU
    thread.submit(small_params)
    assert thread.wait_until_idle(timeout=60)

    assert callers and callers[0] is not threading.current_thread()
    assert frames[-1].params.processor == Processor.GPU
    assert frames[-1].image.shape == (30, 40, 3)


def test_gpu_errors_are_reported(collected, small_params, monkeypatch):
    thread, frames, _, failures = collected

    def broken(params):
        raise RuntimeError("cudaErrorLaunchFailure")

    monkeypatch.setattr(thread.gpu, 'render', broken)
    small_params.processor = Processor.GPU
    thread.submit(small_params)
    assert thread.wait_until_idle(timeout=60)

    assert frames == []
    assert len(failures) == 1
    assert isinstance(failures[0].error, RuntimeError)
    assert failures[0].params.processor == Processor.GPU


def test_missing_gpu_is_reported_once(small_params, monkeypatch):
    reports, frames = [], []
    monkeypatch.setattr(gpu_backend, 'cp', None)
    thread = RenderThread(on_frame_rendered=frames.append,
                          on_gpu_unavailable=lambda: reports.append(True), num_threads=1)
    small_params.processor = Processor.GPU
    try:
        for _ in range(3):
            thread.submit(small_params)
            assert thread.wait_until_idle(timeout=60)
    finally:
        thread.shutdown(timeout=30)

    assert reports == [True]
    assert frames == []


def test_pool_closed_only_after_worker_exits(small_params, monkeypatch):
    thread = RenderThread(num_threads=1)
    gate = GatedRender(thread.accelerator.render)
    closes = []
    monkeypatch.setattr(thread.accelerator, 'render', gate)
    monkeypatch.setattr(thread.accelerator, 'close', lambda: closes.append(True))

    thread.submit(small_params)
    assert gate.started.wait(timeout=60)
    thread.shutdown(timeout=0.1)

    assert thread.is_running
    assert closes == []

    gate.release.set()
    thread._thread.join(timeout=60)
    assert not thread.is_running
    assert closes == [True]
