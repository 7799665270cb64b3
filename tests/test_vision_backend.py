import math

import numpy as np
import pytest

from vision_backend import (BackendProvider, BufferScope, OpenCVBackend, SoftwareBackend, create_backend,
                            resolve_backend)


class ReleasableBuffer:
    def __init__(self):
        self.released = False

    def release(self):
        self.released = True


def test_buffer_scope_releases_on_exit():
    buffer = ReleasableBuffer()
    with BufferScope() as scope:
        assert scope.track(buffer) is buffer
        scope.track(np.zeros(3))
    assert buffer.released
    assert scope.released
    assert scope.acquired == 2


def test_buffer_scope_releases_when_body_raises():
    buffer = ReleasableBuffer()
    scope = BufferScope()
    with pytest.raises(RuntimeError):
        with scope:
            scope.track(buffer)
            raise RuntimeError("boom")
    assert buffer.released
    assert scope.released


def test_create_backend():
    assert isinstance(create_backend("opencv"), OpenCVBackend)
    assert isinstance(create_backend("SOFTWARE"), SoftwareBackend)
    with pytest.raises(ValueError):
        create_backend("gpu")


def test_backend_provider_is_lazy_and_cached():
    calls = []

    def factory():
        calls.append(1)
        return SoftwareBackend()

    provider = BackendProvider(factory=factory)
    assert calls == []
    first = provider.get()
    assert provider.get() is first
    assert calls == [1]
    assert resolve_backend(provider) is first


def test_resolve_backend_passes_instances_through(software_backend):
    assert resolve_backend(software_backend) is software_backend


def test_software_blur_keeps_constant_image(software_backend):
    image = np.full((20, 30), 100, dtype=np.uint8)
    assert (software_backend.gaussian_blur(image, 5) == 100).all()


def test_software_grayscale_matches_opencv(software_backend, opencv_backend):
    rng = np.random.default_rng(7)
    image = rng.integers(0, 256, size=(16, 16, 4), dtype=np.uint8)
    diff = software_backend.grayscale(image).astype(int) - opencv_backend.grayscale(image).astype(int)
    assert np.abs(diff).max() <= 1


def test_software_resize_shape(software_backend):
    image = np.zeros((40, 60, 4), dtype=np.uint8)
    assert software_backend.resize(image, 30, 20).shape == (20, 30, 4)
    assert software_backend.resize(image[:, :, 0], 90, 60).shape == (60, 90)


def test_software_close_fills_gap(software_backend):
    image = np.zeros((20, 20), dtype=np.uint8)
    image[10, 2:18] = 255
    image[10, 10] = 0
    closed = software_backend.morphology_close(image, (3, 3))
    assert closed[10, 10] == 255
    assert closed[0, 0] == 0
    assert closed[3, 10] == 0


def test_software_canny_thin_edge_on_step(software_backend):
    gray = np.zeros((40, 40), dtype=np.uint8)
    gray[:, 20:] = 200
    edges = software_backend.canny(gray, 50, 100)
    assert (edges[:, 19] == 255).all()
    assert not edges[:, 5].any()
    assert not edges[:, 35].any()


def test_software_hough_finds_vertical_line(software_backend):
    edges = np.zeros((60, 60), dtype=np.uint8)
    edges[:, 30] = 255
    lines = software_backend.hough_lines(edges, 1, math.pi / 180, 40)
    assert lines
    assert lines[0].theta == pytest.approx(0.0)
    assert lines[0].rho == pytest.approx(30.0)


def test_software_hough_on_empty_mask(software_backend):
    assert software_backend.hough_lines(np.zeros((10, 10), dtype=np.uint8), 1, math.pi / 180, 5) == []


def test_opencv_hough_returns_line_objects(opencv_backend):
    edges = np.zeros((60, 60), dtype=np.uint8)
    edges[:, 30] = 255
    lines = opencv_backend.hough_lines(edges, 1, math.pi / 180, 40)
    assert lines
    assert lines[0].rho == pytest.approx(30.0, abs=1)


@pytest.mark.parametrize("backend_cls", [OpenCVBackend, SoftwareBackend])
def test_adaptive_threshold_on_flat_image(backend_cls):
    gray = np.full((40, 40), 50, dtype=np.uint8)
    binary = backend_cls().adaptive_threshold(gray, 11, 10)
    assert (binary == 255).all()
