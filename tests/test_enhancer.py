import numpy as np
import pytest

from enhancer import ImageEnhancer
from vision_backend import OpenCVBackend


@pytest.fixture
def enhancer(opencv_backend):
    return ImageEnhancer(backend=opencv_backend)


def _levels(*values):
    image = np.zeros((1, len(values), 4), dtype=np.uint8)
    for i, value in enumerate(values):
        image[0, i] = (value, value, value, 128)
    return image


def test_contrast_and_brightness_defaults(enhancer):
    adjusted = enhancer.adjust_contrast_brightness(_levels(0, 100, 200, 255))
    assert adjusted[0, :, 0].tolist() == [0, 45, 205, 255]
    assert (adjusted[0, :, 3] == 128).all()


def test_neutral_contrast_is_identity(enhancer):
    image = _levels(0, 17, 128, 254)
    adjusted = enhancer.adjust_contrast_brightness(image, contrast=1.0, brightness=0)
    assert np.array_equal(adjusted, image)


def test_sharpen_leaves_flat_image_alone(enhancer):
    image = np.full((30, 30, 4), 120, dtype=np.uint8)
    image[:, :, 3] = 255
    assert np.array_equal(enhancer.sharpen(image), image)


def test_sharpen_increases_edge_contrast(enhancer):
    image = np.full((30, 30, 4), 100, dtype=np.uint8)
    image[:, 15:, :3] = 160
    image[:, :, 3] = 255
    sharpened = enhancer.sharpen(image)
    assert sharpened[10, 14, 0] < 100
    assert sharpened[10, 15, 0] > 160


def test_enhance_keeps_shape(enhancer, card_image):
    assert enhancer.enhance(card_image).shape == card_image.shape


def test_threshold_keeps_dark_strokes(enhancer):
    image = np.full((100, 100, 4), 255, dtype=np.uint8)
    image[48:51, 10:90, :3] = 30
    binary = enhancer.threshold_for_text(image)
    assert binary.shape == (100, 100, 4)
    assert (binary[49, 20:80, 0] == 0).all()
    assert (binary[5, :, 0] == 255).all()


def test_threshold_whitens_everything_above_global_gate(enhancer):
    image = np.full((50, 50, 4), 200, dtype=np.uint8)
    image[20:30, 20:30, :3] = 120
    binary = enhancer.threshold_for_text(image)
    assert (binary[:, :, :3] == 255).all()


def test_threshold_failure_returns_none(card_image):
    class BrokenBackend(OpenCVBackend):
        def adaptive_threshold(self, gray, block_size, c):
            raise RuntimeError("threshold unavailable")

    assert ImageEnhancer(backend=BrokenBackend()).threshold_for_text(card_image) is None
