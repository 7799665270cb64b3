"""Pytest configuration and shared fixtures for the ID card scanner.

Synthetic photos are drawn with numpy/OpenCV so every test runs without
sample files on disk.
"""
import logging
import sys
from pathlib import Path

import cv2
import numpy as np
import pytest

# Add the project root to Python path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from vision_backend import OpenCVBackend, SoftwareBackend  # noqa: E402

# Configure logging for tests
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler()]
)

# Disable some verbose loggers during testing
logging.getLogger('PIL').setLevel(logging.WARNING)


def _blank(width: int, height: int, value: int = 0) -> np.ndarray:
    image = np.full((height, width, 4), value, dtype=np.uint8)
    image[:, :, 3] = 255
    return image


@pytest.fixture
def blank_image():
    """Factory for an opaque RGBA image of a single gray level"""
    return _blank


@pytest.fixture
def card_image():
    """400x300 black photo with an axis-aligned light card at x 50..335, y 60..239"""
    image = _blank(400, 300)
    image[60:240, 50:336, :3] = 230
    return image


@pytest.fixture
def rotated_card_image():
    """900x600 photo with a 476x300 card rotated by 10 degrees around the center"""
    image = _blank(900, 600)
    box = cv2.boxPoints(((450.0, 300.0), (476.0, 300.0), 10.0))
    cv2.fillConvexPoly(image, np.round(box).astype(np.int32), (230, 230, 230, 255))
    return image


@pytest.fixture
def hough_card_image():
    """800x500 photo with a 560x352 card, sized so the Canny search runs at full scale"""
    image = _blank(800, 500)
    image[74:427, 120:680, :3] = 240
    return image


@pytest.fixture
def opencv_backend():
    return OpenCVBackend()


@pytest.fixture
def software_backend():
    return SoftwareBackend()
