"""
Card segmentation masks
Color classification plus the two edge detectors used by the cascade
"""
import logging
from dataclasses import dataclass

import numpy as np

from config import Settings, settings
from raster import FOREGROUND, average_grayscale, ensure_rgba
from vision_backend import BufferScope, VisionBackend

logger = logging.getLogger(__name__)


@dataclass
class EdgeMap:
    """Edge mask plus the factor it was scaled by relative to its input"""
    mask: np.ndarray
    scale: float = 1.0


class ColorSegmenter:
    """Marks bright, gold/yellow and blue pixels as card-colored"""

    def __init__(self, config: Settings = None):
        config = config or settings
        self.bright_min = config.BRIGHT_MIN_VALUE
        self.yellow_red_min = config.YELLOW_RED_MIN
        self.yellow_green_min = config.YELLOW_GREEN_MIN
        self.yellow_blue_max = config.YELLOW_BLUE_MAX
        self.blue_min = config.BLUE_BLUE_MIN

    def segment(self, image: np.ndarray) -> np.ndarray:
        rgba = ensure_rgba(image)
        r = rgba[:, :, 0].astype(np.int16)
        g = rgba[:, :, 1].astype(np.int16)
        b = rgba[:, :, 2].astype(np.int16)

        bright = (r > self.bright_min) & (g > self.bright_min) & (b > self.bright_min)
        yellow = (r > self.yellow_red_min) & (g > self.yellow_green_min) & (b < self.yellow_blue_max) & (r > b)
        blue = (b > self.blue_min) & (b > r) & (b > g)

        mask = (bright | yellow | blue).astype(np.uint8) * np.uint8(FOREGROUND)
        logger.debug(f"Color mask covers {np.count_nonzero(mask)} pixels")
        return mask


class SobelEdgeDetector:
    """Gradient-magnitude edge mask at full resolution"""

    def __init__(self, config: Settings = None):
        config = config or settings
        self.threshold = config.SOBEL_MAGNITUDE_THRESHOLD

    def detect(self, image: np.ndarray) -> EdgeMap:
        gray = average_grayscale(ensure_rgba(image)).astype(np.float64)
        mask = np.zeros(gray.shape, dtype=np.uint8)
        if gray.shape[0] < 3 or gray.shape[1] < 3:
            return EdgeMap(mask)

        # Neighborhood views for the interior pixels
        tl, tc, tr = gray[:-2, :-2], gray[:-2, 1:-1], gray[:-2, 2:]
        ml, mr = gray[1:-1, :-2], gray[1:-1, 2:]
        bl, bc, br = gray[2:, :-2], gray[2:, 1:-1], gray[2:, 2:]

        gx = (tr + 2 * mr + br) - (tl + 2 * ml + bl)
        gy = (bl + 2 * bc + br) - (tl + 2 * tc + tr)
        magnitude = np.sqrt(gx ** 2 + gy ** 2)

        mask[1:-1, 1:-1] = (magnitude > self.threshold).astype(np.uint8) * np.uint8(FOREGROUND)
        logger.debug(f"Sobel mask has {np.count_nonzero(mask)} edge pixels")
        return EdgeMap(mask)


class CannyEdgeDetector:
    """Downscale, blur, close and Canny through the vision backend"""

    def __init__(self, backend: VisionBackend, config: Settings = None):
        config = config or settings
        self.backend = backend
        self.target_height = config.CANNY_RESCALED_HEIGHT
        self.blur_kernel = config.CANNY_BLUR_KERNEL
        self.morph_kernel = config.CANNY_MORPH_KERNEL
        self.low_threshold = config.CANNY_THRESHOLD_LOW
        self.high_threshold = config.CANNY_THRESHOLD_HIGH

    def detect(self, image: np.ndarray, scope: BufferScope = None) -> EdgeMap:
        scope = scope or BufferScope()
        rgba = ensure_rgba(image)
        height, width = rgba.shape[:2]

        scale = self.target_height / height
        resized = scope.track(self.backend.resize(rgba, max(1, int(round(width * scale))), self.target_height))
        gray = scope.track(self.backend.grayscale(resized))
        blurred = scope.track(self.backend.gaussian_blur(gray, self.blur_kernel))
        closed = scope.track(self.backend.morphology_close(blurred, (self.morph_kernel, self.morph_kernel)))
        edges = self.backend.canny(closed, self.low_threshold, self.high_threshold)

        logger.debug(f"Canny mask at scale {scale:.3f} has {np.count_nonzero(edges)} edge pixels")
        return EdgeMap(edges, scale)
