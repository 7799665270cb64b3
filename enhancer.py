"""
Image enhancement for rectified cards
Sharpening and contrast for display, binarization for text recognition
"""
import logging
from typing import Optional

import numpy as np

from config import Settings, settings
from raster import ensure_rgba
from vision_backend import VisionBackend, resolve_backend

logger = logging.getLogger(__name__)


class ImageEnhancer:
    """Post-processing applied to the rectified card raster"""

    def __init__(self, backend=None, config: Settings = None):
        config = config or settings
        self._backend = backend
        self.contrast = config.ENHANCE_CONTRAST
        self.brightness = config.ENHANCE_BRIGHTNESS
        self.contrast_center = config.ENHANCE_CONTRAST_CENTER
        self.sharpen_kernel = config.SHARPEN_KERNEL_SIZE
        self.sharpen_intensity = config.SHARPEN_INTENSITY
        self.block_size = config.ADAPTIVE_THRESHOLD_BLOCK_SIZE
        self.threshold_c = config.ADAPTIVE_THRESHOLD_C
        self.global_threshold = config.OCR_GLOBAL_THRESHOLD

    @property
    def backend(self) -> VisionBackend:
        if not isinstance(self._backend, VisionBackend):
            self._backend = resolve_backend(self._backend)
        return self._backend

    def enhance(self, image: np.ndarray) -> np.ndarray:
        """Sharpen, then stretch contrast"""
        return self.adjust_contrast_brightness(self.sharpen(image))

    def sharpen(self, image: np.ndarray, intensity: float = None) -> np.ndarray:
        """Unsharp mask: original + intensity * (original - blurred), alpha kept"""
        intensity = self.sharpen_intensity if intensity is None else intensity
        rgba = ensure_rgba(image)
        blurred = self.backend.gaussian_blur(rgba, self.sharpen_kernel)

        original = rgba[:, :, :3].astype(np.float64)
        detail = original - blurred[:, :, :3].astype(np.float64)
        result = rgba.copy()
        result[:, :, :3] = np.clip(np.rint(original + intensity * detail), 0, 255).astype(np.uint8)
        return result

    def adjust_contrast_brightness(self, image: np.ndarray, contrast: float = None,
                                   brightness: float = None, center: float = None) -> np.ndarray:
        """(v - center) * contrast + center + brightness on RGB, clamped; alpha untouched"""
        contrast = self.contrast if contrast is None else contrast
        brightness = self.brightness if brightness is None else brightness
        center = self.contrast_center if center is None else center

        rgba = ensure_rgba(image)
        values = rgba[:, :, :3].astype(np.float64)
        adjusted = (values - center) * contrast + center + brightness
        result = rgba.copy()
        result[:, :, :3] = np.clip(np.rint(adjusted), 0, 255).astype(np.uint8)
        return result

    def threshold_for_text(self, image: np.ndarray) -> Optional[np.ndarray]:
        """
        Black text on white for OCR
        Local Gaussian thresholding finds the strokes; anything brighter than
        the global gate is forced to white to drop background texture.
        """
        try:
            gray = self.backend.grayscale(ensure_rgba(image))
            binary = self.backend.adaptive_threshold(gray, self.block_size, self.threshold_c)
            binary = binary.copy()
            binary[gray > self.global_threshold] = 255
            return ensure_rgba(binary)
        except Exception as e:
            logger.warning(f"Adaptive threshold failed: {str(e)}")
            return None
