"""
Raster and mask primitives
RGBA buffers are uint8 arrays of shape (height, width, 4); masks are uint8
arrays of shape (height, width) holding 0 or 255.
"""
from typing import Optional

import numpy as np

from models import BoundingRect

FOREGROUND = 255


def ensure_rgba(image: np.ndarray) -> np.ndarray:
    """Normalize gray, RGB or RGBA input to a contiguous RGBA uint8 buffer"""
    if image is None:
        raise ValueError("Image is empty")
    image = np.asarray(image)
    if image.dtype != np.uint8:
        image = np.clip(image, 0, 255).astype(np.uint8)

    if image.ndim == 2:
        alpha = np.full(image.shape, 255, dtype=np.uint8)
        return np.dstack([image, image, image, alpha])
    if image.ndim == 3 and image.shape[2] == 3:
        alpha = np.full(image.shape[:2], 255, dtype=np.uint8)
        return np.dstack([image, alpha])
    if image.ndim == 3 and image.shape[2] == 4:
        return np.ascontiguousarray(image)

    raise ValueError(f"Unsupported image shape: {image.shape}")


def average_grayscale(image: np.ndarray) -> np.ndarray:
    """Integer mean of the R, G and B channels"""
    rgb = image[:, :, :3].astype(np.uint16)
    return (rgb.sum(axis=2) // 3).astype(np.uint8)


def mask_bounding_rect(mask: np.ndarray) -> Optional[BoundingRect]:
    """Bounding box of foreground pixels, or None for an empty mask"""
    ys, xs = np.nonzero(mask)
    if len(xs) == 0:
        return None
    min_x, max_x = int(xs.min()), int(xs.max())
    min_y, max_y = int(ys.min()), int(ys.max())
    return BoundingRect(min_x, min_y, max_x - min_x + 1, max_y - min_y + 1)


def clamp_rect(rect: BoundingRect, width: int, height: int) -> BoundingRect:
    """Integer rect clipped to the image; may come back empty"""
    x0 = int(max(0, min(width, round(rect.x))))
    y0 = int(max(0, min(height, round(rect.y))))
    x1 = int(max(0, min(width, round(rect.x + rect.width))))
    y1 = int(max(0, min(height, round(rect.y + rect.height))))
    return BoundingRect(x0, y0, max(0, x1 - x0), max(0, y1 - y0))


def crop(image: np.ndarray, rect: BoundingRect) -> np.ndarray:
    height, width = image.shape[:2]
    box = clamp_rect(rect, width, height)
    x, y = int(box.x), int(box.y)
    return image[y:y + int(box.height), x:x + int(box.width)].copy()
