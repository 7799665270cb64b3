"""
Diagnostic overlay drawn over the photo
A filled outline with corner markers for a detected card, a dashed red box
for a fallback guess
"""
import math
from typing import Sequence, Tuple

import cv2
import numpy as np

from config import Settings, settings
from models import DetectionResult, Point
from raster import ensure_rgba


def _color(rgb: Sequence[int]) -> Tuple[int, int, int, int]:
    return (int(rgb[0]), int(rgb[1]), int(rgb[2]), 255)


def _dashed_line(image: np.ndarray, start: Point, end: Point, color, thickness: int,
                 dash: int, gap: int):
    length = math.hypot(end.x - start.x, end.y - start.y)
    if length == 0:
        return
    ux, uy = (end.x - start.x) / length, (end.y - start.y) / length
    position = 0.0
    while position < length:
        stop = min(position + dash, length)
        p1 = (int(round(start.x + ux * position)), int(round(start.y + uy * position)))
        p2 = (int(round(start.x + ux * stop)), int(round(start.y + uy * stop)))
        cv2.line(image, p1, p2, color, thickness)
        position += dash + gap


def draw_detection_overlay(image: np.ndarray, detection: DetectionResult,
                           config: Settings = None) -> np.ndarray:
    """Overlay on a copy of image, shrunk to the preview width when wider"""
    config = config or settings
    canvas = ensure_rgba(image).copy()
    height, width = canvas.shape[:2]

    scale = 1.0
    if width > config.OVERLAY_MAX_PREVIEW_WIDTH:
        scale = config.OVERLAY_MAX_PREVIEW_WIDTH / width
        canvas = cv2.resize(canvas, (config.OVERLAY_MAX_PREVIEW_WIDTH, max(1, int(round(height * scale)))),
                            interpolation=cv2.INTER_AREA)

    thickness = max(1, int(round(config.OVERLAY_LINE_WIDTH * scale)))
    radius = max(2, int(round(config.OVERLAY_CORNER_RADIUS * scale)))

    if detection.success and len(detection.corners) == 4:
        color = _color(config.OVERLAY_SUCCESS_COLOR)
        polygon = np.array([[int(round(p.x * scale)), int(round(p.y * scale))] for p in detection.corners],
                           dtype=np.int32)

        fill = canvas.copy()
        cv2.fillPoly(fill, [polygon], color)
        canvas = cv2.addWeighted(fill, config.OVERLAY_FILL_ALPHA, canvas, 1 - config.OVERLAY_FILL_ALPHA, 0)
        cv2.polylines(canvas, [polygon], True, color, thickness)
        for x, y in polygon:
            cv2.circle(canvas, (int(x), int(y)), radius, color, -1)
    else:
        color = _color(config.OVERLAY_FAILURE_COLOR)
        dash, gap = config.OVERLAY_DASH_PATTERN
        corners = [p.scaled(scale, scale) for p in detection.bounding_rect.corners()]
        for i in range(4):
            _dashed_line(canvas, corners[i], corners[(i + 1) % 4], color, thickness,
                         max(1, int(round(dash * scale))), max(1, int(round(gap * scale))))

    return canvas
