"""
Contour tracing and connected-component labeling over binary masks
"""
import logging
import math
from collections import deque
from typing import List, Optional, Tuple

import numpy as np

from config import Settings, settings
from models import BoundingRect, ConnectedComponent, ImageDimensions, Point

logger = logging.getLogger(__name__)

EIGHT_NEIGHBORS = ((-1, -1), (0, -1), (1, -1), (-1, 0), (1, 0), (-1, 1), (0, 1), (1, 1))
FOUR_NEIGHBORS = ((1, 0), (-1, 0), (0, 1), (0, -1))


def find_contours(mask: np.ndarray, min_points: int = None, max_points: int = None) -> List[List[Point]]:
    """
    Trace 8-connected foreground regions with a stack-based flood fill
    Each trace stops at max_points so a noisy mask cannot run away; regions
    shorter than min_points are dropped.
    """
    min_points = settings.CONTOUR_MIN_POINTS if min_points is None else min_points
    max_points = settings.CONTOUR_MAX_POINTS if max_points is None else max_points
    height, width = mask.shape
    foreground = (mask.ravel() > 0).tolist()
    visited = bytearray(height * width)

    contours = []
    for start in np.flatnonzero(mask.ravel()).tolist():
        if visited[start]:
            continue
        contour = _trace(start, foreground, visited, width, height, max_points)
        if len(contour) >= min_points:
            contours.append(contour)

    logger.debug(f"Traced {len(contours)} contours")
    return contours


def _trace(start: int, foreground: List[bool], visited: bytearray, width: int, height: int,
           max_points: int) -> List[Point]:
    contour = []
    stack = [start]
    while stack and len(contour) < max_points:
        index = stack.pop()
        if visited[index]:
            continue
        visited[index] = 1
        y, x = divmod(index, width)
        contour.append(Point(x, y))

        for dx, dy in EIGHT_NEIGHBORS:
            nx, ny = x + dx, y + dy
            if 0 <= nx < width and 0 <= ny < height:
                neighbor = ny * width + nx
                if foreground[neighbor] and not visited[neighbor]:
                    stack.append(neighbor)
    return contour


def label_components(mask: np.ndarray, min_pixel_count: int = None) -> List[ConnectedComponent]:
    """4-connected BFS labeling; components under min_pixel_count are noise"""
    min_pixel_count = settings.COMPONENT_MIN_PIXEL_COUNT if min_pixel_count is None else min_pixel_count
    height, width = mask.shape
    foreground = (mask.ravel() > 0).tolist()
    labeled = bytearray(height * width)

    components = []
    for start in np.flatnonzero(mask.ravel()).tolist():
        if labeled[start]:
            continue
        labeled[start] = 1
        queue = deque([start])
        count = 0
        min_x, min_y = width, height
        max_x = max_y = -1

        while queue:
            index = queue.popleft()
            y, x = divmod(index, width)
            count += 1
            if x < min_x:
                min_x = x
            if x > max_x:
                max_x = x
            if y < min_y:
                min_y = y
            if y > max_y:
                max_y = y

            for dx, dy in FOUR_NEIGHBORS:
                nx, ny = x + dx, y + dy
                if 0 <= nx < width and 0 <= ny < height:
                    neighbor = ny * width + nx
                    if foreground[neighbor] and not labeled[neighbor]:
                        labeled[neighbor] = 1
                        queue.append(neighbor)

        if count >= min_pixel_count:
            rect = BoundingRect(min_x, min_y, max_x - min_x + 1, max_y - min_y + 1)
            components.append(ConnectedComponent(rect, count))

    logger.debug(f"Labeled {len(components)} components of at least {min_pixel_count} pixels")
    return components


class ComponentScorer:
    """Filters components to card-like ones and ranks them"""

    def __init__(self, config: Settings = None):
        config = config or settings
        self.card_aspect_ratio = config.CARD_ASPECT_RATIO
        self.min_aspect = config.FALLBACK_MIN_ASPECT_RATIO
        self.max_aspect = config.FALLBACK_MAX_ASPECT_RATIO
        self.min_area_ratio = config.COMPONENT_MIN_AREA_RATIO
        self.max_area_ratio = config.COMPONENT_MAX_AREA_RATIO
        self.min_density = config.COMPONENT_MIN_DENSITY
        self.weights = (
            config.COMPONENT_ASPECT_WEIGHT,
            config.COMPONENT_SIZE_WEIGHT,
            config.COMPONENT_DENSITY_WEIGHT,
            config.COMPONENT_CENTER_WEIGHT,
        )

    def filter(self, components: List[ConnectedComponent],
               dimensions: ImageDimensions) -> List[ConnectedComponent]:
        image_area = dimensions.area
        candidates = []
        for component in components:
            area_ratio = component.bounding_rect.area / image_area
            if not (self.min_area_ratio <= area_ratio <= self.max_area_ratio):
                continue
            if not (self.min_aspect <= component.aspect_ratio <= self.max_aspect):
                continue
            if component.density < self.min_density:
                continue
            candidates.append(component)
        return candidates

    def score(self, component: ConnectedComponent, dimensions: ImageDimensions) -> float:
        """Weighted 0..1 score from aspect match, size, density and centredness"""
        aspect_score = max(0.0, 1 - abs(component.aspect_ratio - self.card_aspect_ratio) / self.card_aspect_ratio)
        size_score = min(1.0, (component.bounding_rect.area / dimensions.area) / 0.5)
        density_score = min(1.0, component.density)

        center = component.bounding_rect.center
        half_diagonal = math.hypot(dimensions.width, dimensions.height) / 2
        offset = math.hypot(center.x - dimensions.width / 2, center.y - dimensions.height / 2)
        center_score = max(0.0, 1 - offset / half_diagonal)

        aspect_w, size_w, density_w, center_w = self.weights
        return (aspect_w * aspect_score + size_w * size_score
                + density_w * density_score + center_w * center_score)

    def best(self, components: List[ConnectedComponent],
             dimensions: ImageDimensions) -> Optional[Tuple[ConnectedComponent, float]]:
        candidates = self.filter(components, dimensions)
        if not candidates:
            return None
        scored = [(component, self.score(component, dimensions)) for component in candidates]
        return max(scored, key=lambda item: item[1])
