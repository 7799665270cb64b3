"""
Hough-line card detection
Straight card edges are found as Hough lines on a Canny mask; corners are
the intersections of those lines and the card is the best-scoring 4-cycle
of the intersection graph.
"""
import logging
import math
from typing import Dict, List, Optional, Set, Tuple

import numpy as np

from card_detector import CascadeCardDetector, DetectionState
from config import Settings, settings
from edge_detection import CannyEdgeDetector
from errors import Err, NoQuadrilateralFoundError, Ok, Result
from geometry import (corner_angle_score, is_convex, order_from_top_left, polygon_area,
                      quad_edge_lengths)
from models import (DetectionMethod, HoughLine, LineCategory, LineIntersection, MergedLine,
                    Point, QuadCandidate)
from vision_backend import BufferScope, VisionBackend

logger = logging.getLogger(__name__)


def angle_difference(theta1: float, theta2: float) -> float:
    """Smallest angle between two line directions, in [0, pi/2]"""
    diff = abs(theta1 - theta2) % math.pi
    return min(diff, math.pi - diff)


def canonical_cycle(cycle: List[int]) -> Tuple[int, ...]:
    """Same key for every rotation and reflection of a cycle"""
    start = cycle.index(min(cycle))
    rotated = cycle[start:] + cycle[:start]
    reflected = [rotated[0]] + rotated[1:][::-1]
    return min(tuple(rotated), tuple(reflected))


class HoughQuadFinder:
    """Finds the card quadrilateral from Hough lines of a Canny edge mask"""

    def __init__(self, backend: VisionBackend, config: Settings = None):
        self.config = config or settings
        self.backend = backend
        self.edge_detector = CannyEdgeDetector(backend, self.config)

        self.rho = self.config.HOUGH_RHO
        self.theta = math.radians(self.config.HOUGH_THETA_DEGREES)
        self.thresholds = sorted(self.config.HOUGH_THRESHOLDS, reverse=True)
        self.min_lines = self.config.HOUGH_MIN_LINES
        self.max_lines = self.config.HOUGH_MAX_LINES
        self.classification_tolerance = math.radians(self.config.LINE_CLASSIFICATION_TOLERANCE_DEGREES)
        self.merge_angle = math.radians(self.config.LINE_MERGE_ANGLE_DEGREES)
        self.min_intersection_angle = math.radians(self.config.MIN_INTERSECTION_ANGLE_DEGREES)
        self.min_corner_distance = self.config.MIN_CORNER_DISTANCE

    def find(self, image: np.ndarray, scope: BufferScope) -> Result:
        """Best quadrilateral in the coordinates of image"""
        analysis = self.analyze(image, scope)
        height, width = analysis['edges'].shape
        if not analysis['lines']:
            return Err(NoQuadrilateralFoundError(0, width, height))

        candidates = analysis['candidates']
        if not candidates:
            return Err(NoQuadrilateralFoundError(len(analysis['cycles']), width, height))

        best, score = max(candidates, key=lambda item: item[1])
        scale = analysis['scale']
        corners = tuple(Point(round(p.x / scale), round(p.y / scale)) for p in best.corners)
        logger.debug(f"Hough quadrilateral scored {score:.0f} from {len(candidates)} candidates")
        return Ok(QuadCandidate(
            corners=corners,
            area=best.area / (scale * scale),
            aspect_ratio=best.aspect_ratio,
            confidence=self.config.HOUGH_SUCCESS_CONFIDENCE,
        ))

    def analyze(self, image: np.ndarray, scope: BufferScope) -> Dict:
        """Every intermediate product of the search, at the Canny working scale"""
        edge_map = self.edge_detector.detect(image, scope)
        edges = scope.track(edge_map.mask)
        height, width = edges.shape

        lines = self.find_lines(edges)
        merged = self.merge_lines(lines)
        intersections = self.find_intersections(merged, width, height)
        cycles = self.find_four_cycles(self.build_graph(intersections))

        min_area = self.config.HOUGH_MIN_AREA_RATIO * width * height
        candidates = []
        for cycle in cycles:
            corners = [intersections[i].point for i in cycle]
            if not is_convex(corners):
                continue
            area = polygon_area(corners)
            if area < min_area:
                continue
            ordered = order_from_top_left(corners)
            score, aspect_ratio = self.score_candidate(ordered, area)
            if score > 0:
                candidates.append((QuadCandidate(tuple(ordered), area, aspect_ratio, score), score))

        return {
            'edges': edges,
            'scale': edge_map.scale,
            'lines': lines,
            'merged_lines': merged,
            'intersections': intersections,
            'cycles': cycles,
            'candidates': candidates,
        }

    def find_lines(self, edges: np.ndarray) -> List[HoughLine]:
        """
        Walk the vote thresholds from strictest to loosest and keep the first
        line set of usable size
        """
        fallback: List[HoughLine] = []
        for threshold in self.thresholds:
            lines = self.backend.hough_lines(edges, self.rho, self.theta, threshold)
            logger.debug(f"Hough threshold {threshold}: {len(lines)} lines")
            if len(lines) > self.max_lines:
                # Lower thresholds only add lines
                break
            if len(lines) >= self.min_lines:
                return lines
            if lines:
                fallback = lines
        return fallback

    def classify_line(self, line: HoughLine) -> LineCategory:
        theta = line.theta % math.pi
        if abs(theta - math.pi / 2) < self.classification_tolerance:
            return LineCategory.HORIZONTAL
        if theta < self.classification_tolerance or theta > math.pi - self.classification_tolerance:
            return LineCategory.VERTICAL
        return LineCategory.DIAGONAL

    @staticmethod
    def _normalize(line: HoughLine) -> HoughLine:
        """Fold theta near pi back to near 0 so vertical lines share one rho sign"""
        if line.theta > math.pi / 2 + math.pi / 4:
            return HoughLine(-line.rho, line.theta - math.pi)
        return line

    def merge_lines(self, lines: List[HoughLine]) -> List[MergedLine]:
        """Collapse near-duplicate lines into weighted clusters; diagonals are dropped"""
        merged: List[MergedLine] = []
        for category in (LineCategory.HORIZONTAL, LineCategory.VERTICAL):
            group = [self._normalize(line) for line in lines if self.classify_line(line) == category]
            tolerance = (self.config.LINE_MERGE_DISTANCE_VERTICAL if category == LineCategory.VERTICAL
                         else self.config.LINE_MERGE_DISTANCE)
            used: Set[int] = set()

            for i, line in enumerate(group):
                if i in used:
                    continue
                cluster = [line]
                used.add(i)
                for j in range(i + 1, len(group)):
                    if j in used:
                        continue
                    other = group[j]
                    if (angle_difference(line.theta, other.theta) < self.merge_angle
                            and abs(line.rho - other.rho) < tolerance):
                        cluster.append(other)
                        used.add(j)

                merged.append(MergedLine(
                    rho=sum(l.rho for l in cluster) / len(cluster),
                    theta=sum(l.theta for l in cluster) / len(cluster),
                    weight=len(cluster),
                    category=category,
                ))

        logger.debug(f"Merged {len(lines)} lines into {len(merged)}")
        return merged

    def find_intersections(self, lines: List[MergedLine], width: int, height: int) -> List[LineIntersection]:
        intersections: List[LineIntersection] = []
        for i in range(len(lines)):
            for j in range(i + 1, len(lines)):
                first, second = lines[i], lines[j]
                if angle_difference(first.theta, second.theta) < self.min_intersection_angle:
                    continue

                cos1, sin1 = math.cos(first.theta), math.sin(first.theta)
                cos2, sin2 = math.cos(second.theta), math.sin(second.theta)
                det = cos1 * sin2 - cos2 * sin1
                if abs(det) < self.config.SINGULARITY_TOLERANCE:
                    continue

                point = Point(
                    (first.rho * sin2 - second.rho * sin1) / det,
                    (cos1 * second.rho - cos2 * first.rho) / det,
                )
                if not (0 <= point.x < width and 0 <= point.y < height):
                    continue
                if any(point.distance_to(other.point) < self.min_corner_distance for other in intersections):
                    continue
                intersections.append(LineIntersection(point, (i, j)))
        return intersections

    @staticmethod
    def build_graph(intersections: List[LineIntersection]) -> Dict[int, Set[int]]:
        """Two intersections are adjacent when they lie on a common line"""
        graph: Dict[int, Set[int]] = {i: set() for i in range(len(intersections))}
        for i in range(len(intersections)):
            for j in range(i + 1, len(intersections)):
                if set(intersections[i].line_indices) & set(intersections[j].line_indices):
                    graph[i].add(j)
                    graph[j].add(i)
        return graph

    @staticmethod
    def find_four_cycles(graph: Dict[int, Set[int]]) -> List[Tuple[int, ...]]:
        found: Set[Tuple[int, ...]] = set()
        for start in graph:
            stack = [[start]]
            while stack:
                path = stack.pop()
                node = path[-1]
                if len(path) == 4:
                    if start in graph[node]:
                        found.add(canonical_cycle(path))
                    continue
                for neighbor in graph[node]:
                    if neighbor not in path:
                        stack.append(path + [neighbor])
        return sorted(found)

    def score_candidate(self, corners: List[Point], area: float) -> Tuple[float, float]:
        """Area weighted by card-ratio match and a bonus for right-angled corners"""
        top, right, bottom, left = quad_edge_lengths(corners)
        height = (left + right) / 2
        if height == 0:
            return 0.0, 0.0
        aspect_ratio = ((top + bottom) / 2) / height

        ratio_score = max(0.0, 100 - abs(aspect_ratio - self.config.CARD_ASPECT_RATIO)
                          * self.config.HOUGH_ASPECT_RATIO_WEIGHT)
        angle_score = corner_angle_score(corners)
        score = area * (ratio_score / 100) * (1 + angle_score / 100 * self.config.HOUGH_ANGLE_BONUS_WEIGHT)
        return score, aspect_ratio

    def extract_debug_data(self, image: np.ndarray) -> Dict:
        with self.backend.scope() as scope:
            return self.analyze(image, scope)


class HoughCardDetector(CascadeCardDetector):
    """Cascade whose first strategy is the Hough-line quadrilateral search"""

    name = "canny"

    def __init__(self, backend=None, config: Settings = None):
        super().__init__(backend=backend, config=config)
        self._finder: Optional[HoughQuadFinder] = None

    @property
    def finder(self) -> HoughQuadFinder:
        if self._finder is None:
            self._finder = HoughQuadFinder(self.backend, self.config)
        return self._finder

    def detect_quadrilateral(self, state: DetectionState) -> Result:
        with self.backend.scope() as scope:
            found = self.finder.find(state.image, scope)
        if not found.ok:
            return found
        return Ok(self._quad_result(found.value, DetectionMethod.HOUGH_QUADRILATERAL, state))
