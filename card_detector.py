"""
Card Detection Module
Locates the four corners of an ID card in a photo through a cascade of
strategies, from a traced card outline down to a centered guess
"""
import logging
from dataclasses import dataclass, replace
from typing import Callable, List, Optional, Tuple

import numpy as np

from config import Settings, settings
from contours import ComponentScorer, find_contours, label_components
from edge_detection import ColorSegmenter, SobelEdgeDetector
from errors import (Err, InvalidAreaError, InvalidAspectRatioError, LowConfidenceError,
                    NoQuadrilateralFoundError, Ok, Result, error_to_diagnostic, is_ok)
from geometry import (bounding_rect, convex_hull, is_convex, order_corners, polygon_area,
                      robust_sort_corners, simplify_contour)
from models import (BoundingRect, DetectionMethod, DetectionResult, ImageDimensions,
                    ImageOrientation, QuadCandidate)
from raster import ensure_rgba, mask_bounding_rect
from vision_backend import VisionBackend, resolve_backend

logger = logging.getLogger(__name__)


@dataclass
class DetectionState:
    """Masks shared by the strategies of one detect() call"""
    image: np.ndarray
    dimensions: ImageDimensions
    color_mask: np.ndarray
    edge_mask: np.ndarray


class CardDetector:
    """Interface shared by every detector"""

    name = "base"

    def detect(self, image: np.ndarray) -> DetectionResult:
        raise NotImplementedError


class CascadeCardDetector(CardDetector):
    """
    Runs the detection strategies in priority order; the first success wins
    and the centered fallback catches everything else, so detect() always
    returns a DetectionResult.
    """

    name = "cascade"

    def __init__(self, backend=None, config: Settings = None):
        self.config = config or settings
        self._backend = backend
        self.segmenter = ColorSegmenter(self.config)
        self.edge_detector = SobelEdgeDetector(self.config)
        self.component_scorer = ComponentScorer(self.config)

        self.card_aspect_ratio = self.config.CARD_ASPECT_RATIO
        self.aspect_ratio_range = (self.config.CARD_MIN_ASPECT_RATIO, self.config.CARD_MAX_ASPECT_RATIO)
        self.fallback_aspect_range = (self.config.FALLBACK_MIN_ASPECT_RATIO, self.config.FALLBACK_MAX_ASPECT_RATIO)

    @property
    def backend(self) -> VisionBackend:
        if not isinstance(self._backend, VisionBackend):
            self._backend = resolve_backend(self._backend)
        return self._backend

    def detect(self, image: np.ndarray) -> DetectionResult:
        state = self.analyze(image)
        logger.debug(f"Detecting card in {state.dimensions.width}x{state.dimensions.height} image")

        for name, strategy in self.strategies():
            try:
                outcome = strategy(state)
            except Exception as e:
                logger.error(f"{name} strategy failed: {str(e)}")
                continue

            if is_ok(outcome):
                result = outcome.value
                logger.info(f"Card detected by {result.method.value} (confidence {result.confidence:.1f})")
                return self._finalize(result)
            logger.debug(f"{name} strategy rejected: {error_to_diagnostic(outcome.error)}")

        logger.warning("All detection strategies failed, falling back to a centered crop")
        return self._finalize(self.centered_fallback(state))

    def analyze(self, image: np.ndarray) -> DetectionState:
        rgba = ensure_rgba(image)
        return DetectionState(
            image=rgba,
            dimensions=ImageDimensions.of(rgba),
            color_mask=self.segmenter.segment(rgba),
            edge_mask=self.edge_detector.detect(rgba).mask,
        )

    def strategies(self) -> List[Tuple[str, Callable[[DetectionState], Result]]]:
        return [
            ("quadrilateral", self.detect_quadrilateral),
            ("edge_boundary", self.detect_edge_boundary),
            ("connected_component", self.detect_connected_component),
            ("color_region", self.detect_color_region),
        ]

    def detect_quadrilateral(self, state: DetectionState) -> Result:
        raise NotImplementedError

    def score_confidence(self, aspect_ratio: float, coverage: float) -> float:
        """Blend of aspect-ratio match and how plausibly much of the photo the card fills"""
        ratio_score = 100 - abs(aspect_ratio - self.card_aspect_ratio) * self.config.CONFIDENCE_ASPECT_RATIO_WEIGHT
        if self.config.MIN_COVERAGE_RATIO < coverage < self.config.MAX_COVERAGE_RATIO:
            coverage_score = self.config.COVERAGE_SCORE_VALID
        else:
            coverage_score = self.config.COVERAGE_SCORE_INVALID
        return max(0.0, min(100.0, (ratio_score + coverage_score) / 2))

    def detect_edge_boundary(self, state: DetectionState) -> Result:
        """Padded bounding box of every edge and card-colored pixel"""
        union = (state.edge_mask > 0) | (state.color_mask > 0)
        rect = mask_bounding_rect(union)
        if rect is None:
            return Err(NoQuadrilateralFoundError(0, state.dimensions.width, state.dimensions.height))

        padding = self.config.EDGE_BOUNDARY_PADDING
        width, height = state.dimensions.width, state.dimensions.height
        left = max(0, rect.x - padding)
        top = max(0, rect.y - padding)
        right = min(width, rect.x + rect.width + padding)
        bottom = min(height, rect.y + rect.height + padding)
        padded = BoundingRect(left, top, right - left, bottom - top)

        aspect_ratio = padded.aspect_ratio
        min_aspect, max_aspect = self.fallback_aspect_range
        if not (min_aspect <= aspect_ratio <= max_aspect):
            return Err(InvalidAspectRatioError(aspect_ratio, self.card_aspect_ratio))

        return Ok(self._rect_result(padded, self.config.EDGE_BOUNDARY_CONFIDENCE,
                                    DetectionMethod.EDGE_BOUNDARY, state))

    def detect_connected_component(self, state: DetectionState) -> Result:
        """Best-scoring card-like region of the color mask"""
        components = label_components(state.color_mask, self.config.COMPONENT_MIN_PIXEL_COUNT)
        best = self.component_scorer.best(components, state.dimensions)
        if best is None:
            return Err(NoQuadrilateralFoundError(len(components), state.dimensions.width, state.dimensions.height))

        component, score = best
        confidence = round(score * self.config.COMPONENT_MAX_CONFIDENCE)
        logger.debug(f"Best component: {component.pixel_count} px, density {component.density:.2f}, score {score:.3f}")
        return Ok(self._rect_result(component.bounding_rect, confidence,
                                    DetectionMethod.CONNECTED_COMPONENT, state))

    def detect_color_region(self, state: DetectionState) -> Result:
        """Bounding box of all card-colored pixels, reshaped to the card ratio when needed"""
        rect = mask_bounding_rect(state.color_mask)
        if rect is None:
            return Err(NoQuadrilateralFoundError(0, state.dimensions.width, state.dimensions.height))

        min_aspect, max_aspect = self.aspect_ratio_range
        if min_aspect <= rect.aspect_ratio <= max_aspect:
            return Ok(self._rect_result(rect, self.config.COLOR_REGION_CONFIDENCE,
                                        DetectionMethod.COLOR_REGION, state))

        ys, xs = np.nonzero(state.color_mask)
        center_x, center_y = float(xs.mean()), float(ys.mean())
        if rect.aspect_ratio > self.card_aspect_ratio:
            height = rect.height
            width = height * self.card_aspect_ratio
        else:
            width = rect.width
            height = width / self.card_aspect_ratio

        if width < 2 or height < 2:
            return Err(InvalidAreaError(width * height, state.dimensions.area, too_small=True))

        x = max(0.0, min(center_x - width / 2, state.dimensions.width - width))
        y = max(0.0, min(center_y - height / 2, state.dimensions.height - height))
        resized = BoundingRect(x, y, width, height)
        return Ok(self._rect_result(resized, self.config.COLOR_REGION_RESIZED_CONFIDENCE,
                                    DetectionMethod.COLOR_REGION, state))

    def centered_fallback(self, state: DetectionState) -> DetectionResult:
        """Blind card-shaped guess in the middle of the photo; never a success"""
        width, height = state.dimensions.width, state.dimensions.height
        portrait = state.dimensions.orientation == ImageOrientation.PORTRAIT
        if self.config.ORIENTATION_AWARE_FALLBACK and portrait:
            crop_width = width * self.config.PORTRAIT_FALLBACK_WIDTH_FRACTION
            method = DetectionMethod.CENTER_CROP_PORTRAIT
        else:
            crop_width = min(width, height) * self.config.CENTER_FALLBACK_FRACTION
            method = DetectionMethod.CENTER_CROP

        crop_height = crop_width / self.card_aspect_ratio
        if crop_height > height:
            crop_height = float(height)
            crop_width = crop_height * self.card_aspect_ratio

        rect = BoundingRect((width - crop_width) / 2, (height - crop_height) / 2, crop_width, crop_height)
        return DetectionResult(
            success=False,
            corners=rect.corners(),
            bounding_rect=rect,
            confidence=self.config.CENTER_FALLBACK_CONFIDENCE,
            method=method,
            image_dimensions=state.dimensions,
            detected_aspect_ratio=rect.aspect_ratio,
        )

    def _rect_result(self, rect: BoundingRect, confidence: float, method: DetectionMethod,
                     state: DetectionState) -> DetectionResult:
        return DetectionResult(
            success=True,
            corners=rect.corners(),
            bounding_rect=rect,
            confidence=confidence,
            method=method,
            image_dimensions=state.dimensions,
            detected_aspect_ratio=rect.aspect_ratio,
        )

    def _quad_result(self, candidate: QuadCandidate, method: DetectionMethod,
                     state: DetectionState) -> DetectionResult:
        return DetectionResult(
            success=True,
            corners=tuple(candidate.corners),
            bounding_rect=bounding_rect(candidate.corners),
            confidence=candidate.confidence,
            method=method,
            image_dimensions=state.dimensions,
            detected_aspect_ratio=candidate.aspect_ratio,
        )

    def _finalize(self, result: DetectionResult) -> DetectionResult:
        if len(result.corners) != 4:
            return result
        return replace(result, corners=robust_sort_corners(result.corners))


class SobelCardDetector(CascadeCardDetector):
    """Cascade whose first strategy fits a quad to the hull of traced Sobel contours"""

    name = "sobel"

    def detect_quadrilateral(self, state: DetectionState) -> Result:
        dimensions = state.dimensions
        image_area = dimensions.area
        contours = find_contours(state.edge_mask, self.config.CONTOUR_MIN_POINTS, self.config.CONTOUR_MAX_POINTS)

        best: Optional[QuadCandidate] = None
        area_rejections: List[InvalidAreaError] = []
        other_rejections = 0
        for contour in contours:
            hull = convex_hull(simplify_contour(contour, self.config.CONTOUR_SIMPLIFICATION_STRIDE))
            if len(hull) < 4:
                other_rejections += 1
                continue

            corners = order_corners(hull)
            if not is_convex(corners):
                other_rejections += 1
                continue

            area = polygon_area(corners)
            coverage = area / image_area
            if coverage < self.config.QUAD_MIN_AREA_RATIO:
                area_rejections.append(InvalidAreaError(area, image_area, too_small=True))
                continue
            if coverage > self.config.QUAD_MAX_AREA_RATIO:
                area_rejections.append(InvalidAreaError(area, image_area, too_small=False))
                continue

            aspect_ratio = bounding_rect(corners).aspect_ratio
            candidate = QuadCandidate(corners, area, aspect_ratio, self.score_confidence(aspect_ratio, coverage))
            if best is None or candidate.area > best.area:
                best = candidate

        if best is None:
            if area_rejections and not other_rejections:
                return Err(max(area_rejections, key=lambda e: e.details['area']))
            return Err(NoQuadrilateralFoundError(len(contours), dimensions.width, dimensions.height))

        min_aspect, max_aspect = self.aspect_ratio_range
        if not (min_aspect <= best.aspect_ratio <= max_aspect):
            return Err(InvalidAspectRatioError(best.aspect_ratio, self.card_aspect_ratio))
        if best.confidence < self.config.CONFIDENCE_MIN_THRESHOLD:
            return Err(LowConfidenceError(best.confidence, self.config.CONFIDENCE_MIN_THRESHOLD))

        logger.debug(f"Quadrilateral candidate: area {best.area:.0f}, aspect {best.aspect_ratio:.3f}")
        return Ok(self._quad_result(best, DetectionMethod.QUADRILATERAL, state))


def create_detector(method: str = None, backend=None, config: Settings = None) -> CardDetector:
    """Build the detector selected by DETECTION_METHOD ("sobel" or "canny")"""
    config = config or settings
    method = (method or config.DETECTION_METHOD).lower()
    if method == "sobel":
        return SobelCardDetector(backend=backend, config=config)
    if method in ("canny", "hough"):
        from hough_detector import HoughCardDetector
        return HoughCardDetector(backend=backend, config=config)
    raise ValueError(f"Unknown detection method '{method}'. Options: sobel, canny")
