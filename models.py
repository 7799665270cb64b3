"""
Data models for the ID Card Scanner
Value types shared by the detection, warping and pipeline stages
"""
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np


@dataclass(frozen=True)
class Point:
    """Sub-pixel 2D coordinate"""
    x: float
    y: float

    def scaled(self, sx: float, sy: float) -> "Point":
        return Point(self.x * sx, self.y * sy)

    def distance_to(self, other: "Point") -> float:
        return math.hypot(self.x - other.x, self.y - other.y)


@dataclass(frozen=True)
class BoundingRect:
    """Axis-aligned box"""
    x: float
    y: float
    width: float
    height: float

    @classmethod
    def from_points(cls, points: Sequence[Point]) -> "BoundingRect":
        xs = [p.x for p in points]
        ys = [p.y for p in points]
        min_x, min_y = min(xs), min(ys)
        return cls(min_x, min_y, max(xs) - min_x, max(ys) - min_y)

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height if self.height > 0 else 0.0

    @property
    def center(self) -> Point:
        return Point(self.x + self.width / 2, self.y + self.height / 2)

    def corners(self) -> Tuple[Point, Point, Point, Point]:
        """Corners as (top-left, top-right, bottom-right, bottom-left)"""
        right = self.x + self.width
        bottom = self.y + self.height
        return (
            Point(self.x, self.y),
            Point(right, self.y),
            Point(right, bottom),
            Point(self.x, bottom),
        )

    def scaled(self, sx: float, sy: float) -> "BoundingRect":
        return BoundingRect(self.x * sx, self.y * sy, self.width * sx, self.height * sy)


class ImageOrientation(str, Enum):
    PORTRAIT = "portrait"
    LANDSCAPE = "landscape"
    SQUARE = "square"


@dataclass(frozen=True)
class ImageDimensions:
    width: int
    height: int

    @classmethod
    def of(cls, image: np.ndarray) -> "ImageDimensions":
        return cls(int(image.shape[1]), int(image.shape[0]))

    @property
    def area(self) -> int:
        return self.width * self.height

    @property
    def orientation(self) -> ImageOrientation:
        if self.height > self.width:
            return ImageOrientation.PORTRAIT
        if self.width > self.height:
            return ImageOrientation.LANDSCAPE
        return ImageOrientation.SQUARE


class DetectionMethod(str, Enum):
    """Which cascade strategy produced a detection"""
    QUADRILATERAL = "quadrilateral"
    HOUGH_QUADRILATERAL = "hough_quadrilateral"
    EDGE_BOUNDARY = "edge_boundary"
    CONNECTED_COMPONENT = "connected_component"
    COLOR_REGION = "color_region"
    CENTER_CROP = "center_crop"
    CENTER_CROP_PORTRAIT = "center_crop_portrait"

    @property
    def description(self) -> str:
        return _METHOD_DESCRIPTIONS[self]


_METHOD_DESCRIPTIONS = {
    DetectionMethod.QUADRILATERAL: "Card outline traced from edges",
    DetectionMethod.HOUGH_QUADRILATERAL: "Card outline built from straight edge lines",
    DetectionMethod.EDGE_BOUNDARY: "Bounding box of all detected edges",
    DetectionMethod.CONNECTED_COMPONENT: "Largest card-like colored region",
    DetectionMethod.COLOR_REGION: "Bounding box of card-colored pixels",
    DetectionMethod.CENTER_CROP: "Centered guess, no card found",
    DetectionMethod.CENTER_CROP_PORTRAIT: "Centered guess for a portrait photo, no card found",
}


@dataclass(frozen=True)
class ConnectedComponent:
    bounding_rect: BoundingRect
    pixel_count: int

    @property
    def density(self) -> float:
        area = self.bounding_rect.area
        return self.pixel_count / area if area > 0 else 0.0

    @property
    def aspect_ratio(self) -> float:
        return self.bounding_rect.aspect_ratio


@dataclass(frozen=True)
class QuadCandidate:
    """Four corners competing to be the card outline"""
    corners: Tuple[Point, ...]
    area: float
    aspect_ratio: float
    confidence: float


class LineCategory(str, Enum):
    HORIZONTAL = "horizontal"
    VERTICAL = "vertical"
    DIAGONAL = "diagonal"


@dataclass(frozen=True)
class HoughLine:
    """Line in normal form: x*cos(theta) + y*sin(theta) = rho"""
    rho: float
    theta: float


@dataclass(frozen=True)
class MergedLine:
    rho: float
    theta: float
    weight: int
    category: LineCategory


@dataclass(frozen=True)
class LineIntersection:
    point: Point
    line_indices: Tuple[int, int]


@dataclass(frozen=True)
class DetectionResult:
    """
    Terminal artifact of card detection.
    A result with success=False is a valid best-effort guess, not an error.
    """
    success: bool
    corners: Tuple[Point, ...]
    bounding_rect: BoundingRect
    confidence: float
    method: DetectionMethod
    image_dimensions: ImageDimensions
    detected_aspect_ratio: float

    def __post_init__(self):
        if len(self.corners) not in (0, 4):
            raise ValueError(f"Detection must have 0 or 4 corners, got {len(self.corners)}")
        if self.success:
            from geometry import is_convex

            if len(self.corners) != 4 or not is_convex(self.corners):
                raise ValueError("Successful detection requires a convex quadrilateral")

    def scaled(self, sx: float, sy: float, dimensions: ImageDimensions) -> "DetectionResult":
        """Map the detection into another resolution of the same image"""
        return DetectionResult(
            success=self.success,
            corners=tuple(p.scaled(sx, sy) for p in self.corners),
            bounding_rect=self.bounding_rect.scaled(sx, sy),
            confidence=self.confidence,
            method=self.method,
            image_dimensions=dimensions,
            detected_aspect_ratio=self.detected_aspect_ratio,
        )

    def to_dict(self) -> Dict:
        return {
            'success': self.success,
            'corners': [{'x': round(p.x, 2), 'y': round(p.y, 2)} for p in self.corners],
            'bounding_rect': {
                'x': round(self.bounding_rect.x, 2),
                'y': round(self.bounding_rect.y, 2),
                'width': round(self.bounding_rect.width, 2),
                'height': round(self.bounding_rect.height, 2),
            },
            'confidence': round(self.confidence, 1),
            'method': self.method.value,
            'method_description': self.method.description,
            'image_dimensions': {
                'width': self.image_dimensions.width,
                'height': self.image_dimensions.height,
            },
            'detected_aspect_ratio': round(self.detected_aspect_ratio, 3),
        }


@dataclass(frozen=True)
class Homography:
    """3x3 projective transform, row-major, last element fixed to 1"""
    matrix: Tuple[float, ...]

    def as_array(self) -> np.ndarray:
        return np.array(self.matrix, dtype=np.float64).reshape(3, 3)


@dataclass
class ProcessingOptions:
    enable_crop: bool = True
    enable_enhancement: bool = True
    enable_ocr_preprocessing: bool = True
    enable_text_extraction: bool = False


@dataclass
class PipelineStageResult:
    stage: str
    success: bool
    duration_ms: float
    error: Optional[str] = None
    details: Dict = field(default_factory=dict)


@dataclass
class ProcessedCard:
    """Everything the pipeline hands to its collaborators"""
    detection: DetectionResult
    overlay: np.ndarray
    card: np.ndarray
    thresholded: Optional[np.ndarray] = None
    warped: bool = False
    text: Optional[str] = None
    fields: Dict = field(default_factory=dict)


@dataclass
class PipelineResult:
    success: bool
    stages: List[PipelineStageResult]
    total_duration_ms: float
    processed: Optional[ProcessedCard] = None
    error: Optional[Exception] = None

    def summary(self) -> str:
        """Plain-text report of the pipeline run"""
        lines = [
            "=== Card Processing Summary ===",
            f"Status: {'SUCCESS' if self.success else 'FAILED'}",
            f"Total time: {self.total_duration_ms:.1f}ms",
            "",
            "Stages:",
        ]
        for stage in self.stages:
            marker = "OK " if stage.success else "ERR"
            line = f"  [{marker}] {stage.stage}: {stage.duration_ms:.1f}ms"
            if stage.error:
                line += f" ({stage.error})"
            lines.append(line)

        if self.processed is not None:
            detection = self.processed.detection
            lines.extend([
                "",
                f"Detection: {detection.method.description}",
                f"Confidence: {detection.confidence:.1f}%",
                f"Card found: {'yes' if detection.success else 'no (fallback guess)'}",
                f"Perspective corrected: {'yes' if self.processed.warped else 'no'}",
            ])
        if self.error is not None:
            lines.extend(["", f"Error: {self.error}"])
        return "\n".join(lines)
