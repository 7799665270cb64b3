"""
Error kinds and result values for the ID Card Scanner
Expected failures travel as Err(...) values; only orchestration code raises.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Generic, Optional, TypeVar, Union

T = TypeVar("T")
U = TypeVar("U")
E = TypeVar("E")


class ErrorCode(str, Enum):
    IMAGE_LOAD_FAILED = "IMAGE_LOAD_FAILED"
    RENDER_SURFACE_ERROR = "RENDER_SURFACE_ERROR"
    NO_QUADRILATERAL_FOUND = "NO_QUADRILATERAL_FOUND"
    LOW_CONFIDENCE = "LOW_CONFIDENCE"
    INVALID_ASPECT_RATIO = "INVALID_ASPECT_RATIO"
    AREA_TOO_SMALL = "AREA_TOO_SMALL"
    AREA_TOO_LARGE = "AREA_TOO_LARGE"
    WARP_FAILED = "WARP_FAILED"
    SINGULAR_MATRIX = "SINGULAR_MATRIX"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class DetectionError(Exception):
    """Base class for every failure the scanner reports"""

    code = ErrorCode.UNKNOWN_ERROR
    recoverable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def user_message(self) -> str:
        return "Something went wrong while processing the image. Please try again."


class ImageLoadError(DetectionError):
    code = ErrorCode.IMAGE_LOAD_FAILED

    def __init__(self, source: str, cause: Optional[BaseException] = None):
        reason = f": {cause}" if cause else ""
        super().__init__(f"Failed to load image from {source}{reason}", {'source': source})
        self.cause = cause

    def user_message(self) -> str:
        return "Could not read the image. Please check the file and try again."


class RenderSurfaceError(DetectionError):
    """An output raster could not be allocated or encoded"""
    code = ErrorCode.RENDER_SURFACE_ERROR

    def user_message(self) -> str:
        return "Could not create the output image."


class NoQuadrilateralFoundError(DetectionError):
    code = ErrorCode.NO_QUADRILATERAL_FOUND
    recoverable = True

    def __init__(self, contours_found: int, width: int, height: int):
        super().__init__(
            f"No valid quadrilateral found among {contours_found} contours",
            {'contours_found': contours_found, 'width': width, 'height': height},
        )

    def user_message(self) -> str:
        return "No card outline was found. Place the card on a plain, contrasting background."


class LowConfidenceError(DetectionError):
    code = ErrorCode.LOW_CONFIDENCE
    recoverable = True

    def __init__(self, confidence: float, threshold: float):
        super().__init__(
            f"Detection confidence {confidence:.1f} is below threshold {threshold:.1f}",
            {'confidence': confidence, 'threshold': threshold},
        )

    def user_message(self) -> str:
        return "The card outline is unclear. Try better lighting or a steadier shot."


class InvalidAspectRatioError(DetectionError):
    code = ErrorCode.INVALID_ASPECT_RATIO
    recoverable = True

    def __init__(self, aspect_ratio: float, expected: float):
        super().__init__(
            f"Aspect ratio {aspect_ratio:.3f} does not match card ratio {expected:.3f}",
            {'aspect_ratio': aspect_ratio, 'expected': expected},
        )

    def user_message(self) -> str:
        return "The detected shape does not look like an ID card."


class InvalidAreaError(DetectionError):
    recoverable = True

    def __init__(self, area: float, image_area: float, too_small: bool):
        ratio = area / image_area if image_area else 0.0
        kind = "small" if too_small else "large"
        super().__init__(
            f"Card area too {kind}: {ratio:.1%} of the image",
            {'area': area, 'image_area': image_area, 'ratio': ratio},
        )
        self.code = ErrorCode.AREA_TOO_SMALL if too_small else ErrorCode.AREA_TOO_LARGE
        self.too_small = too_small

    def user_message(self) -> str:
        if self.too_small:
            return "The card is too small in the photo. Move the camera closer."
        return "The card fills the whole photo. Move the camera back a little."


class WarpFailedError(DetectionError):
    code = ErrorCode.WARP_FAILED
    recoverable = True

    def user_message(self) -> str:
        return "Perspective correction failed; the card was cropped instead."


class SingularMatrixError(DetectionError):
    code = ErrorCode.SINGULAR_MATRIX
    recoverable = True

    def __init__(self, message: str = "Matrix is singular", pivot: Optional[float] = None):
        super().__init__(message, {'pivot': pivot} if pivot is not None else None)

    def user_message(self) -> str:
        return "The card corners are degenerate; the card was cropped instead."


class UnexpectedError(DetectionError):
    """Wraps an exception that escaped a pipeline stage"""

    def __init__(self, stage: str, cause: BaseException):
        super().__init__(f"Unexpected error in {stage}: {cause}", {'stage': stage})
        self.cause = cause


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err(Generic[E]):
    error: E

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err[E]]


def is_ok(result: Result) -> bool:
    return isinstance(result, Ok)


def is_err(result: Result) -> bool:
    return isinstance(result, Err)


def unwrap(result: Result):
    """Return the value or raise the carried error"""
    if isinstance(result, Ok):
        return result.value
    raise result.error


def unwrap_or(result: Result, default):
    return result.value if isinstance(result, Ok) else default


def map_result(result: Result, fn: Callable[[T], U]) -> Result:
    return Ok(fn(result.value)) if isinstance(result, Ok) else result


def and_then(result: Result, fn: Callable[[T], Result]) -> Result:
    return fn(result.value) if isinstance(result, Ok) else result


def error_to_diagnostic(error: BaseException) -> Dict[str, Any]:
    """Flatten an error into a loggable dict"""
    if isinstance(error, DetectionError):
        return {
            'code': error.code.value,
            'message': error.message,
            'recoverable': error.recoverable,
            'details': dict(error.details),
        }
    return {
        'code': ErrorCode.UNKNOWN_ERROR.value,
        'message': str(error),
        'recoverable': False,
        'details': {'type': type(error).__name__},
    }
