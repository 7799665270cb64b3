"""
Configuration settings for the ID Card Scanner
"""
from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional

class Settings(BaseSettings):
    """Application settings with environment variable support"""

    # Card Geometry (ISO 7810 ID-1 is 85.60mm x 53.98mm)
    CARD_ASPECT_RATIO: float = 1.586
    CARD_MIN_ASPECT_RATIO: float = 1.28
    CARD_MAX_ASPECT_RATIO: float = 1.92
    OUTPUT_WIDTH: int = 600
    WARP_MIN_WIDTH: int = 400

    # Detection Selection
    DETECTION_METHOD: str = "sobel"  # Options: "sobel", "canny"
    VISION_BACKEND: str = "opencv"  # Options: "opencv", "software"
    DETECTION_MAX_HEIGHT: int = 512  # Working resolution for detection

    # Color Segmentation
    BRIGHT_MIN_VALUE: int = 100
    YELLOW_RED_MIN: int = 90
    YELLOW_GREEN_MIN: int = 70
    YELLOW_BLUE_MAX: int = 180
    BLUE_BLUE_MIN: int = 70

    # Sobel Edge Detection
    SOBEL_MAGNITUDE_THRESHOLD: float = 50.0

    # Contour Tracing
    CONTOUR_MIN_POINTS: int = 50
    CONTOUR_MAX_POINTS: int = 10000
    CONTOUR_SIMPLIFICATION_STRIDE: int = 2

    # Quadrilateral Fitting
    QUAD_MIN_AREA_RATIO: float = 0.1
    QUAD_MAX_AREA_RATIO: float = 0.95
    CONFIDENCE_MIN_THRESHOLD: float = 40.0
    CONFIDENCE_ASPECT_RATIO_WEIGHT: float = 30.0
    MIN_COVERAGE_RATIO: float = 0.05
    MAX_COVERAGE_RATIO: float = 0.9
    COVERAGE_SCORE_VALID: float = 90.0
    COVERAGE_SCORE_INVALID: float = 40.0

    # Edge Boundary Fallback
    EDGE_BOUNDARY_PADDING: int = 10
    EDGE_BOUNDARY_CONFIDENCE: float = 50.0
    FALLBACK_MIN_ASPECT_RATIO: float = 1.1
    FALLBACK_MAX_ASPECT_RATIO: float = 2.5

    # Connected Components
    COMPONENT_MIN_PIXEL_COUNT: int = 100
    COMPONENT_MIN_AREA_RATIO: float = 0.02
    COMPONENT_MAX_AREA_RATIO: float = 0.9
    COMPONENT_MIN_DENSITY: float = 0.4
    COMPONENT_ASPECT_WEIGHT: float = 0.4
    COMPONENT_SIZE_WEIGHT: float = 0.25
    COMPONENT_DENSITY_WEIGHT: float = 0.2
    COMPONENT_CENTER_WEIGHT: float = 0.15
    COMPONENT_MAX_CONFIDENCE: float = 70.0

    # Color Region / Centered Fallbacks
    COLOR_REGION_CONFIDENCE: float = 35.0
    COLOR_REGION_RESIZED_CONFIDENCE: float = 30.0
    CENTER_FALLBACK_FRACTION: float = 0.7
    PORTRAIT_FALLBACK_WIDTH_FRACTION: float = 0.9
    ORIENTATION_AWARE_FALLBACK: bool = True
    CENTER_FALLBACK_CONFIDENCE: float = 25.0

    # Canny / Hough Detection
    CANNY_RESCALED_HEIGHT: int = 500
    CANNY_BLUR_KERNEL: int = 3
    CANNY_MORPH_KERNEL: int = 10
    CANNY_THRESHOLD_LOW: int = 0
    CANNY_THRESHOLD_HIGH: int = 84
    HOUGH_RHO: float = 2.0
    HOUGH_THETA_DEGREES: float = 1.0
    HOUGH_THRESHOLDS: List[int] = [120, 110, 100, 90, 80, 75, 70, 60]
    HOUGH_MIN_LINES: int = 4
    HOUGH_MAX_LINES: int = 16
    LINE_CLASSIFICATION_TOLERANCE_DEGREES: float = 15.0
    LINE_MERGE_ANGLE_DEGREES: float = 5.0
    LINE_MERGE_DISTANCE: float = 15.0
    LINE_MERGE_DISTANCE_VERTICAL: float = 20.0
    MIN_INTERSECTION_ANGLE_DEGREES: float = 60.0
    MIN_CORNER_DISTANCE: float = 50.0
    HOUGH_MIN_AREA_RATIO: float = 0.2
    HOUGH_ASPECT_RATIO_WEIGHT: float = 40.0
    HOUGH_ANGLE_BONUS_WEIGHT: float = 0.2
    HOUGH_SUCCESS_CONFIDENCE: float = 85.0

    # Homography
    SINGULARITY_TOLERANCE: float = 1e-10

    # Image Enhancement
    ENHANCE_CONTRAST: float = 1.6
    ENHANCE_BRIGHTNESS: float = 5.0
    ENHANCE_CONTRAST_CENTER: float = 200.0
    SHARPEN_KERNEL_SIZE: int = 5
    SHARPEN_INTENSITY: float = 1.5

    # OCR Preprocessing
    ADAPTIVE_THRESHOLD_BLOCK_SIZE: int = 35
    ADAPTIVE_THRESHOLD_C: int = 10
    OCR_GLOBAL_THRESHOLD: int = 65

    # Diagnostic Overlay
    OVERLAY_MAX_PREVIEW_WIDTH: int = 1024
    OVERLAY_SUCCESS_COLOR: List[int] = [34, 197, 94]  # #22c55e
    OVERLAY_FAILURE_COLOR: List[int] = [239, 68, 68]  # #ef4444
    OVERLAY_FILL_ALPHA: float = 0.2
    OVERLAY_LINE_WIDTH: int = 8
    OVERLAY_CORNER_RADIUS: int = 6
    OVERLAY_DASH_PATTERN: List[int] = [10, 5]

    # OCR Configuration
    OCR_ENGINE: str = "tesseract"  # Options: "tesseract", "easyocr"
    OCR_LANGUAGE: str = "tha"

    # File Storage Paths
    OUTPUT_PATH: str = "./data/output"
    DEBUG_OUTPUT_PATH: str = "./debug_output"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = "./logs/card_scanner.log"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

# Create directories if they don't exist
def ensure_directories(settings: Settings):
    """Create necessary directories"""
    directories = [
        settings.OUTPUT_PATH,
        settings.DEBUG_OUTPUT_PATH,
    ]
    if settings.LOG_FILE:
        directories.append(str(Path(settings.LOG_FILE).parent))

    for directory in directories:
        Path(directory).mkdir(parents=True, exist_ok=True)

# Global settings instance
settings = Settings()
