"""
Main Processing System - Orchestrates the card scanning workflow
load -> detect -> overlay -> warp/crop -> enhance -> OCR preprocessing
"""
import io
import logging
import os
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

import numpy as np
import pandas as pd
from PIL import Image, ImageOps

from card_detector import CardDetector, create_detector
from config import Settings, settings
from enhancer import ImageEnhancer
from errors import (Err, ImageLoadError, Ok, RenderSurfaceError, Result, UnexpectedError,
                    error_to_diagnostic, is_err, map_result, unwrap_or)
from models import (DetectionResult, ImageDimensions, PipelineResult, PipelineStageResult,
                    ProcessedCard, ProcessingOptions)
from ocr_extractor import CardTextExtractor, parse_card_text
from overlay import draw_detection_overlay
from perspective import simple_crop, warp_card
from raster import ensure_rgba
from vision_backend import BackendProvider, VisionBackend, resolve_backend

logger = logging.getLogger(__name__)

ImageSource = Union[str, Path, bytes, bytearray, np.ndarray]
IMAGE_EXTENSIONS = ('.jpg', '.jpeg', '.png', '.bmp', '.webp', '.tif', '.tiff')


def configure_logging(level: str = None, log_file: Optional[str] = None):
    """Root logging setup for command-line use"""
    level = level or settings.LOG_LEVEL
    root = logging.getLogger()
    if root.handlers:
        # Already configured by the host application
        root.setLevel(getattr(logging, level.upper()))
        return

    log_file = settings.LOG_FILE if log_file is None else log_file
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file) if log_file else logging.NullHandler(),
            logging.StreamHandler()
        ]
    )


class CardProcessingPipeline:
    """Runs every stage for one photo and records per-stage timing"""

    def __init__(self, detector: CardDetector = None, enhancer: ImageEnhancer = None,
                 text_extractor: CardTextExtractor = None, backend=None, config: Settings = None):
        self.config = config or settings
        # One lazily created backend shared by every stage
        self._backend = backend if backend is not None else BackendProvider(self.config.VISION_BACKEND)
        self.detector = detector or create_detector(backend=self._backend, config=self.config)
        self.enhancer = enhancer or ImageEnhancer(backend=self._backend, config=self.config)
        self.text_extractor = text_extractor

    @property
    def backend(self) -> VisionBackend:
        if not isinstance(self._backend, VisionBackend):
            self._backend = resolve_backend(self._backend)
        return self._backend

    @property
    def output_dimensions(self) -> ImageDimensions:
        width = self.config.OUTPUT_WIDTH
        return ImageDimensions(width, int(round(width / self.config.CARD_ASPECT_RATIO)))

    def process_image(self, source: ImageSource, options: ProcessingOptions = None) -> PipelineResult:
        """
        Process one photo
        A fallback detection still yields a processed card; only load and
        output-surface failures abort the run.
        """
        options = options or ProcessingOptions()
        stages: List[PipelineStageResult] = []
        started = time.perf_counter()

        loaded = self._run_stage(stages, "load_image", lambda: self.load_image(source))
        if not loaded.ok:
            return self._finish(stages, started, error=loaded.error)
        image = loaded.value

        prepared = self._run_stage(stages, "prepare_detection_image", lambda: Ok(self.prepare_detection_image(image)))
        if not prepared.ok:
            return self._finish(stages, started, error=prepared.error)
        working, scale_x, scale_y = prepared.value

        detected = self._run_stage(stages, "detect_card", lambda: Ok(self.detect_card(image, working, scale_x, scale_y)))
        if not detected.ok:
            return self._finish(stages, started, error=detected.error)
        detection: DetectionResult = detected.value
        stages[-1].details = {'method': detection.method.value, 'confidence': detection.confidence}

        overlay = self._run_stage(stages, "draw_overlay",
                                  lambda: Ok(draw_detection_overlay(image, detection, self.config)))
        if not overlay.ok:
            return self._finish(stages, started, error=overlay.error)

        cropped = self._run_stage(stages, "crop_and_warp", lambda: self.crop_and_warp(image, detection, options))
        if not cropped.ok:
            return self._finish(stages, started, error=cropped.error)
        card, warped = cropped.value

        if options.enable_enhancement:
            enhanced = self._run_stage(stages, "image_enhancement", lambda: Ok(self.enhancer.enhance(card)))
            if not enhanced.ok:
                return self._finish(stages, started, error=enhanced.error)
            card = enhanced.value

        processed = ProcessedCard(detection=detection, overlay=overlay.value, card=card, warped=warped)

        if options.enable_ocr_preprocessing:
            thresholded = self._run_stage(stages, "ocr_preprocessing",
                                          lambda: Ok(self.enhancer.threshold_for_text(card)))
            processed.thresholded = unwrap_or(thresholded, None)
            if processed.thresholded is None:
                logger.warning("OCR preprocessing produced no image, continuing without it")

        if options.enable_text_extraction and self.text_extractor is not None:
            extracted = self._run_stage(stages, "text_extraction",
                                        lambda: Ok(self.text_extractor.extract_text(
                                            processed.thresholded if processed.thresholded is not None else card)))
            if extracted.ok:
                processed.text = extracted.value
                processed.fields = parse_card_text(extracted.value)

        return self._finish(stages, started, processed=processed)

    def load_image(self, source: ImageSource) -> Result:
        """Decode a path, raw bytes or array into an RGBA buffer"""
        if isinstance(source, np.ndarray):
            try:
                return Ok(ensure_rgba(source))
            except ValueError as e:
                return Err(ImageLoadError("array", e))

        name = "bytes" if isinstance(source, (bytes, bytearray)) else str(source)
        try:
            stream = io.BytesIO(source) if isinstance(source, (bytes, bytearray)) else str(source)
            with Image.open(stream) as img:
                img = ImageOps.exif_transpose(img)
                rgba = np.array(img.convert("RGBA"))
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load image {name}: {str(e)}")
            return Err(ImageLoadError(name, e))

        if rgba.size == 0:
            return Err(ImageLoadError(name))
        logger.debug(f"Loaded {name}: {rgba.shape[1]}x{rgba.shape[0]}")
        return Ok(rgba)

    def prepare_detection_image(self, image: np.ndarray) -> Tuple[np.ndarray, float, float]:
        """Shrink tall photos to the detection height; returns the factors back to full size"""
        height, width = image.shape[:2]
        max_height = self.config.DETECTION_MAX_HEIGHT
        if height <= max_height:
            return image, 1.0, 1.0

        new_width = max(1, int(round(width * max_height / height)))
        working = self.backend.resize(image, new_width, max_height)
        return working, width / new_width, height / max_height

    def detect_card(self, image: np.ndarray, working: np.ndarray = None,
                    scale_x: float = 1.0, scale_y: float = 1.0) -> DetectionResult:
        """Detect on the working copy and map the corners back onto image"""
        if working is None:
            working, scale_x, scale_y = self.prepare_detection_image(image)
        detection = self.detector.detect(working)
        return detection.scaled(scale_x, scale_y, ImageDimensions.of(image))

    def crop_and_warp(self, image: np.ndarray, detection: DetectionResult,
                      options: ProcessingOptions) -> Result:
        """Ok((card raster at output size, whether it was perspective corrected))"""
        output = self.output_dimensions

        if not options.enable_crop:
            height, width = image.shape[:2]
            resized_height = max(1, int(round(output.width * height / width)))
            return Ok((self.backend.resize(image, output.width, resized_height), False))

        if detection.success:
            warped = warp_card(image, detection.corners)
            if warped.ok:
                raster, _ = warped.value
                return Ok((self.backend.resize(raster, output.width, output.height), True))
            if not warped.error.recoverable:
                return warped
            logger.warning(f"Warp failed, falling back to simple crop: {warped.error.message}")

        cropped = simple_crop(image, detection.bounding_rect, output, self.backend)
        return map_result(cropped, lambda raster: (raster, False))

    def _run_stage(self, stages: List[PipelineStageResult], name: str, fn: Callable[[], Result]) -> Result:
        started = time.perf_counter()
        try:
            outcome = fn()
        except Exception as e:
            logger.error(f"Stage {name} failed: {str(e)}")
            outcome = Err(UnexpectedError(name, e))

        duration_ms = (time.perf_counter() - started) * 1000
        failed = is_err(outcome)
        error = outcome.error.message if failed else None
        stages.append(PipelineStageResult(name, not failed, duration_ms, error))
        if failed:
            logger.debug(f"Stage {name} diagnostic: {error_to_diagnostic(outcome.error)}")
        return outcome

    def _finish(self, stages: List[PipelineStageResult], started: float,
                processed: ProcessedCard = None, error: Exception = None) -> PipelineResult:
        result = PipelineResult(
            success=error is None,
            stages=stages,
            total_duration_ms=(time.perf_counter() - started) * 1000,
            processed=processed,
            error=error,
        )
        if result.success:
            logger.info(f"Pipeline finished in {result.total_duration_ms:.1f}ms")
        else:
            logger.error(f"Pipeline aborted: {error}")
        return result


def save_processed_card(processed: ProcessedCard, output_dir: str, stem: str) -> Dict[str, str]:
    """Write overlay, card and thresholded images as PNG; returns the written paths"""
    os.makedirs(output_dir, exist_ok=True)
    images = {
        'overlay': processed.overlay,
        'card': processed.card,
        'threshold': processed.thresholded,
    }

    paths = {}
    for kind, raster in images.items():
        if raster is None:
            continue
        path = os.path.join(output_dir, f"{stem}_{kind}.png")
        try:
            Image.fromarray(raster).save(path)
        except (OSError, ValueError) as e:
            raise RenderSurfaceError(f"Could not write {path}: {e}", {'path': path}) from e
        paths[kind] = path
    return paths


class BatchProcessor:
    """Handles batch processing of a directory of photos"""

    def __init__(self, pipeline: CardProcessingPipeline):
        self.pipeline = pipeline

    def process_directory(self, directory_path: str, output_dir: str = None,
                          options: ProcessingOptions = None) -> List[Dict]:
        output_dir = output_dir or settings.OUTPUT_PATH
        image_files = sorted(
            str(path) for path in Path(directory_path).iterdir()
            if path.suffix.lower() in IMAGE_EXTENSIONS
        )
        if not image_files:
            logger.warning(f"No images found in {directory_path}")
            return []

        rows = []
        for i, image_file in enumerate(image_files):
            logger.info(f"Processing batch file {i+1}/{len(image_files)}: {image_file}")
            row = {'file': image_file}
            try:
                result = self.pipeline.process_image(image_file, options)
                row['success'] = result.success
                row['duration_ms'] = round(result.total_duration_ms, 1)
                if result.processed is not None:
                    detection = result.processed.detection
                    row.update({
                        'card_found': detection.success,
                        'method': detection.method.value,
                        'confidence': detection.confidence,
                        'warped': result.processed.warped,
                    })
                    row.update(save_processed_card(result.processed, output_dir, Path(image_file).stem))
                else:
                    row['error'] = str(result.error)
            except Exception as e:
                logger.error(f"Batch processing failed for {image_file}: {str(e)}")
                row.update({'success': False, 'error': str(e)})
            rows.append(row)
        return rows

    @staticmethod
    def export_report(rows: List[Dict], report_path: str) -> str:
        """Write the batch results as CSV"""
        Path(report_path).parent.mkdir(parents=True, exist_ok=True)
        df = pd.DataFrame(rows)
        df.to_csv(report_path, index=False, encoding='utf-8')
        logger.info(f"Batch report written to {report_path}")
        return report_path