#!/usr/bin/env python3
"""
Debug Tool for the ID Card Scanner
Dumps every intermediate mask and the Hough search state for one photo
"""
import math
import os
from pathlib import Path
from typing import Dict, List

import cv2
import numpy as np

from card_detector import SobelCardDetector
from config import settings
from errors import ImageLoadError, unwrap
from hough_detector import HoughQuadFinder
from main_processor import CardProcessingPipeline
from models import LineCategory, ProcessingOptions
from raster import ensure_rgba

LINE_COLORS = {
    LineCategory.HORIZONTAL: (0, 0, 255),
    LineCategory.VERTICAL: (255, 0, 0),
    LineCategory.DIAGONAL: (128, 128, 128),
}


def _to_bgr(image: np.ndarray) -> np.ndarray:
    rgba = ensure_rgba(image)
    return cv2.cvtColor(rgba, cv2.COLOR_RGBA2BGR)


def _line_endpoints(rho: float, theta: float, length: int):
    a, b = math.cos(theta), math.sin(theta)
    x0, y0 = a * rho, b * rho
    return ((int(x0 - length * b), int(y0 + length * a)),
            (int(x0 + length * b), int(y0 - length * a)))


class DebugTool:
    """Debug tool for diagnosing detection issues"""

    def __init__(self, backend=None):
        self.pipeline = CardProcessingPipeline(backend=backend)
        self.sobel_detector = SobelCardDetector(backend=backend)

    def debug_image(self, image_path: str, output_dir: str = None) -> Dict[str, str]:
        """Run the pipeline on one photo and save every intermediate image"""
        output_dir = output_dir or settings.DEBUG_OUTPUT_PATH
        print(f"[DEBUG] Debugging image: {image_path}")

        try:
            image = unwrap(self.pipeline.load_image(image_path))
        except ImageLoadError as e:
            print(f"[ERROR] Could not load image: {e.message}")
            return {}

        os.makedirs(output_dir, exist_ok=True)
        stem = Path(image_path).stem
        saved: Dict[str, str] = {}

        def save(kind: str, image: np.ndarray):
            path = os.path.join(output_dir, f"{stem}_{kind}.png")
            cv2.imwrite(path, image)
            saved[kind] = path
            print(f"   [SAVED] {os.path.basename(path)}")

        working, _, _ = self.pipeline.prepare_detection_image(image)
        print(f"   [INFO] Image size: {image.shape[1]}x{image.shape[0]}, "
              f"detection size: {working.shape[1]}x{working.shape[0]}")

        # Step 1: masks used by the cascade
        print("\n[MASK] Step 1: Segmentation")
        state = self.sobel_detector.analyze(working)
        print(f"   Color pixels: {np.count_nonzero(state.color_mask)}")
        print(f"   Sobel edge pixels: {np.count_nonzero(state.edge_mask)}")
        save("color_mask", state.color_mask)
        save("sobel_mask", state.edge_mask)

        # Step 2: Hough search
        print("\n[HOUGH] Step 2: Line search")
        finder = HoughQuadFinder(self.pipeline.backend)
        analysis = finder.extract_debug_data(working)
        print(f"   Lines: {len(analysis['lines'])}, merged: {len(analysis['merged_lines'])}")
        print(f"   Intersections: {len(analysis['intersections'])}, 4-cycles: {len(analysis['cycles'])}")
        print(f"   Candidates: {len(analysis['candidates'])}")
        save("canny_mask", analysis['edges'])
        save("hough_lines", self.draw_lines(analysis['edges'], analysis['merged_lines']))
        save("intersections", self.draw_intersections(analysis['edges'], analysis['intersections']))
        save("candidates", self.draw_candidates(analysis['edges'], analysis['candidates']))

        # Step 3: full pipeline
        print("\n[DETECT] Step 3: Pipeline")
        result = self.pipeline.process_image(image, ProcessingOptions())
        print(result.summary())
        if result.processed is not None:
            save("overlay", _to_bgr(result.processed.overlay))
            save("card", _to_bgr(result.processed.card))
            if result.processed.thresholded is not None:
                save("threshold", _to_bgr(result.processed.thresholded))

        return saved

    @staticmethod
    def draw_lines(edges: np.ndarray, lines) -> np.ndarray:
        canvas = cv2.cvtColor(edges, cv2.COLOR_GRAY2BGR)
        length = sum(edges.shape) * 2
        for line in lines:
            p1, p2 = _line_endpoints(line.rho, line.theta, length)
            cv2.line(canvas, p1, p2, LINE_COLORS[line.category], 1)
        return canvas

    @staticmethod
    def draw_intersections(edges: np.ndarray, intersections) -> np.ndarray:
        canvas = cv2.cvtColor(edges, cv2.COLOR_GRAY2BGR)
        for i, intersection in enumerate(intersections):
            center = (int(round(intersection.point.x)), int(round(intersection.point.y)))
            cv2.circle(canvas, center, 4, (0, 255, 255), -1)
            cv2.putText(canvas, str(i), (center[0] + 5, center[1] - 5),
                        cv2.FONT_HERSHEY_SIMPLEX, 0.4, (0, 255, 255), 1)
        return canvas

    @staticmethod
    def draw_candidates(edges: np.ndarray, candidates: List) -> np.ndarray:
        canvas = cv2.cvtColor(edges, cv2.COLOR_GRAY2BGR)
        ranked = sorted(candidates, key=lambda item: item[1], reverse=True)
        for rank, (candidate, _) in enumerate(ranked):
            polygon = np.array([[int(round(p.x)), int(round(p.y))] for p in candidate.corners], dtype=np.int32)
            color = (0, 255, 0) if rank == 0 else (0, 128, 255)
            cv2.polylines(canvas, [polygon], True, color, 2 if rank == 0 else 1)
        return canvas


if __name__ == "__main__":
    import sys

    if len(sys.argv) < 2:
        print("Usage: python debug_tool.py IMAGE [OUTPUT_DIR]")
        sys.exit(1)
    DebugTool().debug_image(sys.argv[1], sys.argv[2] if len(sys.argv) > 2 else None)
