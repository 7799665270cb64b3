"""
Perspective correction: homography solving and inverse-mapped warping
"""
import logging
from typing import List, Optional, Sequence

import numpy as np

from config import settings
from errors import (Err, Ok, RenderSurfaceError, Result, SingularMatrixError, WarpFailedError, and_then,
                    map_result)
from geometry import quad_edge_lengths, robust_sort_corners
from models import BoundingRect, Homography, ImageDimensions, Point
from raster import crop

logger = logging.getLogger(__name__)


def solve_linear_system(a: Sequence[Sequence[float]], b: Sequence[float],
                        tolerance: float = None) -> Result:
    """
    Solve a.x = b with Gaussian elimination and partial pivoting
    Returns Err(SingularMatrixError) when a pivot falls below the tolerance.
    """
    tolerance = settings.SINGULARITY_TOLERANCE if tolerance is None else tolerance
    n = len(b)
    m = np.hstack([np.array(a, dtype=np.float64), np.array(b, dtype=np.float64).reshape(n, 1)])

    for col in range(n):
        pivot_row = col + int(np.argmax(np.abs(m[col:, col])))
        pivot = m[pivot_row, col]
        if abs(pivot) < tolerance:
            return Err(SingularMatrixError(f"Pivot {pivot:.3e} in column {col} below tolerance", pivot))
        if pivot_row != col:
            m[[col, pivot_row]] = m[[pivot_row, col]]

        for row in range(col + 1, n):
            factor = m[row, col] / m[col, col]
            m[row, col:] -= factor * m[col, col:]

    x = np.zeros(n, dtype=np.float64)
    for row in range(n - 1, -1, -1):
        x[row] = (m[row, n] - np.dot(m[row, row + 1:n], x[row + 1:n])) / m[row, row]
    return Ok(x.tolist())


def get_perspective_transform(src: Sequence[Point], dst: Sequence[Point],
                              tolerance: float = None) -> Result:
    """Homography mapping the four src points onto the four dst points"""
    a: List[List[float]] = []
    b: List[float] = []
    for s, d in zip(src, dst):
        a.append([s.x, s.y, 1, 0, 0, 0, -s.x * d.x, -s.y * d.x])
        b.append(d.x)
        a.append([0, 0, 0, s.x, s.y, 1, -s.x * d.y, -s.y * d.y])
        b.append(d.y)

    solved = solve_linear_system(a, b, tolerance)
    if not solved.ok:
        return solved
    return Ok(Homography(tuple(solved.value) + (1.0,)))


def invert_homography(homography: Homography, tolerance: float = None) -> Result:
    tolerance = settings.SINGULARITY_TOLERANCE if tolerance is None else tolerance
    a, b, c, d, e, f, g, h, i = homography.matrix

    det = a * (e * i - f * h) - b * (d * i - f * g) + c * (d * h - e * g)
    if abs(det) < tolerance:
        return Err(SingularMatrixError(f"Homography determinant {det:.3e} below tolerance", det))

    inverse = (
        (e * i - f * h) / det, (c * h - b * i) / det, (b * f - c * e) / det,
        (f * g - d * i) / det, (a * i - c * g) / det, (c * d - a * f) / det,
        (d * h - e * g) / det, (b * g - a * h) / det, (a * e - b * d) / det,
    )
    return Ok(Homography(inverse))


def transform_point(homography: Homography, point: Point) -> Optional[Point]:
    """Apply a homography; None when the point maps to infinity"""
    m = homography.matrix
    w = m[6] * point.x + m[7] * point.y + m[8]
    if abs(w) < settings.SINGULARITY_TOLERANCE:
        return None
    return Point(
        (m[0] * point.x + m[1] * point.y + m[2]) / w,
        (m[3] * point.x + m[4] * point.y + m[5]) / w,
    )


def _bilinear_gather(image: np.ndarray, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
    """Bilinear samples for arrays of coordinates, float64 with one row per point"""
    height, width = image.shape[:2]
    pixels = image.reshape(height, width, -1).astype(np.float64)

    x0 = np.floor(xs).astype(np.intp)
    y0 = np.floor(ys).astype(np.intp)
    x1 = np.minimum(x0 + 1, width - 1)
    y1 = np.minimum(y0 + 1, height - 1)
    dx = (xs - x0)[:, None]
    dy = (ys - y0)[:, None]

    top = pixels[y0, x0] * (1 - dx) + pixels[y0, x1] * dx
    bottom = pixels[y1, x0] * (1 - dx) + pixels[y1, x1] * dx
    return top * (1 - dy) + bottom * dy


def bilinear_sample(image: np.ndarray, x: float, y: float) -> np.ndarray:
    """Per-channel value at a sub-pixel location"""
    return _bilinear_gather(image, np.array([x], dtype=np.float64), np.array([y], dtype=np.float64))[0]


def check_raster_size(dimensions: ImageDimensions) -> Result:
    if dimensions.width <= 0 or dimensions.height <= 0:
        return Err(RenderSurfaceError(
            f"Cannot allocate a {dimensions.width}x{dimensions.height} raster",
            {'width': dimensions.width, 'height': dimensions.height},
        ))
    return Ok(dimensions)


def allocate_raster(dimensions: ImageDimensions, channels: int = 4) -> Result:
    return map_result(check_raster_size(dimensions),
                      lambda size: np.zeros((size.height, size.width, channels), dtype=np.uint8))


def warp_perspective(image: np.ndarray, corners: Sequence[Point],
                     dimensions: ImageDimensions) -> Result:
    """
    Rectify the quad given by ordered corners [TL, TR, BR, BL] into a
    dimensions-sized raster. Every destination pixel is mapped back into the
    source and bilinearly sampled; pixels landing outside stay transparent.
    """
    allocated = allocate_raster(dimensions, image.shape[2] if image.ndim == 3 else 1)
    if not allocated.ok:
        return allocated
    output = allocated.value

    width, height = dimensions.width, dimensions.height
    target = (Point(0, 0), Point(width, 0), Point(width, height), Point(0, height))
    inverse = and_then(get_perspective_transform(corners, target), invert_homography)
    if not inverse.ok:
        return Err(WarpFailedError(f"Could not solve homography: {inverse.error.message}",
                                   {'cause': inverse.error.code.value}))

    m = inverse.value.as_array()
    xs, ys = np.meshgrid(np.arange(width, dtype=np.float64), np.arange(height, dtype=np.float64))
    denom = m[2, 0] * xs + m[2, 1] * ys + m[2, 2]
    finite = np.abs(denom) > settings.SINGULARITY_TOLERANCE
    safe = np.where(finite, denom, 1.0)
    src_x = (m[0, 0] * xs + m[0, 1] * ys + m[0, 2]) / safe
    src_y = (m[1, 0] * xs + m[1, 1] * ys + m[1, 2]) / safe

    src_h, src_w = image.shape[:2]
    inside = finite & (src_x >= 0) & (src_x < src_w - 1) & (src_y >= 0) & (src_y < src_h - 1)
    if not inside.any():
        return Err(WarpFailedError("Homography maps no output pixel inside the source image"))

    samples = _bilinear_gather(image, src_x[inside], src_y[inside])
    output[inside] = np.clip(np.rint(samples), 0, 255).astype(np.uint8)
    return Ok(output)


def card_warp_dimensions(corners: Sequence[Point], aspect_ratio: float = None,
                         min_width: int = None) -> ImageDimensions:
    """
    Output size for a rectified card
    Width is the longer of the top and bottom edges; height follows from the
    card aspect ratio instead of the measured, perspective-squashed height.
    """
    aspect_ratio = aspect_ratio or settings.CARD_ASPECT_RATIO
    min_width = settings.WARP_MIN_WIDTH if min_width is None else min_width
    top, _, bottom, _ = quad_edge_lengths(corners)
    width = max(int(round(max(top, bottom))), min_width)
    return ImageDimensions(width, int(round(width / aspect_ratio)))


def warp_card(image: np.ndarray, corners: Sequence[Point]) -> Result:
    """Order corners, size the output and warp; Ok((raster, dimensions))"""
    ordered = robust_sort_corners(corners)
    dimensions = card_warp_dimensions(ordered)
    logger.debug(f"Warping card to {dimensions.width}x{dimensions.height}")
    warped = warp_perspective(image, ordered, dimensions)
    if not warped.ok:
        return warped
    return Ok((warped.value, dimensions))


def simple_crop(image: np.ndarray, rect: BoundingRect, dimensions: ImageDimensions,
                backend) -> Result:
    """Axis-aligned crop of rect resized to dimensions"""
    region = crop(image, rect)
    if region.size == 0:
        return Err(WarpFailedError("Crop region is empty",
                                   {'x': rect.x, 'y': rect.y, 'width': rect.width, 'height': rect.height}))
    return map_result(check_raster_size(dimensions),
                      lambda size: backend.resize(region, size.width, size.height))
