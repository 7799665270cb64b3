import numpy as np
import pytest

from errors import RenderSurfaceError, SingularMatrixError, WarpFailedError
from models import BoundingRect, ImageDimensions, Point
from perspective import (allocate_raster, bilinear_sample, card_warp_dimensions, get_perspective_transform,
                         invert_homography, simple_crop, solve_linear_system, transform_point, warp_card,
                         warp_perspective)

SOURCE = (Point(10, 20), Point(300, 40), Point(280, 220), Point(30, 200))
TARGET = (Point(0, 0), Point(400, 0), Point(400, 250), Point(0, 250))
SKEWED = (Point(60, 50), Point(430, 80), Point(400, 330), Point(90, 300))


def _skewed_card_photo(forward, card, marker, size=(480, 380)):
    """
    Black photo holding a white card whose pixels were painted by where they
    land in the rectified frame, with a red marker rectangle on the card
    """
    m = forward.as_array()
    xs, ys = np.meshgrid(np.arange(size[0], dtype=np.float64), np.arange(size[1], dtype=np.float64))
    w = m[2, 0] * xs + m[2, 1] * ys + m[2, 2]
    u = (m[0, 0] * xs + m[0, 1] * ys + m[0, 2]) / w
    v = (m[1, 0] * xs + m[1, 1] * ys + m[1, 2]) / w

    image = np.zeros((size[1], size[0], 4), dtype=np.uint8)
    image[:, :, 3] = 255
    # One pixel of bleed so the card edge samples as solid card
    image[(u >= -1) & (u < card.width + 1) & (v >= -1) & (v < card.height + 1)] = (255, 255, 255, 255)
    x0, y0, x1, y1 = marker
    image[(u >= x0) & (u < x1) & (v >= y0) & (v < y1)] = (255, 0, 0, 255)
    return image


def test_solve_linear_system():
    solved = solve_linear_system([[2, 1], [1, 3]], [3, 5])
    assert solved.ok
    assert solved.value == pytest.approx([0.8, 1.4])


def test_solve_linear_system_needs_pivoting():
    solved = solve_linear_system([[0, 1], [1, 0]], [2, 3])
    assert solved.ok
    assert solved.value == pytest.approx([3, 2])


def test_singular_system_is_an_error_value():
    solved = solve_linear_system([[1, 2], [2, 4]], [3, 6])
    assert not solved.ok
    assert isinstance(solved.error, SingularMatrixError)
    assert solved.error.recoverable


def test_homography_maps_corners_onto_target():
    homography = get_perspective_transform(SOURCE, TARGET)
    assert homography.ok
    assert homography.value.matrix[8] == 1.0
    for src, dst in zip(SOURCE, TARGET):
        mapped = transform_point(homography.value, src)
        assert mapped.x == pytest.approx(dst.x, abs=1e-6)
        assert mapped.y == pytest.approx(dst.y, abs=1e-6)


def test_inverse_homography_round_trip():
    forward = get_perspective_transform(SOURCE, TARGET).value
    inverse = invert_homography(forward)
    assert inverse.ok
    for point in (Point(50, 60), Point(200, 100), Point(250, 190)):
        back = transform_point(inverse.value, transform_point(forward, point))
        assert back.x == pytest.approx(point.x, abs=0.5)
        assert back.y == pytest.approx(point.y, abs=0.5)


def test_collinear_corners_cannot_be_solved():
    collinear = (Point(0, 0), Point(10, 10), Point(20, 20), Point(30, 30))
    homography = get_perspective_transform(collinear, TARGET)
    assert not homography.ok
    assert isinstance(homography.error, SingularMatrixError)


def test_bilinear_sample_at_integer_and_half_pixel():
    image = np.zeros((2, 2, 4), dtype=np.uint8)
    image[0, 1] = (100, 100, 100, 255)
    image[0, 0, 3] = 255
    assert list(bilinear_sample(image, 1, 0)) == [100, 100, 100, 255]
    assert list(bilinear_sample(image, 0.5, 0)) == pytest.approx([50, 50, 50, 255])


def test_warp_perspective_samples_only_the_quad():
    image = np.zeros((150, 200, 4), dtype=np.uint8)
    image[:, :, 2] = 255
    image[:, :, 3] = 255
    image[30:120, 40:160] = (255, 0, 0, 255)
    corners = (Point(40, 30), Point(160, 30), Point(160, 120), Point(40, 120))

    warped = warp_perspective(image, corners, ImageDimensions(120, 90))
    assert warped.ok
    output = warped.value
    assert output.shape == (90, 120, 4)
    assert (output[:, :, 0] == 255).all()
    assert (output[:, :, 2] == 0).all()
    assert (output[:, :, 3] == 255).all()


def test_warp_rectifies_a_skewed_card():
    dimensions = ImageDimensions(300, 189)
    frame = (Point(0, 0), Point(300, 0), Point(300, 189), Point(0, 189))
    forward = get_perspective_transform(SKEWED, frame).value
    image = _skewed_card_photo(forward, dimensions, marker=(100, 60, 200, 130))

    warped = warp_perspective(image, SKEWED, dimensions)
    assert warped.ok
    output = warped.value
    assert (output[:, :, 3] == 255).all()

    # The card fills the whole output
    rows, cols = np.nonzero(output[:, :, 0] > 127)
    assert (rows.min(), rows.max(), cols.min(), cols.max()) == (0, 188, 0, 299)

    # The marker comes out axis aligned where it was painted
    redness = output[:, :, 0].astype(np.float64) - output[:, :, 1].astype(np.float64)
    grid_y, grid_x = np.mgrid[0:189, 0:300]
    assert (redness * grid_x).sum() / redness.sum() == pytest.approx(149.5, abs=1.0)
    assert (redness * grid_y).sum() / redness.sum() == pytest.approx(94.5, abs=1.0)

    # Output corners map back onto the skewed source corners
    inverse = invert_homography(forward).value
    found = (Point(cols.min(), rows.min()), Point(cols.max() + 1, rows.min()),
             Point(cols.max() + 1, rows.max() + 1), Point(cols.min(), rows.max() + 1))
    for corner, source in zip(found, SKEWED):
        back = transform_point(inverse, corner)
        assert back.x == pytest.approx(source.x, abs=0.5)
        assert back.y == pytest.approx(source.y, abs=0.5)


def test_warp_outside_source_fails():
    image = np.full((50, 50, 4), 255, dtype=np.uint8)
    corners = (Point(500, 500), Point(600, 500), Point(600, 560), Point(500, 560))
    warped = warp_perspective(image, corners, ImageDimensions(100, 60))
    assert not warped.ok
    assert isinstance(warped.error, WarpFailedError)


def test_warp_with_degenerate_corners_is_recoverable():
    image = np.full((50, 50, 4), 255, dtype=np.uint8)
    corners = (Point(0, 0), Point(10, 10), Point(20, 20), Point(30, 30))
    warped = warp_perspective(image, corners, ImageDimensions(100, 60))
    assert not warped.ok
    assert isinstance(warped.error, WarpFailedError)
    assert warped.error.recoverable


def test_card_warp_dimensions_follow_card_ratio():
    wide = (Point(0, 0), Point(500, 0), Point(500, 100), Point(0, 100))
    assert card_warp_dimensions(wide) == ImageDimensions(500, 315)
    narrow = (Point(0, 0), Point(100, 0), Point(100, 60), Point(0, 60))
    assert card_warp_dimensions(narrow) == ImageDimensions(400, 252)


def test_warp_card_orders_corners(card_image):
    scrambled = (Point(335, 239), Point(50, 60), Point(50, 239), Point(335, 60))
    warped = warp_card(card_image, scrambled)
    assert warped.ok
    raster, dimensions = warped.value
    assert raster.shape == (dimensions.height, dimensions.width, 4)
    assert raster[dimensions.height // 2, dimensions.width // 2, 0] == 230


def test_allocate_raster_rejects_empty_size():
    allocated = allocate_raster(ImageDimensions(0, 10))
    assert not allocated.ok
    assert isinstance(allocated.error, RenderSurfaceError)
    assert not allocated.error.recoverable


def test_simple_crop(card_image, opencv_backend):
    cropped = simple_crop(card_image, BoundingRect(50, 60, 286, 180), ImageDimensions(600, 378), opencv_backend)
    assert cropped.ok
    assert cropped.value.shape == (378, 600, 4)
    assert (cropped.value[:, :, 0] == 230).all()


def test_simple_crop_outside_image(card_image, opencv_backend):
    cropped = simple_crop(card_image, BoundingRect(1000, 1000, 50, 50), ImageDimensions(600, 378), opencv_backend)
    assert not cropped.ok
    assert isinstance(cropped.error, WarpFailedError)


def test_simple_crop_checks_size_before_resizing(card_image):
    class RecordingBackend:
        def __init__(self):
            self.calls = []

        def resize(self, image, width, height):
            self.calls.append((width, height))
            return np.zeros((height, width, 4), dtype=np.uint8)

    backend = RecordingBackend()
    cropped = simple_crop(card_image, BoundingRect(50, 60, 286, 180), ImageDimensions(0, 378), backend)
    assert not cropped.ok
    assert isinstance(cropped.error, RenderSurfaceError)
    assert backend.calls == []

    cropped = simple_crop(card_image, BoundingRect(50, 60, 286, 180), ImageDimensions(600, 378), backend)
    assert cropped.ok
    assert backend.calls == [(600, 378)]
