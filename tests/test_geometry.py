import itertools
import math

import pytest

from geometry import (convex_hull, corner_angle_score, is_convex, order_corners, order_from_top_left,
                      polygon_area, quad_edge_lengths, robust_sort_corners, simplify_contour)
from models import BoundingRect, Point

RECT = (Point(10, 10), Point(110, 10), Point(110, 70), Point(10, 70))


def _rotated_card(degrees, center=Point(200, 150)):
    angle = math.radians(degrees)
    return [
        Point(center.x + dx * math.cos(angle) - dy * math.sin(angle),
              center.y + dx * math.sin(angle) + dy * math.cos(angle))
        for dx, dy in ((-80, -50), (80, -50), (80, 50), (-80, 50))
    ]


def test_convex_hull_drops_interior_and_collinear_points():
    points = [Point(0, 0), Point(10, 0), Point(10, 10), Point(0, 10), Point(5, 5), Point(5, 0)]
    hull = convex_hull(points)
    assert len(hull) == 4
    assert set(hull) == {Point(0, 0), Point(10, 0), Point(10, 10), Point(0, 10)}


def test_convex_hull_of_two_points():
    assert convex_hull([Point(1, 1), Point(3, 3), Point(1, 1)]) == [Point(1, 1), Point(3, 3)]


def test_is_convex():
    assert is_convex(RECT)
    assert is_convex(RECT[::-1])
    assert not is_convex([Point(0, 0), Point(10, 0), Point(3, 3), Point(0, 10)])


def test_bow_tie_is_not_convex():
    assert not is_convex([Point(0, 0), Point(10, 6), Point(10, 0), Point(0, 6)])


def test_collinear_corners_are_not_convex():
    assert not is_convex([Point(0, 0), Point(5, 0), Point(10, 0), Point(10, 10)])


def test_polygon_area():
    assert polygon_area(RECT) == pytest.approx(6000)
    assert polygon_area([Point(0, 0), Point(1, 1)]) == 0.0


def test_simplify_contour_keeps_every_nth_point():
    contour = [Point(i, 0) for i in range(10)]
    assert simplify_contour(contour, 2) == [Point(i, 0) for i in range(0, 10, 2)]
    assert simplify_contour(contour, 1) == contour


def test_order_corners_sum_difference():
    shuffled = [RECT[2], RECT[0], RECT[3], RECT[1]]
    assert order_corners(shuffled) == RECT


def test_robust_sort_corners_from_any_order():
    shuffled = (RECT[2], RECT[0], RECT[3], RECT[1])
    assert robust_sort_corners(shuffled) == RECT


def test_robust_sort_corners_ignores_input_order():
    outputs = {robust_sort_corners(order) for order in itertools.permutations(_rotated_card(20))}
    assert len(outputs) == 1


def test_robust_sort_corners_of_diamond_starts_nearest_origin():
    diamond = (Point(0, 50), Point(50, 100), Point(100, 50), Point(50, 0))
    ordered = robust_sort_corners(diamond)
    assert ordered == (Point(50, 0), Point(100, 50), Point(50, 100), Point(0, 50))


def test_robust_sort_corners_is_clockwise_for_rotated_card():
    ordered = robust_sort_corners(list(reversed(_rotated_card(20))))
    assert is_convex(ordered)
    # Clockwise on screen means positive turns with y pointing down
    tl, tr, br = ordered[0], ordered[1], ordered[2]
    assert (tr.x - tl.x) * (br.y - tl.y) - (tr.y - tl.y) * (br.x - tl.x) > 0


def test_order_from_top_left():
    shuffled = [RECT[3], RECT[1], RECT[2], RECT[0]]
    assert order_from_top_left(shuffled) == list(RECT)


def test_corner_angle_score():
    assert corner_angle_score(RECT) == pytest.approx(100)
    skewed = [Point(0, 0), Point(100, 0), Point(160, 60), Point(60, 60)]
    assert corner_angle_score(skewed) < 100


def test_quad_edge_lengths():
    assert quad_edge_lengths(RECT) == pytest.approx((100, 60, 100, 60))


def test_bounding_rect_corners_order():
    rect = BoundingRect(5, 5, 20, 10)
    assert rect.corners() == (Point(5, 5), Point(25, 5), Point(25, 15), Point(5, 15))
    assert rect.aspect_ratio == pytest.approx(2.0)
