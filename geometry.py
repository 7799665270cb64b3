"""
Planar geometry helpers for card corner detection
"""
import math
from typing import List, Sequence, Tuple

from models import BoundingRect, Point


def cross_product(o: Point, a: Point, b: Point) -> float:
    """z component of (a - o) x (b - o); positive for a clockwise turn in image coordinates"""
    return (a.x - o.x) * (b.y - o.y) - (a.y - o.y) * (b.x - o.x)


def distance(a: Point, b: Point) -> float:
    return math.hypot(a.x - b.x, a.y - b.y)


def centroid(points: Sequence[Point]) -> Point:
    n = len(points)
    return Point(sum(p.x for p in points) / n, sum(p.y for p in points) / n)


def polygon_area(points: Sequence[Point]) -> float:
    """Shoelace area of a simple polygon"""
    n = len(points)
    if n < 3:
        return 0.0
    total = 0.0
    for i in range(n):
        j = (i + 1) % n
        total += points[i].x * points[j].y - points[j].x * points[i].y
    return abs(total) / 2.0


def is_convex(corners: Sequence[Point]) -> bool:
    """True when every consecutive turn of the closed polygon has the same sign"""
    n = len(corners)
    if n < 3:
        return False
    sign = 0
    for i in range(n):
        turn = cross_product(corners[i], corners[(i + 1) % n], corners[(i + 2) % n])
        if turn == 0:
            return False
        current = 1 if turn > 0 else -1
        if sign == 0:
            sign = current
        elif current != sign:
            return False
    return True


def bounding_rect(points: Sequence[Point]) -> BoundingRect:
    return BoundingRect.from_points(points)


def simplify_contour(contour: Sequence[Point], stride: int) -> List[Point]:
    """Keep every stride-th point"""
    if stride <= 1:
        return list(contour)
    return list(contour[::stride])


def convex_hull(points: Sequence[Point]) -> List[Point]:
    """Andrew's monotone chain"""
    unique = sorted(set((p.x, p.y) for p in points))
    if len(unique) < 3:
        return [Point(x, y) for x, y in unique]
    pts = [Point(x, y) for x, y in unique]

    lower: List[Point] = []
    for p in pts:
        while len(lower) >= 2 and cross_product(lower[-2], lower[-1], p) <= 0:
            lower.pop()
        lower.append(p)

    upper: List[Point] = []
    for p in reversed(pts):
        while len(upper) >= 2 and cross_product(upper[-2], upper[-1], p) <= 0:
            upper.pop()
        upper.append(p)

    # Last point of each chain is the first point of the other
    return lower[:-1] + upper[:-1]


def order_corners(points: Sequence[Point]) -> Tuple[Point, Point, Point, Point]:
    """
    Pick four corners with the sum/difference heuristic
    Top-left has the smallest x+y, bottom-right the largest;
    top-right has the smallest y-x, bottom-left the largest.
    """
    top_left = min(points, key=lambda p: p.x + p.y)
    bottom_right = max(points, key=lambda p: p.x + p.y)
    top_right = min(points, key=lambda p: p.y - p.x)
    bottom_left = max(points, key=lambda p: p.y - p.x)
    return (top_left, top_right, bottom_right, bottom_left)


def robust_sort_corners(corners: Sequence[Point]) -> Tuple[Point, ...]:
    """
    Order four corners as [TL, TR, BR, BL] regardless of rotation
    Points are sorted by angle around their centroid and the ring is rotated
    so the point nearest the image origin comes first.
    """
    if len(corners) != 4:
        return tuple(corners)
    center = centroid(corners)
    ring = sorted(corners, key=lambda p: (math.atan2(p.y - center.y, p.x - center.x), p.x, p.y))
    start = min(range(4), key=lambda i: (math.hypot(ring[i].x, ring[i].y), i))
    return tuple(ring[start:] + ring[:start])


def order_from_top_left(corners: Sequence[Point]) -> List[Point]:
    """Top-left (smallest x+y) first, the rest by angle seen from it"""
    top_left = min(corners, key=lambda p: p.x + p.y)
    rest = [p for p in corners if p is not top_left]
    rest.sort(key=lambda p: math.atan2(p.y - top_left.y, p.x - top_left.x))
    return [top_left] + rest


def corner_angle(prev: Point, corner: Point, nxt: Point) -> float:
    """Interior angle at corner in radians"""
    v1x, v1y = prev.x - corner.x, prev.y - corner.y
    v2x, v2y = nxt.x - corner.x, nxt.y - corner.y
    norm = math.hypot(v1x, v1y) * math.hypot(v2x, v2y)
    if norm == 0:
        return 0.0
    cos_angle = max(-1.0, min(1.0, (v1x * v2x + v1y * v2y) / norm))
    return math.acos(cos_angle)


def corner_angle_score(corners: Sequence[Point]) -> float:
    """100 for four right angles, falling to 0 at a mean deviation of 45 degrees"""
    n = len(corners)
    deviations = [
        abs(corner_angle(corners[i - 1], corners[i], corners[(i + 1) % n]) - math.pi / 2)
        for i in range(n)
    ]
    mean_deviation = sum(deviations) / n
    return max(0.0, 100.0 * (1 - mean_deviation / (math.pi / 4)))


def quad_edge_lengths(corners: Sequence[Point]) -> Tuple[float, float, float, float]:
    """Lengths of the top, right, bottom and left edges of an ordered quad"""
    tl, tr, br, bl = corners
    return (distance(tl, tr), distance(tr, br), distance(bl, br), distance(tl, bl))
