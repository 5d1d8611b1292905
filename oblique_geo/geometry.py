"""
Planar geometry helpers for footprint and image quadrilaterals.

All functions work on the first two components of the given coordinates and
return None instead of raising when the input is degenerate (zero-length
vectors, parallel lines). Callers decide on the fallback.

Corner order:
    3----2   ^
    |    |   |
    0----1  north (or image up)
"""

import logging
import math
from typing import List, Optional, Sequence, Tuple

from .view_direction import ViewDirection

logger = logging.getLogger(__name__)

Point = Tuple[float, float]

# Cosines slightly outside [-1, 1] are accepted as rounding noise up to this bound
_COSINE_TOLERANCE = 1.00000002


def cartesian_distance(point0: Sequence[float], point1: Sequence[float]) -> float:
    """Euclidean distance between two coordinates in the plane."""
    return math.hypot(point0[0] - point1[0], point0[1] - point1[1])


def angle_between_vectors(
    v1: Sequence[float],
    v2: Sequence[float],
) -> Optional[float]:
    """
    Unsigned angle between two 2D vectors.

    Args:
        v1: First vector
        v2: Second vector

    Returns:
        Angle in radians within [0, pi], or None if either vector has zero
        length or the cosine is numerically invalid
    """
    denominator = math.hypot(v1[0], v1[1]) * math.hypot(v2[0], v2[1])
    if denominator == 0:
        logger.debug("Zero-length vector in angle computation")
        return None

    cosine = (v1[0] * v2[0] + v1[1] * v2[1]) / denominator
    if not math.isfinite(cosine) or abs(cosine) > _COSINE_TOLERANCE:
        logger.debug(f"Cosine out of range in angle computation: {cosine}")
        return None

    if cosine < -1 or cosine > 1:
        cosine = float(round(cosine))

    return math.acos(cosine)


def line_intersection(
    line1: Tuple[Sequence[float], Sequence[float]],
    line2: Tuple[Sequence[float], Sequence[float]],
) -> Optional[Point]:
    """
    Intersect two lines, each given by two points, treated as infinite.

    Returns:
        The (x, y) crossing point, or None for parallel or degenerate lines
    """
    (x1, y1), (x2, y2) = line1[0][:2], line1[1][:2]
    (x3, y3), (x4, y4) = line2[0][:2], line2[1][:2]

    denominator = (y4 - y3) * (x2 - x1) - (x4 - x3) * (y2 - y1)
    if denominator == 0:
        return None

    a = y1 - y3
    b = x1 - x3
    ratio = ((x4 - x3) * a - (y4 - y3) * b) / denominator

    x = x1 + ratio * (x2 - x1)
    y = y1 + ratio * (y2 - y1)
    if not (math.isfinite(x) and math.isfinite(y)):
        return None
    return x, y


def bounding_corners(points: Sequence[Sequence[float]]) -> List[Point]:
    """Corners of the bounding box as [bottom-left, bottom-right, top-right, top-left]."""
    xs = [p[0] for p in points]
    ys = [p[1] for p in points]
    min_x, max_x = min(xs), max(xs)
    min_y, max_y = min(ys), max(ys)
    return [(min_x, min_y), (max_x, min_y), (max_x, max_y), (min_x, max_y)]


def sort_corner_coordinates(
    corners: Sequence[Sequence[float]],
    view_direction: Optional[ViewDirection] = None,
) -> List[Point]:
    """
    Sort four corner points into [bottom-left, bottom-right, top-right, top-left].

    Each bounding box corner claims the closest remaining input corner. When a
    view direction is given, the order is rotated so that index 0 is the
    corner that appears at the bottom-left of an image looking that way.

    Args:
        corners: Four corner coordinates in any order (extra components ignored)
        view_direction: Viewing direction of the image, None for no rotation

    Returns:
        List of four (x, y) tuples
    """
    remaining = [(float(c[0]), float(c[1])) for c in corners]
    ordered = []
    for extent_point in bounding_corners(remaining):
        closest = min(
            range(len(remaining)),
            key=lambda i: cartesian_distance(extent_point, remaining[i]),
        )
        ordered.append(remaining.pop(closest))

    if view_direction == ViewDirection.EAST:
        ordered = [ordered[3], ordered[0], ordered[1], ordered[2]]
    elif view_direction == ViewDirection.SOUTH:
        ordered = [ordered[2], ordered[3], ordered[0], ordered[1]]
    elif view_direction == ViewDirection.WEST:
        ordered = [ordered[1], ordered[2], ordered[3], ordered[0]]
    return ordered
