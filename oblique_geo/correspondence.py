"""
Quad correspondence transform for images without camera calibration.

An uncalibrated image only knows its four pixel corners and the four ground
corners of its footprint. A coordinate is carried from one quadrilateral to
the other with corner rays:

    1. From each corner of the origin quad, cast a ray through the coordinate
       and intersect it with the far (upper or lower) border of the quad.
    2. Keep, per corner, the intersection with the widest angle to its edge.
    3. Replay the position of two intersections along the same edges of the
       target quad and cast rays from the same corners towards them.
    4. The crossing of those two rays is the transformed coordinate.

Pairs of corners are tried by descending combined angle; the first pair whose
rays cross wins. Nearly degenerate quads produce None instead of an error.
"""

import logging
import math
from dataclasses import dataclass
from itertools import combinations
from typing import List, Optional, Sequence

from .geometry import (
    Point,
    angle_between_vectors,
    cartesian_distance,
    line_intersection,
    sort_corner_coordinates,
)
from .view_direction import ViewDirection

logger = logging.getLogger(__name__)

# Maximum deviation between the ray to the coordinate and the ray to the intersection
DIRECTION_THRESHOLD = math.radians(5.0)
# Intersections deviating more than this from the edge direction lie behind its start
REVERSE_THRESHOLD = math.radians(5.0)

# Lateral edges (left and right border) are never intersected
_SIDE_EDGES = {(3, 0), (1, 2)}


@dataclass(frozen=True)
class CornerIntersection:
    """
    Ray from one quad corner over the coordinate, cut with a border edge.

    Attributes:
        corner: Index of the corner the ray starts at
        point: Intersection with the edge line
        angle: Smaller of the two angles between the ray and the edge
        edge_start: Index of the edge's start corner
        edge_end: Index of the edge's end corner
        ratio: Distance from edge start over edge length, negative when the
            intersection lies before the edge start
    """
    corner: int
    point: Point
    angle: float
    edge_start: int
    edge_end: int
    ratio: float


def corner_intersections(
    quad: Sequence[Point],
    coordinate: Sequence[float],
) -> List[CornerIntersection]:
    """
    Compute the most stable border intersection for every corner of a quad.

    Args:
        quad: Four sorted corners [bottom-left, bottom-right, top-right, top-left]
        coordinate: Coordinate inside (or near) the quad

    Returns:
        At most one intersection per corner, in corner order
    """
    cx, cy = float(coordinate[0]), float(coordinate[1])
    intersections = []

    for corner in range(len(quad)):
        origin = quad[corner]
        to_coordinate = (cx - origin[0], cy - origin[1])
        candidates = []

        for start in range(len(quad)):
            end = (start + 1) % len(quad)
            if corner in (start, end) or (start, end) in _SIDE_EDGES:
                continue

            edge_start, edge_end = quad[start], quad[end]
            point = line_intersection((origin, (cx, cy)), (edge_start, edge_end))
            if point is None:
                continue

            # a coordinate outside the quad may cut the edge behind the corner
            to_point = (point[0] - origin[0], point[1] - origin[1])
            deviation = angle_between_vectors(to_coordinate, to_point)
            if deviation is None or deviation > DIRECTION_THRESHOLD:
                continue

            edge_vector = (edge_end[0] - edge_start[0], edge_end[1] - edge_start[1])
            reverse_vector = (-edge_vector[0], -edge_vector[1])
            angle_forward = angle_between_vectors(to_coordinate, edge_vector)
            angle_backward = angle_between_vectors(to_coordinate, reverse_vector)
            if angle_forward is None or angle_backward is None:
                continue

            edge_length = cartesian_distance(edge_start, edge_end)
            if edge_length == 0:
                continue
            ratio = cartesian_distance(edge_start, point) / edge_length
            if ratio != 0:
                along = angle_between_vectors(
                    edge_vector,
                    (point[0] - edge_start[0], point[1] - edge_start[1]),
                )
                if along is None:
                    continue
                if along > REVERSE_THRESHOLD:
                    ratio = -ratio
            if not math.isfinite(ratio):
                continue

            candidates.append(CornerIntersection(
                corner=corner,
                point=point,
                angle=min(angle_forward, angle_backward),
                edge_start=start,
                edge_end=end,
                ratio=ratio,
            ))

        if candidates:
            intersections.append(max(candidates, key=lambda c: c.angle))

    return intersections


def _replay_on_edge(intersection: CornerIntersection, quad: Sequence[Point]) -> Point:
    start = quad[intersection.edge_start]
    end = quad[intersection.edge_end]
    return (
        start[0] + (end[0] - start[0]) * intersection.ratio,
        start[1] + (end[1] - start[1]) * intersection.ratio,
    )


def transform_between_quads(
    origin: Sequence[Point],
    target: Sequence[Point],
    coordinate: Sequence[float],
) -> Optional[Point]:
    """
    Carry a coordinate from one sorted quad into another.

    Both quads must already be in corresponding corner order (see
    sort_corner_coordinates).

    Returns:
        (x, y) in the target quad's coordinate system, or None if fewer than
        two corners give a usable intersection or no pair of rays crosses
    """
    intersections = corner_intersections(origin, coordinate)
    if len(intersections) < 2:
        logger.debug(f"Only {len(intersections)} corner intersections for {tuple(coordinate[:2])}")
        return None

    pairs = sorted(
        combinations(intersections, 2),
        key=lambda pair: pair[0].angle + pair[1].angle,
        reverse=True,
    )
    for first, second in pairs:
        first_target = _replay_on_edge(first, target)
        second_target = _replay_on_edge(second, target)
        first_corner = target[first.corner]
        second_corner = target[second.corner]

        crossing_angle = angle_between_vectors(
            (first_target[0] - first_corner[0], first_target[1] - first_corner[1]),
            (second_target[0] - second_corner[0], second_target[1] - second_corner[1]),
        )
        if crossing_angle is None:
            continue

        crossing = line_intersection((first_corner, first_target), (second_corner, second_target))
        if crossing is not None:
            return crossing

    return None


def transform_coordinate(
    origin: Sequence[Sequence[float]],
    target: Sequence[Sequence[float]],
    origin_is_image: bool,
    coordinate: Sequence[float],
    view_direction: ViewDirection,
) -> Optional[Point]:
    """
    Transform a coordinate between an image quad and its ground quad.

    Args:
        origin: Four corners of the quad the coordinate is given in
        target: Four corners of the other quad
        origin_is_image: True if origin holds the pixel corners
        coordinate: Coordinate to transform
        view_direction: Viewing direction, used to order the ground corners

    Returns:
        Transformed (x, y) or None if it cannot be resolved
    """
    origin_sorted = sort_corner_coordinates(origin, None if origin_is_image else view_direction)
    target_sorted = sort_corner_coordinates(target, view_direction if origin_is_image else None)
    return transform_between_quads(origin_sorted, target_sorted, coordinate)


class QuadCorrespondenceTransform:
    """
    Pixel <-> ground mapping of one uncalibrated image.

    The corner order of both quads is fixed at construction so repeated
    transforms do not re-sort.
    """

    def __init__(
        self,
        image_corners: Sequence[Sequence[float]],
        ground_corners: Sequence[Sequence[float]],
        view_direction: ViewDirection,
    ):
        self.view_direction = view_direction
        self.image_quad = sort_corner_coordinates(image_corners)
        self.ground_quad = sort_corner_coordinates(ground_corners, view_direction)

    def image_to_ground(self, coordinate: Sequence[float]) -> Optional[Point]:
        return transform_between_quads(self.image_quad, self.ground_quad, coordinate)

    def ground_to_image(self, coordinate: Sequence[float]) -> Optional[Point]:
        return transform_between_quads(self.ground_quad, self.image_quad, coordinate)
