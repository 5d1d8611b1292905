"""
Nearest-neighbour lookup over image footprint centers.

Centers are held in a scipy cKDTree. Batches of entries can be merged in at
any time; each merge rebuilds the tree and publishes it together with the
names in one assignment, so queries running between merges see a consistent
snapshot. A merged entry with a known name moves that name. Merges themselves
must not run concurrently.
"""

import logging
import math
from typing import Iterable, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np
from scipy.spatial import cKDTree

logger = logging.getLogger(__name__)

DEFAULT_DEVIATION = math.pi / 4
DEFAULT_NEIGHBOR_COUNT = 20


class IndexEntry(NamedTuple):
    """Footprint center of one image."""
    x: float
    y: float
    name: str


class _Snapshot(NamedTuple):
    tree: Optional[cKDTree]
    points: np.ndarray
    names: Tuple[str, ...]


def bearing(origin: Sequence[float], target: Sequence[float]) -> float:
    """Angle from origin to target in [0, 2*pi), 0 = east, pi/2 = north."""
    angle = math.atan2(target[1] - origin[1], target[0] - origin[0])
    if angle < 0:
        angle += 2 * math.pi
    return angle


def angle_difference(angle: float, reference: float) -> float:
    """Signed difference angle - reference normalized into (-pi, pi]."""
    difference = angle - reference
    while difference > math.pi:
        difference -= 2 * math.pi
    while difference <= -math.pi:
        difference += 2 * math.pi
    return difference


class SpatialImageIndex:
    """Point index of footprint centers keyed by image name."""

    def __init__(self, entries: Iterable[IndexEntry] = ()):
        self._snapshot = _Snapshot(None, np.empty((0, 2)), ())
        entries = list(entries)
        if entries:
            self.load(entries)

    def __len__(self) -> int:
        return len(self._snapshot.names)

    def load(self, entries: Iterable[IndexEntry]) -> None:
        """
        Merge a batch of (x, y, name) entries into the index.

        An entry whose name is already indexed moves that name to its new
        center; all other entries are appended. Nothing is ever removed.
        """
        entries = [IndexEntry(float(e[0]), float(e[1]), str(e[2])) for e in entries]
        if not entries:
            return

        current = self._snapshot
        positions = {name: i for i, name in enumerate(current.names)}
        points = [tuple(p) for p in current.points]
        names = list(current.names)
        for entry in entries:
            index = positions.get(entry.name)
            if index is None:
                positions[entry.name] = len(names)
                points.append((entry.x, entry.y))
                names.append(entry.name)
            else:
                points[index] = (entry.x, entry.y)

        points = np.array(points, dtype=float).reshape(-1, 2)
        self._snapshot = _Snapshot(cKDTree(points), points, tuple(names))
        logger.debug(f"Spatial index holds {len(names)} centers after merging {len(entries)}")

    def nearest(
        self,
        coordinate: Sequence[float],
        count: int = 1,
    ) -> List[IndexEntry]:
        """
        Entries closest to a coordinate, nearest first.

        Args:
            coordinate: (x, y) query position
            count: Maximum number of entries

        Returns:
            Up to `count` entries
        """
        snapshot = self._snapshot
        if snapshot.tree is None or count < 1:
            return []

        k = min(count, len(snapshot.names))
        _, indices = snapshot.tree.query((float(coordinate[0]), float(coordinate[1])), k=k)
        return [
            IndexEntry(snapshot.points[i, 0], snapshot.points[i, 1], snapshot.names[i])
            for i in np.atleast_1d(indices)
            if i < len(snapshot.names)
        ]

    def nearest_image(self, coordinate: Sequence[float]) -> Optional[str]:
        """Name of the image whose center is closest, None if the index is empty."""
        neighbors = self.nearest(coordinate, 1)
        return neighbors[0].name if neighbors else None

    def image_in_direction(
        self,
        from_name: str,
        from_center: Sequence[float],
        angle: float,
        deviation: float = DEFAULT_DEVIATION,
        neighbor_count: int = DEFAULT_NEIGHBOR_COUNT,
    ) -> Optional[str]:
        """
        Closest neighbor lying roughly in a given direction.

        Neighbors are visited by distance; the first whose bearing from
        `from_center` is within `deviation` of `angle` wins.

        Args:
            from_name: Name of the current image, never returned
            from_center: Footprint center of the current image
            angle: Requested direction in radians (0 = east, pi/2 = north)
            deviation: Accepted angular deviation in radians
            neighbor_count: Number of nearest neighbors considered

        Returns:
            Image name, or None if no neighbor qualifies
        """
        for neighbor in self.nearest(from_center, neighbor_count):
            if neighbor.name == from_name:
                continue
            direction = bearing(from_center, (neighbor.x, neighbor.y))
            if abs(angle_difference(direction, angle)) <= deviation:
                return neighbor.name
        return None
