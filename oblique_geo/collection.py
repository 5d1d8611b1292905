"""
Collection of oblique images across view directions and metadata loads.
"""

import itertools
import logging
from typing import Any, Dict, Iterable, Optional, Tuple

from .direction import DirectionBucket
from .elevation import ElevationService
from .image import Image
from .metadata import load_metadata_file, parse_images
from .spatial_index import DEFAULT_NEIGHBOR_COUNT
from .view_direction import ViewDirection

logger = logging.getLogger(__name__)

Extent = Tuple[float, float, float, float]


class ObliqueCollection:
    """
    Direction buckets filled from one or more metadata documents.

    Attributes:
        crs: CRS forced on all images, None to use each document's crs
        elevation_service: Elevation lookup handed to every image
        directions: Bucket per view direction
        extent: (min_x, min_y, max_x, max_y) of all footprints, None if empty
    """

    def __init__(
        self,
        crs: Optional[str] = None,
        elevation_service: Optional[ElevationService] = None,
        neighbor_count: int = DEFAULT_NEIGHBOR_COUNT,
    ):
        self.crs = crs
        self.elevation_service = elevation_service
        self.neighbor_count = neighbor_count
        self.directions: Dict[ViewDirection, DirectionBucket] = {}
        self.extent: Optional[Extent] = None
        self._image_ids = itertools.count(1)

    def add_metadata(self, document: Dict[str, Any]) -> int:
        """
        Add the images of a decoded metadata document.

        Returns:
            Number of images added

        Raises:
            MetadataError: If the document is unsupported or malformed
        """
        images = parse_images(document, self.crs, self.elevation_service, self._image_ids)
        self.add_images(images)
        return len(images)

    def load_file(self, path: str) -> int:
        """Add the images of a metadata JSON file."""
        count = self.add_metadata(load_metadata_file(path))
        logger.info(f"Loaded {count} images from {path}")
        return count

    def add_images(self, images: Iterable[Image]) -> None:
        by_direction: Dict[ViewDirection, list] = {}
        for image in images:
            by_direction.setdefault(image.view_direction, []).append(image)
            self._extend(image)

        for direction, batch in by_direction.items():
            bucket = self.directions.get(direction)
            if bucket is None:
                self.directions[direction] = DirectionBucket(direction, batch, self.neighbor_count)
            else:
                bucket.add_images(batch)

    def _extend(self, image: Image) -> None:
        xs = [c[0] for c in image.ground_coordinates]
        ys = [c[1] for c in image.ground_coordinates]
        bounds = (min(xs), min(ys), max(xs), max(ys))
        if self.extent is None:
            self.extent = bounds
        else:
            self.extent = (
                min(self.extent[0], bounds[0]),
                min(self.extent[1], bounds[1]),
                max(self.extent[2], bounds[2]),
                max(self.extent[3], bounds[3]),
            )

    def get_direction(self, direction: ViewDirection) -> Optional[DirectionBucket]:
        return self.directions.get(ViewDirection(direction))

    def image_by_name(self, name: str) -> Optional[Image]:
        """Image with the given name from any direction, None if unknown."""
        for bucket in self.directions.values():
            image = bucket.images.get(name)
            if image is not None:
                return image
        return None
