"""
Images of one viewing direction and navigation between them.
"""

import logging
import math
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Sequence, Tuple, Union

from .image import Image
from .spatial_index import (
    DEFAULT_DEVIATION,
    DEFAULT_NEIGHBOR_COUNT,
    IndexEntry,
    SpatialImageIndex,
)
from .terrain import TerrainHeightResolver, TransformResult
from .view_direction import ViewDirection

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Handoff:
    """
    Switch of the displayed image.

    Attributes:
        image_name: Image that now covers the view center best
        center: Pixel of the new image to center the view on
        world: Terrain-refined world position of the view center
    """
    image_name: str
    center: Tuple[float, float]
    world: TransformResult


def _clamp(value: float, upper: float) -> float:
    return min(max(value, 0.0), upper)


class DirectionBucket:
    """
    All images sharing one view direction, indexed by footprint center.

    Images are only ever added, in batches from successive metadata loads.
    """

    def __init__(
        self,
        direction: ViewDirection,
        images: Iterable[Image] = (),
        neighbor_count: int = DEFAULT_NEIGHBOR_COUNT,
    ):
        self.direction = ViewDirection(direction)
        self.neighbor_count = neighbor_count
        self.images: Dict[str, Image] = {}
        self.index = SpatialImageIndex()
        self.add_images(images)

    def __len__(self) -> int:
        return len(self.images)

    def __contains__(self, name: str) -> bool:
        return name in self.images

    def add_images(self, images: Iterable[Image]) -> None:
        """Merge a batch of images; a known name replaces the stored image."""
        entries = []
        for image in images:
            if image.view_direction != self.direction:
                raise ValueError(
                    f"Image {image.name} looks {image.view_direction.name}, "
                    f"bucket is {self.direction.name}"
                )
            if image.name in self.images:
                logger.debug(f"Replacing image {image.name} in {self.direction.name} bucket")
            entries.append(IndexEntry(image.center_on_ground[0], image.center_on_ground[1], image.name))
            self.images[image.name] = image
        self.index.load(entries)

    def image_name_for_coordinate(self, coordinate: Sequence[float]) -> Optional[str]:
        """Name of the image whose footprint center is closest to a world coordinate."""
        return self.index.nearest_image(coordinate)

    def image_name_in_direction(
        self,
        image: Union[Image, str],
        angle: float,
        deviation: float = DEFAULT_DEVIATION,
    ) -> Optional[str]:
        """
        Neighbor of `image` in a direction.

        Args:
            image: Current image or its name
            angle: Direction in radians, 0 = east, pi/2 = north
            deviation: Accepted angular deviation in radians
        """
        if isinstance(image, str):
            image = self.images.get(image)
            if image is None:
                return None
        return self.index.image_in_direction(
            image.name, image.center_on_ground, angle, deviation, self.neighbor_count,
        )

    def center_on_image(
        self,
        image: Image,
        world: Optional[Sequence[float]] = None,
    ) -> Tuple[float, float]:
        """
        Pixel to center a view of `image` on.

        Args:
            image: Image to show
            world: World (x, y, z) to show, the image center if None

        Returns:
            Pixel clamped to the image bounds
        """
        width, height = image.size
        if world is None:
            return width / 2, height / 2
        elevation = world[2] if len(world) > 2 else None
        x, y = image.world_to_image(world, elevation)
        return _clamp(x, width), _clamp(y, height)

    def handoff(
        self,
        current: Image,
        pixel: Sequence[float],
        resolver: TerrainHeightResolver,
    ) -> Optional[Handoff]:
        """
        Decide whether another image covers the view center better.

        Args:
            current: Image currently shown
            pixel: Pixel of `current` at the view center
            resolver: Resolver for the terrain-refined view center

        Returns:
            Handoff to the better image, None to keep `current`
        """
        approximate = current.image_to_world(pixel)
        name = self.image_name_for_coordinate(approximate)
        if name is None or name == current.name:
            return None

        world = resolver.transform_from_image(current, pixel)
        image = self.images[name]
        center = self.center_on_image(image, world.coordinate)
        if not all(math.isfinite(v) for v in center):
            logger.warning(f"Invalid center on image {name}, using image center")
            center = self.center_on_image(image)
        logger.debug(f"Handing off from {current.name} to {name} at {center}")
        return Handoff(name, center, world)
