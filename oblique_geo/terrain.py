"""
Terrain-aware transforms between image pixels and world coordinates.

A pixel only defines a viewing ray; the world position depends on where the
ray meets the terrain. TerrainHeightResolver refines it iteratively:

    1. Project the pixel at the image's average elevation.
    2. Look up the terrain height below that guess.
    3. Re-project the pixel at the new height.
    4. Stop when the height changes less than `tolerance` or after
       `max_iterations` lookups, else continue from step 2.

Any failed lookup ends the refinement with the last guess, flagged as
estimated. World -> pixel needs a single lookup for the point's own height.
"""

import logging
from dataclasses import dataclass, replace
from typing import Optional, Sequence, Tuple

from .elevation import WGS84, get_transformer
from .image import Image

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransformOptions:
    """
    Options for terrain-aware transforms.

    Attributes:
        skip_elevation_source: Do not query the elevation source
        tolerance: Height change (world units) that ends the refinement
        max_iterations: Maximum number of elevation lookups per pixel
        target_crs: CRS of returned world coordinates, None for the image CRS
        source_crs: CRS of given world coordinates, None for the image CRS
    """
    skip_elevation_source: bool = False
    tolerance: float = 1.0
    max_iterations: int = 3
    target_crs: Optional[str] = None
    source_crs: Optional[str] = None


@dataclass(frozen=True)
class TransformResult:
    """
    Outcome of a terrain-aware transform.

    Attributes:
        coordinate: Pixel (x, y) or world (x, y, z)
        elevation: Elevation used for the projection
        estimated: True if the elevation is a fallback (average elevation or
            last guess) rather than a terrain lookup or explicit input
    """
    coordinate: Tuple[float, ...]
    elevation: float
    estimated: bool


def _crs_or_wgs84(crs: Optional[str]) -> str:
    return WGS84 if crs is None else str(crs)


def _reproject(coordinate: Sequence[float], source_crs: Optional[str], target_crs: Optional[str]):
    source, target = _crs_or_wgs84(source_crs), _crs_or_wgs84(target_crs)
    if source == target:
        return tuple(coordinate)
    x, y = get_transformer(source, target).transform(coordinate[0], coordinate[1])
    return (x, y) + tuple(coordinate[2:])


class TerrainHeightResolver:
    """Pixel <-> world transforms refined against an image's elevation service."""

    def __init__(self, tolerance: float = 1.0, max_iterations: int = 3):
        self.defaults = TransformOptions(tolerance=tolerance, max_iterations=max_iterations)

    def _options(self, options: Optional[TransformOptions], **overrides) -> TransformOptions:
        base = options if options is not None else self.defaults
        return replace(base, **overrides) if overrides else base

    def transform_from_image(
        self,
        image: Image,
        pixel: Sequence[float],
        options: Optional[TransformOptions] = None,
        **overrides,
    ) -> TransformResult:
        """
        Resolve the world position seen at a pixel.

        Args:
            image: Image the pixel belongs to
            pixel: (x, y) pixel, origin bottom-left
            options: Transform options, resolver defaults if None
            **overrides: Individual TransformOptions fields

        Returns:
            TransformResult with world (x, y, z) in the target CRS
        """
        options = self._options(options, **overrides)
        average = image.average_elevation()
        guess = image.image_to_world(pixel, average)

        if options.skip_elevation_source or image.elevation_service is None:
            result = TransformResult(guess, average, True)
        else:
            result = self._refine(image, pixel, guess, average, options)

        if options.target_crs is not None:
            result = replace(result, coordinate=_reproject(result.coordinate, image.crs, options.target_crs))
        return result

    def _refine(
        self,
        image: Image,
        pixel: Sequence[float],
        guess: Tuple[float, float, float],
        elevation: float,
        options: TransformOptions,
    ) -> TransformResult:
        for iteration in range(1, max(1, options.max_iterations) + 1):
            terrain = image.elevation_service.elevation_at(guess, image.crs)
            if terrain is None:
                logger.warning(f"Terrain could not be queried for image {image.name}, "
                               f"position might be inaccurate")
                return TransformResult(guess, elevation, True)

            refined = image.image_to_world(pixel, terrain)
            if abs(elevation - terrain) < options.tolerance or iteration >= options.max_iterations:
                logger.debug(f"Terrain height {terrain:.2f} after {iteration} lookups")
                return TransformResult(refined, terrain, False)

            guess, elevation = refined, terrain

        return TransformResult(guess, elevation, True)

    def transform_to_image(
        self,
        image: Image,
        world: Sequence[float],
        options: Optional[TransformOptions] = None,
        **overrides,
    ) -> TransformResult:
        """
        Find the pixel showing a world coordinate.

        A third coordinate component is used as the point's elevation.
        Without it the terrain is looked up once; if that fails the image's
        average elevation is used and the result flagged as estimated.

        Args:
            image: Target image
            world: (x, y[, z]) in the source CRS
            options: Transform options, resolver defaults if None
            **overrides: Individual TransformOptions fields

        Returns:
            TransformResult with the (x, y) pixel
        """
        options = self._options(options, **overrides)
        if options.source_crs is not None:
            world = _reproject(world, options.source_crs, image.crs)

        if len(world) > 2 and world[2] is not None:
            elevation = float(world[2])
            return TransformResult(image.world_to_image(world, elevation), elevation, False)

        if not options.skip_elevation_source and image.elevation_service is not None:
            terrain = image.elevation_service.elevation_at(world, image.crs)
            if terrain is not None:
                return TransformResult(image.world_to_image(world, terrain), terrain, False)
            logger.warning(f"Terrain could not be queried for image {image.name}, "
                           f"using average elevation")

        average = image.average_elevation()
        return TransformResult(image.world_to_image(world, average), average, True)
