"""
Oblique image model and its pixel <-> world transforms.

Each image converts coordinates with one of two transforms, chosen once when
the image is built:

    - CalibratedTransform: camera model plus photogrammetric matrices
        pixel -> world: undistort, cast a ray with the 3x3 pixel-to-ray
                        matrix from the projection center, cut it with the
                        horizontal plane at the given elevation
        world -> pixel: 4x4 world-to-pixel matrix, perspective divide,
                        flip to the bottom-left pixel origin, distort
    - CorrespondenceTransform: quad correspondence between the pixel corners
      and the ground footprint, for images without calibration

Both fall back to a center (ground center or image center) when a
coordinate cannot be resolved, so a caller always gets a position.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np

from .camera import CameraModel
from .correspondence import QuadCorrespondenceTransform
from .elevation import ElevationService
from .view_direction import ViewDirection

logger = logging.getLogger(__name__)

# Metadata from this version and build on carries a trustworthy view direction angle
VIEW_DIRECTION_ANGLE_MIN_VERSION = 3.4
VIEW_DIRECTION_ANGLE_MIN_BUILD = 18


@dataclass
class ImageMeta:
    """
    Metadata shared by the images of one metadata document.

    Attributes:
        size: (width, height) of the images in pixels
        version: Metadata format version
        build_number: Metadata build number
    """
    size: Tuple[float, float]
    version: float = 3.1
    build_number: int = 0

    def trusts_view_direction_angle(self) -> bool:
        return (
            self.version >= VIEW_DIRECTION_ANGLE_MIN_VERSION
            and self.build_number >= VIEW_DIRECTION_ANGLE_MIN_BUILD
        )


class ImageTransform(ABC):
    """
    Pixel <-> world conversion of one image at a known elevation.

    Attributes:
        failed_resolutions: Number of coordinates that fell back to a center
    """

    def __init__(self, size: Tuple[float, float], center_on_ground: Sequence[float]):
        self.width = float(size[0])
        self.height = float(size[1])
        self.center_on_ground = (float(center_on_ground[0]), float(center_on_ground[1]))
        self.failed_resolutions = 0

    @property
    def image_center(self) -> Tuple[float, float]:
        return self.width / 2, self.height / 2

    @abstractmethod
    def image_to_world(
        self,
        coordinate: Sequence[float],
        elevation: float,
    ) -> Tuple[float, float, float]:
        """Pixel (x, y) -> world (x, y, elevation) on the plane at `elevation`."""

    @abstractmethod
    def world_to_image(
        self,
        coordinate: Sequence[float],
        elevation: float,
    ) -> Tuple[float, float]:
        """World (x, y) at `elevation` -> pixel (x, y)."""


class CalibratedTransform(ImageTransform):
    """Perspective projection with a calibrated camera."""

    def __init__(
        self,
        camera: CameraModel,
        pixel_to_ray: np.ndarray,
        world_to_pixel: np.ndarray,
        projection_center: Sequence[float],
        size: Tuple[float, float],
        center_on_ground: Sequence[float],
    ):
        super().__init__(size, center_on_ground)
        self.camera = camera
        self.pixel_to_ray = np.asarray(pixel_to_ray, dtype=float).reshape(3, 3)
        self.world_to_pixel = np.asarray(world_to_pixel, dtype=float).reshape(4, 4)
        self.projection_center = np.asarray(projection_center, dtype=float).reshape(3)

    def image_to_world(self, coordinate, elevation):
        x, y = self.camera.undistort(coordinate)
        ray = self.pixel_to_ray @ np.array([x, self.height - y, 1.0])

        # r solves (C + r * ray - P0) . z = 0 for the plane through P0 at `elevation`
        plane_point = np.array([self.center_on_ground[0], self.center_on_ground[1], elevation])
        offset = self.projection_center - plane_point
        a = -offset[2]
        b = ray[2]
        if b == 0:
            logger.debug("Viewing ray parallel to the ground plane, using ground center")
            self.failed_resolutions += 1
            return self.center_on_ground[0], self.center_on_ground[1], float(elevation)

        point = self.projection_center + ray * (a / b)
        return float(point[0]), float(point[1]), float(elevation)

    def world_to_image(self, coordinate, elevation):
        world = np.array([float(coordinate[0]), float(coordinate[1]), float(elevation), 1.0])
        projected = self.world_to_pixel @ world
        if projected[2] == 0:
            logger.debug("World point on the camera plane, using image center")
            self.failed_resolutions += 1
            return self.image_center

        x = projected[0] / projected[2]
        y = projected[1] / projected[2]
        return self.camera.distort((x, self.height - y))


class CorrespondenceTransform(ImageTransform):
    """Quad correspondence between pixel corners and ground footprint."""

    def __init__(
        self,
        size: Tuple[float, float],
        ground_coordinates: Sequence[Sequence[float]],
        view_direction: ViewDirection,
        center_on_ground: Sequence[float],
    ):
        super().__init__(size, center_on_ground)
        image_corners = [
            (0.0, 0.0),
            (self.width, 0.0),
            (self.width, self.height),
            (0.0, self.height),
        ]
        self.quads = QuadCorrespondenceTransform(image_corners, ground_coordinates, view_direction)

    def image_to_world(self, coordinate, elevation):
        point = self.quads.image_to_ground(coordinate)
        if point is None:
            self.failed_resolutions += 1
            logger.warning("World coordinate could not be determined from footprint data, "
                           "ground center will be used")
            return self.center_on_ground[0], self.center_on_ground[1], float(elevation)
        return point[0], point[1], float(elevation)

    def world_to_image(self, coordinate, elevation):
        point = self.quads.ground_to_image(coordinate)
        if point is None:
            self.failed_resolutions += 1
            logger.warning("Image coordinate could not be determined from footprint data, "
                           "image center will be used")
            return self.image_center
        return point


class Image:
    """
    One oblique aerial image.

    Attributes:
        name: Unique name within its view direction
        view_direction: Cardinal viewing direction
        view_direction_angle: Exact viewing angle, None unless the metadata
            version is recent enough to be trusted
        ground_coordinates: Four footprint corners (x, y[, z]) as captured
        center_on_ground: (x, y) center of the footprint
        meta: Shared metadata (size, version)
        camera: Camera model, None for uncalibrated images
        crs: CRS of the world coordinates, None for EPSG:4326
        elevation_service: Elevation lookup, None if unavailable
        id: Sequence number assigned by the owning collection
        transform: Calibrated or correspondence transform
    """

    def __init__(
        self,
        name: str,
        view_direction: ViewDirection,
        ground_coordinates: Sequence[Sequence[float]],
        center_on_ground: Sequence[float],
        meta: ImageMeta,
        view_direction_angle: Optional[float] = None,
        camera: Optional[CameraModel] = None,
        projection_center: Optional[Sequence[float]] = None,
        pixel_to_ray: Optional[np.ndarray] = None,
        world_to_pixel: Optional[np.ndarray] = None,
        crs: Optional[str] = None,
        elevation_service: Optional[ElevationService] = None,
        image_id: Optional[int] = None,
    ):
        self.name = name
        self.view_direction = ViewDirection(view_direction)
        self.meta = meta
        self.view_direction_angle = (
            float(view_direction_angle)
            if view_direction_angle is not None and meta.trusts_view_direction_angle()
            else None
        )
        self.ground_coordinates = [tuple(float(v) for v in c) for c in ground_coordinates]
        if len(self.ground_coordinates) != 4:
            raise ValueError(f"Image {name} needs 4 ground coordinates, "
                             f"got {len(self.ground_coordinates)}")
        self.center_on_ground = (float(center_on_ground[0]), float(center_on_ground[1]))
        self.camera = camera
        self.crs = crs
        self.elevation_service = elevation_service
        self.id = image_id
        self._average_elevation: Optional[float] = None

        calibration = (projection_center, pixel_to_ray, world_to_pixel)
        if camera is not None and all(part is not None for part in calibration):
            self.transform: ImageTransform = CalibratedTransform(
                camera, pixel_to_ray, world_to_pixel, projection_center,
                self.size, self.center_on_ground,
            )
        else:
            if any(part is not None for part in calibration):
                logger.warning(f"Image {name} has incomplete calibration, "
                               f"using footprint correspondence")
            self.transform = CorrespondenceTransform(
                self.size, self.ground_coordinates, self.view_direction, self.center_on_ground,
            )

    def __repr__(self) -> str:
        return f"Image(name={self.name!r}, view_direction={self.view_direction.name})"

    @property
    def size(self) -> Tuple[float, float]:
        if self.camera is not None and self.camera.size is not None:
            return self.camera.size
        return self.meta.size

    @property
    def is_calibrated(self) -> bool:
        return isinstance(self.transform, CalibratedTransform)

    @property
    def image_center(self) -> Tuple[float, float]:
        return self.transform.image_center

    def average_elevation(self) -> float:
        """
        Representative terrain height of the footprint, computed once.

        The mean of the corner elevations is used, unless it is exactly zero
        and an elevation service is set: then the footprint center is looked
        up and the answer adopted. A zero mean is kept if the lookup fails.
        Corners without an elevation count as zero.
        """
        cached = self._average_elevation
        if cached is not None:
            return cached

        heights = [c[2] if len(c) > 2 else 0.0 for c in self.ground_coordinates]
        average = sum(heights) / len(heights) if heights else 0.0
        if average == 0 and self.elevation_service is not None:
            queried = self.elevation_service.elevation_at(self.center_on_ground, self.crs)
            if queried is not None:
                average = queried
            else:
                logger.debug(f"No elevation for the center of image {self.name}, keeping 0")

        # single assignment publishes the value to concurrent readers
        self._average_elevation = average
        return average

    def image_to_world(
        self,
        coordinate: Sequence[float],
        elevation: Optional[float] = None,
    ) -> Tuple[float, float, float]:
        """
        Project a pixel onto the ground plane.

        Args:
            coordinate: (x, y) pixel, origin bottom-left
            elevation: Plane height, defaults to the average elevation

        Returns:
            (x, y, elevation) in the image CRS
        """
        if elevation is None:
            elevation = self.average_elevation()
        return self.transform.image_to_world(coordinate, elevation)

    def world_to_image(
        self,
        coordinate: Sequence[float],
        elevation: Optional[float] = None,
    ) -> Tuple[float, float]:
        """
        Project a world coordinate into the image.

        Args:
            coordinate: (x, y) in the image CRS
            elevation: Height of the point, defaults to the average elevation

        Returns:
            (x, y) pixel, origin bottom-left
        """
        if elevation is None:
            elevation = self.average_elevation()
        return self.transform.world_to_image(coordinate, elevation)
