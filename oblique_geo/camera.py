"""
Camera model module for radial lens distortion of oblique images.

Coordinate System:
    - Image frame: x-right, y-up, origin at the bottom-left image corner
    - Distances for the distortion polynomial are physical (sensor units,
      typically millimetres), converted with the horizontal pixel size

Distortion Model:
    1. Radial distance from the principal point: d = |p - pp| * pixel_size_x
    2. Shift from the polynomial in ascending powers: s = sum(c_i * d^i)
    3. New pixel distance (d + s) / pixel_size_x along the original direction
"""

import math
from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple
import logging

from .geometry import cartesian_distance

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CameraModel:
    """
    Lens parameters shared by all images of one camera.

    Two coefficient sets describe the radial distortion in both directions:
        - expected_to_found: ideal (undistorted) -> measured (distorted)
        - found_to_expected: measured (distorted) -> ideal (undistorted)

    Attributes:
        name: Camera identifier
        principal_point: (x, y) pixel position of the optical axis
        pixel_size: (x, y) physical size of one pixel, None if unknown
        expected_to_found: Polynomial coefficients, index i multiplies d^i
        found_to_expected: Polynomial coefficients, index i multiplies d^i
        size: Optional (width, height) of the images taken by this camera
    """
    name: str
    principal_point: Tuple[float, float]
    pixel_size: Optional[Tuple[float, float]] = None
    expected_to_found: Optional[Tuple[float, ...]] = None
    found_to_expected: Optional[Tuple[float, ...]] = None
    size: Optional[Tuple[float, float]] = None
    has_radial: bool = field(init=False)

    def __post_init__(self):
        object.__setattr__(self, 'principal_point', _as_pair(self.principal_point))
        if self.pixel_size is not None:
            object.__setattr__(self, 'pixel_size', _as_pair(self.pixel_size))
        if self.size is not None:
            object.__setattr__(self, 'size', _as_pair(self.size))
        for attr in ('expected_to_found', 'found_to_expected'):
            value = getattr(self, attr)
            if value is not None:
                object.__setattr__(self, attr, tuple(float(c) for c in value))

        object.__setattr__(
            self,
            'has_radial',
            bool(self.pixel_size and self.expected_to_found and self.found_to_expected),
        )
        logger.debug(f"Camera {self.name}: principal point {self.principal_point}, "
                     f"radial correction {self.has_radial}")

    def correct(
        self,
        coordinate: Sequence[float],
        found_to_expected: bool = False,
    ) -> Tuple[float, float]:
        """
        Apply the radial distortion polynomial to one pixel coordinate.

        Args:
            coordinate: (x, y) pixel coordinate
            found_to_expected: True to remove distortion (distorted -> ideal),
                False to add it (ideal -> distorted)

        Returns:
            Corrected (x, y) pixel coordinate; the input unchanged if the
            camera has no radial correction or the point is the principal point
        """
        x, y = float(coordinate[0]), float(coordinate[1])
        if not self.has_radial:
            return x, y

        coefficients = self.found_to_expected if found_to_expected else self.expected_to_found
        pixel_size_x = self.pixel_size[0]

        distance = cartesian_distance(self.principal_point, (x, y)) * pixel_size_x
        if distance == 0:
            return x, y

        shift = sum(c * distance ** i for i, c in enumerate(coefficients))

        new_distance_px = (distance + shift) / pixel_size_x
        theta = math.atan2(y - self.principal_point[1], x - self.principal_point[0])
        return (
            self.principal_point[0] + new_distance_px * math.cos(theta),
            self.principal_point[1] + new_distance_px * math.sin(theta),
        )

    def undistort(self, coordinate: Sequence[float]) -> Tuple[float, float]:
        """Distorted (as captured) pixel -> ideal pixel."""
        return self.correct(coordinate, found_to_expected=True)

    def distort(self, coordinate: Sequence[float]) -> Tuple[float, float]:
        """Ideal pixel -> distorted (as captured) pixel."""
        return self.correct(coordinate, found_to_expected=False)


def _as_pair(values: Sequence[float]) -> Tuple[float, float]:
    return float(values[0]), float(values[1])
