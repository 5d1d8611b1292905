"""
Shared fixtures: a calibrated oblique camera and simple footprints.
"""

import math

import numpy as np
import pytest

from oblique_geo.camera import CameraModel
from oblique_geo.elevation import ElevationSource, ElevationSourceError, ElevationService
from oblique_geo.image import Image, ImageMeta
from oblique_geo.view_direction import ViewDirection

WIDTH = 1000.0
HEIGHT = 800.0
FOCAL = 1000.0
# Camera 1000 m above ground, looking north, tilted 45 degrees down
PROJECTION_CENTER = np.array([500.0, -800.0, 1000.0])


def calibration_matrices():
    """Return (pixel_to_ray, world_to_pixel) for the test camera."""
    s = c = math.sqrt(0.5)
    rotation = np.array([
        [1.0, 0.0, 0.0],
        [0.0, -s, -c],
        [0.0, c, -s],
    ])
    K = np.array([
        [FOCAL, 0.0, WIDTH / 2],
        [0.0, FOCAL, HEIGHT / 2],
        [0.0, 0.0, 1.0],
    ])
    KR = K @ rotation
    world_to_pixel = np.eye(4)
    world_to_pixel[:3, :3] = KR
    world_to_pixel[:3, 3] = -KR @ PROJECTION_CENTER
    return np.linalg.inv(KR), world_to_pixel


class StubElevationSource(ElevationSource):
    """Elevation source answering from a function of (lon, lat)."""

    def __init__(self, height_fn):
        self.height_fn = height_fn
        self.calls = []

    def sample(self, coordinates):
        self.calls.append(list(coordinates))
        return [self.height_fn(lon, lat) for lon, lat in coordinates]


class FailingElevationSource(ElevationSource):
    """Elevation source that always fails."""

    def __init__(self):
        self.calls = 0

    def sample(self, coordinates):
        self.calls += 1
        raise ElevationSourceError("service unavailable")


@pytest.fixture
def meta():
    return ImageMeta(size=(WIDTH, HEIGHT), version=3.5, build_number=36)


@pytest.fixture
def camera():
    return CameraModel(name="cam", principal_point=(WIDTH / 2, HEIGHT / 2))


@pytest.fixture
def calibrated_image(meta, camera):
    pixel_to_ray, world_to_pixel = calibration_matrices()
    return Image(
        name="calibrated",
        view_direction=ViewDirection.NORTH,
        ground_coordinates=[(100, 0, 0), (900, 0, 0), (1500, 1000, 0), (-500, 1000, 0)],
        center_on_ground=(500, 200),
        meta=meta,
        camera=camera,
        projection_center=PROJECTION_CENTER,
        pixel_to_ray=pixel_to_ray,
        world_to_pixel=world_to_pixel,
    )


@pytest.fixture
def footprint_image():
    """Uncalibrated 100x50 image on a 10x5 footprint (10:1 scale)."""
    return Image(
        name="footprint",
        view_direction=ViewDirection.NORTH,
        ground_coordinates=[(0, 0, 20), (10, 0, 20), (10, 5, 20), (0, 5, 20)],
        center_on_ground=(5, 2.5),
        meta=ImageMeta(size=(100, 50), version=3.5, build_number=36),
    )


@pytest.fixture
def make_service():
    services = []

    def factory(source, timeout=2.0):
        service = ElevationService(source, timeout=timeout)
        services.append(service)
        return service

    yield factory
    for service in services:
        service.close()


def metadata_document(version="v3.5-36-g1a2b3c"):
    """
    Metadata document with two uncalibrated north images, one east image and
    one calibrated north image.
    """
    pixel_to_ray, world_to_pixel = calibration_matrices()
    header = ["name", "width", "height", "view-direction", "view-direction-angle",
              "groundCoordinates", "centerPointOnGround", "camera-index",
              "projection-center", "p-to-realworld", "p-to-image"]

    def footprint_row(name, x0, direction=1):
        return [name, None, None, direction, 1.5,
                [[x0, 0, 20], [x0 + 10, 0, 20], [x0 + 10, 5, 20], [x0, 5, 20]],
                [x0 + 5, 2.5], None, None, None, None]

    calibrated_row = [
        "calibrated", WIDTH, HEIGHT, 1, None,
        [[100, 0, 0], [900, 0, 0], [1500, 1000, 0], [-500, 1000, 0]],
        [500, 200], 0, PROJECTION_CENTER.tolist(),
        pixel_to_ray.tolist(), world_to_pixel[:3].tolist(),
    ]
    return {
        "version": version,
        "generalImageInfo": {
            "width": 100,
            "height": 50,
            "cameraParameter": [
                {"name": "cam", "principal-point": [WIDTH / 2, HEIGHT / 2]},
            ],
        },
        "images": [
            header,
            footprint_row("a", 0),
            footprint_row("b", 10),
            footprint_row("e", 100, direction=2),
            calibrated_row,
        ],
    }
