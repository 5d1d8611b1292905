"""
Oblique Image Geolocation Package

Navigate large oblique aerial photographs like a continuous map: find the
image that best covers a ground coordinate and convert between image pixels
and world (terrain) coordinates.

Coordinate System Chain:
    Pixel (bottom-left origin) → Camera ray → Ground plane at elevation → World
    (or, without calibration, pixel quad ↔ footprint quad correspondence)

Conventions:
    - Pixels: x-right, y-up, origin at the bottom-left image corner
    - World: the images' projected CRS; elevation sources use EPSG:4326
    - Directions: 0 = east, pi/2 = north (radians)
"""

from .view_direction import ViewDirection, direction_from_name, direction_name
from .camera import CameraModel
from .correspondence import QuadCorrespondenceTransform, transform_coordinate
from .elevation import (
    ElevationSource,
    ElevationSourceError,
    ElevationService,
    ConstantElevationSource,
    RasterElevationSource,
    HttpElevationSource,
)
from .image import Image, ImageMeta, ImageTransform, CalibratedTransform, CorrespondenceTransform
from .terrain import TerrainHeightResolver, TransformOptions, TransformResult
from .spatial_index import SpatialImageIndex, IndexEntry
from .direction import DirectionBucket, Handoff
from .metadata import MetadataError, parse_images, load_metadata_file
from .collection import ObliqueCollection
from .config import Config

__version__ = "1.0.0"
__all__ = [
    "ViewDirection",
    "direction_from_name",
    "direction_name",
    "CameraModel",
    "QuadCorrespondenceTransform",
    "transform_coordinate",
    "ElevationSource",
    "ElevationSourceError",
    "ElevationService",
    "ConstantElevationSource",
    "RasterElevationSource",
    "HttpElevationSource",
    "Image",
    "ImageMeta",
    "ImageTransform",
    "CalibratedTransform",
    "CorrespondenceTransform",
    "TerrainHeightResolver",
    "TransformOptions",
    "TransformResult",
    "SpatialImageIndex",
    "IndexEntry",
    "DirectionBucket",
    "Handoff",
    "MetadataError",
    "parse_images",
    "load_metadata_file",
    "ObliqueCollection",
    "Config",
]
