"""
Parser for oblique image metadata documents.

Supported format (version 3.5, or 3.4 from build 36 on):

    {
      "version": "v3.5-36-g1a2b3c",
      "generalImageInfo": {
        "width": 11608, "height": 8708,
        "crs": "<proj definition>",                  (optional)
        "cameraParameter": [
          {"name": ..., "principal-point": [x, y], "pixel-size": [sx, sy],
           "radial-distorsion-expected-2-found": [c0, c1, ...],
           "radial-distorsion-found-2-expected": [c0, c1, ...]}
        ]
      },
      "images": [
        ["name", "width", "height", "view-direction", "view-direction-angle",
         "groundCoordinates", "centerPointOnGround", "camera-index",
         "projection-center", "p-to-realworld", "p-to-image"],
        [<one row per image, columns as in the header>]
      ]
    }

Only the columns "name", "view-direction", "groundCoordinates" and
"centerPointOnGround" are required.
"""

import itertools
import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

import numpy as np

from .camera import CameraModel
from .elevation import ElevationService
from .image import Image, ImageMeta
from .view_direction import ViewDirection

logger = logging.getLogger(__name__)

_VERSION_PATTERN = re.compile(r"\d+\.\d+")
_BUILD_PATTERN = re.compile(r"-(\d+)-")

_REQUIRED_COLUMNS = ('name', 'view-direction', 'groundCoordinates', 'centerPointOnGround')


class MetadataError(ValueError):
    """Raised for unsupported or malformed metadata documents."""


def parse_version(document: Dict[str, Any]) -> Tuple[Optional[float], Optional[int]]:
    """
    Extract (version, build number) from the document's version string.

    Either part is None when it cannot be found.
    """
    version, build_number = None, None
    text = document.get('version')
    if text:
        match = _VERSION_PATTERN.search(str(text))
        if match:
            version = float(match.group(0))
        match = _BUILD_PATTERN.search(str(text))
        if match:
            build_number = int(match.group(1))
    return version, build_number


def is_supported(version: Optional[float], build_number: Optional[int]) -> bool:
    if version is None:
        return False
    if version >= 3.5:
        return True
    return version == 3.4 and build_number is not None and build_number >= 36


def parse_camera(options: Dict[str, Any]) -> CameraModel:
    """Build a camera model from one cameraParameter entry."""
    try:
        return CameraModel(
            name=options.get('name', ''),
            principal_point=options['principal-point'],
            pixel_size=options.get('pixel-size'),
            expected_to_found=options.get('radial-distorsion-expected-2-found'),
            found_to_expected=options.get('radial-distorsion-found-2-expected'),
            size=options.get('size'),
        )
    except (KeyError, TypeError, IndexError, ValueError) as e:
        raise MetadataError(f"Invalid camera parameters: {e}") from e


def _pixel_to_ray(rows) -> Optional[np.ndarray]:
    if not rows:
        return None
    matrix = np.asarray(rows, dtype=float)
    if matrix.shape != (3, 3):
        raise MetadataError(f"p-to-realworld must be 3x3, got {matrix.shape}")
    return matrix


def _world_to_pixel(rows) -> Optional[np.ndarray]:
    if not rows:
        return None
    matrix = np.asarray(rows, dtype=float)
    if matrix.shape != (3, 4):
        raise MetadataError(f"p-to-image must be 3x4, got {matrix.shape}")
    return np.vstack([matrix, [0.0, 0.0, 0.0, 1.0]])


def parse_images(
    document: Dict[str, Any],
    crs: Optional[str] = None,
    elevation_service: Optional[ElevationService] = None,
    id_sequence: Optional[Iterator[int]] = None,
) -> List[Image]:
    """
    Build the images described by a metadata document.

    Args:
        document: Decoded metadata document
        crs: CRS of the world coordinates, overrides the document's crs
        elevation_service: Elevation lookup handed to every image
        id_sequence: Source of image ids, a fresh count from 1 if None

    Returns:
        Images in document order

    Raises:
        MetadataError: If the document is unsupported or malformed
    """
    version, build_number = parse_version(document)
    if not is_supported(version, build_number):
        raise MetadataError(
            f"Unsupported metadata version {document.get('version')!r}, "
            f"only 3.5 and higher are supported"
        )

    try:
        info = document['generalImageInfo']
        rows = list(document['images'])
    except (KeyError, TypeError) as e:
        raise MetadataError(f"Missing metadata section: {e}") from e
    if not rows:
        return []

    ids = id_sequence if id_sequence is not None else itertools.count(1)
    default_size = (info.get('width'), info.get('height'))
    cameras = [parse_camera(c) for c in info.get('cameraParameter') or []]
    image_crs = crs or info.get('crs')

    header = rows[0]
    columns = {name: i for i, name in enumerate(header)}
    missing = [c for c in _REQUIRED_COLUMNS if c not in columns]
    if missing:
        raise MetadataError(f"Image table lacks columns: {', '.join(missing)}")

    metas: Dict[Tuple[float, float], ImageMeta] = {}
    images = []
    for row in rows[1:]:
        def value(column):
            index = columns.get(column)
            return row[index] if index is not None and index < len(row) else None

        try:
            width, height = value('width'), value('height')
            size = (width, height) if width and height else default_size
            if not size[0] or not size[1]:
                raise MetadataError(f"No image size for {value('name')}")
            size = (float(size[0]), float(size[1]))
            if size not in metas:
                metas[size] = ImageMeta(size, version, build_number or 0)

            camera_index = value('camera-index')
            camera = None
            if camera_index is not None and 0 <= int(camera_index) < len(cameras):
                camera = cameras[int(camera_index)]

            images.append(Image(
                name=str(value('name')),
                view_direction=ViewDirection(int(value('view-direction'))),
                ground_coordinates=value('groundCoordinates'),
                center_on_ground=value('centerPointOnGround'),
                meta=metas[size],
                view_direction_angle=value('view-direction-angle'),
                camera=camera,
                projection_center=value('projection-center') or None,
                pixel_to_ray=_pixel_to_ray(value('p-to-realworld')),
                world_to_pixel=_world_to_pixel(value('p-to-image')),
                crs=image_crs,
                elevation_service=elevation_service,
                image_id=next(ids),
            ))
        except MetadataError:
            raise
        except (TypeError, ValueError, IndexError) as e:
            raise MetadataError(f"Invalid image row {row[:1]}: {e}") from e

    logger.info(f"Parsed {len(images)} images (metadata version {version}, build {build_number})")
    return images


def load_metadata_file(path: str) -> Dict[str, Any]:
    """Read a metadata document from a JSON file."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Metadata file not found: {path}")
    try:
        with open(path, 'r') as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise MetadataError(f"Invalid JSON in {path}: {e}") from e
