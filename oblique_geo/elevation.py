"""
Elevation sources and the timeout-guarded query boundary.

An elevation source answers batches of (longitude, latitude) pairs in
EPSG:4326 with one elevation per pair (None where it has no data). Sources
may be slow or network backed and may fail; ElevationService wraps a source
so that callers never see an exception:

    - coordinates are converted from the image CRS to EPSG:4326 (pyproj)
    - every query runs on a worker thread and is abandoned after `timeout`
    - failures, timeouts and malformed answers all come back as None

Supported sources:
    - ConstantElevationSource: flat terrain at a fixed height
    - RasterElevationSource: DEM GeoTIFF read with rasterio
    - HttpElevationSource: Open-Elevation style JSON web service
"""

import logging
import math
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from functools import lru_cache
from typing import List, Optional, Sequence, Tuple

import numpy as np
import rasterio
import requests
from pyproj import Transformer

logger = logging.getLogger(__name__)

WGS84 = "EPSG:4326"

LonLat = Tuple[float, float]


class ElevationSourceError(RuntimeError):
    """Raised by an elevation source when a whole batch cannot be answered."""


@lru_cache(maxsize=32)
def get_transformer(source_crs: str, target_crs: str) -> Transformer:
    """Cached x/y ordered transformer between two CRS definitions."""
    return Transformer.from_crs(source_crs, target_crs, always_xy=True)


def is_wgs84(crs: Optional[str]) -> bool:
    return crs is None or str(crs).strip().upper() == WGS84


class ElevationSource(ABC):
    """Provider of terrain heights for geographic coordinates."""

    @abstractmethod
    def sample(self, coordinates: Sequence[LonLat]) -> List[Optional[float]]:
        """
        Look up elevations for a batch of coordinates.

        Args:
            coordinates: (longitude, latitude) pairs in degrees, EPSG:4326

        Returns:
            One elevation per coordinate, None where no data exists

        Raises:
            ElevationSourceError: If the batch cannot be answered
        """


class ConstantElevationSource(ElevationSource):
    """Flat terrain at one height everywhere."""

    def __init__(self, value: float = 0.0):
        self.value = float(value)

    def sample(self, coordinates: Sequence[LonLat]) -> List[Optional[float]]:
        return [self.value for _ in coordinates]


class RasterElevationSource(ElevationSource):
    """
    Elevations from a single-band DEM raster.

    The band is read once at construction; nodata cells and coordinates
    outside the raster give None.
    """

    def __init__(self, path: str, band: int = 1):
        self.path = str(path)
        with rasterio.open(self.path) as dataset:
            self._elevations = dataset.read(band, masked=True)
            self._inverse_transform = ~dataset.transform
            raster_crs = dataset.crs.to_wkt() if dataset.crs else None
        self._height, self._width = self._elevations.shape
        self._to_raster = None if raster_crs is None else get_transformer(WGS84, raster_crs)
        logger.info(f"Loaded DEM {self.path} ({self._width}x{self._height})")

    def sample(self, coordinates: Sequence[LonLat]) -> List[Optional[float]]:
        heights = []
        for lon, lat in coordinates:
            x, y = self._to_raster.transform(lon, lat) if self._to_raster else (lon, lat)
            col, row = self._inverse_transform * (x, y)
            if not (math.isfinite(col) and math.isfinite(row)):
                heights.append(None)
                continue
            row, col = int(math.floor(row)), int(math.floor(col))
            if not (0 <= row < self._height and 0 <= col < self._width):
                heights.append(None)
                continue
            value = self._elevations[row, col]
            heights.append(None if value is np.ma.masked else float(value))
        return heights


class HttpElevationSource(ElevationSource):
    """
    Client for an Open-Elevation compatible lookup service.

    Request:  POST {"locations": [{"latitude": .., "longitude": ..}, ...]}
    Response: {"results": [{"elevation": ..}, ...]} in request order
    """

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        max_retries: int = 3,
        retry_delay: float = 0.5,
    ):
        """
        Args:
            url: Lookup endpoint
            timeout: Request timeout in seconds
            max_retries: Maximum number of attempts
            retry_delay: Base delay between attempts (exponential backoff)
        """
        self.url = url
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.session = requests.Session()
        self.session.headers.update({
            'Accept': 'application/json',
            'User-Agent': 'oblique-geo/1.0',
        })

    def sample(self, coordinates: Sequence[LonLat]) -> List[Optional[float]]:
        payload = {
            'locations': [
                {'latitude': float(lat), 'longitude': float(lon)} for lon, lat in coordinates
            ]
        }

        attempts = max(1, self.max_retries)
        for attempt in range(attempts):
            try:
                response = self.session.post(self.url, json=payload, timeout=self.timeout)
                response.raise_for_status()
                break
            except requests.exceptions.RequestException as e:
                if attempt < attempts - 1:
                    delay = self.retry_delay * (2 ** attempt)
                    logger.warning(f"Elevation request failed, retrying in {delay}s: {e}")
                    time.sleep(delay)
                else:
                    raise ElevationSourceError(f"Elevation request to {self.url} failed: {e}") from e

        # a body that does not decode is not retried
        try:
            results = response.json()['results']
        except (KeyError, TypeError, ValueError) as e:
            raise ElevationSourceError(f"Malformed elevation response from {self.url}") from e

        if not isinstance(results, list) or len(results) != len(payload['locations']):
            raise ElevationSourceError(
                f"Expected {len(payload['locations'])} elevations from {self.url}"
            )

        heights = []
        for result in results:
            value = result.get('elevation') if isinstance(result, dict) else None
            try:
                heights.append(None if value is None else float(value))
            except (TypeError, ValueError) as e:
                raise ElevationSourceError(f"Invalid elevation {value!r} from {self.url}") from e
        return heights


class ElevationService:
    """
    Failure-tolerant boundary in front of an elevation source.

    Queries are issued one batch at a time on a private worker thread and
    waited on for at most `timeout` seconds. A timed out query is treated
    as failed; its thread is left to finish on its own.
    """

    def __init__(self, source: ElevationSource, timeout: float = 5.0, max_workers: int = 1):
        self.source = source
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="elevation",
        )

    def __enter__(self) -> "ElevationService":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    def elevations(
        self,
        coordinates: Sequence[Sequence[float]],
        crs: Optional[str] = None,
    ) -> Optional[List[Optional[float]]]:
        """
        Query elevations for coordinates given in `crs`.

        Args:
            coordinates: (x, y) pairs, extra components ignored
            crs: CRS of the coordinates, None for EPSG:4326 lon/lat

        Returns:
            One elevation (or None) per coordinate, or None if the whole
            query failed or timed out
        """
        try:
            points = [(float(c[0]), float(c[1])) for c in coordinates]
            if not is_wgs84(crs):
                transformer = get_transformer(str(crs), WGS84)
                points = [transformer.transform(x, y) for x, y in points]

            future = self._executor.submit(self.source.sample, points)
            values = future.result(timeout=self.timeout)
            if values is None or len(values) != len(points):
                logger.warning("Elevation source returned an incomplete batch")
                return None

            heights = [None if v is None else float(v) for v in values]
        except FuturesTimeoutError:
            future.cancel()
            logger.warning(f"Elevation query timed out after {self.timeout}s")
            return None
        except Exception as e:
            logger.warning(f"Elevation query failed: {e}")
            return None

        return [h if h is not None and math.isfinite(h) else None for h in heights]

    def elevation_at(
        self,
        coordinate: Sequence[float],
        crs: Optional[str] = None,
    ) -> Optional[float]:
        """Elevation of a single coordinate, None on any failure."""
        values = self.elevations([coordinate], crs)
        if not values:
            return None
        return values[0]
