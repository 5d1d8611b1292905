"""
Configuration module for oblique image geolocation.

Handles loading and validation of configuration from YAML files.
"""

import math
import yaml
from pathlib import Path
from dataclasses import dataclass, field
from typing import List, Optional
import logging

from .elevation import (
    ConstantElevationSource,
    ElevationService,
    ElevationSource,
    HttpElevationSource,
    RasterElevationSource,
)
from .spatial_index import DEFAULT_NEIGHBOR_COUNT

logger = logging.getLogger(__name__)

ELEVATION_SOURCE_TYPES = ('none', 'constant', 'raster', 'http')


@dataclass
class ElevationSettings:
    """Elevation source selection and query limits."""
    source: str = 'none'  # none, constant, raster or http
    path: Optional[str] = None  # DEM GeoTIFF for 'raster'
    url: Optional[str] = None  # Lookup endpoint for 'http'
    value: float = 0.0  # Height for 'constant'
    timeout: float = 5.0  # Per-query timeout in seconds
    max_retries: int = 3  # HTTP attempts
    retry_delay: float = 0.5  # HTTP backoff base in seconds

    def __post_init__(self):
        self.source = str(self.source).lower()
        if self.source not in ELEVATION_SOURCE_TYPES:
            raise ValueError(f"Unknown elevation source '{self.source}', "
                             f"expected one of {', '.join(ELEVATION_SOURCE_TYPES)}")
        if self.source == 'raster' and not self.path:
            raise ValueError("Elevation source 'raster' requires a path")
        if self.source == 'http' and not self.url:
            raise ValueError("Elevation source 'http' requires a url")
        if self.timeout <= 0:
            raise ValueError("Elevation timeout must be > 0")


@dataclass
class TerrainSettings:
    """Iterative terrain height refinement."""
    tolerance: float = 1.0  # Height change that ends the refinement
    max_iterations: int = 3  # Maximum elevation lookups per pixel


@dataclass
class NavigationSettings:
    """Neighbor search between images of one direction."""
    deviation_deg: float = 45.0  # Accepted deviation from the requested direction
    neighbor_count: int = DEFAULT_NEIGHBOR_COUNT  # Nearest neighbors considered

    @property
    def deviation(self) -> float:
        return math.radians(self.deviation_deg)


@dataclass
class Config:
    """
    Main configuration for oblique image geolocation.

    Attributes:
        metadata: Paths of the metadata documents to load
        crs: CRS forced on all images, None to use each document's crs
        elevation: Elevation source settings
        terrain: Terrain refinement settings
        navigation: Neighbor search settings
    """
    metadata: List[str] = field(default_factory=list)
    crs: Optional[str] = None
    elevation: ElevationSettings = field(default_factory=ElevationSettings)
    terrain: TerrainSettings = field(default_factory=TerrainSettings)
    navigation: NavigationSettings = field(default_factory=NavigationSettings)

    @classmethod
    def from_yaml(cls, config_path: str) -> "Config":
        """
        Load configuration from a YAML file.

        Args:
            config_path: Path to the YAML configuration file

        Returns:
            Config object with loaded parameters

        Example YAML structure:
            crs: "EPSG:25832"
            metadata:
              - "north/image.json"
              - "south/image.json"
            elevation:
              source: raster
              path: "dem.tif"
              timeout: 5.0
            terrain:
              tolerance: 1.0
              max_iterations: 3
            navigation:
              deviation_deg: 45.0
              neighbor_count: 20
        """
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}

        logger.info(f"Loading configuration from {config_path}")

        # Resolve paths relative to config file location
        config_dir = path.parent

        metadata = data.get('metadata') or []
        if isinstance(metadata, str):
            metadata = [metadata]

        elev_data = data.get('elevation') or {}
        dem_path = elev_data.get('path')
        if dem_path:
            dem_path = str(config_dir / dem_path)
        elevation = ElevationSettings(
            source=elev_data.get('source', 'none'),
            path=dem_path,
            url=elev_data.get('url'),
            value=float(elev_data.get('value', 0.0)),
            timeout=float(elev_data.get('timeout', 5.0)),
            max_retries=int(elev_data.get('max_retries', 3)),
            retry_delay=float(elev_data.get('retry_delay', 0.5)),
        )

        terrain_data = data.get('terrain') or {}
        terrain = TerrainSettings(
            tolerance=float(terrain_data.get('tolerance', 1.0)),
            max_iterations=int(terrain_data.get('max_iterations', 3)),
        )

        nav_data = data.get('navigation') or {}
        navigation = NavigationSettings(
            deviation_deg=float(nav_data.get('deviation_deg', 45.0)),
            neighbor_count=int(nav_data.get('neighbor_count', DEFAULT_NEIGHBOR_COUNT)),
        )

        return cls(
            metadata=[str(config_dir / m) for m in metadata],
            crs=data.get('crs'),
            elevation=elevation,
            terrain=terrain,
            navigation=navigation,
        )

    def to_yaml(self, config_path: str) -> None:
        """Save configuration to a YAML file."""
        data = {
            'metadata': list(self.metadata),
            'crs': self.crs,
            'elevation': {
                'source': self.elevation.source,
                'path': self.elevation.path,
                'url': self.elevation.url,
                'value': self.elevation.value,
                'timeout': self.elevation.timeout,
                'max_retries': self.elevation.max_retries,
                'retry_delay': self.elevation.retry_delay,
            },
            'terrain': {
                'tolerance': self.terrain.tolerance,
                'max_iterations': self.terrain.max_iterations,
            },
            'navigation': {
                'deviation_deg': self.navigation.deviation_deg,
                'neighbor_count': self.navigation.neighbor_count,
            },
        }

        with open(config_path, 'w') as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

        logger.info(f"Configuration saved to {config_path}")

    def build_elevation_source(self) -> Optional[ElevationSource]:
        """Instantiate the configured elevation source, None for 'none'."""
        settings = self.elevation
        if settings.source == 'constant':
            return ConstantElevationSource(settings.value)
        if settings.source == 'raster':
            return RasterElevationSource(settings.path)
        if settings.source == 'http':
            return HttpElevationSource(
                settings.url,
                timeout=settings.timeout,
                max_retries=settings.max_retries,
                retry_delay=settings.retry_delay,
            )
        return None

    def build_elevation_service(self) -> Optional[ElevationService]:
        source = self.build_elevation_source()
        if source is None:
            return None
        return ElevationService(source, timeout=self.elevation.timeout)
