"""
Tests for YAML configuration handling.
"""

import math

import pytest
import yaml

from oblique_geo.config import Config, ElevationSettings, NavigationSettings
from oblique_geo.elevation import ConstantElevationSource, ElevationService, HttpElevationSource


def write_yaml(path, data):
    with open(path, 'w') as f:
        yaml.safe_dump(data, f)
    return str(path)


class TestConfig:

    def test_defaults(self, tmp_path):
        config = Config.from_yaml(write_yaml(tmp_path / "config.yaml", {}))
        assert config.metadata == []
        assert config.crs is None
        assert config.elevation.source == 'none'
        assert config.terrain.max_iterations == 3
        assert config.navigation.deviation == pytest.approx(math.pi / 4)
        assert config.build_elevation_service() is None

    def test_full_config(self, tmp_path):
        path = write_yaml(tmp_path / "config.yaml", {
            'crs': 'EPSG:25832',
            'metadata': ['north/image.json', 'south/image.json'],
            'elevation': {'source': 'raster', 'path': 'dem.tif', 'timeout': 2.5},
            'terrain': {'tolerance': 0.5, 'max_iterations': 5},
            'navigation': {'deviation_deg': 30, 'neighbor_count': 8},
        })

        config = Config.from_yaml(path)

        assert config.crs == 'EPSG:25832'
        assert config.metadata == [str(tmp_path / 'north/image.json'), str(tmp_path / 'south/image.json')]
        assert config.elevation.path == str(tmp_path / 'dem.tif')
        assert config.elevation.timeout == 2.5
        assert config.terrain.tolerance == 0.5
        assert config.terrain.max_iterations == 5
        assert config.navigation.neighbor_count == 8
        assert config.navigation.deviation == pytest.approx(math.radians(30))

    def test_single_metadata_path(self, tmp_path):
        config = Config.from_yaml(write_yaml(tmp_path / "config.yaml", {'metadata': 'image.json'}))
        assert config.metadata == [str(tmp_path / 'image.json')]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            Config.from_yaml(str(tmp_path / "missing.yaml"))

    def test_save_and_load(self, tmp_path):
        config = Config(
            metadata=[str(tmp_path / 'a.json')],
            crs='EPSG:3857',
            elevation=ElevationSettings(source='constant', value=12.0),
            navigation=NavigationSettings(deviation_deg=20.0),
        )
        path = str(tmp_path / "saved.yaml")
        config.to_yaml(path)

        assert Config.from_yaml(path) == config


class TestElevationSettings:

    def test_source_is_case_insensitive(self):
        assert ElevationSettings(source='HTTP', url='http://x').source == 'http'

    @pytest.mark.parametrize("kwargs", [
        {'source': 'lidar'},
        {'source': 'raster'},
        {'source': 'http'},
        {'source': 'constant', 'timeout': 0},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            ElevationSettings(**kwargs)

    def test_constant_service(self):
        config = Config(elevation=ElevationSettings(source='constant', value=7.0, timeout=1.0))
        service = config.build_elevation_service()
        try:
            assert isinstance(service, ElevationService)
            assert isinstance(service.source, ConstantElevationSource)
            assert service.timeout == 1.0
            assert service.elevation_at((0, 0)) == 7.0
        finally:
            service.close()

    def test_http_source(self):
        config = Config(elevation=ElevationSettings(
            source='http', url='http://elevation.test/lookup', max_retries=5, retry_delay=0.1,
        ))
        source = config.build_elevation_source()
        assert isinstance(source, HttpElevationSource)
        assert source.url == 'http://elevation.test/lookup'
        assert source.max_retries == 5
        assert source.retry_delay == 0.1
