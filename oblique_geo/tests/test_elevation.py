"""
Tests for elevation sources and the query boundary.
"""

import threading

import numpy as np
import pytest
import rasterio
import requests
from numpy.testing import assert_allclose
from rasterio.transform import from_origin

from oblique_geo.elevation import (
    ConstantElevationSource,
    ElevationService,
    ElevationSource,
    ElevationSourceError,
    HttpElevationSource,
    RasterElevationSource,
    get_transformer,
    is_wgs84,
)

from .conftest import FailingElevationSource, StubElevationSource

NODATA = -9999.0


def write_dem(path, crs, transform, size=10):
    """Write a size x size DEM whose cell (row, col) holds row * 10 + col."""
    rows, cols = np.mgrid[0:size, 0:size]
    data = (rows * 10 + cols).astype('float32')
    data[0, 0] = NODATA
    with rasterio.open(
        path, 'w', driver='GTiff', height=size, width=size, count=1,
        dtype='float32', crs=crs, transform=transform, nodata=NODATA,
    ) as dst:
        dst.write(data, 1)
    return path


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} error")

    def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class ScriptedSession:
    """Stand-in for requests.Session.post answering from a script."""

    def __init__(self, *answers):
        self.answers = list(answers)
        self.requests = []

    def post(self, url, json=None, timeout=None):
        self.requests.append(json)
        answer = self.answers.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return answer


class BlockingElevationSource(ElevationSource):
    """Source that does not answer until released."""

    def __init__(self):
        self.release = threading.Event()

    def sample(self, coordinates):
        self.release.wait(5)
        return [1.0 for _ in coordinates]


class TestHelpers:

    @pytest.mark.parametrize("crs,expected", [
        (None, True), ("EPSG:4326", True), ("epsg:4326 ", True), ("EPSG:3857", False),
    ])
    def test_is_wgs84(self, crs, expected):
        assert is_wgs84(crs) is expected

    def test_transformer_is_cached(self):
        assert get_transformer("EPSG:4326", "EPSG:3857") is get_transformer("EPSG:4326", "EPSG:3857")


class TestConstantElevationSource:

    def test_same_value_everywhere(self):
        assert ConstantElevationSource(12.5).sample([(0, 0), (10, 45)]) == [12.5, 12.5]


class TestRasterElevationSource:
    """DEM lookups against a small GeoTIFF."""

    @pytest.fixture
    def geographic_dem(self, tmp_path):
        return write_dem(str(tmp_path / "dem.tif"), "EPSG:4326", from_origin(0, 10, 1, 1))

    def test_cell_value(self, geographic_dem):
        source = RasterElevationSource(geographic_dem)
        assert source.sample([(2.5, 7.5)]) == [22.0]

    def test_batch_order(self, geographic_dem):
        source = RasterElevationSource(geographic_dem)
        assert source.sample([(9.5, 0.5), (0.5, 8.5)]) == [99.0, 10.0]

    def test_nodata(self, geographic_dem):
        assert RasterElevationSource(geographic_dem).sample([(0.5, 9.5)]) == [None]

    def test_outside_raster(self, geographic_dem):
        assert RasterElevationSource(geographic_dem).sample([(20, 20), (-0.5, 5)]) == [None, None]

    def test_projected_raster(self, tmp_path):
        path = write_dem(str(tmp_path / "dem3857.tif"), "EPSG:3857", from_origin(0, 1_000_000, 100_000, 100_000))
        # (1, 1) degrees is about (111319, 111325) m: column 1, row 8
        assert RasterElevationSource(path).sample([(1.0, 1.0)]) == [81.0]


class TestHttpElevationSource:
    """Open-Elevation style client with a scripted session."""

    def make_source(self, *answers, max_retries=3):
        source = HttpElevationSource("http://elevation.test/lookup", max_retries=max_retries, retry_delay=0)
        source.session = ScriptedSession(*answers)
        return source

    def test_request_and_response(self):
        source = self.make_source(FakeResponse({'results': [{'elevation': 10}, {'elevation': 20.5}]}))

        assert source.sample([(7.0, 46.0), (8.0, 47.0)]) == [10.0, 20.5]
        assert source.session.requests[0] == {
            'locations': [
                {'latitude': 46.0, 'longitude': 7.0},
                {'latitude': 47.0, 'longitude': 8.0},
            ]
        }

    def test_missing_elevation(self):
        source = self.make_source(FakeResponse({'results': [{'elevation': None}]}))
        assert source.sample([(7.0, 46.0)]) == [None]

    def test_retries_after_failure(self):
        source = self.make_source(
            requests.exceptions.ConnectionError("refused"),
            FakeResponse({}, status_code=503),
            FakeResponse({'results': [{'elevation': 5}]}),
        )
        assert source.sample([(7.0, 46.0)]) == [5.0]
        assert len(source.session.requests) == 3

    def test_gives_up_after_retries(self):
        source = self.make_source(
            requests.exceptions.Timeout("slow"),
            requests.exceptions.Timeout("slow"),
            max_retries=2,
        )
        with pytest.raises(ElevationSourceError):
            source.sample([(7.0, 46.0)])

    def test_malformed_response(self):
        source = self.make_source(FakeResponse({'unexpected': []}))
        with pytest.raises(ElevationSourceError):
            source.sample([(7.0, 46.0)])

    def test_undecodable_body_is_not_retried(self):
        source = self.make_source(
            FakeResponse(requests.exceptions.JSONDecodeError("Expecting value", "<html>", 0)),
            FakeResponse({'results': [{'elevation': 5}]}),
        )
        with pytest.raises(ElevationSourceError):
            source.sample([(7.0, 46.0)])
        assert len(source.session.requests) == 1

    def test_non_numeric_elevation(self):
        source = self.make_source(FakeResponse({'results': [{'elevation': 'high'}]}))
        with pytest.raises(ElevationSourceError):
            source.sample([(7.0, 46.0)])

    def test_wrong_result_count(self):
        source = self.make_source(FakeResponse({'results': []}))
        with pytest.raises(ElevationSourceError):
            source.sample([(7.0, 46.0)])


class TestElevationService:
    """Failure handling of the query boundary."""

    def test_values(self, make_service):
        service = make_service(StubElevationSource(lambda lon, lat: lon + lat))
        assert service.elevations([(1, 2), (3, 4, 99)]) == [3.0, 7.0]
        assert service.elevation_at((1, 2)) == 3.0

    def test_converts_to_wgs84(self, make_service):
        source = StubElevationSource(lambda lon, lat: 0.0)
        service = make_service(source)
        x, y = get_transformer("EPSG:4326", "EPSG:3857").transform(2.0, 1.0)

        service.elevation_at((x, y), "EPSG:3857")

        assert_allclose(source.calls[0][0], (2.0, 1.0), atol=1e-9)

    def test_failure(self, make_service):
        service = make_service(FailingElevationSource())
        assert service.elevations([(1, 2)]) is None
        assert service.elevation_at((1, 2)) is None

    def test_timeout(self, make_service):
        source = BlockingElevationSource()
        service = make_service(source, timeout=0.05)
        try:
            assert service.elevation_at((1, 2)) is None
        finally:
            source.release.set()

    def test_incomplete_batch(self, make_service):
        service = make_service(StubElevationSource(lambda lon, lat: 1.0))
        service.source.sample = lambda coordinates: []
        assert service.elevations([(1, 2)]) is None

    def test_non_finite_values(self, make_service):
        service = make_service(StubElevationSource(lambda lon, lat: float('nan') if lon else None))
        assert service.elevations([(1, 0), (0, 0)]) == [None, None]

    def test_non_numeric_values(self, make_service):
        service = make_service(StubElevationSource(lambda lon, lat: "high"))
        assert service.elevations([(1, 2)]) is None
        assert service.elevation_at((1, 2)) is None

    def test_context_manager(self):
        with ElevationService(ConstantElevationSource(3.0)) as service:
            assert service.elevation_at((0, 0)) == 3.0
