"""
Tests for the command-line interface.
"""

import json

import pytest
import yaml

from oblique_geo.cli import main

from .conftest import metadata_document


@pytest.fixture
def config_path(tmp_path):
    (tmp_path / "images.json").write_text(json.dumps(metadata_document()))
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({
        'metadata': ['images.json'],
        'elevation': {'source': 'constant', 'value': 50.0},
    }))
    return str(path)


def run(capsys, *argv):
    code = main(list(argv))
    out = capsys.readouterr().out
    return code, json.loads(out) if out.strip() else None


class TestCli:

    def test_pixel_without_terrain(self, capsys, config_path):
        code, output = run(capsys, config_path, '--image', 'a', '--pixel', '50', '25', '--no-terrain')
        assert code == 0
        assert output['image'] == 'a'
        assert output['world'] == pytest.approx([5.0, 2.5, 20.0])
        assert output['estimated'] is True

    def test_pixel_with_terrain(self, capsys, config_path):
        code, output = run(capsys, config_path, '--image', 'calibrated', '--pixel', '500', '400')
        assert code == 0
        assert output['world'] == pytest.approx([500.0, 150.0, 50.0])
        assert output['elevation'] == 50.0
        assert output['estimated'] is False

    def test_world(self, capsys, config_path):
        code, output = run(capsys, config_path, '--image', 'a', '--world', '2', '1', '20')
        assert code == 0
        assert output['pixel'] == pytest.approx([20.0, 10.0])

    def test_neighbor(self, capsys, config_path):
        code, output = run(capsys, config_path, '--image', 'a', '--neighbor', '0')
        assert code == 0
        assert output == {'image': 'a', 'neighbor': 'b'}

    def test_nearest(self, capsys, config_path):
        code, output = run(capsys, config_path, '--nearest', '14', '3', '--direction', 'north')
        assert code == 0
        assert output == {'image': 'b'}

    def test_nearest_in_empty_direction(self, capsys, config_path):
        code, output = run(capsys, config_path, '--nearest', '14', '3', '--direction', 'south')
        assert code == 0
        assert output == {'image': None}

    def test_unknown_image(self, capsys, config_path):
        code, output = run(capsys, config_path, '--image', 'missing', '--pixel', '1', '1')
        assert code == 1
        assert output is None

    def test_missing_config(self, capsys, tmp_path):
        code, _ = run(capsys, str(tmp_path / 'missing.yaml'), '--nearest', '0', '0')
        assert code == 1

    def test_unsupported_metadata(self, capsys, tmp_path):
        (tmp_path / "old.json").write_text(json.dumps(metadata_document("v3.3-1-gabc")))
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({'metadata': ['old.json']}))

        code, _ = run(capsys, str(path), '--nearest', '0', '0')
        assert code == 1

    def test_missing_dem(self, capsys, tmp_path):
        (tmp_path / "images.json").write_text(json.dumps(metadata_document()))
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({
            'metadata': ['images.json'],
            'elevation': {'source': 'raster', 'path': 'missing.tif'},
        }))

        code, output = run(capsys, str(path), '--nearest', '0', '0')

        assert code == 1
        assert output is None

    def test_image_required(self, config_path):
        with pytest.raises(SystemExit):
            main([config_path, '--pixel', '1', '1'])
