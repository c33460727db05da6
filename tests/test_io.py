import csv
import json

import numpy as np
import pytest

from plasmafurnace.controller.engine import SimulationEngine
from plasmafurnace.errors import ConfigurationError
from plasmafurnace.model.io import APP_VERSION, IOManager
from plasmafurnace.model.state import RunStatus, SimulationConfig


@pytest.fixture
def config(config_dict):
    return SimulationConfig.from_dict(config_dict)


@pytest.fixture
def result(config):
    return SimulationEngine(config).run()


def test_result_round_trip(tmp_path, config, result):
    path = str(tmp_path / "result.h5")
    IOManager.save_result(result, path, config=config)
    loaded, loaded_config = IOManager.load_result(path)

    assert loaded.status == RunStatus.COMPLETED
    assert loaded.metadata == result.metadata
    np.testing.assert_allclose(loaded.times, result.times)
    np.testing.assert_array_equal(loaded.temperatures(), result.temperatures())
    assert loaded_config == config
    assert not loaded.snapshots[0].grid.flags.writeable


def test_version_attribute(tmp_path, result):
    import h5py

    path = str(tmp_path / "result.h5")
    IOManager.save_result(result, path)
    with h5py.File(path, "r") as f:
        assert f.attrs["version"] == APP_VERSION
        assert f["results/temperatures"].shape == (6, 41, 21)
    _, loaded_config = IOManager.load_result(path)
    assert loaded_config is None


def test_failed_result_round_trip(tmp_path, config_factory):
    failed = SimulationEngine(config_factory(heat_source_formula="-1e12")).run()
    path = str(tmp_path / "failed.h5")
    IOManager.save_result(failed, path)
    loaded, _ = IOManager.load_result(path)
    assert loaded.status == RunStatus.FAILED
    assert loaded.failure == failed.failure


def test_load_rejects_non_hdf5(tmp_path):
    path = tmp_path / "not.h5"
    path.write_text("hello", encoding="utf-8")
    with pytest.raises(ValueError):
        IOManager.load_result(str(path))


def test_config_files(tmp_path, config):
    path = str(tmp_path / "config.json")
    IOManager.save_config(config, path)
    assert IOManager.load_config(path) == config

    with pytest.raises(FileNotFoundError):
        IOManager.load_config(str(tmp_path / "missing.json"))

    broken = tmp_path / "broken.json"
    broken.write_text("{", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        IOManager.load_config(str(broken))

    invalid = tmp_path / "invalid.json"
    invalid.write_text(json.dumps({"geometry": {"radius": "wide"}}), encoding="utf-8")
    with pytest.raises(ConfigurationError):
        IOManager.load_config(str(invalid))


def test_csv_export(tmp_path, result):
    output_dir = IOManager.export_results_csv(result, str(tmp_path))
    files = sorted((tmp_path / "results").iterdir())
    assert output_dir == str(tmp_path / "results")
    assert len(files) == len(result.snapshots)

    with open(files[-1], newline="", encoding="utf-8") as f:
        rows = list(csv.reader(f))
    assert rows[0] == ["r_m", "z_m", "temperature_K", "temperature_C"]
    assert len(rows) == 21 * 41 + 1
    kelvin, celsius = float(rows[1][2]), float(rows[1][3])
    assert celsius == pytest.approx(kelvin - 273.15)
