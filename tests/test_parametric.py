import pytest

from plasmafurnace.controller.parametric import ParametricParameter, ParametricStudy, linspace, set_parameter
from plasmafurnace.errors import ConfigurationError
from plasmafurnace.model.state import RunStatus, SimulationConfig


def test_linspace():
    assert linspace(1.0, 2.0, 3) == [1.0, 1.5, 2.0]
    assert linspace(5.0, 9.0, 1) == [5.0]
    with pytest.raises(ConfigurationError):
        linspace(0.0, 1.0, 0)


def test_set_parameter_copies(config_dict):
    updated = set_parameter(config_dict, "torches.0.power", 250.0)
    assert updated["torches"][0]["power"] == 250.0
    assert config_dict["torches"][0]["power"] == 100.0

    updated = set_parameter(config_dict, "boundary.convection_coefficient", 40.0)
    assert updated["boundary"]["convection_coefficient"] == 40.0


@pytest.mark.parametrize("path", ["torches.3.power", "torches.x.power", "nowhere.height", "geometry.height.value"])
def test_set_parameter_invalid_path(config_dict, path):
    with pytest.raises(ConfigurationError):
        set_parameter(config_dict, path, 1.0)


def test_sweep_over_torch_power(config_factory):
    config = config_factory(simulation={"total_time": 2.0})
    study = ParametricStudy(config, "torches.0.power", [50.0, 100.0])
    seen = set()
    results = study.run(progress_callback=lambda index, progress: seen.add(index))

    assert [value for value, _ in results] == [50.0, 100.0]
    assert all(result.status == RunStatus.COMPLETED for _, result in results)
    assert results[1][1].metadata.max_temperature > results[0][1].metadata.max_temperature
    assert seen == {0, 1}

    rows = study.summary()
    assert [row["value"] for row in rows] == [50.0, 100.0]
    assert rows[0]["status"] == "completed"
    assert rows[0]["final_time"] == pytest.approx(2.0)


def test_invalid_value_rejected_up_front(config_dict):
    with pytest.raises(ConfigurationError):
        ParametricStudy(config_dict, "torches.0.power", [])
    with pytest.raises(ConfigurationError):
        ParametricStudy(config_dict, "geometry.height", ["tall"])


def test_from_parameter_accepts_config_object(config_dict):
    config = SimulationConfig.from_dict(config_dict)
    study = ParametricStudy.from_parameter(config, ParametricParameter("geometry.height", 1.0, 2.0, 3))
    assert study.values == [1.0, 1.5, 2.0]
    assert [c.geometry.height for c in study.configs] == [1.0, 1.5, 2.0]


def test_cancelled_study_runs_nothing(config_dict):
    study = ParametricStudy(config_dict, "torches.0.power", [50.0, 100.0])
    study.cancel()
    assert study.run() == []
    assert study.summary() == []
