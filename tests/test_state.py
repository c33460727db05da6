import numpy as np
import pytest

from plasmafurnace.controller.fea.pre.heat_sources import WallCondition
from plasmafurnace.errors import ConfigurationError
from plasmafurnace.model.state import (
    BoundaryConfig,
    MeshConfig,
    Progress,
    RunStatus,
    SimulationConfig,
    Snapshot,
)


def test_from_dict(config_dict):
    config = SimulationConfig.from_dict(config_dict)
    assert config.geometry.radius == 0.5
    assert config.mesh.resolution() == (21, 41)
    assert len(config.torches) == 1
    torch = config.torches[0]
    assert (torch.r, torch.z, torch.power) == (0.0, 0.5, 100.0)
    assert config.material.name == "Carbon Steel"
    assert config.simulation.max_time_step is None
    assert config.boundary.wall == "mixed"
    assert config.heat_source_formula is None


def test_round_trip(config_factory):
    config = SimulationConfig.from_dict(
        config_factory(heat_source_formula="Q0 * 2", formula_constants={"Q0": 5.0})
    )
    assert SimulationConfig.from_dict(config.to_dict()) == config


def test_nested_torch_list(config_dict):
    config_dict["torches"] = {"torches": config_dict["torches"]}
    assert len(SimulationConfig.from_dict(config_dict).torches) == 1


def test_wall_aliases():
    assert BoundaryConfig.from_dict({"wall": "fixed-temperature"}).wall == "fixed"
    boundary = BoundaryConfig.from_dict({"wall": "convection-radiation"})
    assert boundary.to_boundary_conditions().wall == WallCondition.MIXED


def test_mesh_defaults_to_medium_preset():
    mesh = MeshConfig.from_dict({})
    assert mesh.preset == "medium"
    assert mesh.resolution() == (100, 100)
    with pytest.raises(ConfigurationError):
        MeshConfig(preset="custom").resolution()


@pytest.mark.parametrize(
    "section, value, parameter",
    [
        ("geometry", {"radius": 1.0}, "geometry.height"),
        ("geometry", {"radius": "wide", "height": 1.0}, "geometry.radius"),
        ("mesh", {"nr": 10.5, "nz": 10}, "mesh.nr"),
        ("simulation", {"total_time": True}, "simulation.total_time"),
        ("material", {}, "material.name"),
        ("torches", [{"position": {"r": 0.0}, "power": 1, "efficiency": 1, "sigma": 0.1}], "torches[0].position.z"),
        ("torches", "many", "torches"),
    ],
)
def test_error_names_parameter(config_dict, section, value, parameter):
    config_dict[section] = value
    with pytest.raises(ConfigurationError) as excinfo:
        SimulationConfig.from_dict(config_dict)
    assert excinfo.value.parameter == parameter


def test_unknown_wall_condition():
    with pytest.raises(ConfigurationError) as excinfo:
        BoundaryConfig(wall="porous").to_boundary_conditions()
    assert excinfo.value.parameter == "boundary.wall"


def test_snapshot_layout():
    field = np.arange(6, dtype=np.float64).reshape(2, 3)  # nr = 2, nz = 3
    snapshot = Snapshot.from_field(1.5, field)
    assert snapshot.grid.shape == (3, 2)
    assert snapshot.grid[2, 1] == field[1, 2]
    np.testing.assert_array_equal(snapshot.field, field)
    assert (snapshot.min_temperature, snapshot.max_temperature) == (0.0, 5.0)
    with pytest.raises(ValueError):
        snapshot.grid[0, 0] = 1.0
    # The snapshot is a copy
    field[0, 0] = 99.0
    assert snapshot.grid[0, 0] == 0.0


def test_run_status_and_progress():
    assert not RunStatus.RUNNING.is_terminal
    assert all(s.is_terminal for s in (RunStatus.COMPLETED, RunStatus.CANCELLED, RunStatus.FAILED))
    data = Progress(percent=50.0, status=RunStatus.RUNNING).to_dict()
    assert data["status"] == "running"
    assert data["estimated_remaining"] is None
