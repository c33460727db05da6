from __future__ import annotations

import copy
from typing import Any

import matplotlib

matplotlib.use("Agg")

import pytest

from plasmafurnace.controller.fea.pre.heat_sources import BoundaryConditions, HeatSourceModel, Torch
from plasmafurnace.controller.fea.pre.mesh import Mesh
from plasmafurnace.model.materials import CARBON_STEEL, MaterialLibrary

AMBIENT = 298.0

BASE_CONFIG: dict[str, Any] = {
    "geometry": {"radius": 0.5, "height": 1.0},
    "mesh": {"nr": 21, "nz": 41},
    "torches": [
        {"position": {"r": 0.0, "z": 0.5}, "power": 100.0, "efficiency": 0.8, "sigma": 0.1},
    ],
    "material": {"name": CARBON_STEEL},
    "simulation": {"total_time": 5.0, "output_interval": 1.0, "cfl_factor": 0.5},
    "boundary": {"initial_temperature": AMBIENT, "ambient_temperature": AMBIENT},
}


def make_config(**sections: Any) -> dict[str, Any]:
    """Copy of the base configuration with whole sections or keys replaced.

    Dict values are merged into the existing section, anything else replaces it.
    """
    config = copy.deepcopy(BASE_CONFIG)
    for key, value in sections.items():
        if isinstance(value, dict) and isinstance(config.get(key), dict):
            config[key].update(value)
        else:
            config[key] = value
    return config


@pytest.fixture
def config_dict() -> dict[str, Any]:
    return make_config()


@pytest.fixture
def library() -> MaterialLibrary:
    return MaterialLibrary()


@pytest.fixture
def steel(library):
    return library.get(CARBON_STEEL)


@pytest.fixture
def mesh() -> Mesh:
    return Mesh(radius=0.5, height=1.0, nr=21, nz=41)


@pytest.fixture
def torch() -> Torch:
    return Torch(r=0.0, z=0.5, power=100.0, efficiency=0.8, sigma=0.1)


@pytest.fixture
def heat_sources(torch) -> HeatSourceModel:
    return HeatSourceModel([torch], BoundaryConditions(ambient_temperature=AMBIENT))


@pytest.fixture
def config_factory():
    return make_config
