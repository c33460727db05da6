"""Physical plausibility checks on complete runs."""
import numpy as np
import pytest

from plasmafurnace.controller.engine import SimulationEngine
from plasmafurnace.controller.fea.analysis.metrics import heat_spread_distance, thermal_front_distance
from plasmafurnace.model.materials import ALUMINUM, CARBON_STEEL, CONCRETE
from plasmafurnace.model.state import RunStatus

AMBIENT = 298.0

pytestmark = pytest.mark.slow


def _config(material, radius, height, nr, nz, total_time, torch_z, sigma, wall="mixed", torch_r=0.0):
    return {
        "geometry": {"radius": radius, "height": height},
        "mesh": {"nr": nr, "nz": nz},
        "torches": [
            {"position": {"r": torch_r, "z": torch_z}, "power": 150.0, "efficiency": 0.8, "sigma": sigma},
        ],
        "material": {"name": material},
        "simulation": {"total_time": total_time, "output_interval": total_time},
        "boundary": {"initial_temperature": AMBIENT, "ambient_temperature": AMBIENT, "wall": wall},
    }


def _run(config):
    engine = SimulationEngine(config)
    result = engine.run()
    assert result.status == RunStatus.COMPLETED
    return engine, result


def test_spread_is_independent_of_furnace_height():
    distances = []
    for height, nz in ((2.0, 81), (4.0, 161)):
        engine, result = _run(_config(CARBON_STEEL, 1.0, height, 41, nz, 60.0, height / 2, 0.1))
        field = result.final_snapshot.field
        distances.append(heat_spread_distance(field, engine.mesh, (0.0, height / 2), AMBIENT + 5.0))

    short, tall = distances
    for d in distances:
        assert 0.144 < d < 0.216
    assert abs(tall - short) / max(short, tall) < 0.2


def test_spread_ordering_follows_diffusivity():
    fronts = {}
    spreads = {}
    for material in (ALUMINUM, CARBON_STEEL, CONCRETE):
        engine, result = _run(_config(material, 0.5, 1.0, 51, 101, 120.0, 0.5, 0.05))
        field = result.final_snapshot.field
        assert np.all(np.isfinite(field))
        fronts[material] = thermal_front_distance(field, engine.mesh, (0.0, 0.5), AMBIENT, fraction=0.05)
        spreads[material] = heat_spread_distance(field, engine.mesh, (0.0, 0.5), AMBIENT + 5.0)

    assert fronts[ALUMINUM] > fronts[CARBON_STEEL] > fronts[CONCRETE]
    assert spreads[ALUMINUM] > spreads[CARBON_STEEL]


def test_energy_is_conserved_with_insulated_wall():
    config = _config(CARBON_STEEL, 0.5, 1.0, 26, 51, 30.0, 0.5, 0.05, wall="adiabatic", torch_r=0.25)
    config["simulation"]["output_interval"] = 10.0
    _, result = _run(config)
    energy = result.metadata.energy
    assert energy["energy_input"] > 0
    assert energy["energy_loss"] == pytest.approx(0.0, abs=1e-6 * energy["energy_input"])
    assert energy["conservation_error"] < 0.01


def test_torch_node_heats_up():
    engine, result = _run(_config(CARBON_STEEL, 0.5, 1.0, 21, 41, 20.0, 0.5, 0.1))
    temps = []
    i, j = engine.mesh.closest_node(0.0, 0.5)
    for snapshot in result.snapshots:
        temps.append(snapshot.field[i, j])
    assert temps[-1] > temps[0]
    assert result.metadata.max_temperature == pytest.approx(max(s.max_temperature for s in result.snapshots))
