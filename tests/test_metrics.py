import logging

import numpy as np
import pytest

from plasmafurnace.controller.fea.analysis.metrics import (
    EnergyMonitor,
    field_statistics,
    heat_spread_distance,
    probe_history,
    thermal_front_distance,
)
from plasmafurnace.controller.fea.utils import celsius_to_kelvin, kelvin_to_celsius, mirror_about_axis
from plasmafurnace.model.state import ResultMetadata, RunStatus, SimulationResult, Snapshot

AMBIENT = 298.0


def test_spread_distance_on_hot_spot(mesh):
    field = np.full(mesh.shape, AMBIENT)
    # Hot nodes at z = 0.5 (j = 20) up to r = 0.1 (i = 4)
    field[:5, 20] = AMBIENT + 50.0
    assert heat_spread_distance(field, mesh, (0.0, 0.5), AMBIENT + 5.0) == pytest.approx(0.1)
    assert heat_spread_distance(field, mesh, (0.0, 0.5), AMBIENT + 100.0) == 0.0


def test_thermal_front_uses_relative_rise(mesh):
    field = np.full(mesh.shape, AMBIENT)
    field[0, 20] = AMBIENT + 100.0
    field[0, 24] = AMBIENT + 10.0
    origin = (0.0, 0.5)
    assert thermal_front_distance(field, mesh, origin, AMBIENT, fraction=0.05) == pytest.approx(0.1)
    assert thermal_front_distance(field, mesh, origin, AMBIENT, fraction=0.5) == pytest.approx(0.0)
    # Scaling the rise leaves the front unchanged
    scaled = AMBIENT + 3.0 * (field - AMBIENT)
    assert thermal_front_distance(scaled, mesh, origin, AMBIENT) == pytest.approx(0.1)
    assert thermal_front_distance(np.full(mesh.shape, AMBIENT), mesh, origin, AMBIENT) == 0.0
    with pytest.raises(ValueError):
        thermal_front_distance(field, mesh, origin, AMBIENT, fraction=1.0)


def test_field_statistics(mesh):
    field = np.full(mesh.shape, AMBIENT)
    field[-1, :] = AMBIENT + 100.0
    stats = field_statistics(field)
    assert stats["min"] == AMBIENT
    assert stats["max"] == AMBIENT + 100.0
    assert "volume_mean" not in stats

    # Outer ring nodes hold more volume than their node count suggests
    weighted = field_statistics(field, mesh)
    assert weighted["volume_mean"] > weighted["mean"]
    uniform = field_statistics(np.full(mesh.shape, AMBIENT), mesh)
    assert uniform["volume_mean"] == pytest.approx(AMBIENT)
    assert uniform["std"] == 0.0


def _result(grids, times):
    nz, nr = grids[0].shape
    metadata = ResultMetadata(
        material="Carbon Steel",
        torch_positions=((0.0, 0.5),),
        geometry={"radius": 0.5, "height": 1.0},
        mesh_resolution=(nr, nz),
        min_temperature=float(min(g.min() for g in grids)),
        max_temperature=float(max(g.max() for g in grids)),
        steps_completed=len(times) - 1,
        final_time=times[-1],
        requested_time=times[-1],
    )
    snapshots = tuple(Snapshot(time=t, grid=g) for t, g in zip(times, grids))
    return SimulationResult(status=RunStatus.COMPLETED, snapshots=snapshots, metadata=metadata)


def test_probe_history_picks_closest_node():
    grids = []
    for k in range(3):
        grid = np.full((41, 21), AMBIENT)
        grid[20, 2] = AMBIENT + 10.0 * k
        grids.append(grid)
    result = _result(grids, [0.0, 1.0, 2.0])

    times, temperatures = probe_history(result, 0.051, 0.49)
    np.testing.assert_allclose(times, [0.0, 1.0, 2.0])
    np.testing.assert_allclose(temperatures, [AMBIENT, AMBIENT + 10.0, AMBIENT + 20.0])
    # Points outside the furnace clamp to the border
    _, outside = probe_history(result, 5.0, -1.0)
    np.testing.assert_allclose(outside, AMBIENT)


def test_energy_monitor_balance():
    monitor = EnergyMonitor(reference_temperature=AMBIENT)
    monitor.start(1000.0)
    assert monitor.update(1500.0, 600.0, 100.0) == pytest.approx(0.0)
    error = monitor.update(1500.0, 100.0, 0.0)
    assert error == pytest.approx(100.0 / 1500.0)

    summary = monitor.summary()
    assert summary["energy_input"] == 700.0
    assert summary["energy_loss"] == 100.0
    assert "warned" not in summary


def test_energy_monitor_warns_once(caplog):
    monitor = EnergyMonitor(reference_temperature=AMBIENT)
    monitor.start(0.0)
    monitor.update(500.0, 1000.0, 0.0)
    with caplog.at_level(logging.WARNING, logger="plasmafurnace"):
        monitor.check(1.0)
        monitor.check(2.0)
    warnings = [r for r in caplog.records if "Energy conservation error" in r.getMessage()]
    assert len(warnings) == 1
    assert monitor.warned


def test_stored_energy_is_zero_at_reference(mesh, steel):
    field = np.full(mesh.shape, AMBIENT)
    assert EnergyMonitor.stored_energy(mesh, steel, field, AMBIENT) == pytest.approx(0.0)
    assert EnergyMonitor.stored_energy(mesh, steel, field + 1.0, AMBIENT) > 0.0


def test_temperature_conversions_and_mirror():
    assert kelvin_to_celsius(273.15) == pytest.approx(0.0)
    assert celsius_to_kelvin(100.0) == pytest.approx(373.15)

    r = np.array([0.0, 0.5, 1.0])
    grid = np.array([[1.0, 2.0, 3.0], [4.0, 5.0, 6.0]])
    r_full, grid_full = mirror_about_axis(r, grid)
    np.testing.assert_allclose(r_full, [-1.0, -0.5, 0.0, 0.5, 1.0])
    np.testing.assert_allclose(grid_full, [[3.0, 2.0, 1.0, 2.0, 3.0], [6.0, 5.0, 4.0, 5.0, 6.0]])
