"""
Result Metrics
==============
Post-processing of temperature fields: heat spread distances, field
statistics, probe histories and the energy balance monitor used by the
engine while a run is in progress.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Optional

import numpy as np

from plasmafurnace.config import ENERGY_ERROR_WARNING

if TYPE_CHECKING:
    import numpy.typing as npt

    from plasmafurnace.controller.fea.pre.material import Material
    from plasmafurnace.controller.fea.pre.mesh import Mesh
    from plasmafurnace.model.state import SimulationResult

logger = logging.getLogger(__name__)


def _distances(mesh: Mesh, origin: tuple[float, float]) -> npt.NDArray[np.float64]:
    return np.hypot(mesh.R - origin[0], mesh.Z - origin[1])


def heat_spread_distance(
    field: npt.NDArray[np.float64],
    mesh: Mesh,
    origin: tuple[float, float],
    threshold_temperature: float,
) -> float:
    """
    Largest distance from `origin` of a node hotter than the threshold.

    Args:
        field: Temperature field indexed [i, j] (radial, axial).
        mesh: Mesh the field lives on.
        origin: (r, z) of the reference point, usually a torch centre, in m.
        threshold_temperature: Temperature in K, e.g. ambient + 5 K.

    Returns:
        Distance in m, 0.0 if no node exceeds the threshold.
    """
    mask = np.asarray(field) > threshold_temperature
    if not mask.any():
        return 0.0
    return float(_distances(mesh, origin)[mask].max())


def thermal_front_distance(
    field: npt.NDArray[np.float64],
    mesh: Mesh,
    origin: tuple[float, float],
    baseline_temperature: float,
    fraction: float = 0.05,
) -> float:
    """
    Largest distance from `origin` at which the temperature rise is at least
    `fraction` of the peak rise.

    Unlike heat_spread_distance this is independent of how much energy the
    material stores per kelvin, so it compares how fast different materials
    conduct heat away from a source.
    """
    if not 0.0 < fraction < 1.0:
        raise ValueError(f"fraction must be within (0, 1), got {fraction}")
    rise = np.asarray(field) - baseline_temperature
    peak = float(rise.max())
    if peak <= 0.0:
        return 0.0
    mask = rise >= fraction * peak
    return float(_distances(mesh, origin)[mask].max())


def field_statistics(field: npt.NDArray[np.float64], mesh: Optional[Mesh] = None) -> dict[str, float]:
    """Min, max, mean and standard deviation; `volume_mean` when a mesh is given."""
    values = np.asarray(field, dtype=np.float64)
    stats = {
        "min": float(values.min()),
        "max": float(values.max()),
        "mean": float(values.mean()),
        "std": float(values.std()),
    }
    if mesh is not None:
        volumes = mesh.cell_volumes
        stats["volume_mean"] = float(np.sum(values * volumes) / np.sum(volumes))
    return stats


def probe_history(result: SimulationResult, r: float, z: float) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    """
    Temperature over time at the node closest to (r, z).

    Returns:
        Tuple (times, temperatures).
    """
    nr, nz = result.metadata.mesh_resolution
    radius = result.metadata.geometry["radius"]
    height = result.metadata.geometry["height"]
    i = int(np.clip(round(r / radius * (nr - 1)), 0, nr - 1))
    j = int(np.clip(round(z / height * (nz - 1)), 0, nz - 1))
    temperatures = np.array([snapshot.grid[j, i] for snapshot in result.snapshots], dtype=np.float64)
    return result.times, temperatures


@dataclass
class EnergyMonitor:
    """
    Running energy balance of a simulation.

    Stored energy is Σ ρ·cp(T)·V·(T - T_ref) over all control volumes. The
    conservation error compares its change with the accumulated source
    input minus wall losses, relative to the largest of the terms involved.
    """
    reference_temperature: float
    initial_energy: float = 0.0
    current_energy: float = 0.0
    energy_input: float = 0.0
    energy_loss: float = 0.0
    conservation_error: float = 0.0
    warned: bool = False

    @staticmethod
    def stored_energy(
        mesh: Mesh,
        material: Material,
        field: npt.NDArray[np.float64],
        reference_temperature: float,
    ) -> float:
        rho_cp = np.asarray(material.volumetric_heat_capacity(field), dtype=np.float64)
        return float(np.sum(rho_cp * mesh.cell_volumes * (field - reference_temperature)))

    def start(self, energy: float) -> None:
        self.initial_energy = energy
        self.current_energy = energy

    def update(self, current_energy: float, energy_input: float, energy_loss: float) -> float:
        """
        Record one step.

        Args:
            current_energy: Stored energy after the step in J.
            energy_input: Source energy added during the step in J.
            energy_loss: Energy lost through the wall during the step in J.

        Returns:
            The relative conservation error.
        """
        self.current_energy = current_energy
        self.energy_input += energy_input
        self.energy_loss += energy_loss

        expected = self.initial_energy + self.energy_input - self.energy_loss
        scale = max(abs(self.initial_energy), self.energy_input, self.energy_loss, abs(self.current_energy))
        self.conservation_error = abs(self.current_energy - expected) / scale if scale > 0 else 0.0
        return self.conservation_error

    def check(self, time: float) -> None:
        """Log a warning the first time the error exceeds the tolerance."""
        if self.conservation_error > ENERGY_ERROR_WARNING and not self.warned:
            self.warned = True
            logger.warning(
                f"Energy conservation error: {self.conservation_error * 100:.1f}% at time {time:.3f}s"
            )

    def summary(self) -> dict[str, float]:
        data = asdict(self)
        data.pop("warned")
        return data
