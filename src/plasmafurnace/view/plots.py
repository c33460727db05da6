"""
Result Plots (Matplotlib)
=========================
Static figures of simulation results: the temperature field of one snapshot
mirrored about the furnace axis, and temperature histories at probe points.

The functions return the Figure; pass `filename` to save it as well.
"""
from __future__ import annotations

import logging
from typing import Optional, Sequence

import matplotlib.pyplot as plt
from matplotlib.figure import Figure

from plasmafurnace.controller.fea.analysis.metrics import probe_history
from plasmafurnace.controller.fea.utils import kelvin_to_celsius, mirror_about_axis, node_coordinates
from plasmafurnace.model.state import SimulationResult

logger = logging.getLogger(__name__)


def _style_grid(ax) -> None:
    ax.grid(visible=True, which='major', axis='both', linestyle='-', color='gray', lw=0.5)
    ax.minorticks_on()
    ax.grid(visible=True, which='minor', axis='both', linestyle=':', color='gray', lw=0.5)


def plot_snapshot(
    result: SimulationResult,
    index: int = -1,
    celsius: bool = True,
    cmap: str = "inferno",
    filename: Optional[str] = None,
) -> Figure:
    """
    Filled contour plot of one snapshot over the full furnace cross section.

    Args:
        result: Simulation result.
        index: Snapshot index, negative values count from the end.
        celsius: Show °C instead of K.
        cmap: Matplotlib colormap name.
        filename: Save the figure there when given.
    """
    if not result.snapshots:
        raise ValueError("Result holds no snapshots.")
    snapshot = result.snapshots[index]
    nr, nz = result.metadata.mesh_resolution
    radius = result.metadata.geometry["radius"]
    height = result.metadata.geometry["height"]

    r_full, grid = mirror_about_axis(node_coordinates(radius, nr), snapshot.grid)
    z = node_coordinates(height, nz)
    if celsius:
        grid = kelvin_to_celsius(grid)
    unit = "°C" if celsius else "K"

    fig, ax = plt.subplots(figsize=(6, 7), constrained_layout=True)
    contour = ax.contourf(r_full, z, grid, levels=50, cmap=cmap)
    fig.colorbar(contour, ax=ax, label=f"Temperature ({unit})")
    for r_t, z_t in result.metadata.torch_positions:
        ax.plot([r_t, -r_t], [z_t, z_t], "c+", ms=10, mew=2)

    ax.set_aspect("equal")
    ax.set_xlabel("r (m)")
    ax.set_ylabel("z (m)")
    ax.set_title(f"{result.metadata.material}, t = {snapshot.time:.1f} s")

    if filename:
        fig.savefig(filename, dpi=150)
        logger.info(f"Snapshot plot saved to: {filename}")
    return fig


def plot_probe_history(
    result: SimulationResult,
    points: Sequence[tuple[float, float]],
    celsius: bool = True,
    filename: Optional[str] = None,
) -> Figure:
    """
    Temperature over time at the nodes closest to the given (r, z) points.
    """
    if not points:
        raise ValueError("At least one probe point is required.")
    unit = "°C" if celsius else "K"

    fig, ax = plt.subplots(figsize=(7, 5), constrained_layout=True)
    for r, z in points:
        times, temperatures = probe_history(result, r, z)
        if celsius:
            temperatures = kelvin_to_celsius(temperatures)
        ax.plot(times, temperatures, lw=2, label=f"r={r:.3g} m, z={z:.3g} m")

    _style_grid(ax)
    ax.set_title(f"{result.metadata.material} Probe Temperatures")
    ax.set_xlabel("Time (s)")
    ax.set_ylabel(f"Temperature ({unit})")
    ax.legend()

    if filename:
        fig.savefig(filename, dpi=150)
        logger.info(f"Probe history plot saved to: {filename}")
    return fig
