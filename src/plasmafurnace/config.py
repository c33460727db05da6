"""
Configuration & Global Constants
================================
This module serves as the central registry for the numerical constants and
limits shared by the simulation engine.

Why is this file needed?
------------------------
1. Consistency: The solver, the heat source model and the config validation
   must agree on the same physical constants and acceptance ranges.
2. Tuning: Resource ceilings and the progress cadence are collected in one
   place (EngineLimits) so a host application can override them per run.

Exports:
    STEFAN_BOLTZMANN (float): Stefan-Boltzmann constant in W/(m²·K⁴).
    REFERENCE_TEMPERATURE (float): Temperature at which the stable time step is evaluated.
    EngineLimits: Resource ceilings checked before a run starts.
"""
from __future__ import annotations

from dataclasses import dataclass

# Physics
STEFAN_BOLTZMANN: float = 5.67e-8  # W/(m²·K⁴)
DEFAULT_CONVECTION_COEFFICIENT: float = 10.0  # W/(m²·K)
DEFAULT_AMBIENT_TEMPERATURE: float = 298.0  # K

# Time stepping
REFERENCE_TEMPERATURE: float = 500.0  # K
MIN_TIME_STEP: float = 1e-8  # s
MAX_TIME_STEP: float = 10.0  # s
DEFAULT_CFL_FACTOR: float = 0.5
DEFAULT_OUTPUT_INTERVAL: float = 1.0  # s

# Accepted ranges for user input, (low, high); low is exclusive where noted
CFL_FACTOR_RANGE: tuple[float, float] = (0.0, 1.0)  # (exclusive, inclusive)
TORCH_POWER_RANGE_KW: tuple[float, float] = (0.0, 1000.0)  # (exclusive, inclusive)
TORCH_EFFICIENCY_RANGE: tuple[float, float] = (0.0, 1.0)  # inclusive
TORCH_SIGMA_RANGE_M: tuple[float, float] = (0.0, 1.0)  # (exclusive, inclusive)
POSITION_TOLERANCE: float = 1e-9  # m

# Energy accounting
ENERGY_ERROR_WARNING: float = 0.1  # relative

# Formula evaluator
MAX_FORMULA_LENGTH: int = 1000
MAX_FORMULA_NODES: int = 200
MAX_FORMULA_DEPTH: int = 50


@dataclass(frozen=True)
class EngineLimits:
    """
    Ceilings checked before a run is started.

    Attributes:
        max_nodes: Maximum number of mesh nodes (nr * nz).
        max_memory_bytes: Maximum estimated memory for field buffers and snapshots.
        progress_interval: Minimum wall-clock seconds between two progress updates.
    """
    max_nodes: int = 1_000_000
    max_memory_bytes: int = 2 * 1024 ** 3
    progress_interval: float = 0.1
