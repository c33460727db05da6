"""
Simulation State (Data Model)
=============================
Configuration and result structures exchanged between the engine and its
callers.

Why is this file needed?
------------------------
1. Validation boundary: A run configuration arrives as a plain dict (JSON),
   `SimulationConfig.from_dict` turns it into typed, immutable dataclasses and
   rejects malformed input with a ConfigurationError.
2. Persistence: Every structure here round-trips through to_dict/from_dict so
   it can be stored next to the results (see model/io.py).
3. Decoupling: The engine writes results, callers only read frozen copies.

Classes:
    SimulationConfig: Complete run configuration.
    RunStatus: Run state machine.
    Progress: Last known progress of a run.
    Snapshot: Temperature grid at one output time.
    SimulationResult: Snapshots plus metadata of a finished run.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Optional

import numpy as np

from plasmafurnace.config import (
    DEFAULT_AMBIENT_TEMPERATURE,
    DEFAULT_CFL_FACTOR,
    DEFAULT_CONVECTION_COEFFICIENT,
    DEFAULT_OUTPUT_INTERVAL,
    REFERENCE_TEMPERATURE,
)
from plasmafurnace.controller.fea.pre.heat_sources import BoundaryConditions, Torch, WallCondition
from plasmafurnace.controller.fea.pre.mesh import resolve_preset
from plasmafurnace.errors import ConfigurationError

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)

CUSTOM_PRESET = "custom"


# --- Parsing helpers ---

def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key, {})
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"Section '{key}' must be an object, got {type(value).__name__}.", parameter=key)
    return value


def _number(data: dict[str, Any], key: str, path: str, default: Any = ...) -> float:
    if key not in data or data[key] is None:
        if default is ...:
            raise ConfigurationError(f"Missing required parameter '{path}'.", parameter=path)
        return default
    value = data[key]
    if isinstance(value, bool):
        raise ConfigurationError(f"Parameter '{path}' must be a number, got {value!r}.", parameter=path)
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Parameter '{path}' must be a number, got {value!r}.", parameter=path) from e


def _integer(data: dict[str, Any], key: str, path: str) -> Optional[int]:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise ConfigurationError(f"Parameter '{path}' must be an integer, got {value!r}.", parameter=path)
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Parameter '{path}' must be an integer, got {value!r}.", parameter=path) from e


# --- Configuration ---

@dataclass(frozen=True)
class GeometryConfig:
    height: float
    radius: float

    @staticmethod
    def from_dict(data: dict[str, Any]) -> GeometryConfig:
        return GeometryConfig(
            height=_number(data, "height", "geometry.height"),
            radius=_number(data, "radius", "geometry.radius"),
        )


@dataclass(frozen=True)
class MeshConfig:
    """Either a named preset or an explicit (nr, nz) resolution."""
    preset: Optional[str] = None
    nr: Optional[int] = None
    nz: Optional[int] = None

    def resolution(self) -> tuple[int, int]:
        """The (nr, nz) pair this config stands for."""
        if self.preset and self.preset.lower() != CUSTOM_PRESET:
            return resolve_preset(self.preset)
        if self.nr is None or self.nz is None:
            raise ConfigurationError(
                "Mesh needs either a preset or both 'nr' and 'nz'.", parameter="mesh"
            )
        return self.nr, self.nz

    @staticmethod
    def from_dict(data: dict[str, Any]) -> MeshConfig:
        preset = data.get("preset")
        if preset is not None and not isinstance(preset, str):
            raise ConfigurationError(f"Mesh preset must be a string, got {preset!r}.", parameter="mesh.preset")
        nr = _integer(data, "nr", "mesh.nr")
        nz = _integer(data, "nz", "mesh.nz")
        if preset is None and nr is None and nz is None:
            preset = "medium"
        return MeshConfig(preset=preset, nr=nr, nz=nz)

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass(frozen=True)
class TorchConfig:
    """Torch as given by the caller, position in absolute metres."""
    r: float
    z: float
    power: float
    efficiency: float
    sigma: float
    id: Optional[int] = None

    def to_torch(self) -> Torch:
        return Torch(r=self.r, z=self.z, power=self.power, efficiency=self.efficiency, sigma=self.sigma, id=self.id)

    @staticmethod
    def from_dict(data: dict[str, Any], index: int = 0) -> TorchConfig:
        path = f"torches[{index}]"
        if not isinstance(data, dict):
            raise ConfigurationError(f"{path} must be an object.", parameter=path)
        position = _section(data, "position")
        return TorchConfig(
            r=_number(position, "r", f"{path}.position.r"),
            z=_number(position, "z", f"{path}.position.z"),
            power=_number(data, "power", f"{path}.power"),
            efficiency=_number(data, "efficiency", f"{path}.efficiency"),
            sigma=_number(data, "sigma", f"{path}.sigma"),
            id=_integer(data, "id", f"{path}.id"),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "position": {"r": self.r, "z": self.z},
            "power": self.power,
            "efficiency": self.efficiency,
            "sigma": self.sigma,
        }
        if self.id is not None:
            data["id"] = self.id
        return data


@dataclass(frozen=True)
class MaterialConfig:
    name: str

    @staticmethod
    def from_dict(data: dict[str, Any]) -> MaterialConfig:
        name = data.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ConfigurationError("Missing required parameter 'material.name'.", parameter="material.name")
        return MaterialConfig(name=name)


@dataclass(frozen=True)
class SimulationSettings:
    total_time: float
    cfl_factor: float = DEFAULT_CFL_FACTOR
    output_interval: float = DEFAULT_OUTPUT_INTERVAL
    max_time_step: Optional[float] = None
    reference_temperature: float = REFERENCE_TEMPERATURE
    parallel: bool = False

    @staticmethod
    def from_dict(data: dict[str, Any]) -> SimulationSettings:
        return SimulationSettings(
            total_time=_number(data, "total_time", "simulation.total_time"),
            cfl_factor=_number(data, "cfl_factor", "simulation.cfl_factor", DEFAULT_CFL_FACTOR),
            output_interval=_number(data, "output_interval", "simulation.output_interval", DEFAULT_OUTPUT_INTERVAL),
            max_time_step=_number(data, "max_time_step", "simulation.max_time_step", None),
            reference_temperature=_number(
                data, "reference_temperature", "simulation.reference_temperature", REFERENCE_TEMPERATURE
            ),
            parallel=bool(data.get("parallel", False)),
        )


@dataclass(frozen=True)
class BoundaryConfig:
    initial_temperature: float = DEFAULT_AMBIENT_TEMPERATURE
    ambient_temperature: float = DEFAULT_AMBIENT_TEMPERATURE
    convection_coefficient: float = DEFAULT_CONVECTION_COEFFICIENT
    wall: str = WallCondition.MIXED.value
    wall_temperature: Optional[float] = None
    emissivity: Optional[float] = None  # overrides the material emissivity

    def to_boundary_conditions(self) -> BoundaryConditions:
        try:
            wall = WallCondition(self.wall)
        except ValueError as e:
            names = ", ".join(w.value for w in WallCondition)
            raise ConfigurationError(
                f"Unknown wall condition '{self.wall}'. Expected one of: {names}.", parameter="boundary.wall"
            ) from e
        return BoundaryConditions(
            ambient_temperature=self.ambient_temperature,
            convection_coefficient=self.convection_coefficient,
            wall=wall,
            wall_temperature=self.wall_temperature,
        )

    @staticmethod
    def from_dict(data: dict[str, Any]) -> BoundaryConfig:
        wall = data.get("wall") or WallCondition.MIXED.value
        # Older parameter files use these names
        wall = {"fixed-temperature": "fixed", "convection-radiation": "mixed"}.get(wall, wall)
        return BoundaryConfig(
            initial_temperature=_number(
                data, "initial_temperature", "boundary.initial_temperature", DEFAULT_AMBIENT_TEMPERATURE
            ),
            ambient_temperature=_number(
                data, "ambient_temperature", "boundary.ambient_temperature", DEFAULT_AMBIENT_TEMPERATURE
            ),
            convection_coefficient=_number(
                data, "convection_coefficient", "boundary.convection_coefficient", DEFAULT_CONVECTION_COEFFICIENT
            ),
            wall=str(wall),
            wall_temperature=_number(data, "wall_temperature", "boundary.wall_temperature", None),
            emissivity=_number(data, "emissivity", "boundary.emissivity", None),
        )


@dataclass(frozen=True)
class SimulationConfig:
    """
    Complete, immutable configuration of one simulation run.

    Use `from_dict` to build it from the JSON shape accepted by the
    RunManager; `to_dict` gives the same shape back.
    """
    geometry: GeometryConfig
    mesh: MeshConfig
    torches: tuple[TorchConfig, ...]
    material: MaterialConfig
    simulation: SimulationSettings
    boundary: BoundaryConfig = field(default_factory=BoundaryConfig)
    heat_source_formula: Optional[str] = None
    formula_constants: dict[str, float] = field(default_factory=dict)

    @staticmethod
    def from_dict(data: dict[str, Any]) -> SimulationConfig:
        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration must be an object, got {type(data).__name__}.")

        torches_data = data.get("torches", [])
        # Older parameter files nest the list: {"torches": {"torches": [...]}}
        if isinstance(torches_data, dict):
            torches_data = torches_data.get("torches", [])
        if not isinstance(torches_data, list):
            raise ConfigurationError("'torches' must be a list.", parameter="torches")

        constants = data.get("formula_constants") or {}
        if not isinstance(constants, dict):
            raise ConfigurationError("'formula_constants' must be an object.", parameter="formula_constants")

        formula = data.get("heat_source_formula")
        if formula is not None and not isinstance(formula, str):
            raise ConfigurationError("'heat_source_formula' must be a string.", parameter="heat_source_formula")

        return SimulationConfig(
            geometry=GeometryConfig.from_dict(_section(data, "geometry")),
            mesh=MeshConfig.from_dict(_section(data, "mesh")),
            torches=tuple(TorchConfig.from_dict(t, index=i) for i, t in enumerate(torches_data)),
            material=MaterialConfig.from_dict(_section(data, "material")),
            simulation=SimulationSettings.from_dict(_section(data, "simulation")),
            boundary=BoundaryConfig.from_dict(_section(data, "boundary")),
            heat_source_formula=formula or None,
            formula_constants={str(k): _number(constants, k, f"formula_constants.{k}") for k in constants},
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "geometry": asdict(self.geometry),
            "mesh": self.mesh.to_dict(),
            "torches": [t.to_dict() for t in self.torches],
            "material": asdict(self.material),
            "simulation": asdict(self.simulation),
            "boundary": asdict(self.boundary),
        }
        if self.heat_source_formula:
            data["heat_source_formula"] = self.heat_source_formula
        if self.formula_constants:
            data["formula_constants"] = dict(self.formula_constants)
        return data


# --- Run state ---

class RunStatus(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.CANCELLED, RunStatus.FAILED)


@dataclass(frozen=True)
class Progress:
    percent: float = 0.0
    current_time: float = 0.0
    estimated_remaining: Optional[float] = None  # wall-clock seconds
    step: int = 0
    status: RunStatus = RunStatus.IDLE

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass(frozen=True)
class Snapshot:
    """
    Temperature grid at one output time.

    `grid` has shape (nz, nr): row = axial index, column = radial index,
    values in Kelvin. It is a read-only copy.
    """
    time: float
    grid: npt.NDArray[np.float64]

    @staticmethod
    def from_field(time: float, field_ij: npt.NDArray[np.float64]) -> Snapshot:
        """Build from a solver field indexed [i, j] (radial, axial)."""
        grid = np.array(field_ij, dtype=np.float64, copy=True).T.copy()
        grid.flags.writeable = False
        return Snapshot(time=float(time), grid=grid)

    @property
    def field(self) -> npt.NDArray[np.float64]:
        """The grid indexed [i, j] like the solver field (read-only view)."""
        return self.grid.T

    @property
    def min_temperature(self) -> float:
        return float(self.grid.min())

    @property
    def max_temperature(self) -> float:
        return float(self.grid.max())


@dataclass(frozen=True)
class FailureInfo:
    reason: str
    error_type: str
    step: Optional[int] = None
    time: Optional[float] = None


@dataclass(frozen=True)
class ResultMetadata:
    material: str
    torch_positions: tuple[tuple[float, float], ...]
    geometry: dict[str, float]
    mesh_resolution: tuple[int, int]
    min_temperature: float
    max_temperature: float
    steps_completed: int
    final_time: float
    requested_time: float
    wall_time: float = 0.0
    energy: Optional[dict[str, float]] = None
    warnings: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["torch_positions"] = [list(p) for p in self.torch_positions]
        data["mesh_resolution"] = list(self.mesh_resolution)
        data["warnings"] = list(self.warnings)
        return data

    @staticmethod
    def from_dict(data: dict[str, Any]) -> ResultMetadata:
        return ResultMetadata(
            material=data["material"],
            torch_positions=tuple(tuple(p) for p in data.get("torch_positions", [])),
            geometry=dict(data.get("geometry", {})),
            mesh_resolution=tuple(data["mesh_resolution"]),
            min_temperature=float(data["min_temperature"]),
            max_temperature=float(data["max_temperature"]),
            steps_completed=int(data.get("steps_completed", 0)),
            final_time=float(data.get("final_time", 0.0)),
            requested_time=float(data.get("requested_time", 0.0)),
            wall_time=float(data.get("wall_time", 0.0)),
            energy=data.get("energy"),
            warnings=tuple(data.get("warnings", ())),
        )


@dataclass(frozen=True)
class SimulationResult:
    """
    Outcome of a run: ordered snapshots plus metadata.

    Cancelled and failed runs keep the snapshots captured before they stopped;
    `failure` explains what went wrong for the latter.
    """
    status: RunStatus
    snapshots: tuple[Snapshot, ...]
    metadata: ResultMetadata
    failure: Optional[FailureInfo] = None

    @property
    def times(self) -> npt.NDArray[np.float64]:
        return np.array([s.time for s in self.snapshots], dtype=np.float64)

    @property
    def final_snapshot(self) -> Optional[Snapshot]:
        return self.snapshots[-1] if self.snapshots else None

    def temperatures(self) -> npt.NDArray[np.float64]:
        """All grids stacked, shape (n_snapshots, nz, nr)."""
        nr, nz = self.metadata.mesh_resolution
        if not self.snapshots:
            return np.empty((0, nz, nr))
        return np.stack([s.grid for s in self.snapshots])

    def snapshot_at(self, time: float) -> Snapshot:
        """Snapshot closest to the requested time."""
        if not self.snapshots:
            raise LookupError("Result holds no snapshots.")
        index = int(np.argmin(np.abs(self.times - time)))
        return self.snapshots[index]
