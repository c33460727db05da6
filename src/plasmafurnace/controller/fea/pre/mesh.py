from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import IntEnum, StrEnum
from typing import TYPE_CHECKING, Optional, Union

import numpy as np

from plasmafurnace.errors import ConfigurationError

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)


class BoundaryType(IntEnum):
    """Node classification, stored per node as int8 codes."""
    INTERIOR = 0
    AXIS = 1
    OUTER_WALL = 2
    BOTTOM = 3
    TOP = 4


class Direction(StrEnum):
    RADIAL_IN = "radial_in"
    RADIAL_OUT = "radial_out"
    AXIAL_DOWN = "axial_down"
    AXIAL_UP = "axial_up"


class MeshPreset(StrEnum):
    COARSE = "coarse"
    MEDIUM = "medium"
    FINE = "fine"


# (nr, nz) per preset
MESH_PRESETS: dict[MeshPreset, tuple[int, int]] = {
    MeshPreset.COARSE: (50, 50),
    MeshPreset.MEDIUM: (100, 100),
    MeshPreset.FINE: (200, 200),
}

# Names used by older parameter files
PRESET_ALIASES: dict[str, MeshPreset] = {
    "fast": MeshPreset.COARSE,
    "balanced": MeshPreset.MEDIUM,
    "high": MeshPreset.FINE,
}


def resolve_preset(name: Union[str, MeshPreset]) -> tuple[int, int]:
    """Map a preset name (or alias) to its (nr, nz) resolution."""
    key = str(name).strip().lower()
    preset = PRESET_ALIASES.get(key)
    if preset is None:
        try:
            preset = MeshPreset(key)
        except ValueError as e:
            names = [p.value for p in MeshPreset] + list(PRESET_ALIASES)
            raise ConfigurationError(
                f"Unknown mesh preset '{name}'. Expected one of: {', '.join(names)}.",
                parameter="mesh.preset",
            ) from e
    return MESH_PRESETS[preset]


@dataclass(frozen=True)
class MeshInfo:
    nr: int
    nz: int
    node_count: int
    dr: float
    dz: float
    total_volume: float
    aspect_ratio: float
    field_bytes: int


class Mesh:
    """
    Structured 2D axisymmetric (r, z) grid of a cylindrical furnace.

    Node (i, j) sits at r = i·dr, z = j·dz with i the radial and j the axial
    index. Every array is indexed [i, j] and has shape (nr, nz).

    Boundary classification is done once at construction. Corner nodes are
    resolved by radial priority: i == 0 is always AXIS and i == nr-1 is
    always OUTER_WALL, whatever j is.

    The mesh is immutable; its arrays are flagged read-only.
    """

    def __init__(self, radius: float, height: float, nr: int, nz: int) -> None:
        """
        Initialize the mesh.

        Args:
            radius: Furnace radius in m.
            height: Furnace height in m.
            nr: Number of radial nodes (>= 2).
            nz: Number of axial nodes (>= 2).

        Raises:
            ConfigurationError: On non-positive dimensions or fewer than two
                nodes in either direction.
        """
        if not _is_positive_number(radius):
            raise ConfigurationError(f"Radius must be positive, got {radius}.", parameter="geometry.radius")
        if not _is_positive_number(height):
            raise ConfigurationError(f"Height must be positive, got {height}.", parameter="geometry.height")
        for name, value in (("nr", nr), ("nz", nz)):
            if isinstance(value, bool) or not isinstance(value, (int, np.integer)) or value < 2:
                raise ConfigurationError(
                    f"Mesh resolution {name} must be an integer >= 2, got {value!r}.", parameter=f"mesh.{name}"
                )

        self._radius = float(radius)
        self._height = float(height)
        self._nr = int(nr)
        self._nz = int(nz)
        self._dr = self._radius / (self._nr - 1)
        self._dz = self._height / (self._nz - 1)

        self._r = self._readonly(np.linspace(0.0, self._radius, self._nr))
        self._z = self._readonly(np.linspace(0.0, self._height, self._nz))
        R, Z = np.meshgrid(self._r, self._z, indexing="ij")
        self._R = self._readonly(R)
        self._Z = self._readonly(Z)

        self._boundary_types = self._readonly(self._classify_nodes())
        self._cell_volumes = self._readonly(self._compute_cell_volumes())

        logger.debug(
            f"Mesh built: {self._nr}x{self._nz} nodes, dr={self._dr:.4g} m, dz={self._dz:.4g} m"
        )

    @classmethod
    def build(cls, radius: float, height: float, nr: int, nz: int) -> Mesh:
        return cls(radius, height, nr, nz)

    @classmethod
    def from_preset(cls, radius: float, height: float, preset: Union[str, MeshPreset]) -> Mesh:
        nr, nz = resolve_preset(preset)
        return cls(radius, height, nr, nz)

    @staticmethod
    def _readonly(array: npt.NDArray) -> npt.NDArray:
        array.flags.writeable = False
        return array

    def _classify_nodes(self) -> npt.NDArray[np.int8]:
        types = np.full((self._nr, self._nz), BoundaryType.INTERIOR, dtype=np.int8)
        # Axial faces first, radial faces override the corners
        types[:, 0] = BoundaryType.BOTTOM
        types[:, -1] = BoundaryType.TOP
        types[0, :] = BoundaryType.AXIS
        types[-1, :] = BoundaryType.OUTER_WALL
        return types

    def _compute_cell_volumes(self) -> npt.NDArray[np.float64]:
        dr, dz = self._dr, self._dz
        # Radial extent of each control volume
        ring = 2.0 * math.pi * self._r * dr
        ring[0] = math.pi * (dr / 2.0) ** 2
        ring[-1] = 2.0 * math.pi * (self._radius - dr / 4.0) * (dr / 2.0)
        # Axial extent, half cells at bottom and top
        height = np.full(self._nz, dz)
        height[0] = height[-1] = dz / 2.0
        return np.outer(ring, height)

    # --- Basic attributes ---

    @property
    def radius(self) -> float:
        return self._radius

    @property
    def height(self) -> float:
        return self._height

    @property
    def nr(self) -> int:
        return self._nr

    @property
    def nz(self) -> int:
        return self._nz

    @property
    def dr(self) -> float:
        return self._dr

    @property
    def dz(self) -> float:
        return self._dz

    @property
    def shape(self) -> tuple[int, int]:
        return self._nr, self._nz

    @property
    def node_count(self) -> int:
        return self._nr * self._nz

    @property
    def r(self) -> npt.NDArray[np.float64]:
        """Radial node coordinates, shape (nr,)."""
        return self._r

    @property
    def z(self) -> npt.NDArray[np.float64]:
        """Axial node coordinates, shape (nz,)."""
        return self._z

    @property
    def R(self) -> npt.NDArray[np.float64]:
        """Radial coordinate of every node, shape (nr, nz)."""
        return self._R

    @property
    def Z(self) -> npt.NDArray[np.float64]:
        """Axial coordinate of every node, shape (nr, nz)."""
        return self._Z

    @property
    def boundary_types(self) -> npt.NDArray[np.int8]:
        return self._boundary_types

    @property
    def cell_volumes(self) -> npt.NDArray[np.float64]:
        """Control volume of every node in m³; sums to π·R²·H."""
        return self._cell_volumes

    # --- Node queries ---

    def _check_index(self, i: int, j: int) -> None:
        if not (0 <= i < self._nr and 0 <= j < self._nz):
            raise IndexError(f"Node ({i}, {j}) outside mesh of {self._nr}x{self._nz} nodes.")

    def index(self, i: int, j: int) -> int:
        """Flat (row-major, radial outer) index of node (i, j)."""
        self._check_index(i, j)
        return i * self._nz + j

    def position(self, i: int, j: int) -> tuple[float, float]:
        self._check_index(i, j)
        return float(self._r[i]), float(self._z[j])

    def boundary_type(self, i: int, j: int) -> BoundaryType:
        self._check_index(i, j)
        return BoundaryType(int(self._boundary_types[i, j]))

    def boundary_mask(self, kind: BoundaryType) -> npt.NDArray[np.bool_]:
        return self._boundary_types == kind

    def cell_volume(self, i: int, j: int) -> float:
        self._check_index(i, j)
        return float(self._cell_volumes[i, j])

    def radial_face_area(self, i: int, j: int) -> float:
        """Lateral area 2π·r·dz of the cylindrical surface through node (i, j)."""
        self._check_index(i, j)
        return 2.0 * math.pi * float(self._r[i]) * self._dz

    def axial_face_area(self, i: int, j: int) -> float:
        """Annulus area normal to z belonging to node (i, j)."""
        self._check_index(i, j)
        if i == 0:
            return math.pi * (self._dr / 2.0) ** 2
        return 2.0 * math.pi * float(self._r[i]) * self._dr

    def outer_wall_areas(self) -> npt.NDArray[np.float64]:
        """Wall area associated with each outer wall node, shape (nz,)."""
        areas = np.full(self._nz, 2.0 * math.pi * self._radius * self._dz)
        areas[0] = areas[-1] = areas[0] / 2.0
        return areas

    def neighbors(self, i: int, j: int) -> list[tuple[Direction, tuple[int, int]]]:
        """In-bounds neighbours of node (i, j) with their direction."""
        self._check_index(i, j)
        candidates = (
            (Direction.RADIAL_IN, (i - 1, j)),
            (Direction.RADIAL_OUT, (i + 1, j)),
            (Direction.AXIAL_DOWN, (i, j - 1)),
            (Direction.AXIAL_UP, (i, j + 1)),
        )
        return [
            (direction, (ni, nj))
            for direction, (ni, nj) in candidates
            if 0 <= ni < self._nr and 0 <= nj < self._nz
        ]

    def neighbor_distance(self, direction: Direction) -> float:
        if direction in (Direction.RADIAL_IN, Direction.RADIAL_OUT):
            return self._dr
        return self._dz

    def closest_node(self, r: float, z: float) -> tuple[int, int]:
        """Indices of the node nearest to (r, z), clamped to the mesh."""
        i = int(np.clip(round(r / self._dr), 0, self._nr - 1))
        j = int(np.clip(round(z / self._dz), 0, self._nz - 1))
        return i, j

    def contains(self, r: float, z: float, tolerance: float = 0.0) -> bool:
        return (-tolerance <= r <= self._radius + tolerance) and (-tolerance <= z <= self._height + tolerance)

    def info(self, dtype_bytes: int = 8) -> MeshInfo:
        return MeshInfo(
            nr=self._nr,
            nz=self._nz,
            node_count=self.node_count,
            dr=self._dr,
            dz=self._dz,
            total_volume=float(self._cell_volumes.sum()),
            aspect_ratio=max(self._dr, self._dz) / min(self._dr, self._dz),
            field_bytes=self.node_count * dtype_bytes,
        )

    def __repr__(self) -> str:
        return (
            f"Mesh(radius={self._radius}, height={self._height}, nr={self._nr}, nz={self._nz})"
        )


def _is_positive_number(value: Optional[float]) -> bool:
    return (
        isinstance(value, (int, float, np.floating, np.integer))
        and not isinstance(value, bool)
        and math.isfinite(value)
        and value > 0
    )
