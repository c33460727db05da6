from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Optional, Sequence, Union

import numpy as np

from plasmafurnace.config import DEFAULT_AMBIENT_TEMPERATURE, DEFAULT_CONVECTION_COEFFICIENT, STEFAN_BOLTZMANN
from plasmafurnace.controller.fea.pre.formula import SOURCE_VARIABLES, Formula, FormulaContext
from plasmafurnace.errors import ConfigurationError

if TYPE_CHECKING:
    import numpy.typing as npt

    from plasmafurnace.controller.fea.pre.mesh import Mesh

logger = logging.getLogger(__name__)

Number = Union[float, "npt.NDArray[np.float64]"]


@dataclass(frozen=True)
class Torch:
    """
    Plasma torch modelled as a Gaussian volumetric heat source.

    Attributes:
        r: Radial position in m (absolute, not normalized).
        z: Axial position in m (absolute, not normalized).
        power: Electrical power in kW.
        efficiency: Fraction of the power transferred to the material, 0-1.
        sigma: Gaussian spread in m.
        id: Optional identifier used in reports.
    """
    r: float
    z: float
    power: float
    efficiency: float
    sigma: float
    id: Optional[int] = None

    def __post_init__(self) -> None:
        if not self.sigma > 0:
            raise ConfigurationError(f"Torch sigma must be positive, got {self.sigma}.", parameter="torch.sigma")

    @property
    def position(self) -> tuple[float, float]:
        return self.r, self.z

    @property
    def effective_power(self) -> float:
        """Heat input in W."""
        return self.power * 1000.0 * self.efficiency

    @property
    def peak_flux(self) -> float:
        """Flux at the torch centre in W/m³."""
        return self.effective_power / (2.0 * math.pi * self.sigma ** 2)


class WallCondition(StrEnum):
    MIXED = "mixed"  # convection + radiation
    ADIABATIC = "adiabatic"
    FIXED = "fixed"  # prescribed wall temperature


@dataclass(frozen=True)
class BoundaryConditions:
    ambient_temperature: float = DEFAULT_AMBIENT_TEMPERATURE
    convection_coefficient: float = DEFAULT_CONVECTION_COEFFICIENT
    wall: WallCondition = WallCondition.MIXED
    wall_temperature: Optional[float] = None

    def __post_init__(self) -> None:
        if not self.ambient_temperature > 0:
            raise ConfigurationError(
                f"Ambient temperature must be positive, got {self.ambient_temperature} K.",
                parameter="boundary.ambient_temperature",
            )
        if not self.convection_coefficient >= 0:
            raise ConfigurationError(
                f"Convection coefficient must not be negative, got {self.convection_coefficient}.",
                parameter="boundary.convection_coefficient",
            )
        if self.wall == WallCondition.FIXED and not (self.wall_temperature or 0) > 0:
            raise ConfigurationError(
                "A positive wall_temperature is required for the 'fixed' wall condition.",
                parameter="boundary.wall_temperature",
            )


def gaussian_flux(torch: Torch, r: Number, z: Number) -> Number:
    """
    Volumetric heat flux of one torch in W/m³.

    q(r, z) = P·η / (2π·σ²) · exp(-d² / (2σ²)),  d² = (r - r0)² + (z - z0)²
    """
    d2 = (np.asarray(r, dtype=np.float64) - torch.r) ** 2 + (np.asarray(z, dtype=np.float64) - torch.z) ** 2
    q = torch.peak_flux * np.exp(-d2 / (2.0 * torch.sigma ** 2))
    if np.ndim(q) == 0:
        return float(q)
    return q


class HeatSourceModel:
    """
    Heat input from plasma torches and heat losses through the furnace wall.

    Contributions of several torches are superposed linearly. An optional
    volumetric source formula Q(r, z, t, T) in W/m³ is added on top.
    """

    def __init__(
        self,
        torches: Sequence[Torch],
        boundary: Optional[BoundaryConditions] = None,
        source_formula: Optional[str] = None,
        formula_context: Optional[FormulaContext] = None,
    ) -> None:
        self.torches: tuple[Torch, ...] = tuple(torches)
        self.boundary = boundary or BoundaryConditions()
        self.source_formula: Optional[Formula] = None
        if source_formula:
            self.source_formula = Formula(source_formula, variables=SOURCE_VARIABLES, context=formula_context)

    @property
    def ambient_temperature(self) -> float:
        return self.boundary.ambient_temperature

    @property
    def convection_coefficient(self) -> float:
        return self.boundary.convection_coefficient

    @property
    def is_time_dependent(self) -> bool:
        if self.source_formula is None:
            return False
        return bool(self.source_formula.used_variables & {"t", "T"})

    # --- Sources ---

    def flux(self, torch: Torch, r: Number, z: Number) -> Number:
        return gaussian_flux(torch, r, z)

    def total_flux(self, r: Number, z: Number) -> Number:
        """Sum of all torch fluxes at (r, z) in W/m³."""
        total = np.zeros(np.broadcast(np.asarray(r), np.asarray(z)).shape)
        for torch in self.torches:
            total = total + gaussian_flux(torch, r, z)
        if np.ndim(total) == 0:
            return float(total)
        return total

    def source_field(
        self,
        mesh: Mesh,
        time: float = 0.0,
        temperature: Optional[npt.NDArray[np.float64]] = None,
    ) -> npt.NDArray[np.float64]:
        """
        Volumetric heat source on every mesh node, shape (nr, nz).

        Args:
            mesh: The mesh.
            time: Simulation time in s (used by the source formula).
            temperature: Current field (used by the source formula).
        """
        q = np.asarray(self.total_flux(mesh.R, mesh.Z), dtype=np.float64)
        if self.source_formula is not None:
            temps = temperature if temperature is not None else np.full(mesh.shape, self.ambient_temperature)
            extra = self.source_formula.evaluate(r=mesh.R, z=mesh.Z, t=time, T=temps)
            q = q + np.broadcast_to(extra, mesh.shape)
        return q

    def dominant_torch(self, r: float, z: float) -> tuple[int, Torch]:
        """
        Torch with the largest individual flux at (r, z).

        Exact ties are resolved in favour of the torch that comes first in
        the input order.

        Returns:
            Tuple (index, torch).
        """
        if not self.torches:
            raise ConfigurationError("No torches defined.", parameter="torches")
        best_index = 0
        best_flux = gaussian_flux(self.torches[0], r, z)
        for index, torch in enumerate(self.torches[1:], start=1):
            q = gaussian_flux(torch, r, z)
            if q > best_flux:
                best_index, best_flux = index, q
        return best_index, self.torches[best_index]

    def total_power(self) -> float:
        """Nominal heat input of all torches in W."""
        return sum(torch.effective_power for torch in self.torches)

    # --- Wall losses ---

    def convection_loss(self, temperature: Number) -> Number:
        """Newton cooling h·max(T - T_amb, 0) in W/m²."""
        excess = np.maximum(np.asarray(temperature, dtype=np.float64) - self.ambient_temperature, 0.0)
        q = self.convection_coefficient * excess
        return float(q) if np.ndim(q) == 0 else q

    def radiation_loss(self, temperature: Number, emissivity: float) -> Number:
        """Grey body radiation ε·σ·max(T⁴ - T_amb⁴, 0) in W/m²."""
        t = np.asarray(temperature, dtype=np.float64)
        q = emissivity * STEFAN_BOLTZMANN * np.maximum(t ** 4 - self.ambient_temperature ** 4, 0.0)
        return float(q) if np.ndim(q) == 0 else q

    def wall_loss(self, temperature: Number, emissivity: float) -> Number:
        """Combined convective and radiative loss in W/m²."""
        if self.boundary.wall == WallCondition.ADIABATIC:
            return np.zeros(np.shape(temperature)) if np.ndim(temperature) else 0.0
        return self.convection_loss(temperature) + self.radiation_loss(temperature, emissivity)
