from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Optional, Union

import numpy as np

from plasmafurnace.controller.fea.pre.formula import (
    TEMPERATURE_VARIABLES,
    Formula,
    FormulaContext,
)
from plasmafurnace.errors import ConfigurationError, FormulaEvaluationError

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)

Number = Union[float, "npt.NDArray[np.float64]"]


class PropertyKind(StrEnum):
    CONSTANT = "constant"
    TABLE = "table"
    FORMULA = "formula"


def _shaped(value: Number, temperature_K: Number) -> Number:
    """Broadcast a property value to the shape of the temperature input."""
    if np.ndim(temperature_K) == 0:
        return float(value)
    return np.broadcast_to(np.asarray(value, dtype=np.float64), np.shape(temperature_K)).copy()


class MaterialProperty(ABC):
    """A temperature dependent material property (conductivity, specific heat)."""

    kind: PropertyKind

    @abstractmethod
    def evaluate(self, temperature_K: Number) -> Number:
        """Evaluate the property at a temperature in Kelvin.

        Args:
            temperature_K: Scalar temperature or an array of temperatures.

        Returns:
            A float for scalar input, otherwise an array with the same shape.
        """
        pass

    @abstractmethod
    def to_dict(self) -> dict[str, Any]:
        pass

    def __call__(self, temperature_K: Number) -> Number:
        return self.evaluate(temperature_K)

    @staticmethod
    def from_dict(data: Union[dict[str, Any], float, str], context: Optional[FormulaContext] = None) -> MaterialProperty:
        """
        Factory method to deserialize into the correct property kind.

        A bare number is read as a constant and a bare string as a formula.
        """
        if isinstance(data, (int, float)) and not isinstance(data, bool):
            return ConstantProperty(float(data))
        if isinstance(data, str):
            return FormulaProperty(data, context=context)
        if not isinstance(data, dict):
            raise ConfigurationError(f"Cannot read material property from {data!r}.")

        try:
            kind = PropertyKind(data.get("kind", PropertyKind.CONSTANT))
        except ValueError as e:
            raise ConfigurationError(f"Unknown property kind '{data.get('kind')}'.") from e

        try:
            if kind == PropertyKind.CONSTANT:
                return ConstantProperty(float(data["value"]))
            elif kind == PropertyKind.TABLE:
                return TableProperty(data["temperatures"], data["values"])
            else:
                return FormulaProperty(data["expression"], context=context)
        except KeyError as e:
            raise ConfigurationError(f"Material property of kind '{kind}' is missing field {e}.") from e


class ConstantProperty(MaterialProperty):
    kind = PropertyKind.CONSTANT

    def __init__(self, value: float) -> None:
        if not np.isfinite(value):
            raise ConfigurationError(f"Constant property value must be finite, got {value}.")
        self.value = float(value)

    def evaluate(self, temperature_K: Number) -> Number:
        return _shaped(self.value, temperature_K)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "value": self.value}

    def __repr__(self) -> str:
        return f"ConstantProperty({self.value})"


class TableProperty(MaterialProperty):
    """
    Tabulated property, linearly interpolated.

    Outside the table range the end values are used (no extrapolation).
    """
    kind = PropertyKind.TABLE

    def __init__(self, temperatures_K: Any, values: Any) -> None:
        temperatures = np.asarray(temperatures_K, dtype=np.float64)
        vals = np.asarray(values, dtype=np.float64)

        if temperatures.ndim != 1 or temperatures.shape != vals.shape:
            raise ConfigurationError("Temperature and value arrays must be 1D and of the same length.")
        if len(temperatures) < 2:
            raise ConfigurationError("At least two data points are required for interpolation.")
        if not np.all(np.diff(temperatures) > 0):
            raise ConfigurationError("Temperature array must be strictly increasing.")
        if not (np.all(np.isfinite(temperatures)) and np.all(np.isfinite(vals))):
            raise ConfigurationError("Table entries must be finite.")

        self.temperatures_K = temperatures
        self.values = vals
        self.temperatures_K.flags.writeable = False
        self.values.flags.writeable = False

    def evaluate(self, temperature_K: Number) -> Number:
        result = np.interp(
            x=temperature_K,
            xp=self.temperatures_K,
            fp=self.values,
            left=self.values[0],
            right=self.values[-1]
        )
        return _shaped(result, temperature_K)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "temperatures": self.temperatures_K.tolist(),
            "values": self.values.tolist(),
        }

    def __repr__(self) -> str:
        return f"TableProperty({len(self.values)} points, {self.temperatures_K[0]}-{self.temperatures_K[-1]} K)"


class FormulaProperty(MaterialProperty):
    """Property given as an expression of the temperature ``T`` in Kelvin."""
    kind = PropertyKind.FORMULA

    def __init__(self, expression: str, context: Optional[FormulaContext] = None) -> None:
        # Compiled once here, InvalidFormula surfaces at registration time
        self.formula = Formula(expression, variables=TEMPERATURE_VARIABLES, context=context)

    @property
    def expression(self) -> str:
        return self.formula.expression

    def evaluate(self, temperature_K: Number) -> Number:
        return _shaped(self.formula.evaluate(T=temperature_K), temperature_K)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "expression": self.expression}

    def __repr__(self) -> str:
        return f"FormulaProperty({self.expression!r})"


@dataclass(frozen=True, kw_only=True)
class Material:
    """
    Solid material filling the furnace volume.

    Density is constant; thermal conductivity and specific heat capacity may
    depend on temperature. Instances are immutable.

    Attributes:
        name: Unique name used for library lookup.
        density: Density in kg/m³.
        conductivity: Thermal conductivity k(T) in W/(m·K).
        specific_heat: Specific heat capacity cp(T) in J/(kg·K).
        emissivity: Surface emissivity for radiative wall losses, 0-1.
        min_temperature: Lower end of the validity range in K.
        max_temperature: Upper end of the validity range in K.
        melting_point: Informative only, phase change is not modelled.
        description: Free text.
    """
    name: str
    density: float
    conductivity: MaterialProperty
    specific_heat: MaterialProperty
    emissivity: float = 0.8
    min_temperature: float = 200.0
    max_temperature: float = 3000.0
    melting_point: Optional[float] = None
    description: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ConfigurationError("Material name must not be empty.", parameter="material.name")
        if not np.isfinite(self.density) or self.density <= 0:
            raise ConfigurationError(
                f"Density of '{self.name}' must be positive, got {self.density}.", parameter="density"
            )
        if not 0.0 <= self.emissivity <= 1.0:
            raise ConfigurationError(
                f"Emissivity of '{self.name}' must be within [0, 1], got {self.emissivity}.",
                parameter="emissivity",
            )
        if not 0.0 < self.min_temperature < self.max_temperature:
            raise ConfigurationError(
                f"Invalid temperature range [{self.min_temperature}, {self.max_temperature}] K "
                f"for '{self.name}'.",
                parameter="temperature_range",
            )

    def thermal_conductivity(self, temperature_K: Number) -> Number:
        """Thermal conductivity in W/(m·K)."""
        return self.conductivity.evaluate(temperature_K)

    def specific_heat_capacity(self, temperature_K: Number) -> Number:
        """Specific heat capacity in J/(kg·K)."""
        return self.specific_heat.evaluate(temperature_K)

    # Short aliases matching the usual notation
    k = thermal_conductivity
    cp = specific_heat_capacity

    def volumetric_heat_capacity(self, temperature_K: Number) -> Number:
        """Volumetric heat capacity ρ·cp in J/(m³·K)."""
        return self.density * self.specific_heat_capacity(temperature_K)

    def props_batch(self, temperature_K: npt.NDArray[np.float64]) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
        """
        Evaluate conductivity and volumetric heat capacity for a whole field.

        Args:
            temperature_K: Array of temperatures in Kelvin.

        Returns:
            Tuple (k, rho_cp) of arrays with the input shape.

        Raises:
            ConfigurationError: If ρ·cp is not positive somewhere.
            FormulaEvaluationError: If a formula property is not finite.
        """
        k = np.asarray(self.thermal_conductivity(temperature_K), dtype=np.float64)
        rho_cp = np.asarray(self.volumetric_heat_capacity(temperature_K), dtype=np.float64)
        if np.any(rho_cp <= 0):
            raise ConfigurationError(
                f"Volumetric heat capacity of '{self.name}' is not positive "
                f"(min {float(np.min(rho_cp)):.6g} J/(m³·K)).",
                parameter="specific_heat",
            )
        return k, rho_cp

    def diffusivity(self, temperature_K: Number) -> Number:
        """
        Thermal diffusivity α = k / (ρ·cp) in m²/s.

        Raises:
            ConfigurationError: If ρ·cp ≤ 0.
            FormulaEvaluationError: If the result is not finite.
        """
        k, rho_cp = self.props_batch(temperature_K)
        alpha = k / rho_cp
        if not np.all(np.isfinite(alpha)):
            raise FormulaEvaluationError(f"k/(rho*cp) for '{self.name}'")
        if np.ndim(temperature_K) == 0:
            return float(alpha)
        return alpha

    def is_within_limits(self, temperature_K: Number) -> bool:
        """True if every given temperature lies inside the validity range."""
        t = np.asarray(temperature_K)
        return bool(np.all((t >= self.min_temperature) & (t <= self.max_temperature)))

    def get_preview_curve(
        self,
        temperature_min: Optional[float] = None,
        temperature_max: Optional[float] = None,
        steps: int = 100
    ) -> tuple[npt.NDArray[np.float64], dict[str, npt.NDArray[np.float64]]]:
        """Temperatures and property arrays over the validity range (for plots and reports)."""
        temps = np.linspace(
            self.min_temperature if temperature_min is None else temperature_min,
            self.max_temperature if temperature_max is None else temperature_max,
            num=steps,
        )
        return temps, {
            "conductivity": np.asarray(self.thermal_conductivity(temps)),
            "specific_heat": np.asarray(self.specific_heat_capacity(temps)),
            "diffusivity": np.asarray(self.diffusivity(temps)),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "density": self.density,
            "conductivity": self.conductivity.to_dict(),
            "specific_heat": self.specific_heat.to_dict(),
            "emissivity": self.emissivity,
            "min_temperature": self.min_temperature,
            "max_temperature": self.max_temperature,
            "melting_point": self.melting_point,
        }

    @staticmethod
    def from_dict(data: dict[str, Any], context: Optional[FormulaContext] = None) -> Material:
        try:
            return Material(
                name=data["name"],
                description=data.get("description", ""),
                density=float(data["density"]),
                conductivity=MaterialProperty.from_dict(data["conductivity"], context=context),
                specific_heat=MaterialProperty.from_dict(data["specific_heat"], context=context),
                emissivity=float(data.get("emissivity", 0.8)),
                min_temperature=float(data.get("min_temperature", 200.0)),
                max_temperature=float(data.get("max_temperature", 3000.0)),
                melting_point=data.get("melting_point"),
            )
        except KeyError as e:
            raise ConfigurationError(f"Material definition is missing field {e}.") from e
