"""
Material Library Management
===========================
Named materials available to a simulation run.

The library is created with a built-in set (steels, aluminium, concrete,
graphite) and can be extended from JSON files or in code. Temperature
dependent properties may be tables or formulas of T; formulas are compiled
when the material is added, so a broken formula is rejected right there
and never reaches the solver.
"""
from __future__ import annotations

import json
import logging
import os
from typing import Any, Iterator, Optional

from plasmafurnace.controller.fea.pre.formula import FormulaContext
from plasmafurnace.controller.fea.pre.material import (
    ConstantProperty,
    FormulaProperty,
    Material,
    TableProperty,
)
from plasmafurnace.errors import ConfigurationError, UnknownMaterial

logger = logging.getLogger(__name__)

CARBON_STEEL = "Carbon Steel"
STAINLESS_STEEL = "Stainless Steel"
ALUMINUM = "Aluminum"
CONCRETE = "Concrete"
GRAPHITE = "Graphite"


def _lookup_key(name: str) -> str:
    """Case and separator insensitive key, 'carbon-steel' == 'Carbon Steel'."""
    return " ".join(name.replace("-", " ").replace("_", " ").lower().split())


def default_materials(context: Optional[FormulaContext] = None) -> list[Material]:
    return [
        Material(
            name=CARBON_STEEL,
            description="Plain carbon steel, constant properties",
            density=7850.0,
            conductivity=ConstantProperty(50.0),
            specific_heat=ConstantProperty(500.0),
            emissivity=0.8,
            min_temperature=200.0,
            max_temperature=1811.0,
            melting_point=1811.0,
        ),
        Material(
            name=STAINLESS_STEEL,
            description="Austenitic stainless steel, constant properties",
            density=8000.0,
            conductivity=ConstantProperty(16.0),
            specific_heat=ConstantProperty(500.0),
            emissivity=0.7,
            min_temperature=200.0,
            max_temperature=1673.0,
            melting_point=1673.0,
        ),
        Material(
            name=ALUMINUM,
            description="Pure aluminium, constant properties",
            density=2700.0,
            conductivity=ConstantProperty(237.0),
            specific_heat=ConstantProperty(900.0),
            emissivity=0.9,
            min_temperature=200.0,
            max_temperature=933.0,
            melting_point=933.0,
        ),
        Material(
            name=CONCRETE,
            description="Normal weight concrete, tabulated properties",
            density=2300.0,
            conductivity=TableProperty(
                temperatures_K=[293.15, 473.15, 673.15, 873.15, 1473.15],
                values=[1.40, 1.10, 0.95, 0.85, 0.70],
            ),
            specific_heat=TableProperty(
                temperatures_K=[293.15, 473.15, 673.15, 1473.15],
                values=[880.0, 940.0, 1000.0, 1100.0],
            ),
            emissivity=0.9,
            min_temperature=200.0,
            max_temperature=1473.15,
        ),
        Material(
            name=GRAPHITE,
            description="Isotropic graphite, formula based properties",
            density=1850.0,
            conductivity=FormulaProperty("150 * (300 / T) ** 0.7", context=context),
            specific_heat=FormulaProperty("min(710 + 0.9 * (T - 300), 2000)", context=context),
            emissivity=0.85,
            min_temperature=250.0,
            max_temperature=3000.0,
        ),
    ]


class MaterialLibrary:
    """
    Manages a library of materials, including loading from files
    and retrieving material definitions.

    Registered materials are immutable; re-registering a name needs
    ``replace=True``.
    """
    def __init__(self, include_defaults: bool = True, context: Optional[FormulaContext] = None) -> None:
        self.context = context or FormulaContext()
        self.materials: dict[str, Material] = {}
        if include_defaults:
            self._init_defaults()

    def _init_defaults(self) -> None:
        for material in default_materials(self.context):
            self.materials[_lookup_key(material.name)] = material

    def add_material(self, material: Material, replace: bool = False) -> None:
        """Add a material to the library."""
        key = _lookup_key(material.name)
        if key in self.materials and not replace:
            raise ConfigurationError(
                f"Material '{material.name}' is already registered.", parameter="material.name"
            )
        self.materials[key] = material
        logger.debug(f"Material '{material.name}' registered.")

    def add_material_from_dict(self, data: dict[str, Any], replace: bool = False) -> Material:
        material = Material.from_dict(data, context=self.context)
        self.add_material(material, replace=replace)
        return material

    def get(self, name: str) -> Material:
        """
        Retrieve a material by name.

        Raises:
            UnknownMaterial: If no material of that name is registered.
        """
        material = self.get_material(name)
        if material is None:
            raise UnknownMaterial(name, available=self.get_names())
        return material

    def get_material(self, name: str) -> Optional[Material]:
        """Retrieve a material by name, None if missing."""
        if not isinstance(name, str):
            return None
        return self.materials.get(_lookup_key(name))

    def get_names(self) -> list[str]:
        """List all material names in the library."""
        return [material.name for material in self.materials.values()]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and _lookup_key(name) in self.materials

    def __iter__(self) -> Iterator[Material]:
        return iter(self.materials.values())

    def __len__(self) -> int:
        return len(self.materials)

    # --- Serialization ---

    def to_dict(self) -> dict[str, Any]:
        return {
            "constants": self.context.custom_constants,
            "materials": [material.to_dict() for material in self.materials.values()],
        }

    def load_dict(self, data: dict[str, Any], replace: bool = False) -> list[Material]:
        """Register constants and materials from a dict; returns the new materials."""
        for name, value in (data.get("constants") or {}).items():
            self.context.add_constant(name, value)
        added = [self.add_material_from_dict(m, replace=replace) for m in data.get("materials", [])]
        logger.info(f"Loaded {len(added)} material(s).")
        return added

    def load_json(self, filepath: str, replace: bool = False) -> list[Material]:
        logger.info(f"Loading materials from: {filepath}")
        if not os.path.exists(filepath):
            raise FileNotFoundError(f"Material file '{filepath}' does not exist.")
        with open(filepath, mode="r", encoding="utf-8") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"Material file '{filepath}' is not valid JSON: {e}") from e
        return self.load_dict(data, replace=replace)

    def save_json(self, filepath: str) -> None:
        with open(filepath, mode="w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)
        logger.info(f"Material library saved to: {filepath}")
