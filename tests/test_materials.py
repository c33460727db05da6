import json

import numpy as np
import pytest

from plasmafurnace.controller.fea.pre.formula import FormulaContext
from plasmafurnace.controller.fea.pre.material import (
    ConstantProperty,
    FormulaProperty,
    Material,
    MaterialProperty,
    PropertyKind,
    TableProperty,
)
from plasmafurnace.errors import ConfigurationError, FormulaEvaluationError, InvalidFormula, UnknownMaterial
from plasmafurnace.model.materials import ALUMINUM, CARBON_STEEL, CONCRETE, GRAPHITE, MaterialLibrary


def _material(**overrides):
    data = dict(
        name="Test",
        density=1000.0,
        conductivity=ConstantProperty(10.0),
        specific_heat=ConstantProperty(1000.0),
    )
    data.update(overrides)
    return Material(**data)


def test_builtin_materials(library):
    assert set(library.get_names()) >= {CARBON_STEEL, ALUMINUM, CONCRETE, GRAPHITE}
    assert len(library) >= 5


def test_carbon_steel_diffusivity(steel):
    assert steel.diffusivity(500.0) == pytest.approx(1.274e-5, rel=1e-3)
    assert steel.k(500.0) == 50.0
    assert steel.cp(500.0) == 500.0
    assert steel.volumetric_heat_capacity(500.0) == pytest.approx(7850.0 * 500.0)


def test_lookup_is_case_and_separator_insensitive(library):
    assert library.get("carbon-steel").name == CARBON_STEEL
    assert "CARBON_STEEL" in library
    assert library.get_material("unobtainium") is None


def test_unknown_material_lists_available(library):
    with pytest.raises(UnknownMaterial) as excinfo:
        library.get("Unobtainium")
    assert "Unobtainium" in str(excinfo.value)
    assert CARBON_STEEL in str(excinfo.value)
    assert isinstance(excinfo.value, ConfigurationError)


def test_table_property_interpolates_and_clamps():
    prop = TableProperty([300.0, 500.0], [10.0, 20.0])
    assert prop(400.0) == pytest.approx(15.0)
    assert prop(100.0) == pytest.approx(10.0)
    assert prop(2000.0) == pytest.approx(20.0)
    np.testing.assert_allclose(prop(np.array([300.0, 350.0])), [10.0, 12.5])


@pytest.mark.parametrize(
    "temps, values",
    [([300.0], [1.0]), ([300.0, 300.0], [1.0, 2.0]), ([300.0, 400.0], [1.0]), ([300.0, 400.0], [1.0, np.nan])],
)
def test_invalid_tables(temps, values):
    with pytest.raises(ConfigurationError):
        TableProperty(temps, values)


def test_concrete_table_values(library):
    concrete = library.get(CONCRETE)
    assert concrete.k(293.15) == pytest.approx(1.40)
    assert concrete.k(5000.0) == pytest.approx(0.70)
    assert concrete.cp(383.15) == pytest.approx(910.0)


def test_formula_property(library):
    graphite = library.get(GRAPHITE)
    assert graphite.k(300.0) == pytest.approx(150.0)
    assert graphite.cp(300.0) == pytest.approx(710.0)
    assert graphite.cp(5000.0) == pytest.approx(2000.0)
    temps = np.full((3, 4), 600.0)
    assert graphite.diffusivity(temps).shape == (3, 4)


def test_constant_property_broadcasts():
    prop = ConstantProperty(5.0)
    assert prop(np.zeros((2, 3))).shape == (2, 3)
    assert isinstance(prop(300.0), float)


def test_non_positive_heat_capacity_is_rejected():
    material = _material(specific_heat=FormulaProperty("1000 - T"))
    with pytest.raises(ConfigurationError):
        material.diffusivity(2000.0)


def test_non_finite_property_raises():
    material = _material(conductivity=FormulaProperty("1 / (T - 300)"))
    with pytest.raises(FormulaEvaluationError):
        material.diffusivity(300.0)


@pytest.mark.parametrize(
    "overrides",
    [{"name": " "}, {"density": 0.0}, {"emissivity": 1.5}, {"min_temperature": 500.0, "max_temperature": 400.0}],
)
def test_invalid_material(overrides):
    with pytest.raises(ConfigurationError):
        _material(**overrides)


def test_material_is_immutable(steel):
    with pytest.raises(AttributeError):
        steel.density = 1.0


def test_is_within_limits(steel):
    assert steel.is_within_limits(np.array([300.0, 1000.0]))
    assert not steel.is_within_limits(np.array([300.0, 2000.0]))


def test_preview_curve(steel):
    temps, curves = steel.get_preview_curve(steps=10)
    assert temps.shape == (10,)
    assert set(curves) == {"conductivity", "specific_heat", "diffusivity"}


def test_property_from_dict():
    assert isinstance(MaterialProperty.from_dict(5), ConstantProperty)
    assert isinstance(MaterialProperty.from_dict("T * 2"), FormulaProperty)
    table = MaterialProperty.from_dict({"kind": "table", "temperatures": [1.0, 2.0], "values": [3.0, 4.0]})
    assert table.kind == PropertyKind.TABLE
    with pytest.raises(ConfigurationError):
        MaterialProperty.from_dict({"kind": "spline"})
    with pytest.raises(ConfigurationError):
        MaterialProperty.from_dict({"kind": "constant"})


def test_material_dict_round_trip(library):
    for material in library:
        restored = Material.from_dict(material.to_dict())
        assert restored.name == material.name
        assert restored.diffusivity(600.0) == pytest.approx(material.diffusivity(600.0))


def test_add_material(library):
    material = _material(name="Fireclay")
    library.add_material(material)
    assert library.get("fireclay") is material
    with pytest.raises(ConfigurationError):
        library.add_material(_material(name="Fireclay"))
    library.add_material(_material(name="Fireclay", density=2000.0), replace=True)
    assert library.get("Fireclay").density == 2000.0


def test_invalid_formula_rejected_on_registration(library):
    with pytest.raises(InvalidFormula):
        library.add_material_from_dict(
            {"name": "Broken", "density": 1000.0, "conductivity": "T ** ", "specific_heat": 500.0}
        )
    assert "Broken" not in library


def test_library_constants_and_json(tmp_path):
    library = MaterialLibrary(include_defaults=False, context=FormulaContext({"K_REF": 20.0}))
    library.add_material_from_dict(
        {"name": "Custom", "density": 2000.0, "conductivity": "K_REF * (T / 300)", "specific_heat": 800.0}
    )
    path = tmp_path / "materials.json"
    library.save_json(str(path))
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["constants"] == {"K_REF": 20.0}

    other = MaterialLibrary(include_defaults=False)
    added = other.load_json(str(path))
    assert [m.name for m in added] == ["Custom"]
    assert other.get("Custom").k(600.0) == pytest.approx(40.0)


def test_load_json_errors(tmp_path):
    library = MaterialLibrary()
    with pytest.raises(FileNotFoundError):
        library.load_json(str(tmp_path / "missing.json"))
    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        library.load_json(str(bad))
