"""Tests for the formula library and the per-session slot registry."""
from dataclasses import replace

import numpy as np
import pytest

from plasmafurnace.controller.session import create_session
from plasmafurnace.errors import ConfigError, FormulaError, ParseError, UnknownFormulaError
from plasmafurnace.formula.library import FormulaLibrary
from plasmafurnace.formula.registry import FormulaRegistry, FunctionSlot
from plasmafurnace.model.formulas import (
    Formula,
    FormulaCategory,
    FormulaEvaluationResult,
    FormulaParameter,
    FormulaValidationResult,
)

BUILTIN_IDS = [
    "gaussian_heat_distribution",
    "uniform_heat_distribution",
    "inverse_square_heat_distribution",
    "exponential_heat_distribution",
    "linear_conductivity",
    "constant_emissivity",
    "linear_emissivity",
    "natural_convection",
    "radiative_heat_flux",
    "stored_heat",
]


@pytest.fixture
def library():
    return FormulaLibrary()


@pytest.fixture
def custom():
    return Formula(id="custom_k", name="Custom k", expression="k0 + T / 100", variables=("T",),
                   parameters=(FormulaParameter("k0", 5.0),), category=FormulaCategory.MATERIAL_PROPERTY)


class TestLibrary:
    """Catalogue management."""

    def test_builtins_present(self, library):
        assert set(BUILTIN_IDS) <= set(library.get_ids())

    @pytest.mark.parametrize("formula_id", BUILTIN_IDS)
    def test_builtins_compile(self, library, formula_id):
        assert library.compiled(formula_id).formula_id == formula_id

    def test_unknown_formula(self, library):
        with pytest.raises(UnknownFormulaError):
            library.get("missing")
        with pytest.raises(KeyError):
            library.get("missing")

    def test_add_and_remove(self, library, custom):
        library.add(custom)
        assert library.get("custom_k") == custom
        assert custom in library.by_category(FormulaCategory.MATERIAL_PROPERTY)
        library.remove("custom_k")
        assert "custom_k" not in library.get_ids()

    def test_builtins_are_protected(self, library):
        with pytest.raises(ConfigError):
            library.remove("linear_conductivity")
        with pytest.raises(ConfigError):
            library.add(Formula(id="linear_conductivity", name="k", expression="1", variables=("T",)))

    def test_add_rejects_bad_expression(self, library):
        with pytest.raises(ParseError):
            library.add(Formula(id="bad", name="bad", expression="T +", variables=("T",)))
        assert "bad" not in library.get_ids()

    def test_add_rejects_out_of_range_default(self, library):
        formula = Formula(id="bounded", name="b", expression="a", parameters=(
            FormulaParameter("a", 5.0, min_value=0.0, max_value=1.0),))
        with pytest.raises(ConfigError):
            library.add(formula)

    def test_replacing_user_formula_recompiles(self, library, custom):
        library.add(custom)
        library.add(replace(custom, expression="k0 * 2"))
        assert library.evaluate("custom_k", {"T": 0.0}).value == 10.0


class TestValidateAndEvaluate:

    def test_validate_valid(self, library):
        result = library.validate("a * T + b", ["T", "a", "b", "unused"])
        assert result == FormulaValidationResult(is_valid=True, variables_used=("T", "a", "b"))

    def test_validate_invalid(self, library):
        result = library.validate("T + y", ["T"])
        assert not result.is_valid
        assert result.position == 4
        assert "y" in result.error

    def test_evaluate_linear_conductivity(self, library):
        """At the reference temperature k equals k0."""
        result = library.evaluate("linear_conductivity", {"T": 293.15})
        assert isinstance(result, FormulaEvaluationResult)
        assert result.value == pytest.approx(45.0)
        assert result.bindings == {"T": 293.15}
        assert result.execution_time_us >= 0.0

    def test_evaluate_natural_convection(self, library):
        result = library.evaluate("natural_convection", {"T": 327.0, "T_amb": 300.0})
        assert result.value == pytest.approx(1.52 * 3.0)

    def test_evaluate_overrides_parameter(self, library):
        assert library.evaluate("constant_emissivity", {"T": 500.0, "eps0": 0.3}).value == 0.3

    def test_evaluate_needs_scalars(self, library):
        with pytest.raises(FormulaError):
            library.evaluate("linear_conductivity", {"T": np.array([300.0, 400.0])})

    def test_results_round_trip(self):
        v = FormulaValidationResult(is_valid=False, error="boom", position=3)
        assert FormulaValidationResult.from_dict(v.to_dict()) == v
        e = FormulaEvaluationResult(formula_id="f", value=1.5, execution_time_us=2.0, bindings={"T": 1.0})
        assert FormulaEvaluationResult.from_dict(e.to_dict()) == e


class TestRegistry:
    """Slot bindings."""

    def test_unbound_slots_resolve_to_none(self):
        registry = FormulaRegistry()
        for slot in FunctionSlot:
            assert registry.resolve(slot) is None
        assert registry.bindings() == {}

    def test_bind_and_unbind(self):
        registry = FormulaRegistry()
        registry.bind("thermal_conductivity", "linear_conductivity")
        assert registry.resolve(FunctionSlot.THERMAL_CONDUCTIVITY) == "linear_conductivity"
        assert registry.bindings() == {"thermal_conductivity": "linear_conductivity"}
        registry.unbind(FunctionSlot.THERMAL_CONDUCTIVITY)
        assert registry.resolve("thermal_conductivity") is None

    def test_bind_rejects_missing_variables(self):
        """natural_convection needs T_amb, which the conductivity slot does not supply."""
        with pytest.raises(ConfigError):
            FormulaRegistry().bind(FunctionSlot.THERMAL_CONDUCTIVITY, "natural_convection")

    def test_bind_unknown_slot(self):
        with pytest.raises(ConfigError):
            FormulaRegistry().bind("viscosity", "linear_conductivity")

    def test_bind_unknown_formula(self):
        with pytest.raises(UnknownFormulaError):
            FormulaRegistry().bind(FunctionSlot.EMISSIVITY, "missing")

    def test_snapshot_is_isolated(self):
        """Later rebinds do not leak into a snapshot already taken."""
        registry = FormulaRegistry()
        registry.bind(FunctionSlot.EMISSIVITY, "constant_emissivity")
        snapshot = registry.snapshot()
        registry.bind(FunctionSlot.EMISSIVITY, "linear_emissivity")
        registry.bind(FunctionSlot.THERMAL_CONDUCTIVITY, "linear_conductivity")
        assert snapshot[FunctionSlot.EMISSIVITY].formula_id == "constant_emissivity"
        assert FunctionSlot.THERMAL_CONDUCTIVITY not in snapshot

    def test_snapshot_is_read_only(self):
        snapshot = FormulaRegistry().snapshot()
        with pytest.raises(TypeError):
            snapshot[FunctionSlot.EMISSIVITY] = None

    def test_registries_are_independent(self):
        first, second = FormulaRegistry(), FormulaRegistry()
        first.bind(FunctionSlot.EMISSIVITY, "linear_emissivity")
        assert second.resolve(FunctionSlot.EMISSIVITY) is None

    def test_session_rejects_invalid_binding(self, adiabatic_parameters):
        params = replace(adiabatic_parameters, formula_bindings={"emissivity": "missing"})
        with pytest.raises(ConfigError):
            create_session(params)
