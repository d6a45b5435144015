"""
Formula Library
===============
Catalogue of formulas by id: the built-in physical relations plus any
user-defined ones. Compiled forms are cached per id.
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Dict, List, Mapping, Optional, Sequence

from plasmafurnace.errors import ConfigError, FormulaError, ParseError, UnknownFormulaError
from plasmafurnace.formula.engine import BoundFormula, FormulaEngine
from plasmafurnace.model.formulas import (
    Formula,
    FormulaCategory,
    FormulaEvaluationResult,
    FormulaParameter,
    FormulaValidationResult,
)

logger = logging.getLogger(__name__)


class FormulaLibrary:
    """
    Manages formula definitions and their compiled forms.
    """

    def __init__(self, engine: Optional[FormulaEngine] = None) -> None:
        self.engine = engine or FormulaEngine()
        self.formulas: Dict[str, Formula] = {}
        self._compiled: Dict[str, BoundFormula] = {}
        self._lock = threading.Lock()
        self._init_defaults()

    def _init_defaults(self) -> None:
        defaults = [
            Formula(
                id="gaussian_heat_distribution",
                name="Gaussian distribution",
                description="Weight decaying with the squared distance from the torch tip.",
                expression="exp(-d^2 / (2 * sigma^2))",
                variables=("d", "sigma"),
                category=FormulaCategory.HEAT_SOURCE,
                builtin=True,
            ),
            Formula(
                id="uniform_heat_distribution",
                name="Uniform ball",
                description="Constant weight within distance sigma of the torch tip.",
                expression="ceil(max(0, 1 - d / sigma))",
                variables=("d", "sigma"),
                category=FormulaCategory.HEAT_SOURCE,
                builtin=True,
            ),
            Formula(
                id="inverse_square_heat_distribution",
                name="Inverse square",
                description="Weight falling off as 1 / (1 + (d/sigma)^2).",
                expression="1 / (1 + (d / sigma)^2)",
                variables=("d", "sigma"),
                category=FormulaCategory.HEAT_SOURCE,
                builtin=True,
            ),
            Formula(
                id="exponential_heat_distribution",
                name="Exponential decay",
                description="Weight decaying exponentially with distance.",
                expression="exp(-d / (sigma * decay))",
                variables=("d", "sigma"),
                parameters=(
                    FormulaParameter("decay", 1.0, "-", "Decay length relative to sigma", 0.01, 100.0),
                ),
                category=FormulaCategory.HEAT_SOURCE,
                builtin=True,
            ),
            Formula(
                id="linear_conductivity",
                name="Linear thermal conductivity",
                description="k(T) = k0 * (1 + beta * (T - T0)), floored at k_min.",
                expression="max(k_min, k0 * (1 + beta * (T - T0)))",
                variables=("T",),
                parameters=(
                    FormulaParameter("k0", 45.0, "W/(m·K)", "Conductivity at T0", 0.0),
                    FormulaParameter("beta", -3.0e-4, "1/K", "Temperature coefficient"),
                    FormulaParameter("T0", 293.15, "K", "Reference temperature", 0.0),
                    FormulaParameter("k_min", 1.0, "W/(m·K)", "Lower bound", 0.0),
                ),
                category=FormulaCategory.MATERIAL_PROPERTY,
                result_unit="W/(m·K)",
                builtin=True,
            ),
            Formula(
                id="constant_emissivity",
                name="Constant emissivity",
                expression="eps0",
                variables=("T",),
                parameters=(FormulaParameter("eps0", 0.8, "-", "Emissivity", 0.0, 1.0),),
                category=FormulaCategory.MATERIAL_PROPERTY,
                builtin=True,
            ),
            Formula(
                id="linear_emissivity",
                name="Temperature-dependent emissivity",
                description="Linear in T, clipped to [0, 1].",
                expression="min(1, max(0, eps0 + slope * (T - T0)))",
                variables=("T",),
                parameters=(
                    FormulaParameter("eps0", 0.6, "-", "Emissivity at T0", 0.0, 1.0),
                    FormulaParameter("slope", 1.0e-4, "1/K", "Change per kelvin"),
                    FormulaParameter("T0", 293.15, "K", "Reference temperature", 0.0),
                ),
                category=FormulaCategory.MATERIAL_PROPERTY,
                builtin=True,
            ),
            Formula(
                id="natural_convection",
                name="Natural convection",
                description="Turbulent free convection, h = C * |T - T_amb|^(1/3).",
                expression="c * abs(T - T_amb)^(1/3)",
                variables=("T", "T_amb"),
                parameters=(FormulaParameter("c", 1.52, "W/(m²·K^(4/3))", "Correlation constant", 0.0),),
                category=FormulaCategory.BOUNDARY_CONDITION,
                result_unit="W/(m²·K)",
                builtin=True,
            ),
            Formula(
                id="radiative_heat_flux",
                name="Radiative heat flux",
                expression="eps * sigma_sb * (T^4 - T_amb^4)",
                variables=("T", "T_amb"),
                parameters=(FormulaParameter("eps", 0.8, "-", "Emissivity", 0.0, 1.0),),
                category=FormulaCategory.PHYSICAL_MODEL,
                result_unit="W/m²",
                builtin=True,
            ),
            Formula(
                id="stored_heat",
                name="Stored sensible heat",
                expression="rho * cp * V * (T - T_ref)",
                variables=("rho", "cp", "V", "T", "T_ref"),
                category=FormulaCategory.POST_PROCESSING,
                result_unit="J",
                builtin=True,
            ),
        ]
        for formula in defaults:
            self.formulas[formula.id] = formula

    # ---- Catalogue ----

    def add(self, formula: Formula) -> None:
        """
        Add or replace a user formula.

        Raises:
            ParseError: If the expression does not compile.
            ConfigError: If it would replace a built-in formula or a parameter
                default is out of its bounds.
        """
        existing = self.formulas.get(formula.id)
        if existing is not None and existing.builtin:
            raise ConfigError(f"Cannot replace built-in formula '{formula.id}'.")
        errors = [e for p in formula.parameters for e in p.validate()]
        if errors:
            raise ConfigError("; ".join(errors))
        bound = self.engine.compile_formula(formula)
        with self._lock:
            self.formulas[formula.id] = formula
            self._compiled[formula.id] = bound
        logger.debug(f"Formula '{formula.id}' added to library.")

    def remove(self, formula_id: str) -> None:
        formula = self.get(formula_id)
        if formula.builtin:
            raise ConfigError(f"Cannot remove built-in formula '{formula_id}'.")
        with self._lock:
            del self.formulas[formula_id]
            self._compiled.pop(formula_id, None)

    def get(self, formula_id: str) -> Formula:
        try:
            return self.formulas[formula_id]
        except KeyError:
            raise UnknownFormulaError(f"Unknown formula '{formula_id}'.") from None

    def get_ids(self) -> List[str]:
        return list(self.formulas.keys())

    def by_category(self, category: FormulaCategory) -> List[Formula]:
        return [f for f in self.formulas.values() if f.category == FormulaCategory(category)]

    # ---- Compilation & evaluation ----

    def compiled(self, formula_id: str) -> BoundFormula:
        """Compiled form of a formula, cached."""
        with self._lock:
            bound = self._compiled.get(formula_id)
        if bound is not None:
            return bound
        bound = self.engine.compile_formula(self.get(formula_id))
        with self._lock:
            self._compiled[formula_id] = bound
        return bound

    def validate(self, expression: str, variables: Sequence[str] = ()) -> FormulaValidationResult:
        """Check an expression without adding it to the library."""
        try:
            compiled = self.engine.compile(expression, variables)
        except ParseError as e:
            logger.debug(f"Formula validation failed: {e}")
            return FormulaValidationResult(is_valid=False, error=e.message, position=e.position)
        return FormulaValidationResult(is_valid=True, variables_used=tuple(sorted(compiled.variables)))

    def evaluate(self, formula_id: str, bindings: Mapping[str, float]) -> FormulaEvaluationResult:
        """
        Evaluate a formula once with scalar bindings and time it.

        Raises:
            EvalError: If the evaluation fails.
        """
        bound = self.compiled(formula_id)
        start = time.perf_counter()
        value = self.engine.evaluate_formula(bound, bindings)
        elapsed_us = (time.perf_counter() - start) * 1e6
        if not isinstance(value, float):
            raise FormulaError(f"Formula '{formula_id}' evaluated to an array; use scalar bindings.")
        return FormulaEvaluationResult(
            formula_id=formula_id,
            value=value,
            execution_time_us=elapsed_us,
            bindings={k: float(v) for k, v in bindings.items()},
        )
