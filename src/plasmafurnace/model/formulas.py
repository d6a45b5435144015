"""
Formula Data Model
==================
User-visible definition of a formula: its expression text, the variables the
solver supplies and the named parameters (with defaults) the user may tune.
"""
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from enum import StrEnum
from typing import Any, Dict, List, Optional
import logging

from plasmafurnace.model.serialization import require

logger = logging.getLogger(__name__)


class FormulaCategory(StrEnum):
    MATERIAL_PROPERTY = "material_property"
    HEAT_SOURCE = "heat_source"
    BOUNDARY_CONDITION = "boundary_condition"
    PHYSICAL_MODEL = "physical_model"
    POST_PROCESSING = "post_processing"
    UTILITY = "utility"


@dataclass(frozen=True)
class FormulaParameter:
    name: str
    default_value: float
    unit: str = ""
    description: str = ""
    min_value: Optional[float] = None
    max_value: Optional[float] = None

    def validate(self) -> List[str]:
        errors: List[str] = []
        if self.min_value is not None and self.default_value < self.min_value:
            errors.append(f"Parameter '{self.name}': default below minimum.")
        if self.max_value is not None and self.default_value > self.max_value:
            errors.append(f"Parameter '{self.name}': default above maximum.")
        return errors

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> FormulaParameter:
        owner = "FormulaParameter"
        return FormulaParameter(
            name=str(require(data, "name", owner)),
            default_value=float(require(data, "default_value", owner)),
            unit=require(data, "unit", owner),
            description=require(data, "description", owner),
            min_value=require(data, "min_value", owner),
            max_value=require(data, "max_value", owner),
        )


@dataclass(frozen=True)
class Formula:
    """
    Attributes:
        id: Unique identifier used by slot bindings.
        name: Display name.
        expression: Source text in the formula grammar.
        variables: Free variables supplied at evaluation time.
        parameters: Tunable constants, bound to their defaults unless overridden.
        category: Grouping for the library.
        result_unit: Unit of the value.
        builtin: Built-in formulas cannot be removed from a library.
    """
    id: str
    name: str
    expression: str
    variables: tuple[str, ...] = ()
    parameters: tuple[FormulaParameter, ...] = ()
    category: FormulaCategory = FormulaCategory.UTILITY
    description: str = ""
    result_unit: str = ""
    builtin: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "expression": self.expression,
            "variables": list(self.variables),
            "parameters": [p.to_dict() for p in self.parameters],
            "category": self.category.value,
            "description": self.description,
            "result_unit": self.result_unit,
            "builtin": self.builtin,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> Formula:
        owner = "Formula"
        return Formula(
            id=str(require(data, "id", owner)),
            name=str(require(data, "name", owner)),
            expression=str(require(data, "expression", owner)),
            variables=tuple(str(v) for v in require(data, "variables", owner)),
            parameters=tuple(FormulaParameter.from_dict(p) for p in require(data, "parameters", owner)),
            category=FormulaCategory(require(data, "category", owner)),
            description=require(data, "description", owner),
            result_unit=require(data, "result_unit", owner),
            builtin=bool(require(data, "builtin", owner)),
        )


@dataclass(frozen=True)
class FormulaValidationResult:
    is_valid: bool
    error: Optional[str] = None
    position: Optional[int] = None
    variables_used: tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "error": self.error,
            "position": self.position,
            "variables_used": list(self.variables_used),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> FormulaValidationResult:
        owner = "FormulaValidationResult"
        return FormulaValidationResult(
            is_valid=bool(require(data, "is_valid", owner)),
            error=require(data, "error", owner),
            position=require(data, "position", owner),
            variables_used=tuple(require(data, "variables_used", owner)),
        )


@dataclass(frozen=True)
class FormulaEvaluationResult:
    formula_id: str
    value: float
    execution_time_us: float = 0.0
    bindings: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> FormulaEvaluationResult:
        owner = "FormulaEvaluationResult"
        return FormulaEvaluationResult(
            formula_id=str(require(data, "formula_id", owner)),
            value=float(require(data, "value", owner)),
            execution_time_us=float(require(data, "execution_time_us", owner)),
            bindings={k: float(v) for k, v in require(data, "bindings", owner).items()},
        )
