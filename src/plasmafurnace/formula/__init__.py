"""
Runtime-pluggable physical relations: a safe expression compiler, a formula
library and per-session slot bindings.
"""
from plasmafurnace.formula.engine import BoundFormula, CompiledFormula, FormulaEngine
from plasmafurnace.formula.library import FormulaLibrary
from plasmafurnace.formula.registry import FormulaRegistry, FunctionSlot, SLOT_VARIABLES

__all__ = [
    "BoundFormula",
    "CompiledFormula",
    "FormulaEngine",
    "FormulaLibrary",
    "FormulaRegistry",
    "FunctionSlot",
    "SLOT_VARIABLES",
]
