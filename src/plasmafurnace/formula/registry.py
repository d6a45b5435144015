"""
Formula Slots
=============
A slot is a named hook in the solver where a physical relation can be
replaced by a library formula (e.g. the torch heat distribution law).

Each simulation session owns its own :class:`FormulaRegistry`, so sessions
running in parallel never see each other's bindings. The solver takes a
:meth:`FormulaRegistry.snapshot` at the start of every step; a rebind made
while a step runs becomes visible from the next step on.
"""
from __future__ import annotations

import logging
import threading
from enum import StrEnum
from types import MappingProxyType
from typing import Dict, Mapping, Optional

from plasmafurnace.errors import ConfigError
from plasmafurnace.formula.engine import BoundFormula
from plasmafurnace.formula.library import FormulaLibrary

logger = logging.getLogger(__name__)


class FunctionSlot(StrEnum):
    HEAT_SOURCE_DISTRIBUTION = "heat_source_distribution"
    THERMAL_CONDUCTIVITY = "thermal_conductivity"
    CONVECTION_COEFFICIENT = "convection_coefficient"
    EMISSIVITY = "emissivity"


# Variables the solver supplies to each slot
SLOT_VARIABLES: Dict[FunctionSlot, tuple[str, ...]] = {
    FunctionSlot.HEAT_SOURCE_DISTRIBUTION: ("d", "sigma", "r", "theta", "z", "power", "efficiency"),
    FunctionSlot.THERMAL_CONDUCTIVITY: ("T",),
    FunctionSlot.CONVECTION_COEFFICIENT: ("T", "T_amb"),
    FunctionSlot.EMISSIVITY: ("T",),
}

RegistrySnapshot = Mapping[FunctionSlot, BoundFormula]


def _as_slot(slot: FunctionSlot | str) -> FunctionSlot:
    try:
        return FunctionSlot(slot)
    except ValueError:
        known = ", ".join(s.value for s in FunctionSlot)
        raise ConfigError(f"Unknown function slot '{slot}'. Known: {known}.") from None


class FormulaRegistry:
    """
    Slot -> formula binding table of one session.
    """

    def __init__(self, library: Optional[FormulaLibrary] = None) -> None:
        self.library = library or FormulaLibrary()
        self._bindings: Dict[FunctionSlot, BoundFormula] = {}
        self._lock = threading.Lock()

    def bind(self, slot: FunctionSlot | str, formula_id: str) -> None:
        """
        Bind a library formula to a slot.

        Raises:
            ConfigError: Unknown slot, or the formula needs variables the slot
                does not supply.
            UnknownFormulaError: No formula with that id.
            ParseError: The formula does not compile.
        """
        slot = _as_slot(slot)
        formula = self.library.get(formula_id)
        missing = [v for v in formula.variables if v not in SLOT_VARIABLES[slot]]
        if missing:
            raise ConfigError(
                f"Formula '{formula_id}' needs {missing}, slot '{slot.value}' only provides "
                f"{list(SLOT_VARIABLES[slot])}."
            )
        bound = self.library.compiled(formula_id)
        with self._lock:
            self._bindings[slot] = bound
        logger.info(f"Slot '{slot.value}' bound to formula '{formula_id}'.")

    def unbind(self, slot: FunctionSlot | str) -> None:
        slot = _as_slot(slot)
        with self._lock:
            self._bindings.pop(slot, None)

    def resolve(self, slot: FunctionSlot | str) -> Optional[str]:
        """Id of the formula bound to a slot, or None for the built-in relation."""
        bound = self.compiled(slot)
        return bound.formula_id if bound is not None else None

    def compiled(self, slot: FunctionSlot | str) -> Optional[BoundFormula]:
        slot = _as_slot(slot)
        with self._lock:
            return self._bindings.get(slot)

    def snapshot(self) -> RegistrySnapshot:
        """Immutable copy of the current bindings."""
        with self._lock:
            return MappingProxyType(dict(self._bindings))

    def bindings(self) -> Dict[str, str]:
        """Serializable slot -> formula id mapping."""
        with self._lock:
            return {slot.value: bound.formula_id for slot, bound in self._bindings.items()}
