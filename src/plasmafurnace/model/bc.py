"""
Boundary Conditions Data Model
==============================
Defines the thermal conditions applied to the outer wall, the roof (top) and
the hearth (bottom) of the furnace. The axis r = 0 is always a symmetry
(zero-flux) line and the angular direction is periodic, so neither needs a
configuration entry.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Dict, List, Optional
import logging

from plasmafurnace.model.serialization import require

logger = logging.getLogger(__name__)


class BoundaryKind(StrEnum):
    ADIABATIC = "adiabatic"
    FIXED_TEMPERATURE = "fixed_temperature"
    CONVECTIVE_RADIATIVE = "convective_radiative"


class BoundaryFace(StrEnum):
    OUTER = "outer"
    TOP = "top"
    BOTTOM = "bottom"


@dataclass(frozen=True)
class BoundaryCondition:
    """
    Condition on one face group.

    Attributes:
        kind: Boundary kind.
        temperature: Wall temperature in K for FIXED_TEMPERATURE; for
            CONVECTIVE_RADIATIVE an optional override of the ambient
            temperature seen by this face.
        convection_coefficient: h in W/(m²·K) for CONVECTIVE_RADIATIVE.
        enable_convection: Include the h·A·(T - T_amb) term.
        enable_radiation: Include the ε·σ·A·(T⁴ - T_amb⁴) term.
    """
    kind: BoundaryKind = BoundaryKind.ADIABATIC
    temperature: Optional[float] = None
    convection_coefficient: float = 10.0
    enable_convection: bool = True
    enable_radiation: bool = True

    def validate(self, face: str) -> List[str]:
        errors: List[str] = []
        if self.kind == BoundaryKind.FIXED_TEMPERATURE:
            if self.temperature is None or not self.temperature > 0:
                errors.append(f"Boundary '{face}': fixed temperature must be > 0 K.")
        if self.kind == BoundaryKind.CONVECTIVE_RADIATIVE:
            if not self.convection_coefficient >= 0:
                errors.append(f"Boundary '{face}': convection coefficient must be >= 0.")
            if self.temperature is not None and not self.temperature > 0:
                errors.append(f"Boundary '{face}': ambient override must be > 0 K.")
        return errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "temperature": self.temperature,
            "convection_coefficient": self.convection_coefficient,
            "enable_convection": self.enable_convection,
            "enable_radiation": self.enable_radiation,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> BoundaryCondition:
        owner = "BoundaryCondition"
        kind = require(data, "kind", owner)
        temperature = require(data, "temperature", owner)
        return BoundaryCondition(
            kind=BoundaryKind(kind),
            temperature=None if temperature is None else float(temperature),
            convection_coefficient=float(require(data, "convection_coefficient", owner)),
            enable_convection=bool(require(data, "enable_convection", owner)),
            enable_radiation=bool(require(data, "enable_radiation", owner)),
        )


@dataclass(frozen=True)
class BoundaryConfig:
    outer: BoundaryCondition = field(
        default_factory=lambda: BoundaryCondition(kind=BoundaryKind.CONVECTIVE_RADIATIVE)
    )
    top: BoundaryCondition = field(
        default_factory=lambda: BoundaryCondition(kind=BoundaryKind.CONVECTIVE_RADIATIVE)
    )
    bottom: BoundaryCondition = field(default_factory=BoundaryCondition)

    @staticmethod
    def adiabatic() -> BoundaryConfig:
        """All faces insulated."""
        return BoundaryConfig(
            outer=BoundaryCondition(),
            top=BoundaryCondition(),
            bottom=BoundaryCondition(),
        )

    def get(self, face: BoundaryFace) -> BoundaryCondition:
        return getattr(self, BoundaryFace(face).value)

    def validate(self) -> List[str]:
        errors: List[str] = []
        for face in BoundaryFace:
            errors.extend(self.get(face).validate(face.value))
        return errors

    def to_dict(self) -> Dict[str, Any]:
        return {face.value: self.get(face).to_dict() for face in BoundaryFace}

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> BoundaryConfig:
        return BoundaryConfig(**{
            face.value: BoundaryCondition.from_dict(require(data, face.value, "BoundaryConfig"))
            for face in BoundaryFace
        })
