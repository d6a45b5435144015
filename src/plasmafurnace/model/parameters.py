"""
Simulation Parameters
=====================
Everything needed to start one simulation session: geometry, material,
torches, thermal conditions, time control and optional formula bindings.

All invariants are checked by :meth:`SimulationParameters.validate` before a
session allocates anything; the session factory turns the collected messages
into a single ``ConfigError``.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple
import logging

from plasmafurnace.config import REFERENCE_TEMPERATURE
from plasmafurnace.model.bc import BoundaryConfig
from plasmafurnace.model.geometry import GeometryConfig, Region
from plasmafurnace.model.materials import MaterialProperties, default_material
from plasmafurnace.model.serialization import require
from plasmafurnace.model.torches import PlasmaTorch

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SimulationParameters:
    geometry: GeometryConfig = field(default_factory=GeometryConfig)
    material: MaterialProperties = field(default_factory=default_material)
    torches: Tuple[PlasmaTorch, ...] = ()
    initial_temperature: float = REFERENCE_TEMPERATURE  # K
    ambient_temperature: float = REFERENCE_TEMPERATURE  # K
    time_step: float = 0.1  # s
    total_time: float = 60.0  # s
    boundaries: BoundaryConfig = field(default_factory=BoundaryConfig)
    enable_phase_change: bool = True
    regions: Tuple[Region, ...] = ()
    # Function slot name -> formula id
    formula_bindings: Dict[str, str] = field(default_factory=dict)

    def validate(self) -> List[str]:
        """Collect every violated invariant; an empty list means valid."""
        errors: List[str] = []
        errors.extend(self.geometry.validate())
        errors.extend(self.material.validate())
        errors.extend(self.boundaries.validate())

        # 1) Torches
        seen: set[str] = set()
        for torch in self.torches:
            errors.extend(torch.validate())
            if torch.id in seen:
                errors.append(f"Duplicate torch id '{torch.id}'.")
            seen.add(torch.id)
            if len(torch.position) == 3:
                r, _, z = torch.position
                if not (0.0 <= r <= self.geometry.radius and 0.0 <= z <= self.geometry.height):
                    errors.append(f"Torch '{torch.id}' at (r={r}, z={z}) lies outside the furnace.")

        # 2) Thermal state and time control
        if not self.initial_temperature > 0:
            errors.append(f"Initial temperature must be > 0 K (got {self.initial_temperature}).")
        if not self.ambient_temperature > 0:
            errors.append(f"Ambient temperature must be > 0 K (got {self.ambient_temperature}).")
        if not self.time_step > 0 or not math.isfinite(self.time_step):
            errors.append(f"Time step must be > 0 s (got {self.time_step}).")
        if not self.total_time > 0 or not math.isfinite(self.total_time):
            errors.append(f"Total time must be > 0 s (got {self.total_time}).")

        # 3) Regions
        names: set[str] = set()
        for region in self.regions:
            errors.extend(region.validate())
            if region.name in names:
                errors.append(f"Duplicate region name '{region.name}'.")
            names.add(region.name)

        return errors

    @property
    def num_steps(self) -> int:
        """Number of steps until the elapsed time reaches the total time."""
        return max(1, math.ceil(self.total_time / self.time_step - 1e-9))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "geometry": self.geometry.to_dict(),
            "material": self.material.to_dict(),
            "torches": [t.to_dict() for t in self.torches],
            "initial_temperature": self.initial_temperature,
            "ambient_temperature": self.ambient_temperature,
            "time_step": self.time_step,
            "total_time": self.total_time,
            "boundaries": self.boundaries.to_dict(),
            "enable_phase_change": self.enable_phase_change,
            "regions": [r.to_dict() for r in self.regions],
            "formula_bindings": dict(self.formula_bindings),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> SimulationParameters:
        owner = "SimulationParameters"
        return SimulationParameters(
            geometry=GeometryConfig.from_dict(require(data, "geometry", owner)),
            material=MaterialProperties.from_dict(require(data, "material", owner)),
            torches=tuple(PlasmaTorch.from_dict(t) for t in require(data, "torches", owner)),
            initial_temperature=float(require(data, "initial_temperature", owner)),
            ambient_temperature=float(require(data, "ambient_temperature", owner)),
            time_step=float(require(data, "time_step", owner)),
            total_time=float(require(data, "total_time", owner)),
            boundaries=BoundaryConfig.from_dict(require(data, "boundaries", owner)),
            enable_phase_change=bool(require(data, "enable_phase_change", owner)),
            regions=tuple(Region.from_dict(r) for r in require(data, "regions", owner)),
            formula_bindings={str(k): str(v) for k, v in require(data, "formula_bindings", owner).items()},
        )
