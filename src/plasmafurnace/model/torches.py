"""
Plasma Torch Data Model
=======================
A torch is a volumetric heat source placed inside the vessel. Only the
electrical power times the thermal efficiency reaches the charge; how that
power is spread over the cells is given by the distribution law.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Dict, List, Tuple
import logging

from plasmafurnace.model.serialization import require

logger = logging.getLogger(__name__)


class HeatDistribution(StrEnum):
    GAUSSIAN = "gaussian"
    UNIFORM = "uniform"
    POINT = "point"


@dataclass(frozen=True)
class PlasmaTorch:
    """
    Attributes:
        id: Unique torch identifier within a simulation.
        position: Torch tip in cylindrical coordinates (r [m], θ [rad], z [m]).
        power: Electrical power in W.
        efficiency: Fraction of the power deposited in the charge, in (0, 1].
        distribution: Spatial distribution law.
        spread: Gaussian σ, or the radius of the uniform ball, in m.
        gas_flow: Plasma gas flow in m³/s (reported only).
        gas_temperature: Plasma gas temperature in K (reported only).
    """
    id: str
    position: Tuple[float, float, float]
    power: float
    efficiency: float = 0.7
    distribution: HeatDistribution = HeatDistribution.GAUSSIAN
    spread: float = 0.1
    gas_flow: float = 0.0
    gas_temperature: float = 5000.0

    @property
    def effective_power(self) -> float:
        """Power that reaches the charge (W)."""
        return self.power * self.efficiency

    def validate(self) -> List[str]:
        errors: List[str] = []
        if not self.power > 0:
            errors.append(f"Torch '{self.id}': power must be > 0 W.")
        if not 0.0 < self.efficiency <= 1.0:
            errors.append(f"Torch '{self.id}': efficiency must lie in (0, 1] (got {self.efficiency}).")
        if not self.spread > 0:
            errors.append(f"Torch '{self.id}': distribution spread must be > 0 m.")
        if len(self.position) != 3:
            errors.append(f"Torch '{self.id}': position must be (r, theta, z).")
        return errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "position": list(self.position),
            "power": self.power,
            "efficiency": self.efficiency,
            "distribution": self.distribution.value,
            "spread": self.spread,
            "gas_flow": self.gas_flow,
            "gas_temperature": self.gas_temperature,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> PlasmaTorch:
        owner = "PlasmaTorch"
        r, theta, z = (float(v) for v in require(data, "position", owner))
        return PlasmaTorch(
            id=str(require(data, "id", owner)),
            position=(r, theta, z),
            power=float(require(data, "power", owner)),
            efficiency=float(require(data, "efficiency", owner)),
            distribution=HeatDistribution(require(data, "distribution", owner)),
            spread=float(require(data, "spread", owner)),
            gas_flow=float(require(data, "gas_flow", owner)),
            gas_temperature=float(require(data, "gas_temperature", owner)),
        )
