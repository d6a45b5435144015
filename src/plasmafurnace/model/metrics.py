"""
Simulation Metrics Data Model
=============================
Derived scalar indicators of a simulation state, used for reporting and as
parametric study targets.
"""
from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, List, Optional
import logging

from plasmafurnace.model.serialization import float_from_json, float_to_json, floats_equal, require

logger = logging.getLogger(__name__)


class _FloatRecord:
    """to_dict/from_dict/eq for dataclasses made of a name and NaN-able floats."""

    def _float_items(self) -> Dict[str, float]:
        return {f.name: getattr(self, f.name) for f in fields(self) if f.type in ("float", float)}

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {k: float_to_json(v) for k, v in self._float_items().items()}
        if hasattr(self, "name"):
            data["name"] = self.name
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        kwargs: Dict[str, Any] = {}
        for f in fields(cls):
            if f.type in ("float", float):
                kwargs[f.name] = float_from_json(require(data, f.name, cls.__name__))
            elif f.name == "name":
                kwargs["name"] = str(require(data, "name", cls.__name__))
        return cls(**kwargs)

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        if getattr(self, "name", None) != getattr(other, "name", None):
            return False
        mine, theirs = self._float_items(), other._float_items()
        return all(floats_equal(mine[k], theirs[k]) for k in mine)


@dataclass(frozen=True, eq=False)
class RegionMetrics(_FloatRecord):
    name: str
    min_temperature: float
    max_temperature: float
    avg_temperature: float
    volume: float
    energy: float


@dataclass(frozen=True, eq=False)
class TemporalMetrics(_FloatRecord):
    time_to_half_max: float
    time_to_90_percent_max: float
    max_heating_rate: float
    stabilization_time: float


@dataclass(frozen=True, eq=False)
class SimulationMetrics(_FloatRecord):
    """
    Attributes:
        min_temperature, max_temperature: Extremes in K.
        avg_temperature, std_temperature: Volume-weighted mean and deviation in K.
        max_gradient: Largest temperature gradient magnitude in K/m.
        max_heat_flux: k · max_gradient in W/m².
        total_energy: Σ H·V relative to the reference temperature in J.
        energy_input: Electrical energy supplied by the torches in J.
        energy_efficiency: Stored energy gain over energy input (NaN without input).
        melt_fraction: Volume-weighted liquid fraction.
        avg_heating_rate: Change of the mean temperature per second in K/s.
    """
    min_temperature: float
    max_temperature: float
    avg_temperature: float
    std_temperature: float
    max_gradient: float
    max_heat_flux: float
    total_energy: float
    energy_input: float
    energy_efficiency: float
    melt_fraction: float
    avg_heating_rate: float
    region_metrics: List[RegionMetrics] = field(default_factory=list)
    temporal_metrics: Optional[TemporalMetrics] = None

    def as_target_values(self) -> Dict[str, float]:
        """Scalar metrics addressable by name (parametric study targets)."""
        return dict(self._float_items())

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["region_metrics"] = [r.to_dict() for r in self.region_metrics]
        data["temporal_metrics"] = self.temporal_metrics.to_dict() if self.temporal_metrics else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SimulationMetrics:
        owner = cls.__name__
        temporal = require(data, "temporal_metrics", owner)
        return replace(
            super().from_dict(data),
            region_metrics=[RegionMetrics.from_dict(r) for r in require(data, "region_metrics", owner)],
            temporal_metrics=TemporalMetrics.from_dict(temporal) if temporal else None,
        )

    def __eq__(self, other: object) -> bool:
        result = super().__eq__(other)
        if result is not True:
            return result
        return (self.region_metrics == other.region_metrics  # type: ignore[attr-defined]
                and self.temporal_metrics == other.temporal_metrics)  # type: ignore[attr-defined]
