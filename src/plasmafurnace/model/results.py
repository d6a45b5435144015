"""
Simulation Results
==================
Read-only snapshot of a session at one point in time.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Tuple, TYPE_CHECKING
import logging

import numpy as np

from plasmafurnace.errors import IndexOutOfRange
from plasmafurnace.model.serialization import float_from_json, float_to_json, floats_equal, require

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)


def _frozen_array(values: Any) -> npt.NDArray[np.float64]:
    array = np.array(values, dtype=np.float64)
    array.setflags(write=False)
    return array


@dataclass(frozen=True, eq=False)
class SimulationResults:
    """
    Attributes:
        time: Simulated time in s.
        step: Number of completed steps.
        shape: Mesh cell counts (nr, ntheta, nz).
        radius: Furnace radius of the mesh in m.
        height: Furnace height of the mesh in m.
        temperature: Temperature field in K, flat in mesh linear order.
        enthalpy: Volumetric enthalpy field in J/m³.
        melt_fraction: Liquid fraction per cell.
        vapor_fraction: Vapor fraction per cell.
        max_temperature: Hottest cell in K.
        min_temperature: Coldest cell in K.
        avg_temperature: Volume-weighted mean temperature in K.
        total_phase_change_energy: Latent heat absorbed so far in J.
        diverged: True when the step after this snapshot produced a
            non-finite field; the snapshot itself is the last valid state.
        annotations: Free-form notes (divergence reports, cancellation).
    """
    time: float
    step: int
    shape: Tuple[int, int, int]
    radius: float
    height: float
    temperature: npt.NDArray[np.float64]
    enthalpy: npt.NDArray[np.float64]
    melt_fraction: npt.NDArray[np.float64]
    vapor_fraction: npt.NDArray[np.float64]
    max_temperature: float
    min_temperature: float
    avg_temperature: float
    total_phase_change_energy: float = 0.0
    diverged: bool = False
    annotations: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        for name in ("temperature", "enthalpy", "melt_fraction", "vapor_fraction"):
            object.__setattr__(self, name, _frozen_array(getattr(self, name)))
        object.__setattr__(self, "shape", tuple(int(n) for n in self.shape))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SimulationResults):
            return NotImplemented
        return (
            self.time == other.time
            and self.step == other.step
            and self.shape == other.shape
            and self.radius == other.radius
            and self.height == other.height
            and np.array_equal(self.temperature, other.temperature, equal_nan=True)
            and np.array_equal(self.enthalpy, other.enthalpy, equal_nan=True)
            and np.array_equal(self.melt_fraction, other.melt_fraction, equal_nan=True)
            and np.array_equal(self.vapor_fraction, other.vapor_fraction, equal_nan=True)
            and floats_equal(self.max_temperature, other.max_temperature)
            and floats_equal(self.min_temperature, other.min_temperature)
            and floats_equal(self.avg_temperature, other.avg_temperature)
            and floats_equal(self.total_phase_change_energy, other.total_phase_change_energy)
            and self.diverged == other.diverged
            and self.annotations == other.annotations
        )

    __hash__ = None  # type: ignore[assignment]

    def value_at(self, i: int, j: int, k: int) -> float:
        """Temperature of cell (radial i, angular j, axial k)."""
        nr, ntheta, nz = self.shape
        if not (0 <= i < nr and 0 <= j < ntheta and 0 <= k < nz):
            raise IndexOutOfRange(f"Cell ({i}, {j}, {k}) outside result shape {self.shape}.")
        return float(self.temperature[i + nr * (j + ntheta * k)])

    def temperature_grid(self) -> npt.NDArray[np.float64]:
        """Temperature as an (nz, ntheta, nr) grid."""
        nr, ntheta, nz = self.shape
        return self.temperature.reshape(nz, ntheta, nr)

    @property
    def melted_fraction(self) -> float:
        """Unweighted mean melt fraction over all cells."""
        return float(self.melt_fraction.mean()) if self.melt_fraction.size else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time": self.time,
            "step": self.step,
            "shape": list(self.shape),
            "radius": self.radius,
            "height": self.height,
            "temperature": self.temperature.tolist(),
            "enthalpy": self.enthalpy.tolist(),
            "melt_fraction": self.melt_fraction.tolist(),
            "vapor_fraction": self.vapor_fraction.tolist(),
            "max_temperature": float_to_json(self.max_temperature),
            "min_temperature": float_to_json(self.min_temperature),
            "avg_temperature": float_to_json(self.avg_temperature),
            "total_phase_change_energy": float_to_json(self.total_phase_change_energy),
            "diverged": self.diverged,
            "annotations": list(self.annotations),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> SimulationResults:
        owner = "SimulationResults"
        nr, ntheta, nz = (int(n) for n in require(data, "shape", owner))
        return SimulationResults(
            time=float(require(data, "time", owner)),
            step=int(require(data, "step", owner)),
            shape=(nr, ntheta, nz),
            radius=float(require(data, "radius", owner)),
            height=float(require(data, "height", owner)),
            temperature=require(data, "temperature", owner),
            enthalpy=require(data, "enthalpy", owner),
            melt_fraction=require(data, "melt_fraction", owner),
            vapor_fraction=require(data, "vapor_fraction", owner),
            max_temperature=float_from_json(require(data, "max_temperature", owner)),
            min_temperature=float_from_json(require(data, "min_temperature", owner)),
            avg_temperature=float_from_json(require(data, "avg_temperature", owner)),
            total_phase_change_energy=float_from_json(require(data, "total_phase_change_energy", owner)),
            diverged=bool(require(data, "diverged", owner)),
            annotations=tuple(require(data, "annotations", owner)),
        )

    @staticmethod
    def summarize(temperature: npt.NDArray[np.float64], volumes: npt.NDArray[np.float64]) -> tuple[float, float, float]:
        """(max, min, volume-weighted mean) of a temperature field."""
        if temperature.size == 0:
            return math.nan, math.nan, math.nan
        avg = float(np.dot(temperature, volumes) / volumes.sum())
        return float(temperature.max()), float(temperature.min()), avg
