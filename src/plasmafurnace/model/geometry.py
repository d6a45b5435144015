"""
Furnace Geometry Data Model
===========================
Defines the cylindrical vessel and the named regions used for metrics and
validation.
"""
from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Any, Dict, List, TYPE_CHECKING
import logging

import numpy as np

from plasmafurnace.model.serialization import require
from plasmafurnace.utils import TWO_PI, wrap_angle

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeometryConfig:
    """
    Cylindrical vessel discretization.

    Cell sizes are derived: dr = radius / nr, dz = height / nz,
    dθ = 2π / ntheta.
    """
    radius: float = 1.0  # m
    height: float = 2.0  # m
    nr: int = 20
    ntheta: int = 1
    nz: int = 40

    def validate(self) -> List[str]:
        errors: List[str] = []
        if not self.radius > 0:
            errors.append(f"Furnace radius must be > 0 (got {self.radius}).")
        if not self.height > 0:
            errors.append(f"Furnace height must be > 0 (got {self.height}).")
        for label, count in (("nr", self.nr), ("ntheta", self.ntheta), ("nz", self.nz)):
            if not isinstance(count, (int, np.integer)) or isinstance(count, bool) or count < 1:
                errors.append(f"Cell count {label} must be an integer >= 1 (got {count!r}).")
        return errors

    @property
    def dr(self) -> float:
        return self.radius / self.nr

    @property
    def dz(self) -> float:
        return self.height / self.nz

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> GeometryConfig:
        owner = "GeometryConfig"
        return GeometryConfig(
            radius=float(require(data, "radius", owner)),
            height=float(require(data, "height", owner)),
            nr=int(require(data, "nr", owner)),
            ntheta=int(require(data, "ntheta", owner)),
            nz=int(require(data, "nz", owner)),
        )


@dataclass(frozen=True)
class Region:
    """
    Named annular sector of the furnace, used for region metrics.

    A cell (or a point) belongs to the region when its radius lies in
    [r_min, r_max], its height in [z_min, z_max] and its angle in
    [theta_min, theta_max] (wrapping through 0 when theta_min > theta_max).
    """
    name: str
    r_min: float
    r_max: float
    z_min: float
    z_max: float
    theta_min: float = 0.0
    theta_max: float = TWO_PI

    def validate(self) -> List[str]:
        errors: List[str] = []
        if not self.name:
            errors.append("Region name must not be empty.")
        if self.r_min < 0 or self.r_max < self.r_min:
            errors.append(f"Region '{self.name}': need 0 <= r_min <= r_max.")
        if self.z_max < self.z_min:
            errors.append(f"Region '{self.name}': need z_min <= z_max.")
        return errors

    def contains(
        self,
        r: float | npt.NDArray[np.float64],
        theta: float | npt.NDArray[np.float64],
        z: float | npt.NDArray[np.float64],
    ) -> bool | npt.NDArray[np.bool_]:
        """Membership test for points given in cylindrical coordinates."""
        inside = (r >= self.r_min) & (r <= self.r_max) & (z >= self.z_min) & (z <= self.z_max)
        if self.theta_max - self.theta_min >= TWO_PI:
            return inside

        t = wrap_angle(theta)
        lo = wrap_angle(self.theta_min)
        hi = wrap_angle(self.theta_max)
        if lo <= hi:
            in_sector = (t >= lo) & (t <= hi)
        else:
            in_sector = (t >= lo) | (t <= hi)
        return inside & in_sector

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> Region:
        owner = "Region"
        return Region(
            name=str(require(data, "name", owner)),
            r_min=float(require(data, "r_min", owner)),
            r_max=float(require(data, "r_max", owner)),
            z_min=float(require(data, "z_min", owner)),
            z_max=float(require(data, "z_max", owner)),
            theta_min=float(require(data, "theta_min", owner)),
            theta_max=float(require(data, "theta_max", owner)),
        )
