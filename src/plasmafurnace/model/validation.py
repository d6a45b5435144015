"""
Validation Data Model
=====================
Reference measurements and the error statistics of a simulated field
against them.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Dict, List, Optional, Tuple
import logging

from plasmafurnace.model.serialization import (
    float_from_json,
    float_to_json,
    floats_equal,
    require,
)

logger = logging.getLogger(__name__)

Coordinate = Tuple[float, float, float]


class ReferenceDataType(StrEnum):
    EXPERIMENTAL = "experimental"
    ANALYTICAL = "analytical"
    NUMERICAL = "numerical"
    SYNTHETIC = "synthetic"


class OutsidePolicy(StrEnum):
    """Treatment of reference points outside the hull of the cell centres."""
    CLAMP = "clamp"
    REJECT = "reject"


@dataclass(frozen=True)
class ReferenceData:
    """
    Attributes:
        name: Dataset name.
        coordinates: Measurement points (r [m], θ [rad], z [m]).
        values: Measured temperatures in K, one per point.
        uncertainties: Optional absolute uncertainty per point in K.
        description: Free text.
        source: Where the data comes from.
        data_type: Kind of reference.
        metadata: Free-form string annotations.
    """
    name: str
    coordinates: Tuple[Coordinate, ...]
    values: Tuple[float, ...]
    uncertainties: Optional[Tuple[float, ...]] = None
    description: str = ""
    source: str = ""
    data_type: ReferenceDataType = ReferenceDataType.EXPERIMENTAL
    metadata: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "coordinates", tuple(tuple(float(c) for c in p) for p in self.coordinates))
        object.__setattr__(self, "values", tuple(float(v) for v in self.values))
        if self.uncertainties is not None:
            object.__setattr__(self, "uncertainties", tuple(float(u) for u in self.uncertainties))

    def __len__(self) -> int:
        return len(self.values)

    def validate(self) -> List[str]:
        errors: List[str] = []
        if not self.values:
            errors.append(f"Reference data '{self.name}' has no points.")
        if len(self.coordinates) != len(self.values):
            errors.append(
                f"Reference data '{self.name}': {len(self.coordinates)} coordinates "
                f"but {len(self.values)} values."
            )
        if any(len(p) != 3 for p in self.coordinates):
            errors.append(f"Reference data '{self.name}': every coordinate must be (r, theta, z).")
        elif not all(math.isfinite(c) for p in self.coordinates for c in p):
            errors.append(f"Reference data '{self.name}': coordinates must be finite.")
        if not all(math.isfinite(v) for v in self.values):
            errors.append(f"Reference data '{self.name}': values must be finite.")
        if self.uncertainties is not None and len(self.uncertainties) != len(self.values):
            errors.append(f"Reference data '{self.name}': one uncertainty per value is required.")
        return errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "source": self.source,
            "data_type": self.data_type.value,
            "coordinates": [list(p) for p in self.coordinates],
            "values": list(self.values),
            "uncertainties": list(self.uncertainties) if self.uncertainties is not None else None,
            "metadata": dict(self.metadata),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> ReferenceData:
        owner = "ReferenceData"
        uncertainties = require(data, "uncertainties", owner)
        return ReferenceData(
            name=str(require(data, "name", owner)),
            coordinates=tuple(tuple(p) for p in require(data, "coordinates", owner)),
            values=tuple(require(data, "values", owner)),
            uncertainties=tuple(uncertainties) if uncertainties is not None else None,
            description=str(require(data, "description", owner)),
            source=str(require(data, "source", owner)),
            data_type=ReferenceDataType(require(data, "data_type", owner)),
            metadata={str(k): str(v) for k, v in require(data, "metadata", owner).items()},
        )


_METRIC_FIELDS = (
    "mean_absolute_error",
    "mean_squared_error",
    "root_mean_squared_error",
    "mean_absolute_percentage_error",
    "r_squared",
    "max_absolute_error",
    "mean_error",
    "normalized_rmse",
)


@dataclass(frozen=True, eq=False)
class ValidationMetrics:
    """
    Error statistics of simulated (s) against reference (r) values.

    Attributes:
        mean_absolute_error: mean |s - r| in K.
        mean_squared_error: mean (s - r)² in K².
        root_mean_squared_error: √MSE in K.
        mean_absolute_percentage_error: mean |s - r| / |r| in %, over points
            with r ≠ 0; NaN if every reference value is zero.
        r_squared: 1 - SSE / Σ(r - mean r)²; with zero reference variance
            1.0 if SSE is zero, else NaN.
        max_absolute_error: max |s - r| in K.
        mean_error: mean (s - r) in K (signed bias).
        normalized_rmse: RMSE / (max r - min r); NaN for a zero range.
        point_count: Number of compared points.
        mape_excluded_count: Points left out of MAPE because r = 0.
        region_metrics: The same statistics per named region.
    """
    mean_absolute_error: float
    mean_squared_error: float
    root_mean_squared_error: float
    mean_absolute_percentage_error: float
    r_squared: float
    max_absolute_error: float
    mean_error: float
    normalized_rmse: float
    point_count: int
    mape_excluded_count: int = 0
    region_metrics: Dict[str, ValidationMetrics] = field(default_factory=dict)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ValidationMetrics):
            return NotImplemented
        return (
            all(floats_equal(getattr(self, f), getattr(other, f)) for f in _METRIC_FIELDS)
            and self.point_count == other.point_count
            and self.mape_excluded_count == other.mape_excluded_count
            and self.region_metrics == other.region_metrics
        )

    __hash__ = None  # type: ignore[assignment]

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {f: float_to_json(getattr(self, f)) for f in _METRIC_FIELDS}
        data["point_count"] = self.point_count
        data["mape_excluded_count"] = self.mape_excluded_count
        data["region_metrics"] = {name: m.to_dict() for name, m in self.region_metrics.items()}
        return data

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> ValidationMetrics:
        owner = "ValidationMetrics"
        return ValidationMetrics(
            **{f: float_from_json(require(data, f, owner)) for f in _METRIC_FIELDS},
            point_count=int(require(data, "point_count", owner)),
            mape_excluded_count=int(require(data, "mape_excluded_count", owner)),
            region_metrics={
                str(name): ValidationMetrics.from_dict(m) for name, m in require(data, "region_metrics", owner).items()
            },
        )


@dataclass(frozen=True, eq=False)
class ValidationResult:
    """
    Attributes:
        name: Name of the validation.
        description: Free text.
        reference_data: Data the simulation was compared against.
        metrics: Global and per-region error statistics.
        simulated_values: Interpolated simulated value at each reference point.
        metadata: Free-form string annotations.
    """
    name: str
    description: str
    reference_data: ReferenceData
    metrics: ValidationMetrics
    simulated_values: Tuple[float, ...]
    metadata: Dict[str, str] = field(default_factory=dict)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ValidationResult):
            return NotImplemented
        return (
            self.name == other.name
            and self.description == other.description
            and self.reference_data == other.reference_data
            and self.metrics == other.metrics
            and len(self.simulated_values) == len(other.simulated_values)
            and all(floats_equal(a, b) for a, b in zip(self.simulated_values, other.simulated_values))
            and self.metadata == other.metadata
        )

    __hash__ = None  # type: ignore[assignment]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "reference_data": self.reference_data.to_dict(),
            "metrics": self.metrics.to_dict(),
            "simulated_values": [float_to_json(v) for v in self.simulated_values],
            "metadata": dict(self.metadata),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> ValidationResult:
        owner = "ValidationResult"
        return ValidationResult(
            name=str(require(data, "name", owner)),
            description=str(require(data, "description", owner)),
            reference_data=ReferenceData.from_dict(require(data, "reference_data", owner)),
            metrics=ValidationMetrics.from_dict(require(data, "metrics", owner)),
            simulated_values=tuple(float_from_json(v) for v in require(data, "simulated_values", owner)),
            metadata={str(k): str(v) for k, v in require(data, "metadata", owner).items()},
        )
