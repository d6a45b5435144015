"""
Parametric Study Data Model
===========================
Swept parameters, study configuration and the per-run and aggregated
results of a parametric study.

Classes:
    ParametricParameter: One swept input and its value sequence.
    ParametricStudyConfig: Ordered parameters, target metric and budgets.
    ParametricSimulationResult: Outcome of one grid point.
    ParametricStudyResult: All outcomes, the best one and sensitivities.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Dict, List, Optional, Tuple
import logging

import numpy as np

from plasmafurnace.errors import ConfigError
from plasmafurnace.model.parameters import SimulationParameters
from plasmafurnace.model.serialization import (
    dict_floats_equal,
    float_from_json,
    float_to_json,
    floats_equal,
    require,
)

logger = logging.getLogger(__name__)


class ScaleType(StrEnum):
    LINEAR = "linear"
    LOGARITHMIC = "logarithmic"


class OptimizationGoal(StrEnum):
    MAXIMIZE = "maximize"
    MINIMIZE = "minimize"


class SamplingPolicy(StrEnum):
    """How a grid larger than ``max_simulations`` is cut down."""
    GRID_ORDER = "grid_order"  # first N grid points
    STRIDED = "strided"  # N evenly spaced grid indices


class RunStatus(StrEnum):
    COMPLETED = "completed"
    DIVERGED = "diverged"
    FAILED = "failed"


class StudyStatus(StrEnum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class ParametricParameter:
    """
    Attributes:
        name: Name of the simulation input to sweep (e.g. ``torch_power``).
        min_value: Lower bound of the sweep.
        max_value: Upper bound of the sweep.
        num_points: Number of sampled values between the bounds.
        scale_type: Linear or logarithmic spacing.
        specific_values: Explicit values; when given they replace bounds
            and point count entirely.
        description: Free text.
        unit: Display unit.
    """
    name: str
    min_value: float
    max_value: float
    num_points: int = 5
    scale_type: ScaleType = ScaleType.LINEAR
    specific_values: Optional[Tuple[float, ...]] = None
    description: str = ""
    unit: str = ""

    def validate(self) -> List[str]:
        errors: List[str] = []
        if not self.name:
            errors.append("Parametric parameter name must not be empty.")
        if self.specific_values is not None:
            if len(self.specific_values) == 0:
                errors.append(f"Parameter '{self.name}': specific_values must not be empty.")
            elif not all(math.isfinite(v) for v in self.specific_values):
                errors.append(f"Parameter '{self.name}': specific_values must be finite.")
            return errors

        if isinstance(self.num_points, bool) or not isinstance(self.num_points, (int, np.integer)) \
                or self.num_points < 1:
            errors.append(f"Parameter '{self.name}': num_points must be an integer >= 1 (got {self.num_points}).")
        if not (math.isfinite(self.min_value) and math.isfinite(self.max_value)):
            errors.append(f"Parameter '{self.name}': bounds must be finite.")
        elif self.min_value > self.max_value:
            errors.append(f"Parameter '{self.name}': min_value {self.min_value} > max_value {self.max_value}.")
        if self.scale_type == ScaleType.LOGARITHMIC and not self.min_value > 0:
            errors.append(f"Parameter '{self.name}': logarithmic scale needs min_value > 0 (got {self.min_value}).")
        return errors

    def values(self) -> List[float]:
        """
        Concrete value sequence of the sweep.

        Raises:
            ConfigError: If the parameter is invalid (e.g. logarithmic scale
                with a non-positive lower bound).
        """
        errors = self.validate()
        if errors:
            raise ConfigError("; ".join(errors))

        if self.specific_values is not None:
            return [float(v) for v in self.specific_values]
        if self.num_points == 1:
            return [float(self.min_value)]

        if self.scale_type == ScaleType.LOGARITHMIC:
            exponents = np.linspace(math.log10(self.min_value), math.log10(self.max_value), self.num_points)
            values = np.power(10.0, exponents)
        else:
            values = np.linspace(self.min_value, self.max_value, self.num_points)

        # Pin the end points against rounding in log space
        values[0], values[-1] = self.min_value, self.max_value
        return [float(v) for v in values]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "min_value": self.min_value,
            "max_value": self.max_value,
            "num_points": self.num_points,
            "scale_type": self.scale_type.value,
            "specific_values": list(self.specific_values) if self.specific_values is not None else None,
            "description": self.description,
            "unit": self.unit,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> ParametricParameter:
        owner = "ParametricParameter"
        specific = require(data, "specific_values", owner)
        return ParametricParameter(
            name=str(require(data, "name", owner)),
            min_value=float(require(data, "min_value", owner)),
            max_value=float(require(data, "max_value", owner)),
            num_points=int(require(data, "num_points", owner)),
            scale_type=ScaleType(require(data, "scale_type", owner)),
            specific_values=tuple(float(v) for v in specific) if specific is not None else None,
            description=str(require(data, "description", owner)),
            unit=str(require(data, "unit", owner)),
        )


@dataclass(frozen=True)
class ParametricStudyConfig:
    """
    Attributes:
        name: Study name.
        parameters: Swept parameters; the grid is their Cartesian product in
            this order.
        target_metric: Name of the metric to optimise (see
            ``controller.metrics.TARGET_METRICS``).
        optimization_goal: Whether the best run maximises or minimises it.
        max_simulations: Run budget; larger grids are truncated by ``sampling``.
        max_execution_time: Wall-time budget in s.
        use_parallel: Run grid points on a thread pool.
        sampling: Truncation policy for oversized grids.
        base_parameters: Simulation every grid point starts from.
        description: Free text.
        metadata: Free-form string annotations.
        max_workers: Pool size; ``None`` means ``DEFAULT_MAX_WORKERS``.
    """
    name: str
    parameters: Tuple[ParametricParameter, ...]
    target_metric: str = "max_temperature"
    optimization_goal: OptimizationGoal = OptimizationGoal.MAXIMIZE
    max_simulations: int = 100
    max_execution_time: float = 3600.0  # s
    use_parallel: bool = True
    sampling: SamplingPolicy = SamplingPolicy.GRID_ORDER
    base_parameters: SimulationParameters = field(default_factory=SimulationParameters)
    description: str = ""
    metadata: Dict[str, str] = field(default_factory=dict)
    max_workers: Optional[int] = None

    def validate(self) -> List[str]:
        errors: List[str] = []
        if not self.parameters:
            errors.append(f"Study '{self.name}' has no parameters to sweep.")
        names: set[str] = set()
        for parameter in self.parameters:
            errors.extend(parameter.validate())
            if parameter.name in names:
                errors.append(f"Parameter '{parameter.name}' is swept twice.")
            names.add(parameter.name)
        if self.max_simulations < 1:
            errors.append(f"max_simulations must be >= 1 (got {self.max_simulations}).")
        if not self.max_execution_time > 0:
            errors.append(f"max_execution_time must be > 0 s (got {self.max_execution_time}).")
        if self.max_workers is not None and self.max_workers < 1:
            errors.append(f"max_workers must be >= 1 (got {self.max_workers}).")
        errors.extend(self.base_parameters.validate())
        return errors

    def grid_size(self) -> int:
        """Number of points of the full, untruncated grid."""
        return math.prod(len(p.values()) for p in self.parameters)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": [p.to_dict() for p in self.parameters],
            "target_metric": self.target_metric,
            "optimization_goal": self.optimization_goal.value,
            "max_simulations": self.max_simulations,
            "max_execution_time": self.max_execution_time,
            "use_parallel": self.use_parallel,
            "sampling": self.sampling.value,
            "base_parameters": self.base_parameters.to_dict(),
            "metadata": dict(self.metadata),
            "max_workers": self.max_workers,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> ParametricStudyConfig:
        owner = "ParametricStudyConfig"
        workers = require(data, "max_workers", owner)
        return ParametricStudyConfig(
            name=str(require(data, "name", owner)),
            parameters=tuple(ParametricParameter.from_dict(p) for p in require(data, "parameters", owner)),
            target_metric=str(require(data, "target_metric", owner)),
            optimization_goal=OptimizationGoal(require(data, "optimization_goal", owner)),
            max_simulations=int(require(data, "max_simulations", owner)),
            max_execution_time=float(require(data, "max_execution_time", owner)),
            use_parallel=bool(require(data, "use_parallel", owner)),
            sampling=SamplingPolicy(require(data, "sampling", owner)),
            base_parameters=SimulationParameters.from_dict(require(data, "base_parameters", owner)),
            description=str(require(data, "description", owner)),
            metadata={str(k): str(v) for k, v in require(data, "metadata", owner).items()},
            max_workers=int(workers) if workers is not None else None,
        )


@dataclass(frozen=True, eq=False)
class ParametricSimulationResult:
    """
    Attributes:
        simulation_id: 1-based ordinal of the grid point.
        parameter_values: Swept parameter name -> value of this run.
        target_metric_value: Target metric at the end of the run; NaN when
            the run diverged or failed.
        additional_metrics: All other scalar metrics of the run.
        execution_time: Wall time of the run in s.
        status: Completed, diverged or failed.
        error: Failure or divergence message.
    """
    simulation_id: int
    parameter_values: Dict[str, float]
    target_metric_value: float
    additional_metrics: Dict[str, float] = field(default_factory=dict)
    execution_time: float = 0.0
    status: RunStatus = RunStatus.COMPLETED
    error: Optional[str] = None

    @property
    def is_successful(self) -> bool:
        return self.status == RunStatus.COMPLETED and math.isfinite(self.target_metric_value)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ParametricSimulationResult):
            return NotImplemented
        return (
            self.simulation_id == other.simulation_id
            and dict_floats_equal(self.parameter_values, other.parameter_values)
            and floats_equal(self.target_metric_value, other.target_metric_value)
            and dict_floats_equal(self.additional_metrics, other.additional_metrics)
            and self.execution_time == other.execution_time
            and self.status == other.status
            and self.error == other.error
        )

    __hash__ = None  # type: ignore[assignment]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "simulation_id": self.simulation_id,
            "parameter_values": dict(self.parameter_values),
            "target_metric_value": float_to_json(self.target_metric_value),
            "additional_metrics": {k: float_to_json(v) for k, v in self.additional_metrics.items()},
            "execution_time": self.execution_time,
            "status": self.status.value,
            "error": self.error,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> ParametricSimulationResult:
        owner = "ParametricSimulationResult"
        return ParametricSimulationResult(
            simulation_id=int(require(data, "simulation_id", owner)),
            parameter_values={str(k): float(v) for k, v in require(data, "parameter_values", owner).items()},
            target_metric_value=float_from_json(require(data, "target_metric_value", owner)),
            additional_metrics={str(k): float_from_json(v) for k, v in require(data, "additional_metrics", owner).items()},
            execution_time=float(require(data, "execution_time", owner)),
            status=RunStatus(require(data, "status", owner)),
            error=require(data, "error", owner),
        )


@dataclass(frozen=True)
class ParametricStudyResult:
    """
    Attributes:
        config: The study that produced this result.
        simulation_results: Reported runs in completion order.
        best_configuration: Successful run with the extremal target value
            under the optimisation goal; ``None`` if no run succeeded.
        sensitivity_analysis: Parameter name -> normalised elasticity of the
            target metric.
        total_execution_time: Wall time of the whole study in s.
        total_simulations: Number of reported runs.
        status: Completed, cancelled or timed out.
        metadata: Free-form string annotations (grid size, truncation).
    """
    config: ParametricStudyConfig
    simulation_results: Tuple[ParametricSimulationResult, ...]
    best_configuration: Optional[ParametricSimulationResult]
    sensitivity_analysis: Dict[str, float]
    total_execution_time: float
    total_simulations: int
    status: StudyStatus = StudyStatus.COMPLETED
    metadata: Dict[str, str] = field(default_factory=dict)

    __hash__ = None  # type: ignore[assignment]

    def successful_results(self) -> List[ParametricSimulationResult]:
        return [r for r in self.simulation_results if r.is_successful]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "config": self.config.to_dict(),
            "simulation_results": [r.to_dict() for r in self.simulation_results],
            "best_configuration": self.best_configuration.to_dict() if self.best_configuration else None,
            "sensitivity_analysis": dict(self.sensitivity_analysis),
            "total_execution_time": self.total_execution_time,
            "total_simulations": self.total_simulations,
            "status": self.status.value,
            "metadata": dict(self.metadata),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> ParametricStudyResult:
        owner = "ParametricStudyResult"
        best = require(data, "best_configuration", owner)
        return ParametricStudyResult(
            config=ParametricStudyConfig.from_dict(require(data, "config", owner)),
            simulation_results=tuple(
                ParametricSimulationResult.from_dict(r) for r in require(data, "simulation_results", owner)
            ),
            best_configuration=ParametricSimulationResult.from_dict(best) if best is not None else None,
            sensitivity_analysis={str(k): float(v) for k, v in require(data, "sensitivity_analysis", owner).items()},
            total_execution_time=float(require(data, "total_execution_time", owner)),
            total_simulations=int(require(data, "total_simulations", owner)),
            status=StudyStatus(require(data, "status", owner)),
            metadata={str(k): str(v) for k, v in require(data, "metadata", owner).items()},
        )
