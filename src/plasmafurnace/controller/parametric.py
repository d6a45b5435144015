"""
Parametric Study Orchestrator
=============================
Expands a parameter grid into independent simulations, runs them on a
bounded worker pool and aggregates the outcomes.

Why is this file needed?
------------------------
1. Grid: Every swept parameter becomes a value list; the grid is their
   Cartesian product, truncated deterministically to the run budget.
2. Scheduling: Each grid point gets its own :class:`Session`. In parallel
   mode at most ``max_workers`` sessions are alive at any time.
3. Budgets: Cancellation and the wall-time budget are observed between
   runs; in-flight sessions are cancelled between steps and their partial
   output is discarded.
4. Aggregation: Best configuration under the optimisation goal and a
   normalised sensitivity per parameter, computed over successful runs only.

Functions:
    apply_parameter: Map a swept parameter value onto simulation parameters.
    expand_grid: Ordered (truncated) list of parameter assignments.
    run_parametric_study: Validate a study and return its iterable handle.
    predefined_studies: Ready-made study configurations.
Classes:
    ParametricStudy: Cancellable iterator over run results.
"""
from __future__ import annotations

import itertools
import math
import threading
import time
from collections import defaultdict
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import replace
from typing import Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Set, Tuple, Union
import logging

import numpy as np

from plasmafurnace.config import DEFAULT_MAX_WORKERS
from plasmafurnace.controller.metrics import TARGET_METRICS, metric_value, session_metrics
from plasmafurnace.controller.session import Session, SessionStatus, create_session
from plasmafurnace.errors import ConfigError, PlasmaFurnaceError, SessionClosedError, SolverError
from plasmafurnace.model.bc import BoundaryConfig, BoundaryKind
from plasmafurnace.model.geometry import GeometryConfig
from plasmafurnace.model.parameters import SimulationParameters
from plasmafurnace.model.study import (
    OptimizationGoal,
    ParametricParameter,
    ParametricSimulationResult,
    ParametricStudyConfig,
    ParametricStudyResult,
    RunStatus,
    SamplingPolicy,
    ScaleType,
    StudyStatus,
)
from plasmafurnace.model.torches import PlasmaTorch

logger = logging.getLogger(__name__)

Assignment = Dict[str, float]
StudyItem = Union[ParametricSimulationResult, ParametricStudyResult]


# ---- Parameter mapping ----

def _torches(parameters: SimulationParameters, **changes: float) -> SimulationParameters:
    if not parameters.torches:
        raise ConfigError("Torch parameters cannot be swept without any torch in the base parameters.")
    return replace(parameters, torches=tuple(replace(t, **changes) for t in parameters.torches))


def _material(parameters: SimulationParameters, **changes: float) -> SimulationParameters:
    return replace(parameters, material=replace(parameters.material, **changes))


def _convection(parameters: SimulationParameters, value: float) -> SimulationParameters:
    # Applies to every convective/radiative face; other faces keep their kind
    boundaries = parameters.boundaries
    faces = {
        name: replace(bc, convection_coefficient=value) if bc.kind == BoundaryKind.CONVECTIVE_RADIATIVE else bc
        for name, bc in (("outer", boundaries.outer), ("top", boundaries.top), ("bottom", boundaries.bottom))
    }
    return replace(parameters, boundaries=BoundaryConfig(**faces))


_SETTERS: Dict[str, Callable[[SimulationParameters, float], SimulationParameters]] = {
    "torch_power": lambda p, v: _torches(p, power=v),
    "torch_efficiency": lambda p, v: _torches(p, efficiency=v),
    "torch_spread": lambda p, v: _torches(p, spread=v),
    "thermal_conductivity": lambda p, v: _material(p, thermal_conductivity=v),
    "specific_heat": lambda p, v: _material(p, specific_heat=v),
    "density": lambda p, v: _material(p, density=v),
    "emissivity": lambda p, v: _material(p, emissivity=v),
    "latent_heat_fusion": lambda p, v: _material(p, latent_heat_fusion=v),
    "initial_temperature": lambda p, v: replace(p, initial_temperature=v),
    "ambient_temperature": lambda p, v: replace(p, ambient_temperature=v),
    "time_step": lambda p, v: replace(p, time_step=v),
    "total_time": lambda p, v: replace(p, total_time=v),
    "convection_coefficient": _convection,
}

PARAMETER_NAMES: Tuple[str, ...] = tuple(_SETTERS)


def apply_parameter(parameters: SimulationParameters, name: str, value: float) -> SimulationParameters:
    """
    Return a copy of ``parameters`` with one swept value applied.

    Raises:
        ConfigError: Unknown parameter name, or a torch efficiency given as
            a percentage (> 1).
    """
    setter = _SETTERS.get(name)
    if setter is None:
        raise ConfigError(f"Unknown parametric parameter '{name}'. Known: {', '.join(PARAMETER_NAMES)}.")
    if name == "torch_efficiency" and value > 1.0:
        raise ConfigError(f"torch_efficiency must be a fraction in (0, 1], got {value} (percentages are not accepted).")
    return setter(parameters, float(value))


def apply_parameters(base: SimulationParameters, assignment: Mapping[str, float]) -> SimulationParameters:
    parameters = base
    for name, value in assignment.items():
        parameters = apply_parameter(parameters, name, value)
    return parameters


# ---- Grid ----

def expand_grid(config: ParametricStudyConfig) -> List[Assignment]:
    """
    Ordered parameter assignments of the study, truncated to
    ``max_simulations``.

    The full grid is the Cartesian product of the parameter values with the
    last parameter varying fastest. ``grid_order`` keeps its first N points;
    ``strided`` keeps N grid indices spread evenly from the first to the
    last point.
    """
    names = [p.name for p in config.parameters]
    axes = [p.values() for p in config.parameters]
    total = math.prod(len(a) for a in axes)
    n = min(total, config.max_simulations)

    if config.sampling == SamplingPolicy.STRIDED and n < total:
        indices = np.unique(np.rint(np.linspace(0, total - 1, n)).astype(np.int64))
        shape = tuple(len(a) for a in axes)
        points = [
            tuple(axes[d][i] for d, i in enumerate(np.unravel_index(int(idx), shape)))
            for idx in indices
        ]
    else:
        points = list(itertools.islice(itertools.product(*axes), n))

    if n < total:
        logger.warning(
            f"Study '{config.name}': grid of {total} points truncated to {n} ({config.sampling.value})."
        )
    return [dict(zip(names, point)) for point in points]


def _prepare(config: ParametricStudyConfig) -> List[Tuple[int, Assignment, SimulationParameters]]:
    """Validate the study and every grid point before anything runs."""
    errors = config.validate()
    if config.target_metric not in TARGET_METRICS:
        errors.append(f"Unknown target metric '{config.target_metric}'. Known: {', '.join(TARGET_METRICS)}.")
    for parameter in config.parameters:
        if parameter.name not in _SETTERS:
            errors.append(f"Unknown parametric parameter '{parameter.name}'.")
    if errors:
        raise ConfigError(f"Invalid parametric study '{config.name}': " + "; ".join(errors))

    runs: List[Tuple[int, Assignment, SimulationParameters]] = []
    for ordinal, assignment in enumerate(expand_grid(config), start=1):
        parameters = apply_parameters(config.base_parameters, assignment)
        point_errors = parameters.validate()
        if point_errors:
            raise ConfigError(f"Grid point {ordinal} {assignment} is invalid: " + "; ".join(point_errors))
        runs.append((ordinal, assignment, parameters))
    return runs


# ---- Aggregation ----

def best_configuration(
    results: Sequence[ParametricSimulationResult],
    goal: OptimizationGoal,
) -> Optional[ParametricSimulationResult]:
    """Successful run with the extremal target; ties go to the lowest id."""
    successful = sorted((r for r in results if r.is_successful), key=lambda r: r.simulation_id)
    if not successful:
        return None
    pick = max if goal == OptimizationGoal.MAXIMIZE else min
    return pick(successful, key=lambda r: r.target_metric_value)


def sensitivity_analysis(
    parameters: Sequence[ParametricParameter],
    results: Sequence[ParametricSimulationResult],
) -> Dict[str, float]:
    """
    Normalised elasticity of the target metric per parameter.

    Successful runs are grouped by the parameter's value and the target is
    averaged per group. The score is the relative spread of the group means
    divided by the relative spread of the parameter values::

        ((max_g - min_g) / |mean target|) / ((p_max - p_min) / |mean p|)

    It is 0.0 when fewer than two distinct values were sampled or a mean is
    zero.
    """
    successful = [r for r in results if r.is_successful]
    sensitivity: Dict[str, float] = {}
    if not successful:
        return {p.name: 0.0 for p in parameters}

    target_mean = abs(float(np.mean([r.target_metric_value for r in successful])))
    for parameter in parameters:
        groups: Dict[float, List[float]] = defaultdict(list)
        for r in successful:
            groups[r.parameter_values[parameter.name]].append(r.target_metric_value)
        if len(groups) < 2 or target_mean == 0.0:
            sensitivity[parameter.name] = 0.0
            continue

        means = [float(np.mean(v)) for v in groups.values()]
        values = np.array(list(groups), dtype=np.float64)
        p_range = float(values.max() - values.min())
        p_mean = abs(float(values.mean()))
        if p_range == 0.0 or p_mean == 0.0:
            sensitivity[parameter.name] = 0.0
            continue
        sensitivity[parameter.name] = ((max(means) - min(means)) / target_mean) / (p_range / p_mean)
    return sensitivity


# ---- Execution ----

class ParametricStudy:
    """
    Handle of a running parametric study.

    Iterating yields one :class:`ParametricSimulationResult` per finished run
    in completion order, then exactly one :class:`ParametricStudyResult`.
    The iterator can be consumed once.
    """

    def __init__(
        self,
        config: ParametricStudyConfig,
        runs: List[Tuple[int, Assignment, SimulationParameters]],
        grid_size: int,
    ) -> None:
        self.config = config
        self.result: Optional[ParametricStudyResult] = None
        self._runs = runs
        self._grid_size = grid_size
        self._workers = config.max_workers or DEFAULT_MAX_WORKERS

        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._cancelled = threading.Event()
        self._timed_out = threading.Event()
        self._active: Set[Session] = set()
        self._started = False

    @property
    def num_runs(self) -> int:
        return len(self._runs)

    def cancel(self) -> None:
        """Stop scheduling new runs; results not yet reported are dropped."""
        logger.info(f"Study '{self.config.name}': cancellation requested.")
        self._cancelled.set()
        self._halt()

    def collect(self) -> ParametricStudyResult:
        """
        Run the study to the end and return the aggregated result.

        Raises:
            SessionClosedError: If the study was already started.
            SolverError: If the run ends without an aggregated result.
        """
        for item in self:
            if isinstance(item, ParametricStudyResult):
                return item
        raise SolverError(f"Study '{self.config.name}' ended without a result.")

    def __iter__(self) -> Iterator[StudyItem]:
        with self._lock:
            if self._started:
                raise SessionClosedError(f"Study '{self.config.name}' has already been started.")
            self._started = True
        return self._iterate()

    # ---- Internals ----

    def _halt(self) -> None:
        with self._lock:
            self._stop.set()
            sessions = list(self._active)
        for session in sessions:
            session.cancel()

    def _expire(self) -> None:
        logger.warning(
            f"Study '{self.config.name}': wall-time budget of {self.config.max_execution_time} s exhausted."
        )
        self._timed_out.set()
        self._halt()

    def _iterate(self) -> Iterator[StudyItem]:
        started = time.perf_counter()
        timer = threading.Timer(self.config.max_execution_time, self._expire)
        timer.daemon = True
        timer.start()

        parallel = self.config.use_parallel and self._workers > 1 and len(self._runs) > 1
        logger.info(
            f"Starting study '{self.config.name}': {len(self._runs)} run(s)"
            + (f" on {self._workers} worker(s)." if parallel else ", sequential.")
        )

        reported: List[ParametricSimulationResult] = []
        outcomes = self._run_parallel() if parallel else self._run_sequential()
        try:
            for outcome in outcomes:
                # Anything finishing after a cancel is not reported
                if self._cancelled.is_set():
                    continue
                reported.append(outcome)
                yield outcome
        finally:
            timer.cancel()
            self._halt()
            outcomes.close()

        if self._cancelled.is_set():
            status = StudyStatus.CANCELLED
        elif self._timed_out.is_set():
            status = StudyStatus.TIMED_OUT
        else:
            status = StudyStatus.COMPLETED

        elapsed = time.perf_counter() - started
        self.result = ParametricStudyResult(
            config=self.config,
            simulation_results=tuple(reported),
            best_configuration=best_configuration(reported, self.config.optimization_goal),
            sensitivity_analysis=sensitivity_analysis(self.config.parameters, reported),
            total_execution_time=elapsed,
            total_simulations=len(reported),
            status=status,
            metadata={
                "grid_size": str(self._grid_size),
                "scheduled_runs": str(len(self._runs)),
                "sampling": self.config.sampling.value,
            },
        )
        logger.info(
            f"Study '{self.config.name}' {status.value}: {len(reported)} run(s) reported in {elapsed:.2f} s."
        )
        yield self.result

    def _run_sequential(self) -> Iterator[ParametricSimulationResult]:
        for run in self._runs:
            if self._stop.is_set():
                return
            outcome = self._execute(*run)
            if outcome is not None:
                yield outcome

    def _run_parallel(self) -> Iterator[ParametricSimulationResult]:
        pending = iter(self._runs)
        in_flight: Set[Future] = set()
        with ThreadPoolExecutor(max_workers=self._workers, thread_name_prefix="plasmafurnace-study") as executor:
            while True:
                # 1) Top up the pool, never more than max_workers in flight
                while len(in_flight) < self._workers and not self._stop.is_set():
                    run = next(pending, None)
                    if run is None:
                        break
                    in_flight.add(executor.submit(self._execute, *run))
                if not in_flight:
                    return

                # 2) Hand over whatever finished
                done, in_flight = wait(in_flight, return_when=FIRST_COMPLETED)
                for future in done:
                    outcome = future.result()
                    if outcome is not None:
                        yield outcome

    def _execute(
        self,
        simulation_id: int,
        assignment: Assignment,
        parameters: SimulationParameters,
    ) -> Optional[ParametricSimulationResult]:
        """
        Run one grid point on its own session.

        Returns:
            The run outcome, or ``None`` when the run was stopped before it
            finished (its partial output is discarded).
        """
        started = time.perf_counter()
        try:
            session = create_session(parameters)
        except ConfigError as e:
            logger.error(f"Run {simulation_id} could not start: {e}")
            return self._failed(simulation_id, assignment, started, RunStatus.FAILED, str(e))

        with self._lock:
            if self._stop.is_set():
                return None
            self._active.add(session)

        try:
            last = None
            for last in session.run(record_interval=parameters.num_steps):
                pass
        except PlasmaFurnaceError as e:
            logger.error(f"Run {simulation_id} {assignment} failed: {e}")
            return self._failed(simulation_id, assignment, started, RunStatus.FAILED, str(e))
        finally:
            with self._lock:
                self._active.discard(session)

        if session.status == SessionStatus.CANCELLED or last is None:
            logger.debug(f"Run {simulation_id} stopped at step {session.step_count}; discarded.")
            return None
        if session.status == SessionStatus.DIVERGED:
            message = "; ".join(last.annotations) or "Simulation diverged."
            return self._failed(simulation_id, assignment, started, RunStatus.DIVERGED, message)

        metrics = session_metrics(session, last)
        target = metric_value(metrics, self.config.target_metric)
        additional = {k: v for k, v in metrics.as_target_values().items() if k != self.config.target_metric}
        elapsed = time.perf_counter() - started
        logger.debug(f"Run {simulation_id} {assignment}: {self.config.target_metric} = {target:.4g} ({elapsed:.2f} s)")
        return ParametricSimulationResult(
            simulation_id=simulation_id,
            parameter_values=dict(assignment),
            target_metric_value=target,
            additional_metrics=additional,
            execution_time=elapsed,
            status=RunStatus.COMPLETED,
        )

    @staticmethod
    def _failed(
        simulation_id: int,
        assignment: Assignment,
        started: float,
        status: RunStatus,
        error: str,
    ) -> ParametricSimulationResult:
        return ParametricSimulationResult(
            simulation_id=simulation_id,
            parameter_values=dict(assignment),
            target_metric_value=math.nan,
            execution_time=time.perf_counter() - started,
            status=status,
            error=error,
        )


def run_parametric_study(config: ParametricStudyConfig) -> ParametricStudy:
    """
    Validate a study and return its iterable handle.

    Nothing runs until the handle is iterated.

    Raises:
        ConfigError: Invalid study, unknown parameter or target metric, or a
            grid point that yields invalid simulation parameters.
    """
    runs = _prepare(config)
    return ParametricStudy(config, runs, config.grid_size())


# ---- Predefined studies ----

def _study_base() -> SimulationParameters:
    return SimulationParameters(
        geometry=GeometryConfig(radius=0.5, height=1.0, nr=10, ntheta=1, nz=20),
        torches=(PlasmaTorch(id="torch-1", position=(0.0, 0.0, 0.5), power=100e3, spread=0.1),),
        time_step=1.0,
        total_time=60.0,
    )


def predefined_studies() -> List[ParametricStudyConfig]:
    """Ready-made studies on a small axisymmetric furnace."""
    base = _study_base()
    return [
        ParametricStudyConfig(
            name="energy_efficiency",
            description="Stored energy gain per supplied energy versus torch power and efficiency.",
            parameters=(
                ParametricParameter("torch_power", 50e3, 200e3, 4, unit="W"),
                ParametricParameter("torch_efficiency", 0.5, 0.9, 3),
            ),
            target_metric="energy_efficiency",
            optimization_goal=OptimizationGoal.MAXIMIZE,
            base_parameters=base,
        ),
        ParametricStudyConfig(
            name="max_temperature",
            description="Peak temperature versus torch power and charge conductivity.",
            parameters=(
                ParametricParameter("torch_power", 50e3, 200e3, 4, unit="W"),
                ParametricParameter("thermal_conductivity", 10.0, 100.0, 3, ScaleType.LOGARITHMIC, unit="W/(m·K)"),
            ),
            target_metric="max_temperature",
            optimization_goal=OptimizationGoal.MAXIMIZE,
            base_parameters=base,
        ),
        ParametricStudyConfig(
            name="temperature_uniformity",
            description="Temperature spread versus torch spread and wall convection.",
            parameters=(
                ParametricParameter("torch_spread", 0.05, 0.3, 4, unit="m"),
                ParametricParameter("convection_coefficient", 5.0, 50.0, 3, ScaleType.LOGARITHMIC, unit="W/(m²·K)"),
            ),
            target_metric="std_temperature",
            optimization_goal=OptimizationGoal.MINIMIZE,
            base_parameters=base,
        ),
    ]


def predefined_study(name: str) -> ParametricStudyConfig:
    """
    Raises:
        ConfigError: No predefined study of that name.
    """
    for config in predefined_studies():
        if config.name == name:
            return config
    raise ConfigError(f"Unknown predefined study '{name}'.")
