"""
Simulation Session
==================
Owns one mesh, one solver and the evolving enthalpy field of a single
simulation.

Why is this file needed?
------------------------
1. Lifecycle: It validates the parameters up front, then steps the solver
   until the configured duration is reached, the run is cancelled or the
   field diverges.
2. Snapshots: It turns the internal field into read-only
   :class:`SimulationResults` and keeps the history produced so far.
3. Cancellation: ``cancel()`` may be called from any thread; it is observed
   between steps, never in the middle of one.

Functions:
    create_session: Validate parameters and build a session.
Classes:
    Session: The stepping state machine.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Iterator, List, Optional, TYPE_CHECKING
import logging
import threading

import numpy as np

from plasmafurnace.config import PROGRESS_LOG_INTERVAL
from plasmafurnace.errors import (
    ConfigError,
    EvalError,
    FormulaError,
    SessionClosedError,
    SolverDivergence,
    SolverError,
)
from plasmafurnace.fea.pre.mesh import CylindricalMesh
from plasmafurnace.fea.pre.phase_change import PhaseChangeCurve
from plasmafurnace.fea.solvers.solver import HeatSolver
from plasmafurnace.formula.registry import FormulaRegistry
from plasmafurnace.model.results import SimulationResults

if TYPE_CHECKING:
    import numpy.typing as npt

    from plasmafurnace.model.parameters import SimulationParameters

logger = logging.getLogger(__name__)


class SessionStatus(StrEnum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DIVERGED = "diverged"
    FAILED = "failed"


FINISHED_STATUSES = frozenset({
    SessionStatus.COMPLETED,
    SessionStatus.CANCELLED,
    SessionStatus.DIVERGED,
    SessionStatus.FAILED,
})


@dataclass(frozen=True)
class StepSummary:
    """Per-step temperature trace kept for temporal metrics."""
    time: float
    max_temperature: float
    min_temperature: float
    avg_temperature: float


def create_session(
    parameters: SimulationParameters,
    registry: Optional[FormulaRegistry] = None,
) -> Session:
    """
    Validate the parameters and build a ready-to-run session.

    Args:
        parameters: Complete simulation definition.
        registry: Slot bindings for this session. A fresh registry with the
            built-in library is created when omitted; ``formula_bindings``
            from the parameters are applied on top.

    Raises:
        ConfigError: If any invariant is violated or a formula binding is
            invalid. Nothing is allocated in that case.
    """
    errors = parameters.validate()
    if errors:
        raise ConfigError("Invalid simulation parameters: " + "; ".join(errors))

    registry = registry if registry is not None else FormulaRegistry()
    for slot, formula_id in parameters.formula_bindings.items():
        try:
            registry.bind(slot, formula_id)
        except FormulaError as e:
            raise ConfigError(f"Cannot bind formula '{formula_id}' to slot '{slot}': {e}") from e

    return Session(parameters, registry)


class Session:
    """
    One simulation run. Create it with :func:`create_session`.
    """

    def __init__(self, parameters: SimulationParameters, registry: FormulaRegistry) -> None:
        self.parameters = parameters
        self.registry = registry

        self.mesh = CylindricalMesh.from_geometry(parameters.geometry)
        self.curve = PhaseChangeCurve.from_material(parameters.material, parameters.enable_phase_change)
        self.solver = HeatSolver(
            mesh=self.mesh,
            curve=self.curve,
            material=parameters.material,
            torches=parameters.torches,
            boundaries=parameters.boundaries,
            ambient_temperature=parameters.ambient_temperature,
            time_step=parameters.time_step,
            engine=registry.library.engine,
        )

        # Initial state: uniform temperature, converted to enthalpy
        initial_H = self.curve.enthalpy(parameters.initial_temperature)
        self._enthalpy: npt.NDArray[np.float64] = self.mesh.new_field(initial_H)
        self._temperature: npt.NDArray[np.float64] = self.mesh.new_field(parameters.initial_temperature)
        self._step = 0
        self._time = 0.0
        self._status = SessionStatus.NOT_STARTED

        self._lock = threading.Lock()
        self._cancel_requested = threading.Event()
        self._run_started = False

        self.history: List[SimulationResults] = []
        self.trace: List[StepSummary] = [self._summary()]
        self.initial_energy = self.total_enthalpy()

        stable_dt = self.solver.stable_time_step()
        if parameters.time_step > stable_dt:
            logger.warning(
                f"Time step {parameters.time_step} s exceeds the explicit stability limit "
                f"{stable_dt:.3e} s; the run may diverge."
            )
        logger.info(
            f"Session created: mesh {self.mesh.shape}, {len(parameters.torches)} torch(es), "
            f"{parameters.num_steps} steps of {parameters.time_step} s."
        )

    # ---- State ----

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def is_finished(self) -> bool:
        return self._status in FINISHED_STATUSES

    @property
    def time(self) -> float:
        return self._time

    @property
    def step_count(self) -> int:
        return self._step

    def total_enthalpy(self) -> float:
        """Volume-integrated enthalpy Σ H·V in J."""
        return float(np.dot(self._enthalpy, self.mesh.cell_volumes))

    def current_results(self) -> SimulationResults:
        """Snapshot of the current state without stepping."""
        with self._lock:
            return self._snapshot()

    def temperature_at_step(self, step: int) -> Optional[SimulationResults]:
        """Recorded snapshot of a given step, if it was recorded."""
        for result in self.history:
            if result.step == step:
                return result
        return None

    # ---- Control ----

    def cancel(self) -> None:
        """Request cancellation; observed before the next step starts."""
        self._cancel_requested.set()
        logger.info("Cancellation requested.")

    def step(self) -> SimulationResults:
        """
        Advance one step and return the new snapshot.

        Raises:
            SessionClosedError: If the session already finished.
            SolverError: If a bound formula fails during the step.
        """
        result = self._advance(record=True)
        if result is None:
            raise SolverError(f"Step {self._step} produced no snapshot.")
        return result

    def run(self, record_interval: int = 1) -> Iterator[SimulationResults]:
        """
        Step until the total time is reached.

        Args:
            record_interval: Yield a snapshot every ``record_interval`` steps;
                the final step is always yielded.

        Returns:
            A finite iterator of snapshots. It ends early on cancellation or
            divergence (the last item then carries ``diverged=True``).

        Raises:
            ConfigError: If ``record_interval`` < 1.
            SessionClosedError: If ``run`` was already called or the session
                has finished.
        """
        if record_interval < 1:
            raise ConfigError(f"record_interval must be >= 1 (got {record_interval}).")
        with self._lock:
            if self._run_started or self.is_finished:
                raise SessionClosedError("Session.run() cannot be restarted.")
            self._run_started = True
        return self._run(record_interval)

    def _run(self, record_interval: int) -> Iterator[SimulationResults]:
        total = self.parameters.num_steps
        while not self.is_finished:
            next_step = self._step + 1
            record = next_step % record_interval == 0 or next_step >= total
            try:
                result = self._advance(record=record)
            except SessionClosedError:
                # Cancelled between two steps
                return
            if result is not None:
                yield result

    # ---- Internals ----

    def _advance(self, record: bool) -> Optional[SimulationResults]:
        with self._lock:
            if self.is_finished:
                raise SessionClosedError(f"Session is {self._status.value}.")
            if self._cancel_requested.is_set():
                self._status = SessionStatus.CANCELLED
                logger.info(f"Session cancelled at step {self._step} (t = {self._time:.3f} s).")
                raise SessionClosedError("Session was cancelled.")

            self._status = SessionStatus.RUNNING
            snapshot = self.registry.snapshot()
            step = self._step + 1
            time = step * self.parameters.time_step

            try:
                enthalpy, temperature = self.solver.step(self._enthalpy, snapshot, step=step, time=time)
            except SolverDivergence as e:
                self._status = SessionStatus.DIVERGED
                logger.warning(f"Simulation diverged: {e}")
                result = self._snapshot(diverged=True, annotations=(str(e),))
                self.history.append(result)
                return result
            except EvalError as e:
                self._status = SessionStatus.FAILED
                logger.error(f"Formula evaluation failed at step {step}: {e}")
                raise SolverError(f"Formula evaluation failed at step {step}: {e}") from e

            self._enthalpy = enthalpy
            self._temperature = temperature
            self._step = step
            self._time = time
            self.trace.append(self._summary())

            total = self.parameters.num_steps
            if step >= total:
                self._status = SessionStatus.COMPLETED

            if step % PROGRESS_LOG_INTERVAL == 0 or step >= total:
                progress = int(100 * step / total)
                logger.info(
                    f"Progress: {progress} % - Time: {time:.2f} s - Step: {step} - "
                    f"T max: {float(temperature.max()):.1f} K"
                )

            if not record:
                return None
            result = self._snapshot()
            self.history.append(result)
            return result

    def _summary(self) -> StepSummary:
        mx, mn, avg = SimulationResults.summarize(self._temperature, self.mesh.cell_volumes)
        return StepSummary(time=self._time, max_temperature=mx, min_temperature=mn, avg_temperature=avg)

    def _snapshot(self, diverged: bool = False, annotations: tuple[str, ...] = ()) -> SimulationResults:
        H = self._enthalpy
        mx, mn, avg = SimulationResults.summarize(self._temperature, self.mesh.cell_volumes)
        return SimulationResults(
            time=self._time,
            step=self._step,
            shape=self.mesh.shape,
            radius=self.mesh.radius,
            height=self.mesh.height,
            temperature=self._temperature,
            enthalpy=H,
            melt_fraction=self.curve.melt_fraction(H),
            vapor_fraction=self.curve.vapor_fraction(H),
            max_temperature=mx,
            min_temperature=mn,
            avg_temperature=avg,
            total_phase_change_energy=self.curve.latent_energy(H, self.mesh.cell_volumes),
            diverged=diverged,
            annotations=annotations,
        )
