"""
Derived Metrics
===============
Scalar indicators computed from a result snapshot: temperature statistics,
gradients, energy balance, per-region and temporal figures.
"""
from __future__ import annotations

import math
from typing import Optional, Sequence, TYPE_CHECKING
import logging

import numpy as np

from plasmafurnace.errors import ConfigError
from plasmafurnace.model.metrics import RegionMetrics, SimulationMetrics, TemporalMetrics

if TYPE_CHECKING:
    import numpy.typing as npt

    from plasmafurnace.controller.session import Session, StepSummary
    from plasmafurnace.fea.pre.mesh import CylindricalMesh
    from plasmafurnace.model.geometry import Region
    from plasmafurnace.model.results import SimulationResults

logger = logging.getLogger(__name__)

# |d(avg T)/dt| below which the charge counts as thermally stable
STABILIZATION_RATE = 0.01  # K/s

TARGET_METRICS: tuple[str, ...] = (
    "min_temperature",
    "max_temperature",
    "avg_temperature",
    "std_temperature",
    "max_gradient",
    "max_heat_flux",
    "total_energy",
    "energy_input",
    "energy_efficiency",
    "melt_fraction",
    "avg_heating_rate",
)


def temperature_gradient(mesh: CylindricalMesh, temperature: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    """
    Magnitude of ∇T at every cell centre (K/m), flat in linear order.

    Radial and axial components use central differences (one-sided at the
    walls); the angular component is periodic.
    """
    T = mesh.as_grid(temperature)
    g2 = np.zeros(mesh.grid_shape, dtype=np.float64)

    if mesh.nr > 1:
        g2 += np.gradient(T, mesh.r_centres, axis=2) ** 2
    if mesh.nz > 1:
        g2 += np.gradient(T, mesh.dz, axis=0) ** 2
    if mesh.ntheta > 2:
        arc = 2.0 * mesh.r_centres * mesh.dtheta
        g2 += ((np.roll(T, -1, axis=1) - np.roll(T, 1, axis=1)) / arc) ** 2

    return np.sqrt(g2).ravel()


def region_metrics(
    mesh: CylindricalMesh,
    results: SimulationResults,
    region: Region,
) -> RegionMetrics:
    mask = mesh.region_mask(region)
    volume = float(mesh.cell_volumes[mask].sum())
    if not mask.any():
        logger.warning(f"Region '{region.name}' contains no cell centres.")
        return RegionMetrics(region.name, math.nan, math.nan, math.nan, 0.0, 0.0)

    T = results.temperature[mask]
    V = mesh.cell_volumes[mask]
    return RegionMetrics(
        name=region.name,
        min_temperature=float(T.min()),
        max_temperature=float(T.max()),
        avg_temperature=float(np.dot(T, V) / volume),
        volume=volume,
        energy=float(np.dot(results.enthalpy[mask], V)),
    )


def temporal_metrics(trace: Sequence[StepSummary]) -> TemporalMetrics:
    """Heating-curve figures from the per-step temperature trace."""
    if len(trace) < 2:
        return TemporalMetrics(math.nan, math.nan, 0.0, math.nan)

    times = np.array([s.time for s in trace])
    t_max = np.array([s.max_temperature for s in trace])
    t_avg = np.array([s.avg_temperature for s in trace])

    # 1) Rise times of the hottest cell
    rise = t_max.max() - t_max[0]

    def time_to(fraction: float) -> float:
        if not rise > 0:
            return math.nan
        reached = np.nonzero(t_max >= t_max[0] + fraction * rise)[0]
        return float(times[reached[0]])

    # 2) Heating rates
    dt = np.diff(times)
    max_rate = float(np.max(np.diff(t_max) / dt))
    avg_rate = np.abs(np.diff(t_avg) / dt)

    # 3) Stable once the mean temperature stops moving for good
    unstable = np.nonzero(avg_rate >= STABILIZATION_RATE)[0]
    if unstable.size == 0:
        stabilization = float(times[0])
    elif unstable[-1] == avg_rate.size - 1:
        stabilization = math.nan
    else:
        stabilization = float(times[unstable[-1] + 1])

    return TemporalMetrics(
        time_to_half_max=time_to(0.5),
        time_to_90_percent_max=time_to(0.9),
        max_heating_rate=max_rate,
        stabilization_time=stabilization,
    )


def compute_metrics(
    results: SimulationResults,
    mesh: CylindricalMesh,
    conductivity: float,
    regions: Sequence[Region] = (),
    trace: Optional[Sequence[StepSummary]] = None,
    energy_input: float = 0.0,
    initial_energy: float = 0.0,
) -> SimulationMetrics:
    """
    Compute all metrics of one snapshot.

    Args:
        results: Snapshot to evaluate.
        mesh: Mesh the snapshot was computed on.
        conductivity: k used to turn the gradient into a heat flux.
        regions: Named regions for per-region figures.
        trace: Per-step temperature trace (enables temporal metrics).
        energy_input: Electrical energy supplied up to the snapshot, J.
        initial_energy: Σ H·V at t = 0, J.
    """
    if tuple(results.shape) != mesh.shape:
        raise ConfigError(f"Result shape {results.shape} does not match mesh {mesh.shape}.")

    V = mesh.cell_volumes
    T = results.temperature
    total_volume = V.sum()

    avg = float(np.dot(T, V) / total_volume)
    std = float(math.sqrt(max(np.dot((T - avg) ** 2, V) / total_volume, 0.0)))
    gradient = float(temperature_gradient(mesh, T).max())
    total_energy = float(np.dot(results.enthalpy, V))
    efficiency = (total_energy - initial_energy) / energy_input if energy_input > 0 else math.nan

    if trace and results.time > 0:
        heating_rate = (avg - trace[0].avg_temperature) / results.time
    else:
        heating_rate = 0.0

    return SimulationMetrics(
        min_temperature=float(T.min()),
        max_temperature=float(T.max()),
        avg_temperature=avg,
        std_temperature=std,
        max_gradient=gradient,
        max_heat_flux=conductivity * gradient,
        total_energy=total_energy,
        energy_input=float(energy_input),
        energy_efficiency=float(efficiency),
        melt_fraction=float(np.dot(results.melt_fraction, V) / total_volume),
        avg_heating_rate=float(heating_rate),
        region_metrics=[region_metrics(mesh, results, r) for r in regions],
        temporal_metrics=temporal_metrics(trace) if trace else None,
    )


def session_metrics(session: Session, results: Optional[SimulationResults] = None) -> SimulationMetrics:
    """Metrics of a session's latest (or given) snapshot."""
    results = results if results is not None else session.current_results()
    trace = [s for s in session.trace if s.time <= results.time]
    return compute_metrics(
        results,
        session.mesh,
        conductivity=session.parameters.material.thermal_conductivity,
        regions=session.parameters.regions,
        trace=trace,
        energy_input=sum(t.power for t in session.parameters.torches) * results.time,
        initial_energy=session.initial_energy,
    )


def metric_value(metrics: SimulationMetrics, name: str) -> float:
    """
    Look up a scalar metric by name.

    Raises:
        ConfigError: Unknown metric name.
    """
    values = metrics.as_target_values()
    if name not in values:
        raise ConfigError(f"Unknown metric '{name}'. Known: {', '.join(TARGET_METRICS)}.")
    return values[name]
