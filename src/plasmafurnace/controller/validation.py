"""
Validation Engine
=================
Compares a simulated temperature field with reference data.

Why is this file needed?
------------------------
1. Interpolation: Reference points rarely coincide with cell centres. The
   field is interpolated trilinearly between cell centres on the
   ``(z, theta, r)`` grid; the angular axis wraps around.
2. Outside points: Points outside the hull of the cell centres are either
   projected onto it (``clamp``, the default) or rejected with a
   ``ConfigError`` (``reject``). The angular coordinate never falls outside.
3. Statistics: Global error metrics and the same metrics per region.

Functions:
    interpolate_temperature: Simulated temperature at arbitrary points.
    error_metrics: Error statistics of two value arrays.
    validate: Metrics of a result snapshot against reference data.
    validate_model: Same, wrapped into a named ``ValidationResult``.
    create_synthetic_reference_data: Noisy samples of a simulated field.
"""
from __future__ import annotations

import math
from typing import Optional, Sequence, TYPE_CHECKING
import logging

import numpy as np
from scipy.interpolate import RegularGridInterpolator

from plasmafurnace.errors import ConfigError
from plasmafurnace.fea.pre.mesh import CylindricalMesh
from plasmafurnace.model.validation import (
    OutsidePolicy,
    ReferenceData,
    ReferenceDataType,
    ValidationMetrics,
    ValidationResult,
)
from plasmafurnace.utils import TWO_PI, wrap_angle

if TYPE_CHECKING:
    import numpy.typing as npt

    from plasmafurnace.model.geometry import Region
    from plasmafurnace.model.results import SimulationResults

logger = logging.getLogger(__name__)


def _mesh_for(results: SimulationResults, mesh: Optional[CylindricalMesh]) -> CylindricalMesh:
    if mesh is None:
        nr, ntheta, nz = results.shape
        return CylindricalMesh(results.radius, results.height, nr, ntheta, nz)
    if tuple(results.shape) != mesh.shape:
        raise ConfigError(f"Result shape {results.shape} does not match mesh {mesh.shape}.")
    return mesh


def interpolate_temperature(
    results: SimulationResults,
    coordinates: npt.ArrayLike,
    mesh: Optional[CylindricalMesh] = None,
    outside_policy: OutsidePolicy = OutsidePolicy.CLAMP,
) -> npt.NDArray[np.float64]:
    """
    Simulated temperature at arbitrary points.

    Args:
        results: Snapshot to sample.
        coordinates: (n, 3) array of (r, θ, z) points.
        mesh: Mesh of the snapshot; rebuilt from the snapshot when omitted.
        outside_policy: Treatment of points outside the cell-centre hull.

    Returns:
        Interpolated temperatures in K, one per point.

    Raises:
        ConfigError: With ``reject``, if any point lies outside the hull.
    """
    mesh = _mesh_for(results, mesh)
    points = np.asarray(coordinates, dtype=np.float64).reshape(-1, 3)
    r, theta, z = points[:, 0], wrap_angle(points[:, 1]), points[:, 2]

    # 1) Outside points
    r_lo, r_hi = mesh.r_centres[0], mesh.r_centres[-1]
    z_lo, z_hi = mesh.z_centres[0], mesh.z_centres[-1]
    outside = (r < r_lo) | (r > r_hi) | (z < z_lo) | (z > z_hi)
    if outside.any():
        if OutsidePolicy(outside_policy) == OutsidePolicy.REJECT:
            offending = ", ".join(
                f"#{i} (r={points[i, 0]:g}, z={points[i, 2]:g})" for i in np.flatnonzero(outside)[:10]
            )
            raise ConfigError(
                f"{int(outside.sum())} reference point(s) outside the cell-centre hull "
                f"r in [{r_lo:g}, {r_hi:g}], z in [{z_lo:g}, {z_hi:g}]: {offending}."
            )
        logger.debug(f"Clamping {int(outside.sum())} reference point(s) onto the cell-centre hull.")
        r = np.clip(r, r_lo, r_hi)
        z = np.clip(z, z_lo, z_hi)

    # 2) Grid with the angular axis padded by one cell on each side
    values = mesh.as_grid(results.temperature)
    values = np.concatenate((values[:, -1:, :], values, values[:, :1, :]), axis=1)
    theta_axis = np.concatenate((
        [mesh.theta_centres[-1] - TWO_PI],
        mesh.theta_centres,
        [mesh.theta_centres[0] + TWO_PI],
    ))

    # 3) Single-cell axes carry no variation; drop them
    axes = [mesh.z_centres, theta_axis, mesh.r_centres]
    columns = [z, theta, r]
    if mesh.nr == 1:
        values = values[:, :, 0]
        axes.pop()
        columns.pop()
    if mesh.nz == 1:
        values = values[0]
        axes.pop(0)
        columns.pop(0)

    interpolator = RegularGridInterpolator(tuple(axes), values, method="linear", bounds_error=False, fill_value=None)
    return interpolator(np.column_stack(columns))


def error_metrics(
    simulated: npt.ArrayLike,
    reference: npt.ArrayLike,
) -> ValidationMetrics:
    """
    Error statistics of simulated against reference values.

    Reference values equal to zero are excluded from MAPE and counted in
    ``mape_excluded_count``. An empty input gives NaN statistics.
    """
    s = np.asarray(simulated, dtype=np.float64)
    ref = np.asarray(reference, dtype=np.float64)
    n = int(ref.size)
    if n == 0:
        nan = math.nan
        return ValidationMetrics(nan, nan, nan, nan, nan, nan, nan, nan, point_count=0)

    err = s - ref
    abs_err = np.abs(err)
    mse = float(np.mean(err ** 2))
    rmse = math.sqrt(mse)

    # MAPE over non-zero references only
    nonzero = ref != 0.0
    excluded = n - int(nonzero.sum())
    mape = float(np.mean(abs_err[nonzero] / np.abs(ref[nonzero])) * 100.0) if nonzero.any() else math.nan

    # R² against the reference mean
    sse = float(np.sum(err ** 2))
    sst = float(np.sum((ref - ref.mean()) ** 2))
    if sst > 0.0:
        r_squared = 1.0 - sse / sst
    else:
        r_squared = 1.0 if sse == 0.0 else math.nan

    span = float(ref.max() - ref.min())
    return ValidationMetrics(
        mean_absolute_error=float(abs_err.mean()),
        mean_squared_error=mse,
        root_mean_squared_error=rmse,
        mean_absolute_percentage_error=mape,
        r_squared=r_squared,
        max_absolute_error=float(abs_err.max()),
        mean_error=float(err.mean()),
        normalized_rmse=rmse / span if span > 0.0 else math.nan,
        point_count=n,
        mape_excluded_count=excluded,
    )


def _simulated_values(
    results: SimulationResults,
    reference: ReferenceData,
    mesh: Optional[CylindricalMesh],
    outside_policy: OutsidePolicy,
) -> npt.NDArray[np.float64]:
    errors = reference.validate()
    if errors:
        raise ConfigError("Invalid reference data: " + "; ".join(errors))
    return interpolate_temperature(results, reference.coordinates, mesh, outside_policy)


def _with_regions(
    metrics: ValidationMetrics,
    simulated: npt.NDArray[np.float64],
    reference: ReferenceData,
    regions: Optional[Sequence[Region]],
) -> ValidationMetrics:
    if not regions:
        return metrics

    coordinates = np.asarray(reference.coordinates, dtype=np.float64)
    values = np.asarray(reference.values, dtype=np.float64)
    per_region = {}
    for region in regions:
        mask = np.asarray(region.contains(coordinates[:, 0], coordinates[:, 1], coordinates[:, 2]), dtype=bool)
        if not mask.any():
            logger.warning(f"Region '{region.name}' contains no reference points.")
        per_region[region.name] = error_metrics(simulated[mask], values[mask])

    return ValidationMetrics(
        mean_absolute_error=metrics.mean_absolute_error,
        mean_squared_error=metrics.mean_squared_error,
        root_mean_squared_error=metrics.root_mean_squared_error,
        mean_absolute_percentage_error=metrics.mean_absolute_percentage_error,
        r_squared=metrics.r_squared,
        max_absolute_error=metrics.max_absolute_error,
        mean_error=metrics.mean_error,
        normalized_rmse=metrics.normalized_rmse,
        point_count=metrics.point_count,
        mape_excluded_count=metrics.mape_excluded_count,
        region_metrics=per_region,
    )


def validate(
    results: SimulationResults,
    reference: ReferenceData,
    regions: Optional[Sequence[Region]] = None,
    mesh: Optional[CylindricalMesh] = None,
    outside_policy: OutsidePolicy = OutsidePolicy.CLAMP,
) -> ValidationMetrics:
    """
    Compare a result snapshot with reference data.

    Args:
        results: Simulated snapshot.
        reference: Measured or analytical temperatures.
        regions: Named regions; each gets the same statistics restricted to
            the reference points inside it.
        mesh: Mesh of the snapshot; rebuilt from the snapshot when omitted.
        outside_policy: ``clamp`` or ``reject`` points outside the
            cell-centre hull.

    Raises:
        ConfigError: Invalid reference data, mismatching mesh, or a rejected
            outside point.
    """
    simulated = _simulated_values(results, reference, mesh, outside_policy)
    metrics = error_metrics(simulated, reference.values)
    logger.info(
        f"Validation against '{reference.name}': {metrics.point_count} point(s), "
        f"RMSE {metrics.root_mean_squared_error:.3g} K, R² {metrics.r_squared:.4f}"
    )
    return _with_regions(metrics, simulated, reference, regions)


def validate_model(
    name: str,
    results: SimulationResults,
    reference: ReferenceData,
    regions: Optional[Sequence[Region]] = None,
    mesh: Optional[CylindricalMesh] = None,
    outside_policy: OutsidePolicy = OutsidePolicy.CLAMP,
    description: str = "",
) -> ValidationResult:
    """:func:`validate`, keeping the interpolated values alongside the metrics."""
    simulated = _simulated_values(results, reference, mesh, outside_policy)
    metrics = _with_regions(error_metrics(simulated, reference.values), simulated, reference, regions)
    return ValidationResult(
        name=name,
        description=description,
        reference_data=reference,
        metrics=metrics,
        simulated_values=tuple(float(v) for v in simulated),
        metadata={
            "simulation_time": f"{results.time:g}",
            "outside_policy": OutsidePolicy(outside_policy).value,
        },
    )


def create_synthetic_reference_data(
    results: SimulationResults,
    mesh: Optional[CylindricalMesh] = None,
    num_points: int = 50,
    error_level: float = 0.05,
    seed: Optional[int] = None,
) -> ReferenceData:
    """
    Sample a simulated field at random points and add relative noise.

    Points are uniform over the vessel volume. Each value is the
    interpolated temperature times ``1 + N(0, error_level)``; the reported
    uncertainty is ``error_level`` times the exact value.

    Raises:
        ConfigError: ``num_points`` < 1 or negative ``error_level``.
    """
    if num_points < 1:
        raise ConfigError(f"num_points must be >= 1 (got {num_points}).")
    if not error_level >= 0:
        raise ConfigError(f"error_level must be >= 0 (got {error_level}).")

    mesh = _mesh_for(results, mesh)
    rng = np.random.default_rng(seed)

    # Uniform in volume: r ~ R·√u
    r = mesh.radius * np.sqrt(rng.random(num_points))
    theta = rng.random(num_points) * TWO_PI
    z = rng.random(num_points) * mesh.height
    coordinates = np.column_stack((r, theta, z))

    exact = interpolate_temperature(results, coordinates, mesh, OutsidePolicy.CLAMP)
    values = exact * (1.0 + rng.normal(0.0, error_level, num_points))

    return ReferenceData(
        name=f"synthetic_t{results.time:g}",
        coordinates=tuple(tuple(p) for p in coordinates.tolist()),
        values=tuple(values.tolist()),
        uncertainties=tuple((np.abs(exact) * error_level).tolist()),
        description=f"Synthetic data: {num_points} samples with {error_level:.1%} relative noise.",
        source="simulation",
        data_type=ReferenceDataType.SYNTHETIC,
        metadata={"seed": str(seed), "error_level": f"{error_level:g}"},
    )
