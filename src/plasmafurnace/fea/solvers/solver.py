from __future__ import annotations

from typing import TYPE_CHECKING, Optional, Sequence
import logging

import numpy as np

from plasmafurnace.config import STEFAN_BOLTZMANN
from plasmafurnace.errors import EvalError, EvalErrorKind, SolverDivergence
from plasmafurnace.fea.pre.heat_sources import heat_source_field
from plasmafurnace.formula.engine import FormulaEngine
from plasmafurnace.formula.registry import FunctionSlot
from plasmafurnace.model.bc import BoundaryConfig, BoundaryCondition, BoundaryKind

if TYPE_CHECKING:
    import numpy.typing as npt

    from plasmafurnace.fea.pre.mesh import CylindricalMesh
    from plasmafurnace.fea.pre.phase_change import PhaseChangeCurve
    from plasmafurnace.formula.engine import BoundFormula
    from plasmafurnace.formula.registry import RegistrySnapshot
    from plasmafurnace.model.materials import MaterialProperties
    from plasmafurnace.model.torches import PlasmaTorch

logger = logging.getLogger(__name__)

_NO_FORMULA: dict = {}


def _harmonic_mean(a: npt.NDArray[np.float64], b: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    return 2.0 * a * b / (a + b)


class HeatSolver:
    """
    Explicit finite-volume solver for the enthalpy form of the heat equation
    on a cylindrical mesh.

    The solver holds no field state: :meth:`step` maps the enthalpy field of
    step n (read only) to a newly allocated field of step n + 1, so identical
    inputs always give identical outputs.
    """

    def __init__(
        self,
        mesh: CylindricalMesh,
        curve: PhaseChangeCurve,
        material: MaterialProperties,
        torches: Sequence[PlasmaTorch],
        boundaries: BoundaryConfig,
        ambient_temperature: float,
        time_step: float,
        engine: Optional[FormulaEngine] = None,
    ) -> None:
        """
        Initialize the solver.

        Args:
            mesh: The furnace mesh.
            curve: Enthalpy-temperature curve of the material.
            material: Material constants (k, ε) used when no formula is bound.
            torches: Heat sources.
            boundaries: Conditions on the outer, top and bottom faces.
            ambient_temperature: Surrounding temperature in K.
            time_step: Δt in s.
            engine: Evaluator for slot formulas.
        """
        self.mesh = mesh
        self.curve = curve
        self.material = material
        self.torches = tuple(torches)
        self.boundaries = boundaries
        self.ambient_temperature = float(ambient_temperature)
        self.dt = float(time_step)
        self.engine = engine or FormulaEngine()

        self._precompute_geometry()

        # Torch sources only change when the distribution formula changes
        self._sources: Optional[npt.NDArray[np.float64]] = None
        self._sources_key: object = _NO_FORMULA

    def _precompute_geometry(self) -> None:
        """
        Geometric conductance factors A / distance for every face family,
        shaped to broadcast against the (nz, ntheta, nr) grid.
        """
        m = self.mesh

        # 1) Radial faces between ring i and i + 1, at r = r_faces[i + 1]
        self._g_radial = m.r_faces[1:-1] * m.dtheta * m.dz / m.dr  # (nr - 1,)

        # 2) Angular faces between sector j and j + 1 (periodic)
        self._g_angular = m.dr * m.dz / (m.r_centres * m.dtheta)  # (nr,)

        # 3) Axial faces between layer k and k + 1
        self._g_axial = m.ring_area / m.dz  # (nr,)

        # 4) Boundary face areas
        self._area_outer = m.radius * m.dtheta * m.dz  # per (k, j) of the last ring
        self._area_cap = m.ring_area  # per (j, i) of the top/bottom layer

        self._volumes = m.cell_volumes

    # ---- Slot-dependent material terms ----

    def _conductivity(self, T: npt.NDArray[np.float64], formula: Optional[BoundFormula]) -> npt.NDArray[np.float64]:
        if formula is None:
            return np.broadcast_to(self.material.thermal_conductivity, T.shape)
        k = np.broadcast_to(self.engine.evaluate_formula(formula, {"T": T}), T.shape)
        if np.any(k <= 0):
            raise EvalError(EvalErrorKind.DOMAIN_ERROR,
                            f"conductivity '{formula.formula_id}' must be positive")
        return k

    def _emissivity(self, T: npt.NDArray[np.float64], formula: Optional[BoundFormula]) -> npt.NDArray[np.float64]:
        if formula is None:
            return np.broadcast_to(self.material.emissivity, T.shape)
        eps = np.broadcast_to(self.engine.evaluate_formula(formula, {"T": T}), T.shape)
        if np.any((eps < 0) | (eps > 1)):
            raise EvalError(EvalErrorKind.DOMAIN_ERROR,
                            f"emissivity '{formula.formula_id}' must lie in [0, 1]")
        return eps

    def _convection(
        self,
        T: npt.NDArray[np.float64],
        T_amb: float,
        bc: BoundaryCondition,
        formula: Optional[BoundFormula],
    ) -> npt.NDArray[np.float64]:
        if formula is None:
            return np.broadcast_to(bc.convection_coefficient, T.shape)
        h = np.broadcast_to(self.engine.evaluate_formula(formula, {"T": T, "T_amb": T_amb}), T.shape)
        if np.any(h < 0):
            raise EvalError(EvalErrorKind.DOMAIN_ERROR,
                            f"convection coefficient '{formula.formula_id}' must be >= 0")
        return h

    def _heat_sources(self, formula: Optional[BoundFormula]) -> npt.NDArray[np.float64]:
        key = formula if formula is not None else _NO_FORMULA
        if self._sources is None or self._sources_key is not key:
            self._sources = heat_source_field(self.mesh, self.torches, formula, self.engine)
            self._sources_key = key
        return self._sources

    # ---- Fluxes ----

    def _boundary_flux(
        self,
        bc: BoundaryCondition,
        T: npt.NDArray[np.float64],
        k: npt.NDArray[np.float64],
        area: float | npt.NDArray[np.float64],
        half_width: float,
        snapshot: RegistrySnapshot,
    ) -> npt.NDArray[np.float64]:
        """Heat flow (W) entering the boundary cells through one face family."""
        if bc.kind == BoundaryKind.ADIABATIC:
            return np.zeros_like(T)

        if bc.kind == BoundaryKind.FIXED_TEMPERATURE:
            # Half-cell conductance between the cell centre and the wall
            return k * area / half_width * (bc.temperature - T)

        T_amb = bc.temperature if bc.temperature is not None else self.ambient_temperature
        loss = np.zeros_like(T)
        if bc.enable_convection:
            h = self._convection(T, T_amb, bc, snapshot.get(FunctionSlot.CONVECTION_COEFFICIENT))
            loss += h * area * (T - T_amb)
        if bc.enable_radiation:
            eps = self._emissivity(T, snapshot.get(FunctionSlot.EMISSIVITY))
            loss += eps * STEFAN_BOLTZMANN * area * (T ** 4 - T_amb ** 4)
        return -loss

    def net_heat_flow(
        self,
        T: npt.NDArray[np.float64],
        snapshot: RegistrySnapshot,
    ) -> npt.NDArray[np.float64]:
        """
        Conductive and boundary heat flow (W) into every cell.

        Args:
            T: Temperature grid of shape (nz, ntheta, nr).
            snapshot: Slot bindings for this step.

        Returns:
            Net heat flow grid of shape (nz, ntheta, nr).
        """
        m = self.mesh
        k = self._conductivity(T, snapshot.get(FunctionSlot.THERMAL_CONDUCTIVITY))
        net = np.zeros(m.grid_shape, dtype=np.float64)

        # 1) Radial conduction; the axis face (r = 0) has zero area
        if m.nr > 1:
            kf = _harmonic_mean(k[..., :-1], k[..., 1:])
            q = kf * self._g_radial * (T[..., 1:] - T[..., :-1])  # from ring i + 1 into ring i
            net[..., :-1] += q
            net[..., 1:] -= q

        # 2) Angular conduction with periodic wrap
        if m.ntheta > 1:
            T_next = np.roll(T, -1, axis=1)
            k_next = np.roll(k, -1, axis=1)
            q = _harmonic_mean(k, k_next) * self._g_angular * (T_next - T)  # from j + 1 into j
            net += q
            net -= np.roll(q, 1, axis=1)

        # 3) Axial conduction
        if m.nz > 1:
            kf = _harmonic_mean(k[:-1], k[1:])
            q = kf * self._g_axial * (T[1:] - T[:-1])  # from layer k + 1 into k
            net[:-1] += q
            net[1:] -= q

        # 4) Boundaries: outer wall, roof, hearth
        net[..., -1] += self._boundary_flux(
            self.boundaries.outer, T[..., -1], k[..., -1], self._area_outer, 0.5 * m.dr, snapshot)
        net[-1] += self._boundary_flux(
            self.boundaries.top, T[-1], k[-1], self._area_cap, 0.5 * m.dz, snapshot)
        net[0] += self._boundary_flux(
            self.boundaries.bottom, T[0], k[0], self._area_cap, 0.5 * m.dz, snapshot)

        return net

    # ---- Time stepping ----

    def step(
        self,
        enthalpy: npt.NDArray[np.float64],
        snapshot: RegistrySnapshot,
        step: int = 0,
        time: float = 0.0,
    ) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
        """
        Advance the field by one explicit step.

        Args:
            enthalpy: Volumetric enthalpy of step n, flat (J/m³). Not modified.
            snapshot: Slot bindings taken at the start of the step.
            step: Index of the step being computed (for error reports).
            time: Simulated time at the end of the step (for error reports).

        Returns:
            (enthalpy, temperature) of step n + 1, both flat.

        Raises:
            SolverDivergence: If the new field is not finite.
            EvalError: If a bound formula fails.
        """
        m = self.mesh

        # 1) Temperatures of the previous step
        T = np.asarray(self.curve.temperature(enthalpy)).reshape(m.grid_shape)

        # 2) Torch sources
        sources = self._heat_sources(snapshot.get(FunctionSlot.HEAT_SOURCE_DISTRIBUTION))

        # 3) Conduction and boundary exchange
        with np.errstate(over="ignore", invalid="ignore"):
            net = self.net_heat_flow(T, snapshot).ravel()

            # 4) Explicit update into a new buffer
            new_enthalpy = enthalpy + self.dt / self._volumes * (sources + net)

        if not np.all(np.isfinite(new_enthalpy)):
            bad = int(np.count_nonzero(~np.isfinite(new_enthalpy)))
            raise SolverDivergence(
                f"Non-finite enthalpy in {bad} cell(s) at step {step} (t = {time:.3f} s); "
                f"time step {self.dt} s may exceed the stability limit {self.stable_time_step():.3e} s.",
                step=step,
                time=time,
            )

        # 5) Invert to temperature
        new_temperature = np.asarray(self.curve.temperature(new_enthalpy), dtype=np.float64)
        return new_enthalpy, new_temperature

    def stable_time_step(self) -> float:
        """
        Largest Δt for which the explicit update stays bounded with the
        material's constant properties: min over cells of ρc_p·V / ΣG, where
        ΣG sums the conductances of all faces of the cell. Radiation is not
        included.
        """
        m = self.mesh
        k = self.material.thermal_conductivity
        g = np.zeros(m.grid_shape, dtype=np.float64)

        if m.nr > 1:
            g[..., :-1] += k * self._g_radial
            g[..., 1:] += k * self._g_radial
        if m.ntheta > 1:
            g += 2.0 * k * self._g_angular
        if m.nz > 1:
            g[:-1] += k * self._g_axial
            g[1:] += k * self._g_axial

        for bc, view, area, half in (
            (self.boundaries.outer, (Ellipsis, -1), self._area_outer, 0.5 * m.dr),
            (self.boundaries.top, (-1,), self._area_cap, 0.5 * m.dz),
            (self.boundaries.bottom, (0,), self._area_cap, 0.5 * m.dz),
        ):
            if bc.kind == BoundaryKind.FIXED_TEMPERATURE:
                g[view] += k * area / half
            elif bc.kind == BoundaryKind.CONVECTIVE_RADIATIVE and bc.enable_convection:
                g[view] += bc.convection_coefficient * area

        capacity = self.curve.rhoc * m.as_grid(self._volumes)
        with np.errstate(divide="ignore"):
            limits = np.where(g > 0, capacity / np.where(g > 0, g, 1.0), np.inf)
        return float(limits.min())
