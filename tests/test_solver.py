"""Tests for the explicit enthalpy solver."""
import numpy as np
import pytest

from plasmafurnace.controller.session import SessionStatus, create_session
from plasmafurnace.errors import SolverDivergence, SolverError
from plasmafurnace.fea.pre.mesh import CylindricalMesh
from plasmafurnace.fea.pre.phase_change import PhaseChangeCurve
from plasmafurnace.fea.solvers.solver import HeatSolver
from plasmafurnace.formula.registry import FormulaRegistry, FunctionSlot
from plasmafurnace.model.bc import BoundaryCondition, BoundaryConfig, BoundaryKind
from plasmafurnace.model.formulas import Formula
from plasmafurnace.model.geometry import GeometryConfig
from plasmafurnace.model.parameters import SimulationParameters


def _solver(mesh, material, torches=(), boundaries=None, dt=None):
    curve = PhaseChangeCurve.from_material(material)
    boundaries = boundaries or BoundaryConfig.adiabatic()
    solver = HeatSolver(mesh, curve, material, torches, boundaries, ambient_temperature=300.0, time_step=1.0)
    if dt is None:
        dt = 0.5 * solver.stable_time_step()
    return HeatSolver(mesh, curve, material, torches, boundaries, ambient_temperature=300.0, time_step=dt)


def _energy(mesh, H):
    return float(np.dot(H, mesh.cell_volumes))


class TestConservation:
    """Closed, insulated furnaces."""

    def test_energy_conserved_without_sources(self, mesh, plain_material):
        """Conduction only moves heat around: Σ H·V stays constant."""
        solver = _solver(mesh, plain_material)
        rng = np.random.default_rng(7)
        H = solver.curve.enthalpy(rng.uniform(300.0, 1000.0, mesh.n_cells))
        snapshot = FormulaRegistry().snapshot()
        start = _energy(mesh, H)
        for n in range(50):
            H, T = solver.step(H, snapshot, step=n + 1)
        assert _energy(mesh, H) == pytest.approx(start, rel=1e-10)
        assert T.max() < 1000.0 and T.min() > 300.0

    def test_uniform_field_is_steady(self, mesh, plain_material):
        solver = _solver(mesh, plain_material)
        H = mesh.new_field(solver.curve.enthalpy(500.0))
        new_H, T = solver.step(H, FormulaRegistry().snapshot())
        assert np.array_equal(new_H, H)
        assert np.allclose(T, 500.0)

    def test_step_does_not_modify_input(self, mesh, plain_material):
        solver = _solver(mesh, plain_material)
        H = solver.curve.enthalpy(np.linspace(300.0, 900.0, mesh.n_cells))
        before = H.copy()
        solver.step(H, FormulaRegistry().snapshot())
        assert np.array_equal(H, before)

    def test_torch_energy_gain(self, mesh, plain_material, torch):
        """An insulated furnace stores exactly P·η·t."""
        solver = _solver(mesh, plain_material, torches=(torch,), dt=10.0)
        H = mesh.new_field(solver.curve.enthalpy(400.0))
        snapshot = FormulaRegistry().snapshot()
        start = _energy(mesh, H)
        for n in range(20):
            H, _ = solver.step(H, snapshot)
        assert _energy(mesh, H) - start == pytest.approx(torch.effective_power * 200.0, rel=1e-9)


class TestBoundaries:

    def test_fixed_temperature_relaxation(self, plain_material):
        """A cold charge inside a hot wall approaches the wall temperature from below."""
        wall = BoundaryCondition(kind=BoundaryKind.FIXED_TEMPERATURE, temperature=1000.0)
        mesh = CylindricalMesh(0.5, 1.0, nr=4, ntheta=1, nz=1)
        solver = _solver(mesh, plain_material, boundaries=BoundaryConfig(
            outer=wall, top=BoundaryCondition(), bottom=BoundaryCondition()))
        H = mesh.new_field(solver.curve.enthalpy(400.0))
        snapshot = FormulaRegistry().snapshot()
        previous = 400.0
        steps = int(2.0e5 / solver.dt)
        for _ in range(steps):
            H, T = solver.step(H, snapshot)
            assert T.max() <= 1000.0 + 1e-9
            assert T.mean() >= previous - 1e-9
            previous = T.mean()
        assert np.allclose(T, 1000.0, atol=1.0)

    def test_radiating_wall_cools(self, geometry, plain_material):
        boundaries = BoundaryConfig(
            outer=BoundaryCondition(kind=BoundaryKind.CONVECTIVE_RADIATIVE, convection_coefficient=10.0),
            top=BoundaryCondition(kind=BoundaryKind.CONVECTIVE_RADIATIVE, enable_radiation=False),
            bottom=BoundaryCondition(),
        )
        mesh = CylindricalMesh.from_geometry(geometry)
        solver = _solver(mesh, plain_material, boundaries=boundaries, dt=1.0)
        H = mesh.new_field(solver.curve.enthalpy(800.0))
        new_H, T = solver.step(H, FormulaRegistry().snapshot())
        assert _energy(mesh, new_H) < _energy(mesh, H)
        assert T.min() < 800.0

    def test_stable_time_step_is_finite_with_conduction(self, mesh, plain_material):
        solver = _solver(mesh, plain_material)
        assert 0.0 < solver.stable_time_step() < np.inf

    def test_single_insulated_cell_has_no_limit(self, plain_material):
        solver = _solver(CylindricalMesh(0.1, 0.1, 1, 1, 1), plain_material, dt=1.0)
        assert solver.stable_time_step() == np.inf


class TestDivergence:

    def test_non_finite_input_raises(self, mesh, plain_material):
        solver = _solver(mesh, plain_material)
        H = mesh.new_field(solver.curve.enthalpy(500.0))
        H[3] = np.nan
        with pytest.raises(SolverDivergence) as info:
            solver.step(H, FormulaRegistry().snapshot(), step=5, time=2.5)
        assert info.value.step == 5
        assert info.value.time == 2.5

    def test_session_reports_divergence(self, blow_up_parameters):
        """A blown-up run ends with a flagged snapshot; earlier snapshots survive."""
        session = create_session(blow_up_parameters)
        results = list(session.run())
        last = results[-1]
        assert last.diverged
        assert last.annotations
        assert all(not r.diverged for r in results[:-1])
        assert session.status == SessionStatus.DIVERGED
        assert session.history == results
        assert np.all(np.isfinite(last.temperature))


class TestFormulaSlots:

    def test_constant_conductivity_formula_matches_material(self, mesh, plain_material):
        """Binding k(T) = 10 reproduces the material's constant k = 10."""
        registry = FormulaRegistry()
        registry.library.add(Formula(id="k_ten", name="k = 10", expression="10", variables=("T",)))
        solver = _solver(mesh, plain_material)
        H = solver.curve.enthalpy(np.linspace(300.0, 900.0, mesh.n_cells))

        plain, _ = solver.step(H, FormulaRegistry().snapshot())
        registry.bind(FunctionSlot.THERMAL_CONDUCTIVITY, "k_ten")
        bound, _ = solver.step(H, registry.snapshot())
        assert np.allclose(bound, plain, rtol=1e-12, atol=0.0)

    def test_negative_distribution_weights_fail_the_session(self, heated_parameters):
        registry = FormulaRegistry()
        registry.library.add(Formula(id="negative", name="negative", expression="-1", variables=("d",)))
        registry.bind(FunctionSlot.HEAT_SOURCE_DISTRIBUTION, "negative")
        session = create_session(heated_parameters, registry)
        with pytest.raises(SolverError):
            session.step()
        assert session.status == SessionStatus.FAILED

    def test_bound_distribution_deposits_full_power(self, heated_parameters, torch):
        """A bound distribution law still deposits the full effective power."""
        registry = FormulaRegistry()
        registry.bind(FunctionSlot.HEAT_SOURCE_DISTRIBUTION, "inverse_square_heat_distribution")
        session = create_session(heated_parameters, registry)
        start = session.total_enthalpy()
        session.step()
        gained = session.total_enthalpy() - start
        assert gained == pytest.approx(torch.effective_power * heated_parameters.time_step, rel=1e-9)


def test_axisymmetric_mesh_has_no_angular_flux(plain_material):
    """With one sector the solver runs a 2D (r, z) model."""
    params = SimulationParameters(
        geometry=GeometryConfig(radius=0.5, height=1.0, nr=5, ntheta=1, nz=5),
        material=plain_material,
        initial_temperature=500.0,
        time_step=1.0,
        total_time=5.0,
        boundaries=BoundaryConfig.adiabatic(),
    )
    session = create_session(params)
    results = list(session.run())
    assert np.allclose(results[-1].temperature, 500.0)
