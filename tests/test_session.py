"""Tests for the simulation session lifecycle."""
from dataclasses import replace

import numpy as np
import pytest

from plasmafurnace.controller.session import SessionStatus, create_session
from plasmafurnace.errors import ConfigError, SessionClosedError, SolverError
from plasmafurnace.model.geometry import GeometryConfig
from plasmafurnace.model.torches import PlasmaTorch


class TestCreateSession:
    """Parameter validation happens before anything is allocated."""

    def test_initial_state(self, adiabatic_parameters):
        session = create_session(adiabatic_parameters)
        results = session.current_results()
        assert session.status == SessionStatus.NOT_STARTED
        assert results.step == 0
        assert results.time == 0.0
        assert np.all(results.enthalpy == session.curve.enthalpy(400.0))
        assert np.all(results.temperature == 400.0)
        assert results.shape == (4, 4, 6)

    @pytest.mark.parametrize("changes", [
        {"time_step": 0.0},
        {"total_time": -1.0},
        {"initial_temperature": -5.0},
        {"ambient_temperature": 0.0},
        {"geometry": GeometryConfig(radius=0.5, height=1.0, nr=0, ntheta=1, nz=2)},
        {"torches": (PlasmaTorch(id="t", position=(0.0, 0.0, 0.5), power=-1.0),)},
        {"torches": (PlasmaTorch(id="t", position=(0.0, 0.0, 0.5), power=1.0, efficiency=1.5),)},
        {"torches": (PlasmaTorch(id="t", position=(2.0, 0.0, 0.5), power=1.0),)},
        {"torches": (
            PlasmaTorch(id="t", position=(0.0, 0.0, 0.5), power=1.0),
            PlasmaTorch(id="t", position=(0.1, 0.0, 0.5), power=1.0),
        )},
        {"formula_bindings": {"thermal_conductivity": "no_such_formula"}},
        {"formula_bindings": {"no_such_slot": "linear_conductivity"}},
        {"formula_bindings": {"thermal_conductivity": "natural_convection"}},
    ])
    def test_invalid_parameters(self, adiabatic_parameters, changes):
        with pytest.raises(ConfigError):
            create_session(replace(adiabatic_parameters, **changes))

    def test_bindings_from_parameters(self, adiabatic_parameters):
        params = replace(adiabatic_parameters, formula_bindings={"thermal_conductivity": "linear_conductivity"})
        session = create_session(params)
        assert session.registry.resolve("thermal_conductivity") == "linear_conductivity"

    @pytest.mark.parametrize("total_time, time_step, expected", [
        (10.0, 1.0, 10),
        (10.0, 3.0, 4),
        (0.3, 0.1, 3),
        (0.05, 1.0, 1),
    ])
    def test_num_steps(self, adiabatic_parameters, total_time, time_step, expected):
        params = replace(adiabatic_parameters, total_time=total_time, time_step=time_step)
        assert params.num_steps == expected


class TestRun:
    """The run() iterator."""

    def test_record_interval(self, adiabatic_parameters):
        """Every third step is yielded, plus the final one."""
        session = create_session(adiabatic_parameters)
        steps = [r.step for r in session.run(record_interval=3)]
        assert steps == [3, 6, 9, 10]
        assert session.status == SessionStatus.COMPLETED
        assert session.time == pytest.approx(10.0)

    def test_every_step_by_default(self, adiabatic_parameters):
        session = create_session(adiabatic_parameters)
        results = list(session.run())
        assert [r.step for r in results] == list(range(1, 11))
        assert [r.time for r in results] == pytest.approx([float(n) for n in range(1, 11)])
        assert session.temperature_at_step(4) is results[3]

    def test_run_cannot_restart(self, adiabatic_parameters):
        session = create_session(adiabatic_parameters)
        list(session.run())
        with pytest.raises(SessionClosedError):
            session.run()

    def test_run_twice_before_iterating(self, adiabatic_parameters):
        session = create_session(adiabatic_parameters)
        session.run()
        with pytest.raises(SessionClosedError):
            session.run()

    def test_invalid_record_interval(self, adiabatic_parameters):
        session = create_session(adiabatic_parameters)
        with pytest.raises(ConfigError):
            session.run(record_interval=0)

    def test_cancel(self, adiabatic_parameters):
        """Cancellation is observed before the next step; no further snapshot appears."""
        session = create_session(adiabatic_parameters)
        results = []
        for result in session.run():
            results.append(result)
            if len(results) == 2:
                session.cancel()
        assert [r.step for r in results] == [1, 2]
        assert session.status == SessionStatus.CANCELLED
        assert session.step_count == 2

    def test_step_after_completion_raises(self, adiabatic_parameters):
        session = create_session(replace(adiabatic_parameters, total_time=2.0))
        session.step()
        session.step()
        assert session.status == SessionStatus.COMPLETED
        with pytest.raises(SessionClosedError):
            session.step()

    def test_step_without_snapshot_raises(self, adiabatic_parameters, monkeypatch):
        session = create_session(adiabatic_parameters)
        monkeypatch.setattr(session, "_advance", lambda record: None)
        with pytest.raises(SolverError, match="no snapshot"):
            session.step()

    def test_snapshots_are_read_only(self, adiabatic_parameters):
        session = create_session(adiabatic_parameters)
        result = session.step()
        with pytest.raises(ValueError):
            result.temperature[0] = 0.0


class TestPhaseChangePlateau:
    """A melting cell holds its temperature while absorbing latent heat."""

    def test_temperature_plateau(self, single_cell_parameters):
        session = create_session(single_cell_parameters)
        results = list(session.run())
        temperatures = np.array([r.temperature[0] for r in results])
        enthalpies = np.array([r.enthalpy[0] for r in results])

        on_plateau = temperatures == 600.0
        assert on_plateau.sum() > 20
        assert np.all(np.diff(enthalpies) > 0.0)
        assert np.all(np.diff(temperatures) >= 0.0)

        # Melting starts and finishes within the run
        assert temperatures[0] < 600.0
        assert temperatures[-1] > 600.0
        assert results[-1].melt_fraction[0] == 1.0
        melt = np.array([r.melt_fraction[0] for r in results])
        assert np.all(np.diff(melt[on_plateau]) > 0.0)

    def test_latent_energy_reported(self, single_cell_parameters):
        session = create_session(single_cell_parameters)
        last = list(session.run())[-1]
        volume = session.mesh.total_volume
        assert last.total_phase_change_energy == pytest.approx(1.0e7 * volume)
