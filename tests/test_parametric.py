"""Tests for the parametric study orchestrator."""
import json
import math
from dataclasses import replace

import pytest

from plasmafurnace.controller.parametric import (
    apply_parameter,
    best_configuration,
    expand_grid,
    predefined_study,
    predefined_studies,
    run_parametric_study,
    sensitivity_analysis,
)
from plasmafurnace.errors import ConfigError, SessionClosedError, SolverError
from plasmafurnace.model.bc import BoundaryCondition, BoundaryConfig, BoundaryKind
from plasmafurnace.model.geometry import GeometryConfig
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


def _study(base, *parameters, **kwargs):
    kwargs.setdefault("use_parallel", False)
    return ParametricStudyConfig(name="test", parameters=tuple(parameters), base_parameters=base, **kwargs)


def _drain(study):
    items = list(study)
    runs = [i for i in items if isinstance(i, ParametricSimulationResult)]
    assert isinstance(items[-1], ParametricStudyResult)
    assert sum(isinstance(i, ParametricStudyResult) for i in items) == 1
    return runs, items[-1]


class TestParameterValues:
    """Value sequences of a swept parameter."""

    def test_linear(self):
        assert ParametricParameter("torch_power", 50.0, 200.0, 4).values() == [50.0, 100.0, 150.0, 200.0]

    def test_logarithmic(self):
        values = ParametricParameter("thermal_conductivity", 10.0, 1000.0, 3, ScaleType.LOGARITHMIC).values()
        assert values == pytest.approx([10.0, 100.0, 1000.0])
        assert values[0] == 10.0 and values[-1] == 1000.0

    def test_logarithmic_needs_positive_minimum(self):
        with pytest.raises(ConfigError):
            ParametricParameter("thermal_conductivity", 0.0, 10.0, 3, ScaleType.LOGARITHMIC).values()

    def test_single_point(self):
        assert ParametricParameter("torch_power", 7.0, 9.0, 1).values() == [7.0]

    def test_specific_values_override(self):
        parameter = ParametricParameter("torch_power", 0.0, 1.0, 10, specific_values=(3.0, 1.0))
        assert parameter.values() == [3.0, 1.0]

    @pytest.mark.parametrize("parameter", [
        ParametricParameter("torch_power", 2.0, 1.0, 3),
        ParametricParameter("torch_power", 1.0, 2.0, 0),
        ParametricParameter("torch_power", 1.0, math.inf, 3),
        ParametricParameter("torch_power", 1.0, 2.0, 3, specific_values=()),
    ])
    def test_invalid(self, parameter):
        assert parameter.validate()
        with pytest.raises(ConfigError):
            parameter.values()


class TestGrid:
    """Cartesian product and truncation."""

    @pytest.fixture
    def grid_config(self, heated_parameters):
        return _study(
            heated_parameters,
            ParametricParameter("torch_power", 0.0, 0.0, specific_values=(1.0, 2.0)),
            ParametricParameter("torch_spread", 0.0, 0.0, specific_values=(10.0, 20.0, 30.0)),
        )

    def test_last_parameter_varies_fastest(self, grid_config):
        grid = expand_grid(grid_config)
        assert [(g["torch_power"], g["torch_spread"]) for g in grid] == [
            (1.0, 10.0), (1.0, 20.0), (1.0, 30.0), (2.0, 10.0), (2.0, 20.0), (2.0, 30.0),
        ]
        assert grid_config.grid_size() == 6

    def test_grid_order_truncation(self, grid_config):
        grid = expand_grid(replace(grid_config, max_simulations=4))
        assert [(g["torch_power"], g["torch_spread"]) for g in grid] == [
            (1.0, 10.0), (1.0, 20.0), (1.0, 30.0), (2.0, 10.0),
        ]

    def test_strided_truncation(self, grid_config):
        """Strided sampling keeps the first and the last grid point."""
        grid = expand_grid(replace(grid_config, max_simulations=4, sampling=SamplingPolicy.STRIDED))
        assert [(g["torch_power"], g["torch_spread"]) for g in grid] == [
            (1.0, 10.0), (1.0, 30.0), (2.0, 10.0), (2.0, 30.0),
        ]

    def test_truncation_is_logged(self, grid_config, caplog):
        with caplog.at_level("WARNING", logger="plasmafurnace.controller.parametric"):
            expand_grid(replace(grid_config, max_simulations=2))
        assert "truncated" in caplog.text


class TestApplyParameter:

    def test_torch_parameters_apply_to_all_torches(self, heated_parameters, torch):
        params = replace(heated_parameters, torches=(torch, replace(torch, id="torch-2")))
        updated = apply_parameter(params, "torch_power", 123.0)
        assert [t.power for t in updated.torches] == [123.0, 123.0]
        assert params.torches[0].power == torch.power

    def test_material_parameter(self, heated_parameters):
        assert apply_parameter(heated_parameters, "density", 2000.0).material.density == 2000.0

    def test_convection_only_changes_convective_faces(self, heated_parameters):
        boundaries = BoundaryConfig(
            outer=BoundaryCondition(kind=BoundaryKind.CONVECTIVE_RADIATIVE),
            top=BoundaryCondition(kind=BoundaryKind.FIXED_TEMPERATURE, temperature=500.0),
            bottom=BoundaryCondition(),
        )
        updated = apply_parameter(replace(heated_parameters, boundaries=boundaries), "convection_coefficient", 42.0)
        assert updated.boundaries.outer.convection_coefficient == 42.0
        assert updated.boundaries.top == boundaries.top
        assert updated.boundaries.bottom == boundaries.bottom

    def test_unknown_name(self, heated_parameters):
        with pytest.raises(ConfigError):
            apply_parameter(heated_parameters, "viscosity", 1.0)

    def test_efficiency_percentage_rejected(self, heated_parameters):
        with pytest.raises(ConfigError):
            apply_parameter(heated_parameters, "torch_efficiency", 80.0)

    def test_torch_parameter_without_torches(self, adiabatic_parameters):
        with pytest.raises(ConfigError):
            apply_parameter(adiabatic_parameters, "torch_power", 1.0)


class TestStudyValidation:
    """Invalid studies fail before any run starts."""

    def test_unknown_target(self, heated_parameters):
        config = _study(heated_parameters, ParametricParameter("torch_power", 1.0, 2.0, 2),
                        target_metric="happiness")
        with pytest.raises(ConfigError):
            run_parametric_study(config)

    def test_unknown_parameter(self, heated_parameters):
        with pytest.raises(ConfigError):
            run_parametric_study(_study(heated_parameters, ParametricParameter("viscosity", 1.0, 2.0, 2)))

    def test_invalid_grid_point(self, heated_parameters):
        """A negative power is caught while preparing the grid."""
        with pytest.raises(ConfigError):
            run_parametric_study(_study(heated_parameters, ParametricParameter("torch_power", -1.0, 1.0, 2)))

    def test_no_parameters(self, heated_parameters):
        with pytest.raises(ConfigError):
            run_parametric_study(_study(heated_parameters))

    def test_duplicate_parameters(self, heated_parameters):
        p = ParametricParameter("torch_power", 1.0, 2.0, 2)
        with pytest.raises(ConfigError):
            run_parametric_study(_study(heated_parameters, p, p))


class TestExecution:
    """Running studies end to end."""

    @pytest.fixture
    def power_study(self, heated_parameters):
        return _study(
            heated_parameters,
            ParametricParameter("torch_power", 1.0e3, 5.0e3, 3),
            target_metric="avg_temperature",
        )

    def test_sequential_study(self, power_study):
        runs, result = _drain(run_parametric_study(power_study))
        assert [r.simulation_id for r in runs] == [1, 2, 3]
        assert all(r.status == RunStatus.COMPLETED for r in runs)
        assert result.status == StudyStatus.COMPLETED
        assert result.total_simulations == 3
        assert result.best_configuration.parameter_values == {"torch_power": 5.0e3}
        assert result.sensitivity_analysis["torch_power"] > 0.0
        assert "max_temperature" in runs[0].additional_metrics
        assert "avg_temperature" not in runs[0].additional_metrics
        assert result.metadata["grid_size"] == "3"

    def test_minimize(self, power_study):
        result = run_parametric_study(replace(power_study, optimization_goal=OptimizationGoal.MINIMIZE)).collect()
        assert result.best_configuration.parameter_values == {"torch_power": 1.0e3}

    def test_parallel_matches_sequential(self, power_study):
        sequential = run_parametric_study(power_study).collect()
        parallel = run_parametric_study(replace(power_study, use_parallel=True, max_workers=2)).collect()
        def targets(result):
            return [r.target_metric_value for r in sorted(result.simulation_results, key=lambda r: r.simulation_id)]

        assert targets(parallel) == targets(sequential)
        assert parallel.best_configuration.simulation_id == sequential.best_configuration.simulation_id

    def test_study_cannot_be_iterated_twice(self, power_study):
        study = run_parametric_study(power_study)
        study.collect()
        with pytest.raises(SessionClosedError):
            iter(study)

    def test_collect_returns_study_result(self, power_study):
        study = run_parametric_study(power_study)
        result = study.collect()
        assert result is study.result
        assert result.status == StudyStatus.COMPLETED

    def test_collect_without_study_result_raises(self, power_study, monkeypatch):
        study = run_parametric_study(power_study)
        monkeypatch.setattr(study, "_iterate", lambda: iter(()))
        with pytest.raises(SolverError, match="ended without a result"):
            study.collect()

    @pytest.mark.parametrize("use_parallel", [False, True])
    def test_cancel_after_two_results(self, heated_parameters, use_parallel):
        """Exactly the results handed out before cancel() are reported."""
        config = _study(
            heated_parameters,
            ParametricParameter("torch_power", 1.0e3, 8.0e3, 8),
            use_parallel=use_parallel,
            max_workers=2,
        )
        study = run_parametric_study(config)
        seen = []
        final = None
        for item in study:
            if isinstance(item, ParametricStudyResult):
                final = item
                continue
            seen.append(item)
            if len(seen) == 2:
                study.cancel()
        assert len(seen) == 2
        assert final.status == StudyStatus.CANCELLED
        assert final.total_simulations == 2
        assert len({r.simulation_id for r in final.simulation_results}) == 2

    def test_diverged_run_is_excluded(self, blow_up_parameters):
        """The one-step run survives; the ten-step run diverges and cannot win."""
        config = _study(
            blow_up_parameters,
            ParametricParameter("total_time", 0.0, 0.0, specific_values=(1.0, 1.0e10)),
        )
        runs, result = _drain(run_parametric_study(config))
        by_id = {r.simulation_id: r for r in runs}
        assert by_id[1].status == RunStatus.COMPLETED
        assert by_id[2].status == RunStatus.DIVERGED
        assert math.isnan(by_id[2].target_metric_value)
        assert by_id[2].error
        assert not by_id[2].is_successful
        assert result.best_configuration.simulation_id == 1
        assert result.successful_results() == [by_id[1]]
        assert result.sensitivity_analysis == {"total_time": 0.0}

    def test_wall_time_budget(self, single_cell_parameters):
        """Runs that cannot finish within the budget are dropped."""
        base = replace(single_cell_parameters, total_time=2.0e5)
        config = _study(
            base,
            ParametricParameter("torch_power", 0.0, 0.0, specific_values=(100.0, 200.0)),
            max_execution_time=0.2,
        )
        runs, result = _drain(run_parametric_study(config))
        assert runs == []
        assert result.status == StudyStatus.TIMED_OUT
        assert result.best_configuration is None
        assert result.sensitivity_analysis == {"torch_power": 0.0}


class TestAggregation:

    def _result(self, simulation_id, power, value, status=RunStatus.COMPLETED):
        return ParametricSimulationResult(
            simulation_id=simulation_id,
            parameter_values={"torch_power": power},
            target_metric_value=value,
            status=status,
        )

    def test_best_ties_go_to_lowest_id(self):
        results = [self._result(3, 1.0, 5.0), self._result(1, 2.0, 5.0), self._result(2, 3.0, 1.0)]
        assert best_configuration(results, OptimizationGoal.MAXIMIZE).simulation_id == 1
        assert best_configuration(results, OptimizationGoal.MINIMIZE).simulation_id == 2

    def test_best_ignores_failed_runs(self):
        results = [self._result(1, 1.0, math.nan, RunStatus.FAILED), self._result(2, 2.0, 1.0)]
        assert best_configuration(results, OptimizationGoal.MAXIMIZE).simulation_id == 2
        assert best_configuration(results[:1], OptimizationGoal.MAXIMIZE) is None

    def test_sensitivity_is_elasticity(self):
        """A target proportional to the parameter has elasticity 1 on a symmetric sweep."""
        results = [self._result(i, p, 10.0 * p) for i, p in enumerate([1.0, 2.0, 3.0], start=1)]
        parameter = ParametricParameter("torch_power", 1.0, 3.0, 3)
        assert sensitivity_analysis([parameter], results)["torch_power"] == pytest.approx(1.0)

    def test_sensitivity_of_flat_response(self):
        results = [self._result(i, p, 7.0) for i, p in enumerate([1.0, 2.0], start=1)]
        parameter = ParametricParameter("torch_power", 1.0, 2.0, 2)
        assert sensitivity_analysis([parameter], results)["torch_power"] == 0.0


class TestSerialization:

    def test_config_round_trip(self, heated_parameters):
        config = _study(
            heated_parameters,
            ParametricParameter("torch_power", 1.0, 2.0, 2, unit="W"),
            ParametricParameter("thermal_conductivity", 1.0, 100.0, 3, ScaleType.LOGARITHMIC),
            sampling=SamplingPolicy.STRIDED,
            max_workers=3,
        )
        restored = ParametricStudyConfig.from_dict(json.loads(json.dumps(config.to_dict())))
        assert restored == config

    def test_result_round_trip(self, heated_parameters):
        config = _study(heated_parameters, ParametricParameter("torch_power", 1.0e3, 2.0e3, 2))
        result = run_parametric_study(config).collect()
        restored = ParametricStudyResult.from_dict(json.loads(json.dumps(result.to_dict())))
        assert restored == result

    def test_failed_result_round_trip(self):
        failed = ParametricSimulationResult(
            simulation_id=4,
            parameter_values={"torch_power": 1.0},
            target_metric_value=math.nan,
            status=RunStatus.DIVERGED,
            error="boom",
        )
        restored = ParametricSimulationResult.from_dict(json.loads(json.dumps(failed.to_dict())))
        assert restored == failed


class TestPredefinedStudies:

    def test_predefined_studies_are_valid(self):
        configs = predefined_studies()
        assert [c.name for c in configs] == ["energy_efficiency", "max_temperature", "temperature_uniformity"]
        for config in configs:
            assert run_parametric_study(config).num_runs == 12

    def test_unknown_predefined_study(self):
        with pytest.raises(ConfigError):
            predefined_study("fastest_melt")
