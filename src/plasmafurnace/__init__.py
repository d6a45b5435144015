"""
plasmafurnace
=============
Transient heat transfer in a cylindrical plasma furnace: an explicit enthalpy
solver with phase change, a safe formula engine for user-defined physical
relations, parametric studies and validation against reference data.

Typical use::

    from plasmafurnace import PlasmaTorch, SimulationParameters, create_session

    params = SimulationParameters(torches=(PlasmaTorch("t1", (0.0, 0.0, 1.0), 100e3),))
    session = create_session(params)
    for snapshot in session.run(record_interval=50):
        print(snapshot.time, snapshot.max_temperature)
"""
from plasmafurnace.controller.metrics import compute_metrics, session_metrics
from plasmafurnace.controller.parametric import (
    ParametricStudy,
    apply_parameter,
    predefined_studies,
    run_parametric_study,
)
from plasmafurnace.controller.session import Session, SessionStatus, create_session
from plasmafurnace.controller.validation import (
    create_synthetic_reference_data,
    validate,
    validate_model,
)
from plasmafurnace.errors import (
    ConfigError,
    EvalError,
    EvalErrorKind,
    FormulaError,
    IndexOutOfRange,
    ParseError,
    PlasmaFurnaceError,
    SolverDivergence,
    SolverError,
)
from plasmafurnace.fea.pre.mesh import CylindricalMesh
from plasmafurnace.formula import FormulaEngine, FormulaLibrary, FormulaRegistry, FunctionSlot
from plasmafurnace.model.bc import BoundaryCondition, BoundaryConfig, BoundaryKind
from plasmafurnace.model.formulas import Formula, FormulaCategory, FormulaParameter
from plasmafurnace.model.geometry import GeometryConfig, Region
from plasmafurnace.model.materials import MaterialLibrary, MaterialProperties
from plasmafurnace.model.metrics import SimulationMetrics
from plasmafurnace.model.parameters import SimulationParameters
from plasmafurnace.model.results import SimulationResults
from plasmafurnace.model.study import (
    OptimizationGoal,
    ParametricParameter,
    ParametricSimulationResult,
    ParametricStudyConfig,
    ParametricStudyResult,
    SamplingPolicy,
    ScaleType,
)
from plasmafurnace.model.torches import HeatDistribution, PlasmaTorch
from plasmafurnace.model.validation import OutsidePolicy, ReferenceData, ValidationMetrics, ValidationResult

__version__ = "0.1.0"

__all__ = [
    "BoundaryCondition",
    "BoundaryConfig",
    "BoundaryKind",
    "ConfigError",
    "CylindricalMesh",
    "EvalError",
    "EvalErrorKind",
    "Formula",
    "FormulaCategory",
    "FormulaEngine",
    "FormulaError",
    "FormulaLibrary",
    "FormulaParameter",
    "FormulaRegistry",
    "FunctionSlot",
    "GeometryConfig",
    "HeatDistribution",
    "IndexOutOfRange",
    "MaterialLibrary",
    "MaterialProperties",
    "OptimizationGoal",
    "OutsidePolicy",
    "ParametricParameter",
    "ParametricSimulationResult",
    "ParametricStudy",
    "ParametricStudyConfig",
    "ParametricStudyResult",
    "ParseError",
    "PlasmaFurnaceError",
    "PlasmaTorch",
    "ReferenceData",
    "Region",
    "SamplingPolicy",
    "ScaleType",
    "Session",
    "SessionStatus",
    "SimulationMetrics",
    "SimulationParameters",
    "SimulationResults",
    "SolverDivergence",
    "SolverError",
    "ValidationMetrics",
    "ValidationResult",
    "apply_parameter",
    "compute_metrics",
    "create_session",
    "create_synthetic_reference_data",
    "predefined_studies",
    "run_parametric_study",
    "session_metrics",
    "validate",
    "validate_model",
]
