"""Shared fixtures for the plasmafurnace test suite."""
import pytest

from plasmafurnace.fea.pre.mesh import CylindricalMesh
from plasmafurnace.model.bc import BoundaryCondition, BoundaryConfig, BoundaryKind
from plasmafurnace.model.geometry import GeometryConfig
from plasmafurnace.model.materials import MaterialProperties
from plasmafurnace.model.parameters import SimulationParameters
from plasmafurnace.model.torches import HeatDistribution, PlasmaTorch


@pytest.fixture
def geometry():
    """Small 3D mesh: 4 rings, 4 sectors, 6 layers."""
    return GeometryConfig(radius=0.5, height=1.0, nr=4, ntheta=4, nz=6)


@pytest.fixture
def mesh(geometry):
    return CylindricalMesh.from_geometry(geometry)


@pytest.fixture
def plain_material():
    """Material without latent heat (pure sensible heating)."""
    return MaterialProperties(
        name="Plain",
        thermal_conductivity=10.0,
        specific_heat=500.0,
        density=1000.0,
        emissivity=0.8,
    )


@pytest.fixture
def melting_material():
    """Pure substance melting at 600 K."""
    return MaterialProperties(
        name="Melting",
        thermal_conductivity=10.0,
        specific_heat=500.0,
        density=1000.0,
        emissivity=0.8,
        latent_heat_fusion=1.0e4,
        solidus_temperature=600.0,
        liquidus_temperature=600.0,
    )


@pytest.fixture
def torch():
    return PlasmaTorch(id="torch-1", position=(0.0, 0.0, 0.5), power=5.0e3, efficiency=0.8, spread=0.2)


@pytest.fixture
def adiabatic_parameters(geometry, plain_material):
    """Closed, insulated furnace without torches."""
    return SimulationParameters(
        geometry=geometry,
        material=plain_material,
        torches=(),
        initial_temperature=400.0,
        ambient_temperature=300.0,
        time_step=1.0,
        total_time=10.0,
        boundaries=BoundaryConfig.adiabatic(),
    )


@pytest.fixture
def heated_parameters(adiabatic_parameters, torch):
    """Insulated furnace heated by one torch."""
    return SimulationParameters(
        geometry=adiabatic_parameters.geometry,
        material=adiabatic_parameters.material,
        torches=(torch,),
        initial_temperature=adiabatic_parameters.initial_temperature,
        ambient_temperature=adiabatic_parameters.ambient_temperature,
        time_step=adiabatic_parameters.time_step,
        total_time=adiabatic_parameters.total_time,
        boundaries=adiabatic_parameters.boundaries,
    )


@pytest.fixture
def single_cell_parameters(melting_material):
    """One insulated cell just below the melting point, heated at a constant rate."""
    return SimulationParameters(
        geometry=GeometryConfig(radius=0.1, height=0.1, nr=1, ntheta=1, nz=1),
        material=melting_material,
        torches=(PlasmaTorch(
            id="torch-1",
            position=(0.0, 0.0, 0.05),
            power=1000.0,
            efficiency=1.0,
            distribution=HeatDistribution.POINT,
        ),),
        initial_temperature=590.0,
        ambient_temperature=300.0,
        time_step=1.0,
        total_time=80.0,
        boundaries=BoundaryConfig.adiabatic(),
    )


@pytest.fixture
def blow_up_parameters(plain_material):
    """Radiating furnace with an absurd time step; the explicit update overflows."""
    wall = BoundaryCondition(kind=BoundaryKind.CONVECTIVE_RADIATIVE, convection_coefficient=10.0)
    return SimulationParameters(
        geometry=GeometryConfig(radius=0.5, height=1.0, nr=2, ntheta=1, nz=2),
        material=plain_material,
        initial_temperature=2000.0,
        ambient_temperature=300.0,
        time_step=1.0e9,
        total_time=1.0e10,
        boundaries=BoundaryConfig(outer=wall, top=wall, bottom=wall),
    )
