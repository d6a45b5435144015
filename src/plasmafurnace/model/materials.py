"""
Material Library Management
===========================
Defines the configuration data structures for the furnace charge material.
These classes hold the PARAMETERS needed to build the enthalpy-temperature
curve used by the solver.
"""
from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import List, Dict, Optional, Any
import logging

from plasmafurnace.errors import ConfigError
from plasmafurnace.model.serialization import require
from plasmafurnace.utils import celsius_to_kelvin

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MaterialProperties:
    """
    Thermophysical properties of the charge.

    All temperatures are in Kelvin. The fusion band spans
    solidus_temperature -> liquidus_temperature; for a pure substance both are
    equal and the enthalpy curve is exactly flat across the band.
    Vaporization is optional and modelled as an isothermal plateau.
    """
    name: str
    thermal_conductivity: float  # W/(m·K)
    specific_heat: float  # J/(kg·K)
    density: float  # kg/m³
    emissivity: float = 0.8
    latent_heat_fusion: float = 0.0  # J/kg
    solidus_temperature: float = 1700.0  # K
    liquidus_temperature: float = 1700.0  # K
    latent_heat_vaporization: float = 0.0  # J/kg
    vaporization_temperature: Optional[float] = None  # K
    description: str = ""

    def validate(self) -> List[str]:
        errors: List[str] = []
        if not self.thermal_conductivity > 0:
            errors.append(f"Material '{self.name}': thermal conductivity must be > 0.")
        if not self.specific_heat > 0:
            errors.append(f"Material '{self.name}': specific heat must be > 0.")
        if not self.density > 0:
            errors.append(f"Material '{self.name}': density must be > 0.")
        if not 0.0 <= self.emissivity <= 1.0:
            errors.append(f"Material '{self.name}': emissivity must lie in [0, 1] (got {self.emissivity}).")
        if not self.latent_heat_fusion >= 0:
            errors.append(f"Material '{self.name}': latent heat of fusion must be >= 0.")
        if not self.solidus_temperature > 0:
            errors.append(f"Material '{self.name}': solidus temperature must be > 0 K.")
        if not self.liquidus_temperature >= self.solidus_temperature:
            errors.append(f"Material '{self.name}': liquidus temperature must be >= solidus temperature.")
        if not self.latent_heat_vaporization >= 0:
            errors.append(f"Material '{self.name}': latent heat of vaporization must be >= 0.")
        if self.latent_heat_vaporization > 0 and self.vaporization_temperature is None:
            errors.append(f"Material '{self.name}': latent heat of vaporization needs a vaporization temperature.")
        if self.vaporization_temperature is not None and not self.vaporization_temperature > self.liquidus_temperature:
            errors.append(f"Material '{self.name}': vaporization temperature must exceed liquidus temperature.")
        return errors

    @property
    def volumetric_heat_capacity(self) -> float:
        """ρ·c_p in J/(m³·K)."""
        return self.density * self.specific_heat

    @property
    def thermal_diffusivity(self) -> float:
        """α = k / (ρ·c_p) in m²/s."""
        return self.thermal_conductivity / self.volumetric_heat_capacity

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> MaterialProperties:
        owner = "MaterialProperties"
        vaporization = require(data, "vaporization_temperature", owner)
        return MaterialProperties(
            name=str(require(data, "name", owner)),
            thermal_conductivity=float(require(data, "thermal_conductivity", owner)),
            specific_heat=float(require(data, "specific_heat", owner)),
            density=float(require(data, "density", owner)),
            emissivity=float(require(data, "emissivity", owner)),
            latent_heat_fusion=float(require(data, "latent_heat_fusion", owner)),
            solidus_temperature=float(require(data, "solidus_temperature", owner)),
            liquidus_temperature=float(require(data, "liquidus_temperature", owner)),
            latent_heat_vaporization=float(require(data, "latent_heat_vaporization", owner)),
            vaporization_temperature=None if vaporization is None else float(vaporization),
            description=require(data, "description", owner),
        )


def _material(
    name: str,
    description: str,
    density: float,
    specific_heat: float,
    conductivity: float,
    emissivity: float,
    solidus_C: float,
    liquidus_C: float,
    latent_fusion: float,
    boiling_C: Optional[float] = None,
    latent_vaporization: float = 0.0,
) -> MaterialProperties:
    """Build a library entry from handbook values given in degrees Celsius."""
    return MaterialProperties(
        name=name,
        description=description,
        density=density,
        specific_heat=specific_heat,
        thermal_conductivity=conductivity,
        emissivity=emissivity,
        solidus_temperature=celsius_to_kelvin(solidus_C),
        liquidus_temperature=celsius_to_kelvin(liquidus_C),
        latent_heat_fusion=latent_fusion,
        vaporization_temperature=None if boiling_C is None else celsius_to_kelvin(boiling_C),
        latent_heat_vaporization=latent_vaporization,
    )


class MaterialLibrary:
    """
    Manages a library of materials and retrieves material definitions.
    """
    DEFAULT_MATERIAL = "Steel"

    def __init__(self) -> None:
        self.materials: Dict[str, MaterialProperties] = {}
        self._init_defaults()

    def _init_defaults(self) -> None:
        defaults = [
            _material("Steel", "Carbon steel scrap charge",
                      7850.0, 490.0, 45.0, 0.8, 1425.0, 1510.0, 2.70e5, 2860.0, 6.09e6),
            _material("Aluminum", "Pure aluminium",
                      2700.0, 900.0, 237.0, 0.1, 660.3, 660.3, 3.97e5, 2470.0, 1.09e7),
            _material("Copper", "Pure copper",
                      8960.0, 385.0, 401.0, 0.6, 1084.6, 1084.6, 2.05e5, 2562.0, 4.73e6),
            _material("Alumina", "Aluminium oxide refractory",
                      3950.0, 880.0, 30.0, 0.7, 2072.0, 2072.0, 1.07e6),
            _material("Silica glass", "Fused silica, softening range",
                      2200.0, 740.0, 1.4, 0.9, 1600.0, 1723.0, 1.42e5),
        ]
        for material in defaults:
            self.materials[material.name] = material

    def add_material(self, material: MaterialProperties) -> None:
        """Add or update a material in the library."""
        errors = material.validate()
        if errors:
            raise ConfigError("; ".join(errors))
        self.materials[material.name] = material

    def get_material(self, name: str) -> MaterialProperties:
        """Retrieve a material by name."""
        try:
            return self.materials[name]
        except KeyError:
            raise ConfigError(f"Unknown material '{name}'. Known: {', '.join(self.get_names())}.") from None

    def get_names(self) -> List[str]:
        """List all material names in the library."""
        return list(self.materials.keys())


def default_material() -> MaterialProperties:
    return MaterialLibrary().get_material(MaterialLibrary.DEFAULT_MATERIAL)
