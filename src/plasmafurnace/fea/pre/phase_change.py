"""
Enthalpy-Temperature Curve
==========================
The solver integrates volumetric enthalpy H instead of temperature. This
module builds the monotonic piecewise-linear curve H(T) of a material and
converts in both directions.

Curve layout (single fusion band, optional vaporization plateau)::

    H
    |                                 /
    |                        ________/   <- vaporization, flat at T_v
    |                       /
    |                 _____/             <- fusion band, solidus -> liquidus
    |               /                       (flat when solidus == liquidus)
    |             /
    +----------------------------------- T

Outside the latent bands the slope is ρ·c_p. H is zero at the reference
temperature.
"""
from __future__ import annotations

from typing import TYPE_CHECKING
import logging

import numpy as np

from plasmafurnace.config import REFERENCE_TEMPERATURE
from plasmafurnace.fea.pre.material_helpers import (
    band_fraction_batch,
    enthalpy_batch,
    enthalpy_scalar,
    temperature_batch,
    temperature_scalar,
)

if TYPE_CHECKING:
    import numpy.typing as npt

    from plasmafurnace.model.materials import MaterialProperties

logger = logging.getLogger(__name__)


class PhaseChangeCurve:
    """
    Monotonic volumetric enthalpy curve of one material.
    """

    def __init__(
        self,
        density: float,
        specific_heat: float,
        latent_heat_fusion: float = 0.0,
        solidus_temperature: float | None = None,
        liquidus_temperature: float | None = None,
        latent_heat_vaporization: float = 0.0,
        vaporization_temperature: float | None = None,
        reference_temperature: float = REFERENCE_TEMPERATURE,
    ) -> None:
        """
        Args:
            density: ρ in kg/m³.
            specific_heat: c_p in J/(kg·K), constant.
            latent_heat_fusion: L_f in J/kg; 0 disables the fusion band.
            solidus_temperature: Start of melting in K.
            liquidus_temperature: End of melting in K (defaults to solidus).
            latent_heat_vaporization: L_v in J/kg; 0 disables vaporization.
            vaporization_temperature: Boiling point in K.
            reference_temperature: Temperature at which H = 0.
        """
        self.rho = float(density)
        self.cp = float(specific_heat)
        self.rhoc = self.rho * self.cp
        self.reference_temperature = float(reference_temperature)

        T_pts: list[float] = []
        H_pts: list[float] = []

        def sensible(T: float) -> float:
            # Continue with slope rhoc from the last breakpoint
            if not T_pts:
                return self.rhoc * (T - self.reference_temperature)
            return H_pts[-1] + self.rhoc * (T - T_pts[-1])

        # 1) Fusion band
        self.fusion_band: tuple[float, float] | None = None
        if latent_heat_fusion > 0 and solidus_temperature is not None:
            Ts = float(solidus_temperature)
            Tl = float(liquidus_temperature) if liquidus_temperature is not None else Ts
            H_s = sensible(Ts)
            H_l = H_s + self.rhoc * (Tl - Ts) + self.rho * latent_heat_fusion
            T_pts += [Ts, Tl]
            H_pts += [H_s, H_l]
            self.fusion_band = (H_s, H_l)

        # 2) Vaporization plateau
        self.vaporization_band: tuple[float, float] | None = None
        if latent_heat_vaporization > 0 and vaporization_temperature is not None:
            Tv = float(vaporization_temperature)
            H_v = sensible(Tv)
            H_g = H_v + self.rho * latent_heat_vaporization
            T_pts += [Tv, Tv]
            H_pts += [H_v, H_g]
            self.vaporization_band = (H_v, H_g)

        # 3) Pure sensible heat
        if not T_pts:
            T_pts = [self.reference_temperature]
            H_pts = [0.0]

        self.T_pts = np.asarray(T_pts, dtype=np.float64)
        self.H_pts = np.asarray(H_pts, dtype=np.float64)

        self.latent_fusion_density = self.rho * latent_heat_fusion if self.fusion_band else 0.0
        self.latent_vaporization_density = self.rho * latent_heat_vaporization if self.vaporization_band else 0.0

    @classmethod
    def from_material(cls, material: MaterialProperties, enable_phase_change: bool = True) -> PhaseChangeCurve:
        if not enable_phase_change:
            return cls(density=material.density, specific_heat=material.specific_heat)
        return cls(
            density=material.density,
            specific_heat=material.specific_heat,
            latent_heat_fusion=material.latent_heat_fusion,
            solidus_temperature=material.solidus_temperature,
            liquidus_temperature=material.liquidus_temperature,
            latent_heat_vaporization=material.latent_heat_vaporization,
            vaporization_temperature=material.vaporization_temperature,
        )

    def enthalpy(
        self,
        temperature: float | npt.NDArray[np.float64],
    ) -> float | npt.NDArray[np.float64]:
        """Volumetric enthalpy (J/m³) at the given temperature(s) in K."""
        T = np.asarray(temperature, dtype=np.float64)
        if T.ndim == 0:
            return enthalpy_scalar(float(T), self.T_pts, self.H_pts, self.rhoc)
        return enthalpy_batch(T.ravel(), self.T_pts, self.H_pts, self.rhoc).reshape(T.shape)

    def temperature(
        self,
        enthalpy: float | npt.NDArray[np.float64],
    ) -> float | npt.NDArray[np.float64]:
        """Temperature (K) at the given volumetric enthalpy value(s)."""
        H = np.asarray(enthalpy, dtype=np.float64)
        if H.ndim == 0:
            return temperature_scalar(float(H), self.T_pts, self.H_pts, self.rhoc)
        return temperature_batch(H.ravel(), self.T_pts, self.H_pts, self.rhoc).reshape(H.shape)

    def melt_fraction(self, enthalpy: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """Liquid fraction in [0, 1]; zero everywhere without a fusion band."""
        H = np.asarray(enthalpy, dtype=np.float64).ravel()
        if self.fusion_band is None:
            return np.zeros_like(H)
        return band_fraction_batch(H, *self.fusion_band)

    def vapor_fraction(self, enthalpy: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """Vapor fraction in [0, 1]; zero everywhere without vaporization."""
        H = np.asarray(enthalpy, dtype=np.float64).ravel()
        if self.vaporization_band is None:
            return np.zeros_like(H)
        return band_fraction_batch(H, *self.vaporization_band)

    def latent_energy(
        self,
        enthalpy: npt.NDArray[np.float64],
        volumes: npt.NDArray[np.float64],
    ) -> float:
        """Total latent heat (J) absorbed by melting and vaporization."""
        per_volume = (self.melt_fraction(enthalpy) * self.latent_fusion_density
                      + self.vapor_fraction(enthalpy) * self.latent_vaporization_density)
        return float(np.dot(per_volume, volumes))
