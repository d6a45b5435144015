from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    import numpy.typing as npt


ABSOLUTE_ZERO_CELSIUS = -273.15
TWO_PI = 2.0 * np.pi

def celsius_to_kelvin(celsius: float) -> float:
    """Convert Celsius to Kelvin."""
    return celsius - ABSOLUTE_ZERO_CELSIUS

def kelvin_to_celsius(kelvin: float) -> float:
    """Convert Kelvin to Celsius."""
    return kelvin + ABSOLUTE_ZERO_CELSIUS

def wrap_angle(
    theta: float | npt.NDArray[np.float64],
) -> float | npt.NDArray[np.float64]:
    """Map an angle (rad) onto [0, 2π)."""
    return np.mod(theta, TWO_PI)

def cylindrical_to_cartesian(
    r: float | npt.NDArray[np.float64],
    theta: float | npt.NDArray[np.float64],
    z: float | npt.NDArray[np.float64],
) -> npt.NDArray[np.float64]:
    """
    Convert cylindrical coordinates to Cartesian ones.

    Args:
        r: Radial coordinate(s) in meters.
        theta: Angle(s) in radians.
        z: Axial coordinate(s) in meters.

    Returns:
        Array of shape (..., 3) holding (x, y, z).
    """
    r, theta, z = np.broadcast_arrays(
        np.asarray(r, dtype=np.float64),
        np.asarray(theta, dtype=np.float64),
        np.asarray(z, dtype=np.float64),
    )
    return np.stack((r * np.cos(theta), r * np.sin(theta), z), axis=-1)
