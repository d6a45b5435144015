# material_helpers.py
from __future__ import annotations

import numpy as np
import numpy.typing as npt
import numba as nb

# ---- JIT'd enthalpy <-> temperature kernels (scalar + batched) ----
#
# The curve is piecewise linear through the breakpoints (T_pts, H_pts), both
# non-decreasing, and continues with slope rhoc below the first and above the
# last breakpoint. A segment with T_pts[i] == T_pts[i + 1] is an isothermal
# latent-heat plateau.

@nb.njit(cache=True)
def enthalpy_scalar(
    T: float,
    T_pts: npt.NDArray[np.float64],
    H_pts: npt.NDArray[np.float64],
    rhoc: float
) -> float:
    """
    Volumetric enthalpy H(T) in J/m³.

    Args:
        T:     Temperature in K.
        T_pts: Temperature breakpoints in K.
        H_pts: Enthalpy at each breakpoint in J/m³.
        rhoc:  Volumetric heat capacity ρc_p outside the breakpoints.

    Returns:
        Enthalpy at T. On an isothermal plateau the lowest enthalpy
        (start of the transition) is returned.
    """
    n = T_pts.size
    if T <= T_pts[0]:
        return H_pts[0] + rhoc * (T - T_pts[0])
    for i in range(n - 1):
        t0 = T_pts[i]
        t1 = T_pts[i + 1]
        if T <= t1:
            if t1 == t0:
                return H_pts[i]
            return H_pts[i] + (H_pts[i + 1] - H_pts[i]) * (T - t0) / (t1 - t0)
    return H_pts[n - 1] + rhoc * (T - T_pts[n - 1])

@nb.njit(cache=True)
def temperature_scalar(
    H: float,
    T_pts: npt.NDArray[np.float64],
    H_pts: npt.NDArray[np.float64],
    rhoc: float
) -> float:
    """Temperature T(H) in K; inverse of :func:`enthalpy_scalar`."""
    n = H_pts.size
    if H <= H_pts[0]:
        return T_pts[0] + (H - H_pts[0]) / rhoc
    for i in range(n - 1):
        h0 = H_pts[i]
        h1 = H_pts[i + 1]
        if H <= h1:
            if h1 == h0:
                return T_pts[i]
            return T_pts[i] + (T_pts[i + 1] - T_pts[i]) * (H - h0) / (h1 - h0)
    return T_pts[n - 1] + (H - H_pts[n - 1]) / rhoc

@nb.njit(cache=True)
def enthalpy_batch(
    T: npt.NDArray[np.float64],
    T_pts: npt.NDArray[np.float64],
    H_pts: npt.NDArray[np.float64],
    rhoc: float
) -> npt.NDArray[np.float64]:
    """Batched H(T), shape (n,) -> (n,)."""
    n = T.size
    out = np.empty(n, np.float64)
    for i in range(n):
        out[i] = enthalpy_scalar(T[i], T_pts, H_pts, rhoc)
    return out

@nb.njit(cache=True)
def temperature_batch(
    H: npt.NDArray[np.float64],
    T_pts: npt.NDArray[np.float64],
    H_pts: npt.NDArray[np.float64],
    rhoc: float
) -> npt.NDArray[np.float64]:
    """Batched T(H), shape (n,) -> (n,)."""
    n = H.size
    out = np.empty(n, np.float64)
    for i in range(n):
        out[i] = temperature_scalar(H[i], T_pts, H_pts, rhoc)
    return out

@nb.njit(cache=True)
def band_fraction_batch(
    H: npt.NDArray[np.float64],
    H_start: float,
    H_end: float
) -> npt.NDArray[np.float64]:
    """
    Progress through a latent band [H_start, H_end], clipped to [0, 1].

    A zero-width band is a step at H_start.
    """
    n = H.size
    out = np.empty(n, np.float64)
    width = H_end - H_start
    for i in range(n):
        if width > 0.0:
            f = (H[i] - H_start) / width
            if f < 0.0:
                f = 0.0
            elif f > 1.0:
                f = 1.0
        else:
            f = 1.0 if H[i] > H_start else 0.0
        out[i] = f
    return out
