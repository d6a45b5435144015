"""
Structured Cylindrical Mesh
===========================
Discretizes the furnace volume into radial × angular × axial cells and
provides the index <-> coordinate mapping used by every other component.

Linearization
-------------
A field is a flat float64 array of nr·ntheta·nz samples where cell
(i, j, k) (radial, angular, axial) lives at offset ``i + nr·(j + ntheta·k)``.
Consumers outside the package rely on this order. Internally the same buffer
is viewed as a C-ordered grid of shape (nz, ntheta, nr), so the radial index
varies fastest.
"""
from __future__ import annotations

from functools import cached_property
from typing import TYPE_CHECKING
import logging

import numpy as np

from plasmafurnace.errors import ConfigError, IndexOutOfRange
from plasmafurnace.model.geometry import GeometryConfig, Region
from plasmafurnace.utils import TWO_PI, cylindrical_to_cartesian, wrap_angle

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)


class CylindricalMesh:
    """
    Immutable finite-volume mesh of a closed cylinder.
    """

    def __init__(self, radius: float, height: float, nr: int, ntheta: int, nz: int) -> None:
        """
        Initialize the mesh.

        Args:
            radius: Furnace radius in m.
            height: Furnace height in m.
            nr: Number of radial cells.
            ntheta: Number of angular cells (1 for an axisymmetric model).
            nz: Number of axial cells.

        Raises:
            ConfigError: If a dimension or a cell count is invalid.
        """
        errors = GeometryConfig(radius=radius, height=height, nr=nr, ntheta=ntheta, nz=nz).validate()
        if errors:
            raise ConfigError("; ".join(errors))

        self.radius = float(radius)
        self.height = float(height)
        self.nr = int(nr)
        self.ntheta = int(ntheta)
        self.nz = int(nz)

        self.dr = self.radius / self.nr
        self.dz = self.height / self.nz
        self.dtheta = TWO_PI / self.ntheta

        self.r_faces = np.linspace(0.0, self.radius, self.nr + 1)
        self.r_centres = (np.arange(self.nr) + 0.5) * self.dr
        self.theta_centres = (np.arange(self.ntheta) + 0.5) * self.dtheta
        self.z_centres = (np.arange(self.nz) + 0.5) * self.dz

        # Annular sector area (z-normal) and volume per radial ring
        self.ring_area = 0.5 * (self.r_faces[1:] ** 2 - self.r_faces[:-1] ** 2) * self.dtheta
        self.ring_volume = self.ring_area * self.dz

        volumes = np.broadcast_to(self.ring_volume, self.grid_shape).ravel().copy()
        volumes.setflags(write=False)
        self.cell_volumes: npt.NDArray[np.float64] = volumes

    @classmethod
    def from_geometry(cls, geometry: GeometryConfig) -> CylindricalMesh:
        return cls(
            radius=geometry.radius,
            height=geometry.height,
            nr=geometry.nr,
            ntheta=geometry.ntheta,
            nz=geometry.nz,
        )

    def __repr__(self) -> str:
        return (f"CylindricalMesh(radius={self.radius}, height={self.height}, "
                f"nr={self.nr}, ntheta={self.ntheta}, nz={self.nz})")

    # ---- Shape & indexing ----

    @property
    def shape(self) -> tuple[int, int, int]:
        """Cell counts as (nr, ntheta, nz)."""
        return self.nr, self.ntheta, self.nz

    @property
    def grid_shape(self) -> tuple[int, int, int]:
        """Shape of the internal C-ordered grid view, (nz, ntheta, nr)."""
        return self.nz, self.ntheta, self.nr

    @property
    def n_cells(self) -> int:
        return self.nr * self.ntheta * self.nz

    @property
    def total_volume(self) -> float:
        """π·R²·H, up to round-off."""
        return float(self.cell_volumes.sum())

    def _check(self, i: int, j: int, k: int) -> None:
        if not (0 <= i < self.nr and 0 <= j < self.ntheta and 0 <= k < self.nz):
            raise IndexOutOfRange(
                f"Cell ({i}, {j}, {k}) outside mesh [0,{self.nr})x[0,{self.ntheta})x[0,{self.nz})."
            )

    def index(self, i: int, j: int, k: int) -> int:
        """Linear offset of cell (radial i, angular j, axial k)."""
        self._check(i, j, k)
        return i + self.nr * (j + self.ntheta * k)

    def unravel(self, offset: int) -> tuple[int, int, int]:
        """Inverse of :meth:`index`."""
        if not 0 <= offset < self.n_cells:
            raise IndexOutOfRange(f"Offset {offset} outside field of {self.n_cells} cells.")
        i = offset % self.nr
        j = (offset // self.nr) % self.ntheta
        k = offset // (self.nr * self.ntheta)
        return i, j, k

    def cell_centre(self, i: int, j: int, k: int) -> tuple[float, float, float]:
        """Centre of a cell as (r, θ, z)."""
        self._check(i, j, k)
        return float(self.r_centres[i]), float(self.theta_centres[j]), float(self.z_centres[k])

    def cell_volume(self, i: int, j: int, k: int) -> float:
        self._check(i, j, k)
        return float(self.ring_volume[i])

    # ---- Fields ----

    def new_field(self, value: float = 0.0) -> npt.NDArray[np.float64]:
        return np.full(self.n_cells, value, dtype=np.float64)

    def as_grid(self, field: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """View a flat field as an (nz, ntheta, nr) grid (no copy)."""
        field = np.asarray(field)
        if field.size != self.n_cells:
            raise ValueError(f"Field has {field.size} samples, mesh has {self.n_cells} cells.")
        return field.reshape(self.grid_shape)

    def value_at(self, field: npt.NDArray[np.float64], i: int, j: int, k: int) -> float:
        """Bounds-checked read of one cell."""
        return float(field[self.index(i, j, k)])

    # ---- Geometry of cell centres ----

    @cached_property
    def centres(self) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64], npt.NDArray[np.float64]]:
        """Flat (r, θ, z) arrays of all cell centres in linear order."""
        z, theta, r = np.meshgrid(self.z_centres, self.theta_centres, self.r_centres, indexing="ij")
        return r.ravel(), theta.ravel(), z.ravel()

    @cached_property
    def cartesian_centres(self) -> npt.NDArray[np.float64]:
        """Cell centres as an (n_cells, 3) array of (x, y, z)."""
        r, theta, z = self.centres
        return cylindrical_to_cartesian(r, theta, z)

    def contains_point(self, r: float, theta: float, z: float) -> bool:
        return 0.0 <= r <= self.radius and 0.0 <= z <= self.height

    def nearest_cell(self, r: float, theta: float, z: float) -> int:
        """
        Offset of the cell enclosing a point.

        Raises:
            IndexOutOfRange: If the point lies outside the vessel.
        """
        if not self.contains_point(r, theta, z):
            raise IndexOutOfRange(f"Point (r={r}, theta={theta}, z={z}) outside the furnace.")
        i = min(int(r / self.dr), self.nr - 1)
        j = min(int(wrap_angle(theta) / self.dtheta), self.ntheta - 1)
        k = min(int(z / self.dz), self.nz - 1)
        return self.index(i, j, k)

    def region_mask(self, region: Region) -> npt.NDArray[np.bool_]:
        """Boolean mask (linear order) of the cells whose centre lies in the region."""
        r, theta, z = self.centres
        return np.asarray(region.contains(r, theta, z), dtype=bool)
