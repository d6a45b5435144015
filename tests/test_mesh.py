"""Tests for the structured cylindrical mesh."""
import math

import numpy as np
import pytest

from plasmafurnace.errors import ConfigError, IndexOutOfRange
from plasmafurnace.fea.pre.mesh import CylindricalMesh
from plasmafurnace.model.geometry import Region


class TestIndexing:
    """Linear offsets of cells."""

    def test_radial_index_varies_fastest(self, mesh):
        """Offset is i + nr·(j + ntheta·k)."""
        assert mesh.index(0, 0, 0) == 0
        assert mesh.index(1, 0, 0) == 1
        assert mesh.index(0, 1, 0) == mesh.nr
        assert mesh.index(0, 0, 1) == mesh.nr * mesh.ntheta
        assert mesh.index(3, 2, 5) == 3 + 4 * (2 + 4 * 5)

    def test_unravel_inverts_index(self, mesh):
        """Every offset maps back to the cell it came from."""
        for offset in range(mesh.n_cells):
            assert mesh.index(*mesh.unravel(offset)) == offset

    @pytest.mark.parametrize("cell", [(-1, 0, 0), (4, 0, 0), (0, 4, 0), (0, 0, 6)])
    def test_index_outside_raises(self, mesh, cell):
        """Indices outside the mesh are rejected."""
        with pytest.raises(IndexOutOfRange):
            mesh.index(*cell)

    def test_unravel_outside_raises(self, mesh):
        """The offset n_cells is one past the end."""
        with pytest.raises(IndexOutOfRange):
            mesh.unravel(mesh.n_cells)

    def test_index_error_is_builtin_index_error(self, mesh):
        with pytest.raises(IndexError):
            mesh.cell_centre(10, 0, 0)


class TestGeometry:
    """Cell centres and volumes."""

    def test_total_volume(self, mesh):
        """Cell volumes sum to the cylinder volume."""
        assert mesh.total_volume == pytest.approx(math.pi * 0.5 ** 2 * 1.0, rel=1e-12)

    def test_innermost_cell_volume(self, mesh):
        """The innermost ring is a pie slice: ½·dr²·dθ·dz."""
        expected = 0.5 * mesh.dr ** 2 * mesh.dtheta * mesh.dz
        assert mesh.cell_volume(0, 0, 0) == pytest.approx(expected)

    def test_cell_centres(self, mesh):
        """Centres sit at half spacing offsets."""
        r, theta, z = mesh.cell_centre(1, 2, 3)
        assert r == pytest.approx(1.5 * mesh.dr)
        assert theta == pytest.approx(2.5 * mesh.dtheta)
        assert z == pytest.approx(3.5 * mesh.dz)

    def test_flat_centres_follow_linear_order(self, mesh):
        """The flat centre arrays agree with cell_centre()."""
        r, theta, z = mesh.centres
        offset = mesh.index(2, 3, 1)
        assert (r[offset], theta[offset], z[offset]) == pytest.approx(mesh.cell_centre(2, 3, 1))

    def test_cartesian_centres(self, mesh):
        xyz = mesh.cartesian_centres
        assert xyz.shape == (mesh.n_cells, 3)
        r, _, z = mesh.centres
        assert np.allclose(np.hypot(xyz[:, 0], xyz[:, 1]), r)
        assert np.allclose(xyz[:, 2], z)


class TestFields:
    """Flat field helpers."""

    def test_new_field(self, mesh):
        field = mesh.new_field(3.0)
        assert field.shape == (mesh.n_cells,)
        assert np.all(field == 3.0)

    def test_as_grid_layout(self, mesh):
        """The grid view is indexed [k, j, i]."""
        field = np.arange(mesh.n_cells, dtype=np.float64)
        grid = mesh.as_grid(field)
        assert grid.shape == (6, 4, 4)
        assert grid[5, 2, 1] == mesh.index(1, 2, 5)
        assert mesh.value_at(field, 1, 2, 5) == grid[5, 2, 1]

    def test_as_grid_size_mismatch(self, mesh):
        with pytest.raises(ValueError):
            mesh.as_grid(np.zeros(mesh.n_cells + 1))


class TestConstruction:
    """Invalid geometry."""

    @pytest.mark.parametrize("kwargs", [
        {"radius": 0.0},
        {"height": -1.0},
        {"nr": 0},
        {"ntheta": 0},
        {"nz": 2.5},
    ])
    def test_invalid_geometry(self, kwargs):
        """Bad dimensions raise ConfigError, which is also a ValueError."""
        args = {"radius": 1.0, "height": 1.0, "nr": 2, "ntheta": 1, "nz": 2}
        args.update(kwargs)
        with pytest.raises(ConfigError):
            CylindricalMesh(**args)
        with pytest.raises(ValueError):
            CylindricalMesh(**args)


class TestPointLookup:
    """Point to cell mapping."""

    def test_nearest_cell(self, mesh):
        offset = mesh.nearest_cell(0.3, 0.1, 0.95)
        assert mesh.unravel(offset) == (2, 0, 5)

    def test_nearest_cell_on_outer_wall(self, mesh):
        """Points on the outer surface belong to the last ring."""
        i, _, k = mesh.unravel(mesh.nearest_cell(0.5, 0.0, 1.0))
        assert (i, k) == (mesh.nr - 1, mesh.nz - 1)

    def test_nearest_cell_wraps_angle(self, mesh):
        """Negative angles wrap into [0, 2π)."""
        _, j, _ = mesh.unravel(mesh.nearest_cell(0.1, -0.1, 0.1))
        assert j == mesh.ntheta - 1

    def test_nearest_cell_outside_raises(self, mesh):
        with pytest.raises(IndexOutOfRange):
            mesh.nearest_cell(0.6, 0.0, 0.5)

    def test_region_mask(self, mesh):
        """A lower half region selects the three lower layers."""
        mask = mesh.region_mask(Region(name="lower", r_min=0.0, r_max=0.5, z_min=0.0, z_max=0.5))
        assert mask.sum() == mesh.nr * mesh.ntheta * 3
        _, _, z = mesh.centres
        assert np.all(z[mask] < 0.5)
