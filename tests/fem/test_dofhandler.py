"""Tests for mixed dof numbering and worker ownership."""

import numpy as np
import pytest

from fem import DofHandler
from fem.quadrature import triangle_rule
from meshing import partition_cells, rectangle_mesh


def quadratic(x):
    return np.column_stack([1 + x[:, 0] ** 2 - x[:, 0] * x[:, 1], 2 * x[:, 1] ** 2 - x[:, 0]])


def linear(x):
    return 0.5 - x[:, 0] + 3 * x[:, 1]


class TestNumbering:
    """Continuous P_k numbering."""

    @pytest.mark.parametrize("nx, ny", [(2, 2), (3, 1), (4, 3)])
    def test_taylor_hood_counts(self, nx, ny):
        """P2 nodes on a structured grid form a (2nx+1) x (2ny+1) lattice."""
        dofs = DofHandler(rectangle_mesh(nx=nx, ny=ny), 2, 1)
        assert dofs.n_nodes_u == (2 * nx + 1) * (2 * ny + 1)
        assert dofs.n_p == (nx + 1) * (ny + 1)
        assert dofs.n_u == 2 * dofs.n_nodes_u
        assert dofs.n_dofs == dofs.n_u + dofs.n_p

    def test_vertices_first(self, small_rectangle):
        """Node i is vertex i for both fields."""
        dofs = DofHandler(small_rectangle, 2, 1)
        nv = small_rectangle.n_vertices
        np.testing.assert_allclose(dofs.node_coords_u[:nv], small_rectangle.vertices)
        np.testing.assert_allclose(dofs.node_coords_p, small_rectangle.vertices)

    def test_velocity_precedes_pressure(self, small_rectangle):
        """Velocity dofs occupy [0, n_u), pressure dofs [n_u, n_u + n_p)."""
        dofs = DofHandler(small_rectangle, 2, 1)
        assert dofs.cell_dofs_u.max() < dofs.n_u
        assert dofs.cell_dofs_p.min() == dofs.n_u
        assert dofs.cell_dofs_p.max() == dofs.n_dofs - 1

    @pytest.mark.parametrize("k", [2, 3])
    def test_interpolant_is_continuous(self, k):
        """Cell-wise evaluation of a global P_k interpolant reproduces the field."""
        mesh = rectangle_mesh(Lx=1.0, Ly=0.5, nx=3, ny=2)
        dofs = DofHandler(mesh, k, k - 1)
        x = dofs.interpolate(quadratic, linear)
        u, p = dofs.split(x)

        pts, _ = triangle_rule(3)
        phi = dofs.element_u.values(pts)
        psi = dofs.element_p.values(pts)
        cells = np.arange(mesh.n_cells)
        xq = dofs.geometry.to_physical(cells, pts)
        for c in cells:
            np.testing.assert_allclose(phi @ u[dofs.cell_nodes_u[c]], quadratic(xq[c]), atol=1e-12)
            np.testing.assert_allclose(psi @ p[dofs.cell_nodes_p[c]], linear(xq[c]), atol=1e-12)

    def test_vertex_values(self, small_rectangle):
        dofs = DofHandler(small_rectangle, 2, 1)
        u, p = dofs.vertex_values(dofs.interpolate(quadratic, linear))
        np.testing.assert_allclose(u, quadratic(small_rectangle.vertices))
        np.testing.assert_allclose(p, linear(small_rectangle.vertices))

    def test_invalid_degree(self, small_rectangle):
        with pytest.raises(ValueError):
            DofHandler(small_rectangle, 0, 1)


class TestDofPartition:
    """Ownership induced by a cell partition."""

    @pytest.fixture
    def dofs(self):
        return DofHandler(rectangle_mesh(Lx=2.0, Ly=1.0, nx=6, ny=3), 2, 1)

    @pytest.mark.parametrize("n_workers", [1, 2, 3])
    def test_owned_sets_are_disjoint_cover(self, dofs, n_workers):
        """Every dof is owned by exactly one worker."""
        partition = dofs.partition(partition_cells(dofs.mesh, n_workers), n_workers)
        owned = np.concatenate([partition.owned(r) for r in range(n_workers)])
        np.testing.assert_array_equal(np.sort(owned), np.arange(dofs.n_dofs))

    def test_owner_is_lowest_touching_rank(self, dofs):
        """Interface dofs go to the lower rank; relevant sets contain owned sets."""
        partition = dofs.partition(partition_cells(dofs.mesh, 3), 3)
        for rank in range(3):
            touched = np.unique(dofs.cell_dofs[partition.owned_cells(rank)])
            np.testing.assert_array_equal(partition.relevant(rank), touched)
            assert np.all(partition.dof_owner[touched] <= rank)
            assert np.all(np.isin(partition.owned(rank), partition.relevant(rank)))

    def test_block_accessors(self, dofs):
        partition = dofs.partition(partition_cells(dofs.mesh, 2), 2)
        for rank in range(2):
            assert np.all(partition.owned_velocity(rank) < dofs.n_u)
            assert np.all(partition.owned_pressure(rank) >= dofs.n_u)
        assert partition.pressure == slice(dofs.n_u, dofs.n_dofs)

    def test_invalid_owner(self, dofs):
        """Ranks outside [0, n_workers) are rejected."""
        with pytest.raises(ValueError):
            dofs.partition(np.full(dofs.mesh.n_cells, 2), 2)
