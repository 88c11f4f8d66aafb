"""Tests for nodal Lagrange elements on the reference triangle."""

import numpy as np
import pytest

from fem.lagrange import LagrangeTriangle, lagrange_triangle, lattice_nodes
from fem.quadrature import triangle_rule


class TestLatticeNodes:
    """Equispaced node lattice."""

    @pytest.mark.parametrize("k", [1, 2, 3])
    def test_node_count(self, k):
        """(k+1)(k+2)/2 nodes."""
        assert len(lattice_nodes(k)) == (k + 1) * (k + 2) // 2

    def test_invalid_degree(self):
        """Degree 0 is rejected."""
        with pytest.raises(ValueError):
            lattice_nodes(0)


class TestLagrangeTriangle:
    """Basis values and gradients."""

    @pytest.mark.parametrize("k", [1, 2, 3])
    def test_kronecker_property(self, k):
        """phi_i(node_j) = delta_ij."""
        element = LagrangeTriangle(k)
        np.testing.assert_allclose(element.values(element.nodes), np.eye(element.n_basis), atol=1e-12)

    @pytest.mark.parametrize("k", [1, 2, 3])
    def test_partition_of_unity(self, k):
        """Basis sums to one and gradients sum to zero."""
        element = LagrangeTriangle(k)
        pts, _ = triangle_rule(3)
        np.testing.assert_allclose(element.values(pts).sum(axis=1), 1.0, atol=1e-12)
        np.testing.assert_allclose(element.gradients(pts).sum(axis=1), 0.0, atol=1e-11)

    def test_gradients_reproduce_linear_field(self):
        """Interpolating f = 2x - 3y gives the constant gradient (2, -3)."""
        element = LagrangeTriangle(2)
        coeffs = 2 * element.nodes[:, 0] - 3 * element.nodes[:, 1]
        pts, _ = triangle_rule(2)
        grad = np.einsum("qnd,n->qd", element.gradients(pts), coeffs)
        np.testing.assert_allclose(grad, np.tile([2.0, -3.0], (len(pts), 1)), atol=1e-12)

    def test_vertex_nodes(self):
        """Vertex nodes sit at (0,0), (1,0), (0,1)."""
        element = LagrangeTriangle(2)
        np.testing.assert_allclose(element.nodes[list(element.vertex_nodes)], [[0, 0], [1, 0], [0, 1]])

    @pytest.mark.parametrize("k", [1, 2, 3])
    def test_edge_nodes(self, k):
        """Each edge carries k + 1 nodes, including both vertices."""
        element = LagrangeTriangle(k)
        v = element.vertex_nodes
        for e in range(3):
            nodes = element.edge_nodes(e)
            assert len(nodes) == k + 1
            assert v[e] in nodes and v[(e + 1) % 3] in nodes

    def test_cached_factory(self):
        """lagrange_triangle returns one shared instance per degree."""
        assert lagrange_triangle(2) is lagrange_triangle(2)
