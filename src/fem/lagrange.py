"""Nodal Lagrange P_k elements on the reference triangle (0,0)-(1,0)-(0,1)."""

from functools import lru_cache

import numpy as np


def lattice_nodes(degree: int) -> np.ndarray:
    """Equispaced nodes (i/k, j/k), ordered row by row in eta."""
    if degree < 1:
        raise ValueError(f"Lagrange degree must be >= 1, got {degree}")
    return np.array(
        [(i / degree, j / degree) for j in range(degree + 1) for i in range(degree + 1 - j)]
    )


def _monomial_powers(degree: int):
    return [(px, d - px) for d in range(degree + 1) for px in range(d + 1)]


class LagrangeTriangle:
    """P_k Lagrange basis built from the inverse Vandermonde matrix.

    ``values`` and ``gradients`` evaluate the basis at arbitrary reference
    points. Node ``n`` is the point where basis function ``n`` equals one.
    """

    def __init__(self, degree: int):
        self.degree = degree
        self.nodes = lattice_nodes(degree)
        self._powers = np.array(_monomial_powers(degree))
        V = self._monomials(self.nodes)
        self._coeffs = np.linalg.inv(V)

    @property
    def n_basis(self) -> int:
        return len(self.nodes)

    @property
    def vertex_nodes(self):
        """Local indices of the nodes at the three triangle vertices."""
        return (0, self.degree, self.n_basis - 1)

    def edge_nodes(self, edge: int) -> np.ndarray:
        """Local indices of the nodes on reference edge ``edge`` (vertices included)."""
        k = self.degree
        i = np.rint(self.nodes[:, 0] * k).astype(int)
        j = np.rint(self.nodes[:, 1] * k).astype(int)
        on_edge = (j == 0, i + j == k, i == 0)[edge]
        return np.flatnonzero(on_edge)

    def _monomials(self, points):
        points = np.atleast_2d(points)
        px, py = self._powers[:, 0], self._powers[:, 1]
        return points[:, 0:1] ** px[None, :] * points[:, 1:2] ** py[None, :]

    def _monomial_gradients(self, points):
        points = np.atleast_2d(points)
        x, y = points[:, 0:1], points[:, 1:2]
        px, py = self._powers[:, 0][None, :], self._powers[:, 1][None, :]
        dx = np.where(px > 0, px * x ** np.maximum(px - 1, 0), 0.0) * y**py
        dy = np.where(py > 0, py * y ** np.maximum(py - 1, 0), 0.0) * x**px
        return np.stack([dx, dy], axis=-1)

    def values(self, points) -> np.ndarray:
        """Basis values, shape (n_points, n_basis)."""
        return self._monomials(points) @ self._coeffs

    def gradients(self, points) -> np.ndarray:
        """Reference gradients, shape (n_points, n_basis, 2)."""
        return np.einsum("qmd,mn->qnd", self._monomial_gradients(points), self._coeffs)


@lru_cache(maxsize=None)
def lagrange_triangle(degree: int) -> LagrangeTriangle:
    return LagrangeTriangle(degree)
