"""Quadrature rules on the reference triangle and the unit interval.

Triangle rules are collapsed (Duffy) tensor products of Gauss-Legendre rules:
the unit square is mapped onto the reference triangle (0,0)-(1,0)-(0,1) by
r = u, s = v (1 - u). An n-point rule per direction integrates polynomials of
total degree 2n - 2 exactly on the triangle (the Jacobian 1 - u eats one
degree), which is enough for every form assembled here.
"""

from functools import lru_cache

import numpy as np
from numpy.polynomial.legendre import leggauss


@lru_cache(maxsize=None)
def gauss_legendre_01(n_points: int):
    """Gauss-Legendre nodes and weights mapped to [0, 1]."""
    if n_points < 1:
        raise ValueError(f"n_points must be >= 1, got {n_points}")
    xi, w = leggauss(n_points)
    return 0.5 * (xi + 1.0), 0.5 * w


@lru_cache(maxsize=None)
def triangle_rule(n_points: int):
    """Collapsed Gauss rule on the reference triangle.

    Returns
    -------
    points : np.ndarray
        Shape (n_points**2, 2), reference coordinates.
    weights : np.ndarray
        Shape (n_points**2,), summing to the reference area 1/2.
    """
    u, wu = gauss_legendre_01(n_points)
    U, V = np.meshgrid(u, u, indexing="ij")
    WU, WV = np.meshgrid(wu, wu, indexing="ij")
    points = np.column_stack([U.ravel(), (V * (1.0 - U)).ravel()])
    weights = (WU * WV * (1.0 - U)).ravel()
    return points, weights


def points_for_degree(degree: int) -> int:
    """Points per direction so that ``triangle_rule`` is exact to ``degree``."""
    return max(1, (degree + 3) // 2)


# Reference edge e as a map of t in [0, 1]: xi = start + t (end - start)
REFERENCE_EDGES = (
    (np.array([0.0, 0.0]), np.array([1.0, 0.0])),
    (np.array([1.0, 0.0]), np.array([0.0, 1.0])),
    (np.array([0.0, 1.0]), np.array([0.0, 0.0])),
)


@lru_cache(maxsize=None)
def edge_rule(edge: int, n_points: int):
    """Gauss points of reference edge ``edge`` in reference coordinates.

    Returns
    -------
    points : np.ndarray
        Shape (n_points, 2).
    weights : np.ndarray
        Weights for the edge parameter t in [0, 1]; multiply by the physical
        edge length to integrate over the physical facet.
    """
    if edge not in (0, 1, 2):
        raise IndexError(edge)
    t, w = gauss_legendre_01(n_points)
    start, end = REFERENCE_EDGES[edge]
    points = start[None, :] + t[:, None] * (end - start)[None, :]
    return points, w
