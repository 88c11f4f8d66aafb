"""Affine cell maps, facet quadrature and point location on triangle meshes."""

from dataclasses import dataclass

import numpy as np

from .quadrature import edge_rule


@dataclass(frozen=True)
class CellGeometry:
    """Affine map x = origin + J xi of every cell."""

    origin: np.ndarray  # (n_cells, 2)
    J: np.ndarray  # (n_cells, 2, 2)
    detJ: np.ndarray  # (n_cells,)
    invJ: np.ndarray  # (n_cells, 2, 2)

    @classmethod
    def from_mesh(cls, mesh):
        p = mesh.vertices[mesh.cells]
        J = np.stack([p[:, 1] - p[:, 0], p[:, 2] - p[:, 0]], axis=-1)
        detJ = J[:, 0, 0] * J[:, 1, 1] - J[:, 0, 1] * J[:, 1, 0]
        invJ = np.empty_like(J)
        invJ[:, 0, 0] = J[:, 1, 1]
        invJ[:, 0, 1] = -J[:, 0, 1]
        invJ[:, 1, 0] = -J[:, 1, 0]
        invJ[:, 1, 1] = J[:, 0, 0]
        invJ /= detJ[:, None, None]
        return cls(origin=p[:, 0].copy(), J=J, detJ=detJ, invJ=invJ)

    def to_physical(self, cells, ref_points) -> np.ndarray:
        """Map reference points (n_q, 2) into ``cells``: shape (n_cells, n_q, 2)."""
        cells = np.atleast_1d(cells)
        return self.origin[cells][:, None, :] + np.einsum("cij,qj->cqi", self.J[cells], ref_points)

    def to_reference(self, cell, point) -> np.ndarray:
        return self.invJ[cell] @ (np.asarray(point, dtype=float) - self.origin[cell])


@dataclass(frozen=True)
class FacetQuadrature:
    """Quadrature data of a set of boundary facets (one row per facet)."""

    facets: np.ndarray  # (n_f,) boundary facet indices
    cells: np.ndarray  # (n_f,) adjacent cell
    ref_points: np.ndarray  # (n_f, n_q, 2) reference coordinates in the cell
    weights: np.ndarray  # (n_f, n_q) physical weights (include facet length)
    normals: np.ndarray  # (n_f, 2) unit outward normal of the fluid domain


def facet_quadrature(mesh, facets, n_points: int) -> FacetQuadrature:
    facets = np.asarray(facets, dtype=np.int64)
    cells = mesh.facet_cells[facets]
    edges = mesh.facet_local_edges[facets]
    lengths = mesh.facet_lengths(facets)

    ref_points = np.empty((len(facets), n_points, 2))
    weights = np.empty((len(facets), n_points))
    for i, (e, length) in enumerate(zip(edges, lengths)):
        pts, w = edge_rule(int(e), n_points)
        ref_points[i] = pts
        weights[i] = w * length

    return FacetQuadrature(
        facets=facets,
        cells=cells,
        ref_points=ref_points,
        weights=weights,
        normals=mesh.facet_normals(facets),
    )


def barycentric(geometry: CellGeometry, cells, point) -> np.ndarray:
    """Barycentric coordinates of ``point`` in each of ``cells``, shape (n, 3)."""
    cells = np.atleast_1d(cells)
    xi = np.einsum("cij,cj->ci", geometry.invJ[cells], np.asarray(point, dtype=float) - geometry.origin[cells])
    return np.column_stack([1.0 - xi.sum(axis=1), xi])


def cells_containing(geometry: CellGeometry, point, cells=None, tol: float = 1e-10) -> np.ndarray:
    """Sorted indices of the cells (among ``cells``) that contain ``point``.

    A point on a shared edge or vertex is contained in every adjacent cell.
    """
    if cells is None:
        cells = np.arange(len(geometry.detJ))
    cells = np.asarray(cells, dtype=np.int64)
    if len(cells) == 0:
        return cells
    lam = barycentric(geometry, cells, point)
    return np.sort(cells[np.all(lam >= -tol, axis=1)])
