"""
Degree-of-freedom numbering for the mixed velocity/pressure space.

Global layout of a block vector (length n_u + n_p):

    [ u_x (n_vel_nodes) | u_y (n_vel_nodes) | p (n_p) ]

Velocity indices always precede pressure indices. Scalar nodes are numbered
topologically: mesh vertices first (node i is vertex i), then edge-interior
nodes, then cell-interior nodes. The numbering depends on the mesh only, never
on how cells are split among workers.
"""

from dataclasses import dataclass
from typing import Tuple

import numpy as np

from .geometry import CellGeometry
from .lagrange import lagrange_triangle


def _lattice_ij(element):
    k = element.degree
    ij = np.rint(element.nodes * k).astype(int)
    return ij[:, 0], ij[:, 1]


def scalar_numbering(mesh, degree: int):
    """Continuous P_k node numbering.

    Returns
    -------
    cell_nodes : np.ndarray
        (n_cells, n_basis) global node of every local basis function.
    n_nodes : int
        Number of global nodes.
    """
    element = lagrange_triangle(degree)
    k = degree
    i, j = _lattice_ij(element)
    n_cells = mesh.n_cells
    cell_nodes = np.full((n_cells, element.n_basis), -1, dtype=np.int64)

    # Vertices
    for local, vertex in zip(element.vertex_nodes, range(3)):
        cell_nodes[:, local] = mesh.cells[:, vertex]
    offset = mesh.n_vertices
    if k == 1:
        return cell_nodes, offset

    # Edges: global edge ids with canonical direction (low vertex -> high vertex)
    local_edges = np.stack([mesh.cells[:, [0, 1]], mesh.cells[:, [1, 2]], mesh.cells[:, [2, 0]]], axis=1)
    keys = np.sort(local_edges, axis=2).reshape(-1, 2)
    _, edge_ids = np.unique(keys, axis=0, return_inverse=True)
    edge_ids = edge_ids.reshape(n_cells, 3)
    n_edges = int(edge_ids.max()) + 1
    forward = local_edges[:, :, 0] < local_edges[:, :, 1]

    # Position (1..k-1) of each edge-interior lattice node, measured from the edge start vertex
    positions = (
        (j == 0, i),  # edge 0: v0 -> v1
        (i + j == k, j),  # edge 1: v1 -> v2
        (i == 0, k - j),  # edge 2: v2 -> v0
    )
    for e, (on_edge, pos) in enumerate(positions):
        interior = on_edge & (pos > 0) & (pos < k)
        for local in np.flatnonzero(interior):
            t = pos[local]
            along = np.where(forward[:, e], t, k - t)
            cell_nodes[:, local] = offset + edge_ids[:, e] * (k - 1) + (along - 1)
    offset += n_edges * (k - 1)

    # Cell interiors
    inside = np.flatnonzero((i > 0) & (j > 0) & (i + j < k))
    if len(inside):
        cell_nodes[:, inside] = offset + np.arange(n_cells)[:, None] * len(inside) + np.arange(len(inside))[None, :]
        offset += n_cells * len(inside)

    return cell_nodes, offset


@dataclass(frozen=True)
class DofPartition:
    """Ownership of the block vector among workers.

    A dof is owned by the lowest rank whose cells touch it and is relevant
    (locally available) on every rank whose cells touch it.
    """

    n_u: int
    n_p: int
    n_workers: int
    cell_owner: np.ndarray
    dof_owner: np.ndarray
    relevant_dofs: Tuple[np.ndarray, ...]

    @property
    def n_dofs(self) -> int:
        return self.n_u + self.n_p

    @property
    def velocity(self) -> slice:
        return slice(0, self.n_u)

    @property
    def pressure(self) -> slice:
        return slice(self.n_u, self.n_u + self.n_p)

    def owned_cells(self, rank: int) -> np.ndarray:
        return np.flatnonzero(self.cell_owner == rank)

    def owned(self, rank: int) -> np.ndarray:
        return np.flatnonzero(self.dof_owner == rank)

    def relevant(self, rank: int) -> np.ndarray:
        return self.relevant_dofs[rank]

    def owned_velocity(self, rank: int) -> np.ndarray:
        owned = self.owned(rank)
        return owned[owned < self.n_u]

    def owned_pressure(self, rank: int) -> np.ndarray:
        owned = self.owned(rank)
        return owned[owned >= self.n_u]

    def relevant_velocity(self, rank: int) -> np.ndarray:
        relevant = self.relevant(rank)
        return relevant[relevant < self.n_u]

    def relevant_pressure(self, rank: int) -> np.ndarray:
        relevant = self.relevant(rank)
        return relevant[relevant >= self.n_u]


class DofHandler:
    """Mixed P_ku / P_kp Lagrange space on a triangle mesh."""

    dim = 2

    def __init__(self, mesh, degree_velocity: int = 2, degree_pressure: int = 1):
        if degree_velocity < 1 or degree_pressure < 1:
            raise ValueError(
                f"Polynomial degrees must be >= 1, got velocity={degree_velocity}, pressure={degree_pressure}"
            )
        self.mesh = mesh
        self.geometry = CellGeometry.from_mesh(mesh)
        self.element_u = lagrange_triangle(degree_velocity)
        self.element_p = lagrange_triangle(degree_pressure)

        self.cell_nodes_u, self.n_nodes_u = scalar_numbering(mesh, degree_velocity)
        self.cell_nodes_p, self.n_nodes_p = scalar_numbering(mesh, degree_pressure)

        self.n_u = self.dim * self.n_nodes_u
        self.n_p = self.n_nodes_p

        # Cell -> global dofs; velocity local index is component * n_basis_u + a
        self.cell_dofs_u = np.concatenate(
            [self.cell_nodes_u + d * self.n_nodes_u for d in range(self.dim)], axis=1
        )
        self.cell_dofs_p = self.cell_nodes_p + self.n_u
        self.cell_dofs = np.concatenate([self.cell_dofs_u, self.cell_dofs_p], axis=1)

        self.node_coords_u = self._node_coordinates(self.element_u, self.cell_nodes_u, self.n_nodes_u)
        self.node_coords_p = self._node_coordinates(self.element_p, self.cell_nodes_p, self.n_nodes_p)

    def _node_coordinates(self, element, cell_nodes, n_nodes):
        coords = np.empty((n_nodes, 2))
        physical = self.geometry.to_physical(np.arange(self.mesh.n_cells), element.nodes)
        coords[cell_nodes.ravel()] = physical.reshape(-1, 2)
        return coords

    @property
    def n_dofs(self) -> int:
        return self.n_u + self.n_p

    def velocity_dof(self, node, component):
        return component * self.n_nodes_u + np.asarray(node)

    def pressure_dof(self, node):
        return self.n_u + np.asarray(node)

    # =========================================================================
    # Boundary lookups
    # =========================================================================

    def boundary_velocity_nodes(self, facets) -> np.ndarray:
        """Sorted velocity nodes lying on the given boundary facets."""
        nodes = []
        for f in np.atleast_1d(facets):
            cell = self.mesh.facet_cells[f]
            local = self.element_u.edge_nodes(int(self.mesh.facet_local_edges[f]))
            nodes.append(self.cell_nodes_u[cell, local])
        if not nodes:
            return np.empty(0, dtype=np.int64)
        return np.unique(np.concatenate(nodes))

    # =========================================================================
    # Vectors
    # =========================================================================

    def zeros(self) -> np.ndarray:
        return np.zeros(self.n_dofs)

    def interpolate(self, velocity=None, pressure=None) -> np.ndarray:
        """Nodal interpolant of callables ``velocity(x) -> (n, 2)`` and ``pressure(x) -> (n,)``."""
        x = self.zeros()
        if velocity is not None:
            values = np.asarray(velocity(self.node_coords_u), dtype=float).reshape(self.n_nodes_u, self.dim)
            x[: self.n_u] = values.T.ravel()
        if pressure is not None:
            x[self.n_u :] = np.asarray(pressure(self.node_coords_p), dtype=float).reshape(self.n_nodes_p)
        return x

    def split(self, x) -> Tuple[np.ndarray, np.ndarray]:
        """Velocity (n_nodes_u, 2) and pressure (n_p,) views of a block vector."""
        return x[: self.n_u].reshape(self.dim, self.n_nodes_u).T, x[self.n_u :]

    def vertex_values(self, x):
        """Velocity (n_vertices, 2) and pressure (n_vertices,) at mesh vertices."""
        u, p = self.split(x)
        nv = self.mesh.n_vertices
        return u[:nv].copy(), p[:nv].copy()

    # =========================================================================
    # Partitioning
    # =========================================================================

    def partition(self, cell_owner, n_workers: int) -> DofPartition:
        """Build the DofPartition induced by a cell partition."""
        cell_owner = np.asarray(cell_owner, dtype=np.int64)
        if cell_owner.shape != (self.mesh.n_cells,):
            raise ValueError(f"cell_owner must have shape ({self.mesh.n_cells},)")
        if cell_owner.min() < 0 or cell_owner.max() >= n_workers:
            raise ValueError(f"cell_owner ranks must lie in [0, {n_workers})")

        dof_owner = np.full(self.n_dofs, n_workers, dtype=np.int64)
        n_local = self.cell_dofs.shape[1]
        np.minimum.at(dof_owner, self.cell_dofs.ravel(), np.repeat(cell_owner, n_local))

        relevant = tuple(
            np.unique(self.cell_dofs[cell_owner == rank]) for rank in range(n_workers)
        )
        return DofPartition(
            n_u=self.n_u,
            n_p=self.n_p,
            n_workers=n_workers,
            cell_owner=cell_owner,
            dof_owner=dof_owner,
            relevant_dofs=relevant,
        )
