"""
TriangleMesh: core data layout for the finite element discretization (2D, simplices).

This class holds static geometry, connectivity and boundary tagging. Everything
the assembler and the post-processing need is derived from it once, at construction.

Indexing Conventions:
- Cell arrays (cells, cell_centroids, cell_areas) use cell indexing (0 to n_cells-1).
- Boundary facet arrays (boundary_facets, boundary_tags, facet_cells, ...) use
  boundary facet indexing (0 to n_boundary_facets-1). Interior facets are not stored.
- Cells are stored counter-clockwise. Local edge e of a cell joins local vertices
  (e, e+1 mod 3), which matches the reference triangle edges
  0: (0,0)-(1,0), 1: (1,0)-(0,1), 2: (0,1)-(0,0).

Boundary Tags:
- boundary_tags[f] is an integer region id, see BoundaryRegion for the ids used
  by the channel meshes. Any other integer is accepted.
"""

from enum import IntEnum

import numpy as np


class BoundaryRegion(IntEnum):
    """Boundary region ids (match the Gmsh physical tags of the channel meshes)."""

    INLET = 0
    OUTLET = 1
    WALL = 2
    OBSTACLE = 3


def edge_key(a, b):
    return (a, b) if a < b else (b, a)


def find_boundary_edges(cells: np.ndarray) -> np.ndarray:
    """Return the edges (vertex pairs) that belong to exactly one cell."""
    edges = np.concatenate([cells[:, [0, 1]], cells[:, [1, 2]], cells[:, [2, 0]]])
    keys = np.sort(edges, axis=1)
    unique, counts = np.unique(keys, axis=0, return_counts=True)
    return unique[counts == 1]


class TriangleMesh:
    def __init__(self, vertices, cells, boundary_facets, boundary_tags):
        # --- Geometry ---
        self.vertices = np.asarray(vertices, dtype=float)
        cells = np.array(cells, dtype=np.int64)

        # --- Orientation (counter-clockwise) ---
        area2 = self._signed_area2(self.vertices, cells)
        flip = area2 < 0
        cells[flip] = cells[flip][:, [0, 2, 1]]
        if np.any(area2 == 0):
            raise ValueError("Mesh contains degenerate (zero-area) cells")
        self.cells = cells

        # --- Boundary ---
        self.boundary_facets = np.asarray(boundary_facets, dtype=np.int64).reshape(-1, 2)
        self.boundary_tags = np.asarray(boundary_tags, dtype=np.int64).reshape(-1)
        if len(self.boundary_facets) != len(self.boundary_tags):
            raise ValueError("boundary_facets and boundary_tags must have equal length")

        # --- Derived Cell Metrics ---
        self.cell_areas = 0.5 * np.abs(area2)
        self.cell_centroids = self.vertices[self.cells].mean(axis=1)

        # --- Facet -> (cell, local edge) ---
        self.facet_cells, self.facet_local_edges = self._locate_facets()

    @staticmethod
    def _signed_area2(vertices, cells):
        p0, p1, p2 = (vertices[cells[:, i]] for i in range(3))
        d1 = p1 - p0
        d2 = p2 - p0
        return d1[:, 0] * d2[:, 1] - d1[:, 1] * d2[:, 0]

    def _locate_facets(self):
        lookup = {}
        for c, tri in enumerate(self.cells):
            for e in range(3):
                lookup[edge_key(tri[e], tri[(e + 1) % 3])] = (c, e)

        facet_cells = np.empty(len(self.boundary_facets), dtype=np.int64)
        facet_edges = np.empty(len(self.boundary_facets), dtype=np.int64)
        for f, (a, b) in enumerate(self.boundary_facets):
            try:
                facet_cells[f], facet_edges[f] = lookup[edge_key(a, b)]
            except KeyError:
                raise ValueError(f"Boundary facet ({a}, {b}) is not an edge of any cell") from None
        return facet_cells, facet_edges

    @property
    def n_vertices(self) -> int:
        return len(self.vertices)

    @property
    def n_cells(self) -> int:
        return len(self.cells)

    @property
    def tags(self) -> set:
        return set(int(t) for t in np.unique(self.boundary_tags))

    def facets_with_tag(self, tags) -> np.ndarray:
        """Indices of the boundary facets whose tag is in ``tags``."""
        tags = np.atleast_1d(np.asarray(list(tags) if isinstance(tags, (set, frozenset)) else tags))
        return np.flatnonzero(np.isin(self.boundary_tags, tags))

    def facet_normals(self, facets=None) -> np.ndarray:
        """Unit outward normals of boundary facets (pointing out of the fluid)."""
        if facets is None:
            facets = np.arange(len(self.boundary_facets))
        cells = self.cells[self.facet_cells[facets]]
        e = self.facet_local_edges[facets]
        rows = np.arange(len(facets))
        a = self.vertices[cells[rows, e]]
        b = self.vertices[cells[rows, (e + 1) % 3]]
        d = b - a
        normals = np.column_stack([d[:, 1], -d[:, 0]])
        return normals / np.linalg.norm(normals, axis=1)[:, None]

    def facet_lengths(self, facets=None) -> np.ndarray:
        if facets is None:
            facets = np.arange(len(self.boundary_facets))
        ends = self.vertices[self.boundary_facets[facets]]
        return np.linalg.norm(ends[:, 1] - ends[:, 0], axis=1)

    def bounding_box(self):
        return self.vertices.min(axis=0), self.vertices.max(axis=0)

    def __repr__(self):
        return (
            f"TriangleMesh(n_vertices={self.n_vertices}, n_cells={self.n_cells}, "
            f"n_boundary_facets={len(self.boundary_facets)}, tags={sorted(self.tags)})"
        )
