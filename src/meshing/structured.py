"""Structured triangle meshes for channel problems.

Every quad of a regular nx x ny grid is split into two triangles. Boundary
edges are tagged by position: left side inlet, right side outlet, top and
bottom walls, anything else (a hole) obstacle.
"""

import numpy as np

from .mesh_data import BoundaryRegion, TriangleMesh, find_boundary_edges


def _grid(Lx, Ly, nx, ny, origin):
    x = origin[0] + np.linspace(0.0, Lx, nx + 1)
    y = origin[1] + np.linspace(0.0, Ly, ny + 1)
    X, Y = np.meshgrid(x, y, indexing="xy")
    return np.column_stack([X.ravel(), Y.ravel()])


def _quad_cells(nx, ny, keep=None):
    cells = []
    for j in range(ny):
        for i in range(nx):
            if keep is not None and not keep(i, j):
                continue
            v00 = j * (nx + 1) + i
            v10 = v00 + 1
            v01 = v00 + (nx + 1)
            v11 = v01 + 1
            cells.append((v00, v10, v11))
            cells.append((v00, v11, v01))
    return np.array(cells, dtype=np.int64)


def _tag_by_position(vertices, facets, Lx, Ly, origin, tol):
    x0, y0 = origin
    mid = vertices[facets].mean(axis=1)
    tags = np.full(len(facets), int(BoundaryRegion.OBSTACLE), dtype=np.int64)
    tags[np.abs(mid[:, 1] - y0) < tol] = BoundaryRegion.WALL
    tags[np.abs(mid[:, 1] - (y0 + Ly)) < tol] = BoundaryRegion.WALL
    tags[np.abs(mid[:, 0] - x0) < tol] = BoundaryRegion.INLET
    tags[np.abs(mid[:, 0] - (x0 + Lx)) < tol] = BoundaryRegion.OUTLET
    return tags


def _compact(vertices, cells):
    """Drop vertices no cell references and renumber."""
    used = np.unique(cells)
    remap = np.full(len(vertices), -1, dtype=np.int64)
    remap[used] = np.arange(len(used))
    return vertices[used], remap[cells]


def rectangle_mesh(Lx=1.0, Ly=1.0, nx=8, ny=8, origin=(0.0, 0.0)) -> TriangleMesh:
    """Triangulated rectangle [x0, x0+Lx] x [y0, y0+Ly].

    Parameters
    ----------
    Lx, Ly : float
        Rectangle extents.
    nx, ny : int
        Number of quads per direction (each split into two triangles).
    origin : tuple of float
        Lower-left corner.

    Returns
    -------
    TriangleMesh
        Mesh tagged inlet (x = x0), outlet (x = x0+Lx), wall (y = y0, y = y0+Ly).
    """
    if nx < 1 or ny < 1:
        raise ValueError(f"nx and ny must be positive, got nx={nx}, ny={ny}")
    vertices = _grid(Lx, Ly, nx, ny, origin)
    cells = _quad_cells(nx, ny)
    facets = find_boundary_edges(cells)
    tol = 1e-9 * max(Lx, Ly)
    return TriangleMesh(vertices, cells, facets, _tag_by_position(vertices, facets, Lx, Ly, origin, tol))


def channel_with_box_obstacle(
    Lx=2.2, Ly=0.41, nx=44, ny=16, box=(0.15, 0.25, 0.15, 0.25), origin=(0.0, 0.0)
) -> TriangleMesh:
    """Channel with a rectangular hole whose edges are tagged as obstacle.

    The hole is the union of grid quads whose centres fall inside
    ``box = (xmin, xmax, ymin, ymax)``.
    """
    x0, y0 = origin
    hx, hy = Lx / nx, Ly / ny
    xmin, xmax, ymin, ymax = box

    def keep(i, j):
        xc = x0 + (i + 0.5) * hx
        yc = y0 + (j + 0.5) * hy
        return not (xmin < xc < xmax and ymin < yc < ymax)

    vertices = _grid(Lx, Ly, nx, ny, origin)
    cells = _quad_cells(nx, ny, keep=keep)
    if len(cells) == 2 * nx * ny:
        raise ValueError(f"Obstacle box {box} removes no cells on a {nx}x{ny} grid")
    vertices, cells = _compact(vertices, cells)
    facets = find_boundary_edges(cells)
    tol = 1e-9 * max(Lx, Ly)
    return TriangleMesh(vertices, cells, facets, _tag_by_position(vertices, facets, Lx, Ly, origin, tol))
