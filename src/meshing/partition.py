"""Static cell partitioning among worker processes."""

import numpy as np


def partition_cells(mesh, n_workers: int, axis: int = 0) -> np.ndarray:
    """Assign each cell to a worker by cutting the domain into strips.

    Cells are sorted by centroid coordinate along ``axis`` (ties broken by the
    other coordinate, then by cell index) and split into ``n_workers``
    contiguous chunks of near-equal size. The result depends only on the mesh
    and ``n_workers``, so every worker computes the same partition.

    Parameters
    ----------
    mesh : TriangleMesh
        Mesh to partition.
    n_workers : int
        Number of workers (>= 1).
    axis : int
        Coordinate the strips are cut across (0 = x, 1 = y).

    Returns
    -------
    np.ndarray
        Owner rank of every cell, shape (n_cells,).
    """
    if n_workers < 1:
        raise ValueError(f"n_workers must be >= 1, got {n_workers}")
    if n_workers > mesh.n_cells:
        raise ValueError(f"Cannot split {mesh.n_cells} cells among {n_workers} workers")

    c = mesh.cell_centroids
    order = np.lexsort((np.arange(mesh.n_cells), c[:, 1 - axis], c[:, axis]))
    owner = np.empty(mesh.n_cells, dtype=np.int64)
    for rank, chunk in enumerate(np.array_split(order, n_workers)):
        owner[chunk] = rank
    return owner
