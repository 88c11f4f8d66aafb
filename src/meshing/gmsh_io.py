"""
Gmsh import and generation of 2D triangle meshes.

Boundary curves must carry physical groups; the physical tag becomes the
boundary region id of every facet on the curve. Second-order meshes are
accepted, only their corner nodes are kept (the finite element space builds
its own higher-order nodes).
"""

from contextlib import contextmanager
from pathlib import Path
import logging

import numpy as np

from .mesh_data import BoundaryRegion, TriangleMesh

log = logging.getLogger(__name__)

# Gmsh element type ids
_TRIANGLES = (2, 9)  # 3-node, 6-node
_LINES = (1, 8)  # 2-node, 3-node

# DFG 2D-1 channel geometry
DFG_LENGTH = 2.2
DFG_HEIGHT = 0.41
DFG_CENTER = (0.2, 0.2)
DFG_RADIUS = 0.05


@contextmanager
def _gmsh_session():
    """Initialise gmsh for the duration of the block (unless it already is)."""
    import gmsh

    need_finalize = not gmsh.isInitialized()
    if need_finalize:
        gmsh.initialize()
    gmsh.option.setNumber("General.Terminal", 0)
    try:
        yield gmsh
    finally:
        if need_finalize:
            gmsh.finalize()


def _extract_mesh(gmsh) -> TriangleMesh:
    """Convert the current gmsh model to a TriangleMesh."""
    node_tags, coords, _ = gmsh.model.mesh.getNodes()
    coords = np.asarray(coords, dtype=float).reshape(-1, 3)[:, :2]
    index_of = {int(t): i for i, t in enumerate(node_tags)}

    cells = []
    types, _, elem_nodes = gmsh.model.mesh.getElements(dim=2)
    for etype, nodes in zip(types, elem_nodes):
        if etype not in _TRIANGLES:
            raise ValueError(f"Unsupported 2D element type {etype} (triangles only)")
        per = 3 if etype == 2 else 6
        conn = np.asarray(nodes, dtype=np.int64).reshape(-1, per)[:, :3]
        cells.append(conn)
    if not cells:
        raise ValueError("Gmsh model contains no triangles")
    cells = np.concatenate(cells)

    facets, tags = [], []
    for dim, phys in gmsh.model.getPhysicalGroups(dim=1):
        for entity in gmsh.model.getEntitiesForPhysicalGroup(dim, phys):
            ltypes, _, lnodes = gmsh.model.mesh.getElements(dim=1, tag=entity)
            for ltype, nodes in zip(ltypes, lnodes):
                if ltype not in _LINES:
                    continue
                per = 2 if ltype == 1 else 3
                conn = np.asarray(nodes, dtype=np.int64).reshape(-1, per)[:, :2]
                facets.append(conn)
                tags.append(np.full(len(conn), phys, dtype=np.int64))
    if not facets:
        raise ValueError("Gmsh model has no physical groups on boundary curves")

    # Renumber to the vertices used by triangles
    used = np.unique(cells)
    remap = {int(t): i for i, t in enumerate(used)}
    vertices = coords[[index_of[int(t)] for t in used]]
    cells = np.vectorize(remap.__getitem__)(cells)
    facets = np.vectorize(remap.__getitem__)(np.concatenate(facets))

    return TriangleMesh(vertices, cells, facets, np.concatenate(tags))


def load_msh(path) -> TriangleMesh:
    """Read a Gmsh ``.msh`` file.

    Parameters
    ----------
    path : str or Path
        Mesh file.

    Returns
    -------
    TriangleMesh

    Raises
    ------
    FileNotFoundError
        If ``path`` does not exist.
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Mesh file not found: {path}")

    with _gmsh_session() as gmsh:
        gmsh.open(str(path))
        mesh = _extract_mesh(gmsh)
        gmsh.clear()

    log.info(f"Loaded {path.name}: {mesh.n_vertices} vertices, {mesh.n_cells} cells")
    return mesh


def dfg_channel_mesh(mesh_size=0.03, obstacle_size=0.006, msh_path=None) -> TriangleMesh:
    """Generate the DFG flow-around-cylinder channel.

    Channel [0, 2.2] x [0, 0.41] minus a disk of radius 0.05 centred at
    (0.2, 0.2). Curves are tagged inlet/outlet/wall/obstacle with the
    BoundaryRegion ids, and the mesh is graded from ``obstacle_size`` at the
    cylinder to ``mesh_size`` in the far field.

    Parameters
    ----------
    mesh_size : float
        Far-field element size.
    obstacle_size : float
        Element size on the cylinder.
    msh_path : str or Path, optional
        If given, the generated mesh is also written there.
    """
    with _gmsh_session() as gmsh:
        gmsh.model.add("dfg_channel")
        occ = gmsh.model.occ
        rect = occ.addRectangle(0.0, 0.0, 0.0, DFG_LENGTH, DFG_HEIGHT)
        disk = occ.addDisk(DFG_CENTER[0], DFG_CENTER[1], 0.0, DFG_RADIUS, DFG_RADIUS)
        fluid, _ = occ.cut([(2, rect)], [(2, disk)])
        occ.synchronize()
        if not fluid:
            raise RuntimeError("Boolean difference failed when creating the cylinder hole")
        surface = fluid[0][1]

        curves = {region: [] for region in BoundaryRegion}
        tol = 1e-3
        for dim, tag in gmsh.model.getBoundary([(2, surface)], oriented=False):
            xmin, ymin, _, xmax, ymax, _ = occ.getBoundingBox(dim, tag)
            if xmax < tol:
                curves[BoundaryRegion.INLET].append(tag)
            elif xmin > DFG_LENGTH - tol:
                curves[BoundaryRegion.OUTLET].append(tag)
            elif ymax < tol or ymin > DFG_HEIGHT - tol:
                curves[BoundaryRegion.WALL].append(tag)
            else:
                curves[BoundaryRegion.OBSTACLE].append(tag)

        for region, tags in curves.items():
            gmsh.model.addPhysicalGroup(1, tags, tag=int(region))
            gmsh.model.setPhysicalName(1, int(region), region.name.lower())
        gmsh.model.addPhysicalGroup(2, [surface], tag=10)

        field = gmsh.model.mesh.field
        dist = field.add("Distance")
        field.setNumbers(dist, "CurvesList", curves[BoundaryRegion.OBSTACLE])
        field.setNumber(dist, "Sampling", 200)
        threshold = field.add("Threshold")
        field.setNumber(threshold, "InField", dist)
        field.setNumber(threshold, "SizeMin", obstacle_size)
        field.setNumber(threshold, "SizeMax", mesh_size)
        field.setNumber(threshold, "DistMin", 0.5 * DFG_RADIUS)
        field.setNumber(threshold, "DistMax", 0.3)
        field.setAsBackgroundMesh(threshold)
        gmsh.option.setNumber("Mesh.MeshSizeExtendFromBoundary", 0)
        gmsh.option.setNumber("Mesh.MeshSizeFromPoints", 0)
        gmsh.option.setNumber("Mesh.MeshSizeFromCurvature", 0)

        gmsh.model.mesh.generate(2)
        if msh_path is not None:
            msh_path = Path(msh_path)
            msh_path.parent.mkdir(parents=True, exist_ok=True)
            gmsh.write(str(msh_path))
        mesh = _extract_mesh(gmsh)
        gmsh.model.remove()

    log.info(f"Generated DFG channel: {mesh.n_vertices} vertices, {mesh.n_cells} cells")
    return mesh
