"""Triangle meshes: data layout, structured generators, Gmsh I/O and partitioning."""

from .mesh_data import BoundaryRegion, TriangleMesh
from .structured import channel_with_box_obstacle, rectangle_mesh
from .gmsh_io import dfg_channel_mesh, load_msh
from .partition import partition_cells

__all__ = [
    "BoundaryRegion",
    "TriangleMesh",
    "rectangle_mesh",
    "channel_with_box_obstacle",
    "load_msh",
    "dfg_channel_mesh",
    "partition_cells",
]
