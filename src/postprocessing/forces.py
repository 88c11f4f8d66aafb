"""Lift and drag on a tagged body.

Two evaluations of the force F = integral of sigma n_body over the body,
sigma = nu grad(u) - p I:

- ``surface``: the facet integral of the traction of the discrete field.
- ``volume``: the momentum residual of the discrete field summed over the
  velocity nodes of the body (the reaction force of the no-slip constraint).
  For a discrete solution this equals the surface integral tested with a
  finite element function that is one on the body, which converges faster,
  most visibly in the lift.
"""

from dataclasses import dataclass
import logging

import numpy as np

from fem.assembly import ConvectiveForm, Linearization, WeakFormAssembler
from fem.boundary_conditions import BoundaryConditionRegistry
from fem.geometry import facet_quadrature
from meshing.mesh_data import BoundaryRegion
from parallel.communicator import ReduceOp

log = logging.getLogger(__name__)

FORCE_METHODS = ("surface", "volume")


@dataclass(frozen=True)
class ForceCoefficients:
    drag: float
    lift: float


def local_forces(dofs, solution, viscosity, cells, boundary=BoundaryRegion.OBSTACLE, n_points: int = 3):
    """Unscaled force (F_x, F_y) on ``boundary`` from the facets of ``cells``.

    Integrates sigma n_body with sigma = nu grad(u) - p I, where n_body is the
    body's outward normal (the negated fluid normal).
    """
    mesh = dofs.mesh
    geo = dofs.geometry
    owned = np.zeros(mesh.n_cells, dtype=bool)
    owned[np.asarray(cells, dtype=np.int64)] = True

    facets = mesh.facets_with_tag([boundary])
    facets = facets[owned[mesh.facet_cells[facets]]]
    force = np.zeros(dofs.dim)
    if len(facets) == 0:
        return force

    u_nodes, p_nodes = dofs.split(np.asarray(solution, dtype=float))
    fq = facet_quadrature(mesh, facets, n_points)
    for i in range(len(facets)):
        cell = fq.cells[i]
        ref = fq.ref_points[i]
        grad = np.einsum("qar,rd->qad", dofs.element_u.gradients(ref), geo.invJ[cell])
        u_local = u_nodes[dofs.cell_nodes_u[cell]]  # (a, m)
        G = np.einsum("am,qad->qmd", u_local, grad)
        p = dofs.element_p.values(ref) @ p_nodes[dofs.cell_nodes_p[cell]]

        sigma = viscosity * G - p[:, None, None] * np.eye(dofs.dim)[None, :, :]
        n_body = -fq.normals[i]
        force += np.einsum("qmd,d,q->m", sigma, n_body, fq.weights[i])
    return force


def local_reaction_forces(assembler, solution, cells, boundary=BoundaryRegion.OBSTACLE):
    """Unscaled force (F_x, F_y) on ``boundary`` as the residual b - A(u) u at its nodes.

    Only the cells of ``cells`` that touch a body node contribute; summing the
    result over disjoint cell sets gives the global reaction force.
    """
    dofs = assembler.dofs
    force = np.zeros(dofs.dim)
    facets = dofs.mesh.facets_with_tag([boundary])
    if len(facets) == 0:
        return force

    nodes = dofs.boundary_velocity_nodes(facets)
    cells = np.asarray(cells, dtype=np.int64)
    cells = cells[np.isin(dofs.cell_nodes_u[cells], nodes).any(axis=1)]
    if len(cells) == 0:
        return force

    solution = np.asarray(solution, dtype=float)
    linearization = Linearization.picard(solution, ConvectiveForm.OSEEN)
    matrix, rhs, _ = assembler.assemble_local(linearization, cells)
    residual = rhs - matrix @ solution
    for m in range(dofs.dim):
        force[m] = residual[dofs.velocity_dof(nodes, m)].sum()
    return force


def compute_forces(
    dofs,
    solution,
    partition,
    comm,
    viscosity: float,
    scale: float,
    boundary=BoundaryRegion.OBSTACLE,
    n_points: int = 3,
    method: str = "surface",
    assembler=None,
):
    """Drag and lift coefficients, sum-reduced to the root worker.

    Collective. Returns ForceCoefficients on rank 0 and None elsewhere.

    Parameters
    ----------
    method : str
        ``surface`` (facet traction integral) or ``volume`` (reaction force).
    assembler : WeakFormAssembler, optional
        Used by the ``volume`` method so the residual includes the forcing of
        the solved problem. Without one, an unforced assembler is built.
    """
    if method not in FORCE_METHODS:
        raise ValueError(f"Unknown force method '{method}', expected one of {FORCE_METHODS}")
    cells = partition.owned_cells(comm.rank)

    if method == "volume":
        if assembler is None:
            assembler = WeakFormAssembler(dofs, viscosity, BoundaryConditionRegistry())
        partial = scale * local_reaction_forces(assembler, solution, cells, boundary)
    else:
        partial = scale * local_forces(dofs, solution, viscosity, cells, boundary, n_points)
    log.debug(f"rank {comm.rank}: local drag={partial[0]:.6e}, lift={partial[1]:.6e} ({method})")

    total = comm.reduce(partial, ReduceOp.SUM, root=0)
    if total is None:
        return None
    return ForceCoefficients(drag=float(total[0]), lift=float(total[1]))
