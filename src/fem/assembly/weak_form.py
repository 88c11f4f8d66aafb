"""
Weak form of the steady incompressible Navier-Stokes equations.

Find (u, p) such that for every test pair (v, q)

    nu (grad u, grad v) + c(u_prev; u, v) - (p, div v) - (q, div u)
        = (f, v) + r(u_prev; v) - <p_out n, v>_outlet

where the convective part c/r depends on the linearization:

- Stokes: no convective term.
- Picard, newton form: c = ((u . grad) u_prev + (u_prev . grad) u, v),
  r = ((u_prev . grad) u_prev, v).
- Picard, oseen form: c = ((u_prev . grad) u, v), r = 0.

A companion pressure mass (1/nu)(p, q) is assembled for preconditioning.
Only cells owned by the calling worker contribute; the per-worker matrices
are then sum-reduced so every worker holds the finalized global system.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional
import logging

import numpy as np
import scipy.sparse as sp

from fem.boundary_conditions import ConstraintMode
from fem.geometry import facet_quadrature
from fem.quadrature import points_for_degree, triangle_rule
from parallel.communicator import ReduceOp, SerialCommunicator

from .block_system import BlockLinearSystem

log = logging.getLogger(__name__)


class ConvectiveForm(str, Enum):
    NEWTON = "newton"
    OSEEN = "oseen"


@dataclass(frozen=True)
class Linearization:
    """Linearization state: Stokes (no previous iterate) or Picard about ``previous``."""

    previous: Optional[np.ndarray] = None
    form: ConvectiveForm = ConvectiveForm.NEWTON

    @classmethod
    def stokes(cls) -> "Linearization":
        return cls()

    @classmethod
    def picard(cls, previous, form=ConvectiveForm.NEWTON) -> "Linearization":
        previous = np.array(previous, dtype=float, copy=True)
        previous.flags.writeable = False
        return cls(previous=previous, form=ConvectiveForm(form))

    @property
    def is_stokes(self) -> bool:
        return self.previous is None


class WeakFormAssembler:
    """Builds BlockLinearSystems on a fixed discretization.

    Holds only immutable discretization data (dof handler, viscosity,
    boundary conditions, quadrature); every call to ``assemble`` is
    independent of the previous ones.

    Parameters
    ----------
    dofs : DofHandler
        Mixed velocity/pressure space.
    viscosity : float
        Kinematic viscosity nu.
    boundary_conditions : BoundaryConditionRegistry
        Its Neumann tags select the outlet facets.
    forcing : callable, optional
        f(x) -> (n, 2) body force; zero if omitted.
    quadrature_degree : int, optional
        Polynomial degree integrated exactly on cells. Defaults to
        3 k_u - 1, exact for the convective terms.
    """

    def __init__(
        self,
        dofs,
        viscosity: float,
        boundary_conditions,
        forcing: Optional[Callable] = None,
        quadrature_degree: Optional[int] = None,
    ):
        if viscosity <= 0:
            raise ValueError(f"viscosity must be positive, got {viscosity}")
        self.dofs = dofs
        self.viscosity = float(viscosity)
        self.boundary_conditions = boundary_conditions
        self.forcing = forcing

        k_u = dofs.element_u.degree
        degree = quadrature_degree if quadrature_degree is not None else 3 * k_u - 1
        self.quad_points, self.quad_weights = triangle_rule(points_for_degree(degree))
        self.facet_points = points_for_degree(2 * k_u)

        # Reference basis tables at the quadrature points
        self.phi = dofs.element_u.values(self.quad_points)  # (q, a)
        self.dphi = dofs.element_u.gradients(self.quad_points)  # (q, a, r)
        self.psi = dofs.element_p.values(self.quad_points)  # (q, j)

    # =========================================================================
    # Public API
    # =========================================================================

    def assemble(
        self,
        linearization: Linearization,
        partition,
        constraints=None,
        comm=None,
        mode=ConstraintMode.ELIMINATE,
    ) -> BlockLinearSystem:
        """Assemble, finalize and constrain the global system.

        Collective: every worker must call it with the same arguments.
        """
        comm = comm if comm is not None else SerialCommunicator()
        if partition.n_workers != comm.size:
            raise ValueError(
                f"Partition built for {partition.n_workers} workers, communicator has {comm.size}"
            )
        cells = partition.owned_cells(comm.rank)

        matrix, rhs, mass = self.assemble_local(linearization, cells)
        log.debug(f"rank {comm.rank}: assembled {len(cells)} cells, {matrix.nnz} local nonzeros")

        # Finalize: sum contributions of all workers
        matrix = sp.csr_matrix(comm.allreduce(matrix, ReduceOp.SUM))
        rhs = comm.allreduce(rhs, ReduceOp.SUM)
        mass = sp.csr_matrix(comm.allreduce(mass, ReduceOp.SUM))
        matrix.sum_duplicates()
        mass.sum_duplicates()

        system = BlockLinearSystem(matrix=matrix, rhs=rhs, pressure_mass=mass, partition=partition)
        if constraints is not None and len(constraints):
            system = system.with_constraints(constraints, mode)

        kind = "Stokes" if linearization.is_stokes else f"Picard ({linearization.form.value})"
        log.info(f"Assembled {kind} system: n_u={system.n_u}, n_p={system.n_p}, nnz={system.matrix.nnz}")
        return system

    def assemble_local(self, linearization: Linearization, cells):
        """Unreduced contributions of ``cells``: (matrix, rhs, pressure_mass)."""
        dofs = self.dofs
        n = dofs.n_dofs
        cells = np.asarray(cells, dtype=np.int64)
        if len(cells) == 0:
            empty = sp.csr_matrix((n, n))
            return empty, np.zeros(n), empty.copy()

        local_matrix, local_rhs, local_mass = self._cell_contributions(linearization, cells)

        cell_dofs = dofs.cell_dofs[cells]
        n_loc = cell_dofs.shape[1]
        rows = np.repeat(cell_dofs, n_loc, axis=1)
        cols = np.tile(cell_dofs, (1, n_loc))

        # The pressure-pressure block stays structurally empty
        is_p = np.arange(n_loc) >= n_loc - dofs.element_p.n_basis
        keep = ~np.logical_and.outer(is_p, is_p).ravel()
        rows = rows.reshape(len(cells), n_loc * n_loc)[:, keep].ravel()
        cols = cols.reshape(len(cells), n_loc * n_loc)[:, keep].ravel()
        values = local_matrix.reshape(len(cells), n_loc * n_loc)[:, keep].ravel()
        matrix = sp.coo_matrix((values, (rows, cols)), shape=(n, n)).tocsr()

        rhs = np.zeros(n)
        np.add.at(rhs, cell_dofs.ravel(), local_rhs.ravel())

        p_dofs = dofs.cell_dofs_p[cells]
        n_bp = p_dofs.shape[1]
        mass = sp.coo_matrix(
            (
                local_mass.ravel(),
                (np.repeat(p_dofs, n_bp, axis=1).ravel(), np.tile(p_dofs, (1, n_bp)).ravel()),
            ),
            shape=(n, n),
        ).tocsr()

        self._add_outlet_traction(rhs, cells)
        return matrix, rhs, mass

    # =========================================================================
    # Element kernels
    # =========================================================================

    def _cell_contributions(self, linearization, cells):
        dofs = self.dofs
        geo = dofs.geometry
        nu = self.viscosity
        dim = dofs.dim
        n_b = dofs.element_u.n_basis
        n_bp = dofs.element_p.n_basis
        n_c = len(cells)

        JxW = self.quad_weights[None, :] * np.abs(geo.detJ[cells])[:, None]  # (c, q)
        grad = np.einsum("qar,crd->cqad", self.dphi, geo.invJ[cells])  # (c, q, a, d)
        phi, psi = self.phi, self.psi

        n_loc = dim * n_b + n_bp
        A = np.zeros((n_c, n_loc, n_loc))
        b = np.zeros((n_c, n_loc))

        # Viscous term nu (grad v_i : grad v_j), one copy per velocity component
        K = nu * np.einsum("cq,cqad,cqbd->cab", JxW, grad, grad)
        for m in range(dim):
            A[:, m * n_b : (m + 1) * n_b, m * n_b : (m + 1) * n_b] += K

        # Coupling -(div v_i) p_j and -(div v_j) p_i
        p0 = dim * n_b
        for m in range(dim):
            B_m = -np.einsum("cq,qj,cqa->caj", JxW, psi, grad[:, :, :, m])
            A[:, m * n_b : (m + 1) * n_b, p0:] += B_m
            A[:, p0:, m * n_b : (m + 1) * n_b] += B_m.transpose(0, 2, 1)

        # Convective linearization about the previous iterate
        if not linearization.is_stokes:
            prev = linearization.previous[dofs.cell_dofs_u[cells]].reshape(n_c, dim, n_b)
            U = np.einsum("qa,cma->cqm", phi, prev)  # (c, q, m)
            G = np.einsum("cma,cqad->cqmd", prev, grad)  # (c, q, m, d) = du_m/dx_d

            # (u_prev . grad) v_j . v_i
            transport = np.einsum("cq,qa,cqd,cqbd->cab", JxW, phi, U, grad)
            for m in range(dim):
                A[:, m * n_b : (m + 1) * n_b, m * n_b : (m + 1) * n_b] += transport

            if linearization.form is ConvectiveForm.NEWTON:
                # (v_j . grad) u_prev . v_i
                for m in range(dim):
                    for k in range(dim):
                        A[:, m * n_b : (m + 1) * n_b, k * n_b : (k + 1) * n_b] += np.einsum(
                            "cq,qa,qb,cq->cab", JxW, phi, phi, G[:, :, m, k]
                        )
                # (u_prev . grad) u_prev . v_i
                conv = np.einsum("cqd,cqmd->cqm", U, G)
                for m in range(dim):
                    b[:, m * n_b : (m + 1) * n_b] += np.einsum("cq,qa,cq->ca", JxW, phi, conv[:, :, m])

        # Forcing (f, v_i)
        if self.forcing is not None:
            x_q = geo.to_physical(cells, self.quad_points)
            f = np.asarray(self.forcing(x_q.reshape(-1, 2)), dtype=float).reshape(n_c, -1, dim)
            for m in range(dim):
                b[:, m * n_b : (m + 1) * n_b] += np.einsum("cq,qa,cq->ca", JxW, phi, f[:, :, m])

        # Pressure mass (1/nu)(p_i, p_j)
        M = np.einsum("cq,qi,qj->cij", JxW, psi, psi) / nu

        return A, b, M

    def _add_outlet_traction(self, rhs, cells):
        """-p_out (n . v_i) on owned facets tagged with a Neumann condition."""
        mesh = self.dofs.mesh
        dofs = self.dofs
        n_b = dofs.element_u.n_basis
        owned = np.zeros(mesh.n_cells, dtype=bool)
        owned[cells] = True

        for tag, p_out in self.boundary_conditions.neumann.items():
            if p_out == 0.0:
                continue
            facets = mesh.facets_with_tag([tag])
            facets = facets[owned[mesh.facet_cells[facets]]]
            if len(facets) == 0:
                continue
            fq = facet_quadrature(mesh, facets, self.facet_points)
            for i in range(len(facets)):
                phi = dofs.element_u.values(fq.ref_points[i])  # (q, a)
                local = -p_out * np.einsum("q,qa->a", fq.weights[i], phi)
                cell = fq.cells[i]
                for m in range(dofs.dim):
                    np.add.at(rhs, dofs.cell_dofs_u[cell, m * n_b : (m + 1) * n_b], local * fq.normals[i, m])
