"""Boundary condition registry and Dirichlet constraints.

The registry maps boundary region tags either to a prescribed velocity
(a profile callable, or no-slip) or to a prescribed outlet pressure applied
weakly. ``build_constraints`` turns the Dirichlet part into an immutable
ConstraintSet for a given DofHandler.
"""

from dataclasses import dataclass, field
from enum import Enum
import logging

import numpy as np
import scipy.sparse as sp

from meshing.mesh_data import BoundaryRegion

log = logging.getLogger(__name__)


class ConstraintMode(str, Enum):
    """How constraints enter the global system.

    ELIMINATE: constrained rows replaced by diag * x = diag * g, columns kept.
    DISTRIBUTE: rows and columns condensed, rhs lifted by -A[:, C] g and the
    constrained solution comes out zero; ``ConstraintSet.distribute`` then
    writes g. Both yield the same solution after ``distribute``.
    """

    ELIMINATE = "eliminate"
    DISTRIBUTE = "distribute"


@dataclass(frozen=True)
class InletProfile:
    """Parabolic inflow u = 4 u_max (y - y0)(H - (y - y0)) / H^2, v = 0."""

    u_max: float = 0.3
    height: float = 0.41
    y0: float = 0.0

    def __call__(self, x):
        y = np.asarray(x)[:, 1] - self.y0
        u = 4.0 * self.u_max * y * (self.height - y) / self.height**2
        return np.column_stack([u, np.zeros_like(u)])

    @property
    def mean_velocity(self) -> float:
        return 2.0 * self.u_max / 3.0


def no_slip(x):
    return np.zeros((len(x), 2))


# =========================================================================
# Constraint set
# =========================================================================


@dataclass(frozen=True)
class ConstraintSet:
    """Dirichlet-eliminated dofs and their prescribed values (read-only)."""

    dofs: np.ndarray
    values: np.ndarray

    def __post_init__(self):
        dofs = np.asarray(self.dofs, dtype=np.int64)
        values = np.asarray(self.values, dtype=float)
        if dofs.shape != values.shape:
            raise ValueError("dofs and values must have the same shape")
        order = np.argsort(dofs, kind="stable")
        dofs, values = dofs[order].copy(), values[order].copy()
        if len(dofs) and np.any(np.diff(dofs) == 0):
            raise ValueError("ConstraintSet dofs must be unique")
        dofs.flags.writeable = False
        values.flags.writeable = False
        object.__setattr__(self, "dofs", dofs)
        object.__setattr__(self, "values", values)

    def __len__(self):
        return len(self.dofs)

    def is_constrained(self, n_dofs: int) -> np.ndarray:
        mask = np.zeros(n_dofs, dtype=bool)
        mask[self.dofs] = True
        return mask

    def homogeneous(self) -> "ConstraintSet":
        return ConstraintSet(self.dofs, np.zeros_like(self.values))

    def set_zero(self, x) -> np.ndarray:
        """Copy of ``x`` with every constrained entry set to zero."""
        x = np.array(x, dtype=float, copy=True)
        x[self.dofs] = 0.0
        return x

    def distribute(self, x) -> np.ndarray:
        """Copy of ``x`` with every constrained entry set to its prescribed value."""
        x = np.array(x, dtype=float, copy=True)
        x[self.dofs] = self.values
        return x

    def apply(self, matrix, rhs, mode=ConstraintMode.ELIMINATE):
        """Constrained copies of ``(matrix, rhs)``.

        Parameters
        ----------
        matrix : scipy.sparse matrix
            Square system matrix.
        rhs : np.ndarray
            Right-hand side.
        mode : ConstraintMode or str
            ``eliminate`` or ``distribute``.

        Returns
        -------
        matrix : scipy.sparse.csr_matrix
        rhs : np.ndarray
        """
        mode = ConstraintMode(mode)
        n = matrix.shape[0]
        mask = self.is_constrained(n)
        keep = sp.diags((~mask).astype(float))

        diag = matrix.diagonal()[self.dofs]
        diag = np.where(diag != 0.0, diag, 1.0)
        constrained_diag = sp.csr_matrix((diag, (self.dofs, self.dofs)), shape=(n, n))

        rhs = np.array(rhs, dtype=float, copy=True)
        if mode is ConstraintMode.ELIMINATE:
            matrix = keep @ matrix + constrained_diag
            rhs[self.dofs] = diag * self.values
        else:
            lift = np.zeros(n)
            lift[self.dofs] = self.values
            rhs -= matrix @ lift
            rhs[self.dofs] = 0.0
            matrix = keep @ matrix @ keep + constrained_diag

        matrix = sp.csr_matrix(matrix)
        matrix.eliminate_zeros()
        return matrix, rhs


# =========================================================================
# Registry
# =========================================================================


@dataclass
class BoundaryConditionRegistry:
    """Tag -> boundary condition map.

    ``dirichlet[tag]`` is a callable x -> (n, 2) velocity, ``neumann[tag]`` a
    prescribed outlet pressure. A tag may appear in only one of them. Where
    Dirichlet regions meet, the one registered last wins.
    """

    dirichlet: dict = field(default_factory=dict)
    neumann: dict = field(default_factory=dict)

    def add_dirichlet(self, tag, profile=None):
        tag = int(tag)
        if tag in self.neumann:
            raise ValueError(f"Boundary tag {tag} already has a Neumann condition")
        self.dirichlet[tag] = profile if profile is not None else no_slip
        return self

    def add_neumann(self, tag, pressure: float = 0.0):
        tag = int(tag)
        if tag in self.dirichlet:
            raise ValueError(f"Boundary tag {tag} already has a Dirichlet condition")
        self.neumann[tag] = float(pressure)
        return self

    @property
    def dirichlet_tags(self):
        return tuple(self.dirichlet)

    @property
    def neumann_tags(self):
        return tuple(self.neumann)

    @classmethod
    def channel(cls, inlet=None, outlet_pressure: float = 0.0, obstacle: bool = True):
        """Inflow profile on the inlet, no-slip on walls (and obstacle), pressure on the outlet."""
        registry = cls()
        registry.add_dirichlet(BoundaryRegion.INLET, inlet if inlet is not None else InletProfile())
        registry.add_dirichlet(BoundaryRegion.WALL)
        if obstacle:
            registry.add_dirichlet(BoundaryRegion.OBSTACLE)
        registry.add_neumann(BoundaryRegion.OUTLET, outlet_pressure)
        return registry

    def build_constraints(self, dofs) -> ConstraintSet:
        """Interpolate every Dirichlet condition at the velocity boundary nodes."""
        mesh = dofs.mesh
        prescribed = {}
        for tag, profile in self.dirichlet.items():
            facets = mesh.facets_with_tag([tag])
            if len(facets) == 0:
                log.warning(f"Dirichlet tag {tag} matches no boundary facet")
                continue
            nodes = dofs.boundary_velocity_nodes(facets)
            values = np.asarray(profile(dofs.node_coords_u[nodes]), dtype=float).reshape(len(nodes), dofs.dim)
            for d in range(dofs.dim):
                for dof, value in zip(dofs.velocity_dof(nodes, d), values[:, d]):
                    prescribed[int(dof)] = value

        for tag in self.neumann:
            if len(mesh.facets_with_tag([tag])) == 0:
                log.warning(f"Neumann tag {tag} matches no boundary facet")

        dof_array = np.fromiter(prescribed.keys(), dtype=np.int64, count=len(prescribed))
        value_array = np.fromiter(prescribed.values(), dtype=float, count=len(prescribed))
        log.debug(f"Built {len(dof_array)} Dirichlet constraints from tags {self.dirichlet_tags}")
        return ConstraintSet(dof_array, value_array)
