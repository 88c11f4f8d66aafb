"""2x2 block saddle-point system."""

from dataclasses import dataclass, replace

import numpy as np
import scipy.sparse as sp

from fem.dofhandler import DofPartition


@dataclass(frozen=True)
class BlockLinearSystem:
    """Global system [[A, B^T], [B, 0]] x = b plus the auxiliary pressure mass.

    ``matrix`` and ``pressure_mass`` are full-size CSR matrices indexed by
    ``partition``. The pressure-pressure block of ``matrix`` is structurally
    empty; ``pressure_mass`` is populated in that block only and is used for
    preconditioning, never in residuals.
    """

    matrix: sp.csr_matrix
    rhs: np.ndarray
    pressure_mass: sp.csr_matrix
    partition: DofPartition

    @property
    def n_u(self) -> int:
        return self.partition.n_u

    @property
    def n_p(self) -> int:
        return self.partition.n_p

    @property
    def shape(self):
        return self.matrix.shape

    def _slices(self, i, j):
        blocks = (self.partition.velocity, self.partition.pressure)
        return blocks[i], blocks[j]

    def block(self, i: int, j: int) -> sp.csr_matrix:
        """Block (i, j) of the system matrix; 0 = velocity, 1 = pressure."""
        rows, cols = self._slices(i, j)
        return self.matrix[rows, cols]

    def rhs_block(self, i: int) -> np.ndarray:
        return self.rhs[self._slices(i, i)[0]]

    def pressure_mass_block(self) -> sp.csr_matrix:
        p = self.partition.pressure
        return self.pressure_mass[p, p]

    def residual(self, x) -> np.ndarray:
        return self.rhs - self.matrix @ x

    def with_constraints(self, constraints, mode) -> "BlockLinearSystem":
        matrix, rhs = constraints.apply(self.matrix, self.rhs, mode)
        return replace(self, matrix=matrix, rhs=rhs)
