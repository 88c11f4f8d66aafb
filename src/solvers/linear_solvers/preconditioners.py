"""Block preconditioners for the saddle-point system [[F, B^T], [B, 0]].

The Schur complement S = -B F^-1 B^T is approximated by S_hat = -M_p, the
negated pressure mass scaled by 1/nu. The block-diagonal variant uses +M_p
instead, so the preconditioned spectrum stays real. The momentum block F
and S_hat are factorized once with SuperLU and reused for every application.

- triangular_lower: y_u = F^-1 r_u,              y_p = S_hat^-1 (r_p - B y_u)
- triangular_upper: y_p = S_hat^-1 r_p,          y_u = F^-1 (r_u - B^T y_p)
- diagonal:         y_u = F^-1 r_u,              y_p = S_hat^-1 r_p
- identity:         no preconditioning
"""

import logging

import numpy as np
from scipy.sparse.linalg import LinearOperator, splu

log = logging.getLogger(__name__)


class BlockPreconditioner:
    """Block preconditioner of a BlockLinearSystem, usable as a scipy LinearOperator."""

    variants = ("diagonal", "triangular_lower", "triangular_upper")

    def __init__(self, system, variant: str = "triangular_lower"):
        if variant not in self.variants:
            raise ValueError(f"Unknown block preconditioner '{variant}', expected one of {self.variants}")
        self.variant = variant
        self.n_u = system.n_u
        self.n_p = system.n_p

        self.F = system.block(0, 0).tocsc()
        self.B = system.block(1, 0).tocsr()
        self.Bt = system.block(0, 1).tocsr()
        sign = 1.0 if variant == "diagonal" else -1.0
        self.S_hat = (sign * system.pressure_mass_block()).tocsc()

        self._F_lu = splu(self.F)
        self._S_lu = splu(self.S_hat)
        log.debug(f"Factorized momentum block ({self.n_u} dofs) and Schur approximation ({self.n_p} dofs)")

    def apply(self, r) -> np.ndarray:
        r = np.asarray(r, dtype=float).ravel()
        r_u, r_p = r[: self.n_u], r[self.n_u :]

        if self.variant == "triangular_upper":
            y_p = self._S_lu.solve(r_p)
            y_u = self._F_lu.solve(r_u - self.Bt @ y_p)
        elif self.variant == "triangular_lower":
            y_u = self._F_lu.solve(r_u)
            y_p = self._S_lu.solve(r_p - self.B @ y_u)
        else:
            y_u = self._F_lu.solve(r_u)
            y_p = self._S_lu.solve(r_p)

        return np.concatenate([y_u, y_p])

    def as_linear_operator(self) -> LinearOperator:
        n = self.n_u + self.n_p
        return LinearOperator((n, n), matvec=self.apply, dtype=float)


def build_preconditioner(system, variant: str):
    """scipy LinearOperator for ``variant``, or None for ``identity``."""
    if variant == "identity":
        return None
    return BlockPreconditioner(system, variant).as_linear_operator()
