"""Block-preconditioned GMRES for the saddle-point system.

Backends:
- scipy: scipy.sparse.linalg.gmres with SuperLU block preconditioners (default)
- petsc: petsc4py KSP GMRES with PCFIELDSPLIT (optional dependency)
"""

from dataclasses import dataclass
import logging

import numpy as np

from .preconditioners import BlockPreconditioner, build_preconditioner
from .scipy_solver import scipy_solver

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class LinearSolveResult:
    solution: np.ndarray
    iterations: int
    converged: bool
    residual_norm: float


def _backend(name):
    if name == "scipy":
        return scipy_solver
    if name == "petsc":
        from .petsc_solver import petsc_solver

        return petsc_solver
    raise ValueError(f"Unknown linear solver backend '{name}'")


def solve_block_system(system, x0, params, label: str = "GMRES") -> LinearSolveResult:
    """Solve ``system`` from ``x0`` with the preconditioner and budget in ``params``.

    A solve that exhausts its iteration budget is not an error: a warning is
    logged and the approximate solution is returned with the iterations used.
    """
    x, iterations, converged = _backend(params.backend)(system, x0, params)
    residual = float(np.linalg.norm(system.residual(x)))

    if converged:
        log.info(f"{label}: converged in {iterations} iterations ({params.preconditioner}), residual={residual:.3e}")
    else:
        log.warning(
            f"{label}: did not converge after {iterations} of {params.max_iterations} iterations "
            f"({params.preconditioner}), residual={residual:.3e}; continuing with approximate solution"
        )

    return LinearSolveResult(solution=x, iterations=iterations, converged=converged, residual_norm=residual)


__all__ = [
    "BlockPreconditioner",
    "LinearSolveResult",
    "build_preconditioner",
    "scipy_solver",
    "solve_block_system",
]
