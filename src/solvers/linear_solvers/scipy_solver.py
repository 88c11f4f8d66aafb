"""Scipy-based block system solver using GMRES."""

import logging

import numpy as np
from scipy.sparse.linalg import gmres

from .preconditioners import build_preconditioner

log = logging.getLogger(__name__)


class _IterationCounter:
    """GMRES callback (``pr_norm`` type) - called once per inner iteration."""

    def __init__(self):
        self.count = 0
        self.last_residual = None

    def __call__(self, pr_norm):
        self.count += 1
        self.last_residual = pr_norm


def scipy_solver(system, x0, params):
    """Solve a BlockLinearSystem with scipy GMRES.

    GMRES runs in cycles of at most ``restart`` inner iterations (all of
    ``max_iterations`` when restart is None, i.e. no restarts), stopping as
    soon as the budget is spent, so the iteration count never exceeds
    ``max_iterations``. A cycle that does not reduce the true residual
    ends the solve early.

    scipy allocates the whole Krylov basis of a cycle up front:
    (restart + 1) vectors of the system size. Set ``restart`` when
    ``max_iterations`` is large.

    Parameters
    ----------
    system : BlockLinearSystem
        Finalized, constrained system.
    x0 : np.ndarray
        Initial guess.
    params : LinearSolverParameters
        Preconditioner, tolerances and budget.

    Returns
    -------
    x : np.ndarray
        Approximate solution (returned even if GMRES did not converge).
    iterations : int
        Inner GMRES iterations consumed.
    converged : bool
        Whether the stopping criterion was met.
    """
    A = system.matrix
    b = system.rhs
    n = A.shape[0]
    M = build_preconditioner(system, params.preconditioner)

    max_it = int(params.max_iterations)
    cycle_cap = min(params.restart or max_it, n)
    x = np.array(x0, dtype=float, copy=True)
    residual = np.linalg.norm(b - A @ x)
    used = 0
    info = 1

    while used < max_it:
        cycle = min(cycle_cap, max_it - used)
        counter = _IterationCounter()
        x, info = gmres(
            A,
            b,
            x0=x,
            rtol=params.rtol,
            atol=params.atol,
            restart=cycle,
            maxiter=1,
            M=M,
            callback=counter,
            callback_type="pr_norm",
        )
        used += counter.count
        if info < 0:
            raise RuntimeError(f"GMRES failed (info={info})")
        if info == 0 or counter.count == 0:
            break

        # Stagnation: a full cycle without reducing the true residual
        previous, residual = residual, np.linalg.norm(b - A @ x)
        if residual >= previous:
            log.debug(f"GMRES stagnated after {used} iterations (residual {residual:.3e})")
            break

    return x, used, info == 0
