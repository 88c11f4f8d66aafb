"""Initial Stokes solve (no convective term)."""

from dataclasses import replace
import logging

import numpy as np

from fem.assembly import Linearization
from fem.boundary_conditions import ConstraintMode

from .linear_solvers import LinearSolveResult, solve_block_system

log = logging.getLogger(__name__)


def solve_stokes(
    assembler,
    partition,
    constraints,
    params,
    comm=None,
    mode=ConstraintMode.ELIMINATE,
    x0=None,
) -> LinearSolveResult:
    """Assemble and solve the Stokes system.

    The returned solution satisfies the Dirichlet constraints exactly.
    Collective: every worker calls it and receives the same solution.

    Parameters
    ----------
    assembler : WeakFormAssembler
    partition : DofPartition
    constraints : ConstraintSet
    params : LinearSolverParameters
        Typically a block-triangular preconditioner with a relative tolerance.
    comm : Communicator, optional
    mode : ConstraintMode
        How the constraints enter the system.
    x0 : np.ndarray, optional
        Initial guess (zero by default).
    """
    system = assembler.assemble(Linearization.stokes(), partition, constraints, comm, mode)
    if x0 is None:
        x0 = np.zeros(system.shape[0])
    x0 = constraints.distribute(x0) if ConstraintMode(mode) is ConstraintMode.ELIMINATE else constraints.set_zero(x0)

    result = solve_block_system(system, x0, params, label="Stokes GMRES")
    return replace(result, solution=constraints.distribute(result.solution))
