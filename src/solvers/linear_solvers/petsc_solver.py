"""PETSc-based block system solver: GMRES with a fieldsplit Schur preconditioner."""

import logging

import numpy as np
from petsc4py import PETSc

log = logging.getLogger(__name__)

_SCHUR_FACT = {
    "triangular_lower": "LOWER",
    "triangular_upper": "UPPER",
    "diagonal": "DIAG",
}


def _aij(A_csr):
    A = PETSc.Mat().createAIJ(
        size=A_csr.shape,
        csr=(A_csr.indptr.astype(PETSc.IntType), A_csr.indices.astype(PETSc.IntType), A_csr.data),
        comm=PETSc.COMM_SELF,
    )
    A.assemble()
    return A


def petsc_solver(system, x0, params):
    """Solve a BlockLinearSystem with PETSc KSP GMRES.

    The finalized system is replicated on every worker, so each worker solves
    it on ``PETSc.COMM_SELF``. GMRES restarts only after ``restart``
    iterations (``max_iterations`` when restart is None); PETSc allocates
    Krylov vectors on demand.

    The block preconditioners map onto PCFIELDSPLIT with a Schur
    factorization: the momentum split is solved with LU, and the Schur split
    with LU of the user-supplied approximation -M_p.

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
        KSP iterations consumed.
    converged : bool
        Whether KSP reported a positive converged reason.
    """
    n = system.shape[0]
    A = _aij(system.matrix)
    b = PETSc.Vec().createWithArray(np.array(system.rhs, dtype=PETSc.ScalarType), comm=PETSc.COMM_SELF)
    x = PETSc.Vec().createWithArray(np.array(x0, dtype=PETSc.ScalarType), comm=PETSc.COMM_SELF)

    ksp = PETSc.KSP().create(comm=PETSc.COMM_SELF)
    ksp.setOperators(A)
    ksp.setType("gmres")
    ksp.setGMRESRestart(int(params.restart or params.max_iterations))
    ksp.setTolerances(rtol=float(params.rtol), atol=float(params.atol), max_it=int(params.max_iterations))
    ksp.setInitialGuessNonzero(True)
    ksp.setNormType(PETSc.KSP.NormType.UNPRECONDITIONED)
    ksp.setPCSide(PETSc.PC.Side.RIGHT)
    ksp.setFromOptions()

    pc = ksp.getPC()
    extra = []
    if params.preconditioner == "identity":
        pc.setType("none")
    else:
        is_u = PETSc.IS().createGeneral(np.arange(system.n_u, dtype=PETSc.IntType), comm=PETSc.COMM_SELF)
        is_p = PETSc.IS().createGeneral(np.arange(system.n_u, n, dtype=PETSc.IntType), comm=PETSc.COMM_SELF)
        S_hat = _aij((-system.pressure_mass_block()).tocsr())
        extra = [is_u, is_p, S_hat]

        pc.setType("fieldsplit")
        pc.setFieldSplitIS(("u", is_u), ("p", is_p))
        pc.setFieldSplitType(PETSc.PC.CompositeType.SCHUR)
        pc.setFieldSplitSchurFactType(getattr(PETSc.PC.FieldSplitSchurFactType, _SCHUR_FACT[params.preconditioner]))
        pc.setFieldSplitSchurPreType(PETSc.PC.FieldSplitSchurPreType.USER, S_hat)
        ksp.setUp()
        for sub in pc.getFieldSplitSubKSP():
            sub.setType("preonly")
            sub.getPC().setType("lu")

    ksp.solve(b, x)

    iterations = ksp.getIterationNumber()
    reason = ksp.getConvergedReason()
    solution = x.getArray().copy()

    for obj in [A, b, x, ksp] + extra:
        obj.destroy()

    return solution, int(iterations), reason > 0
