"""Tests for block-preconditioned GMRES."""

import numpy as np
import pytest
import scipy.sparse as sp
from scipy.sparse.linalg import spsolve

from fem import Linearization
from solvers.datastructures import LinearSolverParameters, picard_solver_defaults, stokes_solver_defaults
from solvers.linear_solvers import BlockPreconditioner, build_preconditioner, solve_block_system
from solvers.linear_solvers.scipy_solver import scipy_solver


@pytest.fixture
def stokes_system(poiseuille_outlet):
    problem = poiseuille_outlet
    return problem.assembler.assemble(Linearization.stokes(), problem.partition(), problem.constraints)


@pytest.fixture
def picard_system(poiseuille_outlet):
    problem = poiseuille_outlet
    return problem.assembler.assemble(
        Linearization.picard(problem.exact), problem.partition(), problem.constraints, mode="distribute"
    )


def direct(system):
    return spsolve(sp.csc_matrix(system.matrix), system.rhs)


class TestBlockPreconditioner:
    """Block triangular and diagonal preconditioners."""

    def test_identity_is_none(self, stokes_system):
        assert build_preconditioner(stokes_system, "identity") is None

    def test_unknown_variant(self, stokes_system):
        with pytest.raises(ValueError):
            BlockPreconditioner(stokes_system, "jacobi")

    def test_lower_solves_block_triangle(self, stokes_system, rng):
        """triangular_lower inverts [[F, 0], [B, S_hat]]."""
        P = BlockPreconditioner(stokes_system, "triangular_lower")
        r = rng.standard_normal(stokes_system.shape[0])
        y = P.apply(r)
        n_u = stokes_system.n_u
        np.testing.assert_allclose(P.F @ y[:n_u], r[:n_u], atol=1e-10)
        np.testing.assert_allclose(P.B @ y[:n_u] + P.S_hat @ y[n_u:], r[n_u:], atol=1e-10)

    def test_upper_solves_block_triangle(self, stokes_system, rng):
        """triangular_upper inverts [[F, B^T], [0, S_hat]]."""
        P = BlockPreconditioner(stokes_system, "triangular_upper")
        r = rng.standard_normal(stokes_system.shape[0])
        y = P.apply(r)
        n_u = stokes_system.n_u
        np.testing.assert_allclose(P.F @ y[:n_u] + P.Bt @ y[n_u:], r[:n_u], atol=1e-10)
        np.testing.assert_allclose(P.S_hat @ y[n_u:], r[n_u:], atol=1e-10)

    def test_schur_approximation_is_negative_mass(self, stokes_system):
        P = BlockPreconditioner(stokes_system, "triangular_lower")
        np.testing.assert_allclose(P.S_hat.toarray(), -stokes_system.pressure_mass_block().toarray())

    def test_diagonal_uses_positive_mass(self, stokes_system):
        P = BlockPreconditioner(stokes_system, "diagonal")
        np.testing.assert_allclose(P.S_hat.toarray(), stokes_system.pressure_mass_block().toarray())


class TestGMRES:
    """Iteration budget and convergence."""

    def test_cap_of_one(self, stokes_system):
        """A budget of one iteration reports exactly one iteration and does not raise."""
        params = LinearSolverParameters(preconditioner="identity", max_iterations=1, rtol=1e-14)
        result = solve_block_system(stokes_system, np.zeros(stokes_system.shape[0]), params)
        assert result.iterations == 1
        assert not result.converged
        assert result.solution.shape == (stokes_system.shape[0],)

    @pytest.mark.parametrize("restart", [None, 3, 7])
    def test_budget_never_exceeded(self, stokes_system, restart):
        params = LinearSolverParameters(preconditioner="identity", max_iterations=10, rtol=1e-14, restart=restart)
        _, iterations, converged = scipy_solver(stokes_system, np.zeros(stokes_system.shape[0]), params)
        assert iterations == 10
        assert not converged

    @pytest.mark.parametrize("variant", ["triangular_lower", "triangular_upper", "diagonal"])
    def test_preconditioned_converges(self, stokes_system, variant):
        params = LinearSolverParameters(preconditioner=variant, max_iterations=500, rtol=1e-9)
        result = solve_block_system(stokes_system, np.zeros(stokes_system.shape[0]), params)
        assert result.converged
        assert result.iterations < 500
        residual = np.linalg.norm(stokes_system.residual(result.solution))
        assert residual <= 1e-9 * np.linalg.norm(stokes_system.rhs)
        np.testing.assert_allclose(result.solution, direct(stokes_system), atol=1e-6)

    def test_stagnation_ends_solve(self, stokes_system):
        """Once the residual sits at round-off, the remaining budget is not spent."""
        params = LinearSolverParameters(
            preconditioner="triangular_lower", max_iterations=5000, rtol=0.0, atol=0.0, restart=50
        )
        result = solve_block_system(stokes_system, np.zeros(stokes_system.shape[0]), params)
        assert not result.converged
        assert 0 < result.iterations < 5000
        np.testing.assert_allclose(result.solution, direct(stokes_system), atol=1e-7)

    def test_triangular_beats_identity(self, stokes_system):
        """Block triangular preconditioning needs fewer iterations than none."""
        x0 = np.zeros(stokes_system.shape[0])
        counts = {}
        for variant in ("identity", "triangular_lower"):
            params = LinearSolverParameters(preconditioner=variant, max_iterations=2000, rtol=1e-8)
            counts[variant] = solve_block_system(stokes_system, x0, params).iterations
        assert counts["triangular_lower"] < counts["identity"]

    def test_converged_guess_takes_no_iterations(self, picard_system, poiseuille_outlet):
        """An initial guess already within tolerance is returned unchanged."""
        guess = poiseuille_outlet.constraints.set_zero(poiseuille_outlet.exact)
        result = solve_block_system(picard_system, guess, picard_solver_defaults())
        assert result.iterations == 0
        assert result.converged
        np.testing.assert_array_equal(result.solution, guess)

    def test_warning_on_budget_exhaustion(self, stokes_system, caplog):
        params = LinearSolverParameters(max_iterations=2, rtol=1e-14)
        solve_block_system(stokes_system, np.zeros(stokes_system.shape[0]), params, label="capped")
        assert "capped: did not converge" in caplog.text

    def test_unknown_backend(self, stokes_system):
        params = LinearSolverParameters(backend="umfpack")
        with pytest.raises(ValueError):
            solve_block_system(stokes_system, np.zeros(stokes_system.shape[0]), params)


class TestDefaults:
    """Default linear solver settings."""

    def test_stokes_defaults(self):
        p = stokes_solver_defaults()
        assert (p.preconditioner, p.max_iterations, p.rtol) == ("triangular_lower", 2000, 1e-6)

    def test_picard_defaults(self):
        p = picard_solver_defaults()
        assert (p.preconditioner, p.max_iterations, p.rtol, p.atol) == ("identity", 2_000_000, 0.0, 1e-4)


class TestPetscBackend:
    """PETSc KSP backend (optional dependency)."""

    @pytest.mark.parametrize("variant", ["identity", "triangular_lower", "triangular_upper"])
    def test_matches_direct_solve(self, stokes_system, variant):
        pytest.importorskip("petsc4py")
        params = LinearSolverParameters(preconditioner=variant, max_iterations=2000, rtol=1e-10, backend="petsc")
        result = solve_block_system(stokes_system, np.zeros(stokes_system.shape[0]), params)
        assert result.converged
        np.testing.assert_allclose(result.solution, direct(stokes_system), atol=1e-6)

    def test_cap_of_one(self, stokes_system):
        pytest.importorskip("petsc4py")
        params = LinearSolverParameters(max_iterations=1, rtol=1e-14, backend="petsc")
        result = solve_block_system(stokes_system, np.zeros(stokes_system.shape[0]), params)
        assert result.iterations == 1
        assert not result.converged
