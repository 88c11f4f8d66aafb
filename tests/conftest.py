"""Pytest configuration and fixtures for the steady Navier-Stokes tests."""

import sys
import threading
from pathlib import Path

import numpy as np
import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from fem import BoundaryConditionRegistry, DofHandler, InletProfile, WeakFormAssembler  # noqa: E402
from meshing import partition_cells, rectangle_mesh  # noqa: E402
from parallel.communicator import Communicator  # noqa: E402


# =============================================================================
# Multi-worker runs inside one process
# =============================================================================


class _ThreadGroup:
    def __init__(self, size):
        self.size = size
        self.slots = [None] * size
        self.barrier = threading.Barrier(size)


class ThreadCommunicator(Communicator):
    """Communicator whose workers are threads sharing one exchange buffer."""

    def __init__(self, rank, group):
        self._rank = rank
        self.group = group

    @property
    def rank(self):
        return self._rank

    @property
    def size(self):
        return self.group.size

    def allgather(self, value):
        self.group.slots[self._rank] = value
        self.group.barrier.wait()
        values = list(self.group.slots)
        self.group.barrier.wait()
        return values

    def gather(self, value, root=0):
        values = self.allgather(value)
        return values if self._rank == root else None

    def barrier(self):
        self.group.barrier.wait()


def run_on_workers(n_workers, fn):
    """Run ``fn(comm)`` on ``n_workers`` threads; return the per-rank results.

    An exception on any worker breaks the barrier for the others and is
    re-raised here.
    """
    group = _ThreadGroup(n_workers)
    results = [None] * n_workers
    errors = [None] * n_workers

    def work(rank):
        try:
            results[rank] = fn(ThreadCommunicator(rank, group))
        except BaseException as exc:
            errors[rank] = exc
            group.barrier.abort()

    threads = [threading.Thread(target=work, args=(rank,)) for rank in range(n_workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    errors = [e for e in errors if e is not None]
    causes = [e for e in errors if not isinstance(e, threading.BrokenBarrierError)]
    if errors:
        raise (causes or errors)[0]
    return results


# =============================================================================
# Poiseuille channel flow (exact in P2/P1 for Stokes and Navier-Stokes)
# =============================================================================


class PoiseuilleProblem:
    """Channel [0, L] x [0, H], parabolic inflow, pressure p_out at the outlet.

    u = 4 U y (H - y) / H^2, v = 0, p = 8 nu U (L - x) / H^2 + p_out.
    """

    def __init__(self, L=1.0, H=0.5, U=0.3, nu=0.05, p_out=0.0, nx=6, ny=4):
        self.L, self.H, self.U, self.nu, self.p_out = L, H, U, nu, p_out
        self.mesh = rectangle_mesh(Lx=L, Ly=H, nx=nx, ny=ny)
        self.dofs = DofHandler(self.mesh, 2, 1)
        self.inlet = InletProfile(u_max=U, height=H)
        self.boundary_conditions = BoundaryConditionRegistry.channel(
            inlet=self.inlet, outlet_pressure=p_out, obstacle=False
        )
        self.constraints = self.boundary_conditions.build_constraints(self.dofs)
        self.assembler = WeakFormAssembler(self.dofs, nu, self.boundary_conditions)

    def pressure(self, x):
        return 8.0 * self.nu * self.U * (self.L - x[:, 0]) / self.H**2 + self.p_out

    @property
    def exact(self):
        return self.constraints.distribute(self.dofs.interpolate(self.inlet, self.pressure))

    def partition(self, n_workers=1):
        return self.dofs.partition(partition_cells(self.mesh, n_workers), n_workers)


@pytest.fixture
def poiseuille():
    """Coarse Poiseuille channel with zero outlet pressure."""
    return PoiseuilleProblem()


@pytest.fixture
def poiseuille_outlet():
    """Poiseuille channel with a non-zero outlet pressure."""
    return PoiseuilleProblem(p_out=0.25)


@pytest.fixture
def small_rectangle():
    """2 x 2 quads on the unit square (8 triangles)."""
    return rectangle_mesh(Lx=1.0, Ly=1.0, nx=2, ny=2)


@pytest.fixture
def rng():
    return np.random.default_rng(20)
