"""Tests for worker communicators and distributed reductions."""

import numpy as np
import pytest
import scipy.sparse as sp

from conftest import run_on_workers
from parallel import ReduceOp, SerialCommunicator, combine, distributed_l2_norm, get_communicator
from parallel.reductions import local_sum_of_squares


class TestCombine:
    """Rank-ordered folding of contributions."""

    def test_scalars(self):
        assert combine([1, 2, 3]) == 6
        assert combine([4, 2, 7], ReduceOp.MIN) == 2
        assert combine([4, 2, 7], "max") == 7

    def test_arrays_and_sparse(self):
        a = combine([np.ones(3), 2 * np.ones(3)])
        np.testing.assert_array_equal(a, [3.0, 3.0, 3.0])
        m = combine([sp.eye(2, format="csr"), sp.eye(2, format="csr")])
        np.testing.assert_array_equal(m.toarray(), 2 * np.eye(2))

    def test_empty(self):
        with pytest.raises(ValueError):
            combine([])


class TestSerialCommunicator:
    """Single-worker collectives."""

    def test_collectives(self):
        comm = SerialCommunicator()
        assert (comm.rank, comm.size, comm.is_root) == (0, 1, True)
        assert comm.allgather(5) == [5]
        assert comm.allreduce(2.5) == 2.5
        assert comm.reduce(3, ReduceOp.MAX) == 3
        comm.barrier()

    def test_factory(self):
        assert isinstance(get_communicator("serial"), SerialCommunicator)
        with pytest.raises(ValueError):
            get_communicator("tcp")

    def test_mpi_factory(self):
        pytest.importorskip("mpi4py")
        comm = get_communicator("mpi")
        assert comm.size >= 1


class TestThreadWorkers:
    """Collectives across several in-process workers."""

    def test_allreduce_identical_on_all_ranks(self):
        values = run_on_workers(4, lambda comm: comm.allreduce(0.1 * (comm.rank + 1)))
        assert len(set(values)) == 1
        assert values[0] == pytest.approx(1.0)

    def test_reduce_only_on_root(self):
        values = run_on_workers(3, lambda comm: comm.reduce(np.full(2, comm.rank), ReduceOp.SUM))
        np.testing.assert_array_equal(values[0], [3, 3])
        assert values[1] is None and values[2] is None

    def test_error_propagates(self):
        def fail_on_one(comm):
            if comm.rank == 1:
                raise RuntimeError("boom")
            return comm.allreduce(1)

        with pytest.raises(RuntimeError, match="boom"):
            run_on_workers(3, fail_on_one)


class TestDistributedNorm:
    """Owned-entry L2 norm."""

    def test_local_sum(self):
        assert local_sum_of_squares(np.array([3.0, 4.0, 12.0]), [0, 1]) == 25.0

    @pytest.mark.parametrize("n_workers", [1, 2, 3])
    def test_matches_global_norm(self, poiseuille, rng, n_workers):
        """Each entry is counted once regardless of the worker count."""
        x = rng.standard_normal(poiseuille.dofs.n_dofs)
        partition = poiseuille.partition(n_workers)
        norms = run_on_workers(n_workers, lambda comm: distributed_l2_norm(x, partition.owned(comm.rank), comm))
        for norm in norms:
            assert norm == pytest.approx(np.linalg.norm(x), rel=1e-13)
        assert len(set(norms)) == 1
