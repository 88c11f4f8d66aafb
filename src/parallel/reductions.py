"""Distributed norms and sums over partitioned block vectors."""

import logging

import numpy as np

from .communicator import ReduceOp

log = logging.getLogger(__name__)


def local_sum_of_squares(x, owned) -> float:
    """Sum of squares over the dofs this worker owns."""
    values = np.asarray(x)[owned]
    return float(np.dot(values, values))


def distributed_l2_norm(x, owned, comm) -> float:
    """||x||_2 over the whole distributed vector.

    Each worker squares and sums its owned entries; the partial sums are
    sum-reduced across workers and the square root is taken on every worker.
    Owned sets are disjoint, so each entry is counted exactly once.
    """
    partial = local_sum_of_squares(x, owned)
    log.debug(f"rank {comm.rank}: partial sum of squares {partial:.6e}")
    return float(np.sqrt(comm.allreduce(partial, ReduceOp.SUM)))
