"""
Worker communicators.

The solver code talks to its peers only through the small interface below:
rank/size, allgather/gather, allreduce/reduce and barrier. Reductions combine
contributions in rank order, so every worker receives bit-identical results
(the redundant linear solves rely on that).

Implementations:
- SerialCommunicator: a single worker, all collectives are local.
- MPICommunicator: mpi4py, one worker per MPI rank.
"""

from abc import ABC, abstractmethod
from enum import Enum
from functools import reduce
import operator

import numpy as np


class ReduceOp(str, Enum):
    SUM = "sum"
    MAX = "max"
    MIN = "min"


def combine(values, op=ReduceOp.SUM):
    """Fold per-rank contributions (in rank order) with ``op``.

    Works for Python scalars, numpy arrays and (for SUM) scipy sparse matrices.
    """
    op = ReduceOp(op)
    values = list(values)
    if not values:
        raise ValueError("Nothing to reduce")
    if op is ReduceOp.SUM:
        return reduce(operator.add, values)
    if op is ReduceOp.MAX:
        return reduce(np.maximum, values)
    return reduce(np.minimum, values)


class Communicator(ABC):
    """Collective operations among a fixed group of workers."""

    @property
    @abstractmethod
    def rank(self) -> int: ...

    @property
    @abstractmethod
    def size(self) -> int: ...

    @abstractmethod
    def allgather(self, value) -> list:
        """List of every rank's ``value``, in rank order, on every rank."""

    @abstractmethod
    def gather(self, value, root: int = 0):
        """List of every rank's ``value`` on ``root``; None elsewhere."""

    @abstractmethod
    def barrier(self) -> None: ...

    @property
    def is_root(self) -> bool:
        return self.rank == 0

    def allreduce(self, value, op=ReduceOp.SUM):
        return combine(self.allgather(value), op)

    def reduce(self, value, op=ReduceOp.SUM, root: int = 0):
        values = self.gather(value, root)
        return combine(values, op) if self.rank == root else None


class SerialCommunicator(Communicator):
    rank = 0
    size = 1

    def allgather(self, value):
        return [value]

    def gather(self, value, root=0):
        return [value]

    def barrier(self):
        pass

    def __repr__(self):
        return "SerialCommunicator()"


class MPICommunicator(Communicator):
    """mpi4py-backed communicator (defaults to COMM_WORLD)."""

    def __init__(self, comm=None):
        from mpi4py import MPI

        self.comm = comm if comm is not None else MPI.COMM_WORLD

    @property
    def rank(self):
        return self.comm.Get_rank()

    @property
    def size(self):
        return self.comm.Get_size()

    def allgather(self, value):
        return self.comm.allgather(value)

    def gather(self, value, root=0):
        return self.comm.gather(value, root=root)

    def barrier(self):
        self.comm.Barrier()

    def __repr__(self):
        return f"MPICommunicator(rank={self.rank}, size={self.size})"


def get_communicator(kind: str = "serial") -> Communicator:
    """Communicator by name: ``serial`` or ``mpi``."""
    if kind == "serial":
        return SerialCommunicator()
    if kind == "mpi":
        return MPICommunicator()
    raise ValueError(f"Unknown communicator '{kind}' (expected 'serial' or 'mpi')")
