"""Worker communication for domain-decomposed runs."""

from .communicator import (
    Communicator,
    MPICommunicator,
    ReduceOp,
    SerialCommunicator,
    combine,
    get_communicator,
)
from .reductions import distributed_l2_norm, local_sum_of_squares

__all__ = [
    "Communicator",
    "SerialCommunicator",
    "MPICommunicator",
    "ReduceOp",
    "combine",
    "get_communicator",
    "distributed_l2_norm",
    "local_sum_of_squares",
]
