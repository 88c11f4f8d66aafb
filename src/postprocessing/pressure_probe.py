"""
Point evaluation of the pressure field across workers.

Each worker tries to evaluate the point in the cells it owns and reports a
PointSample with an availability flag, and the flags are summed. With no
holder the missing-point policy applies. Points on an edge or vertex between
workers are held by several of them; by default the lowest-index containing
cell wins (so the result does not depend on the number of workers), a strict
policy raises instead. The claimed value is broadcast by a sum reduction.
"""

from dataclasses import dataclass
import logging

import numpy as np

from fem.geometry import cells_containing
from parallel.communicator import ReduceOp
from solvers.exceptions import PointOwnershipError

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class PointSample:
    value: float
    available: bool
    cell: int = -1


NOT_AVAILABLE = PointSample(value=0.0, available=False)


def evaluate_pressure(dofs, solution, point, cells=None) -> PointSample:
    """Pressure at ``point`` using only ``cells`` (all cells if None)."""
    candidates = cells_containing(dofs.geometry, point, cells)
    if len(candidates) == 0:
        return NOT_AVAILABLE

    cell = int(candidates[0])
    xi = dofs.geometry.to_reference(cell, point)
    psi = dofs.element_p.values(xi[None, :])[0]
    value = float(psi @ np.asarray(solution)[dofs.cell_dofs_p[cell]])
    return PointSample(value=value, available=True, cell=cell)


def sample_pressure(
    dofs, solution, point, partition, comm, on_missing: str = "zero", on_shared: str = "lowest_cell"
) -> PointSample:
    """Collective pressure sample; every worker receives the same PointSample.

    Parameters
    ----------
    on_missing : str
        What to do when no worker holds the point: ``zero`` returns an
        unavailable sample with value 0.0 (and logs a warning), ``raise``
        raises PointOwnershipError.
    on_shared : str
        What to do when several workers hold the point (it lies on an edge or
        vertex between their cells): ``lowest_cell`` lets the lowest-index
        containing cell win, ``raise`` raises PointOwnershipError.
    """
    local = evaluate_pressure(dofs, solution, point, partition.owned_cells(comm.rank))
    holders = int(comm.allreduce(int(local.available), ReduceOp.SUM))

    if holders == 0:
        if on_missing == "raise":
            raise PointOwnershipError(point, 0)
        log.warning(f"Point {tuple(point)} lies in no cell of any worker; using pressure 0.0")
        return NOT_AVAILABLE
    if holders > 1 and on_shared == "raise":
        raise PointOwnershipError(point, holders)

    winner = int(comm.allreduce(local.cell if local.available else dofs.mesh.n_cells, ReduceOp.MIN))
    claim = local.available and local.cell == winner
    value = float(comm.allreduce(local.value if claim else 0.0, ReduceOp.SUM))
    return PointSample(value=value, available=True, cell=winner)


def pressure_difference(
    dofs, solution, points, partition, comm, on_missing: str = "zero", on_shared: str = "lowest_cell"
):
    """p(points[0]) - p(points[1]) and the two samples."""
    first, second = (
        sample_pressure(dofs, solution, pt, partition, comm, on_missing, on_shared) for pt in points
    )
    return first.value - second.value, (first, second)
