"""Post-processing pass: forces, pressure difference and the output record."""

from dataclasses import dataclass
from typing import Optional, Tuple
import logging

from meshing.mesh_data import BoundaryRegion

from .forces import compute_forces
from .pressure_probe import PointSample, pressure_difference
from .sink import append_record

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class PostProcessingResult:
    drag: float
    lift: float
    pressure_difference: float
    samples: Tuple[PointSample, PointSample]


def run_postprocessing(
    dofs,
    solution,
    partition,
    comm,
    viscosity: float,
    force_scale: float,
    probe_points,
    force_boundary=BoundaryRegion.OBSTACLE,
    on_missing_point: str = "zero",
    on_shared_point: str = "lowest_cell",
    force_method: str = "surface",
    assembler=None,
    record_path=None,
) -> Optional[PostProcessingResult]:
    """Compute drag, lift and p(A) - p(B) for a converged (or terminated) field.

    Collective. The root worker receives the result and, if ``record_path``
    is given, appends exactly one record to it; other workers get None. All
    workers synchronize on a final barrier before returning. ``force_method``
    and ``assembler`` select the force evaluation (see ``compute_forces``).
    """
    forces = compute_forces(
        dofs,
        solution,
        partition,
        comm,
        viscosity,
        force_scale,
        force_boundary,
        method=force_method,
        assembler=assembler,
    )
    dp, samples = pressure_difference(
        dofs, solution, probe_points, partition, comm, on_missing_point, on_shared_point
    )

    result = None
    if comm.is_root:
        result = PostProcessingResult(drag=forces.drag, lift=forces.lift, pressure_difference=dp, samples=samples)
        log.info(f"Drag = {result.drag:.8f}, Lift = {result.lift:.8f}, dp = {result.pressure_difference:.8f}")
        if record_path is not None:
            append_record(record_path, result.drag, result.lift, result.pressure_difference)

    comm.barrier()
    return result
