"""Boundary-integral and point diagnostics of a converged flow field."""

from .forces import ForceCoefficients, compute_forces, local_forces, local_reaction_forces
from .pressure_probe import PointSample, evaluate_pressure, pressure_difference, sample_pressure
from .sink import append_record, read_records
from .integrator import PostProcessingResult, run_postprocessing

__all__ = [
    "ForceCoefficients",
    "compute_forces",
    "local_forces",
    "local_reaction_forces",
    "PointSample",
    "evaluate_pressure",
    "sample_pressure",
    "pressure_difference",
    "append_record",
    "read_records",
    "PostProcessingResult",
    "run_postprocessing",
]
