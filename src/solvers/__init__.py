"""Steady incompressible Navier-Stokes solver framework.

Solver pipeline:
----------------
SteadyNavierStokesSolver (solvers.navier_stokes)
├── solve_stokes          (initial guess, ELIMINATE constraints)
├── PicardController      (fixed-point loop, DISTRIBUTE constraints)
└── run_postprocessing    (drag, lift, pressure difference)

The pipeline module is imported explicitly as ``solvers.navier_stokes`` since
post-processing depends on ``solvers.exceptions``.
"""

from .datastructures import (
    Parameters,
    Metrics,
    Fields,
    TimeSeries,
    LinearSolverParameters,
)
from .exceptions import ConfigurationError, PointOwnershipError, SteadyNSError
from .linear_solvers import LinearSolveResult, solve_block_system
from .stokes import solve_stokes
from .picard import (
    Converged,
    IterationCapReached,
    IterationState,
    PicardController,
    PicardPhase,
)

__all__ = [
    "Parameters",
    "Metrics",
    "Fields",
    "TimeSeries",
    "LinearSolverParameters",
    "SteadyNSError",
    "ConfigurationError",
    "PointOwnershipError",
    "LinearSolveResult",
    "solve_block_system",
    "solve_stokes",
    "PicardController",
    "PicardPhase",
    "IterationState",
    "Converged",
    "IterationCapReached",
]
