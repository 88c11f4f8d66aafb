"""Data structures for solver configuration and results.

This module defines the configuration and result data structures
for the steady Navier-Stokes (Stokes -> Picard) solver.

Structure:
- LinearSolverParameters: Krylov settings of one linear solve
- Parameters: Input configuration (logged to MLflow at start)
- Metrics: Output results (logged to MLflow at end)
- Fields: Solution at mesh vertices
- TimeSeries: Picard convergence history
"""

from dataclasses import dataclass, asdict, field, fields
from typing import List, Optional, Tuple

import numpy as np
import pandas as pd

from .exceptions import ConfigurationError

PRECONDITIONERS = ("identity", "diagonal", "triangular_lower", "triangular_upper")
BACKENDS = ("scipy", "petsc")
CONVECTIVE_FORMS = ("newton", "oseen")
CONSTRAINT_MODES = ("eliminate", "distribute")
MISSING_POINT_POLICIES = ("zero", "raise")
SHARED_POINT_POLICIES = ("lowest_cell", "raise")
FORCE_METHODS = ("surface", "volume")


# ========================================================
# Linear Solver Settings
# ========================================================


@dataclass
class LinearSolverParameters:
    """Settings of one GMRES solve.

    Stops when ||b - A x|| <= max(atol, rtol * ||b||) or after max_iterations
    inner iterations. restart=None keeps the whole Krylov basis (no restarts).
    """

    preconditioner: str = "identity"
    max_iterations: int = 1000
    rtol: float = 1e-6
    atol: float = 0.0
    restart: Optional[int] = None
    backend: str = "scipy"

    def validate(self, name: str = "linear solver"):
        if self.preconditioner not in PRECONDITIONERS:
            raise ConfigurationError(
                f"{name}: unknown preconditioner '{self.preconditioner}', expected one of {PRECONDITIONERS}"
            )
        if self.backend not in BACKENDS:
            raise ConfigurationError(f"{name}: unknown backend '{self.backend}', expected one of {BACKENDS}")
        if self.max_iterations < 1:
            raise ConfigurationError(f"{name}: max_iterations must be >= 1, got {self.max_iterations}")
        if self.restart is not None and self.restart < 1:
            raise ConfigurationError(f"{name}: restart must be >= 1 or None, got {self.restart}")
        if self.rtol < 0 or self.atol < 0:
            raise ConfigurationError(f"{name}: tolerances must be non-negative")
        return self


def stokes_solver_defaults():
    return LinearSolverParameters(preconditioner="triangular_lower", max_iterations=2000, rtol=1e-6, atol=0.0)


def picard_solver_defaults():
    return LinearSolverParameters(preconditioner="identity", max_iterations=2_000_000, rtol=0.0, atol=1e-4, restart=500)


# ========================================================
# Parameters (Input Configuration)
# ========================================================


@dataclass
class Parameters:
    """Solver parameters - input configuration.

    Reference scales follow the DFG benchmark: mean inflow velocity
    U = 2/3 * inlet_peak_velocity and obstacle diameter D, so that
    nu = U D / Re and the force coefficients are 2 F / (rho U^2 D).
    """

    Re: float = 20.0
    degree_velocity: int = 2
    degree_pressure: int = 1
    max_iterations: int = 10
    tolerance: float = 1e-7

    # Flow configuration
    inlet_peak_velocity: float = 0.3
    channel_height: float = 0.41
    obstacle_diameter: float = 0.1
    density: float = 1.0
    outlet_pressure: float = 0.0

    # Linear solves
    stokes_solver: LinearSolverParameters = field(default_factory=stokes_solver_defaults)
    picard_solver: LinearSolverParameters = field(default_factory=picard_solver_defaults)
    convective_form: str = "newton"
    stokes_constraint_mode: str = "eliminate"
    picard_constraint_mode: str = "distribute"

    # Post-processing
    force_boundary: int = 3
    force_method: str = "surface"
    probe_points: Tuple[Tuple[float, float], ...] = ((0.15, 0.20), (0.25, 0.20))
    on_missing_point: str = "zero"
    on_shared_point: str = "lowest_cell"
    method: str = "FEM-Picard"

    def __post_init__(self):
        # Hydra hands nested configs over as plain dicts
        if isinstance(self.stokes_solver, dict):
            self.stokes_solver = LinearSolverParameters(**{**asdict(stokes_solver_defaults()), **self.stokes_solver})
        if isinstance(self.picard_solver, dict):
            self.picard_solver = LinearSolverParameters(**{**asdict(picard_solver_defaults()), **self.picard_solver})
        self.probe_points = tuple(tuple(float(c) for c in p) for p in self.probe_points)

    @property
    def mean_velocity(self) -> float:
        return 2.0 * self.inlet_peak_velocity / 3.0

    @property
    def viscosity(self) -> float:
        return self.mean_velocity * self.obstacle_diameter / self.Re

    @property
    def force_scale(self) -> float:
        return 2.0 / (self.density * self.mean_velocity**2 * self.obstacle_diameter)

    def validate(self):
        """Raise ConfigurationError on any invalid setting."""
        if self.Re <= 0:
            raise ConfigurationError(f"Re must be positive, got {self.Re}")
        if self.degree_velocity < 1 or self.degree_pressure < 1:
            raise ConfigurationError(
                f"degrees must be >= 1, got velocity={self.degree_velocity}, pressure={self.degree_pressure}"
            )
        if self.degree_velocity <= self.degree_pressure:
            raise ConfigurationError(
                "velocity degree must exceed pressure degree for a stable pair "
                f"(got P{self.degree_velocity}/P{self.degree_pressure})"
            )
        if self.max_iterations < 1:
            raise ConfigurationError(f"max_iterations must be >= 1, got {self.max_iterations}")
        if self.tolerance <= 0:
            raise ConfigurationError(f"tolerance must be positive, got {self.tolerance}")
        if self.convective_form not in CONVECTIVE_FORMS:
            raise ConfigurationError(f"unknown convective_form '{self.convective_form}'")
        for mode in (self.stokes_constraint_mode, self.picard_constraint_mode):
            if mode not in CONSTRAINT_MODES:
                raise ConfigurationError(f"unknown constraint mode '{mode}', expected one of {CONSTRAINT_MODES}")
        if self.on_missing_point not in MISSING_POINT_POLICIES:
            raise ConfigurationError(
                f"unknown on_missing_point '{self.on_missing_point}', expected one of {MISSING_POINT_POLICIES}"
            )
        if self.force_method not in FORCE_METHODS:
            raise ConfigurationError(f"unknown force_method '{self.force_method}', expected one of {FORCE_METHODS}")
        if self.on_shared_point not in SHARED_POINT_POLICIES:
            raise ConfigurationError(
                f"unknown on_shared_point '{self.on_shared_point}', expected one of {SHARED_POINT_POLICIES}"
            )
        if len(self.probe_points) != 2:
            raise ConfigurationError(f"expected two probe points, got {len(self.probe_points)}")
        self.stokes_solver.validate("stokes_solver")
        self.picard_solver.validate("picard_solver")
        return self

    def to_dict(self) -> dict:
        """Flat dict (nested solver settings prefixed)."""
        flat = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, LinearSolverParameters):
                flat.update({f"{f.name}.{k}": v for k, v in asdict(value).items()})
            elif f.name == "probe_points":
                flat[f.name] = str([list(p) for p in value])
            else:
                flat[f.name] = value
        flat["viscosity"] = self.viscosity
        return flat

    def to_dataframe(self):
        return pd.DataFrame([self.to_mlflow()])

    def to_mlflow(self) -> dict:
        return {k: ("None" if v is None else v) for k, v in self.to_dict().items()}


# ========================================================
# Metrics (Output Results)
# ========================================================


@dataclass
class Metrics:
    """Solver metrics - output results computed during/after solving."""

    iterations: int = 0
    converged: bool = False
    final_update_norm: float = float("inf")
    wall_time_seconds: float = 0.0
    stokes_linear_iterations: int = 0
    picard_linear_iterations: int = 0
    n_dofs: int = 0
    n_cells: int = 0
    drag: float = float("nan")
    lift: float = float("nan")
    pressure_difference: float = float("nan")

    def to_dataframe(self):
        return pd.DataFrame([asdict(self)])

    def to_mlflow(self) -> dict:
        """Finite numeric metrics (MLflow rejects NaN/inf and bools)."""
        out = {}
        for k, v in asdict(self).items():
            v = float(v)
            if np.isfinite(v):
                out[k] = v
        return out


# ========================================================
# Fields (Spatial Solution Data)
# ========================================================


@dataclass
class Fields:
    """Solution (u, v, p) at mesh vertices (x, y)."""

    u: np.ndarray
    v: np.ndarray
    p: np.ndarray
    x: np.ndarray
    y: np.ndarray

    def to_dataframe(self) -> pd.DataFrame:
        """Convert to DataFrame with one row per vertex."""
        return pd.DataFrame(asdict(self))


# ========================================================
# Time Series (Convergence History)
# ========================================================


@dataclass
class TimeSeries:
    """Picard convergence history (one value per iteration)."""

    update_norm: List[float]
    linear_iterations: List[int]

    def to_dataframe(self) -> pd.DataFrame:
        """Convert to DataFrame with one row per iteration."""
        return pd.DataFrame(asdict(self))

    def to_mlflow_batch(self) -> list:
        """MLflow Metric entities, one per iteration and series."""
        import time

        from mlflow.entities import Metric

        timestamp = int(time.time() * 1000)
        batch = []
        for step, (norm, its) in enumerate(zip(self.update_norm, self.linear_iterations), start=1):
            batch.append(Metric("update_norm", float(norm), timestamp, step))
            batch.append(Metric("picard_linear_iterations", float(its), timestamp, step))
        return batch
