"""Steady Navier-Stokes pipeline: Stokes initial solve, Picard iteration, post-processing."""

from pathlib import Path
import logging
import time

import numpy as np

from fem.assembly import WeakFormAssembler
from fem.boundary_conditions import BoundaryConditionRegistry, InletProfile
from fem.dofhandler import DofHandler
from meshing import (
    TriangleMesh,
    channel_with_box_obstacle,
    dfg_channel_mesh,
    load_msh,
    partition_cells,
    rectangle_mesh,
)
from parallel.communicator import get_communicator
from postprocessing import run_postprocessing

from .datastructures import Fields, Metrics, Parameters, TimeSeries
from .exceptions import ConfigurationError
from .picard import Converged, PicardController
from .stokes import solve_stokes

log = logging.getLogger(__name__)


def build_mesh(spec) -> TriangleMesh:
    """Mesh from a config mapping (``kind`` plus generator arguments) or a TriangleMesh.

    Kinds: ``file`` (path), ``dfg`` (gmsh-generated benchmark channel),
    ``rectangle`` and ``box_obstacle`` (structured). Raises ConfigurationError
    before any assembly when the mesh cannot be obtained.
    """
    if isinstance(spec, TriangleMesh):
        return spec
    spec = dict(spec or {"kind": "dfg"})
    kind = spec.pop("kind", "dfg")

    if kind == "file":
        path = Path(spec.get("path", ""))
        if not path.is_file():
            raise ConfigurationError(f"Mesh file not found: {path}")
        return load_msh(path)
    if kind == "dfg":
        try:
            return dfg_channel_mesh(**spec)
        except (ImportError, OSError) as exc:
            raise ConfigurationError(f"Generating the DFG mesh requires gmsh ({exc})") from exc
    if kind == "rectangle":
        return rectangle_mesh(**spec)
    if kind == "box_obstacle":
        if "box" in spec:
            spec["box"] = tuple(spec["box"])
        return channel_with_box_obstacle(**spec)
    raise ConfigurationError(f"Unknown mesh kind '{kind}' (expected file, dfg, rectangle or box_obstacle)")


class SteadyNavierStokesSolver:
    """Steady incompressible flow past an obstacle in a channel.

    Handles:
    - Parameter management (input configuration)
    - Discretization setup (mesh, dofs, boundary conditions, partition)
    - Stokes initial solve followed by Picard iteration
    - Post-processing (drag, lift, pressure difference) and result storage

    Parameters
    ----------
    params : Parameters, optional
        Parameters object. If not provided, kwargs are used to create params.
    mesh : TriangleMesh or mapping, optional
        Mesh or mesh config (see ``build_mesh``). Defaults to the DFG channel.
    comm : Communicator, optional
        Worker communicator. Defaults to ``communicator``.
    communicator : str
        ``serial`` or ``mpi`` when ``comm`` is not given.
    output_dir : str or Path
        Directory of the drag/lift CSV log.
    name : str, optional
        Solver name (used by the driver for run names).
    **kwargs
        Configuration parameters passed to Parameters if params is None.
    """

    def __init__(
        self,
        params=None,
        mesh=None,
        comm=None,
        communicator: str = "serial",
        output_dir="outputs/SteadyNavierStokes",
        name: str = "fem",
        **kwargs,
    ):
        if params is None:
            params = Parameters(**kwargs)
        self.params = params.validate()
        self.comm = comm if comm is not None else get_communicator(communicator)
        self.mesh_spec = mesh
        self.output_dir = Path(output_dir)
        self.name = name

        self.metrics = Metrics()
        self.fields = None
        self.time_series = None
        self.solution = None
        self.stokes_solution = None
        self.outcome = None
        self.result = None

        self.mesh = None
        self.dofs = None

    # =========================================================================
    # Setup
    # =========================================================================

    def setup(self):
        """Build mesh, function space, boundary conditions and partition."""
        p = self.params
        self.mesh = build_mesh(self.mesh_spec)
        self.dofs = DofHandler(self.mesh, p.degree_velocity, p.degree_pressure)

        cell_owner = partition_cells(self.mesh, self.comm.size)
        self.partition = self.dofs.partition(cell_owner, self.comm.size)

        lower, _ = self.mesh.bounding_box()
        inlet = InletProfile(u_max=p.inlet_peak_velocity, height=p.channel_height, y0=float(lower[1]))
        self.boundary_conditions = BoundaryConditionRegistry.channel(
            inlet=inlet,
            outlet_pressure=p.outlet_pressure,
            obstacle=p.force_boundary in self.mesh.tags,
        )
        self.constraints = self.boundary_conditions.build_constraints(self.dofs)
        self.assembler = WeakFormAssembler(self.dofs, p.viscosity, self.boundary_conditions)

        log.info(
            f"Setup: {self.mesh.n_cells} cells, n_u={self.dofs.n_u}, n_p={self.dofs.n_p}, "
            f"P{p.degree_velocity}/P{p.degree_pressure}, Re={p.Re}, nu={p.viscosity:.3e}, workers={self.comm.size}"
        )
        return self

    # =========================================================================
    # Solve
    # =========================================================================

    def solve(self):
        """Stokes initial solve, then Picard iteration to convergence or the cap.

        Stores results in solver attributes:
        - self.solution : converged (or last) block solution vector
        - self.outcome : Converged or IterationCapReached
        - self.fields, self.time_series, self.metrics
        """
        if self.dofs is None:
            self.setup()
        p = self.params
        time_start = time.time()

        stokes = solve_stokes(
            self.assembler,
            self.partition,
            self.constraints,
            p.stokes_solver,
            comm=self.comm,
            mode=p.stokes_constraint_mode,
        )
        self.stokes_solution = stokes.solution

        controller = PicardController(
            self.assembler,
            self.partition,
            self.constraints,
            comm=self.comm,
            linear_solver=p.picard_solver,
            max_iterations=p.max_iterations,
            tolerance=p.tolerance,
            convective_form=p.convective_form,
            constraint_mode=p.picard_constraint_mode,
        )
        self.outcome = controller.run(stokes.solution)
        state = self.outcome.state
        self.solution = np.array(state.current)

        wall_time = time.time() - time_start
        log.info(f"Solver finished in {wall_time:.2f} seconds ({type(self.outcome).__name__}).")
        self._store_results(stokes.iterations, wall_time)
        return self.outcome

    def _store_results(self, stokes_iterations, wall_time):
        state = self.outcome.state
        norms = [h[0] for h in state.history]
        its = [h[1] for h in state.history]

        u, pressure = self.dofs.vertex_values(self.solution)
        self.fields = Fields(
            u=u[:, 0],
            v=u[:, 1],
            p=pressure,
            x=self.mesh.vertices[:, 0].copy(),
            y=self.mesh.vertices[:, 1].copy(),
        )
        self.time_series = TimeSeries(update_norm=norms, linear_iterations=its)
        self.metrics = Metrics(
            iterations=self.outcome.iterations,
            converged=isinstance(self.outcome, Converged),
            final_update_norm=state.update_norm,
            wall_time_seconds=wall_time,
            stokes_linear_iterations=stokes_iterations,
            picard_linear_iterations=int(sum(its)),
            n_dofs=self.dofs.n_dofs,
            n_cells=self.mesh.n_cells,
        )

    # =========================================================================
    # Post-processing
    # =========================================================================

    def postprocess(self, record: bool = True):
        """Drag, lift and pressure difference of the current solution.

        Appends one record to ``output_dir/lift_drag_output.csv`` on the root
        worker when ``record`` is set. Returns the PostProcessingResult on the
        root worker and None elsewhere.
        """
        if self.solution is None:
            raise RuntimeError("postprocess() called before solve()")
        p = self.params
        self.result = run_postprocessing(
            self.dofs,
            self.solution,
            self.partition,
            self.comm,
            viscosity=p.viscosity,
            force_scale=p.force_scale,
            probe_points=p.probe_points,
            force_boundary=p.force_boundary,
            on_missing_point=p.on_missing_point,
            on_shared_point=p.on_shared_point,
            force_method=p.force_method,
            assembler=self.assembler,
            record_path=self.record_path if record else None,
        )
        if self.result is not None:
            self.metrics.drag = self.result.drag
            self.metrics.lift = self.result.lift
            self.metrics.pressure_difference = self.result.pressure_difference
        return self.result

    @property
    def record_path(self) -> Path:
        return self.output_dir / "lift_drag_output.csv"

    # =========================================================================
    # Output
    # =========================================================================

    def save(self, filepath):
        """Save params, metrics, time_series and fields to an HDF5 file.

        Parameters
        ----------
        filepath : str or Path
            Output file path (use .h5 extension).
        """
        import pandas as pd

        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)
        with pd.HDFStore(filepath, mode="w", complevel=5) as store:
            store["params"] = self.params.to_dataframe()
            store["metrics"] = self.metrics.to_dataframe()
            store["time_series"] = self.time_series.to_dataframe()
            store["fields"] = self.fields.to_dataframe()

    def to_vtk(self):
        """Vertex velocity/pressure and the owning worker of each cell on a pyvista UnstructuredGrid."""
        import pyvista as pv

        cells = np.hstack([np.full((self.mesh.n_cells, 1), 3), self.mesh.cells]).ravel()
        cell_types = np.full(self.mesh.n_cells, pv.CellType.TRIANGLE, dtype=np.uint8)
        points = np.column_stack([self.mesh.vertices, np.zeros(self.mesh.n_vertices)])
        grid = pv.UnstructuredGrid(cells, cell_types, points)

        grid.point_data["velocity"] = np.column_stack(
            [self.fields.u, self.fields.v, np.zeros(self.mesh.n_vertices)]
        )
        grid.point_data["pressure"] = self.fields.p
        grid.point_data["velocity_magnitude"] = np.hypot(self.fields.u, self.fields.v)
        grid.cell_data["partitioning"] = self.partition.cell_owner
        return grid
