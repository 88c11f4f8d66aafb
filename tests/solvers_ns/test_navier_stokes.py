"""Tests for the steady Navier-Stokes pipeline and its configuration."""

import numpy as np
import pandas as pd
import pytest

from meshing import channel_with_box_obstacle
from solvers import ConfigurationError, Parameters
from solvers.datastructures import LinearSolverParameters
from solvers.navier_stokes import SteadyNavierStokesSolver, build_mesh

FAST_PICARD = dict(preconditioner="triangular_lower", rtol=1e-12, atol=0.0, max_iterations=500)


@pytest.fixture
def box_mesh():
    return channel_with_box_obstacle(Lx=1.0, Ly=0.41, nx=10, ny=8, box=(0.2, 0.4, 0.1, 0.3))


@pytest.fixture
def solved(box_mesh, tmp_path):
    solver = SteadyNavierStokesSolver(
        mesh=box_mesh,
        Re=2,
        picard_solver=FAST_PICARD,
        probe_points=[[0.15, 0.2], [0.45, 0.2]],
        output_dir=tmp_path,
    )
    solver.solve()
    solver.postprocess()
    return solver


class TestParameters:
    """Configuration and derived scales."""

    def test_dfg_scales(self):
        """Re = 20 with u_max = 0.3 and D = 0.1 gives nu = 1e-3 and force scale 500."""
        p = Parameters()
        assert p.mean_velocity == pytest.approx(0.2)
        assert p.viscosity == pytest.approx(1e-3)
        assert p.force_scale == pytest.approx(500.0)

    def test_nested_solver_dicts(self):
        """Nested dicts fill in from the defaults."""
        p = Parameters(stokes_solver={"rtol": 1e-8}, picard_solver={"preconditioner": "diagonal"})
        assert isinstance(p.stokes_solver, LinearSolverParameters)
        assert p.stokes_solver.rtol == 1e-8
        assert p.stokes_solver.preconditioner == "triangular_lower"
        assert p.picard_solver.preconditioner == "diagonal"
        assert p.picard_solver.atol == 1e-4

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"Re": 0},
            {"degree_velocity": 1},
            {"max_iterations": 0},
            {"tolerance": 0.0},
            {"convective_form": "skew"},
            {"picard_constraint_mode": "penalty"},
            {"on_missing_point": "ignore"},
            {"on_shared_point": "first"},
            {"force_method": "stress"},
            {"probe_points": [[0.1, 0.2]]},
            {"stokes_solver": {"preconditioner": "ilu"}},
            {"picard_solver": {"restart": 0}},
        ],
    )
    def test_invalid(self, kwargs):
        with pytest.raises(ConfigurationError):
            Parameters(**kwargs).validate()

    def test_mlflow_params(self):
        params = Parameters().to_mlflow()
        assert params["picard_solver.restart"] == 500
        assert params["stokes_solver.restart"] == "None"
        assert params["viscosity"] == pytest.approx(1e-3)

    def test_dataframe(self):
        df = Parameters().to_dataframe()
        assert len(df) == 1 and "Re" in df.columns


class TestBuildMesh:
    """Mesh sources."""

    def test_missing_file(self, tmp_path):
        """A missing mesh file is a ConfigurationError, raised before any assembly."""
        with pytest.raises(ConfigurationError, match="not found"):
            build_mesh({"kind": "file", "path": str(tmp_path / "missing.msh")})

    def test_missing_file_in_solver(self, tmp_path):
        solver = SteadyNavierStokesSolver(mesh={"kind": "file", "path": str(tmp_path / "missing.msh")})
        with pytest.raises(ConfigurationError):
            solver.solve()
        assert solver.dofs is None

    def test_gmsh_library_fails_to_load(self, monkeypatch):
        """A gmsh wheel whose shared libraries are missing surfaces as a ConfigurationError."""

        def broken(**kwargs):
            raise OSError("libXcursor.so.1: cannot open shared object file")

        monkeypatch.setattr("solvers.navier_stokes.dfg_channel_mesh", broken)
        with pytest.raises(ConfigurationError, match="requires gmsh"):
            build_mesh({"kind": "dfg"})

    def test_unknown_kind(self):
        with pytest.raises(ConfigurationError):
            build_mesh({"kind": "hexahedral"})

    def test_structured_kinds(self, box_mesh):
        assert build_mesh(box_mesh) is box_mesh
        assert build_mesh({"kind": "rectangle", "nx": 3, "ny": 2}).n_cells == 12
        mesh = build_mesh({"kind": "box_obstacle", "Lx": 1.0, "Ly": 0.41, "nx": 10, "ny": 8, "box": [0.2, 0.4, 0.1, 0.3]})
        assert mesh.n_cells == box_mesh.n_cells

    def test_invalid_parameters_rejected_at_construction(self):
        with pytest.raises(ConfigurationError):
            SteadyNavierStokesSolver(Re=-1)


class TestPipeline:
    """Stokes -> Picard -> post-processing on a coarse obstacle channel."""

    def test_converges(self, solved):
        m = solved.metrics
        assert m.converged
        assert 1 < m.iterations <= solved.params.max_iterations
        assert m.final_update_norm < solved.params.tolerance
        assert m.stokes_linear_iterations > 0
        assert m.n_dofs == solved.dofs.n_dofs

    def test_solution_satisfies_constraints(self, solved):
        c = solved.constraints
        np.testing.assert_array_equal(solved.solution[c.dofs], c.values)

    def test_postprocessing_results(self, solved):
        """Positive drag; result and metrics agree; one CSV record written."""
        assert solved.result.drag > 0
        assert solved.metrics.drag == solved.result.drag
        assert all(s.available for s in solved.result.samples)
        records = pd.read_csv(solved.record_path)
        assert len(records) == 1
        assert records.loc[0, "lift"] == pytest.approx(solved.result.lift)

    def test_volume_forces(self, solved):
        """The reaction-force evaluation agrees in sign and size with the facet integral."""
        surface = solved.result
        solved.params.force_method = "volume"
        volume = solved.postprocess(record=False)
        assert volume.drag > 0
        assert volume.drag == pytest.approx(surface.drag, rel=0.5)
        assert volume.pressure_difference == surface.pressure_difference
        assert len(pd.read_csv(solved.record_path)) == 1

    def test_history(self, solved):
        df = solved.time_series.to_dataframe()
        assert len(df) == solved.metrics.iterations
        assert list(df.columns) == ["update_norm", "linear_iterations"]
        batch = solved.time_series.to_mlflow_batch()
        assert len(batch) == 2 * solved.metrics.iterations

    def test_fields(self, solved):
        fields = solved.fields.to_dataframe()
        assert len(fields) == solved.mesh.n_vertices
        inlet = np.isclose(fields["x"], 0.0)
        np.testing.assert_allclose(
            fields.loc[inlet, "u"], 4 * 0.3 * fields.loc[inlet, "y"] * (0.41 - fields.loc[inlet, "y"]) / 0.41**2
        )

    def test_metrics_to_mlflow(self, solved):
        metrics = solved.metrics.to_mlflow()
        assert metrics["converged"] == 1.0
        assert np.isfinite(list(metrics.values())).all()

    def test_save_hdf5(self, solved, tmp_path):
        pytest.importorskip("tables")
        path = tmp_path / "run" / "solution.h5"
        solved.save(path)
        with pd.HDFStore(path, mode="r") as store:
            assert set(store.keys()) == {"/params", "/metrics", "/time_series", "/fields"}
            assert len(store["fields"]) == solved.mesh.n_vertices

    def test_to_vtk(self, solved):
        pytest.importorskip("pyvista")
        grid = solved.to_vtk()
        assert grid.n_cells == solved.mesh.n_cells
        assert grid.point_data["velocity"].shape == (solved.mesh.n_vertices, 3)
        np.testing.assert_array_equal(grid.cell_data["partitioning"], solved.partition.cell_owner)

    def test_postprocess_before_solve(self, box_mesh):
        with pytest.raises(RuntimeError):
            SteadyNavierStokesSolver(mesh=box_mesh).setup().postprocess()


def require_gmsh():
    """Skip unless the gmsh module imports (the wheel can fail to load its shared libraries)."""
    try:
        import gmsh  # noqa: F401
    except (ImportError, OSError) as exc:
        pytest.skip(f"gmsh unavailable: {exc}")


@pytest.mark.slow
class TestDFGBenchmark:
    """DFG 2D-1 flow around a cylinder (Re = 20) on the default graded mesh.

    Mesh: ``dfg_channel_mesh(mesh_size=0.03, obstacle_size=0.006)``, about 52
    straight facets on the cylinder. Drag and pressure difference are within
    2 % of the reference with either force evaluation. The lift is the
    sensitive quantity: the reaction-force evaluation stays within 2e-3 of
    the reference, while the facet integral reaches about 0.0079 on this mesh
    and is held to a wider band of 3.5e-3.
    """

    @pytest.fixture(scope="class")
    def dfg_solver(self, tmp_path_factory):
        require_gmsh()
        solver = SteadyNavierStokesSolver(
            mesh={"kind": "dfg", "mesh_size": 0.03, "obstacle_size": 0.006},
            picard_solver=dict(preconditioner="triangular_lower", rtol=1e-10, atol=0.0, restart=200, max_iterations=2000),
            output_dir=tmp_path_factory.mktemp("dfg"),
        )
        solver.solve()
        return solver

    def test_converges(self, dfg_solver):
        assert dfg_solver.metrics.converged

    def test_surface_forces(self, dfg_solver):
        from plotting import REFERENCE_DRAG, REFERENCE_LIFT, REFERENCE_PRESSURE_DIFFERENCE

        dfg_solver.params.force_method = "surface"
        result = dfg_solver.postprocess()
        assert result.drag == pytest.approx(REFERENCE_DRAG, rel=2e-2)
        assert result.lift == pytest.approx(REFERENCE_LIFT, abs=3.5e-3)
        assert result.pressure_difference == pytest.approx(REFERENCE_PRESSURE_DIFFERENCE, rel=2e-2)

    def test_volume_forces(self, dfg_solver):
        from plotting import REFERENCE_DRAG, REFERENCE_LIFT

        dfg_solver.params.force_method = "volume"
        result = dfg_solver.postprocess()
        assert result.drag == pytest.approx(REFERENCE_DRAG, rel=2e-2)
        assert result.lift == pytest.approx(REFERENCE_LIFT, abs=2e-3)
