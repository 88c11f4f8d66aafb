"""
Steady Navier-Stokes Solver - Unified entry point for solving and plotting.

Usage:
    uv run python main.py
    uv run python main.py Re=20 solver.max_iterations=20
    uv run python main.py mesh=box_obstacle mesh.nx=88 mesh.ny=32
    uv run python main.py solver.picard_solver.preconditioner=triangular_lower
    mpirun -n 4 uv run python main.py solver.communicator=mpi
"""

import logging
import os
import sys
import tempfile
from pathlib import Path

import hydra
import mlflow
from dotenv import load_dotenv
from hydra.utils import instantiate
from omegaconf import DictConfig, OmegaConf

load_dotenv()
sys.path.insert(0, str(Path(__file__).parent / "src"))

log = logging.getLogger(__name__)


def get_experiment_name(cfg: DictConfig) -> str:
    """Build full experiment name with optional prefix."""
    name = cfg.experiment_name
    prefix = cfg.mlflow.get("project_prefix", "")
    if prefix and not name.startswith("/"):
        return f"{prefix}/{name}"
    return name


def setup_mlflow(cfg: DictConfig) -> str:
    """Setup MLflow tracking and return experiment name."""
    tracking_uri = cfg.mlflow.get("tracking_uri", "./mlruns")
    if str(cfg.mlflow.get("mode", "")).lower() in ("files", "local"):
        os.environ.pop("MLFLOW_TRACKING_URI", None)
    os.environ["MLFLOW_TRACKING_URI"] = str(tracking_uri)
    mlflow.set_tracking_uri(tracking_uri)

    experiment_name = get_experiment_name(cfg)
    try:
        mlflow.set_experiment(experiment_name)
    except Exception as exc:
        experiment_name = f"{experiment_name}-restored"
        log.warning(f"MLflow set_experiment failed ({exc}); using '{experiment_name}'")
        mlflow.set_experiment(experiment_name)

    return experiment_name


def log_run(cfg: DictConfig, solver, output_dir: Path) -> str:
    """Log params, metrics, convergence history and artifacts to MLflow. Returns run_id."""
    from plotting import generate_plots, relative_errors

    run_name = f"{solver.name}_Re{cfg.Re:g}_{solver.mesh.n_cells}cells"
    parent_run_id = os.environ.get("MLFLOW_PARENT_RUN_ID")
    tags = {"solver": solver.name}
    if parent_run_id:
        tags.update({"mlflow.parentRunId": parent_run_id, "parent_run_id": parent_run_id, "sweep": "child"})

    with mlflow.start_run(run_name=run_name, tags=tags, nested=bool(parent_run_id)) as run:
        mlflow.log_params(solver.params.to_mlflow())
        mlflow.log_dict(OmegaConf.to_container(cfg), "config.yaml")
        mlflow.log_metrics(solver.metrics.to_mlflow())
        if solver.result is not None:
            mlflow.log_metrics(relative_errors(solver.result.drag, solver.result.lift, solver.result.pressure_difference))

        batch = solver.time_series.to_mlflow_batch()
        if batch:
            mlflow.tracking.MlflowClient().log_batch(run.info.run_id, metrics=batch)

        with tempfile.TemporaryDirectory() as tmpdir:
            vtk_path = Path(tmpdir) / "solution.vtu"
            solver.to_vtk().save(str(vtk_path))
            mlflow.log_artifact(str(vtk_path))

            h5_path = Path(tmpdir) / "solution.h5"
            solver.save(h5_path)
            mlflow.log_artifact(str(h5_path))

        if solver.record_path.exists():
            mlflow.log_artifact(str(solver.record_path))

        if cfg.get("plot", True):
            for path in generate_plots(solver, output_dir / "plots"):
                mlflow.log_artifact(str(path), artifact_path="plots")

        return run.info.run_id


@hydra.main(config_path="conf", config_name="config", version_base=None)
def main(cfg: DictConfig) -> None:
    """Main entry point."""
    from cli import print_summary
    from plotting import REFERENCE_DRAG, REFERENCE_LIFT, REFERENCE_PRESSURE_DIFFERENCE

    solver = instantiate(cfg.solver, _convert_="partial")
    is_root = solver.comm.is_root
    if is_root:
        log.info(f"Solver: {cfg.solver.name}, mesh={cfg.mesh.kind}, Re={cfg.Re}")

    solver.setup()
    solver.solve()
    solver.postprocess()

    if not is_root:
        return

    output_dir = Path(hydra.core.hydra_config.HydraConfig.get().runtime.output_dir)
    if cfg.mlflow.get("enabled", True):
        log.info(f"MLflow experiment: {setup_mlflow(cfg)}")
        run_id = log_run(cfg, solver, output_dir)
        log.info(f"Logged run {run_id[:8]}")

    reference = {
        "drag": REFERENCE_DRAG,
        "lift": REFERENCE_LIFT,
        "pressure_difference": REFERENCE_PRESSURE_DIFFERENCE,
    }
    print_summary(solver, reference if cfg.mesh.kind == "dfg" else None)
    log.info(
        f"Done: {solver.metrics.iterations} iter, converged={solver.metrics.converged}, "
        f"time={solver.metrics.wall_time_seconds:.2f}s"
    )


if __name__ == "__main__":
    main()
