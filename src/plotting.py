"""
Solution Plotter - Generates plots for a finished steady Navier-Stokes run.

Called from main.py after the solve:
    from plotting import generate_plots
    paths = generate_plots(solver, output_dir)

Plots: pressure and velocity magnitude on the triangulation, Picard
convergence history, and (when the CSV log exists) the recorded drag/lift
against the DFG 2D-1 reference values.
"""

import logging
from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd

log = logging.getLogger(__name__)

# DFG benchmark 2D-1 (Re = 20) reference values
REFERENCE_DRAG = 5.57953523384
REFERENCE_LIFT = 0.010618948146
REFERENCE_PRESSURE_DIFFERENCE = 0.11752016697


def _set_style():
    import seaborn as sns

    sns.set_theme(style="darkgrid")
    sns.set_context("paper", font_scale=1.2)


# =============================================================================
# Individual Run Plotting Functions
# =============================================================================


def plot_fields(mesh, fields, Re: float, output_dir: Path) -> Path:
    """Pressure and velocity magnitude contour plots on the mesh vertices."""
    import matplotlib.pyplot as plt
    import matplotlib.tri as mtri

    triangulation = mtri.Triangulation(fields.x, fields.y, mesh.cells)
    speed = np.hypot(fields.u, fields.v)

    fig, axes = plt.subplots(2, 1, figsize=(12, 6))

    cf_p = axes[0].tricontourf(triangulation, fields.p, levels=25, cmap="coolwarm")
    axes[0].set_title("Pressure", fontweight="bold")
    plt.colorbar(cf_p, ax=axes[0], label="p")

    cf_u = axes[1].tricontourf(triangulation, speed, levels=25, cmap="viridis")
    axes[1].set_title("Velocity magnitude", fontweight="bold")
    plt.colorbar(cf_u, ax=axes[1], label="|u|")

    for ax in axes:
        ax.set_xlabel("x")
        ax.set_ylabel("y")
        ax.set_aspect("equal")

    fig.suptitle(f"Solution Fields, Re={Re:.0f}", fontweight="bold", fontsize=14)
    plt.tight_layout()

    output_path = Path(output_dir) / "fields.pdf"
    fig.savefig(output_path, dpi=300, bbox_inches="tight")
    plt.close(fig)
    return output_path


def plot_convergence(timeseries_df: pd.DataFrame, Re: float, output_dir: Path) -> Optional[Path]:
    """Picard update norm and GMRES iterations per Picard iteration."""
    import matplotlib.pyplot as plt
    import seaborn as sns

    if timeseries_df.empty:
        log.warning("No timeseries data available for convergence plot")
        return None

    _set_style()
    df = timeseries_df.reset_index(drop=True)
    df["iteration"] = np.arange(1, len(df) + 1)

    fig, axes = plt.subplots(1, 2, figsize=(12, 5))
    sns.lineplot(data=df, x="iteration", y="update_norm", marker="o", ax=axes[0])
    axes[0].set_yscale("log")
    axes[0].set_xlabel("Picard iteration")
    axes[0].set_ylabel(r"$\|u_k - u_{k-1}\|_2$")

    sns.barplot(data=df, x="iteration", y="linear_iterations", ax=axes[1], color="C1")
    axes[1].set_xlabel("Picard iteration")
    axes[1].set_ylabel("GMRES iterations")

    fig.suptitle(f"Convergence History, Re={Re:.0f}", fontweight="bold")
    plt.tight_layout()

    output_path = Path(output_dir) / "convergence.pdf"
    fig.savefig(output_path, dpi=300, bbox_inches="tight")
    plt.close(fig)
    return output_path


def plot_benchmark(records: pd.DataFrame, output_dir: Path) -> Optional[Path]:
    """Recorded drag/lift/pressure difference against the benchmark values."""
    import matplotlib.pyplot as plt
    import seaborn as sns

    if records.empty:
        return None

    _set_style()
    reference = {
        "drag": REFERENCE_DRAG,
        "lift": REFERENCE_LIFT,
        "pressure_difference": REFERENCE_PRESSURE_DIFFERENCE,
    }
    df = records.reset_index(drop=True)
    df["record"] = np.arange(1, len(df) + 1)

    fig, axes = plt.subplots(1, 3, figsize=(15, 4))
    for ax, (column, ref) in zip(axes, reference.items()):
        sns.lineplot(data=df, x="record", y=column, marker="o", ax=ax, label="computed")
        ax.axhline(ref, color="k", linestyle="--", linewidth=1, label="DFG 2D-1")
        ax.set_title(column.replace("_", " ").capitalize(), fontweight="bold")
        ax.legend(frameon=True)

    plt.tight_layout()
    output_path = Path(output_dir) / "benchmark.pdf"
    fig.savefig(output_path, dpi=300, bbox_inches="tight")
    plt.close(fig)
    return output_path


def relative_errors(drag: float, lift: float, pressure_difference: float) -> dict:
    """Relative errors against the DFG 2D-1 reference (MLflow metric names)."""
    return {
        "drag_rel_error": abs(drag - REFERENCE_DRAG) / REFERENCE_DRAG,
        "lift_rel_error": abs(lift - REFERENCE_LIFT) / REFERENCE_LIFT,
        "dp_rel_error": abs(pressure_difference - REFERENCE_PRESSURE_DIFFERENCE) / REFERENCE_PRESSURE_DIFFERENCE,
    }


# =============================================================================
# Direct API for main.py
# =============================================================================


def generate_plots(solver, output_dir: Path) -> list:
    """Generate all plots for a finished solver; returns the written paths."""
    from postprocessing import read_records

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    Re = solver.params.Re

    paths = [
        plot_fields(solver.mesh, solver.fields, Re, output_dir),
        plot_convergence(solver.time_series.to_dataframe(), Re, output_dir),
    ]
    if solver.record_path.exists():
        paths.append(plot_benchmark(read_records(solver.record_path), output_dir))

    paths = [p for p in paths if p is not None]
    log.info(f"Generated {len(paths)} plots in {output_dir}")
    return paths
