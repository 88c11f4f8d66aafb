"""Rich console output helpers."""

import math

from rich.console import Console
from rich.table import Table

console = Console()


def ok(msg: str):
    """Print success message."""
    console.print(f"  [green]✓[/green] {msg}")


def fail(msg: str):
    """Print failure message."""
    console.print(f"  [red]✗[/red] {msg}")


def dim(msg: str):
    """Print dimmed message."""
    console.print(f"  [dim]{msg}[/dim]")


def header(msg: str):
    """Print bold header."""
    console.print(f"\n[bold]{msg}[/bold]")


def _fmt(value) -> str:
    if isinstance(value, float):
        return "-" if math.isnan(value) else f"{value:.8g}"
    return str(value)


def metrics_table(metrics, reference: dict = None) -> Table:
    """Table of run metrics; ``reference`` adds a column of expected values."""
    table = Table(show_header=True, header_style="bold")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    if reference:
        table.add_column("Reference", justify="right")

    for name, value in vars(metrics).items():
        row = [name, _fmt(value)]
        if reference:
            row.append(_fmt(reference[name]) if name in reference else "")
        table.add_row(*row)
    return table


def print_summary(solver, reference: dict = None):
    """Print the outcome and metrics of a finished solver run."""
    m = solver.metrics
    header(f"Steady Navier-Stokes, Re={solver.params.Re:g}")
    if m.converged:
        ok(f"Picard converged in {m.iterations} iterations (||du||={m.final_update_norm:.3e})")
    else:
        fail(f"Picard stopped at the cap of {m.iterations} iterations (||du||={m.final_update_norm:.3e})")
    dim(f"{m.n_cells} cells, {m.n_dofs} dofs, {m.wall_time_seconds:.2f}s")
    console.print(metrics_table(m, reference))
