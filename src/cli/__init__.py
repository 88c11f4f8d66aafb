"""Console reporting for solver runs."""

from .console import console, dim, fail, header, metrics_table, ok, print_summary

__all__ = ["console", "ok", "fail", "dim", "header", "metrics_table", "print_summary"]
