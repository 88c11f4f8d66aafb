"""Tabular log of (drag, lift, pressure_difference) records."""

from pathlib import Path
import logging

import pandas as pd

log = logging.getLogger(__name__)

COLUMNS = ["drag", "lift", "pressure_difference"]


def append_record(path, drag: float, lift: float, pressure_difference: float) -> Path:
    """Append one row to the CSV at ``path`` (header written on creation)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    record = pd.DataFrame([[drag, lift, pressure_difference]], columns=COLUMNS)
    record.to_csv(path, mode="a", header=not path.exists(), index=False)
    log.info(f"Wrote drag/lift record to {path}")
    return path


def read_records(path) -> pd.DataFrame:
    return pd.read_csv(path)
