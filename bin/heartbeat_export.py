#!/usr/bin/env python3
"""
FLOW-HB Heartbeat Export

Writes a session's heartbeat log to disk. The format follows the file
extension:
- .json     list of heartbeat objects (same shape as the dashboard export)
- .csv      one row per heartbeat
- .parquet  one row per heartbeat
"""

import json
import os
from pathlib import Path
from typing import Optional, Sequence

import polars as pl

from single_probe import Sample


SUPPORTED_FORMATS = ("json", "csv", "parquet")

HEARTBEAT_SCHEMA = {
    "timestamp": pl.Utf8,
    "latency": pl.Float64,
    "bandwidth": pl.Float64,
    "error": pl.Utf8,
    "deviceInfo": pl.Utf8,
}


def heartbeats_frame(samples: Sequence[Sample]) -> pl.DataFrame:
    """Heartbeat log as a Polars DataFrame, in log order."""
    return pl.DataFrame([s.to_dict() for s in samples], schema=HEARTBEAT_SCHEMA)


def infer_format(path: str) -> str:
    ext = os.path.splitext(path)[1].lower().lstrip(".")
    if ext not in SUPPORTED_FORMATS:
        raise ValueError(f"Could not determine export format from extension: {path}")
    return ext


def export_heartbeats(
    samples: Sequence[Sample],
    path: str,
    file_format: Optional[str] = None,
) -> str:
    """
    Write the heartbeat log.

    Args:
        samples: Heartbeats in log order
        path: Output file path
        file_format: 'json', 'csv' or 'parquet'; inferred from path if None

    Returns:
        Absolute path of the written file

    Raises:
        ValueError: Empty log or unsupported format
    """
    if not samples:
        raise ValueError("No heartbeat data to export.")

    if file_format is None:
        file_format = infer_format(path)

    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)

    if file_format == "json":
        with out.open("w") as f:
            json.dump([s.to_dict() for s in samples], f, indent=2)
    elif file_format == "csv":
        heartbeats_frame(samples).write_csv(out)
    elif file_format == "parquet":
        heartbeats_frame(samples).write_parquet(out)
    else:
        raise ValueError(f"Unsupported export format: {file_format}")

    return str(out.resolve())
