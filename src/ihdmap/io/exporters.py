"""Result export utilities."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pandas as pd


def save_results(results: pd.DataFrame, path: str | Path) -> Path:
    """Save the per-unit results table to CSV (geometry column dropped)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    table = results.drop(columns=["geometry"], errors="ignore")
    pd.DataFrame(table).to_csv(path, index=False)
    return path


def _clean(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _clean(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_clean(v) for v in value]
    if hasattr(value, "item"):  # numpy scalar
        return value.item()
    if isinstance(value, Path):
        return str(value)
    return value


def save_parameters(params: dict[str, Any], path: str | Path) -> Path:
    """Save run parameters to JSON."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w") as f:
        json.dump(_clean(params), f, indent=2)
    return path
