"""Per-unit results table and the HTML summary report."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping, Sequence
from datetime import datetime
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd

from ihdmap.exceptions import DataError, IntegrityError
from ihdmap.models.base import ModelResult

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"
BASE_COLUMNS = ("code", "name", "O", "E", "RME")
HIGH_PROB = 0.9
LOW_PROB = 0.1


def build_results_table(
    units: pd.DataFrame,
    results: Mapping[str, ModelResult],
) -> pd.DataFrame:
    """One row per unit: inputs, RME and every backend's summaries.

    Parameters
    ----------
    units : pd.DataFrame
        Units in model order with ``code``, ``O``, ``E``, ``RME`` (and
        optionally ``name``).
    results : Mapping[str, ModelResult]
        Backend name to result.

    Returns
    -------
    pd.DataFrame
        Columns ``code``, ``name``, ``O``, ``E``, ``RME`` then
        ``RMS_<b>``, ``P_<b>``, ``pred_<b>`` per backend ``b``.

    Raises
    ------
    IntegrityError
        A result does not cover exactly the units of the table.
    """
    missing = [c for c in ("code", "O", "E", "RME") if c not in units.columns]
    if missing:
        raise DataError(f"Units are missing columns {missing}")

    n = len(units)
    table = pd.DataFrame({c: units[c].to_numpy() for c in BASE_COLUMNS if c in units.columns})
    if "name" not in table.columns:
        table.insert(1, "name", table["code"])

    for backend, result in results.items():
        if len(result) != n:
            raise IntegrityError(
                f"Backend {backend!r} returned {len(result)} results for {n} units"
            )
        table[f"RMS_{backend}"] = result.smoothed_risk
        table[f"P_{backend}"] = result.prob_exceeds_one
        table[f"pred_{backend}"] = result.predicted
    return table


def backends_in(table: pd.DataFrame) -> list[str]:
    """Backend names present in a results table, in column order."""
    return [c.removeprefix("RMS_") for c in table.columns if c.startswith("RMS_")]


def summarize_table(table: pd.DataFrame) -> dict[str, Any]:
    """Headline numbers for the report.

    Returns
    -------
    dict
        ``n_units``, ``observed``, ``expected``, ``rme`` (overall O/E) and
        per backend the RMS range, the number of units with high/low
        exceedance probability and the RME-RMS correlation.
    """
    observed = int(table["O"].sum())
    expected = float(table["E"].sum())
    summary: dict[str, Any] = {
        "n_units": len(table),
        "observed": observed,
        "expected": expected,
        "rme": observed / expected if expected > 0 else float("nan"),
        "backends": {},
    }
    finite = np.isfinite(table["RME"].to_numpy(dtype=np.float64))
    for backend in backends_in(table):
        rms = table[f"RMS_{backend}"].to_numpy(dtype=np.float64)
        prob = table[f"P_{backend}"].to_numpy(dtype=np.float64)
        corr = np.nan
        if finite.sum() > 1:
            corr = float(np.corrcoef(table["RME"].to_numpy(dtype=np.float64)[finite], rms[finite])[0, 1])
        summary["backends"][backend] = {
            "rms_min": float(rms.min()),
            "rms_mean": float(rms.mean()),
            "rms_max": float(rms.max()),
            "n_high": int((prob > HIGH_PROB).sum()),
            "n_low": int((prob < LOW_PROB).sum()),
            "corr_rme": corr,
        }
    return summary


def top_units(table: pd.DataFrame, backend: str, n: int = 10) -> pd.DataFrame:
    """The *n* units with the highest smoothed risk for *backend*."""
    cols = ["code", "name", "O", "E", "RME", f"RMS_{backend}", f"P_{backend}"]
    return table.nlargest(n, f"RMS_{backend}")[cols].reset_index(drop=True)


def _relative(path: str | Path, start: Path) -> str:
    return Path(os.path.relpath(Path(path).resolve(), start.resolve())).as_posix()


def render_report(
    table: pd.DataFrame,
    figures: Sequence[str | Path] = (),
    interactive_path: str | Path | None = None,
    out_path: str | Path = "report.html",
    title: str = "Ischemic heart disease mortality: smoothed risk atlas",
    parameters: Mapping[str, Any] | None = None,
) -> Path:
    """Render the HTML report with jinja2.

    Figures and the interactive map are referenced by paths relative to the
    report, so the output directory can be moved as a whole.
    """
    from jinja2 import Environment, FileSystemLoader, select_autoescape

    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    base = out_path.parent

    env = Environment(
        loader=FileSystemLoader(str(TEMPLATE_DIR)),
        autoescape=select_autoescape(["html", "j2"]),
    )
    template = env.get_template("report.html.j2")

    html = template.render(
        title=title,
        generated=datetime.now().strftime("%Y-%m-%d %H:%M"),
        summary=summarize_table(table),
        top={b: top_units(table, b).to_dict("records") for b in backends_in(table)},
        figures=[_relative(f, base) for f in figures],
        interactive=_relative(interactive_path, base) if interactive_path else None,
        parameters=dict(parameters or {}),
    )
    out_path.write_text(html, encoding="utf-8")
    logger.info("Saved report: %s", out_path)
    return out_path
