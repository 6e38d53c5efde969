"""Static choropleth figures for smoothed risk maps."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

from ihdmap.classify import classify, classify_fixed
from ihdmap.config import PROB_CUTS, RISK_PROBS, PlotTheme
from ihdmap.exceptions import DataError

logger = logging.getLogger(__name__)

COLUMN_TITLES: dict[str, str] = {
    "RME": "Standardized mortality ratio (RME)",
    "RMS": "Smoothed relative risk",
    "P": "P(risk > 1)",
    "pred": "Predicted deaths",
}


def column_title(column: str) -> str:
    """Human readable title for a result column such as ``RMS_mcmc``."""
    prefix, _, backend = column.partition("_")
    title = COLUMN_TITLES.get(prefix, column)
    return f"{title} ({backend})" if backend else title


def classified_column(
    values: Sequence[float] | pd.Series,
    probs: Sequence[float] | None = RISK_PROBS,
    cuts: Sequence[float] | None = None,
    digits: int = 2,
) -> pd.Categorical:
    """Ordered categorical of *values*; non-finite entries stay missing.

    Classes come from fixed *cuts* when given, otherwise from the quantiles
    of the finite values at *probs*.
    """
    v = np.asarray(values, dtype=np.float64)
    finite = np.isfinite(v)
    if not finite.any():
        raise DataError("No finite values to classify")

    if cuts is not None:
        result = classify_fixed(v[finite], cuts, digits=digits)
    else:
        result = classify(v[finite], probs, digits=digits)

    codes = np.full(v.shape[0], -1, dtype=np.int64)
    codes[finite] = result.bins
    return pd.Categorical.from_codes(codes, categories=result.labels, ordered=True)


def _is_probability(column: str) -> bool:
    return column.startswith("P_")


def plot_choropleth(
    units: Any,
    column: str,
    theme: PlotTheme | None = None,
    probs: Sequence[float] | None = RISK_PROBS,
    cuts: Sequence[float] | None = None,
    title: str | None = None,
    ax: plt.Axes | None = None,
    save_path: str | Path | None = None,
) -> plt.Axes:
    """Classified choropleth of one column of *units*.

    Parameters
    ----------
    units : geopandas.GeoDataFrame
        Spatial units with *column* and a ``geometry`` column.
    column : str
        Column to map.
    theme : PlotTheme | None
        Colours, sizes and resolution.
    probs : Sequence[float] | None
        Quantile probabilities defining the classes.
    cuts : Sequence[float] | None
        Fixed class boundaries; overrides *probs* (used for probabilities).
    title : str | None
        Panel title (defaults to a readable name for *column*).
    ax : plt.Axes | None
        Axes to draw on (created if *None*).
    save_path : str | Path | None
        File path to save the figure.

    Returns
    -------
    plt.Axes
    """
    theme = theme or PlotTheme()
    if column not in units.columns:
        raise DataError(f"Column {column!r} not in units. Found: {list(units.columns)}")

    palette = theme.prob_palette if cuts is not None else theme.palette
    classes = classified_column(units[column], probs=probs, cuts=cuts)

    if ax is None:
        _, ax = plt.subplots(figsize=theme.figsize)

    units.assign(_class=classes).plot(
        column="_class",
        categorical=True,
        cmap=palette,
        edgecolor=theme.edge_color,
        linewidth=theme.edge_width,
        legend=True,
        legend_kwds={"loc": "lower left", "fontsize": theme.font_size, "frameon": False},
        missing_kwds={"color": theme.missing_color, "label": "Missing"},
        ax=ax,
    )
    ax.set_title(title or column_title(column), fontsize=theme.title_size)
    ax.set_axis_off()

    if save_path:
        ax.figure.savefig(save_path, dpi=theme.dpi, bbox_inches="tight")
        logger.info("Saved choropleth: %s", save_path)
    return ax


def plot_risk_panels(
    units: Any,
    columns: Sequence[str],
    theme: PlotTheme | None = None,
    probs: Sequence[float] = RISK_PROBS,
    cuts: Sequence[float] = PROB_CUTS,
    save_path: str | Path | None = None,
    ncols: int = 3,
) -> plt.Figure:
    """Multi-panel figure with one choropleth per column.

    Columns named ``P_<backend>`` are classified by the fixed cut points
    *cuts*; every other column by the quantile probabilities *probs*.
    """
    theme = theme or PlotTheme()
    if not columns:
        raise ValueError("No columns to plot")

    ncols = min(ncols, len(columns))
    nrows = int(np.ceil(len(columns) / ncols))
    width, height = theme.figsize
    fig, axes = plt.subplots(
        nrows, ncols, figsize=(width * ncols * 0.75, height * nrows * 0.75), squeeze=False
    )
    flat = axes.flatten()

    for ax, column in zip(flat, columns):
        if _is_probability(column):
            plot_choropleth(units, column, theme=theme, cuts=cuts, ax=ax)
        else:
            plot_choropleth(units, column, theme=theme, probs=probs, ax=ax)
    for ax in flat[len(columns):]:
        ax.set_visible(False)

    plt.tight_layout()
    if save_path:
        fig.savefig(save_path, dpi=theme.dpi, bbox_inches="tight")
        logger.info("Saved risk panels: %s", save_path)
    return fig


def plot_rme_vs_smoothed(
    table: pd.DataFrame,
    theme: PlotTheme | None = None,
    save_path: str | Path | None = None,
    ax: plt.Axes | None = None,
) -> plt.Axes:
    """Raw RME against the smoothed risk of every backend.

    Points pulled towards 1 relative to the diagonal show the shrinkage of
    the BYM model, strongest for units with small expected counts.
    """
    theme = theme or PlotTheme()
    rms_cols = [c for c in table.columns if c.startswith("RMS_")]
    if "RME" not in table.columns or not rms_cols:
        raise DataError("Table needs an RME column and at least one RMS_<backend> column")

    long = table.melt(
        id_vars=["RME", "E"] if "E" in table.columns else ["RME"],
        value_vars=rms_cols,
        var_name="backend",
        value_name="RMS",
    )
    long["backend"] = long["backend"].str.removeprefix("RMS_")
    long = long[np.isfinite(long["RME"])]

    if ax is None:
        _, ax = plt.subplots(figsize=(6, 5))

    sns.scatterplot(
        data=long,
        x="RME",
        y="RMS",
        hue="backend",
        size="E" if "E" in long.columns else None,
        sizes=(8, 80),
        alpha=0.6,
        ax=ax,
    )
    upper = float(max(long["RME"].max(), long["RMS"].max(), 1.0))
    ax.plot([0, upper], [0, upper], color="k", linestyle="--", alpha=0.5)
    ax.axhline(1.0, color="grey", linestyle=":", alpha=0.7)
    ax.set_title("Raw vs smoothed risk", fontsize=theme.title_size)
    ax.set_xlabel("RME (observed / expected)")
    ax.set_ylabel("Smoothed relative risk")
    ax.legend(bbox_to_anchor=(1.05, 1), loc="upper left", fontsize=theme.font_size)

    if save_path:
        ax.figure.savefig(save_path, dpi=theme.dpi, bbox_inches="tight")
        logger.info("Saved RME vs smoothed scatter: %s", save_path)
    return ax
