"""Visualisation utilities."""

from ihdmap.config import PlotTheme
from ihdmap.visualization.interactive import interactive_map
from ihdmap.visualization.plots import (
    classified_column,
    plot_choropleth,
    plot_risk_panels,
    plot_rme_vs_smoothed,
)

__all__ = [
    "PlotTheme",
    "classified_column",
    "interactive_map",
    "plot_choropleth",
    "plot_risk_panels",
    "plot_rme_vs_smoothed",
]
