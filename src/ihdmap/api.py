"""High-level ihdmap API."""

from __future__ import annotations

import logging
from dataclasses import asdict, replace
from pathlib import Path
from typing import Any

import pandas as pd

from ihdmap.config import AtlasConfig
from ihdmap.exceptions import ConfigError, DataError
from ihdmap.graph import NeighborGraph, build_neighbor_graph, write_graph
from ihdmap.io.loaders import load_units
from ihdmap.models import ModelAdapter, ModelResult, fit_backends
from ihdmap.report import BASE_COLUMNS, build_results_table
from ihdmap.risk import add_rme

logger = logging.getLogger(__name__)


class RiskAtlas:
    """Smoothed mortality risk atlas with the BYM model.

    Runs the one-way pipeline: load counts and geometry, compute the
    standardized mortality ratio (RME), build the contiguity graph and
    write it to the output directory, fit every configured backend and
    assemble one table with a row per municipality.

    Parameters
    ----------
    config : AtlasConfig | None
        Full configuration.  Individual keyword arguments override fields
        of the default config.
    **kwargs
        Passed to :class:`AtlasConfig`.

    Examples
    --------
    >>> from ihdmap import RiskAtlas
    >>> atlas = RiskAtlas(backends=["laplace"], output_dir="out")
    >>> table = atlas.run("deaths.csv", "municipalities.shp")
    >>> atlas.write_report()
    """

    def __init__(self, config: AtlasConfig | None = None, **kwargs: Any):
        cfg = config if config is not None else AtlasConfig()

        for key, value in kwargs.items():
            if hasattr(cfg, key):
                setattr(cfg, key, value)
            else:
                raise TypeError(f"Unknown parameter: {key!r}")

        self.config = cfg

        # Populated after run
        self.units_: Any = None
        self.graph_: NeighborGraph | None = None
        self.graph_path_: Path | None = None
        self.results_: dict[str, ModelResult] | None = None
        self.adapters_: dict[str, ModelAdapter] | None = None
        self.table_: pd.DataFrame | None = None
        self.params_: dict[str, Any] = asdict(cfg)

    # ------------------------------------------------------------------
    # Core pipeline
    # ------------------------------------------------------------------

    def run(
        self,
        counts_path: str | Path,
        geometry_path: str | Path,
        verbose: bool = True,
    ) -> pd.DataFrame:
        """Load the input files and run the full pipeline.

        Parameters
        ----------
        counts_path : str | Path
            CSV or Excel table with code, observed and expected deaths.
        geometry_path : str | Path
            Vector file (shapefile, GeoJSON, GeoPackage) with the same codes.
        verbose : bool
            Log progress.

        Returns
        -------
        pd.DataFrame
            Columns ``code``, ``name``, ``O``, ``E``, ``RME`` and
            ``RMS_<b>``, ``P_<b>``, ``pred_<b>`` per backend.
        """
        cfg = self.config
        units = load_units(
            counts_path,
            geometry_path,
            code_col=cfg.code_col,
            observed_col=cfg.observed_col,
            expected_col=cfg.expected_col,
            name_col=cfg.name_col,
        )
        return self.run_frame(units, verbose=verbose)

    def run_frame(self, units: Any, verbose: bool = True) -> pd.DataFrame:
        """Run the pipeline on already joined units.

        *units* is a GeoDataFrame with ``code``, ``O``, ``E`` and
        ``geometry``; its row order becomes the unit order.
        """
        cfg = self.config
        if not cfg.backends:
            raise ConfigError("No backends configured")
        missing = [c for c in ("code", "O", "E", "geometry") if c not in units.columns]
        if missing:
            raise DataError(f"Units are missing columns {missing}")

        # 1. Raw risk
        units = add_rme(units.reset_index(drop=True), "O", "E", zero_policy=cfg.zero_policy)

        # 2. Neighbor graph, materialized for the backends that read it
        graph = build_neighbor_graph(
            units.geometry,
            contiguity=cfg.contiguity,
            allow_isolated=cfg.allow_isolated,
        )
        graph_path = write_graph(graph, cfg.graph_path())
        if verbose:
            logger.info(
                "Graph: %d units, %d edges, %d isolated -> %s",
                graph.n_units,
                graph.n_edges,
                len(graph.isolated),
                graph_path,
            )

        # 3. Backends
        configs = {name: cfg.backend_config(name) for name in cfg.backends}
        laplace_cfg = configs.get("laplace")
        if laplace_cfg is not None and laplace_cfg.graph_file is None:
            configs["laplace"] = replace(laplace_cfg, graph_file=str(graph_path))

        results, adapters = fit_backends(
            cfg.backends,
            units["O"].to_numpy(),
            units["E"].to_numpy(),
            graph,
            configs,
            parallel=cfg.parallel,
        )

        # 4. Table
        table = build_results_table(units, results)
        for column in (c for c in table.columns if c not in BASE_COLUMNS):
            units[column] = table[column].to_numpy()

        self.units_ = units
        self.graph_ = graph
        self.graph_path_ = graph_path
        self.results_ = results
        self.adapters_ = adapters
        self.table_ = table
        self.params_ = asdict(cfg)
        self.params_["n_units"] = graph.n_units
        self.params_["graph_file"] = str(graph_path)
        return table

    # ------------------------------------------------------------------
    # Outputs
    # ------------------------------------------------------------------

    def map_columns(self) -> list[str]:
        """Columns shown in the static panel figure, in display order."""
        self._check_fitted()
        cols = ["RME"]
        for backend in self.results_:
            cols += [f"RMS_{backend}", f"P_{backend}"]
        return cols

    def plot_results(self, out_dir: str | Path | None = None) -> list[Path]:
        """Write static figures and the interactive map.

        Must be called after :meth:`run`.

        Returns
        -------
        list[Path]
            Paths of the files written (static figures first).
        """
        self._check_fitted()
        import matplotlib.pyplot as plt

        from ihdmap.visualization import (
            interactive_map,
            plot_choropleth,
            plot_risk_panels,
            plot_rme_vs_smoothed,
        )

        out = Path(out_dir or self.config.output_dir)
        out.mkdir(parents=True, exist_ok=True)
        theme = self.config.theme
        written = []

        probs, cuts = self.config.risk_probs, self.config.prob_cuts
        fig = plot_risk_panels(
            self.units_,
            self.map_columns(),
            theme=theme,
            probs=probs,
            cuts=cuts,
            save_path=out / "risk_panels.png",
        )
        plt.close(fig)
        written.append(out / "risk_panels.png")

        for backend in self.results_:
            path = out / f"rms_{backend}.png"
            ax = plot_choropleth(
                self.units_, f"RMS_{backend}", theme=theme, probs=probs, save_path=path
            )
            plt.close(ax.figure)
            written.append(path)

        ax = plot_rme_vs_smoothed(self.table_, theme=theme, save_path=out / "rme_vs_rms.png")
        plt.close(ax.figure)
        written.append(out / "rme_vs_rms.png")

        first = next(iter(self.results_))
        tooltip = [c for c in self.table_.columns if c in self.units_.columns]
        interactive_map(
            self.units_,
            f"RMS_{first}",
            theme=theme,
            tooltip_cols=tooltip,
            probs=probs,
            cuts=cuts,
            save_path=out / "atlas.html",
        )
        written.append(out / "atlas.html")
        return written

    def write_report(
        self,
        out_dir: str | Path | None = None,
        figures: list[Path] | None = None,
    ) -> Path:
        """Write ``results.csv``, ``parameters.json`` and ``report.html``.

        *figures* are the paths returned by :meth:`plot_results`; without
        them the report carries tables only.  Must be called after
        :meth:`run`.
        """
        self._check_fitted()
        from ihdmap.io.exporters import save_parameters, save_results
        from ihdmap.report import render_report

        out = Path(out_dir or self.config.output_dir)
        save_results(self.table_, out / "results.csv")
        save_parameters(self.params_, out / "parameters.json")

        figures = figures or []
        static = [f for f in figures if Path(f).suffix != ".html"]
        interactive = next((f for f in figures if Path(f).suffix == ".html"), None)
        return render_report(
            self.table_,
            figures=static,
            interactive_path=interactive,
            out_path=out / "report.html",
            parameters={
                "backends": ", ".join(self.results_),
                "contiguity": self.config.contiguity,
                "zero_policy": self.config.zero_policy,
                "graph_file": self.params_["graph_file"],
            },
        )

    def backend_summary(self, name: str = "mcmc") -> pd.DataFrame:
        """Hyperparameter summary of a fitted backend that provides one."""
        self._check_fitted()
        adapter = self.adapters_.get(name)
        if adapter is None or not hasattr(adapter, "summary"):
            raise KeyError(f"No summary available for backend {name!r}")
        return adapter.summary()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _check_fitted(self) -> None:
        if self.table_ is None:
            raise RuntimeError("Call run() first.")
