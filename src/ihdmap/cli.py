"""ihdmap command-line interface."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated

import typer
from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table
from rich.tree import Tree

from ihdmap.exceptions import DataError, IhdmapError

app = typer.Typer(
    name="ihdmap",
    help="ihdmap: Bayesian smoothing of ischemic heart disease mortality by municipality",
    add_completion=False,
    rich_markup_mode="rich",
    no_args_is_help=True,
)

console = Console()

BANNER = """[bold red]
 ██╗██╗  ██╗██████╗ ███╗   ███╗ █████╗ ██████╗
 ██║██║  ██║██╔══██╗████╗ ████║██╔══██╗██╔══██╗
 ██║███████║██║  ██║██╔████╔██║███████║██████╔╝
 ██║██╔══██║██║  ██║██║╚██╔╝██║██╔══██║██╔═══╝
 ██║██║  ██║██████╔╝██║ ╚═╝ ██║██║  ██║██║
 ╚═╝╚═╝  ╚═╝╚═════╝ ╚═╝     ╚═╝╚═╝  ╚═╝╚═╝
[/bold red]
[dim]  ♥ Smoothed mortality risk atlas (BYM model) ♥[/dim]
"""


def _progress() -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(bar_width=40),
        TimeElapsedColumn(),
        console=console,
        transient=False,
    )


def _fail(exc: Exception) -> None:
    console.print(
        Panel(f"[red]{type(exc).__name__}: {escape(str(exc))}[/red]", title="Error", border_style="red")
    )
    raise typer.Exit(1)


def _setup_logging(quiet: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if not quiet else logging.WARNING,
        format="%(message)s",
    )


def _parse_floats(text: str) -> tuple[float, ...]:
    try:
        return tuple(float(t) for t in text.replace(",", " ").split())
    except ValueError as exc:
        raise typer.BadParameter(f"Expected numbers, got {text!r}") from exc


def _summary_table(table, backends: list[str]) -> Table:
    summary = Table(
        title="Smoothed Risk Summary",
        box=box.DOUBLE_EDGE,
        show_header=True,
        header_style="bold cyan",
    )
    summary.add_column("Backend", style="bold")
    summary.add_column("Min RMS", justify="right", style="green")
    summary.add_column("Mean RMS", justify="right", style="green")
    summary.add_column("Max RMS", justify="right", style="green")
    summary.add_column("P > 0.9", justify="right", style="red")
    summary.add_column("P < 0.1", justify="right", style="blue")

    rme = table["RME"]
    summary.add_row(
        "[dim]RME (raw)[/dim]",
        f"{rme.min():.3f}",
        f"{rme.mean():.3f}",
        f"{rme.max():.3f}",
        "",
        "",
    )
    for name in backends:
        rms = table[f"RMS_{name}"]
        prob = table[f"P_{name}"]
        summary.add_row(
            name,
            f"{rms.min():.3f}",
            f"{rms.mean():.3f}",
            f"{rms.max():.3f}",
            f"{(prob > 0.9).sum():,}",
            f"{(prob < 0.1).sum():,}",
        )
    return summary


def _run_atlas(atlas, counts, geometry, frame, no_plot: bool, quiet: bool) -> None:
    """Shared body of ``run`` and ``demo``."""
    out = Path(atlas.config.output_dir)
    out.mkdir(parents=True, exist_ok=True)

    try:
        with _progress() as progress:
            task = progress.add_task("Fitting BYM model...", total=None)
            if frame is not None:
                table = atlas.run_frame(frame, verbose=not quiet)
            else:
                table = atlas.run(counts, geometry, verbose=not quiet)
            progress.update(task, completed=1, total=1)
    except IhdmapError as exc:
        _fail(exc)

    figures: list[Path] = []
    if not no_plot:
        try:
            with _progress() as progress:
                task = progress.add_task("Drawing maps...", total=None)
                figures = atlas.plot_results(out)
                progress.update(task, completed=1, total=1)
        except Exception as exc:
            console.print(f"[yellow]Warning: could not generate plots: {exc}[/yellow]")

    try:
        atlas.write_report(out, figures=figures)
    except IhdmapError as exc:
        _fail(exc)

    console.print()
    console.print(_summary_table(table, list(atlas.results_)))

    tree = Tree(f"[bold green]{out}/[/bold green]", guide_style="dim")
    tree.add(f"[cyan]{atlas.graph_path_.name}[/cyan] -- neighbor graph")
    tree.add("[cyan]results.csv[/cyan] -- per-municipality results")
    tree.add("[cyan]parameters.json[/cyan] -- parameters used")
    tree.add("[cyan]report.html[/cyan] -- summary report")
    for fig in figures:
        tree.add(f"[cyan]{Path(fig).name}[/cyan]")

    console.print()
    console.print(Panel(tree, title="Output Files", border_style="green"))


# -----------------------------------------------------------------------
# run
# -----------------------------------------------------------------------
@app.command()
def run(
    counts: Annotated[str, typer.Argument(help="CSV/Excel table with code, O and E")],
    geometry: Annotated[str, typer.Argument(help="Municipal polygons (shapefile, GeoJSON, ...)")],
    backend: Annotated[
        list[str] | None,
        typer.Option("--backend", "-b", help="Backend to fit (repeatable): mcmc, laplace"),
    ] = None,
    code_col: Annotated[str, typer.Option("--code-col", help="Municipality code column")] = "CODMUNI",
    observed_col: Annotated[str, typer.Option("--observed-col", help="Observed deaths column")] = "O",
    expected_col: Annotated[str, typer.Option("--expected-col", help="Expected deaths column")] = "E",
    name_col: Annotated[
        str | None, typer.Option("--name-col", help="Municipality name column")
    ] = None,
    n_iter: Annotated[int, typer.Option("--n-iter", help="MCMC iterations per chain")] = 5000,
    burn_in: Annotated[int, typer.Option("--burn-in", help="MCMC burn-in iterations")] = 1000,
    thin: Annotated[int, typer.Option("--thin", help="MCMC thinning interval")] = 5,
    chains: Annotated[int, typer.Option("--chains", help="MCMC chains")] = 3,
    seed: Annotated[int, typer.Option("--seed", help="Random seed")] = 42,
    contiguity: Annotated[
        str, typer.Option("--contiguity", help="Contiguity rule: queen or rook")
    ] = "queen",
    zero_policy: Annotated[
        str, typer.Option("--zero-policy", help="RME when O = E = 0: zero, nan or error")
    ] = "zero",
    output_dir: Annotated[
        str, typer.Option("--output-dir", "-o", help="Output directory")
    ] = "ihdmap_output",
    parallel: Annotated[
        bool, typer.Option("--parallel", help="Fit backends in parallel threads")
    ] = False,
    no_plot: Annotated[
        bool, typer.Option("--no-plot", help="Skip generating maps")
    ] = False,
    quiet: Annotated[bool, typer.Option("--quiet", "-q", help="Minimal output")] = False,
) -> None:
    """[bold cyan]Run[/bold cyan] the full smoothing pipeline.

    Loads counts and geometry, computes RME, writes the neighbor graph,
    fits every backend and writes results, maps and the HTML report.

    [bold]Examples:[/bold]
        ihdmap run deaths.csv municipalities.shp
        ihdmap run deaths.csv munis.geojson -b laplace --no-plot
        ihdmap run deaths.xlsx munis.gpkg --n-iter 2000 --burn-in 500 --chains 2
    """
    from ihdmap.api import RiskAtlas
    from ihdmap.config import AtlasConfig, MCMCConfig

    if not quiet:
        console.print(BANNER)
    _setup_logging(quiet)

    cfg = AtlasConfig(
        code_col=code_col,
        observed_col=observed_col,
        expected_col=expected_col,
        name_col=name_col,
        contiguity=contiguity,
        zero_policy=zero_policy,
        backends=list(backend) if backend else ["mcmc", "laplace"],
        parallel=parallel,
        output_dir=output_dir,
        mcmc=MCMCConfig(n_iter=n_iter, burn_in=burn_in, thin=thin, chains=chains, seed=seed),
    )
    _run_atlas(RiskAtlas(config=cfg), counts, geometry, None, no_plot, quiet)


# -----------------------------------------------------------------------
# graph
# -----------------------------------------------------------------------
@app.command()
def graph(
    geometry: Annotated[str, typer.Argument(help="Municipal polygons (shapefile, GeoJSON, ...)")],
    output: Annotated[str, typer.Option("--output", "-o", help="Graph file to write")],
    code_col: Annotated[str, typer.Option("--code-col", help="Municipality code column")] = "CODMUNI",
    contiguity: Annotated[
        str, typer.Option("--contiguity", help="Contiguity rule: queen or rook")
    ] = "queen",
) -> None:
    """[bold cyan]Write[/bold cyan] the neighbor graph exchange file.

    Units are ordered by code, as in [bold]run[/bold].

    [bold]Examples:[/bold]
        ihdmap graph municipalities.shp -o neighbors.graph
        ihdmap graph munis.geojson -o rook.graph --contiguity rook
    """
    from ihdmap.graph import build_neighbor_graph, write_graph
    from ihdmap.io.loaders import load_geometry

    _setup_logging(quiet=False)

    try:
        gdf = load_geometry(geometry, code_col=code_col)
        gdf = gdf.sort_values("code", kind="stable").reset_index(drop=True)
        nb = build_neighbor_graph(gdf.geometry, contiguity=contiguity)
        path = write_graph(nb, output)
    except IhdmapError as exc:
        _fail(exc)

    tbl = Table(box=box.ROUNDED, show_header=False)
    tbl.add_column("", style="cyan")
    tbl.add_column("")
    tbl.add_row("Units", f"{nb.n_units:,}")
    tbl.add_row("Edges", f"{nb.n_edges:,}")
    tbl.add_row("Mean neighbors", f"{nb.num_neighbors.mean():.2f}")
    tbl.add_row("Isolated", f"{len(nb.isolated):,}")
    tbl.add_row("Components", f"{len(nb.components()):,}")
    console.print(tbl)
    console.print(Panel(f"[green]Graph saved to: {path}[/green]", border_style="green"))


# -----------------------------------------------------------------------
# classify
# -----------------------------------------------------------------------
@app.command()
def classify(
    results_csv: Annotated[str, typer.Argument(help="Results CSV written by ihdmap run")],
    column: Annotated[str, typer.Option("--column", "-c", help="Column to classify")],
    probs: Annotated[
        str, typer.Option("--probs", help="Quantile probabilities, e.g. '0 .2 .4 .6 .8 1'")
    ] = "0 0.2 0.4 0.6 0.8 1",
    cuts: Annotated[
        str | None, typer.Option("--cuts", help="Fixed cut points instead of quantiles")
    ] = None,
    digits: Annotated[int, typer.Option("--digits", help="Decimals in labels")] = 2,
) -> None:
    """[bold cyan]Classify[/bold cyan] a results column and print class counts.

    [bold]Examples:[/bold]
        ihdmap classify results.csv -c RMS_mcmc
        ihdmap classify results.csv -c P_laplace --cuts "0 .1 .2 .8 .9 1"
    """
    import numpy as np
    import pandas as pd

    from ihdmap.classify import classify as classify_values
    from ihdmap.classify import classify_fixed

    table = pd.read_csv(results_csv, dtype={"code": str})
    if column not in table.columns:
        _fail(DataError(f"Column {column!r} not in {results_csv}. Found: {list(table.columns)}"))

    values = table[column].to_numpy(dtype=np.float64)
    values = values[np.isfinite(values)]
    try:
        if cuts:
            result = classify_fixed(values, _parse_floats(cuts), digits=digits)
        else:
            result = classify_values(values, _parse_floats(probs), digits=digits)
    except IhdmapError as exc:
        _fail(exc)

    tbl = Table(
        title=f"Classes of {column}",
        box=box.ROUNDED,
        header_style="bold magenta",
    )
    tbl.add_column("Class", style="cyan bold")
    tbl.add_column("Count", justify="right", style="green")
    tbl.add_column("Percentage", justify="right", style="yellow")
    total = len(values)
    for label, count in result.counts().items():
        tbl.add_row(label, f"{count:,}", f"{count / total * 100:.1f}%")
    console.print(tbl)


# -----------------------------------------------------------------------
# demo
# -----------------------------------------------------------------------
@app.command()
def demo(
    rows: Annotated[int, typer.Option("--rows", help="Lattice rows")] = 10,
    cols: Annotated[int, typer.Option("--cols", help="Lattice columns")] = 10,
    backend: Annotated[
        list[str] | None,
        typer.Option("--backend", "-b", help="Backend to fit (repeatable)"),
    ] = None,
    n_iter: Annotated[int, typer.Option("--n-iter", help="MCMC iterations per chain")] = 1500,
    burn_in: Annotated[int, typer.Option("--burn-in", help="MCMC burn-in iterations")] = 500,
    seed: Annotated[int, typer.Option("--seed", help="Random seed")] = 42,
    output_dir: Annotated[
        str, typer.Option("--output-dir", "-o", help="Output directory")
    ] = "ihdmap_demo",
    no_plot: Annotated[
        bool, typer.Option("--no-plot", help="Skip generating maps")
    ] = False,
    quiet: Annotated[bool, typer.Option("--quiet", "-q", help="Minimal output")] = False,
) -> None:
    """[bold cyan]Demo[/bold cyan] on a synthetic lattice of municipalities.

    [bold]Examples:[/bold]
        ihdmap demo
        ihdmap demo --rows 20 --cols 20 -b laplace
    """
    from ihdmap.api import RiskAtlas
    from ihdmap.config import AtlasConfig, MCMCConfig
    from ihdmap.io.synthetic import make_lattice

    if not quiet:
        console.print(BANNER)
    _setup_logging(quiet)

    units, _ = make_lattice(n_rows=rows, n_cols=cols, random_state=seed)
    cfg = AtlasConfig(
        backends=list(backend) if backend else ["laplace", "mcmc"],
        output_dir=output_dir,
        mcmc=MCMCConfig(n_iter=n_iter, burn_in=burn_in, thin=1, chains=2, seed=seed),
    )
    _run_atlas(RiskAtlas(config=cfg), None, None, units, no_plot, quiet)


# -----------------------------------------------------------------------
# info
# -----------------------------------------------------------------------
@app.command()
def info() -> None:
    """[bold cyan]Show[/bold cyan] ihdmap version and registered backends.

    [bold]Examples:[/bold]
        ihdmap info
    """
    from ihdmap import __version__
    from ihdmap.models import BackendRegistry

    console.print(BANNER)

    tbl = Table(box=box.ROUNDED, show_header=False)
    tbl.add_column("", style="cyan")
    tbl.add_column("")
    tbl.add_row("Version", f"[bold]{__version__}[/bold]")
    tbl.add_row("Package", "ihdmap")
    console.print(tbl)

    console.print()
    mtbl = Table(
        title="Registered Backends",
        box=box.ROUNDED,
        header_style="bold magenta",
    )
    mtbl.add_column("Backend", style="cyan bold")
    mtbl.add_column("Description", style="dim")

    descs = {
        "mcmc": "BYM model sampled with PyMC (NUTS)",
        "laplace": "BYM model, empirical-Bayes Laplace approximation",
    }
    for name in BackendRegistry.list_methods():
        mtbl.add_row(name, descs.get(name, "(user-registered)"))
    console.print(mtbl)


if __name__ == "__main__":
    app()
