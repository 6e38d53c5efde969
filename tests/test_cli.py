"""Tests for the command-line interface."""

import pandas as pd
from typer.testing import CliRunner

runner = CliRunner()


def test_graph_command(tmp_path, lattice):
    from ihdmap.cli import app
    from ihdmap.graph import read_graph

    geo = tmp_path / "munis.geojson"
    lattice[["code", "geometry"]].rename(columns={"code": "CODMUNI"}).set_crs(
        "EPSG:4326"
    ).to_file(geo, driver="GeoJSON")
    out = tmp_path / "neighbors.graph"

    result = runner.invoke(app, ["graph", str(geo), "--output", str(out)])
    assert result.exit_code == 0, result.output
    graph = read_graph(out)
    assert graph.n_units == 12
    # Corner cell of a 3 x 4 queen lattice
    assert graph.neighbors_of(0) == (1, 4, 5)


def test_graph_command_missing_file(tmp_path):
    from ihdmap.cli import app

    result = runner.invoke(app, ["graph", str(tmp_path / "nope.shp"), "-o", str(tmp_path / "g")])
    assert result.exit_code == 1
    assert "DataError" in result.output


def test_classify_command(tmp_path):
    from ihdmap.cli import app

    path = tmp_path / "results.csv"
    pd.DataFrame({"code": ["1", "2", "3", "4"], "P_mcmc": [0.05, 0.5, 0.85, 0.95]}).to_csv(
        path, index=False
    )
    result = runner.invoke(
        app, ["classify", str(path), "--column", "P_mcmc", "--cuts", "0 .1 .2 .8 .9 1"]
    )
    assert result.exit_code == 0, result.output
    assert "(0.90, 1.00]" in result.output


def test_classify_command_unknown_column(tmp_path):
    from ihdmap.cli import app

    path = tmp_path / "results.csv"
    pd.DataFrame({"code": ["1"], "RME": [1.0]}).to_csv(path, index=False)
    result = runner.invoke(app, ["classify", str(path), "--column", "RMS_x"])
    assert result.exit_code == 1


def test_demo_command(tmp_path):
    from ihdmap.cli import app

    out = tmp_path / "demo"
    result = runner.invoke(
        app,
        ["demo", "--rows", "3", "--cols", "3", "-b", "laplace", "--no-plot", "-q", "-o", str(out)],
    )
    assert result.exit_code == 0, result.output
    assert (out / "results.csv").is_file()
    assert (out / "report.html").is_file()
    assert (out / "neighbors.graph").read_text().startswith("9\n")


def test_info_lists_backends():
    from ihdmap.cli import app

    result = runner.invoke(app, ["info"])
    assert result.exit_code == 0
    assert "laplace" in result.output
    assert "mcmc" in result.output
