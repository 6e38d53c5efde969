"""Tests for the RiskAtlas pipeline."""

import pandas as pd
import pytest


def test_unknown_parameter_raises():
    from ihdmap import RiskAtlas

    with pytest.raises(TypeError, match="Unknown parameter"):
        RiskAtlas(n_epochs=10)


def test_outputs_require_run():
    from ihdmap import RiskAtlas

    atlas = RiskAtlas()
    with pytest.raises(RuntimeError, match="run"):
        atlas.plot_results()
    with pytest.raises(RuntimeError, match="run"):
        atlas.write_report()


def test_run_frame_laplace(tmp_path, lattice):
    from ihdmap import RiskAtlas
    from ihdmap.graph import read_graph

    atlas = RiskAtlas(backends=["laplace"], output_dir=str(tmp_path))
    table = atlas.run_frame(lattice, verbose=False)

    assert len(table) == len(lattice)
    assert {"RME", "RMS_laplace", "P_laplace", "pred_laplace"} <= set(table.columns)
    assert atlas.graph_path_ == tmp_path / "neighbors.graph"
    assert read_graph(atlas.graph_path_) == atlas.graph_
    assert set(atlas.results_) == {"laplace"}
    assert "RMS_laplace" in atlas.units_.columns
    # The user's config is not given a graph file behind their back
    assert atlas.config.laplace.graph_file is None


def test_run_from_files(tmp_path, lattice):
    from ihdmap import RiskAtlas

    geo = tmp_path / "munis.gpkg"
    lattice[["code", "name", "geometry"]].rename(columns={"code": "INE"}).set_crs(
        "EPSG:4326"
    ).to_file(geo, driver="GPKG")
    counts = tmp_path / "deaths.csv"
    pd.DataFrame({"INE": lattice["code"], "obs": lattice["O"], "esp": lattice["E"]}).to_csv(
        counts, index=False
    )

    atlas = RiskAtlas(
        backends=["laplace"],
        output_dir=str(tmp_path / "out"),
        code_col="INE",
        observed_col="obs",
        expected_col="esp",
    )
    table = atlas.run(counts, geo, verbose=False)
    assert table["code"].tolist() == lattice["code"].tolist()
    assert table["name"].tolist() == lattice["name"].tolist()


def test_plot_and_report(tmp_path, lattice):
    from ihdmap import RiskAtlas

    atlas = RiskAtlas(backends=["laplace"], output_dir=str(tmp_path))
    atlas.run_frame(lattice, verbose=False)

    written = atlas.plot_results()
    names = {p.name for p in written}
    assert {"risk_panels.png", "rms_laplace.png", "rme_vs_rms.png", "atlas.html"} <= names
    assert all(p.is_file() for p in written)

    report = atlas.write_report(figures=written)
    assert report.is_file()
    assert (tmp_path / "results.csv").is_file()
    assert (tmp_path / "parameters.json").is_file()
    assert "risk_panels.png" in report.read_text(encoding="utf-8")


def test_unknown_backend(tmp_path, lattice):
    from ihdmap import RiskAtlas
    from ihdmap.exceptions import ConfigError

    atlas = RiskAtlas(backends=["inla"], output_dir=str(tmp_path))
    with pytest.raises(ConfigError, match="Unknown backend"):
        atlas.run_frame(lattice, verbose=False)


def test_empty_backend_list(tmp_path, lattice):
    from ihdmap import RiskAtlas
    from ihdmap.exceptions import ConfigError

    atlas = RiskAtlas(backends=[], output_dir=str(tmp_path))
    with pytest.raises(ConfigError, match="No backends"):
        atlas.run_frame(lattice, verbose=False)
    assert atlas.table_ is None
    assert not (tmp_path / "neighbors.graph").exists()


def test_plot_classes_follow_config(tmp_path, lattice, monkeypatch):
    from ihdmap import RiskAtlas
    from ihdmap.visualization import interactive, plots

    calls = []
    original = plots.classified_column

    def recording(values, probs=plots.RISK_PROBS, cuts=None, digits=2):
        calls.append((values.name, probs, cuts))
        return original(values, probs=probs, cuts=cuts, digits=digits)

    monkeypatch.setattr(plots, "classified_column", recording)
    monkeypatch.setattr(interactive, "classified_column", recording)

    halves = (0.0, 0.5, 1.0)
    atlas = RiskAtlas(
        backends=["laplace"],
        output_dir=str(tmp_path),
        risk_probs=halves,
        prob_cuts=halves,
    )
    atlas.run_frame(lattice, verbose=False)
    atlas.plot_results()

    risk_calls = [c for c in calls if not c[0].startswith("P_")]
    prob_calls = [c for c in calls if c[0].startswith("P_")]
    assert {c[0] for c in risk_calls} == {"RME", "RMS_laplace"}
    assert prob_calls
    assert all(probs == halves and cuts is None for _, probs, cuts in risk_calls)
    assert all(cuts == halves for _, _, cuts in prob_calls)
