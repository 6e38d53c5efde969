"""Tests for the adapter contract and the built-in backends."""

import numpy as np
import pytest


def _short_adapter():
    from ihdmap.models import ModelAdapter

    class ShortAdapter(ModelAdapter):
        name = "short"

        def default_config(self):
            return None

        def validate(self, config):
            pass

        def _run(self, counts, exposures, graph, config):
            n = graph.n_units - 1
            return {
                "smoothed_risk": np.ones(n),
                "prob_exceeds_one": np.zeros(n),
                "predicted": np.ones(n),
            }

    return ShortAdapter()


def test_backend_with_missing_unit_raises():
    from ihdmap.exceptions import IntegrityError
    from ihdmap.graph import NeighborGraph

    graph = NeighborGraph.from_neighbor_lists([[] for _ in range(729)])
    counts = np.ones(729, dtype=int)
    with pytest.raises(IntegrityError, match="728 values for 729 units"):
        _short_adapter().fit(counts, np.ones(729), graph)


def test_inputs_must_match_graph(three_unit_graph):
    from ihdmap.exceptions import DataError, IntegrityError

    adapter = _short_adapter()
    with pytest.raises(IntegrityError):
        adapter.fit([1, 2], [1.0, 2.0], three_unit_graph)
    with pytest.raises(DataError):
        adapter.fit([1, -2, 3], [1.0, 2.0, 3.0], three_unit_graph)
    with pytest.raises(DataError):
        adapter.fit([1, 2.5, 3], [1.0, 2.0, 3.0], three_unit_graph)


def test_model_result_is_read_only():
    from ihdmap.models import ModelResult

    risk = np.array([1.0, 2.0])
    result = ModelResult("x", risk, [0.1, 0.9], [3.0, 4.0])
    assert len(result) == 2
    assert risk.flags.writeable
    with pytest.raises(ValueError):
        result.smoothed_risk[0] = 5.0
    frame = result.to_frame(index=["a", "b"])
    assert list(frame.columns) == ["smoothed_risk", "prob_exceeds_one", "predicted"]
    assert frame.loc["b", "prob_exceeds_one"] == 0.9


def test_model_result_length_mismatch():
    from ihdmap.exceptions import IntegrityError
    from ihdmap.models import ModelResult

    with pytest.raises(IntegrityError):
        ModelResult("x", [1.0, 2.0], [0.5], [1.0, 2.0])


# ---------------------------------------------------------------------------
# mcmc
# ---------------------------------------------------------------------------


def test_mcmc_burn_in_longer_than_run(three_unit_graph, monkeypatch):
    from ihdmap.config import MCMCConfig
    from ihdmap.exceptions import ConfigError
    from ihdmap.models import MCMCAdapter

    adapter = MCMCAdapter()

    def _never(*args, **kwargs):
        raise AssertionError("backend called")

    monkeypatch.setattr(adapter, "_run", _never)
    with pytest.raises(ConfigError, match="burn_in"):
        adapter.fit([1, 2, 3], [1.0, 2.0, 3.0], three_unit_graph, MCMCConfig(n_iter=100, burn_in=150))


@pytest.mark.parametrize(
    "kwargs",
    [{"thin": 0}, {"burn_in": -1}, {"chains": 0}, {"target_accept": 1.0}],
)
def test_mcmc_invalid_config(kwargs):
    from ihdmap.config import MCMCConfig
    from ihdmap.exceptions import ConfigError
    from ihdmap.models import MCMCAdapter

    with pytest.raises(ConfigError):
        MCMCAdapter().validate(MCMCConfig(**kwargs))


def test_mcmc_rejects_wrong_config_type():
    from ihdmap.config import LaplaceConfig
    from ihdmap.exceptions import ConfigError
    from ihdmap.models import MCMCAdapter

    with pytest.raises(ConfigError, match="MCMCConfig"):
        MCMCAdapter().validate(LaplaceConfig())


def test_mcmc_draw_count():
    from ihdmap.config import MCMCConfig

    assert MCMCConfig(n_iter=5000, burn_in=1000, thin=5).n_draws == 800


def test_bym_model_structure():
    from ihdmap.graph import NeighborGraph
    from ihdmap.models.mcmc import build_bym_model

    graph = NeighborGraph.from_neighbor_lists([[1], [0, 2], [1], []])
    model = build_bym_model(np.array([1, 2, 3, 0]), np.array([1.0, 2.0, 2.5, 0.5]), graph)
    names = {v.name for v in model.free_RVs}
    assert {"b0", "sigma_h", "sigma_s", "h", "phi"} <= names
    potentials = {p.name for p in model.potentials}
    assert "phi_pairwise" in potentials
    assert "phi_isolated_1" in potentials
    assert "phi_sum_0" in potentials


@pytest.mark.slow
def test_mcmc_fit_small_lattice(lattice):
    from ihdmap.config import MCMCConfig
    from ihdmap.graph import build_neighbor_graph
    from ihdmap.models import MCMCAdapter

    graph = build_neighbor_graph(lattice.geometry)
    adapter = MCMCAdapter()
    cfg = MCMCConfig(n_iter=400, burn_in=200, thin=2, chains=2, seed=1)
    result = adapter.fit(lattice["O"], lattice["E"], graph, cfg)

    assert len(result) == len(lattice)
    assert np.all(result.smoothed_risk > 0)
    assert np.all((result.prob_exceeds_one >= 0) & (result.prob_exceeds_one <= 1))
    assert adapter.idata_.posterior.sizes["chain"] == 2
    assert adapter.idata_.posterior.sizes["draw"] == 200
    assert adapter.posterior_.sizes["draw"] == cfg.n_draws
    assert list(adapter.summary().index) == ["b0", "sigma_h", "sigma_s"]


def test_mcmc_results_and_summary_use_thinned_draws(three_unit_graph, monkeypatch):
    import arviz as az

    from ihdmap.config import MCMCConfig
    from ihdmap.models import MCMCAdapter

    def fake_sample(draws, tune, chains, **kwargs):
        assert (draws, tune) == (20, 10)
        shape = (chains, draws)
        theta = np.exp(np.linspace(-1.0, 1.0, chains * draws * 3)).reshape(*shape, 3)
        return az.from_dict(
            posterior={
                "b0": np.arange(chains * draws, dtype=float).reshape(shape),
                "sigma_h": np.ones(shape),
                "sigma_s": np.ones(shape),
                "theta": theta,
            }
        )

    monkeypatch.setattr("pymc.sample", fake_sample)
    adapter = MCMCAdapter()
    cfg = MCMCConfig(n_iter=30, burn_in=10, thin=5, chains=2)
    result = adapter.fit([1, 2, 3], [1.0, 2.0, 3.0], three_unit_graph, cfg)

    theta = adapter.idata_.posterior["theta"].values
    assert theta.shape[1] == 20
    assert adapter.posterior_.sizes["draw"] == cfg.n_draws == 4
    assert np.allclose(result.smoothed_risk, theta[:, ::5].reshape(-1, 3).mean(axis=0))
    # b0 draws 0..39: the thinned mean is 17.5, the full mean 19.5
    assert adapter.summary().loc["b0", "mean"] == pytest.approx(17.5, abs=0.01)


# ---------------------------------------------------------------------------
# laplace
# ---------------------------------------------------------------------------


def _laplace_setup(lattice, tmp_path):
    from ihdmap.config import LaplaceConfig
    from ihdmap.graph import build_neighbor_graph, write_graph

    graph = build_neighbor_graph(lattice.geometry)
    path = write_graph(graph, tmp_path / "lattice.graph")
    return graph, LaplaceConfig(graph_file=str(path))


def test_laplace_requires_graph_file(tmp_path):
    from ihdmap.config import LaplaceConfig, MCMCConfig
    from ihdmap.exceptions import ConfigError
    from ihdmap.models import LaplaceAdapter

    with pytest.raises(ConfigError, match="graph_file"):
        LaplaceAdapter().validate(LaplaceConfig())
    with pytest.raises(ConfigError, match="not found"):
        LaplaceAdapter().validate(LaplaceConfig(graph_file=str(tmp_path / "missing.graph")))
    with pytest.raises(ConfigError, match="LaplaceConfig"):
        LaplaceAdapter().validate(MCMCConfig())


def test_laplace_fit(lattice, tmp_path):
    from ihdmap.models import LaplaceAdapter

    graph, cfg = _laplace_setup(lattice, tmp_path)
    adapter = LaplaceAdapter()
    result = adapter.fit(lattice["O"], lattice["E"], graph, cfg)

    assert result.backend == "laplace"
    assert len(result) == len(lattice)
    assert np.all(result.smoothed_risk > 0)
    assert np.all((result.prob_exceeds_one >= 0) & (result.prob_exceeds_one <= 1))
    assert np.allclose(result.predicted, lattice["E"].to_numpy() * result.smoothed_risk)
    assert set(adapter.hyper_) == {"tau_h", "tau_s"}
    assert np.isfinite(adapter.log_marginal_)


def test_laplace_shrinks_towards_the_mean(lattice, tmp_path):
    from ihdmap.models import LaplaceAdapter
    from ihdmap.risk import compute_rme

    graph, cfg = _laplace_setup(lattice, tmp_path)
    result = LaplaceAdapter().fit(lattice["O"], lattice["E"], graph, cfg)
    rme = compute_rme(lattice["O"], lattice["E"])
    assert result.smoothed_risk.max() - result.smoothed_risk.min() < rme.max() - rme.min()


def test_laplace_is_deterministic(lattice, tmp_path):
    from ihdmap.models import LaplaceAdapter

    graph, cfg = _laplace_setup(lattice, tmp_path)
    first = LaplaceAdapter().fit(lattice["O"], lattice["E"], graph, cfg)
    second = LaplaceAdapter().fit(lattice["O"], lattice["E"], graph, cfg)
    assert np.array_equal(first.smoothed_risk, second.smoothed_risk)
    assert np.array_equal(first.prob_exceeds_one, second.prob_exceeds_one)


def test_laplace_graph_file_mismatch(lattice, tmp_path):
    from ihdmap.config import LaplaceConfig
    from ihdmap.exceptions import IntegrityError
    from ihdmap.graph import NeighborGraph, build_neighbor_graph, write_graph
    from ihdmap.models import LaplaceAdapter

    graph = build_neighbor_graph(lattice.geometry)
    other = NeighborGraph.from_neighbor_lists([[] for _ in range(graph.n_units)])
    path = write_graph(other, tmp_path / "empty.graph")
    with pytest.raises(IntegrityError, match="does not match"):
        LaplaceAdapter().fit(lattice["O"], lattice["E"], graph, LaplaceConfig(graph_file=str(path)))


def test_laplace_rejects_weighted_graph(lattice, tmp_path):
    from ihdmap.exceptions import IntegrityError
    from ihdmap.graph import NeighborGraph
    from ihdmap.models import LaplaceAdapter

    graph, cfg = _laplace_setup(lattice, tmp_path)
    weighted = NeighborGraph.from_neighbor_lists(
        graph.neighbors, [[50.0] * len(nbrs) for nbrs in graph.neighbors]
    )
    assert weighted.neighbors == graph.neighbors
    with pytest.raises(IntegrityError, match="does not match"):
        LaplaceAdapter().fit(lattice["O"], lattice["E"], weighted, cfg)


def test_laplace_handles_isolated_units(tmp_path):
    from ihdmap.config import LaplaceConfig
    from ihdmap.graph import NeighborGraph, write_graph
    from ihdmap.models import LaplaceAdapter

    graph = NeighborGraph.from_neighbor_lists([[1], [0, 2], [1], []])
    path = write_graph(graph, tmp_path / "g.graph")
    result = LaplaceAdapter().fit(
        [4, 0, 6, 0], [3.0, 1.5, 4.0, 0.0], graph, LaplaceConfig(graph_file=str(path))
    )
    assert np.all(np.isfinite(result.smoothed_risk))
    assert result.predicted[3] == 0.0
