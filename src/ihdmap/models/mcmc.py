"""Simulation backend: BYM model sampled with PyMC (NUTS)."""

from __future__ import annotations

import logging
from typing import Any

import numpy as np

from ihdmap.config import MCMCConfig
from ihdmap.exceptions import ConfigError
from ihdmap.graph.neighbors import NeighborGraph
from ihdmap.models.base import ModelAdapter
from ihdmap.models.registry import register_backend

logger = logging.getLogger(__name__)

HYPERPARAMETERS = ["b0", "sigma_h", "sigma_s"]


@register_backend("mcmc")
class MCMCAdapter(ModelAdapter):
    """Besag-York-Mollié model fitted by MCMC.

    ``O_i ~ Poisson(E_i * theta_i)`` with
    ``log theta_i = b0 + sigma_h * h_i + sigma_s * phi_i``, where ``h`` is an
    i.i.d. standard normal (heterogeneous) effect and ``phi`` an intrinsic
    CAR field on the neighbor graph.  The CAR prior is written as a
    pairwise-difference potential with a soft sum-to-zero constraint per
    connected component; isolated units get a standard normal ``phi``.

    After :meth:`fit`, ``idata_`` holds every sampled draw and ``posterior_``
    the thinned posterior that the per-unit results and :meth:`summary` are
    computed from.
    """

    def __init__(self) -> None:
        self.idata_: Any = None
        self.posterior_: Any = None

    def default_config(self) -> MCMCConfig:
        return MCMCConfig()

    def validate(self, config: Any) -> None:
        if not isinstance(config, MCMCConfig):
            raise ConfigError(f"mcmc backend expects MCMCConfig, got {type(config).__name__}")
        if config.thin < 1:
            raise ConfigError(f"thin must be >= 1, got {config.thin}")
        if config.burn_in < 0:
            raise ConfigError(f"burn_in must be >= 0, got {config.burn_in}")
        if config.n_iter <= config.burn_in:
            raise ConfigError(
                f"n_iter ({config.n_iter}) must be greater than burn_in ({config.burn_in})"
            )
        if config.chains < 1 or config.cores < 1:
            raise ConfigError("chains and cores must be >= 1")
        if not 0.0 < config.target_accept < 1.0:
            raise ConfigError(f"target_accept must be in (0, 1), got {config.target_accept}")

    def _run(
        self,
        counts: np.ndarray,
        exposures: np.ndarray,
        graph: NeighborGraph,
        config: MCMCConfig,
    ) -> dict[str, np.ndarray]:
        import pymc as pm

        n = graph.n_units
        with build_bym_model(counts, exposures, graph):
            idata = pm.sample(
                draws=config.n_iter - config.burn_in,
                tune=config.burn_in,
                chains=config.chains,
                cores=config.cores,
                target_accept=config.target_accept,
                random_seed=config.seed,
                progressbar=False,
                return_inferencedata=True,
            )
        self.idata_ = idata

        posterior = idata.posterior.isel(draw=slice(None, None, config.thin))
        self.posterior_ = posterior
        theta = posterior["theta"].values.reshape(-1, n)
        logger.info(
            "mcmc: %d chains x %d retained draws",
            posterior.sizes["chain"],
            posterior.sizes["draw"],
        )

        return {
            "smoothed_risk": theta.mean(axis=0),
            "prob_exceeds_one": (theta > 1.0).mean(axis=0),
            "predicted": (theta * exposures).mean(axis=0),
        }

    def summary(self) -> Any:
        """ArviZ summary (mean, sd, HDI, ESS, R-hat) of the hyperparameters.

        Uses the thinned draws, like the per-unit results.
        """
        import arviz as az

        if self.posterior_ is None:
            raise RuntimeError("Call fit() first.")
        return az.summary(self.posterior_, var_names=HYPERPARAMETERS)


def build_bym_model(
    counts: np.ndarray,
    exposures: np.ndarray,
    graph: NeighborGraph,
) -> Any:
    """Return the PyMC BYM model for the given inputs (not yet sampled)."""
    import pymc as pm
    import pytensor.tensor as pt

    n = graph.n_units
    node1, node2 = graph.edges()
    weight_lookup = {
        (i, j): w for i, (nbrs, wts) in enumerate(zip(graph.neighbors, graph.weights))
        for j, w in zip(nbrs, wts)
    }
    edge_w = np.array([weight_lookup[(i, j)] for i, j in zip(node1, node2)], dtype=np.float64)

    with pm.Model() as model:
        b0 = pm.Normal("b0", mu=0.0, sigma=10.0)
        sigma_h = pm.HalfNormal("sigma_h", sigma=1.0)
        sigma_s = pm.HalfNormal("sigma_s", sigma=1.0)

        h = pm.Normal("h", mu=0.0, sigma=1.0, shape=n)
        phi = pm.Flat("phi", shape=n)

        if node1.size:
            pm.Potential(
                "phi_pairwise",
                -0.5 * pt.sum(edge_w * (phi[node1] - phi[node2]) ** 2),
            )
        for k, members in enumerate(graph.components()):
            if members.size == 1:
                pm.Potential(f"phi_isolated_{k}", -0.5 * phi[members[0]] ** 2)
            else:
                sum_prior = pm.Normal.dist(mu=0.0, sigma=0.001 * members.size)
                pm.Potential(f"phi_sum_{k}", pm.logp(sum_prior, pt.sum(phi[members])))

        theta = pm.Deterministic("theta", pt.exp(b0 + sigma_h * h + sigma_s * phi))
        pm.Poisson("O", mu=exposures * theta, observed=counts)

    return model
