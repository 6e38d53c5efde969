"""Deterministic backend: Laplace approximation of the BYM posterior.

The latent field ``z = (b0, v, u)`` (intercept, unstructured effect, ICAR
effect) is approximated by a Gaussian centred at its posterior mode, found
with Newton iterations on sparse matrices.  The two precisions
``tau_h`` (of ``v``) and ``tau_s`` (of ``u``) are set to the maximiser of
the Laplace-approximated marginal likelihood.  No random numbers are drawn.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import numpy as np
from scipy import sparse
from scipy.optimize import minimize
from scipy.sparse.linalg import splu
from scipy.stats import norm

from ihdmap.config import LaplaceConfig
from ihdmap.exceptions import ConfigError, IntegrityError
from ihdmap.graph.exchange import read_graph
from ihdmap.graph.neighbors import NeighborGraph
from ihdmap.models.base import ModelAdapter
from ihdmap.models.registry import register_backend

logger = logging.getLogger(__name__)

INTERCEPT_PRECISION = 1e-4
LOG_TAU_BOUNDS = (-5.0, 15.0)
ICAR_RIDGE = 1e-5
MAX_NEWTON_STEP = 5.0


@dataclass
class _Mode:
    z: np.ndarray
    eta: np.ndarray
    lu: Any
    log_marginal: float


@register_backend("laplace")
class LaplaceAdapter(ModelAdapter):
    """BYM model fitted by an empirical-Bayes Laplace approximation.

    The graph is taken from the exchange file named in
    ``LaplaceConfig.graph_file``; it must describe the same adjacency as the
    graph passed to :meth:`fit`, including its unit edge weights.

    After :meth:`fit`, ``hyper_`` holds the selected precisions and
    ``log_marginal_`` the approximate log marginal likelihood.
    """

    def __init__(self) -> None:
        self.hyper_: dict[str, float] | None = None
        self.log_marginal_: float | None = None

    def default_config(self) -> LaplaceConfig:
        return LaplaceConfig()

    def validate(self, config: Any) -> None:
        if not isinstance(config, LaplaceConfig):
            raise ConfigError(
                f"laplace backend expects LaplaceConfig, got {type(config).__name__}"
            )
        if config.graph_file is None:
            raise ConfigError("laplace backend requires graph_file (write it with write_graph)")
        if not Path(config.graph_file).is_file():
            raise ConfigError(f"Graph file not found: {config.graph_file}")
        if config.prior_shape <= 0 or config.prior_rate <= 0:
            raise ConfigError("prior_shape and prior_rate must be positive")
        if config.max_newton_iter < 1:
            raise ConfigError(f"max_newton_iter must be >= 1, got {config.max_newton_iter}")
        if config.tol <= 0 or config.threshold <= 0:
            raise ConfigError("tol and threshold must be positive")

    def _run(
        self,
        counts: np.ndarray,
        exposures: np.ndarray,
        graph: NeighborGraph,
        config: LaplaceConfig,
    ) -> dict[str, np.ndarray]:
        file_graph = read_graph(config.graph_file)
        if file_graph != graph:
            raise IntegrityError(
                f"Graph file {config.graph_file} does not match the unit graph "
                f"({file_graph.n_units} vs {graph.n_units} units, "
                f"{file_graph.n_edges} vs {graph.n_edges} edges; weights must all be 1)"
            )

        n = file_graph.n_units
        A = sparse.hstack(
            [sparse.csr_matrix(np.ones((n, 1))), sparse.identity(n), sparse.identity(n)]
        ).tocsr()
        R = _icar_structure(file_graph)
        y = counts.astype(np.float64)

        z0 = np.zeros(2 * n + 1)
        if y.sum() > 0 and exposures.sum() > 0:
            z0[0] = np.log(y.sum() / exposures.sum())
        state = {"z": z0}

        def neg_log_marginal(theta: np.ndarray) -> float:
            Q = _precision(theta, R)
            mode = _find_mode(y, exposures, A, Q, state["z"], config)
            state["z"] = mode.z
            return -(mode.log_marginal + _log_prior(theta, config))

        opt = minimize(
            neg_log_marginal,
            x0=np.zeros(2),
            method="Nelder-Mead",
            bounds=[LOG_TAU_BOUNDS, LOG_TAU_BOUNDS],
            options={"xatol": 1e-4, "fatol": 1e-6, "maxiter": 400},
        )
        if not opt.success:
            logger.warning("laplace: hyperparameter search did not converge: %s", opt.message)

        theta = opt.x
        Q = _precision(theta, R)
        mode = _find_mode(y, exposures, A, Q, state["z"], config)
        self.hyper_ = {"tau_h": float(np.exp(theta[0])), "tau_s": float(np.exp(theta[1]))}
        self.log_marginal_ = float(mode.log_marginal)
        logger.info(
            "laplace: tau_h=%.4g tau_s=%.4g log marginal=%.3f",
            self.hyper_["tau_h"],
            self.hyper_["tau_s"],
            self.log_marginal_,
        )

        # Marginal variance of eta_i = a_i' H^-1 a_i
        A_dense = A.toarray()
        cov_cols = mode.lu.solve(A_dense.T)
        var = np.maximum(np.einsum("ij,ji->i", A_dense, cov_cols), 1e-12)
        sd = np.sqrt(var)

        rate_mean = np.exp(mode.eta + 0.5 * var)
        cdf = norm.cdf((np.log(config.threshold) - mode.eta) / sd)

        return {
            "smoothed_risk": rate_mean,
            "prob_exceeds_one": 1.0 - cdf,
            "predicted": exposures * rate_mean,
        }


def _icar_structure(graph: NeighborGraph) -> sparse.csr_matrix:
    """ICAR structure ``D - W`` made proper.

    Isolated units get a unit diagonal (an independent normal effect) and a
    small ridge pins the level of each connected component, which the
    intercept would otherwise share with it.
    """
    R = graph.structure_matrix()
    isolated = (np.asarray(R.diagonal()) == 0).astype(np.float64)
    return (R + sparse.diags(isolated + ICAR_RIDGE)).tocsr()


def _precision(theta: np.ndarray, R: sparse.csr_matrix) -> sparse.csc_matrix:
    """Prior precision of ``z`` for log precisions ``theta = (log tau_h, log tau_s)``."""
    tau_h, tau_s = np.exp(theta)
    n = R.shape[0]
    return sparse.block_diag(
        [sparse.csr_matrix([[INTERCEPT_PRECISION]]), tau_h * sparse.identity(n), tau_s * R],
        format="csc",
    )


def _logdet(lu: Any) -> float:
    return float(np.sum(np.log(np.abs(lu.U.diagonal()))))


def _log_prior(theta: np.ndarray, config: LaplaceConfig) -> float:
    """Log-gamma prior on both log precisions (Jacobian included)."""
    tau = np.exp(theta)
    return float(np.sum(config.prior_shape * theta - config.prior_rate * tau))


def _find_mode(
    y: np.ndarray,
    e: np.ndarray,
    A: sparse.csr_matrix,
    Q: sparse.csc_matrix,
    z0: np.ndarray,
    config: LaplaceConfig,
) -> _Mode:
    """Newton iterations for the posterior mode of ``z`` given ``Q``."""
    z = z0.copy()
    for _ in range(config.max_newton_iter):
        eta = np.clip(A @ z, -30.0, 30.0)
        mu = e * np.exp(eta)
        grad = A.T @ (y - mu) - Q @ z
        H = (Q + A.T @ sparse.diags(mu) @ A).tocsc()
        lu = splu(H)
        step = lu.solve(grad)
        largest = np.max(np.abs(step))
        if largest > MAX_NEWTON_STEP:
            step *= MAX_NEWTON_STEP / largest
        z = z + step
        if largest < config.tol:
            break
    else:
        logger.debug("laplace: Newton iterations hit max_newton_iter=%d", config.max_newton_iter)

    eta = np.clip(A @ z, -30.0, 30.0)
    mu = e * np.exp(eta)
    H = (Q + A.T @ sparse.diags(mu) @ A).tocsc()
    lu = splu(H)
    loglik = float(np.sum(y * eta - mu))
    log_marginal = loglik - 0.5 * float(z @ (Q @ z)) + 0.5 * _logdet(splu(Q)) - 0.5 * _logdet(lu)
    return _Mode(z=z, eta=eta, lu=lu, log_marginal=log_marginal)
