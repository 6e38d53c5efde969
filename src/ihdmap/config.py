"""Configuration dataclasses for ihdmap."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

RISK_PROBS: tuple[float, ...] = (0.0, 0.2, 0.4, 0.6, 0.8, 1.0)
PROB_CUTS: tuple[float, ...] = (0.0, 0.1, 0.2, 0.8, 0.9, 1.0)


@dataclass
class MCMCConfig:
    """Settings for the simulation (PyMC) backend.

    Attributes
    ----------
    n_iter : int
        Total iterations per chain, burn-in included.
    burn_in : int
        Initial iterations discarded (used as the NUTS tuning phase).
    thin : int
        Keep every ``thin``-th retained draw.
    chains : int
        Number of independent chains.
    seed : int
        Random seed.
    target_accept : float
        NUTS target acceptance rate.
    cores : int
        Worker processes used by PyMC to run chains.
    """

    n_iter: int = 5000
    burn_in: int = 1000
    thin: int = 5
    chains: int = 3
    seed: int = 42
    target_accept: float = 0.9
    cores: int = 1

    @property
    def n_draws(self) -> int:
        """Draws kept per chain after burn-in and thinning."""
        return len(range(0, self.n_iter - self.burn_in, self.thin))


@dataclass
class LaplaceConfig:
    """Settings for the deterministic Laplace-approximation backend.

    Attributes
    ----------
    graph_file : str | None
        Path of the graph exchange file the backend reads.
    prior_shape, prior_rate : float
        Log-gamma prior on the two precisions.
    max_newton_iter : int
        Maximum Newton iterations when locating the posterior mode.
    tol : float
        Convergence tolerance on the Newton step.
    threshold : float
        Risk threshold used for the exceedance probability.
    """

    graph_file: str | None = None
    prior_shape: float = 1.0
    prior_rate: float = 5e-5
    max_newton_iter: int = 50
    tol: float = 1e-8
    threshold: float = 1.0


@dataclass
class PlotTheme:
    """Explicit plotting theme passed to every renderer."""

    palette: str = "RdYlGn_r"
    prob_palette: str = "PuOr_r"
    missing_color: str = "lightgrey"
    edge_color: str = "#4d4d4d"
    edge_width: float = 0.15
    figsize: tuple[float, float] = (8.0, 8.0)
    dpi: int = 150
    font_size: int = 9
    title_size: int = 11
    tiles: str = "cartodbpositron"


@dataclass
class AtlasConfig:
    """Full pipeline configuration.

    Attributes
    ----------
    code_col, observed_col, expected_col, name_col : str
        Column names in the counts table (``code_col`` also in the geometry).
    contiguity : str
        ``"queen"`` or ``"rook"``.
    zero_policy : str
        RME for units with O = 0 and E = 0: ``"zero"``, ``"nan"`` or ``"error"``.
    allow_isolated : bool
        Accept units without neighbors.
    backends : list[str]
        Registered backend names to fit, in order.
    parallel : bool
        Fit backends in worker threads.
    risk_probs : tuple[float, ...]
        Quantile probabilities for risk classes.
    prob_cuts : tuple[float, ...]
        Fixed cut points for exceedance probability classes.
    output_dir : str
        Directory for all artefacts.
    """

    code_col: str = "CODMUNI"
    observed_col: str = "O"
    expected_col: str = "E"
    name_col: str | None = None
    contiguity: str = "queen"
    zero_policy: str = "zero"
    allow_isolated: bool = True
    backends: list[str] = field(default_factory=lambda: ["mcmc", "laplace"])
    parallel: bool = False
    risk_probs: tuple[float, ...] = RISK_PROBS
    prob_cuts: tuple[float, ...] = PROB_CUTS
    output_dir: str = "ihdmap_output"
    mcmc: MCMCConfig = field(default_factory=MCMCConfig)
    laplace: LaplaceConfig = field(default_factory=LaplaceConfig)
    theme: PlotTheme = field(default_factory=PlotTheme)

    def graph_path(self) -> Path:
        """Where the graph exchange file is written for this run."""
        return Path(self.output_dir) / "neighbors.graph"

    def backend_config(self, name: str) -> MCMCConfig | LaplaceConfig | None:
        """Configuration for backend *name*; None means the adapter default."""
        if name == "mcmc":
            return self.mcmc
        if name == "laplace":
            return self.laplace
        return None
