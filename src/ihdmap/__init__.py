"""ihdmap: Bayesian smoothing of ischemic heart disease mortality by municipality."""

from ihdmap.api import RiskAtlas
from ihdmap.config import AtlasConfig, LaplaceConfig, MCMCConfig, PlotTheme
from ihdmap.exceptions import ConfigError, DataError, IhdmapError, IntegrityError
from ihdmap.models.registry import register_backend

__version__ = "0.1.0"
__all__ = [
    "AtlasConfig",
    "ConfigError",
    "DataError",
    "IhdmapError",
    "IntegrityError",
    "LaplaceConfig",
    "MCMCConfig",
    "PlotTheme",
    "RiskAtlas",
    "register_backend",
    "__version__",
]
