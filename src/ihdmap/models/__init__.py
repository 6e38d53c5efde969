"""Model layer: adapter contract, backend registry and built-in backends."""

# Importing the backends registers them.
from ihdmap.models import laplace as _laplace  # noqa: F401
from ihdmap.models import mcmc as _mcmc  # noqa: F401
from ihdmap.models.base import ModelAdapter, ModelResult
from ihdmap.models.laplace import LaplaceAdapter
from ihdmap.models.mcmc import MCMCAdapter
from ihdmap.models.registry import BackendRegistry, fit_backends, register_backend

__all__ = [
    "BackendRegistry",
    "LaplaceAdapter",
    "MCMCAdapter",
    "ModelAdapter",
    "ModelResult",
    "fit_backends",
    "register_backend",
]
