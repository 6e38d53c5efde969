"""Plugin registry for inference backends.

Backends are selected explicitly by name.  Custom backends can be added via
the decorator::

    from ihdmap.models.registry import register_backend

    @register_backend("my_backend")
    class MyAdapter(ModelAdapter):
        ...
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import numpy as np

from ihdmap.exceptions import ConfigError
from ihdmap.graph.neighbors import NeighborGraph
from ihdmap.models.base import ModelAdapter, ModelResult

logger = logging.getLogger(__name__)


class BackendRegistry:
    """Registry of :class:`ModelAdapter` subclasses.

    Built-in backends (``"mcmc"``, ``"laplace"``) are registered when the
    ``ihdmap.models`` package is imported.
    """

    _registry: dict[str, type[ModelAdapter]] = {}

    @classmethod
    def register(cls, name: str) -> Callable[[type[ModelAdapter]], type[ModelAdapter]]:
        """Decorator that registers an adapter class under *name*."""

        def decorator(adapter_cls: type[ModelAdapter]) -> type[ModelAdapter]:
            if name in cls._registry:
                logger.warning("Overwriting existing backend: %s", name)
            adapter_cls.name = name
            cls._registry[name] = adapter_cls
            return adapter_cls

        return decorator

    @classmethod
    def get(cls, name: str) -> type[ModelAdapter]:
        """Retrieve an adapter class by name (raises ``KeyError`` if missing)."""
        if name not in cls._registry:
            available = ", ".join(sorted(cls._registry.keys()))
            raise KeyError(f"Unknown backend: {name!r}. Available: {available}")
        return cls._registry[name]

    @classmethod
    def list_methods(cls) -> list[str]:
        """Return sorted list of registered backend names."""
        return sorted(cls._registry.keys())

    @classmethod
    def create(cls, name: str) -> ModelAdapter:
        """Instantiate the adapter registered under *name*."""
        return cls.get(name)()


register_backend = BackendRegistry.register


def fit_backends(
    names: Sequence[str],
    counts: Sequence[int] | np.ndarray,
    exposures: Sequence[float] | np.ndarray,
    graph: NeighborGraph,
    configs: Mapping[str, Any],
    parallel: bool = False,
) -> tuple[dict[str, ModelResult], dict[str, ModelAdapter]]:
    """Fit several backends on the same inputs.

    All configurations are validated before the first backend runs; an
    unknown backend name raises :class:`ConfigError`.  With
    ``parallel=True`` each backend runs in its own worker thread; the
    returned mappings are keyed by backend name in the order of *names*.
    """
    available = BackendRegistry.list_methods()
    unknown = [name for name in names if name not in available]
    if unknown:
        raise ConfigError(f"Unknown backend(s): {unknown}. Available: {', '.join(available)}")

    adapters = {name: BackendRegistry.create(name) for name in names}
    resolved = {}
    for name, adapter in adapters.items():
        config = configs.get(name)
        resolved[name] = adapter.default_config() if config is None else config
        adapter.validate(resolved[name])

    def _fit(name: str) -> ModelResult:
        return adapters[name].fit(counts, exposures, graph, resolved[name])

    if parallel and len(names) > 1:
        with ThreadPoolExecutor(max_workers=len(names)) as pool:
            futures = {name: pool.submit(_fit, name) for name in names}
            results = {name: futures[name].result() for name in names}
    else:
        results = {name: _fit(name) for name in names}

    return results, adapters
