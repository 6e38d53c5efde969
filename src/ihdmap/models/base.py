"""Adapter contract shared by all inference backends."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import numpy as np
import pandas as pd

from ihdmap._utils import check_length
from ihdmap.exceptions import DataError, IntegrityError
from ihdmap.graph.neighbors import NeighborGraph

logger = logging.getLogger(__name__)

RESULT_FIELDS = ("smoothed_risk", "prob_exceeds_one", "predicted")


@dataclass(frozen=True)
class ModelResult:
    """Per-unit posterior summary produced by one backend.

    Attributes
    ----------
    backend : str
        Name of the backend that produced the result.
    smoothed_risk : np.ndarray
        Smoothed relative risk (RMS), positive.
    prob_exceeds_one : np.ndarray
        Posterior probability that the risk exceeds 1.
    predicted : np.ndarray
        Predicted (fitted) death count.
    """

    backend: str
    smoothed_risk: np.ndarray
    prob_exceeds_one: np.ndarray
    predicted: np.ndarray

    def __post_init__(self) -> None:
        n = len(np.asarray(self.smoothed_risk).reshape(-1))
        for name in RESULT_FIELDS:
            arr = check_length(f"{self.backend}.{name}", getattr(self, name), n).copy()
            arr.setflags(write=False)
            object.__setattr__(self, name, arr)

    def __len__(self) -> int:
        return self.smoothed_risk.shape[0]

    def to_frame(self, index: Sequence[Any] | pd.Index | None = None) -> pd.DataFrame:
        """Result as a DataFrame with one row per unit."""
        return pd.DataFrame(
            {name: getattr(self, name) for name in RESULT_FIELDS},
            index=index,
        )


class ModelAdapter(ABC):
    """Translate ``(counts, exposures, graph)`` into a backend call.

    Subclasses implement :meth:`validate`, which must reject a bad
    configuration before anything is computed, and :meth:`_run`, which calls
    the backend and returns raw per-unit arrays keyed by the names in
    ``RESULT_FIELDS``.  :meth:`fit` normalizes them into a
    :class:`ModelResult` and refuses results that do not cover every unit.
    """

    name: str = ""

    @abstractmethod
    def default_config(self) -> Any:
        """Configuration used when ``fit`` is called without one."""

    @abstractmethod
    def validate(self, config: Any) -> None:
        """Raise :class:`~ihdmap.exceptions.ConfigError` on invalid *config*."""

    @abstractmethod
    def _run(
        self,
        counts: np.ndarray,
        exposures: np.ndarray,
        graph: NeighborGraph,
        config: Any,
    ) -> Mapping[str, Sequence[float] | np.ndarray]: ...

    def fit(
        self,
        counts: Sequence[int] | np.ndarray,
        exposures: Sequence[float] | np.ndarray,
        graph: NeighborGraph,
        config: Any = None,
    ) -> ModelResult:
        """Fit the BYM model and return per-unit summaries in input order.

        Raises
        ------
        ConfigError
            Invalid configuration (before any computation).
        DataError
            Negative or non-integer counts, negative exposures.
        IntegrityError
            Inputs or backend output not matching the unit count.
        """
        config = self.default_config() if config is None else config
        self.validate(config)

        y, e = self._prepare(counts, exposures, graph)
        logger.info("Fitting %s backend on %d units", self.name, graph.n_units)
        raw = self._run(y, e, graph, config)
        return self._to_result(raw, graph.n_units)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _prepare(
        self,
        counts: Sequence[int] | np.ndarray,
        exposures: Sequence[float] | np.ndarray,
        graph: NeighborGraph,
    ) -> tuple[np.ndarray, np.ndarray]:
        y = np.asarray(counts, dtype=np.float64).reshape(-1)
        e = np.asarray(exposures, dtype=np.float64).reshape(-1)
        n = graph.n_units

        if y.shape[0] != n or e.shape[0] != n:
            raise IntegrityError(
                f"{y.shape[0]} counts and {e.shape[0]} exposures for a graph of {n} units"
            )
        if not (np.all(np.isfinite(y)) and np.all(np.isfinite(e))):
            raise DataError("Counts and exposures must be finite")
        if np.any(y < 0) or np.any(y != np.round(y)):
            raise DataError("Counts must be non-negative integers")
        if np.any(e < 0):
            raise DataError("Exposures must be non-negative")
        return y.astype(np.int64), e

    def _to_result(self, raw: Mapping[str, Any], n_units: int) -> ModelResult:
        missing = [k for k in RESULT_FIELDS if k not in raw]
        if missing:
            raise IntegrityError(f"{self.name} backend returned no {', '.join(missing)}")
        arrays = {k: check_length(f"{self.name}.{k}", raw[k], n_units) for k in RESULT_FIELDS}
        return ModelResult(backend=self.name, **arrays)
