"""Quantile classes for choropleth display."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
import pandas as pd

from ihdmap.exceptions import ConfigError, DataError


@dataclass(frozen=True)
class Classification:
    """Bin index per value plus the breaks and interval labels used."""

    bins: np.ndarray
    breaks: np.ndarray
    labels: list[str]

    def to_categorical(self) -> pd.Categorical:
        return pd.Categorical.from_codes(self.bins, categories=self.labels, ordered=True)

    def counts(self) -> pd.Series:
        """Number of values per class, empty classes included."""
        return pd.Series(np.bincount(self.bins, minlength=len(self.labels)), index=self.labels)


def _check_probs(probs: Sequence[float]) -> np.ndarray:
    p = np.asarray(probs, dtype=np.float64).reshape(-1)
    if p.size < 2:
        raise ConfigError("At least two quantile probabilities are required")
    if p[0] != 0.0 or p[-1] != 1.0:
        raise ConfigError(f"Quantile probabilities must start at 0 and end at 1, got {p.tolist()}")
    if np.any(np.diff(p) <= 0):
        raise ConfigError(f"Quantile probabilities must be strictly increasing, got {p.tolist()}")
    return p


def _check_values(values: Sequence[float] | np.ndarray) -> np.ndarray:
    v = np.asarray(values, dtype=np.float64).reshape(-1)
    if v.size == 0:
        raise DataError("Cannot classify an empty sequence")
    if not np.all(np.isfinite(v)):
        raise DataError("Values to classify must be finite")
    return v


def quantile_breaks(values: Sequence[float] | np.ndarray, probs: Sequence[float]) -> np.ndarray:
    """Empirical quantiles of *values* at *probs* (linear interpolation)."""
    p = _check_probs(probs)
    v = _check_values(values)
    return np.quantile(v, p)


def assign_bins(values: Sequence[float] | np.ndarray, breaks: Sequence[float]) -> np.ndarray:
    """Bin index of each value for ascending *breaks*.

    Intervals are ``[b0, b1], (b1, b2], ..., (b_{k-1}, b_k]``.  A value equal
    to an interior break falls in the lower bin.  Values outside the range
    are clamped to the first or last bin.  Repeated breaks give empty bins.
    """
    b = np.asarray(breaks, dtype=np.float64).reshape(-1)
    if b.size < 2:
        raise ConfigError("At least two breaks are required")
    if np.any(np.diff(b) < 0):
        raise ConfigError(f"Breaks must be non-decreasing, got {b.tolist()}")
    v = _check_values(values)
    idx = np.searchsorted(b, v, side="left") - 1
    return np.clip(idx, 0, b.size - 2).astype(np.int64)


def bin_labels(breaks: Sequence[float], digits: int = 2) -> list[str]:
    """Interval labels ``[a, b]``, ``(b, c]``, ... for *breaks*."""
    b = np.asarray(breaks, dtype=np.float64).reshape(-1)
    fmt = f"{{:.{digits}f}}"
    labels = []
    for k in range(b.size - 1):
        left = "[" if k == 0 else "("
        labels.append(f"{left}{fmt.format(b[k])}, {fmt.format(b[k + 1])}]")
    return _dedupe(labels)


def _dedupe(labels: list[str]) -> list[str]:
    # Categorical needs unique categories; heavy ties can repeat a label.
    seen: dict[str, int] = {}
    out = []
    for label in labels:
        n = seen.get(label, 0)
        out.append(label if n == 0 else f"{label} #{n + 1}")
        seen[label] = n + 1
    return out


def classify(
    values: Sequence[float] | np.ndarray,
    probs: Sequence[float] = (0.0, 0.2, 0.4, 0.6, 0.8, 1.0),
    digits: int = 2,
) -> Classification:
    """Classify *values* into classes bounded by their own quantiles."""
    breaks = quantile_breaks(values, probs)
    return Classification(
        bins=assign_bins(values, breaks),
        breaks=breaks,
        labels=bin_labels(breaks, digits=digits),
    )


def classify_fixed(
    values: Sequence[float] | np.ndarray,
    cuts: Sequence[float],
    digits: int = 2,
) -> Classification:
    """Classify *values* with fixed cut points (e.g. probability classes)."""
    breaks = np.asarray(cuts, dtype=np.float64)
    return Classification(
        bins=assign_bins(values, breaks),
        breaks=breaks,
        labels=bin_labels(breaks, digits=digits),
    )
