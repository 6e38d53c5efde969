"""Standardized mortality ratios (RME = observed / expected)."""

from __future__ import annotations

import logging
from collections.abc import Sequence

import numpy as np
import pandas as pd

from ihdmap.exceptions import ConfigError, DataError

logger = logging.getLogger(__name__)

ZERO_POLICIES = ("zero", "nan", "error")


def compute_rme(
    observed: Sequence[float] | np.ndarray,
    expected: Sequence[float] | np.ndarray,
    zero_policy: str = "zero",
) -> np.ndarray:
    """Raw standardized mortality ratio per unit.

    Parameters
    ----------
    observed : array-like
        Observed death counts ``O`` (non-negative).
    expected : array-like
        Expected death counts ``E`` (non-negative).
    zero_policy : str
        Value for units with ``O == 0`` and ``E == 0``: ``"zero"`` gives 0.0,
        ``"nan"`` gives NaN, ``"error"`` raises :class:`DataError`.

    Returns
    -------
    np.ndarray
        ``O / E`` as float64.

    Raises
    ------
    DataError
        On negative or non-finite inputs, mismatched lengths, or ``E == 0``
        with ``O > 0``.
    """
    if zero_policy not in ZERO_POLICIES:
        raise ConfigError(
            f"Unknown zero_policy: {zero_policy!r}. Use one of {', '.join(ZERO_POLICIES)}"
        )

    o = np.asarray(observed, dtype=np.float64).reshape(-1)
    e = np.asarray(expected, dtype=np.float64).reshape(-1)

    if o.shape != e.shape:
        raise DataError(f"Length mismatch: {o.shape[0]} observed vs {e.shape[0]} expected")
    if not (np.all(np.isfinite(o)) and np.all(np.isfinite(e))):
        raise DataError("Observed and expected counts must be finite")
    if np.any(o < 0) or np.any(e < 0):
        raise DataError("Observed and expected counts must be non-negative")

    zero_e = e == 0
    undefined = zero_e & (o > 0)
    if np.any(undefined):
        idx = np.flatnonzero(undefined).tolist()
        raise DataError(f"Expected count is 0 with observed > 0 at units {idx}")

    both_zero = zero_e & (o == 0)
    if np.any(both_zero):
        if zero_policy == "error":
            raise DataError(
                f"O = 0 and E = 0 at units {np.flatnonzero(both_zero).tolist()}"
            )
        logger.info("%d units with O = 0 and E = 0 (policy: %s)", both_zero.sum(), zero_policy)

    rme = np.divide(o, e, out=np.zeros_like(o), where=~zero_e)
    if zero_policy == "nan":
        rme[both_zero] = np.nan
    return rme


def add_rme(
    units: pd.DataFrame,
    observed_col: str = "O",
    expected_col: str = "E",
    zero_policy: str = "zero",
    column: str = "RME",
) -> pd.DataFrame:
    """Return a copy of *units* with an ``RME`` column attached."""
    for col in (observed_col, expected_col):
        if col not in units.columns:
            raise DataError(f"Missing column: {col!r}")
    out = units.copy()
    out[column] = compute_rme(out[observed_col], out[expected_col], zero_policy=zero_policy)
    return out
