"""Shared utility functions."""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from ihdmap.exceptions import IntegrityError


def as_float_array(values: Sequence[float] | np.ndarray) -> np.ndarray:
    """Return *values* as a 1-D float64 array."""
    return np.asarray(values, dtype=np.float64).reshape(-1)


def check_length(name: str, values: Sequence[float] | np.ndarray, n_units: int) -> np.ndarray:
    """Ensure a per-unit array has exactly ``n_units`` entries.

    Raises
    ------
    IntegrityError
        If the length differs from ``n_units``.
    """
    arr = as_float_array(values)
    if arr.shape[0] != n_units:
        raise IntegrityError(
            f"{name}: got {arr.shape[0]} values for {n_units} units"
        )
    return arr
