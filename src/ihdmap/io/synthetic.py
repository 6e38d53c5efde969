"""Synthetic lattice datasets for demos and tests.

Square cells on a regular grid stand in for municipalities.  The true log
relative risk is a smooth spatial trend plus unstructured noise, so the BYM
smoothing has something to recover.
"""

from __future__ import annotations

from typing import Any

import numpy as np
import pandas as pd


def make_lattice(
    n_rows: int = 10,
    n_cols: int = 10,
    expected_mean: float = 8.0,
    expected_cv: float = 0.6,
    trend: float = 0.5,
    noise_sd: float = 0.15,
    random_state: int = 42,
) -> tuple[Any, np.ndarray]:
    """Generate a grid of square units with Poisson death counts.

    Parameters
    ----------
    n_rows, n_cols : int
        Grid shape; the dataset has ``n_rows * n_cols`` units.
    expected_mean : float
        Mean expected count ``E`` per unit.
    expected_cv : float
        Coefficient of variation of ``E`` (gamma distributed).
    trend : float
        Amplitude of the west-east log-risk gradient.
    noise_sd : float
        Standard deviation of the unstructured log-risk noise.
    random_state : int
        Random seed.

    Returns
    -------
    units : geopandas.GeoDataFrame
        Columns ``code``, ``name``, ``O``, ``E`` and ``geometry``.
    true_risk : np.ndarray
        Relative risk used to simulate ``O``.
    """
    import geopandas as gpd
    from shapely.geometry import box

    if n_rows < 1 or n_cols < 1:
        raise ValueError(f"Grid must have at least one cell, got {n_rows}x{n_cols}")

    rng = np.random.default_rng(random_state)
    n = n_rows * n_cols

    rows, cols = np.divmod(np.arange(n), n_cols)
    geometry = [box(c, r, c + 1, r + 1) for r, c in zip(rows, cols)]

    x = (cols + 0.5) / n_cols - 0.5
    log_risk = trend * 2.0 * x + rng.normal(0.0, noise_sd, size=n)
    log_risk -= log_risk.mean()
    true_risk = np.exp(log_risk)

    shape = 1.0 / expected_cv**2
    expected = rng.gamma(shape, expected_mean / shape, size=n)
    observed = rng.poisson(expected * true_risk)

    units = gpd.GeoDataFrame(
        pd.DataFrame(
            {
                "code": [f"{i + 1:05d}" for i in range(n)],
                "name": [f"Cell {r}-{c}" for r, c in zip(rows, cols)],
                "O": observed.astype(np.int64),
                "E": expected,
            }
        ),
        geometry=geometry,
    )
    return units, true_risk
