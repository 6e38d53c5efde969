"""Loading of death counts and municipal geometry."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd

from ihdmap.exceptions import DataError

logger = logging.getLogger(__name__)

TABLE_SUFFIXES = (".csv", ".txt", ".tsv", ".xlsx", ".xls")


def _normalize_codes(codes: pd.Series) -> pd.Series:
    """Codes as stripped strings; integral floats lose their ``.0``."""
    def _one(v: Any) -> str:
        if isinstance(v, float) and v.is_integer():
            return str(int(v))
        return str(v).strip()

    return codes.map(_one)


def load_counts(
    path: str | Path,
    code_col: str = "CODMUNI",
    observed_col: str = "O",
    expected_col: str = "E",
    name_col: str | None = None,
    sep: str | None = None,
) -> pd.DataFrame:
    """Load observed and expected deaths per municipality.

    Parameters
    ----------
    path : str | Path
        CSV/TSV/TXT (separator sniffed when *sep* is None) or Excel file.
    code_col, observed_col, expected_col : str
        Column names of the municipality code, ``O`` and ``E``.
    name_col : str | None
        Optional municipality name column, kept as ``name``.

    Returns
    -------
    pd.DataFrame
        Columns ``code``, ``O`` (int64), ``E`` (float64) and ``name`` if
        requested.
    """
    path = Path(path)
    if not path.is_file():
        raise DataError(f"Counts file not found: {path}")
    if path.suffix.lower() not in TABLE_SUFFIXES:
        raise DataError(f"Unsupported counts format: {path.suffix}. Use .csv or .xlsx.")

    if path.suffix.lower() in (".xlsx", ".xls"):
        df = pd.read_excel(path, dtype={code_col: str})
    else:
        df = pd.read_csv(path, sep=sep, engine="python", dtype={code_col: str})

    required = [code_col, observed_col, expected_col] + ([name_col] if name_col else [])
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise DataError(f"{path.name}: missing columns {missing}. Found: {list(df.columns)}")

    observed = pd.to_numeric(df[observed_col], errors="coerce")
    expected = pd.to_numeric(df[expected_col], errors="coerce")
    if observed.isna().any() or expected.isna().any():
        raise DataError(f"{path.name}: non-numeric or missing O/E values")
    if (observed < 0).any() or (expected < 0).any():
        raise DataError(f"{path.name}: negative O/E values")
    if not np.allclose(observed, np.round(observed)):
        raise DataError(f"{path.name}: observed counts must be integers")

    out = pd.DataFrame(
        {
            "code": _normalize_codes(df[code_col]),
            "O": np.round(observed).astype(np.int64),
            "E": expected.astype(np.float64),
        }
    )
    if name_col:
        out["name"] = df[name_col].astype(str)
    return out


def load_geometry(path: str | Path, code_col: str = "CODMUNI") -> Any:
    """Load municipal polygons keyed by *code_col*.

    Returns
    -------
    geopandas.GeoDataFrame
        Columns ``code`` and ``geometry`` (plus any other attributes).
    """
    import geopandas as gpd

    path = Path(path)
    if not path.exists():
        raise DataError(f"Geometry file not found: {path}")
    try:
        gdf = gpd.read_file(path)
    except Exception as exc:
        raise DataError(f"Could not read geometry {path}: {exc}") from exc

    if gdf.empty:
        raise DataError(f"{path.name}: empty geometry layer")
    if code_col not in gdf.columns:
        raise DataError(f"{path.name}: missing code column {code_col!r}")
    if gdf.geometry.isna().any() or gdf.geometry.is_empty.any():
        raise DataError(f"{path.name}: features without geometry")

    if gdf.geometry.name != "geometry":
        gdf = gdf.rename_geometry("geometry")
    gdf = gdf.rename(columns={code_col: "code"})
    gdf["code"] = _normalize_codes(gdf["code"])
    return gdf


def join_units(counts: pd.DataFrame, geometry: Any) -> Any:
    """Inner-join counts and geometry on ``code``.

    Units missing from either side are dropped (and logged).  The result is
    sorted by code and indexed ``0..N-1``; this order is the unit order used
    by the graph and every backend.
    """
    import geopandas as gpd

    for name, df in (("counts", counts), ("geometry", geometry)):
        dup = df["code"][df["code"].duplicated()].unique().tolist()
        if dup:
            raise DataError(f"Duplicate codes in {name}: {dup[:10]}")

    keep_geo = [c for c in geometry.columns if c not in counts.columns or c == "code"]
    merged = counts.merge(geometry[keep_geo], on="code", how="inner")
    if merged.empty:
        raise DataError("No municipality code is shared by counts and geometry")

    n_counts_only = len(counts) - len(merged)
    n_geo_only = len(geometry) - len(merged)
    if n_counts_only or n_geo_only:
        logger.info(
            "Join dropped %d units without geometry and %d without counts",
            n_counts_only,
            n_geo_only,
        )

    merged = merged.sort_values("code", kind="stable").reset_index(drop=True)
    return gpd.GeoDataFrame(merged, geometry="geometry", crs=geometry.crs)


def load_units(
    counts_path: str | Path,
    geometry_path: str | Path,
    code_col: str = "CODMUNI",
    observed_col: str = "O",
    expected_col: str = "E",
    name_col: str | None = None,
) -> Any:
    """Load and join counts and geometry in one call."""
    counts = load_counts(
        counts_path,
        code_col=code_col,
        observed_col=observed_col,
        expected_col=expected_col,
        name_col=name_col,
    )
    geometry = load_geometry(geometry_path, code_col=code_col)
    units = join_units(counts, geometry)
    logger.info("Loaded %d spatial units", len(units))
    return units
