"""Interactive choropleth (folium) saved as a standalone HTML page."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import numpy as np

from ihdmap.config import PROB_CUTS, RISK_PROBS, PlotTheme
from ihdmap.exceptions import DataError
from ihdmap.visualization.plots import classified_column, column_title

logger = logging.getLogger(__name__)


def _class_colors(classes: Any, palette: str, missing: str) -> list[str]:
    from matplotlib import colormaps
    from matplotlib.colors import to_hex

    n = len(classes.categories)
    cmap = colormaps[palette].resampled(n)
    lookup = [to_hex(cmap(k)) for k in range(n)]
    return [lookup[c] if c >= 0 else missing for c in classes.codes]


def interactive_map(
    units: Any,
    column: str,
    theme: PlotTheme | None = None,
    tooltip_cols: Sequence[str] | None = None,
    probs: Sequence[float] = RISK_PROBS,
    cuts: Sequence[float] = PROB_CUTS,
    save_path: str | Path | None = None,
    zoom_start: int = 6,
) -> Any:
    """Build a folium map of *column* with one tooltip per unit.

    Units are coloured by the same classes as the static maps: quantiles
    at *probs* for risks, the fixed cut points *cuts* for ``P_<backend>``
    columns.  Geometry with a projected CRS is converted to WGS84 first.

    Returns
    -------
    folium.Map
    """
    import folium

    theme = theme or PlotTheme()
    if column not in units.columns:
        raise DataError(f"Column {column!r} not in units. Found: {list(units.columns)}")

    tooltip_cols = list(tooltip_cols or [c for c in ("code", "name", "O", "E", column) if c in units.columns])
    missing = [c for c in tooltip_cols if c not in units.columns]
    if missing:
        raise DataError(f"Tooltip columns not in units: {missing}")

    gdf = units[[*dict.fromkeys([*tooltip_cols, column]), "geometry"]].copy()
    if gdf.crs is not None and not gdf.crs.equals("EPSG:4326"):
        gdf = gdf.to_crs("EPSG:4326")

    if column.startswith("P_"):
        classes = classified_column(gdf[column], cuts=cuts)
        palette = theme.prob_palette
    else:
        classes = classified_column(gdf[column], probs=probs)
        palette = theme.palette
    gdf["_color"] = _class_colors(classes, palette, theme.missing_color)
    gdf["_class"] = np.asarray(classes.astype(str))

    for col in tooltip_cols:
        if gdf[col].dtype.kind == "f":
            gdf[col] = gdf[col].round(3)

    minx, miny, maxx, maxy = gdf.total_bounds
    fmap = folium.Map(
        location=[float((miny + maxy) / 2), float((minx + maxx) / 2)],
        zoom_start=zoom_start,
        tiles=theme.tiles,
        control_scale=True,
    )
    folium.GeoJson(
        gdf.to_json(),
        name=column_title(column),
        style_function=lambda feature: {
            "fillColor": feature["properties"]["_color"],
            "color": theme.edge_color,
            "weight": max(theme.edge_width * 2, 0.3),
            "fillOpacity": 0.75,
        },
        tooltip=folium.GeoJsonTooltip(
            fields=[*tooltip_cols, "_class"],
            aliases=[*tooltip_cols, "class"],
            sticky=True,
        ),
    ).add_to(fmap)
    fmap.fit_bounds([[float(miny), float(minx)], [float(maxy), float(maxx)]])
    folium.LayerControl().add_to(fmap)

    if save_path:
        Path(save_path).parent.mkdir(parents=True, exist_ok=True)
        fmap.save(str(save_path))
        logger.info("Saved interactive map: %s", save_path)
    return fmap
