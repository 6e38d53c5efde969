"""Neighbor graph over spatial units built from polygon contiguity."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

import numpy as np
from scipy import sparse

from ihdmap.exceptions import ConfigError, DataError

logger = logging.getLogger(__name__)

CONTIGUITY_RULES = ("queen", "rook")


@dataclass(frozen=True)
class NeighborGraph:
    """Undirected, weighted adjacency over ``n_units`` spatial units.

    ``neighbors[i]`` holds the 0-based indices adjacent to unit ``i`` in
    ascending order and ``weights[i]`` the matching edge weights.  The graph
    is validated on construction: no self-loops, symmetric adjacency, sorted
    neighbor lists and one weight per neighbor.
    """

    neighbors: tuple[tuple[int, ...], ...]
    weights: tuple[tuple[float, ...], ...]

    def __post_init__(self) -> None:
        n = len(self.neighbors)
        if len(self.weights) != n:
            raise DataError(f"weights cover {len(self.weights)} units, neighbors cover {n}")

        for i, (nbrs, wts) in enumerate(zip(self.neighbors, self.weights)):
            if len(nbrs) != len(wts):
                raise DataError(f"Unit {i}: {len(nbrs)} neighbors but {len(wts)} weights")
            if any(j < 0 or j >= n for j in nbrs):
                raise DataError(f"Unit {i}: neighbor index out of range 0..{n - 1}")
            if i in nbrs:
                raise DataError(f"Unit {i} lists itself as a neighbor")
            if any(a >= b for a, b in zip(nbrs, nbrs[1:])):
                raise DataError(f"Unit {i}: neighbor list is not strictly ascending")

        if not self.is_symmetric():
            raise DataError("Neighbor graph is not symmetric")

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def from_neighbor_lists(
        cls,
        lists: Sequence[Iterable[int]],
        weights: Sequence[Iterable[float]] | None = None,
    ) -> NeighborGraph:
        """Build a graph from per-unit neighbor lists (0-based).

        Lists are sorted; weights (default 1.0) are reordered with them.
        """
        nbrs_out: list[tuple[int, ...]] = []
        wts_out: list[tuple[float, ...]] = []
        for i, nbrs in enumerate(lists):
            nbrs = [int(j) for j in nbrs]
            wts = [1.0] * len(nbrs) if weights is None else [float(w) for w in weights[i]]
            if len(wts) != len(nbrs):
                raise DataError(f"Unit {i}: {len(nbrs)} neighbors but {len(wts)} weights")
            order = np.argsort(nbrs, kind="stable")
            nbrs_out.append(tuple(nbrs[k] for k in order))
            wts_out.append(tuple(wts[k] for k in order))
        return cls(tuple(nbrs_out), tuple(wts_out))

    @classmethod
    def from_adjacency_arrays(
        cls,
        num: Sequence[int] | np.ndarray,
        adj: Sequence[int] | np.ndarray,
        weights: Sequence[float] | np.ndarray | None = None,
    ) -> NeighborGraph:
        """Inverse of :meth:`to_adjacency_arrays`."""
        num = np.asarray(num, dtype=np.int64)
        adj = np.asarray(adj, dtype=np.int64)
        if np.any(num < 0) or int(num.sum()) != adj.shape[0]:
            raise DataError(
                f"Neighbor counts sum to {int(num.sum())} but {adj.shape[0]} indices given"
            )
        wts = np.ones(adj.shape[0]) if weights is None else np.asarray(weights, dtype=np.float64)
        if wts.shape[0] != adj.shape[0]:
            raise DataError(f"{wts.shape[0]} weights for {adj.shape[0]} neighbor indices")

        bounds = np.concatenate([[0], np.cumsum(num)])
        lists = [adj[bounds[i] : bounds[i + 1]].tolist() for i in range(num.shape[0])]
        wlists = [wts[bounds[i] : bounds[i + 1]].tolist() for i in range(num.shape[0])]
        return cls.from_neighbor_lists(lists, wlists)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def n_units(self) -> int:
        return len(self.neighbors)

    @property
    def num_neighbors(self) -> np.ndarray:
        """Neighbor count per unit."""
        return np.array([len(n) for n in self.neighbors], dtype=np.int64)

    @property
    def n_edges(self) -> int:
        """Number of undirected edges."""
        return int(self.num_neighbors.sum()) // 2

    @property
    def isolated(self) -> list[int]:
        """Indices of units without neighbors."""
        return [i for i, n in enumerate(self.neighbors) if not n]

    def neighbors_of(self, i: int) -> tuple[int, ...]:
        return self.neighbors[i]

    def is_symmetric(self) -> bool:
        sets = [set(n) for n in self.neighbors]
        return all(i in sets[j] for i, nbrs in enumerate(self.neighbors) for j in nbrs)

    def edges(self) -> tuple[np.ndarray, np.ndarray]:
        """Undirected edge list ``(node1, node2)`` with ``node1 < node2``."""
        pairs = [(i, j) for i, nbrs in enumerate(self.neighbors) for j in nbrs if i < j]
        if not pairs:
            return np.zeros(0, dtype=np.int64), np.zeros(0, dtype=np.int64)
        arr = np.asarray(pairs, dtype=np.int64)
        return arr[:, 0], arr[:, 1]

    # ------------------------------------------------------------------
    # Serialisations
    # ------------------------------------------------------------------

    def to_adjacency_arrays(self) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Flattened adjacency ``(num, adj, weights)``.

        ``num[i]`` is the neighbor count of unit ``i``; ``adj`` and
        ``weights`` concatenate the per-unit neighbor indices (0-based) and
        weights in unit order.
        """
        num = self.num_neighbors
        adj = np.fromiter((j for nbrs in self.neighbors for j in nbrs), dtype=np.int64)
        wts = np.fromiter((w for ws in self.weights for w in ws), dtype=np.float64)
        return num, adj, wts

    def to_sparse(self) -> sparse.csr_matrix:
        """Weighted adjacency matrix ``W`` as CSR."""
        num, adj, wts = self.to_adjacency_arrays()
        rows = np.repeat(np.arange(self.n_units), num)
        return sparse.csr_matrix((wts, (rows, adj)), shape=(self.n_units, self.n_units))

    def components(self) -> list[np.ndarray]:
        """Connected components as arrays of unit indices."""
        from scipy.sparse.csgraph import connected_components

        _, labels = connected_components(self.to_sparse(), directed=False)
        return [np.flatnonzero(labels == c) for c in np.unique(labels)]

    def structure_matrix(self) -> sparse.csr_matrix:
        """ICAR structure matrix ``R = D - W`` (rank-deficient)."""
        W = self.to_sparse()
        D = sparse.diags(np.asarray(W.sum(axis=1)).ravel())
        return (D - W).tocsr()


def _check_geometries(geometries: Sequence[Any]) -> None:
    from shapely.validation import explain_validity

    for i, geom in enumerate(geometries):
        if geom is None or geom.is_empty:
            raise DataError(f"Geometry {i} is missing or empty")
        if geom.geom_type not in ("Polygon", "MultiPolygon"):
            raise DataError(f"Geometry {i} is a {geom.geom_type}, expected a polygon")
        if not geom.is_valid:
            raise DataError(f"Geometry {i} is invalid: {explain_validity(geom)}")


def build_neighbor_graph(
    geometries: Sequence[Any],
    contiguity: str = "queen",
    allow_isolated: bool = True,
) -> NeighborGraph:
    """Build a contiguity graph from polygon boundaries.

    Parameters
    ----------
    geometries : sequence of shapely geometries or GeoSeries
        One (Multi)Polygon per unit, in unit order.
    contiguity : str
        ``"queen"`` (any shared boundary point) or ``"rook"`` (shared edge).
    allow_isolated : bool
        If False, units without neighbors raise :class:`DataError`.

    Returns
    -------
    NeighborGraph
        Equal-weight graph, neighbor lists sorted ascending.
    """
    import geopandas as gpd
    from libpysal import weights

    if contiguity not in CONTIGUITY_RULES:
        raise ConfigError(
            f"Unknown contiguity: {contiguity!r}. Use one of {', '.join(CONTIGUITY_RULES)}"
        )

    geoms = list(geometries)
    if not geoms:
        raise DataError("No geometries given")
    _check_geometries(geoms)

    gdf = gpd.GeoDataFrame(geometry=geoms)
    rule = weights.Queen if contiguity == "queen" else weights.Rook
    w = rule.from_dataframe(gdf, use_index=False, silence_warnings=True)

    lists = [sorted(int(j) for j in w.neighbors.get(i, [])) for i in range(len(geoms))]
    graph = NeighborGraph.from_neighbor_lists(lists)

    if graph.isolated:
        if not allow_isolated:
            raise DataError(f"Isolated units without neighbors: {graph.isolated}")
        logger.warning("%d isolated units: %s", len(graph.isolated), graph.isolated)

    logger.info(
        "Neighbor graph (%s): %d units, %d edges, mean degree %.2f",
        contiguity,
        graph.n_units,
        graph.n_edges,
        graph.num_neighbors.mean(),
    )
    return graph
