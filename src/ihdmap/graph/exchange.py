"""Plain-text graph exchange file.

Format::

    3
    2 3
    1
    1

The first line is the unit count; each following line lists the 1-indexed
neighbors of one unit, separated by single spaces.  An isolated unit is an
empty line.  Weights are not stored, so only equal-weight graphs can be
written.
"""

from __future__ import annotations

from pathlib import Path

from ihdmap.exceptions import DataError
from ihdmap.graph.neighbors import NeighborGraph


def format_graph(graph: NeighborGraph) -> str:
    """Render *graph* in the exchange format."""
    lines = [str(graph.n_units)]
    lines.extend(" ".join(str(j + 1) for j in nbrs) for nbrs in graph.neighbors)
    return "\n".join(lines) + "\n"


def parse_graph(text: str) -> NeighborGraph:
    """Parse exchange-format *text* into a :class:`NeighborGraph`."""
    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines = lines[:-1]
    if not lines:
        raise DataError("Empty graph file")

    try:
        n = int(lines[0].strip())
    except ValueError:
        raise DataError(f"Invalid unit count header: {lines[0]!r}") from None
    if n < 0:
        raise DataError(f"Negative unit count: {n}")

    body = [line.rstrip("\r") for line in lines[1:]]
    if len(body) != n:
        raise DataError(f"Graph header says {n} units but {len(body)} lines follow")

    lists: list[list[int]] = []
    for i, line in enumerate(body, start=1):
        try:
            idx = [int(tok) for tok in line.split()]
        except ValueError:
            raise DataError(f"Line {i + 1}: non-integer neighbor index in {line!r}") from None
        if any(j < 1 or j > n for j in idx):
            raise DataError(f"Line {i + 1}: neighbor index out of range 1..{n}")
        lists.append([j - 1 for j in idx])

    return NeighborGraph.from_neighbor_lists(lists)


def write_graph(graph: NeighborGraph, path: str | Path) -> Path:
    """Write *graph* to *path* and return the path.

    Raises :class:`DataError` if any edge weight differs from 1.
    """
    weighted = [i for i, wts in enumerate(graph.weights) if any(w != 1.0 for w in wts)]
    if weighted:
        raise DataError(
            f"Graph file cannot store edge weights: {len(weighted)} units have "
            f"non-unit weights (first: unit {weighted[0]})"
        )
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(format_graph(graph), encoding="utf-8")
    return path


def read_graph(path: str | Path) -> NeighborGraph:
    """Read a graph written by :func:`write_graph`."""
    path = Path(path)
    if not path.is_file():
        raise DataError(f"Graph file not found: {path}")
    return parse_graph(path.read_text(encoding="utf-8"))
