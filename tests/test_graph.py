"""Tests for the neighbor graph and its exchange file."""

import numpy as np
import pytest
from shapely.geometry import LineString, Polygon, box


def _grid(n_rows, n_cols):
    return [box(c, r, c + 1, r + 1) for r in range(n_rows) for c in range(n_cols)]


def test_three_unit_graph_file(three_unit_graph):
    from ihdmap.graph import format_graph, parse_graph

    text = format_graph(three_unit_graph)
    assert text == "3\n2 3\n1\n1\n"
    assert parse_graph(text) == three_unit_graph


def test_graph_file_round_trip(tmp_path, three_unit_graph):
    from ihdmap.graph import read_graph, write_graph

    path = write_graph(three_unit_graph, tmp_path / "sub" / "three.graph")
    assert path.is_file()
    back = read_graph(path)
    assert back.neighbors == ((1, 2), (0,), (0,))
    assert back == three_unit_graph


def test_weighted_graph_cannot_be_written(tmp_path):
    from ihdmap.exceptions import DataError
    from ihdmap.graph import NeighborGraph, write_graph

    graph = NeighborGraph.from_neighbor_lists([[1, 2], [0], [0]], [[2.0, 0.5], [2.0], [0.5]])
    with pytest.raises(DataError, match="weights"):
        write_graph(graph, tmp_path / "weighted.graph")
    assert not (tmp_path / "weighted.graph").exists()


def test_isolated_unit_is_empty_line(tmp_path):
    from ihdmap.graph import NeighborGraph, format_graph, parse_graph

    graph = NeighborGraph.from_neighbor_lists([[1], [0], []])
    text = format_graph(graph)
    assert text.splitlines() == ["3", "2", "1", ""]
    assert parse_graph(text).isolated == [2]


@pytest.mark.parametrize(
    "text, match",
    [
        ("", "Empty"),
        ("three\n", "header"),
        ("3\n2 3\n1\n", "lines follow"),
        ("2\n2\nx\n", "non-integer"),
        ("2\n3\n1\n", "out of range"),
        ("3\n2\n\n\n", "not symmetric"),
    ],
)
def test_malformed_graph_file(text, match):
    from ihdmap.exceptions import DataError
    from ihdmap.graph import parse_graph

    with pytest.raises(DataError, match=match):
        parse_graph(text)


def test_read_missing_graph_file(tmp_path):
    from ihdmap.exceptions import DataError
    from ihdmap.graph import read_graph

    with pytest.raises(DataError, match="not found"):
        read_graph(tmp_path / "nope.graph")


def test_graph_rejects_self_loops_and_asymmetry():
    from ihdmap.exceptions import DataError
    from ihdmap.graph import NeighborGraph

    with pytest.raises(DataError, match="itself"):
        NeighborGraph.from_neighbor_lists([[0, 1], [0]])
    with pytest.raises(DataError, match="symmetric"):
        NeighborGraph.from_neighbor_lists([[1], []])


def test_adjacency_arrays_round_trip(three_unit_graph):
    from ihdmap.graph import NeighborGraph

    num, adj, wts = three_unit_graph.to_adjacency_arrays()
    assert num.tolist() == [2, 1, 1]
    assert adj.tolist() == [1, 2, 0, 0]
    assert np.allclose(wts, 1.0)
    assert NeighborGraph.from_adjacency_arrays(num, adj, wts) == three_unit_graph


def test_adjacency_arrays_count_mismatch():
    from ihdmap.exceptions import DataError
    from ihdmap.graph import NeighborGraph

    with pytest.raises(DataError):
        NeighborGraph.from_adjacency_arrays([2, 1], [1, 0])


def test_sparse_and_structure_matrix(three_unit_graph):
    W = three_unit_graph.to_sparse().toarray()
    assert np.array_equal(W, W.T)
    R = three_unit_graph.structure_matrix().toarray()
    assert np.allclose(R.sum(axis=1), 0.0)
    assert np.allclose(np.diag(R), [2, 1, 1])


def test_components_and_edges():
    from ihdmap.graph import NeighborGraph

    graph = NeighborGraph.from_neighbor_lists([[1], [0], [3], [2], []])
    assert [c.tolist() for c in graph.components()] == [[0, 1], [2, 3], [4]]
    node1, node2 = graph.edges()
    assert node1.tolist() == [0, 2]
    assert node2.tolist() == [1, 3]
    assert graph.n_edges == 2


def test_queen_grid_is_symmetric():
    from ihdmap.graph import build_neighbor_graph

    graph = build_neighbor_graph(_grid(3, 3), contiguity="queen")
    assert graph.is_symmetric()
    # Centre cell touches all eight others
    assert graph.neighbors_of(4) == (0, 1, 2, 3, 5, 6, 7, 8)
    assert graph.neighbors_of(0) == (1, 3, 4)
    for i in range(graph.n_units):
        for j in graph.neighbors_of(i):
            assert i in graph.neighbors_of(j)


def test_rook_grid_excludes_corners():
    from ihdmap.graph import build_neighbor_graph

    graph = build_neighbor_graph(_grid(3, 3), contiguity="rook")
    assert graph.neighbors_of(4) == (1, 3, 5, 7)
    assert graph.neighbors_of(0) == (1, 3)


def test_isolated_units_policy():
    from ihdmap.exceptions import DataError
    from ihdmap.graph import build_neighbor_graph

    geoms = [box(0, 0, 1, 1), box(1, 0, 2, 1), box(5, 5, 6, 6)]
    graph = build_neighbor_graph(geoms)
    assert graph.isolated == [2]
    with pytest.raises(DataError, match="Isolated"):
        build_neighbor_graph(geoms, allow_isolated=False)


def test_unknown_contiguity():
    from ihdmap.exceptions import ConfigError
    from ihdmap.graph import build_neighbor_graph

    with pytest.raises(ConfigError):
        build_neighbor_graph(_grid(1, 2), contiguity="bishop")


def test_bad_geometries():
    from ihdmap.exceptions import DataError
    from ihdmap.graph import build_neighbor_graph

    bowtie = Polygon([(0, 0), (1, 1), (1, 0), (0, 1)])
    with pytest.raises(DataError, match="Geometry 1 is invalid"):
        build_neighbor_graph([box(0, 0, 1, 1), bowtie])
    with pytest.raises(DataError, match="expected a polygon"):
        build_neighbor_graph([box(0, 0, 1, 1), LineString([(0, 0), (1, 1)])])
    with pytest.raises(DataError, match="empty"):
        build_neighbor_graph([box(0, 0, 1, 1), Polygon()])
    with pytest.raises(DataError):
        build_neighbor_graph([])


def test_graph_is_deterministic():
    from ihdmap.graph import build_neighbor_graph

    geoms = _grid(4, 5)
    assert build_neighbor_graph(geoms) == build_neighbor_graph(geoms)
