"""Shared fixtures."""

import matplotlib
import pytest

matplotlib.use("Agg")


@pytest.fixture
def lattice():
    """3 x 4 grid of square units with simulated counts."""
    from ihdmap.io.synthetic import make_lattice

    units, _ = make_lattice(n_rows=3, n_cols=4, random_state=7)
    return units


@pytest.fixture
def three_unit_graph():
    """Unit 1 touches units 2 and 3, which do not touch each other."""
    from ihdmap.graph import NeighborGraph

    return NeighborGraph.from_neighbor_lists([[1, 2], [0], [0]])
