"""Neighbor graph construction and the graph exchange file."""

from ihdmap.graph.exchange import format_graph, parse_graph, read_graph, write_graph
from ihdmap.graph.neighbors import NeighborGraph, build_neighbor_graph

__all__ = [
    "NeighborGraph",
    "build_neighbor_graph",
    "format_graph",
    "parse_graph",
    "read_graph",
    "write_graph",
]
