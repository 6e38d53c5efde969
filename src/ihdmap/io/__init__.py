"""Input/output utilities."""

from ihdmap.io.exporters import save_parameters, save_results
from ihdmap.io.loaders import join_units, load_counts, load_geometry, load_units
from ihdmap.io.synthetic import make_lattice

__all__ = [
    "join_units",
    "load_counts",
    "load_geometry",
    "load_units",
    "make_lattice",
    "save_parameters",
    "save_results",
]
