"""Exception hierarchy for ihdmap.

All errors are fatal for a run: the pipeline is an offline batch job and a
partially populated report is never written.
"""


class IhdmapError(Exception):
    """Base class for all ihdmap errors."""


class DataError(IhdmapError, ValueError):
    """Malformed or missing tabular, geometry or graph input."""


class ConfigError(IhdmapError, ValueError):
    """Invalid configuration, detected before any backend call."""


class IntegrityError(IhdmapError, ValueError):
    """Backend output does not line up with the input units."""
