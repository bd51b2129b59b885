"""Exception types raised by the MFDop processing package."""


class ConfigError(ValueError):
    """Invalid processing parameters or inconsistent input layout."""


class GeometryError(ValueError):
    """Beam geometry that cannot be evaluated (e.g. undefined half-angle)."""
