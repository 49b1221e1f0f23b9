"""
Exception Types
Configuration errors abort a run, convergence failures are recovered per grid point
"""


class BatlocError(Exception):
    """Base class for all batloc errors"""


class ConfigurationError(BatlocError, ValueError):
    """Invalid parameters, sensor geometry or source placement (fatal)"""


class UnsupportedGeometryError(ConfigurationError):
    """Array geometry name that has no known layout"""


class ConvergenceFailure(BatlocError, RuntimeError):
    """Least-squares solve did not converge or the geometry cannot be inverted"""
