"""
Exception and warning types raised by the scanmc samplers.
"""


class ScanMCError(Exception):
    """Base class for all scanmc errors."""


class ConfigurationError(ScanMCError, ValueError):
    """Invalid or inconsistent run configuration, detected before sampling."""


class NumericDegeneracyWarning(UserWarning):
    """A proposal covariance update was rejected; the previous one is kept."""


class NonConvergenceWarning(UserWarning):
    """The prerun reached its iteration limit without converging."""
