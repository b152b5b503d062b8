"""
Exception types raised by the compositional analysis toolkit.
"""


class CodaError(Exception):
    """Base class for all coda_tools errors."""


class InputShapeError(CodaError, ValueError):
    """Matrix/label dimension mismatch, non-numeric or negative values."""


class ConfigurationError(CodaError, ValueError):
    """Invalid analysis parameter, raised before any computation starts."""


class DegenerateSampleError(CodaError):
    """A sample has no counts left to build a composition from."""

    def __init__(self, message, sample_ids=None):
        super().__init__(message)
        self.sample_ids = list(sample_ids or [])


class DegenerateFeatureError(CodaError):
    """A feature cannot be tested in one Monte-Carlo draw.

    Never escapes the test engine: the draw gets a fallback p-value and the
    occurrence is counted.
    """


class ZeroReplacementError(CodaError):
    """Zero replacement could not produce a valid composition for a sample."""
