"""
Exception types raised by the chaincrf package.
"""


class ChainCRFError(Exception):
    """Base class for all chaincrf errors."""


class ConfigurationError(ChainCRFError, ValueError):
    """
    Invalid configuration: unknown inference or annealing type, unknown
    feature factory, word shaper, prior or reader, or a bad flag value.
    """


class DataShapeError(ChainCRFError):
    """Encoded features and labels disagree in shape."""


class CalibrationError(ChainCRFError, ArithmeticError):
    """Forward-backward produced a non-finite partition function."""
