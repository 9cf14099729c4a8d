"""
Exceptions raised by the calibration data loaders and writers.
"""


class CalibDataError(Exception):
    """Base class for calibration data errors."""


class InputNotFound(CalibDataError, FileNotFoundError):
    """A required directory or file does not exist."""


class ParseFailure(CalibDataError, ValueError):
    """A detection or configuration file could not be parsed."""


class CountMismatch(CalibDataError, ValueError):
    """The declared camera count does not match the supplied directories."""


class WriteFailure(CalibDataError, OSError):
    """A detection record could not be written to disk."""
