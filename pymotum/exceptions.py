"""
Exception hierarchy for pymotum.

Every error raised by the pipeline derives from ``PymotumError`` so callers can
catch library failures in one place. Misuse of function arguments still raises
``ValueError``.
"""

from typing import Optional


class PymotumError(Exception):
    """Base class for all pymotum errors."""


class SchemaError(PymotumError):
    """Required columns are missing or malformed."""


class ParseError(PymotumError):
    """A timestamp, numeric field or location class could not be parsed."""

    def __init__(self, message: str, row: Optional[int] = None, column: Optional[str] = None):
        self.row = row
        self.column = column
        if row is not None or column is not None:
            message = f"{message} (row={row}, column={column})"
        super().__init__(message)


class ConvergenceFailure(PymotumError):
    """An optimizer failed for one track. Carries the track id and step name."""

    def __init__(self, message: str, track_id: Optional[str] = None, step: str = "fit_ssm"):
        self.track_id = track_id
        self.step = step
        super().__init__(f"[{step}] track {track_id!r}: {message}")


class ProjectionError(PymotumError):
    """An invalid or unsupported map projection string."""
