"""Error taxonomy and warning categories for the traffic density engine."""

from __future__ import annotations


class DensityError(Exception):
    """Base exception for all traffic density errors."""


class ConfigurationError(DensityError, ValueError):
    """Raised when input data or a filter combination is malformed."""


class ArgumentError(ConfigurationError):
    """Raised when a call argument cannot be evaluated (e.g. a one-sample track)."""


class RangeError(DensityError, ValueError):
    """Raised when a query falls outside the grid's spatial or altitude domain."""

    def __init__(self, quantity: str, value: float, lo: float, hi: float):
        self.quantity = quantity
        self.value = value
        self.lo = lo
        self.hi = hi
        super().__init__(f"{quantity} {value:g} is outside the grid domain [{lo:g}, {hi:g}]")


class DensityWarning(UserWarning):
    """Base category for recoverable advisories."""


class CapabilityUnavailableWarning(DensityWarning):
    """An optional statistic was disabled because its numeric dependency is missing."""


class DataAbsenceWarning(DensityWarning):
    """A valid configuration matched no observations."""


class TrackAltitudeWarning(DensityWarning):
    """A track sample lies at an implausible altitude."""


class DroppedCountWarning(DensityWarning):
    """Observed counts fell in altitude bins or cells without exposure and were left out."""
