"""Exception types raised by tripsync."""


class TripsyncError(Exception):
    """Base class for tripsync errors."""


class ConfigError(TripsyncError):
    """Configuration file or override is invalid."""


class StoreError(TripsyncError):
    """A persisted store read or write failed."""


class InvalidEventError(TripsyncError, ValueError):
    """Event kind or payload failed validation."""
