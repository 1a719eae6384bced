from __future__ import annotations


class SpheroError(Exception):
    """Base class for link and protocol failures."""


class DeviceConnectionError(SpheroError, ConnectionError):
    """Device selection or link establishment failed."""


class InitializationError(SpheroError):
    """A wake-sequence step failed; the session is unusable."""


class TransmitError(SpheroError):
    """A single frame write failed."""


class TelemetryParseError(SpheroError, ValueError):
    """A notification frame could not be decoded."""
