"""Error taxonomy for the Virtual Power Meter."""

from __future__ import annotations


class VirtualMeterError(Exception):
    """Base class for all errors raised by this package."""


class ConfigError(VirtualMeterError, ValueError):
    """The configuration cannot be used to start the meter."""


class TransientFetchError(VirtualMeterError):
    """A single fetch of a power source failed. Counted and retried."""


class MalformedResponse(VirtualMeterError):
    """A response body lacks a field the meter depends on.

    Never handled locally: a firmware or configuration mismatch has to stop
    the process instead of producing readings from partial data.
    """

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Malformed response at '{path}': {reason}")
        self.path = path


class FatalSourceError(VirtualMeterError):
    """A power source stopped delivering data. The process must halt."""

    def __init__(self, source: str, message: str) -> None:
        super().__init__(message)
        self.source = source


class SourceNotResponding(FatalSourceError):
    """Too many consecutive fetches of one source failed."""


class WatchdogExpired(FatalSourceError):
    """No fetch of one source completed at all within the network timeout."""
