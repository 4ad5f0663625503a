"""
FLOW-HB error taxonomy.

Only ValidationError escapes to callers; probe errors are raised inside the
probe executor and converted to failed heartbeats at its boundary.
"""


class MonitorError(Exception):
    """Base class for all monitor errors."""


class ValidationError(MonitorError):
    """Session parameters rejected before the session starts."""


class ProbeError(MonitorError):
    """A single probe failed. Never fatal to the session."""


class NetworkError(ProbeError):
    """Transport-level failure (DNS, refused connection, reset)."""


class ProbeTimeoutError(ProbeError):
    """Probe exceeded its timeout bound."""


class ProtocolError(ProbeError):
    """Response received with a non-success status."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code
