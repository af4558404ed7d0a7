"""Exceptions raised by the speedtest engine"""

from typing import Optional


class SpeedTestError(Exception):
    """Base class for errors that abort a speedtest run"""


class MetadataError(SpeedTestError):
    """Raised when the connection metadata (trace endpoint) cannot be fetched"""
    def __init__(self, reason: str, status_code: Optional[int] = None, message: str = ""):
        self.reason = reason
        self.status_code = status_code
        if not message:
            if status_code is not None:
                message = f"Trace endpoint returned HTTP {status_code}: {reason}"
            else:
                message = f"Failed to fetch connection metadata: {reason}"
        super().__init__(message)


class SpeedTestCancelled(SpeedTestError):
    """Raised when a run is cancelled before it finished"""
    def __init__(self, message: str = "Speedtest cancelled"):
        super().__init__(message)
