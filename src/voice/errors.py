"""
Exceptions raised while setting up or relaying a call.

All of them stay local to one call: the bridge logs them with the call leg
and keeps (or tears down) only that call's connections.
"""

from typing import Optional


class RelayError(Exception):
    """Base class for relay errors."""

    default_detail = "Relay error"

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class UpstreamAuthError(RelayError):
    """The signed URL endpoint answered with a non-success status."""

    default_detail = "Failed to get signed URL"

    def __init__(self, status_code: int, status_text: str):
        super().__init__(f"{self.default_detail}: {status_code} {status_text}".rstrip())
        self.status_code = status_code
        self.status_text = status_text


class UpstreamUnavailableError(RelayError):
    """The signed URL endpoint could not be reached or returned no URL."""

    default_detail = "Signed URL endpoint unavailable"


class MalformedFrameError(RelayError):
    """An inbound frame could not be parsed into the expected structure."""

    default_detail = "Malformed frame"


class RelayConnectionError(RelayError):
    """Transport-level failure on one of the two connections."""

    default_detail = "Connection failed"


class CallPlacementError(RelayError):
    """Twilio refused or could not be reached while placing a call."""

    default_detail = "Failed to initiate call"
