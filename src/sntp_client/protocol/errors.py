"""Error taxonomy for a single SNTP exchange.

Every failure carries its originating cause both as ``__cause__`` (via
``raise ... from``) and as ``.cause`` for callers that want to inspect it.
"""

from __future__ import annotations

from typing import Optional


class SntpError(Exception):
    """Base class for all exchange failures."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class ChannelSetupError(SntpError):
    """The read deadline could not be applied, or the channel could not be opened."""


class SendError(SntpError):
    """Writing the request datagram failed or was truncated."""


class Timeout(SntpError):
    """No reply arrived before the read deadline."""


class ReceiveError(SntpError):
    """The transport reported an error other than a timeout while reading."""


class MalformedPacket(SntpError):
    """The reply was shorter than a full NTP packet."""
