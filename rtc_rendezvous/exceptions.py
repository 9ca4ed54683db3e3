"""Exceptions raised by rtc-rendezvous."""

from typing import Optional


class RendezvousError(Exception):
    """Base class for all rtc-rendezvous errors."""

    pass


class TransportError(RendezvousError):
    """Raised when the rendezvous gateway is unreachable or returns an unparseable body.

    Callers should treat this as transient.
    """

    pass


class NegotiationError(RendezvousError):
    """Raised when a WebRTC engine operation fails.

    Covers session description creation/application and candidate application.
    """

    pass


class ProtocolError(RendezvousError):
    """Raised when the gateway answers a request with ``success: false``.

    Attributes:
        message: Failure message reported by the gateway.
        next_status: Status hint returned alongside the failure.
    """

    def __init__(self, message: str, next_status: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.next_status = next_status


class ChannelClosedError(RendezvousError):
    """Raised when sending without an open data channel."""

    pass
