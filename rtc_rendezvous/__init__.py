"""rtc-rendezvous: WebRTC data channels negotiated through a polling HTTP gateway.

This package provides:
- client: RendezvousClient and the signaling components it is built from
- config: ClientOptions and configuration file/environment loading
- events: Consumer-facing event kinds and payloads
- protocol: Gateway frame definitions
"""

from rtc_rendezvous.client import RendezvousClient
from rtc_rendezvous.config import ClientOptions, get_config
from rtc_rendezvous.events import EventKind
from rtc_rendezvous.exceptions import (
    RendezvousError,
    TransportError,
    NegotiationError,
    ProtocolError,
    ChannelClosedError,
)
from rtc_rendezvous.protocol import MatchCandidate, SessionStatus

__version__ = "0.1.0"

__all__ = [
    "RendezvousClient",
    "ClientOptions",
    "get_config",
    "EventKind",
    "MatchCandidate",
    "SessionStatus",
    # Exceptions
    "RendezvousError",
    "TransportError",
    "NegotiationError",
    "ProtocolError",
    "ChannelClosedError",
]
