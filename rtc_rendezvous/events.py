"""Consumer-facing events emitted by the rendezvous client.

Each event kind has one payload dataclass. Handlers are dispatched
synchronously in subscription order; a handler that raises is logged and does
not prevent delivery to the remaining handlers.

Example:
    >>> client.on(EventKind.MATCH_FOUND, lambda e: print(e.match_list))
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, ClassVar, Dict, List, Optional

from loguru import logger

from rtc_rendezvous.protocol import MatchCandidate


class EventKind(str, Enum):
    REGISTERED = "registered"
    MATCH_FOUND = "matchFound"
    OFFER = "offer"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    MESSAGE = "message"
    ERROR = "error"
    RESET = "reset"


@dataclass
class Registered:
    kind: ClassVar[EventKind] = EventKind.REGISTERED
    id: str
    match_list: List[MatchCandidate] = field(default_factory=list)


@dataclass
class MatchFound:
    kind: ClassVar[EventKind] = EventKind.MATCH_FOUND
    match_list: List[MatchCandidate]


@dataclass
class OfferReceived:
    kind: ClassVar[EventKind] = EventKind.OFFER
    peer_id: str
    peer_name: str


@dataclass
class Connected:
    kind: ClassVar[EventKind] = EventKind.CONNECTED
    peer_id: Optional[str]
    peer_name: Optional[str]


@dataclass
class Disconnected:
    """Emitted for user-initiated and transport-detected disconnects.

    ``reason`` is ``"user"`` for ``disconnect()``, otherwise the peer
    connection state that triggered it (``"disconnected"`` or ``"failed"``).
    """

    kind: ClassVar[EventKind] = EventKind.DISCONNECTED
    reason: str


@dataclass
class MessageReceived:
    kind: ClassVar[EventKind] = EventKind.MESSAGE
    data: Any


@dataclass
class ErrorOccurred:
    kind: ClassVar[EventKind] = EventKind.ERROR
    error: BaseException


@dataclass
class ResetRequested:
    kind: ClassVar[EventKind] = EventKind.RESET
    next_status: Optional[str]
    message: Optional[str]


Event = (
    Registered
    | MatchFound
    | OfferReceived
    | Connected
    | Disconnected
    | MessageReceived
    | ErrorOccurred
    | ResetRequested
)

Handler = Callable[[Any], None]


class EventEmitter:
    """Synchronous observer list keyed by EventKind."""

    def __init__(self):
        self._handlers: Dict[EventKind, List[Handler]] = {}

    def on(self, kind: EventKind, handler: Handler) -> Handler:
        """Subscribe ``handler`` to ``kind``. Returns the handler so it can be used as a decorator."""
        self._handlers.setdefault(EventKind(kind), []).append(handler)
        return handler

    def off(self, kind: EventKind, handler: Handler) -> None:
        handlers = self._handlers.get(EventKind(kind))
        if not handlers:
            return
        self._handlers[EventKind(kind)] = [h for h in handlers if h != handler]

    def emit(self, event: Event) -> None:
        # Copy so handlers may unsubscribe while being dispatched.
        for handler in list(self._handlers.get(event.kind, [])):
            try:
                handler(event)
            except Exception as e:
                logger.warning(f"Error in {event.kind.value} event handler: {e}")
