"""Client-side view of the rendezvous session."""

from dataclasses import dataclass, field
from typing import List, Optional

from loguru import logger

from rtc_rendezvous.protocol import MatchCandidate, SessionStatus


@dataclass
class Session:
    """Rendezvous membership state shared by the polling loop and negotiation.

    Attributes:
        display_name: Name announced to the gateway.
        self_id: Id assigned by the gateway, None before registration.
        status: Current status; a SessionStatus or an unrecognized gateway string.
        peer_id: Negotiation target, set on outbound connect or inbound offer.
        peer_name: Display name of the negotiation target.
        match_candidates: Latest gateway match list, replaced wholesale.
        connected: Whether the peer connection reported ``connected``.
    """

    display_name: str
    self_id: Optional[str] = None
    status: str = SessionStatus.IDLE
    peer_id: Optional[str] = None
    peer_name: Optional[str] = None
    match_candidates: List[MatchCandidate] = field(default_factory=list)
    connected: bool = False

    @property
    def is_connected_status(self) -> bool:
        return self.status == SessionStatus.CONNECTED

    def adopt_status(self, next_status: Optional[str]) -> bool:
        """Apply the gateway's status hint.

        Once local status is ``connected`` it is never overwritten by signaling;
        the peer connection's own state is trusted instead.

        Returns:
            True if the status changed.
        """
        if next_status is None or self.is_connected_status:
            return False
        try:
            next_status = SessionStatus(next_status)
        except ValueError:
            logger.debug(f"Unrecognized status from gateway: {next_status}")
        if next_status == self.status:
            return False
        logger.debug(f"Status {self.status} -> {next_status}")
        self.status = next_status
        return True

    def find_candidate(self, peer_id: str) -> Optional[MatchCandidate]:
        for candidate in self.match_candidates:
            if candidate.id == peer_id:
                return candidate
        return None

    def replace_candidates(self, candidates: List[MatchCandidate]) -> bool:
        """Replace the match list if it differs structurally.

        Returns:
            True if the list was replaced.
        """
        if list(candidates) == self.match_candidates:
            return False
        self.match_candidates = list(candidates)
        return True

    def set_peer(self, peer_id: str, peer_name: Optional[str]) -> None:
        self.peer_id = peer_id
        self.peer_name = peer_name

    def clear_peer(self) -> None:
        self.peer_id = None
        self.peer_name = None
        self.connected = False

    def clear_match(self) -> None:
        """Forget the peer and match list but keep the session id."""
        self.clear_peer()
        self.match_candidates = []

    def clear_all(self) -> None:
        """Forget everything the gateway assigned, including the session id."""
        self.clear_match()
        self.self_id = None
