"""Signaling frame definitions for rtc-rendezvous.

This module defines the frames exchanged with the rendezvous gateway. The
gateway is a stateless request/response endpoint: every call is a single HTTP
POST carrying one JSON object and answered by one JSON object.

Frame Overview
--------------

**Outbound** (client → gateway)

    {"action": "register", "id": ..., "name": ..., "global_ip": ...,
     "friend_list": [...], "passphrase": ...}

    {"action": "sendsignal", "id": ..., "peer_id": ..., "type": ...,
     "sdp": {...}, "candidates": [...], "status": ...}

**Inbound** (gateway → client)

    {"success": true, "next_status": "waiting_for_offer", "message": ...,
     "id": ..., "match_list": [{"id": ..., "name": ...}], "type": ...,
     "sdp": {...}, "candidates": [...], "peer_id": ..., "peer_name": ...}

Signal Types
------------

**offer** / **answer**
    Carries a session description ``{"type": "offer"|"answer", "sdp": "..."}``
    plus the sender's gathered candidates.

**ice**
    Carries additional candidates for an existing negotiation.

**polling**
    Sent by the client on every tick with its current status. The gateway
    answers with its authoritative ``next_status`` and any pending signal
    addressed to this client.

Candidates use the browser JSON form:
``{"candidate": "candidate:...", "sdpMid": "0", "sdpMLineIndex": 0}``.

Status Values
-------------

``idle → registering → waiting_for_offer | waiting_for_answer | negotiating →
connected``, with ``disconnected`` and ``reset`` reachable from anywhere.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional

from rtc_rendezvous.exceptions import TransportError

# Actions
ACTION_REGISTER = "register"
ACTION_SEND_SIGNAL = "sendsignal"

# Signal types
SIGNAL_OFFER = "offer"
SIGNAL_ANSWER = "answer"
SIGNAL_ICE = "ice"
SIGNAL_POLLING = "polling"

# Gateway failure message meaning the session id is unknown.
MSG_SESSION_NOT_FOUND = "session not found"


class SessionStatus(str, Enum):
    """Lifecycle status of a rendezvous session.

    Values are the strings the gateway sends in ``next_status``.
    """

    IDLE = "idle"
    REGISTERING = "registering"
    WAITING_FOR_OFFER = "waiting_for_offer"
    WAITING_FOR_ANSWER = "waiting_for_answer"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    RESET = "reset"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class MatchCandidate:
    """A peer offered by the gateway's matchmaking."""

    id: str
    name: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "MatchCandidate":
        return cls(id=str(data["id"]), name=str(data.get("name") or ""))

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name}


@dataclass
class OutboundFrame:
    """A request sent to the rendezvous gateway.

    Unset optional fields are omitted from the encoded body.
    """

    action: str
    id: Optional[str] = None
    peer_id: Optional[str] = None
    type: Optional[str] = None
    sdp: Optional[dict] = None
    candidates: Optional[List[dict]] = None
    status: Optional[str] = None
    # Registration only
    name: Optional[str] = None
    global_ip: Optional[str] = None
    friend_list: Optional[List[str]] = None
    passphrase: Optional[str] = None

    def to_dict(self) -> dict:
        body = {"action": self.action}
        for key in (
            "id",
            "name",
            "global_ip",
            "friend_list",
            "passphrase",
            "peer_id",
            "type",
            "sdp",
            "candidates",
            "status",
        ):
            value = getattr(self, key)
            if value is None:
                continue
            body[key] = str(value) if isinstance(value, SessionStatus) else value
        # Registration always sends an id, null asks the gateway to assign one.
        if self.action == ACTION_REGISTER:
            body.setdefault("id", None)
        return body

    def encode(self) -> str:
        return json.dumps(self.to_dict())


@dataclass
class InboundFrame:
    """A response received from the rendezvous gateway."""

    success: bool
    next_status: Optional[str] = None
    message: Optional[str] = None
    id: Optional[str] = None
    match_list: List[MatchCandidate] = field(default_factory=list)
    type: Optional[str] = None
    sdp: Optional[dict] = None
    candidates: List[dict] = field(default_factory=list)
    peer_id: Optional[str] = None
    peer_name: Optional[str] = None

    @property
    def is_signal(self) -> bool:
        return self.type in (SIGNAL_OFFER, SIGNAL_ANSWER, SIGNAL_ICE)

    @classmethod
    def from_dict(cls, data: dict) -> "InboundFrame":
        """Build a frame from a decoded gateway response.

        Raises:
            TransportError: If the body is not a JSON object or a field has
                the wrong shape.
        """
        if not isinstance(data, dict):
            raise TransportError(
                f"Gateway response must be a JSON object, got {type(data).__name__}"
            )

        try:
            match_list = [
                MatchCandidate.from_dict(entry) for entry in data.get("match_list") or []
            ]
        except (KeyError, TypeError, AttributeError) as e:
            raise TransportError(f"Malformed match_list in gateway response: {e}")

        candidates = data.get("candidates") or []
        if not isinstance(candidates, list):
            raise TransportError("Malformed candidates in gateway response")

        sdp = data.get("sdp")
        if sdp is not None and not isinstance(sdp, dict):
            raise TransportError("Malformed sdp in gateway response")

        return cls(
            success=bool(data.get("success", False)),
            next_status=data.get("next_status"),
            message=data.get("message"),
            id=data.get("id"),
            match_list=match_list,
            type=data.get("type"),
            sdp=sdp,
            candidates=candidates,
            peer_id=data.get("peer_id"),
            peer_name=data.get("peer_name"),
        )


def decode_frame(body: Any) -> InboundFrame:
    """Decode a raw gateway body (text or bytes) into an InboundFrame.

    Raises:
        TransportError: If the body is not valid JSON.
    """
    try:
        data = json.loads(body)
    except (TypeError, ValueError) as e:
        raise TransportError(f"Unparseable gateway response: {e}")
    return InboundFrame.from_dict(data)


def register_frame(
    self_id: Optional[str],
    name: str,
    global_ip: str = "",
    friend_list: Optional[List[str]] = None,
    passphrase: str = "",
) -> OutboundFrame:
    return OutboundFrame(
        action=ACTION_REGISTER,
        id=self_id,
        name=name,
        global_ip=global_ip,
        friend_list=list(friend_list or []),
        passphrase=passphrase,
    )


def signal_frame(
    self_id: str,
    peer_id: Optional[str],
    signal_type: str,
    sdp: Optional[dict] = None,
    candidates: Optional[List[dict]] = None,
    status: Optional[str] = None,
) -> OutboundFrame:
    return OutboundFrame(
        action=ACTION_SEND_SIGNAL,
        id=self_id,
        peer_id=peer_id,
        type=signal_type,
        sdp=sdp,
        candidates=candidates,
        status=status,
    )


def polling_frame(
    self_id: str, peer_id: Optional[str], status: Optional[str]
) -> OutboundFrame:
    return signal_frame(self_id, peer_id, SIGNAL_POLLING, status=status)
