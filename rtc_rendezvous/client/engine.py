"""WebRTC engine adapter built on aiortc.

Wraps an ``RTCPeerConnection`` behind the small surface the negotiation
controller needs, using the browser JSON shapes for descriptions and
candidates so the remote peer may be a browser.

aiortc does not trickle candidates: they are gathered while the local
description is applied and embedded in its SDP. ``local_candidates()`` reads
them back out so they can also be published alongside the description.
"""

import asyncio
from typing import Callable, List, Optional

from aiortc import (
    RTCConfiguration,
    RTCDataChannel,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.sdp import candidate_from_sdp
from loguru import logger

DATA_CHANNEL_LABEL = "data"


def candidates_from_sdp(sdp: str) -> List[dict]:
    """Extract ``a=candidate`` lines from an SDP as browser-style candidate dicts."""
    candidates = []
    mline_index = -1
    mid = None
    for line in sdp.splitlines():
        line = line.strip()
        if line.startswith("m="):
            mline_index += 1
            mid = None
        elif line.startswith("a=mid:"):
            mid = line[len("a=mid:") :]
        elif line.startswith("a=candidate:") and mline_index >= 0:
            candidates.append(
                {
                    "candidate": line[len("a=") :],
                    "sdpMid": mid if mid is not None else str(mline_index),
                    "sdpMLineIndex": mline_index,
                }
            )
    return candidates


class PeerSession:
    """One peer connection and its data channel."""

    def __init__(self, ice_servers: Optional[List[dict]] = None):
        # None keeps aiortc's default STUN server; an empty list disables STUN.
        if ice_servers is not None:
            config = RTCConfiguration(
                iceServers=[RTCIceServer(**server) for server in ice_servers]
            )
            logger.debug(f"Creating RTCPeerConnection with {len(ice_servers)} ICE server(s)")
            self.pc = RTCPeerConnection(configuration=config)
        else:
            self.pc = RTCPeerConnection()
        self.channel: Optional[RTCDataChannel] = None
        self._gathering_complete = asyncio.Event()
        self.pc.on("icegatheringstatechange", self._on_icegatheringstatechange)

    def _on_icegatheringstatechange(self):
        if self.pc.iceGatheringState == "complete":
            self._gathering_complete.set()

    def on(self, event: str, handler: Callable) -> None:
        """Register a peer connection event handler (``connectionstatechange``, ``datachannel``)."""
        self.pc.on(event, handler)

    @property
    def connection_state(self) -> str:
        return self.pc.connectionState

    def create_data_channel(self, label: str = DATA_CHANNEL_LABEL) -> RTCDataChannel:
        self.channel = self.pc.createDataChannel(label)
        return self.channel

    async def create_offer(self) -> dict:
        await self.pc.setLocalDescription(await self.pc.createOffer())
        return self.local_description

    async def create_answer(self) -> dict:
        await self.pc.setLocalDescription(await self.pc.createAnswer())
        return self.local_description

    async def apply_remote_description(self, description: dict) -> None:
        await self.pc.setRemoteDescription(
            RTCSessionDescription(sdp=description["sdp"], type=description["type"])
        )

    async def add_remote_candidate(self, candidate: dict) -> None:
        candidate_sdp = candidate.get("candidate") or ""
        if candidate_sdp.startswith("candidate:"):
            candidate_sdp = candidate_sdp[len("candidate:") :]
        if not candidate_sdp:
            # End-of-candidates marker.
            return

        ice_candidate = candidate_from_sdp(candidate_sdp)
        ice_candidate.sdpMid = candidate.get("sdpMid")
        ice_candidate.sdpMLineIndex = candidate.get("sdpMLineIndex")
        await self.pc.addIceCandidate(ice_candidate)

    async def wait_for_gathering(self, timeout: float) -> bool:
        """Wait until gathering completes or ``timeout`` seconds elapse.

        Returns:
            True if gathering completed, False if the ceiling was reached.
        """
        if self.pc.iceGatheringState == "complete":
            return True
        try:
            await asyncio.wait_for(self._gathering_complete.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            logger.debug(f"Candidate gathering still running after {timeout}s")
            return False

    @property
    def local_description(self) -> Optional[dict]:
        desc = self.pc.localDescription
        if desc is None:
            return None
        return {"type": desc.type, "sdp": desc.sdp}

    def local_candidates(self) -> List[dict]:
        desc = self.pc.localDescription
        if desc is None:
            return []
        return candidates_from_sdp(desc.sdp)

    async def close(self) -> None:
        if self.channel is not None:
            self.channel.close()
            self.channel = None
        await self.pc.close()
