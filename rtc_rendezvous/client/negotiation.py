"""Offer/answer/candidate exchange between the WebRTC engine and the gateway."""

import asyncio
import json
from typing import Any, Callable, List, Optional

from loguru import logger

from rtc_rendezvous.client.engine import PeerSession
from rtc_rendezvous.client.session import Session
from rtc_rendezvous.client.transport import SignalTransport
from rtc_rendezvous.events import (
    Connected,
    Disconnected,
    ErrorOccurred,
    EventEmitter,
    MessageReceived,
    OfferReceived,
)
from rtc_rendezvous.exceptions import (
    ChannelClosedError,
    NegotiationError,
    ProtocolError,
)
from rtc_rendezvous.protocol import (
    SIGNAL_ANSWER,
    SIGNAL_OFFER,
    InboundFrame,
    SessionStatus,
    signal_frame,
)


class NegotiationController:
    """Drives the WebRTC engine through one offer/answer exchange at a time.

    ``processing`` is True while an operation is in flight. The polling loop
    reads it to avoid treating a gateway status that lags behind an in-flight
    exchange as a desynchronization.
    """

    def __init__(
        self,
        session: Session,
        transport: SignalTransport,
        events: EventEmitter,
        engine_factory: Callable[[], PeerSession],
        gather_timeout: float = 1.0,
        on_connected: Optional[Callable[[], None]] = None,
    ):
        self.session = session
        self.transport = transport
        self.events = events
        self.engine_factory = engine_factory
        self.gather_timeout = gather_timeout
        self.on_connected = on_connected

        self.peer: Optional[PeerSession] = None
        self.pending_candidates: List[dict] = []
        self.is_offerer = False
        self.processing = False
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def initiate_connection(self, peer_id: str) -> None:
        """Create an offer for ``peer_id`` and publish it through the gateway.

        If ``teardown()`` runs while candidates are being gathered (a user
        disconnect or a recovery), the offer is dropped and this returns
        without publishing or raising; ``peer`` is None afterwards.

        Raises:
            NegotiationError: If the engine fails to produce the offer.
            ProtocolError: If the gateway rejects the offer.
            TransportError: If the gateway cannot be reached.
        """
        async with self._lock:
            self.processing = True
            try:
                logger.info(f"Connecting to peer {peer_id}")
                candidate = self.session.find_candidate(peer_id)
                self.session.set_peer(peer_id, candidate.name if candidate else None)
                self.is_offerer = True

                peer = await self._create_peer()
                try:
                    self._setup_channel(peer.create_data_channel())
                    await peer.create_offer()
                    await peer.wait_for_gathering(self.gather_timeout)
                except Exception as e:
                    raise NegotiationError(f"Failed to create offer: {e}") from e
                if self.peer is not peer:
                    logger.info("Negotiation torn down before the offer was sent")
                    return
                self.pending_candidates.extend(peer.local_candidates())

                logger.info("Sending offer")
                response = await self.transport.send(
                    signal_frame(
                        self.session.self_id,
                        peer_id,
                        SIGNAL_OFFER,
                        sdp=peer.local_description,
                        candidates=list(self.pending_candidates),
                    )
                )
                if not response.success:
                    raise ProtocolError(
                        response.message or "Offer rejected by gateway",
                        response.next_status,
                    )

                self.pending_candidates = []
                if self.peer is peer:
                    self.session.adopt_status(response.next_status)
                logger.info(f"Offer sent, status: {self.session.status}")
            except Exception as e:
                logger.error(f"Failed to connect to {peer_id}: {e}")
                self.events.emit(ErrorOccurred(error=e))
                raise
            finally:
                self.processing = False

    async def handle_inbound_offer(self, frame: InboundFrame) -> None:
        """Answer an offer relayed by the gateway."""
        async with self._lock:
            self.processing = True
            try:
                logger.info(f"Received offer from {frame.peer_id}")
                self.session.set_peer(frame.peer_id, frame.peer_name or "")
                self.is_offerer = False
                self.events.emit(
                    OfferReceived(peer_id=frame.peer_id, peer_name=self.session.peer_name)
                )

                peer = await self._create_peer()
                try:
                    await peer.apply_remote_description(frame.sdp)
                    await self._apply_candidates(peer, frame.candidates)
                    await peer.create_answer()
                    await peer.wait_for_gathering(self.gather_timeout)
                except Exception as e:
                    raise NegotiationError(f"Failed to answer offer: {e}") from e
                if self.peer is not peer:
                    logger.info("Negotiation torn down before the answer was sent")
                    return
                self.pending_candidates.extend(peer.local_candidates())

                logger.info("Sending answer")
                response = await self.transport.send(
                    signal_frame(
                        self.session.self_id,
                        self.session.peer_id,
                        SIGNAL_ANSWER,
                        sdp=peer.local_description,
                        candidates=list(self.pending_candidates),
                    )
                )
                if not response.success:
                    raise ProtocolError(
                        response.message or "Answer rejected by gateway",
                        response.next_status,
                    )
                self.pending_candidates = []
            except Exception as e:
                logger.error(f"Failed to handle offer: {e}")
                self.events.emit(ErrorOccurred(error=e))
                raise
            finally:
                self.processing = False

    async def handle_inbound_answer(self, frame: InboundFrame) -> None:
        """Apply the answer to the offer created by ``initiate_connection``.

        Raises:
            RuntimeError: If no offer was created first.
        """
        async with self._lock:
            self.processing = True
            try:
                if self.peer is None:
                    raise RuntimeError("Received an answer without a pending offer")
                logger.info("Received answer")
                try:
                    await self.peer.apply_remote_description(frame.sdp)
                    await self._apply_candidates(self.peer, frame.candidates)
                except Exception as e:
                    error = NegotiationError(f"Failed to apply answer: {e}")
                    logger.error(str(error))
                    self.events.emit(ErrorOccurred(error=error))
                    raise error from e
            finally:
                self.processing = False

    async def handle_inbound_candidates(self, frame: InboundFrame) -> None:
        async with self._lock:
            self.processing = True
            try:
                if self.peer is None or not frame.candidates:
                    return
                try:
                    await self._apply_candidates(self.peer, frame.candidates)
                except Exception as e:
                    error = NegotiationError(f"Failed to apply candidates: {e}")
                    logger.error(str(error))
                    self.events.emit(ErrorOccurred(error=error))
                    raise error from e
            finally:
                self.processing = False

    async def teardown(self) -> None:
        """Close the data channel and peer connection. Safe to call at any time."""
        self.is_offerer = False
        self.processing = False
        await self._release_peer()

    async def _release_peer(self) -> None:
        """Close the current peer, leaving the flag and role untouched."""
        peer, self.peer = self.peer, None
        self.pending_candidates = []
        if peer is None:
            return
        try:
            await peer.close()
        except Exception as e:
            logger.warning(f"Error closing peer connection: {e}")

    def send(self, data: Any) -> None:
        """Send ``data`` as JSON over the open data channel.

        Raises:
            ChannelClosedError: If no data channel is open.
        """
        channel = self.peer.channel if self.peer is not None else None
        if channel is None or channel.readyState != "open":
            raise ChannelClosedError("Not connected")
        channel.send(json.dumps(data))

    # ------------------------------------------------------------------
    # Engine callbacks
    # ------------------------------------------------------------------

    async def _create_peer(self) -> PeerSession:
        await self._release_peer()
        peer = self.engine_factory()
        peer.on("connectionstatechange", lambda: self._on_connection_state(peer))
        peer.on("datachannel", lambda channel: self._on_datachannel(peer, channel))
        self.peer = peer
        return peer

    @staticmethod
    async def _apply_candidates(peer: PeerSession, candidates: List[dict]) -> None:
        if candidates:
            logger.debug(f"Adding {len(candidates)} remote candidate(s)")
        for candidate in candidates or []:
            await peer.add_remote_candidate(candidate)

    def _on_connection_state(self, peer: PeerSession) -> None:
        if peer is not self.peer:
            return
        state = peer.connection_state
        logger.info(f"Connection state is now {state}")
        if state == "connected":
            self.session.connected = True
            self.session.status = SessionStatus.CONNECTED
            if self.on_connected is not None:
                self.on_connected()
            self.events.emit(
                Connected(peer_id=self.session.peer_id, peer_name=self.session.peer_name)
            )
        elif state in ("disconnected", "failed"):
            self.session.connected = False
            self.events.emit(Disconnected(reason=state))

    def _on_datachannel(self, peer: PeerSession, channel) -> None:
        if peer is not self.peer:
            return
        logger.info(f"Data channel {channel.label} received")
        peer.channel = channel
        self._setup_channel(channel)

    def _setup_channel(self, channel) -> None:
        channel.on("open", lambda: logger.info(f"Data channel {channel.label} is open"))
        channel.on("close", lambda: logger.info(f"Data channel {channel.label} closed"))
        channel.on("message", self._on_message)

    def _on_message(self, message) -> None:
        if isinstance(message, str):
            try:
                data = json.loads(message)
            except ValueError:
                data = message
        else:
            data = message
        self.events.emit(MessageReceived(data=data))
