"""Periodic polling of the rendezvous gateway."""

import asyncio
from typing import TYPE_CHECKING, Optional

from loguru import logger

from rtc_rendezvous.client.negotiation import NegotiationController
from rtc_rendezvous.client.session import Session
from rtc_rendezvous.client.transport import SignalTransport
from rtc_rendezvous.events import EventEmitter, MatchFound
from rtc_rendezvous.protocol import (
    MSG_SESSION_NOT_FOUND,
    SIGNAL_ANSWER,
    SIGNAL_ICE,
    SIGNAL_OFFER,
    InboundFrame,
    SessionStatus,
    polling_frame,
)

if TYPE_CHECKING:
    from rtc_rendezvous.client.recovery import RecoveryManager


class PollingLoop:
    """Fetches signaling updates from the gateway at a fixed interval.

    Ticks are serialized: the next tick is scheduled ``interval`` seconds after
    the previous one finished. A failing tick is logged and the loop carries
    on; only ``stop()`` ends it.
    """

    def __init__(
        self,
        session: Session,
        transport: SignalTransport,
        negotiation: NegotiationController,
        events: EventEmitter,
        interval: float = 2.0,
        recovery: Optional["RecoveryManager"] = None,
    ):
        self.session = session
        self.transport = transport
        self.negotiation = negotiation
        self.events = events
        self.interval = interval
        self.recovery = recovery
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None

    def start(self) -> None:
        if self._task is not None:
            return
        logger.debug(f"Polling every {self.interval}s")
        self._task = asyncio.create_task(self._run())

    def stop(self) -> None:
        """Stop polling. When called from inside a tick, that tick runs to completion."""
        task, self._task = self._task, None
        if task is None:
            return
        logger.debug("Polling stopped")
        if task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def _run(self) -> None:
        task = asyncio.current_task()
        while self._task is task:
            await asyncio.sleep(self.interval)
            if self._task is not task:
                break
            await self.tick()

    async def tick(self) -> None:
        """Run one poll. Never raises except on cancellation."""
        try:
            await self._poll()
        except Exception as e:
            logger.warning(f"Polling error: {e}")

    async def _poll(self) -> None:
        session = self.session
        logger.debug(
            f"Poll request: id={session.self_id} peer={session.peer_id} status={session.status}"
        )
        response = await self.transport.send(
            polling_frame(session.self_id, session.peer_id, session.status)
        )

        if not response.success:
            await self._handle_failure(response)
            return

        if response.next_status == SessionStatus.RESET:
            await self.recovery.hard_reset(response)
            return

        # The gateway moved us back to waiting for an offer while we hold a peer.
        if (
            response.next_status == SessionStatus.WAITING_FOR_OFFER
            and session.peer_id
            and not self.negotiation.processing
            and not session.is_connected_status
        ):
            logger.info(f"Recovering from desynchronized negotiation: {response.message}")
            await self.recovery.soft_recover()

        if response.is_signal:
            await self._route_signal(response)
        elif response.match_list:
            if session.replace_candidates(response.match_list):
                logger.info(f"Match list updated: {len(session.match_candidates)} peer(s)")
                self.events.emit(MatchFound(match_list=list(session.match_candidates)))

        session.adopt_status(response.next_status)

    async def _route_signal(self, response: InboundFrame) -> None:
        if response.type == SIGNAL_OFFER:
            await self.negotiation.handle_inbound_offer(response)
        elif response.type == SIGNAL_ANSWER:
            await self.negotiation.handle_inbound_answer(response)
        elif response.type == SIGNAL_ICE:
            await self.negotiation.handle_inbound_candidates(response)

    async def _handle_failure(self, response: InboundFrame) -> None:
        logger.debug(
            f"Poll failed: {response.message} (next_status={response.next_status})"
        )
        if response.next_status == SessionStatus.RESET:
            await self.recovery.hard_reset(response)
        elif (
            response.message == MSG_SESSION_NOT_FOUND
            or response.next_status == SessionStatus.REGISTERING
        ):
            await self.recovery.auto_reconnect()
