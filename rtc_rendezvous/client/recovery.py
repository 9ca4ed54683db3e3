"""Repair strategies for a client that fell out of step with the gateway."""

from typing import Awaitable, Callable

from loguru import logger

from rtc_rendezvous.client.negotiation import NegotiationController
from rtc_rendezvous.client.polling import PollingLoop
from rtc_rendezvous.client.session import Session
from rtc_rendezvous.events import EventEmitter, ResetRequested
from rtc_rendezvous.protocol import InboundFrame, SessionStatus


class RecoveryManager:
    """Soft recovery, automatic re-registration, and hard reset.

    Args:
        session: Session to repair.
        negotiation: Controller whose engine resources are released.
        polling: Polling loop to stop or keep running.
        events: Emitter for ``reset`` notifications.
        register: Coroutine function that registers with the gateway again.
    """

    def __init__(
        self,
        session: Session,
        negotiation: NegotiationController,
        polling: PollingLoop,
        events: EventEmitter,
        register: Callable[[], Awaitable[None]],
    ):
        self.session = session
        self.negotiation = negotiation
        self.polling = polling
        self.events = events
        self.register = register

    async def soft_recover(self) -> None:
        """Drop the current negotiation but keep the session id and keep polling.

        The next poll receives fresh match candidates for the same session.
        """
        await self.negotiation.teardown()
        self.session.clear_match()

    async def auto_reconnect(self) -> None:
        """Forget the session and register again.

        A failed registration emits ``error`` (from ``register``) and leaves
        the client idle until the caller retries.
        """
        logger.info("Session lost, registering again")
        await self.negotiation.teardown()
        self.session.clear_all()
        self.polling.stop()

        try:
            await self.register()
            logger.info("Auto reconnect successful")
        except Exception as e:
            logger.error(f"Auto reconnect failed: {e}")
            self.session.status = SessionStatus.IDLE

    async def hard_reset(self, frame: InboundFrame) -> None:
        """Tear everything down and let the application decide whether to register again."""
        logger.warning(f"Gateway requested reset: {frame.message}")
        await self.negotiation.teardown()
        self.session.clear_all()
        self.session.status = SessionStatus.IDLE
        self.polling.stop()
        self.events.emit(
            ResetRequested(next_status=frame.next_status, message=frame.message)
        )
