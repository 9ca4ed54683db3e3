import asyncio
from functools import partial
from typing import Any, Callable, List, Optional

from loguru import logger

from rtc_rendezvous.client.engine import PeerSession
from rtc_rendezvous.client.negotiation import NegotiationController
from rtc_rendezvous.client.polling import PollingLoop
from rtc_rendezvous.client.recovery import RecoveryManager
from rtc_rendezvous.client.session import Session
from rtc_rendezvous.client.transport import SignalTransport
from rtc_rendezvous.config import ClientOptions
from rtc_rendezvous.events import (
    Disconnected,
    ErrorOccurred,
    EventEmitter,
    EventKind,
    Handler,
    MatchFound,
    Registered,
)
from rtc_rendezvous.exceptions import ProtocolError
from rtc_rendezvous.protocol import (
    SIGNAL_POLLING,
    MatchCandidate,
    SessionStatus,
    register_frame,
    signal_frame,
)


class RendezvousClient:
    """Establishes a WebRTC data channel to a peer matched by a polling gateway.

    Example:
        >>> client = RendezvousClient(ClientOptions(api_url=URL, name="Alice"))
        >>> client.on(EventKind.MATCH_FOUND, lambda e: print(e.match_list))
        >>> await client.register()
        >>> await client.connect("u2")
    """

    def __init__(
        self,
        options: ClientOptions,
        transport: Optional[SignalTransport] = None,
        engine_factory: Optional[Callable[[], PeerSession]] = None,
    ):
        self.options = options
        self.events = EventEmitter()
        self.session = Session(display_name=options.name, self_id=options.id)
        self.transport = transport or SignalTransport(options.api_url)

        self.negotiation = NegotiationController(
            self.session,
            self.transport,
            self.events,
            engine_factory or partial(PeerSession, options.ice_servers),
            gather_timeout=options.gather_timeout_seconds,
            on_connected=self._on_connected,
        )
        self.polling = PollingLoop(
            self.session,
            self.transport,
            self.negotiation,
            self.events,
            interval=options.polling_interval_seconds,
        )
        self.recovery = RecoveryManager(
            self.session,
            self.negotiation,
            self.polling,
            self.events,
            register=self.register,
        )
        self.polling.recovery = self.recovery

        self._background: set = set()
        self._closed = asyncio.Event()
        self._disconnected = False

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def id(self) -> Optional[str]:
        return self.session.self_id

    @property
    def status(self) -> str:
        return self.session.status

    @property
    def peer_id(self) -> Optional[str]:
        return self.session.peer_id

    @property
    def peer_name(self) -> Optional[str]:
        return self.session.peer_name

    @property
    def match_list(self) -> List[MatchCandidate]:
        return list(self.session.match_candidates)

    @property
    def is_connected(self) -> bool:
        return self.session.connected

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on(self, kind: EventKind, handler: Handler) -> Handler:
        return self.events.on(kind, handler)

    def off(self, kind: EventKind, handler: Handler) -> None:
        self.events.off(kind, handler)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def register(self) -> None:
        """Register with the gateway and start polling.

        Raises:
            ProtocolError: If the gateway rejects the registration.
            TransportError: If the gateway cannot be reached.
        """
        self._closed.clear()
        self._disconnected = False
        self.session.status = SessionStatus.REGISTERING
        try:
            logger.info(f"Registering as {self.options.name}")
            response = await self.transport.send(
                register_frame(
                    self.session.self_id,
                    self.options.name,
                    global_ip=self.options.global_ip,
                    friend_list=self.options.friend_list,
                    passphrase=self.options.passphrase,
                )
            )
            if not response.success:
                raise ProtocolError(
                    response.message or "Registration rejected by gateway",
                    response.next_status,
                )
        except Exception as e:
            logger.error(f"Registration failed: {e}")
            self.session.status = SessionStatus.IDLE
            self.events.emit(ErrorOccurred(error=e))
            raise

        if response.id:
            self.session.self_id = response.id
        self.session.adopt_status(response.next_status)
        self.session.match_candidates = list(response.match_list)
        logger.info(f"Registered with id {self.session.self_id}, status: {self.session.status}")

        self.events.emit(Registered(id=self.session.self_id, match_list=self.match_list))
        if self.session.match_candidates:
            self.events.emit(MatchFound(match_list=self.match_list))

        self.polling.start()

    async def connect(self, peer_id: str) -> None:
        """Offer a connection to ``peer_id``. See NegotiationController.initiate_connection."""
        await self.negotiation.initiate_connection(peer_id)

    async def disconnect(self) -> None:
        """Stop polling and release the peer connection.

        Idempotent: ``disconnected`` is emitted only by the first call.
        """
        already_disconnected, self._disconnected = self._disconnected, True
        self.polling.stop()
        await self.negotiation.teardown()

        self.session.status = SessionStatus.DISCONNECTED
        self.session.clear_peer()
        self._closed.set()

        if not already_disconnected:
            logger.info("Disconnected")
            self.events.emit(Disconnected(reason="user"))

    def send(self, data: Any) -> None:
        """Send ``data`` as JSON over the data channel.

        Raises:
            ChannelClosedError: If no data channel is open.
        """
        self.negotiation.send(data)

    async def wait_closed(self) -> None:
        """Wait until ``disconnect()`` has been called."""
        await self._closed.wait()

    async def close(self) -> None:
        await self.disconnect()
        for task in list(self._background):
            task.cancel()
        self.transport.close()

    async def __aenter__(self) -> "RendezvousClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Connection hooks
    # ------------------------------------------------------------------

    def _on_connected(self) -> None:
        self.polling.stop()
        # Let the gateway drop the stored SDP and candidates. Lossy by intent.
        task = asyncio.ensure_future(self._notify_connected())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _notify_connected(self) -> None:
        try:
            await self.transport.send(
                signal_frame(
                    self.session.self_id,
                    self.session.peer_id,
                    SIGNAL_POLLING,
                    status=SessionStatus.CONNECTED,
                )
            )
            logger.debug("Connected notification sent to gateway")
        except Exception as e:
            logger.warning(f"Failed to notify gateway of connection: {e}")
