"""Shared fakes for the gateway and the WebRTC engine."""

from collections import deque

import pytest
import pytest_asyncio

from rtc_rendezvous.client.client_class import RendezvousClient
from rtc_rendezvous.config import ClientOptions
from rtc_rendezvous.protocol import InboundFrame

HOST_CANDIDATE = {
    "candidate": "candidate:1 1 udp 2130706431 10.0.0.1 50000 typ host",
    "sdpMid": "0",
    "sdpMLineIndex": 0,
}


class FakeTransport:
    """Scripted gateway: returns queued responses in order.

    Queue entries are response dicts, exceptions to raise, or callables that
    receive the outbound frame and return one of those. With an empty queue,
    ``{"success": true}`` is returned.
    """

    def __init__(self):
        self.sent = []
        self.responses = deque()
        self.closed = False

    def queue(self, *responses):
        self.responses.extend(responses)

    async def send(self, frame):
        self.sent.append(frame)
        item = self.responses.popleft() if self.responses else {"success": True}
        if callable(item):
            item = item(frame)
        if isinstance(item, Exception):
            raise item
        return InboundFrame.from_dict(item)

    def sent_types(self):
        return [frame.type or frame.action for frame in self.sent]

    def close(self):
        self.closed = True


class FakeChannel:
    label = "data"

    def __init__(self):
        self.readyState = "open"
        self.sent = []
        self.handlers = {}

    def on(self, event, handler):
        self.handlers[event] = handler

    def send(self, data):
        self.sent.append(data)

    def close(self):
        self.readyState = "closed"


class FakePeerSession:
    """Stand-in for engine.PeerSession. ``fail_on`` names a step that raises."""

    def __init__(self, fail_on=None):
        self.fail_on = fail_on
        self.handlers = {}
        self.channel = None
        self.connection_state = "new"
        self.remote_description = None
        self.remote_candidates = []
        self._local = None
        self.close_count = 0

    def on(self, event, handler):
        self.handlers[event] = handler

    def create_data_channel(self, label="data"):
        self.channel = FakeChannel()
        return self.channel

    async def create_offer(self):
        if self.fail_on == "offer":
            raise RuntimeError("offer failed")
        self._local = {"type": "offer", "sdp": "v=0\r\no=- offer\r\n"}
        return self._local

    async def create_answer(self):
        if self.fail_on == "answer":
            raise RuntimeError("answer failed")
        self._local = {"type": "answer", "sdp": "v=0\r\no=- answer\r\n"}
        return self._local

    async def apply_remote_description(self, description):
        if self.fail_on == "remote":
            raise ValueError("bad remote description")
        self.remote_description = description

    async def add_remote_candidate(self, candidate):
        if self.fail_on == "candidate":
            raise ValueError("bad candidate")
        self.remote_candidates.append(candidate)

    async def wait_for_gathering(self, timeout):
        return True

    @property
    def local_description(self):
        return self._local

    def local_candidates(self):
        return [dict(HOST_CANDIDATE)] if self._local else []

    async def close(self):
        self.close_count += 1

    def set_state(self, state):
        self.connection_state = state
        self.handlers["connectionstatechange"]()


class EngineFactory:
    def __init__(self):
        self.created = []
        self.fail_on = None

    def __call__(self):
        peer = FakePeerSession(fail_on=self.fail_on)
        self.created.append(peer)
        return peer

    @property
    def last(self):
        return self.created[-1]


class EventRecorder:
    def __init__(self, client):
        self.events = []
        for kind in (
            "registered",
            "matchFound",
            "offer",
            "connected",
            "disconnected",
            "message",
            "error",
            "reset",
        ):
            client.on(kind, self.events.append)

    def of(self, kind):
        return [e for e in self.events if e.kind.value == kind]


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def engine():
    return EngineFactory()


@pytest.fixture
def options():
    # Long interval: tests drive ticks by hand.
    return ClientOptions(
        api_url="https://gateway.test/exec", name="Alice", polling_interval=60000
    )


@pytest_asyncio.fixture
async def client(options, transport, engine):
    c = RendezvousClient(options, transport=transport, engine_factory=engine)
    yield c
    c.polling.stop()
    for task in list(c._background):
        task.cancel()


@pytest.fixture
def recorder(client):
    return EventRecorder(client)
