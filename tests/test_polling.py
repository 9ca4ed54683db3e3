"""Tests for the polling loop and the recovery paths it selects."""

import asyncio

import pytest

from rtc_rendezvous.exceptions import TransportError
from rtc_rendezvous.protocol import MatchCandidate, SessionStatus

from conftest import HOST_CANDIDATE

BOB = {"id": "u2", "name": "Bob"}
CAROL = {"id": "u3", "name": "Carol"}


@pytest.fixture
def polling_client(client):
    """Client registered as u1 and waiting for an offer."""
    client.session.self_id = "u1"
    client.session.status = SessionStatus.WAITING_FOR_OFFER
    return client


class TestPollRequest:
    @pytest.mark.asyncio
    async def test_sends_current_view(self, polling_client, transport):
        polling_client.session.peer_id = "u2"
        transport.queue({"success": True, "next_status": "negotiating"})
        await polling_client.polling.tick()

        frame = transport.sent[-1].to_dict()
        assert frame == {
            "action": "sendsignal",
            "id": "u1",
            "peer_id": "u2",
            "type": "polling",
            "status": "waiting_for_offer",
        }

    @pytest.mark.asyncio
    async def test_adopts_next_status(self, polling_client, transport):
        transport.queue({"success": True, "next_status": "negotiating"})
        await polling_client.polling.tick()
        assert polling_client.status == SessionStatus.NEGOTIATING

    @pytest.mark.asyncio
    async def test_transport_error_contained(self, polling_client, transport):
        transport.queue(TransportError("timeout"))
        await polling_client.polling.tick()
        assert polling_client.status == SessionStatus.WAITING_FOR_OFFER

    @pytest.mark.asyncio
    async def test_unrelated_failure_ignored(self, polling_client, transport):
        transport.queue({"success": False, "message": "rate limited"})
        await polling_client.polling.tick()

        assert polling_client.id == "u1"
        assert polling_client.status == SessionStatus.WAITING_FOR_OFFER
        assert transport.sent_types() == ["polling"]


class TestMatchList:
    @pytest.mark.asyncio
    async def test_match_found_once(self, polling_client, transport, recorder):
        frame = {"success": True, "next_status": "waiting_for_offer", "match_list": [BOB]}
        transport.queue(frame, frame)

        await polling_client.polling.tick()
        await polling_client.polling.tick()

        found = recorder.of("matchFound")
        assert len(found) == 1
        assert found[0].match_list == [MatchCandidate(id="u2", name="Bob")]
        assert polling_client.match_list == [MatchCandidate(id="u2", name="Bob")]

    @pytest.mark.asyncio
    async def test_changed_list_re_emits(self, polling_client, transport, recorder):
        transport.queue(
            {"success": True, "next_status": "waiting_for_offer", "match_list": [BOB]},
            {"success": True, "next_status": "waiting_for_offer", "match_list": [BOB, CAROL]},
        )
        await polling_client.polling.tick()
        await polling_client.polling.tick()

        found = recorder.of("matchFound")
        assert [len(e.match_list) for e in found] == [1, 2]

    @pytest.mark.asyncio
    async def test_order_matters(self, polling_client, transport, recorder):
        transport.queue(
            {"success": True, "match_list": [BOB, CAROL]},
            {"success": True, "match_list": [CAROL, BOB]},
        )
        await polling_client.polling.tick()
        await polling_client.polling.tick()
        assert len(recorder.of("matchFound")) == 2

    @pytest.mark.asyncio
    async def test_empty_list_keeps_current(self, polling_client, transport, recorder):
        transport.queue(
            {"success": True, "match_list": [BOB]},
            {"success": True, "match_list": []},
        )
        await polling_client.polling.tick()
        await polling_client.polling.tick()

        assert len(recorder.of("matchFound")) == 1
        assert polling_client.match_list == [MatchCandidate(id="u2", name="Bob")]


class TestRouting:
    @pytest.mark.asyncio
    async def test_offer_routed(self, polling_client, transport, engine, recorder):
        transport.queue(
            {
                "success": True,
                "next_status": "negotiating",
                "type": "offer",
                "sdp": {"type": "offer", "sdp": "v=0"},
                "candidates": [HOST_CANDIDATE],
                "peer_id": "u2",
                "peer_name": "Bob",
            },
            {"success": True},
        )
        await polling_client.polling.tick()

        assert transport.sent_types() == ["polling", "answer"]
        assert polling_client.peer_id == "u2"
        assert polling_client.status == SessionStatus.NEGOTIATING
        assert len(recorder.of("offer")) == 1

    @pytest.mark.asyncio
    async def test_answer_routed(self, polling_client, transport, engine):
        await polling_client.connect("u2")
        transport.queue(
            {
                "success": True,
                "next_status": "negotiating",
                "type": "answer",
                "sdp": {"type": "answer", "sdp": "v=0"},
            }
        )
        await polling_client.polling.tick()
        assert engine.last.remote_description == {"type": "answer", "sdp": "v=0"}

    @pytest.mark.asyncio
    async def test_ice_routed(self, polling_client, transport, engine):
        await polling_client.connect("u2")
        transport.queue(
            {
                "success": True,
                "next_status": "negotiating",
                "type": "ice",
                "candidates": [HOST_CANDIDATE],
            }
        )
        await polling_client.polling.tick()
        assert engine.last.remote_candidates == [HOST_CANDIDATE]

    @pytest.mark.asyncio
    async def test_failed_negotiation_does_not_break_tick(
        self, polling_client, transport, engine
    ):
        engine.fail_on = "remote"
        transport.queue(
            {
                "success": True,
                "next_status": "negotiating",
                "type": "offer",
                "sdp": {"type": "offer", "sdp": "v=0"},
                "peer_id": "u2",
            }
        )
        await polling_client.polling.tick()
        assert polling_client.negotiation.processing is False


class TestConnectedStatus:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "next_status",
        ["waiting_for_offer", "waiting_for_answer", "negotiating", "registering", "idle"],
    )
    async def test_connected_never_downgraded(
        self, polling_client, transport, engine, next_status
    ):
        await polling_client.connect("u2")
        engine.last.set_state("connected")
        # Let the connected notification go out first.
        await asyncio.sleep(0)

        transport.queue(
            {"success": True, "next_status": next_status},
            {"success": True, "next_status": "negotiating", "match_list": [CAROL]},
            {"success": True, "next_status": next_status},
        )
        for _ in range(3):
            await polling_client.polling.tick()

        assert polling_client.status == SessionStatus.CONNECTED
        assert polling_client.peer_id == "u2"

    @pytest.mark.asyncio
    async def test_connection_stops_polling(self, polling_client, transport, engine):
        polling_client.polling.start()
        await polling_client.connect("u2")
        engine.last.set_state("connected")
        assert polling_client.polling.running is False


class TestSoftRecovery:
    @pytest.mark.asyncio
    async def test_peer_cleared_id_kept(self, polling_client, transport, engine):
        await polling_client.connect("u2")
        polling_client.polling.start()
        peer = engine.last

        transport.queue({"success": True, "next_status": "waiting_for_offer"})
        await polling_client.polling.tick()

        assert polling_client.id == "u1"
        assert polling_client.peer_id is None
        assert polling_client.peer_name is None
        assert polling_client.match_list == []
        assert polling_client.negotiation.peer is None
        assert peer.close_count == 1
        assert polling_client.polling.running is True
        assert "register" not in transport.sent_types()

    @pytest.mark.asyncio
    async def test_skipped_while_processing(self, polling_client, transport):
        polling_client.session.peer_id = "u2"
        polling_client.negotiation.processing = True

        transport.queue({"success": True, "next_status": "waiting_for_offer"})
        await polling_client.polling.tick()

        assert polling_client.peer_id == "u2"

    @pytest.mark.asyncio
    async def test_skipped_without_peer(self, polling_client, transport, recorder):
        transport.queue({"success": True, "next_status": "waiting_for_offer"})
        await polling_client.polling.tick()
        assert polling_client.id == "u1"
        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_concurrent_offer_not_misread(self, polling_client, transport):
        """A poll landing while an offer is in flight must not tear it down."""
        polling_client.session.match_candidates = [MatchCandidate(id="u2", name="Bob")]
        release = asyncio.Event()
        original_send = transport.send

        async def send(frame):
            if frame.type == "offer":
                await release.wait()
            return await original_send(frame)

        transport.send = send
        transport.queue(
            {"success": True, "next_status": "waiting_for_offer"},
            {"success": True, "next_status": "waiting_for_answer"},
        )

        connect_task = asyncio.create_task(polling_client.connect("u2"))
        await asyncio.sleep(0)
        assert polling_client.negotiation.processing is True

        await polling_client.polling.tick()
        assert polling_client.peer_id == "u2"

        release.set()
        await connect_task
        assert polling_client.peer_id == "u2"
        assert polling_client.negotiation.peer is not None


class TestAutoReconnect:
    @pytest.mark.asyncio
    async def test_session_not_found(self, polling_client, transport, engine, recorder):
        await polling_client.connect("u2")
        polling_client.polling.start()
        old_task = polling_client.polling._task

        registrations = []

        def register(frame):
            registrations.append(frame.to_dict())
            return {
                "success": True,
                "id": "u7",
                "next_status": "waiting_for_offer",
                "match_list": [],
            }

        transport.queue({"success": False, "message": "session not found"}, register)
        await polling_client.polling.tick()

        assert len(registrations) == 1
        assert registrations[0]["id"] is None
        assert registrations[0]["name"] == "Alice"
        assert polling_client.id == "u7"
        assert polling_client.peer_id is None
        assert polling_client.negotiation.peer is None
        assert polling_client.polling._task is not old_task
        assert polling_client.polling.running is True
        assert recorder.of("error") == []
        assert len(recorder.of("registered")) == 1

    @pytest.mark.asyncio
    async def test_stops_polling_before_registering(self, polling_client, transport):
        polling_client.polling.start()
        seen = []

        def register(frame):
            seen.append((polling_client.polling.running, polling_client.id))
            return {"success": True, "id": "u7", "next_status": "waiting_for_offer"}

        transport.queue({"success": False, "message": "session not found"}, register)
        await polling_client.polling.tick()

        assert seen == [(False, None)]

    @pytest.mark.asyncio
    async def test_registering_status(self, polling_client, transport):
        transport.queue(
            {"success": False, "next_status": "registering", "message": "expired"},
            {"success": True, "id": "u8", "next_status": "waiting_for_offer"},
        )
        await polling_client.polling.tick()
        assert polling_client.id == "u8"

    @pytest.mark.asyncio
    async def test_failed_re_registration(self, polling_client, transport, recorder):
        polling_client.polling.start()
        transport.queue(
            {"success": False, "message": "session not found"},
            TransportError("gateway down"),
        )
        await polling_client.polling.tick()

        assert polling_client.id is None
        assert polling_client.status == SessionStatus.IDLE
        assert polling_client.polling.running is False
        errors = recorder.of("error")
        assert len(errors) == 1
        assert isinstance(errors[0].error, TransportError)


class TestHardReset:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("success", [True, False])
    async def test_reset(self, polling_client, transport, engine, recorder, success):
        await polling_client.connect("u2")
        polling_client.polling.start()

        transport.queue(
            {"success": success, "next_status": "reset", "message": "server restarted"}
        )
        await polling_client.polling.tick()

        assert polling_client.id is None
        assert polling_client.status == SessionStatus.IDLE
        assert polling_client.peer_id is None
        assert polling_client.polling.running is False
        assert "register" not in transport.sent_types()
        resets = recorder.of("reset")
        assert [(e.next_status, e.message) for e in resets] == [
            ("reset", "server restarted")
        ]


class TestLoop:
    @pytest.mark.asyncio
    async def test_loop_ticks_until_stopped(self, polling_client, transport):
        polling_client.polling.interval = 0.01
        polling_client.polling.start()
        await asyncio.sleep(0.1)
        polling_client.polling.stop()
        count = len(transport.sent)
        await asyncio.sleep(0.05)

        assert count >= 2
        assert len(transport.sent) == count

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, polling_client):
        polling_client.polling.start()
        task = polling_client.polling._task
        polling_client.polling.start()
        assert polling_client.polling._task is task

    @pytest.mark.asyncio
    async def test_survives_failing_ticks(self, polling_client, transport):
        polling_client.polling.interval = 0.01
        transport.queue(TransportError("1"), TransportError("2"), TransportError("3"))
        polling_client.polling.start()
        await asyncio.sleep(0.2)

        assert polling_client.polling.running is True
        assert len(transport.sent) > 3
