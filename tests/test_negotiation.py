# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (c) 2025 PeerCall
#
# This file is part of PeerCall.
#
# PeerCall is free software: you can redistribute it and/or modify it under
# the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# PeerCall is distributed in the hope that it will be useful, but WITHOUT
# ANY WARRANTY; without even the implied warranty of MERCHANTABILITY
# or FITNESS FOR A PARTICULAR PURPOSE. See the GNU Affero General
# Public License for more details.

"""Tests for the negotiation state machine."""

from functools import partial
from unittest.mock import AsyncMock, Mock

import pytest

from fakes import FAKE_SDP, FakeMedia, PeerConnectionFactory
from peercall.client.config import ClientSettings
from peercall.client.negotiation import NegotiationState, NegotiationStateMachine
from peercall.client.peer_session import PeerSession
from peercall.models.messages import Answer, IceCandidate, Offer, SessionDescription

OFFER = SessionDescription(type="offer", sdp=FAKE_SDP)
ANSWER = SessionDescription(type="answer", sdp=FAKE_SDP)


@pytest.fixture
def factory() -> PeerConnectionFactory:
    return PeerConnectionFactory()


@pytest.fixture
async def machine(factory: PeerConnectionFactory) -> NegotiationStateMachine:
    media = FakeMedia()
    await media.acquire()
    return NegotiationStateMachine(
        ClientSettings(),
        media,
        send=AsyncMock(return_value=True),
        on_local_candidate=Mock(),
        on_transport_state=Mock(),
        session_factory=partial(PeerSession, pc_factory=factory),
    )


class TestNegotiationStateMachine:
    """Tests for NegotiationStateMachine."""

    async def test_ready_as_initiator_sends_offer(
        self, machine: NegotiationStateMachine, factory: PeerConnectionFactory
    ) -> None:
        """Test the initiator offers when the room is ready."""
        machine.is_initiator = True

        await machine.on_ready()

        assert machine.state == NegotiationState.OFFERING
        sent = machine.send.await_args.args[0]
        assert isinstance(sent, Offer)
        assert "b=TIAS:" in sent.offer.sdp
        assert len(factory.last.senders) == 2

    async def test_ready_as_responder_waits(
        self, machine: NegotiationStateMachine, factory: PeerConnectionFactory
    ) -> None:
        """Test the responder does nothing on ready."""
        await machine.on_ready()

        assert machine.session is None
        assert factory.created == []
        machine.send.assert_not_awaited()

    async def test_offer_answered(self, machine: NegotiationStateMachine) -> None:
        """Test a remote offer produces an answer on a fresh session."""
        await machine.on_offer(OFFER)

        assert machine.state == NegotiationState.ANSWERING
        assert isinstance(machine.send.await_args.args[0], Answer)

    async def test_answer_accepted_only_while_offering(
        self, machine: NegotiationStateMachine, factory: PeerConnectionFactory
    ) -> None:
        """Test an answer outside the offering state is dropped."""
        await machine.on_answer(ANSWER)
        assert machine.state == NegotiationState.IDLE

        machine.is_initiator = True
        await machine.start_offer()
        await machine.on_answer(ANSWER)

        assert machine.state == NegotiationState.CONNECTING
        assert factory.last.remoteDescription.type == "answer"

        await machine.on_answer(ANSWER)
        assert machine.state == NegotiationState.CONNECTING

    async def test_single_live_session(
        self, machine: NegotiationStateMachine, factory: PeerConnectionFactory
    ) -> None:
        """Test creating a session twice leaves exactly one open."""
        first = await machine.new_session()
        second = await machine.new_session()

        assert first.closed
        assert machine.session is second
        assert len(factory.created) == 2
        assert factory.live == [second.pc]

    async def test_session_ids_increase(self, machine: NegotiationStateMachine) -> None:
        """Test each session gets a new id."""
        first = await machine.new_session()
        second = await machine.new_session()

        assert second.session_id == first.session_id + 1

    async def test_stale_transport_state_ignored(self, machine: NegotiationStateMachine) -> None:
        """Test state changes from a replaced session are ignored."""
        old = await machine.new_session()
        current = await machine.new_session()

        assert machine.on_transport_state(old.session_id, "failed") is None
        assert machine.state == NegotiationState.IDLE

        assert machine.on_transport_state(current.session_id, "connected") == NegotiationState.CONNECTED
        assert machine.is_connected

    async def test_transport_state_without_session(self, machine: NegotiationStateMachine) -> None:
        """Test state changes arriving after teardown are ignored."""
        session = await machine.new_session()
        await machine.teardown()

        assert machine.on_transport_state(session.session_id, "connected") is None
        assert machine.state == NegotiationState.IDLE

    async def test_remote_candidate_without_session_dropped(
        self, machine: NegotiationStateMachine
    ) -> None:
        """Test candidates before any session are dropped quietly."""
        await machine.on_ice_candidate({"candidate": "candidate:1 1 udp 1 10.0.0.1 9 typ host"})

        assert machine.session is None

    async def test_bad_remote_candidate_ignored(
        self, machine: NegotiationStateMachine, factory: PeerConnectionFactory
    ) -> None:
        """Test an unparseable candidate is logged, not raised."""
        await machine.on_offer(OFFER)

        await machine.on_ice_candidate({"candidate": "garbage"})
        await machine.on_ice_candidate({"candidate": ""})

        assert factory.last.candidates == []

    async def test_remote_candidate_added(
        self, machine: NegotiationStateMachine, factory: PeerConnectionFactory
    ) -> None:
        """Test a valid candidate reaches the peer connection."""
        await machine.on_offer(OFFER)

        await machine.on_ice_candidate(
            {
                "candidate": "candidate:1 1 udp 2122260223 10.0.0.1 9 typ host",
                "sdpMid": "0",
                "sdpMLineIndex": 0,
            }
        )

        assert factory.last.candidates[0].ip == "10.0.0.1"

    async def test_local_candidate_from_stale_session_dropped(
        self, machine: NegotiationStateMachine
    ) -> None:
        """Test only the current session's candidates are relayed."""
        old = await machine.new_session()
        current = await machine.new_session()
        candidate = {"candidate": "candidate:1 1 udp 1 10.0.0.1 9 typ host"}

        await machine.relay_local_candidate(old.session_id, candidate)
        machine.send.assert_not_awaited()

        await machine.relay_local_candidate(current.session_id, candidate)
        assert machine.send.await_args.args[0] == IceCandidate(candidate=candidate)

    async def test_replace_tracks_requires_connection(
        self, machine: NegotiationStateMachine
    ) -> None:
        """Test tracks are only swapped on a connected session."""
        session = await machine.new_session()
        new_tracks = await machine.media.acquire()

        assert machine.replace_tracks(new_tracks) is False

        machine.on_transport_state(session.session_id, "connected")
        assert machine.replace_tracks(new_tracks) is True
        assert session.senders["video"].track is new_tracks[0]
