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

"""Tests for the room registry and message relay."""

import asyncio
import json

import pytest
from starlette.websockets import WebSocketState

from fakes import FakeWebSocket
from peercall.errors import RoomFull, RoomNotFound
from peercall.models.messages import CreateRoom, Join, Offer, Pong, SessionDescription, dump_message
from peercall.relay.api.signal import handle_message
from peercall.relay.core.connection import Connection
from peercall.relay.core.rooms import RoomRegistry


def make_connection(registry: RoomRegistry) -> Connection:
    connection = Connection(FakeWebSocket())  # type: ignore[arg-type]
    registry.register(connection)
    return connection


class TestJoin:
    """Tests for room admission."""

    @pytest.mark.asyncio
    async def test_join_unknown_room(self) -> None:
        """Test joining a room that was never created."""
        registry = RoomRegistry()
        a = make_connection(registry)

        with pytest.raises(RoomNotFound) as exc_info:
            await registry.join(a, "nope")

        assert exc_info.value.redirect is True
        assert a.room_id is None
        assert registry.get_room("nope") is None

    @pytest.mark.asyncio
    async def test_roles_follow_join_order(self) -> None:
        """Test first joiner is initiator and second is responder."""
        registry = RoomRegistry()
        a, b = make_connection(registry), make_connection(registry)
        await registry.create_room("R7K2")

        assert await registry.join(a, "R7K2") is True
        assert await registry.join(b, "R7K2") is False

        assert a.websocket.messages() == [
            {"type": "joined", "roomId": "R7K2", "isInitiator": True},
            {"type": "ready"},
        ]
        assert b.websocket.messages() == [
            {"type": "joined", "roomId": "R7K2", "isInitiator": False},
        ]

    @pytest.mark.asyncio
    async def test_third_member_refused(self) -> None:
        """Test membership never exceeds two."""
        registry = RoomRegistry()
        a, b, c = (make_connection(registry) for _ in range(3))
        await registry.create_room("room")
        await registry.join(a, "room")
        await registry.join(b, "room")

        with pytest.raises(RoomFull):
            await registry.join(c, "room")

        assert len(registry.get_room("room").members) == 2
        assert c.room_id is None

    @pytest.mark.asyncio
    async def test_dead_member_pruned_on_join(self) -> None:
        """Test a closed socket does not hold a room slot."""
        registry = RoomRegistry()
        a, b, c = (make_connection(registry) for _ in range(3))
        await registry.create_room("room")
        await registry.join(a, "room")
        await registry.join(b, "room")

        b.websocket.drop()
        assert await registry.join(c, "room") is False

        assert registry.get_room("room").members == [a, c]
        assert b.room_id is None

    @pytest.mark.asyncio
    async def test_room_stays_valid_after_pruning_to_empty(self) -> None:
        """Test pruning every member does not invalidate the room."""
        registry = RoomRegistry()
        a, b = make_connection(registry), make_connection(registry)
        await registry.create_room("room")
        await registry.join(a, "room")

        a.websocket.drop()
        assert await registry.join(b, "room") is True
        assert registry.room_exists("room")

    @pytest.mark.asyncio
    async def test_rejoin_same_room(self) -> None:
        """Test rejoining the room you are alone in keeps it valid."""
        registry = RoomRegistry()
        a = make_connection(registry)
        await registry.create_room("room")
        await registry.join(a, "room")

        assert await registry.join(a, "room") is True
        assert registry.room_exists("room")
        assert registry.get_room("room").members == [a]

    @pytest.mark.asyncio
    async def test_switch_rooms_releases_old_slot(self) -> None:
        """Test joining another room leaves the previous one."""
        registry = RoomRegistry()
        a, b = make_connection(registry), make_connection(registry)
        await registry.create_room("one")
        await registry.create_room("two")
        await registry.join(a, "one")
        await registry.join(b, "one")

        await registry.join(a, "two")

        assert registry.get_room("one").members == [b]
        assert b.websocket.types()[-1] == "peer-disconnected"
        assert a.room_id == "two"


class TestLeave:
    """Tests for cleanup when a member goes away."""

    @pytest.mark.asyncio
    async def test_remaining_member_notified_once(self) -> None:
        """Test peer-disconnected is sent exactly once."""
        registry = RoomRegistry()
        a, b = make_connection(registry), make_connection(registry)
        await registry.create_room("room")
        await registry.join(a, "room")
        await registry.join(b, "room")

        await registry.disconnect(a)
        await registry.disconnect(a)

        assert b.websocket.types().count("peer-disconnected") == 1
        assert registry.get_room("room").members == [b]
        assert registry.get_connection_count() == 1

    @pytest.mark.asyncio
    async def test_room_deleted_when_empty(self) -> None:
        """Test the room is deleted once membership reaches zero."""
        registry = RoomRegistry()
        a, b = make_connection(registry), make_connection(registry)
        await registry.create_room("room")
        await registry.join(a, "room")
        await registry.join(b, "room")

        await registry.leave(a)
        assert registry.get_room("room") is not None

        await registry.leave(b)
        assert registry.get_room("room") is None
        assert registry.get_room_count() == 0
        assert not registry.room_exists("room")

    @pytest.mark.asyncio
    async def test_leave_without_room(self) -> None:
        """Test leaving is a no-op for a connection outside any room."""
        registry = RoomRegistry()
        a = make_connection(registry)

        await registry.leave(a)

        assert a.websocket.sent == []


class TestRelay:
    """Tests for forwarding between members."""

    @pytest.mark.asyncio
    async def test_relay_skips_sender(self) -> None:
        """Test a relayed frame reaches only the other member, verbatim."""
        registry = RoomRegistry()
        a, b = make_connection(registry), make_connection(registry)
        await registry.create_room("room")
        await registry.join(a, "room")
        await registry.join(b, "room")
        a_frames = len(a.websocket.sent)

        raw = json.dumps({"type": "restart", "reason": "test"})
        delivered = await registry.relay(a, raw)

        assert delivered == 1
        assert b.websocket.sent[-1] == raw
        assert len(a.websocket.sent) == a_frames

    @pytest.mark.asyncio
    async def test_relay_outside_room(self) -> None:
        """Test frames from a connection without a room are dropped."""
        registry = RoomRegistry()
        a = make_connection(registry)

        assert await registry.relay(a, '{"type":"restart"}') == 0

    @pytest.mark.asyncio
    async def test_relay_alone_in_room(self) -> None:
        """Test a lone member's frames go nowhere."""
        registry = RoomRegistry()
        a = make_connection(registry)
        await registry.create_room("room")
        await registry.join(a, "room")

        assert await registry.relay(a, '{"type":"restart"}') == 0

    @pytest.mark.asyncio
    async def test_relay_to_closed_socket_dropped(self) -> None:
        """Test a closed recipient drops the frame instead of raising."""
        registry = RoomRegistry()
        a, b = make_connection(registry), make_connection(registry)
        await registry.create_room("room")
        await registry.join(a, "room")
        await registry.join(b, "room")

        b.websocket.application_state = WebSocketState.DISCONNECTED
        assert await registry.relay(a, '{"type":"restart"}') == 0

    @pytest.mark.asyncio
    async def test_stalled_member_does_not_block_other_rooms(self) -> None:
        """Test a write stuck on one room's member leaves other rooms responsive."""
        registry = RoomRegistry()
        a, b = make_connection(registry), make_connection(registry)
        await registry.create_room("X")
        await registry.join(a, "X")
        await registry.join(b, "X")
        b.send_timeout = 1.0
        b.websocket.stalled = True

        c = make_connection(registry)
        await registry.create_room("Y")
        relay = asyncio.create_task(registry.relay(a, '{"type":"restart"}'))
        await asyncio.sleep(0)

        loop = asyncio.get_running_loop()
        started = loop.time()
        assert await registry.join(c, "Y") is True
        assert loop.time() - started < 0.5

        assert not relay.done()
        assert await relay == 0


class TestHandleMessage:
    """Tests for message dispatch in the control channel endpoint."""

    @pytest.mark.asyncio
    async def test_create_room_joins_sender(self) -> None:
        """Test create-room creates the room and admits the creator."""
        registry = RoomRegistry()
        a = make_connection(registry)
        message = CreateRoom(room_id="R7K2")

        await handle_message(registry, a, message, dump_message(message))

        assert registry.room_exists("R7K2")
        assert a.websocket.messages() == [{"type": "joined", "roomId": "R7K2", "isInitiator": True}]

    @pytest.mark.asyncio
    async def test_join_unknown_room_returns_error(self) -> None:
        """Test a refused join is reported to the client."""
        registry = RoomRegistry()
        a = make_connection(registry)
        message = Join(room_id="missing")

        await handle_message(registry, a, message, dump_message(message))

        assert a.websocket.messages() == [
            {"type": "error", "message": "Room does not exist", "redirect": True}
        ]

    @pytest.mark.asyncio
    async def test_full_room_error_has_no_redirect(self) -> None:
        """Test the room-full error carries no redirect hint."""
        registry = RoomRegistry()
        a, b, c = (make_connection(registry) for _ in range(3))
        await registry.create_room("room")
        await registry.join(a, "room")
        await registry.join(b, "room")
        message = Join(room_id="room")

        await handle_message(registry, c, message, dump_message(message))

        assert c.websocket.messages() == [{"type": "error", "message": "Room is full"}]

    @pytest.mark.asyncio
    async def test_offer_forwarded(self) -> None:
        """Test negotiation messages are relayed as received."""
        registry = RoomRegistry()
        a, b = make_connection(registry), make_connection(registry)
        await registry.create_room("room")
        await registry.join(a, "room")
        await registry.join(b, "room")
        message = Offer(offer=SessionDescription(type="offer", sdp="v=0"))
        raw = dump_message(message)

        await handle_message(registry, a, message, raw)

        assert b.websocket.sent[-1] == raw

    @pytest.mark.asyncio
    async def test_pong_marks_alive(self) -> None:
        """Test a pong sets the liveness flag."""
        registry = RoomRegistry()
        a = make_connection(registry)
        a.is_alive = False

        await handle_message(registry, a, Pong(), '{"type":"pong"}')

        assert a.is_alive is True
