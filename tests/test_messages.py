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

"""Tests for control-channel message parsing."""

import json

import pytest

from peercall.errors import ProtocolError
from peercall.models.messages import (
    CreateRoom,
    ErrorMessage,
    IceCandidate,
    Joined,
    Offer,
    Ping,
    Restart,
    dump_message,
    parse_message,
)


class TestParseMessage:
    """Tests for parse_message."""

    def test_offer(self) -> None:
        """Test decoding an offer with its nested description."""
        message = parse_message('{"type":"offer","offer":{"type":"offer","sdp":"v=0"}}')

        assert isinstance(message, Offer)
        assert message.offer.sdp == "v=0"

    def test_wire_field_names(self) -> None:
        """Test camelCase wire names map onto the model fields."""
        message = parse_message('{"type":"joined","roomId":"R7K2","isInitiator":false}')

        assert isinstance(message, Joined)
        assert message.room_id == "R7K2"
        assert message.is_initiator is False

    def test_null_candidate(self) -> None:
        """Test the end-of-candidates marker is accepted."""
        message = parse_message('{"type":"ice-candidate","candidate":null}')

        assert isinstance(message, IceCandidate)
        assert message.candidate is None

    def test_bytes(self) -> None:
        """Test binary frames holding JSON are accepted."""
        assert isinstance(parse_message(b'{"type":"restart"}'), Restart)

    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            "[]",
            '{"type":"no-such-type"}',
            '{"roomId":"R7K2"}',
            '{"type":"join","roomId":""}',
            '{"type":"offer","offer":{"type":"pranswer","sdp":"v=0"}}',
        ],
    )
    def test_invalid(self, raw: str) -> None:
        """Test malformed frames raise ProtocolError."""
        with pytest.raises(ProtocolError):
            parse_message(raw)


class TestDumpMessage:
    """Tests for dump_message."""

    def test_uses_wire_names(self) -> None:
        """Test encoding uses the camelCase aliases."""
        assert json.loads(dump_message(CreateRoom(room_id="R7K2"))) == {
            "type": "create-room",
            "roomId": "R7K2",
        }

    def test_omits_unset_optionals(self) -> None:
        """Test optional fields left unset are not encoded."""
        assert json.loads(dump_message(ErrorMessage(message="Room is full"))) == {
            "type": "error",
            "message": "Room is full",
        }
        assert json.loads(dump_message(Ping())) == {"type": "ping"}

    def test_unknown_fields_preserved(self) -> None:
        """Test extra fields survive a decode and encode."""
        message = parse_message('{"type":"restart","reason":"ice"}')

        assert json.loads(dump_message(message)) == {"type": "restart", "reason": "ice"}
