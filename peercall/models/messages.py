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

"""Pydantic models for the control-channel envelope.

Every frame is one JSON object tagged by ``type``. The relay only needs to
understand room management and keepalives; negotiation payloads are opaque
to it and forwarded verbatim.
"""

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from ..errors import ProtocolError


class Envelope(BaseModel):
    """Common configuration for all control messages."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class SessionDescription(BaseModel):
    """SDP offer or answer, shaped like the browser's RTCSessionDescription."""

    type: Literal["offer", "answer"]
    sdp: str


# Client -> relay


class CreateRoom(Envelope):
    """Create a room and join it."""

    type: Literal["create-room"] = "create-room"
    room_id: str = Field(alias="roomId", min_length=1)


class Join(Envelope):
    """Join an existing room."""

    type: Literal["join"] = "join"
    room_id: str = Field(alias="roomId", min_length=1)


class Pong(Envelope):
    """Keepalive response."""

    type: Literal["pong"] = "pong"
    ts: int | None = None


# Relay -> client


class Joined(Envelope):
    """Join acknowledgment."""

    type: Literal["joined"] = "joined"
    room_id: str = Field(alias="roomId")
    is_initiator: bool = Field(alias="isInitiator")


class Ready(Envelope):
    """The second member arrived; sent to the first member only."""

    type: Literal["ready"] = "ready"


class PeerDisconnected(Envelope):
    """The other member left the room."""

    type: Literal["peer-disconnected"] = "peer-disconnected"


class ErrorMessage(Envelope):
    """A request was refused."""

    type: Literal["error"] = "error"
    message: str
    redirect: bool | None = None


class Ping(Envelope):
    """Liveness probe."""

    type: Literal["ping"] = "ping"
    ts: int | None = None


# Peer <-> peer (relayed)


class Offer(Envelope):
    """SDP offer from the initiator."""

    type: Literal["offer"] = "offer"
    offer: SessionDescription


class Answer(Envelope):
    """SDP answer from the responder."""

    type: Literal["answer"] = "answer"
    answer: SessionDescription


class IceCandidate(Envelope):
    """Trickle ICE candidate."""

    type: Literal["ice-candidate"] = "ice-candidate"
    candidate: dict[str, Any] | None = None


class Restart(Envelope):
    """The sender is tearing down its peer session."""

    type: Literal["restart"] = "restart"


class CheckPeer(Envelope):
    """Ask the other side whether it is still present."""

    type: Literal["check-peer"] = "check-peer"


class PeerReady(Envelope):
    """Reply to check-peer."""

    type: Literal["peer-ready"] = "peer-ready"


Message = Annotated[
    CreateRoom
    | Join
    | Pong
    | Joined
    | Ready
    | PeerDisconnected
    | ErrorMessage
    | Ping
    | Offer
    | Answer
    | IceCandidate
    | Restart
    | CheckPeer
    | PeerReady,
    Field(discriminator="type"),
]

_message_adapter: TypeAdapter[Message] = TypeAdapter(Message)


def parse_message(raw: str | bytes) -> Message:
    """Decode one control frame.

    Args:
        raw: JSON text of the frame.

    Returns:
        The typed message.

    Raises:
        ProtocolError: If the frame is not valid JSON or not a known message.
    """
    try:
        return _message_adapter.validate_json(raw)
    except ValidationError as e:
        raise ProtocolError(f"Invalid control message: {e.error_count()} error(s)") from e


def dump_message(message: Envelope) -> str:
    """Encode a control message as compact JSON using wire field names."""
    return message.model_dump_json(by_alias=True, exclude_none=True)
