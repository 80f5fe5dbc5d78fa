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

"""WebSocket control-channel endpoint."""

import logging
from typing import assert_never

from fastapi import APIRouter, WebSocket

from ...errors import ProtocolError, RoomError
from ...models.messages import (
    Answer,
    CheckPeer,
    CreateRoom,
    ErrorMessage,
    IceCandidate,
    Join,
    Joined,
    Message,
    Offer,
    PeerDisconnected,
    PeerReady,
    Ping,
    Pong,
    Ready,
    Restart,
    parse_message,
)
from ..core.connection import Connection
from ..core.rooms import RoomRegistry

router = APIRouter(tags=["signaling"])
logger = logging.getLogger(__name__)


@router.websocket("/ws")
@router.websocket("/")
async def signal_websocket(websocket: WebSocket) -> None:
    """Control channel for one participant.

    Handles room management and keepalives itself and relays negotiation
    messages to the other member of the sender's room.

    Args:
        websocket: WebSocket connection.
    """
    registry: RoomRegistry = websocket.app.state.registry
    settings = websocket.app.state.settings

    await websocket.accept()
    connection = Connection(websocket, send_timeout=settings.send_timeout)
    registry.register(connection)

    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                logger.info(f"{connection}: WebSocket disconnected")
                break

            raw = frame.get("text")
            if raw is None:
                raw = (frame.get("bytes") or b"").decode("utf-8", errors="replace")

            try:
                message = parse_message(raw)
            except ProtocolError as e:
                logger.warning(f"{connection}: dropping malformed frame: {e}")
                continue

            await handle_message(registry, connection, message, raw)

    except Exception as e:
        logger.error(f"{connection}: error in control channel: {e}", exc_info=True)
    finally:
        await registry.disconnect(connection)


async def handle_message(
    registry: RoomRegistry, connection: Connection, message: Message, raw: str
) -> None:
    """Apply one decoded control message.

    Args:
        registry: Room registry.
        connection: Sender.
        message: Decoded message.
        raw: Original JSON text, forwarded verbatim when relayed.
    """
    # Any message proves the client is alive; pong covers idle periods.
    connection.is_alive = True

    match message:
        case CreateRoom(room_id=room_id):
            await registry.create_room(room_id)
            await _join(registry, connection, room_id)
        case Join(room_id=room_id):
            await _join(registry, connection, room_id)
        case Pong():
            pass
        case Offer() | Answer() | IceCandidate() | Restart() | CheckPeer() | PeerReady():
            logger.debug(f"{connection}: relaying {message.type}")
            await registry.relay(connection, raw)
        case Joined() | Ready() | PeerDisconnected() | ErrorMessage() | Ping():
            logger.warning(f"{connection}: unexpected {message.type} from client, dropping")
        case _:
            assert_never(message)


async def _join(registry: RoomRegistry, connection: Connection, room_id: str) -> None:
    try:
        await registry.join(connection, room_id)
    except RoomError as e:
        await connection.send(ErrorMessage(message=str(e), redirect=e.redirect or None))
