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

"""Relay-side handle for one client's control channel."""

import asyncio
import itertools
import logging

from fastapi import WebSocket, status
from starlette.websockets import WebSocketState

from ...models.messages import Envelope, dump_message

logger = logging.getLogger(__name__)

_ids = itertools.count(1)


class Connection:
    """One accepted control-channel WebSocket.

    Sends are best-effort: a closed socket or a failed write drops the frame.
    """

    def __init__(self, websocket: WebSocket, send_timeout: float = 5.0) -> None:
        """Initialize the connection.

        Args:
            websocket: Accepted WebSocket.
            send_timeout: Seconds before a pending send is abandoned.
        """
        self.id = next(_ids)
        self.websocket = websocket
        self.send_timeout = send_timeout
        self.is_alive = True
        self.room_id: str | None = None

    def __repr__(self) -> str:
        return f"Connection(id={self.id}, room={self.room_id!r})"

    @property
    def is_open(self) -> bool:
        """True while both sides of the socket are still connected."""
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send(self, message: Envelope) -> bool:
        """Send a control message.

        Returns:
            True if the frame was written, False if it was dropped.
        """
        return await self.send_raw(dump_message(message))

    async def send_raw(self, raw: str) -> bool:
        """Send pre-encoded JSON text.

        Returns:
            True if the frame was written, False if it was dropped.
        """
        if not self.is_open:
            logger.debug(f"{self}: socket not open, dropping frame")
            return False

        try:
            await asyncio.wait_for(self.websocket.send_text(raw), timeout=self.send_timeout)
            return True
        except Exception as e:
            logger.info(f"{self}: send failed, dropping frame: {e!r}")
            return False

    async def terminate(self) -> None:
        """Close the socket; the endpoint's receive loop then exits."""
        if self.websocket.application_state == WebSocketState.DISCONNECTED:
            return
        try:
            await self.websocket.close(code=status.WS_1001_GOING_AWAY)
        except Exception as e:
            logger.debug(f"{self}: error closing WebSocket: {e!r}")
