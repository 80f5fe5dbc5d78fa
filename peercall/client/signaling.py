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

"""WebSocket control channel to the relay.

The channel knows nothing about rooms or negotiation. It decodes frames,
answers keepalive pings and reports open/close so the caller can decide
when to reconnect.
"""

import asyncio
import logging
from collections.abc import Callable

import aiohttp

from ..errors import ProtocolError, TransportError
from ..models.messages import Envelope, Message, Ping, Pong, dump_message, parse_message

logger = logging.getLogger(__name__)


class SignalingChannel:
    """Control channel client built on aiohttp."""

    def __init__(
        self,
        relay_url: str,
        on_message: Callable[[Message], None] | None = None,
        on_open: Callable[[], None] | None = None,
        on_close: Callable[[], None] | None = None,
    ) -> None:
        """Initialize the channel.

        Args:
            relay_url: Relay base URL (http, https, ws or wss).
            on_message: Called with every decoded non-keepalive message.
            on_open: Called after the socket opens.
            on_close: Called after the socket closes or errors, unless
                close() was requested.
        """
        self.relay_url = relay_url.rstrip("/")
        self.on_message = on_message
        self.on_open = on_open
        self.on_close = on_close

        self.ws: aiohttp.ClientWebSocketResponse | None = None
        self.ws_session: aiohttp.ClientSession | None = None
        self._recv_task: asyncio.Task[None] | None = None
        self._closing = False

    @property
    def ws_url(self) -> str:
        """Control channel URL derived from the relay base URL."""
        url = self.relay_url.replace("https://", "wss://", 1).replace("http://", "ws://", 1)
        return f"{url}/ws"

    @property
    def is_open(self) -> bool:
        return self.ws is not None and not self.ws.closed

    async def connect(self) -> None:
        """Open the control channel. Does nothing if already open.

        Raises:
            TransportError: If the relay cannot be reached.
        """
        if self.is_open:
            return

        self._closing = False
        await self._close_session()
        self.ws_session = aiohttp.ClientSession()

        try:
            self.ws = await self.ws_session.ws_connect(self.ws_url)
        except (aiohttp.ClientError, OSError) as e:
            logger.error(f"Failed to connect to relay: {e}")
            await self._close_session()
            raise TransportError(f"Cannot connect to {self.ws_url}: {e}") from e

        logger.info(f"Connected to relay: {self.ws_url}")
        self._recv_task = asyncio.create_task(self._handle_messages(self.ws), name="signaling-recv")

        if self.on_open:
            self.on_open()

    async def send(self, message: Envelope) -> bool:
        """Send a control message, best-effort.

        Returns:
            True if the frame was written, False if the channel is not open.
        """
        if self.ws is None or self.ws.closed:
            logger.debug(f"Control channel not open, dropping {message.type}")
            return False

        try:
            await self.ws.send_str(dump_message(message))
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as e:
            logger.warning(f"Failed to send {message.type}: {e!r}")
            return False

        logger.debug(f"Sent signaling message: {message.type}")
        return True

    async def close(self) -> None:
        """Close the channel without triggering on_close."""
        self._closing = True

        if self.ws and not self.ws.closed:
            await self.ws.close()
        self.ws = None

        if self._recv_task and not self._recv_task.done():
            self._recv_task.cancel()
            try:
                await self._recv_task
            except asyncio.CancelledError:
                pass
        self._recv_task = None

        await self._close_session()
        logger.info("Control channel closed")

    async def room_exists(self, room_id: str) -> bool:
        """Ask the relay whether a room may be joined.

        Raises:
            TransportError: If the relay cannot be reached.
        """
        url = f"{self.relay_url.replace('wss://', 'https://', 1).replace('ws://', 'http://', 1)}/api/check-room"
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(url, params={"roomId": room_id}) as response:
                    response.raise_for_status()
                    data = await response.json()
        except (aiohttp.ClientError, OSError) as e:
            raise TransportError(f"Room check failed: {e}") from e

        return bool(data.get("exists"))

    async def _handle_messages(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        """Handle incoming control frames until the socket closes."""
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    await self._handle_text(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.error(f"Control channel error: {ws.exception()}")
                    break
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error handling signaling messages: {e!r}")
        finally:
            if self.ws is ws:
                self.ws = None
            if not self._closing:
                logger.info("Control channel closed by relay")
                if self.on_close:
                    self.on_close()

    async def _handle_text(self, raw: str) -> None:
        try:
            message = parse_message(raw)
        except ProtocolError as e:
            logger.warning(f"Dropping malformed control frame: {e}")
            return

        if isinstance(message, Ping):
            await self.send(Pong(ts=message.ts))
            return

        logger.debug(f"Received signaling message: {message.type}")
        if self.on_message:
            self.on_message(message)

    async def _close_session(self) -> None:
        if self.ws_session and not self.ws_session.closed:
            await self.ws_session.close()
        self.ws_session = None
