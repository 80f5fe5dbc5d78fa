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

"""Room registry and message relay for two-party calls."""

import asyncio
import logging
from dataclasses import dataclass, field

from ...errors import RoomFull, RoomNotFound
from ...models.messages import Envelope, Joined, PeerDisconnected, Ready
from .connection import Connection

logger = logging.getLogger(__name__)

MAX_MEMBERS = 2

Outbox = list[tuple[Connection, Envelope]]


@dataclass
class Room:
    """A pairing scope. The first member is the initiator."""

    room_id: str
    members: list[Connection] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.members


class RoomRegistry:
    """Owns every room and connection on the relay.

    All mutations run under one lock, so a join can never interleave with a
    leave or a relay on the same room. Socket writes happen after the lock
    is released; a stalled receiver only holds up its own sender.
    """

    def __init__(self) -> None:
        """Initialize the registry."""
        self._rooms: dict[str, Room] = {}
        self._valid_rooms: set[str] = set()
        self._connections: set[Connection] = set()
        self._lock = asyncio.Lock()

    def register(self, connection: Connection) -> None:
        """Track a newly accepted connection."""
        self._connections.add(connection)
        logger.info(f"{connection} registered ({len(self._connections)} open)")

    async def disconnect(self, connection: Connection) -> None:
        """Forget a connection and release its room slot.

        Safe to call more than once; the other member is notified only the
        first time.
        """
        async with self._lock:
            outbox = self._leave_locked(connection)
            if connection in self._connections:
                self._connections.discard(connection)
                logger.info(f"{connection} unregistered ({len(self._connections)} open)")
        await self._flush(outbox)

    def connections(self) -> list[Connection]:
        """Snapshot of all tracked connections."""
        return list(self._connections)

    def room_exists(self, room_id: str) -> bool:
        """Report whether the room id was created and not since invalidated."""
        return room_id in self._valid_rooms

    def get_room(self, room_id: str) -> Room | None:
        return self._rooms.get(room_id)

    def get_room_count(self) -> int:
        return len(self._rooms)

    def get_connection_count(self) -> int:
        return len(self._connections)

    async def create_room(self, room_id: str) -> None:
        """Mark a room id as valid for joining. Idempotent."""
        async with self._lock:
            if room_id not in self._valid_rooms:
                self._valid_rooms.add(room_id)
                logger.info(f"Room {room_id}: created")

    async def join(self, connection: Connection, room_id: str) -> bool:
        """Admit a connection to a room.

        Args:
            connection: Joining connection.
            room_id: Room to join.

        Returns:
            True if the joiner is the initiator.

        Raises:
            RoomNotFound: If the room was never created.
            RoomFull: If two live members are already present.
        """
        outbox: Outbox = []
        try:
            async with self._lock:
                # Leaving the room we are rejoining must not invalidate it.
                outbox += self._leave_locked(connection, invalidate=connection.room_id != room_id)

                if room_id not in self._valid_rooms:
                    logger.info(f"{connection}: join refused, room {room_id} does not exist")
                    raise RoomNotFound(room_id)

                room = self._rooms.setdefault(room_id, Room(room_id))
                self._prune_locked(room)

                if len(room.members) >= MAX_MEMBERS:
                    logger.info(f"{connection}: join refused, room {room_id} is full")
                    raise RoomFull(room_id)

                room.members.append(connection)
                connection.room_id = room_id
                is_initiator = len(room.members) == 1
                logger.info(
                    f"Room {room_id}: {connection} joined as "
                    f"{'initiator' if is_initiator else 'responder'} ({len(room.members)}/{MAX_MEMBERS})"
                )

                outbox.append((connection, Joined(room_id=room_id, is_initiator=is_initiator)))
                if len(room.members) == MAX_MEMBERS:
                    outbox += [(member, Ready()) for member in room.members if member is not connection]

                return is_initiator
        finally:
            await self._flush(outbox)

    async def leave(self, connection: Connection) -> None:
        """Release the connection's room slot, if it holds one."""
        async with self._lock:
            outbox = self._leave_locked(connection)
        await self._flush(outbox)

    async def relay(self, sender: Connection, raw: str) -> int:
        """Forward a frame verbatim to the other members of the sender's room.

        Args:
            sender: Connection the frame arrived on.
            raw: Original JSON text.

        Returns:
            Number of members the frame was written to.
        """
        async with self._lock:
            room = self._rooms.get(sender.room_id) if sender.room_id else None
            if room is None:
                logger.debug(f"{sender}: not in a room, dropping relayed frame")
                return 0
            targets = [member for member in room.members if member is not sender]

        delivered = 0
        for member in targets:
            if await member.send_raw(raw):
                delivered += 1
        return delivered

    async def _flush(self, outbox: Outbox) -> None:
        for member, message in outbox:
            await member.send(message)

    def _leave_locked(self, connection: Connection, invalidate: bool = True) -> Outbox:
        """Remove the connection from its room.

        Returns:
            Notices for the remaining member, to send once the lock is released.
        """
        room_id = connection.room_id
        if room_id is None:
            return []
        connection.room_id = None

        room = self._rooms.get(room_id)
        if room is None or connection not in room.members:
            return []

        room.members.remove(connection)
        logger.info(f"Room {room_id}: {connection} left ({len(room.members)}/{MAX_MEMBERS})")

        if room.is_empty:
            del self._rooms[room_id]
            if invalidate:
                self._valid_rooms.discard(room_id)
                logger.info(f"Room {room_id}: deleted")
            return []

        return [(member, PeerDisconnected()) for member in room.members]

    def _prune_locked(self, room: Room) -> None:
        """Drop members whose socket is no longer open.

        The room stays valid even if pruning empties it.
        """
        for member in list(room.members):
            if not member.is_open:
                room.members.remove(member)
                member.room_id = None
                logger.info(f"Room {room.room_id}: pruned dead {member}")
