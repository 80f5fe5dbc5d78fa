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

"""Exception hierarchy shared by the relay and the client."""


class PeerCallError(Exception):
    """Base class for all PeerCall errors."""


class ProtocolError(PeerCallError):
    """A control message could not be decoded."""


class RoomError(PeerCallError):
    """A room operation was refused.

    Attributes:
        redirect: True if the client should leave the call page.
    """

    redirect: bool = False

    def __init__(self, room_id: str, message: str) -> None:
        super().__init__(message)
        self.room_id = room_id


class RoomNotFound(RoomError):
    """The room id was never created (or was deleted when it emptied)."""

    redirect = True

    def __init__(self, room_id: str) -> None:
        super().__init__(room_id, "Room does not exist")


class RoomFull(RoomError):
    """The room already holds two live members."""

    reason = "Room is full"

    def __init__(self, room_id: str) -> None:
        super().__init__(room_id, self.reason)


class TransportError(PeerCallError):
    """The control channel or the peer session dropped."""


class MediaError(PeerCallError):
    """Local capture devices could not be opened."""


class ExhaustedRetries(PeerCallError):
    """Peer session restart attempts reached the configured cap."""

    def __init__(self, attempts: int) -> None:
        super().__init__(f"Gave up after {attempts} reconnection attempts")
        self.attempts = attempts
