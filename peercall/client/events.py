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

"""Discrete inputs to the client, processed one at a time by Call."""

from dataclasses import dataclass
from typing import Any

from ..models.messages import Message


@dataclass(frozen=True)
class MessageReceived:
    message: Message


@dataclass(frozen=True)
class ChannelOpened:
    pass


@dataclass(frozen=True)
class ChannelClosed:
    pass


@dataclass(frozen=True)
class TransportStateChanged:
    session_id: int
    state: str


@dataclass(frozen=True)
class LocalCandidate:
    session_id: int
    candidate: dict[str, Any]


@dataclass(frozen=True)
class RestartTimerFired:
    pass


@dataclass(frozen=True)
class ReconnectTimerFired:
    pass


@dataclass(frozen=True)
class RejoinTimerFired:
    pass


@dataclass(frozen=True)
class ActivityChanged:
    """The client went to the background or came back (e.g. device wake)."""

    active: bool


@dataclass(frozen=True)
class TrackEnded:
    kind: str


Event = (
    MessageReceived
    | ChannelOpened
    | ChannelClosed
    | TransportStateChanged
    | LocalCandidate
    | RestartTimerFired
    | ReconnectTimerFired
    | RejoinTimerFired
    | ActivityChanged
    | TrackEnded
)
