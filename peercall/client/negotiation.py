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

"""Offer/answer negotiation for the single active peer session."""

import logging
from collections.abc import Awaitable, Callable, Iterable
from enum import Enum
from typing import Any

from aiortc import MediaStreamTrack

from ..models.messages import Answer, Envelope, IceCandidate, Offer, SessionDescription
from .config import ClientSettings
from .media import MediaSource
from .peer_session import PeerSession

logger = logging.getLogger(__name__)


class NegotiationState(str, Enum):
    """Negotiation state of the active peer session."""

    IDLE = "idle"
    OFFERING = "offering"
    ANSWERING = "answering"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"
    CLOSED = "closed"


_TRANSPORT_STATES = {
    "connecting": NegotiationState.CONNECTING,
    "connected": NegotiationState.CONNECTED,
    "disconnected": NegotiationState.DISCONNECTED,
    "failed": NegotiationState.FAILED,
    "closed": NegotiationState.CLOSED,
}


class NegotiationStateMachine:
    """Owns at most one PeerSession and drives it through offer/answer.

    Every new session gets a fresh id. Transport events carry the id of the
    session that raised them, so events from a torn-down session are ignored.
    """

    def __init__(
        self,
        settings: ClientSettings,
        media: MediaSource,
        send: Callable[[Envelope], Awaitable[bool]],
        on_local_candidate: Callable[[int, dict[str, Any]], None],
        on_transport_state: Callable[[int, str], None],
        on_remote_track: Callable[[MediaStreamTrack], None] | None = None,
        session_factory: Callable[..., PeerSession] = PeerSession,
    ) -> None:
        """Initialize the state machine.

        Args:
            settings: Client settings (ICE servers, bitrate cap).
            media: Source of the local tracks attached to each session.
            send: Sends a control message to the other peer.
            on_local_candidate: Called with (session_id, candidate JSON).
            on_transport_state: Called with (session_id, connectionState).
            on_remote_track: Called with each remote track.
            session_factory: PeerSession constructor.
        """
        self.settings = settings
        self.media = media
        self.send = send
        self.on_local_candidate = on_local_candidate
        self.on_transport_state_change = on_transport_state
        self.on_remote_track = on_remote_track
        self.session_factory = session_factory

        self.is_initiator = False
        self.session: PeerSession | None = None
        self.state = NegotiationState.IDLE
        self._last_session_id = 0

    @property
    def is_connected(self) -> bool:
        return self.session is not None and self.state == NegotiationState.CONNECTED

    def _set_state(self, state: NegotiationState) -> None:
        if state != self.state:
            logger.info(f"Negotiation state: {self.state.value} -> {state.value}")
            self.state = state

    async def new_session(self) -> PeerSession:
        """Tear down the current session and create a fresh one with local tracks."""
        await self.teardown()

        self._last_session_id += 1
        session_id = self._last_session_id
        session = self.session_factory(
            session_id,
            is_initiator=self.is_initiator,
            ice_servers=self.settings.ice_servers,
            max_bitrate=self.settings.max_bitrate,
            on_ice_candidate=lambda candidate: self.on_local_candidate(session_id, candidate),
            on_state_change=self.on_transport_state_change,
            on_track=self.on_remote_track,
        )
        session.add_local_tracks(self.media.tracks)
        self.session = session
        logger.info(f"Created {session!r}")
        return session

    async def start_offer(self) -> None:
        """Create a fresh session and send an offer to the other peer."""
        session = await self.new_session()
        offer = await session.create_offer()
        self._set_state(NegotiationState.OFFERING)
        await self.send(Offer(offer=offer))

    async def on_ready(self) -> None:
        """Both peers are present; the initiator starts negotiating."""
        if not self.is_initiator:
            logger.info("Waiting for the initiator's offer")
            return
        await self.start_offer()

    async def on_offer(self, offer: SessionDescription) -> None:
        """Answer a remote offer on a fresh session.

        Whatever session existed is discarded, even on the initiator. The
        remote peer is restarting and its offer wins.
        """
        session = await self.new_session()
        answer = await session.accept_offer(offer)
        self._set_state(NegotiationState.ANSWERING)
        await self.send(Answer(answer=answer))

    async def on_answer(self, answer: SessionDescription) -> None:
        if self.session is None or self.state != NegotiationState.OFFERING:
            logger.warning(f"Ignoring answer in state {self.state.value}")
            return
        await self.session.accept_answer(answer)
        self._set_state(NegotiationState.CONNECTING)

    async def on_ice_candidate(self, candidate: dict[str, Any] | None) -> None:
        """Add a remote candidate. Failures are logged and otherwise ignored."""
        if self.session is None:
            logger.debug("No active session, dropping remote candidate")
            return
        if not candidate:
            return
        try:
            await self.session.add_ice_candidate(candidate)
        except Exception as e:
            logger.warning(f"Failed to add ICE candidate: {e!r}")

    async def relay_local_candidate(self, session_id: int, candidate: dict[str, Any]) -> None:
        if self.session is None or self.session.session_id != session_id:
            logger.debug(f"Dropping candidate from stale session {session_id}")
            return
        await self.send(IceCandidate(candidate=candidate))

    def on_transport_state(self, session_id: int, transport_state: str) -> NegotiationState | None:
        """Apply a transport state change.

        Returns:
            The new state, or None if the change was ignored (stale session
            or a transport state with no counterpart).
        """
        if self.session is None or self.session.session_id != session_id:
            logger.debug(f"Ignoring '{transport_state}' from stale session {session_id}")
            return None

        state = _TRANSPORT_STATES.get(transport_state)
        if state is None:
            return None
        self._set_state(state)
        return state

    async def teardown(self) -> None:
        """Close the current session, if any."""
        session, self.session = self.session, None
        if session is not None:
            await session.close()
        self._set_state(NegotiationState.IDLE)

    def replace_tracks(self, tracks: Iterable[MediaStreamTrack]) -> bool:
        """Swap outbound tracks on a connected session.

        Returns:
            True if tracks were replaced, False if no session is connected.
        """
        if not self.is_connected:
            return False
        self.session.replace_tracks(tracks)
        return True
