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

"""A two-party call: control channel, negotiation and recovery.

Every input (relay messages, transport state changes, timer expirations,
activity changes and track loss) is posted to one queue and handled by a
single consumer task, so handlers never interleave.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, assert_never

from aiortc import MediaStreamTrack

from ..errors import ExhaustedRetries, MediaError, RoomFull, TransportError
from ..models.messages import (
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
)
from .config import ClientSettings
from .events import (
    ActivityChanged,
    ChannelClosed,
    ChannelOpened,
    Event,
    LocalCandidate,
    MessageReceived,
    ReconnectTimerFired,
    RejoinTimerFired,
    RestartTimerFired,
    TrackEnded,
    TransportStateChanged,
)
from .media import DeviceMedia, MediaSource
from .negotiation import NegotiationState, NegotiationStateMachine
from .peer_session import PeerSession
from .resilience import ResilienceController
from .signaling import SignalingChannel

logger = logging.getLogger(__name__)

_LOST_STATES = (
    NegotiationState.DISCONNECTED,
    NegotiationState.FAILED,
    NegotiationState.CLOSED,
)


class Call:
    """One participant in a room."""

    def __init__(
        self,
        room_id: str,
        settings: ClientSettings | None = None,
        *,
        create: bool = False,
        media: MediaSource | None = None,
        channel: SignalingChannel | None = None,
        session_factory: Callable[..., PeerSession] = PeerSession,
        on_status: Callable[[str], None] | None = None,
        on_remote_track: Callable[[MediaStreamTrack], None] | None = None,
    ) -> None:
        """Initialize the call.

        Args:
            room_id: Room to join.
            settings: Client settings. Read from the environment if omitted.
            create: Send create-room instead of join on the first connect.
            media: Local capture. Defaults to the configured devices.
            channel: Control channel. Defaults to the configured relay.
            session_factory: PeerSession constructor.
            on_status: Called with every user-facing status line.
            on_remote_track: Called with each remote track.
        """
        self.room_id = room_id
        self.settings = settings or ClientSettings()
        self.create = create
        self.on_status = on_status
        self.status = ""
        self.events: asyncio.Queue[Event] = asyncio.Queue()
        self.finished = asyncio.Event()

        self.media = media or DeviceMedia(self.settings)
        self.media.on_track_ended = lambda kind: self.post(TrackEnded(kind))

        self.channel = channel or SignalingChannel(self.settings.relay_url)
        self.channel.on_message = lambda message: self.post(MessageReceived(message))
        self.channel.on_open = lambda: self.post(ChannelOpened())
        self.channel.on_close = lambda: self.post(ChannelClosed())

        self.negotiation = NegotiationStateMachine(
            self.settings,
            self.media,
            send=self.channel.send,
            on_local_candidate=lambda sid, candidate: self.post(LocalCandidate(sid, candidate)),
            on_transport_state=lambda sid, state: self.post(TransportStateChanged(sid, state)),
            on_remote_track=on_remote_track,
            session_factory=session_factory,
        )
        self.resilience = ResilienceController(self.settings, self.post)
        self._runner: asyncio.Task[None] | None = None
        self._has_joined = False
        self._rejoin_retried = False

    @property
    def is_initiator(self) -> bool:
        return self.negotiation.is_initiator

    def post(self, event: Event) -> None:
        """Queue an event for the consumer task."""
        self.events.put_nowait(event)

    def set_active(self, active: bool) -> None:
        """Report the client going to the background or coming back."""
        self.post(ActivityChanged(active))

    async def start(self) -> None:
        """Acquire media, start the event loop and open the control channel.

        Raises:
            MediaError: If capture devices cannot be opened.
        """
        try:
            await self.media.acquire()
        except MediaError as e:
            logger.error(f"Media acquisition failed: {e}")
            self._set_status("Camera/mic access denied. Please check device permissions.")
            raise
        self._set_status("Camera ready!")

        self._runner = asyncio.create_task(self._run(), name="call-events")
        await self._connect_channel()

    async def stop(self) -> None:
        """Leave the call and release everything."""
        self.resilience.close()
        if self._runner and not self._runner.done():
            self._runner.cancel()
            try:
                await self._runner
            except asyncio.CancelledError:
                pass
        self._runner = None

        await self.negotiation.teardown()
        await self.channel.close()
        self.media.stop()
        self.finished.set()
        logger.info("Call stopped")

    async def _run(self) -> None:
        while True:
            event = await self.events.get()
            try:
                await self.dispatch(event)
            except Exception as e:
                logger.error(f"Error handling {type(event).__name__}: {e}", exc_info=True)
            finally:
                self.events.task_done()

    async def dispatch(self, event: Event) -> None:
        """Handle a single event."""
        match event:
            case MessageReceived(message=message):
                await self._handle_message(message)
            case ChannelOpened():
                self._on_channel_open()
                await self._send_join()
            case ChannelClosed():
                self._set_status("Connection error. Reconnecting...")
                self.resilience.schedule_channel_reconnect()
            case TransportStateChanged(session_id=session_id, state=state):
                self._on_transport_state(self.negotiation.on_transport_state(session_id, state))
            case LocalCandidate(session_id=session_id, candidate=candidate):
                await self.negotiation.relay_local_candidate(session_id, candidate)
            case RestartTimerFired():
                await self._restart_session()
            case ReconnectTimerFired():
                if self.resilience.active:
                    await self._connect_channel()
            case RejoinTimerFired():
                if self.channel.is_open:
                    await self._send_join()
            case ActivityChanged(active=active):
                self.resilience.active = active
                if active:
                    await self._check_health()
            case TrackEnded(kind=kind):
                if self.resilience.active:
                    logger.warning(f"Local {kind} track ended, reacquiring media")
                    await self._reacquire_media()
            case _:
                assert_never(event)

    async def _handle_message(self, message: Message) -> None:
        match message:
            case Joined(is_initiator=is_initiator):
                self.negotiation.is_initiator = is_initiator
                self.create = False
                self._has_joined = True
                self._rejoin_retried = False
                self.resilience.rejoin_timer.cancel()
                if is_initiator:
                    self._set_status("Waiting for another user to join...")
                else:
                    self._set_status("Joined room, waiting for connection...")
            case Ready():
                self._set_status("User found! Connecting...")
                await self._negotiate(self.negotiation.on_ready())
            case Offer(offer=offer):
                self._set_status("Connecting...")
                self.resilience.cancel_restart()
                await self._negotiate(self.negotiation.on_offer(offer))
            case Answer(answer=answer):
                await self._negotiate(self.negotiation.on_answer(answer))
            case IceCandidate(candidate=candidate):
                await self.negotiation.on_ice_candidate(candidate)
            case Restart():
                self._set_status("Peer reconnecting...")
                self.resilience.cancel_restart()
                await self.negotiation.teardown()
                if self.is_initiator:
                    await self._negotiate(self.negotiation.start_offer())
            case CheckPeer():
                await self.channel.send(PeerReady())
            case PeerReady():
                if self.is_initiator and not self.negotiation.is_connected:
                    await self._negotiate(self.negotiation.start_offer())
            case PeerDisconnected():
                self._set_status("Other user disconnected. Waiting...")
                self.resilience.cancel_restart()
                await self.negotiation.teardown()
                # Sole member now, so the next joiner gets the responder slot.
                self.negotiation.is_initiator = True
            case ErrorMessage(message=text, redirect=redirect):
                logger.error(f"Relay error: {text}")
                self._set_status(text)
                if redirect:
                    self.finished.set()
                elif text == RoomFull.reason and self._has_joined and not self._rejoin_retried:
                    # Our previous socket may hold the slot until the relay evicts it.
                    self._rejoin_retried = True
                    self._set_status("Room is full. Retrying...")
                    self.resilience.schedule_rejoin()
            case CreateRoom() | Join() | Pong() | Ping():
                logger.warning(f"Unexpected {message.type} from relay")
            case _:
                assert_never(message)

    async def _negotiate(self, step: Awaitable[None]) -> None:
        try:
            await step
        except Exception as e:
            logger.error(f"Negotiation failed: {e!r}")
            self._schedule_restart()

    def _on_transport_state(self, state: NegotiationState | None) -> None:
        match state:
            case NegotiationState.CONNECTED:
                self.resilience.on_connected()
                self._set_status("Connected!")
            case NegotiationState.DISCONNECTED:
                self._set_status("Connection lost. Reconnecting...")
                self._schedule_restart()
            case NegotiationState.FAILED:
                self._set_status("Connection failed. Retrying...")
                self._schedule_restart()
            case NegotiationState.CLOSED:
                self._set_status("Connection closed")
            case _:
                pass

    def _schedule_restart(self) -> None:
        try:
            self.resilience.schedule_restart()
        except ExhaustedRetries as e:
            logger.error(str(e))
            self._set_status("Connection failed. Please restart the call.")

    async def _restart_session(self) -> None:
        """Tear down the session, tell the peer, and re-offer if initiator."""
        logger.info("Restarting peer session")
        await self.negotiation.teardown()

        if not self.channel.is_open:
            logger.info("Control channel down, restart deferred until rejoin")
            return

        await self.channel.send(Restart())
        if self.is_initiator:
            await self._negotiate(self.negotiation.start_offer())

    async def _connect_channel(self) -> None:
        try:
            await self.channel.connect()
        except TransportError as e:
            logger.warning(f"Control channel unavailable: {e}")
            self._set_status("Connection error. Reconnecting...")
            self.resilience.schedule_channel_reconnect()

    def _on_channel_open(self) -> None:
        logger.info("Control channel open")
        self.resilience.on_channel_open()

    async def _send_join(self) -> None:
        if self.create:
            await self.channel.send(CreateRoom(room_id=self.room_id))
        else:
            await self.channel.send(Join(room_id=self.room_id))

    async def _check_health(self) -> None:
        """Re-validate media, control channel and session after becoming active."""
        logger.info("Client active, checking connection health")

        if not self.media.has_live_tracks():
            await self._reacquire_media()

        if not self.channel.is_open:
            self.resilience.channel_timer.cancel()
            await self._connect_channel()
            return

        if self.negotiation.session is None:
            if self.is_initiator:
                await self.channel.send(CheckPeer())
        elif self.negotiation.state in _LOST_STATES and not self.resilience.restart_pending:
            await self._restart_session()

    async def _reacquire_media(self) -> None:
        self._set_status("Restarting camera...")
        try:
            tracks = await self.media.acquire()
        except MediaError as e:
            logger.error(f"Failed to restart media: {e}")
            self._set_status("Camera error. Please restart the call.")
            return

        if not self.negotiation.is_connected:
            self._set_status("Camera restarted!")
            return

        try:
            self.negotiation.replace_tracks(tracks)
        except Exception as e:
            logger.error(f"Failed to replace tracks: {e!r}")
            await self._restart_session()
            return
        self._set_status("Connected!")

    def _set_status(self, status: str) -> None:
        self.status = status
        logger.info(f"Status: {status}")
        if self.on_status:
            self.on_status(status)

    def __repr__(self) -> str:
        role = "initiator" if self.is_initiator else "responder"
        return f"Call(room={self.room_id!r}, {role}, state={self.negotiation.state.value})"


async def run_call(
    room_id: str,
    settings: ClientSettings,
    *,
    create: bool = False,
    on_status: Callable[[str], None] | None = None,
    **kwargs: Any,
) -> None:
    """Run a call until it is finished or cancelled."""
    call = Call(room_id, settings, create=create, on_status=on_status, **kwargs)

    if not create and not await call.channel.room_exists(room_id):
        status = f"Room {room_id} does not exist"
        logger.error(status)
        if on_status:
            on_status(status)
        return

    await call.start()
    try:
        await call.finished.wait()
    finally:
        await call.stop()
