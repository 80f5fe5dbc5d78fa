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

"""One negotiated peer connection.

Thin wrapper over aiortc's RTCPeerConnection: the transport does all media
work, this class only configures it and translates descriptions and
candidates to and from their JSON wire form.
"""

import logging
from collections.abc import Callable, Iterable
from typing import Any

from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCIceCandidate,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp

from ..models.messages import SessionDescription

logger = logging.getLogger(__name__)


def candidate_to_json(candidate: RTCIceCandidate) -> dict[str, Any]:
    """Encode a local candidate the way browsers do."""
    return {
        "candidate": f"candidate:{candidate_to_sdp(candidate)}",
        "sdpMid": candidate.sdpMid,
        "sdpMLineIndex": candidate.sdpMLineIndex,
    }


def candidate_from_json(obj: dict[str, Any]) -> RTCIceCandidate:
    """Decode a remote candidate.

    Raises:
        ValueError: If the candidate line is missing.
    """
    line = obj.get("candidate")
    if not isinstance(line, str) or not line:
        raise ValueError("missing candidate")
    if line.startswith("candidate:"):
        line = line.split(":", 1)[1]
    candidate = candidate_from_sdp(line)
    candidate.sdpMid = obj.get("sdpMid")
    candidate.sdpMLineIndex = obj.get("sdpMLineIndex")
    return candidate


def cap_video_bandwidth(sdp: str, max_bitrate: int) -> str:
    """Add a bandwidth limit to every video section of an SDP blob.

    The remote side reads ``b=AS``/``b=TIAS`` from our description and caps
    the video it sends us. Existing bandwidth lines in video sections are
    replaced.
    """
    kbps = max(1, max_bitrate // 1000)
    out: list[str] = []
    in_video = False
    for line in sdp.split("\r\n"):
        if line.startswith("m="):
            in_video = line.startswith("m=video")
        elif in_video and line.startswith("b="):
            continue
        out.append(line)
        if in_video and line.startswith("c="):
            out.append(f"b=AS:{kbps}")
            out.append(f"b=TIAS:{max_bitrate}")
    return "\r\n".join(out)


class PeerSession:
    """A single RTCPeerConnection and the senders attached to it."""

    def __init__(
        self,
        session_id: int,
        *,
        is_initiator: bool,
        ice_servers: Iterable[str],
        max_bitrate: int,
        on_ice_candidate: Callable[[dict[str, Any]], None],
        on_state_change: Callable[[int, str], None],
        on_track: Callable[[MediaStreamTrack], None] | None = None,
        pc_factory: Callable[..., Any] = RTCPeerConnection,
    ) -> None:
        """Initialize the session.

        Args:
            session_id: Identifier tagged onto every state change.
            is_initiator: Role for the lifetime of this session.
            ice_servers: STUN/TURN URLs.
            max_bitrate: Video bandwidth cap advertised in our descriptions.
            on_ice_candidate: Called with each local candidate (JSON form).
            on_state_change: Called with (session_id, connectionState).
            on_track: Called with each remote track.
            pc_factory: Peer connection constructor.
        """
        self.session_id = session_id
        self.is_initiator = is_initiator
        self.max_bitrate = max_bitrate
        self.senders: dict[str, Any] = {}
        self.remote_tracks: list[MediaStreamTrack] = []
        self.closed = False

        config = RTCConfiguration(iceServers=[RTCIceServer(urls=url) for url in ice_servers])
        self.pc = pc_factory(configuration=config)

        @self.pc.on("connectionstatechange")
        def on_connectionstatechange() -> None:
            logger.info(f"Session {self.session_id}: connection state {self.pc.connectionState}")
            on_state_change(self.session_id, self.pc.connectionState)

        @self.pc.on("icecandidate")
        def on_icecandidate(candidate: RTCIceCandidate | None) -> None:
            if candidate is None:
                logger.debug(f"Session {self.session_id}: ICE gathering complete")
                return
            on_ice_candidate(candidate_to_json(candidate))

        @self.pc.on("track")
        def on_remote_track(track: MediaStreamTrack) -> None:
            logger.info(f"Session {self.session_id}: remote {track.kind} track received")
            self.remote_tracks.append(track)
            if on_track:
                on_track(track)

    def __repr__(self) -> str:
        role = "initiator" if self.is_initiator else "responder"
        return f"PeerSession(id={self.session_id}, {role}, state={self.state})"

    @property
    def state(self) -> str:
        return self.pc.connectionState

    def add_local_tracks(self, tracks: Iterable[MediaStreamTrack]) -> None:
        """Attach local capture tracks, one sender per kind."""
        for track in tracks:
            self.senders[track.kind] = self.pc.addTrack(track)

    def replace_tracks(self, tracks: Iterable[MediaStreamTrack]) -> None:
        """Swap outbound tracks on the existing senders without renegotiating."""
        for track in tracks:
            sender = self.senders.get(track.kind)
            if sender is None:
                logger.warning(f"Session {self.session_id}: no {track.kind} sender to replace")
                continue
            sender.replaceTrack(track)
            logger.info(f"Session {self.session_id}: {track.kind} track replaced")

    async def create_offer(self) -> SessionDescription:
        """Create and apply the local offer.

        Candidates are carried in the SDP or trickled via icecandidate events.
        """
        offer = await self.pc.createOffer()
        await self.pc.setLocalDescription(offer)
        return self._local_description()

    async def accept_offer(self, offer: SessionDescription) -> SessionDescription:
        """Apply a remote offer and create the local answer."""
        await self.pc.setRemoteDescription(RTCSessionDescription(sdp=offer.sdp, type=offer.type))
        answer = await self.pc.createAnswer()
        await self.pc.setLocalDescription(answer)
        return self._local_description()

    async def accept_answer(self, answer: SessionDescription) -> None:
        """Apply the remote answer."""
        await self.pc.setRemoteDescription(RTCSessionDescription(sdp=answer.sdp, type=answer.type))

    async def add_ice_candidate(self, candidate: dict[str, Any]) -> None:
        """Add a remote candidate.

        Raises:
            ValueError: If the candidate cannot be parsed.
        """
        await self.pc.addIceCandidate(candidate_from_json(candidate))

    async def close(self) -> None:
        """Close the peer connection. Idempotent."""
        if self.closed:
            return
        self.closed = True
        await self.pc.close()
        logger.info(f"Session {self.session_id}: closed")

    def _local_description(self) -> SessionDescription:
        description = self.pc.localDescription
        return SessionDescription(
            type=description.type, sdp=cap_video_bandwidth(description.sdp, self.max_bitrate)
        )
