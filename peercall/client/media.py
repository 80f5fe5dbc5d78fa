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

"""Local camera and microphone capture."""

import logging
from collections.abc import Callable
from typing import Any, Protocol

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaPlayer

from ..errors import MediaError
from .config import ClientSettings

logger = logging.getLogger(__name__)


class MediaSource(Protocol):
    """Produces the local tracks attached to every peer session."""

    tracks: list[MediaStreamTrack]
    on_track_ended: Callable[[str], None] | None

    async def acquire(self) -> list[MediaStreamTrack]:
        """Open fresh capture tracks, replacing any previous ones."""
        ...

    def stop(self) -> None:
        """Stop all current tracks."""
        ...

    def has_live_tracks(self) -> bool:
        """True if every expected track is present and live."""
        ...


class DeviceMedia:
    """Capture from local devices through ffmpeg (aiortc MediaPlayer).

    ``on_track_ended`` fires with the track kind when a device stops
    delivering, e.g. after sleep or when the device is unplugged.
    """

    def __init__(
        self,
        settings: ClientSettings,
        on_track_ended: Callable[[str], None] | None = None,
        player_factory: Callable[..., Any] = MediaPlayer,
    ) -> None:
        self.settings = settings
        self.on_track_ended = on_track_ended
        self.player_factory = player_factory
        self.tracks: list[MediaStreamTrack] = []

    async def acquire(self) -> list[MediaStreamTrack]:
        """Open the configured devices.

        Raises:
            MediaError: If a device cannot be opened.
        """
        self.stop()
        tracks: list[MediaStreamTrack] = []

        try:
            if self.settings.video_device:
                video = self.player_factory(
                    self.settings.video_device,
                    format=self.settings.video_format,
                    options={
                        "video_size": self.settings.video_size,
                        "framerate": str(self.settings.framerate),
                    },
                )
                if video.video is not None:
                    tracks.append(video.video)

            if self.settings.audio_device:
                audio = self.player_factory(self.settings.audio_device, format=self.settings.audio_format)
                if audio.audio is not None:
                    tracks.append(audio.audio)
        except Exception as e:
            for track in tracks:
                track.stop()
            raise MediaError(f"Cannot open capture devices: {e}") from e

        if not tracks:
            raise MediaError("No capture devices configured")

        for track in tracks:
            self._watch(track)
        self.tracks = tracks
        logger.info(f"Local media ready: {', '.join(t.kind for t in tracks)}")
        return tracks

    def stop(self) -> None:
        for track in self.tracks:
            track.remove_all_listeners("ended")
            track.stop()
        self.tracks = []

    def has_live_tracks(self) -> bool:
        return bool(self.tracks) and all(t.readyState == "live" for t in self.tracks)

    def _watch(self, track: MediaStreamTrack) -> None:
        @track.on("ended")
        def on_ended() -> None:
            logger.warning(f"Local {track.kind} track ended")
            if self.on_track_ended:
                self.on_track_ended(track.kind)
