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

"""Configuration settings for the call client."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ClientSettings(BaseSettings):
    """Client settings."""

    model_config = SettingsConfigDict(
        env_prefix="PEERCALL_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # Relay base URL; the control channel lives at {relay_url}/ws
    relay_url: str = "http://localhost:3000"

    # STUN/TURN rendezvous servers
    ice_servers: list[str] = Field(
        default_factory=lambda: ["stun:stun1.l.google.com:19302", "stun:stun2.l.google.com:19302"]
    )

    # Outbound video encoding cap (bits per second)
    max_bitrate: int = 2_500_000

    # Peer session restart backoff
    max_restart_attempts: int = 5
    restart_base_delay: float = 1.0
    restart_max_delay: float = 10.0

    # Control channel reconnect delay (seconds)
    channel_reconnect_delay: float = 2.0

    # Wait before retrying a rejoin refused as full; outlasts the relay's
    # eviction of our previous, silently dead socket (seconds)
    rejoin_delay: float = 65.0

    # Capture devices (see aiortc.contrib.media.MediaPlayer)
    video_device: str | None = "/dev/video0"
    video_format: str | None = "v4l2"
    video_size: str = "1920x1080"
    framerate: int = 30
    audio_device: str | None = "default"
    audio_format: str | None = "pulse"
