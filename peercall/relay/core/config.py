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

"""Configuration settings for the relay server."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class RelaySettings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="PEERCALL_RELAY_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # Server
    host: str = "0.0.0.0"
    port: int = 3000
    cors_origins: str = "*"
    log_level: str = "INFO"

    # Liveness sweep period (seconds)
    heartbeat_interval: float = 30.0

    # Sends that take longer than this are dropped (seconds)
    send_timeout: float = 5.0


settings = RelaySettings()
