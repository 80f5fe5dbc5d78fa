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

"""Main FastAPI application for the signaling relay."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import health, rooms, signal
from .core.config import RelaySettings, settings
from .core.liveness import LivenessMonitor
from .core.rooms import RoomRegistry

# Configure logging
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Start the liveness sweep for the lifetime of the app."""
    monitor: LivenessMonitor = app.state.monitor
    monitor.start()
    logger.info("Relay server started")

    yield

    await monitor.stop()
    logger.info("Relay server shutting down")


def create_app(app_settings: RelaySettings | None = None) -> FastAPI:
    """Build a relay application with its own registry.

    Args:
        app_settings: Settings to use; defaults to the environment.

    Returns:
        Configured FastAPI app.
    """
    app_settings = app_settings or settings

    app = FastAPI(
        title="PeerCall Relay",
        description="Signaling relay for one-on-one WebRTC calls",
        version="0.1.0",
        lifespan=lifespan,
    )

    registry = RoomRegistry()
    app.state.settings = app_settings
    app.state.registry = registry
    app.state.monitor = LivenessMonitor(registry, interval=app_settings.heartbeat_interval)

    # Parse CORS origins from settings
    cors_origins = (
        ["*"] if app_settings.cors_origins == "*" else app_settings.cors_origins.split(",")
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(rooms.router)
    app.include_router(signal.router)

    return app


app = create_app()
