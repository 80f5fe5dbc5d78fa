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

"""Heartbeat sweep that evicts unresponsive control channels."""

import asyncio
import logging
import time

from ...models.messages import Ping
from .rooms import RoomRegistry

logger = logging.getLogger(__name__)


class LivenessMonitor:
    """Periodically probes every connection with a ping.

    Each sweep clears the liveness flag and sends a ping; any message from
    the client, a pong included, sets the flag again. A connection whose
    flag is still clear at the next sweep is evicted from its room and
    closed.
    """

    def __init__(self, registry: RoomRegistry, interval: float = 30.0) -> None:
        """Initialize the monitor.

        Args:
            registry: Registry whose connections are probed.
            interval: Seconds between sweeps.
        """
        self.registry = registry
        self.interval = interval
        self._task: asyncio.Task[None] | None = None
        self._sweep_lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the sweep loop. Does nothing if already running."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name="liveness-monitor")
        logger.info(f"Liveness monitor started (interval={self.interval}s)")

    async def stop(self) -> None:
        """Cancel the sweep loop and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Liveness monitor stopped")

    async def sweep(self) -> int:
        """Run one probe pass.

        A sweep requested while another is still running is skipped.

        Returns:
            Number of connections evicted.
        """
        if self._sweep_lock.locked():
            logger.warning("Previous liveness sweep still running, skipping")
            return 0

        async with self._sweep_lock:
            evicted = 0
            ts = int(time.time() * 1000)
            for connection in self.registry.connections():
                if not connection.is_alive:
                    logger.info(f"{connection}: silent since last sweep, evicting")
                    await self.registry.disconnect(connection)
                    await connection.terminate()
                    evicted += 1
                    continue

                connection.is_alive = False
                await connection.send(Ping(ts=ts))
            return evicted

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Liveness sweep failed: {e}", exc_info=True)
