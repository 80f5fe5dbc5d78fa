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

"""Recovery timers for the control channel and the peer session.

Timers never run recovery directly. When one expires it posts an event, so
recovery runs on the same queue as every other input.
"""

import asyncio
import logging
from collections.abc import Callable

from ..errors import ExhaustedRetries
from .config import ClientSettings
from .events import Event, ReconnectTimerFired, RejoinTimerFired, RestartTimerFired

logger = logging.getLogger(__name__)


def backoff_delay(attempt: int, base: float = 1.0, cap: float = 10.0) -> float:
    """Delay in seconds before restart attempt ``attempt`` (1-based)."""
    return min(base * 2**attempt, cap)


class TimerSlot:
    """Holds at most one pending timer for one failure domain."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._handle: asyncio.TimerHandle | None = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def arm(self, delay: float, callback: Callable[[], None]) -> None:
        """Schedule ``callback`` after ``delay`` seconds, cancelling any pending one."""
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(delay, self._fire, callback)
        logger.debug(f"{self.name} timer armed ({delay:.1f}s)")

    def cancel(self) -> None:
        if self._handle is None:
            return
        self._handle.cancel()
        self._handle = None
        logger.debug(f"{self.name} timer cancelled")

    def _fire(self, callback: Callable[[], None]) -> None:
        self._handle = None
        callback()


class ResilienceController:
    """Decides when to retry the control channel and the peer session.

    Tracks the consecutive restart attempts since the last successful
    connection and whether the client is active (foreground). Reconnects
    are only armed while active.
    """

    def __init__(self, settings: ClientSettings, post: Callable[[Event], None]) -> None:
        """Initialize the controller.

        Args:
            settings: Client settings (backoff and reconnect timing).
            post: Enqueues an event for the call's event loop.
        """
        self.settings = settings
        self.post = post
        self.attempts = 0
        self.active = True
        self.restart_timer = TimerSlot("peer-restart")
        self.channel_timer = TimerSlot("control-channel")
        self.rejoin_timer = TimerSlot("rejoin")

    @property
    def restart_pending(self) -> bool:
        return self.restart_timer.pending

    def schedule_restart(self) -> float | None:
        """Arm the peer-session restart timer with exponential backoff.

        Returns:
            The delay in seconds, or None if a restart is already pending.

        Raises:
            ExhaustedRetries: If the attempt cap was reached.
        """
        if self.restart_timer.pending:
            logger.debug("Peer restart already scheduled")
            return None

        if self.attempts >= self.settings.max_restart_attempts:
            raise ExhaustedRetries(self.attempts)

        self.attempts += 1
        delay = backoff_delay(
            self.attempts, self.settings.restart_base_delay, self.settings.restart_max_delay
        )
        logger.info(f"Scheduling reconnect attempt {self.attempts} in {delay:.1f}s")
        self.restart_timer.arm(delay, lambda: self.post(RestartTimerFired()))
        return delay

    def cancel_restart(self) -> None:
        self.restart_timer.cancel()

    def on_connected(self) -> None:
        """The peer session connected; forget previous failures."""
        self.attempts = 0
        self.restart_timer.cancel()

    def schedule_channel_reconnect(self) -> bool:
        """Arm the control-channel reconnect timer.

        Returns:
            True if a timer was armed.
        """
        if not self.active:
            logger.info("Inactive, not reconnecting control channel")
            return False
        if self.channel_timer.pending:
            return False

        logger.info(f"Reconnecting control channel in {self.settings.channel_reconnect_delay:.1f}s")
        self.channel_timer.arm(
            self.settings.channel_reconnect_delay, lambda: self.post(ReconnectTimerFired())
        )
        return True

    def on_channel_open(self) -> None:
        self.channel_timer.cancel()
        self.rejoin_timer.cancel()

    def schedule_rejoin(self) -> None:
        """Arm one delayed join retry after the relay reported the room full."""
        logger.info(f"Retrying join in {self.settings.rejoin_delay:.1f}s")
        self.rejoin_timer.arm(self.settings.rejoin_delay, lambda: self.post(RejoinTimerFired()))

    def close(self) -> None:
        """Cancel all pending timers."""
        self.restart_timer.cancel()
        self.channel_timer.cancel()
        self.rejoin_timer.cancel()
