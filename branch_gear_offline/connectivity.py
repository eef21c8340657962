"""
Connectivity monitor.

Observable online/offline flag. Listeners only hear about genuine
transitions; setting the same state twice is silent.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

ConnectivityListener = Callable[[bool], Awaitable[None] | None]
Probe = Callable[[], Awaitable[bool]]


class ConnectivityMonitor:
    """Tracks whether the remote service is reachable."""

    def __init__(self, online: bool = False, interval: float = 15.0):
        self._online = online
        self.interval = interval
        self._listeners: list[ConnectivityListener] = []
        self._task: asyncio.Task[None] | None = None

    @property
    def is_online(self) -> bool:
        return self._online

    def subscribe(self, listener: ConnectivityListener) -> Callable[[], None]:
        """Register a listener called with the new state on each transition.

        Returns:
            Function that removes the listener again
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def set_online(self, online: bool) -> bool:
        """Set the current state.

        Returns:
            True if this was a transition
        """
        if online == self._online:
            return False

        self._online = online
        logger.info(f"Connectivity changed: {'online' if online else 'offline'}")

        for listener in list(self._listeners):
            try:
                outcome = listener(online)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                # Log error but continue with the other listeners
                logger.error(f"Connectivity listener failed: {e}")
        return True

    async def check(self, probe: Probe) -> bool:
        """Run the probe once and apply its result."""
        try:
            online = bool(await probe())
        except Exception as e:
            logger.debug(f"Connectivity probe failed: {e}")
            online = False
        await self.set_online(online)
        return online

    async def start(self, probe: Probe) -> None:
        """Start polling ``probe`` every ``interval`` seconds."""
        if self._task is not None:
            return

        async def poll_loop() -> None:
            while True:
                try:
                    await self.check(probe)
                    await asyncio.sleep(self.interval)
                except asyncio.CancelledError:
                    break

        self._task = asyncio.create_task(poll_loop())

    async def stop(self) -> None:
        """Stop polling."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
