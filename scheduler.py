"""Periodic activities: connection upkeep, reading capture and persistence flush"""
import asyncio
import logging

from device.supervisor import ConnectionSupervisor
from state import MonitorState
from storage.persistence import Persistence

logger = logging.getLogger(__name__)

CONNECTION_INTERVAL = 5
CAPTURE_INTERVAL = 60
FLUSH_INTERVAL = 60


class Scheduler:
    """
    Runs three independent loops. Capture and flush share a period but are
    separate tasks, so their relative order within a period is not fixed.
    """

    def __init__(
        self,
        state: MonitorState,
        supervisor: ConnectionSupervisor,
        persistence: Persistence,
        connection_interval: float = CONNECTION_INTERVAL,
        capture_interval: float = CAPTURE_INTERVAL,
        flush_interval: float = FLUSH_INTERVAL
    ):
        self.state = state
        self.supervisor = supervisor
        self.persistence = persistence
        self.connection_interval = connection_interval
        self.capture_interval = capture_interval
        self.flush_interval = flush_interval

    async def connection_tick(self) -> None:
        """Reconnect while disconnected, otherwise request a refresh"""
        if not self.state.configured:
            return

        if not self.state.connected:
            await self.supervisor.connect_cycle()
        else:
            self.supervisor.request_refresh()

    def capture_tick(self) -> bool:
        return self.state.store.capture(self.state.connected)

    def flush_tick(self) -> None:
        self.persistence.flush(self.state.store.readings, self.state.config)

    async def _every(self, interval: float, name: str, tick) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                result = tick()
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"Scheduler: {name} tick failed: {e}")

    async def run(self) -> None:
        """Run all loops until cancelled"""
        logger.info(
            f"Scheduler: Starting (connection: {self.connection_interval}s, "
            f"capture: {self.capture_interval}s, flush: {self.flush_interval}s)"
        )
        async with asyncio.TaskGroup() as tg:
            tg.create_task(self._every(self.connection_interval, "connection", self.connection_tick))
            tg.create_task(self._every(self.capture_interval, "capture", self.capture_tick))
            tg.create_task(self._every(self.flush_interval, "flush", self.flush_tick))
