"""Connection supervisor - owns the device transport lifecycle and applies its events"""
import asyncio
import dataclasses
import logging
from enum import Enum
from typing import Any, Callable, Mapping, Optional

from device.base import (
    DP_POWER_ON,
    REQUIRED_CONFIG_FIELDS,
    Connected,
    Connectivity,
    Data,
    DeviceConfig,
    DeviceEvent,
    DeviceTransport,
    Disconnected,
    DpRefresh,
    Error,
)
from device.discovery import DISCOVERY_TIMEOUT
from device.normalizer import merge_points, normalize
from device.tuya import TuyaTransport
from errors import (
    AlreadyConfiguredError,
    CommandError,
    InvalidConfigError,
    NotConfiguredError,
    NotConnectedError,
)
from state import MonitorState
from storage.persistence import Persistence

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 10.0
TOGGLE_REFRESH_DELAY = 1.0


class SupervisorPhase(Enum):
    UNCONFIGURED = "unconfigured"
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


def validate_config(data: Mapping[str, Any]) -> DeviceConfig:
    """
    Build a DeviceConfig from request data.

    Raises:
        InvalidConfigError: a required field is absent or empty
    """
    missing = [name for name in REQUIRED_CONFIG_FIELDS if not data.get(name)]
    if missing:
        raise InvalidConfigError(missing)
    return DeviceConfig.from_dict(data)


class ConnectionSupervisor:
    """
    Drives discovery, connect and refresh of the single configured plug.

    Each transport gets its own pump task that feeds the transport's events
    into handle_event(). Replacing or removing the transport cancels its
    pump first, so events of a stale transport are never applied.

    Connection failures are never raised to callers: connectivity drops to
    DISCONNECTED and the scheduler retries on its next tick.
    """

    def __init__(
        self,
        state: MonitorState,
        persistence: Persistence,
        transport_factory: Callable[[DeviceConfig], DeviceTransport] = TuyaTransport,
        discovery_timeout: float = DISCOVERY_TIMEOUT,
        connect_timeout: float = CONNECT_TIMEOUT,
        refresh_delay: float = TOGGLE_REFRESH_DELAY
    ):
        self.state = state
        self.persistence = persistence
        self.transport_factory = transport_factory
        self.discovery_timeout = discovery_timeout
        self.connect_timeout = connect_timeout
        self.refresh_delay = refresh_delay
        self.transport: Optional[DeviceTransport] = None
        self.phase = SupervisorPhase.IDLE if state.configured else SupervisorPhase.UNCONFIGURED
        self._pump_task: Optional[asyncio.Task] = None
        self._tasks: set[asyncio.Task] = set()

    # --- Provisioning ---

    async def configure(self, data: Mapping[str, Any]) -> DeviceConfig:
        """
        Provision the plug, persist its configuration and prepare a transport.

        Raises:
            AlreadyConfiguredError: a device is already configured
            InvalidConfigError: id, key, ip or version missing
        """
        if self.state.configured:
            raise AlreadyConfiguredError()

        config = validate_config(data)
        self.state.config = config
        self.persistence.save_config(config)
        logger.info(f"Supervisor: Configured device {config.id} at {config.ip}")

        await self.initialize()
        return config

    async def restore(self, config: DeviceConfig) -> None:
        """Adopt a configuration loaded from disk at startup"""
        self.state.config = config
        await self.initialize()

    async def deconfigure(self) -> None:
        """
        Remove the plug: disconnect, discard the transport and delete the
        persisted configuration. The reading log is kept.

        Raises:
            NotConfiguredError: no device configured
        """
        if not self.state.configured:
            raise NotConfiguredError("No device to remove")

        device_id = self.state.config.id
        await self._teardown()
        self.state.config = None
        self.phase = SupervisorPhase.UNCONFIGURED
        self.persistence.remove_config()
        logger.info(f"Supervisor: Removed device {device_id}")

    # --- Transport lifecycle ---

    async def initialize(self) -> None:
        """Replace the transport with a fresh one and start consuming its events"""
        if not self.state.configured:
            return

        await self._teardown()
        transport = self.transport_factory(self.state.config)
        self.transport = transport
        self._pump_task = asyncio.create_task(self._pump(transport))
        self.phase = SupervisorPhase.IDLE

    async def _teardown(self) -> None:
        if self._pump_task is not None:
            self._pump_task.cancel()
            self._pump_task = None

        transport, self.transport = self.transport, None
        if transport is not None:
            # A transport that never connected may fail to disconnect; harmless
            try:
                await transport.disconnect()
            except Exception as e:
                logger.debug(f"Supervisor: Ignoring teardown error: {e}")

        self._set_connectivity(Connectivity.DISCONNECTED)

    async def _pump(self, transport: DeviceTransport) -> None:
        async for event in transport.events():
            self.handle_event(event)

    def handle_event(self, event: DeviceEvent) -> None:
        if isinstance(event, Connected):
            self._set_connectivity(Connectivity.CONNECTED)
            logger.info("Supervisor: Device connected")
        elif isinstance(event, Disconnected):
            self._set_connectivity(Connectivity.DISCONNECTED)
            logger.warning("Supervisor: Device disconnected")
        elif isinstance(event, Error):
            # Non-fatal, the next connection tick retries
            self._set_connectivity(Connectivity.DISCONNECTED)
            logger.error(f"Supervisor: Device error: {event.message}")
        elif isinstance(event, (Data, DpRefresh)):
            self.state.points = merge_points(self.state.points, event.points)
            self.state.store.latest = normalize(self.state.points, self.state.connected)
        else:
            logger.debug(f"Supervisor: Ignoring unknown event {event!r}")

    def _set_connectivity(self, connectivity: Connectivity) -> None:
        self.state.connectivity = connectivity
        store = self.state.store
        store.latest = dataclasses.replace(store.latest, connected=self.state.connected)

        if self.phase is not SupervisorPhase.UNCONFIGURED:
            if connectivity is Connectivity.CONNECTED:
                self.phase = SupervisorPhase.CONNECTED
            elif self.phase is not SupervisorPhase.CONNECTING:
                self.phase = SupervisorPhase.DISCONNECTED

    # --- Operations driven by the scheduler and the HTTP routes ---

    async def connect_cycle(self) -> None:
        """
        One discovery + connect attempt. Never raises.

        A call while another attempt is still in flight is a no-op.
        """
        if not self.state.configured:
            return
        if self.phase is SupervisorPhase.CONNECTING:
            logger.debug("Supervisor: Connection attempt already in progress")
            return

        if self.transport is None:
            await self.initialize()

        transport = self.transport
        self.phase = SupervisorPhase.CONNECTING
        try:
            await transport.find(timeout=self.discovery_timeout)
            await asyncio.wait_for(transport.connect(), timeout=self.connect_timeout)
        except Exception as e:
            if transport is self.transport:
                self._set_connectivity(Connectivity.DISCONNECTED)
            logger.error(f"Supervisor: Connection attempt failed: {e}")
        finally:
            if self.phase is SupervisorPhase.CONNECTING:
                self.phase = (
                    SupervisorPhase.CONNECTED if self.state.connected
                    else SupervisorPhase.DISCONNECTED
                )

    async def refresh(self) -> None:
        """Ask the device for fresh data points. Failures arrive as events."""
        transport = self.transport
        if transport is None or not self.state.connected:
            return
        await transport.refresh()

    def request_refresh(self, delay: float = 0.0) -> asyncio.Task:
        """Fire-and-forget refresh, optionally delayed"""
        task = asyncio.create_task(self._refresh_later(delay))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _refresh_later(self, delay: float) -> None:
        if delay:
            await asyncio.sleep(delay)
        try:
            await self.refresh()
        except Exception as e:
            logger.error(f"Supervisor: Refresh failed: {e}")

    async def toggle(self) -> bool:
        """
        Invert the relay state.

        Returns the intended new state right after the command is accepted.
        A refresh shortly after reconciles the latest reading with the device.

        Raises:
            NotConnectedError: the device is not connected
            CommandError: the device rejected or never acknowledged the command
        """
        if not self.state.connected or self.transport is None:
            raise NotConnectedError()

        new_state = not self.state.store.latest.power_on
        try:
            await self.transport.set(DP_POWER_ON, new_state)
        except CommandError:
            raise
        except Exception as e:
            raise CommandError(str(e)) from e

        logger.info(f"Supervisor: Power switched {'on' if new_state else 'off'}")
        self.request_refresh(delay=self.refresh_delay)
        return new_state

    async def close(self) -> None:
        """Shutdown: cancel pending refreshes and disconnect"""
        for task in list(self._tasks):
            task.cancel()
        await self._teardown()
